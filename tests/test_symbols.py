"""Tests for symbols.py: key-name normalisation, word boundaries, display labels."""

from __future__ import annotations

import pytest

from keydrill.symbols import (
    BACKSPACE,
    ENTER,
    SPACE,
    TAB,
    display_name,
    format_pair,
    is_backspace,
    is_control,
    is_word_boundary,
    normalize_symbol,
)


class TestNormalizeSymbol:
    def test_single_character_passes_through(self):
        assert normalize_symbol("a") == "a"
        assert normalize_symbol("'") == "'"

    def test_key_names_case_insensitive(self):
        assert normalize_symbol("Enter") == ENTER
        assert normalize_symbol("RETURN") == ENTER
        assert normalize_symbol("tab") == TAB
        assert normalize_symbol("backspace") == BACKSPACE
        assert normalize_symbol("space") == SPACE

    def test_unknown_name_raises(self):
        with pytest.raises(ValueError):
            normalize_symbol("shift")

    def test_empty_raises(self):
        with pytest.raises(ValueError):
            normalize_symbol("")


class TestClassification:
    def test_word_boundaries(self):
        assert is_word_boundary(SPACE)
        assert is_word_boundary(TAB)
        assert is_word_boundary(ENTER)
        assert not is_word_boundary("a")
        assert not is_word_boundary(BACKSPACE)

    def test_backspace(self):
        assert is_backspace(BACKSPACE)
        assert not is_backspace("b")

    def test_control_excludes_space(self):
        assert is_control(ENTER)
        assert not is_control(SPACE)


class TestDisplay:
    def test_display_name(self):
        assert display_name(ENTER) == "Enter"
        assert display_name("q") == "q"

    def test_format_plain_pair(self):
        assert format_pair(("t", "h")) == "th"

    def test_format_pair_with_control(self):
        assert format_pair(("e", ENTER)) == "e+Enter"
