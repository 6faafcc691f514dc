"""Tests for branches.py: bundled catalogue, YAML parsing, validation errors."""

from __future__ import annotations

import pytest

from keydrill.branches import (
    BranchCatalogError,
    clear_cache,
    load_branches,
    parse_catalog,
)
from keydrill.symbols import ENTER, TAB


@pytest.fixture(autouse=True)
def fresh_cache():
    clear_cache()
    yield
    clear_cache()


def _raw(**overrides):
    raw = {
        "root": "base",
        "branches": [
            {"id": "base", "initial_symbols": 2, "levels": [{"name": "All", "symbols": ["a", "b", "c"]}]},
            {"id": "digits", "levels": [{"name": "Low", "symbols": ["1", "2"]}]},
        ],
    }
    raw.update(overrides)
    return raw


class TestBundledCatalog:
    def test_root_is_progressive_lowercase(self):
        catalog = load_branches()
        root = catalog.root
        assert root.id == "lowercase"
        assert root.progressive
        assert root.initial_symbols == 6
        assert root.levels[0].symbols[:6] == ("e", "t", "a", "o", "i", "n")
        assert root.stage_count == 21

    def test_branch_ids(self):
        catalog = load_branches()
        assert catalog.branch_ids == (
            "lowercase",
            "capitals",
            "numbers",
            "prose_punctuation",
            "whitespace",
            "code_symbols",
        )

    def test_unique_symbol_count(self):
        assert len(load_branches().all_symbols()) == 96

    def test_whitespace_uses_key_names(self):
        whitespace = load_branches().get("whitespace")
        assert whitespace.all_symbols() == (ENTER, TAB)

    def test_shared_symbols(self):
        catalog = load_branches()
        assert "-" in catalog.get("prose_punctuation").all_symbols()
        assert "-" in catalog.get("code_symbols").all_symbols()

    def test_cached(self):
        assert load_branches() is load_branches()

    def test_unknown_branch(self):
        with pytest.raises(ValueError):
            load_branches().get("emoji")


class TestParseCatalog:
    def test_valid(self):
        catalog = parse_catalog(_raw())
        assert catalog.root_id == "base"
        assert "digits" in catalog
        assert catalog.get("base").stage_count == 2

    def test_root_defaults_to_first_branch(self):
        raw = _raw()
        del raw["root"]
        assert parse_catalog(raw).root_id == "base"

    def test_not_a_mapping(self):
        with pytest.raises(BranchCatalogError):
            parse_catalog(["base"])

    def test_no_branches(self):
        with pytest.raises(BranchCatalogError):
            parse_catalog({"branches": []})

    def test_missing_root(self):
        with pytest.raises(BranchCatalogError, match="Root branch"):
            parse_catalog(_raw(root="nope"))

    def test_duplicate_id(self):
        raw = _raw()
        raw["branches"].append({"id": "digits", "levels": [{"symbols": ["3"]}]})
        with pytest.raises(BranchCatalogError, match="Duplicate"):
            parse_catalog(raw)

    def test_repeated_symbol_in_branch(self):
        raw = _raw()
        raw["branches"][1]["levels"].append({"name": "Again", "symbols": ["1"]})
        with pytest.raises(BranchCatalogError, match="repeats"):
            parse_catalog(raw)

    def test_progressive_with_two_levels(self):
        raw = _raw()
        raw["branches"][0]["levels"].append({"name": "Extra", "symbols": ["d"]})
        with pytest.raises(BranchCatalogError, match="exactly one level"):
            parse_catalog(raw)

    def test_initial_symbols_out_of_range(self):
        raw = _raw()
        raw["branches"][0]["initial_symbols"] = 5
        with pytest.raises(BranchCatalogError):
            parse_catalog(raw)

    def test_bad_symbol(self):
        raw = _raw()
        raw["branches"][1]["levels"][0]["symbols"] = ["shift"]
        with pytest.raises(BranchCatalogError):
            parse_catalog(raw)

    def test_empty_level(self):
        raw = _raw()
        raw["branches"][1]["levels"] = [{"name": "Empty", "symbols": []}]
        with pytest.raises(BranchCatalogError):
            parse_catalog(raw)


class TestLoadFromPath:
    def test_yaml_file(self, tmp_path):
        path = tmp_path / "branches.yaml"
        path.write_text(
            "root: base\n"
            "branches:\n"
            "  - id: base\n"
            "    levels:\n"
            "      - name: Home\n"
            "        symbols: ['f', 'j', enter]\n"
        )
        catalog = load_branches(path)
        assert catalog.root.all_symbols() == ("f", "j", ENTER)
        assert load_branches() is not catalog
