"""Symbol adapter: normalised identifiers and sentinels for non-printable keys."""

from __future__ import annotations

BACKSPACE = "\x08"
TAB = "\t"
ENTER = "\n"
SPACE = " "

# Key names accepted wherever a symbol can be written out by hand (YAML, JSON).
SYMBOL_NAMES: dict[str, str] = {
    "backspace": BACKSPACE,
    "tab": TAB,
    "enter": ENTER,
    "return": ENTER,
    "newline": ENTER,
    "space": SPACE,
}

DISPLAY_NAMES: dict[str, str] = {
    BACKSPACE: "Backspace",
    TAB: "Tab",
    ENTER: "Enter",
    SPACE: "Space",
}

CONTROL_SYMBOLS: frozenset[str] = frozenset({BACKSPACE, TAB, ENTER})
WORD_BOUNDARY_SYMBOLS: frozenset[str] = frozenset({SPACE, TAB, ENTER})


def normalize_symbol(value: str) -> str:
    """Return the symbol for a single character or a key name like ``enter``."""

    if not isinstance(value, str) or not value:
        raise ValueError(f"Unsupported symbol: {value!r}")
    if len(value) == 1:
        return value
    symbol = SYMBOL_NAMES.get(value.strip().lower())
    if symbol is None:
        raise ValueError(f"Unsupported symbol: {value!r}")
    return symbol


def is_word_boundary(symbol: str) -> bool:
    return symbol in WORD_BOUNDARY_SYMBOLS


def is_backspace(symbol: str) -> bool:
    return symbol == BACKSPACE


def is_control(symbol: str) -> bool:
    return symbol in CONTROL_SYMBOLS


def display_name(symbol: str) -> str:
    return DISPLAY_NAMES.get(symbol, symbol)


def format_pair(key: tuple[str, ...]) -> str:
    """Human-readable label for a pair key, e.g. ``th`` or ``e+Enter``."""

    if any(symbol in DISPLAY_NAMES for symbol in key):
        return "+".join(display_name(symbol) for symbol in key)
    return "".join(key)


__all__ = [
    "BACKSPACE",
    "CONTROL_SYMBOLS",
    "DISPLAY_NAMES",
    "ENTER",
    "SPACE",
    "SYMBOL_NAMES",
    "TAB",
    "WORD_BOUNDARY_SYMBOLS",
    "display_name",
    "format_pair",
    "is_backspace",
    "is_control",
    "is_word_boundary",
    "normalize_symbol",
]
