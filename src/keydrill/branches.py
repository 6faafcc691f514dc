"""Skill-tree branch catalogue: YAML loader and validation."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .symbols import normalize_symbol

PACKAGE_ROOT = Path(__file__).resolve().parent
DATA_DIR = PACKAGE_ROOT / "data"
BRANCHES_FILE = DATA_DIR / "branches.yaml"

_catalog_cache: BranchCatalog | None = None


class BranchCatalogError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class LevelDefinition:
    name: str
    symbols: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class BranchDefinition:
    id: str
    name: str
    levels: tuple[LevelDefinition, ...]
    # Set on a progressive branch: a single level unlocked one symbol at a time,
    # starting from this many symbols.
    initial_symbols: int | None = None

    @property
    def progressive(self) -> bool:
        return self.initial_symbols is not None

    @property
    def stage_count(self) -> int:
        """Number of values ``current_level`` can take."""
        if self.initial_symbols is not None:
            return len(self.levels[0].symbols) - self.initial_symbols + 1
        return len(self.levels)

    def all_symbols(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(s for level in self.levels for s in level.symbols))


@dataclass(frozen=True, slots=True)
class BranchCatalog:
    root_id: str
    branches: tuple[BranchDefinition, ...]
    _by_id: dict[str, BranchDefinition] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_id", {branch.id: branch for branch in self.branches})

    @property
    def root(self) -> BranchDefinition:
        return self._by_id[self.root_id]

    @property
    def branch_ids(self) -> tuple[str, ...]:
        return tuple(branch.id for branch in self.branches)

    def get(self, branch_id: str) -> BranchDefinition:
        branch = self._by_id.get(branch_id)
        if branch is None:
            raise ValueError(f"Unknown branch: {branch_id}")
        return branch

    def __contains__(self, branch_id: object) -> bool:
        return branch_id in self._by_id

    def all_symbols(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(s for branch in self.branches for s in branch.all_symbols()))


def _parse_level(entry: Any, branch_id: str) -> LevelDefinition:
    if not isinstance(entry, dict):
        raise BranchCatalogError(f"Level in branch '{branch_id}' must be a mapping")
    raw_symbols = entry.get("symbols") or []
    if not isinstance(raw_symbols, list) or not raw_symbols:
        raise BranchCatalogError(f"Level in branch '{branch_id}' has no symbols")
    try:
        symbols = tuple(normalize_symbol(str(value)) for value in raw_symbols)
    except ValueError as exc:
        raise BranchCatalogError(f"Branch '{branch_id}': {exc}") from exc
    return LevelDefinition(name=str(entry.get("name", "")), symbols=symbols)


def parse_catalog(raw: Any) -> BranchCatalog:
    """Build a catalogue from the parsed YAML mapping."""
    if not isinstance(raw, dict):
        raise BranchCatalogError("Branch catalogue must be a mapping")
    entries = raw.get("branches")
    if not isinstance(entries, list) or not entries:
        raise BranchCatalogError("Branch catalogue has no branches")

    branches: list[BranchDefinition] = []
    for entry in entries:
        if not isinstance(entry, dict) or "id" not in entry:
            raise BranchCatalogError("Every branch needs an id")
        branch_id = str(entry["id"])
        levels = tuple(_parse_level(level, branch_id) for level in entry.get("levels") or [])
        initial = entry.get("initial_symbols")
        branches.append(
            BranchDefinition(
                id=branch_id,
                name=str(entry.get("name", branch_id)),
                levels=levels,
                initial_symbols=int(initial) if initial is not None else None,
            )
        )

    catalog = BranchCatalog(root_id=str(raw.get("root", branches[0].id)), branches=tuple(branches))
    validate_catalog(catalog)
    return catalog


def validate_catalog(catalog: BranchCatalog) -> None:
    """Raise BranchCatalogError on duplicate ids, a missing root or malformed levels."""
    seen: set[str] = set()
    for branch in catalog.branches:
        if branch.id in seen:
            raise BranchCatalogError(f"Duplicate branch id '{branch.id}'")
        seen.add(branch.id)
        if not branch.levels:
            raise BranchCatalogError(f"Branch '{branch.id}' has no levels")

        symbols = [s for level in branch.levels for s in level.symbols]
        if len(symbols) != len(set(symbols)):
            raise BranchCatalogError(f"Branch '{branch.id}' repeats a symbol")

        if branch.initial_symbols is not None:
            if len(branch.levels) != 1:
                raise BranchCatalogError(
                    f"Progressive branch '{branch.id}' must have exactly one level"
                )
            if not 1 <= branch.initial_symbols <= len(branch.levels[0].symbols):
                raise BranchCatalogError(
                    f"Branch '{branch.id}' has initial_symbols out of range"
                )

    if catalog.root_id not in seen:
        raise BranchCatalogError(f"Root branch '{catalog.root_id}' is not defined")


def load_branches(path: Path | None = None) -> BranchCatalog:
    """Parse the YAML catalogue. The bundled file is cached in memory."""
    global _catalog_cache
    if _catalog_cache is not None and path is None:
        return _catalog_cache

    file_path = path or BRANCHES_FILE
    with open(file_path) as f:
        raw = yaml.safe_load(f)

    catalog = parse_catalog(raw)
    if path is None:
        _catalog_cache = catalog
    return catalog


def clear_cache() -> None:
    """Clear the in-memory catalogue cache."""
    global _catalog_cache
    _catalog_cache = None


__all__ = [
    "BRANCHES_FILE",
    "BranchCatalog",
    "BranchCatalogError",
    "BranchDefinition",
    "LevelDefinition",
    "clear_cache",
    "load_branches",
    "parse_catalog",
    "validate_catalog",
]
