"""Inventory matcher: normalised on-hand quantities keyed by item name and tier.

Claim inventories arrive as building slots that reference item or cargo ids.
This module resolves the ids against the item/cargo metadata, expands cargo
packages into unit quantities and accumulates everything into an
``InventoryLookup`` keyed by ``"normalized name:tier"``.

Lookups made on behalf of the cascade go through the item-mapping table so
that research-only goals read as zero and renamed items are found under their
in-game equivalent.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .config import PackageMultipliers
from .planner_logging import PlannerLogger, silent_logger

# "normalized name:tier" -> quantity on hand
InventoryLookup = Dict[str, int]

# Tiers tried, after the exact tier, when resolving a requested item
FALLBACK_TIERS: Tuple[int, ...] = (-1, 0)

_PACKAGE_PREFIX = re.compile(r"package\s+of\s+", re.IGNORECASE)
_PACKAGE_SUFFIX = re.compile(r"\s+package$", re.IGNORECASE)


# ---------------------------------------------------------------------------
# API payload models
# ---------------------------------------------------------------------------

class ApiItem(BaseModel):
    """Item or cargo metadata as served by the game-data API."""
    id: int
    name: str
    tier: Optional[int] = 0
    tag: Optional[str] = None
    rarity: Optional[int] = None

    model_config = ConfigDict(extra="ignore")


class InventorySlotContents(BaseModel):
    item_id: int
    item_type: Literal["item", "cargo"] = "item"
    quantity: int = 0
    rarity: Optional[int] = None

    model_config = ConfigDict(extra="ignore")


class InventorySlot(BaseModel):
    contents: Optional[InventorySlotContents] = None

    model_config = ConfigDict(extra="ignore")


class Building(BaseModel):
    building_name: str = Field(default="", alias="buildingName")
    building_nickname: Optional[str] = Field(default=None, alias="buildingNickname")
    inventory: List[InventorySlot] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ClaimInventories(BaseModel):
    """Snapshot of every building inventory in a claim plus id metadata."""
    buildings: List[Building] = Field(default_factory=list)
    items: List[ApiItem] = Field(default_factory=list)
    cargos: List[ApiItem] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


# ---------------------------------------------------------------------------
# Item mappings
# ---------------------------------------------------------------------------

class MappingType(str, Enum):
    """How a recipe item relates to what the inventory API can report."""
    RESEARCH = "research"
    INTERMEDIATE = "intermediate"
    GATHERED = "gathered"
    REAGENT = "reagent"
    MOB_DROP = "mob_drop"
    FISH = "fish"
    CONTAINER = "container"
    CODEX = "codex"
    STUDY_MATERIAL = "study_material"
    ALIAS = "alias"
    LIKELY_API = "likely_api"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> Optional["MappingType"]:
        if value is None:
            return None
        try:
            return cls(str(value))
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class ItemMapping:
    """Entry of the item-mapping table for a recipe item name."""
    type: Optional[MappingType] = None
    trackable: bool = True
    api_equivalent: Optional[str] = None


@dataclass(frozen=True)
class PackageEntry:
    """Exact package definition: a cargo id bundling ``quantity`` of ``name``."""
    name: str
    quantity: int


@dataclass(frozen=True)
class ItemQuantity:
    qty: int
    mapping: Optional[ItemMapping]
    trackable: bool


def parse_item_mappings(raw: Mapping[str, Any]) -> Dict[str, ItemMapping]:
    """
    Parse an item-mapping document.

    Accepts either ``{"mappings": {name: {...}}}`` or a bare
    ``{name: {...}}`` mapping. Entries use ``trackable``, ``type`` and the
    optional ``apiEquivalent`` alias.
    """
    entries = raw.get("mappings", raw) if isinstance(raw, Mapping) else {}
    result: Dict[str, ItemMapping] = {}
    for name, entry in entries.items():
        if not isinstance(entry, Mapping):
            continue
        result[str(name)] = ItemMapping(
            type=MappingType.parse(entry.get("type")),
            trackable=bool(entry.get("trackable", True)),
            api_equivalent=entry.get("apiEquivalent") or None,
        )
    return result


def parse_packages(raw: Mapping[str, Any]) -> Dict[int, PackageEntry]:
    """Parse a package table keyed by cargo id (``byCargoId`` section)."""
    section = raw.get("byCargoId", raw) if isinstance(raw, Mapping) else {}
    result: Dict[int, PackageEntry] = {}
    for cargo_id, entry in section.items():
        if not isinstance(entry, Mapping) or "quantity" not in entry:
            continue
        result[int(cargo_id)] = PackageEntry(
            name=str(entry.get("name", "")),
            quantity=int(entry["quantity"]),
        )
    return result


# ---------------------------------------------------------------------------
# Name handling
# ---------------------------------------------------------------------------

def normalize_name(name: str) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    return " ".join(name.lower().split())


def create_key(name: str, tier: int) -> str:
    return f"{normalize_name(name)}:{tier}"


def is_package(name: str, tag: str = "") -> bool:
    return "package" in name.lower() or "package" in (tag or "").lower()


def extract_base_item_name(name: str) -> str:
    """Strip "Package of" / " Package" wrapping from a cargo name."""
    stripped = _PACKAGE_PREFIX.sub("", name, count=1)
    stripped = _PACKAGE_SUFFIX.sub("", stripped)
    return stripped.strip()


# ---------------------------------------------------------------------------
# Lookup construction and resolution
# ---------------------------------------------------------------------------

def build_meta_lookups(
    items: Iterable[ApiItem],
    cargos: Iterable[ApiItem],
) -> Tuple[Dict[int, ApiItem], Dict[int, ApiItem]]:
    """Index item and cargo metadata by id."""
    item_meta = {item.id: item for item in items or []}
    cargo_meta = {cargo.id: cargo for cargo in cargos or []}
    return item_meta, cargo_meta


def build_inventory_lookup(
    buildings: Iterable[Building],
    item_meta: Mapping[int, ApiItem],
    cargo_meta: Mapping[int, ApiItem],
    multipliers: Optional[PackageMultipliers] = None,
    packages: Optional[Mapping[int, PackageEntry]] = None,
    logger: Optional[PlannerLogger] = None,
) -> InventoryLookup:
    """
    Accumulate on-hand quantities across every building slot.

    Parameters
    ----------
    buildings : iterable of Building
        Building inventories from the claim snapshot.
    item_meta, cargo_meta : mapping
        Metadata indexed by id (see ``build_meta_lookups``).
    multipliers : PackageMultipliers, optional
        Substring-keyed units per package. Defaults to 100/500/1000.
    packages : mapping, optional
        Exact cargo id -> PackageEntry table, consulted before the
        substring heuristic.

    Returns
    -------
    dict
        ``"normalized name:tier"`` -> quantity. Slots whose id has no
        metadata are skipped.
    """
    multipliers = multipliers or PackageMultipliers()
    packages = packages or {}
    logger = logger or silent_logger()

    lookup: InventoryLookup = {}
    slot_count = 0
    package_count = 0

    for building in buildings:
        for slot in building.inventory or []:
            contents = slot.contents
            if contents is None:
                continue
            slot_count += 1

            is_cargo = contents.item_type == "cargo"
            meta = cargo_meta.get(contents.item_id) if is_cargo else item_meta.get(contents.item_id)
            if meta is None:
                continue

            tag = meta.tag or ""
            name = meta.name
            qty = contents.quantity
            exact = packages.get(contents.item_id) if is_cargo else None

            if exact is not None:
                name = exact.name or extract_base_item_name(name)
                qty *= exact.quantity
                package_count += 1
            elif is_package(name, tag):
                name = extract_base_item_name(name)
                qty *= multipliers.multiplier_for(name, tag)
                package_count += 1

            tier = meta.tier if meta.tier is not None else 0
            key = create_key(name, tier)
            lookup[key] = lookup.get(key, 0) + qty

    logger.log_inventory_built(slot_count, package_count, lookup)
    return lookup


def build_lookup_from_snapshot(
    snapshot: ClaimInventories,
    multipliers: Optional[PackageMultipliers] = None,
    packages: Optional[Mapping[int, PackageEntry]] = None,
    logger: Optional[PlannerLogger] = None,
) -> InventoryLookup:
    item_meta, cargo_meta = build_meta_lookups(snapshot.items, snapshot.cargos)
    return build_inventory_lookup(
        snapshot.buildings, item_meta, cargo_meta,
        multipliers=multipliers, packages=packages, logger=logger,
    )


def get_item_quantity(
    lookup: Mapping[str, int],
    name: str,
    tier: int,
    mappings: Optional[Mapping[str, ItemMapping]] = None,
) -> ItemQuantity:
    """
    Resolve the on-hand quantity for a recipe item.

    Non-trackable mapped items always resolve to 0. Otherwise the mapped
    ``api_equivalent`` name (or the item name itself) is tried at the exact
    tier, then tier -1 (tierless items), then tier 0. An item absent from
    both inventory and mapping table resolves to 0.
    """
    mapping = (mappings or {}).get(name)

    if mapping is not None and not mapping.trackable:
        return ItemQuantity(qty=0, mapping=mapping, trackable=False)

    search_name = (mapping.api_equivalent if mapping else None) or name
    for candidate_tier in (tier,) + FALLBACK_TIERS:
        key = create_key(search_name, candidate_tier)
        if key in lookup:
            return ItemQuantity(qty=lookup[key], mapping=mapping, trackable=True)

    return ItemQuantity(qty=0, mapping=mapping, trackable=True)
