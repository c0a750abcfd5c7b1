"""Recipe expander: ideal quantities for a codex, assuming nothing on hand.

A codex tier is a forest of research trees. Expansion is a pure recursive
map that multiplies every node's per-completion quantity by the batch count
(the number of codex completions being planned). The batch count is passed
unchanged to every child; children are never multiplied by the parent's
resolved quantity.

Codex documents come in two shapes:

* tree form, where each research carries nested ``children``;
* graph form, where each research lists ``inputs`` as ``"Name:tier"``
  references into a separate recipes document. These are resolved into the
  tree form before expansion.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from .inventory import ItemMapping, MappingType
from .planner_logging import PlannerLogger, silent_logger

# Recipe category -> mapping type, for items missing from the mapping table
CATEGORY_TO_MAPPING: Dict[str, MappingType] = {
    "gathered": MappingType.GATHERED,
    "intermediate": MappingType.INTERMEDIATE,
    "refined": MappingType.LIKELY_API,
    "research": MappingType.RESEARCH,
    "study": MappingType.STUDY_MATERIAL,
    "equipment": MappingType.INTERMEDIATE,
    "tool": MappingType.INTERMEDIATE,
    "food": MappingType.INTERMEDIATE,
    "building": MappingType.INTERMEDIATE,
}

TRACKABLE_CATEGORIES = frozenset({"gathered", "refined", "study"})


class RecipeGraphError(ValueError):
    """Raised when a graph-form codex references a missing recipe or loops."""


@dataclass
class RecipeNode:
    """Raw recipe tree node: ``qty`` is needed per completion of the parent."""
    name: str
    tier: int
    qty: int = 1
    children: List[RecipeNode] = field(default_factory=list)
    category: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> RecipeNode:
        return cls(
            name=str(raw.get("name") or raw.get("id") or ""),
            tier=int(raw.get("tier") or 0),
            qty=int(raw.get("qty") or 1),
            children=[cls.from_dict(child) for child in raw.get("children") or []],
            category=raw.get("type"),
        )


@dataclass
class CodexTier:
    name: str
    tier: int
    researches: List[RecipeNode] = field(default_factory=list)


@dataclass
class ExpandedNode:
    name: str
    tier: int
    recipe_qty: int
    ideal_qty: int
    trackable: bool
    mapping_type: Optional[MappingType]
    children: List[ExpandedNode] = field(default_factory=list)


@dataclass
class ExpandedCodex:
    name: str
    tier: int
    target_count: int
    researches: List[ExpandedNode] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Codex document parsing
# ---------------------------------------------------------------------------

def split_ref(ref: str) -> Tuple[str, int]:
    """Split a ``"Name:tier"`` reference into its parts."""
    name, sep, tier = ref.rpartition(":")
    if not sep:
        return ref, 0
    try:
        return name, int(tier)
    except ValueError:
        return ref, 0


def _resolve_ref(
    ref: str,
    qty: Any,
    recipes: Mapping[str, Mapping[str, Any]],
    path: Tuple[str, ...],
) -> RecipeNode:
    if ref in path:
        raise RecipeGraphError(f"Cycle detected: {' -> '.join(path + (ref,))}")

    recipe = recipes.get(ref)
    if recipe is None:
        raise RecipeGraphError(f"Recipe not found: {ref}")

    name, tier = split_ref(ref)
    branch = path + (ref,)
    return RecipeNode(
        name=str(recipe.get("name", name)),
        tier=int(recipe.get("tier", tier)),
        qty=int(qty or 1),
        category=recipe.get("type"),
        children=[
            _resolve_ref(inp["ref"], inp.get("qty"), recipes, branch)
            for inp in recipe.get("inputs") or []
        ],
    )


def resolve_research(
    raw: Mapping[str, Any],
    recipes: Mapping[str, Mapping[str, Any]],
) -> RecipeNode:
    """Resolve a graph-form research (``id`` + ``inputs``) into a tree."""
    return RecipeNode(
        name=str(raw.get("id") or raw.get("name") or ""),
        tier=int(raw.get("tier") or 0),
        qty=1,
        category="research",
        children=[
            _resolve_ref(inp["ref"], inp.get("qty"), recipes, ())
            for inp in raw.get("inputs") or []
        ],
    )


def parse_codex_document(
    raw: Mapping[str, Any],
    recipes: Optional[Mapping[str, Any]] = None,
) -> Dict[int, CodexTier]:
    """
    Parse a codex document into codex tiers keyed by tier number.

    Parameters
    ----------
    raw : mapping
        Either ``{"tiers": {tier: {...}}}`` or a bare ``{tier: {...}}``
        mapping. Each tier holds ``name`` and ``researches``.
    recipes : mapping, optional
        Recipes document (``{"recipes": {"Name:tier": {...}}}``), needed
        when researches are given in graph form.

    Returns
    -------
    dict
        Codex tier number -> CodexTier.
    """
    tiers_raw = raw.get("tiers", raw)
    recipe_table: Mapping[str, Mapping[str, Any]] = {}
    if recipes:
        recipe_table = recipes.get("recipes", recipes)

    result: Dict[int, CodexTier] = {}
    for tier_key, block in tiers_raw.items():
        if not isinstance(block, Mapping):
            continue
        tier = int(block.get("tier", tier_key))
        researches: List[RecipeNode] = []
        for research in block.get("researches") or []:
            if "inputs" in research:
                if not recipe_table:
                    raise RecipeGraphError(
                        f"Research {research.get('id')!r} uses recipe references "
                        "but no recipes document was provided"
                    )
                researches.append(resolve_research(research, recipe_table))
            else:
                researches.append(RecipeNode.from_dict(research))
        result[tier] = CodexTier(
            name=str(block.get("name") or f"Tier {tier} Codex"),
            tier=tier,
            researches=researches,
        )
    return result


# ---------------------------------------------------------------------------
# Expansion
# ---------------------------------------------------------------------------

def resolve_tracking(
    node: RecipeNode,
    mappings: Optional[Mapping[str, ItemMapping]],
) -> Tuple[bool, Optional[MappingType]]:
    """Trackable flag and mapping type for a node; mapping table first."""
    mapping = (mappings or {}).get(node.name)
    if mapping is not None:
        return mapping.trackable, mapping.type
    if node.category:
        return node.category in TRACKABLE_CATEGORIES, CATEGORY_TO_MAPPING.get(node.category, MappingType.UNKNOWN)
    return True, None


def expand_node(
    node: RecipeNode,
    batch_count: int,
    mappings: Optional[Mapping[str, ItemMapping]] = None,
) -> ExpandedNode:
    recipe_qty = node.qty or 1
    trackable, mapping_type = resolve_tracking(node, mappings)
    return ExpandedNode(
        name=node.name,
        tier=node.tier,
        recipe_qty=recipe_qty,
        ideal_qty=recipe_qty * batch_count,
        trackable=trackable,
        mapping_type=mapping_type,
        # Children get the batch count, not this node's ideal quantity
        children=[expand_node(child, batch_count, mappings) for child in node.children],
    )


def expand_codex(
    codex: CodexTier,
    batch_count: int,
    mappings: Optional[Mapping[str, ItemMapping]] = None,
    logger: Optional[PlannerLogger] = None,
) -> ExpandedCodex:
    """
    Expand every research of a codex tier for ``batch_count`` completions.

    Research roots are goals, never inventory items: they are always
    expanded as non-trackable research nodes.
    """
    if batch_count <= 0:
        raise ValueError(f"batch_count must be positive, got {batch_count}")
    logger = logger or silent_logger()

    researches = []
    for research in codex.researches:
        root = expand_node(research, batch_count, mappings)
        root.trackable = False
        root.mapping_type = MappingType.RESEARCH
        researches.append(root)

    expanded = ExpandedCodex(
        name=codex.name,
        tier=codex.tier,
        target_count=batch_count,
        researches=researches,
    )
    logger.log_expansion(codex.name, len(researches),
                         sum(1 for _ in iter_expanded(expanded)), batch_count)
    return expanded


def iter_expanded(expanded: ExpandedCodex) -> Iterator[Tuple[str, ExpandedNode]]:
    """Yield ``(research name, node)`` for every node, depth first."""
    for research in expanded.researches:
        stack = [research]
        while stack:
            node = stack.pop()
            yield research.name, node
            stack.extend(reversed(node.children))
