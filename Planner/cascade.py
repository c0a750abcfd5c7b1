"""
Cascade calculator: applies on-hand inventory to an expanded codex.

The calculation runs in three passes:

1. Aggregation. Every occurrence of an ``(name, tier)`` key across all
   research trees is summed into one global requirement. The key's on-hand
   quantity is looked up once and turned into a single unmet fraction
   (``scale``) shared by every position that uses the key.
2. Rebuild. Each research tree is rebuilt top-down. A node's effective
   requirement is its ideal quantity scaled by the unmet fraction of its
   ancestors, so ingredients of partly-stocked intermediates shrink
   proportionally and ingredients of fully-stocked ones drop to zero.
3. Study journals. Journal subtrees that recur identically under every
   research are pulled out and merged into a single pseudo-research.

Scales are kept as exact fractions so ceilings and rounding do not drift.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from fractions import Fraction
from typing import Dict, Iterable, List, Mapping, Optional, Pattern, Tuple, Union

from .config import DEFAULT_STUDY_JOURNAL_PATTERN
from .expander import ExpandedCodex, ExpandedNode
from .inventory import InventoryLookup, ItemMapping, MappingType, create_key, get_item_quantity
from .planner_logging import LogLevel, PlannerLogger, silent_logger


class NodeStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    MISSING = "missing"


@dataclass
class AggregatedItem:
    """Global requirement for one ``(name, tier)`` key across the whole codex."""
    name: str
    tier: int
    required: int = 0
    have: int = 0
    deficit: int = 0
    satisfied: bool = False
    scale: Fraction = Fraction(0)
    trackable: bool = True
    mapping_type: Optional[MappingType] = None

    def finalize(self) -> None:
        self.deficit = max(0, self.required - self.have)
        self.satisfied = self.deficit == 0
        self.scale = Fraction(self.deficit, self.required) if self.required > 0 else Fraction(0)


@dataclass
class ProcessedNode:
    name: str
    tier: int
    recipe_qty: int
    ideal_qty: int
    required: int
    have: int
    deficit: int
    contribution: int
    pct_complete: int
    status: NodeStatus
    satisfied: bool
    satisfied_by_parent: bool
    trackable: bool
    mapping_type: Optional[MappingType]
    children: List[ProcessedNode] = field(default_factory=list)


@dataclass
class ProcessedCodex:
    name: str
    tier: int
    target_count: int
    researches: List[ProcessedNode] = field(default_factory=list)
    study_journals: Optional[ProcessedNode] = None


def round_half_up(value: Union[Fraction, float]) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return math.floor(value + Fraction(1, 2))


def percent(part: int, whole: int) -> int:
    """Whole-number percentage of ``part`` in ``whole``; 100 when ``whole`` is 0."""
    if whole <= 0:
        return 100
    return round_half_up(Fraction(100 * part, whole))


# ---------------------------------------------------------------------------
# Pass 1: aggregation
# ---------------------------------------------------------------------------

def _walk(node: ExpandedNode) -> Iterable[ExpandedNode]:
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def aggregate_requirements(
    expanded: ExpandedCodex,
    lookup: InventoryLookup,
    mappings: Optional[Mapping[str, ItemMapping]] = None,
    logger: Optional[PlannerLogger] = None,
) -> Dict[str, AggregatedItem]:
    """
    Sum ideal quantities per key and resolve each key's on-hand quantity once.

    Returns
    -------
    dict
        ``"normalized name:tier"`` -> AggregatedItem, in first-seen order.
    """
    logger = logger or silent_logger()
    items: Dict[str, AggregatedItem] = {}

    for research in expanded.researches:
        for node in _walk(research):
            key = create_key(node.name, node.tier)
            item = items.get(key)
            if item is None:
                found = get_item_quantity(lookup, node.name, node.tier, mappings)
                if found.mapping is None and found.qty == 0:
                    logger.log_data_gap(node.name, node.tier)
                item = AggregatedItem(
                    name=node.name,
                    tier=node.tier,
                    have=found.qty,
                    trackable=node.trackable,
                    mapping_type=node.mapping_type,
                )
                items[key] = item
            item.required += node.ideal_qty

    for item in items.values():
        item.finalize()
    return items


# ---------------------------------------------------------------------------
# Pass 2: rebuild
# ---------------------------------------------------------------------------

def build_node(
    node: ExpandedNode,
    items: Mapping[str, AggregatedItem],
    parent_satisfied: bool = False,
    parent_scale: Fraction = Fraction(1),
    logger: Optional[PlannerLogger] = None,
) -> ProcessedNode:
    """
    Rebuild one expanded node with requirement, deficit and status.

    ``parent_scale`` is the compounded unmet fraction of every ancestor;
    research roots are built with a scale of 1.
    """
    item = items[create_key(node.name, node.tier)]

    satisfied = parent_satisfied or item.satisfied
    required = math.ceil(node.ideal_qty * parent_scale)
    deficit = 0 if satisfied else math.ceil(required * item.scale)
    contribution = required - deficit

    if satisfied:
        status = NodeStatus.COMPLETE
    elif contribution > 0:
        status = NodeStatus.PARTIAL
    else:
        status = NodeStatus.MISSING

    if logger is not None:
        logger.log_node(node.name, node.tier, required, deficit, status.value)

    child_scale = Fraction(0) if satisfied else item.scale * parent_scale
    return ProcessedNode(
        name=node.name,
        tier=node.tier,
        recipe_qty=node.recipe_qty,
        ideal_qty=node.ideal_qty,
        required=required,
        have=item.have,
        deficit=deficit,
        contribution=contribution,
        pct_complete=percent(contribution, required),
        status=status,
        satisfied=satisfied,
        satisfied_by_parent=parent_satisfied,
        trackable=node.trackable,
        mapping_type=node.mapping_type,
        children=[build_node(child, items, satisfied, child_scale, logger)
                  for child in node.children],
    )


# ---------------------------------------------------------------------------
# Pass 3: study journal extraction
# ---------------------------------------------------------------------------

def _multiply_node(node: ProcessedNode, multiplier: int) -> ProcessedNode:
    required = node.required * multiplier
    contribution = node.contribution * multiplier
    return replace(
        node,
        required=required,
        deficit=node.deficit * multiplier,
        contribution=contribution,
        pct_complete=percent(contribution, required),
        children=[_multiply_node(child, multiplier) for child in node.children],
    )


def compute_overall_status(node: ProcessedNode) -> NodeStatus:
    """
    Roll a status up from the subtree.

    A missing or partial node keeps its own status; a complete node becomes
    partial when anything beneath it is not complete.
    """
    if node.status != NodeStatus.COMPLETE:
        return node.status
    for child in node.children:
        if compute_overall_status(child) != NodeStatus.COMPLETE:
            return NodeStatus.PARTIAL
    return node.status


def extract_study_journals(
    researches: List[ProcessedNode],
    pattern: Union[str, Pattern[str]] = DEFAULT_STUDY_JOURNAL_PATTERN,
) -> Tuple[List[ProcessedNode], Optional[ProcessedNode]]:
    """
    Remove journal children from each research and merge them into one node.

    Parameters
    ----------
    researches : list of ProcessedNode
        Rebuilt research roots.
    pattern : str or compiled pattern
        Matched (``re.search``) against each direct child's name.

    Returns
    -------
    (list, ProcessedNode or None)
        Pruned researches and the merged journal cluster. When no research
        has a journal child the input list is returned unchanged with None.
        The cluster is the first match with every quantity multiplied by the
        number of researches it was taken from.
    """
    regex = re.compile(pattern) if isinstance(pattern, str) else pattern

    extracted: List[ProcessedNode] = []
    pruned: List[ProcessedNode] = []
    for research in researches:
        journals = [c for c in research.children if regex.search(c.name)]
        if journals:
            extracted.append(journals[0])
        pruned.append(replace(
            research,
            children=[c for c in research.children if not regex.search(c.name)],
        ))

    if not extracted:
        return researches, None

    cluster = _multiply_node(extracted[0], len(extracted))
    cluster.status = compute_overall_status(cluster)
    return pruned, cluster


def apply_cascade(
    expanded: ExpandedCodex,
    lookup: InventoryLookup,
    mappings: Optional[Mapping[str, ItemMapping]] = None,
    journal_pattern: Union[str, Pattern[str]] = DEFAULT_STUDY_JOURNAL_PATTERN,
    logger: Optional[PlannerLogger] = None,
) -> ProcessedCodex:
    """
    Apply inventory to an expanded codex.

    Parameters
    ----------
    expanded : ExpandedCodex
        Output of ``expand_codex``.
    lookup : InventoryLookup
        On-hand quantities from the inventory matcher.
    mappings : mapping, optional
        Item-mapping table used for aliases and non-trackable items.
    journal_pattern : str or compiled pattern
        Names of direct research children pulled into the journal cluster.

    Returns
    -------
    ProcessedCodex
        Annotated research trees and the study-journal cluster (or None).
    """
    logger = logger or silent_logger()

    items = aggregate_requirements(expanded, lookup, mappings, logger)
    logger.log_aggregation(items.values())

    node_logger = logger if logger.enabled_for(LogLevel.TRACE) else None
    full = [build_node(r, items, False, Fraction(1), node_logger) for r in expanded.researches]

    regex = re.compile(journal_pattern) if isinstance(journal_pattern, str) else journal_pattern
    researches, journals = extract_study_journals(full, regex)
    branch_count = sum(1 for r in full if any(regex.search(c.name) for c in r.children))
    logger.log_study_journals(branch_count, journals.name if journals else None)

    return ProcessedCodex(
        name=expanded.name,
        tier=expanded.tier,
        target_count=expanded.target_count,
        researches=researches,
        study_journals=journals,
    )


# ---------------------------------------------------------------------------
# Collection helpers
# ---------------------------------------------------------------------------

@dataclass
class TrackableItem:
    name: str
    tier: int
    required: int
    have: int
    deficit: int
    pct_complete: int
    mapping_type: Optional[MappingType] = None


@dataclass
class FirstTrackableItem(TrackableItem):
    sources: List[str] = field(default_factory=list)


@dataclass
class SecondLevelItem:
    name: str
    tier: int
    required: int
    have: int
    deficit: int
    trackable: bool
    mapping_type: Optional[MappingType] = None


def _branches(processed: ProcessedCodex) -> List[ProcessedNode]:
    """Research roots followed by the journal cluster, when there is one."""
    branches = list(processed.researches)
    if processed.study_journals is not None:
        branches.append(processed.study_journals)
    return branches


def _by_deficit(items: Iterable[TrackableItem]) -> List:
    return sorted(items, key=lambda item: -item.deficit)


def collect_trackable_items(processed: ProcessedCodex) -> List[TrackableItem]:
    """
    Every trackable node with a requirement, deduplicated by key.

    Nodes covered by a satisfied ancestor are skipped. Requirements of the
    same key are summed; the result is sorted by deficit, largest first.
    """
    totals: Dict[str, List] = {}

    def collect(node: ProcessedNode) -> None:
        if node.trackable and node.required > 0 and not node.satisfied_by_parent:
            key = create_key(node.name, node.tier)
            entry = totals.setdefault(key, [node, 0])
            entry[1] += node.required
        for child in node.children:
            collect(child)

    for branch in _branches(processed):
        collect(branch)

    items = []
    for node, required in totals.values():
        items.append(TrackableItem(
            name=node.name,
            tier=node.tier,
            required=required,
            have=node.have,
            deficit=max(0, required - node.have),
            pct_complete=percent(min(node.have, required), required),
            mapping_type=node.mapping_type,
        ))
    return _by_deficit(items)


def collect_first_trackable(processed: ProcessedCodex) -> List[FirstTrackableItem]:
    """
    The first trackable node down every path: what actually has to be gathered.

    Descent starts below each research root and stops at the first trackable
    node. The journal cluster is itself a candidate. ``sources`` lists the
    research names each item was reached from.
    """
    totals: Dict[str, List] = {}

    def find_first(node: ProcessedNode, source: str) -> None:
        if node.satisfied_by_parent:
            return
        if node.trackable:
            key = create_key(node.name, node.tier)
            entry = totals.setdefault(key, [node, 0, []])
            entry[1] += node.required
            if source not in entry[2]:
                entry[2].append(source)
            return
        for child in node.children:
            find_first(child, source)

    for research in processed.researches:
        for child in research.children:
            find_first(child, research.name)
    if processed.study_journals is not None:
        find_first(processed.study_journals, processed.study_journals.name)

    items = []
    for node, required, sources in totals.values():
        items.append(FirstTrackableItem(
            name=node.name,
            tier=node.tier,
            required=required,
            have=node.have,
            deficit=max(0, required - node.have),
            pct_complete=percent(min(node.have, required), required),
            mapping_type=node.mapping_type,
            sources=sources,
        ))
    return _by_deficit(items)


def collect_second_level(processed: ProcessedCodex) -> List[SecondLevelItem]:
    """Direct children of the research roots, deduplicated by key."""
    totals: Dict[str, List] = {}
    for research in processed.researches:
        for child in research.children:
            if child.satisfied_by_parent:
                continue
            key = create_key(child.name, child.tier)
            entry = totals.setdefault(key, [child, 0])
            entry[1] += child.required

    items = [
        SecondLevelItem(
            name=node.name,
            tier=node.tier,
            required=required,
            have=node.have,
            deficit=max(0, required - node.have),
            trackable=node.trackable,
            mapping_type=node.mapping_type,
        )
        for node, required in totals.values()
    ]
    return _by_deficit(items)
