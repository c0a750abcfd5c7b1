"""
Progress aggregation and export.

Turns a processed codex into flat summaries: overall and per-research
percent complete, activity-grouped gathering lists, Discord-style export
text, CSV and pandas frames, and the flattened plan list.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .cascade import (
    FirstTrackableItem,
    ProcessedCodex,
    ProcessedNode,
    SecondLevelItem,
    TrackableItem,
    collect_first_trackable,
    collect_second_level,
    collect_trackable_items,
    percent,
    round_half_up,
)
from .config import DEFAULT_ACTIVITY_KEYWORDS, FALLBACK_ACTIVITY
from .inventory import MappingType, create_key
from .planner_logging import PlannerLogger, silent_logger

CSV_COLUMNS = ["activity", "name", "tier", "required", "have", "deficit"]

ActivityKeywords = Mapping[str, Sequence[str]]


@dataclass
class ProgressOverall:
    percent: int
    total_required: int
    total_contribution: int
    complete_count: int
    total_items: int


@dataclass
class ResearchProgress:
    percent: int
    total_required: int
    total_contribution: int
    items: List[FirstTrackableItem] = field(default_factory=list)


@dataclass
class ActivityGroup:
    activity: str
    items: List[TrackableItem] = field(default_factory=list)
    total_deficit: int = 0


@dataclass
class ProgressReport:
    overall: ProgressOverall
    by_research: Dict[str, ResearchProgress]
    by_activity: Dict[str, ActivityGroup]
    trackable_items: List[TrackableItem]
    first_trackable: List[FirstTrackableItem]
    second_level: List[SecondLevelItem]
    target_count: int


@dataclass
class PlanItem:
    """One deduplicated entry of the flattened plan."""
    name: str
    tier: int
    required: int
    have: int
    deficit: int
    pct_complete: int
    activity: str
    actionable: bool
    mapping_type: Optional[MappingType] = None


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------

def activity_order(activity_keywords: Optional[ActivityKeywords] = None) -> List[str]:
    """Configured activities in order, with the fallback activity last."""
    keywords = DEFAULT_ACTIVITY_KEYWORDS if activity_keywords is None else activity_keywords
    order = [a for a in keywords if a != FALLBACK_ACTIVITY]
    order.append(FALLBACK_ACTIVITY)
    return order


def categorize_by_activity(name: str, activity_keywords: Optional[ActivityKeywords] = None) -> str:
    """First activity with a keyword contained in the lower-cased name."""
    keywords = DEFAULT_ACTIVITY_KEYWORDS if activity_keywords is None else activity_keywords
    lower = name.lower()
    for activity, words in keywords.items():
        if any(word in lower for word in words):
            return activity
    return FALLBACK_ACTIVITY


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------

def _summarize(items: Iterable[TrackableItem]) -> Tuple[int, int, int, int]:
    total_required = 0
    total_contribution = 0
    total_items = 0
    complete_count = 0
    for item in items:
        total_required += item.required
        total_contribution += min(item.have, item.required)
        total_items += 1
        if item.deficit == 0:
            complete_count += 1
    return total_required, total_contribution, total_items, complete_count


def calculate_progress(
    processed: ProcessedCodex,
    first_trackable: Optional[List[FirstTrackableItem]] = None,
) -> ProgressOverall:
    """
    Overall completion over the first-trackable items.

    The first trackable node of every path is what has to be gathered, so
    ingredients of stocked intermediates do not count twice.
    """
    items = collect_first_trackable(processed) if first_trackable is None else first_trackable
    total_required, total_contribution, total_items, complete_count = _summarize(items)
    return ProgressOverall(
        percent=percent(total_contribution, total_required),
        total_required=total_required,
        total_contribution=total_contribution,
        complete_count=complete_count,
        total_items=total_items,
    )


def _research_progress(branch: ProcessedCodex) -> ResearchProgress:
    items = collect_first_trackable(branch)
    total_required, total_contribution, _, _ = _summarize(items)
    return ResearchProgress(
        percent=percent(total_contribution, total_required),
        total_required=total_required,
        total_contribution=total_contribution,
        items=items,
    )


def calculate_progress_by_research(processed: ProcessedCodex) -> Dict[str, ResearchProgress]:
    """Completion per research root, plus the journal cluster when present."""
    by_research: Dict[str, ResearchProgress] = {}
    for research in processed.researches:
        branch = ProcessedCodex(processed.name, processed.tier, processed.target_count, [research])
        by_research[research.name] = _research_progress(branch)

    journals = processed.study_journals
    if journals is not None:
        branch = ProcessedCodex(processed.name, processed.tier, processed.target_count, [], journals)
        by_research[journals.name] = _research_progress(branch)
    return by_research


def group_by_activity(
    items: Iterable[TrackableItem],
    activity_keywords: Optional[ActivityKeywords] = None,
) -> Dict[str, ActivityGroup]:
    """
    Group items with an outstanding deficit by gathering activity.

    Groups come back in activity order and only when non-empty; items in a
    group are sorted by deficit, largest first.
    """
    groups: Dict[str, ActivityGroup] = {}
    for item in items:
        if item.deficit <= 0:
            continue
        activity = categorize_by_activity(item.name, activity_keywords)
        group = groups.setdefault(activity, ActivityGroup(activity=activity))
        group.items.append(item)
        group.total_deficit += item.deficit

    ordered: Dict[str, ActivityGroup] = {}
    for activity in activity_order(activity_keywords):
        group = groups.get(activity)
        if group is None:
            continue
        group.items.sort(key=lambda item: -item.deficit)
        ordered[activity] = group
    return ordered


def generate_progress_report(
    processed: ProcessedCodex,
    activity_keywords: Optional[ActivityKeywords] = None,
    logger: Optional[PlannerLogger] = None,
) -> ProgressReport:
    logger = logger or silent_logger()

    first_trackable = collect_first_trackable(processed)
    report = ProgressReport(
        overall=calculate_progress(processed, first_trackable),
        by_research=calculate_progress_by_research(processed),
        by_activity=group_by_activity(first_trackable, activity_keywords),
        trackable_items=collect_trackable_items(processed),
        first_trackable=first_trackable,
        second_level=collect_second_level(processed),
        target_count=processed.target_count,
    )
    logger.log_progress(report)
    return report


# ---------------------------------------------------------------------------
# Formatting and export
# ---------------------------------------------------------------------------

_COMPACT_STEPS = (
    # threshold, whole-number above, divisor, suffix
    (1e9, 10e9, 1e9, "B"),
    (1e6, 10e6, 1e6, "M"),
    (1e4, 100e3, 1e3, "K"),
)


def format_compact(num: float) -> str:
    """
    Format a quantity for chat export.

    Below 10,000 the number is written in full with thousands separators.
    Larger values get a K/M/B suffix with one decimal, dropped once the
    scaled value reaches two or three digits (``12.3K``, ``150K``, ``2M``).
    """
    for threshold, whole_above, divisor, suffix in _COMPACT_STEPS:
        if num >= threshold:
            decimals = 0 if num >= whole_above else 1
            text = f"{num / divisor:.{decimals}f}"
            if text.endswith(".0"):
                text = text[:-2]
            return text + suffix
    return f"{round_half_up(num):,}"


def _render_export(
    target_tier: int,
    overall: ProgressOverall,
    groups: Iterable[Tuple[str, Sequence]],
) -> str:
    if overall.complete_count == overall.total_items:
        return f"**T{target_tier} Upgrade**\nAll requirements met!"

    lines = [
        f"**T{target_tier} Upgrade**",
        f"Progress: {overall.percent}% complete",
        "",
    ]
    for activity, items in groups:
        if not items:
            continue
        lines.append(f"**{activity.upper()}**")
        for item in items:
            tier = f" (T{item.tier})" if item.tier > 0 else ""
            lines.append(f"- {format_compact(item.deficit)}x {item.name}{tier}")
        lines.append("")
    return "\n".join(lines)


def generate_export_text(
    report: ProgressReport,
    target_tier: int,
    order: Optional[Sequence[str]] = None,
) -> str:
    """
    Chat export of the report's activity groups.

    Groups follow ``order`` when given; groups it does not name, and every
    group when it is omitted, follow the report's own order.
    """
    activities = list(order) if order is not None else []
    activities += [a for a in report.by_activity if a not in activities]
    groups = [
        (activity, report.by_activity[activity].items)
        for activity in activities
        if activity in report.by_activity
    ]
    return _render_export(target_tier, report.overall, groups)


def report_to_dataframe(
    report: ProgressReport,
    activity_keywords: Optional[ActivityKeywords] = None,
) -> pd.DataFrame:
    """Every trackable item of the report as a frame, with its activity."""
    rows = [
        {
            "activity": categorize_by_activity(item.name, activity_keywords),
            "name": item.name,
            "tier": item.tier,
            "required": item.required,
            "have": item.have,
            "deficit": item.deficit,
            "pct_complete": item.pct_complete,
        }
        for item in report.trackable_items
    ]
    return pd.DataFrame(rows, columns=CSV_COLUMNS + ["pct_complete"])


def generate_csv(
    report: ProgressReport,
    activity_keywords: Optional[ActivityKeywords] = None,
) -> str:
    """
    CSV of every outstanding trackable item (full tree walk).

    Rows are grouped in activity order and sorted by deficit within a group.
    Quantities are written raw, without compaction.
    """
    frame = report_to_dataframe(report, activity_keywords)
    frame = frame[frame["deficit"] > 0].copy()
    frame["activity"] = pd.Categorical(
        frame["activity"], categories=activity_order(activity_keywords), ordered=True,
    )
    frame = frame.sort_values(["activity", "deficit"], ascending=[True, False], kind="mergesort")
    return frame[CSV_COLUMNS].to_csv(index=False, lineterminator="\n").rstrip("\n")


# ---------------------------------------------------------------------------
# Flattened plan
# ---------------------------------------------------------------------------

def flatten_plan(
    processed: ProcessedCodex,
    activity_keywords: Optional[ActivityKeywords] = None,
) -> List[PlanItem]:
    """
    Flatten researches and the journal cluster into one deduplicated list.

    Trackable nodes with a requirement that are not covered by a satisfied
    ancestor are summed by key. An item is actionable when none of its
    occurrences has a trackable child, i.e. it is gathered rather than made.
    """
    totals: Dict[str, dict] = {}

    def collect(node: ProcessedNode) -> None:
        if node.trackable and node.required > 0 and not node.satisfied_by_parent:
            key = create_key(node.name, node.tier)
            has_trackable_children = any(child.trackable for child in node.children)
            entry = totals.setdefault(key, {"node": node, "required": 0, "made": False})
            entry["required"] += node.required
            entry["made"] = entry["made"] or has_trackable_children
        for child in node.children:
            collect(child)

    for research in processed.researches:
        collect(research)
    if processed.study_journals is not None:
        collect(processed.study_journals)

    items = []
    for entry in totals.values():
        node, required = entry["node"], entry["required"]
        items.append(PlanItem(
            name=node.name,
            tier=node.tier,
            required=required,
            have=node.have,
            deficit=max(0, required - node.have),
            pct_complete=percent(min(node.have, required), required),
            activity=categorize_by_activity(node.name, activity_keywords),
            actionable=node.trackable and not entry["made"],
            mapping_type=node.mapping_type,
        ))
    return sorted(items, key=lambda item: -item.deficit)


def calculate_plan_progress(items: Iterable[PlanItem]) -> ProgressOverall:
    total_required, total_contribution, total_items, complete_count = _summarize(items)
    return ProgressOverall(
        percent=percent(total_contribution, total_required),
        total_required=total_required,
        total_contribution=total_contribution,
        complete_count=complete_count,
        total_items=total_items,
    )


def plan_to_dataframe(items: Iterable[PlanItem]) -> pd.DataFrame:
    columns = ["name", "tier", "required", "have", "deficit", "pct_complete",
               "activity", "actionable", "mapping_type"]
    rows = []
    for item in items:
        row = asdict(item)
        row["mapping_type"] = item.mapping_type.value if item.mapping_type else None
        rows.append(row)
    return pd.DataFrame(rows, columns=columns)


def _plan_groups(
    items: Sequence[PlanItem],
    activity_keywords: Optional[ActivityKeywords] = None,
) -> List[Tuple[str, List[PlanItem]]]:
    """Outstanding plan items per activity, largest deficit first."""
    order = activity_order(activity_keywords)
    order += [item.activity for item in items if item.activity not in order]

    groups = []
    for activity in dict.fromkeys(order):
        outstanding = [i for i in items if i.activity == activity and i.deficit > 0]
        outstanding.sort(key=lambda item: -item.deficit)
        groups.append((activity, outstanding))
    return groups


def generate_plan_export_text(
    items: Iterable[PlanItem],
    target_tier: int,
    activity_keywords: Optional[ActivityKeywords] = None,
) -> str:
    """Chat export of a flattened plan, grouped by the activity stored on each item."""
    items = list(items)
    return _render_export(
        target_tier, calculate_plan_progress(items), _plan_groups(items, activity_keywords),
    )


def generate_plan_csv(
    items: Iterable[PlanItem],
    activity_keywords: Optional[ActivityKeywords] = None,
) -> str:
    """CSV of the outstanding plan items in activity order; raw quantities."""
    ordered = [item for _, group in _plan_groups(list(items), activity_keywords) for item in group]
    frame = plan_to_dataframe(ordered)
    return frame[CSV_COLUMNS].to_csv(index=False, lineterminator="\n").rstrip("\n")
