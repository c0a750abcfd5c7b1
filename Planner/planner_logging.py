"""
Structured logging for the requirement planner.

Provides insight into each pipeline stage at multiple verbosity levels:
    - MINIMAL: Only final progress and errors
    - SUMMARY: Inputs overview and key metrics
    - DETAILED: Aggregated requirement tables
    - DEBUG: Inventory lookup contents and data-quality gaps
    - TRACE: Per-node cascade calculations

Usage:
    from Planner.planner_logging import PlannerLogger, LogLevel

    logger = PlannerLogger(level=LogLevel.DETAILED)
    results = calculate_requirements(claim_id, 5, logger=logger)
"""
from __future__ import annotations

import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from io import StringIO
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, TextIO, Tuple, Union


class LogLevel(IntEnum):
    """Verbosity levels for planner logging."""
    SILENT = 0      # No output at all
    MINIMAL = 10    # Only final results and errors
    SUMMARY = 20    # Inputs overview and key metrics
    DETAILED = 30   # Aggregated requirement tables
    DEBUG = 40      # Lookup contents and data-quality gaps
    TRACE = 50      # Everything including per-node calculations


@dataclass
class LogEntry:
    """A single log entry with metadata."""
    timestamp: datetime
    level: LogLevel
    category: str
    message: str
    data: Optional[Dict[str, Any]] = None

    def format(self, include_timestamp: bool = True, include_level: bool = True) -> str:
        """Format the log entry as a string."""
        parts = []
        if include_timestamp:
            parts.append(f"[{self.timestamp.strftime('%H:%M:%S.%f')[:-3]}]")
        if include_level:
            parts.append(f"[{self.level.name:8}]")
        parts.append(f"[{self.category}]")
        parts.append(self.message)
        return " ".join(parts)


@dataclass
class PlannerLogger:
    """
    Structured logger for the planner pipeline.

    Collects log entries at various verbosity levels and writes them to an
    output stream and, optionally, a file.

    Attributes
    ----------
    level : LogLevel
        Minimum level to log (entries above this level are ignored)
    output : TextIO | None
        Output stream (defaults to sys.stderr so CLI exports stay clean)
    log_to_file : Path | None
        Optional path to also write logs to a file
    entries : list[LogEntry]
        All logged entries (for programmatic access)
    """
    level: LogLevel = LogLevel.SUMMARY
    output: Optional[TextIO] = None
    log_to_file: Optional[Path] = None
    include_timestamp: bool = True
    include_level: bool = True
    entries: List[LogEntry] = field(default_factory=list)
    _file_handle: Optional[TextIO] = field(default=None, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        if self.output is None:
            self.output = sys.stderr
        if self.log_to_file:
            self._file_handle = open(self.log_to_file, "w", encoding="utf-8")

    def close(self):
        """Close the file handle if opened."""
        if self._file_handle:
            self._file_handle.close()
            self._file_handle = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def enabled_for(self, level: LogLevel) -> bool:
        return self.level >= level

    def log(self, level: LogLevel, category: str, message: str,
            data: Optional[Dict[str, Any]] = None) -> None:
        """Record and output a log entry."""
        if level > self.level:
            return

        entry = LogEntry(
            timestamp=datetime.now(),
            level=level,
            category=category,
            message=message,
            data=data,
        )
        formatted = entry.format(self.include_timestamp, self.include_level)
        # Codex and inventory loads log from worker threads
        with self._lock:
            self.entries.append(entry)
            if self.output:
                self.output.write(formatted + "\n")
                self.output.flush()
            if self._file_handle:
                self._file_handle.write(formatted + "\n")
                self._file_handle.flush()

    def warning(self, category: str, message: str) -> None:
        self.log(LogLevel.MINIMAL, category, f"WARNING: {message}")

    def _log_table(self, level: LogLevel, category: str,
                   headers: List[str], rows: List[List[Any]],
                   title: Optional[str] = None) -> None:
        """Log a formatted table."""
        if level > self.level:
            return

        all_rows = [headers] + rows
        widths = [max(len(str(row[i])) for row in all_rows) for i in range(len(headers))]

        lines = []
        if title:
            lines.append(title)
            lines.append("=" * len(title))

        header_line = " | ".join(str(h).ljust(w) for h, w in zip(headers, widths))
        lines.append(header_line)
        lines.append("-" * len(header_line))

        for row in rows:
            lines.append(" | ".join(str(v).ljust(w) for v, w in zip(row, widths)))

        for line in lines:
            self.log(level, category, line)

    # -------------------------------------------------------------------------
    # Pipeline Logging
    # -------------------------------------------------------------------------

    def log_calculation_start(self, claim_id: str, target_tier: int,
                              codex_tier: int, codex_count: int) -> None:
        self.log(LogLevel.MINIMAL, "PLANNER",
                 f"Calculating T{target_tier} requirements for claim {claim_id}")
        self.log(LogLevel.SUMMARY, "PLANNER",
                 f"Requires {codex_count}x T{codex_tier} codex")

    def log_fetch(self, source: str, from_cache: bool, elapsed_ms: float) -> None:
        origin = "cache" if from_cache else "source"
        self.log(LogLevel.SUMMARY, "FETCH",
                 f"Loaded {source} from {origin} ({elapsed_ms:.1f}ms)")

    def log_inventory_built(self, slot_count: int, package_count: int,
                            lookup: Dict[str, int]) -> None:
        self.log(LogLevel.SUMMARY, "INVENTORY",
                 f"Built inventory lookup: {len(lookup)} keys from {slot_count} slots "
                 f"({package_count} packages expanded)")

        if self.level >= LogLevel.DEBUG and lookup:
            rows = [[key, qty] for key, qty in sorted(lookup.items())]
            self._log_table(LogLevel.DEBUG, "INVENTORY", ["Key", "Quantity"],
                            rows, title="Inventory Lookup")

    def log_expansion(self, codex_name: str, research_count: int,
                      node_count: int, batch_count: int) -> None:
        self.log(LogLevel.SUMMARY, "EXPAND",
                 f"Expanded {codex_name}: {research_count} researches, "
                 f"{node_count} nodes, batch count {batch_count}")

    def log_aggregation(self, items: Iterable[Any]) -> None:
        """Log the per-key aggregated requirements of the cascade."""
        if self.level < LogLevel.DETAILED:
            return

        rows = []
        for item in items:
            rows.append([
                f"{item.name} (T{item.tier})",
                item.required,
                item.have,
                item.deficit,
                f"{float(item.scale):.3f}",
                "yes" if item.satisfied else "",
            ])
        rows.sort(key=lambda r: -r[3])

        self._log_table(LogLevel.DETAILED, "CASCADE",
                        ["Item", "Required", "Have", "Deficit", "Scale", "Met"],
                        rows, title="Aggregated Requirements")

    def log_data_gap(self, name: str, tier: int) -> None:
        """Log an item that is neither in inventory nor in the mapping table."""
        self.log(LogLevel.DEBUG, "CASCADE",
                 f"No inventory or mapping for {name} (T{tier}); treating as 0 on hand")

    def log_node(self, name: str, tier: int, required: int, deficit: int,
                 status: str) -> None:
        if self.level < LogLevel.TRACE:
            return
        self.log(LogLevel.TRACE, "CASCADE",
                 f"  {name} (T{tier}): required={required}, deficit={deficit}, status={status}")

    def log_study_journals(self, branch_count: int, name: Optional[str]) -> None:
        if name is None:
            self.log(LogLevel.DETAILED, "JOURNAL", "No study journals found")
            return
        self.log(LogLevel.SUMMARY, "JOURNAL",
                 f"Extracted {name} from {branch_count} research branches")

    def log_progress(self, report: Any) -> None:
        """Log progress report summary."""
        overall = report.overall
        self.log(LogLevel.MINIMAL, "PROGRESS",
                 f"Progress: {overall.percent}% "
                 f"({overall.complete_count}/{overall.total_items} items complete)")

        if self.level >= LogLevel.DETAILED:
            rows = [[name, f"{p.percent}%", p.total_required, p.total_contribution]
                    for name, p in report.by_research.items()]
            if rows:
                self._log_table(LogLevel.DETAILED, "PROGRESS",
                                ["Research", "Percent", "Required", "Have"],
                                rows, title="Progress by Research")

            for activity, group in report.by_activity.items():
                self.log(LogLevel.DETAILED, "PROGRESS",
                         f"{activity}: {len(group.items)} items, {group.total_deficit} missing")

    def get_entries_by_category(self, category: str) -> List[LogEntry]:
        """Return entries matching a category."""
        return [e for e in self.entries if e.category == category]


def create_logger(
    level: Union[LogLevel, str, int] = LogLevel.SUMMARY,
    output: Optional[TextIO] = None,
    log_file: Optional[Path] = None,
) -> PlannerLogger:
    """
    Factory function to create a PlannerLogger.

    Parameters
    ----------
    level : LogLevel | str | int
        Verbosity level. Can be LogLevel enum, string name, or integer.
    output : TextIO | None
        Output stream. Defaults to sys.stderr.
    log_file : Path | None
        Optional path to write logs to file.

    Returns
    -------
    PlannerLogger
        Configured logger instance
    """
    if isinstance(level, str):
        level = LogLevel[level.upper()]
    elif isinstance(level, int) and not isinstance(level, LogLevel):
        level = LogLevel(level)

    return PlannerLogger(
        level=level,
        output=output,
        log_to_file=log_file,
    )


def create_string_logger(level: LogLevel = LogLevel.DETAILED) -> Tuple[PlannerLogger, StringIO]:
    """
    Create a logger that writes to a string buffer.

    Useful for testing or capturing logs programmatically.
    """
    buffer = StringIO()
    logger = PlannerLogger(level=level, output=buffer)
    return logger, buffer


_silent: Optional[PlannerLogger] = None


def silent_logger() -> PlannerLogger:
    """Shared logger that records nothing; used when callers pass none."""
    global _silent
    if _silent is None:
        _silent = PlannerLogger(level=LogLevel.SILENT, output=StringIO())
    return _silent
