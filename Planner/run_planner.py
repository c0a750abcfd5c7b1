#!/usr/bin/env python
"""CLI entry point for the codex requirement planner."""
from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from .config import ConfigError, load_config
from .data_loader import DataFetchError
from .expander import RecipeGraphError
from .planner import CalculateOptions, PlannerResults, calculate_requirements
from .planner_logging import LogLevel, create_logger
from .progress import (
    format_compact,
    generate_csv,
    generate_export_text,
    generate_plan_csv,
    generate_plan_export_text,
)


def format_tree(results: PlannerResults) -> str:
    """Indented requirement tree, journal cluster last."""
    lines: List[str] = []

    def walk(node, depth: int) -> None:
        tier = f" (T{node.tier})" if node.tier > 0 else ""
        note = " [covered]" if node.satisfied_by_parent else ""
        lines.append(
            f"{'  ' * depth}{node.name}{tier}: {node.contribution}/{node.required} "
            f"{node.status.value} {node.pct_complete}%{note}"
        )
        for child in node.children:
            walk(child, depth + 1)

    for research in results.researches:
        walk(research, 0)
    if results.study_journals is not None:
        walk(results.study_journals, 0)
    return "\n".join(lines)


def format_summary(results: PlannerResults) -> str:
    report = results.report
    lines = [
        f"{results.codex_count}x {results.codex_name} for T{results.target_tier}",
        f"Progress: {report.overall.percent}% "
        f"({report.overall.complete_count}/{report.overall.total_items} items complete)",
        "",
    ]
    for item in results.summary:
        tier = f" (T{item.tier})" if item.tier > 0 else ""
        lines.append(f"  {item.name}{tier}: need {format_compact(item.deficit)} "
                     f"of {format_compact(item.required)}")
    return "\n".join(lines)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Calculate the materials a claim still needs for its next tier upgrade."
    )
    parser.add_argument("claim_id", help="Numeric claim id")
    parser.add_argument(
        "-t",
        "--tier",
        type=int,
        required=True,
        help="Target settlement tier",
    )
    parser.add_argument(
        "-n",
        "--count",
        type=int,
        default=None,
        help="Codex completions to plan for (default: the tier's configured count)",
    )
    parser.add_argument(
        "-i",
        "--inventory-file",
        type=Path,
        default=None,
        help="Use a saved inventories response instead of the API",
    )
    parser.add_argument(
        "-f",
        "--format",
        default="text",
        choices=["text", "csv", "plan", "plan-csv", "tree", "summary", "json"],
        help="Output format (default: text)",
    )
    parser.add_argument(
        "--log-level",
        default="MINIMAL",
        choices=[level.name for level in LogLevel],
        help="Log verbosity on stderr (default: MINIMAL)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write log output to this file",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Path to config YAML (default: Planner/DefaultPlannerConfig.yaml)",
    )

    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(exc, file=sys.stderr)
        return 2

    logger = create_logger(args.log_level, log_file=args.log_file)
    options = CalculateOptions(custom_count=args.count, inventory_file=args.inventory_file)

    try:
        results = calculate_requirements(
            args.claim_id, args.tier, options, config=config, logger=logger,
        )
    except ConfigError as exc:
        print(exc, file=sys.stderr)
        return 2
    except (DataFetchError, RecipeGraphError, ValueError) as exc:
        print(f"Calculation failed: {exc}", file=sys.stderr)
        return 1
    finally:
        logger.close()

    if args.format == "csv":
        print(generate_csv(results.report, config.activity_keywords))
    elif args.format == "plan":
        print(generate_plan_export_text(results.plan, args.tier, config.activity_keywords))
    elif args.format == "plan-csv":
        print(generate_plan_csv(results.plan, config.activity_keywords))
    elif args.format == "tree":
        print(format_tree(results))
    elif args.format == "summary":
        print(format_summary(results))
    elif args.format == "json":
        print(json.dumps(asdict(results), indent=2))
    else:
        print(generate_export_text(results.report, args.tier, config.activity_order))
    return 0


if __name__ == "__main__":
    sys.exit(main())
