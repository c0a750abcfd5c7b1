"""Planner package: codex requirement cascade for claim tier upgrades."""
from .config import load_config, PlannerConfig, ConfigError, UnknownTierError
from .inventory import build_inventory_lookup, get_item_quantity, ClaimInventories
from .expander import expand_codex, parse_codex_document, RecipeGraphError
from .cascade import apply_cascade, ProcessedCodex, ProcessedNode, NodeStatus
from .progress import (
    generate_progress_report,
    generate_export_text,
    generate_csv,
    generate_plan_export_text,
    generate_plan_csv,
    format_compact,
    flatten_plan,
    ProgressReport,
)
from .data_loader import DataLoader, DataFetchError
from .planner import calculate_requirements, run_pipeline, CalculateOptions, PlannerResults
from .planner_logging import LogLevel, PlannerLogger, create_logger, create_string_logger

__all__ = [
    "load_config",
    "PlannerConfig",
    "ConfigError",
    "UnknownTierError",
    "build_inventory_lookup",
    "get_item_quantity",
    "ClaimInventories",
    "expand_codex",
    "parse_codex_document",
    "RecipeGraphError",
    "apply_cascade",
    "ProcessedCodex",
    "ProcessedNode",
    "NodeStatus",
    "generate_progress_report",
    "generate_export_text",
    "generate_csv",
    "generate_plan_export_text",
    "generate_plan_csv",
    "format_compact",
    "flatten_plan",
    "ProgressReport",
    "DataLoader",
    "DataFetchError",
    "calculate_requirements",
    "run_pipeline",
    "CalculateOptions",
    "PlannerResults",
    "LogLevel",
    "PlannerLogger",
    "create_logger",
    "create_string_logger",
]
