"""
Entry point for requirement calculations.

``calculate_requirements`` resolves the target tier, loads the codex data and
the claim inventory concurrently, then runs the pure pipeline:

    inventory lookup -> expand -> cascade -> progress report

``run_pipeline`` is the pure part and is what tests drive directly.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple, Union

from .cascade import ProcessedCodex, ProcessedNode, SecondLevelItem, apply_cascade
from .config import PlannerConfig, load_config
from .data_loader import DataLoader
from .expander import CodexTier, expand_codex
from .inventory import ClaimInventories, ItemMapping, PackageEntry, build_lookup_from_snapshot
from .planner_logging import PlannerLogger, silent_logger
from .progress import PlanItem, ProgressReport, flatten_plan, generate_progress_report


@dataclass
class CalculateOptions:
    """
    Optional inputs to a calculation.

    Attributes
    ----------
    custom_count : int | None
        Codex completions to plan for instead of the tier's configured count.
    inventory_file : Path | None
        Saved inventories response to use instead of calling the API.
    """
    custom_count: Optional[int] = None
    inventory_file: Optional[Path] = None


@dataclass
class PlannerResults:
    target_tier: int
    codex_tier: int
    codex_count: int
    codex_name: str
    researches: List[ProcessedNode] = field(default_factory=list)
    study_journals: Optional[ProcessedNode] = None
    summary: List[SecondLevelItem] = field(default_factory=list)
    report: Optional[ProgressReport] = None
    plan: List[PlanItem] = field(default_factory=list)


def run_pipeline(
    codex: CodexTier,
    snapshot: ClaimInventories,
    mappings: Optional[Mapping[str, ItemMapping]],
    batch_count: int,
    config: Optional[PlannerConfig] = None,
    packages: Optional[Mapping[int, PackageEntry]] = None,
    logger: Optional[PlannerLogger] = None,
) -> Tuple[ProcessedCodex, ProgressReport]:
    """
    Run lookup, expansion, cascade and progress on already-loaded inputs.

    Pure with respect to its arguments: identical inputs give identical
    output trees.
    """
    config = config or PlannerConfig()
    logger = logger or silent_logger()

    lookup = build_lookup_from_snapshot(
        snapshot, config.package_multipliers, packages, logger,
    )
    expanded = expand_codex(codex, batch_count, mappings, logger)
    processed = apply_cascade(
        expanded, lookup, mappings, config.study_journal_pattern, logger,
    )
    report = generate_progress_report(processed, config.activity_keywords, logger)
    return processed, report


def _load_codex_data(
    loader: DataLoader, codex_tier: int,
) -> Tuple[CodexTier, Dict[str, ItemMapping], Dict[int, PackageEntry]]:
    return (
        loader.load_codex_tier(codex_tier),
        loader.load_item_mappings(),
        loader.load_packages(),
    )


def calculate_requirements(
    claim_id: Union[str, int],
    target_tier: int,
    options: Optional[CalculateOptions] = None,
    *,
    config: Optional[PlannerConfig] = None,
    loader: Optional[DataLoader] = None,
    logger: Optional[PlannerLogger] = None,
) -> PlannerResults:
    """
    Calculate what a claim still needs to reach ``target_tier``.

    Parameters
    ----------
    claim_id : str | int
        Numeric claim id whose inventories are fetched.
    target_tier : int
        Settlement tier to plan for.
    options : CalculateOptions, optional
        Custom codex count and/or a saved inventory file.
    config : PlannerConfig, optional
        Defaults to the loader's config, or ``load_config()``.
    loader : DataLoader, optional
        Data loader to use; one is created (and closed) when omitted.
    logger : PlannerLogger, optional
        Receives every stage's entries, the loader's fetches included.
        Defaults to the loader's own logger.

    Returns
    -------
    PlannerResults

    Raises
    ------
    UnknownTierError
        Before any data is loaded, if the tier is not configured.
    DataFetchError
        If any input cannot be loaded. No partial result is returned.
    """
    options = options or CalculateOptions()
    if logger is None:
        logger = loader.logger if loader is not None else silent_logger()
    if config is None:
        config = loader.config if loader is not None else load_config()

    requirement = config.get_tier_requirement(target_tier)
    count = config.resolve_batch_count(target_tier, options.custom_count)
    logger.log_calculation_start(str(claim_id), target_tier, requirement.codex_tier, count)

    owns_loader = loader is None
    if loader is None:
        loader = DataLoader(config, logger=logger)
    # Loads report to the caller's logger for the duration of this call
    loader_logger = loader.logger
    loader.logger = logger

    try:
        # The two loads are independent; both must finish before expansion
        with ThreadPoolExecutor(max_workers=2) as pool:
            data_future = pool.submit(_load_codex_data, loader, requirement.codex_tier)
            if options.inventory_file is not None:
                inventory_future = pool.submit(loader.load_inventory_file, options.inventory_file)
            else:
                inventory_future = pool.submit(loader.fetch_claim_inventories, claim_id)
            codex, mappings, packages = data_future.result()
            snapshot = inventory_future.result()
    finally:
        loader.logger = loader_logger
        if owns_loader:
            loader.close()

    processed, report = run_pipeline(
        codex, snapshot, mappings, count,
        config=config, packages=packages, logger=logger,
    )

    return PlannerResults(
        target_tier=target_tier,
        codex_tier=requirement.codex_tier,
        codex_count=count,
        codex_name=codex.name or f"Tier {requirement.codex_tier} Codex",
        researches=processed.researches,
        study_journals=processed.study_journals,
        summary=report.second_level,
        report=report,
        plan=flatten_plan(processed, config.activity_keywords),
    )
