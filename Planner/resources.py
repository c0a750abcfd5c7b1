"""
Resource path utilities for frozen (PyInstaller) and development modes.

Bundled files such as ``Planner/DefaultPlannerConfig.yaml`` and the default
``data/`` directory are resolved relative to the project root during
development and relative to the extraction directory when packaged.
"""
from __future__ import annotations

import sys
from pathlib import Path


def get_resource_path(relative_path: str) -> Path:
    """
    Get absolute path to a bundled resource.

    Parameters
    ----------
    relative_path : str
        Path relative to project root (e.g., "Planner/DefaultPlannerConfig.yaml")

    Returns
    -------
    Path
        Absolute path to the resource

    Examples
    --------
    >>> config_path = get_resource_path("Planner/DefaultPlannerConfig.yaml")
    >>> data_dir = get_resource_path("data")
    """
    if is_frozen():
        base_path = Path(sys._MEIPASS)  # type: ignore[attr-defined]
    else:
        # This file lives in Planner/, so parent.parent is the project root
        base_path = Path(__file__).resolve().parent.parent
    return base_path / relative_path


def is_frozen() -> bool:
    """Return True when running as a packaged executable."""
    return getattr(sys, 'frozen', False)
