"""
Data loader: codex, recipe, mapping and package documents plus claim inventories.

Local JSON documents are read from the configured data directory and cached
against the SHA-256 of their source file. Claim inventories are fetched from
the game-data API with ``httpx`` and cached for a short time. The cache is
injected, so tests and long-running callers decide its lifetime.

Every failure to read, download or validate an input raises
``DataFetchError``; nothing here retries beyond the transport's own
connection retries.
"""
from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import httpx
from pydantic import ValidationError

from .cache import PlannerDataCache, get_data_cache
from .config import PlannerConfig
from .expander import CodexTier, parse_codex_document
from .inventory import (
    ClaimInventories,
    ItemMapping,
    PackageEntry,
    parse_item_mappings,
    parse_packages,
)
from .planner_logging import PlannerLogger, silent_logger

_CLAIM_ID = re.compile(r"^\d+$")


class DataFetchError(RuntimeError):
    """Raised when an input document or API response cannot be loaded."""


@dataclass
class FetchResult:
    payload: Any
    from_cache: bool


def _read_json_file(path: Path) -> Any:
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except OSError as exc:
        raise DataFetchError(f"Unable to read {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise DataFetchError(f"Invalid JSON in {path}: {exc}") from exc


def _validate_inventories(payload: Any, source: str) -> ClaimInventories:
    try:
        return ClaimInventories.model_validate(payload)
    except ValidationError as exc:
        raise DataFetchError(f"Unexpected payload structure from {source}: {exc}") from exc


class DataLoader:
    """
    Loads every input a calculation needs.

    Parameters
    ----------
    config : PlannerConfig, optional
        Data directory, file names and API settings. Defaults to built-ins.
    cache : PlannerDataCache, optional
        Cache for documents and API responses. Defaults to the process-wide
        cache from ``get_data_cache``.
    client : httpx.Client, optional
        HTTP client to use. When omitted the loader creates and owns one.
    logger : PlannerLogger, optional
    """

    def __init__(
        self,
        config: Optional[PlannerConfig] = None,
        cache: Optional[PlannerDataCache] = None,
        client: Optional[httpx.Client] = None,
        logger: Optional[PlannerLogger] = None,
    ):
        self.config = config or PlannerConfig()
        self.cache = cache if cache is not None else get_data_cache(self.config.cache)
        self.logger = logger or silent_logger()
        self._client = client
        self._owns_client = client is None

    # -- HTTP client --------------------------------------------------------

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            transport = httpx.HTTPTransport(retries=self.config.api.max_retries)
            self._client = httpx.Client(
                transport=transport,
                timeout=self.config.api.timeout,
                headers={"Accept": "application/json"},
            )
        return self._client

    def close(self) -> None:
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    # -- local documents ----------------------------------------------------

    def _load_document(self, path: Path, label: str) -> FetchResult:
        started = time.perf_counter()
        cached = self.cache.get_if_valid(path)
        if cached is not None:
            result = FetchResult(payload=cached, from_cache=True)
        else:
            if not path.exists():
                raise DataFetchError(f"{label} file not found: {path}")
            result = FetchResult(payload=_read_json_file(path), from_cache=False)
            self.cache.store(path, result.payload)
        self.logger.log_fetch(label, result.from_cache, (time.perf_counter() - started) * 1000)
        return result

    def load_recipes(self) -> Optional[Dict[str, Any]]:
        """Recipe-graph document, or None when the data set has none."""
        path = self.config.data.recipes_path
        if not path.exists():
            return None
        payload = self._load_document(path, "recipes").payload
        if not isinstance(payload, dict):
            raise DataFetchError(f"Recipes document {path} must be a JSON object")
        return payload

    def load_codex(self) -> Dict[int, CodexTier]:
        """Every codex tier, with graph-form researches resolved into trees."""
        path = self.config.data.codex_path
        payload = self._load_document(path, "codex").payload
        if not isinstance(payload, dict):
            raise DataFetchError(f"Codex document {path} must be a JSON object")
        return parse_codex_document(payload, self.load_recipes())

    def load_codex_tier(self, codex_tier: int) -> CodexTier:
        codex = self.load_codex()
        if codex_tier not in codex:
            raise DataFetchError(
                f"Codex tier {codex_tier} not found in {self.config.data.codex_path}"
            )
        return codex[codex_tier]

    def load_item_mappings(self) -> Dict[str, ItemMapping]:
        path = self.config.data.item_mappings_path
        if not path.exists():
            self.logger.warning("FETCH", f"Item mappings not found at {path}; using none")
            return {}
        return parse_item_mappings(self._load_document(path, "item mappings").payload)

    def load_packages(self) -> Dict[int, PackageEntry]:
        path = self.config.data.packages_path
        if path is None or not path.exists():
            return {}
        return parse_packages(self._load_document(path, "packages").payload)

    # -- inventories --------------------------------------------------------

    def fetch_claim_inventories(self, claim_id: Union[str, int]) -> ClaimInventories:
        """
        Fetch every building inventory of a claim.

        Raises
        ------
        ValueError
            If ``claim_id`` is not a numeric id.
        DataFetchError
            On HTTP errors, invalid JSON or an unexpected payload shape.
        """
        claim = str(claim_id).strip()
        if not _CLAIM_ID.match(claim):
            raise ValueError(f"Invalid claim id: {claim_id!r}")

        key = f"inventories:{claim}"
        url = self.config.api.url_for(f"claims/{claim}/inventories")
        started = time.perf_counter()

        payload = self.cache.get(key)
        from_cache = payload is not None
        if payload is None:
            payload = self._fetch_json(url)

        inventories = _validate_inventories(payload, url)
        if not from_cache:
            self.cache.set(key, payload, max_age=self.config.api.inventory_cache_seconds)
        self.logger.log_fetch(f"inventories for claim {claim}", from_cache,
                              (time.perf_counter() - started) * 1000)
        return inventories

    def _fetch_json(self, url: str) -> Any:
        try:
            response = self._get_client().get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DataFetchError(
                f"HTTP error {exc.response.status_code} when requesting {url}: "
                f"{exc.response.reason_phrase}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DataFetchError(f"Request failure when reaching {url}: {exc}") from exc

        try:
            return response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise DataFetchError(f"Received invalid JSON from {url}: {exc}") from exc

    def load_inventory_file(self, path: Path) -> ClaimInventories:
        """Read a saved inventories response instead of calling the API."""
        started = time.perf_counter()
        inventories = _validate_inventories(_read_json_file(path), str(path))
        self.logger.log_fetch(f"inventories from {path.name}", False,
                              (time.perf_counter() - started) * 1000)
        return inventories
