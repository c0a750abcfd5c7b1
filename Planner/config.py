"""Load and normalise planner configuration from DefaultPlannerConfig.yaml."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx
import yaml
from pydantic import BaseModel, ConfigDict, Field, HttpUrl, TypeAdapter, ValidationError

from .resources import get_resource_path

DEFAULT_CONFIG_PATH = get_resource_path("Planner/DefaultPlannerConfig.yaml")
DEFAULT_DATA_DIR = get_resource_path("data")
DEFAULT_CACHE_DIR = get_resource_path("app_data")

DEFAULT_API_URL = "https://bitjita.com/api/"

# Target tier -> (codex tier, codex completions required)
DEFAULT_TIER_REQUIREMENTS: Dict[int, Tuple[int, int]] = {
    3: (2, 10),
    4: (3, 15),
    5: (4, 20),
    6: (5, 25),
    7: (6, 30),
    8: (7, 35),
    9: (8, 40),
    10: (9, 45),
}

DEFAULT_PACKAGE_MULTIPLIER = 100
DEFAULT_PACKAGE_OVERRIDES: Dict[str, int] = {
    "flower": 500,
    "fiber": 1000,
}

# Checked in order; the first activity with a matching substring wins
DEFAULT_ACTIVITY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "Mining": ("chunk", "ore", "pebble", "clay lump", "gypsite", "sand"),
    "Logging": ("trunk", "bark", "log"),
    "Farming": ("seed", "grain", "vegetable", "flower", "berry", "roots", "plant fiber"),
    "Fishing": ("fish", "crawfish", "crawdad", "lobster", "crab", "darter", "chub", "shiner"),
    "Hunting": ("pelt", "hide"),
}
FALLBACK_ACTIVITY = "Crafting"

DEFAULT_STUDY_JOURNAL_PATTERN = r"Study Journal$"


class ConfigError(Exception):
    """Raised when the configuration file is invalid or a setting is unusable."""


class UnknownTierError(ConfigError):
    """Raised when a target tier has no entry in the tier-requirement table."""

    def __init__(self, target_tier: int, valid_tiers: List[int]):
        self.target_tier = target_tier
        self.valid_tiers = valid_tiers
        tiers = ", ".join(str(t) for t in valid_tiers) or "none"
        super().__init__(f"Invalid target tier: {target_tier} (configured tiers: {tiers})")


@dataclass(frozen=True)
class TierRequirement:
    """How many completions of which codex tier unlock a target tier."""
    codex_tier: int
    count: int


@dataclass
class PackageMultipliers:
    """Units contained in one cargo package, keyed by name/tag substring."""
    default: int = DEFAULT_PACKAGE_MULTIPLIER
    overrides: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_PACKAGE_OVERRIDES))

    def multiplier_for(self, name: str, tag: str = "") -> int:
        lower_name = " ".join(name.lower().split())
        lower_tag = (tag or "").lower()
        for keyword, multiplier in self.overrides.items():
            if keyword in lower_name or keyword in lower_tag:
                return multiplier
        return self.default


@dataclass
class DataSettings:
    directory: Path = DEFAULT_DATA_DIR
    codex_file: str = "codex.json"
    recipes_file: str = "recipes.json"
    item_mappings_file: str = "item-mappings.json"
    packages_file: Optional[str] = None

    @property
    def codex_path(self) -> Path:
        return self.directory / self.codex_file

    @property
    def recipes_path(self) -> Path:
        return self.directory / self.recipes_file

    @property
    def item_mappings_path(self) -> Path:
        return self.directory / self.item_mappings_file

    @property
    def packages_path(self) -> Optional[Path]:
        if not self.packages_file:
            return None
        return self.directory / self.packages_file


@dataclass
class CacheSettings:
    enabled: bool = True
    backend: str = "memory"  # "memory" or "file"
    directory: Path = DEFAULT_CACHE_DIR


class ApiSettings(BaseModel):
    """Settings for the game-data API that serves claim inventories."""
    base_url: HttpUrl = Field(default=TypeAdapter(HttpUrl).validate_python(DEFAULT_API_URL))
    timeout_seconds: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=0, ge=0, le=10)
    inventory_cache_seconds: int = Field(default=60, ge=0)

    model_config = ConfigDict(validate_assignment=True)

    @property
    def timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.timeout_seconds)

    def url_for(self, path: str) -> str:
        return str(self.base_url).rstrip("/") + "/" + path.lstrip("/")


@dataclass
class PlannerConfig:
    tier_requirements: Dict[int, TierRequirement] = field(
        default_factory=lambda: {
            tier: TierRequirement(codex_tier=codex_tier, count=count)
            for tier, (codex_tier, count) in DEFAULT_TIER_REQUIREMENTS.items()
        }
    )
    package_multipliers: PackageMultipliers = field(default_factory=PackageMultipliers)
    activity_keywords: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_ACTIVITY_KEYWORDS)
    )
    study_journal_pattern: str = DEFAULT_STUDY_JOURNAL_PATTERN
    data: DataSettings = field(default_factory=DataSettings)
    api: ApiSettings = field(default_factory=ApiSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)

    @property
    def activity_order(self) -> List[str]:
        """Activities in export order, with the fallback activity last."""
        order = [a for a in self.activity_keywords if a != FALLBACK_ACTIVITY]
        order.append(FALLBACK_ACTIVITY)
        return order

    def get_tier_requirement(self, target_tier: int) -> TierRequirement:
        req = self.tier_requirements.get(target_tier)
        if req is None:
            raise UnknownTierError(target_tier, sorted(self.tier_requirements))
        return req

    def resolve_batch_count(self, target_tier: int, custom_count: Optional[int] = None) -> int:
        """Return the codex count for a target tier, honouring a custom override."""
        req = self.get_tier_requirement(target_tier)
        if custom_count is None:
            return req.count
        if custom_count <= 0:
            raise ConfigError(f"Codex count must be positive, got {custom_count}")
        return custom_count


def _coerce_int(value: Any, *, key: str, path: Path) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"Invalid integer for '{key}' in {path}: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for '{key}' in {path}: {value!r}") from exc
    raise ConfigError(f"Invalid integer for '{key}' in {path}: {value!r}")


def _coerce_bool(value: Any, *, key: str, path: Path) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"Invalid boolean value for '{key}' in {path}: {value!r}")


def _require_mapping(value: Any, *, key: str, path: Path) -> Dict[Any, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' section must be a mapping in {path}")
    return value


def _parse_tier_requirements(raw: Any, path: Path) -> Dict[int, TierRequirement]:
    section = _require_mapping(raw, key="tierRequirements", path=path)
    result: Dict[int, TierRequirement] = {}
    for tier_key, block in section.items():
        tier = _coerce_int(tier_key, key="tierRequirements", path=path)
        block = _require_mapping(block, key=f"tierRequirements.{tier_key}", path=path)
        codex_tier = _coerce_int(block.get("codexTier"), key=f"tierRequirements.{tier_key}.codexTier", path=path)
        count = _coerce_int(block.get("count"), key=f"tierRequirements.{tier_key}.count", path=path)
        if count <= 0:
            raise ConfigError(f"Codex count for tier {tier} must be positive in {path}")
        result[tier] = TierRequirement(codex_tier=codex_tier, count=count)
    return result


def _parse_package_multipliers(raw: Any, path: Path) -> PackageMultipliers:
    section = _require_mapping(raw, key="packageMultipliers", path=path)
    default = DEFAULT_PACKAGE_MULTIPLIER
    overrides: Dict[str, int] = {}
    for key, value in section.items():
        multiplier = _coerce_int(value, key=f"packageMultipliers.{key}", path=path)
        if str(key).lower() == "default":
            default = multiplier
        else:
            overrides[str(key).lower()] = multiplier
    return PackageMultipliers(default=default, overrides=overrides)


def _parse_activities(raw: Any, path: Path) -> Dict[str, Tuple[str, ...]]:
    section = _require_mapping(raw, key="activities", path=path)
    result: Dict[str, Tuple[str, ...]] = {}
    for activity, keywords in section.items():
        if keywords is None:
            keywords = []
        if not isinstance(keywords, list):
            raise ConfigError(f"Keywords for activity '{activity}' must be a list in {path}")
        result[str(activity)] = tuple(str(k).lower() for k in keywords)
    return result


def load_config(path: Optional[Path] = None) -> PlannerConfig:
    """Load and normalise configuration YAML into a PlannerConfig dataclass."""
    cfg_path = path or DEFAULT_CONFIG_PATH
    if not cfg_path.exists():
        return PlannerConfig()

    try:
        with cfg_path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {cfg_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"Top-level configuration in {cfg_path} must be a mapping")

    config = PlannerConfig()

    if "tierRequirements" in raw:
        config.tier_requirements = _parse_tier_requirements(raw["tierRequirements"], cfg_path)
    if "packageMultipliers" in raw:
        config.package_multipliers = _parse_package_multipliers(raw["packageMultipliers"], cfg_path)
    if "activities" in raw:
        config.activity_keywords = _parse_activities(raw["activities"], cfg_path)

    pattern = raw.get("studyJournalPattern")
    if pattern:
        try:
            re.compile(str(pattern))
        except re.error as exc:
            raise ConfigError(f"Invalid studyJournalPattern in {cfg_path}: {exc}") from exc
        config.study_journal_pattern = str(pattern)

    # Data files; relative directories resolve against the config file location
    data_raw = _require_mapping(raw.get("data"), key="data", path=cfg_path)
    if data_raw:
        directory = Path(str(data_raw.get("directory", DEFAULT_DATA_DIR)))
        if not directory.is_absolute():
            directory = (cfg_path.parent / directory).resolve()
        config.data = DataSettings(
            directory=directory,
            codex_file=str(data_raw.get("codexFile", "codex.json")),
            recipes_file=str(data_raw.get("recipesFile", "recipes.json")),
            item_mappings_file=str(data_raw.get("itemMappingsFile", "item-mappings.json")),
            packages_file=data_raw.get("packagesFile"),
        )

    api_raw = _require_mapping(raw.get("api"), key="api", path=cfg_path)
    if api_raw:
        try:
            config.api = ApiSettings(
                base_url=api_raw.get("baseUrl", DEFAULT_API_URL),
                timeout_seconds=api_raw.get("timeoutSeconds", 30.0),
                max_retries=api_raw.get("maxRetries", 0),
                inventory_cache_seconds=api_raw.get("inventoryCacheSeconds", 60),
            )
        except ValidationError as exc:
            raise ConfigError(f"Invalid api settings in {cfg_path}: {exc}") from exc

    cache_raw = _require_mapping(raw.get("cache"), key="cache", path=cfg_path)
    if cache_raw:
        backend = str(cache_raw.get("backend", "memory")).lower()
        if backend not in {"memory", "file"}:
            raise ConfigError(f"Unknown cache backend '{backend}' in {cfg_path}")
        directory = Path(str(cache_raw.get("directory", DEFAULT_CACHE_DIR)))
        if not directory.is_absolute():
            directory = (cfg_path.parent / directory).resolve()
        config.cache = CacheSettings(
            enabled=_coerce_bool(cache_raw.get("enabled", True), key="cache.enabled", path=cfg_path),
            backend=backend,
            directory=directory,
        )

    return config
