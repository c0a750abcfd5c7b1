"""Tests for configuration loading."""
from __future__ import annotations

from pathlib import Path

import pytest

from Planner.config import (
    DEFAULT_CONFIG_PATH,
    ConfigError,
    PlannerConfig,
    TierRequirement,
    UnknownTierError,
    load_config,
)


def write_config(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestDefaults:

    def test_bundled_config_matches_defaults(self):
        assert DEFAULT_CONFIG_PATH.exists()
        bundled = load_config()
        defaults = PlannerConfig()
        assert bundled.tier_requirements == defaults.tier_requirements
        assert bundled.package_multipliers == defaults.package_multipliers
        assert bundled.activity_keywords == defaults.activity_keywords
        assert bundled.study_journal_pattern == defaults.study_journal_pattern

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")
        assert config.get_tier_requirement(5) == TierRequirement(codex_tier=4, count=20)

    def test_activity_order_ends_with_crafting(self):
        assert PlannerConfig().activity_order == [
            "Mining", "Logging", "Farming", "Fishing", "Hunting", "Crafting",
        ]


class TestTierRequirements:

    @pytest.mark.parametrize("tier,codex_tier,count", [(3, 2, 10), (7, 6, 30), (10, 9, 45)])
    def test_default_table(self, tier, codex_tier, count):
        assert PlannerConfig().get_tier_requirement(tier) == TierRequirement(codex_tier, count)

    @pytest.mark.parametrize("tier", [1, 2, 11, -3])
    def test_unknown_tier(self, tier):
        with pytest.raises(UnknownTierError) as excinfo:
            PlannerConfig().get_tier_requirement(tier)
        assert excinfo.value.target_tier == tier
        assert "Invalid target tier" in str(excinfo.value)
        assert "3, 4, 5" in str(excinfo.value)

    def test_unknown_tier_is_config_error(self):
        with pytest.raises(ConfigError):
            PlannerConfig().get_tier_requirement(99)

    def test_custom_count(self):
        config = PlannerConfig()
        assert config.resolve_batch_count(5) == 20
        assert config.resolve_batch_count(5, 3) == 3

    @pytest.mark.parametrize("count", [0, -1])
    def test_non_positive_custom_count(self, count):
        with pytest.raises(ConfigError):
            PlannerConfig().resolve_batch_count(5, count)


class TestLoadConfig:

    def test_overrides(self, tmp_path):
        path = write_config(tmp_path, """
tierRequirements:
  4: {codexTier: 3, count: "12"}
packageMultipliers:
  default: 50
  pebble: 500
activities:
  Mining: [stone]
studyJournalPattern: "Journal$"
data:
  directory: game-data
  codexFile: codex-tiers.json
api:
  baseUrl: https://example.test/api
  timeoutSeconds: 5
  inventoryCacheSeconds: 0
cache:
  enabled: "no"
  backend: file
  directory: cache
""")
        config = load_config(path)

        assert config.tier_requirements == {4: TierRequirement(3, 12)}
        assert config.package_multipliers.default == 50
        assert config.package_multipliers.multiplier_for("Fine Pebbles") == 500
        assert config.activity_keywords == {"Mining": ("stone",)}
        assert config.study_journal_pattern == "Journal$"
        assert config.data.codex_path == (tmp_path / "game-data").resolve() / "codex-tiers.json"
        assert config.data.item_mappings_file == "item-mappings.json"
        assert config.api.url_for("claims/1/inventories") == "https://example.test/api/claims/1/inventories"
        assert config.api.inventory_cache_seconds == 0
        assert config.cache.enabled is False
        assert config.cache.backend == "file"
        assert config.cache.directory == (tmp_path / "cache").resolve()

    @pytest.mark.parametrize("text,message", [
        ("tierRequirements: [1, 2]", "must be a mapping"),
        ("tierRequirements:\n  4: {codexTier: 3, count: 0}", "must be positive"),
        ("tierRequirements:\n  4: {codexTier: x, count: 2}", "Invalid integer"),
        ("activities:\n  Mining: stone", "must be a list"),
        ("studyJournalPattern: '('", "Invalid studyJournalPattern"),
        ("api:\n  baseUrl: not a url", "Invalid api settings"),
        ("api:\n  timeoutSeconds: -1", "Invalid api settings"),
        ("cache:\n  backend: redis", "Unknown cache backend"),
        ("cache:\n  enabled: maybe", "Invalid boolean"),
        ("- just\n- a list", "must be a mapping"),
        ("key: [unclosed", "Invalid YAML"),
    ])
    def test_invalid_config(self, tmp_path, text, message):
        path = write_config(tmp_path, text)
        with pytest.raises(ConfigError, match=message):
            load_config(path)
