"""End-to-end tests for calculate_requirements and the CLI."""
from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, List

import httpx
import pytest

from Planner.cache import MemoryCacheBackend, PlannerDataCache
from Planner.cascade import NodeStatus
from Planner.config import DataSettings, PlannerConfig, UnknownTierError
from Planner.data_loader import DataFetchError, DataLoader
from Planner.expander import CodexTier, RecipeNode
from Planner.inventory import ClaimInventories
from Planner.planner import CalculateOptions, calculate_requirements, run_pipeline
from Planner.planner_logging import LogLevel, create_string_logger
from Planner.run_planner import main

CODEX_DOC = {
    "tiers": {
        "2": {
            "name": "Novice Codex",
            "researches": [
                {
                    "name": name,
                    "tier": 2,
                    "children": [
                        {"name": "Novice Study Journal", "tier": 2, "qty": 1, "children": [
                            {"name": "Rough Paper", "tier": 1, "qty": 5},
                        ]},
                        {"name": "Simple Plank", "tier": 2, "qty": 5, "children": [
                            {"name": "Rough Wood Log", "tier": 1, "qty": 2},
                        ]},
                        {"name": "Rough Stone Chunk", "tier": 1, "qty": 10},
                    ],
                }
                for name in ("Stone Research", "Wood Research")
            ],
        }
    }
}

MAPPINGS_DOC = {
    "mappings": {
        "Simple Plank": {"trackable": True, "type": "alias", "apiEquivalent": "Plank"},
        "Stone Research": {"trackable": False, "type": "research"},
        "Wood Research": {"trackable": False, "type": "research"},
    }
}

INVENTORY_DOC = {
    "buildings": [
        {
            "buildingName": "Storehouse",
            "inventory": [
                {"contents": {"item_id": 1, "item_type": "item", "quantity": 60}},
                {"contents": {"item_id": 2, "item_type": "item", "quantity": 120}},
                {"contents": {"item_id": 50, "item_type": "cargo", "quantity": 1}},
            ],
        }
    ],
    "items": [
        {"id": 1, "name": "Plank", "tier": 2},
        {"id": 2, "name": "Rough Stone Chunk", "tier": 1},
    ],
    "cargos": [{"id": 50, "name": "Rough Paper Package", "tier": 1}],
}


def write_json(path: Path, data: Any) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def data_dir(tmp_path) -> Path:
    data = tmp_path / "data"
    data.mkdir()
    write_json(data / "codex.json", CODEX_DOC)
    write_json(data / "item-mappings.json", MAPPINGS_DOC)
    write_json(tmp_path / "inventories.json", INVENTORY_DOC)
    return data


@pytest.fixture
def config(data_dir) -> PlannerConfig:
    config = PlannerConfig()
    config.data = DataSettings(directory=data_dir)
    return config


@pytest.fixture
def requests() -> List[httpx.Request]:
    return []


@pytest.fixture
def loader(config, requests) -> DataLoader:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=INVENTORY_DOC)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    return DataLoader(config, cache=PlannerDataCache(MemoryCacheBackend()), client=client)


class TestCalculateRequirements:

    def test_results(self, loader):
        results = calculate_requirements("42", 3, loader=loader)

        assert results.target_tier == 3
        assert results.codex_tier == 2
        assert results.codex_count == 10
        assert results.codex_name == "Novice Codex"
        assert [r.name for r in results.researches] == ["Stone Research", "Wood Research"]

    def test_alias_and_cascade(self, loader):
        results = calculate_requirements("42", 3, loader=loader)
        plank = results.researches[0].children[0]
        # 100 planks needed across both researches, 60 on hand under "Plank"
        assert plank.name == "Simple Plank"
        assert plank.required == 50
        assert plank.deficit == 20
        assert plank.status is NodeStatus.PARTIAL
        log = plank.children[0]
        assert log.required == 8

    def test_study_journals_extracted(self, loader):
        results = calculate_requirements("42", 3, loader=loader)
        journals = results.study_journals
        assert journals.name == "Novice Study Journal"
        assert journals.required == 20
        paper = journals.children[0]
        # 100 packaged paper covers the 100 needed
        assert paper.required == 100
        assert paper.deficit == 0
        for research in results.researches:
            assert all(c.name != "Novice Study Journal" for c in research.children)

    def test_report_and_summary(self, loader):
        results = calculate_requirements("42", 3, loader=loader)
        report = results.report
        assert report.target_count == 10
        assert {i.name for i in results.summary} == {"Simple Plank", "Rough Stone Chunk"}
        chunk = next(i for i in report.first_trackable if i.name == "Rough Stone Chunk")
        assert (chunk.required, chunk.have, chunk.deficit) == (200, 120, 80)
        assert list(report.by_research) == ["Stone Research", "Wood Research", "Novice Study Journal"]

    def test_custom_count(self, loader):
        results = calculate_requirements("42", 3, CalculateOptions(custom_count=1), loader=loader)
        assert results.codex_count == 1
        assert results.researches[0].children[0].ideal_qty == 5

    def test_unknown_tier_fails_before_loading(self, loader, requests):
        with pytest.raises(UnknownTierError):
            calculate_requirements("42", 12, loader=loader)
        assert requests == []

    def test_inventory_file_skips_api(self, loader, requests, data_dir):
        options = CalculateOptions(inventory_file=data_dir.parent / "inventories.json")
        results = calculate_requirements("42", 3, options, loader=loader)
        assert requests == []
        assert results.researches[0].children[0].deficit == 20

    def test_fetch_failure_propagates(self, config):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        loader = DataLoader(config, cache=PlannerDataCache(MemoryCacheBackend()), client=client)
        with pytest.raises(DataFetchError):
            calculate_requirements("42", 3, loader=loader)

    def test_missing_codex_tier(self, loader):
        with pytest.raises(DataFetchError, match="Codex tier 3"):
            calculate_requirements("42", 4, loader=loader)

    def test_logging(self, loader):
        logger, _ = create_string_logger(LogLevel.SUMMARY)
        calculate_requirements("42", 3, loader=loader, logger=logger)
        categories = {e.category for e in logger.entries}
        assert {"PLANNER", "FETCH", "INVENTORY", "EXPAND", "JOURNAL", "PROGRESS"} <= categories
        assert logger.entries[0].message == "Calculating T3 requirements for claim 42"

    def test_injected_loader_logs_to_caller(self, config):
        own_logger, _ = create_string_logger(LogLevel.SUMMARY)
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=INVENTORY_DOC)))
        loader = DataLoader(config, cache=PlannerDataCache(MemoryCacheBackend()),
                            client=client, logger=own_logger)
        caller_logger, _ = create_string_logger(LogLevel.SUMMARY)

        calculate_requirements("42", 3, loader=loader, logger=caller_logger)

        assert caller_logger.get_entries_by_category("FETCH")
        assert own_logger.entries == []
        assert loader.logger is own_logger

    def test_loader_logger_used_when_none_given(self, config):
        own_logger, _ = create_string_logger(LogLevel.SUMMARY)
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=INVENTORY_DOC)))
        loader = DataLoader(config, cache=PlannerDataCache(MemoryCacheBackend()),
                            client=client, logger=own_logger)

        calculate_requirements("42", 3, loader=loader)

        categories = {e.category for e in own_logger.entries}
        assert {"PLANNER", "FETCH", "PROGRESS"} <= categories

    def test_plan(self, loader):
        results = calculate_requirements("42", 3, loader=loader)
        plan = {item.name: item for item in results.plan}
        assert plan["Rough Stone Chunk"].deficit == 80
        assert plan["Rough Stone Chunk"].activity == "Mining"
        assert plan["Rough Paper"].deficit == 0

    def test_results_serialize(self, loader):
        results = calculate_requirements("42", 3, loader=loader)
        payload = json.loads(json.dumps(asdict(results)))
        assert payload["researches"][0]["children"][0]["status"] == "partial"


class TestRunPipeline:

    def test_identical_inputs_identical_output(self):
        codex = CodexTier("C", 2, [RecipeNode("R", 2, 1, [RecipeNode("Plank", 2, 5)])])
        snapshot = ClaimInventories.model_validate(INVENTORY_DOC)
        first = run_pipeline(codex, snapshot, {}, 10)
        second = run_pipeline(codex, snapshot, {}, 10)
        assert json.dumps(asdict(first[0])) == json.dumps(asdict(second[0]))
        assert asdict(first[1]) == asdict(second[1])


# ---------------------------------------------------------------------------
# Tests: CLI
# ---------------------------------------------------------------------------

@pytest.fixture
def cli_config(tmp_path, data_dir) -> Path:
    path = tmp_path / "planner.yaml"
    path.write_text(
        f"data:\n  directory: {data_dir.name}\ncache:\n  enabled: false\n",
        encoding="utf-8",
    )
    return path


class TestCli:

    def run(self, capsys, *args: str):
        code = main(list(args))
        captured = capsys.readouterr()
        return code, captured.out, captured.err

    def test_text_export(self, capsys, cli_config, tmp_path):
        code, out, _ = self.run(
            capsys, "42", "--tier", "3", "--config", str(cli_config),
            "--inventory-file", str(tmp_path / "inventories.json"), "--log-level", "SILENT",
        )
        assert code == 0
        lines = out.splitlines()
        assert lines[0] == "**T3 Upgrade**"
        assert "**MINING**" in lines
        assert "- 80x Rough Stone Chunk (T1)" in lines
        assert "- 40x Simple Plank (T2)" in lines

    def test_csv_export(self, capsys, cli_config, tmp_path):
        code, out, _ = self.run(
            capsys, "42", "-t", "3", "-c", str(cli_config), "-f", "csv",
            "-i", str(tmp_path / "inventories.json"), "--log-level", "SILENT",
        )
        assert code == 0
        assert out.splitlines()[0] == "activity,name,tier,required,have,deficit"

    def test_plan_formats(self, capsys, cli_config, tmp_path):
        args = ["42", "-t", "3", "-c", str(cli_config),
                "-i", str(tmp_path / "inventories.json"), "--log-level", "SILENT"]
        code, out, _ = self.run(capsys, *args, "-f", "plan")
        assert code == 0
        assert "- 80x Rough Stone Chunk (T1)" in out.splitlines()

        code, out, _ = self.run(capsys, *args, "-f", "plan-csv")
        assert code == 0
        assert "Mining,Rough Stone Chunk,1,200,120,80" in out.splitlines()

    @pytest.mark.parametrize("fmt", ["tree", "summary", "json"])
    def test_other_formats(self, capsys, cli_config, tmp_path, fmt):
        code, out, _ = self.run(
            capsys, "42", "-t", "3", "-c", str(cli_config), "-f", fmt,
            "-i", str(tmp_path / "inventories.json"), "--log-level", "SILENT",
        )
        assert code == 0
        assert "Simple Plank" in out

    def test_log_file(self, capsys, cli_config, tmp_path):
        log_path = tmp_path / "planner.log"
        code, _, _ = self.run(
            capsys, "42", "-t", "3", "-c", str(cli_config),
            "-i", str(tmp_path / "inventories.json"), "--log-file", str(log_path),
        )
        assert code == 0
        assert "Calculating T3 requirements for claim 42" in log_path.read_text(encoding="utf-8")

    def test_unknown_tier_exit_code(self, capsys, cli_config):
        code, _, err = self.run(capsys, "42", "-t", "1", "-c", str(cli_config))
        assert code == 2
        assert "Invalid target tier: 1" in err

    def test_bad_claim_id(self, capsys, cli_config):
        code, _, err = self.run(capsys, "abc", "-t", "3", "-c", str(cli_config), "--log-level", "SILENT")
        assert code == 1
        assert "Invalid claim id" in err
