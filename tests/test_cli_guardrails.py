from __future__ import annotations

import copy
import json
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from kctgov.cli import guardrails

REPO_ROOT = Path(__file__).resolve().parents[1]
CONFIG = REPO_ROOT / "config" / "governance.yaml"
SAMPLES = REPO_ROOT / "config" / "samples"
VERSION = SAMPLES / "version_v1_2.yaml"
CLASSES = SAMPLES / "classes.yaml"
runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("KCTGOV_CONFIG", "KCTGOV_SQLITE_PATH", "KCTGOV_AUDIT_LOG"):
        monkeypatch.delenv(key, raising=False)


def _version_variant(tmp_path: Path, name: str, **content_changes) -> Path:
    data = yaml.safe_load(VERSION.read_text(encoding="utf-8"))
    data = copy.deepcopy(data)
    data["content"].update(content_changes)
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_readiness_sample_is_ready() -> None:
    result = runner.invoke(guardrails.app, ["readiness", str(VERSION), "--config", str(CONFIG)])
    assert result.exit_code == 0, result.output
    assert "Ready to publish" in result.output


def test_readiness_reports_hours_mismatch(tmp_path: Path) -> None:
    broken = _version_variant(tmp_path, "broken.yaml", total_hours=100)
    result = runner.invoke(guardrails.app, ["readiness", str(broken), "--config", str(CONFIG), "--json"])

    assert result.exit_code == 1
    payload = json.loads(result.stdout)
    assert payload["ready"] is False
    assert payload["checks"]["hoursValidation"] is False
    assert any("100h" in issue for issue in payload["blocking_issues"])


def test_invalid_version_file_exits_2(tmp_path: Path) -> None:
    bad = tmp_path / "bad.yaml"
    bad.write_text("id: ver-1\nversion_label: nope\n", encoding="utf-8")
    result = runner.invoke(guardrails.app, ["readiness", str(bad), "--config", str(CONFIG)])
    assert result.exit_code == 2
    assert "Invalid version file" in result.output


def test_mapping_blocks_on_level_mismatch() -> None:
    result = runner.invoke(guardrails.app, ["mapping", str(VERSION), str(CLASSES), "--config", str(CONFIG), "--json"])

    assert result.exit_code == 1
    payload = json.loads(result.stdout)
    assert payload["status"] == "blocked"
    assert payload["risk_level"] == "high"
    assert payload["class_ids"] == ["cls-hanoi-b1-evening", "cls-saigon-a2-teens"]
    blocked = [c for c in payload["conflicts"] if c["class_id"] == "cls-saigon-a2-teens"]
    assert {c["type"] for c in blocked} >= {"level", "hours", "age", "modality", "resources"}


def test_mapping_single_class_passes() -> None:
    result = runner.invoke(
        guardrails.app,
        ["mapping", str(VERSION), str(CLASSES), "--class-id", "cls-hanoi-b1-evening", "--config", str(CONFIG)],
    )
    assert result.exit_code == 0, result.output
    assert "Mapping can proceed" in result.output


def test_mapping_unknown_class_id() -> None:
    result = runner.invoke(
        guardrails.app,
        ["mapping", str(VERSION), str(CLASSES), "--class-id", "cls-nope", "--config", str(CONFIG)],
    )
    assert result.exit_code == 2


def test_rules_lists_effective_mapping_rules() -> None:
    result = runner.invoke(guardrails.app, ["rules", "--category", "mapping", "--config", str(CONFIG), "--json"])
    assert result.exit_code == 0, result.output
    rules = json.loads(result.stdout)
    assert [rule["category"] for rule in rules] == ["mapping"] * 5
    level = next(rule for rule in rules if rule["id"] == "mapping-level-match")
    assert level["config"] == {"strict": False}


def test_diff_between_versions(tmp_path: Path) -> None:
    data = yaml.safe_load(VERSION.read_text(encoding="utf-8"))
    unit = copy.deepcopy(data["content"]["courses"][0]["units"][0])
    unit["id"] = "unit-3"
    unit["duration"] = 10
    data["content"]["courses"][0]["units"].append(unit)
    data["version_label"] = "v1.3"
    newer = tmp_path / "v1_3.yaml"
    newer.write_text(yaml.safe_dump(data), encoding="utf-8")

    result = runner.invoke(guardrails.app, ["diff", str(newer), str(VERSION), "--json"])

    assert result.exit_code == 0, result.output
    changes = json.loads(result.stdout)
    assert [change["description"] for change in changes] == [
        "Total hours changed from 40h to 50h",
        "1 unit(s) added",
    ]
