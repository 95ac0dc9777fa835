import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from outreach import cli

runner = CliRunner()
SCHEMA_PATH = Path(__file__).resolve().parents[1] / "resources" / "schema" / "canonical.yaml"


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli, "SCHEMA_PATH", SCHEMA_PATH)
    assert runner.invoke(cli.app, ["workspace", "add", "demo", "--brand", "Northwind"]).exit_code == 0
    assert runner.invoke(cli.app, ["schema", "apply"]).exit_code == 0
    return tmp_path


def _last_word(output: str) -> str:
    return output.strip().split()[-1]


def test_campaign_flow(workspace: Path) -> None:
    result = runner.invoke(cli.app, ["lead", "add", "Jane Doe <jane@example.com>"])
    assert result.exit_code == 0, result.output
    lead_id = _last_word(result.output)

    result = runner.invoke(
        cli.app,
        ["sequence", "add", "Intro", "--step", "email:0:Hi", "--step", "call:3", "--step", "email:10"],
    )
    assert result.exit_code == 0, result.output

    result = runner.invoke(
        cli.app,
        [
            "campaign", "create", "July push",
            "--brand", "Northwind",
            "--start", "2025-07-01",
            "--sequence", "Intro",
            "--lead", lead_id,
            "--external-id", "ext-1",
            "--no-forward",
        ],
    )
    assert result.exit_code == 0, result.output
    assert "2025-07-01 -> 2025-07-11 | touchpoints=3 | entities=1" in result.output

    result = runner.invoke(cli.app, ["touchpoint", "list", "--lead", lead_id])
    assert result.exit_code == 0, result.output
    assert len(result.output.strip().splitlines()) == 3

    events_path = workspace / "events.json"
    events_path.write_text(
        json.dumps([{"email": "jane@example.com", "status": "sent", "campaign_id": "ext-1"}]),
        encoding="utf-8",
    )
    result = runner.invoke(cli.app, ["sync", "events", str(events_path), "--campaign", "ext-1", "--json"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["updated"] == 1

    result = runner.invoke(cli.app, ["report", "counts", "--lead", lead_id])
    assert result.output.strip() == "scheduled=2 completed=1 total=3"

    result = runner.invoke(
        cli.app, ["report", "calendar", "--from", "2025-07-01", "--to", "2025-07-31", "--json"]
    )
    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["counts"]["2025-07-11"] == 1

    assert (workspace / "workspaces" / "demo" / "events.ndjson").exists()


def test_campaign_create_reports_errors(workspace: Path) -> None:
    result = runner.invoke(
        cli.app,
        ["campaign", "create", "Empty", "--brand", "Northwind", "--start", "2025-07-01"],
    )
    assert result.exit_code == 1

    result = runner.invoke(
        cli.app,
        ["campaign", "create", "Bad", "--brand", "Northwind", "--start", "July", "--lead", "x"],
    )
    assert result.exit_code == 1


def test_sync_pull_without_api_key(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("INSTANTLY_API_KEY", raising=False)

    result = runner.invoke(cli.app, ["sync", "pull", "ext-1"])

    assert result.exit_code == 2
