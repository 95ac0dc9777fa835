from pathlib import Path

import pytest

from outreach.config import (
    WORKSPACES_DIR,
    WorkspaceError,
    _resolve_sqlite_path,
    load_workspace,
    load_workspace_file,
    write_workspace_config,
)
from outreach.domain.stages import EntityKind, EntityStatus


def test_resolve_sqlite_path_relative(tmp_path: Path) -> None:
    ws_dir = tmp_path / WORKSPACES_DIR / "demo"
    ws_dir.mkdir(parents=True)
    config_path = ws_dir / "workspace.yaml"
    config_path.write_text("workspace: demo\nstore:\n  sqlite_path: ./local.sqlite\n")

    resolved = _resolve_sqlite_path("./local.sqlite", config_path)
    assert resolved == (ws_dir / "local.sqlite").resolve()


def test_resolve_sqlite_path_repo_relative(tmp_path: Path) -> None:
    ws_dir = tmp_path / WORKSPACES_DIR / "demo"
    ws_dir.mkdir(parents=True)
    config_path = ws_dir / "workspace.yaml"
    config_path.write_text("workspace: demo\nstore:\n  sqlite_path: workspaces/demo/local.sqlite\n")

    resolved = _resolve_sqlite_path("workspaces/demo/local.sqlite", config_path)
    assert resolved == (tmp_path / "workspaces" / "demo" / "local.sqlite").resolve()


def test_written_workspace_loads_back(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    write_workspace_config("demo", brand="Northwind")

    ws = load_workspace("demo")
    assert ws.name == "demo"
    assert ws.platform is not None
    assert ws.platform.provider == "instantly"
    assert ws.platform.max_attempts == 3
    policy = ws.policy_for("northwind")
    assert policy.brand == "Northwind"
    assert policy.entity_kind is EntityKind.LEAD


def test_brand_policies_parsed(tmp_path: Path) -> None:
    config_path = tmp_path / "workspace.yaml"
    config_path.write_text(
        "store:\n"
        "  sqlite_path: ./local.sqlite\n"
        "brands:\n"
        "  Acme:\n"
        "    entity_kind: contact\n"
        "    default_sequence: Partner intro\n"
        "    conversion_statuses: [won, engaged]\n"
        "    timezone: America/Chicago\n",
        encoding="utf-8",
    )

    ws = load_workspace_file(config_path, "demo")
    policy = ws.policy_for("acme")
    assert policy.entity_kind is EntityKind.CONTACT
    assert policy.default_sequence == "Partner intro"
    assert policy.conversion_statuses == (EntityStatus.WON, EntityStatus.ENGAGED)
    assert ws.platform is None

    fallback = ws.policy_for("Other")
    assert fallback.entity_kind is EntityKind.LEAD
    assert fallback.default_sequence is None


@pytest.mark.parametrize(
    "brand_block",
    [
        "    timezone: Mars/Olympus\n",
        "    entity_kind: robot\n",
        "    terminal_statuses: [lost]\n",
    ],
)
def test_invalid_brand_policy_rejected(tmp_path: Path, brand_block: str) -> None:
    config_path = tmp_path / "workspace.yaml"
    config_path.write_text(
        "store:\n  sqlite_path: ./local.sqlite\nbrands:\n  Acme:\n" + brand_block,
        encoding="utf-8",
    )

    with pytest.raises(WorkspaceError):
        load_workspace_file(config_path, "demo")


def test_invalid_platform_block_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "workspace.yaml"
    config_path.write_text(
        "store:\n  sqlite_path: ./local.sqlite\nplatform:\n  provider: instantly\n  max_attempts: 0\n",
        encoding="utf-8",
    )

    with pytest.raises(WorkspaceError):
        load_workspace_file(config_path, "demo")


def test_missing_store_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "workspace.yaml"
    config_path.write_text("workspace: demo\n", encoding="utf-8")

    with pytest.raises(WorkspaceError):
        load_workspace_file(config_path, "demo")


def test_example_workspace_is_valid() -> None:
    example = Path(__file__).resolve().parents[1] / "resources" / "workspace.example.yaml"

    ws = load_workspace_file(example, "demo")
    assert ws.policy_for("acme partners").entity_kind is EntityKind.CONTACT
    assert ws.policy_for("Northwind").default_sequence == "Warm intro"
