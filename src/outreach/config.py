from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfoNotFoundError

import yaml

from outreach.domain.policy import CampaignPolicy, resolve_policy
from outreach.domain.stages import EntityKind, EntityStatus

WORKSPACES_DIR = Path("workspaces")
CURRENT_WORKSPACE_FILE = WORKSPACES_DIR / ".current"
WORKSPACE_FILENAME = "workspace.yaml"
DEFAULT_PLATFORM_URL = "https://api.instantly.ai/api/v2"


@dataclass(frozen=True)
class StoreConfig:
    sqlite_path: Path


@dataclass(frozen=True)
class PlatformConfig:
    provider: str
    base_url: str = DEFAULT_PLATFORM_URL
    timeout_seconds: float = 30
    max_attempts: int = 3


@dataclass(frozen=True)
class WorkspaceConfig:
    name: str
    store: StoreConfig
    platform: PlatformConfig | None
    path: Path
    brands: dict[str, CampaignPolicy] = field(default_factory=dict)

    def policy_for(self, brand: str) -> CampaignPolicy:
        return resolve_policy(brand, self.brands)


class WorkspaceError(RuntimeError):
    pass


def ensure_workspaces_dir() -> None:
    WORKSPACES_DIR.mkdir(parents=True, exist_ok=True)


def set_current_workspace(name: str) -> None:
    ensure_workspaces_dir()
    CURRENT_WORKSPACE_FILE.write_text(f"{name}\n", encoding="utf-8")


def get_current_workspace_name() -> str:
    if not CURRENT_WORKSPACE_FILE.exists():
        raise WorkspaceError("No active workspace. Run `outreach workspace use <name>`.")
    return CURRENT_WORKSPACE_FILE.read_text(encoding="utf-8").strip()


def workspace_path(name: str) -> Path:
    return WORKSPACES_DIR / name


def workspace_config_path(name: str) -> Path:
    return workspace_path(name) / WORKSPACE_FILENAME


def load_workspace(name: str | None = None) -> WorkspaceConfig:
    if name is None:
        name = get_current_workspace_name()
    return load_workspace_file(workspace_config_path(name), name)


def load_workspace_file(config_path: Path, name: str) -> WorkspaceConfig:
    if not config_path.exists():
        raise WorkspaceError(f"Workspace config not found: {config_path}")
    data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise WorkspaceError("Workspace config must be a mapping.")
    store = _parse_store(data.get("store"), config_path)
    platform = _parse_platform(data.get("platform"))
    brands = _parse_brands(data.get("brands"))
    return WorkspaceConfig(
        name=name, store=store, platform=platform, path=config_path.parent, brands=brands
    )


def write_workspace_config(name: str, brand: str | None = None) -> Path:
    ensure_workspaces_dir()
    ws_dir = workspace_path(name)
    ws_dir.mkdir(parents=True, exist_ok=True)
    config: dict[str, Any] = {
        "workspace": name,
        "store": {"sqlite_path": "./local.sqlite"},
        "platform": {
            "provider": "instantly",
            "base_url": DEFAULT_PLATFORM_URL,
            "timeout_seconds": 30,
            "max_attempts": 3,
        },
        "brands": {},
    }
    if brand:
        config["brands"][brand] = {
            "entity_kind": EntityKind.LEAD.value,
            "default_sequence": None,
            "timezone": "UTC",
        }
    config_path = workspace_config_path(name)
    config_path.write_text(yaml.safe_dump(config, sort_keys=False), encoding="utf-8")
    return config_path


def _parse_store(store_data: Any, config_path: Path) -> StoreConfig:
    if not isinstance(store_data, dict):
        raise WorkspaceError("Invalid workspace store configuration.")
    sqlite_path_raw = store_data.get("sqlite_path")
    if not sqlite_path_raw:
        raise WorkspaceError("Workspace store.sqlite_path is required.")
    sqlite_path = _resolve_sqlite_path(sqlite_path_raw, config_path)
    if sqlite_path is None:
        raise WorkspaceError("Workspace store.sqlite_path must be a string.")
    return StoreConfig(sqlite_path=sqlite_path)


def _resolve_sqlite_path(sqlite_path_raw: Any, config_path: Path) -> Path | None:
    if not isinstance(sqlite_path_raw, str):
        return None
    raw_path = Path(sqlite_path_raw)
    if raw_path.is_absolute():
        return raw_path
    workspace_dir = config_path.parent
    if raw_path.parts and raw_path.parts[0] == WORKSPACES_DIR.name:
        # Paths written relative to the repo root, e.g. "workspaces/demo/local.sqlite".
        return (workspace_dir.parent.parent / raw_path).resolve()
    return (workspace_dir / raw_path).resolve()


def _parse_platform(platform_data: Any) -> PlatformConfig | None:
    if platform_data is None:
        return None
    if not isinstance(platform_data, dict):
        raise WorkspaceError("Invalid workspace platform configuration.")
    try:
        timeout = float(platform_data.get("timeout_seconds") or 30)
        attempts = int(platform_data.get("max_attempts") or 3)
    except (TypeError, ValueError) as exc:
        raise WorkspaceError("Workspace platform timeout/attempts must be numbers.") from exc
    if timeout <= 0 or attempts < 1:
        raise WorkspaceError("Workspace platform timeout and max_attempts must be positive.")
    return PlatformConfig(
        provider=platform_data.get("provider") or "",
        base_url=platform_data.get("base_url") or DEFAULT_PLATFORM_URL,
        timeout_seconds=timeout,
        max_attempts=attempts,
    )


def _parse_brands(brands_data: Any) -> dict[str, CampaignPolicy]:
    if brands_data is None:
        return {}
    if not isinstance(brands_data, dict):
        raise WorkspaceError("Workspace brands must be a mapping.")
    policies: dict[str, CampaignPolicy] = {}
    for brand, raw in brands_data.items():
        raw = raw or {}
        if not isinstance(raw, dict):
            raise WorkspaceError(f"Brand {brand} policy must be a mapping.")
        policies[str(brand)] = _parse_policy(str(brand), raw)
    return policies


def _parse_policy(brand: str, raw: dict[str, Any]) -> CampaignPolicy:
    try:
        entity_kind = EntityKind(raw.get("entity_kind") or EntityKind.LEAD.value)
        kwargs: dict[str, Any] = {}
        if raw.get("terminal_statuses") is not None:
            kwargs["terminal_statuses"] = tuple(EntityStatus(s) for s in raw["terminal_statuses"])
        if raw.get("conversion_statuses") is not None:
            kwargs["conversion_statuses"] = tuple(
                EntityStatus(s) for s in raw["conversion_statuses"]
            )
    except ValueError as exc:
        raise WorkspaceError(f"Brand {brand}: {exc}") from exc
    policy = CampaignPolicy(
        brand=brand,
        entity_kind=entity_kind,
        default_sequence=raw.get("default_sequence"),
        timezone=raw.get("timezone") or "UTC",
        **kwargs,
    )
    try:
        policy.tzinfo
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise WorkspaceError(f"Brand {brand}: unknown timezone {policy.timezone}") from exc
    return policy
