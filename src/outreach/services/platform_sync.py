from __future__ import annotations

import os
from typing import Any, Protocol

from outreach.adapters.instantly.client import InstantlyClient
from outreach.config import PlatformConfig
from outreach.domain.errors import ExternalPlatformError
from outreach.services import campaigns
from outreach.services.events import EventLogger
from outreach.services.reconcile import ReconcileResult, reconcile
from outreach.services.utils import utc_now_iso
from outreach.store.sqlite import SqliteStore

API_KEY_ENV = "INSTANTLY_API_KEY"


class PlatformSyncError(RuntimeError):
    pass


class EmailSource(Protocol):
    def list_emails(self, campaign_id: str, status: str | None = None) -> list[dict[str, Any]]: ...


def make_client(platform: PlatformConfig | None) -> InstantlyClient:
    if platform is None:
        raise PlatformSyncError("Workspace platform config is missing.")
    if platform.provider != "instantly":
        raise PlatformSyncError("Only the instantly platform provider is supported.")
    api_key = os.getenv(API_KEY_ENV)
    if not api_key:
        raise PlatformSyncError(f"{API_KEY_ENV} is not set.")
    return InstantlyClient(
        api_key=api_key,
        base_url=platform.base_url,
        timeout=platform.timeout_seconds,
        max_attempts=platform.max_attempts,
    )


def pull(
    store: SqliteStore,
    client: EmailSource,
    campaign_external_id: str,
    provider: str = "instantly",
    logger: EventLogger | None = None,
) -> ReconcileResult:
    campaign = campaigns.find_by_external_id(store, campaign_external_id)
    try:
        events = client.list_emails(campaign_external_id)
    except ExternalPlatformError as exc:
        if exc.status_code in {401, 403}:
            raise PlatformSyncError(
                "Sending platform auth error; check the API key and workspace access."
            ) from exc
        raise PlatformSyncError(str(exc)) from exc

    result = reconcile(store, campaign_external_id, events, logger=logger)
    record_sync_state(store, campaign.campaign_id, provider, result)
    return result


def record_sync_state(
    store: SqliteStore, campaign_id: str, provider: str, result: ReconcileResult
) -> None:
    store.execute(
        "INSERT INTO platform_sync_state (campaign_id, provider, last_sync_at, last_updated, last_skipped, "
        "last_failed) VALUES (?, ?, ?, ?, ?, ?) "
        "ON CONFLICT(campaign_id) DO UPDATE SET provider=excluded.provider, "
        "last_sync_at=excluded.last_sync_at, last_updated=excluded.last_updated, "
        "last_skipped=excluded.last_skipped, last_failed=excluded.last_failed",
        (campaign_id, provider, utc_now_iso(), result.updated, result.skipped, result.failed),
    )


def format_reconcile_report(result: ReconcileResult) -> list[str]:
    lines = [
        "summary"
        f" updated={result.updated}"
        f" skipped={result.skipped}"
        f" failed={result.failed}"
    ]
    for change in result.changes:
        if change.action == "skipped" and change.reason == "no_match":
            continue
        kind = f" outcome={change.outcome_kind}" if change.outcome_kind else ""
        reason = f" reason={change.reason}" if change.reason else ""
        lines.append(f"{change.email} {change.touchpoint_id or '-'} {change.action}{kind}{reason}")
    for failure in result.failures:
        lines.append(f"{failure.email or '-'} failed status={failure.status} error={failure.error}")
    return lines
