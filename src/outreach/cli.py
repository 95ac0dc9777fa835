from __future__ import annotations

import json
import shutil
from dataclasses import asdict
from datetime import date, datetime
from pathlib import Path
from typing import Annotated

import typer

from outreach import __version__
from outreach.config import (
    WorkspaceConfig,
    WorkspaceError,
    ensure_workspaces_dir,
    load_workspace,
    set_current_workspace,
    workspace_config_path,
    write_workspace_config,
)
from outreach.domain import rules
from outreach.domain.errors import (
    ExternalPlatformError,
    InconsistentStateError,
    OutreachError,
    PartialSyncFailure,
)
from outreach.domain.models import EntityRef
from outreach.domain.stages import ChannelType, EntityKind, TouchpointStatus
from outreach.services import (
    aggregation,
    campaigns,
    catalog,
    entities,
    exports,
    platform_sync,
    reconcile,
    touchpoints,
)
from outreach.services.events import EventLogger
from outreach.services.platform_sync import PlatformSyncError
from outreach.services.touchpoints import TouchpointFilter
from outreach.services.utils import today_iso
from outreach.store.sqlite import SqliteStore

app = typer.Typer(help="Outreach campaign CLI")
workspace_app = typer.Typer(help="Workspace management")
schema_app = typer.Typer(help="Schema operations")
sequence_app = typer.Typer(help="Sequence definitions")
lead_app = typer.Typer(help="Individual leads")
contact_app = typer.Typer(help="Organization contacts")
campaign_app = typer.Typer(help="Campaigns")
touchpoint_app = typer.Typer(help="Touchpoints")
sync_app = typer.Typer(help="Sending platform sync")
report_app = typer.Typer(help="Rollups and calendars")
export_app = typer.Typer(help="Exports")

app.add_typer(workspace_app, name="workspace")
app.add_typer(schema_app, name="schema")
app.add_typer(sequence_app, name="sequence")
app.add_typer(lead_app, name="lead")
app.add_typer(contact_app, name="contact")
app.add_typer(campaign_app, name="campaign")
app.add_typer(touchpoint_app, name="touchpoint")
app.add_typer(sync_app, name="sync")
app.add_typer(report_app, name="report")
app.add_typer(export_app, name="export")

SCHEMA_PATH = Path("resources/schema/canonical.yaml")


@app.callback()
def version_callback(version: bool = typer.Option(False, "--version", help="Show version and exit.")):
    if version:
        typer.echo(__version__)
        raise typer.Exit()


@app.command("init")
def init() -> None:
    """Initialize directories for workspaces and outputs."""
    ensure_workspaces_dir()
    Path("data").mkdir(exist_ok=True)
    Path("exports").mkdir(exist_ok=True)
    typer.echo("Initialized outreach directories.")


@workspace_app.command("add")
def workspace_add(
    name: str = typer.Argument(...),
    brand: str | None = typer.Option(None, "--brand", help="Seed a brand policy."),
    use: bool = typer.Option(True, "--use/--no-use", help="Set as current workspace."),
    force: bool = typer.Option(
        False, "--force", help="Overwrite existing workspace config if it exists."
    ),
) -> None:
    config_path = workspace_config_path(name)
    if config_path.exists() and not force:
        raise typer.BadParameter(
            f"Workspace already exists: {config_path}. Use --force to overwrite."
        )
    config_path = write_workspace_config(name, brand)
    if use:
        set_current_workspace(name)
    typer.echo(f"Workspace created: {config_path}")


@workspace_app.command("use")
def workspace_use(name: str = typer.Argument(...)) -> None:
    if not workspace_config_path(name).exists():
        raise typer.BadParameter(f"Workspace config not found: {workspace_config_path(name)}")
    set_current_workspace(name)
    typer.echo(f"Active workspace: {name}")


@schema_app.command("apply")
def schema_apply() -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    store.apply_schema(SCHEMA_PATH)
    typer.echo("Applied schema to local SQLite.")


@sequence_app.command("add")
def sequence_add(
    name: str = typer.Argument(...),
    steps: list[str] = typer.Option(
        ..., "--step", help="channel:day_offset[:name], in order, e.g. email:0:Intro"
    ),
    brand: str | None = typer.Option(None, "--brand"),
    description: str | None = typer.Option(None, "--description"),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        parsed = [catalog.parse_step(raw, index) for index, raw in enumerate(steps, start=1)]
        sequence_id = catalog.add_sequence(store, name, brand, parsed, description)
    except OutreachError as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Created sequence: {sequence_id}")


@sequence_app.command("list")
def sequence_list(brand: str | None = typer.Option(None, "--brand")) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    for sequence in catalog.list_sequences(store, brand):
        typer.echo(
            f"{sequence.sequence_id} | {sequence.name} | {sequence.brand or '-'} | "
            f"{len(sequence.steps)} steps | last day {sequence.max_day_offset}"
        )


@sequence_app.command("show")
def sequence_show(name_or_id: str = typer.Argument(...)) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        sequence = catalog.find_sequence(store, name_or_id)
    except OutreachError as exc:
        _exit_with_error(str(exc))
    typer.echo(f"{sequence.name} ({sequence.sequence_id})")
    for step in sequence.ordered_steps:
        typer.echo(f"  {step.step_order}. day {step.day_offset} {step.channel.value} {step.name or ''}")


@lead_app.command("add")
def lead_add(
    contact: str = typer.Argument(..., help='"Jane Doe <jane@example.com>"'),
    phone: str | None = typer.Option(None, "--phone"),
    city: str | None = typer.Option(None, "--city"),
    company: str | None = typer.Option(None, "--company"),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        lead_id = entities.add_lead(store, contact, phone=phone, city=city, company=company)
    except OutreachError as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Created lead: {lead_id}")


@lead_app.command("list")
def lead_list(
    campaign: str | None = typer.Option(None, "--campaign"),
    status: str | None = typer.Option(None, "--status"),
) -> None:
    _list_entities(EntityKind.LEAD, campaign, status)


@contact_app.command("add")
def contact_add(
    contact: str = typer.Argument(..., help='"Jane Doe <jane@example.com>"'),
    org: str = typer.Option(..., "--org"),
    title: str | None = typer.Option(None, "--title"),
    phone: str | None = typer.Option(None, "--phone"),
    city: str | None = typer.Option(None, "--city"),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        contact_id = entities.add_org_contact(
            store, org, contact, title=title, phone=phone, city=city
        )
    except OutreachError as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Created contact: {contact_id}")


@contact_app.command("list")
def contact_list(
    campaign: str | None = typer.Option(None, "--campaign"),
    status: str | None = typer.Option(None, "--status"),
) -> None:
    _list_entities(EntityKind.CONTACT, campaign, status)


@campaign_app.command("create")
def campaign_create(
    name: str = typer.Argument(...),
    brand: str = typer.Option(..., "--brand"),
    start: str = typer.Option(..., "--start", help="YYYY-MM-DD"),
    sequence: str | None = typer.Option(None, "--sequence", help="Sequence name or id."),
    leads: Annotated[list[str] | None, typer.Option("--lead", help="Lead id.")] = None,
    contacts: Annotated[list[str] | None, typer.Option("--contact", help="Contact id.")] = None,
    external_id: str | None = typer.Option(None, "--external-id", help="Sending platform campaign id."),
    forward: bool = typer.Option(
        True, "--forward/--no-forward", help="Register leads with the sending platform."
    ),
    created_by: str | None = typer.Option(None, "--created-by"),
    events: bool = typer.Option(True, "--events/--no-events", help="Write events to the workspace log."),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    logger = _event_logger(ws, enabled=events)
    targets = [EntityRef.lead(i) for i in leads or []] + [
        EntityRef.contact(i) for i in contacts or []
    ]
    forwarder = None
    if forward and external_id:
        try:
            forwarder = platform_sync.make_client(ws.platform)
        except (PlatformSyncError, ExternalPlatformError) as exc:
            typer.echo(f"Warning: {exc}", err=True)
    try:
        start_date = rules.parse_date(start, "start")
        result = campaigns.create_campaign(
            store,
            name=name,
            brand=brand,
            start_date=start_date,
            targets=targets,
            sequence_ref=sequence,
            external_id=external_id,
            created_by=created_by,
            policies=ws.brands,
            forwarder=forwarder,
            logger=logger,
        )
    except InconsistentStateError as exc:
        typer.echo(f"Error: {exc}", err=True)
        if exc.missing_ids:
            typer.echo("Not reassigned: " + ", ".join(exc.missing_ids), err=True)
        raise typer.Exit(code=3) from exc
    except OutreachError as exc:
        _exit_with_error(str(exc))
    campaign = result.campaign
    typer.echo(f"Created campaign: {campaign.campaign_id}")
    typer.echo(
        f"{campaign.start_date} -> {campaign.end_date} | touchpoints={len(result.touchpoint_ids)} "
        f"| entities={result.entities_updated}"
    )
    for warning in result.warnings:
        typer.echo(f"Warning: {warning}", err=True)


@campaign_app.command("list")
def campaign_list(brand: str | None = typer.Option(None, "--brand")) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    for campaign in campaigns.list_campaigns(store, brand):
        typer.echo(
            f"{campaign.campaign_id} | {campaign.name} | {campaign.brand} | {campaign.status.value} | "
            f"{campaign.start_date} -> {campaign.end_date} | {campaign.external_id or '-'}"
        )


@campaign_app.command("close")
def campaign_close(campaign_id: str = typer.Argument(...)) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        campaign = campaigns.close_campaign(store, campaign_id)
    except OutreachError as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Campaign {campaign.name} is {campaign.status.value}.")


@touchpoint_app.command("schedule")
def touchpoint_schedule(
    channel: str = typer.Option(..., "--channel"),
    at: str = typer.Option(..., "--at", help="ISO 8601 date/time"),
    lead: str | None = typer.Option(None, "--lead"),
    contact: str | None = typer.Option(None, "--contact"),
    subject: str | None = typer.Option(None, "--subject"),
    created_by: str | None = typer.Option(None, "--created-by"),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        entity = EntityRef.from_ids(lead, contact)
        scheduled_at = rules.parse_datetime(at, "at")
        if scheduled_at is None:
            raise rules.ValidationError("at is required.")
        touchpoint_id = touchpoints.schedule_touchpoint(
            store, entity, channel, scheduled_at, subject=subject, created_by=created_by
        )
    except OutreachError as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Scheduled touchpoint: {touchpoint_id}")


@touchpoint_app.command("batch")
def touchpoint_batch(
    path: Path = typer.Argument(..., help="JSON file with a list of touchpoints."),
    created_by: str | None = typer.Option(None, "--created-by"),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        _exit_with_error(f"Could not read {path}: {exc}")
    if isinstance(payload, dict):
        payload = payload.get("touchpoints")
    if not isinstance(payload, list):
        _exit_with_error("Expected a JSON list of touchpoints.")
    try:
        specs = touchpoints.specs_from_payload(payload)
        ids = touchpoints.create_batch(store, specs, created_by=created_by)
    except OutreachError as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Created {len(ids)} touchpoints.")


@touchpoint_app.command("complete")
def touchpoint_complete(
    touchpoint_id: str = typer.Argument(...),
    outcome_kind: str = typer.Option("sent", "--kind"),
    note: str | None = typer.Option(None, "--note"),
    at: str | None = typer.Option(None, "--at", help="ISO 8601; defaults to now."),
    events: bool = typer.Option(True, "--events/--no-events"),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        touchpoint = touchpoints.complete_touchpoint(
            store,
            touchpoint_id,
            outcome_kind,
            outcome=note,
            completed_at=rules.parse_datetime(at, "at"),
            logger=_event_logger(ws, enabled=events),
        )
    except OutreachError as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Completed {touchpoint.touchpoint_id}: {touchpoint.outcome_kind.value}")


@touchpoint_app.command("list")
def touchpoint_list(
    campaign: str | None = typer.Option(None, "--campaign"),
    channel: str | None = typer.Option(None, "--channel"),
    status: str | None = typer.Option(None, "--status"),
    day: str | None = typer.Option(None, "--date"),
    date_from: str | None = typer.Option(None, "--from"),
    date_to: str | None = typer.Option(None, "--to"),
    lead: str | None = typer.Option(None, "--lead"),
    contact: str | None = typer.Option(None, "--contact"),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        rules.validate_enum(channel, [c.value for c in ChannelType], "channel")
        rules.validate_enum(status, [s.value for s in TouchpointStatus], "status")
        filters = TouchpointFilter(
            day=rules.parse_date(day, "date"),
            date_from=rules.parse_date(date_from, "from"),
            date_to=rules.parse_date(date_to, "to"),
            channel=ChannelType(channel) if channel else None,
            campaign_id=campaign,
            entity=EntityRef.from_ids(lead, contact) if lead or contact else None,
            status=TouchpointStatus(status) if status else None,
        )
        rows = touchpoints.query(store, filters)
    except OutreachError as exc:
        _exit_with_error(str(exc))
    _echo_touchpoints(rows)


@touchpoint_app.command("today")
def touchpoint_today(campaign: str | None = typer.Option(None, "--campaign")) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    _echo_touchpoints(touchpoints.due_today(store, date.today(), campaign_id=campaign))


@touchpoint_app.command("overdue")
def touchpoint_overdue(campaign: str | None = typer.Option(None, "--campaign")) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    _echo_touchpoints(touchpoints.overdue(store, date.today(), campaign_id=campaign))


@sync_app.command("pull")
def sync_pull(
    campaign_external_id: str = typer.Argument(..., help="Sending platform campaign id."),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON output."),
    strict: bool = typer.Option(False, "--strict", help="Exit non-zero if any event failed."),
    events: bool = typer.Option(
        True, "--events/--no-events", help="Write events to the workspace log."
    ),
) -> None:
    """Fetch email statuses from the sending platform and reconcile touchpoints."""
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        client = platform_sync.make_client(ws.platform)
        result = platform_sync.pull(
            store, client, campaign_external_id, logger=_event_logger(ws, enabled=events)
        )
    except PlatformSyncError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    except OutreachError as exc:
        _exit_with_error(str(exc))
    _report_reconcile(result, json_output, strict)


@sync_app.command("events")
def sync_events(
    path: Path = typer.Argument(..., help="JSON file with a list of platform email events."),
    campaign_external_id: str = typer.Option(..., "--campaign"),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON output."),
    strict: bool = typer.Option(False, "--strict", help="Exit non-zero if any event failed."),
    events: bool = typer.Option(True, "--events/--no-events"),
) -> None:
    """Reconcile touchpoints against an exported platform event file."""
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        _exit_with_error(f"Could not read {path}: {exc}")
    if isinstance(payload, dict):
        payload = payload.get("emails") or payload.get("events") or []
    try:
        result = reconcile.reconcile(
            store, campaign_external_id, payload, logger=_event_logger(ws, enabled=events)
        )
    except OutreachError as exc:
        _exit_with_error(str(exc))
    _report_reconcile(result, json_output, strict)


@report_app.command("counts")
def report_counts(
    lead: str | None = typer.Option(None, "--lead"),
    contact: str | None = typer.Option(None, "--contact"),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        counts = aggregation.entity_counts(store, EntityRef.from_ids(lead, contact))
    except OutreachError as exc:
        _exit_with_error(str(exc))
    typer.echo(f"scheduled={counts.scheduled} completed={counts.completed} total={counts.total}")


@report_app.command("calendar")
def report_calendar(
    date_from: str = typer.Option(..., "--from"),
    date_to: str = typer.Option(..., "--to"),
    campaign: str | None = typer.Option(None, "--campaign"),
    channel: str | None = typer.Option(None, "--channel"),
    brand: str | None = typer.Option(None, "--brand", help="Use this brand's timezone."),
    json_output: bool = typer.Option(False, "--json"),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        rules.validate_enum(channel, [c.value for c in ChannelType], "channel")
        counts = aggregation.daily_histogram(
            store,
            rules.parse_date(date_from, "from"),
            rules.parse_date(date_to, "to"),
            campaign_id=campaign,
            channel=ChannelType(channel) if channel else None,
            tz=ws.policy_for(brand or "").tzinfo,
        )
    except OutreachError as exc:
        _exit_with_error(str(exc))
    if json_output:
        typer.echo(json.dumps({"counts": {d.isoformat(): n for d, n in counts.items()}}, indent=2))
        return
    for day, count in counts.items():
        typer.echo(f"{day.isoformat()} {count}")


@report_app.command("rollup")
def report_rollup(
    campaign: str | None = typer.Option(None, "--campaign"),
    brand: str | None = typer.Option(None, "--brand"),
    today: str | None = typer.Option(None, "--today", help="YYYY-MM-DD; defaults to today."),
    json_output: bool = typer.Option(False, "--json"),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        if campaign and not brand:
            brand = campaigns.get_campaign(store, campaign).brand
        policy = ws.policy_for(brand or "")
        day = rules.parse_date(today, "today") or datetime.now(policy.tzinfo).date()
        rollup = aggregation.campaign_rollup(
            store, day, campaign_id=campaign, brand=brand, policy=policy
        )
    except OutreachError as exc:
        _exit_with_error(str(exc))
    payload = asdict(rollup)
    payload["day"] = rollup.day.isoformat()
    if json_output:
        typer.echo(json.dumps(payload, indent=2))
        return
    typer.echo(" ".join(f"{key}={value}" for key, value in payload.items()))


@export_app.command("excel")
def export_excel(
    out: str = typer.Option(..., "--out"),
    date_from: str | None = typer.Option(None, "--from", help="Add a calendar sheet from this day."),
    date_to: str | None = typer.Option(None, "--to"),
    campaign: str | None = typer.Option(None, "--campaign"),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        start = rules.parse_date(date_from, "from")
        end = rules.parse_date(date_to, "to")
    except OutreachError as exc:
        _exit_with_error(str(exc))
    calendar_range = (start, end) if start and end else None
    exports.export_excel(store, Path(out), calendar_range=calendar_range, campaign_id=campaign)
    typer.echo(f"Exported Excel to {out}")


@app.command("snapshot")
def snapshot() -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    snapshot_dir = Path("data") / "snapshots" / today_iso()
    snapshot_dir.mkdir(parents=True, exist_ok=True)
    if ws.store.sqlite_path.exists():
        shutil.copy2(ws.store.sqlite_path, snapshot_dir / "local.sqlite")
    exports.export_csv_tables(store, snapshot_dir)
    typer.echo(f"Snapshot created at {snapshot_dir}")


def _list_entities(kind: EntityKind, campaign: str | None, status: str | None) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        items = entities.list_entities(store, kind, campaign_id=campaign, status=status)
    except OutreachError as exc:
        _exit_with_error(str(exc))
    for item in items:
        typer.echo(
            f"{item.ref.id} | {item.name} | {item.email or '-'} | {item.status} | "
            f"scheduled={item.scheduled} completed={item.completed}"
        )


def _echo_touchpoints(rows) -> None:
    if not rows:
        typer.echo("No touchpoints.")
        return
    for tp in rows:
        kind = tp.outcome_kind.value if tp.outcome_kind else tp.status.value
        typer.echo(
            f"{tp.touchpoint_id} | {tp.entity.kind.value}:{tp.entity.id} | {tp.channel.value} | "
            f"{tp.scheduled_at.isoformat()} | {kind} | {tp.subject or ''}"
        )


def _report_reconcile(result: reconcile.ReconcileResult, json_output: bool, strict: bool) -> None:
    if json_output:
        payload = {
            "updated": result.updated,
            "skipped": result.skipped,
            "failed": result.failed,
            "changes": [asdict(change) for change in result.changes],
            "failures": [asdict(failure) for failure in result.failures],
        }
        typer.echo(json.dumps(payload, indent=2))
    else:
        for line in platform_sync.format_reconcile_report(result):
            typer.echo(line)
    if strict:
        try:
            result.raise_for_failures()
        except PartialSyncFailure as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(code=1) from exc


def _load_workspace() -> WorkspaceConfig:
    try:
        return load_workspace()
    except WorkspaceError as exc:
        typer.echo(str(exc))
        raise typer.Exit(code=1) from exc


def _exit_with_error(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


def _event_logger(ws: WorkspaceConfig, enabled: bool) -> EventLogger:
    return EventLogger(path=ws.path / "events.ndjson", workspace=ws.name, enabled=enabled)


if __name__ == "__main__":
    app()
