from datetime import date
from pathlib import Path

from openpyxl import load_workbook

from outreach.domain.models import EntityRef
from outreach.services import campaigns, catalog, entities, exports
from outreach.store.sqlite import SqliteStore


def _store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(tmp_path / "test.sqlite")
    schema_path = (
        Path(__file__).resolve().parents[1] / "resources" / "schema" / "canonical.yaml"
    )
    store.apply_schema(schema_path)
    return store


def _seed(store: SqliteStore) -> str:
    catalog.add_sequence(
        store, "Intro", None, [catalog.parse_step("email:0", 1), catalog.parse_step("call:3", 2)]
    )
    jane = EntityRef.lead(entities.add_lead(store, "Jane Doe <jane@example.com>"))
    result = campaigns.create_campaign(
        store,
        name="July push",
        brand="Northwind",
        start_date=date(2025, 7, 1),
        targets=[jane],
        sequence_ref="Intro",
    )
    return result.campaign.campaign_id


def test_export_excel_with_calendar(tmp_path: Path) -> None:
    store = _store(tmp_path)
    campaign_id = _seed(store)
    out_path = tmp_path / "out" / "outreach.xlsx"

    exports.export_excel(
        store, out_path, calendar_range=(date(2025, 7, 1), date(2025, 7, 7)), campaign_id=campaign_id
    )

    wb = load_workbook(out_path)
    assert wb.sheetnames == exports.TABLES + ["calendar"]
    touchpoint_rows = list(wb["touchpoints"].iter_rows(values_only=True))
    assert "scheduled_at" in touchpoint_rows[0]
    assert len(touchpoint_rows) == 3
    calendar = list(wb["calendar"].iter_rows(values_only=True))
    assert calendar == [("day", "touchpoints"), ("2025-07-01", 1), ("2025-07-04", 1)]


def test_export_csv_tables(tmp_path: Path) -> None:
    store = _store(tmp_path)
    _seed(store)
    out_dir = tmp_path / "snapshot"

    exports.export_csv_tables(store, out_dir)

    assert sorted(p.stem for p in out_dir.glob("*.csv")) == sorted(exports.TABLES)
    lines = (out_dir / "touchpoints.csv").read_text(encoding="utf-8").splitlines()
    assert len(lines) == 3
    assert (out_dir / "organizations.csv").read_text(encoding="utf-8").strip() == ""
