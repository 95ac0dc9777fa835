from __future__ import annotations

import csv
from collections.abc import Iterable
from datetime import date
from pathlib import Path

from openpyxl import Workbook

from outreach.services.aggregation import daily_histogram
from outreach.store.sqlite import SqliteStore

TABLES = [
    "organizations",
    "leads",
    "org_contacts",
    "sequences",
    "sequence_steps",
    "campaigns",
    "touchpoints",
]


def export_excel(
    store: SqliteStore,
    out_path: Path,
    calendar_range: tuple[date, date] | None = None,
    campaign_id: str | None = None,
) -> None:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    wb = Workbook()
    wb.remove(wb.active)

    with store.snapshot() as session:
        for table in TABLES:
            rows = session.fetch_all(f"SELECT * FROM {table}")
            ws = wb.create_sheet(title=table)
            _write_sheet(ws, rows)

        if calendar_range is not None:
            counts = daily_histogram(
                session, calendar_range[0], calendar_range[1], campaign_id=campaign_id
            )
            ws = wb.create_sheet(title="calendar")
            ws.append(["day", "touchpoints"])
            for day, count in counts.items():
                ws.append([day.isoformat(), count])

    wb.save(out_path)


def export_csv_tables(store: SqliteStore, out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    for table in TABLES:
        rows = store.fetch_all(f"SELECT * FROM {table}")
        if not rows:
            headers: list[str] = []
        else:
            headers = list(rows[0].keys())
        csv_path = out_dir / f"{table}.csv"
        with csv_path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle)
            writer.writerow(headers)
            for row in rows:
                writer.writerow([row[h] for h in headers])


def _write_sheet(ws, rows: Iterable) -> None:
    rows = list(rows)
    if not rows:
        return
    headers = list(rows[0].keys())
    ws.append(headers)
    for row in rows:
        ws.append([row[h] for h in headers])
