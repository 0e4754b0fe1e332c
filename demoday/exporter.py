from __future__ import annotations

import io
import logging
from decimal import Decimal

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

log = logging.getLogger(__name__)

_PITCH_COLUMNS = (
    ("Rank", "rank"), ("Idea", "idea_title"), ("Pitcher", "pitcher_name"),
    ("Discord", "pitcher_username"), ("Total funding", "total_funding"),
    ("Multiplier", "multiplier"),
)

_INVESTOR_COLUMNS = (
    ("Rank", "rank"), ("Investor", "investor_name"), ("Discord", "investor_username"),
    ("Initial", "initial_balance"), ("Invested", "invested_amount"),
    ("Returns", "returns"), ("Final", "final_balance"),
)


def _write_sheet(ws, columns: tuple[tuple[str, str], ...], rows: list[dict]) -> None:
    ws.append([label for label, _ in columns])
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for row in rows:
        values = []
        for _, key in columns:
            value = row.get(key)
            if key == "pitcher_name" and not value:
                value = row.get("pitcher_username") or row.get("pitcher_id")
            if key == "investor_name" and not value:
                value = row.get("investor_username") or row.get("investor_id")
            if key == "multiplier":
                value = f"{value}x"
            values.append(float(value) if isinstance(value, Decimal) else value)
        ws.append(values)
    for idx, (label, _) in enumerate(columns, start=1):
        ws.column_dimensions[get_column_letter(idx)].width = max(12, len(label) + 4)


def export_results_xlsx(results: dict) -> bytes:
    """Render a results summary (see ``services.results_summary``) as an XLSX workbook."""
    wb = openpyxl.Workbook()
    pitches_ws = wb.active
    pitches_ws.title = "Pitches"
    _write_sheet(pitches_ws, _PITCH_COLUMNS, results["pitch_rankings"])
    _write_sheet(wb.create_sheet("Investors"), _INVESTOR_COLUMNS, results["investor_rankings"])

    buf = io.BytesIO()
    wb.save(buf)
    log.info(
        "Exported results for demoday %s (%d pitches, %d investors)",
        results["event_id"], len(results["pitch_rankings"]), len(results["investor_rankings"]),
    )
    return buf.getvalue()
