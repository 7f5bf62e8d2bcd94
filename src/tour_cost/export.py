from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from openpyxl import Workbook, load_workbook
from openpyxl.worksheet.worksheet import Worksheet

from tour_cost.models import MasterData, Tour

SUMMARY_SHEET = "Summary"
SERVICES_SHEET = "Services"
PER_DIEM_SHEET = "Per Diem"
EXPENSES_SHEET = "Other Expenses"


def build_tour_workbook(tour: Tour, master_data: Optional[MasterData] = None) -> Workbook:
    """Lay out a tour on four sheets: summary, services, per-diem and other expenses."""
    workbook = Workbook()
    summary = workbook.active
    summary.title = SUMMARY_SHEET
    _write_summary(summary, tour, master_data)

    services = workbook.create_sheet(SERVICES_SHEET)
    services.append(["Description", "Quantity", "Unit price", "Source price", "Discrepancy", "Line total", "Notes"])
    for line in tour.services:
        services.append(
            [
                line.description,
                line.quantity,
                line.unit_price,
                line.source_price,
                line.discrepancy,
                line.unit_price * line.quantity,
                line.notes or "",
            ]
        )

    per_diem = workbook.create_sheet(PER_DIEM_SHEET)
    per_diem.append(["Location", "Days", "Rate", "Total"])
    for entry in tour.per_diem:
        per_diem.append([entry.location, entry.days, entry.rate, entry.total])

    expenses = workbook.create_sheet(EXPENSES_SHEET)
    expenses.append(["Description", "Date", "Amount", "Notes"])
    for expense in tour.other_expenses:
        expenses.append([expense.description, expense.date, expense.amount, expense.notes or ""])

    return workbook


def _write_summary(sheet: Worksheet, tour: Tour, master_data: Optional[MasterData]) -> None:
    general = tour.general
    guide_name = general.guide_id
    if master_data is not None:
        guide = next((g for g in master_data.guides if g.id == general.guide_id), None)
        if guide is not None:
            guide_name = guide.name

    financials = tour.financials
    rows = [
        ("Tour code", general.code),
        ("Customer", general.customer_name),
        ("Company", general.client_company or ""),
        ("Nationality", general.nationality),
        ("Pax", general.pax),
        ("Start date", general.start_date),
        ("End date", general.end_date),
        ("Guide", guide_name),
        ("Driver", general.driver_name),
        ("Notes", general.notes or ""),
        (None, None),
        ("Advance", financials.advance),
        ("Collections for company", financials.collections_for_company),
        ("Company tip", financials.company_tip),
        ("Total cost", financials.total_cost),
        ("Difference to advance", financials.difference_to_advance),
    ]
    for label, value in rows:
        sheet.append([label, value])


def export_tour_workbook(tour: Tour, output_path: Path | str, master_data: Optional[MasterData] = None) -> Path:
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    build_tour_workbook(tour, master_data).save(output_path)
    return output_path


def read_summary(path: Path | str) -> dict[str, Any]:
    """Utility for validation/testing: read the label/value pairs of the summary sheet."""
    sheet = load_workbook(path)[SUMMARY_SHEET]
    return {row[0]: row[1] for row in sheet.iter_rows(values_only=True) if row[0]}
