from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional

from ..utils.csv_utils import rows_to_csv, timeline_to_csv
from .exit_clearance import clearance_detail, list_clearances
from .store import RowStore
from .timeline import JourneyEvent


@dataclass
class CsvReport:
    filename: str
    content: str


def _month_bucket(clearance: dict) -> str:
    moment = clearance.get("actual_exit_date") or clearance.get("expected_exit_date")
    return moment.strftime("%Y-%m") if moment else ""


def generate_exit_clearance_register(store: RowStore, status: Optional[str] = None, as_of: date | None = None) -> CsvReport:
    today = as_of or date.today()
    headers = [
        "Clearance ID",
        "Tenant",
        "Property",
        "Room",
        "Status",
        "Expected Exit",
        "Actual Exit",
        "Month",
        "Settlement Mode",
        "Reference",
        "Completed By",
        "Total Dues",
        "Refundable",
        "Deductions",
        "Final Amount",
    ]
    rows: List[List[str]] = []
    for clearance in list_clearances(store, status):
        detail = clearance_detail(clearance)
        settlement = detail.settlement
        rows.append(
            [
                str(clearance["id"]),
                detail.tenant_name or "Unknown",
                detail.property_name or "",
                detail.room_number or "",
                clearance["settlement_status"],
                clearance["expected_exit_date"].isoformat() if clearance["expected_exit_date"] else "",
                clearance["actual_exit_date"].isoformat() if clearance["actual_exit_date"] else "",
                _month_bucket(clearance),
                clearance.get("settlement_mode") or "",
                clearance.get("settlement_reference") or "",
                clearance.get("completed_by") or "",
                f"{Decimal(settlement.total_dues):.2f}",
                f"{Decimal(settlement.total_refundable):.2f}",
                f"{Decimal(settlement.total_deductions):.2f}",
                f"{Decimal(settlement.final_amount):.2f}",
            ]
        )

    filename = f"exit-clearances-{today.isoformat()}.csv"
    return CsvReport(filename=filename, content=rows_to_csv(headers, rows))


def generate_journey_timeline_report(tenant_id: int, events: List[JourneyEvent], as_of: date | None = None) -> CsvReport:
    today = as_of or date.today()
    filename = f"tenant-{tenant_id}-journey-{today.isoformat()}.csv"
    return CsvReport(filename=filename, content=timeline_to_csv(events))
