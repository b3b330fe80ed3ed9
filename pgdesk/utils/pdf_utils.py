from pathlib import Path
from textwrap import wrap
from typing import Iterable

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from ..config import settings
from ..constants import SETTLEMENT_MODE_LABELS
from ..services.exit_clearance import ClearanceDetail
from .formatting import format_currency, format_date

MARGIN_X = 56
MARGIN_Y = 56
MAX_CHARS_PER_LINE = 90
# Helvetica has no rupee glyph
PDF_CURRENCY = "Rs. "


def _output_path(filename: str) -> Path:
    base = Path(settings.pdf_output_dir)
    base.mkdir(parents=True, exist_ok=True)
    return base / filename


def _write_pdf(filename: str, lines: Iterable[str]) -> str:
    path = _output_path(filename)
    pdf_canvas = canvas.Canvas(str(path), pagesize=A4)
    width, height = A4
    text_stream = pdf_canvas.beginText(MARGIN_X, height - MARGIN_Y)
    text_stream.setFont("Helvetica", 11)

    for line in lines:
        if line is None:
            line = ""
        normalized = str(line)
        if normalized.strip() == "":
            text_stream.textLine("")
            continue
        for chunk in wrap(normalized, MAX_CHARS_PER_LINE) or [normalized]:
            text_stream.textLine(chunk)
        if text_stream.getY() < MARGIN_Y:
            pdf_canvas.drawText(text_stream)
            pdf_canvas.showPage()
            text_stream = pdf_canvas.beginText(MARGIN_X, height - MARGIN_Y)
            text_stream.setFont("Helvetica", 11)

    pdf_canvas.drawText(text_stream)
    pdf_canvas.showPage()
    pdf_canvas.save()
    return str(path)


def _money(amount) -> str:
    return format_currency(amount, symbol=PDF_CURRENCY, decimals=True)


def generate_settlement_statement_pdf(detail: ClearanceDetail) -> str:
    clearance = detail.clearance
    settlement = detail.settlement
    lines = [
        "Exit Settlement Statement",
        "",
        f"Clearance #: {clearance['id']}",
        f"Tenant: {detail.tenant_name or 'Unknown'}",
        f"Property: {detail.property_name or '-'}    Room: {detail.room_number or '-'}",
        f"Notice given: {format_date(clearance.get('notice_given_date')) or '-'}",
        f"Expected exit: {format_date(clearance.get('expected_exit_date'))}",
        f"Actual exit: {format_date(clearance.get('actual_exit_date')) or 'Pending'}",
    ]
    if detail.days_stayed is not None:
        lines.append(f"Days stayed: {detail.days_stayed}")
    lines.extend(
        [
            "",
            f"Outstanding dues: {_money(settlement.total_dues)}",
            f"Refundable deposit: {_money(settlement.total_refundable)}",
        ]
    )
    deductions = clearance.get("deductions") or []
    if deductions:
        lines.append("Deductions:")
        for position, deduction in enumerate(deductions, start=1):
            lines.append(f"  {position}. {deduction['reason']}: {_money(deduction['amount'])}")
    lines.append(f"Total deductions: {_money(settlement.total_deductions)}")
    lines.append("")
    if settlement.refund_due:
        lines.append(f"Refund due to tenant: {_money(settlement.refund_amount)}")
    else:
        lines.append(f"Amount payable by tenant: {_money(settlement.amount_payable)}")
    lines.extend(
        [
            "",
            f"Room inspection done: {'Yes' if clearance.get('room_inspection_done') else 'No'}",
            f"Keys returned: {'Yes' if clearance.get('key_returned') else 'No'}",
            f"Settlement status: {clearance.get('settlement_status')}",
        ]
    )
    if clearance.get("room_condition_notes"):
        lines.append(f"Room condition: {clearance['room_condition_notes']}")
    if clearance.get("settlement_mode"):
        mode = SETTLEMENT_MODE_LABELS.get(clearance["settlement_mode"], clearance["settlement_mode"])
        reference = clearance.get("settlement_reference")
        lines.append(f"Settled by: {mode}" + (f" (ref {reference})" if reference else ""))
    if clearance.get("final_notes"):
        lines.append(f"Notes: {clearance['final_notes']}")
    if clearance.get("completed_by"):
        lines.append(f"Completed by: {clearance['completed_by']}")
    return _write_pdf(f"settlement_{clearance['id']}.pdf", lines)
