import csv
from io import StringIO
from typing import Iterable, List, Sequence

from ..services.timeline import JourneyEvent


def rows_to_csv(headers: Sequence[str], rows: Iterable[Sequence[str]]) -> str:
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(headers)
    for row in rows:
        writer.writerow(row)
    return buffer.getvalue()


def timeline_to_csv(events: List[JourneyEvent]) -> str:
    headers = ["timestamp", "category", "type", "title", "description", "amount", "amount_type", "status"]
    rows = []
    for event in events:
        rows.append(
            [
                event.timestamp.isoformat(),
                event.category.value,
                event.type.value,
                event.title,
                event.description or "",
                f"{event.amount:.2f}" if event.amount is not None else "",
                event.amount_type.value if event.amount_type else "",
                event.status or "",
            ]
        )
    return rows_to_csv(headers, rows)
