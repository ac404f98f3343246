"""
History view helpers: date ranges, type filter, summary and CSV export.
"""
import csv
import io
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Tuple

from models import AttendanceType
from schemas import AttendanceRecord, HistoryResponse, HistorySummary

TYPE_FILTERS = ("all", AttendanceType.CHECK_IN.value, AttendanceType.CHECK_OUT.value)

CSV_COLUMNS = [
    "id",
    "user_id",
    "user_name",
    "type",
    "timestamp",
    "confidence",
    "photo_path",
    "sync_state",
]


def _local_midnight_as_utc(day: date) -> datetime:
    local = datetime.combine(day, time.min).astimezone()
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def today() -> date:
    """Calendar day in the server's local timezone."""
    return datetime.now().astimezone().date()


def day_range(day: date) -> Tuple[datetime, datetime]:
    """
    [midnight, next midnight) of a local calendar day, as naive UTC.

    Timestamps are stored in naive UTC, so the bounds are converted
    from the server's local timezone before querying.
    """
    return _local_midnight_as_utc(day), _local_midnight_as_utc(day + timedelta(days=1))


def filter_records(records: Iterable[AttendanceRecord], type_filter: str = "all") -> List[AttendanceRecord]:
    if type_filter not in TYPE_FILTERS:
        raise ValueError(f"Unknown filter: {type_filter}")
    if type_filter == "all":
        return list(records)
    wanted = AttendanceType(type_filter)
    return [r for r in records if r.type == wanted]


def summarize(records: Iterable[AttendanceRecord]) -> HistorySummary:
    records = list(records)
    return HistorySummary(
        total=len(records),
        check_in=sum(1 for r in records if r.type == AttendanceType.CHECK_IN),
        check_out=sum(1 for r in records if r.type == AttendanceType.CHECK_OUT),
        users=len({r.user_id for r in records}),
    )


def merge_records(remote: Iterable[AttendanceRecord], local: Iterable[AttendanceRecord]) -> List[AttendanceRecord]:
    """Union by id, the remote copy wins. Oldest first."""
    merged = {r.id: r for r in remote}
    for record in local:
        merged.setdefault(record.id, record)
    return sorted(merged.values(), key=lambda r: (r.timestamp, r.id))


def build_history(remote, local, type_filter: str = "all", offline: bool = False) -> HistoryResponse:
    records = filter_records(merge_records(remote, local), type_filter)
    return HistoryResponse(records=records, summary=summarize(records), offline=offline)


def export_csv(records: Iterable[AttendanceRecord]) -> str:
    """Attendance report as CSV text."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_COLUMNS)
    for r in records:
        writer.writerow([
            r.id,
            r.user_id,
            r.user_name,
            r.type.value,
            r.timestamp.isoformat(),
            f"{r.confidence:.3f}",
            r.photo_path or "",
            r.sync_state.value,
        ])
    return buffer.getvalue()
