"""Message storage and the reports computed over stored messages."""

from __future__ import annotations

import logging
import sqlite3
import statistics
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from .database import Database
from .models import CountByDeviceID, Message, MonthReportRow
from .repository import RepositoryError

_INSERT = """
insert into messages (got_at, device_id, message, message_type, severity_level, component)
values (:got_at, :device_id, :message, :message_type, :severity_level, :component)
"""
_GET_ALL_BY_PERIOD = """
select got_at, device_id, message, message_type
from messages
where got_at between :start and :end
order by got_at desc
"""
_GET_ALL_BY_DEVICE_ID = """
select got_at, device_id, message, message_type
from messages
where device_id = :device_id
order by got_at desc
"""
_GET_COUNT_BY_MESSAGE_TYPE = """
select device_id, count(*) as count
from messages
where message_type = :message_type
group by device_id
"""
_REPORT_SOURCE = """
select got_at, device_id, message_type, severity_level, component
from messages
"""

_REPORT_WINDOW = timedelta(days=30)
_REPORT_MIN_MESSAGES = 100
_CRITICAL = "critical"


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return moment.astimezone(timezone.utc)


def _timestamp(moment: datetime) -> str:
    """Stored form of a timestamp: UTC, fixed width, so text order is time order."""
    return _as_utc(moment).isoformat(timespec="microseconds")


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    return _as_utc(datetime.fromisoformat(str(value)))


def _message_from_row(row: sqlite3.Row) -> Message:
    return Message(
        got_at=_to_datetime(row["got_at"]),
        device_id=row["device_id"],
        message=row["message"],
        message_type=row["message_type"],
    )


@dataclass
class _DayStats:
    total: int = 0
    critical: int = 0
    components: set = field(default_factory=set)


def _percentage(part: int, whole: int) -> float:
    if whole == 0:
        return 0.0
    ratio = Decimal(100 * part) / Decimal(whole)
    return float(ratio.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _build_month_report(rows: list[sqlite3.Row], now: datetime) -> list[MonthReportRow]:
    window_start = now - _REPORT_WINDOW
    critical_since = datetime.combine(
        now.date() - timedelta(days=30), time(), tzinfo=timezone.utc
    )

    daily: dict[tuple[int, str], dict[date, _DayStats]] = defaultdict(
        lambda: defaultdict(_DayStats)
    )
    components: dict[tuple[int, str], Counter] = defaultdict(Counter)
    criticals: dict[tuple[int, str], list[datetime]] = defaultdict(list)

    for row in rows:
        got_at = _to_datetime(row["got_at"])
        key = (row["device_id"], row["message_type"])
        component = row["component"]
        severity = row["severity_level"]
        if component is not None:
            components[key][component] += 1
        if got_at is None:
            continue
        if window_start <= got_at <= now:
            day = daily[key][got_at.date()]
            day.total += 1
            if severity == _CRITICAL:
                day.critical += 1
            if component is not None:
                day.components.add(component)
        if severity == _CRITICAL and got_at > critical_since:
            criticals[key].append(got_at)

    report: list[MonthReportRow] = []
    for key, days in daily.items():
        stats = list(days.values())
        totals = [day.total for day in stats]
        total = sum(totals)
        if total <= _REPORT_MIN_MESSAGES:
            continue
        critical_counts = [day.critical for day in stats]
        total_critical = sum(critical_counts)

        times = sorted(criticals.get(key, []))
        gaps = [(later - earlier).total_seconds() for earlier, later in zip(times, times[1:])]
        top = components[key].most_common(1)

        report.append(
            MonthReportRow(
                device_id=key[0],
                message_type=key[1],
                active_days=len(stats),
                total_messages=total,
                avg_daily_messages=statistics.fmean(totals),
                max_daily_messages=max(totals),
                median_daily_messages=float(statistics.median(totals)),
                total_critical=total_critical,
                max_daily_critical=max(critical_counts),
                max_daily_components=max(len(day.components) for day in stats),
                most_active_component=top[0][0] if top else None,
                first_critical_time=times[0] if times else None,
                last_critical_time=times[-1] if times else None,
                avg_critical_interval_sec=statistics.fmean(gaps) if gaps else None,
                critical_percentage=_percentage(total_critical, total),
            )
        )

    ranks = {
        total: rank
        for rank, total in enumerate(
            sorted({row.total_messages for row in report}, reverse=True), start=1
        )
    }
    for row in report:
        row.overall_volume_rank = ranks[row.total_messages]
    report.sort(key=lambda row: (row.device_id, -row.total_messages))
    return report


class MessagesTransaction:
    """Message operations inside one database transaction."""

    def __init__(self, handle: Any, log: logging.Logger) -> None:
        self._tx = handle
        self._log = log

    def __enter__(self) -> MessagesTransaction:
        return self

    def __exit__(self, *exc_info: Any) -> bool:
        if self._tx.active:
            self._tx.rollback()
        return False

    def commit(self) -> None:
        self._tx.commit()

    def rollback(self) -> None:
        self._tx.rollback()

    def _fetch(self, sql: str, params: Any, what: str) -> list[sqlite3.Row]:
        try:
            return self._tx.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError(f"{what}: {exc}") from exc

    def create(self, message: Message) -> None:
        """Store a message, stamped with the current time."""
        params = {
            "got_at": _timestamp(datetime.now(timezone.utc)),
            "device_id": message.device_id,
            "message": message.message,
            "message_type": message.message_type,
            "severity_level": message.severity_level,
            "component": message.component,
        }
        try:
            self._tx.execute(_INSERT, params)
        except sqlite3.Error as exc:
            raise RepositoryError(f"insert message: {exc}") from exc

    def get_all_by_period(self, start: datetime, end: datetime) -> list[Message]:
        """Messages received between start and end inclusive, newest first."""
        rows = self._fetch(
            _GET_ALL_BY_PERIOD,
            {"start": _timestamp(start), "end": _timestamp(end)},
            "select messages by period",
        )
        return [_message_from_row(row) for row in rows]

    def get_all_by_device_id(self, device_id: int) -> list[Message]:
        """Messages from one device, newest first."""
        rows = self._fetch(
            _GET_ALL_BY_DEVICE_ID, {"device_id": device_id}, "select messages by device"
        )
        return [_message_from_row(row) for row in rows]

    def get_count_by_message_type(self, message_type: str) -> list[CountByDeviceID]:
        """Number of messages of one type per device."""
        rows = self._fetch(
            _GET_COUNT_BY_MESSAGE_TYPE,
            {"message_type": message_type},
            "count messages by type",
        )
        return [CountByDeviceID(device_id=row["device_id"], count=row["count"]) for row in rows]

    def month_report(self, now: Optional[datetime] = None) -> list[MonthReportRow]:
        """Thirty-day activity per device and message type, for busy pairs only.

        Pairs with more than 100 messages in the window are reported, ordered by
        device id and then by volume; ``overall_volume_rank`` is a dense rank by volume.
        """
        moment = datetime.now(timezone.utc) if now is None else _as_utc(now)
        rows = self._fetch(_REPORT_SOURCE, (), "month report")
        return _build_month_report(rows, moment)


class MessagesRepo:
    """Opens message transactions on a database."""

    def __init__(self, database: Database, log: logging.Logger) -> None:
        self._database = database
        self._log = log

    def begin(self) -> MessagesTransaction:
        return MessagesTransaction(self._database.transaction(), self._log)