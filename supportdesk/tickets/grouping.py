from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Sequence

from .models import Message, SenderType

DEFAULT_GROUPING_WINDOW = timedelta(minutes=5)

_STATUS_NOTICE_MARKERS = ("ticket has been", "chat has been", "ticket reopened", "chat reopened")


@dataclass(frozen=True, slots=True)
class MessagePresentation:
    """Rendering hints for one message in a conversation view."""

    message: Message
    grouped_with_previous: bool
    grouped_with_next: bool
    show_date_separator: bool
    is_status_notice: bool

    @property
    def show_header(self) -> bool:
        return not self.grouped_with_previous

    @property
    def show_timestamp(self) -> bool:
        return not self.grouped_with_next


def is_grouped(
    previous: Message,
    current: Message,
    *,
    window: timedelta = DEFAULT_GROUPING_WINDOW,
    tz: tzinfo = timezone.utc,
) -> bool:
    """Return whether ``current`` continues the visual cluster started by ``previous``."""

    if previous.sender_type != current.sender_type:
        return False
    if _day(previous.timestamp, tz) != _day(current.timestamp, tz):
        return False
    return _as_utc(current.timestamp) - _as_utc(previous.timestamp) < window


def is_status_notice(message: Message) -> bool:
    """Admin messages announcing a status change are rendered as system notices."""

    if message.sender_type != SenderType.ADMIN:
        return False
    text = message.text.lower()
    return any(marker in text for marker in _STATUS_NOTICE_MARKERS)


def group_messages(
    messages: Sequence[Message],
    *,
    window: timedelta = DEFAULT_GROUPING_WINDOW,
    tz: tzinfo = timezone.utc,
) -> list[MessagePresentation]:
    links = [
        is_grouped(previous, current, window=window, tz=tz)
        for previous, current in zip(messages, messages[1:])
    ]
    result: list[MessagePresentation] = []
    for index, message in enumerate(messages):
        with_previous = index > 0 and links[index - 1]
        with_next = index < len(links) and links[index]
        new_day = index == 0 or _day(messages[index - 1].timestamp, tz) != _day(message.timestamp, tz)
        result.append(
            MessagePresentation(
                message=message,
                grouped_with_previous=with_previous,
                grouped_with_next=with_next,
                show_date_separator=new_day,
                is_status_notice=is_status_notice(message),
            )
        )
    return result


def date_label(day: date, today: date) -> str:
    """Label used for the separator above the first message of ``day``."""

    if day == today:
        return "Today"
    if day == today - timedelta(days=1):
        return "Yesterday"
    return f"{day:%B} {day.day}, {day.year}"


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def _day(moment: datetime, tz: tzinfo) -> date:
    return _as_utc(moment).astimezone(tz).date()
