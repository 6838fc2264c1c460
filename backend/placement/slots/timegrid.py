"""Time grid for an interview window.

A window ``[start_time, end_time)`` is carved into back-to-back sub-intervals of
``duration`` minutes, rendered as ``"HH:MM-HH:MM"``. A trailing remainder shorter
than ``duration`` is never emitted.
"""

import re
from collections.abc import Iterable, Iterator

from ..config import settings

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_time(value: str) -> int:
    """Convert ``"HH:MM"`` to minutes after midnight. Raises ValueError."""
    match = _TIME_RE.match(value or "")
    if not match:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def generate_slots(start_time: str, end_time: str, duration: int) -> Iterator[str]:
    """Yield every sub-interval of the window in chronological order."""
    start = parse_time(start_time)
    end = parse_time(end_time)
    if duration <= 0:
        return
    current = start
    while current + duration <= end:
        yield f"{format_time(current)}-{format_time(current + duration)}"
        current += duration


def count_slots(start_time: str, end_time: str, duration: int) -> int:
    return sum(1 for _ in generate_slots(start_time, end_time, duration))


def next_available(start_time: str, end_time: str, duration: int, used_slots: Iterable[str]) -> str | None:
    """First sub-interval not in ``used_slots``; None when the grid is exhausted."""
    used = set(used_slots)
    for slot in generate_slots(start_time, end_time, duration):
        if slot not in used:
            return slot
    return None


def slot_bounds(time_slot: str) -> tuple[int, int]:
    """(start, end) of a ``"HH:MM-HH:MM"`` sub-interval, in minutes after midnight."""
    start, sep, end = time_slot.partition("-")
    if not sep:
        raise ValueError(f"Invalid time slot {time_slot!r}, expected HH:MM-HH:MM")
    return parse_time(start), parse_time(end)


def validate_window(start_time: str, end_time: str, duration: int, total_capacity: int) -> list[str]:
    """Return the problems with a window definition; empty when it is valid."""
    problems = []
    try:
        start = parse_time(start_time)
        end = parse_time(end_time)
    except ValueError as exc:
        return [str(exc)]

    if end <= start:
        problems.append("end_time must be after start_time")
    if not settings.slot_min_duration <= duration <= settings.slot_max_duration:
        problems.append(
            f"duration must be between {settings.slot_min_duration} and {settings.slot_max_duration} minutes"
        )
    elif end > start and duration > end - start:
        problems.append("duration does not fit into the window")
    if total_capacity < 0:
        problems.append("total_capacity cannot be negative")

    if not problems:
        grid = count_slots(start_time, end_time, duration)
        if total_capacity > grid:
            problems.append(
                f"total_capacity {total_capacity} exceeds the {grid} time slots the window can hold"
            )
    return problems
