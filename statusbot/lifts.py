"""Lift sets parsed from Strong-app CSV exports.

Each row maps to one set with a deterministic id built from its natural
key (workout date, exercise, set order), so re-running an import
overwrites records instead of duplicating them.
"""

from __future__ import annotations

import csv
import logging
import re
from dataclasses import asdict, dataclass
from typing import IO, Any

from statusbot.errors import ValidationError

logger = logging.getLogger(__name__)

LIFT_ITEM_TYPE = "lift"

REQUIRED_COLUMNS = (
    "Date",
    "Workout Name",
    "Duration",
    "Exercise Name",
    "Set Order",
    "Weight",
    "Reps",
    "Distance",
    "Seconds",
)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class Lift:
    """One set of one exercise in one workout."""

    id: str
    date: str
    workout_name: str
    duration: str
    exercise_name: str
    set_order: str
    weight: float = 0.0
    reps: float = 0.0
    distance: float = 0.0
    seconds: float = 0.0
    rpe: float = 0.0

    def to_item(self) -> dict[str, Any]:
        item = asdict(self)
        item["item_type"] = LIFT_ITEM_TYPE
        return item


def exercise_slug(name: str) -> str:
    """``"Bench Press - Close Grip (Barbell)"`` -> ``"bench-press-close-grip-barbell"``."""
    return _NON_ALNUM.sub("-", name.lower()).strip("-")


def compact_date(date: str) -> str:
    """``"2022-05-11 04:20:50"`` -> ``"20220511T042050"``."""
    return date.strip().replace("-", "").replace(":", "").replace(" ", "T")


def lift_id(date: str, exercise: str, set_order: str) -> str:
    """Deterministic id: ``lift#<compact date>#<exercise slug>#<set order>``."""
    return f"lift#{compact_date(date)}#{exercise_slug(exercise)}#{set_order.strip().lower()}"


def _field(row: dict[str, str], column: str) -> str:
    return (row.get(column) or "").strip()


def _parse_float(row: dict[str, str], column: str) -> float:
    value = _field(row, column)
    if not value:
        return 0.0
    try:
        return float(value)
    except ValueError as exc:
        raise ValidationError(f"cannot parse {value!r}", field=column) from exc


def parse_lifts_csv(stream: IO[str]) -> list[Lift]:
    """Read a Strong-app CSV export.

    Duplicate natural keys within one file (the app sometimes repeats a
    set order) get ``-2``, ``-3`` suffixes so every row is kept.

    Raises:
        ValidationError: a required column is missing or a number is malformed
    """
    reader = csv.DictReader(stream)
    if reader.fieldnames is None:
        return []
    reader.fieldnames = [name.strip() for name in reader.fieldnames]
    missing = [col for col in REQUIRED_COLUMNS if col not in reader.fieldnames]
    if missing:
        raise ValidationError(f"missing required CSV column: {missing[0]}", field="header")

    lifts: list[Lift] = []
    id_counts: dict[str, int] = {}
    for row in reader:
        date = _field(row, "Date")
        exercise = _field(row, "Exercise Name")
        set_order = _field(row, "Set Order")

        base_id = lift_id(date, exercise, set_order)
        id_counts[base_id] = id_counts.get(base_id, 0) + 1
        record_id = base_id if id_counts[base_id] == 1 else f"{base_id}-{id_counts[base_id]}"

        lifts.append(
            Lift(
                id=record_id,
                date=date,
                workout_name=_field(row, "Workout Name"),
                duration=_field(row, "Duration"),
                exercise_name=exercise,
                set_order=set_order,
                weight=_parse_float(row, "Weight"),
                reps=_parse_float(row, "Reps"),
                distance=_parse_float(row, "Distance"),
                seconds=_parse_float(row, "Seconds"),
                rpe=_parse_float(row, "RPE"),
            )
        )

    logger.debug("Parsed %d lift rows", len(lifts))
    return lifts
