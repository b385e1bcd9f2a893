from __future__ import annotations

from typing import Iterable

from .errors import ConflictingReservation
from .interval import Interval, overlaps
from .models import ReservationRecord
from .yaml_store import ReservationStore


def find_conflict(candidate: Interval, existing: Iterable[ReservationRecord]) -> ReservationRecord | None:
    """Return the earliest-starting reservation whose interval overlaps ``candidate``."""
    for record in sorted(existing, key=lambda row: (row.start, row.reservation_id)):
        if overlaps(candidate, record.interval):
            return record
    return None


def can_reserve(candidate: Interval, existing: Iterable[ReservationRecord]) -> bool:
    return find_conflict(candidate, existing) is None


def check_conflict(
    store: ReservationStore,
    car_name: str,
    candidate: Interval,
    exclude_reservation_id: str | None = None,
) -> None:
    """Raise ConflictingReservation if ``candidate`` collides with an approved open reservation.

    Only open claims (approved, not completed) take part; pending requests do
    not block anyone. ``exclude_reservation_id`` keeps a reservation from
    colliding with itself while it is being extended or approved.
    """
    open_claims = store.find_open_reservations(car_name, exclude_reservation_id=exclude_reservation_id)
    conflict = find_conflict(candidate, open_claims)
    if conflict is not None:
        raise ConflictingReservation(
            reservation_id=conflict.reservation_id,
            booker_name=conflict.booker_name,
            booker_email=conflict.booker_email,
            start=conflict.start,
            end=conflict.end,
        )
