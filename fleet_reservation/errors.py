from __future__ import annotations

from datetime import datetime
from typing import Any


class ReservationError(Exception):
    """Base class for every error surfaced to the caller of the reservation core."""

    kind = "ReservationError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class InvalidInterval(ReservationError, ValueError):
    kind = "InvalidInterval"


class InvalidMileage(ReservationError, ValueError):
    kind = "InvalidMileage"


class InvalidPayload(ReservationError, ValueError):
    kind = "InvalidPayload"


class NotFound(ReservationError, LookupError):
    kind = "NotFound"


class InvalidTransition(ReservationError):
    kind = "InvalidTransition"


class StoreUnavailable(ReservationError, RuntimeError):
    kind = "StoreUnavailable"


class ConflictingReservation(ReservationError):
    """Raised when a candidate interval collides with an approved open reservation."""

    kind = "ConflictingReservation"

    def __init__(
        self,
        reservation_id: str,
        booker_name: str,
        booker_email: str | None,
        start: datetime,
        end: datetime,
    ) -> None:
        self.reservation_id = reservation_id
        self.booker_name = booker_name
        self.booker_email = booker_email
        self.start = start
        self.end = end
        super().__init__(
            f"Car is already booked by {booker_name} "
            f"from {start.isoformat(timespec='minutes')} to {end.isoformat(timespec='minutes')}."
        )

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["conflict"] = {
            "reservation_id": self.reservation_id,
            "booker_name": self.booker_name,
            "booker_email": self.booker_email,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }
        return payload


class ConsistencyWarning(UserWarning):
    """Stored data breaks the no-overlap invariant; recorded as an event, never raised."""
