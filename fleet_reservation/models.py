from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any

from .interval import Interval, parse_timestamp


class ReservationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Car:
    name: str
    last_mileage: float | None = None
    plate: str | None = None
    model: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": self.name, "last_mileage": self.last_mileage}
        if self.plate is not None:
            payload["plate"] = self.plate
        if self.model is not None:
            payload["model"] = self.model
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Car":
        return Car(
            name=str(data["name"]),
            last_mileage=_optional_float(data.get("last_mileage")),
            plate=(str(data["plate"]) if data.get("plate") is not None else None),
            model=(str(data["model"]) if data.get("model") is not None else None),
        )


@dataclass(frozen=True)
class ReservationRecord:
    reservation_id: str
    car_name: str
    booker_name: str
    booker_email: str | None
    start: datetime
    end: datetime
    status: ReservationStatus
    created_at: datetime
    updated_at: datetime
    start_mileage: float | None = None
    end_mileage: float | None = None
    missing_mileage: float | None = None
    distance_traveled: float | None = None
    trip_started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)

    @property
    def is_open_claim(self) -> bool:
        """Approved and not yet completed: the reservation still holds the car."""
        return self.status is ReservationStatus.APPROVED

    @property
    def trip_started(self) -> bool:
        return self.trip_started_at is not None

    def with_changes(self, **fields: Any) -> "ReservationRecord":
        return replace(self, **fields)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "reservation_id": self.reservation_id,
            "car_name": self.car_name,
            "booker_name": self.booker_name,
            "booker_email": self.booker_email,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(timespec="seconds"),
            "updated_at": self.updated_at.isoformat(timespec="seconds"),
            "start_mileage": self.start_mileage,
        }
        optional = {
            "end_mileage": self.end_mileage,
            "missing_mileage": self.missing_mileage,
            "distance_traveled": self.distance_traveled,
            "trip_started_at": _isoformat_or_none(self.trip_started_at),
            "completed_at": _isoformat_or_none(self.completed_at),
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ReservationRecord":
        return ReservationRecord(
            reservation_id=str(data["reservation_id"]),
            car_name=str(data["car_name"]),
            booker_name=str(data["booker_name"]),
            booker_email=(str(data["booker_email"]) if data.get("booker_email") is not None else None),
            start=parse_timestamp(str(data["start"])),
            end=parse_timestamp(str(data["end"])),
            status=ReservationStatus(str(data["status"])),
            created_at=parse_timestamp(str(data["created_at"])),
            updated_at=parse_timestamp(str(data["updated_at"])),
            start_mileage=_optional_float(data.get("start_mileage")),
            end_mileage=_optional_float(data.get("end_mileage")),
            missing_mileage=_optional_float(data.get("missing_mileage")),
            distance_traveled=_optional_float(data.get("distance_traveled")),
            trip_started_at=_optional_timestamp(data.get("trip_started_at")),
            completed_at=_optional_timestamp(data.get("completed_at")),
        )


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)


def _optional_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    return parse_timestamp(str(value))


def _isoformat_or_none(value: datetime | None) -> str | None:
    return value.isoformat(timespec="seconds") if value is not None else None
