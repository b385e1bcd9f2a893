from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .errors import InvalidInterval, InvalidMileage, InvalidPayload, ReservationError
from .interval import Interval, parse_timestamp


@dataclass(frozen=True)
class CreateReservationRequest:
    car_name: str
    booker_name: str
    booker_email: str | None
    start: datetime
    end: datetime
    start_mileage: float | None = None

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)

    @staticmethod
    def from_payload(payload: dict[str, Any]) -> "CreateReservationRequest":
        start = _required_timestamp(payload, "startDateTime", "start")
        end = _required_timestamp(payload, "endDateTime", "end")
        interval = Interval(start, end)
        return CreateReservationRequest(
            car_name=_required_text(payload, "name", "car_name"),
            booker_name=_required_text(payload, "bookerName", "booker_name"),
            booker_email=_optional_text(payload, "bookerEmail", "booker_email"),
            start=interval.start,
            end=interval.end,
            start_mileage=_optional_mileage(payload, "startMileage", "start_mileage"),
        )


@dataclass(frozen=True)
class StartTripRequest:
    reservation_id: str
    actual_mileage: float

    @staticmethod
    def from_payload(reservation_id: str, payload: dict[str, Any]) -> "StartTripRequest":
        mileage = _optional_mileage(payload, "actualMileage", "actual_mileage")
        if mileage is None:
            raise InvalidPayload("actualMileage is required.")
        return StartTripRequest(reservation_id=reservation_id, actual_mileage=mileage)


@dataclass(frozen=True)
class CompleteTripRequest:
    reservation_id: str
    end_mileage: float

    @staticmethod
    def from_payload(reservation_id: str, payload: dict[str, Any]) -> "CompleteTripRequest":
        mileage = _optional_mileage(payload, "endMileage", "end_mileage")
        if mileage is None:
            raise InvalidPayload("endMileage is required.")
        return CompleteTripRequest(reservation_id=reservation_id, end_mileage=mileage)


@dataclass(frozen=True)
class ExtendRequest:
    reservation_id: str
    new_end: datetime

    @staticmethod
    def from_payload(reservation_id: str, payload: dict[str, Any]) -> "ExtendRequest":
        return ExtendRequest(
            reservation_id=reservation_id,
            new_end=_required_timestamp(payload, "newEndDateTime", "new_end"),
        )


def success(**payload: Any) -> dict[str, Any]:
    return {"ok": True, **payload}


def failure(error: ReservationError) -> dict[str, Any]:
    return {"ok": False, "error": error.to_dict()}


def _lookup(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None


def _required_text(payload: dict[str, Any], *keys: str) -> str:
    value = _lookup(payload, *keys)
    text = str(value).strip() if value is not None else ""
    if not text:
        raise InvalidPayload(f"{keys[0]} is required.")
    return text


def _optional_text(payload: dict[str, Any], *keys: str) -> str | None:
    value = _lookup(payload, *keys)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _required_timestamp(payload: dict[str, Any], *keys: str) -> datetime:
    value = _lookup(payload, *keys)
    if value is None:
        raise InvalidInterval(f"{keys[0]} is required.")
    return parse_timestamp(value)


def _optional_mileage(payload: dict[str, Any], *keys: str) -> float | None:
    value = _lookup(payload, *keys)
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise InvalidMileage(f"{keys[0]} must be a number.")
    try:
        return float(value)
    except (TypeError, ValueError) as error:
        raise InvalidMileage(f"{keys[0]} must be a number.") from error
