"""Read-only projection of a car's occupancy at a given instant."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable

from .errors import ConsistencyWarning, NotFound
from .interval import Interval, to_utc
from .models import Car, ReservationRecord
from .yaml_store import ReservationStore


@dataclass(frozen=True)
class NextBooking:
    reservation_id: str
    start: datetime
    booker_name: str

    def to_dict(self) -> dict[str, str]:
        return {
            "reservation_id": self.reservation_id,
            "start": self.start.isoformat(),
            "booker_name": self.booker_name,
        }


@dataclass(frozen=True)
class InUse:
    car_name: str
    booker_name: str
    booker_email: str | None
    interval: Interval
    reservation_id: str
    start_mileage: float | None
    end_mileage: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "car_name": self.car_name,
            "state": "in_use",
            "booker_name": self.booker_name,
            "booker_email": self.booker_email,
            "reservation_id": self.reservation_id,
            "start": self.interval.start.isoformat(),
            "end": self.interval.end.isoformat(),
            "start_mileage": self.start_mileage,
            "end_mileage": self.end_mileage,
        }


@dataclass(frozen=True)
class Free:
    car_name: str
    next_booking: NextBooking | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "car_name": self.car_name,
            "state": "free",
            "next_booking": self.next_booking.to_dict() if self.next_booking is not None else None,
        }


ResourceStatus = InUse | Free
WarningHandler = Callable[[ConsistencyWarning, list[ReservationRecord]], None]


def project(
    car_name: str,
    reservations: Iterable[ReservationRecord],
    now: datetime,
    on_warning: WarningHandler | None = None,
) -> ResourceStatus:
    now = to_utc(now)
    open_claims = sorted(
        (record for record in reservations if record.car_name == car_name and record.is_open_claim),
        key=lambda record: (record.start, record.reservation_id),
    )

    current = [record for record in open_claims if record.interval.contains(now)]
    if current:
        if len(current) > 1 and on_warning is not None:
            on_warning(
                ConsistencyWarning(
                    f"{len(current)} approved reservations occupy {car_name} at {now.isoformat()}; "
                    f"using the earliest ({current[0].reservation_id})."
                ),
                current,
            )
        chosen = current[0]
        return InUse(
            car_name=car_name,
            booker_name=chosen.booker_name,
            booker_email=chosen.booker_email,
            interval=chosen.interval,
            reservation_id=chosen.reservation_id,
            start_mileage=chosen.start_mileage,
            end_mileage=chosen.end_mileage,
        )

    upcoming = [record for record in open_claims if record.start > now]
    if not upcoming:
        return Free(car_name=car_name)
    nearest = upcoming[0]
    return Free(
        car_name=car_name,
        next_booking=NextBooking(
            reservation_id=nearest.reservation_id,
            start=nearest.start,
            booker_name=nearest.booker_name,
        ),
    )


@dataclass(frozen=True)
class CarStatus:
    """A car and its projected status, both taken from the same snapshot."""

    car: Car
    status: ResourceStatus

    @property
    def car_name(self) -> str:
        return self.car.name

    def to_dict(self) -> dict[str, Any]:
        return {**self.car.to_dict(), **self.status.to_dict()}


def project_status(store: ReservationStore, car_name: str, now: datetime) -> ResourceStatus:
    snapshot = store.snapshot()
    if snapshot.get_car(car_name) is None:
        raise NotFound(f"Car not found: {car_name}")
    return project(car_name, snapshot.open_reservations_for(car_name), now, on_warning=_event_logger(store, now))


def project_fleet_status(store: ReservationStore, now: datetime) -> list[CarStatus]:
    snapshot = store.snapshot()
    on_warning = _event_logger(store, now)
    return [
        CarStatus(car, project(car.name, snapshot.open_reservations_for(car.name), now, on_warning=on_warning))
        for car in sorted(snapshot.cars, key=lambda car: car.name)
    ]


def _event_logger(store: ReservationStore, now: datetime) -> WarningHandler:
    def _log(warning: ConsistencyWarning, records: list[ReservationRecord]) -> None:
        store.log_event(
            "CONSISTENCY_WARNING",
            {
                "message": str(warning),
                "car_name": records[0].car_name,
                "reservation_ids": [record.reservation_id for record in records],
            },
            to_utc(now),
        )

    return _log
