from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable
import math
from uuid import uuid4

from .conflicts import check_conflict
from .errors import InvalidInterval, InvalidMileage, InvalidTransition, NotFound
from .interval import Interval, to_utc
from .models import ReservationRecord, ReservationStatus
from .requests import CompleteTripRequest, CreateReservationRequest, ExtendRequest, StartTripRequest
from .yaml_store import ReservationStore


class ReservationLifecycle:
    """Commits reservation state transitions after checking them for conflicts.

    Every mutation runs inside the store's per-car lock, so two overlapping
    writes for the same car cannot both pass the conflict check, even from
    separate lifecycles or processes sharing the data directory.
    """

    def __init__(
        self,
        store: ReservationStore,
        clock: Callable[[], datetime] | None = None,
        auto_approve: bool = False,
    ) -> None:
        self.store = store
        self.clock: Callable[[], datetime] = clock or (lambda: datetime.now(timezone.utc))
        self.auto_approve = auto_approve

    def _now(self) -> datetime:
        return to_utc(self.clock())

    def _get(self, reservation_id: str) -> ReservationRecord:
        record = self.store.find_reservation_by_id(reservation_id)
        if record is None:
            raise NotFound(f"Reservation not found: {reservation_id}")
        return record

    def create_reservation(self, request: CreateReservationRequest) -> ReservationRecord:
        interval = request.interval
        car = self.store.get_car(request.car_name)
        if car is None:
            raise NotFound(f"Car not found: {request.car_name}")

        start_mileage = request.start_mileage if request.start_mileage is not None else car.last_mileage
        if start_mileage is not None:
            _validate_mileage(start_mileage, "startMileage")

        now = self._now()
        status = ReservationStatus.APPROVED if self.auto_approve else ReservationStatus.PENDING
        with self.store.locked(car.name):
            check_conflict(self.store, car.name, interval)
            record = ReservationRecord(
                reservation_id=str(uuid4()),
                car_name=car.name,
                booker_name=request.booker_name,
                booker_email=request.booker_email,
                start=interval.start,
                end=interval.end,
                status=status,
                created_at=now,
                updated_at=now,
                start_mileage=start_mileage,
            )
            self.store.insert_reservation(record)

        self.store.log_event(
            "RESERVATION_CREATED",
            {
                "reservation_id": record.reservation_id,
                "car_name": record.car_name,
                "booker_name": record.booker_name,
                "start": record.start.isoformat(),
                "end": record.end.isoformat(),
                "status": record.status.value,
            },
            now,
        )
        return record

    def approve_reservation(self, reservation_id: str) -> ReservationRecord:
        car_name = self._get(reservation_id).car_name
        now = self._now()
        with self.store.locked(car_name):
            current = self._get(reservation_id)
            if current.status is not ReservationStatus.PENDING:
                raise InvalidTransition(f"Only pending reservations can be approved (status: {current.status.value}).")
            check_conflict(self.store, car_name, current.interval, exclude_reservation_id=reservation_id)
            updated = self.store.update_reservation(reservation_id, status=ReservationStatus.APPROVED, updated_at=now)

        self.store.log_event("RESERVATION_APPROVED", {"reservation_id": reservation_id, "car_name": car_name}, now)
        return updated

    def start_trip(self, request: StartTripRequest) -> ReservationRecord:
        _validate_mileage(request.actual_mileage, "actualMileage")
        car_name = self._get(request.reservation_id).car_name
        now = self._now()
        with self.store.locked(car_name):
            current = self._get(request.reservation_id)
            if current.status is not ReservationStatus.APPROVED:
                raise InvalidTransition(f"Trip can only start on an approved reservation (status: {current.status.value}).")
            if current.trip_started:
                raise InvalidTransition("Trip has already been started.")

            missing_mileage = None
            if current.start_mileage is not None:
                missing_mileage = request.actual_mileage - current.start_mileage
            updated = self.store.update_reservation(
                request.reservation_id,
                start_mileage=request.actual_mileage,
                missing_mileage=missing_mileage,
                trip_started_at=now,
                updated_at=now,
            )

        self.store.log_event(
            "TRIP_STARTED",
            {
                "reservation_id": request.reservation_id,
                "car_name": car_name,
                "start_mileage": request.actual_mileage,
                "missing_mileage": missing_mileage,
            },
            now,
        )
        if missing_mileage is not None and missing_mileage < 0:
            self.store.log_event(
                "MILEAGE_DISCREPANCY",
                {
                    "reservation_id": request.reservation_id,
                    "car_name": car_name,
                    "recorded_mileage": current.start_mileage,
                    "actual_mileage": request.actual_mileage,
                    "missing_mileage": missing_mileage,
                },
                now,
            )
        return updated

    def complete_trip(self, request: CompleteTripRequest) -> ReservationRecord:
        _validate_mileage(request.end_mileage, "endMileage")
        car_name = self._get(request.reservation_id).car_name
        now = self._now()
        with self.store.locked(car_name):
            current = self._get(request.reservation_id)
            if current.status is not ReservationStatus.APPROVED:
                raise InvalidTransition(f"Trip can only be completed on an approved reservation (status: {current.status.value}).")
            if not current.trip_started or current.start_mileage is None:
                raise InvalidTransition("Trip has not been started.")

            distance = request.end_mileage - current.start_mileage
            if distance < 0:
                raise InvalidMileage(
                    f"End mileage {request.end_mileage:g} is lower than start mileage {current.start_mileage:g}."
                )
            updated = self.store.update_reservation(
                request.reservation_id,
                end_mileage=request.end_mileage,
                distance_traveled=distance,
                status=ReservationStatus.COMPLETED,
                completed_at=now,
                updated_at=now,
            )
            self.store.update_car_mileage(car_name, request.end_mileage)

        self.store.log_event(
            "TRIP_COMPLETED",
            {
                "reservation_id": request.reservation_id,
                "car_name": car_name,
                "end_mileage": request.end_mileage,
                "distance_traveled": distance,
            },
            now,
        )
        return updated

    def extend_reservation(self, request: ExtendRequest) -> ReservationRecord:
        new_end = to_utc(request.new_end)
        car_name = self._get(request.reservation_id).car_name
        now = self._now()
        with self.store.locked(car_name):
            current = self._get(request.reservation_id)
            if current.status is not ReservationStatus.APPROVED:
                raise InvalidTransition(f"Only approved, open reservations can be extended (status: {current.status.value}).")
            if new_end <= current.end:
                raise InvalidInterval("New end time must be later than the current end time.")

            check_conflict(
                self.store,
                car_name,
                Interval(current.end, new_end),
                exclude_reservation_id=request.reservation_id,
            )
            updated = self.store.update_reservation(request.reservation_id, end=new_end, updated_at=now)

        self.store.log_event(
            "RESERVATION_EXTENDED",
            {
                "reservation_id": request.reservation_id,
                "car_name": car_name,
                "previous_end": current.end.isoformat(),
                "end": new_end.isoformat(),
            },
            now,
        )
        return updated


def _validate_mileage(value: float, field: str) -> None:
    if not math.isfinite(value) or value < 0:
        raise InvalidMileage(f"{field} must be a non-negative number.")
