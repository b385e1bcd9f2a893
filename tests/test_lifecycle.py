import tempfile
import threading
import unittest
from datetime import datetime, timezone
from pathlib import Path

from fleet_reservation import (
    CompleteTripRequest,
    ConflictingReservation,
    CreateReservationRequest,
    ExtendRequest,
    InvalidInterval,
    InvalidMileage,
    InvalidTransition,
    NotFound,
    ReservationLifecycle,
    ReservationStatus,
    ReservationYamlRepository,
    StartTripRequest,
)

NOW = datetime(2026, 2, 24, 8, 0, tzinfo=timezone.utc)


def _at(day: int, hour: int) -> datetime:
    return datetime(2026, 2, day, hour, 0, tzinfo=timezone.utc)


def _create_request(
    start: datetime,
    end: datetime,
    car_name: str = "Civic",
    booker_name: str = "Somchai",
    start_mileage: float | None = None,
) -> CreateReservationRequest:
    return CreateReservationRequest(
        car_name=car_name,
        booker_name=booker_name,
        booker_email=f"{booker_name.lower()}@example.com",
        start=start,
        end=end,
        start_mileage=start_mileage,
    )


class LifecycleTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        self.data_dir = Path(self._temp_dir.name) / "data"
        self.repo = ReservationYamlRepository(self.data_dir)
        self.repo.register_car("Civic", last_mileage=1000.0)
        self.repo.register_car("Vios", last_mileage=500.0)
        self.lifecycle = ReservationLifecycle(self.repo, clock=lambda: NOW)

    def tearDown(self) -> None:
        self.repo.close()
        self._temp_dir.cleanup()

    def _approved(self, start: datetime, end: datetime, **kwargs: object) -> str:
        created = self.lifecycle.create_reservation(_create_request(start, end, **kwargs))
        # Approval normally happens out-of-band; write the status straight to the store.
        self.repo.update_reservation(created.reservation_id, status=ReservationStatus.APPROVED)
        return created.reservation_id


class TestCreateReservation(LifecycleTestCase):
    def test_create_persists_pending_with_start_mileage(self) -> None:
        created = self.lifecycle.create_reservation(_create_request(_at(25, 10), _at(25, 12), start_mileage=1005.0))

        stored = self.repo.find_reservation_by_id(created.reservation_id)
        self.assertIsNotNone(stored)
        self.assertEqual(stored.status, ReservationStatus.PENDING)
        self.assertEqual(stored.start_mileage, 1005.0)
        self.assertIsNone(stored.end_mileage)
        self.assertIsNone(stored.missing_mileage)
        self.assertEqual(stored.created_at, NOW)

    def test_start_mileage_defaults_to_car_odometer(self) -> None:
        created = self.lifecycle.create_reservation(_create_request(_at(25, 10), _at(25, 12)))
        self.assertEqual(created.start_mileage, 1000.0)

    def test_identical_interval_against_approved_is_rejected(self) -> None:
        self._approved(_at(25, 10), _at(25, 12), booker_name="Anan")

        with self.assertRaises(ConflictingReservation) as caught:
            self.lifecycle.create_reservation(_create_request(_at(25, 10), _at(25, 12)))

        self.assertEqual(caught.exception.booker_name, "Anan")

    def test_containing_interval_against_approved_is_rejected(self) -> None:
        self._approved(_at(25, 10), _at(25, 12))
        with self.assertRaises(ConflictingReservation):
            self.lifecycle.create_reservation(_create_request(_at(25, 8), _at(25, 18)))

    def test_pending_does_not_block_creation(self) -> None:
        self.lifecycle.create_reservation(_create_request(_at(25, 10), _at(25, 12)))
        second = self.lifecycle.create_reservation(_create_request(_at(25, 10), _at(25, 12), booker_name="Anan"))
        self.assertEqual(second.status, ReservationStatus.PENDING)

    def test_unknown_car_is_not_found(self) -> None:
        with self.assertRaises(NotFound):
            self.lifecycle.create_reservation(_create_request(_at(25, 10), _at(25, 12), car_name="Tesla"))

    def test_negative_start_mileage_is_rejected(self) -> None:
        with self.assertRaises(InvalidMileage):
            self.lifecycle.create_reservation(_create_request(_at(25, 10), _at(25, 12), start_mileage=-1.0))

    def test_auto_approve_creates_open_claims(self) -> None:
        lifecycle = ReservationLifecycle(self.repo, clock=lambda: NOW, auto_approve=True)
        created = lifecycle.create_reservation(_create_request(_at(25, 10), _at(25, 12)))

        self.assertEqual(created.status, ReservationStatus.APPROVED)
        with self.assertRaises(ConflictingReservation):
            lifecycle.create_reservation(_create_request(_at(25, 11), _at(25, 13)))

    def test_create_logs_event(self) -> None:
        self.lifecycle.create_reservation(_create_request(_at(25, 10), _at(25, 12)))
        event_types = [event["event_type"] for event in self.repo.get_events()]
        self.assertIn("RESERVATION_CREATED", event_types)


class TestApproveReservation(LifecycleTestCase):
    def test_approve_pending(self) -> None:
        created = self.lifecycle.create_reservation(_create_request(_at(25, 10), _at(25, 12)))
        approved = self.lifecycle.approve_reservation(created.reservation_id)
        self.assertEqual(approved.status, ReservationStatus.APPROVED)

    def test_approve_rejects_overlap_with_approved(self) -> None:
        first = self.lifecycle.create_reservation(_create_request(_at(25, 10), _at(25, 12)))
        second = self.lifecycle.create_reservation(_create_request(_at(25, 11), _at(25, 13), booker_name="Anan"))
        self.lifecycle.approve_reservation(first.reservation_id)

        with self.assertRaises(ConflictingReservation):
            self.lifecycle.approve_reservation(second.reservation_id)

    def test_approve_twice_is_invalid_transition(self) -> None:
        reservation_id = self._approved(_at(25, 10), _at(25, 12))
        with self.assertRaises(InvalidTransition):
            self.lifecycle.approve_reservation(reservation_id)


class TestTrips(LifecycleTestCase):
    def test_start_trip_computes_missing_mileage(self) -> None:
        reservation_id = self._approved(_at(24, 7), _at(24, 12), start_mileage=1000.0)

        started = self.lifecycle.start_trip(StartTripRequest(reservation_id, 1012.5))

        self.assertEqual(started.start_mileage, 1012.5)
        self.assertEqual(started.missing_mileage, 12.5)
        self.assertEqual(started.status, ReservationStatus.APPROVED)
        self.assertEqual(started.trip_started_at, NOW)

    def test_negative_missing_mileage_is_kept_and_logged(self) -> None:
        reservation_id = self._approved(_at(24, 7), _at(24, 12), start_mileage=1000.0)

        started = self.lifecycle.start_trip(StartTripRequest(reservation_id, 990.0))

        self.assertEqual(started.missing_mileage, -10.0)
        event_types = [event["event_type"] for event in self.repo.get_events()]
        self.assertIn("MILEAGE_DISCREPANCY", event_types)

    def test_start_trip_requires_approval(self) -> None:
        created = self.lifecycle.create_reservation(_create_request(_at(24, 7), _at(24, 12)))
        with self.assertRaises(InvalidTransition):
            self.lifecycle.start_trip(StartTripRequest(created.reservation_id, 1000.0))

    def test_start_trip_twice_is_rejected(self) -> None:
        reservation_id = self._approved(_at(24, 7), _at(24, 12))
        self.lifecycle.start_trip(StartTripRequest(reservation_id, 1000.0))
        with self.assertRaises(InvalidTransition):
            self.lifecycle.start_trip(StartTripRequest(reservation_id, 1001.0))

    def test_start_trip_unknown_reservation(self) -> None:
        with self.assertRaises(NotFound):
            self.lifecycle.start_trip(StartTripRequest("missing", 1000.0))

    def test_complete_trip_records_distance_and_updates_car(self) -> None:
        reservation_id = self._approved(_at(24, 7), _at(24, 12))
        self.lifecycle.start_trip(StartTripRequest(reservation_id, 1000.0))

        completed = self.lifecycle.complete_trip(CompleteTripRequest(reservation_id, 1085.0))

        self.assertEqual(completed.end_mileage, 1085.0)
        self.assertEqual(completed.distance_traveled, 85.0)
        self.assertEqual(completed.status, ReservationStatus.COMPLETED)
        self.assertFalse(completed.is_open_claim)
        self.assertEqual(self.repo.get_car("Civic").last_mileage, 1085.0)

    def test_complete_trip_with_lower_end_mileage_is_rejected(self) -> None:
        reservation_id = self._approved(_at(24, 7), _at(24, 12))
        self.lifecycle.start_trip(StartTripRequest(reservation_id, 1000.0))

        with self.assertRaises(InvalidMileage):
            self.lifecycle.complete_trip(CompleteTripRequest(reservation_id, 999.0))

        stored = self.repo.find_reservation_by_id(reservation_id)
        self.assertEqual(stored.status, ReservationStatus.APPROVED)
        self.assertEqual(self.repo.get_car("Civic").last_mileage, 1000.0)

    def test_complete_requires_started_trip(self) -> None:
        reservation_id = self._approved(_at(24, 7), _at(24, 12))
        with self.assertRaises(InvalidTransition):
            self.lifecycle.complete_trip(CompleteTripRequest(reservation_id, 1100.0))

    def test_complete_twice_is_rejected(self) -> None:
        reservation_id = self._approved(_at(24, 7), _at(24, 12))
        self.lifecycle.start_trip(StartTripRequest(reservation_id, 1000.0))
        self.lifecycle.complete_trip(CompleteTripRequest(reservation_id, 1010.0))
        with self.assertRaises(InvalidTransition):
            self.lifecycle.complete_trip(CompleteTripRequest(reservation_id, 1020.0))

    def test_completed_reservation_frees_interval(self) -> None:
        reservation_id = self._approved(_at(24, 7), _at(24, 12))
        self.lifecycle.start_trip(StartTripRequest(reservation_id, 1000.0))
        self.lifecycle.complete_trip(CompleteTripRequest(reservation_id, 1010.0))

        lifecycle = ReservationLifecycle(self.repo, clock=lambda: NOW, auto_approve=True)
        created = lifecycle.create_reservation(_create_request(_at(24, 9), _at(24, 11)))
        self.assertEqual(created.start_mileage, 1010.0)


class TestExtendReservation(LifecycleTestCase):
    def test_extend_does_not_conflict_with_itself(self) -> None:
        reservation_id = self._approved(_at(25, 10), _at(25, 12))

        extended = self.lifecycle.extend_reservation(ExtendRequest(reservation_id, _at(25, 15)))

        self.assertEqual(extended.end, _at(25, 15))
        self.assertEqual(self.repo.find_reservation_by_id(reservation_id).end, _at(25, 15))

    def test_extend_conflicts_with_other_reservation(self) -> None:
        reservation_id = self._approved(_at(25, 10), _at(25, 12))
        self._approved(_at(25, 14), _at(25, 16), booker_name="Anan")

        with self.assertRaises(ConflictingReservation) as caught:
            self.lifecycle.extend_reservation(ExtendRequest(reservation_id, _at(25, 15)))

        self.assertEqual(caught.exception.booker_name, "Anan")
        self.assertEqual(self.repo.find_reservation_by_id(reservation_id).end, _at(25, 12))

    def test_extend_up_to_next_booking_is_allowed(self) -> None:
        reservation_id = self._approved(_at(25, 10), _at(25, 12))
        self._approved(_at(25, 14), _at(25, 16))

        extended = self.lifecycle.extend_reservation(ExtendRequest(reservation_id, _at(25, 14)))
        self.assertEqual(extended.end, _at(25, 14))

    def test_extend_ignores_other_cars(self) -> None:
        reservation_id = self._approved(_at(25, 10), _at(25, 12))
        self._approved(_at(25, 12), _at(25, 16), car_name="Vios")

        extended = self.lifecycle.extend_reservation(ExtendRequest(reservation_id, _at(25, 15)))
        self.assertEqual(extended.end, _at(25, 15))

    def test_extend_must_move_end_later(self) -> None:
        reservation_id = self._approved(_at(25, 10), _at(25, 12))
        with self.assertRaises(InvalidInterval):
            self.lifecycle.extend_reservation(ExtendRequest(reservation_id, _at(25, 12)))
        with self.assertRaises(InvalidInterval):
            self.lifecycle.extend_reservation(ExtendRequest(reservation_id, _at(25, 11)))

    def test_extend_requires_approved(self) -> None:
        created = self.lifecycle.create_reservation(_create_request(_at(25, 10), _at(25, 12)))
        with self.assertRaises(InvalidTransition):
            self.lifecycle.extend_reservation(ExtendRequest(created.reservation_id, _at(25, 15)))


class TestConcurrentWrites(LifecycleTestCase):
    def _race(self, actions: list) -> tuple[list, list]:
        barrier = threading.Barrier(len(actions))
        results: list = []
        errors: list = []
        guard = threading.Lock()

        def run(action) -> None:
            barrier.wait()
            try:
                outcome = action()
            except ConflictingReservation as error:
                with guard:
                    errors.append(error)
            else:
                with guard:
                    results.append(outcome)

        threads = [threading.Thread(target=run, args=(action,)) for action in actions]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        return results, errors

    def test_concurrent_overlapping_creates_exactly_one_wins(self) -> None:
        lifecycle = ReservationLifecycle(self.repo, clock=lambda: NOW, auto_approve=True)
        actions = [
            lambda: lifecycle.create_reservation(_create_request(_at(25, 10), _at(25, 12), booker_name="Anan")),
            lambda: lifecycle.create_reservation(_create_request(_at(25, 11), _at(25, 13), booker_name="Somchai")),
        ]

        results, errors = self._race(actions)

        self.assertEqual(len(results), 1)
        self.assertEqual(len(errors), 1)
        self.assertEqual(len(self.repo.find_open_reservations("Civic")), 1)

    def test_concurrent_approvals_exactly_one_wins(self) -> None:
        first = self.lifecycle.create_reservation(_create_request(_at(25, 10), _at(25, 12)))
        second = self.lifecycle.create_reservation(_create_request(_at(25, 10), _at(25, 12), booker_name="Anan"))
        actions = [
            lambda: self.lifecycle.approve_reservation(first.reservation_id),
            lambda: self.lifecycle.approve_reservation(second.reservation_id),
        ]

        results, errors = self._race(actions)

        self.assertEqual(len(results), 1)
        self.assertEqual(len(errors), 1)

    def test_concurrent_writes_for_different_cars_both_commit(self) -> None:
        lifecycle = ReservationLifecycle(self.repo, clock=lambda: NOW, auto_approve=True)
        actions = [
            lambda: lifecycle.create_reservation(_create_request(_at(25, 10), _at(25, 12))),
            lambda: lifecycle.create_reservation(_create_request(_at(25, 10), _at(25, 12), car_name="Vios")),
        ]

        results, errors = self._race(actions)

        self.assertEqual(len(results), 2)
        self.assertEqual(errors, [])
        self.assertEqual(len(self.repo.find_open_reservations("Civic")), 1)
        self.assertEqual(len(self.repo.find_open_reservations("Vios")), 1)

    def test_two_lifecycles_on_one_store_never_double_book(self) -> None:
        first = ReservationLifecycle(self.repo, clock=lambda: NOW, auto_approve=True)
        second = ReservationLifecycle(self.repo, clock=lambda: NOW, auto_approve=True)

        for day in range(1, 21):
            start = datetime(2026, 3, day, 10, 0, tzinfo=timezone.utc)
            end = datetime(2026, 3, day, 12, 0, tzinfo=timezone.utc)
            actions = [
                lambda: first.create_reservation(_create_request(start, end, booker_name="Anan")),
                lambda: second.create_reservation(_create_request(start, end, booker_name="Somchai")),
            ]

            results, errors = self._race(actions)

            self.assertEqual(len(results), 1, f"day {day}")
            self.assertEqual(len(errors), 1, f"day {day}")

        open_claims = self.repo.find_open_reservations("Civic")
        self.assertEqual(len(open_claims), 20)
        self.assertEqual(len({record.start for record in open_claims}), 20)

    def test_two_repositories_on_one_data_dir_never_double_book(self) -> None:
        other_repo = ReservationYamlRepository(self.data_dir)
        self.addCleanup(other_repo.close)
        first = ReservationLifecycle(self.repo, clock=lambda: NOW, auto_approve=True)
        second = ReservationLifecycle(other_repo, clock=lambda: NOW, auto_approve=True)

        for day in range(1, 11):
            start = datetime(2026, 3, day, 10, 0, tzinfo=timezone.utc)
            end = datetime(2026, 3, day, 12, 0, tzinfo=timezone.utc)
            actions = [
                lambda: first.create_reservation(_create_request(start, end, booker_name="Anan")),
                lambda: second.create_reservation(_create_request(start, end, booker_name="Somchai")),
            ]

            results, errors = self._race(actions)

            self.assertEqual(len(results), 1, f"day {day}")
            self.assertEqual(len(errors), 1, f"day {day}")

        self.assertEqual(len(self.repo.find_open_reservations("Civic")), 10)
        self.assertTrue((self.data_dir / ".lock").exists())


if __name__ == "__main__":
    unittest.main()
