from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock, RLock
from typing import Any, ContextManager, Iterator, Protocol
import shutil

from filelock import FileLock, Timeout
import yaml

from .errors import NotFound, StoreUnavailable
from .models import Car, ReservationRecord, ReservationStatus

LOCK_TIMEOUT_SECONDS = 30.0


class ReservationStore(Protocol):
    def locked(self, car_name: str) -> ContextManager[None]: ...

    def find_open_reservations(
        self,
        car_name: str,
        exclude_reservation_id: str | None = None,
    ) -> list[ReservationRecord]: ...

    def find_reservation_by_id(self, reservation_id: str) -> ReservationRecord | None: ...

    def find_reservations_for_car(self, car_name: str) -> list[ReservationRecord]: ...

    def find_reservations_for_booker(self, booker_email: str) -> list[ReservationRecord]: ...

    def insert_reservation(self, record: ReservationRecord) -> str: ...

    def update_reservation(self, reservation_id: str, **fields: Any) -> ReservationRecord: ...

    def update_car_mileage(self, car_name: str, value: float) -> Car: ...

    def get_car(self, car_name: str) -> Car | None: ...

    def list_cars(self) -> list[Car]: ...

    def snapshot(self) -> "StoreSnapshot": ...

    def log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class StoreSnapshot:
    """Cars and reservations taken from a single read of the store."""

    cars: list[Car]
    reservations: list[ReservationRecord]

    def get_car(self, car_name: str) -> Car | None:
        for car in self.cars:
            if car.name == car_name:
                return car
        return None

    def open_reservations_for(self, car_name: str) -> list[ReservationRecord]:
        return [row for row in self.reservations if row.car_name == car_name and row.is_open_claim]


class ResourceLocks:
    """One lock per car name; holders own the car's check-then-write section."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[str, Lock] = {}

    def _lock_for(self, car_name: str) -> Lock:
        with self._guard:
            lock = self._locks.get(car_name)
            if lock is None:
                lock = Lock()
                self._locks[car_name] = lock
            return lock

    @contextmanager
    def hold(self, car_name: str) -> Iterator[None]:
        with self._lock_for(car_name):
            yield


class ReservationYamlRepository:
    """YAML-backed store. All readers and writers of one data directory share ``.lock``.

    ``locked(car_name)`` is the serialization point for check-then-write
    sections: it takes the car's in-process lock and then the directory's
    file lock, so lifecycles in other threads or other processes wait.
    """

    def __init__(self, base_dir: str | Path = "data", lock_timeout: float = LOCK_TIMEOUT_SECONDS) -> None:
        self.base_dir = Path(base_dir)
        self.cars_file = self.base_dir / "cars.yaml"
        self.reservations_file = self.base_dir / "reservations.yaml"
        self.log_file = self.base_dir / "reservation_events.yaml"
        self.lock_file = self.base_dir / ".lock"
        self._lock = RLock()
        self._car_locks = ResourceLocks()
        self._closed = False
        self._ensure_files()
        self._file_lock = FileLock(str(self.lock_file), timeout=lock_timeout)

    def __enter__(self) -> "ReservationYamlRepository":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def _guard(self) -> Iterator[None]:
        with self._lock:
            try:
                self._file_lock.acquire()
            except Timeout as error:
                raise StoreUnavailable(f"Timed out waiting for store lock: {self.lock_file}") from error
            try:
                yield
            finally:
                self._file_lock.release()

    @contextmanager
    def locked(self, car_name: str) -> Iterator[None]:
        with self._car_locks.hold(car_name):
            with self._guard():
                self._check_open()
                yield

    def _ensure_files(self) -> None:
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            for path in (self.cars_file, self.reservations_file, self.log_file):
                if not path.exists():
                    path.write_text("[]\n", encoding="utf-8")
        except OSError as error:
            raise StoreUnavailable(f"Cannot initialise data directory: {self.base_dir}") from error

    def _check_open(self) -> None:
        if self._closed:
            raise StoreUnavailable("Reservation store has been closed.")

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            path.write_text("[]\n", encoding="utf-8")
            return []
        except (UnicodeDecodeError, yaml.YAMLError) as error:
            self._recover_corrupted_yaml(path, error)
            return []
        except OSError as error:
            raise StoreUnavailable(f"Failed to read YAML file: {path}") from error

        if payload is None:
            return []
        if not isinstance(payload, list):
            self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))
            return []

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                sanitized.append(row)
            else:
                self._log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": str(path.name),
                        "index": index,
                        "reason": "row is not a mapping",
                    },
                )
        return sanitized

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise StoreUnavailable(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            backup_path = path

        path.write_text("[]\n", encoding="utf-8")
        if path != self.log_file:
            self._log_event(
                "YAML_RECOVERED",
                {
                    "file": str(path.name),
                    "backup": str(backup_path.name),
                    "reason": str(error),
                },
            )

    def _log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        timestamp = (event_time or datetime.now(timezone.utc)).isoformat(timespec="seconds")
        events = self._read_yaml_list(self.log_file)
        events.append({"event_time": timestamp, "event_type": event_type, "payload": payload})
        self._write_yaml_list(self.log_file, events)

    def log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        with self._guard():
            self._check_open()
            self._log_event(event_type, payload, event_time)

    def get_events(self) -> list[dict[str, Any]]:
        with self._guard():
            self._check_open()
            return self._read_yaml_list(self.log_file)

    def _load_reservations(self) -> list[ReservationRecord]:
        return [ReservationRecord.from_dict(row) for row in self._read_yaml_list(self.reservations_file)]

    def _load_cars(self) -> list[Car]:
        return [Car.from_dict(row) for row in self._read_yaml_list(self.cars_file)]

    def snapshot(self) -> StoreSnapshot:
        with self._guard():
            self._check_open()
            return StoreSnapshot(cars=self._load_cars(), reservations=self._load_reservations())

    def register_car(
        self,
        name: str,
        last_mileage: float | None = None,
        plate: str | None = None,
        model: str | None = None,
    ) -> Car:
        name = _normalize_car_name(name)
        car = Car(name=name, last_mileage=last_mileage, plate=plate, model=model)
        with self._guard():
            self._check_open()
            rows = self._read_yaml_list(self.cars_file)
            if any(str(row.get("name")) == name for row in rows):
                raise ValueError(f"Car already registered: {name}")
            rows.append(car.to_dict())
            self._write_yaml_list(self.cars_file, rows)
            self._log_event("CAR_REGISTERED", car.to_dict())
        return car

    def get_car(self, car_name: str) -> Car | None:
        for car in self.list_cars():
            if car.name == car_name:
                return car
        return None

    def list_cars(self) -> list[Car]:
        with self._guard():
            self._check_open()
            return self._load_cars()

    def update_car_mileage(self, car_name: str, value: float) -> Car:
        with self._guard():
            self._check_open()
            rows = self._read_yaml_list(self.cars_file)
            for index, row in enumerate(rows):
                if str(row.get("name")) == car_name:
                    break
            else:
                raise NotFound(f"Car not found: {car_name}")

            updated = Car.from_dict({**rows[index], "last_mileage": value})
            rows[index] = updated.to_dict()
            self._write_yaml_list(self.cars_file, rows)
            self._log_event("CAR_MILEAGE_UPDATED", {"car_name": car_name, "last_mileage": value})
        return updated

    def find_open_reservations(
        self,
        car_name: str,
        exclude_reservation_id: str | None = None,
    ) -> list[ReservationRecord]:
        with self._guard():
            self._check_open()
            records = self._load_reservations()
        return [
            record
            for record in records
            if record.car_name == car_name
            and record.is_open_claim
            and record.reservation_id != exclude_reservation_id
        ]

    def find_reservations_for_car(self, car_name: str) -> list[ReservationRecord]:
        with self._guard():
            self._check_open()
            records = self._load_reservations()
        return sorted((record for record in records if record.car_name == car_name), key=lambda record: record.start)

    def find_reservations_for_booker(self, booker_email: str) -> list[ReservationRecord]:
        with self._guard():
            self._check_open()
            records = self._load_reservations()
        owned = [record for record in records if record.booker_email == booker_email]
        return sorted(owned, key=lambda record: record.start, reverse=True)

    def find_reservation_by_id(self, reservation_id: str) -> ReservationRecord | None:
        with self._guard():
            self._check_open()
            for row in self._read_yaml_list(self.reservations_file):
                if str(row.get("reservation_id")) == reservation_id:
                    return ReservationRecord.from_dict(row)
        return None

    def insert_reservation(self, record: ReservationRecord) -> str:
        with self._guard():
            self._check_open()
            rows = self._read_yaml_list(self.reservations_file)
            if any(str(row.get("reservation_id")) == record.reservation_id for row in rows):
                raise ValueError(f"Duplicate reservation_id: {record.reservation_id}")
            rows.append(record.to_dict())
            self._write_yaml_list(self.reservations_file, rows)
        return record.reservation_id

    def update_reservation(self, reservation_id: str, **fields: Any) -> ReservationRecord:
        if "reservation_id" in fields:
            raise ValueError("reservation_id cannot be changed")
        if "status" in fields:
            fields["status"] = ReservationStatus(fields["status"])

        with self._guard():
            self._check_open()
            rows = self._read_yaml_list(self.reservations_file)
            found_index = -1
            for index, row in enumerate(rows):
                if str(row.get("reservation_id")) == reservation_id:
                    found_index = index
                    break

            if found_index < 0:
                raise NotFound(f"Reservation not found: {reservation_id}")

            current = ReservationRecord.from_dict(rows[found_index])
            fields.setdefault("updated_at", datetime.now(timezone.utc))
            updated = current.with_changes(**fields)
            rows[found_index] = updated.to_dict()
            self._write_yaml_list(self.reservations_file, rows)
        return updated


def _normalize_car_name(name: str | None) -> str:
    if name is None:
        raise ValueError("car name must not be None")

    normalized = name.strip()
    if not normalized:
        raise ValueError("car name must not be empty")
    return normalized
