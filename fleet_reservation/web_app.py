from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from .config import AppConfig
from .errors import (
    ConflictingReservation,
    InvalidPayload,
    InvalidTransition,
    NotFound,
    ReservationError,
    StoreUnavailable,
)
from .lifecycle import ReservationLifecycle
from .models import ReservationRecord
from .requests import (
    CompleteTripRequest,
    CreateReservationRequest,
    ExtendRequest,
    StartTripRequest,
    failure,
    success,
)
from .status import project_fleet_status
from .yaml_store import ReservationYamlRepository

_STATUS_CODES: dict[type[ReservationError], int] = {
    NotFound: 404,
    ConflictingReservation: 409,
    InvalidTransition: 409,
    StoreUnavailable: 503,
}


def create_app(
    data_dir: str | Path = "data",
    now_provider: Callable[[], datetime] | None = None,
    auto_approve: bool = False,
    repository: ReservationYamlRepository | None = None,
) -> Flask:
    app = Flask(__name__)
    repository = repository or ReservationYamlRepository(data_dir)
    clock: Callable[[], datetime] = now_provider or (lambda: datetime.now(timezone.utc))
    lifecycle = ReservationLifecycle(repository, clock=clock, auto_approve=auto_approve)
    app.extensions["fleet_repository"] = repository
    app.extensions["fleet_lifecycle"] = lifecycle

    def _serialize_reservation(record: ReservationRecord) -> dict[str, Any]:
        payload = record.to_dict()
        payload["is_open_claim"] = record.is_open_claim
        return payload

    @app.errorhandler(ReservationError)
    def handle_reservation_error(error: ReservationError) -> Any:
        status_code = 400
        for error_type, code in _STATUS_CODES.items():
            if isinstance(error, error_type):
                status_code = code
                break
        return jsonify(failure(error)), status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception) -> Any:
        if isinstance(error, HTTPException):
            return error
        return jsonify({"ok": False, "error": {"kind": "InternalError", "message": "Unexpected server error."}}), 500

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,PATCH,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    @app.get("/")
    def index() -> str:
        return "Car Booking Server is running!"

    @app.get("/api/status")
    def get_status() -> Any:
        statuses = project_fleet_status(repository, clock())
        return jsonify(success(data=[status.to_dict() for status in statuses]))

    @app.get("/api/cars")
    def get_cars() -> Any:
        return jsonify(success(data=[car.to_dict() for car in repository.list_cars()]))

    @app.get("/api/bookings/car/<car_name>")
    def get_car_bookings(car_name: str) -> Any:
        records = repository.find_reservations_for_car(car_name)
        return jsonify(success(data=[_serialize_reservation(record) for record in records]))

    @app.get("/api/history/<email>")
    def get_history(email: str) -> Any:
        records = repository.find_reservations_for_booker(email)
        return jsonify(success(data=[_serialize_reservation(record) for record in records]))

    @app.post("/api/bookings")
    def create_booking() -> Any:
        payload = _json_payload()
        created = lifecycle.create_reservation(CreateReservationRequest.from_payload(payload))
        return jsonify(success(reservation=_serialize_reservation(created))), 201

    @app.patch("/api/bookings/<reservation_id>/approve")
    def approve_booking(reservation_id: str) -> Any:
        updated = lifecycle.approve_reservation(reservation_id)
        return jsonify(success(reservation=_serialize_reservation(updated)))

    @app.patch("/api/bookings/<reservation_id>/start")
    def start_trip(reservation_id: str) -> Any:
        payload = _json_payload()
        updated = lifecycle.start_trip(StartTripRequest.from_payload(reservation_id, payload))
        return jsonify(success(reservation=_serialize_reservation(updated)))

    @app.patch("/api/bookings/<reservation_id>/complete")
    def complete_trip(reservation_id: str) -> Any:
        payload = _json_payload()
        updated = lifecycle.complete_trip(CompleteTripRequest.from_payload(reservation_id, payload))
        return jsonify(success(reservation=_serialize_reservation(updated)))

    @app.patch("/api/bookings/<reservation_id>/extend")
    def extend_booking(reservation_id: str) -> Any:
        payload = _json_payload()
        updated = lifecycle.extend_reservation(ExtendRequest.from_payload(reservation_id, payload))
        return jsonify(success(reservation=_serialize_reservation(updated)))

    return app


def _json_payload() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise InvalidPayload("Request body must be a JSON object.")
    return payload


def main() -> None:
    config = AppConfig.from_env()
    with ReservationYamlRepository(config.data_dir) as repository:
        app = create_app(repository=repository, auto_approve=config.auto_approve)
        app.run(host=config.host, port=config.port, debug=False)


if __name__ == "__main__":
    main()
