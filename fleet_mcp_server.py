from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from fleet_reservation import (
    CreateReservationRequest,
    ExtendRequest,
    ReservationError,
    ReservationLifecycle,
    ReservationYamlRepository,
    parse_timestamp,
    project_fleet_status,
    project_status,
)

mcp = FastMCP(
    "Fleet Reservation MCP Server",
    instructions="Expose car reservations and fleet status from the fleet_reservation project.",
    json_response=True,
)

DATA_DIR = Path(__file__).parent / "data"
REPOSITORY = ReservationYamlRepository(DATA_DIR)
LIFECYCLE = ReservationLifecycle(REPOSITORY)


@mcp.resource("fleet://cars")
async def list_cars() -> list[dict[str, Any]]:
    """List registered cars with their last recorded mileage."""
    return [car.to_dict() for car in REPOSITORY.list_cars()]


@mcp.tool()
def fleet_status() -> list[dict[str, Any]]:
    """Return whether each car is in use right now or when it is next booked."""
    return [status.to_dict() for status in project_fleet_status(REPOSITORY, datetime.now(timezone.utc))]


@mcp.tool()
def car_status(car_name: str, at_iso: str | None = None) -> dict[str, Any]:
    """Return the status of one car, optionally at an ISO-8601 instant."""
    try:
        now = parse_timestamp(at_iso) if at_iso else datetime.now(timezone.utc)
        status = project_status(REPOSITORY, car_name, now)
    except ReservationError as error:
        return {"ok": False, "error": error.to_dict()}
    return {"ok": True, "status": status.to_dict()}


@mcp.tool()
def request_reservation(
    car_name: str,
    booker_name: str,
    start_iso: str,
    end_iso: str,
    booker_email: str | None = None,
) -> dict[str, Any]:
    """Request a car for an interval given as ISO timestamps. The request starts as pending."""
    try:
        created = LIFECYCLE.create_reservation(
            CreateReservationRequest.from_payload(
                {
                    "name": car_name,
                    "bookerName": booker_name,
                    "bookerEmail": booker_email,
                    "startDateTime": start_iso,
                    "endDateTime": end_iso,
                }
            )
        )
    except ReservationError as error:
        return {"ok": False, "error": error.to_dict()}
    return {"ok": True, "reservation": created.to_dict()}


@mcp.tool()
def approve_reservation(reservation_id: str) -> dict[str, Any]:
    """Approve a pending reservation if its interval is still free."""
    try:
        updated = LIFECYCLE.approve_reservation(reservation_id)
    except ReservationError as error:
        return {"ok": False, "error": error.to_dict()}
    return {"ok": True, "reservation": updated.to_dict()}


@mcp.tool()
def extend_reservation(reservation_id: str, new_end_iso: str) -> dict[str, Any]:
    """Push back the end of an approved reservation."""
    try:
        updated = LIFECYCLE.extend_reservation(
            ExtendRequest.from_payload(reservation_id, {"newEndDateTime": new_end_iso})
        )
    except ReservationError as error:
        return {"ok": False, "error": error.to_dict()}
    return {"ok": True, "reservation": updated.to_dict()}


def main() -> None:
    try:
        mcp.run()
    finally:
        REPOSITORY.close()


if __name__ == "__main__":
    main()
