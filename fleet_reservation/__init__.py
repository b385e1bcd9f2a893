from .conflicts import can_reserve, check_conflict, find_conflict
from .errors import (
	ConflictingReservation,
	ConsistencyWarning,
	InvalidInterval,
	InvalidMileage,
	InvalidPayload,
	InvalidTransition,
	NotFound,
	ReservationError,
	StoreUnavailable,
)
from .interval import Interval, overlaps, parse_timestamp
from .lifecycle import ReservationLifecycle
from .models import Car, ReservationRecord, ReservationStatus
from .requests import CompleteTripRequest, CreateReservationRequest, ExtendRequest, StartTripRequest
from .status import CarStatus, Free, InUse, NextBooking, project_fleet_status, project_status
from .yaml_store import ReservationStore, ReservationYamlRepository, ResourceLocks, StoreSnapshot

__all__ = [
	"Interval",
	"overlaps",
	"parse_timestamp",
	"Car",
	"ReservationRecord",
	"ReservationStatus",
	"ReservationError",
	"InvalidInterval",
	"InvalidMileage",
	"InvalidPayload",
	"InvalidTransition",
	"NotFound",
	"StoreUnavailable",
	"ConflictingReservation",
	"ConsistencyWarning",
	"ReservationStore",
	"ReservationYamlRepository",
	"StoreSnapshot",
	"can_reserve",
	"check_conflict",
	"find_conflict",
	"InUse",
	"Free",
	"NextBooking",
	"CarStatus",
	"project_status",
	"project_fleet_status",
	"ReservationLifecycle",
	"ResourceLocks",
	"CreateReservationRequest",
	"StartTripRequest",
	"CompleteTripRequest",
	"ExtendRequest",
]
