"""Domain error taxonomy.

Every business-rule failure raised by the services derives from
``DomainError``. The API layer renders them through a single exception
handler, so services never build HTTP responses themselves.
"""

from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base class for errors that are reported back to the caller."""

    code = "domain_error"
    status_code = 400

    def __init__(self, message: str, **detail: Any):
        self.message = message
        self.detail: Dict[str, Any] = detail
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "detail": self.message}
        payload.update(self.detail)
        return payload


class MalformedImportRow(DomainError):
    """Raised when an import row lacks the codes needed to resolve it."""

    code = "malformed_import_row"
    status_code = 422

    def __init__(self, row_index: int, missing: list):
        self.row_index = row_index
        self.missing = missing
        super().__init__(
            f"Import row {row_index} is missing {', '.join(missing)}",
            row_index=row_index,
            missing=missing,
        )


class EntityConflict(DomainError):
    """Natural-key collision. Resolved internally by re-reading the winner."""

    code = "entity_conflict"
    status_code = 409


class EntityNotFound(DomainError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found", entity=entity, id=entity_id)


class RunLocked(DomainError):
    """Raised when a completed, cancelled or historical run is mutated."""

    code = "run_locked"
    status_code = 409

    def __init__(self, run_id: int, status: str):
        self.run_id = run_id
        self.status = status
        super().__init__(
            f"Run {run_id} is {status.lower()} and can no longer be changed",
            run_id=run_id,
            status=status,
        )


class DuplicatePickEntry(DomainError):
    code = "duplicate_pick_entry"
    status_code = 409

    def __init__(self, run_id: int, coil_item_id: int):
        self.run_id = run_id
        self.coil_item_id = coil_item_id
        super().__init__(
            f"Run {run_id} already has a pick entry for coil item {coil_item_id}",
            run_id=run_id,
            coil_item_id=coil_item_id,
        )


class InvalidOverride(DomainError):
    code = "invalid_override"
    status_code = 422

    def __init__(self, message: str, value: Any):
        self.value = value
        super().__init__(message, value=value)


class InvalidTransition(DomainError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, machine: str, state: str, event: str):
        self.state = state
        self.event = event
        super().__init__(
            f"Cannot apply '{event}' to {machine} in state {state}",
            state=state,
            event=event,
        )


class InvalidPointer(DomainError):
    code = "invalid_pointer"
    status_code = 422

    def __init__(self, value: Any):
        super().__init__(
            "count pointer must be one of: current, par, need, forecast, total",
            value=value,
        )


class InvalidTimeZone(DomainError):
    code = "invalid_time_zone"
    status_code = 400

    def __init__(self, value: Optional[str]):
        super().__init__(f"Unknown time zone {value!r}", value=value)


class ConcurrentModification(DomainError):
    code = "concurrent_modification"
    status_code = 409

    def __init__(self, entity: str, entity_id: int, expected: int, current: int):
        super().__init__(
            f"{entity} {entity_id} was modified concurrently "
            f"(expected version {expected}, current {current})",
            entity=entity,
            id=entity_id,
            expected_version=expected,
            current_version=current,
        )


class StoreUnavailable(DomainError):
    """Raised once transient store failures exhaust their retries."""

    code = "store_unavailable"
    status_code = 503

    def __init__(self, attempts: int):
        super().__init__(
            f"Store unavailable after {attempts} attempts, try again later",
            attempts=attempts,
        )


class DuplicateChocolateBox(DomainError):
    code = "duplicate_chocolate_box"
    status_code = 409

    def __init__(self, run_id: int, number: int):
        super().__init__(
            f"Chocolate box number {number} already exists for run {run_id}",
            run_id=run_id,
            number=number,
        )
