"""Classified failures raised by the payledger layers.

Every exception carries a stable ``error_code`` and a ``retryable`` flag so a
front-end can tell "please retry" apart from "data needs manual repair"
without inspecting messages.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class PayledgerError(Exception):
    """Base application exception."""

    retryable = False

    def __init__(self, message: str, error_code: str = "ERR_INTERNAL", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(message)


class StoreError(PayledgerError):
    """Raised by a store when a persistence call cannot be completed."""

    retryable = True

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="ERR_STORE", details=details)


class RecordNotFoundError(StoreError):
    """Raised by a store when the requested key does not exist."""

    def __init__(self, resource: str, key: Any):
        super().__init__(f"{resource} with key {key} not found", details={"resource": resource, "key": key})
        self.error_code = "ERR_STORE_NOT_FOUND"


class BusinessRuleViolation(PayledgerError):
    """Raised when a requested operation violates a domain constraint."""

    def __init__(self, message: str, error_code: str = "ERR_BUSINESS_RULE", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code=error_code, details=details)


class ValidationError(BusinessRuleViolation):
    """Rejected input; raised before any store is touched."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="ERR_VALIDATION", details=details)


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced order, product, counterpart or warehouse is unknown."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="ERR_NOT_FOUND", details=details)


class LedgerIntegrityError(PayledgerError):
    """More than one ledger entry exists for a single order id."""

    def __init__(self, order_id: str, locations: list[tuple[str, str]]):
        super().__init__(
            f"Order {order_id} has {len(locations)} ledger entries; expected at most one",
            error_code="ERR_LEDGER_INTEGRITY",
            details={"order_id": order_id, "locations": locations},
        )
        self.order_id = order_id
        self.locations = locations


class TransientStoreError(PayledgerError):
    """A store call failed mid-operation; the whole operation is safe to retry."""

    retryable = True

    def __init__(
        self,
        step: str,
        cause: Exception,
        *,
        record_id: Optional[str] = None,
        order_kind: Optional[str] = None,
        resume_command: str = "reconcile",
    ):
        super().__init__(
            f"{step} failed: {cause}",
            error_code="ERR_STORE_UNAVAILABLE",
            details={"step": step, "record_id": record_id, "order_kind": order_kind},
        )
        self.step = step
        # Set once the order itself has been persisted.
        self.record_id = record_id
        self.order_kind = order_kind
        self.resume_command = resume_command

    @property
    def resume_hint(self) -> Optional[str]:
        """Command line that finishes the interrupted operation, when known."""
        if self.record_id is None:
            return None
        kind = f"--kind {self.order_kind} " if self.order_kind else ""
        return f"{self.resume_command} {kind}--record-id {self.record_id}"


__all__ = [
    "PayledgerError",
    "StoreError",
    "RecordNotFoundError",
    "BusinessRuleViolation",
    "ValidationError",
    "MissingReferenceError",
    "LedgerIntegrityError",
    "TransientStoreError",
]
