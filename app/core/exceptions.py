"""
Engine error hierarchy.

Every error carries a machine-readable ``kind`` and the HTTP status the API
layer renders it with. Services raise these after rolling back their unit of
work, so callers can always retry with fresh data.
"""
from typing import Any, Dict, Optional


class FulfillmentError(Exception):
    """Base error for run consolidation, picking and reconciliation."""

    kind = "fulfillment_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "kind": self.kind,
            "details": self.details,
        }


class NoEligibleDemand(FulfillmentError):
    """Nothing pending was selected for consolidation."""
    kind = "no_eligible_demand"
    status_code = 422


class ReceiptRequired(FulfillmentError):
    """Store visit completion attempted without proof of visit."""
    kind = "receipt_required"
    status_code = 422


class UnknownReference(FulfillmentError):
    """A barcode, store, run or record id does not exist."""
    kind = "unknown_reference"
    status_code = 404


class InvalidQuantity(FulfillmentError):
    """Negative or out-of-bounds quantity."""
    kind = "invalid_quantity"
    status_code = 422


class ConflictingAssignment(FulfillmentError):
    """A source record is no longer in the state the operation expected."""
    kind = "conflicting_assignment"
    status_code = 409


class InvalidRunState(FulfillmentError):
    """Run or store visit is not in a state that allows the operation."""
    kind = "invalid_run_state"
    status_code = 409


class UnconfirmedAction(FulfillmentError):
    """A guarded action was not confirmed long enough."""
    kind = "unconfirmed_action"
    status_code = 422


class PartialFailure(FulfillmentError):
    """A multi-step operation failed after some units were committed."""
    kind = "partial_failure"
    status_code = 500
