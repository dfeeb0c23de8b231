"""Error taxonomy shared by the refund and availability domains.

Routes map these to HTTP status codes:
ValidationError -> 400, AuthorizationError -> 403, NotFoundError -> 404,
ConflictError -> 409, GatewayError -> 502.
AnomalyError is never raised to callers; it is logged.
"""

from __future__ import annotations


class RefundsError(Exception):
    """Base class for domain errors."""


class ValidationError(RefundsError):
    """Malformed input, rejected before any state change."""


class ConflictError(RefundsError):
    """Request conflicts with current state (active refund, blocked room)."""


class NotFoundError(RefundsError):
    """Resource, payment, refund or room id does not resolve."""


class AuthorizationError(RefundsError):
    """Requester does not own the resource."""


class GatewayError(RefundsError):
    """External payment gateway rejected or failed a submission.

    The failure has already been recorded on the refund row
    (retry_count, error_message) when this is raised.
    """

    def __init__(self, message: str, *, refund_id: str, retry_count: int) -> None:
        self.refund_id = refund_id
        self.retry_count = retry_count
        super().__init__(message)


class AnomalyError(RefundsError):
    """A gateway callback contradicts already-applied terminal state."""

    def __init__(
        self,
        *,
        refund_id: str,
        current_status: str,
        reported_outcome: str,
    ) -> None:
        self.refund_id = refund_id
        self.current_status = current_status
        self.reported_outcome = reported_outcome
        super().__init__(
            f"Refund {refund_id} is '{current_status}' but gateway reported "
            f"'{reported_outcome}'"
        )
