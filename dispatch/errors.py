"""
Errors raised by the dispatch engine.

Every error is an expected, recoverable outcome: the API renders it as
`{"error": code, "detail": message}` with the class's status code.
"""


class DispatchError(Exception):
    code = "dispatch_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DispatchError):
    code = "validation_error"
    status_code = 422


class NotFoundError(DispatchError):
    code = "not_found"
    status_code = 404


class NotAuthorizedError(DispatchError):
    code = "not_authorized"
    status_code = 403


class InvalidStateError(DispatchError):
    code = "invalid_state"
    status_code = 409


class AlreadyResolvedError(InvalidStateError):
    """Lost a race: another actor already claimed the call."""

    code = "already_resolved"


class CallNotOpenError(InvalidStateError):
    code = "call_not_open"


class BiddingRequiredError(InvalidStateError):
    code = "bidding_required"


class BiddingDisabledForTenantError(DispatchError):
    code = "bidding_disabled"
    status_code = 409
