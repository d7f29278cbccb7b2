# Overview: Business error hierarchy shared by every service and mapped to HTTP by the blueprints.

"""
Service-layer errors.

Services raise these; blueprints translate them with `error_response`
into `{"error": message, "code": code}` and the error's status code.
Anything that is not a LabInventoryError is an infrastructure failure and
is reported as a generic 500.
"""


class LabInventoryError(Exception):
    """Base class for business-rule failures."""
    status_code = 400
    code = "ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class UnauthenticatedError(LabInventoryError):
    status_code = 401
    code = "UNAUTHENTICATED"


class ForbiddenError(LabInventoryError):
    status_code = 403
    code = "FORBIDDEN"


class AccessDeniedError(ForbiddenError):
    """Item is not shared with the requesting department, or not transferable."""
    code = "ACCESS_DENIED"


class NotFoundError(LabInventoryError):
    status_code = 404
    code = "NOT_FOUND"


class InvalidStateError(LabInventoryError):
    status_code = 409
    code = "INVALID_STATE"


class ValidationError(LabInventoryError):
    status_code = 400
    code = "VALIDATION_ERROR"


class DuplicateRequestError(LabInventoryError):
    status_code = 409
    code = "DUPLICATE_REQUEST"


class ItemUnavailableError(LabInventoryError):
    status_code = 409
    code = "ITEM_UNAVAILABLE"


class DurationExceededError(LabInventoryError):
    status_code = 400
    code = "DURATION_EXCEEDED"


class InsufficientStockError(LabInventoryError):
    status_code = 400
    code = "INSUFFICIENT_STOCK"


class AccountNotEligibleError(LabInventoryError):
    status_code = 403
    code = "ACCOUNT_NOT_ELIGIBLE"


class ConflictError(LabInventoryError):
    status_code = 409
    code = "CONFLICT"


class AlreadyIssuedError(ConflictError):
    code = "ALREADY_ISSUED"
