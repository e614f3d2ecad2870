"""Exception hierarchy shared by the store, the billing engine and the API."""


class BillingError(Exception):
    """Base exception for every handled failure."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BillingError):
    """Malformed or missing input."""

    status_code = 400


class NotFoundError(BillingError):
    """Card, invoice or account does not exist."""

    status_code = 404


class InvalidTransitionError(BillingError):
    """Invoice status does not allow the requested action."""

    status_code = 400

    def __init__(self, message: str, status: str | None = None):
        super().__init__(message)
        self.status = status


class AlreadyPaidError(InvalidTransitionError):
    pass


class NotClosedError(InvalidTransitionError):
    pass


class AlreadyOpenError(InvalidTransitionError):
    pass


class CannotReopenPaidError(InvalidTransitionError):
    pass


class PreconditionError(BillingError):
    status_code = 400


class EmptyInvoiceError(PreconditionError):
    pass


class MissingAccountError(PreconditionError):
    pass


class StoreError(BillingError):
    """The persistent store rejected a read or a write."""

    status_code = 500


class ConcurrentUpdateError(StoreError):
    """A compare-and-swap write lost against another writer."""

    status_code = 409
