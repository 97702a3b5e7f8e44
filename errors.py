"""
Domain errors. Raised by the core modules and translated to HTTP
responses in main.py.
"""


class ShopError(Exception):
    """Base class for every error the storefront raises on purpose."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ShopError):
    """Input rejected before it reaches the datastore."""


class InvalidQuantity(ValidationError):
    pass


class InsufficientStock(ValidationError):
    def __init__(self, message: str, requested: int, available: int):
        super().__init__(message)
        self.requested = requested
        self.available = available


class InvalidTransition(ValidationError):
    pass


class NotFoundError(ShopError):
    def __init__(self, kind: str, ident: str):
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


class RemoteWriteError(ShopError):
    """The datastore or a remote service failed; the caller may resubmit."""


class VersionConflictError(RemoteWriteError):
    """The document changed between read and write."""


class PaymentGatewayError(RemoteWriteError):
    def __init__(self, message: str, code=None, details=None):
        super().__init__(message)
        self.code = code
        self.details = details


class SignatureInputError(ShopError):
    pass
