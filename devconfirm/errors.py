"""Error taxonomy shared by the registry, transport and confirmation engine.

Every error carries a stable ``code`` that the API surfaces to clients
instead of internal detail.
"""


class ConfirmError(Exception):
    code = "internal"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class NotFound(ConfirmError):
    code = "not_found"
    status_code = 404


class Unauthorized(ConfirmError):
    code = "unauthorized"
    status_code = 403


class AlreadyExists(ConfirmError):
    code = "already_exists"
    status_code = 409


class InvalidFormat(ConfirmError):
    code = "invalid_format"
    status_code = 400


class InvalidSecretFormat(InvalidFormat):
    code = "invalid_secret_format"


class DeliveryError(ConfirmError):
    code = "delivery_error"
    status_code = 503


class InternalError(ConfirmError):
    pass
