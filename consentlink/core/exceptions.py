# consentlink/core/exceptions.py
"""
Error kinds raised by the sharing services.

Each error carries the HTTP status it maps to and a stable machine code,
so the API layer can translate them with a single exception handler.
Expired and Revoked are reported distinctly for messaging, but both mean
"no access".
"""


class SharingError(Exception):
    status_code: int = 400
    code: str = "sharing_error"

    def __init__(self, message: str | None = None):
        self.message = message or self.code.replace("_", " ").capitalize()
        super().__init__(self.message)


class ValidationError(SharingError):
    status_code = 400
    code = "validation_error"


class NotAuthorized(SharingError):
    status_code = 403
    code = "not_authorized"


class NotFound(SharingError):
    status_code = 404
    code = "not_found"


class InvalidState(SharingError):
    status_code = 409
    code = "invalid_state"


class Expired(SharingError):
    status_code = 410
    code = "expired"


class Revoked(SharingError):
    status_code = 410
    code = "revoked"
