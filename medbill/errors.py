from __future__ import annotations


class MedbillError(Exception):
    """
    Base error. status_code is what the HTTP layer returns for it.
    """
    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(MedbillError):
    """Missing or malformed input; the user has to correct it."""
    status_code = 400


class PayloadTooLarge(ValidationError):
    status_code = 413


class NotFoundError(MedbillError):
    status_code = 404


class GatewayError(MedbillError):
    """
    Model call failed or returned content we could not parse.
    Callers normally degrade to the local fallback rules instead of surfacing this.
    """
    status_code = 502


class RenderError(MedbillError):
    status_code = 500


class StorageError(MedbillError):
    status_code = 500
