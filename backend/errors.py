# backend/errors.py
from typing import Any, Dict, Optional


class AppError(Exception):
    """Base error rendered as a JSON ``{"error": ...}`` body."""

    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class Unauthorized(AppError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized", details: Optional[str] = None):
        super().__init__(message, details)


class ReauthRequired(AppError):
    status_code = 401

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["requiresReauth"] = True
        return body


class RefreshFailed(ReauthRequired):
    pass


class ValidationFailed(AppError):
    status_code = 400


class EmptyInput(ValidationFailed):
    pass


class Forbidden(AppError):
    status_code = 403


class NotFound(AppError):
    status_code = 404


class FormClosed(AppError):
    status_code = 410


class PermissionDenied(AppError):
    status_code = 403


class UploadFailed(AppError):
    pass


class ExportFailed(AppError):
    pass


class ProxyFailed(AppError):
    status_code = 502
