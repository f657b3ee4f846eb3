"""
Service-layer error types.

Services raise these; blueprints (or the app-level handlers in create_app) turn them
into JSON `{"error": ...}` responses or flashed messages.
"""
from __future__ import annotations


class FmsError(Exception):
    status_code = 400

    def __init__(self, message: str, *, details: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> dict:
        body: dict = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(FmsError):
    status_code = 400

    @classmethod
    def from_errors(cls, errors: list[str]) -> "ValidationError":
        return cls(errors[0] if len(errors) == 1 else "Validation failed", details=errors)


class AccessDenied(FmsError):
    status_code = 403


class NotFound(FmsError):
    status_code = 404


class Conflict(FmsError):
    status_code = 409
