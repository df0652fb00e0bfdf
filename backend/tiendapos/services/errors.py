# Overview: Base exception for service-layer business rule failures.

from __future__ import annotations


class ServiceError(Exception):
    """
    Raised by services for expected, client-facing failures.

    status_code maps the failure to an HTTP status in the routes:
    400 for invalid input or state, 404 for missing resources in the
    caller's organization, 409 for conflicts.
    """
    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


def not_found(error_cls, what: str):
    return error_cls(f"{what} not found", status_code=404)
