"""Typed failures raised by the planner, generator, pool and builder."""

from __future__ import annotations


class PlannerError(Exception):
    """Base class for caller-visible failures.

    ``status_code`` mirrors the HTTP status a web layer would map it to.
    """

    status_code = 400
    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class BadRequest(PlannerError):
    status_code = 400
    kind = "bad_request"


class Forbidden(PlannerError):
    status_code = 403
    kind = "forbidden"


class NotFound(PlannerError):
    status_code = 404
    kind = "not_found"


class Conflict(PlannerError):
    status_code = 409
    kind = "conflict"
