"""Error taxonomy shared by services and routes."""

from __future__ import annotations


class GestoriaError(Exception):
    """Base error; the message is safe to show to staff."""


class ValidationError(GestoriaError):
    """Rejected input: missing field, malformed value, non-positive amount."""


class NotFoundError(GestoriaError):
    """Referenced cliente, expediente, trámite or pago does not exist."""


class ConflictError(GestoriaError):
    """Duplicate number, unique or referential constraint violation."""


class BackendError(GestoriaError):
    """The database could not complete the operation."""


class PermissionDeniedError(GestoriaError):
    """The acting user lacks the role required for the operation."""
