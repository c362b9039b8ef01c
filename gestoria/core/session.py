from __future__ import annotations

from dataclasses import dataclass

from flask_login import current_user

from gestoria.core.errors import PermissionDeniedError
from gestoria.core.models import AppRole


@dataclass(frozen=True)
class SessionContext:
    """Identity of the staff member acting on a request."""

    user_id: int | None
    role: AppRole | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == AppRole.ADMIN

    def require_admin(self) -> None:
        if not self.is_admin:
            raise PermissionDeniedError("Acción reservada a administradores")


def current_session() -> SessionContext:
    if not current_user.is_authenticated:
        return SessionContext(user_id=None)
    return SessionContext(user_id=current_user.id, role=current_user.role)
