"""
Dependencias de seguridad para endpoints de administracion.

El orden importa: primero la barrera de seguridad (404 en produccion, sin
revelar nada mas) y despues la autenticacion.
"""
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger

from devsync.core.config import settings
from devsync.core.security import security_service
from devsync.infrastructure.external.prod_sync.safety import SafetyGate
from devsync.shared.exceptions.auth import ForbiddenException, UnauthorizedException


bearer_scheme = HTTPBearer(auto_error=False)


async def enforce_safety_gate(request: Request) -> None:
    """Rechaza con 404 si cualquier verificacion indica produccion."""
    SafetyGate.from_settings(settings).enforce(request.headers.get("host"))


async def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Dict[str, Any]:
    """
    Valida el token Bearer y exige rol de administrador.

    Returns:
        Dict[str, Any]: claims del token
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedException()

    claims = security_service.decode_access_token(credentials.credentials)
    if not security_service.is_admin(claims):
        logger.warning(f"[sync] Acceso denegado a sub={claims.get('sub')!r}: rol {claims.get('role')!r}")
        raise ForbiddenException()
    return claims
