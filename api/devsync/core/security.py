"""
Utilidades de seguridad: emision y validacion de tokens JWT.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt

from devsync.core.config import settings
from devsync.shared.exceptions.auth import InvalidTokenException, TokenExpiredException


ADMIN_ROLE = "admin"


class SecurityService:
    """Servicio para operaciones de seguridad."""

    @staticmethod
    def create_access_token(
        data: Dict[str, Any],
        expires_delta: Optional[timedelta] = None
    ) -> str:
        """
        Crea un token JWT de acceso.

        Args:
            data: Claims a incluir (p. ej. {"sub": "...", "role": "admin"})
            expires_delta: Tiempo de expiracion personalizado

        Returns:
            str: Token JWT codificado
        """
        to_encode = data.copy()
        expire = datetime.now(timezone.utc) + (
            expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        )
        to_encode.update({"exp": expire})
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    @staticmethod
    def decode_access_token(token: str) -> Dict[str, Any]:
        """
        Decodifica y valida un token JWT.

        Raises:
            InvalidTokenException: Si el token es invalido
            TokenExpiredException: Si el token ha expirado
        """
        try:
            return jwt.decode(
                token,
                settings.SECRET_KEY,
                algorithms=[settings.ALGORITHM]
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredException()
        except JWTError:
            raise InvalidTokenException()

    @staticmethod
    def is_admin(claims: Dict[str, Any]) -> bool:
        return claims.get("role") == ADMIN_ROLE


# Instancia global del servicio de seguridad
security_service = SecurityService()
