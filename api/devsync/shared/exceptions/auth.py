"""
Excepciones de autenticacion y autorizacion del endpoint de administracion.
"""
from devsync.shared.exceptions.base import AppException


class AuthException(AppException):
    """Excepción base para errores de autenticación (401)."""

    def __init__(self, message: str, error_code: str = "AUTH_ERROR", details=None):
        super().__init__(
            message=message,
            status_code=401,
            error_code=error_code,
            details=details
        )


class InvalidTokenException(AuthException):
    def __init__(self):
        super().__init__(
            message="Token invalido",
            error_code="INVALID_TOKEN"
        )


class TokenExpiredException(AuthException):
    def __init__(self):
        super().__init__(
            message="El token ha expirado",
            error_code="TOKEN_EXPIRED"
        )


class UnauthorizedException(AuthException):
    """Falta el token Bearer."""

    def __init__(self, message: str = "No autenticado"):
        super().__init__(
            message=message,
            error_code="UNAUTHORIZED"
        )


class ForbiddenException(AppException):
    """Token valido pero sin rol de administrador."""

    def __init__(self, message: str = "Se requiere rol de administrador"):
        super().__init__(
            message=message,
            status_code=403,
            error_code="FORBIDDEN"
        )
