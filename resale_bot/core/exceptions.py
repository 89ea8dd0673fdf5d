"""
Custom Exception Hierarchy

Structured exceptions shared by the routing engine, the provider layer and
the HTTP surface. Routing and delivery failures are domain outcomes: the
webhook handler converts them to ``{"status": ...}`` bodies, while the
generic FastAPI handlers only see what escapes it.
"""
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"

    # Routing errors (2xxx)
    TENANT_NOT_FOUND = "ERR_2001"
    AMBIGUOUS_INSTANCE = "ERR_2002"

    # Provider errors (5xxx)
    PROVIDER_ERROR = "ERR_5002"
    PROVIDER_TIMEOUT = "ERR_5004"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


# ============================================================================
# Routing
# ============================================================================


class TenantNotFoundError(AppException):
    """
    Nenhum tenant corresponde ao identificador de instância.

    Carrega o identificador pesquisado para diagnóstico do operador.
    """

    def __init__(self, instance_name: str, reason: str = "Instance not found"):
        super().__init__(
            message=reason,
            error_code=ErrorCode.TENANT_NOT_FOUND,
            status_code=404,
            details={"instance_searched": instance_name}
        )
        self.instance_name = instance_name
        self.reason = reason


class AmbiguousInstanceError(TenantNotFoundError):
    """Partial match returned more than one seller instance"""

    def __init__(self, instance_name: str, candidates: list[str]):
        super().__init__(instance_name, reason="Ambiguous instance match")
        self.error_code = ErrorCode.AMBIGUOUS_INSTANCE
        self.candidates = candidates
        self.details["candidates"] = candidates


# ============================================================================
# Provider
# ============================================================================


class ProviderError(AppException):
    """Raised when the WhatsApp provider API fails (non-2xx or network)"""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_text: str = "",
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=f"Provider API error: {message}",
            error_code=ErrorCode.PROVIDER_ERROR,
            status_code=503,
            details=details
        )
        self.details["service"] = "evolution"
        # status HTTP devolvido pelo provedor (None = falha de rede)
        self.provider_status_code = status_code
        self.response_text = response_text

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        message: str | None = None,
        max_response_chars: int = 1000
    ) -> "ProviderError":
        """
        Cria um ProviderError a partir de uma resposta HTTP.

        Args:
            operation: nome do endpoint (ex: sendText, sendButtons)
            response: objeto de resposta (ex: httpx.Response)
            message: mensagem customizada (se ausente, é montada automaticamente)
            max_response_chars: limite do corpo guardado no erro
        """
        status_code = getattr(response, "status_code", None)
        response_text = (getattr(response, "text", "") or "")[:max_response_chars]
        return cls(
            message=message or f"{operation} returned status {status_code}",
            status_code=status_code,
            response_text=response_text,
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text,
            },
        )


class ProviderTimeoutError(ProviderError):
    """Raised when a provider call exceeds its request timeout"""

    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(
            message=f"{operation} timed out after {timeout_seconds}s",
            details={"operation": operation, "timeout_seconds": timeout_seconds}
        )
        self.error_code = ErrorCode.PROVIDER_TIMEOUT

