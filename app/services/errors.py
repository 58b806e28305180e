"""
Checkout error taxonomy.

Every error carries a ``user_message`` that is safe to show in the checkout UI,
a ``retryable`` flag, and the HTTP status the API answers with when the error
escapes to the exception handler in ``app.main``.
"""

from typing import Optional


class CheckoutError(Exception):
    code = "checkout_error"
    status_code = 400
    retryable = False
    default_message = "Não foi possível concluir a operação"

    def __init__(self, message: Optional[str] = None, *, user_message: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.user_message = user_message or message or self.default_message


class ValidationError(CheckoutError):
    code = "validation_error"
    status_code = 422
    default_message = "Dados de pagamento incompletos"


class PriceMismatchError(CheckoutError):
    code = "price_mismatch"
    status_code = 409
    default_message = "O preço deste conteúdo mudou. Atualize a página e tente novamente."

    def __init__(self, server_price: float, client_price: float):
        super().__init__(
            f"Client price {client_price} does not match server price {server_price}",
            user_message=self.default_message,
        )
        self.server_price = server_price
        self.client_price = client_price


class UnsupportedContentTypeError(CheckoutError):
    code = "unsupported_content_type"
    status_code = 400
    default_message = "Tipo de conteúdo não suportado"

    def __init__(self, content_type):
        super().__init__(
            f"Unsupported content type: {content_type!r}",
            user_message=self.default_message,
        )
        self.content_type = content_type


class ContentNotFoundError(CheckoutError):
    code = "content_not_found"
    status_code = 404
    default_message = "Conteúdo não encontrado"


class InvalidTransitionError(CheckoutError):
    code = "invalid_transition"
    status_code = 409
    default_message = "Esta sessão de pagamento não aceita esta ação"

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot move checkout from {current!r} to {target!r}",
            user_message=self.default_message,
        )
        self.current = current
        self.target = target


class GatewayError(CheckoutError):
    code = "gateway_error"
    status_code = 502


class GatewayUnavailable(GatewayError):
    code = "gateway_unavailable"
    status_code = 503
    retryable = True
    default_message = "O serviço de pagamento está indisponível. Tente novamente em instantes."


class GatewayRejected(GatewayError):
    code = "gateway_rejected"
    status_code = 402
    default_message = "Pagamento recusado"


class GatewayAuthError(GatewayError):
    code = "gateway_auth_error"
    status_code = 502
    default_message = "Erro ao processar pagamento"

    def __init__(self, message: Optional[str] = None):
        # never expose gateway configuration details to the user
        super().__init__(message, user_message=self.default_message)


class EntitlementCheckFailed(CheckoutError):
    code = "entitlement_check_failed"
    status_code = 503
    retryable = True
    default_message = "Não foi possível verificar o seu acesso"


class AccessStatusNotFound(CheckoutError):
    code = "access_status_not_found"
    status_code = 404


class ReconciliationError(CheckoutError):
    code = "reconciliation_error"
    status_code = 503
    retryable = True
    default_message = "Não foi possível confirmar o pagamento agora. Tente novamente."

    def __init__(self, message: Optional[str] = None, *, retryable: bool = True, status_code: Optional[int] = None):
        super().__init__(message, user_message=self.default_message if retryable else message)
        self.retryable = retryable
        if status_code is not None:
            self.status_code = status_code


class CheckoutSessionNotFoundError(CheckoutError):
    code = "checkout_session_not_found"
    status_code = 404
    default_message = "Sessão de pagamento não encontrada"
