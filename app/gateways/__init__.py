from functools import lru_cache
from typing import Dict

from app.config import settings
from app.gateways.base import ChargeResult, GatewayAdapter, VerifyResult
from app.gateways.paytek_gateway import PaytekGateway
from app.gateways.stripe_gateway import StripeGateway


def build_gateways(config=settings) -> Dict[str, GatewayAdapter]:
    return {
        "stripe": StripeGateway(
            config.STRIPE_SECRET_KEY,
            timeout=config.GATEWAY_TIMEOUT_SECONDS,
        ),
        "paytek": PaytekGateway(
            config.PAYTEK_BASE_URL,
            config.PAYTEK_API_KEY,
            timeout=config.GATEWAY_TIMEOUT_SECONDS,
            bank_instructions={
                "bank": config.BANK_TRANSFER_BANK,
                "account": config.BANK_TRANSFER_ACCOUNT,
                "holder": config.BANK_TRANSFER_HOLDER,
            },
        ),
    }


@lru_cache(maxsize=1)
def get_gateways() -> Dict[str, GatewayAdapter]:
    """One adapter set per process, injected into routes as a dependency."""
    return build_gateways()


__all__ = [
    "ChargeResult",
    "GatewayAdapter",
    "VerifyResult",
    "PaytekGateway",
    "StripeGateway",
    "build_gateways",
    "get_gateways",
]
