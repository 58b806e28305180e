from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ChargeResult:
    gateway_reference: str
    status: str  # succeeded | pending | failed
    message: Optional[str] = None
    instructions: Optional[Dict[str, Any]] = None


@dataclass
class VerifyResult:
    status: str  # succeeded | pending | failed | expired
    amount: float
    currency: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def from_minor_units(amount: Optional[int]) -> float:
    return round((amount or 0) / 100, 2)


class GatewayAdapter(ABC):
    """
    Capability interface shared by every payment provider.

    ``verify`` must be a pure read: calling it any number of times never
    changes the remote charge.
    """

    name: str = ""
    # True when charge() settles immediately (no external confirmation)
    synchronous: bool = False

    @abstractmethod
    def tokenize_payment_method(self, card_details: Dict[str, Any]) -> str:
        ...

    @abstractmethod
    def charge(
        self,
        session_id: str,
        amount: float,
        currency: str,
        method_details: Dict[str, Any],
        *,
        attempt: int = 1,
        metadata: Optional[Dict[str, str]] = None,
    ) -> ChargeResult:
        ...

    @abstractmethod
    def verify(self, gateway_reference: str) -> VerifyResult:
        ...
