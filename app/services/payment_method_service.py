import logging
import re
from datetime import datetime
from typing import Any, Dict, List

from sqlmodel import Session, select

from app.constants.payment_methods import BANKS, MOBILE_PROVIDERS, PaymentMethodKind
from app.gateways.base import GatewayAdapter
from app.models.payment_method import SavedPaymentMethod
from app.services.errors import ValidationError

logger = logging.getLogger(__name__)


def _digits(value: Any) -> str:
    return re.sub(r"\D", "", str(value or ""))


def list_methods(session: Session, user_id: int) -> List[SavedPaymentMethod]:
    return session.exec(
        select(SavedPaymentMethod)
        .where(SavedPaymentMethod.user_id == user_id)
        .order_by(SavedPaymentMethod.is_default.desc(), SavedPaymentMethod.created_at.desc())
    ).all()


def add_method(
    session: Session,
    user_id: int,
    kind: str,
    data: Dict[str, Any],
    card_gateway: GatewayAdapter,
    make_default: bool = False,
) -> SavedPaymentMethod:
    """
    Store a payment method keeping only display fragments.

    Cards are tokenized through the card gateway; the full phone or account
    number is reduced to its last four digits before it reaches the database.
    """
    try:
        kind = PaymentMethodKind(kind)
    except ValueError:
        raise ValidationError(f"Unsupported payment method: {kind}")

    method = SavedPaymentMethod(user_id=user_id, kind=kind.value, label="")

    if kind == PaymentMethodKind.CARD:
        method.gateway_token = card_gateway.tokenize_payment_method(data)
        method.brand = (data.get("brand") or "card").lower()
        method.last4 = _digits(data.get("last4"))[-4:] or None
        method.exp_month = data.get("expMonth") or data.get("exp_month")
        method.exp_year = data.get("expYear") or data.get("exp_year")

        if method.exp_month and method.exp_year:
            now = datetime.utcnow()
            if (int(method.exp_year), int(method.exp_month)) < (now.year, now.month):
                raise ValidationError("Cartão expirado")

        method.label = f"{method.brand.title()} •••• {method.last4 or '????'}"

    elif kind == PaymentMethodKind.MOBILE_MONEY:
        provider = (data.get("provider") or "").lower()
        if provider not in MOBILE_PROVIDERS:
            raise ValidationError("Selecione M-Pesa ou e-Mola")
        phone = _digits(data.get("phoneNumber") or data.get("phone_number"))
        if len(phone) < 9:
            raise ValidationError("Número de telefone inválido")
        method.provider = provider
        method.last4 = phone[-4:]
        method.label = f"{MOBILE_PROVIDERS[provider]} •••• {method.last4}"

    else:
        bank = (data.get("bank") or "").lower()
        if bank not in BANKS:
            raise ValidationError(f"Banco não suportado: {bank}")
        account = _digits(data.get("accountNumber") or data.get("account_number"))
        if len(account) < 4:
            raise ValidationError("Número de conta inválido")
        method.bank = bank
        method.last4 = account[-4:]
        method.label = f"{BANKS[bank]} •••• {method.last4}"

    existing = list_methods(session, user_id)
    method.is_default = make_default or not existing
    if method.is_default:
        for other in existing:
            if other.is_default:
                other.is_default = False
                session.add(other)

    session.add(method)
    session.commit()
    session.refresh(method)

    logger.info(f"Saved {kind.value} payment method {method.id} for user={user_id}")
    return method


def delete_method(session: Session, user_id: int, method_id: int) -> bool:
    method = session.get(SavedPaymentMethod, method_id)
    if not method or method.user_id != user_id:
        return False

    was_default = method.is_default
    session.delete(method)
    session.flush()

    if was_default:
        replacement = session.exec(
            select(SavedPaymentMethod)
            .where(SavedPaymentMethod.user_id == user_id)
            .order_by(SavedPaymentMethod.created_at.desc())
        ).first()
        if replacement:
            replacement.is_default = True
            session.add(replacement)

    session.commit()
    return True
