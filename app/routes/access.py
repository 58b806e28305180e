from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from app.database import get_session
from app.gateways import get_gateways
from app.models.user import User
from app.schemas.checkout_schemas import AccessGrantRead, AccessStatusResponse
from app.services import content_resolver
from app.services.checkout_service import CheckoutOrchestrator
from app.services.entitlement_service import build_entitlement_checker
from app.services.errors import ContentNotFoundError
from app.utils.token import get_current_user, get_optional_user, optional_oauth2_scheme

router = APIRouter()


@router.get("/{content_type}/{content_id}/access-status", response_model=AccessStatusResponse)
def access_status(
    content_type: str,
    content_id: str,
    session: Session = Depends(get_session),
    token: Optional[str] = Depends(optional_oauth2_scheme),
    current_user: Optional[User] = Depends(get_optional_user),
):
    kind = content_resolver.parse_content_type(content_type)

    try:
        ref = content_resolver.load_reference(session, kind, content_id)
    except ContentNotFoundError:
        # unknown content falls back to checkout on the client
        return AccessStatusResponse(has_access=False)

    check = build_entitlement_checker(session, token).check(
        current_user.id if current_user else None, ref
    )

    return AccessStatusResponse(
        has_access=check.has_access,
        free_acquisition=check.free_acquisition,
        label=content_resolver.label(kind),
        button_text=content_resolver.button_text(ref),
        access_url=content_resolver.access_url(ref) if check.has_access else None,
    )


@router.post("/{content_type}/{content_id}/access", response_model=AccessGrantRead)
def grant_free_access(
    content_type: str,
    content_id: str,
    session: Session = Depends(get_session),
    gateways: dict = Depends(get_gateways),
    current_user: User = Depends(get_current_user),
):
    ref = content_resolver.load_reference(session, content_type, content_id)

    if not ref.is_free:
        raise HTTPException(402, "Este conteúdo é pago")

    outcome = CheckoutOrchestrator(session, gateways).start_checkout(current_user.id, ref)

    if outcome.grant is None:
        raise HTTPException(409, "Acesso já concedido por outro serviço")

    return AccessGrantRead.from_grant(outcome.grant)
