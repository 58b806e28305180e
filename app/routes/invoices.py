from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlmodel import Session

from app.constants.payment_methods import TransactionStatus
from app.database import get_session
from app.models.checkout_session import CheckoutSession
from app.models.user import User
from app.services.invoice_service import get_invoice_transaction, render_invoice_pdf
from app.utils.token import get_current_user


router = APIRouter()

@router.get("/{invoice_id}/download")
def download_invoice(
    invoice_id: str,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    txn = get_invoice_transaction(session, invoice_id, current_user.id)

    if not txn:
        raise HTTPException(404, "Invoice not found")

    if txn.status != TransactionStatus.SUCCEEDED.value:
        raise HTTPException(400, "Invoice available after payment is confirmed")

    checkout = session.get(CheckoutSession, txn.session_id)
    pdf = render_invoice_pdf(txn, current_user, checkout.title)

    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{txn.invoice_id}.pdf"'},
    )
