from io import BytesIO
from typing import Optional

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas
from sqlmodel import Session, select

from app.config import settings
from app.constants.payment_methods import TransactionStatus
from app.models.transaction import Transaction
from app.models.user import User
from app.services.content_resolver import label

METHOD_LABELS = {
    "card": "Cartão",
    "mobile_money": "Mobile Money",
    "bank_transfer": "Transferência bancária",
}


def get_invoice_transaction(
    session: Session,
    invoice_id: str,
    user_id: Optional[int] = None,
) -> Optional[Transaction]:
    query = select(Transaction).where(Transaction.invoice_id == invoice_id)
    if user_id is not None:
        query = query.where(Transaction.user_id == user_id)
    return session.exec(query).first()


def render_invoice_pdf(txn: Transaction, user: User, title: str) -> bytes:
    """Invoice PDF for a transaction, built in memory."""
    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4
    y = height - 60

    c.setFont("Helvetica-Bold", 18)
    c.drawString(60, y, f"{settings.STORE_NAME} - Fatura {txn.invoice_id}")
    y -= 30

    c.setFont("Helvetica", 12)
    c.drawString(60, y, f"Cliente: {user.full_name}")
    y -= 18
    c.drawString(60, y, f"Email: {user.email}")
    y -= 18
    paid_at = txn.paid_at or txn.created_at
    c.drawString(60, y, f"Data: {paid_at.strftime('%Y-%m-%d')}")
    y -= 30

    c.setFont("Helvetica-Bold", 12)
    c.drawString(60, y, "Item:")
    y -= 20

    c.setFont("Helvetica", 11)
    c.drawString(60, y, f"{label(txn.content_type)}: {title}")
    y -= 15
    c.drawString(60, y, f"Método: {METHOD_LABELS.get(txn.payment_method_kind, txn.payment_method_kind)}")
    y -= 15
    c.drawString(60, y, f"Referência: {txn.gateway_reference}")
    y -= 30

    c.setFont("Helvetica-Bold", 12)
    c.drawString(60, y, f"Total: {txn.amount:.2f} {txn.currency}")
    y -= 20
    status = "Pago" if txn.status == TransactionStatus.SUCCEEDED.value else txn.status
    c.drawString(60, y, f"Estado: {status}")

    c.showPage()
    c.save()
    return buffer.getvalue()
