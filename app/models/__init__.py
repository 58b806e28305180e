from app.models.user import User
from app.models.content import Content, ContentType
from app.models.access_grant import AccessGrant, GrantSource
from app.models.checkout_session import CheckoutSession
from app.models.transaction import Transaction
from app.models.payment_method import SavedPaymentMethod
from app.models.checkout_event import CheckoutEvent

# add ALL models here
