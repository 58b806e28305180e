from enum import Enum


class PaymentMethodKind(str, Enum):
    CARD = "card"
    MOBILE_MONEY = "mobile_money"
    BANK_TRANSFER = "bank_transfer"


class GatewayName(str, Enum):
    STRIPE = "stripe"
    PAYTEK = "paytek"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# card is charged synchronously, the rest confirm out of band
METHOD_GATEWAYS = {
    PaymentMethodKind.CARD: GatewayName.STRIPE,
    PaymentMethodKind.MOBILE_MONEY: GatewayName.PAYTEK,
    PaymentMethodKind.BANK_TRANSFER: GatewayName.PAYTEK,
}

MOBILE_PROVIDERS = {
    "mpesa": "M-Pesa",
    "emola": "e-Mola",
}

BANKS = {
    "bim": "BIM",
    "bci": "BCI",
    "standard": "Standard Bank",
    "absa": "Absa",
}
