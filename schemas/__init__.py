from .subscription_schema import (
    SubscriptionCreate, SubscriptionRead,
    GatewayOrderRead, SubscriptionCheckoutRead, AccessCodeCheck
)
from .payment_schema import PaymentRead, PaymentVerifyRequest, PaymentVerifyResponse, WebhookAck
from .settlement_schema import (
    SettlementCreate, SettlementProcess,
    SettlementRead, SettlementDetailRead, UnsettledAmountRead
)

__all__ = [
    # Subscription
    "SubscriptionCreate", "SubscriptionRead",
    "GatewayOrderRead", "SubscriptionCheckoutRead", "AccessCodeCheck",

    # Payment
    "PaymentRead", "PaymentVerifyRequest", "PaymentVerifyResponse", "WebhookAck",

    # Settlement
    "SettlementCreate", "SettlementProcess",
    "SettlementRead", "SettlementDetailRead", "UnsettledAmountRead",
]
