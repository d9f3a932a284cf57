# core/dependencies.py
from fastapi import Request

from services.reconciliation_service import ReconciliationService
from services.settlement_service import SettlementService
from services.subscription_service import SubscriptionService


# ============================================================
# ✅ Service lookups (services are built once in main.create_app)
# ============================================================
def get_subscription_service(request: Request) -> SubscriptionService:
    return request.app.state.subscription_service


def get_reconciliation_service(request: Request) -> ReconciliationService:
    return request.app.state.reconciliation_service


def get_settlement_service(request: Request) -> SettlementService:
    return request.app.state.settlement_service
