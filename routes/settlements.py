# routes/settlements.py
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel import Session

from core.database import get_session
from core.dependencies import get_settlement_service
from core.security import ensure_gym_access, require_admin, require_owner_or_admin
from models.models import User, UserRole
from schemas.payment_schema import PaymentRead
from schemas.settlement_schema import (
    SettlementCreate,
    SettlementDetailRead,
    SettlementProcess,
    SettlementRead,
    UnsettledAmountRead,
)
from services.settlement_service import SettlementService

router = APIRouter(prefix="/settlements", tags=["Settlements"])


# ==================================================================
#  ✅ Create settlement (admin runs payouts)
# ==================================================================
@router.post("", response_model=SettlementRead, status_code=status.HTTP_201_CREATED)
def create_settlement(
    data: SettlementCreate,
    current_user: User = Depends(require_admin),
    service: SettlementService = Depends(get_settlement_service),
):
    return service.create_settlement(data.gym_id, actor_id=current_user.id)


# ==================================================================
#  ✅ List settlements (admin: all, owner: own gym)
# ==================================================================
@router.get("", response_model=List[SettlementRead])
def list_settlements(
    gym_id: Optional[int] = None,
    status_filter: Optional[str] = Query(default=None, alias="status"),
    current_user: User = Depends(require_owner_or_admin),
    session: Session = Depends(get_session),
    service: SettlementService = Depends(get_settlement_service),
):
    if current_user.role != UserRole.ADMIN.value:
        if gym_id is None:
            raise HTTPException(status_code=400, detail="gym_id is required for owners")
        ensure_gym_access(session, gym_id, current_user)
    return service.list_settlements(gym_id, status_filter)


# ==================================================================
#  ✅ Unsettled balance for a gym
# ==================================================================
@router.get("/unsettled", response_model=UnsettledAmountRead)
def unsettled_amount(
    gym_id: int,
    current_user: User = Depends(require_owner_or_admin),
    session: Session = Depends(get_session),
    service: SettlementService = Depends(get_settlement_service),
):
    ensure_gym_access(session, gym_id, current_user)
    summary = service.get_unsettled_amount(gym_id)
    return UnsettledAmountRead(
        gym_id=summary.gym_id,
        amount=summary.amount,
        count=summary.count,
        payments=[PaymentRead.model_validate(p) for p in summary.payments],
    )


# ==================================================================
#  ✅ Settlement with its payments
# ==================================================================
@router.get("/{settlement_id}", response_model=SettlementDetailRead)
def get_settlement(
    settlement_id: int,
    current_user: User = Depends(require_owner_or_admin),
    session: Session = Depends(get_session),
    service: SettlementService = Depends(get_settlement_service),
):
    detail = service.get_settlement(settlement_id)
    ensure_gym_access(session, detail.settlement.gym_id, current_user)

    return SettlementDetailRead(
        **SettlementRead.model_validate(detail.settlement).model_dump(),
        payments=[PaymentRead.model_validate(p) for p in detail.payments],
    )


# ==================================================================
#  ✅ Mark settlement paid out
# ==================================================================
@router.post("/{settlement_id}/process", response_model=SettlementRead)
def process_settlement(
    settlement_id: int,
    data: SettlementProcess,
    current_user: User = Depends(require_admin),
    service: SettlementService = Depends(get_settlement_service),
):
    return service.process_settlement(
        settlement_id,
        data.transaction_id,
        notes=data.notes,
        actor_id=current_user.id,
    )
