from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ....core.security import get_current_active_user
from ....models.user import User
from ....services.entitlements import EntitlementService, get_entitlement_service

router = APIRouter()


class EntitlementStatus(BaseModel):
    entitlement_id: str
    active: bool


@router.get("/{entitlement_id}", response_model=EntitlementStatus)
async def get_entitlement(
    entitlement_id: str,
    current_user: User = Depends(get_current_active_user),
    service: EntitlementService = Depends(get_entitlement_service),
) -> Any:
    active = await service.has_active_entitlement(current_user.id, entitlement_id)
    return EntitlementStatus(entitlement_id=entitlement_id, active=active)
