from typing import Any, List

from fastapi import APIRouter, Depends

from ....core.security import get_current_active_user
from ....models.assistant import Assistant
from ....models.user import User
from ....services.assistants import AssistantService, get_assistant_service

router = APIRouter()


@router.get("", response_model=List[Assistant])
async def list_assistants(
    current_user: User = Depends(get_current_active_user),
    service: AssistantService = Depends(get_assistant_service),
) -> Any:
    """One active assistant per role visible to the current user, in role order."""
    return service.effective_assistants(current_user.org_id)
