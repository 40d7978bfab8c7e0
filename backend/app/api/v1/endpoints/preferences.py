from typing import Any

from fastapi import APIRouter, Depends

from ....core.security import get_current_active_user
from ....models.user import User, UserAIPreferences, UserAIPreferencesUpdate
from ....services.preferences import PreferencesService, get_preferences_service

router = APIRouter()


@router.get("", response_model=UserAIPreferences)
async def get_preferences(
    current_user: User = Depends(get_current_active_user),
    service: PreferencesService = Depends(get_preferences_service),
) -> Any:
    """The current user's AI preferences; defaults are stored on first read."""
    return service.get_or_create(current_user.id)


@router.put("", response_model=UserAIPreferences)
async def update_preferences(
    changes: UserAIPreferencesUpdate,
    current_user: User = Depends(get_current_active_user),
    service: PreferencesService = Depends(get_preferences_service),
) -> Any:
    """Apply a partial update; fields left out of the body are unchanged."""
    return service.update(current_user.id, changes)
