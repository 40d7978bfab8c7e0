from fastapi import APIRouter

from .endpoints import assistants, auth, conversations, entitlements, preferences

api_router = APIRouter()

# Include all API routes
api_router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
api_router.include_router(assistants.router, prefix="/assistants", tags=["Assistants"])
api_router.include_router(conversations.router, prefix="/conversations", tags=["Conversations"])
api_router.include_router(preferences.router, prefix="/preferences", tags=["Preferences"])
api_router.include_router(entitlements.router, prefix="/entitlements", tags=["Entitlements"])
