"""
Provider API endpoints - List the available chat providers.
"""

from fastapi import APIRouter, Depends

from ..services.conversations import ConversationRegistry
from .deps import get_registry

router = APIRouter(prefix="/providers", tags=["providers"])


@router.get("")
async def list_providers(registry: ConversationRegistry = Depends(get_registry)):
    """Provider presets with whether each one is usable right now."""
    return registry.list_providers()
