from fastapi import APIRouter, Depends

from ideaforge.dependencies import get_personality_service, get_user_id
from ideaforge.models.schemas import PersonalityResponse, PersonalityUpdate, ProductPersonality
from ideaforge.services.personality import PersonalityService

router = APIRouter(prefix="/api/personality", tags=["personality"])


def _to_response(personality: ProductPersonality) -> PersonalityResponse:
    return PersonalityResponse(
        personality=personality,
        top_preferences=PersonalityService.top_preferences(personality),
    )


@router.get("/", response_model=PersonalityResponse)
async def get_personality(
    user_id: str = Depends(get_user_id),
    personality: PersonalityService = Depends(get_personality_service),
):
    """The caller's learned preferences, decayed for time since the last update."""
    return _to_response(await personality.apply_decay(user_id))


@router.put("/", response_model=PersonalityResponse)
async def update_personality(
    data: PersonalityUpdate,
    user_id: str = Depends(get_user_id),
    personality: PersonalityService = Depends(get_personality_service),
):
    return _to_response(await personality.update(user_id, data))
