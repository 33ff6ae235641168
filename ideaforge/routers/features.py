from fastapi import APIRouter, Depends, Query

from ideaforge.dependencies import get_feature_service, get_owned_session
from ideaforge.models.schemas import (
    FeatureExpansionCreate,
    FeatureExpansionResponse,
    FeatureVariation,
    RatingUpdate,
    Session,
)
from ideaforge.services.features import FeatureExpansionService

router = APIRouter(prefix="/api/features", tags=["features"])


@router.post("/{session_id}", response_model=FeatureExpansionResponse)
async def expand_features(
    data: FeatureExpansionCreate | None = None,
    session: Session = Depends(get_owned_session),
    features: FeatureExpansionService = Depends(get_feature_service),
):
    """Expand the top mutations (or the given ones) into themed feature sets."""
    data = data or FeatureExpansionCreate()
    return await features.expand_features(session.id, data.mutation_ids, data.variations_per_mutation)


@router.get("/{session_id}", response_model=list[FeatureVariation])
async def list_variations(
    mutation_id: str | None = None,
    session: Session = Depends(get_owned_session),
    features: FeatureExpansionService = Depends(get_feature_service),
):
    return await features.list_variations(session.id, mutation_id)


@router.get("/{session_id}/top", response_model=list[FeatureVariation])
async def get_top_variations(
    count: int = Query(default=3, ge=1, le=20),
    session: Session = Depends(get_owned_session),
    features: FeatureExpansionService = Depends(get_feature_service),
):
    return await features.get_top_variations(session.id, count)


@router.put("/{session_id}/{variation_id}/rating", response_model=FeatureVariation)
async def rate_variation(
    variation_id: str,
    data: RatingUpdate,
    session: Session = Depends(get_owned_session),
    features: FeatureExpansionService = Depends(get_feature_service),
):
    return await features.rate_variation(session.id, variation_id, data.rating)
