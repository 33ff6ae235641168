from fastapi import APIRouter, Depends, Query

from ideaforge.dependencies import get_owned_session, get_spark_service
from ideaforge.models.schemas import (
    Idea,
    IdeaBatchResponse,
    Session,
    SwipeAnalysis,
    SwipeCreate,
    SwipeResponse,
    TopIdeasResponse,
)
from ideaforge.services.spark import SparkService

router = APIRouter(prefix="/api/spark", tags=["spark"])


@router.post("/{session_id}/ideas", response_model=IdeaBatchResponse)
async def generate_ideas(
    session: Session = Depends(get_owned_session),
    spark: SparkService = Depends(get_spark_service),
):
    """Generate the next batch of ideas, steered by earlier swipes."""
    return await spark.generate_ideas(session.id)


@router.get("/{session_id}/ideas", response_model=list[Idea])
async def list_ideas(
    batch_number: int | None = None,
    session: Session = Depends(get_owned_session),
    spark: SparkService = Depends(get_spark_service),
):
    return await spark.list_ideas(session.id, batch_number)


@router.post("/{session_id}/swipes", response_model=SwipeResponse, status_code=201)
async def record_swipe(
    data: SwipeCreate,
    session: Session = Depends(get_owned_session),
    spark: SparkService = Depends(get_spark_service),
):
    return await spark.record_swipe(
        session.id, session.user_id, data.idea_id, data.direction, data.duration_ms
    )


@router.get("/{session_id}/analysis", response_model=SwipeAnalysis)
async def analyze_swipes(
    session: Session = Depends(get_owned_session),
    spark: SparkService = Depends(get_spark_service),
):
    """Like/dislike counts and whether a restart should be offered."""
    return await spark.analyze_swipes(session.id)


@router.get("/{session_id}/top", response_model=TopIdeasResponse)
async def get_top_ideas(
    count: int = Query(default=3, ge=1, le=10),
    session: Session = Depends(get_owned_session),
    spark: SparkService = Depends(get_spark_service),
):
    return await spark.get_top_ideas(session.id, count)
