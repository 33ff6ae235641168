from fastapi import APIRouter, Depends, Query

from ideaforge.dependencies import get_mutation_service, get_owned_session
from ideaforge.models.schemas import (
    Mutation,
    MutationBatchResponse,
    MutationCreate,
    ScoreUpdate,
    Session,
)
from ideaforge.services.mutations import MutationService

router = APIRouter(prefix="/api/mutations", tags=["mutations"])


@router.post("/{session_id}", response_model=MutationBatchResponse)
async def generate_mutations(
    data: MutationCreate | None = None,
    session: Session = Depends(get_owned_session),
    mutations: MutationService = Depends(get_mutation_service),
):
    """
    Crossover and repurpose the best liked ideas.

    Per-idea failures are listed in ``failures``; the call only fails
    outright when no idea could be mutated.
    """
    data = data or MutationCreate()
    return await mutations.generate_mutations(session.id, data.top_n, data.mutations_per_idea)


@router.get("/{session_id}", response_model=list[Mutation])
async def list_mutations(
    session: Session = Depends(get_owned_session),
    mutations: MutationService = Depends(get_mutation_service),
):
    return await mutations.list_mutations(session.id)


@router.get("/{session_id}/top", response_model=list[Mutation])
async def get_top_mutations(
    count: int = Query(default=10, ge=1, le=50),
    session: Session = Depends(get_owned_session),
    mutations: MutationService = Depends(get_mutation_service),
):
    return await mutations.get_top_mutations(session.id, count)


@router.put("/{session_id}/{mutation_id}/score", response_model=Mutation)
async def rate_mutation(
    mutation_id: str,
    data: ScoreUpdate,
    session: Session = Depends(get_owned_session),
    mutations: MutationService = Depends(get_mutation_service),
):
    return await mutations.rate_mutation(session.id, mutation_id, data.score)
