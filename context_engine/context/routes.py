"""Context endpoints: build, deduplicate, cache invalidation, stats."""

from fastapi import APIRouter, Depends, Query, Response

from context_engine.context.schemas import (
    BuildContextRequest,
    BuildContextResponse,
    RegisterQueryRequest,
    SimilarQueryRequest,
)
from context_engine.context.service import get_context_manager, get_deduplication_service
from context_engine.deduplication.service import QueryDeduplicationService
from context_engine.llm.context import ContextWindowManager

router = APIRouter(prefix="/api/v1/context", tags=["Context"])


@router.post("/build", summary="Assemble a bounded context window for an LLM call")
async def build_context(
    body: BuildContextRequest,
    manager: ContextWindowManager = Depends(get_context_manager),
):
    window = await manager.build(body.analysis, body.history, body.query, body.max_tokens, body.options)
    return BuildContextResponse(
        data=window,
        breakdown=manager.get_token_breakdown(window),
        messages=window.to_messages(),
    )


@router.post("/similar", summary="Find a near-duplicate of the query among recent questions")
async def find_similar(
    body: SimilarQueryRequest,
    dedup: QueryDeduplicationService = Depends(get_deduplication_service),
):
    if body.history is not None:
        match = dedup.find_similar_in_history(body.query, body.history, body.threshold)
    else:
        match = dedup.check(body.conversation_id, body.query, body.threshold)
    return {"status": "success", "data": match.model_dump() if match else None}


@router.post("/queries", status_code=201, summary="Register an answered query for deduplication")
async def register_query(
    body: RegisterQueryRequest,
    dedup: QueryDeduplicationService = Depends(get_deduplication_service),
):
    dedup.register(body.conversation_id, body.query, body.response, body.message_id)
    return {"status": "success", "data": {"window_size": len(dedup.recent_queries(body.conversation_id))}}


@router.delete("/analysis/{analysis_id}/cache", status_code=204, summary="Invalidate cached analysis context")
async def invalidate_analysis(
    analysis_id: str,
    manager: ContextWindowManager = Depends(get_context_manager),
):
    await manager.optimizer.invalidate_analysis(analysis_id)
    return Response(status_code=204)


@router.get("/budget", summary="Token budget partition for a total budget")
async def token_budget(
    max_tokens: int | None = Query(None, gt=0),
    manager: ContextWindowManager = Depends(get_context_manager),
):
    return {"status": "success", "data": manager.get_token_budget(max_tokens).model_dump()}


@router.get("/stats", summary="Cache, deduplication and estimator statistics")
async def stats(
    manager: ContextWindowManager = Depends(get_context_manager),
    dedup: QueryDeduplicationService = Depends(get_deduplication_service),
):
    return {
        "status": "success",
        "data": {
            "cache": manager.get_cache_stats(),
            "deduplication": dedup.get_stats().model_dump(),
            "token_estimator": manager.estimator.strategy,
        },
    }
