"""Recommendation endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query
from pydantic import BaseModel

from engagement.services.recommender import DEFAULT_LIMIT, recommender

router = APIRouter(tags=["recommendations"])


class RecommendationsOut(BaseModel):
    user_id: str
    course_ids: list[str]


class PopularityRefreshOut(BaseModel):
    updated: int


@router.get("/v1/users/{user_id}/recommendations", response_model=RecommendationsOut)
async def get_recommendations(
    user_id: str,
    limit: Annotated[int, Query(ge=1, le=50)] = DEFAULT_LIMIT,
) -> RecommendationsOut:
    course_ids = await recommender.get_recommended_courses(user_id, limit)
    return RecommendationsOut(user_id=user_id, course_ids=course_ids)


# Invoked periodically (by the scheduler or an operator), never per view.
@router.post(
    "/v1/recommendations/popularity/refresh", response_model=PopularityRefreshOut
)
async def refresh_popularity() -> PopularityRefreshOut:
    return PopularityRefreshOut(updated=await recommender.update_popularity_ranking())
