"""FastAPI route for crystal and deck recommendations.

Endpoint:
- POST /recommendations
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter
from pydantic import BaseModel, Field

from silkspark.recommend import DEFAULT_LIMIT, Product, get_recommendations

router = APIRouter(tags=["recommendations"])


class RecommendationRequest(BaseModel):
    text: str = Field(..., max_length=20000, description="Interpretation text to match against product tags.")
    limit: int = Field(DEFAULT_LIMIT, ge=1, le=10)


class RecommendationResponse(BaseModel):
    products: List[Product]


@router.post("/recommendations", response_model=RecommendationResponse)
def recommendations(req: RecommendationRequest) -> RecommendationResponse:
    return RecommendationResponse(products=get_recommendations(req.text, req.limit))
