"""FastAPI routes for AI interpretations.

Endpoints:
- POST /ai/{kind}            kind: birth_chart | tarot | tarot_followup | daily_spark
- GET /ai/report/{user_id}   cached birth-chart report for a day
- DELETE /ai/cache

Rate limits surface as 429 and malformed payloads as 400 through the app's
exception handlers. Provider outages never fail a request: the response is
themed fallback text with ``meta.is_fallback`` set.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from silkspark.ai.gateway import AIGateway
from silkspark.ai.models import AIResponse

log = logging.getLogger("silkspark.routes.ai")

router = APIRouter(prefix="/ai", tags=["ai"])


class InterpretBody(BaseModel):
    user_id: Optional[str] = Field(None, max_length=100)
    payload: Dict[str, Any] = Field(default_factory=dict)


def get_gateway(request: Request) -> AIGateway:
    return request.app.state.gateway


@router.get("/report/{user_id}", response_model=AIResponse)
def report(user_id: str, on: Optional[date] = None, gateway: AIGateway = Depends(get_gateway)) -> AIResponse:
    cached = gateway.get_birth_chart_report(user_id, on)
    if cached is None:
        raise HTTPException(status_code=404, detail=f"No report for {user_id}")
    return cached


@router.delete("/cache")
def clear_cache(gateway: AIGateway = Depends(get_gateway)) -> Dict[str, bool]:
    gateway.clear_cache()
    return {"ok": True}


@router.post("/{kind}", response_model=AIResponse)
async def interpret(kind: str, body: InterpretBody, gateway: AIGateway = Depends(get_gateway)) -> AIResponse:
    response = await gateway.interpret(kind, body.payload, body.user_id)
    if response.meta.is_fallback:
        log.info("fallback copy served for %s", kind)
    return response
