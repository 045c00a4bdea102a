"""FastAPI routes for seeded draw sessions.

Endpoints:
- POST /draw/daily
- POST /draw/spread
- POST /draw/{session_id}/select
- POST /draw/spread/resolve
"""

from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from silkspark.draw import SPREAD_DISPLAY_COUNT, Draw, DrawSession, DrawSessions, resolve_spread

router = APIRouter(prefix="/draw", tags=["draw"])


class DailyDrawRequest(BaseModel):
    user_id: Optional[str] = Field(None, max_length=100, description="Omit for anonymous draws.")
    on: Optional[date] = Field(None, description="Calendar day of the draw (UTC today if omitted).")


class SpreadDrawRequest(BaseModel):
    user_id: Optional[str] = Field(None, max_length=100)
    nonce: Optional[str] = Field(None, max_length=200, description="Replay a specific spread; random if omitted.")


class SessionResponse(BaseModel):
    session_id: str
    kind: str
    seed: str
    display_deck: List[int]
    selections_required: int


class SelectRequest(BaseModel):
    display_index: int = Field(..., ge=0, description="Face-down slot the user picked.")


class SelectResponse(BaseModel):
    session_id: str
    draw: Draw
    remaining: int


class SpreadResolveRequest(BaseModel):
    seed: str
    display_indices: List[int] = Field(..., min_length=3, max_length=3)
    display_count: int = Field(SPREAD_DISPLAY_COUNT, ge=1, description="Size of the face-down deck the indices refer to.")


class SpreadResolveResponse(BaseModel):
    seed: str
    draws: List[Draw]


def get_sessions(request: Request) -> DrawSessions:
    return request.app.state.sessions


def _session_response(session: DrawSession) -> SessionResponse:
    return SessionResponse(
        session_id=session.session_id,
        kind=session.kind,
        seed=session.seed,
        display_deck=list(session.display_deck),
        selections_required=session.selections_required,
    )


@router.post("/daily", response_model=SessionResponse)
def start_daily(req: DailyDrawRequest, sessions: DrawSessions = Depends(get_sessions)) -> SessionResponse:
    return _session_response(sessions.start_daily(req.user_id, req.on))


@router.post("/spread", response_model=SessionResponse)
def start_spread(req: SpreadDrawRequest, sessions: DrawSessions = Depends(get_sessions)) -> SessionResponse:
    return _session_response(sessions.start_spread(req.user_id, req.nonce))


@router.post("/spread/resolve", response_model=SpreadResolveResponse)
def resolve(req: SpreadResolveRequest) -> SpreadResolveResponse:
    """Stateless replay of a three-card spread from its seed."""
    return SpreadResolveResponse(seed=req.seed, draws=resolve_spread(req.seed, req.display_indices, req.display_count))


@router.post("/{session_id}/select", response_model=SelectResponse)
def select(session_id: str, req: SelectRequest, sessions: DrawSessions = Depends(get_sessions)) -> SelectResponse:
    session = sessions.get(session_id)
    already = len(sessions.consumed(session_id))
    draw = sessions.select(session_id, req.display_index)
    return SelectResponse(
        session_id=session_id,
        draw=draw,
        remaining=max(0, session.selections_required - already - 1),
    )
