"""FastAPI routes for the tarot catalog.

Endpoints:
- GET /deck
- GET /deck/{card_id}
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, HTTPException

from silkspark.deck import DeckError, deck_for_api, get_card

router = APIRouter(prefix="/deck", tags=["deck"])


@router.get("")
def deck() -> Dict[str, Any]:
    return deck_for_api()


@router.get("/{card_id}")
def card(card_id: str) -> Dict[str, Any]:
    try:
        c = get_card(card_id)
    except DeckError:
        raise HTTPException(status_code=404, detail=f"Unknown card_id: {card_id}")
    return c.model_dump(by_alias=True)
