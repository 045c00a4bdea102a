"""Tarot catalog loader + helpers.

- Loads the 78-card catalog from silkspark/data/tarot_cards.json
- Provides: get_deck(), get_card(card_id), get_card_by_index(index), card_count()

Catalog order is fixed and public: it is the shuffle domain for the draw engine.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, Field


DATA_PATH = Path(__file__).resolve().parent / "data" / "tarot_cards.json"

CATALOG_SIZE = 78


class DeckError(RuntimeError):
    pass


class Card(BaseModel):
    id: str
    name: str
    arcana: Literal["Major", "Minor"]
    suit: Optional[str] = None
    image_ref: str = Field("", alias="image")
    keywords: List[str] = Field(default_factory=list)

    model_config = {"frozen": True, "populate_by_name": True}


def _load_json(path: Path = DATA_PATH) -> Tuple[Card, ...]:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise DeckError(f"Tarot data file not found at: {path}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise DeckError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, list) or len(data) != CATALOG_SIZE:
        raise DeckError(f"Tarot data must contain exactly {CATALOG_SIZE} cards.")
    return tuple(Card.model_validate(c) for c in data)


_DECK_CACHE: Optional[Tuple[Card, ...]] = None


def get_deck() -> Tuple[Card, ...]:
    global _DECK_CACHE
    if _DECK_CACHE is None:
        _DECK_CACHE = _load_json()
    return _DECK_CACHE


def card_count() -> int:
    return len(get_deck())


def get_card(card_id: str) -> Card:
    for c in get_deck():
        if c.id == card_id:
            return c
    raise DeckError(f"Unknown card id: {card_id}")


def get_card_by_index(index: int) -> Card:
    deck = get_deck()
    if not isinstance(index, int) or index < 0 or index >= len(deck):
        raise DeckError(f"Card index out of range: {index}")
    return deck[index]


def validate_deck() -> None:
    deck = get_deck()
    ids = [c.id for c in deck]
    if len(ids) != len(set(ids)):
        raise DeckError("Duplicate card ids detected.")

    majors = [c for c in deck if c.arcana == "Major"]
    if len(majors) != 22:
        raise DeckError(f"Expected 22 major arcana, found {len(majors)}")
    for c in deck:
        if c.arcana == "Minor" and not c.suit:
            raise DeckError(f"Minor card {c.id} has no suit")


def deck_for_api() -> dict:
    """Public catalog object for `/deck` consumers."""
    return {
        "deck_id": "rws78",
        "card_count": card_count(),
        "cards": [c.model_dump(by_alias=True) for c in get_deck()],
    }
