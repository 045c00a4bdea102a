from __future__ import annotations

from datetime import date
from typing import ClassVar, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from silkspark.ai.constants import Locale

Position = Literal["past", "present", "future", "single"]
SpreadType = Literal["single", "three-card", "celtic-cross"]

# ---- requests ----------------------------------------------------------


class PlanetaryPositions(BaseModel):
    Sun: str
    Moon: str
    Mercury: str
    Venus: str
    Mars: str
    Jupiter: str
    Saturn: str


class FiveElements(BaseModel):
    Wood: float = Field(..., ge=0, le=100)
    Fire: float = Field(..., ge=0, le=100)
    Earth: float = Field(..., ge=0, le=100)
    Metal: float = Field(..., ge=0, le=100)
    Water: float = Field(..., ge=0, le=100)


class AstroSummary(BaseModel):
    sun_sign: str
    moon_sign: Optional[str] = None
    rising_sign: Optional[str] = None


class TarotCardRef(BaseModel):
    id: str
    name: str
    arcana: Literal["Major", "Minor"] = "Major"
    is_reversed: bool = False
    position: Optional[Position] = None

    @classmethod
    def from_draw(cls, draw) -> "TarotCardRef":
        return cls(
            id=draw.card.id,
            name=draw.card.name,
            arcana=draw.card.arcana,
            is_reversed=draw.is_reversed,
            position=draw.position,
        )


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class BirthChartRequest(BaseModel):
    kind: ClassVar[str] = "birth_chart"

    name: str = Field(..., min_length=1, max_length=100)
    birth_date: date
    birth_time: Optional[str] = None
    birth_place: Optional[str] = None
    planets: PlanetaryPositions
    elements: FiveElements
    locale: Optional[Locale] = None


class TarotReadingRequest(BaseModel):
    kind: ClassVar[str] = "tarot"

    cards: List[TarotCardRef] = Field(..., min_length=1, max_length=10)
    question: str = Field("", max_length=2000)
    spread_type: SpreadType = "single"
    birth_data: Optional[AstroSummary] = None
    history_context: Optional[str] = None
    locale: Optional[Locale] = None

    @model_validator(mode="after")
    def _cards_match_spread(self) -> "TarotReadingRequest":
        expected = {"single": 1, "three-card": 3}.get(self.spread_type)
        if expected is not None and len(self.cards) != expected:
            raise ValueError(f"{self.spread_type} spread needs {expected} card(s), got {len(self.cards)}")
        return self


class FollowUpRequest(BaseModel):
    kind: ClassVar[str] = "tarot_followup"

    cards: List[TarotCardRef] = Field(..., min_length=1, max_length=10)
    original_interpretation: str
    conversation_history: List[ChatTurn] = Field(default_factory=list)
    question: str = Field(..., min_length=1, max_length=2000)
    birth_data: Optional[AstroSummary] = None
    locale: Optional[Locale] = None


class DailySparkRequest(BaseModel):
    kind: ClassVar[str] = "daily_spark"

    sign: Optional[str] = None
    birth_date: Optional[date] = None
    on: Optional[date] = None
    locale: Optional[Locale] = None


AIRequest = Union[BirthChartRequest, TarotReadingRequest, FollowUpRequest, DailySparkRequest]

REQUEST_MODELS: Dict[str, Type[BaseModel]] = {
    "birth_chart": BirthChartRequest,
    "tarot": TarotReadingRequest,
    "tarot_followup": FollowUpRequest,
    "daily_spark": DailySparkRequest,
}

# ---- responses ---------------------------------------------------------

ADVICE_TEXT_KEYS = ("text", "advice", "action", "description")


class LuckyElements(BaseModel):
    color: Optional[str] = None
    number: Optional[Union[int, str]] = None
    direction: Optional[str] = None
    crystal: Optional[str] = None

    model_config = {"extra": "ignore"}


class StructuredFields(BaseModel):
    core_message: Optional[str] = Field(None, alias="coreMessage")
    interpretation: Optional[str] = None
    action_advice: Optional[Union[str, List[str]]] = Field(None, alias="actionAdvice")
    lucky_elements: Optional[LuckyElements] = Field(None, alias="luckyElements")
    insights: Optional[Dict[str, str]] = None

    model_config = {"extra": "ignore", "populate_by_name": True}

    @field_validator("action_advice", mode="before")
    @classmethod
    def _flatten_advice(cls, value):
        # Models sometimes return [{"step": 1, "text": "..."}] instead of plain strings.
        if not isinstance(value, list):
            return value
        flat = []
        for item in value:
            if isinstance(item, dict):
                item = next((v for k, v in item.items() if k in ADVICE_TEXT_KEYS and isinstance(v, str)), None)
            if isinstance(item, str) and item.strip():
                flat.append(item)
        return flat


class AIResponseMeta(BaseModel):
    provider: str
    model: str = ""
    is_fallback: bool = False
    latency_ms: int = 0
    cached: bool = False
    parse_degraded: bool = False
    degraded_reason: Optional[str] = None


class AIResponse(BaseModel):
    text: str
    structured_fields: Optional[StructuredFields] = None
    meta: AIResponseMeta
