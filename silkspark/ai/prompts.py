"""Prompt templates for each request kind.

Every piece of user-supplied text goes through sanitize_input before it is
placed in a prompt or an outbound payload.
"""

from typing import Any, Dict, List, Tuple

from silkspark.ai.constants import Locale
from silkspark.ai.models import (
    AstroSummary,
    BirthChartRequest,
    DailySparkRequest,
    FollowUpRequest,
    TarotCardRef,
    TarotReadingRequest,
)
from silkspark.ai.utils import sanitize_input

SYSTEM_PROMPTS = {
    "birth_chart": """You are a mystical astrology expert combining Western zodiac wisdom with Eastern Five Elements (Wu Xing) philosophy.
Your readings are insightful, compassionate, and actionable.
You speak with authority but warmth, like a wise mentor guiding someone on their cosmic journey.
Respond in the same language as the user's request.""",
    "tarot": """You are a mystical Tarot reader who combines card symbolism with the seeker's astrological profile for personalized readings.

Output format (JSON):
{
  "coreMessage": "One-sentence core insight (max 20 words)",
  "interpretation": "Detailed reading (card symbolism, positional meaning, upright/reversed significance)",
  "actionAdvice": "Specific actionable advice (2-3 items)",
  "luckyElements": {
    "color": "Lucky color",
    "number": "Lucky number (1-9)",
    "direction": "Lucky direction",
    "crystal": "Recommended crystal"
  }
}

Style: Empathetic, insightful, avoid overly negative phrasing.""",
    "tarot_followup": """You are a mystical Tarot reader. The seeker has completed a reading and now has follow-up questions.
Answer based on the original cards and previous context. Be natural and conversational.
Don't repeat card introductions, answer directly. Maintain a mystical yet warm tone.""",
    "daily_spark": """You are a gentle daily oracle providing brief, uplifting cosmic guidance.
Your messages are poetic yet practical, inspiring without being preachy.
Keep responses concise but meaningful.
Respond in the same language as the user's request.""",
}

SPREAD_LABELS = {
    "single": "Single card",
    "three-card": "Three-card (Past-Present-Future)",
    "celtic-cross": "Celtic Cross",
}


def wrap_with_locale(prompt: str, locale: Locale = "en-US") -> str:
    if locale == "zh-CN":
        return f"{prompt}\n\n请用中文回复。使用优雅、富有诗意的表达。"
    return prompt


def describe_cards(cards: List[TarotCardRef]) -> str:
    parts = []
    for c in cards:
        orientation = " (Reversed)" if c.is_reversed else " (Upright)"
        position = f" [{c.position}]" if c.position else ""
        parts.append(f"{sanitize_input(c.name, 50)}{orientation}{position}")
    return "; ".join(parts)


def _astro_context(birth_data: AstroSummary) -> str:
    line = f"\nSeeker's astrology: Sun in {sanitize_input(birth_data.sun_sign, 20)}"
    if birth_data.moon_sign:
        line += f", Moon in {sanitize_input(birth_data.moon_sign, 20)}"
    if birth_data.rising_sign:
        line += f", Rising {sanitize_input(birth_data.rising_sign, 20)}"
    return line


def birth_chart_prompt(req: BirthChartRequest) -> str:
    planets = "\n".join(f"- {planet}: {sanitize_input(sign, 20)}" for planet, sign in req.planets.model_dump().items())
    elements = "\n".join(f"- {element}: {value:g}%" for element, value in req.elements.model_dump().items())
    return f"""
Analyze the birth chart for {sanitize_input(req.name, 50)}.

**Planetary Positions:**
{planets}

**Five Elements Distribution:**
{elements}

Please provide:
1. **Core Essence** (2-3 sentences): A summary of their primary cosmic identity based on Sun, Moon, and dominant elements.
2. **Emotional Landscape** (2-3 sentences): How their Moon sign and Water/Fire balance affects their emotional nature.
3. **Life Path Guidance** (2-3 sentences): Practical advice based on their Mars, Jupiter positions and elemental strengths.
4. **Balance Recommendations**: What element they should cultivate to achieve better harmony.

Format your response as flowing paragraphs, not bullet points. Be specific to their chart, not generic.
"""


def tarot_prompt(req: TarotReadingRequest) -> str:
    prompt = (
        f"Spread type: {SPREAD_LABELS.get(req.spread_type, req.spread_type)}\n"
        f"Seeker's question: \"{sanitize_input(req.question, 200)}\"\n"
        f"Drawn cards: {describe_cards(req.cards)}"
    )
    if req.birth_data:
        prompt += _astro_context(req.birth_data)
    if req.history_context:
        prompt += f"\nRecent card trends: {sanitize_input(req.history_context, 300)}"
    return prompt + "\n\nProvide the reading in JSON format."


def follow_up_prompt(req: FollowUpRequest) -> str:
    prompt = f"Original cards: {describe_cards(req.cards)}"
    if req.birth_data:
        prompt += _astro_context(req.birth_data)
    prompt += f"\n\nOriginal reading: {sanitize_input(req.original_interpretation, 500)}\n\n"
    if req.conversation_history:
        turns = "\n".join(
            f"{'Q' if t.role == 'user' else 'A'}: {sanitize_input(t.content, 300)}" for t in req.conversation_history
        )
        prompt += f"Previous conversation:\n{turns}\n"
    prompt += f"\nFollow-up question: {sanitize_input(req.question, 200)}\n\nPlease answer this follow-up question."
    return prompt


def daily_spark_prompt(req: DailySparkRequest) -> str:
    sign = sanitize_input(req.sign, 20)
    target = f" for {sign}" if sign else ""
    return f"""
Provide a brief daily spark message{target}.
Maximum 25 words. Poetic but practical. Inspire action or reflection.
Include a lucky color and number if naturally fitting.
"""


_USER_PROMPTS = {
    "birth_chart": birth_chart_prompt,
    "tarot": tarot_prompt,
    "tarot_followup": follow_up_prompt,
    "daily_spark": daily_spark_prompt,
}


def build_prompt(kind: str, req: Any, locale: Locale) -> Tuple[str, str]:
    """Return (system, user) prompts for a validated request."""
    return SYSTEM_PROMPTS[kind], wrap_with_locale(_USER_PROMPTS[kind](req), locale)


def _card_payload(cards: List[TarotCardRef]) -> List[Dict[str, Any]]:
    return [
        {
            "name": sanitize_input(c.name, 50),
            "isReversed": c.is_reversed,
            "position": c.position,
            "arcana": c.arcana,
        }
        for c in cards
    ]


def _astro_payload(birth_data: AstroSummary) -> Dict[str, Any]:
    return {
        "sunSign": sanitize_input(birth_data.sun_sign, 20),
        "moonSign": sanitize_input(birth_data.moon_sign, 20) or None,
        "risingSign": sanitize_input(birth_data.rising_sign, 20) or None,
    }


def build_payload(kind: str, req: Any) -> Dict[str, Any]:
    """Sanitized payload for the hosted function, which builds its own prompts."""
    if kind == "birth_chart":
        return {
            "name": sanitize_input(req.name, 50),
            "planets": {k: sanitize_input(v, 20) for k, v in req.planets.model_dump().items()},
            "elements": req.elements.model_dump(),
        }
    if kind == "tarot":
        payload = {
            "cards": _card_payload(req.cards),
            "question": sanitize_input(req.question, 200),
            "spreadType": req.spread_type,
        }
        if req.birth_data:
            payload["userBirthData"] = _astro_payload(req.birth_data)
        if req.history_context:
            payload["historyContext"] = sanitize_input(req.history_context, 300)
        return payload
    if kind == "tarot_followup":
        payload = {
            "cards": _card_payload(req.cards),
            "originalInterpretation": sanitize_input(req.original_interpretation, 500),
            "conversationHistory": [
                {"role": t.role, "content": sanitize_input(t.content, 300)} for t in req.conversation_history
            ],
            "followUpQuestion": sanitize_input(req.question, 200),
        }
        if req.birth_data:
            payload["userBirthData"] = _astro_payload(req.birth_data)
        return payload
    if kind == "daily_spark":
        return {"sign": sanitize_input(req.sign, 20) or "General"}
    raise KeyError(kind)
