"""Gateway constants: request kinds, error codes, cache and fallback settings."""

from typing import Dict, Literal

RequestKind = Literal["birth_chart", "tarot", "tarot_followup", "daily_spark"]
Locale = Literal["en-US", "zh-CN"]

# Hosted function invoked by the proxy backend.
EDGE_FUNCTION_NAME = "ai-generate"

ERROR_RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
ERROR_NO_API_KEY = "NO_API_KEY"
ERROR_INVALID_REQUEST = "INVALID_REQUEST"

CACHE_PREFIX = "silk_spark_"
CACHE_MAX_SIZE = 50
CACHE_TTL_SECONDS = 7 * 24 * 60 * 60
REPORT_PREFIX = "silk_spark_report"

DEFAULT_DAILY_LIMIT = 50
DEFAULT_ANON_DAILY_LIMIT = 5
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_LOCALE: Locale = "en-US"
DEFAULT_MODEL = "gemini-2.0-flash"

FILTERED_MARKER = "[filtered]"
DEFAULT_MAX_INPUT_LENGTH = 500

FALLBACK_MESSAGES: Dict[str, Dict[str, str]] = {
    "en-US": {
        "birth_chart": "The cosmic signals are momentarily unclear... Please try again to reconnect with the stellar energies.",
        "tarot": "The tarot veil is temporarily obscured... Take a deep breath and draw again shortly.",
        "tarot_followup": "The cards are resting for a moment... Sit with your question and ask again shortly.",
        "daily_spark": "Today's inspiration is brewing... Trust your intuition and embrace the present.",
        "default": "Connecting to cosmic energies, please try again...",
    },
    "zh-CN": {
        "birth_chart": "宇宙的信号暂时模糊... 请稍后再试，让我们重新连接到星际能量。",
        "tarot": "塔罗的帷幕暂时笼罩... 请深呼吸，稍后再次抽取您的牌。",
        "tarot_followup": "牌面正在短暂休憩... 请带着您的问题稍后再问。",
        "daily_spark": "今日的灵感正在酝酿中... 信任直觉，拥抱当下。",
        "default": "正在连接宇宙能量，请稍后再试...",
    },
}

RATE_LIMIT_MESSAGE = "You have reached today's reading limit. The stars will be ready for you again tomorrow."


def fallback_message(kind: str, locale: str = DEFAULT_LOCALE) -> str:
    messages = FALLBACK_MESSAGES.get(locale, FALLBACK_MESSAGES[DEFAULT_LOCALE])
    return messages.get(kind, messages["default"])
