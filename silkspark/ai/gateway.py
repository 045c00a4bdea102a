"""AI interpretation gateway.

One async interface for turning structured reading context into prose. Per
request the gateway walks this path:

    cache check -> (hit) done
                -> (miss) quota -> primary -> (ok) cache write -> done
                                           -> (rate limited) RateLimitExceeded
                                           -> (other failure) secondary
                                 secondary -> (ok) cache write -> done
                                           -> (any failure) canned fallback -> done

Identical requests that overlap in time share one provider call. A caller that
is cancelled mid-flight leaves nothing behind in the cache.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError

from silkspark.ai.backends import Backend, BackendRequest, BackendResult, OpenAIBackend, ProxyBackend
from silkspark.ai.cache import JsonFileStore, MemoryStore, ReportCache, ResponseCache
from silkspark.ai.config import PRIMARY, SECONDARY, AIConfig
from silkspark.ai.constants import ERROR_INVALID_REQUEST, RequestKind, fallback_message
from silkspark.ai.errors import (
    BackendError,
    BackendRateLimited,
    InvalidRequest,
    ProviderUnavailable,
    RateLimitExceeded,
)
from silkspark.ai.models import (
    REQUEST_MODELS,
    AIRequest,
    AIResponse,
    AIResponseMeta,
    BirthChartRequest,
    DailySparkRequest,
    FollowUpRequest,
    TarotCardRef,
    TarotReadingRequest,
)
from silkspark.ai.prompts import build_payload, build_prompt
from silkspark.ai.quota import QuotaTracker, seconds_until_next_day
from silkspark.ai.utils import digest, format_latency, generate_cache_key, parse_structured_response
from silkspark.draw import ANONYMOUS_ID

logger = logging.getLogger("silkspark.ai.gateway")

# Kinds whose prompt asks the model for a JSON object.
JSON_KINDS = frozenset({"tarot"})


def _reusable(meta: AIResponseMeta) -> bool:
    """Real provider text: a first-choice answer or one reached by failover."""
    return not meta.is_fallback or meta.degraded_reason == "failover"


def _cards_param(cards: List[TarotCardRef]) -> str:
    return ",".join(f"{c.id}:{'R' if c.is_reversed else 'U'}:{c.position or ''}" for c in cards)


def _json_digest(model: BaseModel) -> str:
    return digest(json.dumps(model.model_dump(mode="json"), sort_keys=True))


def cache_params(kind: RequestKind, req: AIRequest, locale: str, today: date) -> Dict[str, Any]:
    """Salient parameters for the content-addressed cache key.

    Free text is folded into short digests so keys stay bounded.
    """
    if kind == "birth_chart":
        return {
            "name": digest(req.name),
            "birthDate": req.birth_date.isoformat(),
            "chart": _json_digest(req.planets) + _json_digest(req.elements)[:8],
            "locale": locale,
        }
    if kind == "tarot":
        return {
            "cards": _cards_param(req.cards),
            "question": digest(req.question),
            "spread": req.spread_type,
            "sun": req.birth_data.sun_sign if req.birth_data else None,
            "history": digest(req.history_context) if req.history_context else None,
            "locale": locale,
        }
    if kind == "tarot_followup":
        return {
            "cards": _cards_param(req.cards),
            "reading": digest(req.original_interpretation),
            "history": digest(json.dumps([t.model_dump() for t in req.conversation_history], sort_keys=True)),
            "question": digest(req.question),
            "locale": locale,
        }
    if kind == "daily_spark":
        return {
            "sign": req.sign or "",
            "date": (req.on or today).isoformat(),
            "locale": locale,
        }
    raise InvalidRequest(f"unknown request kind: {kind}")


class AIGateway:
    def __init__(
        self,
        config: Optional[AIConfig] = None,
        backends: Optional[Mapping[str, Backend]] = None,
        cache: Optional[ResponseCache] = None,
        quota: Optional[QuotaTracker] = None,
        report_cache: Optional[ReportCache] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or AIConfig()
        backends = backends or {}
        self.backends: List[Backend] = [backends[name] for name in self.config.backend_order if name in backends]
        self.cache = cache if cache is not None else ResponseCache(clock=clock)
        if quota is None:
            quota = QuotaTracker(self.config.daily_limit, self.config.anon_daily_limit, clock=clock)
        self.quota = quota
        self.report_cache = report_cache if report_cache is not None else ReportCache(clock=clock)
        self._clock = clock
        self._inflight: Dict[str, asyncio.Future] = {}

    def _today(self) -> date:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).date()

    # ---- public interface ---------------------------------------------

    async def generate_birth_chart_analysis(self, req: BirthChartRequest, user_id: Optional[str] = None) -> AIResponse:
        response = await self._generate("birth_chart", req, user_id)
        if _reusable(response.meta):
            self.report_cache.set_report(user_id or ANONYMOUS_ID, self._today(), response)
        return response

    async def generate_tarot_reading(self, req: TarotReadingRequest, user_id: Optional[str] = None) -> AIResponse:
        return await self._generate("tarot", req, user_id)

    async def generate_follow_up(self, req: FollowUpRequest, user_id: Optional[str] = None) -> AIResponse:
        return await self._generate("tarot_followup", req, user_id)

    async def generate_daily_spark(self, req: DailySparkRequest, user_id: Optional[str] = None) -> AIResponse:
        return await self._generate("daily_spark", req, user_id)

    async def interpret(
        self, kind: str, payload: Union[Mapping[str, Any], BaseModel], user_id: Optional[str] = None
    ) -> AIResponse:
        """Validate a raw payload for ``kind`` and dispatch it.

        Raises InvalidRequest for an unknown kind or a payload that does not
        match the request model, and RateLimitExceeded when the user's daily
        quota is spent. Every other failure resolves to fallback text.
        """
        model = REQUEST_MODELS.get(kind)
        if model is None:
            raise InvalidRequest(f"unknown request kind: {kind}")
        if isinstance(payload, model):
            req = payload
        else:
            if isinstance(payload, BaseModel):
                payload = payload.model_dump()
            try:
                req = model.model_validate(payload)
            except ValidationError as e:
                raise InvalidRequest(f"invalid {kind} request: {e.error_count()} error(s)") from e

        handlers = {
            "birth_chart": self.generate_birth_chart_analysis,
            "tarot": self.generate_tarot_reading,
            "tarot_followup": self.generate_follow_up,
            "daily_spark": self.generate_daily_spark,
        }
        return await handlers[kind](req, user_id)

    def get_birth_chart_report(self, user_id: Optional[str] = None, on: Optional[date] = None) -> Optional[AIResponse]:
        return self.report_cache.get_report(user_id or ANONYMOUS_ID, on or self._today())

    def clear_cache(self) -> None:
        self.cache.clear()
        self.report_cache.clear()

    # ---- request path -------------------------------------------------

    def _cached(self, key: str) -> Optional[AIResponse]:
        hit = self.cache.get(key)
        if hit is None:
            return None
        meta = hit.meta.model_copy(update={"cached": True, "is_fallback": False})
        return hit.model_copy(update={"meta": meta})

    async def _generate(self, kind: RequestKind, req: AIRequest, user_id: Optional[str]) -> AIResponse:
        user_id = user_id or ANONYMOUS_ID
        locale = req.locale or self.config.locale
        key = generate_cache_key(kind, user_id, cache_params(kind, req, locale, self._today()))

        while True:
            cached = self._cached(key)
            if cached is not None:
                logger.debug("cache hit %s", key)
                return cached
            pending = self._inflight.get(key)
            if pending is None:
                break
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                # The leading call was abandoned; take over unless we were cancelled too.
                if pending.cancelled():
                    continue
                raise

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            response = await self._call(kind, req, locale, user_id, key)
        except Exception as e:
            future.set_exception(e)
            future.exception()
            raise
        else:
            future.set_result(response)
            return response
        finally:
            if not future.done():
                future.cancel()
            self._inflight.pop(key, None)

    async def _call(self, kind: RequestKind, req: AIRequest, locale: str, user_id: str, key: str) -> AIResponse:
        await self.quota.check_and_record(user_id)

        system, user = build_prompt(kind, req, locale)
        request = BackendRequest(
            kind=kind,
            payload=build_payload(kind, req),
            system=system,
            user=user,
            locale=locale,
            model=self.config.model,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )

        started = time.perf_counter()
        try:
            result, position = await self._try_backends(request, user_id)
        except ProviderUnavailable as e:
            latency_ms = int((time.perf_counter() - started) * 1000)
            logger.warning("serving fallback copy for %s after %s: %s", kind, format_latency(latency_ms), e)
            return AIResponse(
                text=fallback_message(kind, locale),
                meta=AIResponseMeta(
                    provider="fallback",
                    model="",
                    is_fallback=True,
                    latency_ms=latency_ms,
                    degraded_reason="provider_unavailable",
                ),
            )

        latency_ms = int((time.perf_counter() - started) * 1000)
        response = self._build_response(kind, result, latency_ms, failover=position > 0)
        if _reusable(response.meta):
            self.cache.set(key, response)
        else:
            logger.warning("%s returned its own fallback copy for %s", result.provider, kind)
        logger.info(
            "%s served by %s (%s) in %s", kind, result.provider, result.model or "-", format_latency(latency_ms)
        )
        return response

    async def _try_backends(self, request: BackendRequest, user_id: str):
        failures = []
        for position, backend in enumerate(self.backends):
            try:
                result = await asyncio.wait_for(backend.generate(request), timeout=self.config.timeout_seconds)
            except BackendRateLimited as e:
                logger.info("backend %s rate limited %s for user=%s", backend.name, request.kind, user_id)
                raise RateLimitExceeded(retry_after=seconds_until_next_day(self._clock()), user_id=user_id) from e
            except BackendError as e:
                if e.code == ERROR_INVALID_REQUEST:
                    raise InvalidRequest(str(e)) from e
                logger.warning("backend %s failed for %s: %s", backend.name, request.kind, e)
                failures.append(f"{backend.name}: {e}")
            except asyncio.TimeoutError:
                logger.warning(
                    "backend %s timed out after %ss for %s", backend.name, self.config.timeout_seconds, request.kind
                )
                failures.append(f"{backend.name}: timeout")
            except Exception as e:
                logger.warning("backend %s raised unexpectedly for %s", backend.name, request.kind, exc_info=True)
                failures.append(f"{backend.name}: {type(e).__name__}")
            else:
                return result, position
        raise ProviderUnavailable("; ".join(failures) or "no backend configured")

    def _build_response(self, kind: str, result: BackendResult, latency_ms: int, failover: bool) -> AIResponse:
        text, fields, degraded = parse_structured_response(result.text, kind, expects_json=kind in JSON_KINDS)
        reason = None
        if result.is_fallback:
            reason = "provider_fallback"
        elif failover:
            reason = "failover"
        return AIResponse(
            text=text,
            structured_fields=fields,
            meta=AIResponseMeta(
                provider=result.provider,
                model=result.model,
                is_fallback=result.is_fallback or failover,
                latency_ms=latency_ms,
                parse_degraded=degraded,
                degraded_reason=reason,
            ),
        )


def build_gateway(config: AIConfig) -> AIGateway:
    """Wire the production backends and stores described by ``config``."""
    backends = {
        PRIMARY: OpenAIBackend(config.openai_api_key, base_url=config.openai_base_url, timeout=config.timeout_seconds),
        SECONDARY: ProxyBackend(config.proxy_url, api_key=config.proxy_key, timeout=config.timeout_seconds),
    }
    store = JsonFileStore(config.cache_path) if config.cache_path else MemoryStore()
    return AIGateway(
        config,
        backends=backends,
        cache=ResponseCache(store),
        quota=QuotaTracker(config.daily_limit, config.anon_daily_limit),
    )
