import logging
import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from silkspark.ai.config import load_ai_config
from silkspark.ai.errors import InvalidRequest, RateLimitExceeded
from silkspark.ai.gateway import AIGateway, build_gateway
from silkspark.deck import validate_deck
from silkspark.draw import DrawError, DrawSessions, SessionExpiredError
from silkspark.routes.ai_routes import router as ai_router
from silkspark.routes.deck_routes import router as deck_router
from silkspark.routes.draw_routes import router as draw_router
from silkspark.routes.recommend_routes import router as recommend_router
from silkspark.utils.rng import InvalidSeedError

log = logging.getLogger("silkspark.main")


def create_app(gateway: Optional[AIGateway] = None, sessions: Optional[DrawSessions] = None) -> FastAPI:
    """Build the API. Config is read from the environment (and .env) only when no gateway is given."""
    validate_deck()

    app = FastAPI(title="Silk Spark Oracle", version="0.1.0")
    app.state.gateway = gateway if gateway is not None else build_gateway(load_ai_config())
    app.state.sessions = sessions if sessions is not None else DrawSessions()
    log.info("AI backends in order: %s", [b.name for b in app.state.gateway.backends] or "none")

    app.include_router(deck_router)
    app.include_router(draw_router)
    app.include_router(ai_router)
    app.include_router(recommend_router)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RateLimitExceeded)
    async def rate_limited(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=429,
            content={"success": False, "errorCode": exc.code, "error": exc.message, "retry_after": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(InvalidRequest)
    async def invalid_request(request: Request, exc: InvalidRequest):
        return JSONResponse(status_code=400, content={"success": False, "errorCode": exc.code, "error": str(exc)})

    @app.exception_handler(SessionExpiredError)
    async def session_expired(request: Request, exc: SessionExpiredError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(DrawError)
    async def draw_error(request: Request, exc: DrawError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(InvalidSeedError)
    async def invalid_seed(request: Request, exc: InvalidSeedError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/health")
    def health():
        return {"ok": True}

    return app


logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

app = create_app()
