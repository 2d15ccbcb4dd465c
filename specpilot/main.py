# specpilot/main.py
"""
SpecPilot HTTP service.
"""
import uvicorn
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

# Rate limiting
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from dotenv import load_dotenv
load_dotenv()

from specpilot import __version__
from specpilot.core.config import settings
from specpilot.core.logging import log
from specpilot.lib.monitoring import register_monitoring
from specpilot.orchestration.orchestrator import Orchestrator
from specpilot.orchestration.registry import RunRegistry
from specpilot.specs.provider import InMemorySpecProvider

# Print environment status
print("🔑 Environment check:")
print(f"  ANTHROPIC_API_KEY loaded: {bool(settings.llm.anthropic_api_key)}")
print(f"  OPENAI_API_KEY loaded: {bool(settings.llm.openai_api_key)}")
print(f"  Default provider: {settings.llm.default_provider}")
print(f"  Default model: {settings.llm.default_model}")


def init_state(
    app: FastAPI,
    registry: Optional[RunRegistry] = None,
    spec_provider: Optional[InMemorySpecProvider] = None,
    orchestrator: Optional[Orchestrator] = None,
) -> Orchestrator:
    """Wire registry, spec provider and orchestrator into app.state."""
    registry = registry or RunRegistry()
    spec_provider = spec_provider or InMemorySpecProvider()
    orchestrator = orchestrator or Orchestrator(registry, spec_provider)
    app.state.registry = registry
    app.state.spec_provider = spec_provider
    app.state.orchestrator = orchestrator
    return orchestrator


# ---------------------------------------------------------------------------
# LIFESPAN
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    print("🚀 SpecPilot starting...")
    settings.ensure_directories()

    orchestrator = init_state(app)
    if settings.server.specs_dir:
        await app.state.spec_provider.load_directory(settings.server.specs_dir)

    yield

    print("🔌 Shutting down...")
    await orchestrator.shutdown()


# ---------------------------------------------------------------------------
# APP INITIALIZATION
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SpecPilot",
    version=__version__,
    lifespan=lifespan,
)

# Monitoring
register_monitoring(app)

# CORS
cors_origins = settings.server.cors_origins.split(",") if settings.server.cors_origins != "*" else ["*"]

if cors_origins == ["*"] and not settings.debug:
    print("⚠️ [CORS] Warning: Using allow_origins=['*'] - consider setting CORS_ORIGINS in production")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Rate Limiting
# Configure via RATE_LIMIT env var (e.g., "50/minute")
limiter = Limiter(key_func=get_remote_address, default_limits=[settings.server.rate_limit])
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
log("API", f"🛡️ Rate limiting enabled: {settings.server.rate_limit}")


# ---------------------------------------------------------------------------
# API ROUTES
# ---------------------------------------------------------------------------

from specpilot.api import health, runs

app.include_router(health.router)
app.include_router(runs.router)


# ---------------------------------------------------------------------------
# RUN
# ---------------------------------------------------------------------------

def run():
    uvicorn.run(
        "specpilot.main:app",
        host="0.0.0.0",
        port=settings.server.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
