"""FastAPI application entry point."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from app.api import router as api_router
from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.page_pipeline import PagePipeline
from app.core.pipeline_context import PipelineContext, build_pipeline_context
from app.core.rate_limiter import RateLimiter

logger = get_logger(__name__)


def attach_pipeline(app: FastAPI, ctx: PipelineContext) -> None:
    """Install a pipeline context and its request-scoped services on the app."""
    settings = ctx.settings
    app.state.pipeline_context = ctx
    app.state.page_pipeline = PagePipeline(ctx)
    app.state.rate_limiter = RateLimiter(
        requests_per_minute=settings.GENERATION_RATE_PER_MINUTE,
        burst_size=settings.GENERATION_BURST,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if getattr(app.state, "pipeline_context", None) is None:
        attach_pipeline(app, build_pipeline_context(get_settings()))
    logger.info(f"Page engine started (env={app.state.pipeline_context.settings.PAGE_ENGINE_ENV})")
    try:
        yield
    finally:
        ctx: PipelineContext = app.state.pipeline_context
        await ctx.drain(timeout=5)
        await ctx.aclose()
        logger.info("Page engine stopped")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Adaptive Page Engine",
        description="Generates grounded, adaptively laid-out pages from search queries",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health_check() -> JSONResponse:
        """Health check endpoint."""
        return JSONResponse(content={"status": "ok"}, status_code=200)

    app.include_router(api_router, prefix="/v1", tags=["v1"])
    return app


app = create_app()
