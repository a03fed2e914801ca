"""
HTTP entry point

`uvicorn dayline.app:app` serves the handlers registered in dayline.handlers
under /api, plus a liveness probe at /health.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dayline import __version__
from dayline.core.logger import get_logger
from dayline.handlers import register_fastapi_routes

logger = get_logger(__name__)


def create_app() -> FastAPI:
    api = FastAPI(
        title="dayline API",
        description="Daily activity timeline built from screen recordings",
        version=__version__,
    )

    # The timeline viewer runs on its own dev server origin
    api.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @api.get("/")
    async def index():
        return {"service": "dayline", "version": __version__}

    @api.get("/health")
    async def health():
        return {"status": "healthy"}

    register_fastapi_routes(api, prefix="/api")
    logger.debug(f"API routes mounted: {len(api.routes)}")
    return api


app = create_app()
