"""
FastAPI Main Application
Entry point for the API server
"""

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pchealth.errors import LoopExceeded, ReasoningServiceError
from pchealth.utils.logger import get_logger

from .routes import router

logger = get_logger("main")


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""

    app = FastAPI(
        title="PC Health Diagnostic API",
        description="Conversational PC diagnostics with safe, user-approved fixes",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",
            "http://localhost:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.exception_handler(ReasoningServiceError)
    async def reasoning_service_error(request: Request, exc: ReasoningServiceError):
        logger.error("Reasoning service failure", extra={"action": "api_error", "extra": {"path": request.url.path, "error": str(exc)}})
        return JSONResponse(status_code=502, content={"success": False, "error": str(exc)})

    @app.exception_handler(LoopExceeded)
    async def loop_exceeded(request: Request, exc: LoopExceeded):
        logger.error("Tool loop exceeded", extra={"action": "api_error", "extra": {"path": request.url.path, "error": str(exc)}})
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})

    return app


# Create app instance
app = create_app()


def main() -> None:
    import uvicorn

    uvicorn.run(
        "pchealth.api.main:app",
        host="127.0.0.1",
        port=8000,
        log_level="info",
    )


if __name__ == "__main__":
    main()
