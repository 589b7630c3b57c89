import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import close_generator
from app.api.routes import router as api_router
from app.config.settings import get_settings
from app.exceptions.custom_errors import CUSTOM_ERRORS
from app.models.entities import records
from app.storage.database import init_db
from app.utils.logging_config import setup_logging


# Setup logging
logger = setup_logging()
settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    description="Validation, business rules and greedy allocation of tasks to workers across phases",
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception):
        logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc}")
        body = {"detail": str(exc)}
        errors = getattr(exc, "errors", None)
        if errors:
            body["errors"] = records(errors)
        return JSONResponse(status_code=status_code, content=body)

    return handler


for error_class, status_code in CUSTOM_ERRORS.items():
    app.add_exception_handler(error_class, _error_handler(status_code))


# Initialize database on startup
@app.on_event("startup")
async def startup_event():
    logger.info(f"Starting {settings.app_name}...")
    init_db()
    logger.info("Database initialized")
    logger.info(f"Cost model: {settings.cost_model}")
    logger.info(f"Remote text generation: {'on' if settings.huggingface_api_key else 'off'}")

@app.on_event("shutdown")
async def shutdown_event():
    logger.info(f"Shutting down {settings.app_name}...")
    close_generator()

app.include_router(api_router, prefix="/api/v1", tags=["allocation"])


@app.get("/health", tags=["health"])
def health_check():
    """Health check endpoint for monitoring and load balancers."""
    return {"status": "ok", "app": settings.app_name, "version": settings.app_version}


def run():
    uvicorn.run("app.main:app", host=settings.host, port=settings.port, reload=settings.debug)


if __name__ == "__main__":
    run()
