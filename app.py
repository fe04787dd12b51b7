"""
SlideScribe Orchestration - Unified Application Entry Point
Mounts the orchestration service under a single FastAPI application
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from services.orchestration import app as orchestration_module
from shared.utils import config, setup_logging

logger = setup_logging("slidescribe-orchestration")

orchestration_app = orchestration_module.app


@asynccontextmanager
async def lifespan(_app: FastAPI):
    await orchestration_module.get_service().startup()
    try:
        yield
    finally:
        await orchestration_module.get_service().shutdown()


app = FastAPI(
    title="SlideScribe Orchestration API",
    description="""
    Unified API for running and tracking long-running provider jobs.

    All endpoints are documented below. Service routes are organized by tag.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Health",
            "description": "Service health and status endpoints",
        },
        {
            "name": "Orchestration",
            "description": "Batches, job monitors, status and webhooks - mounted at /api/v1/orchestration",
        },
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get("allowed_origins", ["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

orchestration_module.register_error_handlers(app)

# Routes to exclude (internal FastAPI docs routes)
EXCLUDED_PATHS = {"/openapi.json", "/docs", "/docs/oauth2-redirect", "/redoc"}

# Include Orchestration routes with prefix
for route in orchestration_app.routes:
    if hasattr(route, "path") and hasattr(route, "endpoint"):
        # Skip internal documentation routes
        if route.path in EXCLUDED_PATHS:
            continue
        route_kwargs = {
            "path": f"/api/v1/orchestration{route.path}",
            "endpoint": route.endpoint,
            "methods": route.methods,
            "tags": ["Orchestration"],
        }
        if hasattr(route, "name"):
            route_kwargs["name"] = f"orchestration_{route.name}"
        if hasattr(route, "response_model"):
            route_kwargs["response_model"] = route.response_model
        if hasattr(route, "status_code"):
            route_kwargs["status_code"] = route.status_code
        app.add_api_route(**route_kwargs)


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint with service information and API navigation"""
    return {
        "service": "SlideScribe Orchestration API",
        "version": "1.0.0",
        "services": {
            "orchestration": {
                "base_url": "/api/v1/orchestration",
                "health": "/api/v1/orchestration/health",
            },
        },
        "documentation": {
            "swagger_ui": "/docs",
            "redoc": "/redoc",
            "openapi_json": "/openapi.json",
        },
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for all services"""
    return {
        "status": "healthy",
        "services": {
            "api_gateway": "operational",
            "orchestration": "operational",
        },
    }


if __name__ == "__main__":
    import uvicorn

    logger.info("Starting SlideScribe Orchestration on http://0.0.0.0:8000")
    uvicorn.run("app:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
