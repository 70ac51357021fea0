"""Main FastAPI application for the agent-harness plugin host."""

import logging
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()

# Configure logging BEFORE importing any modules that use logger
log_level = os.getenv('LOG_LEVEL', 'INFO')
logging.basicConfig(
    level=getattr(logging, log_level.upper()),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Import after logging is configured
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from harness.constants import HOST_VERSION
from harness.dependencies import get_plugin_manager
from harness.routers import plugins_router

# Create FastAPI app
app = FastAPI(
    title="Agent Harness",
    description="Workflow host with a plugin runtime for commands, agents, hooks, services and templates",
    version=HOST_VERSION
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(plugins_router)  # /api/plugins endpoints


@app.get("/")
async def root():
    return {"message": "Agent Harness API", "version": HOST_VERSION, "docs": "/docs"}


@app.on_event("startup")
async def startup_event():
    """Application startup event."""
    logger.info(f"Starting Agent Harness {HOST_VERSION}")
    logger.info(f"Working directory: {Path.cwd()}")

    manager = get_plugin_manager()
    result = await manager.load_all()
    if result.plugins_disabled_globally:
        return
    for skipped in result.skipped:
        logger.info(f"  - skipped {skipped.name}: {skipped.reason}")
    for error in result.errors:
        logger.error(f"  - failed {error.plugin_name} ({error.phase.value}): {error.error}")


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event."""
    logger.info("Shutting down Agent Harness")
    await get_plugin_manager().unload_all()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", "9090"))
    uvicorn.run("app:app", host="0.0.0.0", port=port, reload=True)
