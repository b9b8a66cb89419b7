"""
Carbon Registry - FastAPI Application

Main entry point for the carbon-credit project registry backend.

Workflow:
- Project Authority submits a project → officer assigned by jurisdiction
- Officer starts field verification → submits report (approve / reject)
- Verified project → credit distribution (officer / authority shares)
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import CORS_ORIGINS, LOG_LEVEL
from .routers import (
    auth_router, users_router, projects_router, verifications_router,
    credits_router, distributions_router, dashboard_router,
)
from .database import init_db

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Carbon Registry",
    description="""
    Carbon Registry - Project Verification and Credit Distribution

    ## Roles
    - **project_authority**: submits and owns projects
    - **officer**: verifies assigned projects in the field
    - **admin**: manages users, assignments and distributions

    ## Lifecycle
    pending → in_verification → approved | rejected

    Assignment, verification decisions and distribution finalization are
    conditional updates, so concurrent requests cannot both succeed.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(projects_router)
app.include_router(verifications_router)
app.include_router(credits_router)
app.include_router(distributions_router)
app.include_router(dashboard_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Carbon Registry",
        "version": "1.0.0",
        "description": "Carbon-credit project verification and distribution",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m app.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
