"""
Flow Builder Backend API
FastAPI application that compiles natural-language requests into email automation flows.
"""

import logging
import os
from typing import List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from app.routers import flows
from app.db import FLOWS_TABLE, supabase_admin

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Flow Builder API",
    description="AI-assisted email automation flow compiler",
    version="0.1.0",
)


def get_cors_origins() -> List[str]:
    """
    Allowed CORS origins: the local Next.js dev server plus any
    comma-separated origins in CORS_ORIGINS, de-duplicated in order.
    """
    origins: List[str] = ["http://localhost:3000"]

    cors_env = os.getenv("CORS_ORIGINS", "").strip()
    for origin in cors_env.split(","):
        origin = origin.strip()
        if origin and origin not in origins:
            origins.append(origin)

    return origins


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(flows.router, prefix="/api/agents/flows", tags=["flows"])


@app.on_event("startup")
async def log_startup_url() -> None:
    host_port = os.getenv("HOST_PORT", "8000")
    logger.info("Flow Builder API running at http://localhost:%s", host_port)


@app.get("/")
async def root():
    return {"message": "Flow Builder API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    """
    Check that the service-role client can read the flows table.
    Returns 503 on failure.
    """
    if supabase_admin is None:
        raise HTTPException(
            status_code=503,
            detail="Database client unavailable: SUPABASE_SERVICE_KEY is not configured",
        )

    try:
        supabase_admin.table(FLOWS_TABLE).select("id").limit(1).execute()
        return {"status": "ok", "database": "reachable"}
    except Exception as exc:
        logger.error(f"Database health check failed: {exc}")
        raise HTTPException(
            status_code=503,
            detail=f"Database connection failed: {str(exc)}",
        )
