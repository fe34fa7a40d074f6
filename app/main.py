"""FastAPI application setup for the Strava weather service."""

from fastapi import FastAPI

from .api import public_router
from .api import router as api_router

app = FastAPI(title="Strava Weather")

# API routes
app.include_router(public_router, prefix="/v1")
app.include_router(api_router, prefix="/v1")
