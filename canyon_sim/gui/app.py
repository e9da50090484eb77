"""FastAPI application for the Canyon Sim battle API."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api_routes import router

app = FastAPI(
    title="Canyon Sim",
    description="Sunset Canyon battle resolver and win-rate estimator",
    version="0.1.0",
)

# Add CORS middleware for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api")


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "canyon-sim"}
