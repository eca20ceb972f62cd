"""FastAPI application entry point."""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..errors import CRMShiftError
from .models import ErrorResponse
from .routes import mappings, migrations, properties

logger = logging.getLogger(__name__)

app = FastAPI(
    title="CRM Schema Migration API",
    description="API for property catalogs, mapping tables and property migration",
    version="1.0.0",
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
error_responses = {status: {"model": ErrorResponse} for status in (400, 401, 403, 404, 409, 429, 500, 502, 503)}
app.include_router(properties.router, prefix="/api/properties", tags=["properties"], responses=error_responses)
app.include_router(mappings.router, prefix="/api/mappings", tags=["mappings"], responses=error_responses)
app.include_router(migrations.router, prefix="/api/migrations", tags=["migrations"], responses=error_responses)


@app.exception_handler(CRMShiftError)
async def crmshift_exception_handler(request: Request, exc: CRMShiftError) -> JSONResponse:
    """Map engine errors to their HTTP status."""
    logger.warning(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
