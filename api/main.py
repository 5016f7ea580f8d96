"""
Entitlements API - Main FastAPI Application

Subscription entitlement, usage quota and payment settlement endpoints
for the role dashboards.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from entitlements.document_store import StoreUnavailableError, get_document_store
from entitlements.plan_catalog import PlanCatalog
from utils.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events"""
    logger.info(f"Entitlements API starting ({settings.APP_ENV}) on http://{settings.HOST}:{settings.PORT}")
    if settings.SEED_DEFAULT_PLANS:
        await PlanCatalog(get_document_store()).seed_defaults()
    yield
    logger.info("Entitlements API shutting down")


app = FastAPI(
    title="Entitlements API",
    description="Subscription entitlements, usage limits and payments",
    version="0.1.0",
    lifespan=lifespan,
    redirect_slashes=False,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=[
        "Accept",
        "Authorization",
        "Content-Type",
        "Origin",
        "X-Requested-With",
    ],
)


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    return JSONResponse(
        status_code=503,
        content={"detail": "Service temporarily unavailable. Please try again later."},
    )


from api.routes import payments, quota, subscription

app.include_router(payments.router, prefix="/api/v1/payments", tags=["Payments"])
app.include_router(subscription.router, prefix="/api/v1", tags=["Subscription"])
app.include_router(quota.router, prefix="/api/v1", tags=["Usage Limits"])


@app.get("/")
async def root():
    """API root endpoint"""
    return {
        "name": "Entitlements API",
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.main:app", host=settings.HOST, port=settings.PORT, reload=not settings.is_production)
