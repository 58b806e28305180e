import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from app.database import create_db_and_tables
from app.config import settings
from app.routes import (
    access,
    checkout,
    health,
    invoices,
    payments,
)
from app.services.errors import CheckoutError

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Run DB creation ONLY in local
    if settings.ENV == "local":
        create_db_and_tables()
    yield

app = FastAPI(title="Content Checkout API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.user_message,
            "code": exc.code,
            "retryable": exc.retryable,
        },
    )


app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(checkout.router, prefix="/checkout", tags=["Checkout"])
app.include_router(payments.router, prefix="/payments", tags=["Payments"])
app.include_router(invoices.router, prefix="/invoices", tags=["Invoices"])
# catch-all /{content_type}/{content_id}/... paths go last
app.include_router(access.router, tags=["Access"])

@app.get("/")
def root():
    return {
        "access_endpoints": [
            "/{content_type}/{content_id}/access-status",
            "/{content_type}/{content_id}/access",
        ],
        "checkout_endpoints": [
            "/checkout/sessions", "/checkout/sessions/{session_id}",
            "/checkout/sessions/{session_id}/method",
            "/checkout/sessions/{session_id}/pay",
            "/checkout/sessions/{session_id}/retry",
        ],
        "payment_endpoints": [
            "/payments/process", "/payments/confirmation",
            "/payments/verify-session/{session_id}",
            "/payments/verify-intent/{payment_intent_id}",
            "/payments/latest-payment",
            "/payments/config", "/payments/history", "/payments/methods",
        ],
        "invoice_endpoints": [
            "/invoices/{invoice_id}/download",
        ],
    }
