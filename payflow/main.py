# payflow/main.py
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from payflow.api.errors import payment_error_handler
from payflow.api.v1.api import api_router
from payflow.core.config import settings
from payflow.core.logging import payment_logger, setup_logging
from payflow.services.payment.exceptions import PaymentError
from payflow.services.payment.gateway_factory import get_gateway_factory


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    factory = get_gateway_factory()
    payment_logger.info(
        f"Payment service starting up with methods: "
        f"{', '.join(method.value for method in factory.list_methods())}"
    )
    yield
    payment_logger.info("Payment service shutting down...")


app = FastAPI(
    title="Payflow Payment Orchestration Service",
    version="1.0.0",
    description="""
        **Payflow Payment Service**

        Payment orchestration and verification for the marketplace.

        ## Features

        * **Payments**: Card, bank transfer, virtual account and pay on delivery
        * **Bill Payments**: Electricity bills with disbursement and token issue
        * **Verification**: Gateway polling and signed Monnify webhooks
        * **Management**: Refunds, cancellation, BVN linking and history

        ## Authentication

        Endpoints require JWT authentication via the `Authorization: Bearer <token>` header.
        Webhooks are authenticated by their HMAC signature instead.
        """,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(PaymentError, payment_error_handler)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
def read_root():
    return {"status": "Payflow Payment Service is running"}
