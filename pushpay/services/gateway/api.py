"""HTTP surface for payment initiation, provider webhooks and status reads."""

from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import Body, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from pushpay.common.errors import GatewayError
from pushpay.common.logging import logger, trace_id_ctx
from pushpay.common.metrics import (
    http_request_duration_seconds,
    http_requests_total,
    metrics_response,
    payment_latency_seconds,
    payment_requests_total,
)
from pushpay.services.gateway.schemas import InitiatePaymentRequest, InitiatePaymentResponse, TokenResponse
from pushpay.services.gateway.service import GatewayService

ADMIN_SAMPLE_SIZE = 10


def create_app(gateway: GatewayService, start_background: bool = True) -> FastAPI:
    """Build the FastAPI app around one gateway; tests pass `start_background=False`."""

    service_name = gateway.config.service_name

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        """Warm up credentials and run sweeper/flusher/poller with app lifecycle."""

        if start_background:
            await gateway.warm_up()
            gateway.start_background()
        yield
        await gateway.stop()

    app = FastAPI(title="PushPay Gateway", lifespan=lifespan)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(_: Request, exc: GatewayError):
        if exc.status_code >= 500:
            logger.error("request failed kind=%s message=%s cause=%r", exc.kind, exc.message, exc.__cause__)
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Record request count and latency for every HTTP call."""

        start = perf_counter()
        route = request.url.path
        method = request.method
        status_code = 500
        trace_id_ctx.set(request.headers.get("x-trace-id") or str(uuid4()))
        try:
            response = await call_next(request)
            status_code = response.status_code
            route_obj = request.scope.get("route")
            if route_obj is not None and getattr(route_obj, "path", None):
                route = route_obj.path
            return response
        finally:
            elapsed = max(0.0, perf_counter() - start)
            http_request_duration_seconds.labels(service=service_name, route=route, method=method).observe(elapsed)
            http_requests_total.labels(
                service=service_name,
                route=route,
                method=method,
                status_code=str(status_code),
            ).inc()

    def enforce_api_key(x_api_key: str | None) -> None:
        """Reject admin requests that do not provide the configured API key."""

        if x_api_key != gateway.config.api_key:
            raise HTTPException(status_code=401, detail="invalid API key")

    @app.get("/token", response_model=TokenResponse)
    async def get_token(x_api_key: str | None = Header(default=None)):
        """Current provider access token, its expiry and where it came from."""

        enforce_api_key(x_api_key)
        credential = await gateway.credentials.get_valid_credential()
        return TokenResponse(
            accessToken=credential.token,
            expiresAt=credential.expires_at,
            expiresInSeconds=credential.seconds_left(gateway.credentials.clock()),
            source=credential.source,
        )

    @app.post("/initiate-payment", response_model=InitiatePaymentResponse)
    async def initiate_payment(req: InitiatePaymentRequest):
        """Validate, rate-limit and send an STK push for one payment."""

        payment_requests_total.labels(service=service_name).inc()
        with payment_latency_seconds.labels(service=service_name).time():
            result = await gateway.initiation.initiate(
                user_id=req.user_id,
                invoice_id=req.invoice_id,
                payment_id=req.payment_id,
                phone_number=req.phone_number,
                amount=req.amount,
            )
        return InitiatePaymentResponse(
            paymentId=result.payment_id,
            checkoutRequestId=result.checkout_request_id,
            data=result.provider_response,
        )

    @app.post("/mpesa/callback")
    async def mpesa_callback(payload: dict = Body(default_factory=dict)):
        """STK push result webhook. Replies with an empty 200 once state is written."""

        try:
            gateway.callbacks.handle_callback(payload)
        except GatewayError:
            raise
        except Exception as exc:
            logger.exception("callback processing failed")
            raise HTTPException(status_code=500, detail="Internal server error") from exc
        return {}

    @app.post("/payments/confirmation")
    async def payments_confirmation(payload: dict = Body(default_factory=dict)):
        """Final confirmation webhook (`completed` / `failed`)."""

        try:
            gateway.callbacks.handle_confirmation(payload)
        except GatewayError:
            raise
        except Exception as exc:
            logger.exception("confirmation processing failed")
            raise HTTPException(status_code=500, detail="Failed to update payment records") from exc
        return {"success": True}

    @app.get("/payment-status")
    async def payment_status(paymentId: str | None = None, checkoutRequestId: str | None = None):
        """Hot store, then read cache, then durable status record."""

        return gateway.status.get_status(payment_id=paymentId, checkout_request_id=checkoutRequestId)

    @app.get("/query-transaction")
    async def query_transaction(paymentId: str | None = None, checkoutRequestId: str | None = None):
        """Client-safe transaction record."""

        if not paymentId and not checkoutRequestId:
            raise HTTPException(status_code=400, detail="Missing or invalid paymentId")
        return {"transaction": gateway.status.lookup_transaction(paymentId, checkoutRequestId)}

    @app.get("/admin/pending-payments")
    async def admin_pending_payments(x_api_key: str | None = Header(default=None)):
        """Hot-store size plus a small sample; no phone numbers."""

        enforce_api_key(x_api_key)
        count = len(gateway.pending)
        sample = [
            {
                "paymentId": key,
                "userId": entry.get("userId"),
                "createdAt": entry.get("createdAt"),
                "amount": entry.get("amount"),
                "status": entry.get("status"),
            }
            for key, entry in gateway.pending.snapshot(limit=ADMIN_SAMPLE_SIZE)
        ]
        body = {"count": count, "sample": sample, "ttlMinutes": int(gateway.pending.ttl_seconds // 60)}
        if count > ADMIN_SAMPLE_SIZE:
            body["message"] = f"Showing first {ADMIN_SAMPLE_SIZE} pending payments."
        return body

    @app.get("/admin/payment-analytics")
    def admin_payment_analytics(x_api_key: str | None = Header(default=None)):
        enforce_api_key(x_api_key)
        return gateway.analytics.event_counts(since_hours=24)

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    @app.get("/health")
    def health():
        """Container health probe endpoint."""

        return {"ok": True}

    return app
