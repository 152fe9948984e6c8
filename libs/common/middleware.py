"""Request tracing middleware for the fulfillment API.

Every request gets a request id (propagated from ``X-Request-ID`` when the
caller sends one) that is stamped on all log lines emitted while handling it
and echoed back on the response.

Usage:
    from libs.common.middleware import add_observability_middleware

    app = FastAPI()
    add_observability_middleware(app)
"""
import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from libs.common.logging import (
    clear_request_context,
    configure_logging,
    get_logger,
    set_request_context,
)

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
QUIET_PATHS = frozenset({"/health"})


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Binds the request context and logs one line per finished request.

    Payment gateways redeliver on anything but 2xx, so every non-2xx answer
    is logged at warning level to make redelivery loops visible.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = set_request_context(
            request_id=request.headers.get(REQUEST_ID_HEADER),
            path=request.url.path,
            method=request.method,
        )
        quiet = request.url.path in QUIET_PATHS
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(
                "Unhandled error while serving request",
                extra={
                    "extra_fields": {
                        "error": str(e),
                        "duration_ms": _elapsed_ms(started),
                    }
                },
            )
            raise
        else:
            if not quiet:
                fields = {
                    "status_code": response.status_code,
                    "duration_ms": _elapsed_ms(started),
                }
                if "x-signature" in request.headers:
                    fields["signed"] = True
                if 200 <= response.status_code < 300:
                    logger.info("Request completed", extra={"extra_fields": fields})
                else:
                    logger.warning("Request completed", extra={"extra_fields": fields})

            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_request_context()


def add_observability_middleware(app: FastAPI) -> None:
    """Configure logging and install RequestContextMiddleware on ``app``."""
    configure_logging()
    app.add_middleware(RequestContextMiddleware)
    logger.info("Observability middleware initialized")
