"""
FILE: src/api/main.py
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.api.observability import setup_observability
from src.api.persistence_profile import validate_persistence_profile_guardrails
from src.api.routers.portal import close_portal_runtime
from src.api.routers.portal import router as portal_router
from src.api.routers.portal_http_errors import portal_error_response
from src.core.portal import PortalError, PortalInputError


@asynccontextmanager
async def _app_lifespan(_app: FastAPI):
    validate_persistence_profile_guardrails()
    yield
    close_portal_runtime()


app = FastAPI(
    title="Proposal Client Portal API",
    version="0.1.0",
    description=(
        "Time-limited client portal links for proposals and verified recording of client "
        "decisions.\n\n"
        "A decision is reported as successful only after the stored proposal has been "
        "re-read and matches the submitted decision."
    ),
    openapi_tags=[
        {
            "name": "Proposal Client Portal",
            "description": "Portal link issuance, portal views, and client decisions.",
        },
    ],
    lifespan=_app_lifespan,
)

setup_observability(app)
logger = logging.getLogger(__name__)

app.include_router(portal_router)


@app.exception_handler(PortalError)
async def portal_error_to_json(request: Request, exc: PortalError) -> JSONResponse:
    return portal_error_response(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_to_json(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [
        ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        for error in exc.errors()
    ]
    logger.info(
        "request.validation_failed",
        extra={"extra_fields": {"method": request.method, "fields": fields}},
    )
    return portal_error_response(PortalInputError("INVALID_REQUEST_BODY"))


@app.exception_handler(Exception)
async def unhandled_exception_to_problem_details(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception while serving request", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        media_type="application/problem+json",
        content={
            "type": "about:blank",
            "title": "Internal Server Error",
            "status": 500,
            "error": "INTERNAL_ERROR",
            "detail": "An unexpected error occurred.",
            "instance": str(request.url.path),
        },
    )


@app.get("/health", tags=["Proposal Client Portal"])
def health() -> dict[str, str]:
    return {"status": "ok"}
