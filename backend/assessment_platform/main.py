import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from assessment_platform.config import settings
from assessment_platform.database import engine
from assessment_platform.errors import PlatformError
from assessment_platform.middleware.logging_config import configure_logging

configure_logging(settings.log_level, settings.json_logs)

from assessment_platform.api.auth import router as auth_router  # noqa: E402
from assessment_platform.api.rbac import router as rbac_router  # noqa: E402
from assessment_platform.api.templates import router as templates_router  # noqa: E402
from assessment_platform.api.assessments import router as assessments_router  # noqa: E402
from assessment_platform.api.responses import router as responses_router  # noqa: E402
from assessment_platform.api.audit import router as audit_router  # noqa: E402
from assessment_platform.api.health import router as health_router  # noqa: E402
from assessment_platform.middleware.security_headers import SecurityHeadersMiddleware  # noqa: E402
from assessment_platform.middleware.rate_limit import RateLimitMiddleware  # noqa: E402
from assessment_platform.middleware.request_context import RequestContextMiddleware  # noqa: E402
from assessment_platform.middleware.metrics import PrometheusMiddleware  # noqa: E402

logger = logging.getLogger("assessment_platform")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: verify DB connection
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("%s started (%s)", settings.app_name, settings.environment)
    yield
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Role-based strategic assessment platform",
    version="0.1.0",
    lifespan=lifespan,
)

# ── CORS ─────────────────────────────────────────────────────────────────────
origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)

app.add_middleware(SecurityHeadersMiddleware)
if settings.rate_limit_enabled:
    app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(PrometheusMiddleware)


# ── Error envelope: {"success": false, "message": ...} ──────────────────────

@app.exception_handler(PlatformError)
async def platform_error_handler(request: Request, exc: PlatformError):
    content = {"success": False, "message": exc.message}
    field = getattr(exc, "field", None)
    if field:
        content["field"] = field
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = "Endpoint not found" if exc.status_code == 404 and exc.detail == "Not Found" else exc.detail
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": message},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(p) for p in first.get("loc", ())[1:])
    message = f"{location}: {first.get('msg')}" if location else str(first.get("msg", "Invalid request"))
    return JSONResponse(status_code=400, content={"success": False, "message": message})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return detailed error info in development mode so 500s are debuggable."""
    tb = traceback.format_exc()
    logger.error(
        "Unhandled %s on %s %s: %s\n%s",
        type(exc).__name__, request.method, request.url.path, exc, tb,
    )
    content = {"success": False, "message": "Internal server error"}
    if settings.environment == "development":
        content["error"] = f"{type(exc).__name__}: {exc}"
    return JSONResponse(status_code=500, content=content)


# Register API routers
app.include_router(health_router)
app.include_router(auth_router)
app.include_router(rbac_router)
app.include_router(templates_router)
app.include_router(assessments_router)
app.include_router(responses_router)
app.include_router(audit_router)
