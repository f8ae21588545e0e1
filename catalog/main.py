import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from catalog.core.config import get_settings
from catalog.core.errors import (
    CatalogError,
    CircularReference,
    Conflict,
    InvalidParent,
    InvalidTarget,
    NotFound,
    TargetRequired,
    ValidationError,
)
from catalog.core.logging import configure_logging
from catalog.routers import admin, site

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger("catalog")

ERROR_STATUS = {
    ValidationError: 422,
    NotFound: 404,
    InvalidParent: 400,
    InvalidTarget: 400,
    CircularReference: 400,
    TargetRequired: 409,
    Conflict: 409,
}

app = FastAPI(title=settings.project_name)
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.secret_key,
    session_cookie=settings.session_cookie_name,
    same_site=settings.session_cookie_same_site,
    https_only=settings.session_cookie_secure,
    max_age=settings.session_cookie_max_age,
)

app.include_router(site.router)
app.include_router(admin.router)


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "ok"}


@app.exception_handler(CatalogError)
async def catalog_error_handler(request: Request, exc: CatalogError):
    status_code = next(
        (code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)),
        400,
    )
    logger.info(
        "catalog_error",
        extra={"error": exc.code, "path": request.url.path, "status_code": status_code},
    )
    return JSONResponse({"error": exc.code, "detail": str(exc)}, status_code=status_code)
