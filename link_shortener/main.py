# link_shortener/main.py
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import models, schemas
from .config import Config, load_config
from .database import create_db_engine, create_session_factory, init_db
from .errors import Forbidden, LinkShortenerError
from .keys import AuthContext, KeyStore
from .logging_config import setup_logging
from .service import LinkService
from .sweeper import ExpirationSweeper

logger = logging.getLogger("link_shortener.web")


# ---------- Dependencies ----------

def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_service(request: Request, db: Session = Depends(get_db)) -> LinkService:
    config = request.app.state.config
    return LinkService(
        db,
        public_site_url=config.public_site_url,
        max_token_attempts=config.token_max_attempts,
    )


def _extract_key(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "").strip()
    if header.lower().startswith("bearer "):
        return header.split(" ", 1)[1].strip()
    return header


def get_auth(request: Request, db: Session = Depends(get_db)) -> AuthContext:
    """Re-validate the caller's key on every request."""
    return KeyStore(db).authenticate(_extract_key(request))


def require_admin(auth: AuthContext = Depends(get_auth)) -> AuthContext:
    if not auth.is_admin:
        raise Forbidden("Forbidden: Admin access required")
    return auth


def _provided(body, *fields):
    """Map a partial-update body onto keyword arguments; null means absent."""
    return {
        field: getattr(body, field)
        for field in fields
        if field in body.model_fields_set and getattr(body, field) is not None
    }


# ---------- Public API ----------

api_router = APIRouter()


@api_router.get("/")
def api_home():
    return {"message": "Link Shortener - there's nothing on this page!"}


@api_router.get("/health")
def health_check():
    return {"status": "healthy"}


# ---------- V1 API (key required) ----------

v1_router = APIRouter(dependencies=[Depends(get_auth)])


@v1_router.get("/")
def v1_home():
    return {"message": "Welcome to the V1 API!"}


@v1_router.post("/links/shorten", response_model=schemas.ShortenResponse)
def shorten_link(
    payload: schemas.ShortenRequest,
    auth: AuthContext = Depends(get_auth),
    service: LinkService = Depends(get_service),
):
    shortened = service.shorten(
        auth,
        redirect_to=payload.redirect_to,
        custom_url=payload.custom_url,
        expires_at=payload.expires_at,
    )
    return schemas.ShortenResponse(shortened=shortened)


@v1_router.post("/links/retrieve", response_model=schemas.LinkInfo)
def retrieve_link(payload: schemas.ShortenedRequest, service: LinkService = Depends(get_service)):
    return schemas.LinkInfo.model_validate(service.retrieve(payload.shortened))


@v1_router.post("/links/delete", response_model=schemas.MessageResponse)
def delete_link(
    payload: schemas.ShortenedRequest,
    auth: AuthContext = Depends(get_auth),
    service: LinkService = Depends(get_service),
):
    service.delete(auth, payload.shortened)
    return schemas.MessageResponse(message="Link deleted successfully")


@v1_router.post("/links/update", response_model=schemas.LinkInfo)
def update_link(
    payload: schemas.UpdateLinkRequest,
    auth: AuthContext = Depends(get_auth),
    service: LinkService = Depends(get_service),
):
    fields = _provided(payload, "redirect_to", "new_shortened", "expires_at", "is_active")
    link = service.update(auth, payload.shortened, **fields)
    return schemas.LinkInfo.model_validate(link)


@v1_router.get("/links/retrieve-all", response_model=schemas.LinksResponse)
def retrieve_all_links(
    auth: AuthContext = Depends(require_admin),
    service: LinkService = Depends(get_service),
):
    links = service.retrieve_all(auth)
    return schemas.LinksResponse(
        message="Links retrieved successfully",
        links=[schemas.LinkInfo.model_validate(link) for link in links],
    )


@v1_router.post("/links/retrieve-all-by-key", response_model=schemas.LinksResponse)
def retrieve_all_links_by_key(
    payload: schemas.RetrieveAllByKeyRequest,
    auth: AuthContext = Depends(get_auth),
    service: LinkService = Depends(get_service),
):
    links = service.retrieve_all_by_key(auth, payload.key)
    return schemas.LinksResponse(
        message="Links retrieved successfully",
        links=[schemas.LinkInfo.model_validate(link) for link in links],
    )


# ---------- Key management (admin only) ----------

keys_router = APIRouter(prefix="/keys", dependencies=[Depends(require_admin)])


@keys_router.post("/validate", response_model=schemas.KeyResponse)
def validate_key(auth: AuthContext = Depends(get_auth), db: Session = Depends(get_db)):
    api_key = KeyStore(db).find_by_key(auth.secret_key)
    return schemas.KeyResponse(
        message="Key validated successfully",
        key=schemas.KeyInfo.model_validate(api_key),
    )


@keys_router.get("/retrieve-all", response_model=schemas.KeysResponse)
def retrieve_all_keys(db: Session = Depends(get_db)):
    keys = KeyStore(db).list_all()
    return schemas.KeysResponse(
        message="Keys retrieved successfully",
        keys=[schemas.KeyInfo.model_validate(k) for k in keys],
    )


@keys_router.post("/generate", response_model=schemas.KeyResponse)
def generate_key(payload: schemas.GenerateKeyRequest, db: Session = Depends(get_db)):
    api_key = KeyStore(db).create(payload.name, payload.is_admin)
    return schemas.KeyResponse(
        message="Key generated successfully",
        key=schemas.KeyInfo.model_validate(api_key),
    )


@keys_router.post("/update", response_model=schemas.KeyResponse)
def update_key(payload: schemas.UpdateKeyRequest, db: Session = Depends(get_db)):
    fields = _provided(payload, "name", "is_admin", "is_active")
    # An empty name means "leave it alone"
    if fields.get("name") == "":
        del fields["name"]
    api_key = KeyStore(db).update(payload.key, **fields)
    return schemas.KeyResponse(
        message="Key updated successfully",
        key=schemas.KeyInfo.model_validate(api_key),
    )


@keys_router.post("/delete", response_model=schemas.MessageResponse)
def delete_key(payload: schemas.DeleteKeyRequest, db: Session = Depends(get_db)):
    KeyStore(db).delete(payload.key)
    return schemas.MessageResponse(message="Key deleted successfully")


v1_router.include_router(keys_router)
api_router.include_router(v1_router, prefix="/v1")


# ---------- Redirects ----------

redirect_router = APIRouter()


@redirect_router.get("/", include_in_schema=False)
def read_root(request: Request):
    if request.app.state.config.enable_docs:
        return RedirectResponse(url="/docs", status_code=302)
    return RedirectResponse(url="/not-found", status_code=302)


@redirect_router.get("/not-found", include_in_schema=False)
def not_found():
    raise HTTPException(status_code=404, detail="Not found")


# MUST BE LAST: catch-all redirect route
@redirect_router.get("/{shortened}", include_in_schema=False)
def redirect_to_target(shortened: str, request: Request, service: LinkService = Depends(get_service)):
    target = service.resolve_redirect(
        shortened,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
        referrer=request.headers.get("referer"),
    )
    return RedirectResponse(url=target, status_code=302)


# ---------- Centralized Error Handling (logs + DB) ----------

def log_error_to_db(request: Request, status_code: int, detail: str):
    """Helper: store error details in DB."""
    db = request.app.state.session_factory()
    try:
        error = models.ErrorLog(
            path=str(request.url),
            method=request.method,
            status_code=status_code,
            detail=detail,
        )
        db.add(error)
        db.commit()
    except Exception as e:
        logger.error(f"Failed to log error to DB: {e}")
    finally:
        db.close()


async def link_error_handler(request: Request, exc: LinkShortenerError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} {exc.status_code} at {request.url}: {exc.message}")
    else:
        logger.warning(f"{type(exc).__name__} {exc.status_code} at {request.url}: {exc.message}")
    log_error_to_db(request, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = str(exc.detail)
    logger.warning(f"HTTPException {exc.status_code} at {request.url}: {detail}")
    log_error_to_db(request, exc.status_code, detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error at {request.url}: {exc.errors()}")
    log_error_to_db(request, 422, "Validation error")
    return JSONResponse(
        status_code=422,
        content={"detail": "Invalid request data", "errors": jsonable_encoder(exc.errors())},
    )


async def internal_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error at {request.url}: {exc}", exc_info=True)
    log_error_to_db(request, 500, "Internal server error")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# ---------- Application ----------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Bootstrap the root key, then run the sweeper for the app's lifetime."""
    config = app.state.config
    logger.info("Starting link shortener service...")

    db = app.state.session_factory()
    try:
        KeyStore(db).ensure_root_key(config.root_user_key)
    finally:
        db.close()

    sweeper = None
    if config.enable_sweeper:
        sweeper = ExpirationSweeper(
            app.state.session_factory,
            interval_seconds=config.sweep_interval_seconds,
            stale_after=timedelta(days=config.stale_after_days),
        )
        sweeper.start()
    app.state.sweeper = sweeper

    logger.info("Service started successfully")
    try:
        yield
    finally:
        logger.info("Shutting down link shortener service...")
        if sweeper is not None:
            await sweeper.stop()
        app.state.engine.dispose()
        logger.info("Service stopped")


def create_app(config: Optional[Config] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Configuration; loaded from the environment when omitted

    Returns:
        Configured FastAPI app
    """
    config = config or load_config()

    engine = create_db_engine(config.database_url)
    init_db(engine)

    app = FastAPI(
        title="Link Shortener",
        description="URL shortener with API-key ownership and scheduled expiry",
        version="1.0.0",
        docs_url="/docs" if config.enable_docs else None,
        redoc_url="/redoc" if config.enable_docs else None,
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Accept", "Authorization", "Content-Type"],
        expose_headers=["Link"],
        max_age=300,
    )

    app.add_exception_handler(LinkShortenerError, link_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, internal_exception_handler)

    app.include_router(api_router, prefix="/api")
    app.include_router(redirect_router)

    return app


def create_app_from_env() -> FastAPI:
    """Factory uvicorn imports in every worker process."""
    config = load_config()
    setup_logging(
        level=config.log_level,
        log_file=config.log_file,
        json_format=config.log_json,
    )
    return create_app(config)


def main():
    """Main entry point."""
    config = load_config()

    logger = setup_logging(
        level=config.log_level,
        log_file=config.log_file,
        json_format=config.log_json,
    )
    logger.info("Link Shortener Service")
    logger.info(f"Starting server on {config.host}:{config.port} with {config.workers} worker(s)")

    uvicorn.run(
        "link_shortener.main:create_app_from_env",
        factory=True,
        host=config.host,
        port=config.port,
        workers=config.workers,
        log_level=config.log_level.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    main()
