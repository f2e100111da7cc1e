import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

import database
from config import settings
from exceptions import PersistenceError, RollbackFailed, SessionStateError
from inference_client import HttpInferenceProbe, InferenceProbe
from license_validator import LicenseValidator
from models import (
    HealthCheckResponse,
    LicenseSubmitRequest,
    SessionStartRequest,
    SessionStatusResponse,
    ValidationOutcomeResponse,
)
from settings_store import SettingsStore
from validation_session import ValidationSession, is_unattended

logger = logging.getLogger(__name__)

def configure_logging():
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

def _status(session: ValidationSession) -> dict:
    return {
        "state": session.state.value,
        "result": session.result.value if session.result else None,
        "message": session.last_message,
    }

def _current_session(request: Request) -> ValidationSession:
    session = request.app.state.session
    if session is None:
        raise HTTPException(status_code=404, detail="No license session started")
    return session

def create_app(
    engine: Optional[Engine] = None,
    probe: Optional[InferenceProbe] = None,
    store: Optional[SettingsStore] = None,
) -> FastAPI:
    engine = engine or database.engine
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.init_db(engine)
        logger.info("Processor settings database ready at %s", engine.url.render_as_string(hide_password=True))
        yield

    app = FastAPI(
        title="Inference License Validator",
        description="Validates the gateway license key against the inference service during install",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = store or SettingsStore(session_factory)
    app.state.store = store
    app.state.validator = LicenseValidator(store, probe or HttpInferenceProbe(), session_factory)
    app.state.session = None

    # API Endpoints
    @app.post("/api/license/session", response_model=SessionStatusResponse)
    async def start_session(request: Request, body: SessionStartRequest):
        """
        Start a license session for the installer.

        An unattended install (explicit flag, the silent UI level, or the
        UNATTENDED setting) is confirmed straight away without validation.
        """
        current = request.app.state.session
        if current is not None and not current.finished and not current.halted:
            raise HTTPException(status_code=409, detail="A license session is already running")

        if body.unattended is not None:
            unattended = body.unattended
        else:
            unattended = is_unattended(body.uiLevel) or settings.UNATTENDED

        session = ValidationSession(request.app.state.validator, store, unattended=unattended)
        try:
            session.start()
        except RollbackFailed as e:
            raise HTTPException(status_code=500, detail=str(e))
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))

        request.app.state.session = session
        return _status(session)

    @app.get("/api/license/session", response_model=SessionStatusResponse)
    async def get_session(request: Request):
        return _status(_current_session(request))

    @app.post("/api/license/session/submit", response_model=ValidationOutcomeResponse)
    async def submit_license(request: Request, body: LicenseSubmitRequest):
        """
        Validate a license key and inference uri.

        A failed validation leaves the session waiting for another key;
        the returned message says why it failed.
        """
        session = _current_session(request)
        try:
            outcome = await session.submit(body.inferenceUri, body.licenseKey)
        except SessionStateError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except RollbackFailed as e:
            raise HTTPException(status_code=500, detail=str(e))

        return {"succeeded": outcome.succeeded, "message": outcome.message, "kind": outcome.kind.value}

    @app.post("/api/license/session/decline", response_model=SessionStatusResponse)
    async def decline_license(request: Request):
        session = _current_session(request)
        try:
            session.decline()
        except SessionStateError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return _status(session)

    @app.post("/api/license/session/cancel", response_model=SessionStatusResponse)
    async def cancel_session(request: Request):
        """Cancel the session, rolling back a validation that is still running."""
        session = _current_session(request)
        try:
            await session.cancel()
        except SessionStateError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except RollbackFailed as e:
            raise HTTPException(status_code=500, detail=str(e))
        return _status(session)

    @app.get("/health", response_model=HealthCheckResponse)
    async def health_check(request: Request):
        """Health check; waits for a running validation to finish with the settings."""
        try:
            async with request.app.state.store.transaction():
                current = request.app.state.store.get()
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))

        return {
            "status": "degraded" if request.app.state.store.indeterminate else "healthy",
            "service": settings.SERVICE_NAME,
            "version": settings.APP_VERSION,
            "inferenceUri": current.endpoint or None,
        }

    return app

app = create_app()

if __name__ == "__main__":
    import uvicorn
    configure_logging()
    uvicorn.run(app, host="127.0.0.1", port=8000)
