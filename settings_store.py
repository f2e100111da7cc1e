import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from database import ProcessorConfig
from exceptions import PersistenceError
from models import ProcessorSettings

logger = logging.getLogger(__name__)

INFERENCE_URI_KEY = "inference_uri"
LICENSE_KEY_KEY = "license_key"
RUN_AS_CONSOLE_SUFFIX = ".run_as_console"

class SettingsStore:
    """
    Persisted processor settings: the inference endpoint and the license key.

    Every set() writes both fields in a single transaction. Coroutines that
    need a read followed by writes to stay unobserved by other validations
    hold transaction() for the whole sequence; the thread lock only guards
    individual database calls.

    Once a restore has failed the store is marked indeterminate and stays
    that way until the process is restarted.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._lock = threading.Lock()
        self._transaction_lock = asyncio.Lock()
        self.indeterminate = False

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["SettingsStore"]:
        async with self._transaction_lock:
            yield self

    def mark_indeterminate(self):
        logger.critical("Processor settings are in an unknown state; validation is disabled")
        self.indeterminate = True

    def get(self) -> ProcessorSettings:
        with self._lock:
            try:
                with self._session_factory() as db:
                    values = self._read(db, [INFERENCE_URI_KEY, LICENSE_KEY_KEY])
            except SQLAlchemyError as e:
                raise PersistenceError(f"Could not read processor settings: {e}") from e

        return ProcessorSettings(
            endpoint=values.get(INFERENCE_URI_KEY, ""),
            credential=values.get(LICENSE_KEY_KEY, ""),
        )

    def set(self, processor_settings: ProcessorSettings):
        with self._lock:
            self._write({
                INFERENCE_URI_KEY: processor_settings.endpoint,
                LICENSE_KEY_KEY: processor_settings.credential,
            })
        logger.debug("Processor settings updated (endpoint=%s)", processor_settings.endpoint)

    def get_run_as_console(self, component: str) -> bool:
        key = component + RUN_AS_CONSOLE_SUFFIX
        with self._lock:
            try:
                with self._session_factory() as db:
                    values = self._read(db, [key])
            except SQLAlchemyError as e:
                raise PersistenceError(f"Could not read {key}: {e}") from e

        # Components run as consoles until the installer says otherwise
        return values.get(key, "true") == "true"

    def set_run_as_console(self, component: str, run_as_console: bool):
        with self._lock:
            self._write({component + RUN_AS_CONSOLE_SUFFIX: "true" if run_as_console else "false"})

    def _read(self, db: Session, keys) -> Dict[str, str]:
        rows = db.query(ProcessorConfig).filter(ProcessorConfig.key.in_(keys)).all()
        return {row.key: row.value for row in rows}

    def _write(self, values: Dict[str, str]):
        try:
            with self._session_factory() as db:
                existing = {
                    row.key: row
                    for row in db.query(ProcessorConfig).filter(
                        ProcessorConfig.key.in_(list(values))
                    )
                }
                for key, value in values.items():
                    if key in existing:
                        existing[key].value = value
                    else:
                        db.add(ProcessorConfig(key=key, value=value))
                db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not write processor settings: {e}") from e
