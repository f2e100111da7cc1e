import asyncio
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from database import LicenseValidationAttempt
from exceptions import CredentialRejected, PersistenceError, RollbackFailed
from inference_client import InferenceProbe
from models import (
    MESSAGE_CANCELLED,
    MESSAGE_INVALID_CREDENTIAL,
    MESSAGE_PERSISTENCE_FAILED,
    MESSAGE_ROLLBACK_FAILED,
    MESSAGE_UNREACHABLE,
    OutcomeKind,
    ProcessorSettings,
    ValidationOutcome,
)
from settings_store import SettingsStore

logger = logging.getLogger(__name__)

def mask_credential(credential: str) -> str:
    if len(credential) <= 4:
        return "****"
    return "****" + credential[-4:]

class ProvisionalSettings:
    """
    Candidate settings written over the current ones until committed.

    apply() remembers what was persisted before writing the candidate;
    restore() puts that back unless commit() was called.
    """

    def __init__(self, store: SettingsStore, candidate: ProcessorSettings):
        self.store = store
        self.candidate = candidate
        self.previous: Optional[ProcessorSettings] = None
        self.applied = False
        self.committed = False

    def apply(self):
        self.previous = self.store.get()
        self.store.set(self.candidate)
        self.applied = True

    def commit(self):
        self.committed = True

    def restore(self):
        if self.applied and not self.committed:
            self.store.set(self.previous)

class LicenseValidator:
    def __init__(
        self,
        store: SettingsStore,
        probe: InferenceProbe,
        session_factory: Optional[sessionmaker] = None,
    ):
        self.store = store
        self.probe = probe
        self.session_factory = session_factory

    async def validate(self, candidate_endpoint: str, candidate_credential: str) -> ValidationOutcome:
        """
        Validate a license key against an inference service.

        The candidate is written to the processor settings and the service is
        pinged with whatever was persisted. On success the candidate stays; on
        any failure the previous settings are restored before returning. If
        the attempt is cancelled the previous settings are restored and the
        cancellation propagates. Raises RollbackFailed without touching the
        store once an earlier restore has failed.
        """
        candidate = ProcessorSettings(endpoint=candidate_endpoint, credential=candidate_credential)
        logger.info(
            "Validating license key %s against %s",
            mask_credential(candidate_credential),
            candidate_endpoint,
        )

        async with self.store.transaction():
            if self.store.indeterminate:
                raise RollbackFailed(MESSAGE_ROLLBACK_FAILED)

            provisional = ProvisionalSettings(self.store, candidate)
            try:
                provisional.apply()
            except PersistenceError as e:
                logger.error("Could not apply candidate settings: %s", e)
                return self._record(
                    candidate,
                    ValidationOutcome.failure(OutcomeKind.PERSISTENCE_FAILED, MESSAGE_PERSISTENCE_FAILED),
                )

            try:
                applied = self.store.get()
                await self.probe.probe(applied.endpoint, applied.credential)
            except asyncio.CancelledError:
                logger.info("Validation cancelled, restoring previous settings")
                self._restore_after_cancel(provisional, candidate)
                raise
            except PersistenceError as e:
                logger.error("Could not read back candidate settings: %s", e)
                outcome = ValidationOutcome.failure(OutcomeKind.PERSISTENCE_FAILED, MESSAGE_PERSISTENCE_FAILED)
            except CredentialRejected as e:
                logger.warning("License key rejected: %s", e)
                outcome = ValidationOutcome.failure(OutcomeKind.INVALID_CREDENTIAL, MESSAGE_INVALID_CREDENTIAL)
            except Exception as e:
                logger.warning("Inference service unreachable: %s", e)
                outcome = ValidationOutcome.failure(OutcomeKind.UNREACHABLE, MESSAGE_UNREACHABLE)
            else:
                provisional.commit()
                outcome = ValidationOutcome.success()

            if not outcome.succeeded:
                outcome = self._restore(provisional, outcome)

            return self._record(candidate, outcome)

    def _restore(self, provisional: ProvisionalSettings, outcome: ValidationOutcome) -> ValidationOutcome:
        try:
            provisional.restore()
        except PersistenceError as e:
            logger.critical("Could not restore previous processor settings: %s", e)
            self.store.mark_indeterminate()
            return ValidationOutcome.failure(OutcomeKind.ROLLBACK_FAILED, MESSAGE_ROLLBACK_FAILED)
        return outcome

    def _restore_after_cancel(self, provisional: ProvisionalSettings, candidate: ProcessorSettings):
        outcome = self._restore(
            provisional,
            ValidationOutcome.failure(OutcomeKind.CANCELLED, MESSAGE_CANCELLED),
        )
        self._record(candidate, outcome)
        if outcome.kind == OutcomeKind.ROLLBACK_FAILED:
            raise RollbackFailed(MESSAGE_ROLLBACK_FAILED)

    def _record(self, candidate: ProcessorSettings, outcome: ValidationOutcome) -> ValidationOutcome:
        """Log the attempt to the validation history table."""
        if self.session_factory is None:
            return outcome

        try:
            with self.session_factory() as db:
                db.add(LicenseValidationAttempt(
                    license_key=mask_credential(candidate.credential),
                    inference_uri=candidate.endpoint,
                    result=outcome.kind.value,
                    error_message=outcome.message or None,
                ))
                db.commit()
        except SQLAlchemyError as e:
            logger.warning("Could not record validation attempt: %s", e)

        return outcome
