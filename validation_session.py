import asyncio
import logging
from typing import Awaitable, Callable, Optional

from config import settings
from exceptions import RollbackFailed, SessionStateError
from license_validator import LicenseValidator
from models import (
    MESSAGE_CANCELLED,
    MESSAGE_ROLLBACK_FAILED,
    Cancel,
    Decline,
    OutcomeKind,
    SessionResult,
    SessionState,
    Submit,
    UserAction,
    ValidationOutcome,
)
from settings_store import SettingsStore

logger = logging.getLogger(__name__)

# Gateway services that must run as services, not consoles, once installed
GATEWAY_COMPONENTS = ("processor", "receiver")

TERMINAL_STATES = {
    SessionResult.CONFIRMED: SessionState.CONFIRMED,
    SessionResult.DECLINED: SessionState.DECLINED,
    SessionResult.CANCELLED: SessionState.CANCELLED,
}

# Shown the last validation message (None before the first attempt), returns the user's choice
LicensePrompt = Callable[[Optional[str]], Awaitable[UserAction]]

def is_unattended(ui_level: Optional[str]) -> bool:
    """True when the installer was started without a UI."""
    return ui_level is not None and str(ui_level) == settings.SILENT_UI_LEVEL

class ValidationSession:
    """
    Collects a license key from the user until it validates, or the user gives up.

    The session starts in AWAITING_INPUT. submit() runs one validation; success
    confirms the session, any other outcome returns to AWAITING_INPUT with the
    message to show. decline() and cancel() end the session. A failed restore
    of the previous settings halts the session: RollbackFailed is raised and
    nothing further may be submitted.
    """

    def __init__(
        self,
        validator: LicenseValidator,
        store: Optional[SettingsStore] = None,
        unattended: bool = False,
    ):
        self.validator = validator
        self.store = store
        self.unattended = unattended
        self.state = SessionState.AWAITING_INPUT
        self.result: Optional[SessionResult] = None
        self.last_outcome: Optional[ValidationOutcome] = None
        self.halted = False
        self._inflight: Optional[asyncio.Task] = None
        self._cancel_requested = False

    @property
    def last_message(self) -> Optional[str]:
        return self.last_outcome.message if self.last_outcome else None

    @property
    def finished(self) -> bool:
        return self.result is not None

    def start(self) -> Optional[SessionResult]:
        """
        Prepare the gateway configuration and skip the prompt when unattended.

        Returns CONFIRMED for an unattended install, None when the user
        has to be asked for a key. Raises RollbackFailed when an earlier
        restore left the processor settings in an unknown state.
        """
        if self.validator.store.indeterminate:
            self._halt()
            raise RollbackFailed(MESSAGE_ROLLBACK_FAILED)

        if self.store is not None:
            for component in GATEWAY_COMPONENTS:
                self.store.set_run_as_console(component, False)

        if self.unattended:
            logger.info("Unattended install, skipping license validation")
            return self._finish(SessionResult.CONFIRMED)
        return None

    async def submit(self, endpoint: str, credential: str) -> ValidationOutcome:
        if self.halted:
            raise SessionStateError("Session halted after a failed settings restore")
        if self.state != SessionState.AWAITING_INPUT:
            raise SessionStateError(f"Cannot submit while {self.state.value}")

        self._transition(SessionState.VALIDATING)
        self._inflight = asyncio.ensure_future(self.validator.validate(endpoint, credential))
        try:
            outcome = await self._inflight
        except asyncio.CancelledError:
            if not self._cancel_requested:
                self._finish(SessionResult.CANCELLED)
                raise
            return self.last_outcome
        except RollbackFailed:
            self._halt()
            raise
        finally:
            self._inflight = None

        self.last_outcome = outcome

        if outcome.kind == OutcomeKind.ROLLBACK_FAILED:
            self._halt()
            raise RollbackFailed(outcome.message)

        if self.finished:
            # Cancelled after the validation had already completed
            return outcome

        if outcome.succeeded:
            self._transition(SessionState.SUCCEEDED)
            self._finish(SessionResult.CONFIRMED)
            return outcome

        self._transition(SessionState.FAILED)
        self._transition(SessionState.AWAITING_INPUT)
        return outcome

    def decline(self) -> SessionResult:
        if self.finished or self.state == SessionState.VALIDATING:
            raise SessionStateError(f"Cannot decline while {self.state.value}")
        return self._finish(SessionResult.DECLINED)

    async def cancel(self) -> SessionResult:
        """Cancel the session, waiting for an in-flight validation to roll back."""
        if self.finished:
            raise SessionStateError(f"Session already {self.state.value}")

        self._cancel_requested = True
        task = self._inflight
        if task is not None and not task.done():
            self.last_outcome = ValidationOutcome.failure(OutcomeKind.CANCELLED, MESSAGE_CANCELLED)
            task.cancel()
            await asyncio.wait({task})
            if not task.cancelled() and isinstance(task.exception(), RollbackFailed):
                self._halt()
                raise task.exception()

        return self._finish(SessionResult.CANCELLED)

    async def run(self, prompt: LicensePrompt) -> SessionResult:
        """Drive the session to a result by asking prompt for each action."""
        started = self.start()
        if started is not None:
            return started

        while not self.finished:
            action = await prompt(self.last_message)
            if isinstance(action, Submit):
                await self.submit(action.endpoint, action.credential)
            elif isinstance(action, Decline):
                self.decline()
            elif isinstance(action, Cancel):
                await self.cancel()
            else:
                raise TypeError(f"Unknown user action: {action!r}")

        return self.result

    def _transition(self, state: SessionState):
        logger.debug("Session %s -> %s", self.state.value, state.value)
        self.state = state

    def _finish(self, result: SessionResult) -> SessionResult:
        self._transition(TERMINAL_STATES[result])
        self.result = result
        logger.info("License session finished: %s", result.value)
        return result

    def _halt(self):
        self.halted = True
        self._transition(SessionState.FAILED)
