import asyncio

import pytest

from exceptions import RollbackFailed, SessionStateError
from license_validator import LicenseValidator
from models import (
    Cancel,
    Decline,
    OutcomeKind,
    ProcessorSettings,
    SessionResult,
    SessionState,
    Submit,
    ValidationOutcome,
)
from validation_session import ValidationSession, is_unattended

from conftest import ENDPOINT_B, PREVIOUS, BlockingProbe, FakeProbe, FlakyStore

class CountingValidator(LicenseValidator):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.count = 0

    async def validate(self, candidate_endpoint, candidate_credential):
        self.count += 1
        return await super().validate(candidate_endpoint, candidate_credential)

def scripted(*actions):
    """A prompt that replays actions and remembers the messages it was shown."""
    remaining = list(actions)
    shown = []

    async def prompt(message):
        shown.append(message)
        return remaining.pop(0)

    prompt.shown = shown
    return prompt

@pytest.fixture
def validator(store):
    return CountingValidator(store, FakeProbe(valid={(ENDPOINT_B, "good")}))

async def test_unattended_confirms_without_validating(validator, store):
    session = ValidationSession(validator, store, unattended=True)

    result = await session.run(scripted())

    assert result == SessionResult.CONFIRMED
    assert session.state == SessionState.CONFIRMED
    assert validator.count == 0

def test_start_switches_gateway_components_to_services(validator, store):
    session = ValidationSession(validator, store)

    assert session.start() is None
    assert store.get_run_as_console("processor") is False
    assert store.get_run_as_console("receiver") is False
    assert session.state == SessionState.AWAITING_INPUT

async def test_failed_submit_returns_to_awaiting_input(validator, store):
    session = ValidationSession(validator, store)

    outcome = await session.submit(ENDPOINT_B, "bad")

    assert outcome.kind == OutcomeKind.INVALID_CREDENTIAL
    assert session.state == SessionState.AWAITING_INPUT
    assert session.last_message == "invalid credential"
    assert session.result is None
    assert store.get() == PREVIOUS

async def test_successful_submit_confirms(validator, store):
    session = ValidationSession(validator, store)

    outcome = await session.submit(ENDPOINT_B, "good")

    assert outcome.succeeded
    assert session.result == SessionResult.CONFIRMED
    with pytest.raises(SessionStateError):
        await session.submit(ENDPOINT_B, "good")

async def test_run_retries_until_key_is_valid(validator, store):
    prompt = scripted(
        Submit(endpoint=ENDPOINT_B, credential="bad"),
        Submit(endpoint="https://nowhere.example.com", credential="good"),
        Submit(endpoint=ENDPOINT_B, credential="good"),
    )
    session = ValidationSession(validator, store)

    result = await session.run(prompt)

    assert result == SessionResult.CONFIRMED
    assert prompt.shown == [None, "invalid credential", "unable to reach service"]
    assert validator.count == 3
    assert store.get() == ProcessorSettings(endpoint=ENDPOINT_B, credential="good")

async def test_run_decline_after_failure(validator, store):
    session = ValidationSession(validator, store)

    result = await session.run(scripted(Submit(endpoint=ENDPOINT_B, credential="bad"), Decline()))

    assert result == SessionResult.DECLINED
    assert session.state == SessionState.DECLINED
    assert store.get() == PREVIOUS

async def test_run_cancel(validator, store):
    session = ValidationSession(validator, store)

    result = await session.run(scripted(Cancel()))

    assert result == SessionResult.CANCELLED
    assert validator.count == 0

async def test_cancel_while_validating_rolls_back(store):
    probe = BlockingProbe()
    session = ValidationSession(LicenseValidator(store, probe), store)
    submit = asyncio.ensure_future(session.submit(ENDPOINT_B, "good"))
    await probe.started.wait()
    assert session.state == SessionState.VALIDATING

    result = await session.cancel()
    outcome = await submit

    assert result == SessionResult.CANCELLED
    assert outcome.kind == OutcomeKind.CANCELLED
    assert outcome.message == "cancelled"
    assert store.get() == PREVIOUS

async def test_second_submit_while_validating_is_rejected(store):
    probe = BlockingProbe()
    session = ValidationSession(LicenseValidator(store, probe), store)
    submit = asyncio.ensure_future(session.submit(ENDPOINT_B, "good"))
    await probe.started.wait()

    with pytest.raises(SessionStateError):
        await session.submit(ENDPOINT_B, "other")
    with pytest.raises(SessionStateError):
        session.decline()

    await session.cancel()
    await submit
    assert probe.calls == [(ENDPOINT_B, "good")]

async def test_failed_restore_halts_session(session_factory):
    store = FlakyStore(session_factory, fail_on={3})
    store.set(PREVIOUS)
    session = ValidationSession(LicenseValidator(store, FakeProbe()))

    with pytest.raises(RollbackFailed):
        await session.submit(ENDPOINT_B, "bad")

    assert session.halted
    assert session.result is None
    with pytest.raises(SessionStateError):
        await session.submit(ENDPOINT_B, "good")

async def test_failed_restore_on_cancel_halts_session(session_factory):
    store = FlakyStore(session_factory, fail_on={3})
    store.set(PREVIOUS)
    probe = BlockingProbe()
    session = ValidationSession(LicenseValidator(store, probe))
    submit = asyncio.ensure_future(session.submit(ENDPOINT_B, "good"))
    await probe.started.wait()

    with pytest.raises(RollbackFailed):
        await session.cancel()
    with pytest.raises(RollbackFailed):
        await submit

    assert session.halted

async def test_decline_after_finish_is_rejected(validator, store):
    session = ValidationSession(validator, store)
    await session.cancel()

    with pytest.raises(SessionStateError):
        session.decline()
    with pytest.raises(SessionStateError):
        await session.cancel()

@pytest.mark.parametrize("ui_level,expected", [("2", True), (2, True), ("5", False), (None, False)])
def test_is_unattended(ui_level, expected):
    assert is_unattended(ui_level) is expected

class RestoreFailedValidator(LicenseValidator):
    """Finishes at once with a failed restore, without touching the store."""

    async def validate(self, candidate_endpoint, candidate_credential):
        return ValidationOutcome.failure(OutcomeKind.ROLLBACK_FAILED, "configuration restore failed")

async def test_failed_restore_still_halts_when_cancel_wins_the_race(store):
    session = ValidationSession(RestoreFailedValidator(store, FakeProbe()), store)
    submit = asyncio.ensure_future(session.submit(ENDPOINT_B, "bad"))
    # Two loop turns: submit starts the validation, then the validation completes
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert session._inflight.done()

    await session.cancel()

    with pytest.raises(RollbackFailed):
        await submit
    assert session.halted

async def test_start_refused_after_failed_restore(session_factory):
    store = FlakyStore(session_factory, fail_on={3})
    store.set(PREVIOUS)
    validator = LicenseValidator(store, FakeProbe())
    with pytest.raises(RollbackFailed):
        await ValidationSession(validator, store).submit(ENDPOINT_B, "bad")

    session = ValidationSession(validator, store)
    with pytest.raises(RollbackFailed):
        session.start()

    assert session.halted
    assert store.get_run_as_console("processor") is True
    assert store.set_calls == 3

async def test_new_session_cannot_validate_after_failed_restore(session_factory):
    store = FlakyStore(session_factory, fail_on={3})
    store.set(PREVIOUS)
    probe = FakeProbe()
    validator = LicenseValidator(store, probe)
    with pytest.raises(RollbackFailed):
        await ValidationSession(validator).submit(ENDPOINT_B, "bad")

    session = ValidationSession(validator)
    with pytest.raises(RollbackFailed):
        await session.submit(ENDPOINT_B, "good")

    assert session.halted
    assert probe.calls == [(ENDPOINT_B, "bad")]
