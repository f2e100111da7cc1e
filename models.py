from enum import Enum
from pydantic import BaseModel, ConfigDict
from typing import Optional, Union

# Outcome messages shown to the user
MESSAGE_PERSISTENCE_FAILED = "configuration could not be updated"
MESSAGE_INVALID_CREDENTIAL = "invalid credential"
MESSAGE_UNREACHABLE = "unable to reach service"
MESSAGE_CANCELLED = "cancelled"
MESSAGE_ROLLBACK_FAILED = "configuration restore failed"

class ProcessorSettings(BaseModel):
    """The inference endpoint and license key the gateway processor reads on start."""
    model_config = ConfigDict(frozen=True)

    endpoint: str = ""
    credential: str = ""

class OutcomeKind(str, Enum):
    OK = "ok"
    PERSISTENCE_FAILED = "persistence_failed"
    INVALID_CREDENTIAL = "invalid_credential"
    UNREACHABLE = "unreachable"
    CANCELLED = "cancelled"
    ROLLBACK_FAILED = "rollback_failed"

class ValidationOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    succeeded: bool
    message: str = ""
    kind: OutcomeKind = OutcomeKind.OK

    @classmethod
    def success(cls) -> "ValidationOutcome":
        return cls(succeeded=True, message="", kind=OutcomeKind.OK)

    @classmethod
    def failure(cls, kind: OutcomeKind, message: str) -> "ValidationOutcome":
        return cls(succeeded=False, message=message, kind=kind)

class SessionResult(str, Enum):
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    CANCELLED = "cancelled"

class SessionState(str, Enum):
    AWAITING_INPUT = "awaiting_input"
    VALIDATING = "validating"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    CANCELLED = "cancelled"

# API models
class SessionStartRequest(BaseModel):
    unattended: Optional[bool] = None
    uiLevel: Optional[str] = None

class LicenseSubmitRequest(BaseModel):
    inferenceUri: str
    licenseKey: str

class ValidationOutcomeResponse(BaseModel):
    succeeded: bool
    message: str
    kind: str

class SessionStatusResponse(BaseModel):
    state: str
    result: Optional[str] = None
    message: Optional[str] = None

class HealthCheckResponse(BaseModel):
    status: str
    service: str
    version: str
    inferenceUri: Optional[str] = None

# User actions
class Submit(BaseModel):
    model_config = ConfigDict(frozen=True)

    endpoint: str
    credential: str

class Decline(BaseModel):
    model_config = ConfigDict(frozen=True)

class Cancel(BaseModel):
    model_config = ConfigDict(frozen=True)

UserAction = Union[Submit, Decline, Cancel]
