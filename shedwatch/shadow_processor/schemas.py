"""Pydantic models for inbound shadow update events."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shedwatch.shared.errors import MalformedEvent


class ReportedState(BaseModel):
    """Device-reported side of the shadow. Every key except deviceId is optional."""

    model_config = ConfigDict(extra="allow")

    deviceId: str = Field(..., min_length=1)
    alarm: Optional[int] = Field(default=None, ge=0)
    alarmTS: Optional[float] = None
    cOut: Optional[float] = None
    day: Optional[int] = Field(default=None, ge=0)
    devTS: Optional[float] = None
    dur: Optional[int] = None
    freq: Optional[int] = None
    FW: Optional[Any] = None
    inh: Optional[list[int]] = None
    inhTS: Optional[list[float]] = None
    iT: Optional[list[float]] = None
    nT: Optional[list[float]] = None
    pT: Optional[list[float]] = None
    rT: Optional[list[float]] = None
    sEn: Optional[bool] = None
    SMSEn: Optional[bool] = None
    sSq: Optional[bool] = None
    start: Optional[float] = None
    tempTS: Optional[float] = None
    tR: Optional[list[float]] = None


class DesiredState(BaseModel):
    model_config = ConfigDict(extra="allow")

    SMSNum: Optional[list[str]] = None
    inh: Optional[list[int]] = None


class ShadowState(BaseModel):
    reported: ReportedState
    desired: DesiredState = Field(default_factory=DesiredState)


class ShadowDocument(BaseModel):
    model_config = ConfigDict(extra="allow")

    state: ShadowState
    metadata: dict[str, Any] = Field(default_factory=dict)
    version: Optional[int] = None


class PreviousDocument(BaseModel):
    model_config = ConfigDict(extra="allow")

    state: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    version: Optional[int] = None


class ShadowUpdateEvent(BaseModel):
    """``{current, previous, timestamp}`` document emitted on every shadow update."""

    current: ShadowDocument
    previous: Optional[PreviousDocument] = None
    timestamp: float

    @property
    def device_id(self) -> str:
        return self.current.state.reported.deviceId

    def reported_patch(self) -> dict[str, Any]:
        """Only the reported keys actually present in this update."""
        return self.current.state.reported.model_dump(exclude_unset=True)

    def desired_patch(self) -> dict[str, Any]:
        return self.current.state.desired.model_dump(exclude_unset=True)


def parse_shadow_event(payload: Any) -> ShadowUpdateEvent:
    """Validate a raw event once; raises MalformedEvent with the error list."""
    try:
        return ShadowUpdateEvent.model_validate(payload)
    except ValidationError as exc:
        raise MalformedEvent(exc.errors(include_url=False, include_context=False), payload) from exc
