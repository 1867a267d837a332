"""Records flowing through the engine. All timestamps are UTC epoch ms."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Optional


class AlarmType(str, Enum):
    TEMP = "TEMP"
    POWER = "POWER"
    TEMP_POWER = "TEMP_POWER"
    OFFLINE = "OFFLINE"


class DeviceStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    DELETED = "DELETED"


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    OWNER = "OWNER"
    MANAGER = "MANAGER"
    CONSULTANT = "CONSULTANT"


class MessageType(str, Enum):
    DEVICE = "DEVICE"
    ALARM = "ALARM"


@dataclass
class Device:
    asset_id: str
    asset_name: str = ""
    asset_status: DeviceStatus = DeviceStatus.ACTIVE
    company_id: Optional[str] = None
    farm_id: Optional[str] = None
    shed_id: Optional[str] = None
    template_id: Optional[str] = None

    enable_call: bool = False
    is_online: bool = False
    in_batch: bool = False

    # Shadow-reported state
    alarm: int = 0
    alarm_ts: Optional[int] = None
    c_out: Optional[int] = None
    day: Optional[int] = None
    dev_ts: Optional[int] = None
    dur: Optional[int] = None
    freq: Optional[int] = None
    fw: Optional[str] = None
    inh: Optional[list] = None
    inh_ts: Optional[list] = None
    i_t: Optional[list] = None
    n_t: Optional[list] = None
    p_t: Optional[list] = None
    r_t: Optional[list] = None
    s_en: Optional[bool] = None
    sms_en: Optional[bool] = None
    s_sq: Optional[bool] = None
    start: Optional[int] = None
    temp_ts: Optional[int] = None
    t_r: Optional[list] = None
    sms_num: list[str] = field(default_factory=list)

    last_transmitted: Optional[int] = None
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    @classmethod
    def from_record(cls, record: dict) -> "Device":
        known = {f.name for f in fields(cls)}
        data = {k: v for k, v in record.items() if k in known}
        if "asset_status" in data and data["asset_status"] is not None:
            data["asset_status"] = DeviceStatus(data["asset_status"])
        if data.get("sms_num") is None:
            data["sms_num"] = []
        return cls(**data)

    def to_record(self) -> dict:
        record = asdict(self)
        record["asset_status"] = self.asset_status.value
        return record


@dataclass
class Alarm:
    alarm_id: str
    alarm_code: int
    alarm_type: AlarmType
    device_id: str
    message: str = ""
    attempt: int = 0
    notify: bool = True
    notified_at: int = 0
    users: list[str] = field(default_factory=list)
    shed_id: Optional[str] = None
    farm_id: Optional[str] = None
    company_id: Optional[str] = None
    created_at: int = 0
    updated_at: int = 0
    timestamp: int = 0

    @classmethod
    def from_record(cls, record: dict) -> "Alarm":
        known = {f.name for f in fields(cls)}
        data = {k: v for k, v in record.items() if k in known}
        data["alarm_type"] = AlarmType(data["alarm_type"])
        data["users"] = list(data.get("users") or [])
        return cls(**data)

    def to_record(self) -> dict:
        record = asdict(self)
        record["alarm_type"] = self.alarm_type.value
        return record


@dataclass(frozen=True)
class DataPoint:
    asset_id: str
    timestamp: int
    r_t: float
    i_t: Optional[float] = None
    n_t: Optional[float] = None
    p_t: Optional[float] = None
    t_r: Optional[float] = None
    alarm: Optional[int] = None
    day: Optional[int] = None
    in_batch: bool = False

    def to_record(self) -> dict:
        return asdict(self)


@dataclass
class Farm:
    asset_id: str
    company_id: Optional[str] = None
    asset_name: str = ""
    users: list[str] = field(default_factory=list)


@dataclass
class Connection:
    """A live dashboard observer registered with the WebSocket gateway."""
    connection_id: str
    user_id: str
    role: UserRole
    company_id: Optional[str] = None
    devices: list[str] = field(default_factory=list)
