from enum import Enum

from pydantic import BaseModel, Field


class DeviceCommand(str, Enum):
    RELOAD = "reload"
    CLEAR_CACHE = "clear_cache"
    IDENTIFY = "identify"
    REBOOT = "reboot"


class CommandIn(BaseModel):
    id: str = Field(..., min_length=1)
    command: DeviceCommand
