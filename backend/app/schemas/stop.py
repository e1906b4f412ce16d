from pydantic import Field, field_validator

from app.schemas.base import CamelModel


class StopInfo(CamelModel):
    stop_id: str
    name: str
    pinned: bool = True


class StopList(CamelModel):
    stops: list[StopInfo]


class PinStopRequest(CamelModel):
    stop_id: str = Field(min_length=1)
    name: str | None = None

    @field_validator("stop_id")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("stopId is required")
        return v


class PinStopResponse(CamelModel):
    stop: StopInfo
