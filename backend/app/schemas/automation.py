from pydantic import BaseModel

from app.schemas.base import CamelModel


class WindowSummary(BaseModel):
    id: str
    mode: str
    direction: str
    summary: str
    startAt: str
    endAt: str
    eventAt: str


class AutomationSettings(CamelModel):
    stop_id: str
    stop_name: str
    route_id: str
    lead_minutes: float
    pass_seconds: float
    poll_seconds: float
    has_webhook: bool
    has_raise_command: bool
    has_restore_command: bool


class AutomationStatus(CamelModel):
    enabled: bool
    active: bool
    confirmed_active: bool
    config: AutomationSettings
    last_error: str | None = None
    last_evaluated_at: str | None = None
    last_changed_at: str | None = None
    last_action: str | None = None
    last_action_at: str | None = None
    last_action_error: str | None = None
    current_window: WindowSummary | None = None
    next_window: WindowSummary | None = None


class TriggerRequest(BaseModel):
    action: str = "raise"
