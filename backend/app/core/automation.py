"""Window-driven volume automation.

A two-state machine (armed -> active -> armed) evaluated on a fixed tick.
Each tick reads the automation stop's predictions through the shared cache,
derives windows, and raises on entering a window / restores on leaving one.
`active` is the state intended by the windows; `confirmed_active` is the
state last confirmed by a successful delivery. When a delivery fails the two
diverge and the next tick re-attempts the action matching `active`.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Callable

from app.core.actions import ACTIONS, RAISE, RESTORE, ActionContext, ActionExecutor, ActionOutcome
from app.core.errors import InvalidActionError, UpstreamFetchError
from app.core.prediction_cache import PredictionCache
from app.core.types import CacheKey, now_ms, to_iso
from app.core.windows import build_windows, select_windows

logger = logging.getLogger(__name__)

# Lower bounds applied to configured values
MIN_POLL_SECONDS = 3
MIN_PASS_SECONDS = 10

MANUAL_REASON = "manual-test"
RESTORE_REASON = "Train window elapsed"


@dataclass
class AutomationConfig:
    stop_id: str = "place-orhte"
    stop_name: str = "Orient Heights"
    route_type: int | None = 1
    route_id: str = "Blue"
    lead_minutes: float = 1.15
    pass_seconds: float = 90
    poll_seconds: float = 10
    enabled: bool = True

    def __post_init__(self) -> None:
        self.poll_seconds = max(MIN_POLL_SECONDS, self.poll_seconds)
        self.lead_minutes = max(0.0, self.lead_minutes)
        self.pass_seconds = max(MIN_PASS_SECONDS, self.pass_seconds)

    @classmethod
    def from_settings(cls, cfg) -> "AutomationConfig":
        return cls(
            stop_id=cfg.automation_stop_id,
            stop_name=cfg.automation_stop_name,
            route_type=cfg.automation_route_type,
            route_id=cfg.automation_route_id,
            lead_minutes=cfg.automation_lead_minutes,
            pass_seconds=cfg.automation_pass_seconds,
            poll_seconds=cfg.automation_poll_seconds,
            enabled=cfg.automation_enabled,
        )

    @property
    def lead_ms(self) -> int:
        return round(self.lead_minutes * 60_000)

    @property
    def pass_ms(self) -> int:
        return round(self.pass_seconds * 1000)

    @property
    def cache_key(self) -> CacheKey:
        return CacheKey.of(self.stop_id, self.route_type, self.route_id)


@dataclass
class AutomationState:
    active: bool = False
    confirmed_active: bool = False
    last_error: str | None = None
    last_evaluated_at: str | None = None
    last_changed_at: str | None = None
    last_action: str | None = None
    last_action_at: str | None = None
    last_action_error: str | None = None
    current_window: dict | None = None
    next_window: dict | None = None


class AutomationEngine:
    """Owns the automation state and the tick/manual-trigger paths that mutate it."""

    def __init__(
        self,
        cache: PredictionCache,
        executor: ActionExecutor,
        config: AutomationConfig | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.cache = cache
        self.executor = executor
        self.config = config or AutomationConfig()
        self.clock = clock
        self.state = AutomationState()
        self._ticking = False

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    async def tick(self, now: int | None = None) -> None:
        """One evaluation: fetch, derive windows, transition at most once."""
        if not self.enabled:
            return
        if self._ticking:
            logger.debug("Automation tick skipped: previous tick still running")
            return
        self._ticking = True
        try:
            await self._evaluate(self.clock() if now is None else now)
        finally:
            self._ticking = False

    async def _evaluate(self, now: int) -> None:
        cfg = self.config
        try:
            result = await self.cache.get(cfg.cache_key, allow_stale=True)
        except UpstreamFetchError as e:
            self.state.last_error = str(e)
            self.state.last_evaluated_at = to_iso(now)
            logger.warning("Automation evaluation skipped, predictions unavailable: %s", e)
            return

        windows = build_windows(
            result.payload.predictions, cfg.route_id, cfg.lead_ms, cfg.pass_ms, cfg.stop_name,
        )
        current, upcoming = select_windows(windows, now)

        state = self.state
        state.last_error = None
        state.last_evaluated_at = to_iso(now)
        state.current_window = current.to_summary() if current else None
        state.next_window = upcoming.to_summary() if upcoming else None

        if current and not state.active:
            state.active = True
            state.last_changed_at = to_iso(now)
            logger.info("Entering window %s: %s", current.id, current.summary)
            await self._run_action(RAISE, current.summary, state.current_window, now=now)
        elif not current and state.active:
            state.active = False
            state.last_changed_at = to_iso(now)
            logger.info("Window elapsed, restoring")
            await self._run_action(RESTORE, RESTORE_REASON, None, now=now)
        elif state.active != state.confirmed_active:
            # A previous delivery failed; retry the action matching the intended state
            if state.active:
                logger.info("Retrying raise for window %s", current.id)
                await self._run_action(RAISE, current.summary, state.current_window, now=now)
            else:
                logger.info("Retrying restore")
                await self._run_action(RESTORE, RESTORE_REASON, None, now=now)

    async def trigger_manual(self, action: str = RAISE) -> dict:
        """Run raise/restore directly, bypassing windows; returns the status snapshot."""
        normalized = str(action or "").strip().lower()
        if normalized not in ACTIONS:
            raise InvalidActionError('action must be "raise" or "restore"')
        await self._run_action(normalized, MANUAL_REASON, None, manual=True)
        return self.status()

    async def _run_action(
        self,
        action: str,
        reason: str,
        window: dict | None,
        manual: bool = False,
        now: int | None = None,
    ) -> ActionOutcome:
        cfg = self.config
        state = self.state
        context = ActionContext(
            action=action,
            reason=reason,
            manual=manual,
            active=state.active,
            stop_id=cfg.stop_id,
            stop_name=cfg.stop_name,
            route_id=cfg.route_id,
            triggered_at=to_iso(self.clock() if now is None else now),
            window=window,
        )

        state.last_action = action
        state.last_action_at = context.triggered_at
        state.last_action_error = None

        outcome = await self.executor.perform(context)
        if not outcome.ok:
            state.last_action_error = outcome.error
            state.last_error = outcome.error
        elif not manual:
            state.confirmed_active = action == RAISE
        return outcome

    def status(self) -> dict:
        cfg = self.config
        state = asdict(self.state)
        return {
            "enabled": cfg.enabled,
            "active": state["active"],
            "confirmedActive": state["confirmed_active"],
            "config": {
                "stopId": cfg.stop_id,
                "stopName": cfg.stop_name,
                "routeId": cfg.route_id,
                "leadMinutes": cfg.lead_minutes,
                "passSeconds": cfg.pass_seconds,
                "pollSeconds": cfg.poll_seconds,
                "hasWebhook": self.executor.has("webhook"),
                "hasRaiseCommand": self.executor.has("command", RAISE),
                "hasRestoreCommand": self.executor.has("command", RESTORE),
            },
            "lastError": state["last_error"],
            "lastEvaluatedAt": state["last_evaluated_at"],
            "lastChangedAt": state["last_changed_at"],
            "lastAction": state["last_action"],
            "lastActionAt": state["last_action_at"],
            "lastActionError": state["last_action_error"],
            "currentWindow": state["current_window"],
            "nextWindow": state["next_window"],
        }
