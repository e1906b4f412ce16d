"""Deliver automation actions (raise/restore) to the outside world.

The executor never decides when to act; it only carries an action out over
every configured delivery channel and reports what happened. Channels are
attempted in order and independently: one failing neither stops nor rolls
back the others.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field

import httpx
import orjson

from app.core.errors import ActionDeliveryError

logger = logging.getLogger(__name__)

RAISE = "raise"
RESTORE = "restore"
ACTIONS = (RAISE, RESTORE)

ENV_PREFIX = "MBTA_AUTOMATION_"
MAX_OUTPUT = 300


@dataclass(frozen=True)
class ActionContext:
    action: str
    reason: str
    manual: bool
    active: bool
    stop_id: str
    stop_name: str
    route_id: str
    triggered_at: str
    window: dict | None = None

    def to_payload(self) -> dict:
        return {
            "action": self.action,
            "reason": self.reason,
            "manual": self.manual,
            "active": self.active,
            "stopId": self.stop_id,
            "stopName": self.stop_name,
            "routeId": self.route_id,
            "triggeredAt": self.triggered_at,
            "window": self.window,
        }

    def to_env(self) -> dict[str, str]:
        return {
            f"{ENV_PREFIX}ACTION": self.action,
            f"{ENV_PREFIX}REASON": self.reason,
            f"{ENV_PREFIX}MANUAL": "1" if self.manual else "0",
            f"{ENV_PREFIX}ACTIVE": "1" if self.active else "0",
            f"{ENV_PREFIX}STOP_ID": self.stop_id,
            f"{ENV_PREFIX}STOP_NAME": self.stop_name,
            f"{ENV_PREFIX}ROUTE_ID": self.route_id,
            f"{ENV_PREFIX}TRIGGERED_AT": self.triggered_at,
            f"{ENV_PREFIX}WINDOW": orjson.dumps(self.window).decode() if self.window else "",
        }


@dataclass
class ActionOutcome:
    action: str
    delivered: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def error(self) -> str | None:
        return "; ".join(self.errors) if self.errors else None


class DeliveryStrategy:
    """One way of carrying out an action."""

    name = "delivery"

    def handles(self, action: str) -> bool:
        return True

    async def deliver(self, context: ActionContext) -> None:
        raise NotImplementedError


class WebhookDelivery(DeliveryStrategy):
    """POST the action as JSON to a callback URL."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        token: str = "",
        timeout: float = 8.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.token = token
        self.timeout = timeout
        self._client = client

    async def deliver(self, context: ActionContext) -> None:
        headers = {"content-type": "application/json"}
        if self.token:
            headers["authorization"] = f"Bearer {self.token}"
        body = orjson.dumps(context.to_payload())

        try:
            if self._client is not None:
                resp = await self._client.post(self.url, content=body, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(self.url, content=body, headers=headers)
        except httpx.HTTPError as e:
            raise ActionDeliveryError(f"webhook request failed: {type(e).__name__} {e}".strip()) from e

        if not resp.is_success:
            raise ActionDeliveryError(f"webhook failed ({resp.status_code}) {resp.text[:MAX_OUTPUT]}".strip())


class CommandDelivery(DeliveryStrategy):
    """Run a local shell command per action with the context in its environment."""

    name = "command"

    def __init__(self, commands: dict[str, str], timeout: float = 8.0) -> None:
        self.commands = {action: cmd for action, cmd in commands.items() if cmd}
        self.timeout = timeout

    def handles(self, action: str) -> bool:
        return action in self.commands

    async def deliver(self, context: ActionContext) -> None:
        command = self.commands[context.action]
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env={**os.environ, **context.to_env()},
        )
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise ActionDeliveryError(f"command timed out after {self.timeout:g}s") from e

        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip()[:MAX_OUTPUT]
            raise ActionDeliveryError(f"command exited with {proc.returncode} {detail}".strip())


class ActionExecutor:
    """Runs every applicable delivery strategy and aggregates their outcomes."""

    def __init__(self, strategies: list[DeliveryStrategy] | None = None) -> None:
        self.strategies = strategies or []

    @classmethod
    def from_settings(cls, cfg) -> "ActionExecutor":
        strategies: list[DeliveryStrategy] = []
        if cfg.automation_webhook_url:
            strategies.append(WebhookDelivery(
                cfg.automation_webhook_url,
                token=cfg.automation_webhook_token,
                timeout=cfg.automation_command_timeout_seconds,
            ))
        if cfg.automation_raise_command or cfg.automation_restore_command:
            strategies.append(CommandDelivery(
                {RAISE: cfg.automation_raise_command, RESTORE: cfg.automation_restore_command},
                timeout=cfg.automation_command_timeout_seconds,
            ))
        return cls(strategies)

    def has(self, name: str, action: str | None = None) -> bool:
        return any(
            s.name == name and (action is None or s.handles(action)) for s in self.strategies
        )

    async def perform(self, context: ActionContext) -> ActionOutcome:
        outcome = ActionOutcome(action=context.action)
        for strategy in self.strategies:
            if not strategy.handles(context.action):
                continue
            try:
                await strategy.deliver(context)
            except ActionDeliveryError as e:
                outcome.errors.append(f"{strategy.name}: {e}")
            except Exception as e:
                logger.exception("Unexpected %s delivery failure for %s", strategy.name, context.action)
                outcome.errors.append(f"{strategy.name}: {e}")
            else:
                outcome.delivered.append(strategy.name)

        if outcome.ok:
            logger.info("Action %s delivered via %s", context.action, ", ".join(outcome.delivered) or "nothing")
        else:
            logger.warning("Action %s delivery failed: %s", context.action, outcome.error)
        return outcome
