"""Tests for action delivery over webhook and local command channels."""

import asyncio
import json

import httpx

from app.config import Settings
from app.core.actions import ActionContext, ActionExecutor, CommandDelivery, WebhookDelivery
from helpers import RecordingDelivery

CONTEXT = ActionContext(
    action="raise",
    reason="Outbound train arriving Orient Heights (Wonderland)",
    manual=False,
    active=True,
    stop_id="place-orhte",
    stop_name="Orient Heights",
    route_id="Blue",
    triggered_at="2026-03-02T12:00:30.000Z",
    window={"id": "p1:outbound-arrival", "mode": "outbound_arrival"},
)


def webhook(handler, token=""):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookDelivery("https://hooks.test/volume", token=token, client=client)


def test_payload_uses_camel_case_fields():
    payload = CONTEXT.to_payload()
    assert set(payload) == {
        "action", "reason", "manual", "active", "stopId", "stopName", "routeId", "triggeredAt", "window",
    }
    assert payload["stopId"] == "place-orhte"


def test_webhook_posts_json_with_bearer_token():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    outcome = asyncio.run(ActionExecutor([webhook(handler, token="s3cret")]).perform(CONTEXT))
    assert outcome.ok
    assert outcome.delivered == ["webhook"]
    request = seen[0]
    assert request.method == "POST"
    assert request.headers["authorization"] == "Bearer s3cret"
    assert request.headers["content-type"] == "application/json"
    body = json.loads(request.content)
    assert body["action"] == "raise"
    assert body["window"]["id"] == "p1:outbound-arrival"


def test_webhook_without_token_sends_no_authorization():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200)

    asyncio.run(ActionExecutor([webhook(handler)]).perform(CONTEXT))
    assert "authorization" not in seen[0].headers


def test_webhook_error_status_is_reported():
    outcome = asyncio.run(
        ActionExecutor([webhook(lambda r: httpx.Response(500, text="amp offline"))]).perform(CONTEXT)
    )
    assert not outcome.ok
    assert outcome.error == "webhook: webhook failed (500) amp offline"


def test_webhook_transport_error_is_reported():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    outcome = asyncio.run(ActionExecutor([webhook(handler)]).perform(CONTEXT))
    assert not outcome.ok
    assert outcome.error.startswith("webhook: webhook request failed")


def test_command_receives_context_in_environment(tmp_path):
    out = tmp_path / "out.txt"
    command = (
        f'printf "%s|%s|%s|%s" "$MBTA_AUTOMATION_ACTION" "$MBTA_AUTOMATION_STOP_ID" '
        f'"$MBTA_AUTOMATION_ROUTE_ID" "$MBTA_AUTOMATION_ACTIVE" > {out}'
    )
    delivery = CommandDelivery({"raise": command, "restore": ""})

    outcome = asyncio.run(ActionExecutor([delivery]).perform(CONTEXT))
    assert outcome.ok
    assert out.read_text() == "raise|place-orhte|Blue|1"


def test_command_nonzero_exit_is_reported():
    delivery = CommandDelivery({"raise": "echo nope >&2; exit 3"})
    outcome = asyncio.run(ActionExecutor([delivery]).perform(CONTEXT))
    assert not outcome.ok
    assert outcome.error == "command: command exited with 3 nope"


def test_command_timeout_is_reported():
    delivery = CommandDelivery({"raise": "sleep 5"}, timeout=0.2)
    outcome = asyncio.run(ActionExecutor([delivery]).perform(CONTEXT))
    assert not outcome.ok
    assert "timed out" in outcome.error


def test_command_without_entry_for_action_is_skipped():
    delivery = CommandDelivery({"raise": "", "restore": "true"})
    assert not delivery.handles("raise")
    outcome = asyncio.run(ActionExecutor([delivery]).perform(CONTEXT))
    assert outcome.ok
    assert outcome.delivered == []


def test_all_channels_attempted_when_first_fails(tmp_path):
    out = tmp_path / "ran"
    recorder = RecordingDelivery()
    executor = ActionExecutor([
        webhook(lambda r: httpx.Response(503, text="")),
        CommandDelivery({"raise": f"touch {out}"}),
        recorder,
    ])

    outcome = asyncio.run(executor.perform(CONTEXT))
    assert not outcome.ok
    assert outcome.errors == ["webhook: webhook failed (503)"]
    assert outcome.delivered == ["command", "recording"]
    assert out.exists()
    assert recorder.actions() == ["raise"]


def test_executor_from_settings():
    cfg = Settings(
        automation_webhook_url="https://hooks.test/volume",
        automation_raise_command="true",
        automation_restore_command="",
    )
    executor = ActionExecutor.from_settings(cfg)
    assert [s.name for s in executor.strategies] == ["webhook", "command"]
    assert executor.has("webhook")
    assert executor.has("command", "raise")
    assert not executor.has("command", "restore")

    assert ActionExecutor.from_settings(Settings()).strategies == []
