"""Async client for the MBTA v3 predictions API at api-v3.mbta.com."""

import asyncio
import logging

import httpx

from app.config import settings
from app.core.errors import UpstreamFetchError
from app.core.types import OUTBOUND, Prediction, PredictionSet, now_ms, parse_iso_ms, to_iso

logger = logging.getLogger(__name__)

# Retry configuration (connect failures only; status errors surface immediately)
MAX_RETRIES = 1
RETRY_BACKOFF = [0.5]  # seconds between retries

# Keep error bodies short in logs and API responses
MAX_ERROR_BODY = 500


def _direction_label(direction_id: int | None) -> str:
    return "Outbound" if direction_id == OUTBOUND else "Inbound"


def _minutes_from_now(iso_timestamp: str | None, fetched_ms: int) -> int | None:
    event_ms = parse_iso_ms(iso_timestamp)
    if event_ms is None:
        return None
    return round((event_ms - fetched_ms) / 60_000)


def _index_included(payload: dict) -> dict[tuple[str, str], dict]:
    """Map JSON:API `included` resources by (type, id)."""
    index: dict[tuple[str, str], dict] = {}
    included = payload.get("included") if isinstance(payload, dict) else None
    for item in included if isinstance(included, list) else []:
        if not isinstance(item, dict) or not item.get("type") or not item.get("id"):
            continue
        index[(item["type"], item["id"])] = item
    return index


def parse_predictions(stop_id: str, payload: dict, fetched_ms: int) -> PredictionSet:
    """Flatten a JSON:API predictions document into a PredictionSet."""
    included = _index_included(payload)
    predictions = []
    for item in payload.get("data") or []:
        attributes = item.get("attributes") or {}
        relationships = item.get("relationships") or {}
        route_rel = ((relationships.get("route") or {}).get("data") or {}).get("id")
        trip_rel = ((relationships.get("trip") or {}).get("data") or {}).get("id")

        route = included.get(("route", route_rel)) if route_rel else None
        trip = included.get(("trip", trip_rel)) if trip_rel else None
        route_attrs = (route or {}).get("attributes") or {}
        trip_attrs = (trip or {}).get("attributes") or {}

        arrival = attributes.get("arrival_time") or None
        departure = attributes.get("departure_time") or None
        direction_id = attributes.get("direction_id")

        predictions.append(Prediction(
            id=str(item.get("id", "")),
            direction_id=direction_id,
            direction=_direction_label(direction_id),
            status=attributes.get("status") or None,
            arrival_time=arrival,
            departure_time=departure,
            minutes=_minutes_from_now(arrival or departure, fetched_ms),
            route_id=(route or {}).get("id") or route_rel or None,
            route_name=route_attrs.get("long_name") or route_attrs.get("short_name") or None,
            headsign=trip_attrs.get("headsign") or None,
        ))

    return PredictionSet(stop_id=stop_id, fetched_at=to_iso(fetched_ms), predictions=tuple(predictions))


class MbtaClient:
    """Fetches stop predictions from the MBTA API."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        api_key = settings.mbta_api_key if api_key is None else api_key
        headers = {"Accept": "application/vnd.api+json"}
        if api_key:
            headers["x-api-key"] = api_key
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.mbta_base_url,
            timeout=timeout or settings.fetch_timeout_seconds,
            headers=headers,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _get_with_retry(self, path: str, params: dict) -> httpx.Response:
        """GET request retrying connect failures; raises UpstreamFetchError otherwise."""
        url = str(self._client.base_url.join(path))
        for attempt in range(MAX_RETRIES + 1):
            try:
                resp = await self._client.get(path, params=params)
            except (httpx.ConnectTimeout, httpx.ConnectError) as e:
                if attempt < MAX_RETRIES:
                    wait = RETRY_BACKOFF[attempt]
                    logger.warning(
                        "MBTA %s attempt %d/%d failed (%s), retrying in %.1fs",
                        path, attempt + 1, MAX_RETRIES + 1, type(e).__name__, wait,
                    )
                    await asyncio.sleep(wait)
                    continue
                raise UpstreamFetchError(f"MBTA API unreachable: {e}", url=url) from e
            except httpx.TimeoutException as e:
                raise UpstreamFetchError("MBTA API timed out", status_code=504, url=url) from e
            except httpx.HTTPError as e:
                raise UpstreamFetchError(f"MBTA API request failed: {e}", url=url) from e

            if resp.is_success:
                return resp
            raise UpstreamFetchError(
                f"MBTA API error {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
                url=str(resp.request.url),
                body=resp.text[:MAX_ERROR_BODY],
            )
        raise UpstreamFetchError("MBTA API unreachable")

    async def fetch_predictions(
        self,
        stop_id: str,
        route_type: int | None = None,
        route_id: str | None = None,
        limit: int | None = None,
    ) -> PredictionSet:
        """Fetch upcoming predictions for one stop, sorted by arrival time."""
        params: dict[str, str | int] = {
            "filter[stop]": stop_id,
            "include": "route,trip",
            "sort": "arrival_time",
            "page[limit]": limit or settings.result_limit,
        }
        if route_type is not None:
            params["filter[route_type]"] = route_type
        if route_id:
            params["filter[route]"] = route_id

        resp = await self._get_with_retry("/predictions", params)
        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamFetchError(
                "MBTA API returned invalid JSON", status_code=502, url=str(resp.request.url),
            ) from e
        if not isinstance(data, dict):
            raise UpstreamFetchError(
                "MBTA API returned an unexpected document", status_code=502, url=str(resp.request.url),
            )

        result = parse_predictions(stop_id, data, now_ms())
        logger.debug("Fetched %d predictions for stop %s", len(result.predictions), stop_id)
        return result
