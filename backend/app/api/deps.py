"""FastAPI dependencies resolving the core services held on app.state."""

from fastapi import Request

from app.core.automation import AutomationEngine
from app.core.prediction_cache import PredictionCache
from app.core.refresher import BackgroundRefresher
from app.core.stop_store import StopStore


def get_cache(request: Request) -> PredictionCache:
    return request.app.state.cache


def get_stop_store(request: Request) -> StopStore:
    return request.app.state.stop_store


def get_automation(request: Request) -> AutomationEngine:
    return request.app.state.automation


def get_refresher(request: Request) -> BackgroundRefresher | None:
    return getattr(request.app.state, "refresher", None)
