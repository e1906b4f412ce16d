"""Volume automation status and manual trigger endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_automation
from app.core.automation import AutomationEngine
from app.core.errors import InvalidActionError
from app.schemas.automation import AutomationStatus, TriggerRequest

router = APIRouter(prefix="/api/automation", tags=["automation"])


@router.get("", response_model=AutomationStatus)
async def get_status(automation: AutomationEngine = Depends(get_automation)):
    return automation.status()


@router.post("/trigger", response_model=AutomationStatus)
async def trigger(body: TriggerRequest, automation: AutomationEngine = Depends(get_automation)):
    """Run raise/restore immediately, bypassing window evaluation."""
    try:
        return await automation.trigger_manual(body.action)
    except InvalidActionError as e:
        raise HTTPException(status_code=400, detail=str(e))
