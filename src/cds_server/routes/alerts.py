"""Clinical alert endpoints — list a patient's alerts and acknowledge one."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from cds_knowledge.engine import ClinicalDecisionEngine
from cds_knowledge.models.results import ClinicalAlertView

from cds_server.dependencies import Caller, get_caller, get_db, get_engine

router = APIRouter(tags=["alerts"])


class AcknowledgeAlertRequest(BaseModel):
    note: str | None = None


@router.get("/patients/{patient_id}/alerts")
async def list_patient_alerts(
    patient_id: str,
    encounter_id: str | None = Query(None),
    include_acknowledged: bool = Query(False),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> list[ClinicalAlertView]:
    """Alerts ordered by severity (CRITICAL first), then newest first."""
    return await engine.get_patient_alerts(
        db,
        organization_id=caller.organization_id,
        patient_id=patient_id,
        encounter_id=encounter_id,
        include_acknowledged=include_acknowledged,
    )


@router.post("/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(
    alert_id: str,
    body: AcknowledgeAlertRequest | None = None,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> ClinicalAlertView:
    return await engine.acknowledge_alert(
        db,
        organization_id=caller.organization_id,
        actor_id=caller.user_id,
        alert_id=alert_id,
        note=body.note if body else None,
    )
