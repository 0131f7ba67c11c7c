"""Alert rule management, alert lifecycle and on-demand evaluation."""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..deps import get_tenant
from ..models import AlertSeverityEnum, AlertStatusEnum, Tenant
from ..services.alert_service import (
    AlertNotFoundError,
    AlertService,
    AlertTransitionError,
    PresetRuleDeleteError,
    RuleNotFoundError,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/alerts",
    tags=["Alerts"],
    responses={
        404: {"model": schemas.ErrorResponse, "description": "Not Found"},
        409: {"model": schemas.ErrorResponse, "description": "Conflict"},
    },
)


def _not_found(e: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


def _conflict(e: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


# --- Rules -----------------------------------------------------------------

@router.get("/rules", response_model=List[schemas.AlertRuleOut])
def list_rules(db: Session = Depends(get_db), tenant: Tenant = Depends(get_tenant)):
    return AlertService(db).get_rules(tenant.id)


@router.post("/rules/presets", response_model=List[schemas.AlertRuleOut])
def initialize_presets(db: Session = Depends(get_db), tenant: Tenant = Depends(get_tenant)):
    return AlertService(db).initialize_preset_rules(tenant.id)


@router.post("/rules", response_model=schemas.AlertRuleOut, status_code=status.HTTP_201_CREATED)
def create_rule(
    payload: schemas.AlertRuleCreate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    return AlertService(db).create_rule(
        tenant.id,
        name=payload.name,
        metric=payload.metric,
        operator=payload.operator,
        threshold=payload.threshold,
        severity=payload.severity,
        description=payload.description,
    )


@router.patch("/rules/{rule_id}", response_model=schemas.AlertRuleOut)
def update_rule(
    rule_id: UUID,
    payload: schemas.AlertRuleUpdate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    try:
        return AlertService(db).update_rule(rule_id, tenant.id, payload.model_dump(exclude_unset=True))
    except RuleNotFoundError as e:
        raise _not_found(e)


@router.post("/rules/{rule_id}/toggle", response_model=schemas.AlertRuleOut)
def toggle_rule(rule_id: UUID, db: Session = Depends(get_db), tenant: Tenant = Depends(get_tenant)):
    try:
        return AlertService(db).toggle_rule(rule_id, tenant.id)
    except RuleNotFoundError as e:
        raise _not_found(e)


@router.delete("/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rule(rule_id: UUID, db: Session = Depends(get_db), tenant: Tenant = Depends(get_tenant)):
    try:
        AlertService(db).delete_rule(rule_id, tenant.id)
    except RuleNotFoundError as e:
        raise _not_found(e)
    except PresetRuleDeleteError as e:
        raise _conflict(e)


# --- Alerts ----------------------------------------------------------------

@router.get("", response_model=List[schemas.AlertOut])
def list_alerts(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
    alert_status: Optional[AlertStatusEnum] = Query(None, alias="status"),
    severity: Optional[AlertSeverityEnum] = Query(None),
    limit: int = Query(50, ge=1, le=500),
):
    return AlertService(db).get_alerts(tenant.id, status=alert_status, severity=severity, limit=limit)


@router.get("/count", response_model=schemas.AlertCountResponse)
def count_open_alerts(db: Session = Depends(get_db), tenant: Tenant = Depends(get_tenant)):
    return AlertService(db).get_open_alerts_count(tenant.id)


@router.post("/resolve-all", response_model=schemas.ResolveAllResponse)
def resolve_all(db: Session = Depends(get_db), tenant: Tenant = Depends(get_tenant)):
    return {"resolved": AlertService(db).resolve_all_alerts(tenant.id)}


@router.post("/check", response_model=schemas.AlertCheckResponse)
def check_alerts(db: Session = Depends(get_db), tenant: Tenant = Depends(get_tenant)):
    created = AlertService(db).check_alerts(tenant.id)
    return {"created": len(created), "alerts": created}


@router.post("/{alert_id}/acknowledge", response_model=schemas.AlertOut)
def acknowledge(alert_id: UUID, db: Session = Depends(get_db), tenant: Tenant = Depends(get_tenant)):
    try:
        return AlertService(db).acknowledge_alert(alert_id, tenant.id)
    except AlertNotFoundError as e:
        raise _not_found(e)
    except AlertTransitionError as e:
        raise _conflict(e)


@router.post("/{alert_id}/resolve", response_model=schemas.AlertOut)
def resolve(alert_id: UUID, db: Session = Depends(get_db), tenant: Tenant = Depends(get_tenant)):
    try:
        return AlertService(db).resolve_alert(alert_id, tenant.id)
    except AlertNotFoundError as e:
        raise _not_found(e)
    except AlertTransitionError as e:
        raise _conflict(e)
