"""Manual sync triggers and sync history.

WHAT:
    Runs the sync orchestrator in-request for one account, one platform or
    everything, and lists recent SyncRun rows for the tenant.
WHY:
    Scheduled syncs run in the ARQ worker; these endpoints cover the
    "sync now" button and operational debugging.
REFERENCES:
    - app/services/unified_sync_service.py
    - app/workers/arq_worker.py
"""

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import desc
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..deps import get_tenant
from ..models import ConnectedAccount, SyncRun, SyncTriggerEnum, Tenant
from ..services.adapters import (
    AdapterFetchError,
    CredentialInvalidError,
    UnsupportedPlatformError,
)
from ..services.unified_sync_service import AccountNotFoundError, UnifiedSyncService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/sync",
    tags=["Sync"],
    responses={
        400: {"model": schemas.ErrorResponse, "description": "Bad Request"},
        404: {"model": schemas.ErrorResponse, "description": "Not Found"},
        502: {"model": schemas.ErrorResponse, "description": "Platform API failure"},
    },
)


@router.post(
    "/all",
    response_model=schemas.SyncAllResponse,
    summary="Sync every platform",
)
def sync_all(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    results = UnifiedSyncService(db).sync_all(trigger=SyncTriggerEnum.manual, tenant_id=tenant.id)
    return {"results": {key: result.to_dict() for key, result in results.items()}}


@router.post(
    "/platforms/{platform}",
    response_model=schemas.PlatformSyncResponse,
    summary="Sync every active account of one platform",
)
def sync_platform(
    platform: str,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    try:
        result = UnifiedSyncService(db).sync_platform(
            platform, trigger=SyncTriggerEnum.manual, tenant_id=tenant.id,
        )
    except UnsupportedPlatformError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return result.to_dict()


@router.post(
    "/accounts/{account_id}",
    response_model=schemas.AccountSyncResponse,
    summary="Sync one connected account",
)
def sync_account(
    account_id: UUID,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    account = (
        db.query(ConnectedAccount)
        .filter(ConnectedAccount.id == account_id, ConnectedAccount.tenant_id == tenant.id)
        .first()
    )
    if not account:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")

    try:
        result = UnifiedSyncService(db).sync_account(
            account.platform, account.id, tenant.id, account=account, trigger=SyncTriggerEnum.manual,
        )
    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except UnsupportedPlatformError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except CredentialInvalidError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid credentials: {e}")
    except AdapterFetchError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return result.to_dict()


@router.get(
    "/runs",
    response_model=List[schemas.SyncRunOut],
    summary="Recent sync runs",
)
def list_sync_runs(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
    limit: int = Query(20, ge=1, le=200),
):
    return (
        db.query(SyncRun)
        .filter(SyncRun.tenant_id == tenant.id)
        .order_by(desc(SyncRun.started_at))
        .limit(limit)
        .all()
    )
