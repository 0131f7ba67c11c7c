"""Connected platform account endpoints."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..deps import get_tenant
from ..models import ConnectedAccount, Tenant
from ..services.adapters import UnsupportedPlatformError, normalize_platform
from ..services.token_service import connect_account, disable_account

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/accounts",
    tags=["Accounts"],
    responses={
        400: {"model": schemas.ErrorResponse, "description": "Bad Request"},
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
        404: {"model": schemas.ErrorResponse, "description": "Not Found"},
    },
)


@router.get(
    "",
    response_model=schemas.AccountListResponse,
    summary="List connected accounts",
)
def list_accounts(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
    platform: Optional[str] = Query(None, description="Filter by platform"),
):
    query = db.query(ConnectedAccount).filter(ConnectedAccount.tenant_id == tenant.id)
    if platform:
        try:
            query = query.filter(ConnectedAccount.platform == normalize_platform(platform))
        except UnsupportedPlatformError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    accounts = query.order_by(ConnectedAccount.created_at).all()
    return schemas.AccountListResponse(accounts=accounts, total=len(accounts))


@router.post(
    "",
    response_model=schemas.AccountOut,
    status_code=status.HTTP_201_CREATED,
    summary="Connect a platform account",
    description="""
    Creates the account for this tenant, or refreshes its tokens and
    re-enables it when it already exists. Tokens are stored encrypted.
    """,
)
def create_account(
    payload: schemas.AccountConnect,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    try:
        return connect_account(
            db,
            tenant.id,
            payload.platform,
            payload.external_account_id,
            payload.name,
            payload.access_token,
            payload.refresh_token,
        )
    except UnsupportedPlatformError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post(
    "/{account_id}/disable",
    response_model=schemas.AccountOut,
    summary="Disable a connected account",
)
def disable(
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
    return disable_account(db, account)
