"""Token service for connected accounts.

WHAT:
    Registers platform accounts for a tenant with Fernet-encrypted tokens and
    turns a stored account back into adapter-ready `PlatformCredentials`.

WHY:
    - Keeps encryption logic out of routers and the sync orchestrator.
    - Plaintext tokens exist only while a sync builds its credentials.

REFERENCES:
    - app/security.py (encrypt_secret / decrypt_secret)
    - app/services/unified_sync_service.py (consumes get_platform_credentials)
"""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.models import AccountStatusEnum, ConnectedAccount
from app.security import decrypt_secret, encrypt_secret
from app.services.adapters import PlatformCredentials, PlatformLike, active_status, normalize_platform

logger = logging.getLogger(__name__)


def _label(account: ConnectedAccount) -> str:
    return f"{account.platform.value}:{account.external_account_id}"


def connect_account(
    db: Session,
    tenant_id: UUID,
    platform: PlatformLike,
    external_account_id: str,
    name: str,
    access_token: str,
    refresh_token: Optional[str] = None,
) -> ConnectedAccount:
    """Create or refresh a tenant's connection to one platform account.

    WHAT:
        Looks up (tenant_id, platform, external_account_id); updates tokens,
        name and status if found, otherwise creates the row. The status is
        always reset to the platform's active-equivalent value, so
        reconnecting re-enables a disabled account.
    REFERENCES:
        app/routers/accounts.py

    Raises:
        UnsupportedPlatformError: Unknown platform identifier
    """
    platform_enum = normalize_platform(platform)
    account = (
        db.query(ConnectedAccount)
        .filter(
            ConnectedAccount.tenant_id == tenant_id,
            ConnectedAccount.platform == platform_enum,
            ConnectedAccount.external_account_id == external_account_id,
        )
        .first()
    )

    if account is None:
        account = ConnectedAccount(
            tenant_id=tenant_id,
            platform=platform_enum,
            external_account_id=external_account_id,
        )
        db.add(account)
        action = "Created"
    else:
        action = "Updated"

    label = f"{platform_enum.value}:{external_account_id}"
    account.name = name
    account.status = active_status(platform_enum)
    account.access_token_enc = encrypt_secret(access_token, context=f"{label}:access")
    account.refresh_token_enc = (
        encrypt_secret(refresh_token, context=f"{label}:refresh") if refresh_token else None
    )

    db.commit()
    db.refresh(account)
    logger.info("[TOKEN_SERVICE] %s connected account %s for tenant %s", action, label, tenant_id)
    return account


def get_platform_credentials(account: ConnectedAccount) -> PlatformCredentials:
    """Decrypt an account's tokens into the adapter credential shape.

    For Google Analytics `account_id` carries the GA4 property id, since that
    is what `external_account_id` holds for analytics accounts.

    Raises:
        ValueError: If a stored token cannot be decrypted
    """
    label = _label(account)
    access_token = (
        decrypt_secret(account.access_token_enc, context=f"{label}:access")
        if account.access_token_enc else None
    )
    refresh_token = (
        decrypt_secret(account.refresh_token_enc, context=f"{label}:refresh")
        if account.refresh_token_enc else None
    )
    return PlatformCredentials(
        access_token=access_token,
        refresh_token=refresh_token,
        account_id=account.external_account_id,
    )


def disable_account(db: Session, account: ConnectedAccount) -> ConnectedAccount:
    """Mark an account DISABLED; it is kept for history and excluded from syncs."""
    account.status = AccountStatusEnum.disabled
    db.commit()
    db.refresh(account)
    logger.info("[TOKEN_SERVICE] Disabled account %s", _label(account))
    return account
