"""Unified Sync Service.

WHAT:
    Pulls campaigns and daily metrics for every connected account through the
    adapter registry and persists them with idempotent upserts.

WHY:
    One orchestrator for all five platforms. Platform specifics stay in the
    adapters; this module owns ordering, persistence, bookkeeping and
    failure isolation.

FLOW (per account, persisted on SyncRun.status):
    PENDING -> FETCHING_CAMPAIGNS -> UPSERTING_CAMPAIGNS -> FETCHING_METRICS
    -> UPSERTING_METRICS -> DONE, FAILED from any step.

FAILURE ISOLATION:
    Each account runs inside its own try/except (and its own session when
    parallel). One account failing never stops its siblings; one platform
    failing never stops the others. Only storage errors reach the caller of
    `sync_all`.

REFERENCES:
    - app/services/adapters/ (registry + adapters)
    - app/services/upserts.py (ON CONFLICT writes)
    - app/workers/arq_worker.py (scheduled jobs)
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.deps import Settings, get_settings
from app.models import (
    Campaign,
    ConnectedAccount,
    PlatformEnum,
    SyncRun,
    SyncStatusEnum,
    SyncTriggerEnum,
)
from app.services.adapters import (
    AdapterRegistry,
    CredentialInvalidError,
    DateRange,
    PlatformLike,
    active_status,
    get_registry,
    normalize_platform,
)
from app.services.token_service import get_platform_credentials
from app.services.upserts import upsert_campaign, upsert_metric, upsert_web_analytics
from app.telemetry import capture_exception
from app.utils.date_range import utc_today

logger = logging.getLogger(__name__)


class AccountNotFoundError(Exception):
    """Raised when the account to sync does not exist for the tenant/platform."""
    pass


# =============================================================================
# RESULTS
# =============================================================================

class AccountSyncResult:
    """Outcome of one successful `sync_account` run."""

    def __init__(self, account_id: UUID, sync_run_id: UUID, campaigns_synced: int = 0, metrics_synced: int = 0):
        self.account_id = account_id
        self.sync_run_id = sync_run_id
        self.campaigns_synced = campaigns_synced
        self.metrics_synced = metrics_synced

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": str(self.account_id),
            "sync_run_id": str(self.sync_run_id),
            "campaigns_synced": self.campaigns_synced,
            "metrics_synced": self.metrics_synced,
        }

    def __repr__(self):
        return (
            f"AccountSyncResult(account={self.account_id}, campaigns={self.campaigns_synced}, "
            f"metrics={self.metrics_synced})"
        )


class PlatformSyncResult:
    """Per-platform batch counters."""

    def __init__(self, platform: PlatformEnum):
        self.platform = platform
        self.success = 0
        self.failed = 0
        self.skipped = 0  # not started because the batch was cancelled
        self.errors: List[Dict[str, str]] = []

    def add_failure(self, error: Exception, account_id: Optional[str] = None) -> None:
        self.failed += 1
        entry = {"error": str(error), "error_type": type(error).__name__}
        if account_id:
            entry["account_id"] = account_id
        self.errors.append(entry)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform.value,
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }

    def __repr__(self):
        return (
            f"PlatformSyncResult(platform={self.platform.value}, success={self.success}, "
            f"failed={self.failed}, skipped={self.skipped})"
        )


# =============================================================================
# SERVICE
# =============================================================================

class UnifiedSyncService:
    """Sync orchestrator bound to one database session.

    Usage:
        service = UnifiedSyncService(db)
        service.sync_account("facebook", account_id, tenant_id)
        results = service.sync_all()
    """

    def __init__(
        self,
        db: Session,
        registry: Optional[AdapterRegistry] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.registry = registry or get_registry()
        self._session_factory = session_factory
        self.settings = settings or get_settings()

    # --- Helpers ---------------------------------------------------------
    @property
    def session_factory(self) -> Callable[[], Session]:
        if self._session_factory is None:
            from app.database import SessionLocal
            self._session_factory = SessionLocal
        return self._session_factory

    def lookback_range(self) -> DateRange:
        """Trailing sync window, inclusive of today (UTC)."""
        today = utc_today()
        return DateRange(start=today - timedelta(days=self.settings.SYNC_LOOKBACK_DAYS), end=today)

    def _set_stage(self, run: SyncRun, status: SyncStatusEnum) -> None:
        run.status = status
        self.db.commit()

    def _load_account(self, platform: PlatformEnum, account_id: UUID, tenant_id: UUID) -> ConnectedAccount:
        account = (
            self.db.query(ConnectedAccount)
            .filter(
                ConnectedAccount.id == account_id,
                ConnectedAccount.tenant_id == tenant_id,
                ConnectedAccount.platform == platform,
            )
            .first()
        )
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found for {platform.value}")
        return account

    # --- Single account -------------------------------------------------
    def sync_account(
        self,
        platform: PlatformLike,
        account_id: UUID,
        tenant_id: UUID,
        account: Optional[ConnectedAccount] = None,
        trigger: SyncTriggerEnum = SyncTriggerEnum.manual,
    ) -> AccountSyncResult:
        """Sync one account end to end.

        WHAT:
            Validates credentials, upserts campaigns (committed before any
            metric fetch), then fetches and upserts daily metrics for the
            lookback window.
        WHY:
            Campaign rows must exist before metrics can reference them, and a
            failure while fetching metrics must not lose the campaign refresh.

        Raises:
            UnsupportedPlatformError: Unknown platform (before any SyncRun)
            AccountNotFoundError: No such account for tenant/platform
            Exception: Whatever failed the run, after it was recorded as FAILED
        """
        platform_enum = normalize_platform(platform)
        adapter = self.registry.get_adapter(platform_enum)
        if account is None:
            account = self._load_account(platform_enum, account_id, tenant_id)

        run = SyncRun(
            tenant_id=tenant_id,
            account_id=account.id,
            platform=platform_enum,
            trigger=trigger,
            status=SyncStatusEnum.pending,
        )
        self.db.add(run)
        self.db.commit()

        logger.info(
            "[SYNC] Starting %s sync for account %s (%s), trigger=%s",
            platform_enum.value, account.id, account.external_account_id, trigger.value,
        )

        try:
            credentials = get_platform_credentials(account)
            if not adapter.validate_credentials(credentials):
                raise CredentialInvalidError(
                    f"Credentials rejected by {platform_enum.value} for account {account.external_account_id}"
                )

            # 1. Campaigns
            self._set_stage(run, SyncStatusEnum.fetching_campaigns)
            payloads = adapter.fetch_campaigns(credentials)

            self._set_stage(run, SyncStatusEnum.upserting_campaigns)
            for payload in payloads:
                upsert_campaign(self.db, tenant_id, platform_enum, payload, account_id=account.id)
            run.campaigns_synced = len(payloads)
            self.db.commit()

            # 2. Metrics
            self._set_stage(run, SyncStatusEnum.fetching_metrics)
            date_range = self.lookback_range()
            metrics_synced = 0

            if adapter.has_campaigns:
                campaigns = (
                    self.db.query(Campaign)
                    .filter(
                        Campaign.tenant_id == tenant_id,
                        Campaign.platform == platform_enum,
                        Campaign.account_id == account.id,
                    )
                    .all()
                )
                fetched = [
                    (campaign.id, adapter.fetch_metrics(credentials, campaign.external_id, date_range))
                    for campaign in campaigns
                ]

                self._set_stage(run, SyncStatusEnum.upserting_metrics)
                for campaign_id, metrics in fetched:
                    for metric in metrics:
                        upsert_metric(self.db, campaign_id, metric)
                        metrics_synced += 1
            else:
                # Analytics: the account id is the property id
                metrics = adapter.fetch_metrics(credentials, credentials.account_id, date_range)

                self._set_stage(run, SyncStatusEnum.upserting_metrics)
                for metric in metrics:
                    upsert_web_analytics(self.db, tenant_id, credentials.account_id, metric)
                    metrics_synced += 1

            now = datetime.utcnow()
            account.last_sync_at = now
            account.last_sync_error = None
            run.metrics_synced = metrics_synced
            run.status = SyncStatusEnum.done
            run.finished_at = now
            self.db.commit()

        except Exception as e:
            self.db.rollback()
            logger.error(
                "[SYNC] %s sync failed for account %s (%s) at %s: %s",
                platform_enum.value, account.id, account.external_account_id, run.status.value, e,
            )
            failed_stage = run.status.value
            account.last_sync_error = str(e)[:2000]
            run.status = SyncStatusEnum.failed
            run.error_message = f"{failed_stage}: {e}"[:2000]
            run.finished_at = datetime.utcnow()
            self.db.commit()
            capture_exception(e, extra={
                "operation": "sync_account",
                "platform": platform_enum.value,
                "account_id": str(account.id),
                "tenant_id": str(tenant_id),
                "stage": failed_stage,
            })
            raise

        logger.info(
            "[SYNC] Finished %s sync for account %s: %d campaigns, %d metric rows",
            platform_enum.value, account.id, run.campaigns_synced, run.metrics_synced,
        )
        return AccountSyncResult(account.id, run.id, run.campaigns_synced, run.metrics_synced)

    # --- Platform batch -------------------------------------------------
    def sync_platform(
        self,
        platform: PlatformLike,
        parallel: Optional[bool] = None,
        cancel_event: Optional[threading.Event] = None,
        trigger: SyncTriggerEnum = SyncTriggerEnum.scheduled,
        tenant_id: Optional[UUID] = None,
    ) -> PlatformSyncResult:
        """Sync every active account of one platform.

        WHAT:
            Loads accounts in the platform's active-equivalent status and runs
            `sync_account` for each, sequentially or on a bounded thread pool.
        WHY:
            Adapter calls are I/O-bound; the pool (MAX_PARALLEL_SYNCS) bounds
            pressure on both the platform API and the database.

        Cancellation is coarse: once `cancel_event` is set no further accounts
        start; running ones finish. With `tenant_id` only that tenant's
        accounts are synced (manual triggers); the scheduled job passes None.
        """
        platform_enum = normalize_platform(platform)
        self.registry.get_adapter(platform_enum)

        query = self.db.query(ConnectedAccount).filter(
            ConnectedAccount.platform == platform_enum,
            ConnectedAccount.status == active_status(platform_enum),
        )
        if tenant_id is not None:
            query = query.filter(ConnectedAccount.tenant_id == tenant_id)
        accounts = query.all()

        parallel = self.settings.SYNC_PARALLEL if parallel is None else parallel
        logger.info(
            "[SYNC] Syncing %d active %s accounts (parallel=%s)",
            len(accounts), platform_enum.value, parallel,
        )

        if parallel and len(accounts) > 1:
            result = self._sync_accounts_parallel(platform_enum, accounts, cancel_event, trigger)
        else:
            result = self._sync_accounts_sequential(platform_enum, accounts, cancel_event, trigger)

        logger.info(
            "[SYNC] %s batch complete: %d success, %d failed, %d skipped",
            platform_enum.value, result.success, result.failed, result.skipped,
        )
        return result

    def _sync_accounts_sequential(
        self,
        platform: PlatformEnum,
        accounts: List[ConnectedAccount],
        cancel_event: Optional[threading.Event],
        trigger: SyncTriggerEnum,
    ) -> PlatformSyncResult:
        result = PlatformSyncResult(platform)

        for account in accounts:
            if cancel_event is not None and cancel_event.is_set():
                result.skipped += 1
                continue
            try:
                self.sync_account(platform, account.id, account.tenant_id, account=account, trigger=trigger)
                result.success += 1
            except SQLAlchemyError:
                raise
            except Exception as e:
                logger.error("[SYNC] Account %s failed: %s", account.id, e)
                result.add_failure(e, str(account.id))

        return result

    def _sync_accounts_parallel(
        self,
        platform: PlatformEnum,
        accounts: List[ConnectedAccount],
        cancel_event: Optional[threading.Event],
        trigger: SyncTriggerEnum,
    ) -> PlatformSyncResult:
        """Sync accounts on a thread pool, one session per worker thread."""
        result = PlatformSyncResult(platform)
        account_infos = [(account.id, account.tenant_id) for account in accounts]

        def sync_single_account(account_id: UUID, tenant_id: UUID) -> bool:
            """Returns False when skipped because of cancellation."""
            if cancel_event is not None and cancel_event.is_set():
                return False
            local_db = self.session_factory()
            try:
                worker = UnifiedSyncService(
                    local_db, registry=self.registry, session_factory=self._session_factory, settings=self.settings,
                )
                worker.sync_account(platform, account_id, tenant_id, trigger=trigger)
                return True
            finally:
                local_db.close()

        with ThreadPoolExecutor(max_workers=self.settings.MAX_PARALLEL_SYNCS) as executor:
            futures = {
                executor.submit(sync_single_account, account_id, tenant_id): account_id
                for account_id, tenant_id in account_infos
            }

            for future in as_completed(futures):
                account_id = futures[future]
                try:
                    if future.result():
                        result.success += 1
                    else:
                        result.skipped += 1
                except SQLAlchemyError:
                    raise
                except Exception as e:
                    logger.error("[SYNC] Parallel sync failed for account %s: %s", account_id, e)
                    result.add_failure(e, str(account_id))

        return result

    # --- Everything -----------------------------------------------------
    def sync_all(
        self,
        parallel: Optional[bool] = None,
        cancel_event: Optional[threading.Event] = None,
        trigger: SyncTriggerEnum = SyncTriggerEnum.scheduled,
        tenant_id: Optional[UUID] = None,
    ) -> Dict[str, PlatformSyncResult]:
        """Sync every registered platform.

        A failing platform batch is recorded and does not affect the others.

        Raises:
            SQLAlchemyError: Storage failures propagate
        """
        results: Dict[str, PlatformSyncResult] = {}

        for platform in self.registry.supported_platforms():
            try:
                results[platform.value] = self.sync_platform(
                    platform, parallel=parallel, cancel_event=cancel_event, trigger=trigger, tenant_id=tenant_id,
                )
            except SQLAlchemyError:
                raise
            except Exception as e:
                logger.error("[SYNC] Platform batch %s failed: %s", platform.value, e)
                capture_exception(e, extra={"operation": "sync_platform", "platform": platform.value})
                failed = PlatformSyncResult(platform)
                failed.add_failure(e)
                results[platform.value] = failed

        logger.info(
            "[SYNC] sync_all complete: %s",
            ", ".join(f"{k}={v.success}/{v.success + v.failed}" for k, v in results.items()),
        )
        return results
