"""Tests for UnifiedSyncService.

WHAT: Per-account sync state machine, idempotent upserts, per-account
      failure isolation (sequential and thread pool), cancellation.
WHY:  These are the guarantees the dashboard and alert evaluator depend on.
"""

import threading
from datetime import timedelta
from types import SimpleNamespace

import pytest

from app.models import (
    AccountStatusEnum,
    Campaign,
    CampaignStatusEnum,
    ConnectedAccount,
    Metric,
    PlatformEnum,
    SyncRun,
    SyncStatusEnum,
    SyncTriggerEnum,
    WebAnalyticsDaily,
)
from app.services.adapters import (
    AdapterFetchError,
    AdapterRegistry,
    CampaignPayload,
    CredentialInvalidError,
    DailyMetric,
    UnsupportedPlatformError,
)
from app.services.unified_sync_service import AccountNotFoundError, UnifiedSyncService


def _settings(**overrides):
    values = dict(
        SYNC_LOOKBACK_DAYS=30,
        SYNC_PARALLEL=False,
        MAX_PARALLEL_SYNCS=3,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _service(db, adapter, **kwargs):
    registry = AdapterRegistry({adapter.platform: adapter})
    return UnifiedSyncService(db, registry=registry, settings=_settings(), **kwargs)


@pytest.fixture(autouse=True)
def no_sentry(monkeypatch):
    captured = []
    monkeypatch.setattr(
        "app.services.unified_sync_service.capture_exception",
        lambda e, extra=None: captured.append((e, extra)),
    )
    return captured


class TestSyncAccount:

    def test_campaigns_and_metrics_are_persisted(self, test_db_session, make_account, fake_adapter_cls, recent_days):
        account = make_account(external_account_id="act_1")
        adapter = fake_adapter_cls(
            campaigns={"act_1": [CampaignPayload("c1", "Spring Sale", CampaignStatusEnum.active, budget=500.0)]},
            metrics={"c1": [DailyMetric.from_counters(d, 1000, 50, 100.0, 5, 400.0) for d in recent_days]},
        )

        result = _service(test_db_session, adapter).sync_account(
            PlatformEnum.facebook, account.id, account.tenant_id
        )

        assert result.campaigns_synced == 1
        assert result.metrics_synced == 3

        campaign = test_db_session.query(Campaign).one()
        assert campaign.account_id == account.id
        assert campaign.budget == 500.0
        metrics = test_db_session.query(Metric).filter(Metric.campaign_id == campaign.id).all()
        assert len(metrics) == 3
        assert all(m.ctr == pytest.approx(5.0) and m.roas == pytest.approx(4.0) for m in metrics)

        run = test_db_session.query(SyncRun).one()
        assert run.status == SyncStatusEnum.done
        assert run.trigger == SyncTriggerEnum.manual
        assert run.finished_at is not None

        test_db_session.refresh(account)
        assert account.last_sync_at is not None
        assert account.last_sync_error is None

    def test_resync_is_idempotent_and_last_write_wins(self, test_db_session, make_account, fake_adapter_cls, today):
        account = make_account(external_account_id="act_1")
        adapter = fake_adapter_cls(
            campaigns={"act_1": [CampaignPayload("c1", "Old name", CampaignStatusEnum.active)]},
            metrics={"c1": [DailyMetric.from_counters(today, 100, 10, 10.0, 1, 20.0)]},
        )
        service = _service(test_db_session, adapter)
        service.sync_account(PlatformEnum.facebook, account.id, account.tenant_id)

        adapter.campaigns["act_1"] = [CampaignPayload("c1", "New name", CampaignStatusEnum.paused)]
        adapter.metrics["c1"] = [DailyMetric.from_counters(today, 200, 30, 15.0, 2, 60.0)]
        service.sync_account(PlatformEnum.facebook, account.id, account.tenant_id)

        test_db_session.expire_all()
        campaign = test_db_session.query(Campaign).one()
        assert campaign.name == "New name"
        assert campaign.status == CampaignStatusEnum.paused

        metric = test_db_session.query(Metric).one()
        assert metric.impressions == 200
        assert metric.clicks == 30
        assert metric.spend == pytest.approx(15.0)
        assert metric.ctr == pytest.approx(15.0)
        assert metric.roas == pytest.approx(4.0)
        assert test_db_session.query(SyncRun).count() == 2

    def test_metrics_outside_lookback_window_are_not_written(self, test_db_session, make_account, fake_adapter_cls, today):
        account = make_account(external_account_id="act_1")
        adapter = fake_adapter_cls(
            campaigns={"act_1": [CampaignPayload("c1", "C", CampaignStatusEnum.active)]},
            metrics={"c1": [
                DailyMetric.from_counters(today - timedelta(days=45), 100, 1, 1.0),
                DailyMetric.from_counters(today, 100, 1, 1.0),
            ]},
        )
        _service(test_db_session, adapter).sync_account(PlatformEnum.facebook, account.id, account.tenant_id)

        assert [m.date for m in test_db_session.query(Metric).all()] == [today]

    def test_rejected_credentials_fail_the_run(self, test_db_session, make_account, fake_adapter_cls, no_sentry):
        account = make_account(external_account_id="act_1")
        adapter = fake_adapter_cls(valid=False)

        with pytest.raises(CredentialInvalidError):
            _service(test_db_session, adapter).sync_account(PlatformEnum.facebook, account.id, account.tenant_id)

        run = test_db_session.query(SyncRun).one()
        assert run.status == SyncStatusEnum.failed
        assert run.error_message.startswith("PENDING:")
        test_db_session.refresh(account)
        assert "Credentials rejected" in account.last_sync_error
        assert len(no_sentry) == 1
        assert no_sentry[0][1]["account_id"] == str(account.id)

    def test_metric_fetch_failure_keeps_committed_campaigns(self, test_db_session, make_account, fake_adapter_cls):
        account = make_account(external_account_id="act_1")
        adapter = fake_adapter_cls(
            campaigns={"act_1": [CampaignPayload("c1", "C", CampaignStatusEnum.active)]},
        )

        def broken_metrics(credentials, campaign_id, date_range):
            raise AdapterFetchError("insights timed out")

        adapter.fetch_metrics = broken_metrics

        with pytest.raises(AdapterFetchError):
            _service(test_db_session, adapter).sync_account(PlatformEnum.facebook, account.id, account.tenant_id)

        assert test_db_session.query(Campaign).count() == 1
        assert test_db_session.query(Metric).count() == 0
        run = test_db_session.query(SyncRun).one()
        assert run.status == SyncStatusEnum.failed
        assert run.error_message.startswith("FETCHING_METRICS:")

    def test_analytics_adapter_writes_web_analytics_rows(self, test_db_session, make_account, fake_adapter_cls, recent_days):
        account = make_account(platform=PlatformEnum.google_analytics, external_account_id="properties-123")
        adapter = fake_adapter_cls(
            platform=PlatformEnum.google_analytics,
            has_campaigns=False,
            metrics={"properties-123": [
                DailyMetric.from_counters(d, sessions=100, active_users=80, page_views=300) for d in recent_days
            ]},
        )

        result = _service(test_db_session, adapter).sync_account(
            PlatformEnum.google_analytics, account.id, account.tenant_id
        )

        assert result.campaigns_synced == 0
        assert result.metrics_synced == 3
        rows = test_db_session.query(WebAnalyticsDaily).all()
        assert {r.property_id for r in rows} == {"properties-123"}
        assert sum(r.sessions for r in rows) == 300

    def test_unknown_platform_raises_before_any_run(self, test_db_session, make_account, fake_adapter_cls):
        account = make_account()
        with pytest.raises(UnsupportedPlatformError):
            _service(test_db_session, fake_adapter_cls()).sync_account("myspace", account.id, account.tenant_id)
        assert test_db_session.query(SyncRun).count() == 0

    def test_missing_account_raises(self, test_db_session, tenant, fake_adapter_cls):
        import uuid

        with pytest.raises(AccountNotFoundError):
            _service(test_db_session, fake_adapter_cls()).sync_account(
                PlatformEnum.facebook, uuid.uuid4(), tenant.id
            )


class TestSyncPlatform:

    def test_one_failing_account_does_not_affect_siblings(self, test_db_session, make_account, fake_adapter_cls, today):
        accounts = [make_account(external_account_id=f"act_{i}") for i in (1, 2, 3)]
        adapter = fake_adapter_cls(
            campaigns={
                f"act_{i}": [CampaignPayload(f"c{i}", f"Campaign {i}", CampaignStatusEnum.active)]
                for i in (1, 2, 3)
            },
            metrics={f"c{i}": [DailyMetric.from_counters(today, 100, 5, 10.0)] for i in (1, 2, 3)},
            fail_accounts={"act_2"},
        )

        result = _service(test_db_session, adapter).sync_platform(PlatformEnum.facebook, parallel=False)

        assert (result.success, result.failed, result.skipped) == (2, 1, 0)
        assert result.errors[0]["account_id"] == str(accounts[1].id)
        assert result.errors[0]["error_type"] == "AdapterFetchError"
        assert {c.external_id for c in test_db_session.query(Campaign).all()} == {"c1", "c3"}
        assert test_db_session.query(Metric).count() == 2

    def test_only_active_accounts_are_synced(self, test_db_session, make_account, fake_adapter_cls):
        active = make_account(external_account_id="act_1")
        disabled = make_account(external_account_id="act_2")
        disabled.status = AccountStatusEnum.disabled
        test_db_session.commit()
        adapter = fake_adapter_cls()

        result = _service(test_db_session, adapter).sync_platform(PlatformEnum.facebook, parallel=False)

        assert result.success == 1
        assert adapter.calls == [active.external_account_id]

    def test_google_ads_accounts_use_enabled_status(self, test_db_session, make_account, fake_adapter_cls):
        account = make_account(platform=PlatformEnum.google_ads, external_account_id="1234567890")
        assert account.status == AccountStatusEnum.enabled

        adapter = fake_adapter_cls(platform=PlatformEnum.google_ads)
        result = _service(test_db_session, adapter).sync_platform("google-ads", parallel=False)

        assert result.success == 1

    def test_cancelled_batch_skips_remaining_accounts(self, test_db_session, make_account, fake_adapter_cls):
        for i in (1, 2):
            make_account(external_account_id=f"act_{i}")
        cancel = threading.Event()
        cancel.set()

        result = _service(test_db_session, fake_adapter_cls()).sync_platform(
            PlatformEnum.facebook, parallel=False, cancel_event=cancel
        )

        assert (result.success, result.failed, result.skipped) == (0, 0, 2)
        assert test_db_session.query(SyncRun).count() == 0

    def test_parallel_sync_isolates_failures(self, file_session_factory, fake_adapter_cls, today):
        from app.models import Tenant
        from app.services.token_service import connect_account

        db = file_session_factory()
        try:
            tenant = Tenant(name="Parallel")
            db.add(tenant)
            db.commit()
            for i in (1, 2, 3):
                connect_account(db, tenant.id, PlatformEnum.facebook, f"act_{i}", f"Account {i}", "token")

            adapter = fake_adapter_cls(
                campaigns={
                    f"act_{i}": [CampaignPayload(f"c{i}", f"Campaign {i}", CampaignStatusEnum.active)]
                    for i in (1, 2, 3)
                },
                metrics={f"c{i}": [DailyMetric.from_counters(today, 100, 5, 10.0)] for i in (1, 2, 3)},
                fail_accounts={"act_2"},
            )
            service = UnifiedSyncService(
                db,
                registry=AdapterRegistry({PlatformEnum.facebook: adapter}),
                session_factory=file_session_factory,
                settings=_settings(SYNC_PARALLEL=True),
            )

            result = service.sync_platform(PlatformEnum.facebook)

            assert (result.success, result.failed) == (2, 1)
            db.expire_all()
            assert {c.external_id for c in db.query(Campaign).all()} == {"c1", "c3"}
            statuses = sorted(r.status.value for r in db.query(SyncRun).all())
            assert statuses == ["DONE", "DONE", "FAILED"]
        finally:
            db.close()


class TestSyncAll:

    def test_results_are_keyed_by_platform(self, test_db_session, make_account, fake_adapter_cls):
        make_account(platform=PlatformEnum.facebook, external_account_id="act_1")
        registry = AdapterRegistry({
            PlatformEnum.facebook: fake_adapter_cls(platform=PlatformEnum.facebook),
            PlatformEnum.tiktok: fake_adapter_cls(platform=PlatformEnum.tiktok),
        })
        service = UnifiedSyncService(test_db_session, registry=registry, settings=_settings())

        results = service.sync_all(parallel=False)

        assert set(results) == {"FACEBOOK", "TIKTOK"}
        assert results["FACEBOOK"].success == 1
        assert results["TIKTOK"].to_dict() == {
            "platform": "TIKTOK", "success": 0, "failed": 0, "skipped": 0, "errors": [],
        }

    def test_platform_batch_error_is_recorded(self, test_db_session, fake_adapter_cls, monkeypatch, no_sentry):
        registry = AdapterRegistry({PlatformEnum.facebook: fake_adapter_cls()})
        service = UnifiedSyncService(test_db_session, registry=registry, settings=_settings())

        def explode(*args, **kwargs):
            raise RuntimeError("adapter misconfigured")

        monkeypatch.setattr(service, "sync_platform", explode)

        results = service.sync_all()

        assert results["FACEBOOK"].failed == 1
        assert results["FACEBOOK"].errors[0]["error"] == "adapter misconfigured"
        assert no_sentry[0][1]["operation"] == "sync_platform"

    def test_storage_errors_propagate(self, test_db_session, make_account, fake_adapter_cls, monkeypatch):
        from sqlalchemy.exc import OperationalError

        make_account(external_account_id="act_1")
        make_account(external_account_id="act_2")
        adapter = fake_adapter_cls(campaigns={
            "act_1": [CampaignPayload("c1", "One", CampaignStatusEnum.active)],
            "act_2": [CampaignPayload("c2", "Two", CampaignStatusEnum.active)],
        })

        def db_down(*args, **kwargs):
            raise OperationalError("INSERT INTO campaigns", {}, Exception("database is gone"))

        monkeypatch.setattr("app.services.unified_sync_service.upsert_campaign", db_down)

        with pytest.raises(OperationalError):
            _service(test_db_session, adapter).sync_all(parallel=False)
        # The outage stops the batch instead of being counted per account
        assert len(adapter.calls) == 1

    def test_storage_errors_propagate_from_thread_pool(self, file_session_factory, fake_adapter_cls, monkeypatch):
        from sqlalchemy.exc import OperationalError

        from app.models import Tenant
        from app.services.token_service import connect_account

        db = file_session_factory()
        try:
            tenant = Tenant(name="Outage")
            db.add(tenant)
            db.commit()
            for i in (1, 2):
                connect_account(db, tenant.id, PlatformEnum.facebook, f"act_{i}", f"Account {i}", "token")

            adapter = fake_adapter_cls(campaigns={
                f"act_{i}": [CampaignPayload(f"c{i}", f"Campaign {i}", CampaignStatusEnum.active)] for i in (1, 2)
            })

            def db_down(*args, **kwargs):
                raise OperationalError("INSERT INTO campaigns", {}, Exception("database is gone"))

            monkeypatch.setattr("app.services.unified_sync_service.upsert_campaign", db_down)
            service = UnifiedSyncService(
                db,
                registry=AdapterRegistry({PlatformEnum.facebook: adapter}),
                session_factory=file_session_factory,
                settings=_settings(SYNC_PARALLEL=True),
            )

            with pytest.raises(OperationalError):
                service.sync_platform(PlatformEnum.facebook)
        finally:
            db.close()

    def test_tenant_filter_limits_accounts(self, test_db_session, tenant, other_tenant, make_account, fake_adapter_cls):
        make_account(external_account_id="act_mine")
        make_account(external_account_id="act_theirs", tenant_id=other_tenant.id)
        adapter = fake_adapter_cls()

        results = _service(test_db_session, adapter).sync_all(parallel=False, tenant_id=tenant.id)

        assert adapter.calls == ["act_mine"]
        assert results["FACEBOOK"].success == 1
        assert {run.tenant_id for run in test_db_session.query(SyncRun).all()} == {tenant.id}
