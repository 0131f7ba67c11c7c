"""HTTP surface tests.

WHAT: Tenant scoping, status codes and response shapes of every router.
WHY:  The frontend depends on these exact contracts.
"""

import uuid

import pytest

from app.models import Alert, AlertSeverityEnum, AlertStatusEnum, CampaignStatusEnum, PlatformEnum
from app.services import adapters as adapters_module
from app.services.adapters import AdapterRegistry, CampaignPayload, DailyMetric


@pytest.fixture
def fake_registry(monkeypatch, fake_adapter_cls):
    """Swap the process-wide registry for a single in-memory Facebook adapter."""
    adapter = fake_adapter_cls()
    registry = AdapterRegistry({PlatformEnum.facebook: adapter})
    monkeypatch.setattr(adapters_module, "_registry", registry)
    monkeypatch.setattr(
        "app.services.unified_sync_service.capture_exception", lambda e, extra=None: None
    )
    return adapter


class TestHealthAndTenancy:

    def test_health_needs_no_tenant(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_missing_tenant_header(self, client):
        assert client.get("/accounts").status_code == 401

    def test_malformed_tenant_header(self, client):
        assert client.get("/accounts", headers={"X-Tenant-ID": "not-a-uuid"}).status_code == 400

    def test_unknown_tenant(self, client):
        assert client.get("/accounts", headers={"X-Tenant-ID": str(uuid.uuid4())}).status_code == 404

    def test_resolved_tenant_is_tagged_for_error_reports(self, client, tenant, tenant_headers, monkeypatch):
        tagged = []
        monkeypatch.setattr("app.deps.set_tenant_context", tagged.append)

        assert client.get("/accounts", headers=tenant_headers).status_code == 200
        assert client.get("/accounts", headers={"X-Tenant-ID": str(uuid.uuid4())}).status_code == 404
        assert tagged == [str(tenant.id)]


class TestAccountsRouter:

    def test_connect_list_disable(self, client, tenant_headers):
        response = client.post("/accounts", headers=tenant_headers, json={
            "platform": "facebook",
            "external_account_id": "act_42",
            "name": "Main",
            "access_token": "secret-token",
        })
        assert response.status_code == 201
        body = response.json()
        assert body["platform"] == "FACEBOOK"
        assert body["status"] == "ACTIVE"
        assert "access_token" not in body
        assert "access_token_enc" not in body

        listed = client.get("/accounts", headers=tenant_headers, params={"platform": "FACEBOOK"}).json()
        assert listed["total"] == 1

        disabled = client.post(f"/accounts/{body['id']}/disable", headers=tenant_headers)
        assert disabled.status_code == 200
        assert disabled.json()["status"] == "DISABLED"

    def test_unknown_platform_is_rejected(self, client, tenant_headers):
        response = client.post("/accounts", headers=tenant_headers, json={
            "platform": "myspace", "external_account_id": "1", "name": "n", "access_token": "t",
        })
        assert response.status_code == 400
        assert client.get("/accounts", headers=tenant_headers, params={"platform": "myspace"}).status_code == 400

    def test_blank_fields_fail_validation(self, client, tenant_headers):
        response = client.post("/accounts", headers=tenant_headers, json={
            "platform": "facebook", "external_account_id": "  ", "name": "n", "access_token": "t",
        })
        assert response.status_code == 422

    def test_other_tenants_account_is_hidden(self, client, make_account, other_tenant, tenant_headers):
        foreign = make_account(tenant_id=other_tenant.id)
        assert client.post(f"/accounts/{foreign.id}/disable", headers=tenant_headers).status_code == 404


class TestSyncRouter:

    def test_sync_one_account(self, client, tenant_headers, make_account, fake_registry, today):
        account = make_account(external_account_id="act_1")
        fake_registry.campaigns["act_1"] = [CampaignPayload("c1", "Campaign", CampaignStatusEnum.active)]
        fake_registry.metrics["c1"] = [DailyMetric.from_counters(today, 100, 5, 10.0)]

        response = client.post(f"/sync/accounts/{account.id}", headers=tenant_headers)

        assert response.status_code == 200
        assert response.json()["campaigns_synced"] == 1
        assert response.json()["metrics_synced"] == 1

        runs = client.get("/sync/runs", headers=tenant_headers).json()
        assert [run["status"] for run in runs] == ["DONE"]

    def test_invalid_credentials_is_400(self, client, tenant_headers, make_account, fake_registry):
        account = make_account()
        fake_registry.valid = False

        response = client.post(f"/sync/accounts/{account.id}", headers=tenant_headers)

        assert response.status_code == 400
        assert response.json()["detail"].startswith("Invalid credentials")

    def test_platform_failure_is_502(self, client, tenant_headers, make_account, fake_registry):
        account = make_account(external_account_id="act_bad")
        fake_registry.fail_accounts.add("act_bad")

        assert client.post(f"/sync/accounts/{account.id}", headers=tenant_headers).status_code == 502

    def test_unknown_account_is_404(self, client, tenant_headers, fake_registry):
        assert client.post(f"/sync/accounts/{uuid.uuid4()}", headers=tenant_headers).status_code == 404

    def test_sync_platform_and_all(self, client, tenant_headers, make_account, fake_registry):
        make_account(external_account_id="act_1")

        platform = client.post("/sync/platforms/facebook", headers=tenant_headers)
        assert platform.status_code == 200
        assert platform.json()["success"] == 1

        everything = client.post("/sync/all", headers=tenant_headers)
        assert everything.status_code == 200
        assert everything.json()["results"]["FACEBOOK"]["success"] == 1

    def test_platform_and_all_only_touch_callers_accounts(
        self, client, tenant_headers, make_account, other_tenant, fake_registry
    ):
        make_account(external_account_id="act_theirs", tenant_id=other_tenant.id)
        fake_registry.fail_accounts.add("act_theirs")

        platform = client.post("/sync/platforms/facebook", headers=tenant_headers).json()
        everything = client.post("/sync/all", headers=tenant_headers).json()

        assert fake_registry.calls == []
        assert (platform["success"], platform["failed"], platform["errors"]) == (0, 0, [])
        assert everything["results"]["FACEBOOK"]["errors"] == []
        assert client.get("/sync/runs", headers=tenant_headers).json() == []

    def test_unsupported_platform_is_400(self, client, tenant_headers, fake_registry):
        assert client.post("/sync/platforms/myspace", headers=tenant_headers).status_code == 400


class TestMetricsAndDashboardRouters:

    def test_metrics_endpoints(self, client, tenant_headers, make_campaign, add_metric, today):
        campaign = make_campaign("C")
        add_metric(campaign, today, impressions=200, clicks=10, spend=20.0, revenue=40.0)

        trends = client.get(
            "/metrics/trends", headers=tenant_headers, params={"period": "7d", "compare_with": "previous_period"}
        ).json()
        assert trends["current"]["ctr"] == pytest.approx(5.0)
        assert trends["trends"]["spend"] == 100.0

        daily = client.get("/metrics/daily", headers=tenant_headers, params={"period": "7d"}).json()
        assert len(daily["data"]) == 1

        performance = client.get(f"/metrics/campaigns/{campaign.id}/performance", headers=tenant_headers)
        assert performance.status_code == 200
        assert performance.json()["totals"]["roas"] == pytest.approx(2.0)

    def test_campaign_performance_is_tenant_scoped(self, client, tenant_headers, make_campaign, other_tenant):
        foreign = make_campaign("Foreign", tenant_id=other_tenant.id)
        response = client.get(f"/metrics/campaigns/{foreign.id}/performance", headers=tenant_headers)
        assert response.status_code == 404

    def test_dashboard_endpoints(self, client, tenant_headers):
        seeded = client.post("/dashboard/mock-data/seed", headers=tenant_headers, params={"days": 3})
        assert seeded.status_code == 201
        assert seeded.json()["web_analytics"] == 4

        summary = client.get("/dashboard/summary", headers=tenant_headers).json()
        assert summary["is_mock_data"] is True
        assert summary["total_campaigns"] == seeded.json()["campaigns"]

        top = client.get("/dashboard/top-campaigns", headers=tenant_headers, params={"limit": 3}).json()
        assert len(top) == 3
        assert top[0]["metrics"]["spend"] >= top[1]["metrics"]["spend"]

        assert len(client.get("/dashboard/trends", headers=tenant_headers, params={"days": 3}).json()) == 4
        platforms = client.get("/dashboard/performance-by-platform", headers=tenant_headers).json()
        assert len(platforms) == 5

        cleared = client.delete("/dashboard/mock-data", headers=tenant_headers).json()
        assert cleared["web_analytics"] == 4
        assert client.get("/dashboard/summary", headers=tenant_headers).json()["is_mock_data"] is False

    def test_dashboard_rejects_unknown_platform(self, client, tenant_headers):
        response = client.get("/dashboard/summary", headers=tenant_headers, params={"platform": "myspace"})
        assert response.status_code == 400


class TestAlertsRouter:

    def test_rule_lifecycle(self, client, tenant_headers):
        presets = client.post("/alerts/rules/presets", headers=tenant_headers).json()
        assert len(presets) == 6

        preset_delete = client.delete(f"/alerts/rules/{presets[0]['id']}", headers=tenant_headers)
        assert preset_delete.status_code == 409

        created = client.post("/alerts/rules", headers=tenant_headers, json={
            "name": "High CPC", "metric": "cpc", "operator": "gt", "threshold": 2.5,
        })
        assert created.status_code == 201
        rule_id = created.json()["id"]
        assert created.json()["type"] == "CUSTOM"

        patched = client.patch(f"/alerts/rules/{rule_id}", headers=tenant_headers, json={"threshold": 3.0})
        assert patched.json()["threshold"] == 3.0
        assert patched.json()["name"] == "High CPC"

        toggled = client.post(f"/alerts/rules/{rule_id}/toggle", headers=tenant_headers)
        assert toggled.json()["is_active"] is False

        assert client.delete(f"/alerts/rules/{rule_id}", headers=tenant_headers).status_code == 204
        assert client.delete(f"/alerts/rules/{rule_id}", headers=tenant_headers).status_code == 404
        assert len(client.get("/alerts/rules", headers=tenant_headers).json()) == 6

    def test_invalid_operator_is_422(self, client, tenant_headers):
        response = client.post("/alerts/rules", headers=tenant_headers, json={
            "name": "Bad", "metric": "cpc", "operator": "between", "threshold": 1,
        })
        assert response.status_code == 422

    def test_check_and_transitions(self, client, tenant_headers, tenant, make_campaign, add_metric, today):
        campaign = make_campaign("Spender")
        add_metric(campaign, today, impressions=100, clicks=5, spend=25.0)
        client.post("/alerts/rules", headers=tenant_headers, json={
            "name": "High Spend", "metric": "spend", "operator": "gt", "threshold": 10, "severity": "CRITICAL",
        })

        check = client.post("/alerts/check", headers=tenant_headers).json()
        assert check["created"] == 1
        alert = check["alerts"][0]
        assert alert["type"] == "HIGH_SPEND"
        assert alert["metadata"] == {"metric": "spend", "value": 25.0, "threshold": 10.0}
        assert alert["campaign"]["name"] == "Spender"

        assert client.post("/alerts/check", headers=tenant_headers).json()["created"] == 0
        assert client.get("/alerts/count", headers=tenant_headers).json() == {
            "total": 1, "critical": 1, "warning": 0, "info": 0,
        }

        acked = client.post(f"/alerts/{alert['id']}/acknowledge", headers=tenant_headers)
        assert acked.json()["status"] == "ACKNOWLEDGED"
        assert client.post(f"/alerts/{alert['id']}/acknowledge", headers=tenant_headers).status_code == 409

        resolved = client.post(f"/alerts/{alert['id']}/resolve", headers=tenant_headers)
        assert resolved.json()["status"] == "RESOLVED"
        assert resolved.json()["resolved_at"] is not None
        assert client.post(f"/alerts/{alert['id']}/resolve", headers=tenant_headers).status_code == 409

        assert client.get("/alerts", headers=tenant_headers, params={"status": "RESOLVED"}).json()[0]["id"] == alert["id"]

    def test_unknown_alert_is_404(self, client, tenant_headers):
        assert client.post(f"/alerts/{uuid.uuid4()}/resolve", headers=tenant_headers).status_code == 404

    def test_resolve_all(self, client, tenant_headers, tenant, test_db_session):
        for severity in (AlertSeverityEnum.warning, AlertSeverityEnum.info):
            test_db_session.add(Alert(
                tenant_id=tenant.id, type="X", severity=severity, status=AlertStatusEnum.open, title="x",
            ))
        test_db_session.commit()

        assert client.post("/alerts/resolve-all", headers=tenant_headers).json() == {"resolved": 2}
        assert client.get("/alerts/count", headers=tenant_headers).json()["total"] == 0
