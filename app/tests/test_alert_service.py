"""Tests for AlertService: rule catalog, evaluation, dedup and lifecycle."""

from types import SimpleNamespace

import pytest

from app.models import (
    Alert,
    AlertOperatorEnum,
    AlertRule,
    AlertRuleTypeEnum,
    AlertSeverityEnum,
    AlertStatusEnum,
)
from app.services import alert_service as alert_module
from app.services.alert_service import (
    PRESET_RULES,
    AlertService,
    AlertTransitionError,
    PresetRuleDeleteError,
    RuleNotFoundError,
    alert_type_for,
    check_all_tenants,
    evaluate_rule,
)


@pytest.fixture
def service(test_db_session):
    return AlertService(test_db_session, settings=SimpleNamespace(ALERT_WINDOW_DAYS=7))


def _rule(name="Rule", metric="spend", operator=AlertOperatorEnum.gt, threshold=10.0, type_=AlertRuleTypeEnum.custom):
    return SimpleNamespace(name=name, metric=metric, operator=operator, threshold=threshold, type=type_)


def _alert(db, tenant_id, severity=AlertSeverityEnum.warning, status=AlertStatusEnum.open, type_="TEST"):
    alert = Alert(tenant_id=tenant_id, type=type_, severity=severity, status=status, title="t")
    db.add(alert)
    db.commit()
    db.refresh(alert)
    return alert


class TestEvaluateRule:

    def test_violation_payload(self):
        violation = evaluate_rule(_rule(), {"spend": 12.5}, budget=None)
        assert violation == {"metric": "spend", "value": 12.5, "threshold": 10.0}

    def test_no_violation(self):
        assert evaluate_rule(_rule(), {"spend": 10.0}, budget=None) is None

    def test_unknown_metric_is_skipped(self):
        assert evaluate_rule(_rule(metric="bounce_rate"), {"spend": 99.0}, budget=None) is None

    def test_unknown_operator_is_skipped(self):
        assert evaluate_rule(_rule(operator="between"), {"spend": 99.0}, budget=None) is None

    def test_eq_uses_tolerance(self):
        rule = _rule(metric="conversions", operator=AlertOperatorEnum.eq, threshold=0)
        assert evaluate_rule(rule, {"conversions": 0.00001}, budget=None) is not None
        assert evaluate_rule(rule, {"conversions": 1.0}, budget=None) is None

    def test_overspend_threshold_is_budget_multiplier(self):
        rule = _rule(name="Overspend", threshold=1.1, type_=AlertRuleTypeEnum.preset)
        assert evaluate_rule(rule, {"spend": 1100.0}, budget=1000.0) is None
        violation = evaluate_rule(rule, {"spend": 1100.01}, budget=1000.0)
        assert violation["threshold"] == pytest.approx(1100.0)

    def test_overspend_without_budget_is_skipped(self):
        rule = _rule(name="Overspend", threshold=1.1, type_=AlertRuleTypeEnum.preset)
        assert evaluate_rule(rule, {"spend": 1_000_000.0}, budget=None) is None
        assert evaluate_rule(rule, {"spend": 1_000_000.0}, budget=0) is None

    def test_custom_rule_named_overspend_is_absolute(self):
        rule = _rule(name="Overspend", threshold=1.1)
        violation = evaluate_rule(rule, {"spend": 5.0}, budget=1000.0)
        assert violation == {"metric": "spend", "value": 5.0, "threshold": 1.1}

    def test_alert_type_from_rule_name(self):
        assert alert_type_for("Low ROAS") == "LOW_ROAS"
        assert alert_type_for("Inactive Campaign") == "INACTIVE_CAMPAIGN"


class TestRules:

    def test_presets_are_created_once(self, service, test_db_session, tenant):
        first = service.initialize_preset_rules(tenant.id)
        second = service.initialize_preset_rules(tenant.id)

        assert len(first) == len(PRESET_RULES) == 6
        assert {r.id for r in second} == {r.id for r in first}
        assert test_db_session.query(AlertRule).count() == 6
        assert all(r.type == AlertRuleTypeEnum.preset and r.is_active for r in first)

    def test_presets_can_be_disabled_but_not_deleted(self, service, tenant):
        preset = service.initialize_preset_rules(tenant.id)[0]

        with pytest.raises(PresetRuleDeleteError):
            service.delete_rule(preset.id, tenant.id)

        assert service.toggle_rule(preset.id, tenant.id).is_active is False
        assert service.toggle_rule(preset.id, tenant.id).is_active is True

    def test_custom_rule_crud(self, service, test_db_session, tenant):
        rule = service.create_rule(tenant.id, "High CPC", "cpc", AlertOperatorEnum.gt, 2.5)
        assert rule.type == AlertRuleTypeEnum.custom
        assert rule.severity == AlertSeverityEnum.warning

        updated = service.update_rule(rule.id, tenant.id, {"threshold": 3.0, "name": None, "bogus": 1})
        assert updated.threshold == 3.0
        assert updated.name == "High CPC"

        service.delete_rule(rule.id, tenant.id)
        assert test_db_session.query(AlertRule).count() == 0

    def test_rules_are_tenant_scoped(self, service, tenant, other_tenant):
        rule = service.create_rule(tenant.id, "Mine", "spend", AlertOperatorEnum.gt, 1)

        with pytest.raises(RuleNotFoundError):
            service.toggle_rule(rule.id, other_tenant.id)
        assert service.get_rules(other_tenant.id) == []


class TestCheckAlerts:

    def test_violation_creates_one_open_alert(self, service, tenant, make_campaign, add_metric, today):
        campaign = make_campaign("Spender")
        add_metric(campaign, today, impressions=100, clicks=5, spend=20.0)
        rule = service.create_rule(tenant.id, "High Spend", "spend", AlertOperatorEnum.gt, 10.0, AlertSeverityEnum.critical)

        created = service.check_alerts(tenant.id)

        assert len(created) == 1
        alert = created[0]
        assert alert.type == "HIGH_SPEND"
        assert alert.rule_id == rule.id
        assert alert.campaign_id == campaign.id
        assert alert.status == AlertStatusEnum.open
        assert alert.severity == AlertSeverityEnum.critical
        assert alert.title == "High Spend: Spender"
        assert alert.alert_metadata == {"metric": "spend", "value": 20.0, "threshold": 10.0}
        assert "spend = 20.00" in alert.message

    def test_repeat_checks_do_not_duplicate_until_resolved(self, service, test_db_session, tenant, make_campaign, add_metric, today):
        campaign = make_campaign("Spender")
        add_metric(campaign, today, spend=20.0)
        service.create_rule(tenant.id, "High Spend", "spend", AlertOperatorEnum.gt, 10.0)

        first = service.check_alerts(tenant.id)
        assert len(first) == 1
        assert service.check_alerts(tenant.id) == []

        service.acknowledge_alert(first[0].id, tenant.id)
        assert service.check_alerts(tenant.id) == []

        service.resolve_alert(first[0].id, tenant.id)
        again = service.check_alerts(tenant.id)
        assert len(again) == 1
        assert test_db_session.query(Alert).count() == 2

    def test_overspend_preset_against_budget(self, service, test_db_session, tenant, make_campaign, add_metric, today):
        service.initialize_preset_rules(tenant.id)
        for rule in test_db_session.query(AlertRule).filter(AlertRule.name != "Overspend"):
            rule.is_active = False
        test_db_session.commit()

        at_limit = make_campaign("At limit", budget=1000.0)
        over = make_campaign("Over", budget=1000.0)
        no_budget = make_campaign("No budget")
        add_metric(at_limit, today, spend=1100.0)
        add_metric(over, today, spend=1100.01)
        add_metric(no_budget, today, spend=50000.0)

        created = service.check_alerts(tenant.id)

        assert [a.campaign_id for a in created] == [over.id]
        assert created[0].type == "OVERSPEND"

    def test_renamed_overspend_preset_keeps_budget_multiplier(self, service, test_db_session, tenant, make_campaign, add_metric, today):
        service.initialize_preset_rules(tenant.id)
        for rule in test_db_session.query(AlertRule).filter(AlertRule.name != "Overspend"):
            rule.is_active = False
        test_db_session.commit()
        preset = test_db_session.query(AlertRule).filter(AlertRule.name == "Overspend").one()
        service.update_rule(preset.id, tenant.id, {"name": "Budget Guard"})

        within = make_campaign("Within", budget=1000.0)
        over = make_campaign("Over", budget=1000.0)
        add_metric(within, today, spend=500.0)
        add_metric(over, today, spend=1200.0)

        created = service.check_alerts(tenant.id)

        assert [a.campaign_id for a in created] == [over.id]
        assert created[0].type == "BUDGET_GUARD"
        assert created[0].alert_metadata["threshold"] == pytest.approx(1100.0)

    def test_campaign_without_rows_is_skipped(self, service, tenant, make_campaign):
        service.initialize_preset_rules(tenant.id)
        make_campaign("Idle")

        assert service.check_alerts(tenant.id) == []

    def test_inactive_rules_are_ignored(self, service, tenant, make_campaign, add_metric, today):
        add_metric(make_campaign("C"), today, spend=20.0)
        rule = service.create_rule(tenant.id, "High Spend", "spend", AlertOperatorEnum.gt, 10.0)
        service.toggle_rule(rule.id, tenant.id)

        assert service.check_alerts(tenant.id) == []

    def test_check_all_tenants_isolates_failures(self, test_db_session, tenant, other_tenant, make_campaign, add_metric, today, monkeypatch):
        add_metric(make_campaign("C"), today, spend=20.0)
        AlertService(test_db_session).create_rule(tenant.id, "High Spend", "spend", AlertOperatorEnum.gt, 10.0)

        original = AlertService.check_alerts
        reported = []

        def flaky(self, tenant_id):
            if tenant_id == other_tenant.id:
                raise RuntimeError("tenant data unavailable")
            return original(self, tenant_id)

        monkeypatch.setattr(AlertService, "check_alerts", flaky)
        monkeypatch.setattr(alert_module, "capture_exception", lambda e, extra=None: reported.append(extra))

        result = check_all_tenants(test_db_session)

        assert result == {"alerts_created": 1, "tenants_failed": 1}
        assert reported == [{"tenant_id": str(other_tenant.id)}]


class TestAlertLifecycle:

    def test_allowed_transitions(self, service, test_db_session, tenant):
        alert = _alert(test_db_session, tenant.id)

        acknowledged = service.acknowledge_alert(alert.id, tenant.id)
        assert acknowledged.status == AlertStatusEnum.acknowledged

        resolved = service.resolve_alert(alert.id, tenant.id)
        assert resolved.status == AlertStatusEnum.resolved
        assert resolved.resolved_at is not None

    @pytest.mark.parametrize("start,action", [
        (AlertStatusEnum.resolved, "acknowledge_alert"),
        (AlertStatusEnum.acknowledged, "acknowledge_alert"),
        (AlertStatusEnum.resolved, "resolve_alert"),
    ])
    def test_disallowed_transitions(self, service, test_db_session, tenant, start, action):
        alert = _alert(test_db_session, tenant.id, status=start)

        with pytest.raises(AlertTransitionError):
            getattr(service, action)(alert.id, tenant.id)

    def test_open_counts_by_severity(self, service, test_db_session, tenant, other_tenant):
        _alert(test_db_session, tenant.id, AlertSeverityEnum.critical)
        _alert(test_db_session, tenant.id, AlertSeverityEnum.critical)
        _alert(test_db_session, tenant.id, AlertSeverityEnum.info)
        _alert(test_db_session, tenant.id, AlertSeverityEnum.warning, AlertStatusEnum.acknowledged)
        _alert(test_db_session, other_tenant.id, AlertSeverityEnum.warning)

        assert service.get_open_alerts_count(tenant.id) == {
            "total": 3, "critical": 2, "warning": 0, "info": 1,
        }

    def test_resolve_all(self, service, test_db_session, tenant):
        _alert(test_db_session, tenant.id)
        _alert(test_db_session, tenant.id, status=AlertStatusEnum.acknowledged)
        _alert(test_db_session, tenant.id, status=AlertStatusEnum.resolved)

        assert service.resolve_all_alerts(tenant.id) == 2
        test_db_session.expire_all()
        assert {a.status for a in test_db_session.query(Alert).all()} == {AlertStatusEnum.resolved}

    def test_list_filters(self, service, test_db_session, tenant):
        _alert(test_db_session, tenant.id, AlertSeverityEnum.critical)
        _alert(test_db_session, tenant.id, AlertSeverityEnum.info, AlertStatusEnum.resolved)

        assert len(service.get_alerts(tenant.id)) == 2
        assert len(service.get_alerts(tenant.id, status=AlertStatusEnum.open)) == 1
        assert len(service.get_alerts(tenant.id, severity=AlertSeverityEnum.info)) == 1
        assert len(service.get_alerts(tenant.id, limit=1)) == 1
