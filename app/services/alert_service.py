"""
Alert Service
=============

Rule management, alert lifecycle and batch evaluation of alert rules
against per-campaign trailing aggregates.

WHAT: Seeds the preset rule catalog, manages custom rules, walks alerts
      through OPEN -> ACKNOWLEDGED -> RESOLVED and evaluates every active
      rule for every campaign with data in the trailing window.
WHY:  Lets a tenant notice losing or stalled campaigns without opening
      the dashboard.

Evaluation:
- Aggregates are sum-then-derive (same Totals as the metrics service).
- Campaigns without metric rows in the window are skipped.
- The Overspend rule compares spend with `budget * threshold`; campaigns
  without a budget are skipped for that rule.
- At most one non-RESOLVED alert per (tenant, campaign, type).

Usage:
    >>> service = AlertService(db)
    >>> service.initialize_preset_rules(tenant_id)
    >>> created = service.check_alerts(tenant_id)

References:
- app/services/metrics_service.py: Totals
- app/routers/alerts.py: HTTP surface
- app/workers/arq_worker.py: hourly scheduled_alert_check
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import desc, func
from sqlalchemy.orm import Session

from app.deps import get_settings
from app.models import (
    Alert,
    AlertOperatorEnum,
    AlertRule,
    AlertRuleTypeEnum,
    AlertSeverityEnum,
    AlertStatusEnum,
    Campaign,
    Metric,
    Tenant,
)
from app.services.metrics_service import Totals
from app.telemetry import capture_exception
from app.utils.date_range import as_date, get_date_range

logger = logging.getLogger(__name__)

OVERSPEND_RULE_NAME = "Overspend"

PRESET_RULES: List[Dict[str, Any]] = [
    {
        "name": "Low ROAS",
        "metric": "roas",
        "operator": AlertOperatorEnum.lt,
        "threshold": 1.0,
        "severity": AlertSeverityEnum.warning,
        "description": "ROAS below 1.0, the campaign is losing money",
    },
    {
        "name": "Critical ROAS",
        "metric": "roas",
        "operator": AlertOperatorEnum.lt,
        "threshold": 0.5,
        "severity": AlertSeverityEnum.critical,
        "description": "ROAS below 0.5, heavy losses",
    },
    {
        "name": OVERSPEND_RULE_NAME,
        "metric": "spend",
        "operator": AlertOperatorEnum.gt,
        "threshold": 1.1,  # multiplier on campaign budget
        "severity": AlertSeverityEnum.warning,
        "description": "Spend above 110% of the campaign budget",
    },
    {
        "name": "No Conversions",
        "metric": "conversions",
        "operator": AlertOperatorEnum.eq,
        "threshold": 0,
        "severity": AlertSeverityEnum.critical,
        "description": "No conversions in the last 7 days",
    },
    {
        "name": "CTR Drop",
        "metric": "ctr",
        "operator": AlertOperatorEnum.lt,
        "threshold": 0.7,
        "severity": AlertSeverityEnum.warning,
        "description": "CTR below 0.7%",
    },
    {
        "name": "Inactive Campaign",
        "metric": "impressions",
        "operator": AlertOperatorEnum.eq,
        "threshold": 0,
        "severity": AlertSeverityEnum.info,
        "description": "No impressions in the evaluation window",
    },
]

OPERATORS: Dict[AlertOperatorEnum, Callable[[float, float], bool]] = {
    AlertOperatorEnum.gt: lambda a, b: a > b,
    AlertOperatorEnum.gte: lambda a, b: a >= b,
    AlertOperatorEnum.lt: lambda a, b: a < b,
    AlertOperatorEnum.lte: lambda a, b: a <= b,
    AlertOperatorEnum.eq: lambda a, b: abs(a - b) < 0.0001,  # Float comparison
}

RULE_UPDATE_FIELDS = ("name", "description", "metric", "operator", "threshold", "severity", "is_active")


class AlertServiceError(Exception):
    """Base class for rule/alert management errors."""


class RuleNotFoundError(AlertServiceError):
    pass


class AlertNotFoundError(AlertServiceError):
    pass


class PresetRuleDeleteError(AlertServiceError):
    """Presets can be disabled but never deleted."""


class AlertTransitionError(AlertServiceError):
    """Requested status change is not allowed from the alert's current status."""


# Allowed source statuses per target status
ALLOWED_TRANSITIONS = {
    AlertStatusEnum.acknowledged: {AlertStatusEnum.open},
    AlertStatusEnum.resolved: {AlertStatusEnum.open, AlertStatusEnum.acknowledged},
}


def alert_type_for(rule_name: str) -> str:
    """'Low ROAS' -> 'LOW_ROAS'."""
    return rule_name.upper().replace(" ", "_")


def is_budget_rule(rule: AlertRule) -> bool:
    """The preset spend rule (Overspend) compares against a budget multiple.

    Keyed on type and metric so renaming the preset keeps its meaning and a
    custom rule that happens to be called "Overspend" stays absolute.
    """
    return rule.type == AlertRuleTypeEnum.preset and rule.metric == "spend"


def effective_threshold(rule: AlertRule, budget: Optional[float]) -> Optional[float]:
    """Threshold the rule is compared with, None when the rule does not apply.

    Overspend thresholds are multipliers on the campaign budget.
    """
    if is_budget_rule(rule):
        if not budget:
            return None
        return float(budget) * float(rule.threshold)
    return float(rule.threshold)


def evaluate_rule(rule: AlertRule, aggregated: Dict[str, float], budget: Optional[float]) -> Optional[Dict[str, Any]]:
    """Return `{metric, value, threshold}` when the rule is violated, else None.

    Unknown metrics, unknown operators and overspend without budget are
    silent skips.
    """
    value = aggregated.get(rule.metric)
    if value is None:
        return None
    threshold = effective_threshold(rule, budget)
    if threshold is None:
        return None
    try:
        comparator = OPERATORS[AlertOperatorEnum(rule.operator)]
    except ValueError:
        return None
    if not comparator(float(value), threshold):
        return None
    return {"metric": rule.metric, "value": float(value), "threshold": threshold}


def build_alert_message(rule: AlertRule, value: float, campaign_name: str) -> str:
    operator = rule.operator.value if isinstance(rule.operator, AlertOperatorEnum) else rule.operator
    return (
        f'Campaign "{campaign_name}" has {rule.metric} = {value:.2f} '
        f"(threshold: {operator} {rule.threshold})"
    )


class AlertService:
    """Tenant-scoped alert rules and alerts."""

    def __init__(self, db: Session, settings=None):
        self.db = db
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def get_rules(self, tenant_id: UUID) -> List[AlertRule]:
        return (
            self.db.query(AlertRule)
            .filter(AlertRule.tenant_id == tenant_id)
            .order_by(desc(AlertRule.created_at))
            .all()
        )

    def _get_rule(self, rule_id: UUID, tenant_id: UUID) -> AlertRule:
        rule = (
            self.db.query(AlertRule)
            .filter(AlertRule.id == rule_id, AlertRule.tenant_id == tenant_id)
            .first()
        )
        if not rule:
            raise RuleNotFoundError(f"Alert rule {rule_id} not found")
        return rule

    def initialize_preset_rules(self, tenant_id: UUID) -> List[AlertRule]:
        """Seed the preset catalog once per tenant.

        Nothing is created when any preset already exists; the existing
        presets are returned instead.
        """
        existing = (
            self.db.query(AlertRule)
            .filter(AlertRule.tenant_id == tenant_id, AlertRule.type == AlertRuleTypeEnum.preset)
            .all()
        )
        if existing:
            logger.info("[ALERTS] Preset rules already exist for tenant %s", tenant_id)
            return existing

        created = []
        for preset in PRESET_RULES:
            rule = AlertRule(tenant_id=tenant_id, type=AlertRuleTypeEnum.preset, is_active=True, **preset)
            self.db.add(rule)
            created.append(rule)
        self.db.commit()
        for rule in created:
            self.db.refresh(rule)

        logger.info("[ALERTS] Created %d preset rules for tenant %s", len(created), tenant_id)
        return created

    def create_rule(
        self,
        tenant_id: UUID,
        name: str,
        metric: str,
        operator: AlertOperatorEnum,
        threshold: float,
        severity: AlertSeverityEnum = AlertSeverityEnum.warning,
        description: Optional[str] = None,
    ) -> AlertRule:
        rule = AlertRule(
            tenant_id=tenant_id,
            type=AlertRuleTypeEnum.custom,
            name=name,
            metric=metric,
            operator=AlertOperatorEnum(operator),
            threshold=threshold,
            severity=AlertSeverityEnum(severity),
            description=description,
            is_active=True,
        )
        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)
        logger.info("[ALERTS] Created custom rule %s (%s) for tenant %s", rule.id, name, tenant_id)
        return rule

    def update_rule(self, rule_id: UUID, tenant_id: UUID, changes: Dict[str, Any]) -> AlertRule:
        """Apply a partial update; keys outside RULE_UPDATE_FIELDS are ignored."""
        rule = self._get_rule(rule_id, tenant_id)
        for field in RULE_UPDATE_FIELDS:
            if field in changes and changes[field] is not None:
                setattr(rule, field, changes[field])
        self.db.commit()
        self.db.refresh(rule)
        return rule

    def toggle_rule(self, rule_id: UUID, tenant_id: UUID) -> AlertRule:
        rule = self._get_rule(rule_id, tenant_id)
        rule.is_active = not rule.is_active
        self.db.commit()
        self.db.refresh(rule)
        logger.info("[ALERTS] Rule %s is_active=%s", rule.id, rule.is_active)
        return rule

    def delete_rule(self, rule_id: UUID, tenant_id: UUID) -> None:
        """Delete a custom rule.

        Raises:
            RuleNotFoundError: no such rule for this tenant
            PresetRuleDeleteError: rule is a preset (disable it instead)
        """
        rule = self._get_rule(rule_id, tenant_id)
        if rule.type == AlertRuleTypeEnum.preset:
            raise PresetRuleDeleteError("Cannot delete preset rules, only disable them")
        self.db.delete(rule)
        self.db.commit()
        logger.info("[ALERTS] Deleted rule %s", rule_id)

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def get_alerts(
        self,
        tenant_id: UUID,
        status: Optional[AlertStatusEnum] = None,
        severity: Optional[AlertSeverityEnum] = None,
        limit: int = 50,
    ) -> List[Alert]:
        query = self.db.query(Alert).filter(Alert.tenant_id == tenant_id)
        if status:
            query = query.filter(Alert.status == AlertStatusEnum(status))
        if severity:
            query = query.filter(Alert.severity == AlertSeverityEnum(severity))
        return query.order_by(desc(Alert.created_at)).limit(limit).all()

    def get_open_alerts_count(self, tenant_id: UUID) -> Dict[str, int]:
        rows = (
            self.db.query(Alert.severity, func.count(Alert.id))
            .filter(Alert.tenant_id == tenant_id, Alert.status == AlertStatusEnum.open)
            .group_by(Alert.severity)
            .all()
        )
        counts = {severity: count for severity, count in rows}
        return {
            "total": sum(counts.values()),
            "critical": counts.get(AlertSeverityEnum.critical, 0),
            "warning": counts.get(AlertSeverityEnum.warning, 0),
            "info": counts.get(AlertSeverityEnum.info, 0),
        }

    def _transition(self, alert_id: UUID, tenant_id: UUID, target: AlertStatusEnum) -> Alert:
        alert = (
            self.db.query(Alert)
            .filter(Alert.id == alert_id, Alert.tenant_id == tenant_id)
            .first()
        )
        if not alert:
            raise AlertNotFoundError(f"Alert {alert_id} not found")
        if alert.status not in ALLOWED_TRANSITIONS[target]:
            raise AlertTransitionError(
                f"Cannot move alert from {alert.status.value} to {target.value}"
            )

        alert.status = target
        if target == AlertStatusEnum.resolved:
            alert.resolved_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(alert)
        return alert

    def acknowledge_alert(self, alert_id: UUID, tenant_id: UUID) -> Alert:
        return self._transition(alert_id, tenant_id, AlertStatusEnum.acknowledged)

    def resolve_alert(self, alert_id: UUID, tenant_id: UUID) -> Alert:
        return self._transition(alert_id, tenant_id, AlertStatusEnum.resolved)

    def resolve_all_alerts(self, tenant_id: UUID) -> int:
        """Resolve every non-RESOLVED alert; returns how many changed."""
        updated = (
            self.db.query(Alert)
            .filter(Alert.tenant_id == tenant_id, Alert.status != AlertStatusEnum.resolved)
            .update(
                {Alert.status: AlertStatusEnum.resolved, Alert.resolved_at: datetime.utcnow()},
                synchronize_session=False,
            )
        )
        self.db.commit()
        logger.info("[ALERTS] Resolved %d alerts for tenant %s", updated, tenant_id)
        return updated

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _campaign_aggregates(self, tenant_id: UUID):
        """Per-campaign sums over the trailing window; campaigns without rows are absent."""
        start, end = get_date_range(self.settings.ALERT_WINDOW_DAYS)
        return (
            self.db.query(
                Campaign.id,
                Campaign.name,
                Campaign.budget,
                func.coalesce(func.sum(Metric.impressions), 0).label("impressions"),
                func.coalesce(func.sum(Metric.clicks), 0).label("clicks"),
                func.coalesce(func.sum(Metric.spend), 0).label("spend"),
                func.coalesce(func.sum(Metric.conversions), 0).label("conversions"),
                func.coalesce(func.sum(Metric.revenue), 0).label("revenue"),
            )
            .join(Metric, Metric.campaign_id == Campaign.id)
            .filter(
                Campaign.tenant_id == tenant_id,
                Metric.date >= as_date(start),
                Metric.date <= as_date(end),
            )
            .group_by(Campaign.id, Campaign.name, Campaign.budget)
            .all()
        )

    def _has_unresolved(self, tenant_id: UUID, campaign_id: UUID, alert_type: str) -> bool:
        return (
            self.db.query(Alert.id)
            .filter(
                Alert.tenant_id == tenant_id,
                Alert.campaign_id == campaign_id,
                Alert.type == alert_type,
                Alert.status != AlertStatusEnum.resolved,
            )
            .first()
            is not None
        )

    def check_alerts(self, tenant_id: UUID) -> List[Alert]:
        """Evaluate all active rules for the tenant; returns newly created alerts."""
        logger.info("[ALERTS] Checking alerts for tenant %s", tenant_id)

        rules = (
            self.db.query(AlertRule)
            .filter(AlertRule.tenant_id == tenant_id, AlertRule.is_active.is_(True))
            .all()
        )
        if not rules:
            logger.info("[ALERTS] No active rules for tenant %s", tenant_id)
            return []

        created: List[Alert] = []
        for row in self._campaign_aggregates(tenant_id):
            aggregated = Totals.from_sums(
                row.impressions, row.clicks, row.spend, row.conversions, row.revenue
            ).as_dict()

            for rule in rules:
                violation = evaluate_rule(rule, aggregated, row.budget)
                if violation is None:
                    continue

                alert_type = alert_type_for(rule.name)
                if self._has_unresolved(tenant_id, row.id, alert_type):
                    continue

                alert = Alert(
                    tenant_id=tenant_id,
                    rule_id=rule.id,
                    campaign_id=row.id,
                    type=alert_type,
                    severity=rule.severity,
                    status=AlertStatusEnum.open,
                    title=f"{rule.name}: {row.name}",
                    message=build_alert_message(rule, violation["value"], row.name),
                    alert_metadata=violation,
                )
                self.db.add(alert)
                # Flush so a later rule with the same type sees this alert
                self.db.flush()
                created.append(alert)

        self.db.commit()
        logger.info("[ALERTS] Created %d new alerts for tenant %s", len(created), tenant_id)
        return created


def check_all_tenants(db: Session) -> Dict[str, Any]:
    """Run check_alerts for every tenant; one tenant's failure does not stop the rest."""
    service = AlertService(db)
    created = 0
    failed = 0
    for (tenant_id,) in db.query(Tenant.id).all():
        try:
            created += len(service.check_alerts(tenant_id))
        except Exception as e:
            db.rollback()
            failed += 1
            logger.exception("[ALERTS] Alert check failed for tenant %s: %s", tenant_id, e)
            capture_exception(e, extra={"tenant_id": str(tenant_id)})
    return {"alerts_created": created, "tenants_failed": failed}
