"""
Audience resolution for flow triggers.

Maps a flow type to the fixed segment conditions registered for its trigger.
The conditions are never evaluated here; the store registers them as a
segment definition.
"""

from typing import Dict, List

from app.models.flow import (
    MANUAL_TRIGGER_LABEL,
    AudienceCondition,
    AudienceRule,
    ConditionOperator,
    FlowType,
    Plan,
    TriggerType,
)


def _cond(field: str, operator: ConditionOperator, value) -> AudienceCondition:
    return AudienceCondition(field=field, operator=operator, value=value)


_EMAIL_SUBSCRIBERS = AudienceRule(
    conditions=[_cond("emailOptIn", ConditionOperator.EQ, True)],
    rationale="email subscribers",
    trigger_label="Email subscribers",
)

# Every FlowType member must have an entry; flow types without a dedicated
# audience share the email-subscriber catch-all.
AUDIENCE_RULES: Dict[FlowType, AudienceRule] = {
    FlowType.WELCOME: AudienceRule(
        conditions=[
            _cond("emailOptIn", ConditionOperator.EQ, True),
            _cond("totalOrders", ConditionOperator.LTE, 1),
        ],
        rationale="new customers, subscribers",
        trigger_label="New customers (1 or fewer orders, email subscribers)",
    ),
    FlowType.WINBACK: AudienceRule(
        conditions=[
            _cond("daysSinceLastOrder", ConditionOperator.GTE, 90),
            _cond("totalOrders", ConditionOperator.GTE, 3),
            _cond("emailOptIn", ConditionOperator.EQ, True),
        ],
        rationale="inactive repeat customers",
        trigger_label="Inactive customers (90+ days, 3+ orders)",
    ),
    FlowType.POST_PURCHASE: AudienceRule(
        conditions=[
            _cond("daysSinceLastOrder", ConditionOperator.LTE, 7),
            _cond("emailOptIn", ConditionOperator.EQ, True),
        ],
        rationale="recent purchasers",
        trigger_label="Recent purchasers (within 7 days)",
    ),
    FlowType.ABANDONED_CART: _EMAIL_SUBSCRIBERS,
    FlowType.NURTURE: _EMAIL_SUBSCRIBERS,
}

MANUAL_AUDIENCE = AudienceRule(
    conditions=[],
    rationale=MANUAL_TRIGGER_LABEL,
    trigger_label="Manual activation",
)


def resolve(flow_type: FlowType, trigger_type: TriggerType) -> AudienceRule:
    """
    Resolve the audience rule for a trigger.

    Only segment_added triggers get conditions; every other trigger type is a
    label-only manual audience with no segment to create.
    """
    if trigger_type != TriggerType.SEGMENT_ADDED:
        return MANUAL_AUDIENCE.model_copy(deep=True)

    return AUDIENCE_RULES[flow_type].model_copy(deep=True)


def segment_name(plan: Plan) -> str:
    return f"{plan.flow_name} - Target Audience"


def segment_description(plan: Plan) -> str:
    return f"Auto-generated segment for {plan.flow_name}"


def conditions_payload(conditions: List[AudienceCondition]) -> List[dict]:
    """Plain JSON-ready dicts, e.g. {"field": "emailOptIn", "operator": "=", "value": True}."""
    return [condition.model_dump(mode="json") for condition in conditions]
