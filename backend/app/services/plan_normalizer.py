"""
Plan normalization service.

Locates the JSON plan inside the model's free-text answer, validates it, and
fills in defaults so the rest of the compiler works on a typed Plan instead of
raw model output.
"""

import json
import logging
import math
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from app.models.flow import EmailStep, FlowType, Plan, TriggerType
from app.services.errors import MalformedPlan

logger = logging.getLogger(__name__)

# Flow type used when the model omits flowType or invents one
FALLBACK_FLOW_TYPE = FlowType.NURTURE
FALLBACK_TRIGGER_TYPE = TriggerType.MANUAL

# Spellings the model produces besides the canonical enum values
_FLOW_TYPE_ALIASES = {
    "welcome_series": FlowType.WELCOME,
    "win_back": FlowType.WINBACK,
    "winback_flow": FlowType.WINBACK,
    "cart_abandonment": FlowType.ABANDONED_CART,
    "abandoned_checkout": FlowType.ABANDONED_CART,
    "postpurchase": FlowType.POST_PURCHASE,
    "nurture_series": FlowType.NURTURE,
}

_TRIGGER_TYPE_ALIASES = {
    "segment": TriggerType.SEGMENT_ADDED,
    "added_to_segment": TriggerType.SEGMENT_ADDED,
    "tag": TriggerType.TAG_ADDED,
}

_DECODER = json.JSONDecoder()

PLAN_PROMPT = """\
You are a flow automation specialist. Analyze this request and determine what type of email flow to build:

"{message}"
{history}
Identify:
1. Flow type (welcome series, abandoned cart, win-back, nurture, post-purchase)
2. Number of emails in the sequence
3. Timing between emails (delays)
4. Target audience/trigger
5. Key messages for each email

Respond in JSON format:
{
  "flowType": "welcome|abandoned_cart|winback|nurture|post_purchase",
  "flowName": "descriptive name",
  "description": "what this flow does",
  "triggerType": "segment_added|tag_added|date|manual",
  "targetAudience": "who should receive this",
  "emails": [
    {
      "sequence": 1,
      "delayDays": 0,
      "subject": "email subject",
      "purpose": "what this email accomplishes",
      "keyMessage": "main message",
      "cta": "call to action"
    }
  ]
}
"""


def build_plan_prompt(
    message: str,
    conversation_history: Optional[List[Dict[str, str]]] = None,
) -> str:
    """
    Build the plan-understanding prompt for a user request.

    Earlier conversation turns, when given, are quoted so follow-up messages
    like "make it 5 emails instead" can be resolved against prior context.
    """
    history = ""
    if conversation_history:
        lines = [
            f"{turn.get('role', 'user')}: {turn.get('content', '')}"
            for turn in conversation_history
        ]
        history = "\nEarlier conversation:\n" + "\n".join(lines) + "\n"

    return PLAN_PROMPT.replace("{message}", message).replace("{history}", history)


def extract_json_object(text: str) -> str:
    """
    Return the first complete {...} object from a model response.

    Decoding is attempted at each "{" in turn, so surrounding prose and
    markdown code fences are ignored, including prose that itself contains
    braces (e.g. "use {{firstName}} in the greeting").

    Raises:
        MalformedPlan: if no position in the text decodes to an object.
    """
    text = text or ""
    start = text.find("{")
    while start != -1:
        try:
            value, end = _DECODER.raw_decode(text, start)
        except ValueError:
            value = None
        if isinstance(value, dict):
            return text[start:end]
        start = text.find("{", start + 1)

    raise MalformedPlan("No JSON object found in model response")


def parse_plan(text: str) -> Plan:
    """Locate, decode and normalize the plan in a raw model response."""
    raw = json.loads(extract_json_object(text))
    return normalize_plan(raw)


def _coerce_enum(value: Any, aliases: dict, enum_cls, default, label: str):
    if isinstance(value, str):
        key = re.sub(r"[\s\-]+", "_", value.strip().lower())
        if key in aliases:
            return aliases[key]
        try:
            return enum_cls(key)
        except ValueError:
            pass

    logger.warning("normalize_plan: unrecognised %s %r, using %s", label, value, default.value)
    return default


def _coerce_delay(value: Any) -> int:
    """
    Whole, non-negative days.

    Examples:
        3      -> 3
        "2"    -> 2
        2.7    -> 2
        -1     -> 0
        "soon" -> 0
        None   -> 0
        inf    -> 0
    """
    if isinstance(value, bool):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    if isinstance(value, (int, float)):
        return max(int(value), 0)
    if isinstance(value, str):
        match = re.match(r"^\s*([0-9]+)", value)
        if match:
            return int(match.group(1))
    return 0


def _coerce_sequence(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, (int, float)) and value >= 1:
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if text.isascii() and text.isdecimal() and int(text) >= 1:
            return int(text)
    return None


def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value)


def normalize_plan(raw: Dict[str, Any]) -> Plan:
    """
    Convert a decoded plan object into a validated Plan.

    - Unknown keys are ignored.
    - flowType falls back to FALLBACK_FLOW_TYPE, triggerType to manual.
    - Steps are ordered by their stated sequence and renumbered 1..N.
    - delayDays is coerced to whole non-negative days.

    Raises:
        MalformedPlan: if emails is missing, empty, or holds non-object entries.
    """
    emails = raw.get("emails")
    if not isinstance(emails, list) or not emails:
        raise MalformedPlan("Plan has no email steps")

    for entry in emails:
        if not isinstance(entry, dict):
            raise MalformedPlan(f"Email step is not an object: {entry!r}")

    flow_type = _coerce_enum(
        raw.get("flowType"), _FLOW_TYPE_ALIASES, FlowType, FALLBACK_FLOW_TYPE, "flowType"
    )
    trigger_type = _coerce_enum(
        raw.get("triggerType"), _TRIGGER_TYPE_ALIASES, TriggerType, FALLBACK_TRIGGER_TYPE, "triggerType"
    )

    flow_name = _clean_text(raw.get("flowName"))
    if not flow_name:
        flow_name = f"{flow_type.value.replace('_', ' ').title()} Flow"

    # Stable sort: entries without a usable sequence keep their list position
    indexed = list(enumerate(emails, start=1))
    indexed.sort(key=lambda item: (_coerce_sequence(item[1].get("sequence")) or item[0], item[0]))

    steps = [
        EmailStep(
            sequence=position,
            delay_days=_coerce_delay(entry.get("delayDays")),
            subject=_clean_text(entry.get("subject")),
            purpose=_clean_text(entry.get("purpose")),
            key_message=_clean_text(entry.get("keyMessage")),
            cta=_clean_text(entry.get("cta")),
        )
        for position, (_, entry) in enumerate(indexed, start=1)
    ]

    try:
        return Plan(
            flow_type=flow_type,
            flow_name=flow_name,
            description=_clean_text(raw.get("description")),
            trigger_type=trigger_type,
            target_audience=_clean_text(raw.get("targetAudience")),
            emails=steps,
        )
    except ValidationError as exc:
        raise MalformedPlan(f"Plan failed validation: {exc}") from exc
