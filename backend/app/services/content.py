"""
Email content generation for flow steps.

Builds the per-step content request and extracts the SUBJECT/BODY sections
from the model's answer, falling back to the plan's advisory subject or the
raw text when a marker is missing.
"""

import logging
import re

from app.models.flow import EmailStep, GeneratedContent, Plan
from app.services.llm import TextCompletion

logger = logging.getLogger(__name__)

PERSONALIZATION_TOKENS = ["{{firstName}}", "{{totalSpent}}"]

# First match only; the subject is the rest of that line
_SUBJECT_RE = re.compile(r"SUBJECT:[ \t]*(.+)", re.IGNORECASE)
_BODY_RE = re.compile(r"BODY:\s*([\s\S]+)", re.IGNORECASE)

CONTENT_PROMPT = """\
Write email {sequence} of {total} for a {flow_type} flow.

Context:
- Flow: {flow_name}
- Email purpose: {purpose}
- Key message: {key_message}
- Call to action: {cta}
- Target: {target_audience}

Requirements:
1. Subject line: {subject}
2. Email body with:
   - Personalized greeting: "Hi {{{{firstName}}}},"
   - {key_message}
   - Clear CTA: {cta}
   - Professional signature
3. Use HTML with inline styles for email compatibility
4. Include personalization variables: {tokens}

Format:
SUBJECT: [subject line]

BODY:
[Complete HTML email with inline CSS]"""


def build_content_prompt(plan: Plan, step: EmailStep) -> str:
    """Build the content request for one step of the plan."""
    return CONTENT_PROMPT.format(
        sequence=step.sequence,
        total=len(plan.emails),
        flow_type=plan.flow_type.value,
        flow_name=plan.flow_name,
        purpose=step.purpose,
        key_message=step.key_message,
        cta=step.cta,
        target_audience=plan.target_audience,
        subject=step.subject or "Create an engaging subject line",
        tokens=", ".join(PERSONALIZATION_TOKENS),
    )


def parse_content_response(text: str, fallback_subject: str) -> GeneratedContent:
    """
    Split a model response into subject and body.

    Examples:
        "SUBJECT: Hi\\n\\nBODY:\\n<p>..</p>" -> subject "Hi", body "<p>..</p>"
        "<p>no markers</p>"                 -> fallback subject, whole text as body
    """
    text = text or ""

    subject_match = _SUBJECT_RE.search(text)
    subject = subject_match.group(1).strip() if subject_match else ""
    subject_fallback = not subject
    if subject_fallback:
        logger.debug("parse_content_response: no SUBJECT marker, using %r", fallback_subject)
        subject = fallback_subject

    body_match = _BODY_RE.search(text)
    body_fallback = body_match is None
    if body_fallback:
        logger.debug("parse_content_response: no BODY marker, using whole response")
        body = text.strip()
    else:
        body = body_match.group(1).strip()

    return GeneratedContent(
        subject=subject,
        body=body,
        subject_fallback=subject_fallback,
        body_fallback=body_fallback,
    )


def generate_step_content(
    completion: TextCompletion,
    plan: Plan,
    step: EmailStep,
) -> GeneratedContent:
    """One completion call per step. Failures propagate; nothing is retried."""
    raw_text = completion.generate(build_content_prompt(plan, step))
    return parse_content_response(raw_text, step.subject)
