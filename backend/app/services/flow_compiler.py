"""
Flow compiler: natural-language request -> persisted automation flow.

Pipeline:
    1. Ask the model for a plan and normalize it
    2. Resolve the trigger audience and register it as a segment
    3. Generate and store one email template per step
    4. Assemble and validate the trigger/delay/email graph
    5. Save the flow as a draft

The caller always gets a transcript back. A plan that cannot be read turns
into a request for more details; failures after that return the transcript
built so far plus a failure notice. Nothing is retried or rolled back.
"""

import logging
from typing import Dict, List, Optional

from app.models.flow import AudienceRef, AudienceRule, GeneratedStep, Plan
from app.services.audience import resolve, segment_description, segment_name
from app.services.content import generate_step_content
from app.services.errors import ExternalCallFailure, FlowCompilerError, MalformedPlan
from app.services.flow_record import BuildTranscript, build_compiled_flow
from app.services.flow_store import FlowStore
from app.services.graph_assembler import assemble, validate_flow_definition
from app.services.llm import TextCompletion
from app.services.plan_normalizer import build_plan_prompt, parse_plan

logger = logging.getLogger(__name__)

GUIDANCE_MESSAGE = (
    "I need more information to build this flow. Could you describe:\n"
    "- What type of email sequence? (welcome, win-back, etc.)\n"
    "- How many emails?\n"
    "- Who should receive it?"
)

PLAN_FAILED_MESSAGE = "Sorry, I encountered an error building your flow. Please try again."


def compile_flow(
    message: str,
    owner_id: str,
    completion: TextCompletion,
    store: FlowStore,
    conversation_history: Optional[List[Dict[str, str]]] = None,
) -> str:
    """
    Compile a free-text flow request for ``owner_id`` and return the transcript.

    Args:
        message: The user's request, e.g. "build me a win-back flow".
        owner_id: Owner of the segment, templates and flow that get created.
        completion: Text-completion client (plan + per-step content).
        store: Destination for segment, template and flow rows.
        conversation_history: Earlier chat turns, quoted in the plan prompt.

    Returns:
        Human-readable build transcript, guidance text, or an error transcript.
    """
    try:
        raw_text = completion.generate(build_plan_prompt(message, conversation_history))
    except ExternalCallFailure:
        logger.exception("Flow plan request failed")
        return PLAN_FAILED_MESSAGE

    try:
        plan = parse_plan(raw_text)
    except MalformedPlan as exc:
        logger.info(f"Flow plan rejected, asking for details: {exc}")
        return GUIDANCE_MESSAGE

    logger.info(
        f"Flow plan parsed: type={plan.flow_type.value}, trigger={plan.trigger_type.value}, "
        f"emails={len(plan.emails)}"
    )
    return build_flow(plan, message, owner_id, completion, store)


def register_audience(
    plan: Plan,
    rule: AudienceRule,
    owner_id: str,
    store: FlowStore,
    original_message: str,
) -> AudienceRef:
    """Create the trigger segment when the rule has conditions."""
    if not rule.requires_segment:
        return AudienceRef()

    name = segment_name(plan)
    segment_id = store.create_segment(
        owner_id,
        name,
        segment_description(plan),
        rule.conditions,
        original_message,
    )
    return AudienceRef(segment_id=segment_id, segment_name=name, conditions=rule.conditions)


def build_flow(
    plan: Plan,
    original_message: str,
    owner_id: str,
    completion: TextCompletion,
    store: FlowStore,
) -> str:
    transcript = BuildTranscript()

    try:
        transcript.header(plan)

        # Step 1: trigger audience
        transcript.trigger_started()
        rule = resolve(plan.flow_type, plan.trigger_type)
        audience_ref = register_audience(plan, rule, owner_id, store, original_message)
        transcript.audience_resolved(rule, audience_ref)

        # Step 2: one template per email, in sequence order
        transcript.content_started()
        generated_steps: List[GeneratedStep] = []
        for step in plan.emails:
            content = generate_step_content(completion, plan, step)
            template_id = store.create_email_template(
                owner_id,
                f"{plan.flow_name} - Email {step.sequence}",
                content.subject,
                content.body,
                plan.flow_type.value,
                step.purpose,
            )
            generated = GeneratedStep(
                sequence=step.sequence,
                delay_days=step.delay_days,
                subject=content.subject,
                template_id=template_id,
            )
            generated_steps.append(generated)
            transcript.email_scheduled(generated)
        transcript.content_finished()

        # Step 3: graph
        definition = assemble(plan, audience_ref, generated_steps)
        validate_flow_definition(definition)
        transcript.assembled(definition)

        # Step 4: persist
        transcript.saving_started()
        compiled_flow = build_compiled_flow(plan, audience_ref, definition)
        flow_id = store.create_flow(owner_id, compiled_flow)
        logger.info(
            f"Flow {flow_id} compiled for user {owner_id}: "
            f"{len(definition.nodes)} nodes, {len(definition.edges)} edges"
        )
        transcript.saved(compiled_flow)

        transcript.summary(plan, generated_steps, audience_ref)

    except FlowCompilerError:
        logger.exception(f"Flow build aborted for user {owner_id}")
        transcript.fail()

    return transcript.render()
