"""
Compiled flow record and build transcript.

``build_compiled_flow`` assembles the artifact handed to the store.
``BuildTranscript`` narrates the build for the requester; it is a reporting
view only and is rendered even when compilation stops part way.
"""

from typing import List, Sequence

from app.models.flow import (
    AudienceRef,
    AudienceRule,
    CompiledFlow,
    FlowDefinition,
    GeneratedStep,
    NodeType,
    Plan,
    TriggerType,
)

FAILURE_NOTICE = "❌ An error occurred while building the flow. Please try again."


def build_compiled_flow(
    plan: Plan,
    audience_ref: AudienceRef,
    definition: FlowDefinition,
) -> CompiledFlow:
    return CompiledFlow(
        name=plan.flow_name,
        description=plan.description,
        trigger_type=plan.trigger_type,
        trigger_config=audience_ref,
        flow_definition=definition,
    )


def _days(days: int) -> str:
    return f"{days} day{'s' if days > 1 else ''}"


class BuildTranscript:
    """Line-by-line narration of one compilation."""

    def __init__(self):
        self.lines: List[str] = []

    def add(self, line: str = "") -> None:
        self.lines.append(line)

    def header(self, plan: Plan) -> None:
        self.add(f"🔄 **Building {plan.flow_type.value} Flow**")
        self.add(f'Flow: "{plan.flow_name}"')
        self.add(f"Emails: {len(plan.emails)} in sequence")
        self.add()

    def trigger_started(self) -> None:
        self.add("🎯 **Step 1: Setting Up Trigger**")

    def audience_resolved(self, rule: AudienceRule, audience_ref: AudienceRef) -> None:
        if audience_ref.segment_id is None:
            self.add("✓ Trigger: Manual activation")
        else:
            self.add(f"✓ Trigger: {rule.trigger_label}")
            self.add(f'✓ Created segment: "{audience_ref.segment_name}"')
        self.add()

    def content_started(self) -> None:
        self.add("✍️ **Step 2: Writing Email Sequence**")

    def email_scheduled(self, step: GeneratedStep) -> None:
        self.add(f'✓ Email {step.sequence}: "{step.subject}"')
        if step.sequence > 1 and step.delay_days > 0:
            self.add(f"  → Send {_days(step.delay_days)} after previous email")

    def content_finished(self) -> None:
        self.add()

    def assembled(self, definition: FlowDefinition) -> None:
        counts = {node_type: 0 for node_type in NodeType}
        for node in definition.nodes:
            counts[node.type] += 1

        self.add("🔧 **Step 3: Assembling Flow**")
        self.add(
            f"✓ Created {len(definition.nodes)} nodes "
            f"({counts[NodeType.TRIGGER]} trigger, {counts[NodeType.EMAIL]} emails, "
            f"{counts[NodeType.DELAY]} delays)"
        )
        self.add(f"✓ Connected {len(definition.edges)} steps")
        self.add()

    def saving_started(self) -> None:
        self.add("💾 **Step 4: Saving Flow**")

    def saved(self, compiled_flow: CompiledFlow) -> None:
        self.add(f'✓ Flow created: "{compiled_flow.name}"')
        self.add(f"✓ Status: {compiled_flow.status.value.title()} (ready for review)")
        self.add()

    def summary(
        self,
        plan: Plan,
        steps: Sequence[GeneratedStep],
        audience_ref: AudienceRef,
    ) -> None:
        self.add("✅ **Flow Complete!**")
        self.add()
        self.add("**📧 Email Sequence:**")
        for position, step in enumerate(steps, start=1):
            if position == 1:
                self.add(f'• Email 1: "{step.subject}" (immediately)')
            elif step.delay_days > 0:
                self.add(f'• Email {step.sequence}: "{step.subject}" ({_days(step.delay_days)} later)')
            else:
                self.add(f'• Email {step.sequence}: "{step.subject}" (right after the previous email)')
        self.add()
        self.add("**🎯 Trigger:**")
        if plan.trigger_type == TriggerType.SEGMENT_ADDED:
            self.add("• Type: When customer added to segment")
        else:
            self.add("• Type: Manual")
        self.add(f'• Segment: "{audience_ref.segment_name}"')
        self.add()
        self.add("**Next Steps:**")
        self.add("1. Visit /flows to review the flow")
        self.add('2. Click "Edit" to see the visual flow builder')
        self.add("3. Activate the flow when ready")
        self.add()
        self.add("💡 *Tip: You can edit email templates and timing in the flow editor*")

    def fail(self, notice: str = FAILURE_NOTICE) -> None:
        self.add()
        self.add(notice)

    def render(self) -> str:
        return "\n".join(self.lines)
