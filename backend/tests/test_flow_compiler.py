"""
End-to-end tests for compile_flow with deterministic fakes for the
text-completion service and the store.
"""

import json
import os

import pytest

# Mock environment variables before importing app modules
os.environ['SUPABASE_URL'] = 'https://test.supabase.co'
os.environ['SUPABASE_KEY'] = 'test-anon-key'

from app.models.flow import NodeType
from app.services.errors import ExternalCallFailure
from app.services.flow_compiler import GUIDANCE_MESSAGE, PLAN_FAILED_MESSAGE, compile_flow
from app.services.flow_record import FAILURE_NOTICE
from app.services.graph_assembler import derive_schedule


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeCompletion:
    """Returns the plan for the first prompt, then one email per content prompt."""

    def __init__(self, plan_text, fail_on_call=None, email_texts=None):
        self.plan_text = plan_text
        self.fail_on_call = fail_on_call
        self.email_texts = email_texts
        self.prompts = []

    def generate(self, prompt):
        self.prompts.append(prompt)
        call_number = len(self.prompts)
        if call_number == self.fail_on_call:
            raise ExternalCallFailure("text completion", "rate limited")
        if call_number == 1:
            return self.plan_text
        if self.email_texts is not None:
            return self.email_texts[call_number - 2]
        return f"SUBJECT: Generated {call_number - 1}\n\nBODY:\n<p>Email {call_number - 1}</p>"


class FakeStore:

    def __init__(self, fail_on=None):
        self.fail_on = fail_on
        self.segments = []
        self.templates = []
        self.flows = []
        self._counter = 0

    def _next_id(self, prefix):
        self._counter += 1
        return f"{prefix}-{self._counter}"

    def create_segment(self, owner_id, name, description, conditions, ai_prompt):
        if self.fail_on == "segment":
            raise ExternalCallFailure("store", "segments insert rejected")
        self.segments.append({
            "owner_id": owner_id, "name": name, "description": description,
            "conditions": conditions, "ai_prompt": ai_prompt,
        })
        return self._next_id("seg")

    def create_email_template(self, owner_id, name, subject, content, category, description):
        if self.fail_on == "template" and len(self.templates) == 1:
            raise ExternalCallFailure("store", "email_templates insert rejected")
        self.templates.append({
            "owner_id": owner_id, "name": name, "subject": subject, "content": content,
            "category": category, "description": description,
        })
        return self._next_id("tpl")

    def create_flow(self, owner_id, compiled_flow):
        if self.fail_on == "flow":
            raise ExternalCallFailure("store", "flows insert rejected")
        self.flows.append({"owner_id": owner_id, "flow": compiled_flow})
        return self._next_id("flow")

    @property
    def call_count(self):
        return len(self.segments) + len(self.templates) + len(self.flows)


def _plan_json(flow_type="welcome", trigger_type="segment_added", delays=(0, 3, 5)):
    return json.dumps({
        "flowType": flow_type,
        "flowName": "Welcome Series",
        "description": "Greets new subscribers",
        "triggerType": trigger_type,
        "targetAudience": "new subscribers",
        "emails": [
            {"sequence": i, "delayDays": d, "subject": f"Planned {i}", "purpose": f"purpose {i}",
             "keyMessage": f"message {i}", "cta": "Shop"}
            for i, d in enumerate(delays, start=1)
        ],
    })


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

class TestCompileFlowSuccess:

    def test_welcome_flow_end_to_end(self):
        completion = FakeCompletion("Here is the plan:\n```json\n" + _plan_json() + "\n```")
        store = FakeStore()

        transcript = compile_flow("build me a welcome flow", "user-123", completion, store)

        # One plan call plus one content call per step
        assert len(completion.prompts) == 4

        assert len(store.segments) == 1
        segment = store.segments[0]
        assert segment["owner_id"] == "user-123"
        assert segment["name"] == "Welcome Series - Target Audience"
        assert segment["ai_prompt"] == "build me a welcome flow"
        assert [(c.field, c.operator.value, c.value) for c in segment["conditions"]] == [
            ("emailOptIn", "=", True),
            ("totalOrders", "<=", 1),
        ]

        assert [t["name"] for t in store.templates] == [
            "Welcome Series - Email 1",
            "Welcome Series - Email 2",
            "Welcome Series - Email 3",
        ]
        assert store.templates[0]["subject"] == "Generated 1"
        assert store.templates[0]["content"] == "<p>Email 1</p>"
        assert store.templates[0]["category"] == "welcome"
        assert store.templates[0]["description"] == "purpose 1"

        assert len(store.flows) == 1
        compiled = store.flows[0]["flow"]
        nodes = compiled.flow_definition.nodes
        assert [n.id for n in nodes] == [
            "trigger-1", "email-1", "delay-2", "email-2", "delay-3", "email-3",
        ]
        assert len(compiled.flow_definition.edges) == 5
        assert nodes[0].data.segment_id == "seg-1"
        assert nodes[1].data.email_template_id == "tpl-2"
        assert compiled.trigger_config.segment_name == "Welcome Series - Target Audience"

        assert "✅ **Flow Complete!**" in transcript
        assert "✓ Created 6 nodes (1 trigger, 3 emails, 2 delays)" in transcript
        assert FAILURE_NOTICE not in transcript

    def test_schedule_round_trips_through_graph(self):
        completion = FakeCompletion(_plan_json(delays=(6, 2, 0, 4)))
        store = FakeStore()

        compile_flow("nurture please", "user-1", completion, store)

        definition = store.flows[0]["flow"].flow_definition
        assert derive_schedule(definition) == [
            ("Generated 1", 0),
            ("Generated 2", 2),
            ("Generated 3", 0),
            ("Generated 4", 4),
        ]

    def test_manual_trigger_creates_no_segment(self):
        completion = FakeCompletion(_plan_json(trigger_type="manual", delays=(0, 1)))
        store = FakeStore()

        transcript = compile_flow("manual flow", "user-1", completion, store)

        assert store.segments == []
        assert len(store.templates) == 2
        trigger = store.flows[0]["flow"].flow_definition.nodes[0]
        assert trigger.type == NodeType.TRIGGER
        assert trigger.data.segment_id is None
        assert trigger.data.segment_name == "Manual Trigger"
        assert "✓ Trigger: Manual activation" in transcript

    def test_missing_markers_fall_back_silently(self):
        completion = FakeCompletion(
            _plan_json(delays=(0,)),
            email_texts=["<p>No markers here</p>"],
        )
        store = FakeStore()

        transcript = compile_flow("welcome", "user-1", completion, store)

        assert store.templates[0]["subject"] == "Planned 1"
        assert store.templates[0]["content"] == "<p>No markers here</p>"
        assert FAILURE_NOTICE not in transcript

    def test_overflowing_numbers_still_compile(self):
        plan_text = _plan_json(delays=(0, 3)).replace('"sequence": 2', '"sequence": 1e400')
        plan_text = plan_text.replace('"delayDays": 3', '"delayDays": 1e400')
        completion = FakeCompletion(plan_text + "\nPersonalize with {{firstName}}.")
        store = FakeStore()

        transcript = compile_flow("welcome flow", "user-1", completion, store)

        assert "✅ **Flow Complete!**" in transcript
        assert FAILURE_NOTICE not in transcript
        assert len(store.templates) == 2
        nodes = store.flows[0]["flow"].flow_definition.nodes
        assert [n.id for n in nodes] == ["trigger-1", "email-1", "email-2"]

    def test_conversation_history_reaches_plan_prompt(self):
        completion = FakeCompletion(_plan_json(delays=(0,)))
        compile_flow(
            "make it shorter", "user-1", completion, FakeStore(),
            conversation_history=[{"role": "user", "content": "build a welcome flow"}],
        )
        assert "user: build a welcome flow" in completion.prompts[0]

    def test_no_deduplication_between_compilations(self):
        store = FakeStore()
        compile_flow("welcome", "user-1", FakeCompletion(_plan_json()), store)
        compile_flow("welcome", "user-1", FakeCompletion(_plan_json()), store)

        assert len(store.flows) == 2
        assert len(store.segments) == 2
        assert len({t["name"] for t in store.templates}) == 3
        assert len(store.templates) == 6


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------

class TestCompileFlowMalformedPlan:

    @pytest.mark.parametrize("plan_text", [
        "I'm not sure what you mean.",
        '{"flowType": "welcome", "emails": [',
        '{"flowType": "welcome", "emails": []}',
        '{"flowType": "welcome"}',
    ])
    def test_guidance_and_no_store_calls(self, plan_text):
        completion = FakeCompletion(plan_text)
        store = FakeStore()

        result = compile_flow("do the thing", "user-1", completion, store)

        assert result == GUIDANCE_MESSAGE
        assert store.call_count == 0
        assert len(completion.prompts) == 1


class TestCompileFlowAborts:

    def test_plan_call_failure_returns_apology(self):
        completion = FakeCompletion(_plan_json(), fail_on_call=1)
        store = FakeStore()

        result = compile_flow("welcome", "user-1", completion, store)

        assert result == PLAN_FAILED_MESSAGE
        assert store.call_count == 0

    def test_content_failure_returns_partial_transcript(self):
        # Call 3 is the content request for email 2
        completion = FakeCompletion(_plan_json(), fail_on_call=3)
        store = FakeStore()

        transcript = compile_flow("welcome", "user-1", completion, store)

        assert transcript.endswith(FAILURE_NOTICE)
        assert '✓ Email 1: "Generated 1"' in transcript
        assert "Email 2:" not in transcript
        assert len(completion.prompts) == 3
        # Partial progress is kept, not rolled back
        assert len(store.segments) == 1
        assert len(store.templates) == 1
        assert store.flows == []

    def test_segment_failure_returns_partial_transcript(self):
        store = FakeStore(fail_on="segment")
        completion = FakeCompletion(_plan_json())

        transcript = compile_flow("welcome", "user-1", completion, store)

        assert "🎯 **Step 1: Setting Up Trigger**" in transcript
        assert transcript.endswith(FAILURE_NOTICE)
        assert len(completion.prompts) == 1
        assert store.templates == []

    def test_template_failure_returns_partial_transcript(self):
        store = FakeStore(fail_on="template")
        transcript = compile_flow("welcome", "user-1", FakeCompletion(_plan_json()), store)

        assert '✓ Email 1: "Generated 1"' in transcript
        assert transcript.endswith(FAILURE_NOTICE)
        assert store.flows == []

    def test_flow_save_failure_returns_partial_transcript(self):
        store = FakeStore(fail_on="flow")
        transcript = compile_flow("welcome", "user-1", FakeCompletion(_plan_json()), store)

        assert "✓ Connected 5 steps" in transcript
        assert "💾 **Step 4: Saving Flow**" in transcript
        assert "Flow created" not in transcript
        assert transcript.endswith(FAILURE_NOTICE)
