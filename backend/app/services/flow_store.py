"""
Supabase persistence for compiled flows.

Writes the segment, email templates and flow rows produced by a compilation.
Every call is a plain insert: not idempotent, never retried.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Protocol

from app.db import EMAIL_TEMPLATES_TABLE, FLOWS_TABLE, SEGMENTS_TABLE, supabase_admin
from app.models.flow import AudienceCondition, CompiledFlow
from app.services.audience import conditions_payload
from app.services.errors import ExternalCallFailure

logger = logging.getLogger(__name__)


class FlowStore(Protocol):
    """
    Destination for the rows a compilation creates; each method returns the new id.

    Implementations must raise ExternalCallFailure for any storage error.
    The compiler only catches FlowCompilerError, so anything else escapes
    ``compile_flow`` instead of ending up in the transcript.
    """

    def create_segment(
        self,
        owner_id: str,
        name: str,
        description: str,
        conditions: List[AudienceCondition],
        ai_prompt: Optional[str],
    ) -> str: ...

    def create_email_template(
        self,
        owner_id: str,
        name: str,
        subject: str,
        content: str,
        category: str,
        description: str,
    ) -> str: ...

    def create_flow(self, owner_id: str, compiled_flow: CompiledFlow) -> str: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseFlowStore:
    """FlowStore backed by the service-role Supabase client."""

    def __init__(self, client=None):
        self.client = client if client is not None else supabase_admin
        if self.client is None:
            raise ValueError("SUPABASE_SERVICE_KEY is required for flow storage")

    def _insert(self, table: str, row: dict) -> str:
        try:
            result = self.client.table(table).insert(row).execute()
        except Exception as e:
            raise ExternalCallFailure("store", f"Failed to insert into {table}: {str(e)}") from e

        if not result.data:
            raise ExternalCallFailure("store", f"Insert into {table} returned no data")

        return str(result.data[0]["id"])

    def create_segment(
        self,
        owner_id: str,
        name: str,
        description: str,
        conditions: List[AudienceCondition],
        ai_prompt: Optional[str],
    ) -> str:
        now = _now()
        segment_id = self._insert(SEGMENTS_TABLE, {
            "user_id": owner_id,
            "name": name,
            "description": description,
            "conditions": conditions_payload(conditions),
            "ai_generated": True,
            "ai_prompt": ai_prompt,
            "created_at": now,
            "updated_at": now,
        })
        logger.info(f"Segment created for user {owner_id}: {segment_id} ({name!r})")
        return segment_id

    def create_email_template(
        self,
        owner_id: str,
        name: str,
        subject: str,
        content: str,
        category: str,
        description: str,
    ) -> str:
        template_id = self._insert(EMAIL_TEMPLATES_TABLE, {
            "user_id": owner_id,
            "name": name,
            "subject": subject,
            "content": content,
            "category": category or "General",
            "description": description,
            "is_system": False,
            "created_at": _now(),
        })
        logger.info(f"Email template created for user {owner_id}: {template_id} ({name!r})")
        return template_id

    def create_flow(self, owner_id: str, compiled_flow: CompiledFlow) -> str:
        now = _now()
        payload = compiled_flow.model_dump(mode="json")
        flow_id = self._insert(FLOWS_TABLE, {
            "user_id": owner_id,
            "name": payload["name"],
            "description": payload["description"],
            "status": payload["status"],
            "trigger_type": payload["trigger_type"],
            "trigger_config": payload["trigger_config"],
            "flow_definition": payload["flow_definition"],
            "created_at": now,
            "updated_at": now,
        })
        logger.info(f"Flow created for user {owner_id}: {flow_id} ({compiled_flow.name!r})")
        return flow_id
