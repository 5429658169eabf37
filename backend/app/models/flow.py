"""
Pydantic models for automation flow plans and compiled flow graphs.
"""

from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class FlowType(str, Enum):
    WELCOME = "welcome"
    ABANDONED_CART = "abandoned_cart"
    WINBACK = "winback"
    NURTURE = "nurture"
    POST_PURCHASE = "post_purchase"


class TriggerType(str, Enum):
    SEGMENT_ADDED = "segment_added"
    TAG_ADDED = "tag_added"
    DATE = "date"
    MANUAL = "manual"


class NodeType(str, Enum):
    TRIGGER = "trigger"
    DELAY = "delay"
    EMAIL = "email"


class FlowStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"


class ConditionOperator(str, Enum):
    EQ = "="
    LTE = "<="
    GTE = ">="
    LT = "<"
    GT = ">"


MANUAL_TRIGGER_LABEL = "Manual Trigger"


# ---------------------------------------------------------------------------
# Plan (normalized model proposal)
# ---------------------------------------------------------------------------

class EmailStep(BaseModel):
    """One planned message in the sequence."""
    model_config = ConfigDict(populate_by_name=True)

    sequence: int = Field(ge=1)
    # Days to wait after the previous step; ignored for sequence 1
    delay_days: int = Field(default=0, ge=0, alias="delayDays")
    subject: str = ""  # advisory, generated content may override it
    purpose: str = ""
    key_message: str = Field(default="", alias="keyMessage")
    cta: str = ""


class Plan(BaseModel):
    """
    Normalized automation intent.

    Accepts the camelCase keys the model emits (flowType, delayDays, ...) as
    well as the snake_case field names.
    """
    model_config = ConfigDict(populate_by_name=True)

    flow_type: FlowType = Field(alias="flowType")
    flow_name: str = Field(alias="flowName")
    description: str = ""
    trigger_type: TriggerType = Field(default=TriggerType.MANUAL, alias="triggerType")
    target_audience: str = Field(default="", alias="targetAudience")
    emails: List[EmailStep] = Field(min_length=1)

    @model_validator(mode="after")
    def check_contiguous_sequence(self) -> "Plan":
        sequences = [step.sequence for step in self.emails]
        if sequences != list(range(1, len(sequences) + 1)):
            raise ValueError(
                f"email sequence numbers must run 1..{len(sequences)} in order, got {sequences}"
            )
        return self


# ---------------------------------------------------------------------------
# Audience
# ---------------------------------------------------------------------------

class AudienceCondition(BaseModel):
    """Single AND-combined filter term over a customer attribute."""
    field: str
    operator: ConditionOperator
    value: Union[bool, int, float]


class AudienceRule(BaseModel):
    """Resolved audience for a flow trigger."""
    conditions: List[AudienceCondition] = []
    rationale: str = ""
    trigger_label: str = ""  # human-readable line for the build transcript

    @property
    def requires_segment(self) -> bool:
        return bool(self.conditions)


class AudienceRef(BaseModel):
    """Reference to the persisted segment, or the manual-trigger marker."""
    segment_id: Optional[str] = None
    segment_name: str = MANUAL_TRIGGER_LABEL
    conditions: List[AudienceCondition] = []


# ---------------------------------------------------------------------------
# Generated content
# ---------------------------------------------------------------------------

class GeneratedContent(BaseModel):
    subject: str
    body: str
    # True when the SUBJECT:/BODY: marker was missing and a default was used
    subject_fallback: bool = False
    body_fallback: bool = False


class GeneratedStep(BaseModel):
    """An email step after its content has been generated and stored."""
    sequence: int = Field(ge=1)
    delay_days: int = Field(default=0, ge=0)
    subject: str
    template_id: str


# ---------------------------------------------------------------------------
# Compiled graph
# ---------------------------------------------------------------------------

class Position(BaseModel):
    """Canvas coordinate. Display only."""
    x: float
    y: float


class TriggerNodeData(BaseModel):
    name: str = "Flow Trigger"
    trigger_type: TriggerType
    segment_id: Optional[str] = None
    segment_name: str = MANUAL_TRIGGER_LABEL
    conditions: List[AudienceCondition] = []


class DelayNodeData(BaseModel):
    name: str
    delay_days: int = Field(gt=0)
    delay_hours: int = 0


class EmailNodeData(BaseModel):
    name: str
    email_template_id: str
    subject: str
    sequence: int = Field(ge=1)


class GraphNode(BaseModel):
    id: str
    type: NodeType
    data: Union[TriggerNodeData, DelayNodeData, EmailNodeData]
    position: Position


class GraphEdge(BaseModel):
    id: str
    source: str
    target: str


class FlowDefinition(BaseModel):
    nodes: List[GraphNode] = []
    edges: List[GraphEdge] = []


class CompiledFlow(BaseModel):
    """Persisted representation of a compiled flow."""
    name: str
    description: str = ""
    trigger_type: TriggerType
    trigger_config: AudienceRef
    flow_definition: FlowDefinition
    status: FlowStatus = FlowStatus.DRAFT


# ---------------------------------------------------------------------------
# API models
# ---------------------------------------------------------------------------

class ConversationTurn(BaseModel):
    role: str
    content: str


class FlowAgentRequest(BaseModel):
    """Request body for POST /api/agents/flows."""
    message: str = Field(min_length=1)
    conversation_history: Optional[List[ConversationTurn]] = None


class FlowAgentResponse(BaseModel):
    response: str
