"""
Flow graph assembly.

Compiles a plan, its resolved audience and the generated email steps into a
linear chain of trigger/delay/email nodes:

    trigger-1 -> email-1 -> [delay-2 ->] email-2 -> [delay-3 ->] email-3 ...

Node ids are derived from the step's 1-based position, so they are stable
within one compilation but not unique across compilations.
"""

from typing import Dict, List, Sequence, Tuple

from app.models.flow import (
    AudienceRef,
    DelayNodeData,
    EmailNodeData,
    FlowDefinition,
    GeneratedStep,
    GraphEdge,
    GraphNode,
    NodeType,
    Plan,
    Position,
    TriggerNodeData,
)
from app.services.errors import EmptyPlan, InvalidFlowGraph

TRIGGER_NODE_ID = "trigger-1"

# Canvas layout (display only)
LAYOUT_X = 250
TRIGGER_Y = 50
FIRST_STEP_Y = 200
STEP_SPACING_Y = 150


def _days_label(days: int) -> str:
    return f"{days} day{'s' if days > 1 else ''}"


def _edge(source: str, target: str) -> GraphEdge:
    return GraphEdge(id=f"edge-{source}-{target}", source=source, target=target)


def assemble(
    plan: Plan,
    audience_ref: AudienceRef,
    generated_steps: Sequence[GeneratedStep],
) -> FlowDefinition:
    """
    Build the node/edge graph for a compiled flow.

    The first email always follows the trigger directly; its delay_days is
    disregarded. Later steps get a delay node only when delay_days > 0.

    Raises:
        EmptyPlan: if there are no generated steps.
    """
    if not generated_steps:
        raise EmptyPlan(f"Flow {plan.flow_name!r} has no email steps")

    nodes: List[GraphNode] = [
        GraphNode(
            id=TRIGGER_NODE_ID,
            type=NodeType.TRIGGER,
            data=TriggerNodeData(
                trigger_type=plan.trigger_type,
                segment_id=audience_ref.segment_id,
                segment_name=audience_ref.segment_name,
                conditions=audience_ref.conditions,
            ),
            position=Position(x=LAYOUT_X, y=TRIGGER_Y),
        )
    ]
    edges: List[GraphEdge] = []

    cursor = TRIGGER_NODE_ID
    y = FIRST_STEP_Y

    ordered = sorted(generated_steps, key=lambda step: step.sequence)
    for position, step in enumerate(ordered, start=1):
        if position > 1 and step.delay_days > 0:
            delay_id = f"delay-{position}"
            nodes.append(
                GraphNode(
                    id=delay_id,
                    type=NodeType.DELAY,
                    data=DelayNodeData(
                        name=f"Wait {_days_label(step.delay_days)}",
                        delay_days=step.delay_days,
                    ),
                    position=Position(x=LAYOUT_X, y=y),
                )
            )
            edges.append(_edge(cursor, delay_id))
            cursor = delay_id
            y += STEP_SPACING_Y

        email_id = f"email-{position}"
        nodes.append(
            GraphNode(
                id=email_id,
                type=NodeType.EMAIL,
                data=EmailNodeData(
                    name=f"Email {step.sequence}",
                    email_template_id=step.template_id,
                    subject=step.subject,
                    sequence=step.sequence,
                ),
                position=Position(x=LAYOUT_X, y=y),
            )
        )
        edges.append(_edge(cursor, email_id))
        cursor = email_id
        y += STEP_SPACING_Y

    return FlowDefinition(nodes=nodes, edges=edges)


def validate_flow_definition(definition: FlowDefinition) -> None:
    """
    Check that the graph is a single linear chain starting at one trigger.

    Raises:
        InvalidFlowGraph: on duplicate ids, dangling edges, branches, merges,
            cycles, or nodes unreachable from the trigger.
    """
    node_ids = [node.id for node in definition.nodes]
    if len(set(node_ids)) != len(node_ids):
        raise InvalidFlowGraph("Duplicate node ids")

    triggers = [node for node in definition.nodes if node.type == NodeType.TRIGGER]
    if len(triggers) != 1:
        raise InvalidFlowGraph(f"Expected exactly one trigger node, found {len(triggers)}")

    if len(definition.edges) != len(definition.nodes) - 1:
        raise InvalidFlowGraph(
            f"{len(definition.nodes)} nodes need {len(definition.nodes) - 1} edges, "
            f"found {len(definition.edges)}"
        )

    known = set(node_ids)
    successor: Dict[str, str] = {}
    in_degree: Dict[str, int] = {node_id: 0 for node_id in node_ids}
    for edge in definition.edges:
        if edge.source not in known or edge.target not in known:
            raise InvalidFlowGraph(f"Edge {edge.id} references an unknown node")
        if edge.source in successor:
            raise InvalidFlowGraph(f"Node {edge.source} branches")
        successor[edge.source] = edge.target
        in_degree[edge.target] += 1
        if in_degree[edge.target] > 1:
            raise InvalidFlowGraph(f"Node {edge.target} has more than one incoming edge")

    trigger_id = triggers[0].id
    if in_degree[trigger_id] != 0:
        raise InvalidFlowGraph("Trigger node has an incoming edge")

    # Walk from the trigger; a linear chain visits every node exactly once
    visited = [trigger_id]
    seen = {trigger_id}
    while visited[-1] in successor:
        nxt = successor[visited[-1]]
        if nxt in seen:
            raise InvalidFlowGraph("Flow graph contains a cycle")
        visited.append(nxt)
        seen.add(nxt)

    if len(visited) != len(node_ids):
        raise InvalidFlowGraph("Some nodes are not reachable from the trigger")


def derive_schedule(definition: FlowDefinition) -> List[Tuple[str, int]]:
    """
    Re-derive the ordered (subject, delay_days) pairs from a compiled graph.

    Walks the chain from the trigger; each delay node applies to the next
    email. The first email is always 0.
    """
    nodes = {node.id: node for node in definition.nodes}
    successor = {edge.source: edge.target for edge in definition.edges}

    schedule: List[Tuple[str, int]] = []
    pending_delay = 0
    cursor = TRIGGER_NODE_ID
    while cursor in successor:
        cursor = successor[cursor]
        node = nodes[cursor]
        if node.type == NodeType.DELAY:
            pending_delay += node.data.delay_days
        elif node.type == NodeType.EMAIL:
            schedule.append((node.data.subject, pending_delay))
            pending_delay = 0

    return schedule
