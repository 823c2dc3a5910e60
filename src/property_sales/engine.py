"""Property sale graph and the engine that drives it.

Uses a LangGraph StateGraph over ``WorkflowState``:

    START -> input_validation -> marketing -> lead_management -> negotiation
          -> legal -> closure -> END

The first three stages follow conditional edges; negotiation, legal, closure
and the human node route themselves with ``Command``. Any stage may hand off
to the human node, which calls ``interrupt()``. The checkpointer persists
every step, so a suspended thread survives restarts and continues with
``Command(resume=...)``.

Auto-instrumentation does not cover LangGraph, so each node runs inside an
``invoke_agent {node}`` span.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.errors import GraphRecursionError
from langgraph.graph import END, START, StateGraph
from langgraph.types import Command, StateSnapshot, interrupt
from opentelemetry import metrics, trace

from property_sales.agents import (
    closure_agent,
    input_validation_agent,
    lead_management_agent,
    legal_agent,
    marketing_agent,
    negotiation_agent,
)
from property_sales.agents.base import AgentContext
from property_sales.checkpoint import Checkpoint, CheckpointStore, Suspension
from property_sales.errors import (
    AgentExecutionError,
    NotFoundError,
    PropertySalesError,
    StageConflictError,
    StorageError,
)
from property_sales.human import HumanReply, build_prompt, human_node
from property_sales.routing import STAGE_NODES, Directive, Node, Redirect
from property_sales.state import (
    TRANSIENT_FIELDS,
    AgentOutput,
    HumanRole,
    LeadContact,
    LeadManagementResult,
    StateUpdate,
    WorkflowStage,
    WorkflowState,
    apply_update,
    state_changes,
)


logger = logging.getLogger(__name__)
tracer = trace.get_tracer("gen_ai.agent")
meter = metrics.get_meter("property_sales.workflow")

_node_executions = meter.create_counter(
    name="workflow.node.executions",
    description="Node executions by node and outcome",
    unit="{execution}",
)
_node_duration = meter.create_histogram(
    name="workflow.node.duration",
    description="Node execution duration",
    unit="s",
)
_interrupts = meter.create_counter(
    name="workflow.interrupts",
    description="Threads suspended for human input",
    unit="{interrupt}",
)

AgentFn = Callable[[WorkflowState, AgentContext], Awaitable[Directive]]

NODE_FUNCTIONS: dict[Node, AgentFn] = {
    Node.INPUT_VALIDATION: input_validation_agent,
    Node.MARKETING: marketing_agent,
    Node.LEAD_MANAGEMENT: lead_management_agent,
    Node.NEGOTIATION: negotiation_agent,
    Node.LEGAL: legal_agent,
    Node.CLOSURE: closure_agent,
}

# Destinations each stage node may route to, besides END
ALLOWED_ROUTES: dict[Node, frozenset[Node]] = {
    Node.INPUT_VALIDATION: frozenset({Node.MARKETING, Node.HUMAN}),
    Node.MARKETING: frozenset({Node.LEAD_MANAGEMENT, Node.HUMAN}),
    Node.LEAD_MANAGEMENT: frozenset({Node.NEGOTIATION, Node.HUMAN}),
    Node.NEGOTIATION: frozenset({Node.LEGAL, Node.HUMAN}),
    Node.LEGAL: frozenset({Node.CLOSURE, Node.HUMAN}),
    Node.CLOSURE: frozenset({Node.HUMAN}),
}

# Stages whose next node is picked by a conditional edge rather than Command
EDGE_ROUTED: dict[Node, Node] = {
    Node.INPUT_VALIDATION: Node.MARKETING,
    Node.MARKETING: Node.LEAD_MANAGEMENT,
    Node.LEAD_MANAGEMENT: Node.NEGOTIATION,
}

DEFAULT_MAX_STEPS = 25


def thread_id_for(property_id: str) -> str:
    return f"property_{property_id}"


def static_route(node: Node, state: WorkflowState) -> str:
    """Destination for a plain Update, decided by the node's fixed edge."""
    if node is Node.INPUT_VALIDATION:
        return Node.MARKETING.value if state.stage is WorkflowStage.MARKETING else END
    if node is Node.MARKETING:
        return Node.LEAD_MANAGEMENT.value if state.stage is WorkflowStage.LEAD_MANAGEMENT else END
    if node is Node.LEAD_MANAGEMENT:
        output = state.agent_outputs.get(node.value)
        data = output.data if output else None
        if isinstance(data, LeadManagementResult) and data.ready_for_negotiation:
            return Node.NEGOTIATION.value
        return END
    return END


def entry_route(state: WorkflowState) -> str:
    """A pass starts at the node of the thread's current stage."""
    return state.stage.value


def edge_route(node: Node) -> Callable[[WorkflowState], str]:
    """Conditional edge for an edge-routed stage.

    Reads the flags the stage wrapper left in state: a suspension goes to the
    human node, a pending retry re-runs the stage, anything else follows the
    stage's fixed edge.
    """

    def route(state: WorkflowState) -> str:
        if state.human_intervention_required:
            return Node.HUMAN.value
        if state.retry_count:
            return node.value
        return static_route(node, state)

    return route


def _check_transition(node: Node, before: WorkflowState, after: WorkflowState, route: str) -> None:
    if route != END and Node(route) not in ALLOWED_ROUTES[node]:
        raise AgentExecutionError(f"route {node} -> {route} is not allowed", node=node.value)
    if after.stage.order < before.stage.order:
        raise AgentExecutionError(
            f"stage cannot move back from {before.stage} to {after.stage}", node=node.value
        )


async def _run_stage(
    ctx: AgentContext, state: WorkflowState, node: Node
) -> tuple[WorkflowState, str]:
    directive = await NODE_FUNCTIONS[node](state, ctx)
    new_state = apply_update(state, directive.values)
    if isinstance(directive, Redirect):
        route = str(directive.goto)
    else:
        route = static_route(node, new_state)
    _check_transition(node, state, new_state, route)
    cleanup: StateUpdate = {**TRANSIENT_FIELDS, "retry_count": 0}
    return apply_update(new_state, cleanup), route


def _record_failure(
    ctx: AgentContext, thread_id: str, state: WorkflowState, node: Node, error: Exception
) -> tuple[WorkflowState, str]:
    logger.error("Agent %s failed for %s: %s", node, thread_id, error)
    failure: StateUpdate = {
        "stage": node.stage if node.stage.order >= state.stage.order else state.stage,
        "agent_outputs": {
            node.value: AgentOutput(
                agent_name=node.value,
                timestamp=ctx.now(),
                success=False,
                errors=[str(error)],
            )
        },
        "errors": [*state.errors, f"{node} agent failed: {error}"],
    }
    if state.retry_count < ctx.settings.max_agent_retries:
        logger.info("Retrying %s for %s (attempt %d)", node, thread_id, state.retry_count + 2)
        failure["retry_count"] = state.retry_count + 1
        return apply_update(state, failure), node.value
    return (
        apply_update(state, {**failure, **TRANSIENT_FIELDS, "retry_count": 0}),
        Node.HUMAN.value,
    )


async def execute_stage(
    ctx: AgentContext, state: WorkflowState, node: Node
) -> tuple[WorkflowState, str]:
    """Run one stage agent and merge its result. Returns the new state and route."""
    thread_id = thread_id_for(state.property_id)
    started = time.perf_counter()
    with tracer.start_as_current_span(f"invoke_agent {node}") as span:
        span.set_attribute("gen_ai.operation.name", "invoke_agent")
        span.set_attribute("gen_ai.agent.name", node.value)
        span.set_attribute("workflow.thread_id", thread_id)
        span.set_attribute("workflow.stage", state.stage.value)

        try:
            new_state, route = await _run_stage(ctx, state, node)
            outcome = "success"
        except StorageError:
            raise
        except Exception as e:
            new_state, route = _record_failure(ctx, thread_id, state, node, e)
            outcome = "error"

        if new_state.stage is WorkflowStage.COMPLETED:
            route = END
            if new_state.workflow_completed_at is None:
                new_state = apply_update(new_state, {"workflow_completed_at": ctx.now()})

        suspended = route == Node.HUMAN.value
        new_state = apply_update(
            new_state,
            {
                "human_intervention_required": suspended,
                "suspended_node": node.value if suspended else None,
            },
        )
        if suspended:
            _interrupts.add(1, {"node": node.value})
            logger.info("Workflow %s suspended at %s for human input", thread_id, node)

        span.set_attribute("workflow.route", route)
        span.set_attribute("errors_count", len(new_state.errors))
        _node_executions.add(1, {"node": node.value, "outcome": outcome})
        _node_duration.record(time.perf_counter() - started, {"node": node.value})
        return new_state, route


def create_graph(ctx: AgentContext, checkpointer: BaseCheckpointSaver) -> Any:
    """Compile the sale graph against ``checkpointer``."""

    def wrap_agent(node: Node) -> Callable[[WorkflowState], Awaitable[Any]]:
        async def wrapped(state: WorkflowState) -> StateUpdate | Command:
            new_state, route = await execute_stage(ctx, state, node)
            update = state_changes(state, new_state)
            if node in EDGE_ROUTED or route == END:
                return update
            return Command(goto=route, update=update)

        return wrapped

    async def human(state: WorkflowState) -> Command:
        if state.suspended_node is None:
            raise PropertySalesError(
                "Human node reached without a suspended stage",
                thread_id=thread_id_for(state.property_id),
            )
        target = Node(state.suspended_node)
        ttl_hours = ctx.settings.interrupt_ttl_hours
        suspension = Suspension(
            node=target,
            prompt=build_prompt(state, target),
            expires_at=ctx.now() + timedelta(hours=ttl_hours) if ttl_hours else None,
        )
        # Returns the resume value once the thread is resumed
        answer = interrupt(suspension.model_dump(mode="json"))

        directive = human_node(state, target, HumanReply.model_validate(answer), ctx.now())
        new_state = apply_update(state, directive.values)
        _node_executions.add(1, {"node": Node.HUMAN.value, "outcome": "success"})
        return Command(goto=target.value, update=state_changes(state, new_state))

    graph: Any = StateGraph(WorkflowState)
    for node in STAGE_NODES:
        graph.add_node(node.value, wrap_agent(node))
    graph.add_node(Node.HUMAN.value, human)

    graph.add_conditional_edges(START, entry_route, [node.value for node in STAGE_NODES])
    for node, following in EDGE_ROUTED.items():
        graph.add_conditional_edges(
            node.value,
            edge_route(node),
            [following.value, Node.HUMAN.value, node.value, END],
        )

    return graph.compile(checkpointer=checkpointer)


def _graph_input(state: WorkflowState) -> dict[str, Any]:
    # Every field, so a None in ``state`` overwrites the stored value
    return {name: getattr(state, name) for name in WorkflowState.model_fields}


def _source(snapshot: StateSnapshot) -> str | None:
    return (snapshot.metadata or {}).get("source")


class WorkflowEngine:
    """Executes and resumes workflow threads on the compiled graph.

    One mutating operation runs per thread at a time; a second concurrent call
    for the same thread is rejected rather than queued.
    """

    def __init__(
        self,
        store: CheckpointStore,
        ctx: AgentContext,
        max_steps: int = DEFAULT_MAX_STEPS,
    ) -> None:
        self._store = store
        self._ctx = ctx
        self._max_steps = max_steps
        self._locks: dict[str, asyncio.Lock] = {}
        self._graph = create_graph(ctx, store.saver)

    @property
    def store(self) -> CheckpointStore:
        return self._store

    def _config(self, thread_id: str) -> dict[str, Any]:
        return {"configurable": {"thread_id": thread_id}, "recursion_limit": self._max_steps}

    @asynccontextmanager
    async def _exclusive(self, thread_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(thread_id, asyncio.Lock())
        if lock.locked():
            raise StageConflictError(
                "Another operation is already running for this workflow", thread_id=thread_id
            )
        try:
            async with lock:
                yield
        finally:
            if self._locks.get(thread_id) is lock and not lock.locked():
                del self._locks[thread_id]

    def is_expired(self, checkpoint: Checkpoint) -> bool:
        suspension = checkpoint.suspension
        return (
            suspension is not None
            and suspension.expires_at is not None
            and self._ctx.now() >= suspension.expires_at
        )

    async def latest(self, thread_id: str) -> Checkpoint | None:
        """Most recent checkpoint for a thread, or None if the thread is unknown."""
        with tracer.start_as_current_span("checkpoint.load_latest") as span:
            span.set_attribute("workflow.thread_id", thread_id)
            async with self._store.guard("load_latest", thread_id):
                snapshot = await self._graph.aget_state(self._config(thread_id))
        if not snapshot.values:
            return None
        return Checkpoint.from_snapshot(snapshot)

    async def history(self, thread_id: str) -> AsyncIterator[Checkpoint]:
        """Checkpoints newest first, each tagged with the node that wrote it.

        LangGraph lists snapshots newest first; the node behind a snapshot is
        the ``next`` of the one before it, so each snapshot is held back one
        iteration. Input checkpoints carry no node output and are skipped.
        """
        newer: StateSnapshot | None = None
        async with self._store.guard("load_history", thread_id, bounded=False):
            async for snapshot in self._graph.aget_state_history(self._config(thread_id)):
                if newer is not None and _source(newer) != "input":
                    node = snapshot.next[0] if snapshot.next else None
                    yield Checkpoint.from_snapshot(newer, node=node)
                newer = snapshot
        if newer is not None and _source(newer) != "input" and newer.values:
            yield Checkpoint.from_snapshot(newer)

    async def _invoke(self, thread_id: str, graph_input: Any) -> Checkpoint:
        try:
            async with self._store.guard("pass", thread_id, bounded=False):
                await self._graph.ainvoke(
                    graph_input, self._config(thread_id), durability="sync"
                )
        except GraphRecursionError as e:
            raise PropertySalesError(
                f"Workflow exceeded {self._max_steps} node executions in one pass",
                thread_id=thread_id,
            ) from e

        checkpoint = await self.latest(thread_id)
        if checkpoint is None:
            raise StorageError("No checkpoint written for the pass", thread_id=thread_id)
        logger.info(
            "Workflow %s pass ended at step %d (stage %s, interrupted %s)",
            thread_id,
            checkpoint.step,
            checkpoint.state.stage,
            checkpoint.interrupted,
        )
        return checkpoint

    async def start(self, state: WorkflowState) -> Checkpoint:
        """Seed a new thread and run until it ends or suspends."""
        thread_id = thread_id_for(state.property_id)
        with tracer.start_as_current_span("workflow.pass") as span:
            span.set_attribute("workflow.thread_id", thread_id)
            span.set_attribute("workflow.entry", state.stage.value)
            async with self._exclusive(thread_id):
                if await self.latest(thread_id) is not None:
                    raise StageConflictError("Workflow already started", thread_id=thread_id)
                logger.info("Started workflow %s", thread_id)
                return await self._invoke(thread_id, _graph_input(state))

    async def resume(
        self,
        thread_id: str,
        human_response: str,
        human_role: HumanRole,
        lead_id: str | None = None,
        contact: LeadContact | None = None,
    ) -> Checkpoint:
        """Answer a suspended thread's interrupt and continue the pass.

        Lead replies are accepted only while the lead conversation loop is
        waiting; every other suspension takes broker replies.
        """
        with tracer.start_as_current_span("workflow.resume") as span:
            span.set_attribute("workflow.thread_id", thread_id)
            span.set_attribute("human.role", human_role)
            async with self._exclusive(thread_id):
                latest = await self.latest(thread_id)
                if latest is None:
                    raise NotFoundError("Workflow not found", thread_id=thread_id)
                if latest.state.stage is WorkflowStage.COMPLETED:
                    raise StageConflictError("Workflow already completed", thread_id=thread_id)
                suspension = latest.suspension
                if suspension is None:
                    raise StageConflictError(
                        "Workflow is not waiting for human input", thread_id=thread_id
                    )
                if self.is_expired(latest):
                    raise StageConflictError(
                        "Human input window has expired",
                        thread_id=thread_id,
                        node=suspension.node.value,
                    )
                if human_role == "lead" and suspension.node is not Node.LEAD_MANAGEMENT:
                    raise StageConflictError(
                        f"Lead replies are not accepted while {suspension.node} "
                        "waits for the broker",
                        thread_id=thread_id,
                        node=suspension.node.value,
                    )

                span.set_attribute("workflow.resume_target", suspension.node.value)
                reply = HumanReply(
                    response=human_response, role=human_role, lead_id=lead_id, contact=contact
                )
                return await self._invoke(thread_id, Command(resume=reply.model_dump(mode="json")))

    async def advance(self, thread_id: str, update: StateUpdate) -> Checkpoint:
        """Merge ``update`` into an idle thread and run a pass from its current stage."""
        with tracer.start_as_current_span("workflow.pass") as span:
            span.set_attribute("workflow.thread_id", thread_id)
            async with self._exclusive(thread_id):
                latest = await self.latest(thread_id)
                if latest is None:
                    raise NotFoundError("Workflow not found", thread_id=thread_id)
                if latest.state.stage is WorkflowStage.COMPLETED:
                    raise StageConflictError("Workflow already completed", thread_id=thread_id)
                if latest.interrupted:
                    raise StageConflictError(
                        "Workflow is waiting for human input", thread_id=thread_id
                    )
                state = apply_update(latest.state, update)
                span.set_attribute("workflow.entry", state.stage.value)
                return await self._invoke(thread_id, _graph_input(state))
