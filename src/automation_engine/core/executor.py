"""
Step executor: runs one node of a run and decides where the run goes next
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from ..exceptions import (
    AutomationEngineError, DispatchRetriableError, ExpressionTypeError, NodeExecutionError,
    RetryExhaustedError, UnresolvedReferenceError
)
from ..integrations.event_bus import EventBus, MESSAGE_DISPATCHED
from ..integrations.messaging import MessageDispatcher, OutboundMessage
from ..models.execution import Continue, Failed, Outcome, Run, Suspend, Terminal, utc_now
from ..models.workflow import (
    FALSE_PORT, MAIN_PORT, TRUE_PORT, ActionParams, ConditionalParams, DelayParams, Node,
    NodeKind, TransformParams, WorkflowDefinition
)
from .error_handler import RetryPolicy
from .expressions import ExpressionEvaluator


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[Any]]


def next_outcome(workflow: WorkflowDefinition, node: Node, port: str = MAIN_PORT) -> Outcome:
    """Continue along every connection on `port`, or end the run when there is none"""
    targets = workflow.successors(node.name, port)
    if not targets:
        return Terminal()
    return Continue(tuple(target.name for target in targets))


class NodeExecutor:
    """Base class for node kind executors"""

    async def execute(self, node: Node, run: Run, workflow: WorkflowDefinition) -> Outcome:
        raise NotImplementedError


class TriggerNodeExecutor(NodeExecutor):
    """Entry point: the triggering payload is the node's output"""

    def __init__(self, clock: Clock):
        self.clock = clock

    async def execute(self, node: Node, run: Run, workflow: WorkflowDefinition) -> Outcome:
        run.record_output(node.name, run.outputs.get(node.name, {}), at=self.clock())
        return next_outcome(workflow, node)


class TransformNodeExecutor(NodeExecutor):
    """Evaluates key/expression pairs into the node's output"""

    def __init__(self, evaluator: ExpressionEvaluator, clock: Clock):
        self.evaluator = evaluator
        self.clock = clock

    async def execute(self, node: Node, run: Run, workflow: WorkflowDefinition) -> Outcome:
        params: TransformParams = node.params
        output = {key: self.evaluator.evaluate(expr, run.outputs) for key, expr in params.values}
        run.record_output(node.name, output, at=self.clock())
        return next_outcome(workflow, node)


class ConditionalNodeExecutor(NodeExecutor):
    """Binary predicate routed to the "true" or "false" port"""

    def __init__(self, evaluator: ExpressionEvaluator, clock: Clock):
        self.evaluator = evaluator
        self.clock = clock

    async def execute(self, node: Node, run: Run, workflow: WorkflowDefinition) -> Outcome:
        params: ConditionalParams = node.params
        left = self.evaluator.evaluate(params.value1, run.outputs)
        right = self.evaluator.evaluate(params.value2, run.outputs)
        result = self.compare(left, params.operation, right, params.type)

        port = TRUE_PORT if result else FALSE_PORT
        run.record_output(node.name, {"result": result, "port": port}, at=self.clock())
        logger.debug(f"Run {run.run_id}: '{node.name}' evaluated {result}, routing to '{port}'")
        return next_outcome(workflow, node, port)

    def compare(self, left: Any, operation: str, right: Any, value_type: str) -> bool:
        if value_type == "number":
            left, right = self._to_number(left), self._to_number(right)
        elif value_type == "boolean":
            left, right = self._to_boolean(left), self._to_boolean(right)
        else:
            left = "" if left is None else str(left)
            right = "" if right is None else str(right)

        if operation == "equal":
            return left == right
        if operation == "not_equal":
            return left != right
        if operation == "greater":
            return left > right
        if operation == "greater_equal":
            return left >= right
        if operation == "smaller":
            return left < right
        if operation == "smaller_equal":
            return left <= right
        if operation == "contains":
            return right in left
        if operation == "not_contains":
            return right not in left
        if operation == "starts_with":
            return left.startswith(right)
        if operation == "ends_with":
            return left.endswith(right)
        if operation == "is_empty":
            return left == ""
        if operation == "is_not_empty":
            return left != ""
        raise ExpressionTypeError(f"Unsupported operation: {operation}")

    def _to_number(self, value: Any) -> float:
        if isinstance(value, bool):
            raise ExpressionTypeError(f"Expected a number, got boolean {value}")
        if isinstance(value, (int, float)):
            return value
        try:
            return float(str(value).strip())
        except ValueError:
            raise ExpressionTypeError(f"Expected a number, got {value!r}")

    def _to_boolean(self, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in ("true", "1", "yes"):
            return True
        if text in ("false", "0", "no", ""):
            return False
        raise ExpressionTypeError(f"Expected a boolean, got {value!r}")


class DelayNodeExecutor(NodeExecutor):
    """Suspends the run until now + duration"""

    def __init__(self, clock: Clock):
        self.clock = clock

    async def execute(self, node: Node, run: Run, workflow: WorkflowDefinition) -> Outcome:
        params: DelayParams = node.params
        return Suspend(wake_at=self.clock() + params.duration)


class ActionNodeExecutor(NodeExecutor):
    """Renders and dispatches an outbound message, retrying transient failures"""

    def __init__(
        self,
        evaluator: ExpressionEvaluator,
        message_dispatcher: MessageDispatcher,
        retry_policy: RetryPolicy,
        clock: Clock,
        sleep: Sleep,
        event_bus: Optional[EventBus] = None
    ):
        self.evaluator = evaluator
        self.message_dispatcher = message_dispatcher
        self.retry_policy = retry_policy
        self.clock = clock
        self.sleep = sleep
        self.event_bus = event_bus

    async def execute(self, node: Node, run: Run, workflow: WorkflowDefinition) -> Outcome:
        message = self.build_message(node, run)
        policy = RetryPolicy.from_settings(workflow.settings.retry, self.retry_policy)

        attempt = 0
        while True:
            attempt += 1
            try:
                receipt = await self.message_dispatcher.send(message)
                break
            except DispatchRetriableError as e:
                if not policy.should_retry(e, attempt):
                    raise RetryExhaustedError(node.name, attempt, e) from e
                delay = policy.delay_for(attempt)
                logger.warning(
                    f"Run {run.run_id}: dispatch from '{node.name}' failed ({e}), "
                    f"retrying in {delay}s (attempt {attempt + 1}/{policy.max_attempts})"
                )
                await self.sleep(delay)

        run.record_output(node.name, {}, at=self.clock())
        if self.event_bus:
            await self.event_bus.publish(MESSAGE_DISPATCHED, {
                "run_id": run.run_id,
                "node": node.name,
                "channel": receipt.channel,
                "message_id": receipt.message_id,
                "recipient": message.recipient,
                "attempts": attempt,
            })
        return next_outcome(workflow, node)

    def build_message(self, node: Node, run: Run) -> OutboundMessage:
        params: ActionParams = node.params
        recipient = self.evaluator.render(params.to, run.outputs).strip()
        if not recipient:
            raise ExpressionTypeError(f"Node '{node.name}' rendered an empty recipient")
        subject = self.evaluator.render(params.subject, run.outputs) if params.subject is not None else None

        return OutboundMessage(
            channel=params.channel,
            recipient=recipient,
            body=self.evaluator.render(params.message, run.outputs),
            credentials=self._credentials(node, params, run),
            subject=subject,
            run_id=run.run_id,
            node=node.name,
        )

    def _credentials(self, node: Node, params: ActionParams, run: Run) -> Dict[str, str]:
        credentials = {}
        for key, expr in params.credentials:
            try:
                value = self.evaluator.render(expr, run.outputs)
            except UnresolvedReferenceError as e:
                logger.debug(f"Run {run.run_id}: credential '{key}' of '{node.name}' not provided ({e.reason})")
                continue
            if value:
                credentials[key] = value
        return credentials


class StepExecutor:
    """Executes the run's current node with the executor registered for its kind"""

    def __init__(
        self,
        message_dispatcher: MessageDispatcher,
        evaluator: ExpressionEvaluator = None,
        retry_policy: RetryPolicy = None,
        clock: Clock = None,
        sleep: Sleep = None,
        event_bus: Optional[EventBus] = None
    ):
        self.evaluator = evaluator or ExpressionEvaluator()
        self.retry_policy = retry_policy or RetryPolicy()
        self.clock = clock or utc_now
        self.sleep = sleep or asyncio.sleep

        self.node_executors = self._create_node_executors(message_dispatcher, event_bus)
        missing = set(NodeKind) - set(self.node_executors)
        if missing:
            raise TypeError(f"No executor for node kinds: {sorted(kind.value for kind in missing)}")

    def _create_node_executors(
        self,
        message_dispatcher: MessageDispatcher,
        event_bus: Optional[EventBus]
    ) -> Dict[NodeKind, NodeExecutor]:
        return {
            NodeKind.TRIGGER: TriggerNodeExecutor(self.clock),
            NodeKind.TRANSFORM: TransformNodeExecutor(self.evaluator, self.clock),
            NodeKind.CONDITIONAL: ConditionalNodeExecutor(self.evaluator, self.clock),
            NodeKind.DELAY: DelayNodeExecutor(self.clock),
            NodeKind.ACTION: ActionNodeExecutor(
                self.evaluator, message_dispatcher, self.retry_policy, self.clock, self.sleep, event_bus
            ),
        }

    async def advance(self, run: Run, workflow: WorkflowDefinition) -> Outcome:
        """Execute the current node; node errors come back as Failed, never raised"""
        try:
            node = workflow.node(run.current_node)
        except KeyError:
            return Failed(NodeExecutionError(
                str(run.current_node), f"node not found in workflow {workflow.id} v{workflow.version}"
            ))

        executor = self.node_executors[node.kind]
        try:
            return await executor.execute(node, run, workflow)
        except AutomationEngineError as e:
            logger.warning(f"Run {run.run_id}: node '{node.name}' failed: {e}")
            return Failed(e)

    def complete_delay(self, run: Run, workflow: WorkflowDefinition, now: datetime = None) -> Outcome:
        """Record the elapsed Delay node of a resumed run and continue past it"""
        try:
            node = workflow.node(run.current_node)
        except KeyError:
            return Failed(NodeExecutionError(
                str(run.current_node), f"node not found in workflow {workflow.id} v{workflow.version}"
            ))
        if node.kind != NodeKind.DELAY:
            return Failed(NodeExecutionError(node.name, f"cannot resume at a {node.kind.value} node"))

        now = now or self.clock()
        run.record_output(node.name, {
            "wake_at": run.wake_at.isoformat() if run.wake_at else None,
            "resumed_at": now.isoformat(),
        }, at=now)
        run.wake_at = None
        return next_outcome(workflow, node)
