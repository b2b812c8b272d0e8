"""Execution-Flow Extractor — classifies every call in a parsed program.

Walks a ``SyntaxTree`` and emits an ordered execution plan: a flat list of
``TaskRecord`` objects, each tagged as a synchronous call (``CallStack``), a
microtask trigger or a macrotask trigger.  Code that runs "after" a trigger
(a timer callback, a ``.then`` handler, the rest of a function body after a
bare ``await``) is emitted with ``run_context="AsyncCallback"`` and a
``parent_id`` naming the trigger, so the plan encodes a forest by
back-reference.

Recognized call shapes, first match wins:

  1. ``setTimeout(...)``                 MacroTask, phase "Timer"
  2. ``process.nextTick(...)``           MicroTask, priority "High"
  3. ``x.then / x.catch / x.finally``    MicroTask, priority "Normal"
  4. ``await expr;`` as a bare statement MicroTask "await", phase "Await Resume"
  5. anything else                       CallStack

This is syntactic pattern matching, not interpretation: bindings are never
resolved and nothing is evaluated.
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional

from tree_sitter import Node

from loopscope.syntax import SyntaxTree, node_line, node_text

logger = logging.getLogger(__name__)

# ── Constants ──

# Task categories
CALL_STACK = "CallStack"
MICRO_TASK = "MicroTask"
MACRO_TASK = "MacroTask"
TRIGGER_CATEGORIES = frozenset({MICRO_TASK, MACRO_TASK})

# Run contexts
MAIN = "Main"
ASYNC_CALLBACK = "AsyncCallback"

# Descriptive tags
PHASE_TIMER = "Timer"
PHASE_AWAIT_RESUME = "Await Resume"
PRIORITY_HIGH = "High"
PRIORITY_NORMAL = "Normal"

ANONYMOUS = "Anonymous"
AWAIT_NAME = "await"
FUNCTION_PLACEHOLDER = "[Function]"
EXPRESSION_PLACEHOLDER = "[Expression]"

# Scheduling primitives recognized by shape
TIMER_FUNCTION = "setTimeout"
TICK_OBJECT = "process"
TICK_METHOD = "nextTick"
CHAIN_METHODS = frozenset({"then", "catch", "finally"})

# Call shapes, in match priority order
SHAPE_TIMER = "timer"
SHAPE_TICK = "tick"
SHAPE_CHAIN = "chain"
SHAPE_ORDINARY = "ordinary"

# Function literals passed as arguments become continuations.
# "function" is the pre-0.23 grammar name for function_expression.
FUNCTION_LITERAL_TYPES = frozenset({
    "arrow_function",
    "function_expression",
    "function",
    "generator_function",
})

# Nodes whose statement_block body is split at bare await statements
_FUNCTION_TYPES = FUNCTION_LITERAL_TYPES | {
    "function_declaration",
    "generator_function_declaration",
    "method_definition",
}

_LITERAL_TYPES = frozenset({
    "string",
    "number",
    "true",
    "false",
    "null",
    "undefined",
    "regex",
})

_OBJECT_NAME_TYPES = frozenset({"identifier", "this", "super"})


# ── Data Classes ──


@dataclass(frozen=True)
class TaskRecord:
    """One entry of an execution plan.

    Attributes:
        category: "CallStack", "MicroTask" or "MacroTask".
        name: Callee display name ("console.log", "setTimeout", "Promise.then").
        line: 1-based source line of the call.
        run_context: "Main" for top-level program code, "AsyncCallback" for
            code inside a continuation.
        parent_id: Id of the trigger whose continuation this record belongs
            to, or None at top level.
        task_id: Join key on trigger records ("async-1", ...), else None.
        phase: "Timer" or "Await Resume" on the matching triggers.
        priority: "High" or "Normal" on microtask triggers.
        args: Display rendering of the call's arguments.
    """

    category: str
    name: str
    line: int
    run_context: str = MAIN
    parent_id: Optional[str] = None
    task_id: Optional[str] = None
    phase: Optional[str] = None
    priority: Optional[str] = None
    args: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_trigger(self) -> bool:
        return self.category in TRIGGER_CATEGORIES and self.task_id is not None

    def as_dict(self) -> dict:
        """Wire form, camelCase keys; absent id/phase/priority are omitted."""
        result: dict = {"type": self.category}
        if self.task_id is not None:
            result["id"] = self.task_id
        result["runContext"] = self.run_context
        result["parentId"] = self.parent_id
        result["name"] = self.name
        if self.phase is not None:
            result["phase"] = self.phase
        if self.priority is not None:
            result["priority"] = self.priority
        result["line"] = self.line
        result["args"] = list(self.args)
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "TaskRecord":
        """Build a record from its wire form (see ``as_dict``)."""
        parent_id = data.get("parentId")
        return cls(
            category=data.get("type", CALL_STACK),
            name=data.get("name", ANONYMOUS),
            line=int(data.get("line", 0)),
            run_context=data.get("runContext") or (ASYNC_CALLBACK if parent_id else MAIN),
            parent_id=parent_id,
            task_id=data.get("id"),
            phase=data.get("phase"),
            priority=data.get("priority"),
            args=tuple(data.get("args") or ()),
        )


@dataclass(frozen=True)
class ExecutionContext:
    """Traversal state threaded down the tree."""

    run_context: str = MAIN
    parent_id: Optional[str] = None

    def resumed_under(self, trigger_id: str) -> "ExecutionContext":
        """Context for code that runs as ``trigger_id``'s continuation."""
        return ExecutionContext(run_context=ASYNC_CALLBACK, parent_id=trigger_id)


MAIN_CONTEXT = ExecutionContext()

# (handler, target, context): handler(target, context) emits records and
# returns the follow-up work items, in visit order
_Work = tuple[Callable[[Any, ExecutionContext], list], Any, ExecutionContext]


# ── Node Helpers ──


def _named(node: Node) -> list[Node]:
    """Named children, without comments."""
    return [child for child in node.named_children if child.type != "comment"]


def _argument_nodes(args: Optional[Node]) -> list[Node]:
    if args is None or args.type != "arguments":
        return []
    return _named(args)


def _member_parts(callee: Node) -> tuple[Optional[Node], Optional[str]]:
    """(object node, property name) of a member_expression callee."""
    if callee.type != "member_expression":
        return None, None
    obj = callee.child_by_field_name("object")
    prop = callee.child_by_field_name("property")
    return obj, node_text(prop) if prop is not None else None


def callee_name(callee: Node) -> str:
    """Display name for a callee: ``name``, ``object.property`` or Anonymous."""
    if callee.type == "identifier":
        return node_text(callee)
    if callee.type != "member_expression":
        return ANONYMOUS
    props: list[str] = []
    node = callee
    while node.type == "member_expression":
        obj, prop = _member_parts(node)
        if obj is None or not prop:
            return ANONYMOUS
        props.append(prop)
        node = obj
    head = node_text(node) if node.type in _OBJECT_NAME_TYPES else EXPRESSION_PLACEHOLDER
    return ".".join([head, *reversed(props)])


def render_argument(node: Node) -> str:
    """Best-effort textual rendering of one call argument. Never evaluates."""
    if node.type in _LITERAL_TYPES or node.type == "identifier":
        return node_text(node)
    if node.type == "template_string":
        if any(child.type == "template_substitution" for child in node.named_children):
            return EXPRESSION_PLACEHOLDER
        return node_text(node)
    if node.type in FUNCTION_LITERAL_TYPES:
        return FUNCTION_PLACEHOLDER
    return EXPRESSION_PLACEHOLDER


def render_args(args: Optional[Node]) -> tuple[str, ...]:
    return tuple(render_argument(arg) for arg in _argument_nodes(args))


def classify_call(node: Node) -> str:
    """Match a call_expression against the known shapes, first match wins."""
    callee = node.child_by_field_name("function")
    if callee is None:
        return SHAPE_ORDINARY
    if callee.type == "identifier" and node_text(callee) == TIMER_FUNCTION:
        return SHAPE_TIMER
    obj, prop = _member_parts(callee)
    if obj is not None:
        if (
            obj.type == "identifier"
            and node_text(obj) == TICK_OBJECT
            and prop == TICK_METHOD
        ):
            return SHAPE_TICK
        if prop in CHAIN_METHODS:
            return SHAPE_CHAIN
    return SHAPE_ORDINARY


def bare_await_operand(statement: Node) -> Optional[Node]:
    """Operand of ``await expr;`` when it is a statement on its own, else None."""
    if statement.type != "expression_statement":
        return None
    children = _named(statement)
    if len(children) != 1 or children[0].type != "await_expression":
        return None
    operands = _named(children[0])
    return operands[0] if operands else None


def _is_split_scope(node: Node) -> bool:
    """Program bodies and function bodies are split at bare awaits."""
    if node.type == "program":
        return True
    return (
        node.type == "statement_block"
        and node.parent is not None
        and node.parent.type in _FUNCTION_TYPES
    )


# ── Extractor ──


class ExecutionFlowExtractor:
    """Depth-first walk over a syntax tree producing an execution plan.

    The walk runs on an explicit work stack rather than Python recursion, so
    nesting depth is bounded by memory, not the interpreter's recursion
    limit.  Each work item is ``(handler, node, context)``; a handler may emit
    records and returns the follow-up items to run next, in order.

    The only mutable state is the plan being built and the trigger id
    counter; both are reset at the start of every ``extract`` call, so one
    extractor never leaks ids between analyses.

    Usage::

        plan = ExecutionFlowExtractor().extract(parse(source))
    """

    def __init__(self) -> None:
        self._plan: list[TaskRecord] = []
        self._ids: Iterator[int] = itertools.count(1)
        self._call_handlers = {
            SHAPE_TIMER: self._visit_timer,
            SHAPE_TICK: self._visit_tick,
            SHAPE_CHAIN: self._visit_chain,
            SHAPE_ORDINARY: self._visit_ordinary,
        }

    def extract(self, tree: SyntaxTree) -> list[TaskRecord]:
        """Return the execution plan for ``tree`` in emission order."""
        self._plan = []
        self._ids = itertools.count(1)
        self._walk(tree.root, MAIN_CONTEXT)
        plan = self._plan
        self._plan = []
        logger.debug(
            "Extracted %d task records (%d triggers)",
            len(plan), sum(1 for r in plan if r.is_trigger),
        )
        return plan

    # ── Emission ──

    def _emit(
        self,
        category: str,
        name: str,
        node: Node,
        context: ExecutionContext,
        *,
        trigger: bool = False,
        phase: Optional[str] = None,
        priority: Optional[str] = None,
        args: tuple[str, ...] = (),
    ) -> TaskRecord:
        record = TaskRecord(
            category=category,
            name=name,
            line=node_line(node),
            run_context=context.run_context,
            parent_id=context.parent_id,
            task_id=f"async-{next(self._ids)}" if trigger else None,
            phase=phase,
            priority=priority,
            args=args,
        )
        self._plan.append(record)
        return record

    # ── Traversal ──

    def _walk(self, root: Node, context: ExecutionContext) -> None:
        pending: list[_Work] = [(self._visit, root, context)]
        while pending:
            handler, target, ctx = pending.pop()
            pending.extend(reversed(handler(target, ctx)))

    def _visit(self, node: Node, context: ExecutionContext) -> list["_Work"]:
        if node.type == "call_expression":
            return self._call_handlers[classify_call(node)](node, context)
        if _is_split_scope(node):
            return [(self._visit_statements, _named(node), context)]
        return [(self._visit, child, context) for child in _named(node)]

    def _visit_statements(
        self, statements: list[Node], context: ExecutionContext,
    ) -> list["_Work"]:
        work: list[_Work] = []
        for index, statement in enumerate(statements):
            operand = bare_await_operand(statement)
            if operand is None:
                work.append((self._visit, statement, context))
                continue
            work.append((self._visit, operand, context))
            work.append((self._resume_after_await, (statement, statements[index + 1:]), context))
            break
        return work

    def _resume_after_await(
        self, split: tuple[Node, list[Node]], context: ExecutionContext,
    ) -> list["_Work"]:
        statement, rest = split
        record = self._emit(
            MICRO_TASK, AWAIT_NAME, statement, context,
            trigger=True, phase=PHASE_AWAIT_RESUME,
        )
        # The rest of the body resumes after the await; it may split again
        return [(self._visit_statements, rest, context.resumed_under(record.task_id))]

    def _argument_work(
        self, args: Optional[Node], context: ExecutionContext, trigger_id: str,
    ) -> list["_Work"]:
        if args is None:
            return []
        if args.type != "arguments":
            return [(self._visit, args, context)]
        resumed = context.resumed_under(trigger_id)
        return [
            (self._visit, arg, resumed if arg.type in FUNCTION_LITERAL_TYPES else context)
            for arg in _named(args)
        ]

    # ── Call Handlers ──

    def _visit_scheduler(
        self,
        node: Node,
        context: ExecutionContext,
        category: str,
        name: str,
        phase: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> list["_Work"]:
        args = node.child_by_field_name("arguments")
        record = self._emit(
            category, name, node, context,
            trigger=True, phase=phase, priority=priority, args=render_args(args),
        )
        return [
            (self._visit, node.child_by_field_name("function"), context),
            *self._argument_work(args, context, record.task_id),
        ]

    def _visit_timer(self, node: Node, context: ExecutionContext) -> list["_Work"]:
        return self._visit_scheduler(
            node, context, MACRO_TASK, TIMER_FUNCTION, phase=PHASE_TIMER,
        )

    def _visit_tick(self, node: Node, context: ExecutionContext) -> list["_Work"]:
        return self._visit_scheduler(
            node, context, MICRO_TASK, f"{TICK_OBJECT}.{TICK_METHOD}",
            priority=PRIORITY_HIGH,
        )

    def _visit_chain(self, node: Node, context: ExecutionContext) -> list["_Work"]:
        obj, _ = _member_parts(node.child_by_field_name("function"))
        # Earlier links of the same chain are emitted before this one
        return [(self._visit, obj, context), (self._emit_chain_link, node, context)]

    def _emit_chain_link(self, node: Node, context: ExecutionContext) -> list["_Work"]:
        _, method = _member_parts(node.child_by_field_name("function"))
        args = node.child_by_field_name("arguments")
        record = self._emit(
            MICRO_TASK, f"Promise.{method}", node, context,
            trigger=True, priority=PRIORITY_NORMAL, args=render_args(args),
        )
        return self._argument_work(args, context, record.task_id)

    def _visit_ordinary(self, node: Node, context: ExecutionContext) -> list["_Work"]:
        callee = node.child_by_field_name("function")
        args = node.child_by_field_name("arguments")
        self._emit(
            CALL_STACK,
            callee_name(callee) if callee is not None else ANONYMOUS,
            node,
            context,
            args=render_args(args),
        )
        return [
            (self._visit, child, context)
            for child in (callee, args)
            if child is not None
        ]


def extract(tree: SyntaxTree) -> list[TaskRecord]:
    """Execution plan for ``tree``, using a fresh extractor."""
    return ExecutionFlowExtractor().extract(tree)
