"""Generic directed-graph executor used by every chunkflow pipeline.

A graph is a set of named async steps joined by edges. Each step receives
the running state and returns a partial state that is shallow-merged into
it. Edges are either unconditional or routed by a function of the state.

Errors raised by a step are recorded in the state's error field instead of
propagating, so downstream routing can decide what to do with them. Once an
error is present the run is forced to ``END`` after the failing step; any
recovery node declared further down the graph is skipped. This is a
fail-fast policy and graphs must not rely on post-error recovery nodes.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, MutableMapping, Optional

from .errors import GraphConfigurationError, RunInterrupted

logger = logging.getLogger(__name__)

START = "__start__"
END = "__end__"

State = Dict[str, Any]
Step = Callable[[State], Awaitable[Optional[Mapping[str, Any]]]]
Router = Callable[[State], str]
StepCallback = Callable[[str, State], None]


class WorkflowGraph:
    """Builder for a graph of named async steps."""

    def __init__(self, error_key: str = "error") -> None:
        self.error_key = error_key
        self._nodes: Dict[str, Step] = {}
        self._edges: Dict[str, str] = {}
        self._conditional: Dict[str, tuple[Router, Dict[str, str]]] = {}
        self._compiled = False

    def _ensure_mutable(self) -> None:
        if self._compiled:
            raise GraphConfigurationError("Graph is compiled and can no longer be changed")

    def add_node(self, name: str, step: Step) -> "WorkflowGraph":
        """Register ``step`` under ``name``."""
        self._ensure_mutable()
        if name in (START, END):
            raise GraphConfigurationError(f"'{name}' is reserved")
        if name in self._nodes:
            raise GraphConfigurationError(f"Node '{name}' is already registered")
        self._nodes[name] = step
        return self

    def add_edge(self, source: str, target: str) -> "WorkflowGraph":
        """Route unconditionally from ``source`` to ``target``."""
        self._ensure_mutable()
        if source in self._edges:
            raise GraphConfigurationError(f"Node '{source}' already has an edge")
        self._edges[source] = target
        return self

    def set_entry_point(self, name: str) -> "WorkflowGraph":
        return self.add_edge(START, name)

    def add_conditional_edges(
        self, source: str, router: Router, mapping: Mapping[str, str]
    ) -> "WorkflowGraph":
        """Route from ``source`` to ``mapping[router(state)]``."""
        self._ensure_mutable()
        if source == START:
            raise GraphConfigurationError("The entry edge cannot be conditional")
        if not mapping:
            raise GraphConfigurationError(f"Conditional edges from '{source}' need a mapping")
        self._conditional[source] = (router, dict(mapping))
        return self

    def compile(self) -> "CompiledGraph":
        """Validate and freeze the graph."""
        entry = self._edges.get(START)
        if entry is None:
            raise GraphConfigurationError("No entry point; add an edge from START")

        known = set(self._nodes) | {END}
        targets = list(self._edges.values())
        for _, mapping in self._conditional.values():
            targets.extend(mapping.values())
        for target in targets:
            if target not in known:
                raise GraphConfigurationError(f"Edge points to unknown node '{target}'")
        for source in list(self._edges) + list(self._conditional):
            if source != START and source not in self._nodes:
                raise GraphConfigurationError(f"Edge starts at unknown node '{source}'")
        for name in self._nodes:
            if name not in self._edges and name not in self._conditional:
                raise GraphConfigurationError(f"Node '{name}' has no outgoing edge")

        self._compiled = True
        return CompiledGraph(
            entry=entry,
            nodes=dict(self._nodes),
            edges=dict(self._edges),
            conditional=dict(self._conditional),
            error_key=self.error_key,
        )


class CompiledGraph:
    """Immutable, executable graph. Safe to run many times."""

    def __init__(
        self,
        entry: str,
        nodes: Dict[str, Step],
        edges: Dict[str, str],
        conditional: Dict[str, tuple[Router, Dict[str, str]]],
        error_key: str,
    ) -> None:
        self._entry = entry
        self._nodes = nodes
        self._edges = edges
        self._conditional = conditional
        self._error_key = error_key

    @property
    def nodes(self) -> list[str]:
        return list(self._nodes)

    def next_node(self, current: str, state: Mapping[str, Any]) -> str:
        """Resolve the node that follows ``current`` for ``state``."""
        conditional = self._conditional.get(current)
        if conditional is not None:
            router, mapping = conditional
            key = router(dict(state))
            if key not in mapping:
                raise GraphConfigurationError(
                    f"Router for '{current}' returned unmapped key '{key}'"
                )
            return mapping[key]
        return self._edges[current]

    async def run(
        self,
        initial_state: Mapping[str, Any],
        on_step: Optional[StepCallback] = None,
        before_step: Optional[StepCallback] = None,
    ) -> State:
        """Execute the graph from its entry point until ``END``.

        Args:
            initial_state: State handed to the first step. It is copied, never
                mutated.
            on_step: Optional callback invoked with the node name and the
                merged state after every step.
            before_step: Optional callback invoked before every step. Anything
                it raises propagates to the caller untouched, which is how
                cancellation reaches a running graph.
        """
        state: MutableMapping[str, Any] = dict(initial_state)
        current = self._entry

        while current != END:
            step = self._nodes[current]
            if before_step is not None:
                before_step(current, dict(state))
            try:
                updates = await step(dict(state))
                if updates:
                    state.update(updates)
            except RunInterrupted:
                raise
            except Exception as exc:
                logger.error(f"Error in node {current}: {exc}")
                state[self._error_key] = str(exc) or exc.__class__.__name__
                state["error_node"] = current

            if on_step is not None:
                on_step(current, dict(state))

            following = self.next_node(current, state)
            if state.get(self._error_key) and following != END:
                logger.debug(
                    f"Error present after '{current}'; skipping '{following}' and ending run"
                )
                following = END
            current = following

        return dict(state)
