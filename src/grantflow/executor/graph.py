"""
Workflow graphs: typed steps with declared data dependencies.

A WorkflowGraph is a DAG of Steps. Each step names the input keys it reads
and the single output key it writes. A step depends on:
- every step listed in ``depends_on`` (ordering dependencies), and
- the producer of every input key another step writes (data dependencies).

Together these are the step's *effective dependencies*; the executor never
starts a step before all of them have succeeded.

**Example**:
```python
graph = WorkflowGraph([
    Step("extract_document", inputs=("document",), output="extracted", work=extract),
    Step("evaluate_compliance", inputs=("extracted", "as_of"), output="compliance",
         work=evaluate),
])
graph.validate(payload_keys={"document", "as_of"})
print(graph.level_graph())
```
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from grantflow.core.errors import GraphValidationError
from grantflow.core.retry import RetryPolicy

StepInputs = Mapping[str, Any]
WorkFunction = Callable[[StepInputs], Awaitable[Any]]


@dataclass(frozen=True)
class Step:
    """
    One unit of orchestrated work.

    **Attributes**:
        step_id: Unique identifier within the graph
        inputs: Keys read from the run state (initial payload or other outputs)
        output: Key this step's return value is written to
        work: Async function called with a mapping of its declared inputs
        depends_on: Step ids that must succeed before this step starts
        retry_policy: Retry behavior for transient failures
        dependency: Circuit breaker name guarding each attempt, if any
    """

    step_id: str
    inputs: tuple[str, ...]
    output: str
    work: WorkFunction = field(compare=False, repr=False)
    depends_on: tuple[str, ...] = ()
    retry_policy: RetryPolicy = RetryPolicy.NONE
    dependency: str | None = None

    def __post_init__(self) -> None:
        # Accept lists for convenience; store tuples so steps stay hashable.
        object.__setattr__(self, "inputs", tuple(self.inputs))
        object.__setattr__(self, "depends_on", tuple(self.depends_on))


@dataclass
class GraphSummary:
    """
    Summary information about a workflow graph.

    **Attributes**:
        total_steps: Total number of steps
        root_count: Number of steps with no effective dependencies
        leaf_count: Number of steps nothing depends on
        max_depth: Maximum depth of the graph
        roots: Root step ids
        leaves: Leaf step ids
    """

    total_steps: int
    root_count: int
    leaf_count: int
    max_depth: int
    roots: list[str]
    leaves: list[str]


class WorkflowGraph:
    """
    Ordered set of steps plus the output-key to producer mapping.

    Construction checks structural invariants that do not depend on the
    payload (unique ids, unique outputs, known dependencies, acyclicity).
    ``validate(payload_keys)`` additionally checks that every input key is
    satisfiable.
    """

    def __init__(self, steps: Iterable[Step], terminal_outputs: Iterable[str] | None = None):
        self.steps: list[Step] = list(steps)
        self._by_id: dict[str, Step] = {}
        self.producers: dict[str, str] = {}

        for step in self.steps:
            if step.step_id in self._by_id:
                raise GraphValidationError(f"Duplicate step id '{step.step_id}'")
            self._by_id[step.step_id] = step

            if step.output in self.producers:
                raise GraphValidationError(
                    f"Output key '{step.output}' is produced by both "
                    f"'{self.producers[step.output]}' and '{step.step_id}'"
                )
            self.producers[step.output] = step.step_id

        for step in self.steps:
            for dep in step.depends_on:
                if dep == step.step_id:
                    raise GraphValidationError(f"Step '{step.step_id}' depends on itself")
                if dep not in self._by_id:
                    raise GraphValidationError(
                        f"Step '{step.step_id}' depends on non-existent step '{dep}'"
                    )

        self._dependencies: dict[str, tuple[str, ...]] = {
            step.step_id: self._effective_dependencies(step) for step in self.steps
        }
        self._check_acyclic()

        if terminal_outputs is None:
            self.terminal_outputs: tuple[str, ...] = tuple(
                self._by_id[step_id].output for step_id in self.leaves()
            )
        else:
            self.terminal_outputs = tuple(terminal_outputs)
            unknown = [key for key in self.terminal_outputs if key not in self.producers]
            if unknown:
                raise GraphValidationError(f"Terminal outputs not produced by any step: {unknown}")

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self):
        return iter(self.steps)

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._by_id

    def __repr__(self) -> str:
        return f"WorkflowGraph({[s.step_id for s in self.steps]})"

    def step(self, step_id: str) -> Step:
        return self._by_id[step_id]

    def dependencies(self, step_id: str) -> tuple[str, ...]:
        """Effective dependencies of ``step_id`` (declared plus data producers)."""
        return self._dependencies[step_id]

    def dependents(self, step_id: str) -> list[str]:
        return [s.step_id for s in self.steps if step_id in self._dependencies[s.step_id]]

    def descendants(self, step_id: str) -> set[str]:
        """All steps that transitively depend on ``step_id``."""
        found: set[str] = set()
        frontier = [step_id]
        while frontier:
            current = frontier.pop()
            for dependent in self.dependents(current):
                if dependent not in found:
                    found.add(dependent)
                    frontier.append(dependent)
        return found

    def roots(self) -> list[str]:
        return [s.step_id for s in self.steps if not self._dependencies[s.step_id]]

    def leaves(self) -> list[str]:
        depended_on: set[str] = set()
        for deps in self._dependencies.values():
            depended_on.update(deps)
        return [s.step_id for s in self.steps if s.step_id not in depended_on]

    def validate(self, payload_keys: Iterable[str]) -> None:
        """
        Check that every declared input is satisfiable.

        **Raises**:
            GraphValidationError: If an input key is neither produced by a
                step nor present in the payload
        """
        available = set(payload_keys) | set(self.producers)
        for step in self.steps:
            missing = [key for key in step.inputs if key not in available]
            if missing:
                raise GraphValidationError(
                    f"Step '{step.step_id}' requires inputs {missing} that are neither "
                    "produced by a step nor present in the payload"
                )

    def summary(self) -> GraphSummary:
        roots = self.roots()
        leaves = self.leaves()
        depths = self._calculate_depths()
        return GraphSummary(
            total_steps=len(self.steps),
            root_count=len(roots),
            leaf_count=len(leaves),
            max_depth=max(depths.values()) if depths else 0,
            roots=roots,
            leaves=leaves,
        )

    def level_graph(self) -> str:
        """
        Returns a level-based view showing which steps may run concurrently.

        **Example output**:
        ```
        Workflow Levels (4 steps):

        Level 0: [extract_document] [embed_query] (2 parallel steps)
                 ↓
        Level 1: [evaluate_compliance] [search_candidates] (2 parallel steps)
        ```
        """
        output = f"Workflow Levels ({len(self.steps)} steps):\n\n"

        depths = self._calculate_depths()
        max_level = max(depths.values()) if depths else 0
        levels: list[list[str]] = [[] for _ in range(max_level + 1)]
        for step in self.steps:
            levels[depths[step.step_id]].append(step.step_id)

        for level, steps in enumerate(levels):
            if not steps:
                continue
            parallel_note = f" ({len(steps)} parallel steps)" if len(steps) > 1 else ""
            output += f"Level {level}: [{'] ['.join(steps)}]{parallel_note}\n"
            if level < max_level:
                output += "         ↓\n"

        return output

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _effective_dependencies(self, step: Step) -> tuple[str, ...]:
        deps = list(step.depends_on)
        for key in step.inputs:
            producer = self.producers.get(key)
            if producer is None:
                continue
            if producer == step.step_id:
                raise GraphValidationError(
                    f"Step '{step.step_id}' reads its own output '{key}'"
                )
            if producer not in deps:
                deps.append(producer)
        return tuple(deps)

    def _check_acyclic(self) -> None:
        # Kahn's algorithm
        in_degree = {step_id: len(deps) for step_id, deps in self._dependencies.items()}
        ready = [step_id for step_id, degree in in_degree.items() if degree == 0]
        visited = 0
        while ready:
            current = ready.pop()
            visited += 1
            for dependent in self.dependents(current):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    ready.append(dependent)

        if visited != len(self.steps):
            remaining = sorted(step_id for step_id, degree in in_degree.items() if degree > 0)
            raise GraphValidationError(
                f"Cycle detected in dependency graph involving steps {remaining}"
            )

    def _calculate_depths(self) -> dict[str, int]:
        depths: dict[str, int] = {}

        def depth(step_id: str) -> int:
            if step_id not in depths:
                deps = self._dependencies[step_id]
                depths[step_id] = 1 + max(depth(d) for d in deps) if deps else 0
            return depths[step_id]

        for step in self.steps:
            depth(step.step_id)
        return depths
