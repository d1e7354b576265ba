"""
Dependency scheduler for batches of subtasks.

Validates that batch and subtask dependencies form DAGs, orders batches
topologically, stores a request's whole graph at once and tracks which
subtasks may start and which batches are done.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

from .enums import IdKind, SubtaskStatus
from .exceptions import NotFoundError, ValidationError
from .graph import DependencyGraph
from .identifiers import new_id
from .models import (
    AggregatedEvidence, BatchCompletionResult, BatchDependency, BatchOptions, BatchSpec,
    BulkResult, BulkValidationSummary, DependencyStatus, Subtask, SubtaskDependencyEdge,
    SubtaskSpec,
)
from .task_store import TaskStore

logger = logging.getLogger(__name__)

_QUOTES = re.compile(r'^[\'"`]+|[\'"`]+$')
_SEPARATORS = re.compile(r'[_\-\s]+')

# Statuses that need every dependency completed first
_GATED_STATUSES = (SubtaskStatus.IN_PROGRESS, SubtaskStatus.COMPLETED)


def normalize_dependency_names(names: Optional[Iterable[str]]) -> List[str]:
    """Strip surrounding quotes and collapse ``_``/``-``/whitespace runs to one space"""
    normalized = []
    for name in names or []:
        if not isinstance(name, str):
            continue
        cleaned = _SEPARATORS.sub(" ", _QUOTES.sub("", name.strip())).strip()
        if cleaned:
            normalized.append(cleaned)
    return normalized


def _name_key(name: str) -> str:
    return _SEPARATORS.sub(" ", name.strip()).strip().lower()


class DependencyScheduler:
    """Creates subtask batches and answers scheduling questions about them"""

    def __init__(self, tasks: TaskStore):
        self.tasks = tasks

    # ------------------------------------------------------------------
    # Batch graph
    # ------------------------------------------------------------------

    @staticmethod
    def _batch_graph(batches: List[BatchSpec], batch_dependencies: List[BatchDependency]) -> DependencyGraph[str]:
        graph: DependencyGraph[str] = DependencyGraph()
        for batch in batches:
            if batch.batch_id in graph:
                raise ValidationError(f"Duplicate batch id '{batch.batch_id}'", field="batch_id",
                                      value=batch.batch_id)
            graph.add_node(batch.batch_id)

        for dependency in batch_dependencies:
            if dependency.batch_id not in graph:
                raise ValidationError(
                    f"Dependency declared for unknown batch '{dependency.batch_id}'",
                    field="batch_dependencies",
                    value=dependency.batch_id
                )
            for prerequisite in dependency.depends_on_batches:
                if prerequisite not in graph:
                    raise ValidationError(
                        f"Batch '{dependency.batch_id}' depends on unknown batch '{prerequisite}'",
                        field="batch_dependencies",
                        value=prerequisite
                    )
                graph.add_dependency(dependency.batch_id, prerequisite)
        return graph

    def validate_acyclic(self, batches: List[BatchSpec],
                         batch_dependencies: Optional[List[BatchDependency]] = None) -> None:
        """
        Raises:
            ValidationError: If batch dependencies contain a cycle or unknown batch ids
        """
        graph = self._batch_graph(batches, batch_dependencies or [])
        cycle = graph.find_cycle()
        if cycle:
            raise ValidationError(
                f"Circular dependency detected involving batch {cycle[0]}: {' -> '.join(cycle)}",
                field="batch_dependencies",
                value=cycle[0],
                context={"cycle": cycle}
            )

    def topological_order(self, batches: List[BatchSpec],
                          batch_dependencies: Optional[List[BatchDependency]] = None) -> List[BatchSpec]:
        """Prerequisite batches first; input order is kept among independent batches"""
        if not batch_dependencies:
            return list(batches)
        graph = self._batch_graph(batches, batch_dependencies)
        by_id = {b.batch_id: b for b in batches}
        return [by_id[batch_id] for batch_id in graph.topological_order()]

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_batches(self, task_id: int, batches: List[BatchSpec],
                       batch_dependencies: Optional[List[BatchDependency]] = None,
                       options: Optional[BatchOptions] = None) -> BulkResult:
        """
        Create every batch and subtask of a request as one unit.

        Dependency names only resolve against subtasks of the same request;
        names that do not resolve are skipped.

        Raises:
            NotFoundError: If the task does not exist
            ValidationError: On cycles, unknown batch ids or duplicate names
            StorageFailureError: If the graph cannot be stored (nothing is kept)
        """
        options = options or BatchOptions()
        batch_dependencies = batch_dependencies or []
        self.tasks.get_task(task_id)
        if not batches:
            raise ValidationError("At least one batch is required", field="batches")

        if options.validate_dependencies:
            self.validate_acyclic(batches, batch_dependencies)
        else:
            self._batch_graph(batches, batch_dependencies)
        ordered = self.topological_order(batches, batch_dependencies) if options.optimize_sequencing else list(batches)

        subtasks, name_index = self._mint_subtasks(task_id, ordered)
        specs = {s.id: spec for s, spec in subtasks}
        created = [s for s, _ in subtasks]

        edges: List[SubtaskDependencyEdge] = []
        graph: DependencyGraph[str] = DependencyGraph(s.id for s in created)
        for subtask in created:
            for name in normalize_dependency_names(specs[subtask.id].dependencies):
                required_id = name_index.get(_name_key(name))
                if required_id is None:
                    logger.debug("Dependency %r of subtask %r is not part of this request, skipped",
                                 name, subtask.name)
                    continue
                if required_id == subtask.id:
                    raise ValidationError(f"Subtask '{subtask.name}' depends on itself",
                                          field="dependencies", value=name)
                if required_id not in graph.prerequisites_of(subtask.id):
                    graph.add_dependency(subtask.id, required_id)
                    edges.append(SubtaskDependencyEdge(subtask.id, required_id))

        if not options.allow_parallel_execution:
            for previous, current in zip(created, created[1:]):
                if previous.id not in graph.prerequisites_of(current.id):
                    graph.add_dependency(current.id, previous.id)
                    edges.append(SubtaskDependencyEdge(current.id, previous.id, dependency_type="implicit-sequential"))

        if options.validate_dependencies:
            cycle = graph.find_cycle()
            if cycle:
                names = {s.id: s.name for s in created}
                raise ValidationError(
                    f"Circular dependency detected between subtasks: {' -> '.join(names[c] for c in cycle)}",
                    field="dependencies",
                    value=names[cycle[0]]
                )

        self.tasks.insert_subtask_graph(created, edges)
        logger.info("Created %d subtasks in %d batches for task %s", len(created), len(ordered), task_id)

        depends_on = {b.batch_id: list(b.depends_on_batches) for b in batch_dependencies}
        return BulkResult(
            subtasks=created,
            dependency_graph=[
                {"subtask_id": s.id, "name": s.name, "depends_on": graph.prerequisites_of(s.id)}
                for s in created
            ],
            batch_summary=[
                {
                    "batch_id": batch.batch_id,
                    "batch_title": batch.batch_title,
                    "subtask_count": len(batch.subtasks),
                    "subtask_ids": [s.id for s in created if s.batch_id == batch.batch_id],
                    "depends_on_batches": depends_on.get(batch.batch_id, []),
                }
                for batch in ordered
            ],
            validation=BulkValidationSummary(
                total_subtasks=len(created),
                total_batches=len(ordered),
                dependencies_resolved=len(edges),
                optimization_applied=options.optimize_sequencing and bool(batch_dependencies),
            ),
            message=f"Created {len(created)} subtasks in {len(ordered)} batches",
        )

    def _mint_subtasks(self, task_id: int,
                       ordered: List[BatchSpec]) -> Tuple[List[Tuple[Subtask, SubtaskSpec]], Dict[str, str]]:
        minted: List[Tuple[Subtask, SubtaskSpec]] = []
        name_index: Dict[str, str] = {}
        sequence = 0
        for batch in ordered:
            for spec in sorted(batch.subtasks, key=lambda s: s.sequence_number):
                key = _name_key(spec.name)
                if key in name_index:
                    raise ValidationError(f"Duplicate subtask name '{spec.name}' in request",
                                          field="name", value=spec.name)
                sequence += 1
                subtask = Subtask(
                    id=new_id(IdKind.SUBTASK),
                    task_id=task_id,
                    batch_id=batch.batch_id,
                    name=spec.name.strip(),
                    sequence_number=sequence,
                    batch_title=batch.batch_title or "Untitled Batch",
                    description=spec.description,
                    dependencies=normalize_dependency_names(spec.dependencies),
                    implementation_approach=spec.implementation_approach,
                    acceptance_criteria=list(spec.acceptance_criteria),
                )
                name_index[key] = subtask.id
                minted.append((subtask, spec))
        return minted, name_index

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def check_dependencies(self, subtask_id: str) -> DependencyStatus:
        """Completion state of a subtask's direct dependencies"""
        self.tasks.get_subtask(subtask_id)
        required = [self.tasks.find_subtask(i) for i in self.tasks.required_subtask_ids(subtask_id)]
        required = [s for s in required if s is not None]
        pending = [s.name for s in required if s.status != SubtaskStatus.COMPLETED]
        return DependencyStatus(
            can_start=not pending,
            total_dependencies=len(required),
            completed_dependencies=len(required) - len(pending),
            pending_dependencies=pending,
        )

    def is_eligible(self, subtask_id: str) -> bool:
        return self.check_dependencies(subtask_id).can_start

    def next_eligible(self, task_id: int) -> List[Subtask]:
        """Not-started subtasks whose dependencies are all completed, in sequence order"""
        return [
            s for s in self.tasks.subtasks_for(task_id)
            if s.status == SubtaskStatus.NOT_STARTED and self.is_eligible(s.id)
        ]

    def update_subtask_status(self, subtask_id: str, status: SubtaskStatus,
                              evidence: Optional[Dict] = None) -> Tuple[Subtask, Optional[BatchCompletionResult]]:
        """
        Change a subtask's status; completing one runs the batch completion check.

        Raises:
            ValidationError: If dependencies are incomplete for in-progress/completed
        """
        if status in _GATED_STATUSES:
            dependencies = self.check_dependencies(subtask_id)
            if not dependencies.can_start:
                raise ValidationError(
                    f"Cannot transition to '{status.value}' - incomplete dependencies: "
                    f"{', '.join(dependencies.pending_dependencies)}",
                    field="status",
                    value=status.value
                )

        def apply(subtask: Subtask) -> None:
            subtask.status = status
            if evidence is not None:
                subtask.completion_evidence = dict(evidence)

        updated = self.tasks.update_subtask(subtask_id, apply)
        completion = None
        if status == SubtaskStatus.COMPLETED:
            completion = self.check_batch_completion(updated.task_id, updated.batch_id)
        return updated, completion

    def check_batch_completion(self, task_id: int, batch_id: str) -> BatchCompletionResult:
        """
        True iff every subtask of the batch is completed. Evidence is
        aggregated only the first time completion is detected.

        Raises:
            NotFoundError: If the batch has no subtasks
        """
        subtasks = self.tasks.subtasks_for(task_id, batch_id)
        if not subtasks:
            raise NotFoundError(f"Batch '{batch_id}' of task {task_id} not found",
                                context={"task_id": task_id, "batch_id": batch_id})

        completed = [s for s in subtasks if s.status == SubtaskStatus.COMPLETED]
        if len(completed) < len(subtasks):
            return BatchCompletionResult(
                batch_completed=False,
                completion_triggered=False,
                message=f"Batch {batch_id}: {len(completed)}/{len(subtasks)} subtasks completed",
            )

        if not self.tasks.mark_batch_completed(task_id, batch_id):
            return BatchCompletionResult(
                batch_completed=True,
                completion_triggered=False,
                message=f"Batch {batch_id} was already completed",
            )

        logger.info("Batch %s of task %s completed", batch_id, task_id)
        return BatchCompletionResult(
            batch_completed=True,
            completion_triggered=True,
            message=f"Batch {batch_id} completed",
            aggregated_evidence=self.aggregate_evidence(subtasks),
        )

    @staticmethod
    def aggregate_evidence(subtasks: List[Subtask]) -> AggregatedEvidence:
        files: List[str] = []
        for subtask in subtasks:
            evidence = subtask.completion_evidence or {}
            for path in evidence.get("files_modified") or evidence.get("filesModified") or []:
                if path not in files:
                    files.append(path)

        lines = [f"Batch completed with {len(subtasks)} subtasks:"]
        lines.extend(f"- {s.name}: {s.description}" for s in subtasks)
        lines.append("")
        lines.append("All acceptance criteria met and evidence collected.")
        return AggregatedEvidence(
            completion_summary=f"Automatic batch completion: All {len(subtasks)} subtasks completed successfully",
            files_modified=files,
            implementation_notes="\n".join(lines),
            total_subtasks=len(subtasks),
            completed_subtasks=len(subtasks),
        )
