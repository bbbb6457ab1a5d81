"""Dependency graph construction, cycle detection and stage layering."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator, Sequence
from enum import IntEnum

from kubestage.errors import CycleError, ReadWriteOnceConflictError
from kubestage.graph.inference import DEFAULT_RULES, InferenceRule, ResourceIndex
from kubestage.graph.models import GraphEdge, Stage
from kubestage.manifests.validation import SINGLE_WRITER_MODES
from kubestage.models.resources import ResourceKey, ResourceKind, ResourceSpec
from kubestage.observability.logging import get_logger

_log = get_logger("graph")


class _Color(IntEnum):
    UNVISITED = 0
    IN_PROGRESS = 1
    DONE = 2


class DependencyGraph:
    """Acyclic graph of ResourceSpecs; ``source`` requires ``target``.

    Instances are only produced by :meth:`build`, which guarantees the
    graph is acyclic and stage-safe. The graph is read-only afterwards.
    """

    def __init__(self, specs: Sequence[ResourceSpec], edges: Iterable[GraphEdge]) -> None:
        self._specs: dict[ResourceKey, ResourceSpec] = {spec.key: spec for spec in specs}
        self._edges: list[GraphEdge] = sorted(edges)
        self._deps: dict[ResourceKey, set[ResourceKey]] = {key: set() for key in self._specs}
        self._dependents: dict[ResourceKey, set[ResourceKey]] = {key: set() for key in self._specs}
        for edge in self._edges:
            self._deps[edge.source].add(edge.target)
            self._dependents[edge.target].add(edge.source)
        self._stage_index: dict[ResourceKey, int] = {}
        self._stages: list[Stage] = []

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def build(
        cls,
        resources: Iterable[ResourceSpec],
        rules: Sequence[InferenceRule] | None = None,
    ) -> DependencyGraph:
        """Infer edges, reject cycles, compute stages.

        Raises:
            CycleError: if the inferred dependencies contain a cycle.
            ValidationError: if an explicit dependency is undeclared or two
                stage-mates claim the same single-writer volume.
        """
        specs = sorted(resources, key=lambda s: s.key)
        index = ResourceIndex(specs)
        active_rules = DEFAULT_RULES if rules is None else rules

        edges: dict[tuple[ResourceKey, ResourceKey], GraphEdge] = {}
        for spec in specs:
            for rule in active_rules:
                for edge in rule.infer(spec, index):
                    # First rule to produce an edge wins, so output is stable.
                    edges.setdefault((edge.source, edge.target), edge)

        graph = cls(specs, edges.values())
        graph._check_acyclic()
        graph._compute_stages()
        graph._check_single_writer_claims()
        _log.info(
            "dependency_graph_built",
            resources=graph.node_count,
            edges=graph.edge_count,
            stages=len(graph.stages),
        )
        return graph

    def _check_acyclic(self) -> None:
        # Iterative three-colour DFS; each frame holds its sorted dependency iterator.
        color = {key: _Color.UNVISITED for key in self._specs}
        for root in sorted(self._specs):
            if color[root] != _Color.UNVISITED:
                continue
            color[root] = _Color.IN_PROGRESS
            path: list[ResourceKey] = [root]
            frames: list[Iterator[ResourceKey]] = [iter(sorted(self._deps[root]))]
            while frames:
                for dep in frames[-1]:
                    if color[dep] == _Color.IN_PROGRESS:
                        raise CycleError(path[path.index(dep):])
                    if color[dep] == _Color.UNVISITED:
                        color[dep] = _Color.IN_PROGRESS
                        path.append(dep)
                        frames.append(iter(sorted(self._deps[dep])))
                        break
                else:
                    frames.pop()
                    color[path.pop()] = _Color.DONE

    def _compute_stages(self) -> None:
        # Longest-path layering over a topological order (dependencies first).
        waiting = {key: len(deps) for key, deps in self._deps.items()}
        queue = deque(sorted(key for key, count in waiting.items() if count == 0))
        depth = {key: 0 for key in self._specs}
        while queue:
            key = queue.popleft()
            for dependent in sorted(self._dependents[key]):
                depth[dependent] = max(depth[dependent], depth[key] + 1)
                waiting[dependent] -= 1
                if waiting[dependent] == 0:
                    queue.append(dependent)
        self._stage_index = depth

        buckets: dict[int, list[ResourceSpec]] = {}
        for key, stage in depth.items():
            buckets.setdefault(stage, []).append(self._specs[key])
        self._stages = [
            Stage(index=i, resources=tuple(sorted(buckets.get(i, []), key=lambda s: s.key)))
            for i in range(max(buckets) + 1 if buckets else 0)
        ]

    def _check_single_writer_claims(self) -> None:
        for stage in self._stages:
            claimants: dict[ResourceKey, ResourceKey] = {}
            bound_volumes: dict[str, ResourceKey] = {}
            for spec in stage.resources:
                if spec.kind == ResourceKind.PERSISTENT_VOLUME_CLAIM and spec.spec.get("volumeName"):
                    volume = spec.spec["volumeName"]
                    if volume in bound_volumes:
                        raise ReadWriteOnceConflictError(
                            f"{bound_volumes[volume]} and {spec.key} both bind PersistentVolume/{volume} in stage {stage.index}",
                            spec.source,
                        )
                    bound_volumes[volume] = spec.key
                if not spec.is_workload:
                    continue
                for volume in spec.pod_spec.get("volumes") or []:
                    claim_name = (volume.get("persistentVolumeClaim") or {}).get("claimName")
                    if not claim_name:
                        continue
                    claim_key = ResourceKey(ResourceKind.PERSISTENT_VOLUME_CLAIM.value, spec.namespace, claim_name)
                    claim = self._specs.get(claim_key)
                    if claim is None or not _single_writer(claim):
                        continue
                    other = claimants.get(claim_key)
                    if other is not None and other != spec.key:
                        raise ReadWriteOnceConflictError(
                            f"{other} and {spec.key} both mount single-writer claim {claim_key} in stage {stage.index}",
                            spec.source,
                        )
                    claimants[claim_key] = spec.key

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def node_count(self) -> int:
        return len(self._specs)

    @property
    def edge_count(self) -> int:
        return len(self._edges)

    @property
    def edges(self) -> list[GraphEdge]:
        return list(self._edges)

    @property
    def stages(self) -> list[Stage]:
        return list(self._stages)

    def resources(self) -> list[ResourceSpec]:
        return [self._specs[key] for key in sorted(self._specs)]

    def get(self, key: ResourceKey) -> ResourceSpec | None:
        return self._specs.get(key)

    def dependencies(self, key: ResourceKey) -> list[ResourceKey]:
        return sorted(self._deps.get(key, ()))

    def dependents(self, key: ResourceKey) -> list[ResourceKey]:
        return sorted(self._dependents.get(key, ()))

    def stage_of(self, key: ResourceKey) -> int:
        return self._stage_index[key]


def _single_writer(claim: ResourceSpec) -> bool:
    modes = claim.spec.get("accessModes") or []
    return bool(modes) and all(mode in SINGLE_WRITER_MODES for mode in modes)
