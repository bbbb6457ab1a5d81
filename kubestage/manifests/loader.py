"""Manifest store: reads YAML/JSON sources into validated ResourceSpecs."""

from __future__ import annotations

import copy
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

import yaml

from kubestage.errors import DuplicateResourceError, SchemaError, ValidationError
from kubestage.manifests.validation import validate_document
from kubestage.models.resources import (
    CLUSTER_SCOPED_KINDS,
    ResourceKey,
    ResourceSpec,
    resolve_kind,
)
from kubestage.observability.logging import get_logger

_log = get_logger("manifests")

DEPENDS_ON_ANNOTATION = "kubestage.io/depends-on"
MANIFEST_SUFFIXES = (".yaml", ".yml", ".json")


def parse_resource_ref(ref: str, namespace: str) -> ResourceKey:
    """Parse ``Kind/name`` or ``Kind/namespace/name`` into a ResourceKey.

    Namespaced kinds referenced without a namespace inherit *namespace*.

    Raises:
        ValueError: if the reference is malformed or names an unknown kind.
    """
    parts = [p.strip() for p in ref.strip().split("/")]
    if len(parts) not in (2, 3) or not all(parts):
        raise ValueError(f"malformed reference {ref!r}, expected Kind/name or Kind/namespace/name")
    kind = resolve_kind(parts[0])
    if kind is None:
        raise ValueError(f"unknown kind in reference {ref!r}")
    if kind in CLUSTER_SCOPED_KINDS:
        if len(parts) == 3:
            raise ValueError(f"{kind} is cluster-scoped, reference {ref!r} must not carry a namespace")
        return ResourceKey(kind.value, "", parts[1])
    if len(parts) == 3:
        return ResourceKey(kind.value, parts[1], parts[2])
    return ResourceKey(kind.value, namespace, parts[1])


class ManifestStore:
    """Loads resource declarations and enforces per-document invariants.

    ``load`` is pure: it reads the sources and returns specs, or raises a
    ValidationError subclass. Nothing is cached between calls.
    """

    def __init__(self, default_namespace: str = "default") -> None:
        self._default_namespace = default_namespace

    def load(self, sources: Iterable[str | Path]) -> list[ResourceSpec]:
        """Load every document from *sources*, in source order."""
        specs: list[ResourceSpec] = []
        seen: dict[ResourceKey, str] = {}
        file_count = 0
        for path in self._expand(sources):
            file_count += 1
            for index, doc in enumerate(self._read_documents(path)):
                where = f"{path}#{index}"
                spec = self._to_spec(doc, where)
                if spec.key in seen:
                    raise DuplicateResourceError(spec.key, seen[spec.key], where)
                seen[spec.key] = where
                specs.append(spec)
        _log.info("manifests_loaded", files=file_count, resources=len(specs))
        return specs

    def load_documents(self, docs: Iterable[dict[str, Any]], source: str = "<memory>") -> list[ResourceSpec]:
        """Validate already-parsed documents (used by tests and embedding callers)."""
        specs: list[ResourceSpec] = []
        seen: dict[ResourceKey, str] = {}
        for index, doc in enumerate(_flatten(list(docs))):
            where = f"{source}#{index}"
            spec = self._to_spec(doc, where)
            if spec.key in seen:
                raise DuplicateResourceError(spec.key, seen[spec.key], where)
            seen[spec.key] = where
            specs.append(spec)
        return specs

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _expand(self, sources: Iterable[str | Path]) -> Iterator[Path]:
        any_source = False
        for source in sources:
            any_source = True
            path = Path(source)
            if path.is_dir():
                files = sorted(p for p in path.iterdir() if p.is_file() and p.suffix in MANIFEST_SUFFIXES)
                if not files:
                    _log.warning("manifest_dir_empty", path=str(path))
                yield from files
            elif path.is_file():
                yield path
            else:
                raise ValidationError("manifest source does not exist", str(path))
        if not any_source:
            raise ValidationError("no manifest sources given")

    def _read_documents(self, path: Path) -> list[dict[str, Any]]:
        try:
            with path.open(encoding="utf-8") as f:
                raw_docs = [doc for doc in yaml.safe_load_all(f) if doc is not None]
        except yaml.YAMLError as exc:
            raise SchemaError(f"cannot parse document: {exc}", str(path)) from exc
        except OSError as exc:
            raise ValidationError(f"cannot read file: {exc}", str(path)) from exc
        return _flatten(raw_docs)

    def _to_spec(self, doc: Any, where: str) -> ResourceSpec:
        if not isinstance(doc, dict):
            raise SchemaError("document is not a mapping", where)
        validate_document(doc, where)
        payload = copy.deepcopy(doc)
        kind = payload["kind"]
        metadata = payload["metadata"]
        if kind in CLUSTER_SCOPED_KINDS:
            metadata.pop("namespace", None)
            namespace = ""
        else:
            namespace = metadata.get("namespace") or self._default_namespace
            metadata["namespace"] = namespace
        key = ResourceKey(kind, namespace, metadata["name"])
        return ResourceSpec(
            key=key,
            payload=payload,
            source=where,
            depends_on=self._declared_dependencies(key, metadata, where),
        )

    def _declared_dependencies(self, key: ResourceKey, metadata: dict[str, Any], where: str) -> frozenset[ResourceKey]:
        raw = (metadata.get("annotations") or {}).get(DEPENDS_ON_ANNOTATION, "")
        deps: set[ResourceKey] = set()
        for ref in str(raw).split(","):
            if not ref.strip():
                continue
            try:
                dep = parse_resource_ref(ref, key.namespace or self._default_namespace)
            except ValueError as exc:
                raise SchemaError(f"{DEPENDS_ON_ANNOTATION}: {exc}", where) from exc
            if dep == key:
                raise SchemaError(f"{key} declares a dependency on itself", where)
            deps.add(dep)
        return frozenset(deps)


def _flatten(docs: list[Any]) -> list[dict[str, Any]]:
    """Expand ``kind: List`` documents into their items."""
    out: list[dict[str, Any]] = []
    for doc in docs:
        if isinstance(doc, dict) and doc.get("kind") == "List":
            out.extend(item for item in doc.get("items") or [] if item)
        else:
            out.append(doc)
    return out
