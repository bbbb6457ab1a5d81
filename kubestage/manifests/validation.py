"""Schema checks applied to each manifest document."""

from __future__ import annotations

from typing import Any

from kubestage.errors import SchemaError
from kubestage.models.resources import STORAGE_KINDS, WORKLOAD_KINDS, ResourceKind

ACCESS_MODES = frozenset({"ReadWriteOnce", "ReadOnlyMany", "ReadWriteMany", "ReadWriteOncePod"})
SINGLE_WRITER_MODES = frozenset({"ReadWriteOnce", "ReadWriteOncePod"})


def validate_document(doc: dict[str, Any], source: str) -> None:
    """Raise SchemaError if *doc* is missing anything KubeStage relies on."""
    if not doc.get("apiVersion"):
        raise SchemaError("apiVersion is required", source)

    kind = doc.get("kind")
    if not kind:
        raise SchemaError("kind is required", source)
    supported_kinds = {k.value for k in ResourceKind}
    if not isinstance(kind, str) or kind not in supported_kinds:
        supported = ", ".join(sorted(supported_kinds))
        raise SchemaError(f"unsupported kind {kind!r} (supported: {supported})", source)

    metadata = doc.get("metadata")
    if not isinstance(metadata, dict) or not metadata.get("name"):
        raise SchemaError("metadata.name is required", source)

    if kind in STORAGE_KINDS:
        _validate_access_modes(doc, source)
    if kind in WORKLOAD_KINDS:
        _validate_workload(doc, source)


def _validate_access_modes(doc: dict[str, Any], source: str) -> None:
    modes = (doc.get("spec") or {}).get("accessModes")
    if not modes or not isinstance(modes, list):
        raise SchemaError(f"{doc['kind']} {doc['metadata']['name']}: spec.accessModes is required", source)
    unknown = [m for m in modes if m not in ACCESS_MODES]
    if unknown:
        raise SchemaError(
            f"{doc['kind']} {doc['metadata']['name']}: unknown access mode(s) {unknown}",
            source,
        )


def _validate_workload(doc: dict[str, Any], source: str) -> None:
    name = doc["metadata"]["name"]
    spec = doc.get("spec") or {}
    template = spec.get("template")
    if not isinstance(template, dict) or not (template.get("spec") or {}).get("containers"):
        raise SchemaError(f"{doc['kind']} {name}: spec.template.spec.containers is required", source)

    pod = template["spec"]
    where = f"{doc['kind']} {name}"
    for secret_ref in pod.get("imagePullSecrets") or []:
        if not (secret_ref or {}).get("name"):
            raise SchemaError(f"{where}: imagePullSecrets entry without a name", source)
    for volume in pod.get("volumes") or []:
        if "secret" in volume and not (volume["secret"] or {}).get("secretName"):
            raise SchemaError(f"{where}: secret volume {volume.get('name', '?')!r} has no secretName", source)
        if "persistentVolumeClaim" in volume and not (volume["persistentVolumeClaim"] or {}).get("claimName"):
            raise SchemaError(f"{where}: volume {volume.get('name', '?')!r} has no claimName", source)

    for container in [*(pod.get("initContainers") or []), *(pod.get("containers") or [])]:
        cname = container.get("name", "?")
        for env in container.get("env") or []:
            ref = ((env or {}).get("valueFrom") or {}).get("secretKeyRef")
            if ref is None:
                continue
            if not ref.get("name") or not ref.get("key"):
                raise SchemaError(
                    f"{where}: container {cname!r} env {env.get('name', '?')!r} "
                    "secretKeyRef needs both name and key",
                    source,
                )
        for env_from in container.get("envFrom") or []:
            if "secretRef" in env_from and not (env_from["secretRef"] or {}).get("name"):
                raise SchemaError(f"{where}: container {cname!r} envFrom.secretRef has no name", source)
