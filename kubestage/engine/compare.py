"""Desired-vs-live comparison used for idempotent apply."""

from __future__ import annotations

import base64
import copy
from typing import Any

from kubernetes.utils.quantity import parse_quantity  # type: ignore[import-untyped]

from kubestage.models.resources import ResourceKind, ResourceSpec

# Metadata the user may declare and the server preserves verbatim.
_COMPARED_METADATA = ("name", "namespace", "labels", "annotations")

# Parents of fields holding resource quantities (requests.cpu, capacity.storage).
_QUANTITY_PARENTS = ("requests", "limits", "capacity")


def desired_state(spec: ResourceSpec) -> dict[str, Any]:
    """The part of a manifest that must be reflected in the live object.

    The result is a deep copy and never shares state with ``spec.payload``.
    """
    payload = copy.deepcopy(spec.payload)
    desired: dict[str, Any] = {k: v for k, v in payload.items() if k not in ("status", "metadata", "apiVersion")}
    metadata = payload.get("metadata") or {}
    desired["metadata"] = {k: metadata[k] for k in _COMPARED_METADATA if k in metadata}
    if spec.kind == ResourceKind.SECRET and desired.get("stringData"):
        # The API server folds stringData into base64 data and never returns it.
        data = dict(desired.get("data") or {})
        for k, v in desired.pop("stringData").items():
            data[k] = base64.b64encode(str(v).encode("utf-8")).decode("ascii")
        desired["data"] = data
    return desired


def diff_paths(desired: Any, live: Any, path: str = "", limit: int = 5) -> list[str]:
    """Paths where *live* does not contain *desired*; at most *limit* entries.

    Dicts are compared as subsets (server-added fields are fine), lists
    element-wise with equal length, scalars by value.
    """
    out: list[str] = []
    _diff(desired, live, path, out, limit)
    return out


def is_subset(desired: Any, live: Any) -> bool:
    return not diff_paths(desired, live, limit=1)


def _diff(desired: Any, live: Any, path: str, out: list[str], limit: int) -> None:
    if len(out) >= limit:
        return
    if isinstance(desired, dict):
        if not isinstance(live, dict):
            out.append(path or ".")
            return
        for key in sorted(desired):
            child = f"{path}.{key}" if path else str(key)
            if key not in live:
                if desired[key] in (None, {}, []):
                    continue
                out.append(child)
            else:
                _diff(desired[key], live[key], child, out, limit)
            if len(out) >= limit:
                return
        return
    if isinstance(desired, list):
        if not isinstance(live, list) or len(desired) != len(live):
            out.append(path or ".")
            return
        for i, (d, item) in enumerate(zip(desired, live, strict=True)):
            _diff(d, item, f"{path}[{i}]", out, limit)
        return
    if not _scalar_equal(desired, live) and not _quantity_equal(path, desired, live):
        out.append(path or ".")


def _scalar_equal(a: Any, b: Any) -> bool:
    if a == b:
        return True
    if isinstance(a, bool) or isinstance(b, bool) or a is None or b is None:
        return False
    # YAML may type "80" where the server stores 80 (or the other way round).
    return str(a) == str(b)


def _quantity_equal(path: str, a: Any, b: Any) -> bool:
    """Resource quantities are stored in canonical form ("0.5" becomes "500m")."""
    parts = path.split(".")
    if parts[-1] != "sizeLimit" and (len(parts) < 2 or parts[-2] not in _QUANTITY_PARENTS):
        return False
    if isinstance(a, bool) or isinstance(b, bool):
        return False
    try:
        return parse_quantity(str(a)) == parse_quantity(str(b))
    except (TypeError, ValueError):
        return False
