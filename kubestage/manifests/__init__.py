"""Manifest store for KubeStage.

Submodules:
    loader      -- ManifestStore: reads multi-document YAML/JSON sources.
    validation  -- Per-document schema checks (required fields, access
                   modes, secret references).
"""

from kubestage.manifests.loader import DEPENDS_ON_ANNOTATION, ManifestStore, parse_resource_ref

__all__ = ["DEPENDS_ON_ANNOTATION", "ManifestStore", "parse_resource_ref"]
