"""Dependency inference rules.

Each rule looks at one ResourceSpec and yields the edges it implies. Rules
are policy, not algorithm: the default set encodes the usual ordering
(storage and credentials, then databases, then applications, then proxies)
and any rule can be disabled by id. Rules only produce edges to resources
that are declared in the same manifest set; references to anything else
are assumed to already exist in the cluster.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from urllib.parse import urlparse

from kubestage.errors import SchemaError
from kubestage.graph.models import EdgeType, GraphEdge
from kubestage.manifests.loader import parse_resource_ref
from kubestage.models.resources import ResourceKey, ResourceKind, ResourceSpec
from kubestage.observability.logging import get_logger

_log = get_logger("graph.inference")

UPSTREAM_SERVICES_ANNOTATION = "kubestage.io/upstream-services"
PROXY_BACKENDS_ANNOTATION = "kubestage.io/proxy-backends"

# Env var names whose values are expected to be network addresses.
_HOST_ENV_SUFFIXES = ("HOST", "HOSTNAME", "HOSTS", "ADDR", "ADDRESS", "URL", "URI", "ENDPOINT", "SERVER", "SERVERS")
_HOST_PORT_RE = re.compile(r"^([a-z0-9][a-z0-9.-]*):[0-9]{1,5}$")
_HOSTNAME_RE = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?(\.[a-z0-9]([a-z0-9-]*[a-z0-9])?)*$")
_PROXY_PASS_RE = re.compile(r"proxy_pass\s+(?:https?|grpcs?)://([A-Za-z0-9.-]+)")
_UPSTREAM_SERVER_RE = re.compile(r"^\s*server\s+([A-Za-z0-9.-]+)(?::[0-9]+)?[^;{]*;", re.MULTILINE)


class ResourceIndex:
    """Lookup helpers over the declared resource set."""

    def __init__(self, specs: Iterable[ResourceSpec]) -> None:
        self._by_key: dict[ResourceKey, ResourceSpec] = {spec.key: spec for spec in specs}

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def get(self, key: ResourceKey) -> ResourceSpec | None:
        return self._by_key.get(key)

    def of_kind(self, kind: str, namespace: str | None = None) -> list[ResourceSpec]:
        return sorted(
            (s for s in self._by_key.values() if s.kind == kind and (namespace is None or s.namespace == namespace)),
            key=lambda s: s.key,
        )

    def workloads(self, namespace: str) -> list[ResourceSpec]:
        return sorted(
            (s for s in self._by_key.values() if s.is_workload and s.namespace == namespace),
            key=lambda s: s.key,
        )


def selector_matches(service: ResourceSpec, workload: ResourceSpec) -> bool:
    """True when *service*'s selector selects *workload*'s pods."""
    selector = service.spec.get("selector") or {}
    if not selector or service.namespace != workload.namespace:
        return False
    labels = workload.pod_labels
    return all(labels.get(k) == v for k, v in selector.items())


def service_key_for_host(host: str, namespace: str) -> ResourceKey | None:
    """Map ``name``, ``name.ns`` or ``name.ns.svc[.cluster.local]`` to a Service key."""
    host = host.strip().lower().rstrip(".")
    if not host or not _HOSTNAME_RE.match(host):
        return None
    parts = host.split(".")
    if len(parts) == 1:
        return ResourceKey(ResourceKind.SERVICE.value, namespace, parts[0])
    if len(parts) == 2 or parts[2] == "svc":
        return ResourceKey(ResourceKind.SERVICE.value, parts[1], parts[0])
    return None


class InferenceRule(ABC):
    """Base class for dependency inference rules."""

    rule_id: str = ""
    display_name: str = ""
    edge_type: EdgeType = EdgeType.EXPLICIT

    @abstractmethod
    def infer(self, spec: ResourceSpec, index: ResourceIndex) -> Iterator[GraphEdge]:
        """Yield the edges *spec* requires."""

    def _edge(self, spec: ResourceSpec, target: ResourceKey, source_field: str, index: ResourceIndex) -> GraphEdge | None:
        if target == spec.key:
            return None
        if target not in index:
            _log.debug(
                "reference_to_undeclared_resource",
                resource=str(spec.key),
                target=str(target),
                field=source_field,
                rule=self.rule_id,
            )
            return None
        return GraphEdge(
            source=spec.key,
            target=target,
            edge_type=self.edge_type,
            source_field=source_field,
            rule_id=self.rule_id,
        )


class ExplicitDependencyRule(InferenceRule):
    """``kubestage.io/depends-on`` annotations. Undeclared targets are errors."""

    rule_id = "explicit"
    display_name = "Explicit dependency annotation"
    edge_type = EdgeType.EXPLICIT

    def infer(self, spec: ResourceSpec, index: ResourceIndex) -> Iterator[GraphEdge]:
        for target in sorted(spec.depends_on):
            if target not in index:
                raise SchemaError(f"{spec.key} depends on undeclared resource {target}", spec.source)
            edge = self._edge(spec, target, "metadata.annotations[kubestage.io/depends-on]", index)
            if edge is not None:
                yield edge


class NamespaceRule(InferenceRule):
    """Namespaced resources wait for their declared Namespace."""

    rule_id = "namespace"
    display_name = "Namespace before contents"
    edge_type = EdgeType.NAMESPACE

    def infer(self, spec: ResourceSpec, index: ResourceIndex) -> Iterator[GraphEdge]:
        if not spec.namespace:
            return
        target = ResourceKey(ResourceKind.NAMESPACE.value, "", spec.namespace)
        if target in index:
            edge = self._edge(spec, target, "metadata.namespace", index)
            if edge is not None:
                yield edge


class ClaimVolumeRule(InferenceRule):
    """A Claim depends on the Volume it binds."""

    rule_id = "claim-volume"
    display_name = "Claim after bound Volume"
    edge_type = EdgeType.VOLUME_BINDING

    def infer(self, spec: ResourceSpec, index: ResourceIndex) -> Iterator[GraphEdge]:
        if spec.kind != ResourceKind.PERSISTENT_VOLUME_CLAIM:
            return
        targets: dict[ResourceKey, str] = {}
        volume_name = spec.spec.get("volumeName")
        if volume_name:
            targets[ResourceKey(ResourceKind.PERSISTENT_VOLUME.value, "", volume_name)] = "spec.volumeName"
        for volume in index.of_kind(ResourceKind.PERSISTENT_VOLUME.value):
            claim_ref = volume.spec.get("claimRef") or {}
            if claim_ref.get("name") == spec.name and (claim_ref.get("namespace") or spec.namespace) == spec.namespace:
                targets.setdefault(volume.key, f"{volume.key}:spec.claimRef")
        for target, field_path in sorted(targets.items()):
            edge = self._edge(spec, target, field_path, index)
            if edge is not None:
                yield edge


class WorkloadClaimRule(InferenceRule):
    """A Workload depends on every Claim it mounts."""

    rule_id = "workload-claims"
    display_name = "Workload after mounted Claims"
    edge_type = EdgeType.CLAIM_MOUNT

    def infer(self, spec: ResourceSpec, index: ResourceIndex) -> Iterator[GraphEdge]:
        for i, volume in enumerate(spec.pod_spec.get("volumes") or []):
            claim = (volume.get("persistentVolumeClaim") or {}).get("claimName")
            if not claim:
                continue
            target = ResourceKey(ResourceKind.PERSISTENT_VOLUME_CLAIM.value, spec.namespace, claim)
            edge = self._edge(spec, target, f"spec.template.spec.volumes[{i}].persistentVolumeClaim", index)
            if edge is not None:
                yield edge


def secret_references(spec: ResourceSpec) -> list[tuple[str, str]]:
    """(secret name, field path) pairs referenced by a workload's pod template."""
    refs: list[tuple[str, str]] = []
    pod = spec.pod_spec
    for i, ref in enumerate(pod.get("imagePullSecrets") or []):
        refs.append((ref["name"], f"spec.template.spec.imagePullSecrets[{i}]"))
    for i, volume in enumerate(pod.get("volumes") or []):
        if "secret" in volume:
            refs.append((volume["secret"]["secretName"], f"spec.template.spec.volumes[{i}].secret"))
        for j, source in enumerate((volume.get("projected") or {}).get("sources") or []):
            if (source.get("secret") or {}).get("name"):
                refs.append((source["secret"]["name"], f"spec.template.spec.volumes[{i}].projected.sources[{j}]"))
    for container in spec.containers():
        cname = container.get("name", "?")
        for env in container.get("env") or []:
            ref = (env.get("valueFrom") or {}).get("secretKeyRef")
            if ref:
                refs.append((ref["name"], f"containers[{cname}].env[{env.get('name')}]"))
        for env_from in container.get("envFrom") or []:
            if (env_from.get("secretRef") or {}).get("name"):
                refs.append((env_from["secretRef"]["name"], f"containers[{cname}].envFrom"))
    return refs


def config_map_references(spec: ResourceSpec) -> list[tuple[str, str]]:
    """(config map name, field path) pairs referenced by a workload's pod template."""
    refs: list[tuple[str, str]] = []
    for i, volume in enumerate(spec.pod_spec.get("volumes") or []):
        if (volume.get("configMap") or {}).get("name"):
            refs.append((volume["configMap"]["name"], f"spec.template.spec.volumes[{i}].configMap"))
        for j, source in enumerate((volume.get("projected") or {}).get("sources") or []):
            if (source.get("configMap") or {}).get("name"):
                refs.append((source["configMap"]["name"], f"spec.template.spec.volumes[{i}].projected.sources[{j}]"))
    for container in spec.containers():
        cname = container.get("name", "?")
        for env in container.get("env") or []:
            ref = (env.get("valueFrom") or {}).get("configMapKeyRef")
            if ref and ref.get("name"):
                refs.append((ref["name"], f"containers[{cname}].env[{env.get('name')}]"))
        for env_from in container.get("envFrom") or []:
            if (env_from.get("configMapRef") or {}).get("name"):
                refs.append((env_from["configMapRef"]["name"], f"containers[{cname}].envFrom"))
    return refs


class WorkloadSecretRule(InferenceRule):
    """A Workload depends on every Secret and ConfigMap it references."""

    rule_id = "workload-secrets"
    display_name = "Workload after referenced Secrets and ConfigMaps"
    edge_type = EdgeType.SECRET_REFERENCE

    def infer(self, spec: ResourceSpec, index: ResourceIndex) -> Iterator[GraphEdge]:
        if not spec.is_workload:
            return
        seen: set[ResourceKey] = set()
        for name, field_path in secret_references(spec):
            target = ResourceKey(ResourceKind.SECRET.value, spec.namespace, name)
            if target in seen:
                continue
            seen.add(target)
            edge = self._edge(spec, target, field_path, index)
            if edge is not None:
                yield edge
        for name, field_path in config_map_references(spec):
            target = ResourceKey(ResourceKind.CONFIG_MAP.value, spec.namespace, name)
            if target in seen:
                continue
            seen.add(target)
            edge = self._edge(spec, target, field_path, index)
            if edge is not None:
                yield GraphEdge(edge.source, edge.target, EdgeType.CONFIG_REFERENCE, edge.source_field, self.rule_id)


def _env_hosts(name: str, value: str) -> list[str]:
    """Host names found in an env var, if it looks like an address."""
    hosts: list[str] = []
    name_is_address = name.upper().endswith(_HOST_ENV_SUFFIXES)
    for item in value.split(","):
        item = item.strip().lower()
        if not item:
            continue
        if "://" in item:
            host = urlparse(item).hostname
            if host:
                hosts.append(host)
        elif _HOST_PORT_RE.match(item):
            hosts.append(item.rsplit(":", 1)[0])
        elif name_is_address or ".svc" in item:
            hosts.append(item)
    return hosts


class UpstreamServiceRule(InferenceRule):
    """A Workload depends on the Services it connects to (e.g. WordPress -> MySQL)."""

    rule_id = "upstream-services"
    display_name = "Workload after upstream Services"
    edge_type = EdgeType.UPSTREAM_SERVICE

    def infer(self, spec: ResourceSpec, index: ResourceIndex) -> Iterator[GraphEdge]:
        if not spec.is_workload:
            return
        targets: dict[ResourceKey, str] = {}
        for ref in _split(spec.annotations.get(UPSTREAM_SERVICES_ANNOTATION, "")):
            target = _service_ref(ref, spec)
            targets.setdefault(target, f"metadata.annotations[{UPSTREAM_SERVICES_ANNOTATION}]")
        for container in spec.containers():
            for env in container.get("env") or []:
                value = env.get("value")
                if not isinstance(value, str):
                    continue
                for host in _env_hosts(str(env.get("name", "")), value):
                    target = service_key_for_host(host, spec.namespace)
                    if target is not None:
                        targets.setdefault(target, f"containers[{container.get('name', '?')}].env[{env.get('name')}]")
        yield from _service_edges(self, spec, targets, index)


class ProxyBackendRule(InferenceRule):
    """A proxy Workload depends on the Service of every backend it proxies to."""

    rule_id = "proxy-backends"
    display_name = "Proxy after backend Services"
    edge_type = EdgeType.PROXY_BACKEND

    def infer(self, spec: ResourceSpec, index: ResourceIndex) -> Iterator[GraphEdge]:
        if not spec.is_workload:
            return
        targets: dict[ResourceKey, str] = {}
        for ref in _split(spec.annotations.get(PROXY_BACKENDS_ANNOTATION, "")):
            targets.setdefault(_service_ref(ref, spec), f"metadata.annotations[{PROXY_BACKENDS_ANNOTATION}]")
        for cm_name, _ in config_map_references(spec):
            cm = index.get(ResourceKey(ResourceKind.CONFIG_MAP.value, spec.namespace, cm_name))
            if cm is None:
                continue
            for data_key, text in sorted((cm.payload.get("data") or {}).items()):
                for host in proxy_targets(str(text)):
                    target = service_key_for_host(host, spec.namespace)
                    if target is not None:
                        targets.setdefault(target, f"{cm.key}:data[{data_key}]")
        yield from _service_edges(self, spec, targets, index)


def proxy_targets(config_text: str) -> list[str]:
    """Hosts named by ``proxy_pass`` and ``upstream { server ... }`` directives."""
    hosts = _PROXY_PASS_RE.findall(config_text) + _UPSTREAM_SERVER_RE.findall(config_text)
    return [h.lower() for h in hosts]


class ServiceBackingRule(InferenceRule):
    """A Service depends on the Workloads its selector matches.

    This is what makes "depends on a Service" mean "depends on a Service
    with something behind it": dependents land in a later stage than the
    backing Workload.
    """

    rule_id = "service-backing"
    display_name = "Service after backing Workloads"
    edge_type = EdgeType.SERVICE_SELECTOR

    def infer(self, spec: ResourceSpec, index: ResourceIndex) -> Iterator[GraphEdge]:
        if spec.kind != ResourceKind.SERVICE or not spec.spec.get("selector"):
            return
        for workload in index.workloads(spec.namespace):
            if selector_matches(spec, workload):
                edge = self._edge(spec, workload.key, "spec.selector", index)
                if edge is not None:
                    yield edge


DEFAULT_RULES: tuple[InferenceRule, ...] = (
    ExplicitDependencyRule(),
    NamespaceRule(),
    ClaimVolumeRule(),
    WorkloadClaimRule(),
    WorkloadSecretRule(),
    UpstreamServiceRule(),
    ProxyBackendRule(),
    ServiceBackingRule(),
)


def default_rules(disabled: Iterable[str] = ()) -> list[InferenceRule]:
    """The default rule set minus any disabled rule ids."""
    disabled_ids = set(disabled)
    unknown = disabled_ids - {rule.rule_id for rule in DEFAULT_RULES}
    if unknown:
        raise ValueError(f"Unknown inference rule id(s): {sorted(unknown)}")
    return [rule for rule in DEFAULT_RULES if rule.rule_id not in disabled_ids]


def _split(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _service_ref(ref: str, spec: ResourceSpec) -> ResourceKey:
    """``name``, ``namespace/name`` or ``Service/...`` to a Service key."""
    if ref.count("/") == 1 and not ref.lower().startswith(("service/", "svc/")):
        namespace, name = ref.split("/")
        return ResourceKey(ResourceKind.SERVICE.value, namespace, name)
    if "/" in ref:
        try:
            return parse_resource_ref(ref, spec.namespace)
        except ValueError as exc:
            raise SchemaError(str(exc), spec.source) from exc
    return ResourceKey(ResourceKind.SERVICE.value, spec.namespace, ref)


def _service_edges(
    rule: InferenceRule,
    spec: ResourceSpec,
    targets: dict[ResourceKey, str],
    index: ResourceIndex,
) -> Iterator[GraphEdge]:
    for target, field_path in sorted(targets.items()):
        service = index.get(target)
        # A Service in front of this very workload is not an upstream.
        if service is not None and selector_matches(service, spec):
            continue
        edge = rule._edge(spec, target, field_path, index)
        if edge is not None:
            yield edge
