"""ClusterClient backed by kubernetes-asyncio typed APIs."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp
from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
from kubernetes_asyncio import config as k8s_config  # type: ignore[import-untyped]
from kubernetes_asyncio.client.rest import ApiException  # type: ignore[import-untyped]

from kubestage.cluster.base import ClusterClient
from kubestage.errors import (
    AlreadyExistsError,
    ClusterUnreachableError,
    ConflictError,
    FatalClusterError,
    KubeStageError,
    ResourceRejectedError,
    TransientQueryError,
)
from kubestage.models.config import ClusterConfig
from kubestage.models.resources import ResourceKey, ResourceSpec
from kubestage.observability.logging import get_logger

_log = get_logger("cluster")

# kind -> (api group handle, method suffix, namespaced)
_KIND_API: dict[str, tuple[str, str, bool]] = {
    "Namespace": ("core", "namespace", False),
    "PersistentVolume": ("core", "persistent_volume", False),
    "PersistentVolumeClaim": ("core", "persistent_volume_claim", True),
    "Secret": ("core", "secret", True),
    "ConfigMap": ("core", "config_map", True),
    "Service": ("core", "service", True),
    "Deployment": ("apps", "deployment", True),
    "StatefulSet": ("apps", "stateful_set", True),
}


class KubernetesClusterClient(ClusterClient):
    """Talks to a real API server through kubernetes-asyncio.

    Use :meth:`connect` to load credentials; the constructor takes an
    already configured ``ApiClient`` so tests can inject one.
    """

    def __init__(self, api_client: Any) -> None:
        self._api_client = api_client
        self._apis: dict[str, Any] = {
            "core": k8s_client.CoreV1Api(api_client),
            "apps": k8s_client.AppsV1Api(api_client),
        }
        self._storage = k8s_client.StorageV1Api(api_client)
        self._closed = False

    @classmethod
    async def connect(cls, config: ClusterConfig) -> KubernetesClusterClient:
        """Load in-cluster config or kubeconfig and open an ApiClient.

        Raises:
            FatalClusterError: if no usable credentials can be loaded.
        """
        try:
            if config.kubeconfig or config.context:
                await k8s_config.load_kube_config(
                    config_file=config.kubeconfig or None,
                    context=config.context or None,
                )
                _log.info("k8s client configured from kubeconfig", context=config.context or "<current>")
            else:
                try:
                    # load_incluster_config() is synchronous in kubernetes-asyncio
                    k8s_config.load_incluster_config()
                    _log.info("k8s client configured from in-cluster service account")
                except k8s_config.ConfigException:
                    if config.in_cluster:
                        raise
                    await k8s_config.load_kube_config()
                    _log.info("k8s client configured from kubeconfig")
        except (k8s_config.ConfigException, OSError) as exc:
            raise FatalClusterError(f"cannot load cluster credentials: {exc}") from exc
        return cls(k8s_client.ApiClient())

    # ------------------------------------------------------------------
    # ClusterClient
    # ------------------------------------------------------------------

    async def get(self, key: ResourceKey) -> dict[str, Any] | None:
        api, suffix, namespaced = self._resolve(key.kind)
        if namespaced:
            fn = getattr(api, f"read_namespaced_{suffix}")
            return await self._call("get", key, fn, name=key.name, namespace=key.namespace, missing_ok=True)
        fn = getattr(api, f"read_{suffix}")
        return await self._call("get", key, fn, name=key.name, missing_ok=True)

    async def create(self, spec: ResourceSpec) -> dict[str, Any]:
        api, suffix, namespaced = self._resolve(spec.kind)
        body = _submission_body(spec)
        if namespaced:
            fn = getattr(api, f"create_namespaced_{suffix}")
            result = await self._call("create", spec.key, fn, namespace=spec.namespace, body=body)
        else:
            fn = getattr(api, f"create_{suffix}")
            result = await self._call("create", spec.key, fn, body=body)
        return result or {}

    async def patch(self, spec: ResourceSpec) -> dict[str, Any]:
        api, suffix, namespaced = self._resolve(spec.kind)
        body = _submission_body(spec)
        if namespaced:
            fn = getattr(api, f"patch_namespaced_{suffix}")
            result = await self._call("patch", spec.key, fn, name=spec.name, namespace=spec.namespace, body=body)
        else:
            fn = getattr(api, f"patch_{suffix}")
            result = await self._call("patch", spec.key, fn, name=spec.name, body=body)
        return result or {}

    async def get_endpoints(self, namespace: str, name: str) -> dict[str, Any] | None:
        key = ResourceKey("Endpoints", namespace, name)
        return await self._call(
            "get",
            key,
            self._apis["core"].read_namespaced_endpoints,
            name=name,
            namespace=namespace,
            missing_ok=True,
        )

    async def list_pods(self, namespace: str, selector: dict[str, str]) -> list[dict[str, Any]]:
        key = ResourceKey("Pod", namespace, "*")
        label_selector = ",".join(f"{k}={v}" for k, v in sorted(selector.items()))
        result = await self._call(
            "list",
            key,
            self._apis["core"].list_namespaced_pod,
            namespace=namespace,
            label_selector=label_selector,
        )
        return list((result or {}).get("items") or [])

    async def get_storage_class(self, name: str) -> dict[str, Any] | None:
        key = ResourceKey("StorageClass", "", name)
        return await self._call("get", key, self._storage.read_storage_class, name=name, missing_ok=True)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._api_client.close()
        except Exception as exc:
            _log.debug("k8s client close raised (non-fatal)", error=str(exc))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve(self, kind: str) -> tuple[Any, str, bool]:
        try:
            group, suffix, namespaced = _KIND_API[kind]
        except KeyError as exc:
            raise ResourceRejectedError(f"unsupported kind {kind!r}") from exc
        return self._apis[group], suffix, namespaced

    async def _call(
        self,
        operation: str,
        key: ResourceKey,
        fn: Callable[..., Awaitable[Any]],
        *,
        missing_ok: bool = False,
        **kwargs: Any,
    ) -> dict[str, Any] | None:
        try:
            result = await fn(**kwargs)
        except ApiException as exc:
            if missing_ok and exc.status == 404:
                return None
            raise translate_api_exception(exc, operation, key) from exc
        except aiohttp.ClientConnectionError as exc:
            raise ClusterUnreachableError(f"{operation} {key}: cannot reach API server: {exc}") from exc
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise TransientQueryError(f"{operation} {key}: {str(exc) or type(exc).__name__}") from exc
        serialized = self._api_client.sanitize_for_serialization(result)
        return serialized if isinstance(serialized, dict) else None


def _submission_body(spec: ResourceSpec) -> dict[str, Any]:
    return {k: v for k, v in spec.payload.items() if k != "status"}


def api_error_message(exc: ApiException) -> str:
    """The API server's Status.message, falling back to the HTTP reason."""
    body = getattr(exc, "body", None)
    if body:
        try:
            message = json.loads(body).get("message")
        except (ValueError, AttributeError):
            message = None
        if message:
            return str(message)
    return str(exc.reason or "unknown error")


def translate_api_exception(exc: ApiException, operation: str, key: ResourceKey) -> KubeStageError:
    """Map an ApiException onto the KubeStage error taxonomy."""
    status = exc.status or 0
    message = f"{operation} {key}: {status} {api_error_message(exc)}"
    if status in (401, 403):
        return FatalClusterError(message, status=status)
    if status == 409:
        if operation == "create":
            return AlreadyExistsError(message)
        return ConflictError(key, message)
    if status == 429 or status >= 500:
        return TransientQueryError(message, status=status)
    return ResourceRejectedError(message, status=status)
