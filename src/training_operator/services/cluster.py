"""Kubernetes API access for training jobs and their owned resources."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from training_operator.core.errors import api_error, is_already_exists, is_not_found

if TYPE_CHECKING:
    from kubernetes.client import CoreV1Api, CustomObjectsApi

logger = logging.getLogger(__name__)

# Per-call timeout (seconds) so in-flight calls return promptly at shutdown
DEFAULT_REQUEST_TIMEOUT = 30


class ClusterClient:
    """Thin wrapper over the Kubernetes API used by every controller component.

    All calls are blocking. ApiExceptions are translated into the operator's
    error taxonomy; "already exists" on create and "not found" on delete are
    reported through the return value instead of raising.

    Example:
        ```python
        cluster = ClusterClient()
        pods = cluster.list_pods("default", "training.kubeflow.org/job-name=mnist")
        cluster.delete_pod("default", pods[0].metadata.name)
        ```
    """

    def __init__(self, request_timeout: int = DEFAULT_REQUEST_TIMEOUT) -> None:
        """Initialize the cluster client with lazy-loaded API clients."""
        self.request_timeout = request_timeout
        self._core_api: CoreV1Api | None = None
        self._custom_api: CustomObjectsApi | None = None
        self._initialized = False

    def _ensure_initialized(self) -> None:
        """Initialize Kubernetes clients if not already done."""
        if self._initialized:
            return

        try:
            # Try in-cluster config first (when running in K8s)
            config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes configuration")
        except config.ConfigException:
            # Fall back to kubeconfig (for local development)
            try:
                config.load_kube_config()
                logger.info("Loaded kubeconfig Kubernetes configuration")
            except config.ConfigException as e:
                logger.warning("Failed to load Kubernetes configuration: %s", e)
                raise RuntimeError("No Kubernetes configuration available") from e

        self._core_api = client.CoreV1Api()
        self._custom_api = client.CustomObjectsApi()
        self._initialized = True

    @property
    def core_api(self) -> CoreV1Api:
        """Get the CoreV1 API client."""
        self._ensure_initialized()
        assert self._core_api is not None
        return self._core_api

    @property
    def custom_api(self) -> CustomObjectsApi:
        """Get the CustomObjects API client."""
        self._ensure_initialized()
        assert self._custom_api is not None
        return self._custom_api

    # Custom resources (training jobs and scheduling groups)

    def list_custom_objects(
        self, group: str, version: str, plural: str, namespace: str = ""
    ) -> list[dict[str, Any]]:
        """List custom objects in one namespace, or cluster-wide if namespace is empty."""
        try:
            if namespace:
                result = self.custom_api.list_namespaced_custom_object(
                    group, version, namespace, plural, _request_timeout=self.request_timeout
                )
            else:
                result = self.custom_api.list_cluster_custom_object(
                    group, version, plural, _request_timeout=self.request_timeout
                )
        except ApiException as e:
            raise api_error(e, f"list {plural}") from e
        return result.get("items", [])

    def get_custom_object(
        self, group: str, version: str, plural: str, namespace: str, name: str
    ) -> dict[str, Any] | None:
        """Get a custom object, or None if it does not exist."""
        try:
            return self.custom_api.get_namespaced_custom_object(
                group, version, namespace, plural, name, _request_timeout=self.request_timeout
            )
        except ApiException as e:
            if is_not_found(e):
                return None
            raise api_error(e, f"get {plural} {namespace}/{name}") from e

    def create_custom_object(
        self, group: str, version: str, plural: str, namespace: str, body: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Create a custom object. Returns None if it already exists."""
        name = body["metadata"]["name"]
        try:
            return self.custom_api.create_namespaced_custom_object(
                group, version, namespace, plural, body, _request_timeout=self.request_timeout
            )
        except ApiException as e:
            if is_already_exists(e):
                logger.debug("%s %s/%s already exists", plural, namespace, name)
                return None
            raise api_error(e, f"create {plural} {namespace}/{name}") from e

    def replace_custom_object(
        self, group: str, version: str, plural: str, namespace: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        """Replace a custom object; the body's resourceVersion guards the write."""
        name = body["metadata"]["name"]
        try:
            return self.custom_api.replace_namespaced_custom_object(
                group, version, namespace, plural, name, body,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            raise api_error(e, f"replace {plural} {namespace}/{name}") from e

    def replace_custom_object_status(
        self, group: str, version: str, plural: str, namespace: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        """Replace the status subresource; the body's resourceVersion guards the write."""
        name = body["metadata"]["name"]
        try:
            return self.custom_api.replace_namespaced_custom_object_status(
                group, version, namespace, plural, name, body,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            raise api_error(e, f"update status of {plural} {namespace}/{name}") from e

    def patch_custom_object(
        self,
        group: str,
        version: str,
        plural: str,
        namespace: str,
        name: str,
        patch: dict[str, Any],
    ) -> dict[str, Any]:
        """Merge-patch a custom object.

        Include metadata.resourceVersion in the patch to make it conditional.
        """
        try:
            return self.custom_api.patch_namespaced_custom_object(
                group, version, namespace, plural, name, patch,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            raise api_error(e, f"patch {plural} {namespace}/{name}") from e

    def delete_custom_object(
        self, group: str, version: str, plural: str, namespace: str, name: str
    ) -> bool:
        """Delete a custom object. Returns False if it was already gone."""
        try:
            self.custom_api.delete_namespaced_custom_object(
                group, version, namespace, plural, name,
                body=client.V1DeleteOptions(propagation_policy="Background"),
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if is_not_found(e):
                logger.debug("%s %s/%s not found, already deleted?", plural, namespace, name)
                return False
            raise api_error(e, f"delete {plural} {namespace}/{name}") from e
        logger.info("Deleted %s %s/%s", plural, namespace, name)
        return True

    # Pods

    def list_pods(self, namespace: str, label_selector: str) -> list[client.V1Pod]:
        try:
            pods = self.core_api.list_namespaced_pod(
                namespace=namespace,
                label_selector=label_selector,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            raise api_error(e, f"list pods in {namespace}") from e
        return list(pods.items)

    def create_pod(self, namespace: str, body: dict[str, Any]) -> bool:
        """Create a pod. Returns False if it already exists."""
        name = body["metadata"]["name"]
        try:
            self.core_api.create_namespaced_pod(
                namespace=namespace, body=body, _request_timeout=self.request_timeout
            )
        except ApiException as e:
            if is_already_exists(e):
                logger.debug("Pod %s/%s already exists", namespace, name)
                return False
            raise api_error(e, f"create pod {namespace}/{name}") from e
        logger.info("Created pod %s/%s", namespace, name)
        return True

    def delete_pod(self, namespace: str, name: str) -> bool:
        """Delete a pod. Returns False if it was already gone."""
        try:
            self.core_api.delete_namespaced_pod(
                name=name, namespace=namespace, _request_timeout=self.request_timeout
            )
        except ApiException as e:
            if is_not_found(e):
                logger.debug("Pod %s/%s not found, already deleted?", namespace, name)
                return False
            raise api_error(e, f"delete pod {namespace}/{name}") from e
        logger.info("Deleted pod %s/%s", namespace, name)
        return True

    # Services

    def list_services(self, namespace: str, label_selector: str) -> list[client.V1Service]:
        try:
            services = self.core_api.list_namespaced_service(
                namespace=namespace,
                label_selector=label_selector,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            raise api_error(e, f"list services in {namespace}") from e
        return list(services.items)

    def create_service(self, namespace: str, body: dict[str, Any]) -> bool:
        """Create a service. Returns False if it already exists."""
        name = body["metadata"]["name"]
        try:
            self.core_api.create_namespaced_service(
                namespace=namespace, body=body, _request_timeout=self.request_timeout
            )
        except ApiException as e:
            if is_already_exists(e):
                logger.debug("Service %s/%s already exists", namespace, name)
                return False
            raise api_error(e, f"create service {namespace}/{name}") from e
        logger.info("Created service %s/%s", namespace, name)
        return True

    def delete_service(self, namespace: str, name: str) -> bool:
        """Delete a service. Returns False if it was already gone."""
        try:
            self.core_api.delete_namespaced_service(
                name=name, namespace=namespace, _request_timeout=self.request_timeout
            )
        except ApiException as e:
            if is_not_found(e):
                logger.debug("Service %s/%s not found, already deleted?", namespace, name)
                return False
            raise api_error(e, f"delete service {namespace}/{name}") from e
        logger.info("Deleted service %s/%s", namespace, name)
        return True

    # Events

    def create_event(self, namespace: str, body: dict[str, Any]) -> None:
        try:
            self.core_api.create_namespaced_event(
                namespace=namespace, body=body, _request_timeout=self.request_timeout
            )
        except ApiException as e:
            raise api_error(e, f"create event in {namespace}") from e


# Global singleton instance
_cluster_client: ClusterClient | None = None


def get_cluster_client() -> ClusterClient:
    """Get the global ClusterClient instance."""
    global _cluster_client
    if _cluster_client is None:
        _cluster_client = ClusterClient()
    return _cluster_client
