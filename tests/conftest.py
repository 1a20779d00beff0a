"""Pytest configuration and shared fixtures for training-operator tests."""

import copy
import itertools
from collections.abc import Callable
from typing import Any

import pytest
from kubernetes.client import (
    V1Container,
    V1ContainerState,
    V1ContainerStateTerminated,
    V1ContainerStatus,
    V1ObjectMeta,
    V1Pod,
    V1PodSpec,
    V1PodStatus,
    V1Service,
    V1ServiceSpec,
)

from training_operator.core.config import Settings
from training_operator.core.errors import ConflictError
from training_operator.models.common import API_GROUP, API_VERSION


def _matches(labels: dict[str, str] | None, selector: str) -> bool:
    labels = labels or {}
    for term in filter(None, selector.split(",")):
        key, _, value = term.partition("=")
        if labels.get(key) != value:
            return False
    return True


class FakeCluster:
    """In-memory stand-in for ClusterClient.

    Custom objects are stored as dicts with a resourceVersion that is checked
    on writes; pods and services are stored as kubernetes client models.
    Mutating calls are recorded in ``calls`` in the order they happen.
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str, str, str], dict[str, Any]] = {}
        self.pods: dict[tuple[str, str], V1Pod] = {}
        self.pod_bodies: dict[tuple[str, str], dict[str, Any]] = {}
        self.services: dict[tuple[str, str], V1Service] = {}
        self.service_bodies: dict[tuple[str, str], dict[str, Any]] = {}
        self.events: list[dict[str, Any]] = []
        self.calls: list[tuple[str, str]] = []
        self._versions = itertools.count(1)
        self._uids = itertools.count(1)

    def _bump(self, obj: dict[str, Any]) -> None:
        obj["metadata"]["resourceVersion"] = str(next(self._versions))

    def _check_version(self, stored: dict[str, Any], requested: str | None) -> None:
        if requested is not None and requested != stored["metadata"]["resourceVersion"]:
            raise ConflictError("the object has been modified", status=409)

    # Custom resources

    def add_custom_object(self, group: str, plural: str, body: dict[str, Any]) -> dict[str, Any]:
        """Store an object as if a user had created it."""
        obj = copy.deepcopy(body)
        metadata = obj.setdefault("metadata", {})
        metadata.setdefault("namespace", "default")
        metadata.setdefault("uid", f"uid-{next(self._uids)}")
        self._bump(obj)
        self.objects[(group, plural, metadata["namespace"], metadata["name"])] = obj
        return copy.deepcopy(obj)

    def list_custom_objects(
        self, group: str, version: str, plural: str, namespace: str = ""
    ) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(obj)
            for (g, p, ns, _), obj in self.objects.items()
            if g == group and p == plural and (not namespace or ns == namespace)
        ]

    def get_custom_object(
        self, group: str, version: str, plural: str, namespace: str, name: str
    ) -> dict[str, Any] | None:
        obj = self.objects.get((group, plural, namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def create_custom_object(
        self, group: str, version: str, plural: str, namespace: str, body: dict[str, Any]
    ) -> dict[str, Any] | None:
        self.calls.append(("create_custom_object", f"{plural}/{body['metadata']['name']}"))
        if (group, plural, namespace, body["metadata"]["name"]) in self.objects:
            return None
        return self.add_custom_object(group, plural, body)

    def replace_custom_object(
        self, group: str, version: str, plural: str, namespace: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        name = body["metadata"]["name"]
        self.calls.append(("replace_custom_object", f"{plural}/{name}"))
        stored = self.objects[(group, plural, namespace, name)]
        self._check_version(stored, body["metadata"].get("resourceVersion"))
        updated = copy.deepcopy(body)
        updated["metadata"] = {**stored["metadata"], **updated["metadata"]}
        self._bump(updated)
        self.objects[(group, plural, namespace, name)] = updated
        return copy.deepcopy(updated)

    def replace_custom_object_status(
        self, group: str, version: str, plural: str, namespace: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        name = body["metadata"]["name"]
        self.calls.append(("replace_custom_object_status", f"{plural}/{name}"))
        stored = self.objects[(group, plural, namespace, name)]
        self._check_version(stored, body["metadata"].get("resourceVersion"))
        stored["status"] = copy.deepcopy(body.get("status", {}))
        self._bump(stored)
        return copy.deepcopy(stored)

    def patch_custom_object(
        self,
        group: str,
        version: str,
        plural: str,
        namespace: str,
        name: str,
        patch: dict[str, Any],
    ) -> dict[str, Any]:
        self.calls.append(("patch_custom_object", f"{plural}/{name}"))
        key = (group, plural, namespace, name)
        stored = self.objects[key]
        metadata = dict(patch.get("metadata", {}))
        self._check_version(stored, metadata.pop("resourceVersion", None))
        stored["metadata"].update(metadata)
        self._bump(stored)
        if stored["metadata"].get("deletionTimestamp") and not stored["metadata"].get(
            "finalizers"
        ):
            del self.objects[key]
        return copy.deepcopy(stored)

    def delete_custom_object(
        self, group: str, version: str, plural: str, namespace: str, name: str
    ) -> bool:
        self.calls.append(("delete_custom_object", f"{plural}/{name}"))
        key = (group, plural, namespace, name)
        stored = self.objects.get(key)
        if stored is None:
            return False
        if stored["metadata"].get("finalizers"):
            stored["metadata"]["deletionTimestamp"] = "2026-01-01T00:00:00Z"
            self._bump(stored)
        else:
            del self.objects[key]
        return True

    # Pods

    def list_pods(self, namespace: str, label_selector: str) -> list[V1Pod]:
        return [
            pod
            for (ns, _), pod in self.pods.items()
            if ns == namespace and _matches(pod.metadata.labels, label_selector)
        ]

    def create_pod(self, namespace: str, body: dict[str, Any]) -> bool:
        name = body["metadata"]["name"]
        self.calls.append(("create_pod", name))
        if (namespace, name) in self.pods:
            return False
        spec = body.get("spec", {})
        self.pod_bodies[(namespace, name)] = copy.deepcopy(body)
        self.pods[(namespace, name)] = V1Pod(
            metadata=V1ObjectMeta(
                name=name,
                namespace=namespace,
                labels=dict(body["metadata"].get("labels") or {}),
                annotations=dict(body["metadata"].get("annotations") or {}),
            ),
            spec=V1PodSpec(
                containers=[V1Container(name=c["name"]) for c in spec.get("containers", [])],
                restart_policy=spec.get("restartPolicy"),
                scheduler_name=spec.get("schedulerName"),
            ),
            status=V1PodStatus(phase="Pending"),
        )
        return True

    def delete_pod(self, namespace: str, name: str) -> bool:
        self.calls.append(("delete_pod", name))
        if self.pods.pop((namespace, name), None) is None:
            return False
        self.pod_bodies.pop((namespace, name), None)
        return True

    # Services

    def list_services(self, namespace: str, label_selector: str) -> list[V1Service]:
        return [
            service
            for (ns, _), service in self.services.items()
            if ns == namespace and _matches(service.metadata.labels, label_selector)
        ]

    def create_service(self, namespace: str, body: dict[str, Any]) -> bool:
        name = body["metadata"]["name"]
        self.calls.append(("create_service", name))
        if (namespace, name) in self.services:
            return False
        self.service_bodies[(namespace, name)] = copy.deepcopy(body)
        self.services[(namespace, name)] = V1Service(
            metadata=V1ObjectMeta(
                name=name,
                namespace=namespace,
                labels=dict(body["metadata"].get("labels") or {}),
            ),
            spec=V1ServiceSpec(cluster_ip="None", selector=body["spec"].get("selector")),
        )
        return True

    def delete_service(self, namespace: str, name: str) -> bool:
        self.calls.append(("delete_service", name))
        if self.services.pop((namespace, name), None) is None:
            return False
        self.service_bodies.pop((namespace, name), None)
        return True

    # Events

    def create_event(self, namespace: str, body: dict[str, Any]) -> None:
        self.events.append(body)

    # Test helpers

    def set_pod_phase(
        self, name: str, phase: str, exit_code: int | None = None, namespace: str = "default"
    ) -> None:
        """Move a pod to a phase, optionally with a terminated container."""
        pod = self.pods[(namespace, name)]
        pod.status.phase = phase
        if exit_code is not None:
            pod.status.container_statuses = [
                V1ContainerStatus(
                    name=pod.spec.containers[0].name,
                    image="trainer:latest",
                    image_id="",
                    ready=False,
                    restart_count=0,
                    state=V1ContainerState(
                        terminated=V1ContainerStateTerminated(exit_code=exit_code)
                    ),
                )
            ]

    def set_all_pods_phase(self, phase: str, namespace: str = "default") -> None:
        for ns, name in list(self.pods):
            if ns == namespace:
                self.set_pod_phase(name, phase, namespace=namespace)

    def pod_names(self, namespace: str = "default") -> set[str]:
        return {name for ns, name in self.pods if ns == namespace}

    def service_names(self, namespace: str = "default") -> set[str]:
        return {name for ns, name in self.services if ns == namespace}

    def called(self, method: str) -> list[str]:
        return [target for name, target in self.calls if name == method]


def replica_template(container: str = "pytorch") -> dict[str, Any]:
    return {
        "spec": {
            "containers": [{"name": container, "image": "trainer:latest"}],
        }
    }


@pytest.fixture
def cluster() -> FakeCluster:
    """Create an empty in-memory cluster."""
    return FakeCluster()


@pytest.fixture
def settings() -> Settings:
    """Create test settings with fast controller timings."""
    return Settings(
        workers=2,
        resync_interval_seconds=1,
        requeue_base_seconds=0.01,
        requeue_max_seconds=0.5,
        otel_enabled=False,
    )


@pytest.fixture
def make_job(cluster: FakeCluster) -> Callable[..., dict[str, Any]]:
    """Factory storing a training job in the fake cluster.

    Replica specs are given as ``{replica_type: replicas}``; the remaining
    keyword arguments go into the run policy.
    """

    def _make_job(
        name: str = "mnist",
        kind: str = "PyTorchJob",
        plural: str = "pytorchjobs",
        specs_key: str = "pytorchReplicaSpecs",
        replicas: dict[str, int] | None = None,
        container: str = "pytorch",
        restart_policy: str | None = None,
        status: dict[str, Any] | None = None,
        **run_policy: Any,
    ) -> dict[str, Any]:
        replica_specs: dict[str, Any] = {}
        for rtype, count in (replicas or {"Master": 1, "Worker": 2}).items():
            spec: dict[str, Any] = {"replicas": count, "template": replica_template(container)}
            if restart_policy is not None:
                spec["restartPolicy"] = restart_policy
            replica_specs[rtype] = spec
        body: dict[str, Any] = {
            "apiVersion": f"{API_GROUP}/{API_VERSION}",
            "kind": kind,
            "metadata": {"name": name, "namespace": "default"},
            "spec": {specs_key: replica_specs, "runPolicy": run_policy},
        }
        if status is not None:
            body["status"] = status
        return cluster.add_custom_object(API_GROUP, plural, body)

    return _make_job
