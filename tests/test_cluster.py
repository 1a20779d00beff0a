"""Tests for ClusterClient."""

from unittest.mock import MagicMock

import pytest
from kubernetes import config
from kubernetes.client.exceptions import ApiException

from training_operator.core.errors import ConflictError, InvalidSpecError, TransientError
from training_operator.services.cluster import DEFAULT_REQUEST_TIMEOUT, ClusterClient


@pytest.fixture
def mock_core_api():
    """Create a mock CoreV1Api."""
    return MagicMock()


@pytest.fixture
def mock_custom_api():
    """Create a mock CustomObjectsApi."""
    return MagicMock()


@pytest.fixture
def cluster_client(mock_core_api, mock_custom_api):
    """Create a ClusterClient with mocked clients."""
    client = ClusterClient()
    client._core_api = mock_core_api
    client._custom_api = mock_custom_api
    client._initialized = True
    return client


def api_exception(status: int, reason: str = "") -> ApiException:
    e = ApiException(status=status, reason=reason)
    e.body = f'{{"reason": "{reason}"}}'
    return e


POD = {"metadata": {"name": "mnist-worker-0"}, "spec": {"containers": []}}
JOB = {"metadata": {"name": "mnist", "resourceVersion": "3"}}


class TestCustomObjects:
    """Tests for custom resource access."""

    def test_list_all_namespaces(self, cluster_client: ClusterClient, mock_custom_api):
        """Test that an empty namespace lists cluster-wide."""
        mock_custom_api.list_cluster_custom_object.return_value = {"items": [JOB]}

        items = cluster_client.list_custom_objects("kubeflow.org", "v1", "tfjobs")

        assert items == [JOB]
        mock_custom_api.list_cluster_custom_object.assert_called_once_with(
            "kubeflow.org", "v1", "tfjobs", _request_timeout=DEFAULT_REQUEST_TIMEOUT
        )

    def test_list_one_namespace(self, cluster_client: ClusterClient, mock_custom_api):
        """Test that a namespace restricts the list."""
        mock_custom_api.list_namespaced_custom_object.return_value = {"items": []}

        assert cluster_client.list_custom_objects("kubeflow.org", "v1", "tfjobs", "ml") == []
        mock_custom_api.list_cluster_custom_object.assert_not_called()

    def test_get_not_found(self, cluster_client: ClusterClient, mock_custom_api):
        """Test that a missing object is reported as None."""
        mock_custom_api.get_namespaced_custom_object.side_effect = api_exception(404, "NotFound")

        assert cluster_client.get_custom_object("g", "v1", "p", "default", "x") is None

    def test_create_already_exists(self, cluster_client: ClusterClient, mock_custom_api):
        """Test that creating an existing object returns None."""
        mock_custom_api.create_namespaced_custom_object.side_effect = api_exception(
            409, "AlreadyExists"
        )

        assert cluster_client.create_custom_object("g", "v1", "p", "default", JOB) is None

    def test_status_conflict(self, cluster_client: ClusterClient, mock_custom_api):
        """Test that a stale status write raises ConflictError."""
        mock_custom_api.replace_namespaced_custom_object_status.side_effect = api_exception(
            409, "Conflict"
        )

        with pytest.raises(ConflictError):
            cluster_client.replace_custom_object_status("g", "v1", "p", "default", JOB)

    def test_rejected_object(self, cluster_client: ClusterClient, mock_custom_api):
        """Test that a rejected object raises InvalidSpecError."""
        mock_custom_api.patch_namespaced_custom_object.side_effect = api_exception(
            422, "Invalid"
        )

        with pytest.raises(InvalidSpecError):
            cluster_client.patch_custom_object("g", "v1", "p", "default", "mnist", {})

    def test_delete_not_found(self, cluster_client: ClusterClient, mock_custom_api):
        """Test that deleting a missing object is not an error."""
        mock_custom_api.delete_namespaced_custom_object.side_effect = api_exception(404)

        assert cluster_client.delete_custom_object("g", "v1", "p", "default", "x") is False


class TestPods:
    """Tests for pod access."""

    def test_create_pod(self, cluster_client: ClusterClient, mock_core_api):
        """Test that pods are created in the given namespace."""
        assert cluster_client.create_pod("ml", POD) is True
        mock_core_api.create_namespaced_pod.assert_called_once_with(
            namespace="ml", body=POD, _request_timeout=DEFAULT_REQUEST_TIMEOUT
        )

    def test_create_pod_exists(self, cluster_client: ClusterClient, mock_core_api):
        """Test that an existing pod is not an error."""
        mock_core_api.create_namespaced_pod.side_effect = api_exception(409, "AlreadyExists")

        assert cluster_client.create_pod("ml", POD) is False

    def test_create_pod_server_error(self, cluster_client: ClusterClient, mock_core_api):
        """Test that server errors are transient."""
        mock_core_api.create_namespaced_pod.side_effect = api_exception(500, "InternalError")

        with pytest.raises(TransientError) as exc_info:
            cluster_client.create_pod("ml", POD)
        assert exc_info.value.status == 500

    def test_delete_pod_not_found(self, cluster_client: ClusterClient, mock_core_api):
        """Test that deleting a missing pod returns False."""
        mock_core_api.delete_namespaced_pod.side_effect = api_exception(404)

        assert cluster_client.delete_pod("ml", "gone") is False

    def test_list_pods(self, cluster_client: ClusterClient, mock_core_api):
        """Test that pods are listed by label selector."""
        mock_core_api.list_namespaced_pod.return_value = MagicMock(items=["p1", "p2"])

        assert cluster_client.list_pods("ml", "a=b") == ["p1", "p2"]
        assert mock_core_api.list_namespaced_pod.call_args.kwargs["label_selector"] == "a=b"


class TestInitialization:
    """Tests for lazy client initialization."""

    def test_no_configuration(self, monkeypatch):
        """Test that a missing kubeconfig raises RuntimeError on first use."""

        def fail():
            raise config.ConfigException("no config")

        monkeypatch.setattr(config, "load_incluster_config", fail)
        monkeypatch.setattr(config, "load_kube_config", fail)

        with pytest.raises(RuntimeError):
            ClusterClient().core_api
