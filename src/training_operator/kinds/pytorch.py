"""PyTorchJob adapter (all-reduce style PyTorch training)."""

from __future__ import annotations

import logging
from pathlib import Path
from string import Template
from typing import TYPE_CHECKING, Any

import yaml

from training_operator.kinds.base import JobKindAdapter, replica_host, set_env
from training_operator.models.common import RestartPolicy
from training_operator.models.job import ReplicaSpec, TrainingJob

if TYPE_CHECKING:
    from training_operator.core.config import Settings
    from training_operator.services.cluster import ClusterClient

logger = logging.getLogger(__name__)

# Placeholders: ${init_container_image} and ${master_addr}
DEFAULT_INIT_CONTAINER_TEMPLATE = """\
- name: init-pytorch
  image: ${init_container_image}
  imagePullPolicy: IfNotPresent
  resources:
    limits:
      cpu: 100m
      memory: 20Mi
    requests:
      cpu: 50m
      memory: 10Mi
  command: ['sh', '-c', 'until nslookup ${master_addr}; do echo waiting for master; sleep 2; done;']
"""


def render_init_containers(template: str, image: str, master_addr: str) -> list[dict[str, Any]]:
    """Render an init container template into container bodies.

    Raises:
        ValueError: If the rendered template is not a list of mappings
    """
    rendered = Template(template).safe_substitute(
        init_container_image=image, master_addr=master_addr
    )
    containers = yaml.safe_load(rendered) or []
    if not isinstance(containers, list) or not all(isinstance(c, dict) for c in containers):
        raise ValueError("init container template must be a list of containers")
    return containers


def load_init_container_template(path: str) -> str:
    """Read the init container template, falling back to the built-in one."""
    if not path:
        return DEFAULT_INIT_CONTAINER_TEMPLATE
    try:
        template = Path(path).read_text()
        render_init_containers(template, "image", "master")
    except (OSError, yaml.YAMLError, ValueError) as e:
        logger.warning("Unusable PyTorch init container template %s, using default: %s", path, e)
        return DEFAULT_INIT_CONTAINER_TEMPLATE
    return template


class PyTorchJobAdapter(JobKindAdapter):
    """Adapter for ``PyTorchJob`` resources.

    The master is rank 0; workers take ranks 1..N in index order. Worker pods
    of a job with a master get an init container that blocks until the
    master's service name resolves.
    """

    kind = "PyTorchJob"
    plural = "pytorchjobs"
    replica_specs_key = "pytorchReplicaSpecs"
    replica_types = ("Master", "Worker")

    default_container_name = "pytorch"
    default_port_name = "pytorchjob-port"
    default_port = 23456
    default_restart_policy = RestartPolicy.ON_FAILURE

    def __init__(self, cluster: ClusterClient, settings: Settings | None = None) -> None:
        super().__init__(cluster, settings)
        self.init_container_template = load_init_container_template(
            self.settings.pytorch_init_container_template_file
        )

    def completion_replica_types(self, specs: dict[str, ReplicaSpec]) -> list[str]:
        return ["Master"] if "Master" in specs else list(specs)

    def set_cluster_spec(
        self, job: TrainingJob, pod: dict[str, Any], replica_type: str, index: int
    ) -> None:
        specs = self.extract_spec(job)
        world_size = sum(spec.replicas or 0 for spec in specs.values())
        has_master = "Master" in specs
        master_type = "Master" if has_master else replica_type
        master_addr = replica_host(job, master_type, 0)

        if replica_type == "Master":
            rank = index
        else:
            rank = index + 1 if has_master else index

        set_env(
            pod,
            {
                "MASTER_ADDR": master_addr,
                "MASTER_PORT": str(self.port(job, master_type)),
                "WORLD_SIZE": str(world_size),
                "RANK": str(rank),
                "PYTHONUNBUFFERED": "0",
            },
        )
        if has_master and replica_type != "Master":
            self.add_init_containers(pod, master_addr)

    def add_init_containers(self, pod: dict[str, Any], master_addr: str) -> None:
        """Prepend the master-wait init containers; template names already used win."""
        containers = render_init_containers(
            self.init_container_template,
            self.settings.pytorch_init_container_image,
            master_addr,
        )
        pod_spec = pod.setdefault("spec", {})
        existing = pod_spec.get("initContainers") or []
        declared = {c.get("name") for c in existing}
        pod_spec["initContainers"] = [
            c for c in containers if c.get("name") not in declared
        ] + existing
