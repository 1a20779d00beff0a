"""Wiring of enabled job kinds to their reconcilers and controllers."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from training_operator.core.config import Settings, get_settings
from training_operator.core.errors import UnsupportedKindError
from training_operator.kinds import SUPPORTED_SCHEMES, JobKindAdapter
from training_operator.services.cluster import ClusterClient, get_cluster_client
from training_operator.services.controller import JobController
from training_operator.services.events import EventRecorder
from training_operator.services.gang import GangScheduler, VolcanoGangScheduler
from training_operator.services.reconciler import JobReconciler

logger = logging.getLogger(__name__)


def resolve_schemes(
    requested: Iterable[str], registry: Mapping[str, type[JobKindAdapter]]
) -> list[str]:
    """Normalize requested scheme names against a registry.

    Names are case insensitive and de-duplicated in request order; an empty
    request selects every registered scheme.

    Raises:
        UnsupportedKindError: If a requested scheme is not registered
    """
    resolved: list[str] = []
    for name in requested:
        scheme = name.strip().lower()
        if not scheme:
            continue
        if scheme not in registry:
            raise UnsupportedKindError(name, list(registry))
        if scheme not in resolved:
            resolved.append(scheme)
    return resolved or list(registry)


class SchemeDispatcher:
    """Builds one reconciler and controller per enabled job kind.

    The registry of available kinds is passed in explicitly, so independent
    instances can serve disjoint kind sets.

    Example:
        ```python
        dispatcher = SchemeDispatcher(
            enabled=["tfjob", "PyTorchJob"],
            gang_scheduling=True,
        )
        await dispatcher.start()
        ```
    """

    def __init__(
        self,
        cluster: ClusterClient | None = None,
        settings: Settings | None = None,
        registry: Mapping[str, type[JobKindAdapter]] | None = None,
        enabled: Iterable[str] | None = None,
        gang_scheduling: bool | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            cluster: Cluster client shared by all kinds (uses global if not provided)
            settings: Operator settings (uses default if not provided)
            registry: Available kinds keyed by scheme name (defaults to all compiled-in kinds)
            enabled: Schemes to enable; settings.enabled_schemes if None, all if empty
            gang_scheduling: Enable gang scheduling; settings value if None

        Raises:
            UnsupportedKindError: If an enabled scheme is not in the registry
        """
        self.settings = settings or get_settings()
        self.cluster = cluster or get_cluster_client()
        self.registry = dict(registry if registry is not None else SUPPORTED_SCHEMES)
        requested = self.settings.enabled_schemes if enabled is None else list(enabled)
        self.enabled_schemes = resolve_schemes(requested, self.registry)
        self.gang_scheduling = (
            self.settings.enable_gang_scheduling if gang_scheduling is None else gang_scheduling
        )

        self.reconcilers: dict[str, JobReconciler] = {}
        self.controllers: dict[str, JobController] = {}
        for scheme in self.enabled_schemes:
            self._setup(scheme)

    def _setup(self, scheme: str) -> None:
        adapter = self.registry[scheme](self.cluster, self.settings)
        recorder = EventRecorder(self.cluster)
        gang: GangScheduler | None = None
        if self.gang_scheduling:
            gang = VolcanoGangScheduler(self.cluster, self.settings.gang_scheduler_name)

        reconciler = JobReconciler(adapter, self.cluster, recorder=recorder, gang_scheduler=gang)
        self.reconcilers[scheme] = reconciler
        self.controllers[scheme] = JobController(reconciler, self.cluster, self.settings)
        logger.info(
            "Enabled %s controller (gang scheduling %s)",
            adapter.kind,
            "on" if gang is not None else "off",
        )

    @property
    def is_running(self) -> bool:
        return bool(self.controllers) and all(c.is_running for c in self.controllers.values())

    async def start(self) -> None:
        for controller in self.controllers.values():
            await controller.start()

    async def stop(self) -> None:
        for controller in self.controllers.values():
            await controller.stop()
