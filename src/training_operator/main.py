"""Operator entry point: probe server and job controllers."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import click
import uvicorn
from fastapi import FastAPI

from training_operator import __version__
from training_operator.core.config import Settings, get_settings
from training_operator.core.errors import UnsupportedKindError
from training_operator.core.telemetry import setup_telemetry
from training_operator.kinds import SUPPORTED_SCHEMES
from training_operator.routes import controller_router, health_router
from training_operator.services.dispatcher import SchemeDispatcher

logger = logging.getLogger(__name__)


def create_app(dispatcher: SchemeDispatcher, settings: Settings | None = None) -> FastAPI:
    """Create the probe server that also runs the dispatcher's controllers.

    Args:
        dispatcher: Dispatcher whose controllers run for the lifetime of the app
        settings: Operator settings (uses default if not provided)
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "Starting %s in %s mode with kinds: %s",
            settings.app_name,
            settings.environment,
            ", ".join(dispatcher.enabled_schemes),
        )
        await dispatcher.start()

        yield

        logger.info("Shutting down...")
        await dispatcher.stop()

    app = FastAPI(
        title=settings.app_name,
        description="Kubernetes operator for distributed training jobs",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.dispatcher = dispatcher
    app.dependency_overrides[get_settings] = lambda: settings

    setup_telemetry(app, settings)

    app.include_router(health_router)
    app.include_router(controller_router)

    return app


def parse_bind_address(address: str) -> tuple[str, int]:
    """Split a ``host:port`` bind address; an empty host binds all interfaces."""
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise click.BadParameter(f"expected host:port, got '{address}'")
    return host or "0.0.0.0", int(port)


@click.command()
@click.option(
    "--enable-scheme",
    "schemes",
    multiple=True,
    help=(
        "Enable a job kind (repeatable, case insensitive). All kinds are enabled "
        f"when omitted. Supported: {', '.join(sorted(SUPPORTED_SCHEMES))}."
    ),
)
@click.option(
    "--enable-gang-scheduling/--disable-gang-scheduling",
    default=None,
    help="Create PodGroups so each job's pods are scheduled together.",
)
@click.option("--namespace", default=None, help="Watch one namespace instead of all.")
@click.option("--workers", type=click.IntRange(min=1), default=None, help="Reconciles per kind.")
@click.option(
    "--resync-seconds",
    type=click.IntRange(min=1),
    default=None,
    help="Interval between full relists of jobs.",
)
@click.option(
    "--health-probe-bind-address",
    default=None,
    help="Address the health check endpoints bind to, e.g. ':8081'.",
)
@click.option(
    "--pytorch-init-container-image",
    default=None,
    help="Image of the init container that makes PyTorch workers wait for the master.",
)
@click.option(
    "--pytorch-init-container-template-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="YAML list of init containers for PyTorch workers.",
)
@click.option("--log-level", default=None, help="Logging level.")
@click.version_option(__version__, prog_name="training-operator")
def main(
    schemes: tuple[str, ...],
    enable_gang_scheduling: bool | None,
    namespace: str | None,
    workers: int | None,
    resync_seconds: int | None,
    health_probe_bind_address: str | None,
    pytorch_init_container_image: str | None,
    pytorch_init_container_template_file: str | None,
    log_level: str | None,
) -> None:
    """Run the training operator."""
    settings = get_settings()
    overrides: dict[str, object] = {}
    if schemes:
        overrides["enabled_schemes"] = list(schemes)
    if enable_gang_scheduling is not None:
        overrides["enable_gang_scheduling"] = enable_gang_scheduling
    if namespace is not None:
        overrides["namespace"] = namespace
    if workers is not None:
        overrides["workers"] = workers
    if resync_seconds is not None:
        overrides["resync_interval_seconds"] = resync_seconds
    if pytorch_init_container_image is not None:
        overrides["pytorch_init_container_image"] = pytorch_init_container_image
    if pytorch_init_container_template_file is not None:
        overrides["pytorch_init_container_template_file"] = pytorch_init_container_template_file
    if log_level is not None:
        overrides["log_level"] = log_level.upper()
    if health_probe_bind_address is not None:
        host, port = parse_bind_address(health_probe_bind_address)
        overrides["health_host"] = host
        overrides["health_port"] = port
    if overrides:
        settings = settings.model_copy(update=overrides)

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        dispatcher = SchemeDispatcher(settings=settings)
    except UnsupportedKindError as e:
        logger.error("Unable to start operator: %s", e)
        sys.exit(1)

    app = create_app(dispatcher, settings)
    uvicorn.run(
        app,
        host=settings.health_host,
        port=settings.health_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
