"""Container runtime contract.

The conveyor never executes commands itself.  When a stage misses the
cache it hands the prepared ``ContainerSpec`` to a ``ContainerRuntime``,
which must materialize the layer (run the commands on top of the base
image, apply labels) under the given image name before returning.
"""

from __future__ import annotations

import importlib
import logging
from typing import Protocol, runtime_checkable

from dimgforge.core.errors import ConfigurationError
from dimgforge.models.image import ContainerSpec

logger = logging.getLogger(__name__)


@runtime_checkable
class ContainerRuntime(Protocol):
    """Materializes a stage layer from a prepared spec."""

    def build_layer(self, image_name: str, spec: ContainerSpec) -> None:
        """Run *spec* and commit the result as *image_name*.

        Raises on failure; the error aborts the build.
        """
        ...


class RecordingRuntime:
    """Runtime that records every requested layer without executing it.

    Used for ``--dry-run`` builds and in tests.
    """

    def __init__(self) -> None:
        self.layers: list[tuple[str, ContainerSpec]] = []

    def build_layer(self, image_name: str, spec: ContainerSpec) -> None:
        logger.info(
            "Recording layer %s (%d run commands)", image_name, len(spec.run_commands)
        )
        self.layers.append((image_name, spec.model_copy(deep=True)))

    @property
    def image_names(self) -> list[str]:
        return [name for name, _ in self.layers]


def load_runtime(path: str) -> ContainerRuntime:
    """Instantiate a runtime from a ``module:ClassName`` import path."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(
            f"runtime must be given as 'module:ClassName', got {path!r}"
        )
    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as exc:
        raise ConfigurationError(f"cannot load runtime {path!r}: {exc}") from exc

    runtime = factory()
    if not isinstance(runtime, ContainerRuntime):
        raise ConfigurationError(f"{path!r} does not provide build_layer()")
    return runtime
