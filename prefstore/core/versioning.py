"""Ordered version chains for migrating stored data.

A chain is an immutable sequence of migration steps. The last step's version
is the current version. Steps are applied strictly in order; a step without
a transform still counts as a version and is a no-op.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from copy import deepcopy
from dataclasses import dataclass
from typing import Any

from prefstore.core.errors import ConfigurationError, MigrationError

logger = logging.getLogger(__name__)

MigrateFn = Callable[[dict[str, Any]], Mapping[str, Any] | None]


@dataclass(frozen=True)
class MigrationStep:
    """A version together with the transform that produces it.

    ``migrate`` receives a copy of the accumulated data and returns a partial
    mapping merged over it. ``legacy_keys`` that are not also ``new_keys``
    are dropped once the step's transform has run.
    """

    version: str
    description: str = ""
    migrate: MigrateFn | None = None
    legacy_keys: tuple[str, ...] = ()
    new_keys: tuple[str, ...] = ()

    @property
    def retired_keys(self) -> tuple[str, ...]:
        return tuple(k for k in self.legacy_keys if k not in self.new_keys)


class VersionChain:
    """Immutable, ordered list of migration steps."""

    def __init__(self, steps: Sequence[MigrationStep]):
        if not steps:
            raise ConfigurationError("A version chain needs at least one step")

        versions = [step.version for step in steps]
        duplicates = {v for v in versions if versions.count(v) > 1}
        if duplicates:
            raise ConfigurationError(
                f"Duplicate versions in chain: {', '.join(sorted(duplicates))}"
            )

        self._steps = tuple(steps)
        self._index = {step.version: i for i, step in enumerate(self._steps)}

    @property
    def steps(self) -> tuple[MigrationStep, ...]:
        return self._steps

    @property
    def versions(self) -> list[str]:
        return [step.version for step in self._steps]

    @property
    def current(self) -> str:
        """Version produced by the last step."""
        return self._steps[-1].version

    @property
    def earliest(self) -> str:
        return self._steps[0].version

    def __contains__(self, version: object) -> bool:
        return version in self._index

    def __len__(self) -> int:
        return len(self._steps)

    def index(self, version: str) -> int:
        """Position of ``version`` in the chain."""
        if version not in self._index:
            raise MigrationError(f"Unknown version: {version}")
        return self._index[version]

    def pending(self, from_version: str, to_version: str) -> tuple[MigrationStep, ...]:
        """Steps strictly after ``from_version`` up to and including ``to_version``."""
        start = self.index(from_version)
        end = self.index(to_version)
        if end < start:
            raise MigrationError(
                f"Cannot migrate backwards from {from_version} to {to_version}"
            )
        return self._steps[start + 1 : end + 1]

    def apply(
        self, data: Mapping[str, Any], from_version: str, to_version: str
    ) -> dict[str, Any]:
        """Run the pending steps over a copy of ``data``.

        Raises:
            MigrationError: when a step raises or returns a non-mapping. The
                error's ``aggregate`` holds the data before the failing step.
        """
        aggregate = deepcopy(dict(data))

        for step in self.pending(from_version, to_version):
            if step.migrate is None:
                logger.debug(f"No transform for {step.version}, skipping")
                continue

            logger.debug(f"Executing migration to {step.version}: {step.description}")
            try:
                partial = step.migrate(deepcopy(aggregate))
            except Exception as e:
                logger.error(f"Migration to {step.version} failed: {e}")
                raise MigrationError(
                    str(e), step_version=step.version, cause=e, aggregate=aggregate
                ) from e

            if partial is not None:
                if not isinstance(partial, Mapping):
                    raise MigrationError(
                        f"transform returned {type(partial).__name__}, expected a mapping",
                        step_version=step.version,
                        aggregate=aggregate,
                    )
                aggregate.update(deepcopy(dict(partial)))

            for key in step.retired_keys:
                aggregate.pop(key, None)

        return aggregate
