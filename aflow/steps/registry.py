"""Fixed mapping from step type to executor instance."""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterator, Mapping, Optional

from ..errors import UnknownStepTypeError
from .base import StepExecutor


class StepExecutorRegistry(Mapping[str, StepExecutor]):
    """Immutable registry built once at startup and injected into the engine."""

    def __init__(self, executors: Mapping[str, StepExecutor]) -> None:
        self._executors = MappingProxyType(dict(executors))

    def resolve(self, step_type: str) -> StepExecutor:
        try:
            return self._executors[step_type]
        except KeyError:
            raise UnknownStepTypeError(step_type) from None

    def __getitem__(self, step_type: str) -> StepExecutor:
        return self._executors[step_type]

    def __iter__(self) -> Iterator[str]:
        return iter(self._executors)

    def __len__(self) -> int:
        return len(self._executors)

    def close(self) -> None:
        for executor in self._executors.values():
            executor.close()


def build_default_registry(
    extra: Optional[Mapping[str, StepExecutor]] = None,
    transform_timeout: Optional[float] = None,
) -> StepExecutorRegistry:
    """Registry with the built-in step types plus any ``extra`` executors."""
    from .database import DatabaseActionExecutor
    from .transform import DEFAULT_TIMEOUT, TransformActionExecutor

    executors: dict[str, StepExecutor] = {
        "database": DatabaseActionExecutor(),
        "transform": TransformActionExecutor(
            timeout=transform_timeout or DEFAULT_TIMEOUT
        ),
    }
    executors.update(extra or {})
    return StepExecutorRegistry(executors)
