"""Step executors and the registry that dispatches to them."""

from .base import StepExecutor
from .registry import StepExecutorRegistry, build_default_registry

__all__ = ["StepExecutor", "StepExecutorRegistry", "build_default_registry"]
