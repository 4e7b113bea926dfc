"""Step executor interface."""

from __future__ import annotations

import abc
from typing import Any, ClassVar, Dict, Mapping


class StepExecutor(metaclass=abc.ABCMeta):
    """Capability contract implemented by every step type.

    ``execute`` receives the step's business configuration and the context as
    it stood just before the step. It returns a flat document that the engine
    merges into the context, or raises.

    Executors whose side effects cannot be rolled back set ``idempotent`` to
    ``False``; the engine still retries them but logs that a replay may
    duplicate work.
    """

    idempotent: ClassVar[bool] = True

    @abc.abstractmethod
    async def execute(
        self, config: Dict[str, Any], context: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """Run the step and return its output."""
        raise NotImplementedError

    def close(self) -> None:
        """Release resources held by the executor."""
