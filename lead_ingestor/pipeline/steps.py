"""Pipeline step abstraction: a named unit of async work with optional rollback."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

Payload = dict[str, Any]


class PipelineStep(ABC):
    """
    Abstract base class for all pipeline steps.

    Steps are stateless: ``execute`` receives the record payload produced by the
    previous step and returns the payload for the next one. Steps that have a
    compensating action override ``rollback``.
    """

    name: str = "step"

    @abstractmethod
    async def execute(self, data: Payload) -> Payload:
        """
        Process one record payload.

        Args:
            data: Normalized payload produced by the previous step

        Returns:
            Payload handed to the next step

        Raises:
            Exception: Any exception fails the record and triggers rollback
        """
        pass

    async def rollback(self, data: Payload) -> None:
        """Undo the side effects of ``execute`` for a failed record."""
        return None

    @property
    def has_rollback(self) -> bool:
        return type(self).rollback is not PipelineStep.rollback

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"


class FunctionStep(PipelineStep):
    """Pipeline step built from plain coroutine functions."""

    def __init__(
        self,
        name: str,
        execute: Callable[[Payload], Awaitable[Payload]],
        rollback: Callable[[Payload], Awaitable[None]] | None = None,
    ) -> None:
        self.name = name
        self._execute = execute
        self._rollback = rollback

    async def execute(self, data: Payload) -> Payload:
        return await self._execute(data)

    async def rollback(self, data: Payload) -> None:
        if self._rollback is not None:
            await self._rollback(data)

    @property
    def has_rollback(self) -> bool:
        return self._rollback is not None
