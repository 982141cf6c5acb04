from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Mapping, Union

from ..models import BackendReceipt, DispatchOutcome, Message

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]
SendResult = Union[BackendReceipt, Mapping[str, Any], None]

# Deferred-queue hooks
ResubmitFn = Callable[[Message], Awaitable[DispatchOutcome]]
DeadLetterFn = Callable[[Message], Awaitable[None]]


class Backend(ABC):
    """Delivery capability. ``send`` returns a receipt or raises."""

    name: str = "backend"

    @abstractmethod
    async def send(self, message: Message) -> SendResult:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
