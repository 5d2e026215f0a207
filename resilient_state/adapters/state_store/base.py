"""State store interfaces and pipeline command types.

The state service depends on these abstractions rather than on a concrete
backend, so the shared store client can be replaced (or faked in tests)
without touching rate limiting or circuit breaking.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

# Redis TTL reply conventions
TTL_MISSING = -2
TTL_NO_EXPIRY = -1


class CommandKind(str, Enum):
    """Commands accepted in a pipeline batch."""

    GET = "get"
    SET = "set"
    INCR = "incr"
    EXPIRE = "expire"
    DEL = "del"


@dataclass(frozen=True)
class PipelineCommand:
    """One command of a pipeline batch.

    Attributes:
        kind: Command to execute.
        key: Target key.
        value: Value for SET.
        seconds: TTL for SET (optional) or EXPIRE (required).
    """

    kind: CommandKind
    key: str
    value: Any = None
    seconds: int | None = None

    def __post_init__(self) -> None:
        if not self.key:
            raise ValueError("pipeline command key must be a non-empty string")
        if self.kind is CommandKind.EXPIRE and self.seconds is None:
            raise ValueError("expire command requires seconds")

    @classmethod
    def get(cls, key: str) -> "PipelineCommand":
        return cls(CommandKind.GET, key)

    @classmethod
    def set(cls, key: str, value: Any, *, ex: int | None = None) -> "PipelineCommand":
        return cls(CommandKind.SET, key, value=value, seconds=ex)

    @classmethod
    def incr(cls, key: str) -> "PipelineCommand":
        return cls(CommandKind.INCR, key)

    @classmethod
    def expire(cls, key: str, seconds: int) -> "PipelineCommand":
        return cls(CommandKind.EXPIRE, key, seconds=seconds)

    @classmethod
    def delete(cls, key: str) -> "PipelineCommand":
        return cls(CommandKind.DEL, key)


class AbstractSharedStoreClient(ABC):
    """Interface for the remote, cross-process key/value store.

    Every method is a network call and may raise any exception; the state
    service treats all of them as "shared store unavailable".

    Attributes:
        available: Liveness flag owned by the client. The state service
            clears it on failure and sets it again on a successful re-check.
    """

    available: bool = True

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: Any, *, ex: int | None = None) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def incr(self, key: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def expire(self, key: str, seconds: int) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def ttl(self, key: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def exists(self, key: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def pipeline(self, commands: list[PipelineCommand]) -> list[Any]:
        """Execute all commands as one atomic batch and return their replies in order."""
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release network resources. Default is a no-op."""
        return None
