from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar, Union

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class Success(Generic[T]):
    data: T | None = None


@dataclass(frozen=True)
class Failure:
    message: str


@dataclass(frozen=True)
class Loading:
    is_loading: bool


Resource = Union[Success[T], Failure, Loading]


def map_resource(resource: Resource[T], transform: Callable[[T], R]) -> Resource[R]:
    """Apply ``transform`` to the payload of a Success, keep other states as they are.

    An absent payload stays absent; ``transform`` is only called with data.
    """
    if isinstance(resource, Success):
        if resource.data is None:
            return Success(None)
        return Success(transform(resource.data))
    if isinstance(resource, (Failure, Loading)):
        return resource
    raise TypeError(f"Not a resource: {resource!r}")


@dataclass(frozen=True)
class Session:
    token: str


@dataclass(frozen=True)
class Pong:
    result: str
    success: str
