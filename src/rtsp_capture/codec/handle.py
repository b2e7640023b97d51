from __future__ import annotations

import logging
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OwnedHandle(Generic[T]):
    """Exclusive owner of one native resource.

    The handle cannot be copied. Ownership moves with `take()`, which leaves
    the source handle empty. `release()` runs the release callback at most
    once, and leaving a `with` block releases on every exit path.
    """

    __slots__ = ("_resource", "_release_fn", "label")

    def __init__(
        self,
        resource: T,
        release_fn: Optional[Callable[[T], None]] = None,
        label: str = "resource",
    ) -> None:
        if resource is None:
            raise ValueError("OwnedHandle requires a resource")
        self._resource: Optional[T] = resource
        self._release_fn = release_fn
        self.label = label

    @property
    def released(self) -> bool:
        return self._resource is None

    def get(self) -> T:
        if self._resource is None:
            raise RuntimeError(f"{self.label} handle is empty")
        return self._resource

    def take(self) -> "OwnedHandle[T]":
        resource = self.get()
        moved = OwnedHandle(resource, self._release_fn, self.label)
        self._resource = None
        self._release_fn = None
        return moved

    def release(self) -> None:
        resource, self._resource = self._resource, None
        release_fn, self._release_fn = self._release_fn, None
        if resource is None or release_fn is None:
            return
        release_fn(resource)
        logger.debug("released %s", self.label)

    def __enter__(self) -> "OwnedHandle[T]":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    def __copy__(self) -> "OwnedHandle[T]":
        raise TypeError("OwnedHandle cannot be copied; use take()")

    def __deepcopy__(self, memo: dict) -> "OwnedHandle[T]":
        raise TypeError("OwnedHandle cannot be copied; use take()")

    def __reduce__(self):  # type: ignore[override]
        raise TypeError("OwnedHandle cannot be pickled")

    def __repr__(self) -> str:
        state = "released" if self.released else "owned"
        return f"OwnedHandle({self.label}, {state})"
