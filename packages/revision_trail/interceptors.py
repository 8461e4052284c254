"""Priority-ordered chains of mapper lifecycle interceptors.

SQLAlchemy runs listeners in attachment order, which makes "revision
bookkeeping sees the raw row first" depend on import order. Instead, each
(class, phase) pair gets one :class:`InterceptorChain` holding named
interceptors sorted by an explicit ``priority``; the chain itself is attached to
the mapper event with ``insert=True`` so it also precedes listeners the host
attaches directly with ``event.listen``.

Priorities run ascending. :data:`REVISION_PRIORITY` is reserved for revision
bookkeeping; host observers must use a larger value.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator

from sqlalchemy import event
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Mapper

REVISION_PRIORITY = 0
DEFAULT_OBSERVER_PRIORITY = 100

InterceptorHandler = Callable[[Mapper[Any], Connection, Any], None]


class Phase(str, Enum):
    """Mapper lifecycle phases, valued by their SQLAlchemy event names."""

    AFTER_CREATE = "after_insert"
    AFTER_UPDATE = "after_update"
    AFTER_DELETE = "after_delete"
    BEFORE_CREATE = "before_insert"
    BEFORE_UPDATE = "before_update"
    BEFORE_DELETE = "before_delete"


@dataclass(frozen=True, slots=True)
class Interceptor:
    """One named handler in a chain."""

    name: str
    priority: int
    handler: InterceptorHandler
    sequence: int


class InterceptorChain:
    """Ordered interceptors for one mapped class and one phase."""

    def __init__(self, target_cls: type, phase: Phase) -> None:
        self.target_cls = target_cls
        self.phase = phase
        self._interceptors: tuple[Interceptor, ...] = ()
        self._sequence = 0
        self._attached = False

    def register(
        self,
        name: str,
        handler: InterceptorHandler,
        *,
        priority: int,
    ) -> Interceptor:
        """Add ``handler`` under ``name``; names are unique per chain."""
        if any(existing.name == name for existing in self._interceptors):
            raise ValueError(
                f"interceptor {name!r} already registered for "
                f"{self.target_cls.__name__}.{self.phase.value}"
            )
        interceptor = Interceptor(
            name=name,
            priority=priority,
            handler=handler,
            sequence=self._sequence,
        )
        self._sequence += 1
        self._interceptors = tuple(
            sorted(
                (*self._interceptors, interceptor),
                key=lambda item: (item.priority, item.sequence),
            )
        )
        return interceptor

    def names(self) -> tuple[str, ...]:
        return tuple(interceptor.name for interceptor in self._interceptors)

    def __iter__(self) -> Iterator[Interceptor]:
        return iter(self._interceptors)

    def __len__(self) -> int:
        return len(self._interceptors)

    def attach(self) -> None:
        """Attach the chain to the mapper event, once."""
        if self._attached:
            return
        event.listen(
            self.target_cls,
            self.phase.value,
            self.dispatch,
            insert=True,
            propagate=True,
        )
        self._attached = True

    def dispatch(self, mapper: Mapper[Any], connection: Connection, target: Any) -> None:
        # Snapshot so a registration during dispatch cannot reorder this run.
        for interceptor in self._interceptors:
            interceptor.handler(mapper, connection, target)


_CHAINS: dict[tuple[type, Phase], InterceptorChain] = {}
_CHAINS_LOCK = threading.Lock()


def chain_for(target_cls: type, phase: Phase) -> InterceptorChain:
    """Return the attached chain for ``target_cls`` and ``phase``."""
    with _CHAINS_LOCK:
        chain = _CHAINS.get((target_cls, phase))
        if chain is None:
            chain = InterceptorChain(target_cls, phase)
            chain.attach()
            _CHAINS[(target_cls, phase)] = chain
        return chain


def register_observer(
    target_cls: type,
    phase: Phase,
    handler: InterceptorHandler,
    *,
    name: str,
    priority: int = DEFAULT_OBSERVER_PRIORITY,
) -> Interceptor:
    """Register a host observer that runs after revision bookkeeping.

    Raises:
        ValueError: ``priority`` is not greater than :data:`REVISION_PRIORITY`
            or ``name`` is already taken on this chain.
    """
    if priority <= REVISION_PRIORITY:
        raise ValueError(
            f"observer priority must be greater than {REVISION_PRIORITY}; "
            "lower priorities are reserved for revision bookkeeping"
        )
    return chain_for(target_cls, Phase(phase)).register(name, handler, priority=priority)


def register_bookkeeping(
    target_cls: type,
    phase: Phase,
    handler: InterceptorHandler,
    *,
    name: str,
) -> Interceptor:
    """Register a revision bookkeeping interceptor at the reserved priority."""
    return chain_for(target_cls, phase).register(name, handler, priority=REVISION_PRIORITY)
