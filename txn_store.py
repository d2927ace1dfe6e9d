"""
In-memory Key-Value Store with Nested Transactions

A single-process store that layers pending writes and deletes in a chain of
transaction frames over a flat committed mapping. Commit folds the innermost
frame into its parent (or into the committed data when it is the outermost),
rollback discards it.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Optional, Set
from enum import Enum
from abc import ABC, abstractmethod
from contextlib import contextmanager
import logging

logger = logging.getLogger(__name__)


class TxnState(Enum):
    """Transaction chain states"""
    NONE = "none"
    ACTIVE = "active"


class BaseStore:
    """Committed key-value data. Missing keys read as an empty string."""

    def __init__(self, initial: Optional[Mapping[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str:
        return self._data.get(key, "")

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def contains(self, key: str) -> bool:
        return key in self._data

    def snapshot(self) -> Dict[str, str]:
        return dict(self._data)

    def __len__(self) -> int:
        return len(self._data)


@dataclass
class Frame:
    """
    One level of transaction nesting.

    Attributes:
        pending_set: Writes to apply when this frame is committed
        pending_delete: Keys to remove when this frame is committed
        parent: Enclosing frame (None for the outermost one)
        child: Nested frame (None while this frame is the active one)
    """
    pending_set: Dict[str, str] = field(default_factory=dict)
    pending_delete: Set[str] = field(default_factory=set)
    parent: Optional["Frame"] = field(default=None, repr=False, compare=False)
    child: Optional["Frame"] = field(default=None, repr=False, compare=False)

    def spawn(self) -> "Frame":
        """
        Create a nested frame starting from a full copy of this frame's overlay.

        The copy is taken eagerly so the nested frame sees exactly what this
        one sees and can diverge from it independently.
        """
        nested = Frame(
            pending_set=dict(self.pending_set),
            pending_delete=set(self.pending_delete),
            parent=self,
        )
        self.child = nested
        return nested

    def write(self, key: str, value: str) -> None:
        self.pending_set[key] = value
        self.pending_delete.discard(key)

    def remove(self, key: str) -> None:
        self.pending_delete.add(key)
        self.pending_set.pop(key, None)

    def merge_into(self, target: "Frame") -> None:
        """Fold this frame's overlay into target. Keys touched here win."""
        for key in self.pending_delete:
            target.remove(key)
        for key, value in self.pending_set.items():
            target.write(key, value)


class Store(ABC):
    """Abstract base class for key-value store"""

    @abstractmethod
    def get(self, key: str) -> str:
        """Get value for key at the active transaction level"""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Set key to value at the active transaction level"""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete key at the active transaction level"""
        pass

    @abstractmethod
    def start_transaction(self) -> None:
        """Start a new (possibly nested) transaction"""
        pass

    @abstractmethod
    def commit(self) -> None:
        """Commit the active transaction"""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Rollback the active transaction"""
        pass


class TxnStore(Store):
    """
    In-memory key-value store with nested transactions.

    This implementation provides:
    - Point reads and writes against the active transaction frame
    - Nested transactions that start from a snapshot of their parent's overlay
    - Commit into the parent frame, or into committed data for the outermost
    - Silent no-op commit/rollback when no transaction is active

    Not thread-safe: callers sharing a store across threads must serialize
    access themselves.
    """

    def __init__(self, initial: Optional[Mapping[str, str]] = None):
        """Initialize the store, optionally seeding committed data"""
        self._base = BaseStore(initial)
        self._head: Optional[Frame] = None  # outermost frame
        self._tail: Optional[Frame] = None  # active frame
        self._depth = 0

    # ---- introspection ----
    @property
    def in_transaction(self) -> bool:
        return self._tail is not None

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def state(self) -> TxnState:
        return TxnState.ACTIVE if self._tail is not None else TxnState.NONE

    @property
    def data(self) -> Dict[str, str]:
        """Copy of the committed data"""
        return self._base.snapshot()

    def frames(self) -> List[Frame]:
        """
        Walk the chain from the outermost frame to the active one.

        The frames are returned for inspection only; mutate the store through
        its own operations so that only the active frame changes.
        """
        chain = []
        frame = self._head
        while frame is not None:
            chain.append(frame)
            frame = frame.child
        return chain

    # ---- point operations ----
    def get(self, key: str) -> str:
        """Get value for key, or an empty string if it is absent or deleted"""
        value = self.lookup(key)
        return "" if value is None else value

    def lookup(self, key: str) -> Optional[str]:
        """Get value for key, or None if it is absent or deleted"""
        frame = self._tail
        if frame is not None:
            if key in frame.pending_set:
                return frame.pending_set[key]
            if key in frame.pending_delete:
                return None

        if self._base.contains(key):
            return self._base.get(key)
        return None

    def set(self, key: str, value: str) -> None:
        if self._tail is None:
            self._base.set(key, value)
            return
        self._tail.write(key, value)

    def delete(self, key: str) -> None:
        if self._tail is None:
            self._base.delete(key)
            return
        self._tail.remove(key)

    # ---- transaction control ----
    def start_transaction(self) -> None:
        if self._tail is None:
            self._head = self._tail = Frame()
        else:
            self._tail = self._tail.spawn()
        self._depth += 1
        logger.debug("Started transaction at depth %d", self._depth)

    def begin(self) -> None:
        self.start_transaction()

    def commit(self) -> None:
        frame = self._tail
        if frame is None:
            logger.debug("Commit ignored: no active transaction")
            return

        parent = frame.parent
        if parent is None:
            for key in frame.pending_delete:
                self._base.delete(key)
            for key, value in frame.pending_set.items():
                self._base.set(key, value)
            logger.debug(
                "Committed outermost transaction: %d set, %d deleted",
                len(frame.pending_set), len(frame.pending_delete),
            )
            self._clear_chain()
            return

        frame.merge_into(parent)
        self._pop_frame(parent)
        logger.debug("Committed nested transaction, depth now %d", self._depth)

    def rollback(self) -> None:
        frame = self._tail
        if frame is None:
            logger.debug("Rollback ignored: no active transaction")
            return

        if frame.parent is None:
            self._clear_chain()
            logger.debug("Rolled back outermost transaction")
            return

        self._pop_frame(frame.parent)
        logger.debug("Rolled back nested transaction, depth now %d", self._depth)

    @contextmanager
    def transaction(self) -> Iterator["TxnStore"]:
        """
        Run a block inside a transaction frame.

        The frame is committed when the block finishes and rolled back if it
        raises; the exception is re-raised. If the block already ended the
        frame itself, nothing further is committed or rolled back.
        """
        self.start_transaction()
        frame = self._tail
        try:
            yield self
        except BaseException:
            if self._tail is frame:
                self.rollback()
            raise
        if self._tail is frame:
            self.commit()

    # ---- chain helpers ----
    def _pop_frame(self, parent: Frame) -> None:
        parent.child = None
        self._tail = parent
        self._depth -= 1

    def _clear_chain(self) -> None:
        self._head = None
        self._tail = None
        self._depth = 0
