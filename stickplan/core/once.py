"""Thread-safe compute-once cells for lazily probed partition properties.

Probing a partition (mounting it, walking a directory tree) is expensive and
must happen at most once per object, even when several threads ask for the
same property at the same time. ``ComputeOnce`` wraps a zero-argument
function and moves through these states::

    UNKNOWN -> COMPUTING -> DONE(value)
                         -> FAILED(error)

Callers arriving while another thread is COMPUTING wait for the outcome.
A FAILED cell re-raises the recorded error on every access; it is never
retried.
"""
import threading
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class CellState(Enum):
    """Lifecycle state of a compute-once cell."""
    UNKNOWN = "unknown"
    COMPUTING = "computing"
    DONE = "done"
    FAILED = "failed"


class ComputeOnce(Generic[T]):
    """Lazily computes a value exactly once and memoizes value or error."""

    def __init__(self, compute: Callable[[], T], name: str = "value"):
        self._compute = compute
        self.name = name
        self._condition = threading.Condition()
        self._state = CellState.UNKNOWN
        self._value: Optional[T] = None
        self._error: Optional[BaseException] = None
        self._owner: Optional[int] = None

    @property
    def state(self) -> CellState:
        with self._condition:
            return self._state

    @property
    def error(self) -> Optional[BaseException]:
        with self._condition:
            return self._error

    def get(self) -> T:
        """Return the memoized value, computing it on first access.

        Raises:
            The exception raised by the compute function (first and every
            later access).
            RuntimeError: If the compute function asks for its own value.
        """
        with self._condition:
            while self._state is CellState.COMPUTING:
                if self._owner == threading.get_ident():
                    raise RuntimeError(f"recursive access to {self.name} while computing it")
                self._condition.wait()

            if self._state is CellState.DONE:
                return self._value
            if self._state is CellState.FAILED:
                raise self._error

            self._state = CellState.COMPUTING
            self._owner = threading.get_ident()

        try:
            value = self._compute()
        except Exception as e:
            with self._condition:
                self._error = e
                self._state = CellState.FAILED
                self._owner = None
                self._condition.notify_all()
            raise

        with self._condition:
            self._value = value
            self._state = CellState.DONE
            self._owner = None
            self._condition.notify_all()
        return value

    def __repr__(self) -> str:
        return f"ComputeOnce({self.name}, {self.state.value})"
