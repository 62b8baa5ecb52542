from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Iterator

from ..errors import QueryExecutionError


class StreamState(str, Enum):
    OPEN = "open"
    END = "end"
    ERROR = "error"


class RowStream:
    """
    Single-pass, forward-only row source over a server-side cursor.

    Rows are pulled from the database only when the consumer asks for the
    next one, so a slow consumer never has more than the driver's buffer in
    memory. ``transform`` (if any) maps each raw row one-in-one-out.

    An upstream failure does not raise out of the iteration: it is stored on
    ``error``, passed to the ``on_error`` callbacks, and the stream ends
    (state ``ERROR``). ``on_end`` callbacks run once when the stream
    finishes, whether it ended normally or after an error. Exceptions raised
    by ``transform`` propagate to the consumer.

    Usage:
        with router.stream_query("SELECT * FROM users") as rows:
            for row in rows:
                ...
        rows.raise_for_error()
    """

    def __init__(
        self,
        source: Iterator[Any],
        transform: Callable[[Any], Any] | None = None,
        on_row: Callable[[], None] | None = None,
    ) -> None:
        self._source = source
        self._transform = transform
        self._on_row = on_row
        self._error_callbacks: list[Callable[[BaseException], None]] = []
        self._end_callbacks: list[Callable[[], None]] = []
        self.state = StreamState.OPEN
        self.error: BaseException | None = None

    def on_error(self, callback: Callable[[BaseException], None]) -> "RowStream":
        self._error_callbacks.append(callback)
        if self.state is StreamState.ERROR and self.error is not None:
            callback(self.error)
        return self

    def on_end(self, callback: Callable[[], None]) -> "RowStream":
        self._end_callbacks.append(callback)
        if self.state is not StreamState.OPEN:
            callback()
        return self

    def __iter__(self) -> "RowStream":
        return self

    def __next__(self) -> Any:
        if self.state is not StreamState.OPEN:
            raise StopIteration
        try:
            row = next(self._source)
        except StopIteration:
            self._finish(StreamState.END)
            raise
        except Exception as exc:
            self.error = exc
            self._finish(StreamState.ERROR)
            raise StopIteration from None

        if self._on_row is not None:
            self._on_row()
        if self._transform is None:
            return row
        return self._transform(row)

    def close(self) -> None:
        """Release the underlying cursor and connection."""
        if self.state is StreamState.OPEN:
            self._finish(StreamState.END)

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise QueryExecutionError("Error streaming SQL results") from self.error

    def __enter__(self) -> "RowStream":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
        # propagate exceptions (if any)
        return False

    def _finish(self, state: StreamState) -> None:
        self.state = state
        close = getattr(self._source, "close", None)
        if close is not None:
            close()
        if state is StreamState.ERROR and self.error is not None:
            for callback in self._error_callbacks:
                callback(self.error)
        for callback in self._end_callbacks:
            callback()
