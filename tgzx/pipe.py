from __future__ import annotations

import threading
from typing import Optional

from .constants import DEFAULT_PIPE_CAPACITY
from .errors import OperationCancelled


class StreamPipe:
    """Bounded in-process byte channel between one writer and one reader thread.

    ``write`` blocks while the buffer is full and ``read`` blocks while it is
    empty. Closing the writer with an error makes the reader raise that error
    once the buffered bytes are drained; closing the reader makes subsequent
    writes fail so a blocked producer unwinds. Setting ``cancel`` wakes both
    sides with :class:`OperationCancelled` at their next wait.
    """

    def __init__(self, capacity: int = DEFAULT_PIPE_CAPACITY, cancel: Optional[threading.Event] = None):
        if capacity <= 0:
            raise ValueError("Pipe capacity must be positive")
        self.capacity = capacity
        self.cancel = cancel
        self._buf = bytearray()
        self._cond = threading.Condition()
        self._writer_closed = False
        self._writer_error: Optional[BaseException] = None
        self._reader_closed = False
        self._reader_error: Optional[BaseException] = None
        self.writer = _WriteEnd(self)
        self.reader = _ReadEnd(self)

    def _wait(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise OperationCancelled()
        # cancel is set without notify, so poll
        self._cond.wait(0.1 if self.cancel is not None else None)
        if self.cancel is not None and self.cancel.is_set():
            raise OperationCancelled()

    def write(self, data) -> int:
        view = memoryview(data).cast("B")
        total = len(view)
        with self._cond:
            while view:
                if self._reader_closed:
                    if self._reader_error is not None:
                        raise self._reader_error
                    raise BrokenPipeError("pipe reader closed")
                if self._writer_closed:
                    raise ValueError("write to closed pipe")
                room = self.capacity - len(self._buf)
                if room <= 0:
                    self._wait()
                    continue
                self._buf += view[:room]
                view = view[room:]
                self._cond.notify_all()
        return total

    def read(self, n: int = -1) -> bytes:
        with self._cond:
            while not self._buf:
                if self._writer_closed:
                    if self._writer_error is not None:
                        raise self._writer_error
                    return b""
                if self._reader_closed:
                    raise ValueError("read from closed pipe")
                self._wait()
            if n is None or n < 0 or n >= len(self._buf):
                out = bytes(self._buf)
                self._buf.clear()
            else:
                out = bytes(self._buf[:n])
                del self._buf[:n]
            self._cond.notify_all()
            return out

    def close_writer(self, error: Optional[BaseException] = None) -> None:
        with self._cond:
            if self._writer_closed:
                return
            self._writer_closed = True
            self._writer_error = error
            self._cond.notify_all()

    def close_reader(self, error: Optional[BaseException] = None) -> None:
        with self._cond:
            if self._reader_closed:
                return
            self._reader_closed = True
            self._reader_error = error
            self._buf.clear()
            self._cond.notify_all()


class _WriteEnd:
    def __init__(self, pipe: StreamPipe):
        self._pipe = pipe

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        return self._pipe.write(data)

    def flush(self) -> None:
        pass

    def close(self, error: Optional[BaseException] = None) -> None:
        self._pipe.close_writer(error)


class _ReadEnd:
    def __init__(self, pipe: StreamPipe):
        self._pipe = pipe

    def readable(self) -> bool:
        return True

    def read(self, n: int = -1) -> bytes:
        return self._pipe.read(n)

    def close(self, error: Optional[BaseException] = None) -> None:
        self._pipe.close_reader(error)
