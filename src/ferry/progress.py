"""Decorators around the connection's sink and source.

None of them alter the bytes passing through. The progress ones
count bytes and report them, the abortable ones check a shared
'threading.Event' before every operation.
"""
import threading
import typing

# Reported as 'total' when the length isn't known up front.
UNKNOWN_LENGTH = -1

ProgressCallback = typing.Callable[[int, int], None]


class AbortTransfer(Exception):
    """Signals that the shared abort event was set. Never escapes
    the pipeline, an aborted transfer produces no result instead.
    """


class ProgressListener:
    """Receives progress of a transfer. Keep these quick, they're
    called from the transfer loop after every read and write.
    """

    def on_request_progress(self, sent: int, total: int) -> None:
        """'total' is -1 when the request is chunked or has no body."""

    def on_response_progress(self, received: int, total: int) -> None:
        """'total' is -1 when the response doesn't declare its length
        or when it's being decompressed.
        """


class ProgressSink:
    def __init__(
        self,
        sink: typing.BinaryIO,
        callback: typing.Optional[ProgressCallback],
        total: typing.Optional[int],
    ) -> None:
        self._sink = sink
        self._callback = callback
        self.total = UNKNOWN_LENGTH if total is None else total
        self.transferred = 0

    def write(self, data: bytes) -> int:
        self._sink.write(data)
        self.transferred += len(data)
        if self._callback is not None:
            self._callback(self.transferred, self.total)
        return len(data)

    def flush(self) -> None:
        if hasattr(self._sink, "flush"):
            self._sink.flush()

    def close(self) -> None:
        self._sink.close()


class ProgressSource:
    def __init__(
        self,
        source: typing.BinaryIO,
        callback: typing.Optional[ProgressCallback],
        total: typing.Optional[int],
    ) -> None:
        self._source = source
        self._callback = callback
        self.total = UNKNOWN_LENGTH if total is None else total
        self.transferred = 0

    def read(self, n: int = -1) -> bytes:
        data = self._source.read(n)
        self.transferred += len(data)
        if self._callback is not None:
            self._callback(self.transferred, self.total)
        return data

    def close(self) -> None:
        self._source.close()


class AbortableSink:
    def __init__(self, sink: typing.BinaryIO, abort: threading.Event) -> None:
        self._sink = sink
        self._abort = abort

    def write(self, data: bytes) -> int:
        if self._abort.is_set():
            raise AbortTransfer()
        return self._sink.write(data)

    def flush(self) -> None:
        if hasattr(self._sink, "flush"):
            self._sink.flush()

    def close(self) -> None:
        self._sink.close()


class AbortableSource:
    def __init__(self, source: typing.BinaryIO, abort: threading.Event) -> None:
        self._source = source
        self._abort = abort

    def read(self, n: int = -1) -> bytes:
        if self._abort.is_set():
            raise AbortTransfer()
        return self._source.read(n)

    def close(self) -> None:
        self._source.close()

