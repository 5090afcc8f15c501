"""
Pull-based chunk stream over a collaborator's chunked reader.
"""

from collections.abc import Iterable, Iterator

from ..exceptions import StreamExhaustedError
from ..models import Row


class ChunkStream:
    """
    Single-pass iterator over row batches.

    The underlying reader is ordered and cannot be resumed, so the stream can
    be iterated once. Asking for a second iterator after iteration has started
    raises ``StreamExhaustedError``; a fresh diff pass must open a new stream.
    """

    def __init__(self, chunks: Iterable[list[Row]], table: str = ""):
        self._chunks = chunks
        self._iterator: Iterator[list[Row]] | None = None
        self._exhausted = False
        self.table = table
        self.chunks_read = 0
        self.rows_read = 0

    @property
    def started(self) -> bool:
        return self._iterator is not None

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def __iter__(self) -> "ChunkStream":
        if self._iterator is not None:
            state = "exhausted" if self._exhausted else "already being read"
            raise StreamExhaustedError(
                f"Chunk stream is {state}", details={"table": self.table, "rows_read": self.rows_read}
            )
        self._iterator = iter(self._chunks)
        return self

    def __next__(self) -> list[Row]:
        if self._iterator is None:
            iter(self)
        if self._exhausted:
            raise StopIteration

        try:
            chunk = next(self._iterator)
        except StopIteration:
            self._exhausted = True
            raise

        chunk = list(chunk)
        self.chunks_read += 1
        self.rows_read += len(chunk)
        return chunk

    def rows(self) -> Iterator[Row]:
        """Flatten the stream row by row."""
        for chunk in self:
            yield from chunk
