from typing import BinaryIO, Iterator

from urllib3.exceptions import HTTPError as Urllib3Error

from .types import StreamError


class StreamCopier:
    """
    Pumps bytes from a readable source to a writable sink through one
    fixed-size buffer.

    Attributes:
        buffer_size (int): Maximum number of bytes moved per read
    """

    def __init__(self, buffer_size: int):
        if buffer_size <= 0:
            raise ValueError(f"buffer size must be positive, got {buffer_size}")
        self.buffer_size = buffer_size

    def chunks(self, source: BinaryIO) -> Iterator[bytes]:
        """
        Yield the source's bytes one buffered read at a time.

        The final short read before end-of-stream is yielded like any
        other. A failing read raises StreamError and nothing from that
        read is yielded.

        Args:
            source: Any object with readinto(), e.g. a urllib3 response

        Yields:
            bytes: The bytes of one read, never empty
        """
        buf = bytearray(self.buffer_size)
        view = memoryview(buf)
        while True:
            try:
                n = source.readinto(view)
            except (OSError, Urllib3Error) as e:
                raise StreamError(str(e)) from e
            if not n:
                return
            yield bytes(view[:n])

    def copy(self, source: BinaryIO, sink: BinaryIO) -> int:
        """
        Copy source to sink until end-of-stream.

        Args:
            source: Object with readinto()
            sink: Object with write()

        Returns:
            int: Number of bytes written to the sink
        """
        total = 0
        for chunk in self.chunks(source):
            sink.write(chunk)
            total += len(chunk)
        return total
