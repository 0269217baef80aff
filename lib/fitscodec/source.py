"""
Random-access byte sources and append-only byte sinks.

A ByteSource is an immutable view over the (decompressed) bytes of a
container. Files are memory-mapped read-only, gzip input is inflated once
when the source is built, so reads never move a shared file position and may
be issued from several threads.
"""

import gzip
import io
import logging
import mmap
import os
from typing import Any, BinaryIO, Optional, Union

from .constants import GZIP_MAGIC

logger = logging.getLogger(__name__)


class ByteSource:
    """
    Read-only random access over the bytes of a container.

    Accepts raw bytes (bytes, bytearray, memoryview), a path (str or
    os.PathLike) or a binary file object.
    """

    def __init__(self, obj: Any, decompress: bool = True):
        """
        Initialize a ByteSource.

        Args:
            obj: The bytes, path or binary file object to read from
            decompress: Inflate the whole input first if it starts with the
                        gzip magic bytes
        """
        self._file = None
        self._mmap = None

        if isinstance(obj, (bytes, bytearray, memoryview)):
            data = bytes(obj)
        elif isinstance(obj, (str, os.PathLike)):
            data = self._open_path(obj, decompress)
        elif hasattr(obj, 'read'):
            data = obj.read()
            if not isinstance(data, (bytes, bytearray)):
                raise TypeError("File object must be opened in binary mode")
            data = bytes(data)
        else:
            raise TypeError(f"Unsupported byte source: {type(obj)}")

        if data is not None and decompress and data[:2] == GZIP_MAGIC:
            logger.debug("inflating gzip input of %d bytes", len(data))
            data = gzip.decompress(data)

        if data is not None:
            self._data = data
        else:
            self._data = self._mmap

    def _open_path(self, path, decompress: bool) -> Optional[bytes]:
        """Map a file into memory, or inflate it when it is gzip compressed."""
        f = open(path, 'rb')
        magic = f.read(2)
        if decompress and magic == GZIP_MAGIC:
            f.seek(0)
            data = f.read()
            f.close()
            return data

        if os.fstat(f.fileno()).st_size == 0:
            # empty files cannot be mapped
            f.close()
            return b''

        self._file = f
        self._mmap = mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ)
        return None

    def read(self, offset: int, length: int) -> bytes:
        """
        Read up to ``length`` bytes starting at ``offset``.

        Fewer bytes are returned when the range runs past the end of the
        source; an empty result means ``offset`` is at or beyond the end.
        """
        if offset < 0 or length < 0:
            raise ValueError(f"Invalid byte range: offset={offset}, length={length}")
        return bytes(self._data[offset:offset + length])

    def size(self) -> int:
        return len(self._data)

    def __len__(self):
        return self.size()

    def close(self):
        """Release the memory map and the file handle, if any."""
        if self._mmap is not None:
            self._mmap.close()
            self._mmap = None
            self._data = b''
        if self._file is not None and not self._file.closed:
            self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def as_source(obj: Union['ByteSource', Any], decompress: bool = True) -> ByteSource:
    """Wrap ``obj`` in a ByteSource unless it already is one."""
    if isinstance(obj, ByteSource):
        return obj
    return ByteSource(obj, decompress=decompress)


class ByteSink:
    """
    Append-only destination for serialized bytes.

    Writes to a binary file object when one is given, otherwise to an
    in-memory buffer whose content is available through getvalue().
    """

    def __init__(self, file: Optional[BinaryIO] = None):
        self.file = file if file is not None else io.BytesIO()
        self.position = 0

    def append(self, data: bytes) -> int:
        """Append ``data`` and return the offset it was written at."""
        offset = self.position
        self.file.write(data)
        self.position += len(data)
        return offset

    def getvalue(self) -> bytes:
        if not isinstance(self.file, io.BytesIO):
            raise IOError("Sink does not write to memory")
        return self.file.getvalue()
