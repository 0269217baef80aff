"""
Unit tests for fitscodec - byte sources and sinks
"""

import gzip
import io
import os
import sys
import tempfile
import pytest

# Add the lib directory to the path to import fitscodec
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))) + "/lib")
from fitscodec.source import ByteSink, ByteSource, as_source


@pytest.fixture
def temp_file():
    """Set up a temporary file for tests."""
    temp = tempfile.NamedTemporaryFile(delete=False)
    temp.close()
    yield temp
    # Clean up temporary files after tests
    if os.path.exists(temp.name):
        os.unlink(temp.name)

def test_read_from_bytes():
    """Reads past the end return fewer bytes."""
    source = ByteSource(b"abcdef")
    assert source.read(0, 3) == b"abc"
    assert source.read(4, 10) == b"ef"
    assert source.read(6, 1) == b""
    assert source.read(10, 2) == b""
    assert source.size() == 6
    assert len(source) == 6

def test_invalid_range():
    """Negative offsets and lengths raise ValueError."""
    source = ByteSource(bytearray(b"abc"))
    with pytest.raises(ValueError):
        source.read(-1, 1)
    with pytest.raises(ValueError):
        source.read(0, -1)

def test_read_from_path(temp_file):
    """Paths are memory-mapped."""
    with open(temp_file.name, "wb") as f:
        f.write(b"0123456789")

    with ByteSource(temp_file.name) as source:
        assert source.size() == 10
        assert source.read(2, 3) == b"234"
        assert source.read(8, 5) == b"89"

def test_empty_file(temp_file):
    """Empty files give an empty source."""
    source = ByteSource(temp_file.name)
    assert source.size() == 0
    assert source.read(0, 2880) == b""
    source.close()

def test_read_from_file_object():
    """Binary file objects are read, text ones rejected."""
    source = ByteSource(io.BytesIO(b"xyz"))
    assert source.read(1, 2) == b"yz"
    with pytest.raises(TypeError):
        ByteSource(io.StringIO("xyz"))
    with pytest.raises(TypeError):
        ByteSource(12)

def test_gzip_input_is_inflated():
    """Gzip bytes are inflated unless disabled."""
    data = b"SIMPLE" * 1000
    compressed = gzip.compress(data)

    assert ByteSource(compressed).read(0, 6) == b"SIMPLE"
    assert ByteSource(compressed).size() == len(data)
    assert ByteSource(compressed, decompress=False).read(0, 2) == b"\x1f\x8b"

def test_gzip_file_is_inflated(temp_file):
    """Gzip files are inflated."""
    with open(temp_file.name, "wb") as f:
        f.write(gzip.compress(b"payload"))
    assert ByteSource(temp_file.name).read(0, 7) == b"payload"

def test_as_source_keeps_sources():
    """Existing sources are not wrapped again."""
    source = ByteSource(b"abc")
    assert as_source(source) is source
    assert as_source(b"abc").read(0, 3) == b"abc"

def test_sink_offsets():
    """append returns the offset of each write."""
    sink = ByteSink()
    assert sink.append(b"abc") == 0
    assert sink.append(b"de") == 3
    assert sink.position == 5
    assert sink.getvalue() == b"abcde"

def test_sink_to_file(temp_file):
    """File sinks have no in-memory value."""
    with open(temp_file.name, "wb") as f:
        sink = ByteSink(f)
        sink.append(b"12345")
        with pytest.raises(IOError):
            sink.getvalue()
    with open(temp_file.name, "rb") as f:
        assert f.read() == b"12345"
