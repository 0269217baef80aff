"""
Unit tests for fitscodec - unit scanner

Offsets of every unit must follow from the header fields alone and stay
aligned to the 2880 byte block size.
"""

import os
import sys
import threading
import time
import pytest

# Add the lib directory to the path to import fitscodec
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))) + "/lib")
from fitscodec.errors import Diagnostics, MetadataTruncated
from fitscodec.header import Header, format_header
from fitscodec.scanner import Once, UnitKind, UnitScanner, align, declared_shape, payload_size, scan_units
from fitscodec.source import ByteSource


def padded(data):
    return data + b"\x00" * (-len(data) % 2880)

def image_unit(shape, bitpix=8, primary=True):
    cards = {"SIMPLE": True} if primary else {"XTENSION": "IMAGE"}
    cards.update({"BITPIX": bitpix, "NAXIS": len(shape)})
    for i, n in enumerate(shape, 1):
        cards[f"NAXIS{i}"] = n
    header = Header(cards)
    size = abs(bitpix) // 8
    for n in shape:
        size *= n
    return format_header(header) + padded(b"\x01" * size)

def table_unit(rows):
    header = Header({
        "XTENSION": "BINTABLE", "BITPIX": 8, "NAXIS": 2, "NAXIS1": 4, "NAXIS2": rows,
        "TFIELDS": 1, "TFORM1": "1J",
    })
    return format_header(header) + padded(b"\x00" * 4 * rows)


class CountingSource(ByteSource):
    """ByteSource that counts the reads issued against it."""

    def __init__(self, data):
        super().__init__(data)
        self.reads = 0

    def read(self, offset, length):
        self.reads += 1
        return super().read(offset, length)


def test_align():
    """Offsets round up to the block size."""
    assert align(0) == 0
    assert align(1) == 2880
    assert align(2880) == 2880
    assert align(2881) == 5760
    assert align(10, 8) == 16

def test_single_unit_offsets():
    """Header and payload offsets of a lone unit."""
    source = ByteSource(image_unit((3, 2)))
    units = scan_units(source)

    assert len(units) == 1
    unit = units[0]
    assert unit.header_offset == 0
    assert unit.header_size == 2880
    assert unit.data_offset == 2880
    assert unit.data_size == 6
    assert unit.shape == (3, 2)
    assert unit.next_offset == 5760

def test_header_only_unit():
    """A unit with NAXIS 0 has no payload."""
    data = format_header(Header({"SIMPLE": True, "BITPIX": 8, "NAXIS": 0}))
    units = scan_units(ByteSource(data))
    assert len(units) == 1
    assert units[0].kind is UnitKind.HEADER
    assert units[0].data_size == 0
    assert units[0].next_offset == 2880

def test_units_in_order_and_aligned():
    """Every unit starts where the previous one ends."""
    data = image_unit((10, 10), bitpix=16) + table_unit(3) + image_unit((700, 3), bitpix=-32, primary=False)
    units = scan_units(ByteSource(data))

    assert [unit.kind for unit in units] == [UnitKind.HEADER, UnitKind.TABLE, UnitKind.IMAGE]
    assert [unit.data_size for unit in units] == [200, 12, 8400]

    for previous, unit in zip(units, units[1:]):
        assert unit.header_offset == previous.next_offset
    for unit in units:
        assert unit.header_offset % 2880 == 0
        assert unit.data_offset % 2880 == 0
        assert unit.data_offset == unit.header_offset + unit.header_size
    assert units[-1].next_offset == len(data)

def test_missing_axis_counts_as_zero():
    """An undeclared axis size counts as 0."""
    header = Header({"SIMPLE": True, "BITPIX": 16, "NAXIS": 2, "NAXIS1": 5})
    units = scan_units(ByteSource(format_header(header)))
    assert units[0].shape == (5, 0)
    assert units[0].data_size == 0

def test_broken_trailing_unit_is_reported():
    """A unit without END after a valid one ends the scan with a diagnostic."""
    scanner = UnitScanner(ByteSource(image_unit((3, 2)) + b"NAXIS   =                    0".ljust(2880)))
    units = scanner.scan()

    assert len(units) == 1
    assert len(scanner.diagnostics) == 1
    assert scanner.diagnostics[0].kind is MetadataTruncated
    assert scanner.diagnostics[0].unit == 1

def test_broken_first_unit_raises():
    """A broken first header is fatal."""
    with pytest.raises(MetadataTruncated):
        scan_units(ByteSource(b"NAXIS   =                    0".ljust(2880)))

def test_header_bound():
    """The search for END stops after max_blocks blocks."""
    header = Header({f"KEY{i}": i for i in range(40)})
    data = format_header(header)
    assert len(scan_units(ByteSource(data), max_blocks=2)) == 1
    with pytest.raises(MetadataTruncated):
        scan_units(ByteSource(data), max_blocks=1)

def test_empty_source_has_no_units():
    """An empty source has no units."""
    assert scan_units(ByteSource(b"")) == []

def test_scan_is_memoized():
    """A second scan reads nothing."""
    source = CountingSource(image_unit((3, 2)) + table_unit(2))
    scanner = UnitScanner(source)
    assert not scanner.scanned

    first = scanner.scan()
    reads = source.reads
    second = scanner.scan()

    assert scanner.scanned
    assert first is second
    assert source.reads == reads

def test_once_runs_once_across_threads():
    """Concurrent callers share one computation."""
    calls = []

    def compute():
        time.sleep(0.05)
        calls.append(1)
        return object()

    once = Once(compute)
    results = []
    threads = [threading.Thread(target=lambda: results.append(once.get())) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(calls) == 1
    assert len(results) == 8
    assert all(result is results[0] for result in results)
    assert once.done

def test_once_retries_after_failure():
    """A failed computation is not stored."""
    attempts = []

    def compute():
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("first attempt fails")
        return 42

    once = Once(compute)
    with pytest.raises(RuntimeError):
        once.get()
    assert not once.done
    assert once.get() == 42
    assert len(attempts) == 2

@pytest.mark.parametrize("naxis1", [-2880, -8640, -1])
def test_negative_axis_size_counts_as_zero(naxis1):
    """A negative NAXISn neither stalls the scan nor moves it backwards."""
    broken = Header({"XTENSION": "IMAGE", "BITPIX": 8, "NAXIS": 1, "NAXIS1": naxis1})
    data = image_unit((3, 2)) + format_header(broken) + table_unit(2)
    diagnostics = Diagnostics()
    units = scan_units(ByteSource(data), diagnostics)

    assert [unit.kind for unit in units] == [UnitKind.HEADER, UnitKind.IMAGE, UnitKind.TABLE]
    assert units[1].shape == (0,)
    assert units[1].data_size == 0
    assert units[1].next_offset == units[2].header_offset
    assert list(diagnostics) == []

def test_declared_shape_clamps_axes():
    """Negative sizes become 0 and the axis count is bounded."""
    header = Header({"NAXIS": 2, "NAXIS1": -5, "NAXIS2": 4})
    assert declared_shape(header) == (0, 4)
    assert payload_size(Header({"BITPIX": 8, "NAXIS": 2, "NAXIS1": -5, "NAXIS2": 4})) == 0
    assert len(declared_shape(Header({"NAXIS": 10 ** 9}))) == 999
