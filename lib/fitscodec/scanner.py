"""
Unit scanner: walks a byte source and locates every unit.

Offsets are derived from the declared header fields only; payload bytes are
never touched while scanning.
"""

import enum
import logging
import threading
from typing import Any, Callable, List, Optional, Tuple

from .constants import BLOCK_SIZE, MAX_AXES, MAX_HEADER_BLOCKS
from .errors import Diagnostics, MetadataTruncated
from .header import Header, parse_header

logger = logging.getLogger(__name__)


def align(offset: int, block_size: int = BLOCK_SIZE) -> int:
    """Return the smallest multiple of ``block_size`` that is >= ``offset``."""
    return -(-offset // block_size) * block_size


class UnitKind(enum.Enum):
    IMAGE = 'image'
    TABLE = 'table'
    HEADER = 'header'


class Unit:
    """
    One unit of the container: a header and the location of its payload.

    Units found by the scanner carry their offsets in the source; units added
    by a caller have no offsets and keep their payload in ``payload``.
    """

    def __init__(self, header: Header, kind: UnitKind, shape: Tuple[int, ...] = (),
                 header_offset: Optional[int] = None, header_size: int = 0,
                 data_offset: Optional[int] = None, data_size: int = 0,
                 payload: Any = None):
        self.header = header
        self.kind = kind
        self.shape = tuple(shape)
        self.header_offset = header_offset
        self.header_size = header_size
        self.data_offset = data_offset
        self.data_size = data_size
        # an explicitly assigned payload; decoded payloads live in the container cache
        self.payload = payload

    @property
    def next_offset(self) -> Optional[int]:
        """Offset of the unit that follows this one in the source."""
        if self.data_offset is None:
            return None
        return align(self.data_offset + self.data_size)

    @property
    def is_scanned(self) -> bool:
        return self.data_offset is not None

    def __repr__(self):
        return (f"<Unit {self.kind.value} shape={self.shape} "
                f"header_offset={self.header_offset} data_offset={self.data_offset} "
                f"data_size={self.data_size}>")


def declared_shape(header: Header) -> Tuple[int, ...]:
    """Return (NAXIS1, ..., NAXISn); missing or negative axis sizes count as 0."""
    naxis = min(header.get_int('NAXIS', 0), MAX_AXES)
    return tuple(max(0, header.get_int(f'NAXIS{i}', 0)) for i in range(1, naxis + 1))


def element_bytes(header: Header) -> int:
    return abs(header.get_int('BITPIX', 0)) // 8


def payload_size(header: Header) -> int:
    """Number of payload bytes declared by a header (without padding)."""
    shape = declared_shape(header)
    if not shape:
        return 0
    size = element_bytes(header)
    for dim in shape:
        size *= dim
    return size


def classify(header: Header) -> UnitKind:
    if header.has('TFIELDS'):
        return UnitKind.TABLE
    xtension = header.get_string('XTENSION')
    if xtension is not None and xtension.strip() == 'IMAGE':
        return UnitKind.IMAGE
    return UnitKind.HEADER


def scan_units(source, diagnostics: Optional[Diagnostics] = None,
               max_blocks: int = MAX_HEADER_BLOCKS) -> List[Unit]:
    """
    Locate every unit of a byte source.

    Args:
        source: A ByteSource
        diagnostics: Optional collector for problems that stop the scan early
        max_blocks: Bound on the header blocks searched for END per unit

    Returns:
        List[Unit]: The units in file order

    Raises:
        MetadataTruncated: If the header of the very first unit is broken.
                           A broken header further on ends the scan and the
                           units found up to that point are returned.
    """
    units: List[Unit] = []
    position = 0
    total = source.size()

    while position < total:
        header_offset = position
        try:
            header, header_size = parse_header(source, position, max_blocks=max_blocks)
        except MetadataTruncated as e:
            if not units:
                raise
            message = f"scan stopped at offset {header_offset}: {e}"
            if diagnostics is not None:
                diagnostics.report(MetadataTruncated, message, unit=len(units))
            else:
                logger.warning("%s", message)
            break

        position += header_size
        data_offset = align(position)
        data_size = payload_size(header)

        unit = Unit(header, classify(header), declared_shape(header),
                    header_offset=header_offset, header_size=header_size,
                    data_offset=data_offset, data_size=data_size)
        units.append(unit)
        logger.debug("found %r", unit)

        if unit.next_offset <= header_offset:
            message = f"scan stopped at offset {header_offset}: unit does not advance"
            if diagnostics is not None:
                diagnostics.report(MetadataTruncated, message, unit=len(units) - 1)
            else:
                logger.warning("%s", message)
            break
        position = unit.next_offset

    return units


class Once:
    """
    Compute-once cell.

    The first call to get() runs the function; concurrent callers wait for
    it and receive the same result. If the function raises, nothing is
    stored and the next call tries again.
    """

    def __init__(self, func: Callable[[], Any]):
        self._func = func
        self._lock = threading.Lock()
        self._done = False
        self._value = None

    @property
    def done(self) -> bool:
        return self._done

    def get(self) -> Any:
        if self._done:
            return self._value
        with self._lock:
            if not self._done:
                self._value = self._func()
                self._done = True
        return self._value


class UnitScanner:
    """Memoized scan of one byte source."""

    def __init__(self, source, max_blocks: int = MAX_HEADER_BLOCKS):
        self.source = source
        self.max_blocks = max_blocks
        self.diagnostics = Diagnostics()
        self._once = Once(self._scan)

    def _scan(self) -> List[Unit]:
        return scan_units(self.source, self.diagnostics, max_blocks=self.max_blocks)

    def scan(self) -> List[Unit]:
        return self._once.get()

    @property
    def scanned(self) -> bool:
        return self._once.done
