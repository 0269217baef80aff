"""
Container facade: lazy access to the units of a source and assembly of new
containers.
"""

import enum
import logging
from typing import Any, Iterator, List, Optional, Tuple, Union

import numpy as np

from .constants import BLOCK_SIZE, DEFAULT_BITPIX, MAX_HEADER_BLOCKS
from .errors import Diagnostics, IndexOutOfRange
from .header import Header, format_header
from .image import ImageData, bitpix_for_dtype, decode_image, encode_image
from .scanner import Once, Unit, UnitKind, UnitScanner, align, classify, declared_shape, payload_size
from .source import ByteSink, ByteSource, as_source
from .table import (
    TableData,
    TableLayout,
    decode_table,
    derive_column_formats,
    encode_table,
    infer_column_format,
)

logger = logging.getLogger(__name__)

Payload = Union[ImageData, TableData, None]


class CachePolicy(enum.Enum):
    # every unit keeps its own decoded payload
    PER_UNIT = 'per_unit'
    # one slot shared by all units, holding the most recently decoded payload
    SINGLE_SLOT = 'single_slot'


class PerUnitCache:
    """Decoded payloads keyed by unit."""

    def __init__(self):
        self._payloads = {}

    def get(self, unit: Unit) -> Payload:
        return self._payloads.get(unit)

    def put(self, unit: Unit, payload: Payload):
        self._payloads[unit] = payload

    def evict(self, unit: Unit):
        self._payloads.pop(unit, None)

    def __contains__(self, unit):
        return unit in self._payloads


class SingleSlotCache:
    """
    One decoded payload at a time: caching a payload for a unit drops the
    payload of any other unit. Keeps memory bounded when large images are
    visited one after the other.
    """

    def __init__(self):
        self._unit = None
        self._payload = None

    def get(self, unit: Unit) -> Payload:
        if self._unit is unit:
            return self._payload
        return None

    def put(self, unit: Unit, payload: Payload):
        self._unit = unit
        self._payload = payload

    def evict(self, unit: Unit):
        if self._unit is unit:
            self._unit = None
            self._payload = None

    def __contains__(self, unit):
        return self._unit is unit


def _make_cache(policy: CachePolicy):
    if policy is CachePolicy.SINGLE_SLOT:
        return SingleSlotCache()
    return PerUnitCache()


def _image_cards(image: ImageData) -> List[Tuple[str, Any]]:
    return [
        ('BITPIX', bitpix_for_dtype(image.data.dtype)),
        ('NAXIS', 2),
        ('NAXIS1', image.shape[0]),
        ('NAXIS2', image.shape[1]),
    ]


def _table_cards(table: TableData, header: Header) -> List[Tuple[str, Any]]:
    """Structural cards of a table, with TFORMn inferred from the rows."""
    ncols = table.shape[1] if len(table.shape) > 1 else 0
    cards = []
    formats = []
    for i in range(1, ncols + 1):
        if header.has(f'TFORM{i}'):
            formats.append(header.get_string(f'TFORM{i}'))
        else:
            column = [row[i - 1] if i - 1 < len(row) else None for row in table.rows]
            formats.append(infer_column_format(column))

    # row stride from the formats as they will be declared
    declared = Header({'TFIELDS': ncols})
    for i, tform in enumerate(formats, 1):
        declared.set(f'TFORM{i}', tform)
    stride = sum(fmt.size for fmt in derive_column_formats(declared))

    cards += [
        ('BITPIX', 8),
        ('NAXIS', 2),
        ('NAXIS1', stride),
        ('NAXIS2', len(table.rows)),
        ('PCOUNT', 0),
        ('GCOUNT', 1),
        ('TFIELDS', ncols),
    ]
    for i in range(1, ncols + 1):
        key = table.keys[i - 1] if i - 1 < len(table.keys) else None
        cards.append((f'TTYPE{i}', key or f'COL_{i}'))
        cards.append((f'TFORM{i}', formats[i - 1]))
    return cards


def synthesize_header(payload: Payload, header: Optional[Header] = None, primary: bool = True) -> Header:
    """
    Complete a header with the cards needed to describe ``payload``.

    Structural cards come first in their conventional order; cards already
    present in ``header`` keep their value and comment. Every other card of
    ``header`` follows.
    """
    header = header if header is not None else Header()
    cards: List[Tuple[str, Any]] = []

    if primary:
        cards.append(('SIMPLE', True))
    elif isinstance(payload, TableData):
        cards.append(('XTENSION', 'BINTABLE'))
    else:
        cards.append(('XTENSION', 'IMAGE'))

    if isinstance(payload, ImageData):
        cards += _image_cards(payload)
        if not primary:
            cards += [('PCOUNT', 0), ('GCOUNT', 1)]
    elif isinstance(payload, TableData):
        cards += _table_cards(payload, header)
    else:
        cards += [('BITPIX', 8), ('NAXIS', 0)]

    result = Header()
    for key, value in cards:
        card = header.get_card(key)
        if card is not None:
            result.append(card)
        else:
            result.set(key, value)
    for card in header.cards():
        if card.key not in result:
            result.append(card)
    return result


class Container:
    """
    An ordered sequence of units.

    A container opened on a source scans it lazily the first time the units
    are needed; payloads are decoded on first access and cached according to
    the cache policy. Units can be added, replaced and removed, and the whole
    sequence serialized back to bytes.
    """

    def __init__(self, source=None, cache_policy: CachePolicy = CachePolicy.PER_UNIT,
                 max_blocks: int = MAX_HEADER_BLOCKS, decompress: bool = True):
        """
        Initialize a Container.

        Args:
            source: Bytes, a path, a binary file object or a ByteSource to
                    read units from; None for an empty container
            cache_policy: How decoded payloads are kept
            max_blocks: Bound on the header blocks searched for END per unit
            decompress: Inflate gzip input before scanning
        """
        self.source = as_source(source, decompress=decompress) if source is not None else None
        self.cache_policy = CachePolicy(cache_policy)
        self.diagnostics = Diagnostics()
        self._cache = _make_cache(self.cache_policy)
        self._scanner = UnitScanner(self.source, max_blocks=max_blocks) if self.source is not None else None
        self._units = Once(self._load_units)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        if self.source is not None:
            self.source.close()

    def _load_units(self) -> List[Unit]:
        if self._scanner is None:
            return []
        units = self._scanner.scan()
        self.diagnostics.extend(self._scanner.diagnostics)
        return units

    def scan(self) -> List[Unit]:
        """
        Locate the units of the source.

        Only the first call reads the source; later calls, including
        concurrent first calls, share its result.
        """
        return self._units.get()

    @property
    def units(self) -> List[Unit]:
        return self.scan()

    def _check_index(self, index: int) -> int:
        count = len(self.units)
        if not isinstance(index, (int, np.integer)) or isinstance(index, bool) or not 0 <= index < count:
            raise IndexOutOfRange(f"Invalid unit index: {index} (container has {count} units)")
        return int(index)

    def unit(self, index: int) -> Unit:
        return self.units[self._check_index(index)]

    def get_header(self, index: int) -> Header:
        return self.unit(index).header

    def headers(self) -> List[Header]:
        return [unit.header for unit in self.units]

    def _decode(self, unit: Unit, index: int) -> Payload:
        diagnostics = Diagnostics(unit=index)
        logger.debug("decoding unit %d", index)
        try:
            if unit.kind is UnitKind.TABLE:
                return decode_table(unit.header, self.source, unit.data_offset, diagnostics)
            if unit.kind is UnitKind.IMAGE or (
                    unit.header.has('NAXIS1') and unit.header.has('NAXIS2')):
                return decode_image(unit.header, self.source, unit.data_offset, diagnostics)
            return None
        finally:
            self.diagnostics.extend(diagnostics)

    def get_payload(self, index: int) -> Payload:
        """
        Return the payload of a unit, decoding it on first access.

        Raises:
            IndexOutOfRange: If index is not in [0, len)
            UnsupportedElementWidth: If the unit declares an unsupported BITPIX
        """
        unit = self.unit(index)
        if unit.payload is not None or not unit.is_scanned:
            return unit.payload
        if unit in self._cache:
            return self._cache.get(unit)

        payload = self._decode(unit, index)
        self._cache.put(unit, payload)
        return payload

    def get_row(self, index: int, row: int) -> List[Any]:
        """
        Decode one row of a table unit without decoding the whole table.

        Raises:
            IndexOutOfRange: If either index is out of range
            TypeError: If the unit is not a table
        """
        unit = self.unit(index)
        if unit.kind is not UnitKind.TABLE:
            raise TypeError(f"Unit {index} is not a table")
        if unit.payload is not None or not unit.is_scanned:
            rows = unit.payload.rows if unit.payload is not None else []
            if not 0 <= row < len(rows):
                raise IndexOutOfRange(f"Invalid row index: {row}")
            return rows[row]
        layout = TableLayout.from_header(unit.header, Diagnostics(unit=index))
        return layout.decode_row(self.source, unit.data_offset, row)

    def add_unit(self, payload: Payload = None, header: Optional[Header] = None) -> Unit:
        """
        Append a unit.

        Cards needed to describe the payload are added to the header when
        missing: SIMPLE for the first unit, XTENSION for the others, BITPIX,
        NAXIS*, and for tables TFIELDS, TTYPEn and TFORMn. Cards passed by
        the caller are never overwritten.

        Args:
            payload: An ImageData, a TableData, a 2-D numpy array or None
            header: Optional Header (or dict of cards) for the unit

        Returns:
            Unit: The new unit
        """
        if isinstance(payload, np.ndarray):
            payload = image_from_array(payload)
        if header is not None and not isinstance(header, Header):
            header = Header(header)

        units = self.units
        header = synthesize_header(payload, header, primary=not units)
        unit = Unit(header, classify(header), declared_shape(header), payload=payload)
        units.append(unit)
        return unit

    def set_payload(self, index: int, payload: Payload):
        """
        Replace the payload of a unit and update its size cards to match.

        Raises:
            IndexOutOfRange: If index is not in [0, len)
            TypeError: If a table unit is given an image or a non-table unit
                       is given a table
        """
        unit = self.unit(index)
        if isinstance(payload, np.ndarray):
            payload = image_from_array(payload)
        if payload is not None:
            is_table = isinstance(payload, TableData)
            if not is_table and not isinstance(payload, ImageData):
                raise TypeError(f"Unsupported payload type: {type(payload).__name__}")
            if is_table != (unit.kind is UnitKind.TABLE):
                raise TypeError(f"Cannot assign {payload.kind} payload to {unit.kind.value} unit {index}")

        if isinstance(payload, ImageData):
            unit.header.set('NAXIS', 2)
            unit.header.set('NAXIS1', payload.shape[0])
            unit.header.set('NAXIS2', payload.shape[1])
            if not unit.header.has('BITPIX'):
                unit.header.set('BITPIX', bitpix_for_dtype(payload.data.dtype))
        elif isinstance(payload, TableData):
            unit.header.set('NAXIS2', len(payload.rows))

        unit.payload = payload
        unit.shape = declared_shape(unit.header)
        self._cache.evict(unit)

    def remove_unit(self, index: int) -> Unit:
        unit = self.units.pop(self._check_index(index))
        self._cache.evict(unit)
        return unit

    def iter_units(self) -> Iterator[Tuple[int, Header, Payload]]:
        for index, unit in enumerate(self.units):
            yield index, unit.header, self.get_payload(index)

    def __len__(self):
        return len(self.units)

    def __iter__(self):
        return iter(self.units)

    def __getitem__(self, index: int) -> Payload:
        return self.get_payload(index)

    def _encode_payload(self, unit: Unit) -> bytes:
        header = unit.header
        payload = unit.payload
        if isinstance(payload, ImageData):
            return encode_image(payload,
                                header.get_int('BITPIX', DEFAULT_BITPIX),
                                header.get_number('BSCALE', 1),
                                header.get_number('BZERO', 0))
        if isinstance(payload, TableData):
            stride = header.get_number('NAXIS1')
            return encode_table(payload, derive_column_formats(header, self.diagnostics),
                                int(stride) if stride is not None else None, self.diagnostics)
        return b''

    def write(self, sink: ByteSink) -> int:
        """
        Write every unit to ``sink``.

        Each unit is its header blocks followed by its payload, zero-padded
        to the next block boundary. Assigned payloads are encoded; payloads
        of scanned units that were never replaced are copied from the source.

        Returns:
            int: Number of bytes written
        """
        start = sink.position
        for unit in self.units:
            logger.debug("writing %r at offset %d", unit, sink.position)
            sink.append(format_header(unit.header))

            if unit.payload is not None:
                data = self._encode_payload(unit)
            elif unit.is_scanned:
                data = self.source.read(unit.data_offset, payload_size(unit.header))
            else:
                data = b''

            if data:
                sink.append(data)
                padding = align(len(data), BLOCK_SIZE) - len(data)
                if padding:
                    sink.append(b'\x00' * padding)
        return sink.position - start

    def serialize(self) -> bytes:
        sink = ByteSink()
        self.write(sink)
        return sink.getvalue()


def image_from_array(array) -> ImageData:
    """
    Wrap a 2-D array as an ImageData.

    The first axis becomes NAXIS1 and the elements are stored in row-major
    order, so image_from_array(a).data equals a.reshape(-1).
    """
    array = np.asarray(array)
    if array.ndim != 2:
        raise ValueError(f"Expected a 2-D array, got {array.ndim} dimensions")
    return ImageData(array.shape, array.reshape(-1))


def open_fits(source, **kwargs) -> Container:
    """Open a container and scan its units."""
    container = Container(source, **kwargs)
    container.scan()
    return container


class File:
    """
    Read or write a container file.

    In read mode the units of the file are scanned lazily; in write mode the
    units passed to write() are serialized when the file is closed.
    """

    def __init__(self, filename: str, mode: str = 'r', cache_policy: CachePolicy = CachePolicy.PER_UNIT):
        """
        Initialize a File object.

        Args:
            filename: Path to the file
            mode: 'r' for reading, 'w' for writing
            cache_policy: Payload cache policy used in read mode
        """
        self.filename = filename
        self.mode = mode
        self.cache_policy = cache_policy
        self.container = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        # nothing is written if the block raised
        self.close(flush=exc_type is None)

    def open(self):
        if self.mode == 'r':
            self.container = Container(ByteSource(self.filename), cache_policy=self.cache_policy)
        elif self.mode == 'w':
            self.container = Container()
        else:
            raise ValueError(f"Unsupported mode: {self.mode}")

    def close(self, flush: bool = True):
        if self.container is None:
            return
        if self.mode == 'w' and flush:
            with open(self.filename, 'wb') as f:
                self.container.write(ByteSink(f))
        self.container.close()
        self.container = None

    def _require(self, mode: str) -> Container:
        if self.container is None:
            raise IOError("File is not open")
        if self.mode != mode:
            raise IOError(f"File is not open in {'read' if mode == 'r' else 'write'} mode")
        return self.container

    def write(self, payload: Payload = None, header: Optional[Header] = None) -> Unit:
        """Append a unit; see Container.add_unit."""
        return self._require('w').add_unit(payload, header)

    def read(self) -> List[Payload]:
        """Decode and return the payload of every unit."""
        container = self._require('r')
        return [container.get_payload(i) for i in range(len(container))]

    def headers(self) -> List[Header]:
        return self._require('r').headers()

    def __getitem__(self, index: int) -> Payload:
        return self._require('r').get_payload(index)

    def __len__(self):
        if self.container is None:
            raise IOError("File is not open")
        return len(self.container)
