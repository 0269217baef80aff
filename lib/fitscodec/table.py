"""
Table codec: fixed-stride binary rows laid out by per-column TFORMn codes.

Type codes:

    L  logical, 1 byte ('T' is true)
    B  unsigned 8-bit integer
    I  signed 16-bit integer
    J  signed 32-bit integer
    E  32-bit float
    D  64-bit float
    A  ASCII character, the repeat count is the string width

A format is an optional repeat count followed by one code ('1I', '2E', '16A').
All multi-byte fields are big-endian.
"""

import logging
import re
import struct
from typing import Any, List, NamedTuple, Optional, Sequence, Union

import numpy as np

from .errors import (
    Diagnostics,
    IndexOutOfRange,
    MalformedColumnFormat,
    RowStrideMismatch,
    ShortPayload,
    UnsupportedElementWidth,
    report,
)
from .header import Header

logger = logging.getLogger(__name__)

# Size in bytes of one element of each type code
TYPE_SIZES = {
    'L': 1,
    'B': 1,
    'I': 2,
    'J': 4,
    'E': 4,
    'D': 8,
    'A': 1,
}

# struct format characters of the numeric type codes
STRUCT_CODES = {
    'B': 'B',
    'I': 'h',
    'J': 'i',
    'E': 'f',
    'D': 'd',
}

_TFORM_RE = re.compile(r'^(\d*)([A-Z])$')

NO_DIMENSION = 'nodim'


class ColumnFormat(NamedTuple):
    count: int
    code: str
    size: int
    # display key and 1-based declared column number
    key: Optional[str] = None
    index: Optional[int] = None


def parse_column_format(text: str, key: Optional[str] = None, index: Optional[int] = None) -> ColumnFormat:
    """
    Parse a TFORMn value such as '1I', 'E' or '20A'.

    Raises:
        MalformedColumnFormat: If the text is not a repeat count followed by a
                               supported type code
    """
    match = _TFORM_RE.match(text.strip())
    if not match or match.group(2) not in TYPE_SIZES:
        raise MalformedColumnFormat(f"Invalid TFORM: '{text}'")
    count = int(match.group(1) or '1')
    code = match.group(2)
    return ColumnFormat(count, code, count * TYPE_SIZES[code], key, index)


def sanitize_name(name: str) -> str:
    """Drop every character that cannot appear in an identifier."""
    return re.sub(r'\W', '', name, flags=re.ASCII)


def column_key(header: Header, index: int) -> str:
    """
    Display key of column ``index`` (1-based): the sanitized TTYPEn,
    followed by ' (unit)' when a TUNITn other than 'nodim' is declared.
    """
    name = f'COL_{index}'
    raw_name = header.get_string(f'TTYPE{index}')
    if raw_name and sanitize_name(raw_name.strip()):
        name = sanitize_name(raw_name.strip())

    raw_unit = header.get_string(f'TUNIT{index}')
    unit = sanitize_name(raw_unit.strip()) if raw_unit else ''
    if unit and unit.lower() != NO_DIMENSION:
        return f'{name} ({unit})'
    return name


def derive_column_formats(header: Header, diagnostics: Optional[Diagnostics] = None) -> List[ColumnFormat]:
    """
    Build the column formats of a table header.

    A column with a missing or unparseable TFORMn is dropped and reported.
    The remaining columns keep their declaration order and their byte
    offsets are computed by walking only the kept formats, so a dropped
    column shifts every column after it.
    """
    formats = []
    for i in range(1, header.get_int('TFIELDS', 0) + 1):
        raw_format = header.get_string(f'TFORM{i}')
        if not raw_format or not raw_format.strip():
            report(diagnostics, MalformedColumnFormat, f"Missing TFORM for column {i}")
            continue
        try:
            formats.append(parse_column_format(raw_format, column_key(header, i), i))
        except MalformedColumnFormat:
            report(diagnostics, MalformedColumnFormat,
                   f"Invalid TFORM for column {i}: '{raw_format}'")
    return formats


def _scalar(value):
    if isinstance(value, np.generic):
        return value.item()
    return value


def decode_field(raw: bytes, fmt: ColumnFormat) -> Any:
    """
    Decode the bytes of one field.

    Returns a scalar for a repeat count of 1 and a list otherwise; ASCII
    columns always give a single string with NULs removed and blanks trimmed.

    Raises:
        UnsupportedElementWidth: If the type code is unknown
    """
    if fmt.code == 'A':
        return raw[:fmt.count].replace(b'\x00', b'').decode('ascii', errors='replace').strip()
    if fmt.code == 'L':
        values = [byte == ord('T') for byte in raw[:fmt.count]]
    elif fmt.code in STRUCT_CODES:
        values = list(struct.unpack(f'>{fmt.count}{STRUCT_CODES[fmt.code]}', raw[:fmt.size]))
    else:
        raise UnsupportedElementWidth(f"Unsupported field type: {fmt.code}")

    if fmt.count == 1:
        return values[0]
    return values


def encode_field(value: Any, fmt: ColumnFormat) -> bytes:
    """
    Encode one field into exactly ``fmt.size`` bytes.

    Missing values (None, or a sequence shorter than the repeat count) are
    written as zero. ASCII values are NUL-padded or truncated to the width.

    Raises:
        UnsupportedElementWidth: If the type code is unknown
    """
    if fmt.code == 'A':
        if value is None:
            data = b''
        elif isinstance(value, bytes):
            data = value
        else:
            data = str(value).encode('ascii', errors='replace')
        return data[:fmt.count].ljust(fmt.count, b'\x00')

    if value is None:
        values = []
    elif isinstance(value, (list, tuple, np.ndarray)):
        values = [_scalar(v) for v in value]
    else:
        values = [_scalar(value)]
    values = values[:fmt.count] + [None] * (fmt.count - len(values))

    if fmt.code == 'L':
        return b''.join(b'\x00' if v is None else (b'T' if v else b'F') for v in values)

    if fmt.code not in STRUCT_CODES:
        raise UnsupportedElementWidth(f"Unsupported field type: {fmt.code}")

    if fmt.code in 'ED':
        values = [0.0 if v is None else float(v) for v in values]
    else:
        values = [0 if v is None else int(v) for v in values]
    return struct.pack(f'>{fmt.count}{STRUCT_CODES[fmt.code]}', *values)


def encode_row(values: Sequence[Any], formats: List[ColumnFormat]) -> bytes:
    """Encode one row; columns without a value are written as zero."""
    fields = []
    for i, fmt in enumerate(formats):
        fields.append(encode_field(values[i] if i < len(values) else None, fmt))
    return b''.join(fields)


def decode_row_bytes(raw: bytes, formats: List[ColumnFormat]) -> List[Any]:
    """Decode one row from its bytes by walking the formats in order."""
    row = []
    position = 0
    for fmt in formats:
        row.append(decode_field(raw[position:position + fmt.size], fmt))
        position += fmt.size
    return row


class TableData:
    """
    A decoded table payload.

    ``rows`` holds one list of field values per row; the type of each field
    is fixed by its column format. ``keys`` are the column display keys in
    the same order as the fields.
    """

    kind = 'table'

    def __init__(self, shape, keys: List[str], rows: List[List[Any]]):
        self.shape = tuple(int(n) for n in shape)
        self.keys = list(keys)
        self.rows = rows

    def column(self, key: Union[str, int]) -> List[Any]:
        """Values of one column, selected by display key or position."""
        index = self.keys.index(key) if isinstance(key, str) else key
        return [row[index] for row in self.rows]

    def __len__(self):
        return len(self.rows)

    def __eq__(self, other):
        if not isinstance(other, TableData):
            return NotImplemented
        return self.shape == other.shape and self.keys == other.keys and self.rows == other.rows

    def __repr__(self):
        return f"TableData(shape={self.shape}, keys={self.keys})"


class TableLayout:
    """
    Row layout of a table: column formats, declared stride and row count.

    The declared stride (NAXIS1) is used for row offsets even when it differs
    from the sum of the column sizes; the difference is only reported.
    """

    def __init__(self, formats: List[ColumnFormat], row_stride: int, rows: int):
        self.formats = formats
        self.row_stride = row_stride
        self.rows = rows

    @classmethod
    def from_header(cls, header: Header, diagnostics: Optional[Diagnostics] = None) -> 'TableLayout':
        layout = cls(derive_column_formats(header, diagnostics),
                     max(0, header.get_int('NAXIS1', 0)),
                     max(0, header.get_int('NAXIS2', 0)))
        if layout.computed_stride != layout.row_stride:
            report(diagnostics, RowStrideMismatch,
                   f"Mismatch between computed row length ({layout.computed_stride}) "
                   f"and NAXIS1 ({layout.row_stride}).")
        return layout

    @property
    def computed_stride(self) -> int:
        return sum(fmt.size for fmt in self.formats)

    @property
    def keys(self) -> List[str]:
        return [fmt.key or f'COL_{i + 1}' for i, fmt in enumerate(self.formats)]

    def row_offset(self, data_offset: int, row_index: int) -> int:
        return data_offset + row_index * self.row_stride

    def decode_row(self, source, data_offset: int, row_index: int) -> List[Any]:
        """
        Read and decode a single row.

        Raises:
            IndexOutOfRange: If row_index is not in [0, rows)
            ShortPayload: If the source ends inside the row
        """
        if not 0 <= row_index < self.rows:
            raise IndexOutOfRange(f"Invalid row index: {row_index}")
        raw = source.read(self.row_offset(data_offset, row_index), self.computed_stride)
        if len(raw) < self.computed_stride:
            raise ShortPayload(f"Row {row_index} extends past the end of the data")
        return decode_row_bytes(raw, self.formats)

    def encode_row(self, values: Sequence[Any]) -> bytes:
        """Encode a row, padded with zeros or truncated to the row stride."""
        raw = encode_row(values, self.formats)
        return raw[:self.row_stride].ljust(self.row_stride, b'\x00')


def decode_table(header: Header, source, offset: int,
                 diagnostics: Optional[Diagnostics] = None) -> TableData:
    """
    Decode every row of a table payload.

    Args:
        header: The unit header (TFIELDS, TFORMn, TTYPEn, TUNITn, NAXIS1, NAXIS2)
        source: A ByteSource
        offset: Byte offset of the payload
        diagnostics: Optional collector for dropped columns, a stride
                     mismatch or a payload that ends early

    Returns:
        TableData: shape is (rows, kept columns)
    """
    layout = TableLayout.from_header(header, diagnostics)
    computed = layout.computed_stride
    stride = layout.row_stride

    # a row may reach past the declared stride when the columns are wider
    span = layout.rows * stride + max(0, computed - stride) if layout.rows else 0
    raw = source.read(offset, span)

    rows = []
    for r in range(layout.rows):
        start = r * stride
        if start + computed > len(raw):
            report(diagnostics, ShortPayload,
                   f"Table data ends after {r} of {layout.rows} rows")
            break
        rows.append(decode_row_bytes(raw[start:start + computed], layout.formats))

    logger.debug("decoded %d of %d rows, %d columns", len(rows), layout.rows, len(layout.formats))
    return TableData((len(rows), len(layout.formats)), layout.keys, rows)


def encode_table(table: TableData, formats: List[ColumnFormat], row_stride: Optional[int] = None,
                 diagnostics: Optional[Diagnostics] = None) -> bytes:
    """
    Encode the rows of a table.

    Args:
        table: The table payload
        formats: Column formats, in row order
        row_stride: Declared bytes per row; defaults to the sum of the
                    column sizes. Rows are zero-padded or truncated to it.
        diagnostics: Optional collector for a stride mismatch

    Raises:
        TypeError: If a row is not a list or tuple
    """
    layout = TableLayout(formats, 0, len(table.rows))
    if row_stride is None:
        row_stride = layout.computed_stride
    elif row_stride != layout.computed_stride:
        report(diagnostics, RowStrideMismatch,
               f"Mismatch between computed row length ({layout.computed_stride}) "
               f"and NAXIS1 ({row_stride}).")
    layout.row_stride = row_stride

    chunks = []
    for r, row in enumerate(table.rows):
        if not isinstance(row, (list, tuple)):
            raise TypeError(f"Row {r} is not a list")
        chunks.append(layout.encode_row(row))
    return b''.join(chunks)


def infer_column_format(values: Sequence[Any]) -> str:
    """
    Choose a TFORM for a column of Python values.

    The first non-missing value decides the type: bool -> L, integer -> J,
    real -> D, text -> A with the width of the longest string. Sequences
    use their length as the repeat count.
    """
    sample = next((v for v in values if v is not None), None)
    if isinstance(sample, (str, bytes)):
        width = max((len(v) for v in values if isinstance(v, (str, bytes))), default=1)
        return f'{max(width, 1)}A'

    count = 1
    if isinstance(sample, (list, tuple, np.ndarray)):
        count = max(len(v) for v in values if isinstance(v, (list, tuple, np.ndarray)))
        sample = next((v for v in sample if v is not None), None)

    sample = _scalar(sample)
    if isinstance(sample, bool):
        code = 'L'
    elif isinstance(sample, int):
        code = 'J'
    else:
        code = 'D'
    return f'{count}{code}'
