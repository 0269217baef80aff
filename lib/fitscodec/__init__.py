"""
fitscodec - reader and writer for block-aligned scientific binary containers

A container is a sequence of units. Each unit is a header of 80 column
keyword cards, padded to 2880 byte blocks, optionally followed by a block
aligned binary payload: a 2-D numeric image or a fixed-stride binary table
whose layout is declared in the header.

Features:
- Card and header codec with tagged values (logical, number, text)
- Sequential scan of unit offsets from the declared dimensions only
- Image codec for 8/16/32 bit integers and 32/64 bit floats with BSCALE/BZERO
- Binary table codec for L, B, I, J, E, D and A columns
- Lazy, cached payload decoding and serialization back to bytes
- Optional gzip decompression of the whole input
"""

__version__ = "0.1.0"

from .cards import END, Card, CardTag, format_card, parse_card
from .constants import BLOCK_SIZE, CARD_SIZE
from .container import CachePolicy, Container, File, image_from_array, open_fits, synthesize_header
from .display import get_stats, zscale_limits
from .errors import (
    CardOverflow,
    Diagnostic,
    Diagnostics,
    FitsError,
    IndexOutOfRange,
    MalformedColumnFormat,
    MetadataTruncated,
    RowStrideMismatch,
    ShapeMismatch,
    ShortPayload,
    UnsupportedElementWidth,
)
from .header import Header, format_header, parse_header
from .image import ImageData, decode_image, encode_image
from .scanner import Once, Unit, UnitKind, UnitScanner, align, scan_units
from .source import ByteSink, ByteSource
from .table import (
    ColumnFormat,
    TableData,
    TableLayout,
    decode_table,
    derive_column_formats,
    encode_row,
    encode_table,
    parse_column_format,
)
