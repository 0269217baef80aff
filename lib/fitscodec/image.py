"""
Array codec: big-endian numeric images with affine rescaling.
"""

import logging
from typing import Optional, Tuple

import numpy as np

from .constants import DEFAULT_BITPIX
from .errors import Diagnostics, ShapeMismatch, ShortPayload, UnsupportedElementWidth, report
from .header import Header

logger = logging.getLogger(__name__)

# On-disk dtype for each supported BITPIX value
BITPIX_DTYPES = {
    8: np.dtype('>u1'),
    16: np.dtype('>i2'),
    32: np.dtype('>i4'),
    -32: np.dtype('>f4'),
    -64: np.dtype('>f8'),
}

# Element width chosen for the dtype of an array being written
DTYPE_BITPIX = {
    np.dtype('uint8'): 8,
    np.dtype('int16'): 16,
    np.dtype('int32'): 32,
    np.dtype('float32'): -32,
    np.dtype('float64'): -64,
}


class ImageData:
    """
    A decoded image payload.

    ``shape`` is (NAXIS1, NAXIS2) and ``data`` a flat numpy array holding the
    elements in file order.
    """

    kind = 'image'

    def __init__(self, shape: Tuple[int, int], data):
        self.shape = tuple(int(n) for n in shape)
        self.data = np.asarray(data)

    def __len__(self):
        return len(self.data)

    def __eq__(self, other):
        if not isinstance(other, ImageData):
            return NotImplemented
        return self.shape == other.shape and np.array_equal(self.data, other.data)

    def __repr__(self):
        return f"ImageData(shape={self.shape}, dtype={self.data.dtype})"


def dtype_for_bitpix(bitpix) -> np.dtype:
    """
    Return the big-endian dtype of an element width.

    Raises:
        UnsupportedElementWidth: If the width is not one of 8, 16, 32, -32, -64
    """
    try:
        return BITPIX_DTYPES[bitpix]
    except (KeyError, TypeError):
        raise UnsupportedElementWidth(f"Unsupported BITPIX value: {bitpix}") from None


def bitpix_for_dtype(dtype) -> int:
    """Element width used to store an array of ``dtype``."""
    dtype = np.dtype(dtype).newbyteorder('=')
    for candidate, bitpix in DTYPE_BITPIX.items():
        if dtype == candidate:
            return bitpix
    if np.issubdtype(dtype, np.floating):
        return -64
    if np.issubdtype(dtype, np.integer) and dtype.itemsize > 2:
        return 32
    return DEFAULT_BITPIX


def decode_image(header: Header, source, offset: int,
                 diagnostics: Optional[Diagnostics] = None) -> ImageData:
    """
    Decode the image payload described by ``header``.

    Args:
        header: The unit header (BITPIX, NAXIS1, NAXIS2, BSCALE, BZERO)
        source: A ByteSource
        offset: Byte offset of the payload
        diagnostics: Optional collector for a payload that ends early

    Returns:
        ImageData: Integer widths are rescaled as raw * BSCALE + BZERO; with
                   the default scale and zero the integer dtype is kept.
                   Floating point widths are returned as stored.

    Raises:
        UnsupportedElementWidth: If BITPIX is missing or not supported
    """
    rows = max(0, header.get_int('NAXIS1', 0))
    columns = max(0, header.get_int('NAXIS2', 0))
    dtype = dtype_for_bitpix(header.get_number('BITPIX'))

    expected = rows * columns
    raw = source.read(offset, expected * dtype.itemsize)
    count = len(raw) // dtype.itemsize
    if count != expected:
        report(diagnostics, ShortPayload,
               f"Parsed data length ({count}) does not match expected ({expected}).")

    # native byte order for the caller
    data = np.frombuffer(raw, dtype=dtype, count=count).astype(dtype.newbyteorder('='))

    if dtype.kind in 'iu':
        bscale = header.get_number('BSCALE', 1)
        bzero = header.get_number('BZERO', 0)
        if bscale != 1 or bzero != 0:
            data = data * np.float64(bscale) + np.float64(bzero)

    logger.debug("decoded %dx%d image, BITPIX %s", rows, columns, header.get_number('BITPIX'))
    return ImageData((rows, columns), data)


def encode_image(image: ImageData, bitpix: int = DEFAULT_BITPIX, bscale=1, bzero=0) -> bytes:
    """
    Encode an image payload.

    Integer widths store round((value - bzero) / bscale), halves rounded up,
    wrapped to the storage width. Floating point widths store the values
    unchanged.

    Raises:
        ShapeMismatch: If the shape is not 2-D or does not match the data
        UnsupportedElementWidth: If bitpix is not supported
    """
    if len(image.shape) != 2:
        raise ShapeMismatch("Only 2D images are supported for writing.")
    data = np.asarray(image.data).reshape(-1)
    if image.shape[0] * image.shape[1] != len(data):
        raise ShapeMismatch("Data length does not match shape dimensions.")

    dtype = dtype_for_bitpix(bitpix)

    if dtype.kind in 'iu':
        values = (data.astype(np.float64) - bzero) / bscale
        values = np.floor(values + 0.5).astype(np.int64)
        stored = values.astype(dtype)
    else:
        stored = data.astype(dtype)

    return stored.tobytes()
