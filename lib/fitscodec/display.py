"""
Helpers working on decoded payloads: z-scale display limits and summary
statistics.
"""

from typing import Any, List, Tuple

import numpy as np

from .image import ImageData
from .table import TableData


def _linefit(x: np.ndarray, y: np.ndarray, good: np.ndarray) -> Tuple[float, float]:
    """Least-squares slope and intercept over the good samples."""
    xg = x[good]
    yg = y[good]
    count = len(xg)
    sumx = xg.sum()
    sumy = yg.sum()
    sumxy = (xg * yg).sum()
    sumxx = (xg * xg).sum()

    delta = count * sumxx - sumx * sumx
    if delta == 0:
        return 0.0, 0.0
    slope = (count * sumxy - sumx * sumy) / delta
    intercept = (sumxx * sumy - sumx * sumxy) / delta
    return float(slope), float(intercept)


def _grow(badpix: np.ndarray, ngrow: int) -> np.ndarray:
    """Mark the ngrow - 1 samples after every rejected sample as rejected too."""
    result = badpix.copy()
    for i in np.flatnonzero(badpix):
        result[i:i + ngrow] = True
    return result


def zscale_limits(values, krej: float = 2.5, contrast: float = 0.25, n_samples: int = 1000,
                  max_reject: float = 0.5, min_npixels: int = 5, max_iterations: int = 5) -> Tuple[float, float]:
    """
    Estimate display limits with the z-scale algorithm.

    A strided sample of at most n_samples finite values is sorted and fitted
    with a line, rejecting samples further than krej standard deviations from
    the fit (and their neighbours) for up to max_iterations rounds. The slope
    divided by the contrast sets the range around the median.

    Args:
        values: Any array-like of numbers; NaN and infinities are ignored
        krej: Rejection threshold in standard deviations
        contrast: Scaling of the fitted slope
        n_samples: Maximum number of samples
        max_reject: Maximum fraction of rejected samples
        min_npixels: Minimum number of samples left after rejection
        max_iterations: Maximum number of rejection rounds

    Returns:
        Tuple[float, float]: (vmin, vmax); (0, 0) when there are no finite values
    """
    data = np.asarray(values, dtype=np.float64).reshape(-1)
    data = data[np.isfinite(data)]

    stride = max(1, len(data) // n_samples)
    samples = np.sort(data[::stride][:n_samples])

    npix = len(samples)
    if npix == 0:
        return 0, 0

    vmin = samples[0]
    vmax = samples[-1]

    minpix = max(min_npixels, int(npix * max_reject))
    x = np.arange(npix, dtype=np.float64)

    ngoodpix = npix
    last_ngoodpix = npix + 1
    badpix = np.zeros(npix, dtype=bool)
    ngrow = max(1, int(0.01 * npix))

    slope, intercept = 0.0, 0.0
    for _ in range(max_iterations):
        if ngoodpix >= last_ngoodpix or ngoodpix < minpix:
            break

        slope, intercept = _linefit(x, samples, ~badpix)
        flat = samples - (slope * x + intercept)

        kept = flat[~badpix]
        # nothing left to measure: no comparison can reject a sample
        threshold = krej * kept.std() if len(kept) else np.nan
        badpix = (flat < -threshold) | (flat > threshold)
        badpix = _grow(badpix, ngrow)

        last_ngoodpix = ngoodpix
        ngoodpix = int(np.count_nonzero(~badpix))

    if ngoodpix >= minpix:
        if contrast > 0:
            slope = slope / contrast

        center = (npix - 1) // 2
        median = samples[center]
        imin = median - (center - 1) * slope
        imax = median + (npix - center) * slope

        if abs(slope) < 1e-6 or abs(imin - imax) < 1e-6:
            return float(vmin), float(vmax)

        vmin = max(vmin, imin)
        vmax = min(vmax, imax)

    return float(vmin), float(vmax)


def _describe(values) -> Tuple[float, float, float, float]:
    """Return (min, max, mean, population std) of finite numeric values."""
    try:
        arr = np.asarray(values, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError):
        raise ValueError('Non-numeric value encountered in data') from None
    if not np.all(np.isfinite(arr)):
        raise ValueError('Non-numeric value encountered in data')
    if len(arr) == 0:
        return 0, 0, 0, 0
    return float(arr.min()), float(arr.max()), float(arr.mean()), float(arr.std())


def get_stats(payload) -> Tuple[List[str], List[List[Any]]]:
    """
    Summarize a decoded payload.

    Returns:
        Tuple[List[str], List[List]]: Column keys and rows 'Min', 'Max',
        'Mean' and 'Std Dev'. Images give a single 'Image Data' column,
        tables one column per table column.

    Raises:
        ValueError: If a value is not a finite number
        TypeError: If the payload is neither an image nor a table
    """
    if payload is None:
        return [], []
    if not isinstance(payload, (ImageData, TableData)):
        raise TypeError('Unsupported data type')

    if isinstance(payload, ImageData):
        if len(payload.data) == 0:
            return [], []
        columns = [_describe(payload.data)]
        keys = ['', 'Image Data']
    else:
        if not payload.rows:
            return [], []
        columns = [_describe(payload.column(i)) for i in range(len(payload.keys))]
        keys = [''] + payload.keys

    labels = ['Min', 'Max', 'Mean', 'Std Dev']
    rows = [[label] + [column[i] for column in columns] for i, label in enumerate(labels)]
    return keys, rows
