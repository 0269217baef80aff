"""
Error taxonomy and the diagnostic channel of fitscodec.

Fatal conditions are raised as exceptions. Recoverable conditions (a dropped
table column, a row stride that disagrees with the column sizes, a payload
that ends early) are recorded as Diagnostic entries so the caller can inspect
them after the fact, and are also logged at WARNING level.
"""

import logging
from typing import List, NamedTuple, Optional, Type

logger = logging.getLogger(__name__)


class FitsError(Exception):
    """Base class of every error raised by fitscodec."""


class MetadataTruncated(FitsError, ValueError):
    """No END card was found within the allowed number of header blocks."""


class UnsupportedElementWidth(FitsError, ValueError):
    """An element width (BITPIX) or a column type code is not supported."""


class ShapeMismatch(FitsError, ValueError):
    """Payload length disagrees with the declared dimensions."""


class IndexOutOfRange(FitsError, IndexError):
    """A unit or row index lies outside the valid range."""


class MalformedColumnFormat(FitsError, ValueError):
    """A TFORMn declaration cannot be parsed."""


class RowStrideMismatch(FitsError, ValueError):
    """The declared row stride differs from the sum of the column sizes."""


class ShortPayload(FitsError, ValueError):
    """The byte source ended before the declared payload did."""


class CardOverflow(FitsError, ValueError):
    """A card does not fit in 80 columns."""


class Diagnostic(NamedTuple):
    """One recoverable problem found while decoding or encoding."""
    kind: Type[FitsError]
    message: str
    unit: Optional[int] = None

    def __str__(self):
        where = f"unit {self.unit}: " if self.unit is not None else ""
        return f"{self.kind.__name__}: {where}{self.message}"


class Diagnostics(list):
    """
    A list of Diagnostic records.

    Codec functions take an optional ``diagnostics`` argument; when given, the
    recoverable problems they run into are appended to it. ``unit`` is the
    index stamped on every record added through ``report``.
    """

    def __init__(self, *args, unit: Optional[int] = None):
        super().__init__(*args)
        self.unit = unit

    def report(self, kind: Type[FitsError], message: str, unit: Optional[int] = None) -> Diagnostic:
        entry = Diagnostic(kind, message, self.unit if unit is None else unit)
        self.append(entry)
        logger.warning("%s", entry)
        return entry

    def of_kind(self, kind: Type[FitsError]) -> List[Diagnostic]:
        return [d for d in self if issubclass(d.kind, kind)]


def report(diagnostics: Optional[Diagnostics], kind: Type[FitsError], message: str) -> None:
    """Record a diagnostic if a collector was passed, otherwise just log it."""
    if diagnostics is None:
        logger.warning("%s: %s", kind.__name__, message)
    elif isinstance(diagnostics, Diagnostics):
        diagnostics.report(kind, message)
    else:
        # plain lists are accepted too
        entry = Diagnostic(kind, message)
        diagnostics.append(entry)
        logger.warning("%s", entry)
