"""
Card codec: one fixed-width 80 column header line.

Layout of a value card:

    columns 1-8    keyword, left-justified
    column  9      '=' assignment marker
    column  10     blank
    columns 11-30  value (numbers right-justified, text and logicals left)
    columns 31-    ' / ' followed by the comment

A line whose ninth column is not '=' is a commentary card (COMMENT, HISTORY
or any other keyword followed by free text).
"""

import enum
import math
import logging
import re
from typing import Any, Optional, Union

from .constants import CARD_SIZE, END_KEYWORD, KEY_SIZE, VALUE_WIDTH
from .errors import CardOverflow

logger = logging.getLogger(__name__)

CardValue = Union[bool, int, float, str]

_INT_RE = re.compile(r'^[+-]?\d+$')
_REAL_RE = re.compile(r'^[+-]?(\d+\.?\d*|\.\d+)([EeDd][+-]?\d+)?$')


class CardTag(enum.Enum):
    BOOLEAN = 'boolean'
    NUMBER = 'number'
    TEXT = 'text'
    COMMENTARY = 'commentary'


def tag_of(value: Any) -> CardTag:
    """
    Return the tag of a card value.

    bool is checked before int since it is a subclass of it.

    Raises:
        TypeError: If the value is not a bool, number, str or None
    """
    if value is None:
        return CardTag.COMMENTARY
    if isinstance(value, bool):
        return CardTag.BOOLEAN
    if isinstance(value, (int, float)):
        return CardTag.NUMBER
    if isinstance(value, str):
        return CardTag.TEXT
    # numpy scalars
    if hasattr(value, 'item'):
        return tag_of(value.item())
    raise TypeError(f"Unsupported card value type: {type(value)}")


class Card:
    """
    A keyword, a tagged value and an optional comment.

    Commentary cards have no value: their tag is COMMENTARY and the free text
    is kept in ``comment``.
    """

    __slots__ = ('key', 'value', 'comment', 'tag')

    def __init__(self, key: str, value: Optional[CardValue] = None, comment: Optional[str] = None):
        if hasattr(value, 'item') and not isinstance(value, (bool, int, float, str)):
            value = value.item()
        self.key = key
        self.value = value
        self.comment = comment or None
        self.tag = tag_of(value)

    def __eq__(self, other):
        if not isinstance(other, Card):
            return NotImplemented
        return (self.key == other.key and self.tag == other.tag
                and self.value == other.value and self.comment == other.comment)

    def __repr__(self):
        return f"Card({self.key!r}, {self.value!r}, {self.comment!r})"

    def __str__(self):
        return format_card(self.key, self.value, self.comment)


class _EndCard:
    """Sentinel returned by parse_card for the END keyword."""

    def __repr__(self):
        return 'END'


END = _EndCard()


def parse_value(text: str) -> CardValue:
    """
    Convert the unquoted value field of a card to a Python value.

    'T' and 'F' map to booleans, integer literals to int, real literals
    (including Fortran 'D' exponents) to float; anything else is kept as text.
    """
    text = text.strip()
    if text == 'T':
        return True
    if text == 'F':
        return False
    if _INT_RE.match(text):
        return int(text)
    if _REAL_RE.match(text):
        return float(text.replace('D', 'E').replace('d', 'e'))
    return text


def _parse_quoted(content: str):
    """
    Split a quoted value from the rest of the field.

    Returns (value, remainder) or None if the closing quote is missing.
    """
    chars = []
    i = 1
    while i < len(content):
        c = content[i]
        if c == "'":
            if content[i + 1:i + 2] == "'":
                chars.append("'")
                i += 2
                continue
            return ''.join(chars).rstrip(' '), content[i + 1:]
        chars.append(c)
        i += 1
    return None


def parse_card(line: str) -> Union[Card, _EndCard, None]:
    """
    Parse one header line.

    Args:
        line: An 80 column card image (shorter lines are accepted)

    Returns:
        Card: For value and commentary cards
        END: For the END keyword
        None: For blank lines
    """
    key = line[:KEY_SIZE].strip()
    if not key:
        return None
    if key == END_KEYWORD:
        return END

    if line[KEY_SIZE:KEY_SIZE + 1] != '=':
        return Card(key, None, line[KEY_SIZE:].rstrip())

    content = line[KEY_SIZE + 1:].lstrip(' ')
    comment = None

    if content.startswith("'"):
        # slashes inside quotes belong to the value
        quoted = _parse_quoted(content)
        if quoted is None:
            return Card(key, content.strip(), None)
        value, rest = quoted
        rest = rest.strip()
        if rest.startswith('/'):
            comment = rest[1:].strip()
        return Card(key, value, comment)

    raw, sep, rest = content.partition('/')
    if sep:
        comment = rest.strip()
    return Card(key, parse_value(raw), comment)


def format_value(value: CardValue) -> str:
    """
    Render a value the way it appears between columns 11 and 30.

    Raises:
        ValueError: For commentary cards and for infinite or NaN numbers
    """
    tag = tag_of(value)
    if tag is CardTag.BOOLEAN:
        return 'T' if value else 'F'
    if tag is CardTag.NUMBER:
        if hasattr(value, 'item'):
            value = value.item()
        if isinstance(value, float):
            if not math.isfinite(value):
                raise ValueError(f"Card values must be finite numbers, got {value!r}")
            return repr(value).upper()
        return str(value)
    if tag is CardTag.TEXT:
        return "'" + value.replace("'", "''") + "'"
    raise ValueError("Commentary cards have no value field")


def format_card(key: str, value: Optional[CardValue] = None, comment: Optional[str] = None) -> str:
    """
    Render a card as an 80 character line.

    Args:
        key: The keyword, at most 8 characters
        value: The value; None renders a commentary card
        comment: Optional comment (or the text of a commentary card)

    Returns:
        str: The card image, padded with blanks to 80 columns

    Raises:
        ValueError: If the keyword or the value does not fit in the card.
                    Also for non-finite numbers and for commentary text
                    starting with '='
    """
    if len(key) > KEY_SIZE:
        raise ValueError(f"Keyword longer than {KEY_SIZE} characters: {key!r}")

    if value is None:
        text = comment or ''
        if text.startswith('='):
            raise ValueError(f"Commentary text of {key!r} cannot start with '='")
        line = key.ljust(KEY_SIZE) + text
        if len(line) > CARD_SIZE:
            raise ValueError(f"Commentary card {key!r} longer than {CARD_SIZE} columns")
        return line.ljust(CARD_SIZE)

    text = format_value(value)
    if tag_of(value) is CardTag.NUMBER:
        text = text.rjust(VALUE_WIDTH)
    else:
        text = text.ljust(VALUE_WIDTH)

    line = key.ljust(KEY_SIZE) + '= ' + text
    if len(line) > CARD_SIZE:
        raise ValueError(f"Value of {key!r} does not fit in a card")

    if comment:
        line += ' / ' + comment
        if len(line) > CARD_SIZE:
            logger.warning("%s: comment of %s truncated to %d columns",
                           CardOverflow.__name__, key, CARD_SIZE)
            line = line[:CARD_SIZE]

    return line.ljust(CARD_SIZE)
