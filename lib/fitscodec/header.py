"""
Header (metadata block) container and its block codec.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from .cards import END, Card, CardValue, format_card, format_value, parse_card
from .constants import BLOCK_SIZE, CARD_SIZE, END_KEYWORD, MAX_HEADER_BLOCKS
from .errors import MetadataTruncated

logger = logging.getLogger(__name__)

_MISSING = object()


class Header:
    """
    Ordered mapping of keyword to Card.

    Insertion order is kept for serialization. Setting an existing keyword
    replaces its value and comment in place (last write wins).
    """

    def __init__(self, entries: Optional[Union[Dict[str, Any], List[Card]]] = None):
        """
        Initialize a Header.

        Args:
            entries: Either a list of Card objects, or a mapping whose values
                     are plain values, (value, comment) tuples or
                     {'value': ..., 'comment': ...} dicts
        """
        self._cards: Dict[str, Card] = {}
        if entries is None:
            return
        if isinstance(entries, dict):
            for key, entry in entries.items():
                if isinstance(entry, tuple):
                    self.set(key, *entry)
                elif isinstance(entry, dict):
                    self.set(key, entry.get('value'), entry.get('comment'))
                else:
                    self.set(key, entry)
        else:
            for card in entries:
                self.append(card)

    def set(self, key: str, value: Optional[CardValue], comment: Optional[str] = None):
        self._cards[key] = Card(key, value, comment)

    def append(self, card: Card):
        self._cards[card.key] = card

    def has(self, key: str) -> bool:
        return key in self._cards

    def remove(self, key: str):
        """
        Remove a keyword.

        Raises:
            KeyError: If the keyword is not in the header
        """
        if key not in self._cards:
            raise KeyError(f'Key "{key}" not found in header.')
        del self._cards[key]

    def get(self, key: str, default: Any = None) -> Any:
        card = self._cards.get(key)
        if card is None or card.value is None:
            return default
        return card.value

    def get_card(self, key: str) -> Optional[Card]:
        return self._cards.get(key)

    def get_number(self, key: str, default: Any = None) -> Any:
        """Return the value of ``key`` if it is numeric, ``default`` otherwise."""
        value = self.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        return default

    def get_int(self, key: str, default: int = 0) -> int:
        value = self.get_number(key)
        if value is None:
            return default
        return int(value)

    def get_string(self, key: str) -> Optional[str]:
        """
        Return the value of ``key`` as text.

        Strings are returned as they are, numbers and logicals in their card
        representation ('T', 'F', '16', ...).
        """
        value = self.get(key)
        if value is None:
            return None
        if isinstance(value, str):
            return value
        return format_value(value)

    def get_comment(self, key: str) -> Optional[str]:
        card = self._cards.get(key)
        return card.comment if card is not None else None

    def keys(self) -> List[str]:
        return list(self._cards)

    def cards(self) -> List[Card]:
        return list(self._cards.values())

    def items(self) -> Iterator[Tuple[str, Card]]:
        return iter(self._cards.items())

    def copy(self) -> 'Header':
        return Header(self.cards())

    def update(self, other: 'Header'):
        for card in other.cards():
            self.append(card)

    def __contains__(self, key):
        return key in self._cards

    def __getitem__(self, key):
        value = self.get(key, _MISSING)
        if value is _MISSING:
            raise KeyError(key)
        return value

    def __setitem__(self, key, value):
        if isinstance(value, tuple):
            self.set(key, *value)
        else:
            self.set(key, value)

    def __delitem__(self, key):
        self.remove(key)

    def __iter__(self):
        return iter(self._cards)

    def __len__(self):
        return len(self._cards)

    def __eq__(self, other):
        if not isinstance(other, Header):
            return NotImplemented
        return self.cards() == other.cards()

    def __repr__(self):
        return f"Header({self.cards()!r})"

    def __str__(self):
        return '\n'.join(str(card).rstrip() for card in self.cards())


def parse_header(source, offset: int, max_blocks: int = MAX_HEADER_BLOCKS) -> Tuple[Header, int]:
    """
    Read a header starting at ``offset``.

    Blocks of 2880 bytes are read and split into 80 byte cards until the END
    card is found.

    Args:
        source: A ByteSource (anything with read(offset, length))
        offset: Byte offset of the first header block
        max_blocks: Number of blocks after which the search for END gives up

    Returns:
        Tuple[Header, int]: The header and the number of bytes it occupies
                            (always a multiple of the block size)

    Raises:
        MetadataTruncated: If END is not found within max_blocks blocks or
                           before the end of the source
    """
    header = Header()
    position = offset

    for _ in range(max_blocks):
        block = source.read(position, BLOCK_SIZE)
        if not block:
            raise MetadataTruncated(f"Header at offset {offset} ends without {END_KEYWORD} card")

        text = block.decode('ascii', errors='replace')
        position += BLOCK_SIZE

        for i in range(0, len(text), CARD_SIZE):
            card = parse_card(text[i:i + CARD_SIZE])
            if card is END:
                logger.debug("header at offset %d: %d cards", offset, len(header))
                return header, position - offset
            if card is not None:
                header.append(card)

        if len(block) < BLOCK_SIZE:
            raise MetadataTruncated(f"Header at offset {offset} ends without {END_KEYWORD} card")

    raise MetadataTruncated(
        f"No {END_KEYWORD} card within {max_blocks} blocks of header at offset {offset}")


def format_header(header: Header) -> bytes:
    """Render a header as space-padded blocks, END card included."""
    lines = [format_card(card.key, card.value, card.comment) for card in header.cards()]
    lines.append(END_KEYWORD.ljust(CARD_SIZE))
    text = ''.join(lines)
    padding = -len(text) % BLOCK_SIZE
    return (text + ' ' * padding).encode('ascii')
