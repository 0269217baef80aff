"""
Unit tests for fitscodec - card codec

Covers parsing and formatting of single 80 column header cards: value
tags, quoted strings, comments and commentary cards.
"""

import os
import sys
import pytest
import numpy as np

# Add the lib directory to the path to import fitscodec
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))) + "/lib")
from fitscodec.cards import END, Card, CardTag, format_card, parse_card


def test_numeric_card_is_tagged_number():
    """'8' after the assignment marker is a number, not text."""
    card = parse_card("BITPIX  =                    8".ljust(80))
    assert card.key == "BITPIX"
    assert card.value == 8
    assert isinstance(card.value, int)
    assert card.tag is CardTag.NUMBER
    assert card.comment is None

def test_logical_values():
    """T and F values are booleans."""
    assert parse_card("SIMPLE  =                    T").value is True
    assert parse_card("EXTEND  =                    F").value is False
    assert parse_card("SIMPLE  =                    T").tag is CardTag.BOOLEAN

def test_real_values():
    """Real literals parse to floats, D exponents included."""
    assert parse_card("BSCALE  =                  1.5").value == 1.5
    assert parse_card("EXPTIME =              1.0D+02").value == 100.0
    assert parse_card("CRVAL1  =              -2.5E-3").value == -2.5e-3

def test_unquoted_value_with_comment():
    """Text after an unquoted slash is the comment."""
    card = parse_card("NAXIS   =                    2 / number of axes")
    assert card.value == 2
    assert card.comment == "number of axes"

def test_comment_keeps_further_slashes():
    """Only the first slash separates the comment."""
    card = parse_card("DATE    =                   10 / a / b")
    assert card.comment == "a / b"

def test_quoted_string_with_slash():
    """Slashes inside quotes belong to the value."""
    card = parse_card("TTYPE1  = 'a/b     '           / the name")
    assert card.value == "a/b"
    assert card.tag is CardTag.TEXT
    assert card.comment == "the name"

def test_doubled_quotes_are_unescaped():
    """Two quotes inside a string stand for one."""
    card = parse_card("OBJECT  = 'it''s here'")
    assert card.value == "it's here"

def test_unterminated_quote_is_kept_as_text():
    """A missing closing quote keeps the raw field."""
    card = parse_card("OBJECT  = 'no end")
    assert card.value == "'no end"
    assert card.tag is CardTag.TEXT

def test_unparseable_value_is_raw_text():
    """Anything that is not a literal stays text."""
    card = parse_card("FOO     = bar")
    assert card.value == "bar"
    assert card.tag is CardTag.TEXT

def test_commentary_card():
    """Without '=' in column 9 the card is commentary."""
    card = parse_card("COMMENT This is a note".ljust(80))
    assert card.key == "COMMENT"
    assert card.value is None
    assert card.tag is CardTag.COMMENTARY
    assert card.comment == "This is a note"

def test_end_and_blank_lines():
    """END gives the sentinel, blank lines give None."""
    assert parse_card("END".ljust(80)) is END
    assert parse_card(" " * 80) is None

def test_format_numeric_card():
    """Numbers are right-justified so that they end in column 30."""
    line = format_card("BITPIX", 8)
    assert line == "BITPIX  =                    8".ljust(80)
    assert len(line) == 80

def test_format_text_and_comment():
    """Text is quoted and left-justified in the value field."""
    line = format_card("OBJECT", "M31", "target")
    assert line.startswith("OBJECT  = 'M31'")
    assert line[10:30] == "'M31'".ljust(20)
    assert line.rstrip().endswith("/ target")
    assert len(line) == 80

def test_format_commentary_card():
    """Commentary cards are the key followed by the text."""
    line = format_card("HISTORY", None, "reduced")
    assert line == "HISTORY reduced".ljust(80)

@pytest.mark.parametrize("key,value,comment", [
    ("SIMPLE", True, None),
    ("EXTEND", False, "extensions"),
    ("BITPIX", -32, "bits per pixel"),
    ("BSCALE", 1.5, None),
    ("BZERO", 32768, "offset"),
    ("EXPTIME", 1e-10, None),
    ("OBJECT", "M31 / it's", "name / with slash"),
    ("EMPTY", "", None),
    ("HISTORY", None, "free text"),
])
def test_card_round_trip(key, value, comment):
    """Formatting then parsing gives back key, value and comment."""
    card = parse_card(format_card(key, value, comment))
    assert card.key == key
    assert card.value == value
    assert type(card.value) is type(value)
    assert card.comment == comment

def test_numpy_scalars_are_plain_values():
    """numpy scalars are stored as Python values."""
    card = Card("NAXIS1", np.int16(3))
    assert card.value == 3
    assert card.tag is CardTag.NUMBER
    assert parse_card(str(card)).value == 3

def test_long_keyword_is_rejected():
    """Keywords are limited to 8 characters."""
    with pytest.raises(ValueError):
        format_card("TOOLONGKEY", 1)

def test_long_comment_is_truncated():
    """Comments past column 80 are cut off."""
    line = format_card("NAXIS", 2, "x" * 100)
    assert len(line) == 80
    assert parse_card(line).comment == "x" * (80 - 33)

def test_commentary_text_starting_with_assignment_is_rejected():
    """Such text would put '=' in column 9 and read back as a value card."""
    with pytest.raises(ValueError):
        format_card("COMMENT", None, "= not a value")
    assert parse_card(format_card("COMMENT", None, " = spaced")).comment == " = spaced"

@pytest.mark.parametrize("value", [float("inf"), float("-inf"), float("nan"), np.float32("nan")])
def test_non_finite_values_are_rejected(value):
    """Non-finite numbers have no card representation."""
    with pytest.raises(ValueError):
        format_card("BADVAL", value)
