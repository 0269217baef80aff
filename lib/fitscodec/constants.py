"""Layout constants of the container format."""

# Padding granularity of header and data regions
BLOCK_SIZE = 2880

# Width of one header card and of its fields
CARD_SIZE = 80
KEY_SIZE = 8
VALUE_WIDTH = 20

CARDS_PER_BLOCK = BLOCK_SIZE // CARD_SIZE

# Upper bound on the header blocks read while looking for END
MAX_HEADER_BLOCKS = 256

END_KEYWORD = 'END'

# Element width used when an image is added without a BITPIX card
# and its dtype has no exact on-disk counterpart
DEFAULT_BITPIX = 16

# First two bytes of a gzip stream
GZIP_MAGIC = b'\x1f\x8b'

# Largest NAXIS value read from a header
MAX_AXES = 999
