"""
VED Types & Constants — Text Image Codec v1
============================================

Foundational type definitions, constants and error classes for the VED
format. The format is line-oriented UTF-8 text:

  Line 0        "<width>,<height>"
  Line 1        "<idx>=<hex>,<idx>=<hex>,..."   (dictionary, may be empty)
  Lines 2..2+H  "<token>,<token>,..."           (one row per line)

A token is either empty (repeat the previous color in the row), a
dictionary index, or a literal RRGGBB hex color (optionally "#"-prefixed).

Pillow is only touched by the PixelGrid image bridges.
"""

import logging
import string
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from PIL import Image

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════
# FORMAT CONSTANTS
# ═══════════════════════════════════════════════════════════════

VED_EXTENSION = ".ved"
VED_ENCODING = "utf-8"

FIELD_SEP = ","      # between tokens, dictionary entries and dimensions
ENTRY_SEP = "="      # between index and color in a dictionary entry
HEX_PREFIX = "#"     # accepted on decode, emitted only for escaped literals

HEX_DIGITS = 6
MIN_COLOR_LEN = len(HEX_PREFIX) + HEX_DIGITS  # "#RRGGBB"

OPAQUE = 255
BLACK = (0, 0, 0, OPAQUE)

DEFAULT_MIN_DICTIONARY_COUNT = 2

Pixel = Tuple[int, int, int, int]
FrequencyTable = Counter


# ═══════════════════════════════════════════════════════════════
# ERROR CLASSES
# ═══════════════════════════════════════════════════════════════

class VedError(Exception):
    """Base error for all VED operations."""
    pass

class VedFormatError(VedError):
    """Document structure is broken (missing dimensions or dictionary line)."""
    pass

class VedDimensionError(VedFormatError):
    """Dimensions line is not two non-negative integers."""
    pass

class VedDictionaryError(VedFormatError):
    """Dictionary entry is not a single "<index>=<color>" pair."""
    pass

class VedColorError(VedError):
    """A single pixel could not be resolved to a color."""
    pass


# ═══════════════════════════════════════════════════════════════
# COLOR
# ═══════════════════════════════════════════════════════════════

def hex_of(pixel: Sequence[int]) -> str:
    """Canonical RRGGBB for a pixel tuple. Alpha, if present, is ignored."""
    return "%02X%02X%02X" % (pixel[0], pixel[1], pixel[2])


def is_index_token(token: str) -> bool:
    """True if the token is shaped like a dictionary index (ASCII digits only)."""
    return token.isascii() and token.isdigit()


def hex_pair(pair: str) -> Optional[int]:
    """Value of a two-digit hex pair, or None. Signs and whitespace are rejected."""
    if len(pair) != 2 or not all(c in string.hexdigits for c in pair):
        return None
    return int(pair, 16)


@dataclass(frozen=True)
class Color:
    """
    An 8-bit RGB color.

    Serialized as uppercase RRGGBB without prefix. Alpha never travels
    through the format; `rgba` always reports an opaque pixel.
    """
    red: int
    green: int
    blue: int

    @property
    def hex(self) -> str:
        return hex_of((self.red, self.green, self.blue))

    @property
    def rgba(self) -> Pixel:
        return (self.red, self.green, self.blue, OPAQUE)

    @classmethod
    def from_pixel(cls, pixel: Sequence[int]) -> 'Color':
        return cls(pixel[0], pixel[1], pixel[2])

    @classmethod
    def parse(cls, text: str) -> Tuple['Color', List[str]]:
        """
        Lenient parse of "RRGGBB" or "#RRGGBB"; characters past the sixth
        hex digit are ignored. A pair that is not two hex digits becomes 0
        for that channel. A value too short to hold a color becomes black.

        Returns:
            (color, problems)
        """
        value = text if text.startswith(HEX_PREFIX) else HEX_PREFIX + text
        if len(value) < MIN_COLOR_LEN:
            return cls(0, 0, 0), [f"Invalid color: {value!r}"]

        channels = []
        problems = []
        for start in (1, 3, 5):
            pair = value[start:start + 2]
            channel = hex_pair(pair)
            if channel is None:
                channel = 0
                problems.append(f"Invalid hex pair {pair!r} in {value!r}")
            channels.append(channel)
        return cls(*channels), problems

    @classmethod
    def from_hex(cls, text: str) -> 'Color':
        """Strict form of `parse`: any problem raises VedColorError."""
        color, problems = cls.parse(text)
        if problems:
            raise VedColorError(problems[0])
        return color


# ═══════════════════════════════════════════════════════════════
# PIXEL GRID
# ═══════════════════════════════════════════════════════════════

class PixelGrid:
    """
    In-memory raster of RGBA pixels, stored row-major.

    Rows are independent lists so that row workers can fill disjoint
    regions without touching each other.
    """

    def __init__(self, width: int, height: int, rows: List[List[Pixel]]):
        if width < 0 or height < 0:
            raise ValueError(f"Grid dimensions must be non-negative, got {width}x{height}")
        if len(rows) != height:
            raise ValueError(f"Expected {height} rows, got {len(rows)}")
        for y, row in enumerate(rows):
            if len(row) != width:
                raise ValueError(f"Row {y} has {len(row)} pixels, expected {width}")
            for x, pixel in enumerate(row):
                if len(pixel) != 4 or not all(0 <= c <= 255 for c in pixel):
                    raise ValueError(f"Pixel ({x}, {y}) is not four 8-bit channels: {pixel!r}")
        self.width = width
        self.height = height
        self.rows = rows

    @classmethod
    def new(cls, width: int, height: int, fill: Pixel = BLACK) -> 'PixelGrid':
        """Create a grid with every pixel set to `fill` (opaque black by default)."""
        return cls(width, height, [[fill] * width for _ in range(height)])

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[Sequence[int]]]) -> 'PixelGrid':
        """
        Build a grid from nested RGB or RGBA tuples. RGB pixels get alpha 255.
        All rows must have the same length.
        """
        height = len(rows)
        width = len(rows[0]) if height else 0
        grid_rows = []
        for row in rows:
            grid_rows.append([
                (p[0], p[1], p[2], p[3] if len(p) > 3 else OPAQUE) for p in row
            ])
        return cls(width, height, grid_rows)

    @classmethod
    def from_image(cls, image: Image.Image) -> 'PixelGrid':
        """Read a Pillow image of any mode. Palette and grayscale are expanded."""
        rgba = image if image.mode == "RGBA" else image.convert("RGBA")
        width, height = rgba.size
        access = rgba.load()
        rows = [[access[x, y] for x in range(width)] for y in range(height)]
        return cls(width, height, rows)

    def to_image(self) -> Image.Image:
        """Produce a Pillow RGBA image with the grid's pixels."""
        image = Image.new("RGBA", (self.width, self.height), BLACK)
        if self.width and self.height:
            raw = bytearray()
            for row in self.rows:
                for pixel in row:
                    raw.extend(pixel)
            image.frombytes(bytes(raw))
        return image

    # ─── Accessors ────────────────────────────────────────────

    def get_pixel(self, x: int, y: int) -> Pixel:
        return self.rows[y][x]

    def put_pixel(self, x: int, y: int, pixel: Pixel) -> None:
        self.rows[y][x] = pixel

    def row(self, y: int) -> List[Pixel]:
        return self.rows[y]

    def set_row(self, y: int, pixels: Sequence[Pixel]) -> None:
        """
        Overwrite row `y` from x=0. Pixels beyond the grid width are dropped;
        if fewer than `width` are given, the rest of the row is left as is.
        """
        target = self.rows[y]
        for x, pixel in enumerate(pixels[:self.width]):
            target[x] = pixel

    def rgb_rows(self) -> List[List[Tuple[int, int, int]]]:
        """Alpha-free copy of the pixels, for comparing decoded output."""
        return [[p[:3] for p in row] for row in self.rows]

    def __eq__(self, other):
        if not isinstance(other, PixelGrid):
            return NotImplemented
        return (self.width, self.height, self.rows) == (other.width, other.height, other.rows)

    def __repr__(self):
        return f"PixelGrid({self.width}x{self.height})"


# ═══════════════════════════════════════════════════════════════
# DICTIONARY
# ═══════════════════════════════════════════════════════════════

class Dictionary:
    """
    Dense 0-based assignment of indices to frequent colors.

    Built by the encoder from a FrequencyTable; the decoder builds its own
    index → color mapping directly from line 1 (see `parse_entry`).
    """

    def __init__(self, colors: Optional[List[str]] = None):
        self.colors: List[str] = list(colors or [])
        self._index: Dict[str, int] = {c: i for i, c in enumerate(self.colors)}

    @classmethod
    def from_frequencies(cls, table: FrequencyTable,
                         min_count: int = DEFAULT_MIN_DICTIONARY_COUNT) -> 'Dictionary':
        """
        Rank colors by count (descending) and keep those seen at least
        `min_count` times. `sorted` is stable, so ties keep the table's
        insertion order, which is first encounter in row-major order.
        """
        ranked = sorted(table.items(), key=lambda item: -item[1])
        return cls([color for color, count in ranked if count >= min_count])

    @staticmethod
    def parse_entry(entry: str) -> Tuple[int, str]:
        """Parse one "<index>=<color>" entry of the dictionary line."""
        parts = entry.split(ENTRY_SEP)
        if len(parts) != 2:
            raise VedDictionaryError(f"Dictionary entry needs exactly one '=': {entry!r}")
        index, color = parts
        if not is_index_token(index):
            raise VedDictionaryError(f"Dictionary index is not a non-negative integer: {entry!r}")
        return int(index), color

    def index_of(self, color: str) -> Optional[int]:
        return self._index.get(color)

    def color_at(self, index: int) -> str:
        return self.colors[index]

    def to_line(self) -> str:
        return FIELD_SEP.join(f"{i}{ENTRY_SEP}{c}" for i, c in enumerate(self.colors))

    def __contains__(self, color: str) -> bool:
        return color in self._index

    def __iter__(self) -> Iterator[str]:
        return iter(self.colors)

    def __len__(self) -> int:
        return len(self.colors)


# ═══════════════════════════════════════════════════════════════
# TOKENS
# ═══════════════════════════════════════════════════════════════

class TokenKind(Enum):
    """What a single row token stands for."""
    REPEAT  = "repeat"   # empty: previous color in the row
    INDEX   = "index"    # dictionary lookup
    LITERAL = "literal"  # inline hex color


def classify_token(token: str, dictionary: Dict[int, str]) -> TokenKind:
    """
    Classify a row token against a decoded index → color mapping.

    A digit-only token is an index only when the dictionary has that key;
    otherwise it falls back to being a literal color.
    """
    if token == "":
        return TokenKind.REPEAT
    if is_index_token(token) and int(token) in dictionary:
        return TokenKind.INDEX
    return TokenKind.LITERAL


# ═══════════════════════════════════════════════════════════════
# DOCUMENT
# ═══════════════════════════════════════════════════════════════

@dataclass
class EncodedDocument:
    """
    A VED document as its ordered text lines.

    Lines are kept raw so a decoder can be handed malformed input; no
    parsing happens here.
    """
    lines: List[str] = field(default_factory=list)

    @property
    def dimensions_line(self) -> Optional[str]:
        return self.lines[0] if len(self.lines) > 0 else None

    @property
    def dictionary_line(self) -> Optional[str]:
        return self.lines[1] if len(self.lines) > 1 else None

    @property
    def row_lines(self) -> List[str]:
        return self.lines[2:]

    def to_text(self) -> str:
        return "".join(line + "\n" for line in self.lines)

    @classmethod
    def from_text(cls, text: str) -> 'EncodedDocument':
        """Split on LF or CRLF line endings only; other control characters stay in the line."""
        lines = text.split("\n")
        if lines[-1] == "":
            lines.pop()
        return cls([line[:-1] if line.endswith("\r") else line for line in lines])

    @property
    def size_bytes(self) -> int:
        return len(self.to_text().encode(VED_ENCODING))

    def write(self, path) -> int:
        """Write the document to `path`. Returns the number of bytes written."""
        data = self.to_text().encode(VED_ENCODING)
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        Path(path).write_bytes(data)
        logger.debug("Wrote %d bytes to %s", len(data), path)
        return len(data)

    @classmethod
    def read(cls, path) -> 'EncodedDocument':
        return cls.from_text(Path(path).read_bytes().decode(VED_ENCODING))


# ═══════════════════════════════════════════════════════════════
# ROW POOL
# ═══════════════════════════════════════════════════════════════

def run_rows(func: Callable, jobs: Sequence[tuple], max_workers: Optional[int] = None) -> list:
    """
    Apply `func` to every job on a thread pool. Results land in a slot
    list by job index, so the output order never depends on completion order.
    The first exception raised by a job propagates.
    """
    slots = [None] * len(jobs)
    if not jobs:
        return slots
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(func, *job): i for i, job in enumerate(jobs)}
        for future in as_completed(futures):
            slots[futures[future]] = future.result()
    return slots
