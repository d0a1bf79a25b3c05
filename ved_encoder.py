"""
VED Encoder — Text Image Codec v1 Encoder
==========================================

Encodes a pixel grid into a VED document:
  - Row scan: hex colors + per-row color counts (parallel over rows)
  - Frequency merge and dictionary of colors seen at least twice
  - Row coding: run-length collapse + dictionary substitution (parallel)
  - Rows gathered back into top-to-bottom order

Alpha is dropped. The whole image is held in memory.
"""

import logging
from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from PIL import Image

from ved_types import (
    VED_EXTENSION, FIELD_SEP, HEX_PREFIX, DEFAULT_MIN_DICTIONARY_COUNT,
    Pixel, FrequencyTable, PixelGrid, Dictionary, EncodedDocument,
    hex_of, is_index_token, run_rows,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════
# ROW WORKERS
# ═══════════════════════════════════════════════════════════════

def scan_row(pixels: Sequence[Pixel]) -> Tuple[List[str], Counter]:
    """Hex colors of one row, in order, and how often each occurs in it."""
    colors = [hex_of(p) for p in pixels]
    return colors, Counter(colors)


def code_row(colors: Sequence[str], dictionary: Dictionary,
             escape_numeric_literals: bool = True) -> str:
    """
    Run-length + dictionary coding of one row.

    The tracked color resets per row, so the first token is never empty.
    """
    tokens = []
    last = None
    for color in colors:
        if color == last:
            tokens.append("")
            continue
        last = color
        index = dictionary.index_of(color)
        if index is not None:
            tokens.append(str(index))
        elif escape_numeric_literals and is_index_token(color) and int(color) < len(dictionary):
            # Digit-only literal would read back as a dictionary index
            tokens.append(HEX_PREFIX + color)
        else:
            tokens.append(color)
    return FIELD_SEP.join(tokens)


# ═══════════════════════════════════════════════════════════════
# ENCODER
# ═══════════════════════════════════════════════════════════════

class VedEncoder:
    """
    VED v1 Encoder.

    Usage:
        encoder = VedEncoder()
        doc = encoder.encode(PixelGrid.from_image(img))
        doc.write("image.ved")

        stats = encoder.encode_file("image.png")
    """

    def __init__(self,
                 max_workers: Optional[int] = None,
                 min_dictionary_count: int = DEFAULT_MIN_DICTIONARY_COUNT,
                 escape_numeric_literals: bool = True):
        self.max_workers = max_workers
        self.min_dictionary_count = min_dictionary_count
        self.escape_numeric_literals = escape_numeric_literals

    def analyze(self, grid: PixelGrid) -> Tuple[List[List[str]], FrequencyTable]:
        """
        Scan every row and merge the per-row counts.

        Returns:
            (hex colors per row, global FrequencyTable). The table's counts
            sum to width * height.
        """
        scanned = run_rows(scan_row, [(row,) for row in grid.rows], self.max_workers)

        # Fold in row order: ties in the dictionary follow first encounter
        frequencies: FrequencyTable = Counter()
        rows_hex = []
        for colors, local in scanned:
            rows_hex.append(colors)
            frequencies.update(local)
        return rows_hex, frequencies

    def build_dictionary(self, frequencies: FrequencyTable) -> Dictionary:
        return Dictionary.from_frequencies(frequencies, self.min_dictionary_count)

    def encode(self, grid: PixelGrid) -> EncodedDocument:
        """
        Encode a pixel grid into a VED document.

        Args:
            grid: Source pixels. Alpha is ignored.

        Returns:
            EncodedDocument with dimensions, dictionary and one line per row.
        """
        return self.encode_report(grid)['document']

    def encode_report(self, grid: PixelGrid) -> dict:
        """
        Encode a pixel grid and report how it was coded.

        Returns:
            dict with 'document', 'width', 'height', 'color_count',
            'dictionary_size', 'index_count', 'literal_count', 'repeat_count'.
        """
        # ── 1. Row scan + frequency merge ──
        rows_hex, frequencies = self.analyze(grid)

        # ── 2. Dictionary (needs every row scanned) ──
        dictionary = self.build_dictionary(frequencies)

        lines = [f"{grid.width}{FIELD_SEP}{grid.height}", dictionary.to_line()]

        # ── 3. Row coding ──
        if grid.width and grid.height:
            jobs = [(colors, dictionary, self.escape_numeric_literals) for colors in rows_hex]
            lines.extend(run_rows(code_row, jobs, self.max_workers))

        doc = EncodedDocument(lines)
        stats = self._token_stats(doc, len(dictionary))
        logger.debug("Encoded %dx%d grid: %d colors, %d in dictionary",
                     grid.width, grid.height, len(frequencies), len(dictionary))
        return {
            'document': doc,
            'width': grid.width,
            'height': grid.height,
            'color_count': len(frequencies),
            'dictionary_size': len(dictionary),
            'index_count': stats['index'],
            'literal_count': stats['literal'],
            'repeat_count': stats['repeat'],
        }

    def encode_image(self, image: Image.Image) -> EncodedDocument:
        """Encode a Pillow image of any mode."""
        return self.encode(PixelGrid.from_image(image))

    def encode_file(self, image_path, output_path=None) -> dict:
        """
        Encode an image file into a .ved file.

        Args:
            image_path: Any image Pillow can open.
            output_path: Target path. Defaults to the image path with a
                .ved extension.

        Returns:
            encode_report() dict plus sizes, compression ratio and paths.
        """
        image_path = Path(image_path)
        output_path = Path(output_path) if output_path else image_path.with_suffix(VED_EXTENSION)

        with Image.open(image_path) as image:
            result = self.encode_report(PixelGrid.from_image(image))
        size_ved = result['document'].write(output_path)
        size_source = image_path.stat().st_size

        result.update({
            'size_source': size_source,
            'size_ved': size_ved,
            'compression_ratio': round(size_source / max(size_ved, 1), 2),
            'paths': {'source': str(image_path), 'ved': str(output_path)},
        })
        return result

    # ─── Stats ────────────────────────────────────────────────

    @staticmethod
    def _token_stats(doc: EncodedDocument, dictionary_size: int) -> Dict[str, int]:
        """Count tokens by kind across all rows of an encoder-produced document."""
        counts = {'index': 0, 'literal': 0, 'repeat': 0}
        for line in doc.row_lines:
            for token in line.split(FIELD_SEP):
                if token == "":
                    counts['repeat'] += 1
                elif is_index_token(token) and int(token) < dictionary_size:
                    counts['index'] += 1
                else:
                    counts['literal'] += 1
        return counts
