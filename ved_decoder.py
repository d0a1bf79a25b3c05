"""
VED Decoder — Text Image Codec v1 Decoder
==========================================

Decodes VED documents back to pixel grids.

Structural problems (missing dimensions or dictionary line, bad
dimensions) abort the decode. Everything below that level is lenient:
malformed dictionary entries are skipped and unreadable pixels become
opaque black, each recorded as a warning. `strict=True` turns the
per-pixel anomalies into VedColorError.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ved_types import (
    FIELD_SEP,
    Pixel, Color, PixelGrid, Dictionary, EncodedDocument,
    VedFormatError, VedDimensionError, VedDictionaryError, VedColorError,
    TokenKind, classify_token, is_index_token, run_rows,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════
# LINE PARSERS
# ═══════════════════════════════════════════════════════════════

def parse_dimensions(line: str) -> Tuple[int, int]:
    """Parse "<width>,<height>". Both fields must be plain ASCII digits."""
    parts = line.split(FIELD_SEP)
    if len(parts) != 2:
        raise VedDimensionError(f"Dimensions line needs exactly two fields: {line!r}")
    if not all(is_index_token(p) for p in parts):
        raise VedDimensionError(f"Dimensions are not non-negative integers: {line!r}")
    width, height = (int(p) for p in parts)
    return width, height


def parse_dictionary(line: str) -> Tuple[Dict[int, str], List[str]]:
    """
    Parse the dictionary line into index → color.

    Malformed entries are skipped. Empty entries (empty line, trailing
    comma) are skipped without comment; others produce a warning.

    Returns:
        (mapping, warnings)
    """
    mapping: Dict[int, str] = {}
    warnings = []
    for entry in line.split(FIELD_SEP):
        if not entry:
            continue
        try:
            index, color = Dictionary.parse_entry(entry)
        except VedDictionaryError as e:
            warnings.append(f"Skipped dictionary entry: {e}")
            continue
        mapping[index] = color
    return mapping, warnings


def resolve_color(value: str) -> Tuple[Pixel, List[str]]:
    """
    Turn a resolved token into an opaque pixel, following `Color.parse`.

    Returns:
        (pixel, problems)
    """
    color, problems = Color.parse(value)
    return color.rgba, problems


def decode_row(y: int, line: str, dictionary: Dict[int, str], width: int,
               strict: bool = False) -> Tuple[List[Pixel], List[str]]:
    """
    Expand one row line into at most `width` pixels.

    An empty token repeats the previous token of the row. The "previous
    token" starts out empty, so a row that opens with an empty token
    resolves to an invalid color (opaque black, with a warning).

    Returns:
        (pixels, warnings)
    """
    pixels = []
    warnings = []
    last = ""
    for x, token in enumerate(line.split(FIELD_SEP)[:width]):
        kind = classify_token(token, dictionary)
        if kind is TokenKind.REPEAT:
            if x == 0:
                message = f"Row {y}: first token is empty, nothing to repeat"
                if strict:
                    raise VedColorError(message)
                warnings.append(message)
            token = last
            kind = classify_token(token, dictionary)
        else:
            last = token

        value = dictionary[int(token)] if kind is TokenKind.INDEX else token
        pixel, problems = resolve_color(value)
        if problems:
            if strict:
                raise VedColorError(f"Row {y}, column {x}: {problems[0]}")
            warnings.extend(f"Row {y}, column {x}: {p}" for p in problems)
        pixels.append(pixel)
    return pixels, warnings


# ═══════════════════════════════════════════════════════════════
# DECODER
# ═══════════════════════════════════════════════════════════════

class VedDecoder:
    """
    VED v1 Decoder.

    Usage:
        decoder = VedDecoder()
        grid = decoder.decode(EncodedDocument.read("image.ved"))
        grid.to_image().save("decoded.png")

        result = decoder.decode_file("image.ved", "decoded.png")
        result['warnings']   # per-pixel anomalies, if any
    """

    def __init__(self, max_workers: Optional[int] = None, strict: bool = False):
        self.max_workers = max_workers
        self.strict = strict

    # ─── Main Entry Points ────────────────────────────────────

    def decode(self, doc: EncodedDocument) -> PixelGrid:
        """
        Decode a document into a pixel grid.

        Raises:
            VedFormatError: dimensions or dictionary line missing.
            VedDimensionError: dimensions line malformed.
            VedColorError: per-pixel anomaly, only when strict.
        """
        return self.decode_report(doc)['grid']

    def decode_text(self, text: str) -> PixelGrid:
        return self.decode(EncodedDocument.from_text(text))

    def decode_report(self, doc: EncodedDocument) -> dict:
        """
        Decode a document and report what had to be substituted.

        Returns:
            dict with 'grid', 'width', 'height', 'dictionary_size',
            'rows_decoded', 'warnings', 'valid'.
        """
        # ── 1. Dimensions ──
        if doc.dimensions_line is None:
            raise VedFormatError("Missing dimensions line")
        width, height = parse_dimensions(doc.dimensions_line)

        # ── 2. Dictionary ──
        if doc.dictionary_line is None:
            raise VedFormatError("Missing dictionary line")
        dictionary, warnings = parse_dictionary(doc.dictionary_line)

        # ── 3. Rows ──
        rows = doc.row_lines
        if len(rows) > height:
            warnings.append(f"Ignored {len(rows) - height} row line(s) beyond height {height}")
            rows = rows[:height]

        grid = PixelGrid.new(width, height)
        if width:
            jobs = [(y, line, dictionary, width, self.strict) for y, line in enumerate(rows)]
            decoded = run_rows(decode_row, jobs, self.max_workers)

            # ── 4. Gather by row index ──
            for y, (pixels, row_warnings) in enumerate(decoded):
                grid.set_row(y, pixels)
                warnings.extend(row_warnings)

        for message in warnings:
            logger.warning(message)

        return {
            'grid': grid,
            'width': width,
            'height': height,
            'dictionary_size': len(dictionary),
            'rows_decoded': len(rows),
            'warnings': warnings,
            'valid': not warnings,
        }

    def decode_file(self, filepath, output_path=None) -> dict:
        """
        Decode a .ved file, optionally saving the image.

        Args:
            filepath: Path to the .ved file.
            output_path: Image path to write; the format follows the
                extension (e.g. .png).

        Returns:
            decode_report() dict plus 'paths'.
        """
        result = self.decode_report(EncodedDocument.read(filepath))
        paths = {'ved': str(filepath)}
        if output_path:
            Path(output_path).parent.mkdir(parents=True, exist_ok=True)
            result['grid'].to_image().save(output_path)
            paths['image'] = str(output_path)
        result['paths'] = paths
        logger.debug("Decoded %s: %dx%d, %d warning(s)", filepath,
                     result['width'], result['height'], len(result['warnings']))
        return result


def decode_file(filepath, output_path=None, strict: bool = False) -> dict:
    """Convenience: decode a .ved file with a default decoder."""
    return VedDecoder(strict=strict).decode_file(filepath, output_path)
