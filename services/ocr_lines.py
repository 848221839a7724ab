"""Parse recognized market-board text into (item name, unit price) rows.

OCR output is noisy: separators come out as full-width punctuation, digits are
read as look-alike letters, and thousands are grouped in several styles. Each
line is parsed on its own and a bad line never stops the rest.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Sequence

from engine.errors import OcrParseError, ValidationError
from utils.names import clean_display_name

log = logging.getLogger(__name__)

PRICE_COLUMNS = ("left", "right")

_SEPARATOR_TABLE = str.maketrans({
    "|": " ",
    "\t": " ",
    "　": " ",
    "，": ",",
    "：": ":",
    "；": ";",
    "．": ".",
    "＇": "'",
    "−": "-",
    "－": "-",
})

# letters OCR commonly returns in place of digits
_DIGIT_CONFUSIONS = str.maketrans({
    "O": "0", "o": "0", "D": "0", "Q": "0",
    "l": "1", "I": "1", "i": "1",
    "Z": "2",
    "S": "5",
    "B": "8",
})

_GROUPED = re.compile(r"^\d{1,3}(?:([,.'])\d{3})(?:\1\d{3})*$")
_PLAIN = re.compile(r"^\d+$")
_SPACE_GROUP = re.compile(r"^-?\d{1,3}$")
_LEADING_ORDINAL = re.compile(r"^(?:\(?\d{1,3}[.)、]\s*|[-*•·>]+\s*)+")
_EDGE_PUNCT = " :;,.=-–—·>*•"
_TRAILING_TOKEN_PUNCT = ".,;:"


@dataclass
class OcrPriceRow:
    line_number: int
    raw_text: str
    item_name: str
    unit_price: int


@dataclass
class OcrInvalidLine:
    line_number: int
    raw_text: str
    reason: str


@dataclass
class OcrParseResult:
    valid_rows: List[OcrPriceRow] = field(default_factory=list)
    invalid_lines: List[OcrInvalidLine] = field(default_factory=list)


class _LineRejected(Exception):
    pass


def normalize_ocr_line(line: str) -> str:
    """Map full-width separators to ASCII and collapse whitespace."""
    text = line.translate(_SEPARATOR_TABLE)
    # a colon or equals sign always separates the name from the price
    text = re.sub(r"[:=]", " : ", text)
    return " ".join(text.split())


def _repair_digits(token: str) -> str:
    if not any(ch.isdigit() for ch in token):
        return token
    return token.translate(_DIGIT_CONFUSIONS)


def _numeric_value(token: str) -> Optional[int]:
    """Value of a single price token, or None when the token is not a number."""
    if _PLAIN.match(token):
        return int(token)
    if _GROUPED.match(token):
        return int(re.sub(r"[,.']", "", token))
    return None


def _split_price(tokens: List[str]) -> tuple:
    """Return (name tokens, unit price) from the tokens of one line."""
    last = tokens[-1].rstrip(_TRAILING_TOKEN_PUNCT)
    if not any(ch.isdigit() for ch in last):
        raise _LineRejected("no trailing price")
    last = _repair_digits(last)
    if last.startswith("-") and last[1:2].isdigit():
        raise _LineRejected("negative price")

    value = _numeric_value(last)
    if value is None:
        raise _LineRejected(f"malformed price: {tokens[-1]}")

    cut = len(tokens) - 1
    # space separated thousand groups, e.g. "1 250 000" or "Sword: 18 000"
    if _PLAIN.match(last) and len(last) == 3:
        run = [last]
        start = cut
        while start > 0:
            prev = _repair_digits(tokens[start - 1])
            if not _SPACE_GROUP.match(prev):
                break
            run.insert(0, prev)
            start -= 1
            if len(prev) < 3:
                break
        # one leading group alone is only merged after an explicit separator
        if len(run) > 2 or (len(run) == 2 and start > 0 and tokens[start - 1] == ":"):
            if any(group.startswith("-") for group in run):
                raise _LineRejected("negative price")
            cut = start
            value = int("".join(run))
    return tokens[:cut], value


def _clean_name(tokens: Sequence[str]) -> str:
    name = " ".join(tokens)
    name = _LEADING_ORDINAL.sub("", name)
    return clean_display_name(name.strip(_EDGE_PUNCT))


def parse_ocr_line(line: str) -> tuple:
    """Parse one line into ``(item_name, unit_price)``.

    Raises ``_LineRejected`` with the reason on failure.
    """
    tokens = normalize_ocr_line(line).split()
    if not tokens:
        raise _LineRejected("empty line")
    name_tokens, value = _split_price(tokens)
    name = _clean_name(name_tokens)
    if not name:
        raise _LineRejected("empty item name")
    return name, value


def _parse_lines(lines: Iterable[tuple]) -> OcrParseResult:
    result = OcrParseResult()
    for line_number, raw in lines:
        raw_text = raw.strip()
        if not raw_text:
            continue
        try:
            name, price = parse_ocr_line(raw_text)
        except _LineRejected as e:
            result.invalid_lines.append(OcrInvalidLine(line_number, raw_text, str(e)))
            continue
        result.valid_rows.append(OcrPriceRow(line_number, raw_text, name, price))
    log.debug("OCR parse: %d rows, %d invalid", len(result.valid_rows), len(result.invalid_lines))
    return result


def parse_ocr_lines(text: Optional[str]) -> OcrParseResult:
    """
    Parse recognized text, one candidate row per line.

    Raises:
        OcrParseError: ``text`` is absent or blank
    """
    if not isinstance(text, str) or not text.strip():
        raise OcrParseError("OCR text is empty.")
    return _parse_lines(enumerate(text.splitlines(), start=1))


def _select_price_cell(price_text: str, price_column: str) -> str:
    columns = [c.strip() for c in re.split(r"\s{2,}|[|\t/]", price_text.strip()) if c.strip()]
    if len(columns) < 2:
        return price_text
    return columns[0] if price_column == "left" else columns[-1]


def parse_ocr_trade_rows(rows: Sequence[Any], price_column: str = "left") -> OcrParseResult:
    """
    Parse two-column ``(name_text, price_text)`` candidates.

    When a price cell holds two prices (server and world boards side by
    side), ``price_column`` picks which one is used.
    """
    if price_column not in PRICE_COLUMNS:
        raise ValidationError(f"Unknown price column: {price_column}")
    if not rows:
        raise OcrParseError("No OCR rows to parse.")

    lines = []
    for index, row in enumerate(rows, start=1):
        if isinstance(row, dict):
            name_text, price_text = row.get("name", ""), row.get("price", "")
        else:
            name_text, price_text = row
        price = _select_price_cell(str(price_text or ""), price_column)
        lines.append((index, f"{name_text or ''}: {price}"))
    return _parse_lines(lines)


__all__ = [
    "OcrPriceRow",
    "OcrInvalidLine",
    "OcrParseResult",
    "normalize_ocr_line",
    "parse_ocr_lines",
    "parse_ocr_trade_rows",
]
