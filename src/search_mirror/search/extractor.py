"""Turn one primary-store record into a single normalized index string."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
import html
import logging
import re
from typing import Any
import unicodedata
import warnings

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning

from search_mirror.deployment_config import EntityIndexConfig


logger = logging.getLogger(__name__)

VALUE_SEPARATOR = " . "
TEXT_COLUMN_TYPES = frozenset({"text", "varchar", "char", "string"})
DEFAULT_PRIMARY_KEY = "id"
REPLACEMENT_CHARACTER = "�"

_WHITESPACE_PATTERN = re.compile(r"\s+")
# C0 and C1 controls that are not whitespace, plus DEL. NEL (\x85) is left
# for the whitespace pass.
_CONTROL_PATTERN = re.compile(r"[\x00-\x08\x0e-\x1f\x7f-\x84\x86-\x9f]")
_SURROGATE_PATTERN = re.compile(r"[\ud800-\udfff]")
_COLUMN_TYPE_PATTERN = re.compile(r"^\s*([a-zA-Z ]+)")


class FieldExtractor:
    """Build the index text for a record.

    The default algorithm flattens the record, keeps the string values of
    text-like fields, strips markup and joins them with ``" . "``. An entity
    type may replace it wholesale with ``config.extractor`` or refine the
    result with ``config.post_process``.
    """

    def extract(
        self,
        record: Mapping[str, Any] | None,
        config: EntityIndexConfig,
        column_types: Mapping[str, str] | None = None,
        primary_key: str | None = None,
    ) -> str:
        """Return the normalized index text of ``record``, or "" if there is none.

        ``primary_key`` names the field left out of the text; it defaults to
        ``config.primary_key``, then ``"id"``.
        """
        if not record:
            return ""

        if config.extractor is not None:
            logger.debug("Using custom extractor for %s", config.entity_type)
            text = config.extractor(record)
            if not isinstance(text, str):
                raise TypeError(
                    f"extractor for '{config.entity_type}' returned {type(text).__name__}, expected str"
                )
            return text

        primary_key = primary_key or config.primary_key or DEFAULT_PRIMARY_KEY
        values = list(self._iter_values(record, config, column_types, primary_key))
        text = normalize_text(VALUE_SEPARATOR.join(values))
        if config.post_process is not None:
            text = config.post_process(text)
        return text

    def _iter_values(
        self,
        record: Mapping[str, Any],
        config: EntityIndexConfig,
        column_types: Mapping[str, str] | None,
        primary_key: str,
    ) -> Iterator[str]:
        nested = record.get(config.entity_type)
        if isinstance(nested, Mapping):
            record = nested

        allowed = config.allowed_fields()
        for key, value in flatten_record(record):
            if not isinstance(value, str):
                continue
            if key == primary_key:
                continue
            if allowed and key not in allowed:
                continue
            if column_types is not None and key in column_types:
                if not is_text_column(column_types[key]):
                    continue
            cleaned = strip_markup(value)
            if cleaned.strip():
                yield cleaned


def flatten_record(record: Mapping[str, Any], prefix: str = "") -> Iterator[tuple[str, Any]]:
    """Yield ``(dotted.key, value)`` pairs in iteration order.

    List items are addressed by index (``tags.0``).
    """
    for key, value in record.items():
        path = f"{prefix}{key}"
        if isinstance(value, Mapping):
            yield from flatten_record(value, f"{path}.")
        elif isinstance(value, (list, tuple)):
            yield from flatten_record({str(idx): item for idx, item in enumerate(value)}, f"{path}.")
        else:
            yield path, value


def is_text_column(column_type: str) -> bool:
    """Return True for text-like column types such as ``VARCHAR(255)``."""
    match = _COLUMN_TYPE_PATTERN.match(column_type or "")
    if not match:
        return False
    return match.group(1).strip().lower() in TEXT_COLUMN_TYPES


def strip_markup(value: str) -> str:
    """Decode HTML entities, then drop any tags."""
    decoded = html.unescape(value)
    if "<" not in decoded:
        return decoded
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", MarkupResemblesLocatorWarning)
        return BeautifulSoup(decoded, "html.parser").get_text()


def normalize_text(text: str) -> str:
    """Make text valid Unicode, collapse whitespace and trim.

    Undecodable sequences (lone surrogates) become U+FFFD; other control
    characters are dropped.
    """
    if not text:
        return ""
    text = _SURROGATE_PATTERN.sub(REPLACEMENT_CHARACTER, text)
    text = unicodedata.normalize("NFC", text)
    text = _CONTROL_PATTERN.sub("", text)
    text = _WHITESPACE_PATTERN.sub(" ", text)
    return text.strip()
