"""
Error taxonomy of the crawl engine.

- SessionExpired      the portal answered with its timeout page; the caller must log in again
- AddressDecodeError  a portal URL could not be decoded (UnexpectedProgram: wrong page kind)
- ExtractionError     a required element or field is missing from a fetched document
- StoreError          any SQLAlchemy error; propagated unchanged
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

StoreError = SQLAlchemyError


class CrawlError(Exception):
    """Base class for all errors raised by the crawl engine itself."""


class SessionExpired(CrawlError):
    def __init__(self, url: str) -> None:
        super().__init__(f"session expired while fetching {url}")
        self.url = url


class AddressDecodeError(CrawlError):
    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"cannot decode portal url {url!r}: {reason}")
        self.url = url
        self.reason = reason


class UnexpectedProgram(AddressDecodeError):
    def __init__(self, url: str, expected: object, actual: object) -> None:
        super().__init__(url, f"expected program {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class ExtractionError(CrawlError):
    """
    A structurally required element is absent from a fetched document.

    Carries the field (or selector) that was expected, the URL of the document
    and, where known, the identifier of the entity being extracted.
    """

    def __init__(self, field: str, url: str, entity_id: Optional[bytes] = None) -> None:
        where = f" (entity {entity_id.hex()})" if entity_id is not None else ""
        super().__init__(f"expected field {field!r} missing in {url}{where}")
        self.field = field
        self.url = url
        self.entity_id = entity_id
