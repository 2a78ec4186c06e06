from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from politefetch.core.urls import canonicalize, content_hash, normalize_text, source_domain
from politefetch.services.repository import ScrapedItem

MAX_TITLE_LENGTH = 200


@dataclass(slots=True)
class ExtractedItem:
    item_url: str
    title: str
    content: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


Extractor = Callable[[str, bytes], Iterable[ExtractedItem]]


def no_extraction(source_url: str, content: bytes) -> list[ExtractedItem]:
    return []


def build_scraped_items(
    source_url: str,
    extracted: Iterable[ExtractedItem],
    *,
    seen_at: datetime | None = None,
) -> list[ScrapedItem]:
    """Turn extractor output into storable rows, one per natural key.

    Later items with the same ``(source_domain, canonical_item_url)`` replace
    earlier ones so a single upsert batch never touches a row twice.
    """
    seen_at = seen_at or datetime.now(timezone.utc)
    domain = source_domain(source_url)
    by_key: dict[tuple[str, str], ScrapedItem] = {}
    for item in extracted:
        title = normalize_text(item.title)
        scraped = ScrapedItem(
            source_domain=domain,
            item_url=item.item_url,
            canonical_item_url=canonicalize(item.item_url),
            title=title[:MAX_TITLE_LENGTH],
            content_hash=content_hash(title, item.content),
            metadata={**item.metadata, "source_page": source_url},
            last_seen_at=seen_at,
        )
        by_key[scraped.natural_key] = scraped
    return list(by_key.values())
