# src/batchscrape/jobs/url_utils.py

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

_SPLIT_RE = re.compile(r"[\n,]")
_INJECTABLE_SCHEMES = ("http", "https")


@dataclass(slots=True)
class ValidatedUrls:
    valid: list[str] = field(default_factory=list)
    invalid: list[str] = field(default_factory=list)
    duplicates_removed: int = 0


def parse_urls(text: str) -> list[str]:
    """Split pasted/file input on newlines and commas. Lines starting with # are comments."""
    parts = (p.strip() for p in _SPLIT_RE.split(text or ""))
    return [p for p in parts if p and not p.startswith("#")]


def is_scrapable_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme.lower() in _INJECTABLE_SCHEMES and bool(parts.netloc)


def validate_and_deduplicate_urls(text: str) -> ValidatedUrls:
    out = ValidatedUrls()
    seen: set[str] = set()
    parsed = parse_urls(text)

    for url in parsed:
        if not is_scrapable_url(url):
            out.invalid.append(url)
            continue
        key = url.lower()
        if key in seen:
            continue
        seen.add(key)
        out.valid.append(url)

    out.duplicates_removed = len(parsed) - len(out.valid) - len(out.invalid)
    logger.debug(
        "URL validation total=%d valid=%d invalid=%d duplicates_removed=%d",
        len(parsed),
        len(out.valid),
        len(out.invalid),
        out.duplicates_removed,
    )
    return out


def generate_job_name(urls: list[str] | tuple[str, ...]) -> str:
    """
    Default job name: "<first host> - <date> - <short id>".
    """
    hosts: list[str] = []
    for url in urls:
        try:
            host = urlsplit(url).hostname
        except ValueError:
            host = None
        if host and host not in hosts:
            hosts.append(host)

    main_host = hosts[0] if hosts else "batch"
    stamp = datetime.now(UTC).strftime("%Y-%m-%d")
    short_id = uuid.uuid4().hex[:6]
    return f"{main_host} - {stamp} - {short_id}"
