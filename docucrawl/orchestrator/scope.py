"""URL normalisation and the scope predicate applied to discovered links."""
from __future__ import annotations

from typing import Optional
from urllib.parse import urldefrag, urlsplit

import structlog

from docucrawl.orchestrator.settings import CrawlerSettings

LOGGER = structlog.get_logger(__name__)

ALLOWED_SCHEMES = frozenset({"http", "https"})


def normalize_url(url: str) -> Optional[str]:
    """Strip the fragment and return the URL, or None if it is not http(s)."""
    if not url:
        return None
    try:
        stripped, _fragment = urldefrag(url.strip())
        parts = urlsplit(stripped)
        hostname = parts.hostname
    except ValueError:
        return None
    if parts.scheme.lower() not in ALLOWED_SCHEMES or not hostname:
        return None
    return stripped


def base_path(url: str) -> str:
    """Return the first path segment of the URL, e.g. ``/docs/x/y`` -> ``/docs``."""
    path = urlsplit(url).path
    return "/".join(path.split("/")[:2])


def file_extension(path: str) -> Optional[str]:
    last_segment = path.rsplit("/", 1)[-1]
    if "." not in last_segment:
        return None
    ext = last_segment.rsplit(".", 1)[-1].lower()
    return ext or None


def is_indexable(candidate_url: str, seed_url: str, settings: CrawlerSettings) -> bool:
    """Return whether ``candidate_url`` is in scope for a job seeded at ``seed_url``.

    Domain matching is exact on the hostname; subdomains of the seed host are
    treated as different sites. Never raises: unparsable URLs are rejected.
    """
    try:
        candidate = urlsplit(candidate_url)
        seed = urlsplit(seed_url)
        candidate_host = candidate.hostname
        seed_host = seed.hostname
    except ValueError:
        LOGGER.debug("scope_invalid_url", url=candidate_url)
        return False

    if settings.exclude_file_types:
        ext = file_extension(candidate.path)
        if ext and ext in settings.exclude_file_types:
            return False

    if settings.stay_on_domain and candidate_host != seed_host:
        return False

    if settings.stay_on_path and not candidate.path.startswith(base_path(seed_url)):
        return False

    return True
