"""URL helpers shared by the shelf model and the import collaborator."""

from __future__ import annotations

from urllib.parse import urlsplit, urlunsplit


def normalize_url(url: str | None) -> str:
    """Trim a user-entered URL and default the scheme to https.

    Returns an empty string for blank input.
    """
    if not url or not url.strip():
        return ""
    trimmed = url.strip()
    if trimmed.lower().startswith(("http://", "https://")):
        return trimmed
    return "https://" + trimmed


def url_key(url: str) -> str:
    """Comparison key used for duplicate detection.

    Scheme and host are case-insensitive and a bare trailing slash on the root
    path is ignored, so ``HTTPS://GitHub.com/`` and ``github.com`` collide.
    """
    parsed = urlsplit(normalize_url(url))
    path = parsed.path
    if path == "/":
        path = ""
    return urlunsplit(
        (parsed.scheme.lower(), parsed.netloc.lower(), path, parsed.query, parsed.fragment),
    )


def default_link_name(url: str) -> str:
    """Suggest a display name for a URL: its host, or the URL itself."""
    host = urlsplit(normalize_url(url)).hostname
    return host or url.strip()
