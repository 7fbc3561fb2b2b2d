"""Helpers for calendar feed URLs.

Feeds look like::

    https://www.google.com/calendar/feeds/foo%40gmail.com/private/full

The path segment after ``feeds`` is the URL-encoded owner address.
"""

import logging
from typing import Optional
from urllib.parse import unquote

logger = logging.getLogger(__name__)

SELF_ATTENDANCE_PROJECTION = "/private/full-selfattendance"
FULL_PROJECTION = "/private/full"


def calendar_email_from_feed_url(feed: Optional[str]) -> Optional[str]:
    """Return the owner address encoded in a feed URL, or None."""
    if not feed:
        return None
    parts = feed.split("/")
    if len(parts) > 5 and parts[4] == "feeds":
        return unquote(parts[5])
    logger.warning(f"Unable to find the email address in calendar feed {feed}")
    return None


def to_full_projection(url: Optional[str]) -> Optional[str]:
    """Rewrite a self-attendance feed URL to the full projection."""
    if url is None:
        return None
    return url.replace(SELF_ATTENDANCE_PROJECTION, FULL_PROJECTION)
