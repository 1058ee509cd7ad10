from __future__ import annotations

import functools
import inspect
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

import httpx

from alertpoller.core.contracts import Outcome
from alertpoller.core.reference import ReferenceTables
from alertpoller.core.settings import Settings
from alertpoller.core.time import utc_now
from alertpoller.services.geometry import JitterPolicy
from alertpoller.services.policy import screen
from alertpoller.services.zones import ZoneGeometryResolver

logger = logging.getLogger(__name__)

SUMMARY_MAX_CHARS = 5000


# ──────────────────────────────────────────────────────────────
# Context
# ──────────────────────────────────────────────────────────────

@dataclass
class NormalizeContext:
    """Everything a normalizer needs besides the record itself."""
    settings: Settings
    tables: ReferenceTables
    jitter: JitterPolicy
    zones: Optional[ZoneGeometryResolver] = None
    client: Optional[httpx.AsyncClient] = None
    now: datetime = field(default_factory=utc_now)

    def screen(
        self,
        *,
        event: Optional[str],
        severity: Optional[str],
        area_desc: Optional[str] = "",
        ugc_codes: Iterable[str] = (),
    ) -> Optional[str]:
        return screen(
            event=event,
            severity=severity,
            area_desc=area_desc,
            ugc_codes=ugc_codes,
            skip_minor=self.settings.skip_minor,
        )


# ──────────────────────────────────────────────────────────────
# Record isolation
# ──────────────────────────────────────────────────────────────

_RECORD_ERRORS = (KeyError, TypeError, ValueError, AttributeError, IndexError)


def record_guard(feed: str) -> Callable:
    """
    Turn an unexpected record shape into Outcome "parse-error" so one bad
    entry never aborts the rest of its feed.
    """
    def deco(fn: Callable) -> Callable:
        if inspect.iscoroutinefunction(fn):
            @functools.wraps(fn)
            async def async_wrapper(*args, **kwargs) -> Outcome:
                try:
                    return await fn(*args, **kwargs)
                except _RECORD_ERRORS as e:
                    logger.warning("record normalize failed feed=%s err=%r", feed, e)
                    return Outcome.dropped("parse-error")
            return async_wrapper

        @functools.wraps(fn)
        def wrapper(*args, **kwargs) -> Outcome:
            try:
                return fn(*args, **kwargs)
            except _RECORD_ERRORS as e:
                logger.warning("record normalize failed feed=%s err=%r", feed, e)
                return Outcome.dropped("parse-error")
        return wrapper

    return deco


# ──────────────────────────────────────────────────────────────
# Text
# ──────────────────────────────────────────────────────────────

_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_P_CLOSE_RE = re.compile(r"</p>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")
_SPACES_RE = re.compile(r"[ \t]+")
_BLANK_LINES_RE = re.compile(r"\n\s*\n")


def clean_html(text: Any, *, definition_lists: bool = False) -> str:
    """Feed HTML → plain text: line breaks kept, tags dropped, blank runs collapsed."""
    s = "" if text is None else str(text)
    if definition_lists:
        # USGS summaries: <dl><dt>Time</dt><dd>...</dd></dl>
        s = s.replace("<dt>", "\n").replace("</dt>", ": ").replace("<dd>", "").replace("</dd>", "")
        s = s.replace("<dl>", "").replace("</dl>", "")
    s = _BR_RE.sub("\n", s)
    s = _P_CLOSE_RE.sub("\n", s)
    s = _TAG_RE.sub("", s)
    s = s.replace("&deg;", "°")
    s = _SPACES_RE.sub(" ", s)
    s = _BLANK_LINES_RE.sub("\n", s)
    return s.strip()


def clip(text: str, limit: int = SUMMARY_MAX_CHARS) -> str:
    return text if len(text) <= limit else text[:limit]


def first_text(*values: Any) -> str:
    for v in values:
        if v is None:
            continue
        s = str(v).strip()
        if s:
            return s
    return ""


def squash(text: Any) -> str:
    return " ".join(str(text or "").split())
