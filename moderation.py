"""
Content checks for user submissions: a word-boundary profanity filter and
bleach-based HTML sanitizing.
"""
import re
from typing import List

import bleach

PROFANITY_ERROR = "Comment contains inappropriate content. Please revise your message."

# '*' matches any single character so slurs need not be spelled out here
INAPPROPRIATE_WORDS = [
    # explicit
    "porn", "xxx", "blowjob", "handjob", "dildo", "orgasm", "masturbate", "milf",
    "slut", "whore", "pussy", "tits",
    # strong profanity
    "fuck", "fucking", "fucker", "fucked", "motherfucker", "shit", "bullshit",
    "dipshit", "asshole", "arsehole", "dumbass", "bitch", "bastard", "dickhead",
    "cock", "prick",
    # slurs
    "n*gger", "n*gga", "sp*c", "ch*nk", "k*ke", "w*tback", "retard", "retarded",
    # spam
    "viagra", "cialis", "casino",
]

TRAVEL_SAFE_WORDS = {"casino"}
TRAVEL_CONTEXT = ("travel", "trip", "hotel", "resort")

WHITELIST_CONTEXTS = ["casino hotel", "casino resort"]

_PATTERNS = [
    (word, re.compile(r"\b" + re.escape(word).replace(r"\*", ".") + r"\b", re.IGNORECASE))
    for word in INAPPROPRIATE_WORDS
]


def contains_profanity(text: str) -> bool:
    lower = (text or "").lower()
    if any(ctx in lower for ctx in WHITELIST_CONTEXTS):
        return False
    for word, pattern in _PATTERNS:
        if word in TRAVEL_SAFE_WORDS and any(c in lower for c in TRAVEL_CONTEXT):
            continue
        if pattern.search(lower):
            return True
    return False


# -------------------------------------------------------------------
# HTML sanitizing
# -------------------------------------------------------------------
RICH_TEXT_TAGS = [
    "p", "br", "strong", "b", "em", "i", "u", "s", "code", "pre", "blockquote",
    "h1", "h2", "h3", "h4", "h5", "h6", "ul", "ol", "li", "a", "img", "hr",
    "figure", "figcaption", "table", "thead", "tbody", "tr", "th", "td", "span", "div",
]
RICH_TEXT_ATTRIBUTES = {
    "a": ["href", "title", "target", "rel"],
    "img": ["src", "alt", "title", "width", "height"],
    "*": ["class"],
}


def sanitize_rich_text(html: str) -> str:
    """Keep formatting markup, drop scripts, handlers and unknown tags."""
    if not html:
        return html
    return bleach.clean(
        html,
        tags=RICH_TEXT_TAGS,
        attributes=RICH_TEXT_ATTRIBUTES,
        protocols=["http", "https", "mailto"],
        strip=True,
    )


def strip_html(text: str) -> str:
    if not text:
        return text
    return bleach.clean(text, tags=[], strip=True).strip()


MENTION_RE = re.compile(r"@([A-Za-z0-9_.\-]{2,50})")


def extract_mentions(text: str) -> List[str]:
    seen: List[str] = []
    for name in MENTION_RE.findall(text or ""):
        if name not in seen:
            seen.append(name)
    return seen
