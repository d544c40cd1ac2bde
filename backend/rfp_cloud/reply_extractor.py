# reply_extractor.py
# Cut the newest, top-posted part out of a reply thread.
import re

# Each pattern marks where quoted history starts. Earliest hit wins. A marker
# on the very first line never counts: the body then opens with an inline
# reply, and its ">" prefixes are stripped below.
REPLY_BOUNDARIES = [
    re.compile(r"(?<=\n)[ \t]*On\b.*?\bwrote:[ \t]*$", re.IGNORECASE | re.MULTILINE),
    re.compile(r"(?<=\n)[ \t]*From:", re.IGNORECASE),
    re.compile(r"(?<=\n).*-{3,}\s*Original Message\s*-{3,}", re.IGNORECASE),
    re.compile(r"(?<=\n)[ \t]*>"),
]

_QUOTE_PREFIX = re.compile(r"^[ \t]*>+[ \t]?", re.MULTILINE)
_BLANK_RUNS = re.compile(r"\n{3,}")


def extract_latest(body: str) -> str:
    """
    Return the newest human-written segment of an email body.

    Everything from the first attribution line ("On ... wrote:"), forwarded
    header ("From:"), "--- Original Message ---" separator or ">" quoted line
    onwards is dropped, unless that marker opens the body.

    >>> extract_latest("Hello\\nOn Jan 1, 2024, Bob wrote:\\n> old text")
    'Hello'
    """
    if not body:
        return ""
    text = body.replace("\r\n", "\n").replace("\r", "\n")

    cut = len(text)
    for pattern in REPLY_BOUNDARIES:
        m = pattern.search(text)
        if m and m.start() < cut:
            cut = m.start()

    latest = text[:cut]
    latest = _QUOTE_PREFIX.sub("", latest)
    latest = _BLANK_RUNS.sub("\n\n", latest)
    return latest.strip()
