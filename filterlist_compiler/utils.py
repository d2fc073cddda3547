# utils.py
"""
Shared helpers for parsing and normalizing filter list rules.

This module provides:
- Adblock syntax constants and precompiled regexes
- Escape-aware string splitting and searching
- Domain normalization, punycode conversion and public suffix lookups
- Source identifier helpers (URL vs. local path)
- Atomic text writes

Public suffix lookups use tldextract's packaged snapshot of the Public Suffix
List; the live list is never downloaded.

Example Usage:
    from filterlist_compiler.utils import parse_hostname, to_punycode

    parse_hostname("ads.Example.co.uk")
    # Returns: ParsedHost(hostname="ads.example.co.uk", is_ip=False,
    #                     public_suffix="co.uk")

    to_punycode("пример.рф")  # Returns: "xn--e1afmkfd.xn--p1ai"
"""

from __future__ import annotations

import ipaddress
import logging
import re
import tempfile
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Iterator

import tldextract

logger = logging.getLogger(__name__)


# -------------------------
# Precompiled regexes & constants
# -------------------------

# Adblock syntax constants (shared across modules)
DOMAIN_PREFIX = "||"
DOMAIN_SEPARATOR = "^"
WILDCARD = "*"
WILDCARD_DOMAIN_PART = "*."
EXCEPTION_PREFIX = "@@"
ELEMENT_HIDING_MARKERS = ("##", "#@#", "#%#", "#$#", "#?#")

DOMAIN_CACHE_SIZE = 32768

_DOMAIN_REGEX = re.compile(
    r"^(?=.{1,253}$)[0-9A-Za-z]"
    r"(?:(?:[0-9A-Za-z]|-){0,61}[0-9A-Za-z])?"
    r"(?:\.[0-9A-Za-z](?:(?:[0-9A-Za-z]|-){0,61}[0-9A-Za-z])?)*$",
    flags=re.ASCII,
)

_ETC_HOSTS_REGEX = re.compile(
    r"^([0-9A-Fa-f:\.\[\]]+)(?:%[a-zA-Z0-9]+)?\s+([^#]+)(?:#.*)?$"
)
# Domain-like run of labels; stops at adblock punctuation and option separators.
_DOMAIN_PATTERN_RE = re.compile(
    r"(\*\.)?([^\s\^$|=,/~]+(?:\.[^\s\^$|=,/~]+)+)", flags=re.UNICODE
)
_NON_ASCII_RE = re.compile(r"[^\x00-\x7F]")
_URL_RE = re.compile(r"^https?://", flags=re.IGNORECASE)
_WINDOWS_DRIVE_RE = re.compile(r"^[a-zA-Z]:[/\\]")

DOMAIN_REGEX = _DOMAIN_REGEX
ETC_HOSTS_REGEX = _ETC_HOSTS_REGEX
NON_ASCII_RE = _NON_ASCII_RE


# -------------------------
# Basic helpers
# -------------------------


def is_blank_line(line: str | None) -> bool:
    """True if line is None or only whitespace."""
    return line is None or line.strip() == ""


def contains_non_ascii_characters(s: str) -> bool:
    """Return True if string contains non-ASCII characters."""
    return bool(_NON_ASCII_RE.search(s or ""))


def substring_between(s: str | None, start_tag: str, end_tag: str) -> str | None:
    """Return substring between start_tag and end_tag, or None."""
    if not s:
        return None
    start = s.find(start_tag)
    if start == -1:
        return None
    start += len(start_tag)
    end = s.find(end_tag, start)
    if end != -1:
        return s[start:end]
    return None


def split_by_delimiter_with_escape_character(
    s: str | None,
    delimiter: str,
    escape_character: str,
    preserve_all_tokens: bool,
) -> list[str]:
    """
    Split `s` on `delimiter`, treating `escape_character + delimiter` as a
    literal delimiter inside a token.
    """
    parts: list[str] = []
    if not s:
        return parts

    sb: list[str] = []
    for i, ch in enumerate(s):
        prev = s[i - 1] if i > 0 else ""
        if ch == delimiter:
            if i == 0:
                continue
            if prev == escape_character:
                if sb:
                    sb.pop()
                sb.append(ch)
            elif preserve_all_tokens or sb:
                parts.append("".join(sb))
                sb.clear()
        else:
            sb.append(ch)

    if preserve_all_tokens or sb:
        parts.append("".join(sb))
    return parts


def _count_preceding_backslashes(s: str, idx: int) -> int:
    j = idx - 1
    count = 0
    while j >= 0 and s[j] == "\\":
        count += 1
        j -= 1
    return count


def find_last_unescaped_char(s: str, ch: str, start: int = 0) -> int:
    """Return last index of unescaped ch at or after start."""
    for i in range(len(s) - 1, start - 1, -1):
        if s[i] == ch and _count_preceding_backslashes(s, i) % 2 == 0:
            return i
    return -1


# -------------------------
# IP & domain helpers
# -------------------------


def canonicalize_ip(ip_raw: str) -> str | None:
    """Return canonical IP string, stripping brackets/zone IDs; None if invalid."""
    if not ip_raw:
        return None
    cand = ip_raw.strip().strip("[]")
    if "%" in cand:
        cand = cand.split("%", 1)[0]
    try:
        return str(ipaddress.ip_address(cand))
    except ValueError:
        return None


@lru_cache(maxsize=DOMAIN_CACHE_SIZE)
def to_punycode(domain: str) -> str:
    """Convert domain (possibly Unicode) to IDNA/punycode; on failure return
    original."""
    if not domain or domain.isascii():
        return domain
    try:
        return domain.encode("idna").decode("ascii")
    except UnicodeError:
        logger.debug("Cannot convert %s to punycode", domain)
        return domain


def convert_non_ascii_to_punycode(text: str) -> str:
    """Replace non-ASCII domain-like substrings with punycode (no-op for ASCII)."""
    if not _NON_ASCII_RE.search(text):
        return text

    def _repl(m: re.Match) -> str:
        wildcard = m.group(1) or ""
        domain = m.group(2)
        if _NON_ASCII_RE.search(domain):
            return wildcard + to_punycode(domain)
        return m.group(0)

    return _DOMAIN_PATTERN_RE.sub(_repl, text)


def walk_suffixes(domain: str) -> Iterator[str]:
    """
    Yield domain and successive parent suffixes (e.g., a.b.c -> a.b.c, b.c, c).
    """
    if not domain:
        return
    cur = domain
    yield cur
    idx = cur.find(".")
    while idx != -1:
        cur = cur[idx + 1 :]
        yield cur
        idx = cur.find(".")


def is_valid_hostname(hostname: str) -> bool:
    """Return True if hostname is made of valid DNS labels."""
    return bool(hostname) and _DOMAIN_REGEX.match(hostname) is not None


# -------------------------
# Public suffix list
# -------------------------


@lru_cache(maxsize=1)
def _suffix_extractor() -> tldextract.TLDExtract:
    """Return a PSL extractor backed by the bundled snapshot (no network)."""
    return tldextract.TLDExtract(suffix_list_urls=(), cache_dir=None)


@lru_cache(maxsize=DOMAIN_CACHE_SIZE)
def public_suffix(domain: str) -> str | None:
    """
    Return the public suffix of `domain`.

    Unlisted TLDs fall back to the last label (the PSL default "*" rule).
    """
    if not domain:
        return None
    d = domain.strip().lower().rstrip(".")
    if not d:
        return None
    suffix = _suffix_extractor()(d).suffix
    if suffix:
        return suffix
    last = d.rsplit(".", 1)[-1]
    return last if is_valid_hostname(last) else None


@dataclass(frozen=True)
class ParsedHost:
    hostname: str | None
    is_ip: bool = False
    public_suffix: str | None = None


@lru_cache(maxsize=DOMAIN_CACHE_SIZE)
def parse_hostname(hostname: str) -> ParsedHost:
    """
    Normalize a hostname and classify it.

    `hostname` is None in the result when the input is neither an IP address
    nor a syntactically valid domain name.
    """
    if not hostname:
        return ParsedHost(None)
    normalized = hostname.strip().lower()
    if normalized.endswith("."):
        normalized = normalized[:-1]
    ip = canonicalize_ip(normalized)
    if ip is not None:
        return ParsedHost(normalized, is_ip=True)
    if not is_valid_hostname(normalized):
        return ParsedHost(None)
    return ParsedHost(normalized, public_suffix=public_suffix(normalized))


# -------------------------
# Source identifiers
# -------------------------


def is_url(source: str) -> bool:
    """Return True for http(s) URLs; everything else is a local path."""
    return bool(source and _URL_RE.match(source))


def is_absolute_path(path: str) -> bool:
    """Return True for URLs, POSIX absolute paths and drive-letter paths."""
    return (
        path.startswith("/")
        or _WINDOWS_DRIVE_RE.match(path) is not None
        or is_url(path)
    )


def atomic_write_text(target: Path, text: str, encoding: str = "utf-8") -> None:
    """
    Atomically write `text` to `target`.

    The target directory is created when missing; a temporary file in the same
    directory replaces the target in a single step.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w",
        delete=False,
        dir=target.parent,
        prefix=".tmp_filterlist_",
        encoding=encoding,
        newline="\n",
    ) as tmp:
        tmp.write(text)
        tmp_path = Path(tmp.name)
    try:
        tmp_path.replace(target)
    except OSError:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)
        raise


__all__ = [
    "is_blank_line",
    "contains_non_ascii_characters",
    "substring_between",
    "split_by_delimiter_with_escape_character",
    "find_last_unescaped_char",
    "canonicalize_ip",
    "to_punycode",
    "convert_non_ascii_to_punycode",
    "walk_suffixes",
    "is_valid_hostname",
    "public_suffix",
    "ParsedHost",
    "parse_hostname",
    "is_url",
    "is_absolute_path",
    "atomic_write_text",
    "DOMAIN_PREFIX",
    "DOMAIN_SEPARATOR",
    "WILDCARD",
    "WILDCARD_DOMAIN_PART",
    "EXCEPTION_PREFIX",
    "ELEMENT_HIDING_MARKERS",
    "DOMAIN_REGEX",
    "ETC_HOSTS_REGEX",
    "NON_ASCII_RE",
]
