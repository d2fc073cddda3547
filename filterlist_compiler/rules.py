"""
Parsing and serialization of individual filter list lines.

A line is one of:
  - a comment (`! ...` or `# ...`)
  - an empty line
  - an /etc/hosts rule (`0.0.0.0 example.com [more hostnames]`)
  - an adblock-style rule (`@@||example.com^$important,dnstype=AAAA`)

Example Usage:
    from filterlist_compiler import rules

    rule = rules.parse_adblock_rule("@@||example.com^$client=127.0.0.1")
    rule.is_exception        # True
    rule.hostname            # "example.com"
    rules.serialize(rule)    # "@@||example.com^$client=127.0.0.1"
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Union

from filterlist_compiler import utils
from filterlist_compiler.errors import ParseError

# `||hostname^` with nothing else; the trailing separator is optional.
_ABP_HOSTNAME_RE = re.compile(r"^\|\|([a-z0-9\-.]+)\^?$", flags=re.IGNORECASE)


# ----------------------------------------
# Rule model
# ----------------------------------------
@dataclass(frozen=True)
class RuleOption:
    name: str
    value: str | None = None

    def to_text(self) -> str:
        if self.value is None:
            return self.name
        escaped = self.value.replace(",", "\\,")
        return f"{self.name}={escaped}"


@dataclass
class AdblockRule:
    pattern: str
    is_exception: bool = False
    options: list[RuleOption] = field(default_factory=list)
    rule_text: str = ""

    @property
    def hostname(self) -> str | None:
        """Hostname of a plain `||hostname^` pattern, lowercased."""
        m = _ABP_HOSTNAME_RE.match(self.pattern)
        return m.group(1).lower() if m else None

    @property
    def is_regex(self) -> bool:
        return len(self.pattern) > 1 and self.pattern.startswith("/") and self.pattern.endswith("/")

    def find_option(self, name: str) -> RuleOption | None:
        """Return the first option called `name` or `~name`."""
        for opt in self.options:
            if opt.name == name or opt.name == f"~{name}":
                return opt
        return None

    def option_names(self) -> list[str]:
        return [opt.name for opt in self.options]

    def to_text(self) -> str:
        text = (utils.EXCEPTION_PREFIX if self.is_exception else "") + self.pattern
        if self.options:
            text += "$" + ",".join(opt.to_text() for opt in self.options)
        return text


@dataclass
class HostsRule:
    ip: str
    hostnames: list[str] = field(default_factory=list)
    rule_text: str = ""

    def to_text(self) -> str:
        return " ".join([self.ip, *self.hostnames])


@dataclass(frozen=True)
class CommentLine:
    text: str

    def to_text(self) -> str:
        return self.text


@dataclass(frozen=True)
class EmptyLine:
    def to_text(self) -> str:
        return ""


Rule = Union[AdblockRule, HostsRule]
Line = Union[AdblockRule, HostsRule, CommentLine, EmptyLine]


# ----------------------------------------
# Line classification
# ----------------------------------------
def _is_cosmetic(text: str) -> bool:
    """`##selector` and friends start with '#' but are rules, not comments."""
    for marker in utils.ELEMENT_HIDING_MARKERS:
        if text.startswith(marker):
            rest = text[len(marker):]
            return bool(rest) and rest[0] not in (" ", "#")
    return False


def is_comment(line: str | None) -> bool:
    """True for `!` and `#` comment lines (leading whitespace ignored)."""
    if not line:
        return False
    s = line.strip()
    if s.startswith("!"):
        return True
    return s.startswith("#") and not _is_cosmetic(s)


def is_comment_or_blank(line: str | None) -> bool:
    return utils.is_blank_line(line) or is_comment(line)


def is_etc_hosts_rule(line: str | None) -> bool:
    """Return True if line has /etc/hosts shape with a real IP address."""
    if not line:
        return False
    m = utils.ETC_HOSTS_REGEX.match(line.strip())
    return bool(m) and utils.canonicalize_ip(m.group(1)) is not None


def is_allow_rule(line: str | None) -> bool:
    return bool(line) and line.strip().startswith(utils.EXCEPTION_PREFIX)


def is_just_domain(line: str | None) -> bool:
    """Return True for a bare domain name with no adblock syntax."""
    if not line:
        return False
    s = line.strip()
    return "." in s and utils.DOMAIN_REGEX.match(s.rstrip(".")) is not None


# ----------------------------------------
# Parsing
# ----------------------------------------
def parse_hosts_rule(line: str) -> HostsRule:
    """Parse `<ip> <hostname> [hostname...]`, dropping any inline `#` comment."""
    if not is_etc_hosts_rule(line):
        raise ParseError(line, "not an /etc/hosts rule")
    body = line.strip()
    hash_idx = body.find("#")
    if hash_idx > 0:
        body = body[:hash_idx]
    parts = body.split()
    return HostsRule(ip=parts[0], hostnames=parts[1:], rule_text=line)


def parse_options(options_text: str | None) -> list[RuleOption]:
    options: list[RuleOption] = []
    for token in utils.split_by_delimiter_with_escape_character(
        options_text, ",", "\\", False
    ):
        token = token.strip()
        if not token:
            continue
        if "=" in token:
            name, value = token.split("=", 1)
            options.append(RuleOption(name.strip(), value.strip()))
        else:
            options.append(RuleOption(token))
    return options


def parse_adblock_rule(line: str) -> AdblockRule:
    """
    Split an adblock rule into exception flag, pattern and options.

    Raises ParseError when no pattern can be extracted.
    """
    if line is None:
        raise ParseError("", "rule is None")
    s = line.strip()
    is_exception = s.startswith(utils.EXCEPTION_PREFIX)
    body = s[2:] if is_exception else s
    if not body:
        raise ParseError(line, "the rule is too short")

    # A whole-line /regex/ keeps its '$' characters.
    if len(body) > 1 and body.startswith("/") and body.endswith("/"):
        return AdblockRule(body, is_exception, [], line)

    dollar = utils.find_last_unescaped_char(body, "$")
    if dollar == -1:
        pattern, options_text = body, None
    else:
        pattern, options_text = body[:dollar], body[dollar + 1 :]
    if not pattern:
        raise ParseError(line, "the rule has no pattern")
    return AdblockRule(pattern, is_exception, parse_options(options_text), line)


def parse_line(line: str) -> Line:
    """Classify and parse a single line."""
    if utils.is_blank_line(line):
        return EmptyLine()
    if is_comment(line):
        return CommentLine(line.strip())
    if is_etc_hosts_rule(line):
        return parse_hosts_rule(line)
    return parse_adblock_rule(line)


def serialize(rule: Line) -> str:
    return rule.to_text()


def try_parse_adblock_rule(line: str) -> AdblockRule | None:
    """parse_adblock_rule() that returns None instead of raising."""
    try:
        return parse_adblock_rule(line)
    except ParseError:
        return None


__all__ = [
    "RuleOption",
    "AdblockRule",
    "HostsRule",
    "CommentLine",
    "EmptyLine",
    "Rule",
    "Line",
    "is_comment",
    "is_comment_or_blank",
    "is_etc_hosts_rule",
    "is_allow_rule",
    "is_just_domain",
    "parse_hosts_rule",
    "parse_options",
    "parse_adblock_rule",
    "try_parse_adblock_rule",
    "parse_line",
    "serialize",
]
