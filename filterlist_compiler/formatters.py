"""
Render a compiled rule list for DNS software that does not speak adblock
syntax.

Rules are first reduced to hostnames:
  - `||host^` style rules block `host`; `@@` exceptions allow it
  - /etc/hosts rules block each of their hostnames
  - bare domain lines block the domain
  - comments, regex rules and anything without a plain hostname are ignored

A hostname appears in the output once, in first-seen order, and never when
an exception for it exists anywhere in the list.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from filterlist_compiler import config, rules, utils
from filterlist_compiler.errors import ConfigurationError

logger = logging.getLogger(__name__)


class OutputFormat(str, Enum):
    ADBLOCK = "adblock"
    HOSTS = "hosts"
    DNSMASQ = "dnsmasq"
    PIHOLE = "pihole"
    JSON = "json"
    DOH = "doh"
    UNBOUND = "unbound"

    @classmethod
    def parse(cls, name: str) -> "OutputFormat":
        try:
            return cls(name.lower())
        except ValueError:
            known = ", ".join(f.value for f in cls)
            raise ConfigurationError(
                f"Unknown output format {name!r} (expected one of: {known})"
            ) from None


@dataclass
class FormatterOptions:
    include_header: bool = False
    hosts_ip: str = config.DEFAULT_HOSTS_IP
    list_name: str = "Compiled filter list"
    generated: datetime | None = None


@dataclass
class FormatterResult:
    format: OutputFormat
    rule_count: int
    content: str


# ----------------------------------------
# Canonicalization
# ----------------------------------------
def _pattern_hostname(pattern: str) -> str | None:
    """Strip anchors, separators and wildcards; None if no plain hostname remains."""
    host = pattern
    for prefix in (utils.DOMAIN_PREFIX, "|", utils.WILDCARD_DOMAIN_PART, "://"):
        host = host.removeprefix(prefix)
    host = host.rstrip("|").removesuffix(utils.DOMAIN_SEPARATOR).removesuffix(".")
    host = host.lower()
    if utils.WILDCARD in host or not utils.is_valid_hostname(host) or "." not in host:
        return None
    return host


def collect_hostnames(lines: list[str]) -> tuple[list[str], set[str]]:
    """Return (blocked hostnames in first-seen order, allowed hostnames)."""
    blocked: dict[str, None] = {}
    allowed: set[str] = set()
    for line in lines:
        if rules.is_comment_or_blank(line):
            continue
        text = line.strip()
        if rules.is_etc_hosts_rule(text):
            for host in rules.parse_hosts_rule(text).hostnames:
                blocked.setdefault(host.lower().rstrip("."), None)
            continue
        if rules.is_just_domain(text):
            blocked.setdefault(text.lower().rstrip("."), None)
            continue
        rule = rules.try_parse_adblock_rule(text)
        if rule is None or rule.is_regex:
            continue
        host = _pattern_hostname(rule.pattern)
        if host is None:
            logger.debug("No hostname in rule, skipping: %s", text)
            continue
        if rule.is_exception:
            allowed.add(host)
        else:
            blocked.setdefault(host, None)
    return list(blocked), allowed


def canonicalize(lines: list[str]) -> list[str]:
    """Hostnames to emit: blocked minus allowed, deduplicated."""
    blocked, allowed = collect_hostnames(lines)
    return [h for h in blocked if h not in allowed]


# ----------------------------------------
# Formatters
# ----------------------------------------
class BaseFormatter:
    format_type: OutputFormat
    comment_prefix = "#"

    def __init__(self, options: FormatterOptions | None = None):
        self.options = options or FormatterOptions()

    def format(self, lines: list[str]) -> FormatterResult:
        hostnames = canonicalize(lines)
        content = self.render(hostnames)
        logger.info("Formatted %d hostnames as %s", len(hostnames), self.format_type.value)
        return FormatterResult(self.format_type, len(hostnames), content)

    def generated(self) -> str:
        ts = self.options.generated or datetime.now(timezone.utc)
        return ts.isoformat()

    def header(self, count: int) -> list[str]:
        if not self.options.include_header:
            return []
        p = self.comment_prefix
        return [
            f"{p} Title: {self.options.list_name}",
            f"{p} Generated: {self.generated()}",
            f"{p} Generator: {generator()}",
            f"{p} Hostnames: {count}",
            p,
        ]

    def line(self, hostname: str) -> str:
        raise NotImplementedError

    def render(self, hostnames: list[str]) -> str:
        out = self.header(len(hostnames))
        out.extend(self.line(h) for h in hostnames)
        return "\n".join(out) + "\n" if out else ""


class AdblockFormatter(BaseFormatter):
    format_type = OutputFormat.ADBLOCK
    comment_prefix = "!"

    def line(self, hostname: str) -> str:
        return f"||{hostname}^"


class HostsFormatter(BaseFormatter):
    format_type = OutputFormat.HOSTS

    def line(self, hostname: str) -> str:
        return f"{self.options.hosts_ip} {hostname}"


class DnsmasqFormatter(BaseFormatter):
    format_type = OutputFormat.DNSMASQ

    def line(self, hostname: str) -> str:
        return f"address=/{hostname}/"


class PiHoleFormatter(BaseFormatter):
    format_type = OutputFormat.PIHOLE

    def line(self, hostname: str) -> str:
        return hostname


class UnboundFormatter(BaseFormatter):
    format_type = OutputFormat.UNBOUND

    def line(self, hostname: str) -> str:
        return f'local-zone: "{hostname}" always_nxdomain'

    def render(self, hostnames: list[str]) -> str:
        out = self.header(len(hostnames))
        out.append("server:")
        out.extend(f"    {self.line(h)}" for h in hostnames)
        return "\n".join(out) + "\n"


class JsonFormatter(BaseFormatter):
    format_type = OutputFormat.JSON

    def document(self, hostnames: list[str]) -> dict:
        return {
            "name": self.options.list_name,
            "generated": self.generated(),
            "generator": generator(),
            "stats": {"uniqueHostnames": len(hostnames)},
            "hostnames": hostnames,
        }

    def render(self, hostnames: list[str]) -> str:
        return json.dumps(self.document(hostnames), indent=2, ensure_ascii=False) + "\n"


class DoHFormatter(JsonFormatter):
    format_type = OutputFormat.DOH

    def document(self, hostnames: list[str]) -> dict:
        return {
            "name": self.options.list_name,
            "generated": self.generated(),
            "generator": generator(),
            "rules": [{"domain": h, "type": "block"} for h in hostnames],
            "stats": {"uniqueHostnames": len(hostnames)},
        }


FORMATTERS: dict[OutputFormat, type[BaseFormatter]] = {
    OutputFormat.ADBLOCK: AdblockFormatter,
    OutputFormat.HOSTS: HostsFormatter,
    OutputFormat.DNSMASQ: DnsmasqFormatter,
    OutputFormat.PIHOLE: PiHoleFormatter,
    OutputFormat.JSON: JsonFormatter,
    OutputFormat.DOH: DoHFormatter,
    OutputFormat.UNBOUND: UnboundFormatter,
}


def generator() -> str:
    return f"{config.PROGRAM_NAME} v{config.PROGRAM_VERSION}"


def create_formatter(
    target: OutputFormat | str, options: FormatterOptions | None = None
) -> BaseFormatter:
    fmt = target if isinstance(target, OutputFormat) else OutputFormat.parse(target)
    return FORMATTERS[fmt](options)


def format_rules(
    lines: list[str],
    target: OutputFormat | str,
    options: FormatterOptions | None = None,
) -> FormatterResult:
    """Render `lines` in the `target` format."""
    return create_formatter(target, options).format(lines)
