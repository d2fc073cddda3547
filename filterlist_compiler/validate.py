"""
Validate rules for DNS-level blockers.

Keeps:
- comments and blank lines
- /etc/hosts rules whose hostnames are all valid
- /regex/ rules
- adblock rules with DNS-compatible modifiers and a valid domain

Removes:
- unsupported modifiers (network-level options such as $script)
- patterns shorter than 5 characters or with characters a domain cannot have
- rules blocking an entire public suffix (unless limited by
  $denyallow, $badfilter or $client)
- IP-address hostnames, unless IPs are allowed
- comments and blank lines directly above a removed rule

Examples:
    Valid Rules:
        ||example.com^
        ||example.com^$important
        0.0.0.0 example.com
        /^ads?\\./
        ||*.org^$denyallow=example.org

    Invalid Rules:
        ||com^          (whole public suffix)
        ||example.com^$script
        ||bad/pattern
"""
from __future__ import annotations

import logging
import re

from filterlist_compiler import rules, utils
from filterlist_compiler.errors import ParseError

logger = logging.getLogger(__name__)

DOMAIN_PREFIX = utils.DOMAIN_PREFIX
DOMAIN_SEPARATOR = utils.DOMAIN_SEPARATOR
WILDCARD = utils.WILDCARD
WILDCARD_DOMAIN_PART = utils.WILDCARD_DOMAIN_PART
MIN_PATTERN_LENGTH = 5

# Modifiers that narrow a rule to specific clients or domains
LIMITING_MODIFIERS = frozenset({"denyallow", "badfilter", "client"})

SUPPORTED_MODIFIERS = frozenset({
    "important",
    "~important",
    "ctag",
    "dnstype",
    "dnsrewrite",
    *LIMITING_MODIFIERS,
})

_PATTERN_ALLOWED_CHARS_RE = re.compile(r"^[a-zA-Z0-9\-.*|^]+$")

STATS_KEYS = (
    "lines_in",
    "lines_out",
    "removed_invalid",
    "removed_bad_modifier",
    "removed_invalid_host",
    "removed_malformed",
    "removed_comments",
    "kept_regex",
    "kept_hosts",
    "kept_adblock_domain",
    "kept_other_adblock",
)


def new_stats() -> dict[str, int]:
    return dict.fromkeys(STATS_KEYS, 0)


def _bump(stats: dict[str, int] | None, key: str) -> None:
    if stats is not None:
        stats[key] = stats.get(key, 0) + 1


# -------------------------
# Validation checks
# -------------------------
def valid_hostname(
    hostname: str, rule_text: str, allow_ip: bool, has_limit_modifier: bool
) -> bool:
    """A syntactically valid hostname that is not a bare public suffix."""
    parsed = utils.parse_hostname(hostname)
    if parsed.hostname is None:
        logger.debug("invalid hostname %s in the rule: %s", hostname, rule_text)
        return False
    if parsed.is_ip:
        if not allow_ip:
            logger.debug("IP address %s is not allowed: %s", hostname, rule_text)
        return allow_ip
    if parsed.hostname == parsed.public_suffix and not has_limit_modifier:
        logger.debug(
            "matching the whole public suffix %s is not allowed: %s", hostname, rule_text
        )
        return False
    return True


def valid_etc_hosts_rule(
    rule_text: str, allow_ip: bool, stats: dict[str, int] | None = None
) -> bool:
    """Validate a /etc/hosts-style rule (IP followed by hostnames)."""
    try:
        rule = rules.parse_hosts_rule(rule_text)
    except ParseError:
        _bump(stats, "removed_malformed")
        return False
    if not rule.hostnames:
        logger.info("The rule has no hostnames: %s", rule_text)
        _bump(stats, "removed_invalid_host")
        return False
    ok = all(valid_hostname(h, rule_text, allow_ip, False) for h in rule.hostnames)
    _bump(stats, "kept_hosts" if ok else "removed_invalid_host")
    return ok


def _validate_supported_modifiers(rule: rules.AdblockRule) -> tuple[bool, bool]:
    """Returns (is_valid, has_limiting_modifier)."""
    has_limit_modifier = False
    for opt in rule.options:
        if opt.name not in SUPPORTED_MODIFIERS:
            logger.debug("Contains unsupported modifier %s: %s", opt.name, rule.rule_text)
            return False, False
        if opt.name in LIMITING_MODIFIERS:
            has_limit_modifier = True
    return True, has_limit_modifier


def valid_adblock_rule(
    rule_text: str, allow_ip: bool, stats: dict[str, int] | None = None
) -> bool:
    """Validate an adblock-style rule for DNS-level filtering."""
    try:
        rule = rules.parse_adblock_rule(rule_text)
    except ParseError as exc:
        logger.debug("This is not a valid adblock rule: %s", exc)
        _bump(stats, "removed_malformed")
        return False

    modifiers_ok, has_limit_modifier = _validate_supported_modifiers(rule)
    if not modifiers_ok:
        _bump(stats, "removed_bad_modifier")
        return False

    pattern = rule.pattern
    if len(pattern) < MIN_PATTERN_LENGTH:
        logger.debug("The rule is too short: %s", rule_text)
        _bump(stats, "removed_malformed")
        return False

    if rule.is_regex:
        _bump(stats, "kept_regex")
        return True

    if not _PATTERN_ALLOWED_CHARS_RE.match(pattern.removeprefix("://")):
        logger.debug(
            "The rule contains characters that cannot be in a domain name: %s", rule_text
        )
        _bump(stats, "removed_malformed")
        return False

    sep_idx = pattern.find(DOMAIN_SEPARATOR)
    wildcard_idx = pattern.find(WILDCARD)
    if sep_idx != -1 and wildcard_idx > sep_idx:
        _bump(stats, "removed_malformed")
        return False

    if not pattern.startswith(DOMAIN_PREFIX) or sep_idx == -1:
        _bump(stats, "kept_other_adblock")
        return True

    domain = utils.substring_between(pattern, DOMAIN_PREFIX, DOMAIN_SEPARATOR)
    if domain and wildcard_idx != -1:
        # ||*.tld^ is only checked when the remainder is a bare public suffix
        bare = domain.replace(WILDCARD_DOMAIN_PART, "", 1)
        if domain.startswith(WILDCARD_DOMAIN_PART) and utils.public_suffix(bare) == bare:
            ok = valid_hostname(bare, rule_text, allow_ip, has_limit_modifier)
            _bump(stats, "kept_adblock_domain" if ok else "removed_invalid_host")
            return ok
        _bump(stats, "kept_other_adblock")
        return True

    if domain and not valid_hostname(domain, rule_text, allow_ip, has_limit_modifier):
        _bump(stats, "removed_invalid_host")
        return False

    # Only '|' may follow the separator
    if len(pattern) > sep_idx + 1 and pattern[sep_idx + 1] != "|":
        logger.debug("Unexpected characters after the separator: %s", rule_text)
        _bump(stats, "removed_malformed")
        return False

    _bump(stats, "kept_adblock_domain")
    return True


def valid(rule_text: str, allow_ip: bool, stats: dict[str, int] | None = None) -> bool:
    """Top-level validity check. Returns True if the line should be kept."""
    if rules.is_comment_or_blank(rule_text):
        return True
    trimmed = rule_text.strip()
    if rules.is_etc_hosts_rule(trimmed):
        return valid_etc_hosts_rule(trimmed, allow_ip, stats)
    return valid_adblock_rule(trimmed, allow_ip, stats)


# -------------------------
# Backwards-pass Validator
# -------------------------
class Validator:
    """Remove invalid rules and any comments/blank lines directly above them."""

    def __init__(self, allow_ip: bool = False, log: logging.Logger | None = None):
        self.allow_ip = allow_ip
        self.log = log or logger

    def validate(
        self, lines: list[str], stats: dict[str, int] | None = None
    ) -> list[str]:
        """
        Walk from the last line to the first. Once a rule is dropped, the
        comment/blank lines directly above it are dropped too, until a kept
        rule resets the carry.
        """
        if stats is None:
            stats = new_stats()
        stats["lines_in"] += len(lines)
        result_reversed: list[str] = []
        prev_removed = False

        for ln in reversed(lines):
            if not valid(ln, self.allow_ip, stats):
                self.log.debug("Removing invalid rule: %s", ln)
                stats["removed_invalid"] += 1
                prev_removed = True
                continue

            if prev_removed and rules.is_comment_or_blank(ln):
                self.log.debug("Removing a comment or empty line above an invalid rule: %s", ln)
                stats["removed_comments"] += 1
                continue

            prev_removed = False
            result_reversed.append(ln)

        result_reversed.reverse()
        stats["lines_out"] += len(result_reversed)
        return result_reversed


def validate_rules(lines: list[str], allow_ip: bool = False) -> list[str]:
    """Functional form of Validator(allow_ip).validate(lines)."""
    stats = new_stats()
    result = Validator(allow_ip).validate(lines, stats)
    logger.info(
        "validate: lines_in=%d lines_out=%d removed_invalid=%d bad_modifier=%d "
        "invalid_host=%d",
        stats["lines_in"],
        stats["lines_out"],
        stats["removed_invalid"],
        stats["removed_bad_modifier"],
        stats["removed_invalid_host"],
    )
    return result
