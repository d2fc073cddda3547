"""
Rule-stream transformations.

Every transformation takes the full list of lines and returns a new list; the
input is never modified. The pipeline applies them in a fixed order regardless
of the order they are listed in a configuration:

    exclude -> include -> ConvertToAscii -> TrimLines -> RemoveComments ->
    Compress -> Deduplicate -> RemoveModifiers -> InvertAllow -> Validate ->
    ValidateAllowIp -> rule optimizer -> RemoveEmptyLines -> InsertFinalNewLine

Exclusion and inclusion filters are plain substrings, `*` wildcards matched
against the whole line, or `/regex/` patterns.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable

from filterlist_compiler import optimizer, rules, utils, validate
from filterlist_compiler.config import (
    FilterSettings,
    OptimizationSettings,
    TransformationName,
)
from filterlist_compiler.errors import CompilerError, ConfigurationError
from filterlist_compiler.fetch_sources import ContentFetcher

logger = logging.getLogger(__name__)

Transformation = Callable[[list[str]], list[str]]

# Options narrowing a rule to a list of domains; values are `|`-separated.
DOMAIN_LIST_MODIFIERS = frozenset({"domain", "denyallow", "client"})

# Options meaningless for DNS-level blocking
MODIFIERS_TO_REMOVE = frozenset({
    "third-party",
    "3p",
    "all",
    "document",
    "doc",
    "popup",
    "network",
})


# ----------------------------------------
# Wildcard filters
# ----------------------------------------
class Wildcard:
    """A substring, `*` glob or `/regex/` filter."""

    def __init__(self, pattern: str):
        if not pattern:
            raise ConfigurationError("Wildcard cannot be empty")
        self.pattern = pattern
        self._regex: re.Pattern[str] | None = None
        if len(pattern) > 2 and pattern.startswith("/") and pattern.endswith("/"):
            try:
                self._regex = re.compile(pattern[1:-1], re.IGNORECASE | re.MULTILINE)
            except re.error as exc:
                raise ConfigurationError(f"Invalid regular expression {pattern}: {exc}") from exc
        elif utils.WILDCARD in pattern:
            parts = re.split(r"\*+", pattern)
            self._regex = re.compile(
                "^" + r"[\s\S]*".join(re.escape(p) for p in parts) + "$", re.IGNORECASE
            )

    @property
    def is_plain(self) -> bool:
        return self._regex is None

    def test(self, line: str) -> bool:
        if self._regex is not None:
            return self._regex.search(line) is not None
        return self.pattern in line

    def __repr__(self) -> str:
        return f"Wildcard({self.pattern!r})"


async def prepare_wildcards(
    patterns: Iterable[str],
    sources: Iterable[str],
    fetcher: ContentFetcher | None,
    log: logging.Logger | None = None,
) -> list[Wildcard]:
    """
    Build filters from literal patterns plus one filter per non-empty,
    non-comment line of each source list. A source that cannot be fetched is
    skipped with a warning.
    """
    log = log or logger
    collected: list[str] = [p for p in patterns if p and p.strip()]
    for source in sources:
        if fetcher is None:
            log.warning("No fetcher available, skipping filter source %s", source)
            continue
        try:
            text = await fetcher.fetch(source, allow_empty=True)
        except CompilerError as exc:
            log.warning("Failed to load filter source %s: %s", source, exc)
            continue
        for line in text.splitlines():
            line = line.strip()
            if line and not rules.is_comment(line):
                collected.append(line)
    return [Wildcard(p) for p in dict.fromkeys(collected)]


def exclude(lines: list[str], wildcards: list[Wildcard]) -> list[str]:
    """Drop every line matched by any of the filters."""
    if not wildcards:
        return list(lines)
    result: list[str] = []
    for line in lines:
        hit = next((w for w in wildcards if w.test(line)), None)
        if hit is not None:
            logger.debug("%s excluded by %s", line, hit.pattern)
            continue
        result.append(line)
    logger.info("Excluded %d rules. %d rules left.", len(lines) - len(result), len(result))
    return result


def include(lines: list[str], wildcards: list[Wildcard]) -> list[str]:
    """Keep only lines matched by at least one of the filters."""
    if not wildcards:
        return list(lines)
    result = [line for line in lines if any(w.test(line) for w in wildcards)]
    logger.info("Included %d rules", len(result))
    return result


# ----------------------------------------
# Line-level transformations
# ----------------------------------------
def trim_lines(lines: list[str]) -> list[str]:
    return [line.strip() for line in lines]


def remove_comments(lines: list[str]) -> list[str]:
    result = [line for line in lines if not rules.is_comment(line)]
    logger.info("Removed %d comments", len(lines) - len(result))
    return result


def remove_empty_lines(lines: list[str]) -> list[str]:
    result = [line for line in lines if line.strip()]
    logger.info("Removed %d empty lines", len(lines) - len(result))
    return result


def insert_final_new_line(lines: list[str]) -> list[str]:
    """Append one empty line unless the list is empty or already ends blank."""
    result = list(lines)
    if result and result[-1].strip():
        result.append("")
    return result


def invert_allow(lines: list[str]) -> list[str]:
    """Turn blocking rules into `@@` exception rules."""
    result: list[str] = []
    for line in lines:
        if (
            line.strip()
            and not rules.is_comment(line)
            and not rules.is_etc_hosts_rule(line)
            and not rules.is_allow_rule(line)
        ):
            line = utils.EXCEPTION_PREFIX + line
        result.append(line)
    return result


def _ascii_option(opt: rules.RuleOption) -> rules.RuleOption:
    if opt.name not in DOMAIN_LIST_MODIFIERS or not opt.value:
        return opt
    domains = []
    for item in opt.value.split("|"):
        negated = item.startswith("~")
        domain = utils.to_punycode(item[1:] if negated else item)
        domains.append(("~" if negated else "") + domain)
    return rules.RuleOption(opt.name, "|".join(domains))


def _ascii_line(line: str) -> str:
    if rules.is_etc_hosts_rule(line):
        hosts = rules.parse_hosts_rule(line)
        return " ".join([hosts.ip, *(utils.to_punycode(h) for h in hosts.hostnames)])
    rule = rules.try_parse_adblock_rule(line)
    if rule is None:
        return utils.convert_non_ascii_to_punycode(line)
    if not rule.is_regex:
        rule.pattern = utils.convert_non_ascii_to_punycode(rule.pattern)
    rule.options = [_ascii_option(opt) for opt in rule.options]
    return rule.to_text()


def convert_to_ascii(lines: list[str]) -> list[str]:
    """Punycode-encode non-ASCII domains in patterns and domain-list options."""
    result: list[str] = []
    for line in lines:
        if rules.is_comment_or_blank(line) or not utils.contains_non_ascii_characters(line):
            result.append(line)
            continue
        converted = _ascii_line(line)
        logger.debug("Converting non-ASCII line %s to punycode %s", line, converted)
        result.append(converted)
    return result


def remove_modifiers(lines: list[str]) -> list[str]:
    """Strip options that have no meaning for DNS-level blocking."""
    result: list[str] = []
    modified = 0
    for line in lines:
        if rules.is_comment_or_blank(line) or rules.is_etc_hosts_rule(line):
            result.append(line)
            continue
        rule = rules.try_parse_adblock_rule(line)
        if rule is None:
            logger.debug("Not an adblock rule, ignoring it: %s", line)
            result.append(line)
            continue
        kept = [o for o in rule.options if o.name.lstrip("~") not in MODIFIERS_TO_REMOVE]
        if len(kept) == len(rule.options):
            result.append(line)
            continue
        rule.options = kept
        result.append(rule.to_text())
        modified += 1
    logger.info("Removed modifiers from %d rules", modified)
    return result


# ----------------------------------------
# Compress & Deduplicate
# ----------------------------------------
@dataclass
class _BlocklistRule:
    text: str
    hostname: str | None = None
    can_compress: bool = False


def _to_blocklist_rules(line: str) -> list[_BlocklistRule]:
    if rules.is_etc_hosts_rule(line):
        hosts = rules.parse_hosts_rule(line)
        return [
            _BlocklistRule(f"||{h.lower()}^", h.lower(), True) for h in hosts.hostnames
        ]
    if rules.is_just_domain(line):
        host = line.strip().rstrip(".").lower()
        return [_BlocklistRule(f"||{host}^", host, True)]
    if not rules.is_comment_or_blank(line):
        rule = rules.try_parse_adblock_rule(line)
        if rule is not None and rule.hostname and not rule.is_exception and not rule.options:
            return [_BlocklistRule(line, rule.hostname, True)]
    return [_BlocklistRule(line)]


def compress(lines: list[str]) -> list[str]:
    """
    Convert hosts rules and bare domains to `||hostname^`, keep the first rule
    per hostname and drop rules already covered by a parent-domain rule.
    Rules with options or exceptions pass through untouched.
    """
    by_hostname: set[str] = set()
    filtered: list[_BlocklistRule] = []
    for line in lines:
        for item in _to_blocklist_rules(line):
            if not item.can_compress:
                filtered.append(item)
            elif item.hostname not in by_hostname:
                by_hostname.add(item.hostname)
                filtered.append(item)

    result: list[str] = []
    for item in filtered:
        if item.can_compress:
            parent = next(
                (p for p in utils.walk_suffixes(item.hostname) if p != item.hostname and p in by_hostname),
                None,
            )
            if parent is not None:
                logger.debug("The rule blocking %s is redundant (covered by %s)", item.hostname, parent)
                continue
        result.append(item.text)
    logger.info("The list was compressed from %d to %d", len(lines), len(result))
    return result


def deduplicate(lines: list[str]) -> list[str]:
    """
    Remove repeated rules, keeping the first occurrence. Comments and blank
    lines directly above a removed duplicate are removed with it.
    """
    first_seen: dict[str, int] = {}
    for idx, line in enumerate(lines):
        if not rules.is_comment_or_blank(line):
            first_seen.setdefault(line, idx)

    result_reversed: list[str] = []
    prev_removed = False
    for idx in range(len(lines) - 1, -1, -1):
        line = lines[idx]
        if rules.is_comment_or_blank(line):
            if prev_removed:
                continue
            result_reversed.append(line)
            continue
        if first_seen[line] != idx:
            logger.debug("Removing duplicate: %s", line)
            prev_removed = True
            continue
        prev_removed = False
        result_reversed.append(line)

    result_reversed.reverse()
    logger.info("Deduplication removed %d rules", len(lines) - len(result_reversed))
    return result_reversed


def validate_rules(lines: list[str]) -> list[str]:
    return validate.validate_rules(lines, allow_ip=False)


def validate_rules_allow_ip(lines: list[str]) -> list[str]:
    return validate.validate_rules(lines, allow_ip=True)


# ----------------------------------------
# Lookup table & pipeline
# ----------------------------------------
TRANSFORMATIONS: dict[TransformationName, Transformation] = {
    TransformationName.CONVERT_TO_ASCII: convert_to_ascii,
    TransformationName.TRIM_LINES: trim_lines,
    TransformationName.REMOVE_COMMENTS: remove_comments,
    TransformationName.COMPRESS: compress,
    TransformationName.DEDUPLICATE: deduplicate,
    TransformationName.REMOVE_MODIFIERS: remove_modifiers,
    TransformationName.INVERT_ALLOW: invert_allow,
    TransformationName.VALIDATE: validate_rules,
    TransformationName.VALIDATE_ALLOW_IP: validate_rules_allow_ip,
    TransformationName.REMOVE_EMPTY_LINES: remove_empty_lines,
    TransformationName.INSERT_FINAL_NEW_LINE: insert_final_new_line,
}

# Stages before the optimizer, then the stages after it.
ORDER_BEFORE_OPTIMIZER = (
    TransformationName.CONVERT_TO_ASCII,
    TransformationName.TRIM_LINES,
    TransformationName.REMOVE_COMMENTS,
    TransformationName.COMPRESS,
    TransformationName.DEDUPLICATE,
    TransformationName.REMOVE_MODIFIERS,
    TransformationName.INVERT_ALLOW,
    TransformationName.VALIDATE,
    TransformationName.VALIDATE_ALLOW_IP,
)
ORDER_AFTER_OPTIMIZER = (
    TransformationName.REMOVE_EMPTY_LINES,
    TransformationName.INSERT_FINAL_NEW_LINE,
)
OPTIMIZER_STAGE = "RuleOptimizer"


@dataclass
class PipelineResult:
    lines: list[str]
    applied: list[str] = field(default_factory=list)
    optimization: optimizer.OptimizationStats | None = None


class TransformationPipeline:
    """Apply filters and enabled transformations in the fixed order."""

    def __init__(
        self, fetcher: ContentFetcher | None = None, log: logging.Logger | None = None
    ):
        self.fetcher = fetcher
        self.log = log or logger

    async def transform(
        self,
        lines: list[str],
        settings: FilterSettings,
        optimization: OptimizationSettings | None = None,
    ) -> PipelineResult:
        result = PipelineResult(list(lines))

        exclusions = await prepare_wildcards(
            settings.exclusions, settings.exclusions_sources, self.fetcher, self.log
        )
        if exclusions:
            self.log.info("Filtering the list of rules using %d exclusion rules", len(exclusions))
            result.lines = exclude(result.lines, exclusions)
            result.applied.append("Exclude")

        inclusions = await prepare_wildcards(
            settings.inclusions, settings.inclusions_sources, self.fetcher, self.log
        )
        if inclusions:
            self.log.info("Filtering the list of rules using %d inclusion rules", len(inclusions))
            result.lines = include(result.lines, inclusions)
            result.applied.append("Include")

        enabled = set(settings.transformations)
        for name in ORDER_BEFORE_OPTIMIZER:
            if name in enabled:
                result.lines = self._run(name.value, TRANSFORMATIONS[name], result.lines)
                result.applied.append(name.value)

        if optimization is not None:
            start = time.perf_counter()
            result.lines, result.optimization = optimizer.optimize_rules(
                result.lines, optimization
            )
            result.applied.append(OPTIMIZER_STAGE)
            self.log.debug("Finished %s in %.2fs", OPTIMIZER_STAGE, time.perf_counter() - start)

        for name in ORDER_AFTER_OPTIMIZER:
            if name in enabled:
                result.lines = self._run(name.value, TRANSFORMATIONS[name], result.lines)
                result.applied.append(name.value)
        return result

    def _run(self, label: str, func: Transformation, lines: list[str]) -> list[str]:
        start = time.perf_counter()
        out = func(lines)
        self.log.debug(
            "Finished %s in %.2fs (%d -> %d lines)",
            label,
            time.perf_counter() - start,
            len(lines),
            len(out),
        )
        return out


def apply_transformations(
    lines: list[str], names: Iterable[TransformationName | str]
) -> list[str]:
    """Run the named transformations (no filters, no optimizer) in fixed order."""
    enabled = {TransformationName.parse(n) if isinstance(n, str) else n for n in names}
    out = list(lines)
    for name in ORDER_BEFORE_OPTIMIZER + ORDER_AFTER_OPTIMIZER:
        if name in enabled:
            out = TRANSFORMATIONS[name](out)
    return out
