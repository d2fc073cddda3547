"""
Rule optimizer: shrink a rule list without changing what it blocks.

Stages (each can be switched off, they always run in this order):
  1. remove_redundant   - drop `||sub.example.com^` when `||example.com^` exists
  2. optimize_patterns  - `||example.com/` -> `||example.com^`, `||*x` -> `||x`,
                          `x*^` -> `x^`
  3. simplify_modifiers - drop repeated options
  4. merge_rules        - fold rules differing only in `$domain=` into one
                          (off by default: it changes matching semantics)

Each stage is a pure function of (lines, stats) returning new (lines, stats);
statistics start from zero on every optimize_rules() call.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace

from filterlist_compiler import rules, utils
from filterlist_compiler.config import OptimizationSettings

logger = logging.getLogger(__name__)

CONTENT_TYPE_MODIFIERS = (
    "script",
    "image",
    "stylesheet",
    "font",
    "xmlhttprequest",
    "media",
)

_PATH_SLASH_RE = re.compile(r"^\|\|[a-z0-9.-]+/$", flags=re.IGNORECASE)


@dataclass(frozen=True)
class OptimizationStats:
    rules_optimized: int = 0
    redundant_removed: int = 0
    rules_merged: int = 0
    modifiers_simplified: int = 0
    original_count: int = 0
    final_count: int = 0
    size_reduction: float = 0.0  # percent

    def as_dict(self) -> dict[str, int | float]:
        return {
            "rulesOptimized": self.rules_optimized,
            "redundantRemoved": self.redundant_removed,
            "rulesMerged": self.rules_merged,
            "modifiersSimplified": self.modifiers_simplified,
            "originalCount": self.original_count,
            "finalCount": self.final_count,
            "sizeReduction": round(self.size_reduction, 2),
        }


def _is_candidate_line(line: str) -> bool:
    return not rules.is_comment_or_blank(line) and not rules.is_etc_hosts_rule(line)


# ----------------------------------------
# Stage 1: redundant rules
# ----------------------------------------
def _parent_domains(hostname: str) -> list[str]:
    """Ancestors of hostname that are still registrable (above the public suffix)."""
    suffix = utils.public_suffix(hostname) or ""
    return [
        p
        for p in utils.walk_suffixes(hostname)
        if p != hostname and p != suffix and len(p) > len(suffix)
    ]


def remove_redundant(
    lines: list[str], stats: OptimizationStats
) -> tuple[list[str], OptimizationStats]:
    """
    Drop unmodified `||host^` rules whose parent domain has its own unmodified
    rule, and repeats of an unmodified rule for the same host. Comments,
    exceptions, hosts rules and rules with options are kept.
    """
    plain_hosts: list[str | None] = []
    for line in lines:
        host = None
        if _is_candidate_line(line):
            rule = rules.try_parse_adblock_rule(line)
            if rule is not None and not rule.is_exception and not rule.options:
                host = rule.hostname
        plain_hosts.append(host)
    blocked = {h for h in plain_hosts if h}

    result: list[str] = []
    removed = 0
    seen: set[str] = set()
    for line, host in zip(lines, plain_hosts):
        if host in seen:
            logger.debug("Removing repeated rule for %s", host)
            continue
        if host:
            seen.add(host)
        if host and any(p in blocked for p in _parent_domains(host)):
            logger.debug("Removing redundant subdomain rule for %s", host)
            removed += 1
            continue
        result.append(line)
    return result, replace(stats, redundant_removed=stats.redundant_removed + removed)


# ----------------------------------------
# Stage 2: patterns
# ----------------------------------------
def _optimize_pattern(pattern: str) -> tuple[str, int]:
    changes = 0
    if _PATH_SLASH_RE.match(pattern):
        pattern = pattern[:-1] + utils.DOMAIN_SEPARATOR
        changes += 1
    if pattern.startswith(utils.DOMAIN_PREFIX + utils.WILDCARD):
        rest = pattern[3:]
        pattern = utils.DOMAIN_PREFIX + (rest[1:] if rest.startswith(".") else rest)
        changes += 1
    if pattern.endswith(utils.WILDCARD + utils.DOMAIN_SEPARATOR):
        pattern = pattern[:-2] + utils.DOMAIN_SEPARATOR
        changes += 1
    return pattern, changes


def optimize_patterns(
    lines: list[str], stats: OptimizationStats
) -> tuple[list[str], OptimizationStats]:
    result: list[str] = []
    optimized = 0
    for line in lines:
        rule = rules.try_parse_adblock_rule(line) if _is_candidate_line(line) else None
        if rule is None or rule.is_regex:
            result.append(line)
            continue
        pattern, changes = _optimize_pattern(rule.pattern)
        if not changes:
            result.append(line)
            continue
        rule.pattern = pattern
        new_line = rule.to_text()
        logger.debug("Optimized pattern: %s -> %s", line, new_line)
        optimized += changes
        result.append(new_line)
    return result, replace(stats, rules_optimized=stats.rules_optimized + optimized)


# ----------------------------------------
# Stage 3: modifiers
# ----------------------------------------
def simplify_modifiers(
    lines: list[str], stats: OptimizationStats
) -> tuple[list[str], OptimizationStats]:
    """
    Remove repeated options (same name, or same name=value). A rule negating
    all but one content type is counted as simplifiable.
    """
    result: list[str] = []
    simplified = 0
    for line in lines:
        rule = rules.try_parse_adblock_rule(line) if _is_candidate_line(line) else None
        if rule is None or not rule.options:
            result.append(line)
            continue

        unique: list[rules.RuleOption] = []
        seen: set[rules.RuleOption] = set()
        for opt in rule.options:
            if opt in seen:
                simplified += 1
                continue
            seen.add(opt)
            unique.append(opt)

        types = [o for o in unique if o.name.lstrip("~") in CONTENT_TYPE_MODIFIERS]
        negated = [o for o in types if o.name.startswith("~")]
        if len(negated) == len(CONTENT_TYPE_MODIFIERS) - 1 and len(types) == len(negated):
            simplified += 1

        if len(unique) == len(rule.options):
            result.append(line)
            continue
        rule.options = unique
        result.append(rule.to_text())
    return result, replace(stats, modifiers_simplified=stats.modifiers_simplified + simplified)


# ----------------------------------------
# Stage 4: merging
# ----------------------------------------
def merge_rules(
    lines: list[str], stats: OptimizationStats, threshold: int
) -> tuple[list[str], OptimizationStats]:
    """
    Group rules that share exception flag, pattern and all non-domain options.
    A group of at least `threshold` rules becomes one rule, at the position of
    its first member, whose `domain=` is the union of the members' domains.
    """
    groups: dict[tuple, list[tuple[int, rules.AdblockRule]]] = {}
    for idx, line in enumerate(lines):
        rule = rules.try_parse_adblock_rule(line) if _is_candidate_line(line) else None
        if rule is None:
            continue
        domain_opts = [o for o in rule.options if o.name == "domain" and o.value]
        if len(domain_opts) != 1:
            continue
        others = tuple(o for o in rule.options if o.name != "domain")
        key = (rule.is_exception, rule.pattern, others)
        groups.setdefault(key, []).append((idx, rule))

    replacements: dict[int, str] = {}
    dropped: set[int] = set()
    merged = 0
    for members in groups.values():
        if len(members) < threshold:
            continue
        domains: list[str] = []
        for _, rule in members:
            domains.extend(rule.find_option("domain").value.split("|"))
        first_idx, first = members[0]
        options = [
            rules.RuleOption("domain", "|".join(dict.fromkeys(domains)))
            if o.name == "domain"
            else o
            for o in first.options
        ]
        replacements[first_idx] = rules.AdblockRule(
            first.pattern, first.is_exception, options
        ).to_text()
        dropped.update(idx for idx, _ in members[1:])
        merged += len(members) - 1
        logger.debug("Merged %d rules into %s", len(members), replacements[first_idx])

    result = [
        replacements.get(idx, line) for idx, line in enumerate(lines) if idx not in dropped
    ]
    return result, replace(stats, rules_merged=stats.rules_merged + merged)


# ----------------------------------------
# Entry point
# ----------------------------------------
def optimize_rules(
    lines: list[str], options: OptimizationSettings | None = None
) -> tuple[list[str], OptimizationStats]:
    """Run the enabled stages and return (lines, fresh statistics)."""
    options = options or OptimizationSettings()
    stats = OptimizationStats(original_count=len(lines))
    out = list(lines)

    if options.remove_redundant:
        out, stats = remove_redundant(out, stats)
    if options.optimize_patterns:
        out, stats = optimize_patterns(out, stats)
    if options.simplify_modifiers:
        out, stats = simplify_modifiers(out, stats)
    if options.merge_rules:
        out, stats = merge_rules(out, stats, options.merge_threshold)

    reduction = (
        (stats.original_count - len(out)) / stats.original_count * 100
        if stats.original_count
        else 0.0
    )
    stats = replace(stats, final_count=len(out), size_reduction=reduction)
    logger.info(
        "Optimized %d rules, removed %d redundant, %.1f%% reduction",
        stats.rules_optimized,
        stats.redundant_removed,
        stats.size_reduction,
    )
    return out, stats
