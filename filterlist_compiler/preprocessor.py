"""
Directive preprocessing for downloaded filter lists.

Supported directives (recognized after trimming the line):

    !#if <condition> / !#else / !#endif   conditional blocks, may nest
    !#include <path>                     inline another list
    !#safari_cb_affinity(...)            Safari-only block, always skipped
                                         up to a bare `!#safari_cb_affinity`

Every other line, comments and blank lines included, passes through as is.

Include handling:
  - targets resolve relative to the including source
  - each top-level download() tracks the sources it has visited; a source
    seen twice is skipped with a warning (cycle guard)
  - nesting deeper than `max_include_depth` is skipped with a warning
  - a failing include contributes no lines; only the top-level source
    may fail the download
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from filterlist_compiler import config, expressions
from filterlist_compiler.errors import CompilerError, PreprocessorError
from filterlist_compiler.fetch_sources import ContentFetcher, resolve_include_path

logger = logging.getLogger(__name__)

IF_DIRECTIVE = "!#if"
ELSE_DIRECTIVE = "!#else"
ENDIF_DIRECTIVE = "!#endif"
INCLUDE_DIRECTIVE = "!#include"
SAFARI_DIRECTIVE = "!#safari_cb_affinity"

_LINE_BREAK_RE = re.compile(r"\r?\n")


@dataclass(frozen=True)
class RawLine:
    text: str
    source: str
    line_number: int  # 1-based


@dataclass
class ConditionalBlock:
    condition: str
    then_lines: list[RawLine] = field(default_factory=list)
    else_lines: list[RawLine] = field(default_factory=list)
    end_index: int = -1


def split_lines(text: str, source: str) -> list[RawLine]:
    """Split on LF / CRLF; a trailing line break does not add an empty line."""
    parts = _LINE_BREAK_RE.split(text)
    if parts and parts[-1] == "":
        parts.pop()
    return [RawLine(part, source, idx) for idx, part in enumerate(parts, start=1)]


def parse_conditional_block(lines: list[RawLine], start: int) -> ConditionalBlock:
    """
    Collect the branches of the `!#if` at `lines[start]`.

    Nested blocks are copied verbatim into the branch that contains them; only
    an `!#else` at the block's own level switches branches.
    """
    opening = lines[start]
    block = ConditionalBlock(opening.text.strip()[len(IF_DIRECTIVE):].strip())
    target = block.then_lines
    depth = 1
    i = start + 1
    while i < len(lines):
        trimmed = lines[i].text.strip()
        if trimmed.startswith(IF_DIRECTIVE):
            depth += 1
        elif trimmed.startswith(ENDIF_DIRECTIVE):
            depth -= 1
            if depth == 0:
                block.end_index = i
                return block
        elif trimmed.startswith(ELSE_DIRECTIVE) and depth == 1:
            target = block.else_lines
            i += 1
            continue
        target.append(lines[i])
        i += 1

    raise PreprocessorError(
        opening.source, opening.line_number, f"unterminated {IF_DIRECTIVE} block"
    )


class FilterDownloader:
    """Download a source and resolve its preprocessor directives."""

    def __init__(
        self,
        fetcher: ContentFetcher,
        max_include_depth: int = config.DEFAULT_MAX_INCLUDE_DEPTH,
        platform: str | None = None,
        log: logging.Logger | None = None,
    ):
        self.fetcher = fetcher
        self.max_include_depth = max_include_depth
        self.platform = platform
        self.log = log or logger

    async def download(self, source: str, allow_empty: bool = False) -> list[str]:
        """Return the flattened lines of `source`."""
        return [ln.text for ln in await self.download_lines(source, allow_empty)]

    async def download_lines(
        self, source: str, allow_empty: bool = False
    ) -> list[RawLine]:
        """download() keeping the origin of every line."""
        visited: set[str] = set()
        return await self._download(source, 0, visited, allow_empty)

    async def _download(
        self, source: str, depth: int, visited: set[str], allow_empty: bool
    ) -> list[RawLine]:
        if source in visited:
            self.log.warning("Circular include detected, skipping %s", source)
            return []
        if depth > self.max_include_depth:
            self.log.warning(
                "Maximum include depth (%d) exceeded, skipping %s",
                self.max_include_depth,
                source,
            )
            return []
        visited.add(source)

        text = await self.fetcher.fetch(source, allow_empty=allow_empty)
        lines = split_lines(text, source)
        self.log.debug("Preprocessing %d lines from %s", len(lines), source)
        return await self._process(lines, depth, visited)

    async def _process(
        self, lines: list[RawLine], depth: int, visited: set[str]
    ) -> list[RawLine]:
        result: list[RawLine] = []
        i = 0
        while i < len(lines):
            raw = lines[i]
            trimmed = raw.text.strip()

            if trimmed.startswith(IF_DIRECTIVE):
                block = parse_conditional_block(lines, i)
                if expressions.evaluate(block.condition, self.platform):
                    result.extend(await self._process(block.then_lines, depth, visited))
                elif block.else_lines:
                    result.extend(await self._process(block.else_lines, depth, visited))
                i = block.end_index + 1
                continue

            if trimmed.startswith(ELSE_DIRECTIVE) or trimmed.startswith(ENDIF_DIRECTIVE):
                raise PreprocessorError(
                    raw.source, raw.line_number, f"{trimmed} without matching {IF_DIRECTIVE}"
                )

            if trimmed.startswith(INCLUDE_DIRECTIVE):
                result.extend(await self._include(raw, trimmed, depth, visited))
                i += 1
                continue

            if trimmed.startswith(SAFARI_DIRECTIVE):
                i += 1
                while i < len(lines) and lines[i].text.strip() != SAFARI_DIRECTIVE:
                    i += 1
                i += 1
                continue

            result.append(raw)
            i += 1
        return result

    async def _include(
        self, raw: RawLine, trimmed: str, depth: int, visited: set[str]
    ) -> list[RawLine]:
        include_path = trimmed[len(INCLUDE_DIRECTIVE):].strip()
        if not include_path:
            self.log.warning(
                "%s:%d: empty %s directive", raw.source, raw.line_number, INCLUDE_DIRECTIVE
            )
            return []
        resolved = resolve_include_path(include_path, raw.source)
        self.log.debug("Including %s from %s", resolved, raw.source)
        try:
            return await self._download(resolved, depth + 1, visited, True)
        except CompilerError as exc:
            self.log.warning("Failed to include %s: %s", resolved, exc)
            return []
