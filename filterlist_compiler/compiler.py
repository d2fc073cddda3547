"""
End-to-end compilation of a filter list configuration.

For every source: download and preprocess, strip the upstream list header,
then apply the source's own filters and transformations. Sources are
compiled concurrently (bounded by a semaphore) and concatenated in
configuration order, each under a small `! Source:` header. The global
filters, transformations and optional optimizer run on the combined list,
and the result gets a list header with a checksum.

Usage:
    import asyncio
    from filterlist_compiler import Configuration, compile_filter_list

    config = Configuration.from_dict({
        "name": "My list",
        "sources": [{"source": "https://example.org/filter.txt"}],
        "transformations": ["Deduplicate", "Validate"],
    })
    result = asyncio.run(compile_filter_list(config))
    print("\\n".join(result.rules))
"""
from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import aiohttp

from filterlist_compiler import config
from filterlist_compiler.config import Configuration, Source
from filterlist_compiler.fetch_sources import ContentFetcher, FetchOptions
from filterlist_compiler.optimizer import OptimizationStats
from filterlist_compiler.preprocessor import FilterDownloader
from filterlist_compiler.transformations import TransformationPipeline

logger = logging.getLogger(__name__)

CHECKSUM_PREFIX = "! Checksum:"
CHECKSUM_LENGTH = 27
COMPILED_BY_PREFIX = "! Compiled by"

# Upstream metadata that must not leak into the compiled list
UPSTREAM_HEADER_PREFIXES = (
    "! Title:",
    "! Description:",
    "! Homepage:",
    "! License:",
    "! Version:",
    "! Last modified:",
    "! Expires:",
    "! TimeUpdated:",
    "! Checksum:",
    "! Compiled by ",
    "! Diff-Path:",
    "! Diff-Expires:",
)


# ----------------------------------------
# Headers
# ----------------------------------------
def _iso_timestamp(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def list_header(configuration: Configuration, timestamp: datetime | None = None) -> list[str]:
    lines = ["!", f"! Title: {configuration.name}"]
    if configuration.description:
        lines.append(f"! Description: {configuration.description}")
    if configuration.version:
        lines.append(f"! Version: {configuration.version}")
    if configuration.homepage:
        lines.append(f"! Homepage: {configuration.homepage}")
    if configuration.license:
        lines.append(f"! License: {configuration.license}")
    lines.append(f"! Last modified: {_iso_timestamp(timestamp or datetime.now(timezone.utc))}")
    lines.append("!")
    lines.append(f"{COMPILED_BY_PREFIX} {config.PROGRAM_NAME} v{config.PROGRAM_VERSION}")
    lines.append("!")
    return lines


def source_header(source: Source) -> list[str]:
    lines = ["!"]
    if source.name:
        lines.append(f"! Source name: {source.name}")
    lines.append(f"! Source: {source.source}")
    lines.append("!")
    return lines


def calculate_checksum(lines: list[str]) -> str:
    """Base64 SHA-256 of the list without its checksum line, cut to 27 chars."""
    content = "\n".join(ln for ln in lines if not ln.startswith(CHECKSUM_PREFIX))
    digest = hashlib.sha256(content.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")[:CHECKSUM_LENGTH]


def add_checksum_to_header(lines: list[str]) -> list[str]:
    """
    Insert `! Checksum:` before the `!` line that precedes "Compiled by", or
    before the first rule when there is no "Compiled by" line.
    """
    checksum_line = f"{CHECKSUM_PREFIX} {calculate_checksum(lines)}"
    compiled_by = next(
        (i for i, ln in enumerate(lines) if COMPILED_BY_PREFIX in ln), -1
    )
    if compiled_by == -1:
        insert_at = next(
            (i for i, ln in enumerate(lines) if ln.strip() and not ln.startswith("!")),
            len(lines),
        )
    elif compiled_by > 0 and lines[compiled_by - 1] == "!":
        insert_at = compiled_by - 1
    else:
        insert_at = compiled_by
    return [*lines[:insert_at], checksum_line, *lines[insert_at:]]


def strip_upstream_headers(lines: list[str]) -> list[str]:
    """Drop upstream metadata lines and collapse the leading run of bare `!`."""
    result = [
        ln for ln in lines if not ln.strip().startswith(UPSTREAM_HEADER_PREFIXES)
    ]
    leading = 0
    while leading < len(result) and result[leading].strip() == "!":
        leading += 1
    if leading > 1:
        result = result[leading - 1 :]
    return result


# ----------------------------------------
# Metrics
# ----------------------------------------
@dataclass
class SourceMetrics:
    source: str
    rule_count: int
    duration: float


@dataclass
class CompilationMetrics:
    source_count: int = 0
    sources: list[SourceMetrics] = field(default_factory=list)
    input_rule_count: int = 0
    output_rule_count: int = 0
    transformations: list[str] = field(default_factory=list)
    duration: float = 0.0
    optimization: OptimizationStats | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "sourceCount": self.source_count,
            "sources": [
                {"source": s.source, "ruleCount": s.rule_count, "duration": round(s.duration, 3)}
                for s in self.sources
            ],
            "inputRuleCount": self.input_rule_count,
            "outputRuleCount": self.output_rule_count,
            "transformations": list(self.transformations),
            "duration": round(self.duration, 3),
            "optimization": self.optimization.as_dict() if self.optimization else None,
        }


@dataclass
class CompilationResult:
    rules: list[str]
    metrics: CompilationMetrics


# ----------------------------------------
# Compilers
# ----------------------------------------
class SourceCompiler:
    """Download, preprocess and transform a single source."""

    def __init__(
        self,
        downloader: FilterDownloader,
        pipeline: TransformationPipeline,
        log: logging.Logger | None = None,
    ):
        self.downloader = downloader
        self.pipeline = pipeline
        self.log = log or logger

    async def compile(self, source: Source, index: int = 0, total: int = 1) -> tuple[list[str], SourceMetrics]:
        start = time.perf_counter()
        self.log.info("Start compiling %s (%d/%d)", source.source, index + 1, total)
        try:
            lines = await self.downloader.download(source.source, allow_empty=True)
        except Exception as exc:
            self.log.error("Failed to download source %s: %s", source.source, exc)
            raise
        self.log.info("Original length is %d", len(lines))
        lines = strip_upstream_headers(lines)

        result = await self.pipeline.transform(lines, source)
        self.log.info("Length after applying transformations is %d", len(result.lines))
        return result.lines, SourceMetrics(
            source.source, len(result.lines), time.perf_counter() - start
        )


class FilterCompiler:
    """Compile a whole configuration into a single list."""

    def __init__(
        self,
        fetch_options: FetchOptions | None = None,
        session: aiohttp.ClientSession | None = None,
        platform: str | None = None,
        concurrency: int = config.DEFAULT_CONCURRENCY,
        max_include_depth: int = config.DEFAULT_MAX_INCLUDE_DEPTH,
        log: logging.Logger | None = None,
    ):
        self.fetch_options = fetch_options or FetchOptions()
        self.session = session
        self.platform = platform
        self.concurrency = max(1, concurrency)
        self.max_include_depth = max_include_depth
        self.log = log or logger

    async def compile(
        self, configuration: Configuration, timestamp: datetime | None = None
    ) -> CompilationResult:
        start = time.perf_counter()
        metrics = CompilationMetrics(source_count=len(configuration.sources))
        self.log.info("Starting the compiler for %s", configuration.name)

        async with ContentFetcher(self.fetch_options, self.session, self.log) as fetcher:
            downloader = FilterDownloader(
                fetcher, self.max_include_depth, self.platform, self.log
            )
            pipeline = TransformationPipeline(fetcher, self.log)
            source_compiler = SourceCompiler(downloader, pipeline, self.log)

            compiled = await self._compile_sources(source_compiler, configuration.sources)

            combined: list[str] = []
            for source, (lines, source_metrics) in zip(configuration.sources, compiled):
                combined.extend(source_header(source))
                combined.extend(lines)
                metrics.sources.append(source_metrics)
            metrics.input_rule_count = len(combined)

            result = await pipeline.transform(
                combined, configuration, configuration.optimization
            )

        metrics.transformations = result.applied
        metrics.optimization = result.optimization
        final = add_checksum_to_header(list_header(configuration, timestamp) + result.lines)
        metrics.output_rule_count = len(final)
        metrics.duration = time.perf_counter() - start
        self.log.info(
            "Final length of the list is %d (%.2fs)", len(final), metrics.duration
        )
        return CompilationResult(final, metrics)

    async def _compile_sources(
        self, source_compiler: SourceCompiler, sources: list[Source]
    ) -> list[tuple[list[str], SourceMetrics]]:
        sem = asyncio.Semaphore(self.concurrency)

        async def _with_limit(source: Source, index: int):
            async with sem:
                return await source_compiler.compile(source, index, len(sources))

        tasks = [
            asyncio.create_task(_with_limit(source, idx))
            for idx, source in enumerate(sources)
        ]
        try:
            return await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise


async def compile_filter_list(
    configuration: Configuration | dict,
    **compiler_options: Any,
) -> CompilationResult:
    """Compile `configuration` (a Configuration or its dict form)."""
    if isinstance(configuration, dict):
        configuration = Configuration.from_dict(configuration)
    return await FilterCompiler(**compiler_options).compile(configuration)
