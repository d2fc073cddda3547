#!/usr/bin/env python3
"""
pipeline.py

Command-line entry point: compile a configuration and write the result.

Steps:
  1. load configuration   - JSON file, shape-checked.
  2. compile              - download, preprocess and transform every source,
                            then the combined list.
  3. format               - keep the adblock list as is, or render it for
                            hosts / dnsmasq / pihole / unbound / json / doh.

The output file is replaced atomically; without -o the list goes to stdout
and progress messages go to stderr.

Usage:
    python -m filterlist_compiler.pipeline -c config.json -o filter.txt
    filterlist-compiler -c config.json -o hosts.txt -f hosts --hosts-ip 127.0.0.1
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path

from filterlist_compiler import config, utils
from filterlist_compiler.compiler import CompilationResult, FilterCompiler
from filterlist_compiler.config import load_configuration
from filterlist_compiler.errors import CompilerError
from filterlist_compiler.fetch_sources import FetchOptions
from filterlist_compiler.formatters import FormatterOptions, OutputFormat, format_rules


# ----------------------------------------
# Helpers
# ----------------------------------------
def _configure_logging(verbose: bool = False, stream=sys.stdout) -> logging.Logger:
    """Return configured pipeline logger with a clean, single-line format."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        force=True,
        stream=stream,
    )
    return logging.getLogger("pipeline")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=config.PROGRAM_NAME,
        description="Compile filter lists from remote and local sources",
    )
    parser.add_argument("-c", "--config", required=True, help="Configuration JSON file")
    parser.add_argument("-o", "--output", help="Output file (default: stdout)")
    parser.add_argument(
        "-f",
        "--format",
        default=OutputFormat.ADBLOCK.value,
        choices=[f.value for f in OutputFormat],
        help="Output format (default: the compiled adblock list)",
    )
    parser.add_argument(
        "--hosts-ip",
        default=config.DEFAULT_HOSTS_IP,
        help="IP address for hosts-format output",
    )
    parser.add_argument("--platform", help="Platform name for !#if conditions")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=config.DEFAULT_CONCURRENCY,
        help="Max sources compiled concurrently",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=config.DEFAULT_TIMEOUT,
        help="Request timeout (seconds)",
    )
    parser.add_argument(
        "--retries", type=int, default=config.DEFAULT_RETRIES, help="Retries per URL"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def render_output(
    result: CompilationResult, fmt: OutputFormat, list_name: str, hosts_ip: str
) -> str:
    if fmt is OutputFormat.ADBLOCK:
        text = "\n".join(result.rules)
        return text if text.endswith("\n") or not text else text + "\n"
    options = FormatterOptions(include_header=True, hosts_ip=hosts_ip, list_name=list_name)
    return format_rules(result.rules, fmt, options).content


# ----------------------------------------
# Pipeline core
# ----------------------------------------
def run(args: argparse.Namespace, log: logging.Logger) -> None:
    run_start = time.perf_counter()
    configuration = load_configuration(args.config)
    fetch_options = FetchOptions(timeout=args.timeout, retries=args.retries)
    compiler = FilterCompiler(
        fetch_options=fetch_options,
        platform=args.platform,
        concurrency=args.concurrency,
    )
    result = asyncio.run(compiler.compile(configuration))
    text = render_output(
        result, OutputFormat(args.format), configuration.name, args.hosts_ip
    )

    if args.output:
        utils.atomic_write_text(Path(args.output), text)
        log.info(f"Wrote {args.output}")
    else:
        sys.stdout.write(text)
        sys.stdout.flush()

    m = result.metrics
    log.info(
        f"Compiled {m.source_count} sources: {m.input_rule_count} -> "
        f"{m.output_rule_count} lines in {time.perf_counter() - run_start:.2f}s"
    )


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    log = _configure_logging(args.verbose, sys.stdout if args.output else sys.stderr)
    try:
        run(args, log)
    except CompilerError as exc:
        log.error(f"[FATAL] {exc}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
