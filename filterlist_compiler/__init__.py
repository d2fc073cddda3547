"""Compile adblock / hosts filter lists and render them for DNS blockers."""

from filterlist_compiler.compiler import (
    CompilationMetrics,
    CompilationResult,
    FilterCompiler,
    compile_filter_list,
)
from filterlist_compiler.config import (
    PROGRAM_VERSION as __version__,
    Configuration,
    Source,
    TransformationName,
    load_configuration,
)
from filterlist_compiler.formatters import (
    FormatterOptions,
    FormatterResult,
    OutputFormat,
    format_rules,
)

compile = compile_filter_list

__all__ = [
    "CompilationMetrics",
    "CompilationResult",
    "Configuration",
    "FilterCompiler",
    "FormatterOptions",
    "FormatterResult",
    "OutputFormat",
    "Source",
    "TransformationName",
    "compile",
    "compile_filter_list",
    "format_rules",
    "load_configuration",
]
