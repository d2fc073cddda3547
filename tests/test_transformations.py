import pytest

from filterlist_compiler import transformations as tr
from filterlist_compiler.config import FilterSettings, OptimizationSettings, TransformationName
from filterlist_compiler.errors import ConfigurationError
from filterlist_compiler.fetch_sources import ContentFetcher


def test_deduplicate_keeps_first_and_drops_attached_comment():
    lines = ["! a", "||x.com^", "! dup comment", "||x.com^", "||y.com^"]
    out = tr.deduplicate(lines)
    assert out == ["! a", "||x.com^", "||y.com^"]
    assert tr.deduplicate(out) == out


def test_deduplicate_keeps_repeated_comments():
    lines = ["! same", "||a.com^", "! same", "||b.com^"]
    assert tr.deduplicate(lines) == lines


def test_convert_to_ascii_pattern():
    assert tr.convert_to_ascii(["||пример.рф^"]) == ["||xn--e1afmkfd.xn--p1ai^"]


def test_convert_to_ascii_domain_option_and_hosts():
    assert tr.convert_to_ascii(["||example.com^$domain=пример.рф|~example.org"]) == [
        "||example.com^$domain=xn--e1afmkfd.xn--p1ai|~example.org"
    ]
    assert tr.convert_to_ascii(["0.0.0.0 пример.рф"]) == ["0.0.0.0 xn--e1afmkfd.xn--p1ai"]
    assert tr.convert_to_ascii(["! комментарий"]) == ["! комментарий"]


def test_compress_converts_and_drops_covered_hosts():
    lines = [
        "0.0.0.0 example.org",
        "ads.example.org",
        "||example.org^",
        "||example.com^$important",
        "! c",
    ]
    assert tr.compress(lines) == ["||example.org^", "||example.com^$important", "! c"]


def test_compress_splits_multi_host_lines():
    assert tr.compress(["0.0.0.0 a.example.com b.example.net"]) == [
        "||a.example.com^",
        "||b.example.net^",
    ]


def test_remove_modifiers():
    lines = [
        "||example.com^$third-party,important",
        "||example.org^$3p",
        "||example.net^$important",
        "! $third-party",
    ]
    assert tr.remove_modifiers(lines) == [
        "||example.com^$important",
        "||example.org^",
        "||example.net^$important",
        "! $third-party",
    ]


def test_invert_allow():
    lines = ["||a.com^", "@@||b.com^", "! c", "0.0.0.0 c.com", ""]
    assert tr.invert_allow(lines) == ["@@||a.com^", "@@||b.com^", "! c", "0.0.0.0 c.com", ""]


def test_line_helpers():
    assert tr.trim_lines(["  ||a.com^\t", "\t! c "]) == ["||a.com^", "! c"]
    assert tr.trim_lines(["||a.com^\r", "||b.com^\v", "\u00a0||c.com^\u00a0"]) == [
        "||a.com^",
        "||b.com^",
        "||c.com^",
    ]
    assert tr.remove_comments(["! c", "# c", "||a.com^", "##.ad"]) == ["||a.com^", "##.ad"]
    assert tr.remove_empty_lines(["", "  ", "||a.com^"]) == ["||a.com^"]


def test_insert_final_new_line():
    assert tr.insert_final_new_line(["||a.com^"]) == ["||a.com^", ""]
    assert tr.insert_final_new_line(["||a.com^", ""]) == ["||a.com^", ""]
    assert tr.insert_final_new_line([]) == []


@pytest.mark.parametrize(
    "pattern, line, expected",
    [
        ("example", "||ads.example.com^", True),
        ("example", "||other.com^", False),
        ("*.example.com^", "||ads.example.com^", True),
        ("*.EXAMPLE.com^", "||ads.example.com^", True),
        ("ads*com", "||ads.example.com^", False),
        ("/^\\|\\|ads/", "||ads.example.com^", True),
        ("/^\\|\\|ads/", "||example.com^", False),
    ],
)
def test_wildcard(pattern, line, expected):
    assert tr.Wildcard(pattern).test(line) is expected


def test_wildcard_rejects_bad_regex():
    with pytest.raises(ConfigurationError):
        tr.Wildcard("/[/")
    with pytest.raises(ConfigurationError):
        tr.Wildcard("")


def test_exclude_and_include():
    lines = ["||ads.example.com^", "||example.org^", "||tracker.net^"]
    assert tr.exclude(lines, [tr.Wildcard("*example*")]) == ["||tracker.net^"]
    assert tr.include(lines, [tr.Wildcard("tracker")]) == ["||tracker.net^"]
    assert tr.exclude(lines, []) == lines


def test_prepare_wildcards_from_sources(tmp_path, run, caplog):
    source = tmp_path / "exclusions.txt"
    source.write_text("! comment\n*.bad.com^\n\nexample.org\nexample.org\n", encoding="utf-8")
    wildcards = run(
        tr.prepare_wildcards(
            ["tracker"], [str(source), str(tmp_path / "missing.txt")], ContentFetcher()
        )
    )
    assert [w.pattern for w in wildcards] == ["tracker", "*.bad.com^", "example.org"]
    assert any("Failed to load filter source" in r.getMessage() for r in caplog.records)


def test_pipeline_runs_in_fixed_order(run):
    settings = FilterSettings(
        transformations=[
            TransformationName.INSERT_FINAL_NEW_LINE,
            TransformationName.VALIDATE,
            TransformationName.REMOVE_EMPTY_LINES,
            TransformationName.REMOVE_MODIFIERS,
        ]
    )
    lines = ["||example.com^$third-party", "", "||com^"]
    result = run(tr.TransformationPipeline().transform(lines, settings))
    assert result.lines == ["||example.com^", ""]
    assert result.applied == [
        "RemoveModifiers",
        "Validate",
        "RemoveEmptyLines",
        "InsertFinalNewLine",
    ]


def test_pipeline_filters_and_optimizer(run):
    settings = FilterSettings(
        transformations=[TransformationName.REMOVE_EMPTY_LINES],
        exclusions=["tracker"],
        inclusions=["example"],
    )
    lines = ["||example.com^", "||ads.example.com^", "", "||tracker.example.com^", "||other.net^"]
    result = run(
        tr.TransformationPipeline().transform(lines, settings, OptimizationSettings())
    )
    assert result.lines == ["||example.com^"]
    assert result.applied == ["Exclude", "Include", "RuleOptimizer", "RemoveEmptyLines"]
    assert result.optimization.redundant_removed == 1


def test_apply_transformations_accepts_names():
    out = tr.apply_transformations(["! c", "||a.com^", "||a.com^"], ["Deduplicate", "RemoveComments"])
    assert out == ["||a.com^"]
    with pytest.raises(ConfigurationError):
        tr.apply_transformations([], ["NoSuchThing"])
