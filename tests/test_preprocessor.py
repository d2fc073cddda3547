import pytest

from filterlist_compiler.errors import FileSystemError, PreprocessorError
from filterlist_compiler.fetch_sources import ContentFetcher, FetchOptions
from filterlist_compiler.preprocessor import FilterDownloader, split_lines


def _write(directory, name, *lines):
    path = directory / name
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return str(path)


def _downloader(platform=None, max_include_depth=10, session=None):
    fetcher = ContentFetcher(FetchOptions(retries=0, retry_delay=0), session)
    return FilterDownloader(fetcher, max_include_depth=max_include_depth, platform=platform)


def test_split_lines_handles_crlf_and_trailing_break():
    lines = split_lines("a\r\nb\n\nc\n", "src")
    assert [ln.text for ln in lines] == ["a", "b", "", "c"]
    assert [ln.line_number for ln in lines] == [1, 2, 3, 4]


def test_plain_lines_pass_through(tmp_path, run):
    src = _write(tmp_path, "list.txt", "! comment", "", "||example.com^")
    assert run(_downloader().download(src)) == ["! comment", "", "||example.com^"]


def test_conditionals_follow_platform(tmp_path, run):
    src = _write(
        tmp_path,
        "list.txt",
        "||always.com^",
        "!#if windows",
        "||windows.com^",
        "!#if !ios",
        "||not-ios.com^",
        "!#endif",
        "!#else",
        "||other.com^",
        "!#endif",
    )
    assert run(_downloader("windows").download(src)) == [
        "||always.com^",
        "||windows.com^",
        "||not-ios.com^",
    ]
    assert run(_downloader("mac").download(src)) == ["||always.com^", "||other.com^"]


def test_conditions_with_stray_characters(tmp_path, run):
    src = _write(tmp_path, "list.txt", "!#if (windows", "||a.com^", "!#else", "||b.com^", "!#endif")
    assert run(_downloader("windows").download(src)) == ["||a.com^"]
    assert run(_downloader("mac").download(src)) == ["||b.com^"]
    src = _write(tmp_path, "safari.txt", "!#if !ext_safari;", "||a.com^", "!#else", "||b.com^", "!#endif")
    assert run(_downloader("windows").download(src)) == ["||a.com^"]


def test_unterminated_if_raises(tmp_path, run):
    src = _write(tmp_path, "list.txt", "||a.com^", "!#if true", "||b.com^")
    with pytest.raises(PreprocessorError) as exc_info:
        run(_downloader().download(src))
    assert exc_info.value.line_number == 2


def test_stray_endif_raises(tmp_path, run):
    src = _write(tmp_path, "list.txt", "||a.com^", "!#endif")
    with pytest.raises(PreprocessorError):
        run(_downloader().download(src))


def test_safari_block_is_skipped(tmp_path, run):
    src = _write(
        tmp_path,
        "list.txt",
        "!#safari_cb_affinity(privacy)",
        "||safari-only.com^",
        "!#safari_cb_affinity",
        "||kept.com^",
    )
    assert run(_downloader().download(src)) == ["||kept.com^"]


def test_include_is_inlined(tmp_path, run):
    _write(tmp_path, "child.txt", "||child.com^")
    src = _write(tmp_path, "main.txt", "||main.com^", "!#include child.txt", "||after.com^")
    assert run(_downloader().download(src)) == ["||main.com^", "||child.com^", "||after.com^"]


def test_remote_include_resolves_relative_url(fake_session, run):
    session = fake_session(
        {
            "https://example.org/lists/main.txt": [(200, "||main.com^\n!#include extra.txt\n")],
            "https://example.org/lists/extra.txt": [(200, "||extra.com^\n")],
        }
    )
    lines = run(_downloader(session=session).download("https://example.org/lists/main.txt"))
    assert lines == ["||main.com^", "||extra.com^"]


def test_include_cycle_is_skipped(tmp_path, run, caplog):
    src = _write(tmp_path, "a.txt", "||a.com^", "!#include b.txt")
    _write(tmp_path, "b.txt", "||b.com^", "!#include a.txt")
    assert run(_downloader().download(src)) == ["||a.com^", "||b.com^"]
    assert any("Circular include" in r.getMessage() for r in caplog.records)


def test_visited_set_is_scoped_to_one_download(tmp_path, run):
    src = _write(tmp_path, "a.txt", "||a.com^")
    downloader = _downloader()
    assert run(downloader.download(src)) == ["||a.com^"]
    assert run(downloader.download(src)) == ["||a.com^"]


def test_include_depth_limit(tmp_path, run, caplog):
    for n in range(13):
        _write(tmp_path, f"r{n}.txt", f"||r{n}.example.com^", f"!#include r{n + 1}.txt")
    lines = run(_downloader(max_include_depth=10).download(str(tmp_path / "r0.txt")))
    assert lines == [f"||r{n}.example.com^" for n in range(11)]
    assert any("Maximum include depth" in r.getMessage() for r in caplog.records)


def test_failing_include_contributes_nothing(tmp_path, run, caplog):
    src = _write(tmp_path, "main.txt", "||main.com^", "!#include missing.txt")
    assert run(_downloader().download(src)) == ["||main.com^"]
    assert any("Failed to include" in r.getMessage() for r in caplog.records)


def test_missing_top_level_source_raises(tmp_path, run):
    with pytest.raises(FileSystemError):
        run(_downloader().download(str(tmp_path / "missing.txt")))


def test_download_lines_keeps_origin(tmp_path, run):
    _write(tmp_path, "child.txt", "||child.com^")
    src = _write(tmp_path, "main.txt", "! header", "!#include child.txt")
    lines = run(_downloader().download_lines(src))
    assert lines[1].source.endswith("child.txt")
    assert lines[1].line_number == 1
