import pytest

from filterlist_compiler import validate
from filterlist_compiler.validate import Validator, new_stats, valid, validate_rules


def test_cascade_drops_comments_above_removed_rule():
    lines = ["! c1", "||bad/pattern", "! c2", "||good.com^"]
    assert validate_rules(lines) == ["! c2", "||good.com^"]


def test_cascade_resets_on_kept_rule():
    lines = ["! keep", "||good.com^", "", "! drop", "||example.com^$script", "||other.com^"]
    assert validate_rules(lines) == ["! keep", "||good.com^", "||other.com^"]


@pytest.mark.parametrize(
    "rule",
    [
        "! comment",
        "",
        "||example.com^",
        "||example.com^$important",
        "@@||example.com^$client=127.0.0.1",
        "||example.com^|",
        "0.0.0.0 example.com",
        "/^ads?\\./",
        "||*.org^$denyallow=example.org",
        "||com^$badfilter",
        "example",
        "||*.example.com^",
    ],
)
def test_valid_rules(rule):
    assert valid(rule, allow_ip=False)


@pytest.mark.parametrize(
    "rule",
    [
        "||com^",
        "||co.uk^",
        "||*.org^",
        "||example.com^$script",
        "||bad/pattern",
        "||example.com^foo",
        "||example^*",
        "0.0.0.0 bad_host!",
        "0.0.0.0 com",
    ],
)
def test_invalid_rules(rule):
    assert not valid(rule, allow_ip=False)


def test_ip_hostnames_need_allow_ip():
    assert not valid("||192.168.1.1^", allow_ip=False)
    assert valid("||192.168.1.1^", allow_ip=True)
    assert not valid("0.0.0.0 10.0.0.1", allow_ip=False)
    assert valid("0.0.0.0 10.0.0.1", allow_ip=True)


def test_validator_counts_removals():
    stats = new_stats()
    out = Validator().validate(["||example.com^", "||example.com^$script", "||com^"], stats)
    assert out == ["||example.com^"]
    assert stats["lines_in"] == 3
    assert stats["lines_out"] == 1
    assert stats["removed_invalid"] == 2
    assert stats["removed_bad_modifier"] == 1
    assert stats["removed_invalid_host"] == 1


def test_min_pattern_length_constant():
    assert validate.MIN_PATTERN_LENGTH == 5
    assert not valid("||a^", allow_ip=False)
