import json
from datetime import datetime, timezone

import pytest

from filterlist_compiler.errors import ConfigurationError
from filterlist_compiler.formatters import (
    FormatterOptions,
    OutputFormat,
    canonicalize,
    format_rules,
)

RULES = [
    "! comment",
    "||ads.example.com^",
    "@@||safe.example.com^",
    "||safe.example.com^",
    "0.0.0.0 tracker.example.net metrics.example.net",
    "popup.example.org",
    "||ads.example.com^$important",
    "/banner\\d+/",
    "||localhost^",
]


def test_hosts_scenario_is_a_single_line():
    result = format_rules(["||ads.example.com^", "@@||safe.example.com^"], OutputFormat.HOSTS)
    assert result.content == "0.0.0.0 ads.example.com\n"
    assert result.rule_count == 1


def test_canonicalize_dedupes_and_applies_exceptions():
    assert canonicalize(RULES) == [
        "ads.example.com",
        "tracker.example.net",
        "metrics.example.net",
        "popup.example.org",
    ]


def test_wildcard_subdomain_rule_maps_to_domain():
    assert canonicalize(["||*.example.com^"]) == ["example.com"]


def test_nothing_to_emit():
    result = format_rules(["||a.example.com^", "@@||a.example.com^"], "pihole")
    assert result.content == ""
    assert result.rule_count == 0


def test_hosts_custom_ip():
    result = format_rules(["||ads.example.com^"], "hosts", FormatterOptions(hosts_ip="127.0.0.1"))
    assert result.content == "127.0.0.1 ads.example.com\n"


@pytest.mark.parametrize(
    "target, expected",
    [
        ("adblock", "||ads.example.com^\n||popup.example.org^\n"),
        ("dnsmasq", "address=/ads.example.com/\naddress=/popup.example.org/\n"),
        ("pihole", "ads.example.com\npopup.example.org\n"),
        (
            "unbound",
            'server:\n    local-zone: "ads.example.com" always_nxdomain\n'
            '    local-zone: "popup.example.org" always_nxdomain\n',
        ),
    ],
)
def test_line_formats(target, expected):
    assert format_rules(["||ads.example.com^", "popup.example.org"], target).content == expected


def test_json_document():
    options = FormatterOptions(
        list_name="Test list", generated=datetime(2024, 1, 2, tzinfo=timezone.utc)
    )
    doc = json.loads(format_rules(["||ads.example.com^"], "json", options).content)
    assert doc["name"] == "Test list"
    assert doc["generated"] == "2024-01-02T00:00:00+00:00"
    assert doc["generator"].startswith("filterlist-compiler v")
    assert doc["stats"] == {"uniqueHostnames": 1}
    assert doc["hostnames"] == ["ads.example.com"]


def test_doh_document():
    doc = json.loads(format_rules(["||ads.example.com^"], OutputFormat.DOH).content)
    assert doc["rules"] == [{"domain": "ads.example.com", "type": "block"}]
    assert doc["stats"]["uniqueHostnames"] == 1


def test_header_is_optional():
    options = FormatterOptions(
        include_header=True,
        list_name="Test list",
        generated=datetime(2024, 1, 2, tzinfo=timezone.utc),
    )
    lines = format_rules(["||ads.example.com^"], "hosts", options).content.splitlines()
    assert lines[0] == "# Title: Test list"
    assert "# Hostnames: 1" in lines
    assert lines[-1] == "0.0.0.0 ads.example.com"
    adblock = format_rules(["||ads.example.com^"], "adblock", options).content
    assert adblock.startswith("! Title: Test list\n")


def test_output_format_parse():
    assert OutputFormat.parse("HOSTS") is OutputFormat.HOSTS
    with pytest.raises(ConfigurationError):
        OutputFormat.parse("xml")
