import json

import pytest

from filterlist_compiler.config import (
    Configuration,
    OptimizationSettings,
    TransformationName,
    load_configuration,
)
from filterlist_compiler.errors import ConfigurationError

MINIMAL = {"name": "Test list", "sources": [{"source": "list.txt"}]}


def test_minimal_configuration_defaults():
    config = Configuration.from_dict(MINIMAL)
    assert config.name == "Test list"
    assert config.sources[0].source == "list.txt"
    assert config.sources[0].type == "adblock"
    assert config.transformations == []
    assert config.exclusions == []
    assert config.optimization is None


def test_full_configuration():
    config = Configuration.from_dict(
        {
            "name": "Test list",
            "description": "Blocks ads",
            "version": "1.2.3",
            "sources": [
                {
                    "name": "Local hosts",
                    "source": " hosts.txt ",
                    "type": "hosts",
                    "transformations": ["RemoveComments", "Compress"],
                    "exclusions": ["localhost"],
                }
            ],
            "transformations": ["Deduplicate", "Validate"],
            "inclusions_sources": ["allow.txt"],
            "optimization": {"merge_rules": True, "merge_threshold": 4},
        }
    )
    source = config.sources[0]
    assert source.source == "hosts.txt"
    assert source.name == "Local hosts"
    assert source.transformations == [
        TransformationName.REMOVE_COMMENTS,
        TransformationName.COMPRESS,
    ]
    assert source.exclusions == ["localhost"]
    assert config.transformations == [TransformationName.DEDUPLICATE, TransformationName.VALIDATE]
    assert config.inclusions_sources == ["allow.txt"]
    assert config.optimization == OptimizationSettings(merge_rules=True, merge_threshold=4)


def test_optimization_true_uses_defaults():
    config = Configuration.from_dict({**MINIMAL, "optimization": True})
    assert config.optimization == OptimizationSettings()


@pytest.mark.parametrize(
    "data",
    [
        [],
        {"sources": [{"source": "a.txt"}]},
        {"name": "", "sources": [{"source": "a.txt"}]},
        {"name": "x", "sources": []},
        {"name": "x", "sources": ["a.txt"]},
        {"name": "x", "sources": [{"source": ""}]},
        {"name": "x", "sources": [{"source": "a.txt", "type": "rss"}]},
        {**MINIMAL, "transformations": ["Shuffle"]},
        {**MINIMAL, "exclusions": "not-a-list"},
        {**MINIMAL, "description": 5},
        {**MINIMAL, "optimization": {"merge_threshold": 1}},
        {**MINIMAL, "optimization": "yes"},
    ],
)
def test_invalid_configuration(data):
    with pytest.raises(ConfigurationError):
        Configuration.from_dict(data)


def test_load_configuration(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(MINIMAL), encoding="utf-8")
    assert load_configuration(path).name == "Test list"


def test_load_configuration_errors(tmp_path):
    with pytest.raises(ConfigurationError):
        load_configuration(tmp_path / "missing.json")
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_configuration(bad)
