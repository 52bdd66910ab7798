"""
Session Options Tests

Builder-style options and YAML loading.

Run with: pytest tests/test_options.py -v
"""

import pytest

from luaw import LibInit, Session, SessionOptions, load_options
from luaw.options import STANDARD_LIBS


class TestBuilder:
    """Chained configuration."""

    def test_defaults(self):
        options = SessionOptions()
        assert options.libs is LibInit.LOAD
        assert options.register_extensions is True
        assert options.runtime is None
        assert options.custom_load == []

    def test_chaining(self):
        options = SessionOptions().preload_libs().with_extensions(False).load('math')
        assert options.libs is LibInit.PRELOAD
        assert options.register_extensions is False
        assert options.custom_load == ['math']

    def test_instances_do_not_share_lists(self):
        SessionOptions().load('math')
        assert SessionOptions().custom_load == []


class TestFromDict:
    """Plain mappings, as parsed from YAML."""

    def test_empty(self):
        assert SessionOptions.from_dict(None).libs is LibInit.LOAD

    def test_values(self):
        options = SessionOptions.from_dict({
            'libs': 'IGNORE',
            'register_extensions': False,
            'custom_load': ['string'],
            'custom_preload': ['table'],
        })
        assert options.libs is LibInit.IGNORE
        assert options.register_extensions is False
        assert options.custom_load == ['string']
        assert options.custom_preload == ['table']

    def test_unknown_key(self):
        with pytest.raises(ValueError, match='Extra inputs are not permitted'):
            SessionOptions.from_dict({'lib': 'load'})

    def test_bad_policy(self):
        with pytest.raises(ValueError, match='libs must be one of'):
            SessionOptions.from_dict({'libs': 'sometimes'})

    def test_unknown_library(self):
        with pytest.raises(ValueError, match='not a standard library'):
            SessionOptions.from_dict({'custom_load': ['socket']})

    def test_loader_pairs(self):
        loader = lambda name: {}
        options = SessionOptions(custom_load=[('config', loader)])
        assert options.custom_load == [('config', loader)]
        with pytest.raises(ValueError, match='name, loader'):
            SessionOptions(custom_load=[('config', 42)])

    def test_standard_libraries(self):
        assert 'math' in STANDARD_LIBS
        assert 'base' not in STANDARD_LIBS


class TestLoadOptions:
    """YAML files."""

    def test_load(self, tmp_path):
        path = tmp_path / 'session.yaml'
        path.write_text(
            "libs: ignore\n"
            "register_extensions: false\n"
            "custom_load: [math]\n"
        )
        options = load_options(path)
        assert options.libs is LibInit.IGNORE
        assert options.custom_load == ['math']

        s = Session(options)
        assert s.eval_double('return math.floor(2.5)') == 2.0
        assert s.eval_bool('return string == nil') is True

    def test_empty_file(self, tmp_path):
        path = tmp_path / 'empty.yaml'
        path.write_text('')
        assert load_options(path).libs is LibInit.LOAD

    def test_invalid_file(self, tmp_path):
        path = tmp_path / 'bad.yaml'
        path.write_text('libs: [load, ignore]\n')
        with pytest.raises(ValueError):
            load_options(path)
