"""Tests for the nickname reference table."""

import json

import pytest

from memory_graph.utils.reference_data import (DEFAULT_NICKNAMES_PATH, ReferenceDataError, build_nickname_table, get_nickname_table,
                                               load_nickname_table)


class TestNicknameTable:
    """Tests for building and loading the nickname table."""

    def test_packaged_table(self):
        """The packaged table covers common English nicknames."""
        table = load_nickname_table()

        assert DEFAULT_NICKNAMES_PATH.exists()
        assert {'robert', 'bob', 'rob', 'bobby'} <= table['robert']
        assert 'steve' in table['steven']
        assert 'steve' in table['stephen']

    def test_get_nickname_table_is_cached(self):
        """The configured table is loaded once per process."""
        assert get_nickname_table() is get_nickname_table()

    def test_build_normalizes_case(self):
        """Keys and variants are lowercased and the formal name is included."""
        table = build_nickname_table({' William ': ['Bill', 'WILL']})
        assert table == {'william': frozenset({'william', 'bill', 'will'})}

    def test_build_rejects_bad_shape(self):
        """Non-object tables and non-list entries are rejected."""
        with pytest.raises(ReferenceDataError):
            build_nickname_table(['bob'])
        with pytest.raises(ReferenceDataError):
            build_nickname_table({'robert': 'bob'})

    def test_load_custom_file(self, tmp_path):
        """A replacement table can be loaded from disk."""
        path = tmp_path / 'nicknames.json'
        path.write_text(json.dumps({'giuseppe': ['beppe']}), encoding='utf-8')

        assert load_nickname_table(path) == {'giuseppe': frozenset({'giuseppe', 'beppe'})}

    def test_load_errors(self, tmp_path):
        """Missing and malformed files raise ReferenceDataError."""
        broken = tmp_path / 'broken.json'
        broken.write_text('{not json', encoding='utf-8')

        with pytest.raises(ReferenceDataError):
            load_nickname_table(tmp_path / 'missing.json')
        with pytest.raises(ReferenceDataError):
            load_nickname_table(broken)
