"""
Tests for the JSON-file local vault.
"""

import json

import pytest

from lifestory.utils.local_vault import LocalVault, LocalVaultError


class TestLocalVault:

    def test_missing_key_returns_default(self, vault):
        assert vault.get('nothing') is None
        assert vault.get('nothing', []) == []

    def test_set_then_get(self, vault):
        vault.set('lifestory_u1_memories', [{'id': 'm1', 'narrative': 'x'}])
        assert vault.get('lifestory_u1_memories') == [{'id': 'm1', 'narrative': 'x'}]

    def test_overwrite_leaves_no_temp_files(self, vault):
        vault.set('k', {'v': 1})
        vault.set('k', {'v': 2})

        assert vault.get('k') == {'v': 2}
        assert [p.name for p in vault.data_dir.iterdir()] == ['k.json']

    def test_unsafe_key_characters_are_sanitized(self, vault):
        vault.set('../escape/key', 1)

        assert vault.get('../escape/key') == 1
        assert all(p.parent == vault.data_dir for p in vault.data_dir.iterdir())

    def test_delete_and_keys(self, vault):
        vault.set('a', 1)
        vault.set('b', 2)

        assert vault.keys() == ['a', 'b']
        assert vault.delete('a') is True
        assert vault.delete('a') is False
        assert vault.keys() == ['b']

    def test_corrupt_file_raises(self, vault):
        (vault.data_dir / 'bad.json').write_text('{not json', encoding='utf-8')

        with pytest.raises(LocalVaultError):
            vault.get('bad')

    def test_unserializable_value_raises_and_keeps_previous(self, vault):
        vault.set('k', [1])

        with pytest.raises(LocalVaultError):
            vault.set('k', [object()])

        assert vault.get('k') == [1]
        assert json.loads((vault.data_dir / 'k.json').read_text(encoding='utf-8')) == [1]

    def test_empty_key_rejected(self, vault):
        with pytest.raises(LocalVaultError):
            vault.set('', 1)

    def test_creates_directory(self, tmp_path):
        LocalVault(tmp_path / 'nested' / 'dir')
        assert (tmp_path / 'nested' / 'dir').is_dir()
