"""
Tests for the local-secret identity path.
"""

import pytest

from lifestory.services.identity import LOCAL_VAULT_EMAIL, is_local_vault, local_vault_identity, local_vault_user_id


class TestLocalVaultIdentity:

    def test_deterministic_and_case_insensitive(self):
        assert local_vault_user_id('Blue Horse') == local_vault_user_id('  blue horse ')

    def test_different_phrases_differ(self):
        assert local_vault_user_id('blue horse') != local_vault_user_id('red horse')

    def test_namespaced(self):
        user_id = local_vault_user_id('blue horse')

        assert user_id.startswith('vault_')
        assert len(user_id) == len('vault_') + 28
        assert is_local_vault(user_id)
        assert not is_local_vault('cognito-sub-1234')

    def test_empty_phrase_rejected(self):
        with pytest.raises(ValueError):
            local_vault_user_id('   ')

    def test_identity_kinds(self):
        assert local_vault_identity('blue horse').email == LOCAL_VAULT_EMAIL
        assert local_vault_identity('Me@Example.com', kind='email').email == 'me@example.com'
