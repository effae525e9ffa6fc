"""
Tests for per-field encryption and the legacy-plaintext fallback.
"""

import base64

import pytest

from lifestory.utils.crypto import EncryptionCodec, LegacyPlaintextFallback, NONCE_SIZE, TAG_SIZE, derive_key


class TestEncryptionCodec:

    def test_round_trip(self, codec):
        blob = codec.encrypt_field('Moved to London for work', 'secret')

        assert blob != 'Moved to London for work'
        assert codec.decrypt_field(blob, 'secret') == 'Moved to London for work'

    def test_blob_layout(self, codec):
        raw = base64.b64decode(codec.encrypt_field('abc', 'secret'))
        assert len(raw) == NONCE_SIZE + len('abc') + TAG_SIZE

    def test_fresh_nonce_per_call(self, codec):
        assert codec.encrypt_field('same', 'secret') != codec.encrypt_field('same', 'secret')

    def test_unicode(self, codec):
        text = 'Nací en la Ciudad de México'
        assert codec.decrypt_field(codec.encrypt_field(text, 'secret'), 'secret') == text

    def test_empty_blob_passes_through(self, codec):
        assert codec.decrypt_field('', 'secret') == ''
        assert codec.fallback.count == 0


class TestLegacyPlaintextFallback:

    @pytest.mark.parametrize('blob', [
        'I remember the old house',
        'YWJj',  # valid base64 but too short to hold a nonce and tag
        base64.b64encode(b'x' * 40).decode('ascii'),  # right size, not a ciphertext
    ])
    def test_undecryptable_returns_input(self, codec, blob):
        assert codec.decrypt_field(blob, 'secret') == blob
        assert codec.fallback.count == 1

    def test_wrong_secret_falls_back(self, codec):
        blob = codec.encrypt_field('private', 'right')

        assert codec.decrypt_field(blob, 'wrong') == blob
        assert codec.fallback.count == 1

    def test_counter_is_shared_and_resettable(self):
        fallback = LegacyPlaintextFallback()
        first = EncryptionCodec(salt='a', iterations=1000, fallback=fallback)
        second = EncryptionCodec(salt='b', iterations=1000, fallback=fallback)

        first.decrypt_field('plain one', 's')
        second.decrypt_field('plain two', 's')
        assert fallback.count == 2

        fallback.reset()
        assert fallback.count == 0

    def test_salt_changes_key(self):
        assert derive_key('secret', b'salt-a', 1000) != derive_key('secret', b'salt-b', 1000)
        blob = EncryptionCodec(salt='salt-a', iterations=1000).encrypt_field('text', 'secret')
        assert EncryptionCodec(salt='salt-b', iterations=1000).decrypt_field(blob, 'secret') == blob
