"""
Shared fixtures for the test suite.

Configuration is read from the environment when lifestory is first imported,
so the overrides below must be in place before any test module imports it.
"""

import os
import tempfile

os.environ['LIFESTORY_DATA_DIR'] = tempfile.mkdtemp(prefix='lifestory-tests-')
os.environ['LIFESTORY_KDF_ITERATIONS'] = '1000'
os.environ['LIFESTORY_PASSCODE_ITERATIONS'] = '1000'
os.environ['OPENSEARCH_ENDPOINT'] = ''
os.environ['LOG_LEVEL'] = 'DEBUG'

import pytest  # noqa: E402

from lifestory.utils.crypto import EncryptionCodec  # noqa: E402
from lifestory.utils.local_vault import LocalVault  # noqa: E402


class SequentialIds:
    """Deterministic id allocator: prefix-1, prefix-2, ..."""

    def __init__(self, prefix: str = 'id'):
        self.prefix = prefix
        self.count = 0

    def __call__(self) -> str:
        self.count += 1
        return f'{self.prefix}-{self.count}'


@pytest.fixture
def ids() -> SequentialIds:
    return SequentialIds()


@pytest.fixture
def vault(tmp_path) -> LocalVault:
    return LocalVault(tmp_path / 'vault')


@pytest.fixture
def codec() -> EncryptionCodec:
    return EncryptionCodec(salt='test-salt', iterations=1000)
