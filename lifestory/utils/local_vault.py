"""
Local key-value store backing the per-user vault.

Each key is one JSON file under the data directory. Writes go to a temp file
that is renamed over the target, so a crash mid-write leaves the previous
value intact.
"""

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any, List, Optional, Union

from .logging_config import get_logger

logger = get_logger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r'[^A-Za-z0-9_.-]')


class LocalVaultError(Exception):
    """Custom exception for local vault errors."""
    pass


class LocalVault:
    """JSON-file key-value store."""

    def __init__(self, data_dir: Union[str, Path]):
        """
        Initialize the local vault.

        Args:
            data_dir: Directory holding one file per key; created if missing
        """
        self.data_dir = Path(data_dir)
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LocalVaultError(f'Cannot create vault directory {self.data_dir}: {e}')

        logger.debug(f'Initialized local vault at {self.data_dir}')

    def _path(self, key: str) -> Path:
        if not key:
            raise LocalVaultError('Vault key must not be empty')
        return self.data_dir / f'{_UNSAFE_KEY_CHARS.sub("_", key)}.json'

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        """Read the value stored under key.

        Raises:
            LocalVaultError: If the file exists but cannot be read or parsed
        """
        path = self._path(key)
        if not path.exists():
            return default
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f'Error reading vault key {key}: {e}')
            raise LocalVaultError(f'Failed to read {key}: {e}')

    def set(self, key: str, value: Any) -> None:
        """Atomically replace the value stored under key.

        Raises:
            LocalVaultError: If the value cannot be written (e.g. disk full)
        """
        path = self._path(key)
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=f'.{path.stem}.', suffix='.tmp')
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(value, f, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
            tmp_path = None
        except (OSError, TypeError, ValueError) as e:
            logger.error(f'Error writing vault key {key}: {e}')
            raise LocalVaultError(f'Failed to write {key}: {e}')
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)

    def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise LocalVaultError(f'Failed to delete {key}: {e}')

    def keys(self) -> List[str]:
        return sorted(p.stem for p in self.data_dir.glob('*.json'))
