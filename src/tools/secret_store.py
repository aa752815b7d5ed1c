"""
File-backed secret store for the gateway bearer token.

The secret lives in a single file readable only by its owner (mode 0600).
"""

import os
import stat
from typing import Optional

from tools.errors import ConfigError
from tools.logger import log_debug, log_info


class FileSecretStore:
    """Persists one secret in a file with owner-only permissions."""

    def __init__(self, path: str):
        self.path = os.path.expanduser(path)

    def get(self) -> Optional[str]:
        """
        Read the stored secret.

        Returns:
            The stripped file contents, or None if the file does not exist.

        Raises:
            ConfigError: if group or other users have any access to the file,
                or it cannot be read.
        """
        try:
            mode = stat.S_IMODE(os.stat(self.path).st_mode)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ConfigError(f"Cannot stat secret file {self.path}: {e}") from e

        if mode & 0o077:
            raise ConfigError(
                f"Insecure secret file mode: {mode:o} (expected 600)\n"
                f"Please run: chmod 600 {self.path}"
            )

        try:
            with open(self.path, "r", encoding="utf-8") as secret_file:
                return secret_file.read().strip()
        except OSError as e:
            raise ConfigError(f"Failed to read secret file {self.path}: {e}") from e

    def set(self, secret: str) -> None:
        """Write the secret, creating parent directories and forcing mode 0600."""
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as secret_file:
            secret_file.write(secret)
        # O_CREAT mode does not apply to an existing file
        os.chmod(self.path, 0o600)
        log_info(f"Secret written to {self.path}")

    def delete(self) -> bool:
        """Remove the secret file. Returns False if it did not exist."""
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            log_debug(f"No secret file to delete at {self.path}")
            return False
        log_info(f"Secret deleted from {self.path}")
        return True
