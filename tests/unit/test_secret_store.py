import os
import stat

import pytest

from tools.errors import ConfigError
from tools.secret_store import FileSecretStore


def _mode(path):
    return stat.S_IMODE(os.stat(path).st_mode)


def test_missing_file_returns_none(tmp_path):
    assert FileSecretStore(str(tmp_path / "missing")).get() is None


def test_set_creates_owner_only_file(tmp_path):
    path = tmp_path / "nested" / "token"
    store = FileSecretStore(str(path))

    store.set("secret-value")

    assert _mode(path) == 0o600
    assert store.get() == "secret-value"


def test_set_tightens_existing_file(tmp_path):
    path = tmp_path / "token"
    path.write_text("old")
    os.chmod(path, 0o644)

    FileSecretStore(str(path)).set("new")

    assert _mode(path) == 0o600


def test_get_strips_whitespace(tmp_path):
    path = tmp_path / "token"
    path.write_text("  abc\n")
    os.chmod(path, 0o600)
    assert FileSecretStore(str(path)).get() == "abc"


@pytest.mark.parametrize("mode", [0o640, 0o604, 0o660, 0o644])
def test_group_or_other_access_is_rejected(tmp_path, mode):
    path = tmp_path / "token"
    path.write_text("abc")
    os.chmod(path, mode)

    with pytest.raises(ConfigError, match="chmod 600"):
        FileSecretStore(str(path)).get()


def test_delete(tmp_path):
    store = FileSecretStore(str(tmp_path / "token"))
    store.set("abc")
    assert store.delete() is True
    assert store.delete() is False
    assert store.get() is None
