"""Tests for the file-backed secret store and secret generation."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import completed

from stackguard.config import SECRET_LENGTHS
from stackguard.errors import ConfigError
from stackguard.secretstore import generate as generate_module
from stackguard.secretstore.generate import generate_secrets, generate_value
from stackguard.secretstore.store import SecretStore


def test_read_trims_trailing_whitespace(secrets_dir: Path) -> None:
    """read returns the value without the trailing newline."""
    store = SecretStore(secrets_dir)
    assert store.read("redis_password") == "redis_password-value-0123456789"
    assert store.exists("redis_password")
    assert not store.exists("nope")


def test_missing_secret_raises_config_error(tmp_path: Path) -> None:
    """A missing secret raises ConfigError; read_optional returns None."""
    store = SecretStore(tmp_path)
    with pytest.raises(ConfigError):
        store.read("absent")
    assert store.read_optional("absent") is None


def test_path_keeps_explicit_suffix(tmp_path: Path) -> None:
    """Names that already carry a suffix are used as given."""
    store = SecretStore(tmp_path)
    assert store.path("postgres_password") == tmp_path / "postgres_password.txt"
    assert store.path("age-recipients.txt") == tmp_path / "age-recipients.txt"


def test_list_and_modes(secrets_dir: Path) -> None:
    """list and the mode accessors report the provisioned files."""
    store = SecretStore(secrets_dir)
    assert "postgres_password" in store.list()
    assert store.file_mode("postgres_password") == 0o600
    assert store.dir_mode() == 0o700
    assert store.file_mode("absent") is None
    assert SecretStore(secrets_dir / "missing").list() == []


def test_generate_value_alphabet() -> None:
    """Generated values have the requested length and a quoting-safe alphabet."""
    value = generate_value(64)
    assert len(value) == 64
    assert value.isalnum()


def test_generate_secrets_writes_missing_only(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Existing secrets are kept unless force is set."""
    monkeypatch.setattr(generate_module.shutil, "which", lambda name: None)
    directory = tmp_path / "secrets"
    directory.mkdir()
    (directory / "postgres_password.txt").write_text("keep-me", encoding="utf-8")

    result = generate_secrets(directory)

    assert result.kept == ["postgres_password"]
    assert sorted(result.written) == sorted(n for n in SECRET_LENGTHS if n != "postgres_password")
    assert not result.age_available
    store = SecretStore(directory)
    assert store.read("postgres_password") == "keep-me"
    for name, length in SECRET_LENGTHS.items():
        if name != "postgres_password":
            assert len(store.read(name)) == length
        assert store.file_mode(name) == 0o600
    assert store.dir_mode() == 0o700


def test_generate_secrets_force_regenerates(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """force rewrites every secret."""
    monkeypatch.setattr(generate_module.shutil, "which", lambda name: None)
    directory = tmp_path / "secrets"
    generate_secrets(directory)
    before = SecretStore(directory).read("redis_password")
    result = generate_secrets(directory, force=True)
    assert result.kept == []
    assert SecretStore(directory).read("redis_password") != before


def test_generate_secrets_creates_age_files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """With age-keygen available the age identity and recipients are created."""
    calls = []

    def fake_run(args, **kwargs):
        calls.append(list(args))
        if "-o" in args:
            Path(args[-1]).write_text("AGE-SECRET-KEY-1TEST\n", encoding="utf-8")
            return completed(0, "")
        return completed(0, "age1recipient\n")

    monkeypatch.setattr(generate_module.shutil, "which", lambda name: "/usr/bin/" + name)
    monkeypatch.setattr(generate_module, "run_command", fake_run)
    directory = tmp_path / "secrets"
    result = generate_secrets(directory)
    assert result.age_files == ["age-key.txt", "age-recipients.txt"]
    assert (directory / "age-recipients.txt").read_text(encoding="utf-8") == "age1recipient"
    assert calls[0][0] == "age-keygen"
