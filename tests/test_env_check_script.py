"""Tests for the configuration pre-flight script."""

from __future__ import annotations

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import base64
from pathlib import Path

import pytest

from scripts import check_env

ENV_KEYS = [
    "NOTION_CLIENT_ID",
    "NOTION_REDIRECT_URI",
    "TOKEN_ENCRYPTION_KEY",
    "DATABASE_PATH",
    "REDIS_URL",
    "APP_ENV",
    "APP_URL",
]

VALID_KEY = base64.b64encode(b"k" * 32).decode()


def _write_env(env_path: Path, **values: str) -> None:
    contents = "\n".join(f"{key}={value}" for key, value in values.items())
    env_path.write_text(contents + "\n", encoding="utf-8")


def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Unset the keys under test; whatever the env file loads is undone afterwards."""
    for key in ENV_KEYS:
        monkeypatch.setenv(key, "placeholder")
        monkeypatch.delenv(key)


def _valid_env(tmp_path: Path, **overrides: str) -> dict:
    values = {
        "NOTION_CLIENT_ID": "abc",
        "NOTION_REDIRECT_URI": "https://example.com/callback",
        "TOKEN_ENCRYPTION_KEY": VALID_KEY,
        "DATABASE_PATH": str(tmp_path / "data" / "notion_link.db"),
    }
    values.update(overrides)
    return values


def test_main_requires_existing_env_file(tmp_path: Path) -> None:
    exit_code = check_env.main(["check", "--env-file", str(tmp_path / ".missing-env")])
    assert exit_code == check_env.EXIT_RUNTIME_ERROR


def test_valid_development_settings_pass(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    env_file = tmp_path / ".env"
    _isolate_env(monkeypatch)
    _write_env(env_file, **_valid_env(tmp_path))

    assert check_env.main(["check", "--env-file", str(env_file)]) == check_env.EXIT_OK
    assert "Settings OK for environment 'development'" in capsys.readouterr().out


def test_missing_client_id_is_named(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    env_file = tmp_path / ".env"
    values = _valid_env(tmp_path)
    del values["NOTION_CLIENT_ID"]
    _isolate_env(monkeypatch)
    _write_env(env_file, **values)

    exit_code = check_env.main(["check", "--env-file", str(env_file)])

    assert exit_code == check_env.EXIT_VALIDATION_ERROR
    assert "NOTION_CLIENT_ID" in capsys.readouterr().err


def test_short_encryption_key_is_named(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    env_file = tmp_path / ".env"
    _isolate_env(monkeypatch)
    _write_env(
        env_file,
        **_valid_env(
            tmp_path, TOKEN_ENCRYPTION_KEY=base64.b64encode(b"too-short").decode()
        ),
    )

    exit_code = check_env.main(["check", "--env-file", str(env_file)])

    assert exit_code == check_env.EXIT_VALIDATION_ERROR
    err = capsys.readouterr().err
    assert "TOKEN_ENCRYPTION_KEY" in err
    assert "32 bytes" in err


def test_production_requires_redis_and_https(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    env_file = tmp_path / ".env"
    _isolate_env(monkeypatch)
    _write_env(
        env_file,
        **_valid_env(
            tmp_path,
            NOTION_REDIRECT_URI="http://example.com/callback",
            APP_ENV="production",
            APP_URL="https://app.example.com",
        ),
    )

    exit_code = check_env.main(["check", "--env-file", str(env_file)])

    assert exit_code == check_env.EXIT_DEPLOYMENT_ERROR
    err = capsys.readouterr().err
    assert "REDIS_URL" in err
    assert "NOTION_REDIRECT_URI: must use https" in err
    assert "APP_URL" not in err


def test_production_with_redis_and_https_passes(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    env_file = tmp_path / ".env"
    _isolate_env(monkeypatch)
    _write_env(
        env_file,
        **_valid_env(
            tmp_path,
            APP_ENV="production",
            APP_URL="https://app.example.com",
            REDIS_URL="redis://cache.internal:6379/0",
        ),
    )

    assert check_env.main(["check", "--env-file", str(env_file)]) == check_env.EXIT_OK


def test_generate_key_prints_32_byte_key(capsys: pytest.CaptureFixture[str]) -> None:
    assert check_env.main(["generate-key"]) == check_env.EXIT_OK

    key = capsys.readouterr().out.strip()
    assert len(base64.b64decode(key)) == 32
