"""
Tests for Settings validation and the storage backend selection.
"""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from acme.client import LETSENCRYPT_PRODUCTION, LETSENCRYPT_STAGING
from certmanager.manager import CertificateManager, make_store
from config import Settings
from storage.filesystem import FileMaterialStore
from storage.seed import SeedMaterialStore


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_defaults():
    s = _settings()
    assert s.SSL_MODE == "production"
    assert not s.is_staging
    assert s.ACME_DIRECTORY_URL == ""
    assert s.STORAGE_BACKEND == "filesystem"
    assert s.HTTP_CHALLENGE_PORT == 80


@pytest.mark.parametrize(
    "mode,expected",
    [("production", LETSENCRYPT_PRODUCTION), ("staging", LETSENCRYPT_STAGING)],
)
def test_ssl_mode_selects_letsencrypt_directory(tmp_path, mode, expected):
    manager = CertificateManager.from_settings(_settings(DOMAIN="example.test", SSL_MODE=mode, CONFIG_DIR=str(tmp_path)))
    assert manager.orchestrator.directory_for(manager.is_staging) == expected


def test_explicit_directory_wins(tmp_path):
    manager = CertificateManager.from_settings(
        _settings(
            DOMAIN="example.test",
            SSL_MODE="staging",
            ACME_DIRECTORY_URL="https://localhost:14000/dir",
            CONFIG_DIR=str(tmp_path),
        )
    )
    assert manager.orchestrator.directory_for(manager.is_staging) == "https://localhost:14000/dir"


def test_unknown_ssl_mode_rejected():
    with pytest.raises(ValidationError):
        _settings(SSL_MODE="testing")


def test_domain_is_normalized():
    assert _settings(DOMAIN="  Example.TEST ").DOMAIN == "example.test"


@pytest.mark.parametrize("domain", ["a.test,b.test", "a.test b.test", "*.example.test"])
def test_domain_must_be_single_non_wildcard_name(domain):
    with pytest.raises(ValidationError):
        _settings(DOMAIN=domain)


def test_log_level_validation():
    assert _settings(LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"
    with pytest.raises(ValidationError):
        _settings(LOG_LEVEL="verbose")


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("DOMAIN", "env.example.test")
    monkeypatch.setenv("SSL_MODE", "staging")
    s = _settings()
    assert s.DOMAIN == "env.example.test"
    assert s.is_staging


def test_seed_backend_requires_seed_and_url():
    with pytest.raises(ValidationError):
        _settings(STORAGE_BACKEND="seed", SEED="s")


def test_make_store_selects_backend(tmp_path):
    assert isinstance(make_store(_settings(CONFIG_DIR=str(tmp_path))), FileMaterialStore)
    seed = make_store(_settings(STORAGE_BACKEND="seed", SEED="s", SEED_STORE_URL="https://files.test/v1"))
    assert isinstance(seed, SeedMaterialStore)


def test_manager_from_settings(tmp_path):
    manager = CertificateManager.from_settings(
        _settings(DOMAIN="example.test", SSL_MODE="staging", CONFIG_DIR=str(tmp_path), RENEWAL_TIMEOUT_SECONDS=120)
    )
    assert manager.domain == "example.test"
    assert manager.is_staging
    assert manager.orchestrator.timeout_seconds == 120
    assert manager.orchestrator.directory_for(manager.is_staging) == LETSENCRYPT_STAGING


def test_manager_requires_domain(tmp_path):
    with pytest.raises(ValueError):
        CertificateManager.from_settings(_settings(CONFIG_DIR=str(tmp_path)))
