"""
CLI smoke tests. Only --status is exercised; the other modes bind port 80.
"""
from __future__ import annotations

import pytest

import main
from certmanager.material import CertificateMaterial
from storage.filesystem import FileMaterialStore


def test_mode_is_required():
    with pytest.raises(SystemExit) as exc_info:
        main.main([])
    assert exc_info.value.code == 2


def test_status_without_certificate(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("CONFIG_DIR", str(tmp_path / "config"))
    with pytest.raises(SystemExit) as exc_info:
        main.main(["--status", "--domain", "Example.Test"])

    assert exc_info.value.code == 2
    out = capsys.readouterr().out
    assert "example.test: no certificate stored" in out
    assert "must renew (missing)" in out


def test_status_with_valid_certificate(tmp_path, monkeypatch, capsys, cert_factory):
    cert, key = cert_factory("example.test")
    FileMaterialStore(tmp_path / "config").save_certificate(CertificateMaterial.from_pem(cert, key))
    monkeypatch.setenv("CONFIG_DIR", str(tmp_path / "config"))

    with pytest.raises(SystemExit) as exc_info:
        main.main(["--status", "--domain", "example.test"])

    assert exc_info.value.code == 0
    assert capsys.readouterr().out.rstrip().endswith(": valid")


def test_status_without_domain_exits_1(monkeypatch):
    monkeypatch.setattr("config.settings.DOMAIN", "")
    with pytest.raises(SystemExit) as exc_info:
        main.main(["--status"])
    assert exc_info.value.code == 1
