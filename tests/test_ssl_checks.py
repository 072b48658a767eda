"""Tests for certificate expiry and certificate/key binding checks."""

from __future__ import annotations

import shutil
import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from conftest import completed

from stackguard.checks import Outcome, run_all
from stackguard.errors import IntegrityError
from stackguard.secretstore.store import SecretStore
from stackguard.validation import certificates
from stackguard.validation.context import ValidationContext
from stackguard.validation.security import ssl_group

needs_openssl = pytest.mark.skipif(shutil.which("openssl") is None, reason="openssl not installed")


def _openssl(*args: str) -> None:
    subprocess.run(["openssl", *args], check=True, capture_output=True)


@pytest.fixture
def cert_pair(tmp_path: Path):
    ssl_dir = tmp_path / "nginx" / "ssl"
    ssl_dir.mkdir(parents=True)
    cert, key = ssl_dir / "fullchain.pem", ssl_dir / "key.pem"
    _openssl(
        "req", "-x509", "-newkey", "rsa:2048", "-nodes",
        "-keyout", str(key), "-out", str(cert), "-days", "365", "-subj", "/CN=stackguard.test",
    )
    return cert, key


def _fake_openssl(enddate: str, cert_modulus: str, key_modulus: str):
    def runner(args, **kwargs):
        if "-enddate" in args:
            return completed(0, f"notAfter={enddate}\n")
        if args[1] == "x509":
            return completed(0, f"Modulus={cert_modulus}\n")
        return completed(0, f"Modulus={key_modulus}\n")

    return runner


def _context(settings, runner) -> ValidationContext:
    return ValidationContext(
        settings=settings,
        store=SecretStore(settings.secrets_dir),
        compose=None,
        runner=runner,
    )


def _write_pair(root: Path) -> None:
    ssl_dir = root / "nginx" / "ssl"
    ssl_dir.mkdir(parents=True, exist_ok=True)
    (ssl_dir / "fullchain.pem").write_text("cert", encoding="utf-8")
    (ssl_dir / "key.pem").write_text("key", encoding="utf-8")


def test_expiry_date_parses_openssl_output() -> None:
    """The notAfter line from openssl is parsed into a date."""
    runner = _fake_openssl("Jan  5 10:00:00 2030 GMT", "AB", "AB")
    expiry = certificates.expiry_date(Path("cert.pem"), runner)
    assert expiry == datetime(2030, 1, 5, 10, 0, tzinfo=timezone.utc)
    now = datetime(2029, 12, 26, 10, 0, tzinfo=timezone.utc)
    assert certificates.days_remaining(Path("cert.pem"), runner, now) == 10


def test_expiry_date_unreadable() -> None:
    """Unreadable openssl output yields no expiry date."""
    assert certificates.expiry_date(Path("x"), lambda args, **kw: completed(1, "", "bad")) is None


def test_mismatched_modulus_is_hard_failure(make_settings) -> None:
    """A certificate that does not match its key is FAIL."""
    settings = make_settings()
    _write_pair(settings.project_root)
    ctx = _context(settings, _fake_openssl("Jan  5 10:00:00 2099 GMT", "AAAA", "BBBB"))
    report = run_all([ssl_group(ctx)])
    by_name = {r.name: r for r in report.results}
    assert by_name["Certificate matches private key"].outcome == Outcome.FAIL
    assert by_name["Certificate valid for 30+ days"].outcome == Outcome.PASS
    assert report.exit_code == 1


def test_missing_pair_is_a_warning(make_settings) -> None:
    """A missing certificate pair is only a warning."""
    ctx = _context(make_settings(), _fake_openssl("", "", ""))
    report = run_all([ssl_group(ctx)])
    assert [r.outcome for r in report.results] == [Outcome.WARN]


def test_near_expiry_is_a_warning(make_settings) -> None:
    """A certificate close to expiry is only a warning."""
    settings = make_settings()
    _write_pair(settings.project_root)
    enddate = (datetime.now(timezone.utc) + timedelta(days=10)).strftime("%b %d %H:%M:%S %Y GMT")
    ctx = _context(settings, _fake_openssl(enddate, "AAAA", "AAAA"))
    report = run_all([ssl_group(ctx)])
    by_name = {r.name: r for r in report.results}
    assert by_name["Certificate valid for 30+ days"].outcome == Outcome.WARN
    assert by_name["Certificate matches private key"].outcome == Outcome.PASS


@needs_openssl
def test_real_pair_matches(cert_pair) -> None:
    """A generated certificate and its own key match."""
    cert, key = cert_pair
    assert certificates.pair_matches(cert, key)
    certificates.verify_pair(cert, key)
    days = certificates.days_remaining(cert)
    assert 363 <= days <= 365


@needs_openssl
def test_real_unrelated_key_fails(cert_pair, tmp_path: Path) -> None:
    """A certificate checked against an unrelated key raises IntegrityError."""
    cert, _ = cert_pair
    other = tmp_path / "other.pem"
    _openssl("genrsa", "-out", str(other), "2048")
    assert not certificates.pair_matches(cert, other)
    with pytest.raises(IntegrityError):
        certificates.verify_pair(cert, other)


@needs_openssl
def test_real_pair_fails_in_basic_and_comprehensive_mode(cert_pair, tmp_path: Path, make_settings) -> None:
    """The key mismatch fails at every validation level."""
    _, key = cert_pair
    _openssl("genrsa", "-out", str(key), "2048")
    for comprehensive in (True, False):
        settings = make_settings()
        ctx = ValidationContext(
            settings=settings,
            store=SecretStore(settings.secrets_dir),
            compose=None,
            comprehensive=comprehensive,
        )
        report = run_all([ssl_group(ctx)])
        by_name = {r.name: r for r in report.results}
        assert by_name["Certificate matches private key"].outcome == Outcome.FAIL
