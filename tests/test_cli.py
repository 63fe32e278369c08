"""
tests/test_cli.py -- Administrative command line (main.py).

Commands run against the DATABASE_URL file database configured in conftest,
which the API fixtures never touch.
"""

from __future__ import annotations

import pytest

from admin.models import SecuritySettings
from auth.rbac import validate_password
from core.config import get_settings
from licensing.models import ValidationStatus
from licensing.store import LicenseStore
from licensing.validator import verify_license_token
from main import _generate_password, build_parser, main


def test_generated_passwords_meet_default_policy() -> None:
    for _ in range(20):
        password = _generate_password()
        assert len(password) == 16
        assert validate_password(password, SecuritySettings()) == [], password


def test_serve_defaults() -> None:
    args = build_parser().parse_args(["serve"])
    assert (args.host, args.port, args.reload) == ("0.0.0.0", 5000, False)


def test_no_command_prints_help(capsys) -> None:
    assert main([]) == 0
    assert "pcvisor administrative commands" in capsys.readouterr().out


def test_seed_is_idempotent(capsys) -> None:
    assert main(["seed"]) == 0
    first = capsys.readouterr().out
    assert main(["seed"]) == 0
    second = capsys.readouterr().out
    assert "Password:" in first or "already exists" in first
    assert "Admin system user already exists!" in second


def test_create_user_with_unknown_role(capsys) -> None:
    assert main(["create-user", "cli-user", "Str0ng!pass", "--role", "Nope"]) == 1
    assert "Role 'Nope' not found" in capsys.readouterr().err


def test_create_user(capsys) -> None:
    main(["seed"])
    capsys.readouterr()
    assert main(["create-user", "cli-admin", "Str0ng!pass", "--role", "Admin"]) == 0
    assert "User created successfully" in capsys.readouterr().out
    assert main(["create-user", "cli-admin", "Str0ng!pass"]) == 0
    assert "already exists" in capsys.readouterr().out


def test_sign_license_rejects_unknown_module(capsys) -> None:
    assert main(["sign-license", "--tenant", "acme", "--modules", "EPM,TELEPORTER", "--expiry", "2027-01-01"]) == 1
    assert "TELEPORTER" in capsys.readouterr().err


def test_sign_license_rejects_bad_expiry(capsys) -> None:
    assert main(["sign-license", "--tenant", "acme", "--modules", "EPM", "--expiry", "next year"]) == 1


def test_sign_and_install_license(capsys) -> None:
    rc = main(
        ["sign-license", "--tenant", "acme", "--modules", "epm", "--expiry", "2027-01-01", "--hardware-id", "fp-cli", "--install"]
    )
    assert rc == 0
    token = capsys.readouterr().out.strip()
    payload = verify_license_token(token)
    assert payload is not None
    assert payload.modules == ["EPM"]
    assert payload.expiry.startswith("2027-01-01")

    store = LicenseStore(get_settings().database_url)
    try:
        info = store.get()
    finally:
        store.close()
    assert info.license_token == token
    assert info.hardware_id == "fp-cli"
    assert info.last_validation_status == ValidationStatus.OK.value


@pytest.mark.parametrize("argv", [["create-user"], ["sign-license", "--tenant", "x"]])
def test_missing_arguments_exit(argv: list[str]) -> None:
    with pytest.raises(SystemExit):
        main(argv)
