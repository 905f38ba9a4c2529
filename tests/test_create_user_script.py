import importlib.util
from pathlib import Path

import pytest

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "create_user.py"


@pytest.fixture(scope="module")
def script():
    spec = importlib.util.spec_from_file_location("create_user_script", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_first_user_defaults_to_admin(script, runtime, capsys):
    assert script.main(["alice", "Password123"], runtime=runtime) == 0
    assert "User 'alice' created successfully (id: 1, admin: true)" in capsys.readouterr().out

    assert script.main(["bob", "Password123"], runtime=runtime) == 0
    assert "admin: false" in capsys.readouterr().out


def test_explicit_flags(script, runtime, capsys):
    assert script.main(["alice", "Password123", "--no-admin"], runtime=runtime) == 0
    assert "admin: false" in capsys.readouterr().out

    assert script.main(["bob", "Password123", "--admin"], runtime=runtime) == 0
    assert "admin: true" in capsys.readouterr().out


def test_password_from_environment(script, runtime, monkeypatch, capsys):
    monkeypatch.setenv("SCROB_PASSWORD", "Password123")
    assert script.main(["alice"], runtime=runtime) == 0
    assert runtime.store.get_user_by_username("alice") is not None


def test_missing_password(script, runtime, monkeypatch, capsys):
    monkeypatch.delenv("SCROB_PASSWORD", raising=False)
    assert script.main(["alice"], runtime=runtime) == 1
    assert "password" in capsys.readouterr().out


def test_policy_and_duplicate_errors(script, runtime, capsys):
    assert script.main(["alice", "weak"], runtime=runtime) == 1
    assert "Password must be at least 8 characters" in capsys.readouterr().out

    script.main(["alice", "Password123"], runtime=runtime)
    capsys.readouterr()
    assert script.main(["alice", "Password123"], runtime=runtime) == 1
    assert "Username already exists" in capsys.readouterr().out
