"""Tests for the command line entry point."""

import os
from unittest.mock import patch

import pytest

from teamsync import cli
from teamsync.fake import FakeGitHub
from teamsync.models import RepoPermission
from teamsync.output import set_quiet

CONFIG = """
teams:
  - name: infra
    github:
      - org: rust-lang
        name: infra
        members: [1]
repos:
  - org: rust-lang
    name: rust
    access:
      teams:
        infra: write
"""


@pytest.fixture(autouse=True)
def github_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("GITHUB_TOKEN"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("GITHUB_TOKEN", "pat")
    yield
    set_quiet(False)


@pytest.fixture
def config(tmp_path):
    path = tmp_path / "teams.yaml"
    path.write_text(CONFIG)
    return str(path)


@pytest.fixture
def gh(monkeypatch):
    """Route the CLI's reads and writes to an in-memory GitHub."""
    fake = FakeGitHub()
    fake.add_user("mark", 1)

    def make_write(client, read, *, dry_run):
        fake.dry_run = dry_run
        return fake

    monkeypatch.setattr(cli, "GitHubApiRead", lambda client: fake)
    monkeypatch.setattr(cli, "GitHubWrite", make_write)
    return fake


class TestRun:
    """Tests for run."""

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.run(["--version"])
        assert exc_info.value.code == 0
        assert "teamsync 0.1.0" in capsys.readouterr().out

    def test_audit_and_dry_run(self, capsys):
        assert cli.run(["--audit", "--dry-run"]) == 2
        assert "cannot be used with --dry-run" in capsys.readouterr().err

    def test_missing_config(self, tmp_path, capsys):
        assert cli.run(["-f", str(tmp_path / "nope.yaml")]) == 1
        assert "Config file not found" in capsys.readouterr().err

    def test_invalid_config(self, tmp_path, capsys):
        path = tmp_path / "teams.yaml"
        path.write_text("repos:\n  - {org: rust-lang}\n")
        assert cli.run(["-f", str(path)]) == 1
        assert "missing 'name'" in capsys.readouterr().err

    def test_bad_value_in_config(self, tmp_path, capsys):
        path = tmp_path / "teams.yaml"
        path.write_text(
            "repos:\n"
            "  - org: rust-lang\n"
            "    name: rust\n"
            "    branch-protections:\n"
            "      - pattern: main\n"
            "        required-approvals:\n"
        )
        assert cli.run(["--audit", "-f", str(path)]) == 1
        assert "required-approvals must be an integer" in capsys.readouterr().err

    def test_missing_token(self, config, monkeypatch, capsys):
        monkeypatch.delenv("GITHUB_TOKEN")
        assert cli.run(["-f", config]) == 1
        assert "GITHUB_TOKEN" in capsys.readouterr().err

    def test_token_for_other_org_only(self, config, monkeypatch, capsys):
        monkeypatch.delenv("GITHUB_TOKEN")
        monkeypatch.setenv("GITHUB_TOKEN_RUST_EMBEDDED", "x")
        assert cli.run(["-f", config]) == 1
        assert "No GitHub token for organization(s): rust-lang" in capsys.readouterr().err

    def test_apply(self, config, gh, capsys):
        assert cli.run(["-f", config]) == 0
        out = capsys.readouterr().out
        assert "drift detected" in out
        assert "2 applied" in out
        assert "infra" in gh.teams["rust-lang"]
        assert gh.repos[("rust-lang", "rust")].teams == {"infra": RepoPermission.WRITE}

    def test_second_run_has_no_drift(self, config, gh, capsys):
        cli.run(["-f", config])
        capsys.readouterr()
        assert cli.run(["-f", config]) == 0
        assert "no drift detected" in capsys.readouterr().out

    def test_dry_run(self, config, gh, capsys):
        assert cli.run(["-f", config, "--dry-run"]) == 0
        out = capsys.readouterr().out
        assert "dry-run" in out
        assert "2 would apply" in out
        assert gh.teams == {}
        assert gh.repos == {}

    def test_audit(self, config, gh, capsys):
        assert cli.run(["-f", config, "--audit"]) == 0
        out = capsys.readouterr().out
        assert "+ team rust-lang/infra" in out
        assert "+ repo rust-lang/rust" in out
        assert "run without --audit" in out
        assert gh.calls == []

    def test_quiet(self, config, gh, capsys):
        assert cli.run(["-f", config, "--quiet"]) == 0
        assert capsys.readouterr().out == ""

    def test_failure_stops(self, config, gh, capsys):
        gh.fail_on.add("create_team")
        assert cli.run(["-f", config]) == 1
        assert "HTTP 500" in capsys.readouterr().err
        assert gh.call_names() == ["create_team"]

    def test_keep_going(self, config, gh, capsys):
        gh.fail_on.add("create_team")
        assert cli.run(["-f", config, "--keep-going"]) == 1
        captured = capsys.readouterr()
        assert "1 applied" in captured.out
        assert "1 failed" in captured.out
        assert "team rust-lang/infra: HTTP 500" in captured.err
        assert ("rust-lang", "rust") in gh.repos

    def test_read_error(self, config, gh, capsys):
        del gh.users[1]
        assert cli.run(["-f", config]) == 1
        assert "failed to resolve user id 1" in capsys.readouterr().err


class TestMain:
    """Tests for main."""

    def test_exit_code(self):
        with patch.object(cli, "run", return_value=2):
            with pytest.raises(SystemExit) as exc_info:
                cli.main()
        assert exc_info.value.code == 2

    def test_keyboard_interrupt(self):
        with patch.object(cli, "run", side_effect=KeyboardInterrupt):
            with pytest.raises(SystemExit) as exc_info:
                cli.main()
        assert exc_info.value.code == 130
