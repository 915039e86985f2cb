"""Tests for token selection."""

import pytest

from teamsync.tokens import GitHubTokens, MissingTokenError, org_name_from_env_var


class TestOrgNameFromEnvVar:
    """Tests for org_name_from_env_var."""

    def test_org_token(self):
        assert org_name_from_env_var("GITHUB_TOKEN_RUST_LANG") == "rust-lang"

    def test_plain_token(self):
        assert org_name_from_env_var("GITHUB_TOKEN") is None

    def test_empty_suffix(self):
        assert org_name_from_env_var("GITHUB_TOKEN_") is None

    def test_unrelated(self):
        assert org_name_from_env_var("HOME") is None


class TestFromEnv:
    """Tests for GitHubTokens.from_env."""

    def test_default_token(self):
        tokens = GitHubTokens.from_env({"GITHUB_TOKEN": "pat"})
        assert tokens.default == "pat"
        assert tokens.uses_pat

    def test_org_tokens(self):
        tokens = GitHubTokens.from_env({"GITHUB_TOKEN_RUST_LANG": "a", "GITHUB_TOKEN_RUST_EMBEDDED": "b"})
        assert tokens.orgs == {"rust-lang": "a", "rust-embedded": "b"}
        assert tokens.default is None
        assert not tokens.uses_pat

    def test_empty_values_ignored(self):
        with pytest.raises(MissingTokenError):
            GitHubTokens.from_env({"GITHUB_TOKEN": "", "GITHUB_TOKEN_RUST_LANG": ""})

    def test_nothing_set(self):
        with pytest.raises(MissingTokenError, match="GITHUB_TOKEN"):
            GitHubTokens.from_env({})


class TestGetToken:
    """Tests for GitHubTokens.get_token."""

    def test_org_token_wins(self):
        tokens = GitHubTokens(orgs={"rust-lang": "org"}, default="pat")
        assert tokens.get_token("rust-lang") == "org"

    def test_falls_back_to_default(self):
        tokens = GitHubTokens(orgs={"rust-lang": "org"}, default="pat")
        assert tokens.get_token("rust-embedded") == "pat"

    def test_org_independent_uses_any_org_token(self):
        tokens = GitHubTokens(orgs={"rust-lang": "a", "rust-embedded": "b"})
        assert tokens.get_token(None) == "b"

    def test_missing(self):
        tokens = GitHubTokens(orgs={"rust-lang": "a"})
        with pytest.raises(MissingTokenError, match="rust-embedded"):
            tokens.get_token("rust-embedded")


class TestRequire:
    """Tests for GitHubTokens.require."""

    def test_all_covered(self):
        GitHubTokens(orgs={"rust-lang": "a"}).require(["rust-lang"])

    def test_default_covers_everything(self):
        GitHubTokens(default="pat").require(["rust-lang", "rust-embedded"])

    def test_lists_missing_orgs(self):
        tokens = GitHubTokens(orgs={"rust-lang": "a"})
        with pytest.raises(MissingTokenError, match="rust-embedded, rust-lang-nursery"):
            tokens.require(["rust-lang", "rust-lang-nursery", "rust-embedded"])
