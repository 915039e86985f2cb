from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

TOKEN_VAR = "GITHUB_TOKEN"
ORG_TOKEN_PREFIX = "GITHUB_TOKEN_"


class MissingTokenError(RuntimeError):
    pass


def org_name_from_env_var(name: str) -> str | None:
    """
    GITHUB_TOKEN_RUST_LANG -> rust-lang.

    Environment variables can't contain '-' and org names can't contain '_'.
    """
    if not name.startswith(ORG_TOKEN_PREFIX):
        return None
    org = name[len(ORG_TOKEN_PREFIX):]
    if not org:
        return None
    return org.lower().replace("_", "-")


@dataclass(frozen=True)
class GitHubTokens:
    """Per-organization tokens with an optional token shared by all orgs."""
    orgs: Mapping[str, str] = field(default_factory=dict)
    default: str | None = None

    @staticmethod
    def from_env(environ: Mapping[str, str] | None = None) -> GitHubTokens:
        if environ is None:
            environ = os.environ
        orgs: dict[str, str] = {}
        for key, value in environ.items():
            org = org_name_from_env_var(key)
            if org and value:
                orgs[org] = value
        default = environ.get(TOKEN_VAR) or None
        if not orgs and default is None:
            raise MissingTokenError(
                f"Expected {TOKEN_VAR} or {ORG_TOKEN_PREFIX}<ORG> environment variable to be set"
            )
        return GitHubTokens(orgs=orgs, default=default)

    @property
    def uses_pat(self) -> bool:
        """A shared personal access token, as opposed to per-org app tokens."""
        return self.default is not None

    def get_token(self, org: str | None) -> str:
        if org is not None and org in self.orgs:
            return self.orgs[org]
        if self.default is not None:
            return self.default
        if org is None and self.orgs:
            # Org-independent queries (e.g. user lookups) work with any token.
            return self.orgs[sorted(self.orgs)[0]]
        raise MissingTokenError(f"No GitHub token for organization {org!r}")

    def require(self, orgs) -> None:
        """Fail before any request if some org has no usable token."""
        missing = sorted(org for org in set(orgs) if org not in self.orgs and self.default is None)
        if missing:
            raise MissingTokenError(
                "No GitHub token for organization(s): " + ", ".join(missing)
            )
