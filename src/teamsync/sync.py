from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from teamsync.diff import (
    Diff,
    RepoDiff,
    RepoSnapshot,
    TeamDiff,
    TeamSnapshot,
    diff_repo,
    diff_team,
    diff_unmanaged_teams,
    is_noop,
    managed_team_key,
)
from teamsync.models import (
    DesiredState,
    GitHubApp,
    InstallationData,
    Repo,
    SyncPolicy,
    Team,
)
from teamsync.read import GithubRead


class SyncError(RuntimeError):
    """The desired state and what the platform reports don't fit together."""


# =============================================================================
# Caches
# =============================================================================


@dataclass(frozen=True)
class SyncCaches:
    """
    Org-wide data fetched once per run, before any diff is computed.

    All mappings are read-only views.
    """

    usernames: Mapping[int, str]
    org_owners: Mapping[str, frozenset[int]]
    # org -> installation id -> installation
    org_apps: Mapping[str, Mapping[int, InstallationData]]

    @staticmethod
    def load(read: GithubRead, teams: Iterable[Team], repos: Iterable[Repo]) -> SyncCaches:
        teams = list(teams)
        repos = list(repos)

        user_ids = sorted({user for team in teams for gh in team.github for user in gh.members})
        usernames = read.usernames(user_ids) if user_ids else {}
        missing = [user for user in user_ids if user not in usernames]
        if missing:
            raise SyncError(f"Could not resolve usernames of user id(s): {', '.join(map(str, missing))}")

        orgs = sorted({gh.org for team in teams for gh in team.github} | {repo.org for repo in repos})
        owners = {org: frozenset(read.org_owners(org)) for org in orgs}

        apps: dict[str, Mapping[int, InstallationData]] = {}
        for org in sorted({repo.org for repo in repos}):
            installations = {}
            for installation in read.org_app_installations(org):
                # Only apps we know how to manage.
                if GitHubApp.from_app_id(installation.app_id) is None:
                    continue
                enabled = read.app_installation_repos(installation.installation_id, org)
                installations[installation.installation_id] = InstallationData(
                    app_id=installation.app_id,
                    repositories=frozenset(enabled),
                )
            apps[org] = MappingProxyType(installations)

        return SyncCaches(
            usernames=MappingProxyType(dict(usernames)),
            org_owners=MappingProxyType(owners),
            org_apps=MappingProxyType(apps),
        )

    def owners(self, org: str) -> frozenset[int]:
        return self.org_owners.get(org, frozenset())

    def installations(self, org: str) -> Mapping[int, InstallationData]:
        return self.org_apps.get(org, MappingProxyType({}))


# =============================================================================
# Diffing
# =============================================================================


class SyncGitHub:
    """Computes the diff between the desired state and what the read port reports."""

    def __init__(
        self,
        read: GithubRead,
        desired: DesiredState,
        policy: SyncPolicy | None = None,
        caches: SyncCaches | None = None,
    ):
        self.read = read
        self.desired = desired
        self.policy = policy or SyncPolicy()
        if caches is None:
            caches = SyncCaches.load(read, desired.teams, desired.repos)
        self.caches = caches

    def team_snapshot(self, org: str, name: str) -> TeamSnapshot | None:
        team = self.read.team(org, name)
        if team is None:
            return None
        return TeamSnapshot(
            team=team,
            members=self.read.team_memberships(team, org),
            invitations=frozenset(self.read.team_membership_invitations(org, name)),
        )

    def repo_snapshot(self, repo: Repo) -> RepoSnapshot | None:
        actual = self.read.repo(repo.org, repo.name)
        if actual is None:
            return None
        if actual.archived and repo.archived:
            # Frozen, the rest would never be looked at.
            return RepoSnapshot(repo=actual)
        return RepoSnapshot(
            repo=actual,
            teams=tuple(self.read.repo_teams(repo.org, repo.name)),
            collaborators=tuple(self.read.repo_collaborators(repo.org, repo.name)),
            branch_protections=self.read.branch_protections(repo.org, repo.name),
        )

    def diff_teams(self) -> list[TeamDiff]:
        diffs: list[TeamDiff] = []
        managed: set[tuple[str, str]] = set()
        orgs: set[str] = set()
        for team in self.desired.teams:
            for github_team in team.github:
                snapshot = self.team_snapshot(github_team.org, github_team.name)
                managed.add(managed_team_key(github_team, snapshot))
                orgs.add(github_team.org)
                diffs.append(
                    diff_team(
                        github_team,
                        snapshot,
                        self.caches.usernames,
                        self.caches.owners(github_team.org),
                        self.policy,
                    )
                )

        org_teams = {
            org: self.read.org_teams(org) for org in sorted(orgs) if org in self.policy.delete_teams_in
        }
        diffs.extend(diff_unmanaged_teams(managed, org_teams, self.policy))
        return diffs

    def diff_repos(self) -> list[RepoDiff]:
        diffs: list[RepoDiff] = []
        for repo in self.desired.repos:
            diff = diff_repo(
                repo,
                self.repo_snapshot(repo),
                self.caches.installations(repo.org),
                self.policy,
            )
            if not is_noop(diff):
                diffs.append(diff)
        return diffs

    def diff_all(self) -> Diff:
        return Diff(team_diffs=tuple(self.diff_teams()), repo_diffs=tuple(self.diff_repos()))


def create_diff(read: GithubRead, desired: DesiredState, policy: SyncPolicy | None = None) -> Diff:
    """Read everything needed from the platform and compute the full diff."""
    return SyncGitHub(read, desired, policy).diff_all()
