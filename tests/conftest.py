"""Shared builders for the sync tests."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx
import pytest

from teamsync.client import API_BASE, HttpClient
from teamsync.diff import RepoDiff, TeamDiff
from teamsync.fake import FakeGitHub
from teamsync.models import (
    Bot,
    BranchProtection,
    DesiredState,
    GitHubTeam,
    MergeBot,
    PrNotRequired,
    PrRequired,
    Repo,
    RepoMemberAccess,
    RepoPermission,
    RepoTeamAccess,
    SyncPolicy,
    Team,
)
from teamsync.sync import SyncGitHub
from teamsync.tokens import GitHubTokens

DEFAULT_ORG = "rust-lang"


# =============================================================================
# HTTP
# =============================================================================


class MockApi:
    """
    Canned GitHub responses for an HttpClient.

    REST routes are keyed by "METHOD path?query" relative to the API base.
    When a route has several responses they are returned in order and the
    last one repeats. GraphQL requests go to `graphql(query, variables)`.
    Unknown routes answer 404.
    """

    def __init__(self):
        self.routes: dict[str, list[tuple[int, object, dict]]] = {}
        self.graphql: Callable[[str, dict], dict] | None = None
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, body: object = None, *, status: int = 200, headers=None) -> MockApi:
        self.routes.setdefault(f"{method} {path}", []).append((status, body, headers or {}))
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = str(request.url)[len(API_BASE):]
        if path == "graphql":
            payload = json.loads(request.content)
            return httpx.Response(200, json=self.graphql(payload["query"], payload["variables"]))
        responses = self.routes.get(f"{request.method} {path}")
        if not responses:
            return httpx.Response(404, json={"message": "Not Found"})
        status, body, headers = responses.pop(0) if len(responses) > 1 else responses[0]
        if body is None:
            return httpx.Response(status, headers=headers)
        return httpx.Response(status, json=body, headers=headers)

    def client(self, tokens: GitHubTokens | None = None) -> HttpClient:
        return HttpClient(tokens or GitHubTokens(default="pat"), transport=httpx.MockTransport(self.handler))

    def sent(self) -> list[str]:
        """'METHOD path' of every request made so far."""
        return [f"{r.method} {str(r.url)[len(API_BASE):]}" for r in self.requests]

    def body(self, index: int) -> object:
        return json.loads(self.requests[index].content)


@pytest.fixture
def api() -> MockApi:
    return MockApi()


# =============================================================================
# Desired State
# =============================================================================


@dataclass
class TeamData:
    name: str
    # [org, name, member ids]
    gh_teams: list[list] = field(default_factory=list)

    def gh_team(self, name: str, members: list[int], org: str = DEFAULT_ORG) -> TeamData:
        self.gh_teams.append([org, name, list(members)])
        return self

    def _find(self, gh_name: str) -> list:
        for entry in self.gh_teams:
            if entry[1] == gh_name:
                return entry
        raise KeyError(gh_name)

    def add_gh_member(self, gh_name: str, user: int) -> None:
        self._find(gh_name)[2].append(user)

    def remove_gh_member(self, gh_name: str, user: int) -> None:
        self._find(gh_name)[2].remove(user)

    def build(self) -> Team:
        return Team(
            name=self.name,
            github=tuple(GitHubTeam(org=org, name=name, members=tuple(members)) for org, name, members in self.gh_teams),
        )


@dataclass
class RepoData:
    name: str
    org: str = DEFAULT_ORG
    description: str = ""
    homepage: str | None = None
    archived: bool = False
    auto_merge_enabled: bool = False
    teams: dict[str, RepoPermission] = field(default_factory=dict)
    members: dict[str, RepoPermission] = field(default_factory=dict)
    branch_protections: list[BranchProtection] = field(default_factory=list)
    bots: list[Bot] = field(default_factory=list)

    def team(self, name: str, permission: RepoPermission) -> RepoData:
        self.teams[name] = permission
        return self

    def member(self, name: str, permission: RepoPermission) -> RepoData:
        self.members[name] = permission
        return self

    def protect(self, protection: BranchProtection) -> RepoData:
        self.branch_protections.append(protection)
        return self

    def bot(self, bot: Bot) -> RepoData:
        self.bots.append(bot)
        return self

    def build(self) -> Repo:
        return Repo(
            org=self.org,
            name=self.name,
            description=self.description,
            homepage=self.homepage,
            archived=self.archived,
            auto_merge_enabled=self.auto_merge_enabled,
            teams=tuple(RepoTeamAccess(n, p) for n, p in self.teams.items()),
            members=tuple(RepoMemberAccess(n, p) for n, p in self.members.items()),
            branch_protections=tuple(self.branch_protections),
            bots=tuple(self.bots),
        )


def pr_required(pattern: str, checks: list[str], approvals: int = 1, **kwargs) -> BranchProtection:
    return BranchProtection(
        pattern=pattern,
        mode=PrRequired(ci_checks=tuple(checks), required_approvals=approvals),
        **kwargs,
    )


def pr_not_required(pattern: str, **kwargs) -> BranchProtection:
    return BranchProtection(pattern=pattern, mode=PrNotRequired(), **kwargs)


def with_homu(protection: BranchProtection) -> BranchProtection:
    return BranchProtection(
        pattern=protection.pattern,
        mode=protection.mode,
        dismiss_stale_review=protection.dismiss_stale_review,
        allowed_merge_teams=protection.allowed_merge_teams,
        merge_bots=(MergeBot.HOMU,),
    )


class DataModel:
    """Desired state under construction, plus a matching fake GitHub on demand."""

    def __init__(self):
        self.users: dict[int, str] = {}
        self.teams: list[TeamData] = []
        self.repos: list[RepoData] = []
        self.owners: dict[str, set[int]] = {}
        self.policy = SyncPolicy()

    def create_user(self, name: str) -> int:
        user_id = len(self.users) + 1
        self.users[user_id] = name
        return user_id

    def make_owner(self, user_id: int, org: str = DEFAULT_ORG) -> None:
        self.owners.setdefault(org, set()).add(user_id)

    def create_team(self, team: TeamData) -> TeamData:
        self.teams.append(team)
        return team

    def get_team(self, name: str) -> TeamData:
        return next(team for team in self.teams if team.name == name)

    def remove_team(self, name: str) -> None:
        self.teams = [team for team in self.teams if team.name != name]

    def create_repo(self, repo: RepoData) -> RepoData:
        self.repos.append(repo)
        return repo

    def get_repo(self, name: str) -> RepoData:
        return next(repo for repo in self.repos if repo.name == name)

    def desired(self) -> DesiredState:
        return DesiredState(
            teams=tuple(team.build() for team in self.teams),
            repos=tuple(repo.build() for repo in self.repos),
        )

    def gh_model(self) -> FakeGitHub:
        """A fake GitHub that matches the desired state as it is now."""
        return FakeGitHub.from_desired(self.desired(), self.users, self.policy, self.owners)

    def sync(self, gh: FakeGitHub) -> SyncGitHub:
        return SyncGitHub(gh, self.desired(), self.policy)

    def diff_teams(self, gh: FakeGitHub) -> list[TeamDiff]:
        return self.sync(gh).diff_teams()

    def diff_repos(self, gh: FakeGitHub) -> list[RepoDiff]:
        return self.sync(gh).diff_repos()


@pytest.fixture
def model() -> DataModel:
    return DataModel()
