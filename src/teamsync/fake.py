from __future__ import annotations

import itertools
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from teamsync.client import GitHubError, GraphQLError, UnresolvedUserError
from teamsync.diff import bot_usernames, construct_branch_protection
from teamsync.models import (
    SIMULATED,
    BranchProtectionRule,
    DesiredState,
    GitHubApp,
    OrgAppInstallation,
    PlatformId,
    PlatformRepo,
    PlatformTeam,
    Real,
    RepoPermission,
    RepoSettings,
    RepoTeam,
    RepoUser,
    Simulated,
    SyncPolicy,
    TeamMember,
    TeamPrivacy,
    TeamPushAllowance,
    TeamRole,
    UserPushAllowance,
)
from teamsync.read import team_slug
from teamsync.write import BranchProtectionOp, CreateForRepo, UpdateBranchProtection, require_real


@dataclass
class FakeTeam:
    id: int
    name: str
    slug: str
    description: str | None
    privacy: TeamPrivacy
    members: dict[int, TeamMember] = field(default_factory=dict)
    invitations: set[str] = field(default_factory=set)


@dataclass
class FakeRepo:
    node_id: str
    repo_id: int
    org: str
    name: str
    description: str = ""
    homepage: str | None = None
    archived: bool = False
    allow_auto_merge: bool | None = False
    teams: dict[str, RepoPermission] = field(default_factory=dict)
    collaborators: dict[str, RepoPermission] = field(default_factory=dict)
    # pattern -> (rule id, rule)
    branch_protections: dict[str, tuple[str, BranchProtectionRule]] = field(default_factory=dict)


class FakeGitHub:
    """
    An in-memory GitHub that implements both the read and the write port.

    Writes change the in-memory state, so reading after applying a diff
    sees the result, unless the fake was created with `dry_run=True`.
    Every write call is recorded in `calls`, dry run or not. Method names
    listed in `fail_on` raise `GitHubError` instead of doing anything.
    """

    def __init__(self, *, dry_run: bool = False):
        self.dry_run = dry_run
        self.users: dict[int, str] = {}
        self.owners: dict[str, set[int]] = {}
        # org -> slug -> team
        self.teams: dict[str, dict[str, FakeTeam]] = {}
        self.repos: dict[tuple[str, str], FakeRepo] = {}
        self.installations: dict[str, list[OrgAppInstallation]] = {}
        self.installation_repos: dict[int, set[str]] = {}
        self.calls: list[tuple] = []
        self.fail_on: set[str] = set()
        self._ids = itertools.count(1)
        self._simulated_teams: set[tuple[str, str]] = set()

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def add_user(self, login: str, user_id: int | None = None) -> int:
        if user_id is None:
            user_id = max(self.users, default=0) + 1
        self.users[user_id] = login
        return user_id

    def add_owner(self, org: str, user_id: int) -> None:
        self.owners.setdefault(org, set()).add(user_id)

    def add_team(
        self,
        org: str,
        name: str,
        members: Iterable[int] = (),
        *,
        description: str | None = SyncPolicy.team_description,
        privacy: TeamPrivacy = TeamPrivacy.CLOSED,
    ) -> FakeTeam:
        team = FakeTeam(
            id=next(self._ids),
            name=name,
            slug=team_slug(name),
            description=description,
            privacy=privacy,
        )
        owners = self.owners.get(org, set())
        for user_id in members:
            role = TeamRole.MAINTAINER if user_id in owners else TeamRole.MEMBER
            team.members[user_id] = TeamMember(username=self.users[user_id], role=role)
        self.teams.setdefault(org, {})[team.slug] = team
        return team

    def invite(self, org: str, team: str, login: str) -> None:
        self._team(org, team).invitations.add(login)

    def add_repo(self, org: str, name: str, **settings) -> FakeRepo:
        n = next(self._ids)
        repo = FakeRepo(node_id=f"R_{n}", repo_id=n, org=org, name=name, **settings)
        self.repos[(org, name)] = repo
        return repo

    def add_branch_protection(self, org: str, repo: str, rule: BranchProtectionRule) -> str:
        rule_id = f"BPR_{next(self._ids)}"
        self._repo(org, repo).branch_protections[rule.pattern] = (rule_id, rule)
        return rule_id

    def install_app(self, org: str, app: GitHubApp, repos: Iterable[str] = ()) -> int:
        installation_id = next(self._ids)
        self.installations.setdefault(org, []).append(
            OrgAppInstallation(installation_id=installation_id, app_id=app.app_id)
        )
        self.installation_repos[installation_id] = set(repos)
        return installation_id

    @staticmethod
    def from_desired(
        desired: DesiredState,
        usernames: Mapping[int, str],
        policy: SyncPolicy | None = None,
        owners: Mapping[str, Iterable[int]] | None = None,
    ) -> FakeGitHub:
        """A platform that already matches the desired state."""
        policy = policy or SyncPolicy()
        gh = FakeGitHub()
        for user_id, login in usernames.items():
            gh.add_user(login, user_id)
        for org, ids in (owners or {}).items():
            for user_id in ids:
                gh.add_owner(org, user_id)

        for team in desired.teams:
            for github_team in team.github:
                gh.add_team(
                    github_team.org,
                    github_team.name,
                    github_team.members,
                    description=policy.team_description,
                    privacy=policy.team_privacy,
                )

        for repo in desired.repos:
            fake = gh.add_repo(
                repo.org,
                repo.name,
                description=repo.description,
                homepage=repo.homepage,
                archived=repo.archived,
                allow_auto_merge=repo.auto_merge_enabled,
            )
            for access in repo.teams:
                fake.teams[access.name] = access.permission
            for login in bot_usernames(repo):
                fake.collaborators[login] = RepoPermission.WRITE
            for access in repo.members:
                fake.collaborators[access.name] = access.permission
            for protection in repo.branch_protections:
                gh.add_branch_protection(repo.org, repo.name, construct_branch_protection(repo, protection))
        return gh

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def _team(self, org: str, name: str) -> FakeTeam:
        team = self.teams.get(org, {}).get(team_slug(name))
        if team is None:
            raise GitHubError(f"HTTP 404 team {org}/{name} not found", status=404)
        return team

    def _repo(self, org: str, name: str) -> FakeRepo:
        repo = self.repos.get((org, name))
        if repo is None:
            raise GitHubError(f"HTTP 404 repo {org}/{name} not found", status=404)
        return repo

    def _repo_by_node_id(self, node_id: str) -> FakeRepo:
        for repo in self.repos.values():
            if repo.node_id == node_id:
                return repo
        raise GitHubError(f"graphql error: Could not resolve to a node with the global id of '{node_id}'")

    def _repo_by_id(self, repo_id: int) -> FakeRepo:
        for repo in self.repos.values():
            if repo.repo_id == repo_id:
                return repo
        raise GitHubError(f"HTTP 404 repository {repo_id} not found", status=404)

    def _user_id(self, login: str) -> int:
        for user_id, name in self.users.items():
            if name == login:
                return user_id
        raise GitHubError(f"HTTP 404 user {login} not found", status=404)

    def _record(self, method: str, *args) -> None:
        self.calls.append((method, *args))
        if method in self.fail_on:
            raise GitHubError(f"HTTP 500 {method} failed", status=500)

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    # -------------------------------------------------------------------------
    # Read port
    # -------------------------------------------------------------------------

    def usernames(self, ids: list[int]) -> dict[int, str]:
        result = {}
        for user_id in ids:
            if user_id not in self.users:
                raise UnresolvedUserError(
                    user_id, GraphQLError(f"Could not resolve to a node with the global id of '{user_id}'")
                )
            result[user_id] = self.users[user_id]
        return result

    def org_owners(self, org: str) -> set[int]:
        return set(self.owners.get(org, ()))

    def org_app_installations(self, org: str) -> list[OrgAppInstallation]:
        return list(self.installations.get(org, ()))

    def app_installation_repos(self, installation_id: int, org: str) -> set[str]:
        return set(self.installation_repos.get(installation_id, ()))

    def org_teams(self, org: str) -> list[tuple[str, str]]:
        return [(team.name, team.slug) for team in self.teams.get(org, {}).values()]

    def team(self, org: str, name: str) -> PlatformTeam | None:
        team = self.teams.get(org, {}).get(team_slug(name))
        if team is None:
            return None
        return PlatformTeam(
            id=Real(team.id),
            name=team.name,
            slug=team.slug,
            description=team.description,
            privacy=team.privacy,
        )

    def team_memberships(self, team: PlatformTeam, org: str) -> dict[int, TeamMember]:
        if isinstance(team.id, Simulated):
            return {}
        return dict(self._team(org, team.slug).members)

    def team_membership_invitations(self, org: str, team: str) -> set[str]:
        return set(self._team(org, team).invitations)

    def repo(self, org: str, name: str) -> PlatformRepo | None:
        repo = self.repos.get((org, name))
        if repo is None:
            return None
        return PlatformRepo(
            node_id=Real(repo.node_id),
            repo_id=Real(repo.repo_id),
            org=org,
            name=name,
            description=repo.description,
            homepage=repo.homepage,
            archived=repo.archived,
            allow_auto_merge=repo.allow_auto_merge,
        )

    def repo_teams(self, org: str, repo: str) -> list[RepoTeam]:
        return [RepoTeam(name, permission) for name, permission in self._repo(org, repo).teams.items()]

    def repo_collaborators(self, org: str, repo: str) -> list[RepoUser]:
        return [
            RepoUser(name, permission) for name, permission in self._repo(org, repo).collaborators.items()
        ]

    def branch_protections(self, org: str, repo: str) -> dict[str, tuple[str, BranchProtectionRule]]:
        return {
            pattern: (rule_id, rule.normalized())
            for pattern, (rule_id, rule) in self._repo(org, repo).branch_protections.items()
        }

    # -------------------------------------------------------------------------
    # Write port
    # -------------------------------------------------------------------------

    def create_team(self, org: str, name: str, description: str, privacy: TeamPrivacy) -> PlatformTeam:
        self._record("create_team", org, name)
        if self.dry_run:
            self._simulated_teams.add((org, name))
            return PlatformTeam(
                id=SIMULATED, name=name, slug=team_slug(name), description=description, privacy=privacy
            )
        if team_slug(name) in self.teams.get(org, {}):
            raise GitHubError(f"HTTP 422 team {org}/{name}: Name must be unique for this org", status=422)
        team = self.add_team(org, name, description=description, privacy=privacy)
        return PlatformTeam(
            id=Real(team.id), name=team.name, slug=team.slug, description=description, privacy=privacy
        )

    def edit_team(
        self,
        org: str,
        slug: str,
        name: str | None = None,
        description: str | None = None,
        privacy: TeamPrivacy | None = None,
    ) -> None:
        self._record("edit_team", org, slug)
        if self.dry_run:
            return
        team = self._team(org, slug)
        if description is not None:
            team.description = description
        if privacy is not None:
            team.privacy = privacy
        if name is not None:
            del self.teams[org][team.slug]
            team.name = name
            team.slug = team_slug(name)
            self.teams[org][team.slug] = team

    def delete_team(self, org: str, slug: str) -> None:
        self._record("delete_team", org, slug)
        if not self.dry_run:
            self.teams.get(org, {}).pop(slug, None)

    def set_team_membership(self, org: str, team: str, user: str, role: TeamRole) -> None:
        self._record("set_team_membership", org, team, user, role)
        if self.dry_run:
            return
        fake = self._team(org, team)
        fake.members[self._user_id(user)] = TeamMember(username=user, role=role)
        fake.invitations.discard(user)

    def remove_team_membership(self, org: str, team: str, user: str) -> None:
        self._record("remove_team_membership", org, team, user)
        if self.dry_run:
            return
        fake = self.teams.get(org, {}).get(team_slug(team))
        if fake is None:
            return
        fake.members = {i: m for i, m in fake.members.items() if m.username != user}
        fake.invitations.discard(user)

    def create_repo(self, org: str, name: str, settings: RepoSettings) -> PlatformRepo:
        self._record("create_repo", org, name)
        if self.dry_run:
            return PlatformRepo(
                node_id=SIMULATED,
                repo_id=SIMULATED,
                org=org,
                name=name,
                description=settings.description,
                homepage=settings.homepage,
                archived=False,
                allow_auto_merge=settings.auto_merge_enabled,
            )
        if (org, name) in self.repos:
            raise GitHubError(f"HTTP 422 {org}/{name}: name already exists on this account", status=422)
        self.add_repo(
            org,
            name,
            description=settings.description,
            homepage=settings.homepage,
            allow_auto_merge=settings.auto_merge_enabled,
        )
        return self.repo(org, name)

    def edit_repo(self, org: str, name: str, settings: RepoSettings) -> None:
        self._record("edit_repo", org, name, settings)
        if self.dry_run:
            return
        repo = self._repo(org, name)
        if repo.archived and settings.archived:
            raise GitHubError(
                f"HTTP 403 {org}/{name}: Repository was archived so is read-only.", status=403
            )
        repo.description = settings.description
        repo.homepage = settings.homepage
        repo.archived = settings.archived
        repo.allow_auto_merge = settings.auto_merge_enabled

    def update_team_repo_permissions(self, org: str, repo: str, team: str, permission: RepoPermission) -> None:
        self._record("update_team_repo_permissions", org, repo, team, permission)
        if self.dry_run:
            return
        fake_team = self.teams.get(org, {}).get(team_slug(team))
        name = fake_team.name if fake_team is not None else team
        self._repo(org, repo).teams[name] = permission

    def update_user_repo_permissions(self, org: str, repo: str, user: str, permission: RepoPermission) -> None:
        self._record("update_user_repo_permissions", org, repo, user, permission)
        if not self.dry_run:
            self._repo(org, repo).collaborators[user] = permission

    def remove_team_from_repo(self, org: str, repo: str, team: str) -> None:
        self._record("remove_team_from_repo", org, repo, team)
        if self.dry_run:
            return
        fake = self._repo(org, repo)
        fake.teams = {name: p for name, p in fake.teams.items() if team_slug(name) != team_slug(team)}

    def remove_collaborator_from_repo(self, org: str, repo: str, user: str) -> None:
        self._record("remove_collaborator_from_repo", org, repo, user)
        if not self.dry_run:
            self._repo(org, repo).collaborators.pop(user, None)

    def _check_push_actors(self, rule: BranchProtectionRule) -> None:
        for actor in rule.push_allowances:
            if isinstance(actor, UserPushAllowance):
                self._user_id(actor.login)
            elif isinstance(actor, TeamPushAllowance):
                if (actor.org, actor.name) in self._simulated_teams:
                    continue
                self._team(actor.org, actor.name)
            else:
                raise TypeError(f"Unknown push allowance actor: {actor!r}")

    def upsert_branch_protection(
        self, org: str, repo: str, op: BranchProtectionOp, rule: BranchProtectionRule
    ) -> None:
        self._record("upsert_branch_protection", org, repo, op, rule)
        # Actor ids are resolved in dry runs too.
        self._check_push_actors(rule)
        if self.dry_run:
            return

        if isinstance(op, CreateForRepo):
            fake = self._repo_by_node_id(require_real(op.repo_node_id, f"protect {rule.pattern!r}"))
            if rule.pattern in fake.branch_protections:
                raise GitHubError(f"graphql error: Name already protected: {rule.pattern}")
            self.add_branch_protection(fake.org, fake.name, rule)
        elif isinstance(op, UpdateBranchProtection):
            fake = self._repo(org, repo)
            for pattern, (rule_id, _) in list(fake.branch_protections.items()):
                if rule_id == op.rule_id:
                    del fake.branch_protections[pattern]
                    fake.branch_protections[rule.pattern] = (rule_id, rule)
                    return
            raise GitHubError(f"graphql error: Could not resolve to a node with the global id of '{op.rule_id}'")
        else:
            raise TypeError(f"Unknown branch protection operation: {op!r}")

    def delete_branch_protection(self, org: str, repo: str, rule_id: str) -> None:
        self._record("delete_branch_protection", org, repo, rule_id)
        if self.dry_run:
            return
        fake = self._repo(org, repo)
        fake.branch_protections = {
            pattern: (id_, rule) for pattern, (id_, rule) in fake.branch_protections.items() if id_ != rule_id
        }

    def add_repo_to_app_installation(self, org: str, installation_id: int, repo_id: PlatformId) -> None:
        self._record("add_repo_to_app_installation", org, installation_id, repo_id)
        if self.dry_run:
            return
        repo = self._repo_by_id(require_real(repo_id, f"enable installation {installation_id}"))
        self.installation_repos.setdefault(installation_id, set()).add(repo.name)

    def remove_repo_from_app_installation(self, org: str, installation_id: int, repo_id: PlatformId) -> None:
        self._record("remove_repo_from_app_installation", org, installation_id, repo_id)
        if self.dry_run:
            return
        repo = self._repo_by_id(require_real(repo_id, f"disable installation {installation_id}"))
        self.installation_repos.get(installation_id, set()).discard(repo.name)
