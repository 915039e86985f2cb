from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Union

from teamsync.client import GitHubError, HttpClient
from teamsync.models import (
    SIMULATED,
    BranchProtectionRule,
    NodeId,
    PlatformId,
    PlatformRepo,
    PlatformTeam,
    Real,
    RepoPermission,
    RepoSettings,
    Simulated,
    TeamPrivacy,
    TeamPushAllowance,
    TeamRole,
    UserPushAllowance,
)
from teamsync.read import GithubRead, parse_team, team_slug


class SimulatedIdError(RuntimeError):
    """A real mutation was about to reference an entity that only exists in a dry run."""


def require_real(platform_id: Real | Simulated, what: str):
    if isinstance(platform_id, Simulated):
        raise SimulatedIdError(f"Cannot {what}: it only exists in a dry run")
    return platform_id.value


@dataclass(frozen=True)
class CreateForRepo:
    repo_node_id: NodeId


@dataclass(frozen=True)
class UpdateBranchProtection:
    rule_id: str


BranchProtectionOp = Union[CreateForRepo, UpdateBranchProtection]


class GithubWrite(Protocol):
    dry_run: bool

    def create_team(self, org: str, name: str, description: str, privacy: TeamPrivacy) -> PlatformTeam:
        ...

    def edit_team(
        self,
        org: str,
        slug: str,
        name: str | None = None,
        description: str | None = None,
        privacy: TeamPrivacy | None = None,
    ) -> None:
        ...

    def delete_team(self, org: str, slug: str) -> None:
        ...

    def set_team_membership(self, org: str, team: str, user: str, role: TeamRole) -> None:
        ...

    def remove_team_membership(self, org: str, team: str, user: str) -> None:
        ...

    def create_repo(self, org: str, name: str, settings: RepoSettings) -> PlatformRepo:
        ...

    def edit_repo(self, org: str, name: str, settings: RepoSettings) -> None:
        ...

    def update_team_repo_permissions(self, org: str, repo: str, team: str, permission: RepoPermission) -> None:
        ...

    def update_user_repo_permissions(self, org: str, repo: str, user: str, permission: RepoPermission) -> None:
        ...

    def remove_team_from_repo(self, org: str, repo: str, team: str) -> None:
        ...

    def remove_collaborator_from_repo(self, org: str, repo: str, user: str) -> None:
        ...

    def upsert_branch_protection(
        self, org: str, repo: str, op: BranchProtectionOp, rule: BranchProtectionRule
    ) -> None:
        ...

    def delete_branch_protection(self, org: str, repo: str, rule_id: str) -> None:
        ...

    def add_repo_to_app_installation(self, org: str, installation_id: int, repo_id: PlatformId) -> None:
        ...

    def remove_repo_from_app_installation(self, org: str, installation_id: int, repo_id: PlatformId) -> None:
        ...


# =============================================================================
# Mutations
# =============================================================================


USER_ID_QUERY = """
query($name: String!) {
    user(login: $name) {
        id
    }
}
"""

UPSERT_BRANCH_PROTECTION = """
mutation($id: ID!, $pattern: String!, $contexts: [String!], $dismissStale: Boolean, $reviewCount: Int, $pushActorIds: [ID!], $restrictsPushes: Boolean, $requiresReviews: Boolean) {
    %(mutation)s(input: {
        %(id_field)s: $id,
        pattern: $pattern,
        requiresStatusChecks: true,
        requiredStatusCheckContexts: $contexts,
        isAdminEnforced: true,
        requiredApprovingReviewCount: $reviewCount,
        dismissesStaleReviews: $dismissStale,
        requiresApprovingReviews: $requiresReviews,
        restrictsPushes: $restrictsPushes,
        pushActorIds: $pushActorIds
    }) {
        branchProtectionRule {
            id
        }
    }
}
"""

DELETE_BRANCH_PROTECTION = """
mutation($id: ID!) {
    deleteBranchProtectionRule(input: { branchProtectionRuleId: $id }) {
        clientMutationId
    }
}
"""

# Stand-in actor id for a team created earlier in the same dry run.
SIMULATED_ACTOR_ID = "<simulated>"


# =============================================================================
# Live Implementation
# =============================================================================


class GitHubWrite:
    def __init__(self, client: HttpClient, read: GithubRead, *, dry_run: bool):
        self.client = client
        self.read = read
        self.dry_run = dry_run
        self._simulated_teams: set[tuple[str, str]] = set()

    def _user_id(self, login: str) -> str:
        data = self.client.graphql(USER_ID_QUERY, {"name": login})
        user = data.get("user")
        if user is None:
            raise GitHubError(f"could not find user: {login}")
        return user["id"]

    def _team_id(self, org: str, name: str) -> str:
        team = self.read.team(org, name)
        if team is None:
            if self.dry_run and (org, name) in self._simulated_teams:
                return SIMULATED_ACTOR_ID
            raise GitHubError(f"could not find team: {org}/{name}")
        if isinstance(team.id, Simulated):
            return SIMULATED_ACTOR_ID
        if team.node_id is None:
            raise GitHubError(f"no node id reported for team: {org}/{name}")
        return team.node_id

    def push_actor_ids(self, rule: BranchProtectionRule) -> list[str]:
        """Resolve push allowances to GraphQL node ids, also in dry runs."""
        ids = []
        for actor in rule.push_allowances:
            if isinstance(actor, UserPushAllowance):
                ids.append(self._user_id(actor.login))
            elif isinstance(actor, TeamPushAllowance):
                ids.append(self._team_id(actor.org, actor.name))
            else:
                raise TypeError(f"Unknown push allowance actor: {actor!r}")
        return ids

    def create_team(self, org: str, name: str, description: str, privacy: TeamPrivacy) -> PlatformTeam:
        if self.dry_run:
            self._simulated_teams.add((org, name))
            return PlatformTeam(
                id=SIMULATED,
                name=name,
                slug=team_slug(name),
                description=description,
                privacy=privacy,
            )
        data = self.client.send(
            "POST",
            self.client.orgs_url(org, "teams"),
            {"name": name, "description": description, "privacy": privacy.value},
        )
        return parse_team(data)

    def edit_team(
        self,
        org: str,
        slug: str,
        name: str | None = None,
        description: str | None = None,
        privacy: TeamPrivacy | None = None,
    ) -> None:
        payload: dict[str, str] = {}
        if name is not None:
            payload["name"] = name
        if description is not None:
            payload["description"] = description
        if privacy is not None:
            payload["privacy"] = privacy.value
        if not payload or self.dry_run:
            return
        self.client.send("PATCH", self.client.orgs_url(org, f"teams/{slug}"), payload)

    def delete_team(self, org: str, slug: str) -> None:
        if not self.dry_run:
            self.client.send_allow_not_found("DELETE", self.client.orgs_url(org, f"teams/{slug}"))

    def set_team_membership(self, org: str, team: str, user: str, role: TeamRole) -> None:
        # For users outside the org this sends an invitation. Repeating it while
        # the invitation is pending is a noop on GitHub's side.
        if not self.dry_run:
            self.client.send(
                "PUT",
                self.client.orgs_url(org, f"teams/{team_slug(team)}/memberships/{user}"),
                {"role": role.value},
            )

    def remove_team_membership(self, org: str, team: str, user: str) -> None:
        if not self.dry_run:
            self.client.send_allow_not_found(
                "DELETE", self.client.orgs_url(org, f"teams/{team_slug(team)}/memberships/{user}")
            )

    def create_repo(self, org: str, name: str, settings: RepoSettings) -> PlatformRepo:
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
        data = self.client.send(
            "POST",
            self.client.orgs_url(org, "repos"),
            {
                "name": name,
                "description": settings.description,
                "homepage": settings.homepage,
                "allow_auto_merge": settings.auto_merge_enabled,
                "auto_init": True,
            },
        )
        return PlatformRepo(
            node_id=Real(data["node_id"]),
            repo_id=Real(data["id"]),
            org=org,
            name=data["name"],
            description=data.get("description") or "",
            homepage=data.get("homepage") or None,
            archived=data.get("archived", False),
            allow_auto_merge=data.get("allow_auto_merge"),
        )

    def edit_repo(self, org: str, name: str, settings: RepoSettings) -> None:
        if not self.dry_run:
            self.client.send(
                "PATCH",
                self.client.repos_url(org, name),
                {
                    "description": settings.description,
                    "homepage": settings.homepage,
                    "archived": settings.archived,
                    "allow_auto_merge": settings.auto_merge_enabled,
                },
            )

    def update_team_repo_permissions(self, org: str, repo: str, team: str, permission: RepoPermission) -> None:
        if not self.dry_run:
            self.client.send(
                "PUT",
                self.client.orgs_url(org, f"teams/{team_slug(team)}/repos/{org}/{repo}"),
                {"permission": permission.api_value},
            )

    def update_user_repo_permissions(self, org: str, repo: str, user: str, permission: RepoPermission) -> None:
        if not self.dry_run:
            self.client.send(
                "PUT",
                self.client.repos_url(org, repo, f"collaborators/{user}"),
                {"permission": permission.api_value},
            )

    def remove_team_from_repo(self, org: str, repo: str, team: str) -> None:
        if not self.dry_run:
            self.client.send_allow_not_found(
                "DELETE", self.client.orgs_url(org, f"teams/{team_slug(team)}/repos/{org}/{repo}")
            )

    def remove_collaborator_from_repo(self, org: str, repo: str, user: str) -> None:
        if not self.dry_run:
            self.client.send_allow_not_found(
                "DELETE", self.client.repos_url(org, repo, f"collaborators/{user}")
            )

    def upsert_branch_protection(
        self, org: str, repo: str, op: BranchProtectionOp, rule: BranchProtectionRule
    ) -> None:
        if isinstance(op, CreateForRepo):
            mutation, id_field, target = "createBranchProtectionRule", "repositoryId", op.repo_node_id
        elif isinstance(op, UpdateBranchProtection):
            mutation, id_field, target = "updateBranchProtectionRule", "branchProtectionRuleId", Real(op.rule_id)
        else:
            raise TypeError(f"Unknown branch protection operation: {op!r}")

        push_actor_ids = self.push_actor_ids(rule)
        if self.dry_run:
            return

        target_id = require_real(target, f"protect {rule.pattern!r} in {org}/{repo}")
        self.client.graphql(
            UPSERT_BRANCH_PROTECTION % {"mutation": mutation, "id_field": id_field},
            {
                "id": target_id,
                "pattern": rule.pattern,
                "contexts": list(rule.required_status_check_contexts),
                "dismissStale": rule.dismisses_stale_reviews,
                "reviewCount": rule.required_approving_review_count,
                "requiresReviews": rule.requires_approving_reviews,
                # Pushes are restricted only when some actors are explicitly allowed.
                "restrictsPushes": bool(push_actor_ids),
                "pushActorIds": push_actor_ids,
            },
            org,
        )

    def delete_branch_protection(self, org: str, repo: str, rule_id: str) -> None:
        if not self.dry_run:
            self.client.graphql(DELETE_BRANCH_PROTECTION, {"id": rule_id}, org)

    def add_repo_to_app_installation(self, org: str, installation_id: int, repo_id: PlatformId) -> None:
        if self.dry_run:
            return
        repo = require_real(repo_id, f"enable installation {installation_id}")
        self.client.send(
            "PUT", self.client.url(f"user/installations/{installation_id}/repositories/{repo}", org)
        )

    def remove_repo_from_app_installation(self, org: str, installation_id: int, repo_id: PlatformId) -> None:
        if self.dry_run:
            return
        repo = require_real(repo_id, f"disable installation {installation_id}")
        self.client.send_allow_not_found(
            "DELETE", self.client.url(f"user/installations/{installation_id}/repositories/{repo}", org)
        )
