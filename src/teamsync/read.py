from __future__ import annotations

import base64
import re
from typing import Protocol

from teamsync.client import GitHubError, GraphQLError, HttpClient, UnresolvedUserError
from teamsync.models import (
    BranchProtectionRule,
    OrgAppInstallation,
    PlatformRepo,
    PlatformTeam,
    Real,
    RepoPermission,
    RepoTeam,
    RepoUser,
    Simulated,
    TeamMember,
    TeamPrivacy,
    TeamPushAllowance,
    TeamRole,
    UserPushAllowance,
)
from teamsync.pagination import dedupe, paginate

# GraphQL accepts at most 100 node ids per query.
USERNAMES_CHUNK = 100


class GithubRead(Protocol):
    def usernames(self, ids: list[int]) -> dict[int, str]:
        """Map user ids to their current login."""
        ...

    def org_owners(self, org: str) -> set[int]:
        ...

    def org_app_installations(self, org: str) -> list[OrgAppInstallation]:
        ...

    def app_installation_repos(self, installation_id: int, org: str) -> set[str]:
        """Names of the repositories enabled for an app installation."""
        ...

    def org_teams(self, org: str) -> list[tuple[str, str]]:
        """(name, slug) of every team in the org."""
        ...

    def team(self, org: str, name: str) -> PlatformTeam | None:
        ...

    def team_memberships(self, team: PlatformTeam, org: str) -> dict[int, TeamMember]:
        ...

    def team_membership_invitations(self, org: str, team: str) -> set[str]:
        ...

    def repo(self, org: str, name: str) -> PlatformRepo | None:
        ...

    def repo_teams(self, org: str, repo: str) -> list[RepoTeam]:
        ...

    def repo_collaborators(self, org: str, repo: str) -> list[RepoUser]:
        """Direct collaborators only, not those with access through a team."""
        ...

    def branch_protections(self, org: str, repo: str) -> dict[str, tuple[str, BranchProtectionRule]]:
        """pattern -> (rule id, rule)"""
        ...


def user_node_id(user_id: int) -> str:
    return base64.b64encode(f"04:User{user_id}".encode()).decode()


def team_node_id(team_id: int) -> str:
    return base64.b64encode(f"04:Team{team_id}".encode()).decode()


def team_slug(name: str) -> str:
    """The slug GitHub derives from a team name, e.g. rustup.rs -> rustup-rs."""
    return re.sub(r"[^a-z0-9_-]+", "-", name.lower()).strip("-")


# =============================================================================
# Queries
# =============================================================================


USERNAMES_QUERY = """
query($ids: [ID!]!) {
    nodes(ids: $ids) {
        ... on User {
            databaseId
            login
        }
    }
}
"""

TEAM_MEMBERS_QUERY = """
query($team: ID!, $cursor: String) {
    node(id: $team) {
        ... on Team {
            members(after: $cursor) {
                pageInfo {
                    endCursor
                    hasNextPage
                }
                edges {
                    role
                    node {
                        databaseId
                        login
                    }
                }
            }
        }
    }
}
"""

REPO_QUERY = """
query($owner: String!, $name: String!) {
    repository(owner: $owner, name: $name) {
        id
        databaseId
        autoMergeAllowed
        description
        homepageUrl
        isArchived
    }
}
"""

BRANCH_PROTECTIONS_QUERY = """
query($org: String!, $repo: String!, $cursor: String) {
    repository(owner: $org, name: $repo) {
        branchProtectionRules(first: 100, after: $cursor) {
            pageInfo {
                endCursor
                hasNextPage
            }
            nodes {
                id
                pattern
                isAdminEnforced
                dismissesStaleReviews
                requiredStatusCheckContexts
                requiredApprovingReviewCount
                requiresApprovingReviews
                pushAllowances(first: 100) {
                    nodes {
                        actor {
                            ... on Actor {
                                login
                            }
                            ... on Team {
                                organization {
                                    login
                                }
                                name
                            }
                        }
                    }
                }
            }
        }
    }
}
"""


def _next_cursor(page_info: dict) -> str | None:
    if page_info.get("hasNextPage"):
        return page_info.get("endCursor")
    return None


def _cant_resolve(exc: Exception) -> bool:
    return isinstance(exc, GraphQLError) and "Could not resolve to a node" in str(exc)


def _parse_push_allowance(actor: dict):
    if "login" in actor:
        return UserPushAllowance(login=actor["login"])
    if "name" in actor and "organization" in actor:
        return TeamPushAllowance(org=actor["organization"]["login"], name=actor["name"])
    raise GitHubError(f"Unknown push allowance actor: {actor!r}")


def parse_branch_protection(node: dict) -> BranchProtectionRule:
    allowances = (node.get("pushAllowances") or {}).get("nodes") or []
    return BranchProtectionRule(
        pattern=node["pattern"],
        is_admin_enforced=node["isAdminEnforced"],
        dismisses_stale_reviews=node["dismissesStaleReviews"],
        required_approving_review_count=node.get("requiredApprovingReviewCount") or 0,
        required_status_check_contexts=tuple(node.get("requiredStatusCheckContexts") or ()),
        push_allowances=tuple(_parse_push_allowance(a["actor"]) for a in allowances if a.get("actor")),
        requires_approving_reviews=node["requiresApprovingReviews"],
    ).normalized()


def parse_team(data: dict) -> PlatformTeam:
    return PlatformTeam(
        id=Real(data["id"]),
        name=data["name"],
        slug=data["slug"],
        description=data.get("description"),
        privacy=TeamPrivacy(data["privacy"]),
        node_id=data.get("node_id"),
    )


# =============================================================================
# Live Implementation
# =============================================================================


class GitHubApiRead:
    def __init__(self, client: HttpClient):
        self.client = client

    def usernames(self, ids: list[int]) -> dict[int, str]:
        result: dict[int, str] = {}
        ids = sorted(set(ids))
        for start in range(0, len(ids), USERNAMES_CHUNK):
            chunk = ids[start:start + USERNAMES_CHUNK]
            try:
                data = self.client.graphql(USERNAMES_QUERY, {"ids": [user_node_id(i) for i in chunk]})
            except GraphQLError as exc:
                if _cant_resolve(exc):
                    # Happens when a user deleted their account. Find out which one.
                    self._find_unresolvable(chunk, exc)
                raise
            for node in data.get("nodes") or []:
                if node:
                    result[node["databaseId"]] = node["login"]
        return result

    def _find_unresolvable(self, chunk: list[int], original: GraphQLError) -> None:
        for user_id in chunk:
            try:
                self.client.graphql(USERNAMES_QUERY, {"ids": [user_node_id(user_id)]})
            except GraphQLError as exc:
                if _cant_resolve(exc):
                    raise UnresolvedUserError(user_id, original) from exc
                raise GitHubError(
                    f"failed to check resolve error: {exc}\nOriginal error: {original}"
                ) from exc

    def org_owners(self, org: str) -> set[int]:
        owners: set[int] = set()
        for page in self.client.rest_paginated(self.client.orgs_url(org, "members?role=admin")):
            owners.update(user["id"] for user in page)
        return owners

    def org_app_installations(self, org: str) -> list[OrgAppInstallation]:
        installations = []
        for page in self.client.rest_paginated(self.client.orgs_url(org, "installations")):
            for item in page["installations"]:
                installations.append(OrgAppInstallation(installation_id=item["id"], app_id=item["app_id"]))
        return dedupe(installations, key=lambda i: i.installation_id)

    def app_installation_repos(self, installation_id: int, org: str) -> set[str]:
        if self.client.tokens.uses_pat:
            path = f"user/installations/{installation_id}/repositories"
        else:
            path = "installation/repositories"
        repos: set[str] = set()
        for page in self.client.rest_paginated(self.client.url(path, org)):
            repos.update(repo["name"] for repo in page["repositories"])
        return repos

    def org_teams(self, org: str) -> list[tuple[str, str]]:
        teams = []
        for page in self.client.rest_paginated(self.client.orgs_url(org, "teams")):
            teams.extend((team["name"], team["slug"]) for team in page)
        return dedupe(teams, key=lambda t: t[1])

    def team(self, org: str, name: str) -> PlatformTeam | None:
        data = self.client.send_option("GET", self.client.orgs_url(org, f"teams/{team_slug(name)}"))
        if data is None:
            return None
        return parse_team(data)

    def team_memberships(self, team: PlatformTeam, org: str) -> dict[int, TeamMember]:
        # Teams "created" by a dry run have no members yet.
        if isinstance(team.id, Simulated):
            return {}
        node_id = team_node_id(team.id.value)

        def fetch_page(cursor: str | None):
            data = self.client.graphql(TEAM_MEMBERS_QUERY, {"team": node_id, "cursor": cursor}, org)
            node = data.get("node")
            if node is None:
                return [], None
            members = node["members"]
            return members["edges"], _next_cursor(members["pageInfo"])

        memberships: dict[int, TeamMember] = {}
        for edge in paginate(fetch_page):
            memberships[edge["node"]["databaseId"]] = TeamMember(
                username=edge["node"]["login"],
                role=TeamRole.from_api(edge["role"]),
            )
        return memberships

    def team_membership_invitations(self, org: str, team: str) -> set[str]:
        invites: set[str] = set()
        url = self.client.orgs_url(org, f"teams/{team_slug(team)}/invitations")
        for page in self.client.rest_paginated(url):
            invites.update(invite["login"] for invite in page if invite.get("login"))
        return invites

    def repo(self, org: str, name: str) -> PlatformRepo | None:
        # GraphQL instead of REST: the REST endpoint follows renames and
        # transfers, which would make us edit the wrong repository.
        data = self.client.graphql_opt(REPO_QUERY, {"owner": org, "name": name}, org)
        if data is None or data.get("repository") is None:
            return None
        repo = data["repository"]
        return PlatformRepo(
            node_id=Real(repo["id"]),
            repo_id=Real(repo["databaseId"]),
            org=org,
            name=name,
            description=repo.get("description") or "",
            homepage=repo.get("homepageUrl") or None,
            archived=repo["isArchived"],
            allow_auto_merge=repo.get("autoMergeAllowed"),
        )

    def repo_teams(self, org: str, repo: str) -> list[RepoTeam]:
        teams = []
        for page in self.client.rest_paginated(self.client.repos_url(org, repo, "teams")):
            teams.extend(
                RepoTeam(name=team["name"], permission=RepoPermission.from_api(team["permission"]))
                for team in page
            )
        return dedupe(teams, key=lambda t: t.name)

    def repo_collaborators(self, org: str, repo: str) -> list[RepoUser]:
        users = []
        url = self.client.repos_url(org, repo, "collaborators?affiliation=direct")
        for page in self.client.rest_paginated(url):
            users.extend(
                RepoUser(name=user["login"], permission=RepoPermission.from_api(user["role_name"]))
                for user in page
            )
        return dedupe(users, key=lambda u: u.name)

    def branch_protections(self, org: str, repo: str) -> dict[str, tuple[str, BranchProtectionRule]]:
        def fetch_page(cursor: str | None):
            data = self.client.graphql(
                BRANCH_PROTECTIONS_QUERY, {"org": org, "repo": repo, "cursor": cursor}, org
            )
            repository = data.get("repository")
            if repository is None:
                return [], None
            rules = repository["branchProtectionRules"]
            return [n for n in rules["nodes"] if n], _next_cursor(rules["pageInfo"])

        result: dict[str, tuple[str, BranchProtectionRule]] = {}
        for node in paginate(fetch_page):
            rule = parse_branch_protection(node)
            result[rule.pattern] = (node["id"], rule)
        return result
