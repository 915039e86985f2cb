from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

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

DEFAULT_CONFIG_FILE = "teams.yaml"


def _mapping(value: Any, what: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{what} must be a mapping")
    return value


def _list(value: Any, what: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{what} must be a list")
    return value


def _required(data: dict, key: str, what: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        raise ValueError(f"{what}: missing {key!r}")
    return value


def _integer(value: Any, what: str) -> int:
    # bool is an int subclass, but never a count or an id.
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"{what} must be an integer, got {value!r}")
    return value


def _strings(value: Any, what: str) -> tuple[str, ...]:
    items = _list(value, what)
    for item in items:
        if not isinstance(item, str):
            raise ValueError(f"{what}: expected strings, got {item!r}")
    return tuple(items)


def _permission(value: Any, what: str) -> RepoPermission:
    try:
        return RepoPermission.from_api(str(value))
    except ValueError:
        raise ValueError(f"{what}: unknown permission {value!r}") from None


def _bot(value: Any, what: str) -> Bot:
    try:
        return Bot(str(value))
    except ValueError:
        raise ValueError(f"{what}: unknown bot {value!r}") from None


def _merge_bot(value: Any, what: str) -> MergeBot:
    try:
        return MergeBot(str(value))
    except ValueError:
        raise ValueError(f"{what}: unknown merge bot {value!r}") from None


# =============================================================================
# Teams
# =============================================================================


def _parse_team(data: Any) -> Team:
    data = _mapping(data, "team")
    name = _required(data, "name", "team")
    github = []
    for entry in _list(data.get("github"), f"team {name}: github"):
        entry = _mapping(entry, f"team {name}: github entry")
        what = f"team {name}"
        members = _list(entry.get("members"), f"{what}: members")
        for member in members:
            _integer(member, f"{what}: member id")
        github.append(
            GitHubTeam(
                org=_required(entry, "org", what),
                name=_required(entry, "name", what),
                members=tuple(members),
            )
        )
    return Team(name=name, github=tuple(github))


# =============================================================================
# Repos
# =============================================================================


def _parse_branch_protection(data: Any, what: str) -> BranchProtection:
    data = _mapping(data, f"{what}: branch protection")
    pattern = _required(data, "pattern", f"{what}: branch protection")
    what = f"{what}: branch protection {pattern}"

    pr_required = data.get("pr-required", True)
    if pr_required:
        mode = PrRequired(
            ci_checks=_strings(data.get("ci-checks"), f"{what}: ci-checks"),
            required_approvals=_integer(data.get("required-approvals", 1), f"{what}: required-approvals"),
        )
    else:
        if "required-approvals" in data:
            raise ValueError(f"{what}: required-approvals has no effect when pr-required is false")
        mode = PrNotRequired()

    return BranchProtection(
        pattern=pattern,
        mode=mode,
        dismiss_stale_review=bool(data.get("dismiss-stale-review", False)),
        allowed_merge_teams=_strings(data.get("allowed-merge-teams"), f"{what}: allowed-merge-teams"),
        merge_bots=tuple(
            _merge_bot(bot, what) for bot in _list(data.get("merge-bots"), f"{what}: merge-bots")
        ),
    )


def _parse_repo(data: Any) -> Repo:
    data = _mapping(data, "repo")
    org = _required(data, "org", "repo")
    name = _required(data, "name", "repo")
    what = f"repo {org}/{name}"

    access = _mapping(data.get("access"), f"{what}: access")
    teams = _mapping(access.get("teams"), f"{what}: access.teams")
    individuals = _mapping(access.get("individuals"), f"{what}: access.individuals")

    return Repo(
        org=org,
        name=name,
        description=data.get("description") or "",
        homepage=data.get("homepage") or None,
        archived=bool(data.get("archived", False)),
        auto_merge_enabled=bool(data.get("auto-merge-enabled", False)),
        teams=tuple(
            RepoTeamAccess(name=team, permission=_permission(permission, what))
            for team, permission in teams.items()
        ),
        members=tuple(
            RepoMemberAccess(name=user, permission=_permission(permission, what))
            for user, permission in individuals.items()
        ),
        branch_protections=tuple(
            _parse_branch_protection(protection, what)
            for protection in _list(data.get("branch-protections"), f"{what}: branch-protections")
        ),
        bots=tuple(_bot(bot, what) for bot in _list(data.get("bots"), f"{what}: bots")),
    )


# =============================================================================
# Policy
# =============================================================================


def _parse_policy(data: Any) -> SyncPolicy:
    data = _mapping(data, "policy")
    defaults = SyncPolicy()
    protected = _mapping(data.get("protected-team"), "policy: protected-team")
    return SyncPolicy(
        team_description=data.get("team-description", defaults.team_description),
        team_privacy=defaults.team_privacy,
        delete_teams_in=frozenset(
            _list(data.get("delete-teams-in"), "policy: delete-teams-in")
            if "delete-teams-in" in data
            else defaults.delete_teams_in
        ),
        bot_teams=frozenset(
            _list(data.get("bot-teams"), "policy: bot-teams") if "bot-teams" in data else defaults.bot_teams
        ),
        protected_team_org=protected.get("org", defaults.protected_team_org),
        protected_team_name=protected.get("name", defaults.protected_team_name),
    )


# =============================================================================
# Loading
# =============================================================================


def parse_desired_state(content: str) -> tuple[DesiredState, SyncPolicy]:
    """
    Parse the desired state from YAML.

    teams:
      - name: infra
        github:
          - org: rust-lang
            name: infra
            members: [1, 2]

    repos:
      - org: rust-lang
        name: team
        description: "The team repository"
        bots: [bors]
        access:
          teams: {infra: write}
          individuals: {octocat: admin}
        branch-protections:
          - pattern: main
            ci-checks: [test]
            merge-bots: [homu]

    policy:
      delete-teams-in: [rust-lang]
    """
    data = yaml.safe_load(content)
    if not data:
        return DesiredState(), SyncPolicy()
    if not isinstance(data, dict):
        raise ValueError("YAML must be a dictionary")

    teams = tuple(_parse_team(team) for team in _list(data.get("teams"), "teams"))
    seen_teams: set[tuple[str, str]] = set()
    for team in teams:
        for github_team in team.github:
            key = (github_team.org, github_team.name.lower())
            if key in seen_teams:
                raise ValueError(f"GitHub team {github_team.org}/{github_team.name} is declared twice")
            seen_teams.add(key)

    repos = tuple(_parse_repo(repo) for repo in _list(data.get("repos"), "repos"))
    seen_repos: set[tuple[str, str]] = set()
    for repo in repos:
        if (repo.org, repo.name) in seen_repos:
            raise ValueError(f"repo {repo.full_name} is declared twice")
        seen_repos.add((repo.org, repo.name))

    return DesiredState(teams=teams, repos=repos), _parse_policy(data.get("policy"))


def load_desired_state(path: str | Path = DEFAULT_CONFIG_FILE) -> tuple[DesiredState, SyncPolicy]:
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    try:
        return parse_desired_state(path.read_text())
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
