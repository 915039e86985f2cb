from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Union

from teamsync.models import (
    BranchProtection,
    BranchProtectionRule,
    GitHubApp,
    GitHubTeam,
    InstallationData,
    MergeBot,
    NodeId,
    PlatformId,
    PlatformRepo,
    PlatformTeam,
    PrRequired,
    Repo,
    RepoPermission,
    RepoSettings,
    RepoTeam,
    RepoUser,
    SyncPolicy,
    TeamMember,
    TeamPrivacy,
    TeamPushAllowance,
    TeamRole,
    UserPushAllowance,
)
from teamsync.output import warn
from teamsync.read import team_slug

# =============================================================================
# Team Diffs
# =============================================================================


@dataclass(frozen=True)
class MemberCreate:
    role: TeamRole


@dataclass(frozen=True)
class MemberChangeRole:
    old: TeamRole
    new: TeamRole


@dataclass(frozen=True)
class MemberDelete:
    pass


@dataclass(frozen=True)
class MemberNoop:
    pass


MemberDiff = Union[MemberCreate, MemberChangeRole, MemberDelete, MemberNoop]


@dataclass(frozen=True)
class CreateTeamDiff:
    org: str
    name: str
    description: str
    privacy: TeamPrivacy
    members: tuple[tuple[str, TeamRole], ...] = ()


@dataclass(frozen=True)
class EditTeamDiff:
    org: str
    name: str
    slug: str
    name_diff: str | None = None
    description_diff: tuple[str, str] | None = None
    privacy_diff: tuple[TeamPrivacy, TeamPrivacy] | None = None
    member_diffs: tuple[tuple[str, MemberDiff], ...] = ()

    def is_noop(self) -> bool:
        return (
            self.name_diff is None
            and self.description_diff is None
            and self.privacy_diff is None
            and all(isinstance(diff, MemberNoop) for _, diff in self.member_diffs)
        )


@dataclass(frozen=True)
class DeleteTeamDiff:
    org: str
    name: str
    slug: str


TeamDiff = Union[CreateTeamDiff, EditTeamDiff, DeleteTeamDiff]


# =============================================================================
# Repo Diffs
# =============================================================================


@dataclass(frozen=True)
class TeamCollaborator:
    name: str


@dataclass(frozen=True)
class UserCollaborator:
    name: str


Collaborator = Union[TeamCollaborator, UserCollaborator]


@dataclass(frozen=True)
class PermissionCreate:
    permission: RepoPermission


@dataclass(frozen=True)
class PermissionUpdate:
    old: RepoPermission
    new: RepoPermission


@dataclass(frozen=True)
class PermissionDelete:
    old: RepoPermission


PermissionDiff = Union[PermissionCreate, PermissionUpdate, PermissionDelete]


@dataclass(frozen=True)
class RepoPermissionAssignmentDiff:
    collaborator: Collaborator
    diff: PermissionDiff


@dataclass(frozen=True)
class BranchProtectionCreate:
    rule: BranchProtectionRule


@dataclass(frozen=True)
class BranchProtectionUpdate:
    rule_id: str
    old: BranchProtectionRule
    new: BranchProtectionRule


@dataclass(frozen=True)
class BranchProtectionDelete:
    rule_id: str


BranchProtectionOperation = Union[BranchProtectionCreate, BranchProtectionUpdate, BranchProtectionDelete]


@dataclass(frozen=True)
class BranchProtectionDiff:
    pattern: str
    operation: BranchProtectionOperation


@dataclass(frozen=True)
class AppInstallation:
    """An app installation of an org; the repository is supplied when applying."""
    app: GitHubApp
    installation_id: int


@dataclass(frozen=True)
class AppInstallationAdd:
    installation: AppInstallation


@dataclass(frozen=True)
class AppInstallationRemove:
    installation: AppInstallation


AppInstallationDiff = Union[AppInstallationAdd, AppInstallationRemove]


@dataclass(frozen=True)
class CreateRepoDiff:
    org: str
    name: str
    settings: RepoSettings
    permissions: tuple[RepoPermissionAssignmentDiff, ...] = ()
    branch_protections: tuple[tuple[str, BranchProtectionRule], ...] = ()
    app_installations: tuple[AppInstallation, ...] = ()


@dataclass(frozen=True)
class UpdateRepoDiff:
    org: str
    name: str
    repo_node_id: NodeId
    repo_id: PlatformId
    settings_diff: tuple[RepoSettings, RepoSettings]
    permission_diffs: tuple[RepoPermissionAssignmentDiff, ...] = ()
    branch_protection_diffs: tuple[BranchProtectionDiff, ...] = ()
    app_installation_diffs: tuple[AppInstallationDiff, ...] = ()

    @property
    def can_be_modified(self) -> bool:
        # Archived repositories are read-only on GitHub.
        old, new = self.settings_diff
        return not (old.archived and new.archived)

    def is_noop(self) -> bool:
        if not self.can_be_modified:
            return True
        old, new = self.settings_diff
        return (
            old == new
            and not self.permission_diffs
            and not self.branch_protection_diffs
            and not self.app_installation_diffs
        )


RepoDiff = Union[CreateRepoDiff, UpdateRepoDiff]


def is_noop(diff: TeamDiff | RepoDiff) -> bool:
    if isinstance(diff, (EditTeamDiff, UpdateRepoDiff)):
        return diff.is_noop()
    if isinstance(diff, (CreateTeamDiff, DeleteTeamDiff, CreateRepoDiff)):
        return False
    raise TypeError(f"Unknown diff: {diff!r}")


@dataclass(frozen=True)
class Diff:
    """Everything that has to change, teams first."""
    team_diffs: tuple[TeamDiff, ...] = ()
    repo_diffs: tuple[RepoDiff, ...] = ()

    def is_empty(self) -> bool:
        return all(is_noop(d) for d in self.team_diffs) and all(is_noop(d) for d in self.repo_diffs)


# =============================================================================
# Snapshots
# =============================================================================


@dataclass(frozen=True)
class TeamSnapshot:
    """A platform team together with its members and pending invitations."""
    team: PlatformTeam
    members: Mapping[int, TeamMember] = field(default_factory=dict)
    invitations: frozenset[str] = frozenset()


@dataclass(frozen=True)
class RepoSnapshot:
    repo: PlatformRepo
    teams: tuple[RepoTeam, ...] = ()
    collaborators: tuple[RepoUser, ...] = ()
    branch_protections: Mapping[str, tuple[str, BranchProtectionRule]] = field(default_factory=dict)


# =============================================================================
# Teams
# =============================================================================


def expected_role(owners: frozenset[int], user_id: int) -> TeamRole:
    """Org owners are always team maintainers, everyone else a plain member."""
    if user_id in owners:
        return TeamRole.MAINTAINER
    return TeamRole.MEMBER


def diff_team(
    github_team: GitHubTeam,
    actual: TeamSnapshot | None,
    usernames: Mapping[int, str],
    owners: frozenset[int],
    policy: SyncPolicy,
) -> TeamDiff:
    if actual is None:
        return CreateTeamDiff(
            org=github_team.org,
            name=github_team.name,
            description=policy.team_description,
            privacy=policy.team_privacy,
            members=tuple(
                (usernames[user_id], expected_role(owners, user_id)) for user_id in github_team.members
            ),
        )

    team = actual.team
    name_diff = github_team.name if team.name != github_team.name else None
    description_diff = None
    current_description = team.description or ""
    if current_description != policy.team_description:
        description_diff = (current_description, policy.team_description)
    privacy_diff = None
    if team.privacy != policy.team_privacy:
        privacy_diff = (team.privacy, policy.team_privacy)

    current_members = dict(actual.members)
    member_diffs: list[tuple[str, MemberDiff]] = []
    for user_id in github_team.members:
        username = usernames[user_id]
        role = expected_role(owners, user_id)
        member = current_members.pop(user_id, None)
        if member is not None:
            if member.role != role:
                member_diffs.append((username, MemberChangeRole(member.role, role)))
            else:
                member_diffs.append((username, MemberNoop()))
        elif username in actual.invitations:
            member_diffs.append((username, MemberNoop()))
        else:
            member_diffs.append((username, MemberCreate(role)))

    for member in sorted(current_members.values(), key=lambda m: m.username):
        member_diffs.append((member.username, MemberDelete()))

    return EditTeamDiff(
        org=github_team.org,
        name=github_team.name,
        slug=team.slug,
        name_diff=name_diff,
        description_diff=description_diff,
        privacy_diff=privacy_diff,
        member_diffs=tuple(member_diffs),
    )


def diff_unmanaged_teams(
    managed: set[tuple[str, str]],
    org_teams: Mapping[str, list[tuple[str, str]]],
    policy: SyncPolicy,
) -> list[DeleteTeamDiff]:
    """
    Teams that exist on the platform but are not declared anywhere.

    `managed` holds (org, slug) of every declared team, `org_teams` the
    (name, slug) listing of each org.
    """
    diffs = []
    for org in sorted(org_teams):
        if org not in policy.delete_teams_in:
            continue
        for name, slug in org_teams[org]:
            if (org, slug) in managed or name in policy.bot_teams:
                continue
            diffs.append(DeleteTeamDiff(org=org, name=name, slug=slug))
    return diffs


def managed_team_key(github_team: GitHubTeam, actual: TeamSnapshot | None = None) -> tuple[str, str]:
    """The slug GitHub reports for an existing team, the computed one for a team still to be created."""
    if actual is not None:
        return github_team.org, actual.team.slug
    return github_team.org, team_slug(github_team.name)


# =============================================================================
# Repos
# =============================================================================


def expected_settings(repo: Repo) -> RepoSettings:
    return RepoSettings(
        description=repo.description,
        homepage=repo.homepage,
        archived=repo.archived,
        auto_merge_enabled=repo.auto_merge_enabled,
    )


def diff_settings(repo: Repo, actual: PlatformRepo) -> tuple[RepoSettings, RepoSettings]:
    old = RepoSettings(
        description=actual.description or "",
        homepage=actual.homepage,
        archived=actual.archived,
        # Older repositories report no value at all.
        auto_merge_enabled=bool(actual.allow_auto_merge),
    )
    return old, expected_settings(repo)


def bot_usernames(repo: Repo) -> list[str]:
    return [bot.username for bot in repo.bots if bot.username is not None]


def diff_permissions(
    repo: Repo,
    actual_teams: list[RepoTeam] | tuple[RepoTeam, ...] = (),
    actual_users: list[RepoUser] | tuple[RepoUser, ...] = (),
    policy: SyncPolicy | None = None,
) -> list[RepoPermissionAssignmentDiff]:
    """
    Permission changes needed to go from the actual team and collaborator
    access of a repository to the declared one. Bots with a user account
    get write access.
    """
    if policy is None:
        policy = SyncPolicy()
    diffs: list[RepoPermissionAssignmentDiff] = []

    current_teams = {team.name: team.permission for team in actual_teams}
    for team in repo.teams:
        diff = _permission_diff(current_teams.pop(team.name, None), team.permission)
        if diff is not None:
            diffs.append(RepoPermissionAssignmentDiff(TeamCollaborator(team.name), diff))
    for name, permission in sorted(current_teams.items()):
        if policy.is_protected_team(repo.org, name):
            continue
        diffs.append(RepoPermissionAssignmentDiff(TeamCollaborator(name), PermissionDelete(permission)))

    bots = bot_usernames(repo)
    desired_users: dict[str, RepoPermission] = {name: RepoPermission.WRITE for name in bots}
    for member in repo.members:
        desired_users[member.name] = member.permission

    current_users = {user.name: user.permission for user in actual_users}
    for name, permission in desired_users.items():
        diff = _permission_diff(current_users.pop(name, None), permission)
        if diff is not None:
            diffs.append(RepoPermissionAssignmentDiff(UserCollaborator(name), diff))
    for name, permission in sorted(current_users.items()):
        if name in bots:
            continue
        diffs.append(RepoPermissionAssignmentDiff(UserCollaborator(name), PermissionDelete(permission)))

    return diffs


def _permission_diff(current: RepoPermission | None, desired: RepoPermission) -> PermissionDiff | None:
    if current is None:
        return PermissionCreate(desired)
    if current != desired:
        return PermissionUpdate(current, desired)
    return None


def construct_branch_protection(repo: Repo, protection: BranchProtection) -> BranchProtectionRule:
    """The rule GitHub should hold for a declared branch protection."""
    uses_merge_bot = MergeBot.HOMU in protection.merge_bots
    mode = protection.mode
    if isinstance(mode, PrRequired):
        checks = tuple(sorted(mode.ci_checks))
        approvals = mode.required_approvals
    else:
        checks = ()
        approvals = 0
    # The merge bot pushes approved merges itself, reviews happen through it.
    if uses_merge_bot:
        approvals = 0

    push_allowances: list[TeamPushAllowance | UserPushAllowance] = [
        TeamPushAllowance(org=repo.org, name=team) for team in protection.allowed_merge_teams
    ]
    if uses_merge_bot:
        push_allowances.append(UserPushAllowance(login=MergeBot.HOMU.username))

    return BranchProtectionRule(
        pattern=protection.pattern,
        is_admin_enforced=True,
        dismisses_stale_reviews=protection.dismiss_stale_review,
        required_approving_review_count=approvals,
        required_status_check_contexts=checks,
        push_allowances=tuple(push_allowances),
        requires_approving_reviews=isinstance(mode, PrRequired),
    ).normalized()


def diff_branch_protections(
    repo: Repo,
    actual: Mapping[str, tuple[str, BranchProtectionRule]],
) -> list[BranchProtectionDiff]:
    diffs = []
    remaining = dict(actual)
    for protection in repo.branch_protections:
        expected = construct_branch_protection(repo, protection)
        current = remaining.pop(protection.pattern, None)
        if current is None:
            diffs.append(BranchProtectionDiff(protection.pattern, BranchProtectionCreate(expected)))
            continue
        rule_id, rule = current
        if rule.normalized() != expected:
            diffs.append(BranchProtectionDiff(protection.pattern, BranchProtectionUpdate(rule_id, rule, expected)))

    for pattern, (rule_id, _) in sorted(remaining.items()):
        diffs.append(BranchProtectionDiff(pattern, BranchProtectionDelete(rule_id)))
    return diffs


def expected_app_installations(
    repo: Repo,
    installations: Mapping[int, InstallationData],
) -> list[AppInstallation]:
    """
    Org installations of the apps the repo's bots map to. Apps missing from
    the org are reported and skipped: installing an app on an org is not
    possible through the API.
    """
    expected = []
    for bot in repo.bots:
        app = bot.app
        if app is None:
            continue
        installation_id = _find_installation(installations, app)
        if installation_id is None:
            warn(
                f"application {app} should be enabled for repository {repo.full_name}, "
                f"but it is not installed on GitHub"
            )
            continue
        expected.append(AppInstallation(app=app, installation_id=installation_id))
    return expected


def _find_installation(installations: Mapping[int, InstallationData], app: GitHubApp) -> int | None:
    for installation_id in sorted(installations):
        if installations[installation_id].app_id == app.app_id:
            return installation_id
    return None


def diff_app_installations(
    repo: Repo,
    installations: Mapping[int, InstallationData],
) -> list[AppInstallationDiff]:
    diffs: list[AppInstallationDiff] = []
    expected = expected_app_installations(repo, installations)
    for installation in expected:
        if repo.name not in installations[installation.installation_id].repositories:
            diffs.append(AppInstallationAdd(installation))

    for installation_id in sorted(installations):
        data = installations[installation_id]
        app = GitHubApp.from_app_id(data.app_id)
        if app is None or repo.name not in data.repositories:
            continue
        installation = AppInstallation(app=app, installation_id=installation_id)
        if installation not in expected:
            diffs.append(AppInstallationRemove(installation))
    return diffs


def diff_repo(
    repo: Repo,
    actual: RepoSnapshot | None,
    installations: Mapping[int, InstallationData],
    policy: SyncPolicy,
) -> RepoDiff:
    if actual is None:
        return CreateRepoDiff(
            org=repo.org,
            name=repo.name,
            settings=expected_settings(repo),
            permissions=tuple(diff_permissions(repo, policy=policy)),
            branch_protections=tuple(
                (protection.pattern, construct_branch_protection(repo, protection))
                for protection in repo.branch_protections
            ),
            app_installations=tuple(expected_app_installations(repo, installations)),
        )

    settings_diff = diff_settings(repo, actual.repo)
    old, new = settings_diff
    if old.archived and new.archived:
        # Nothing can be changed on an archived repository.
        return UpdateRepoDiff(
            org=repo.org,
            name=repo.name,
            repo_node_id=actual.repo.node_id,
            repo_id=actual.repo.repo_id,
            settings_diff=settings_diff,
        )

    return UpdateRepoDiff(
        org=repo.org,
        name=repo.name,
        repo_node_id=actual.repo.node_id,
        repo_id=actual.repo.repo_id,
        settings_diff=settings_diff,
        permission_diffs=tuple(diff_permissions(repo, actual.teams, actual.collaborators, policy)),
        branch_protection_diffs=tuple(diff_branch_protections(repo, actual.branch_protections)),
        app_installation_diffs=tuple(diff_app_installations(repo, installations)),
    )
