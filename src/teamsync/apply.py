from __future__ import annotations

from dataclasses import dataclass, replace

from teamsync.diff import (
    AppInstallationAdd,
    AppInstallationRemove,
    BranchProtectionCreate,
    BranchProtectionDelete,
    BranchProtectionUpdate,
    CreateRepoDiff,
    CreateTeamDiff,
    DeleteTeamDiff,
    Diff,
    EditTeamDiff,
    MemberChangeRole,
    MemberCreate,
    MemberDelete,
    MemberNoop,
    PermissionCreate,
    PermissionDelete,
    PermissionUpdate,
    RepoDiff,
    RepoPermissionAssignmentDiff,
    TeamCollaborator,
    TeamDiff,
    UpdateRepoDiff,
    UserCollaborator,
    is_noop,
)
from teamsync.output import print_status
from teamsync.read import team_slug
from teamsync.write import CreateForRepo, GithubWrite, UpdateBranchProtection


@dataclass
class ApplyFailure:
    """An item of the diff that could not be applied."""
    subject: str
    error: Exception


# =============================================================================
# Teams
# =============================================================================


def apply_team_diff(diff: TeamDiff, write: GithubWrite) -> None:
    if isinstance(diff, CreateTeamDiff):
        team = write.create_team(diff.org, diff.name, diff.description, diff.privacy)
        for user, role in diff.members:
            write.set_team_membership(diff.org, team.slug, user, role)

    elif isinstance(diff, EditTeamDiff):
        slug = diff.slug
        if diff.name_diff is not None or diff.description_diff is not None or diff.privacy_diff is not None:
            write.edit_team(
                diff.org,
                diff.slug,
                name=diff.name_diff,
                description=diff.description_diff[1] if diff.description_diff else None,
                privacy=diff.privacy_diff[1] if diff.privacy_diff else None,
            )
            if diff.name_diff is not None:
                slug = team_slug(diff.name_diff)

        for user, member_diff in diff.member_diffs:
            if isinstance(member_diff, MemberCreate):
                write.set_team_membership(diff.org, slug, user, member_diff.role)
            elif isinstance(member_diff, MemberChangeRole):
                write.set_team_membership(diff.org, slug, user, member_diff.new)
            elif isinstance(member_diff, MemberDelete):
                write.remove_team_membership(diff.org, slug, user)
            elif isinstance(member_diff, MemberNoop):
                continue
            else:
                raise TypeError(f"Unknown member diff: {member_diff!r}")

    elif isinstance(diff, DeleteTeamDiff):
        write.delete_team(diff.org, diff.slug)

    else:
        raise TypeError(f"Unknown team diff: {diff!r}")


# =============================================================================
# Repos
# =============================================================================


def apply_permission(write: GithubWrite, org: str, repo: str, assignment: RepoPermissionAssignmentDiff) -> None:
    collaborator = assignment.collaborator
    diff = assignment.diff
    if isinstance(diff, PermissionCreate):
        permission = diff.permission
    elif isinstance(diff, PermissionUpdate):
        permission = diff.new
    elif isinstance(diff, PermissionDelete):
        permission = None
    else:
        raise TypeError(f"Unknown permission diff: {diff!r}")

    if isinstance(collaborator, TeamCollaborator):
        if permission is None:
            write.remove_team_from_repo(org, repo, collaborator.name)
        else:
            write.update_team_repo_permissions(org, repo, collaborator.name, permission)
    elif isinstance(collaborator, UserCollaborator):
        if permission is None:
            write.remove_collaborator_from_repo(org, repo, collaborator.name)
        else:
            write.update_user_repo_permissions(org, repo, collaborator.name, permission)
    else:
        raise TypeError(f"Unknown collaborator: {collaborator!r}")


def apply_repo_diff(diff: RepoDiff, write: GithubWrite) -> None:
    if isinstance(diff, CreateRepoDiff):
        # Archiving comes last, an archived repository can't be configured.
        repo = write.create_repo(diff.org, diff.name, replace(diff.settings, archived=False))
        for assignment in diff.permissions:
            apply_permission(write, diff.org, diff.name, assignment)
        for _, rule in diff.branch_protections:
            write.upsert_branch_protection(diff.org, diff.name, CreateForRepo(repo.node_id), rule)
        for installation in diff.app_installations:
            write.add_repo_to_app_installation(diff.org, installation.installation_id, repo.repo_id)
        if diff.settings.archived:
            write.edit_repo(diff.org, diff.name, diff.settings)

    elif isinstance(diff, UpdateRepoDiff):
        if not diff.can_be_modified:
            return
        old, new = diff.settings_diff
        if old.archived and not new.archived:
            write.edit_repo(diff.org, diff.name, new)
        else:
            settings = replace(new, archived=old.archived)
            if settings != old:
                write.edit_repo(diff.org, diff.name, settings)

        for assignment in diff.permission_diffs:
            apply_permission(write, diff.org, diff.name, assignment)

        for protection in diff.branch_protection_diffs:
            operation = protection.operation
            if isinstance(operation, BranchProtectionCreate):
                write.upsert_branch_protection(
                    diff.org, diff.name, CreateForRepo(diff.repo_node_id), operation.rule
                )
            elif isinstance(operation, BranchProtectionUpdate):
                write.upsert_branch_protection(
                    diff.org, diff.name, UpdateBranchProtection(operation.rule_id), operation.new
                )
            elif isinstance(operation, BranchProtectionDelete):
                write.delete_branch_protection(diff.org, diff.name, operation.rule_id)
            else:
                raise TypeError(f"Unknown branch protection operation: {operation!r}")

        for app_diff in diff.app_installation_diffs:
            if isinstance(app_diff, AppInstallationAdd):
                write.add_repo_to_app_installation(
                    diff.org, app_diff.installation.installation_id, diff.repo_id
                )
            elif isinstance(app_diff, AppInstallationRemove):
                write.remove_repo_from_app_installation(
                    diff.org, app_diff.installation.installation_id, diff.repo_id
                )
            else:
                raise TypeError(f"Unknown app installation diff: {app_diff!r}")

        if not old.archived and new.archived:
            write.edit_repo(diff.org, diff.name, new)

    else:
        raise TypeError(f"Unknown repo diff: {diff!r}")


# =============================================================================
# Entry Point
# =============================================================================


def describe(diff: TeamDiff | RepoDiff) -> tuple[str, str]:
    """(subject, action) of a diff item, for progress output."""
    if isinstance(diff, CreateTeamDiff):
        return f"team {diff.org}/{diff.name}", "create"
    if isinstance(diff, EditTeamDiff):
        return f"team {diff.org}/{diff.name}", "update"
    if isinstance(diff, DeleteTeamDiff):
        return f"team {diff.org}/{diff.name}", "delete"
    if isinstance(diff, CreateRepoDiff):
        return f"repo {diff.org}/{diff.name}", "create"
    if isinstance(diff, UpdateRepoDiff):
        return f"repo {diff.org}/{diff.name}", "update"
    raise TypeError(f"Unknown diff: {diff!r}")


_DONE = {"create": "created", "update": "updated", "delete": "deleted"}


def apply_diff(diff: Diff, write: GithubWrite, *, keep_going: bool = False) -> list[ApplyFailure]:
    """
    Apply every item of the diff, teams before repos.

    A failing item stops at the failing step. Without `keep_going` the
    error is re-raised, otherwise it is recorded and the next item is
    applied. Returns the recorded failures.
    """
    failures: list[ApplyFailure] = []
    items: list[TeamDiff | RepoDiff] = [*diff.team_diffs, *diff.repo_diffs]
    for item in items:
        if is_noop(item):
            continue
        subject, action = describe(item)
        try:
            if isinstance(item, (CreateTeamDiff, EditTeamDiff, DeleteTeamDiff)):
                apply_team_diff(item, write)
            else:
                apply_repo_diff(item, write)
        except RuntimeError as exc:
            print_status(subject, "fail", str(exc))
            if not keep_going:
                raise
            failures.append(ApplyFailure(subject=subject, error=exc))
            continue

        if write.dry_run:
            print_status(subject, "would", f"would {action}")
        else:
            print_status(subject, "ok", _DONE[action])
    return failures
