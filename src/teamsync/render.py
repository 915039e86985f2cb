from __future__ import annotations

from dataclasses import fields

from rich.markup import escape

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
    is_noop,
)
from teamsync.models import BranchProtectionRule
from teamsync.output import console

ADD = "[green]+[/green]"
CHANGE = "[yellow]~[/yellow]"
REMOVE = "[red]-[/red]"


def _line(indent: int, text: str) -> None:
    console.print("  " * indent + text)


def _value(value) -> str:
    if isinstance(value, (tuple, list)):
        return escape("[" + ", ".join(str(v) for v in value) + "]")
    if value is None:
        return "[dim]none[/dim]"
    if isinstance(value, str):
        return escape(repr(value))
    return escape(str(value))


# =============================================================================
# Teams
# =============================================================================


def print_team_diff(diff: TeamDiff) -> None:
    if isinstance(diff, CreateTeamDiff):
        _line(1, f"{ADD} team [bold]{escape(diff.org)}/{escape(diff.name)}[/bold]")
        _line(3, f"description: {_value(diff.description)}")
        _line(3, f"privacy: {diff.privacy}")
        if diff.members:
            _line(3, "members:")
            for user, role in diff.members:
                _line(4, f"{ADD} {escape(user)} ({role})")

    elif isinstance(diff, EditTeamDiff):
        _line(1, f"{CHANGE} team [bold]{escape(diff.org)}/{escape(diff.name)}[/bold]")
        if diff.name_diff is not None:
            _line(3, f"name → {_value(diff.name_diff)}")
        if diff.description_diff is not None:
            old, new = diff.description_diff
            _line(3, f"description: {_value(old)} → {_value(new)}")
        if diff.privacy_diff is not None:
            old, new = diff.privacy_diff
            _line(3, f"privacy: {old} → {new}")
        changed = [(user, d) for user, d in diff.member_diffs if not isinstance(d, MemberNoop)]
        if changed:
            _line(3, "members:")
        for user, member_diff in changed:
            if isinstance(member_diff, MemberCreate):
                _line(4, f"{ADD} {escape(user)} ({member_diff.role})")
            elif isinstance(member_diff, MemberChangeRole):
                _line(4, f"{CHANGE} {escape(user)}: {member_diff.old} → {member_diff.new}")
            elif isinstance(member_diff, MemberDelete):
                _line(4, f"{REMOVE} {escape(user)}")
            else:
                raise TypeError(f"Unknown member diff: {member_diff!r}")

    elif isinstance(diff, DeleteTeamDiff):
        _line(1, f"{REMOVE} team [bold]{escape(diff.org)}/{escape(diff.name)}[/bold]")

    else:
        raise TypeError(f"Unknown team diff: {diff!r}")


# =============================================================================
# Repos
# =============================================================================


def _print_permission(indent: int, assignment: RepoPermissionAssignmentDiff) -> None:
    kind = "team" if isinstance(assignment.collaborator, TeamCollaborator) else "user"
    who = f"{kind} {escape(assignment.collaborator.name)}"
    diff = assignment.diff
    if isinstance(diff, PermissionCreate):
        _line(indent, f"{ADD} {who}: {diff.permission}")
    elif isinstance(diff, PermissionUpdate):
        _line(indent, f"{CHANGE} {who}: {diff.old} → {diff.new}")
    elif isinstance(diff, PermissionDelete):
        _line(indent, f"{REMOVE} {who} ({diff.old})")
    else:
        raise TypeError(f"Unknown permission diff: {diff!r}")


def _print_rule(indent: int, rule: BranchProtectionRule) -> None:
    for f in fields(rule):
        if f.name == "pattern":
            continue
        _line(indent, f"{f.name.replace('_', ' ')}: {_value(getattr(rule, f.name))}")


def _print_changes(indent: int, old, new) -> None:
    """Fields that differ between two instances of the same dataclass."""
    for f in fields(new):
        before, after = getattr(old, f.name), getattr(new, f.name)
        if before != after:
            _line(indent, f"{f.name.replace('_', ' ')}: {_value(before)} → {_value(after)}")


def print_repo_diff(diff: RepoDiff) -> None:
    if isinstance(diff, CreateRepoDiff):
        _line(1, f"{ADD} repo [bold]{escape(diff.org)}/{escape(diff.name)}[/bold]")
        for f in fields(diff.settings):
            _line(3, f"{f.name.replace('_', ' ')}: {_value(getattr(diff.settings, f.name))}")
        if diff.permissions:
            _line(3, "permissions:")
            for assignment in diff.permissions:
                _print_permission(4, assignment)
        if diff.branch_protections:
            _line(3, "branch protections:")
            for pattern, rule in diff.branch_protections:
                _line(4, f"{ADD} {escape(pattern)}")
                _print_rule(6, rule)
        if diff.app_installations:
            _line(3, "apps:")
            for installation in diff.app_installations:
                _line(4, f"{ADD} {installation.app}")

    elif isinstance(diff, UpdateRepoDiff):
        _line(1, f"{CHANGE} repo [bold]{escape(diff.org)}/{escape(diff.name)}[/bold]")
        old, new = diff.settings_diff
        _print_changes(3, old, new)
        if diff.permission_diffs:
            _line(3, "permissions:")
            for assignment in diff.permission_diffs:
                _print_permission(4, assignment)
        if diff.branch_protection_diffs:
            _line(3, "branch protections:")
        for protection in diff.branch_protection_diffs:
            operation = protection.operation
            if isinstance(operation, BranchProtectionCreate):
                _line(4, f"{ADD} {escape(protection.pattern)}")
                _print_rule(6, operation.rule)
            elif isinstance(operation, BranchProtectionUpdate):
                _line(4, f"{CHANGE} {escape(protection.pattern)}")
                _print_changes(6, operation.old, operation.new)
            elif isinstance(operation, BranchProtectionDelete):
                _line(4, f"{REMOVE} {escape(protection.pattern)}")
            else:
                raise TypeError(f"Unknown branch protection operation: {operation!r}")
        if diff.app_installation_diffs:
            _line(3, "apps:")
        for app_diff in diff.app_installation_diffs:
            if isinstance(app_diff, AppInstallationAdd):
                _line(4, f"{ADD} {app_diff.installation.app}")
            elif isinstance(app_diff, AppInstallationRemove):
                _line(4, f"{REMOVE} {app_diff.installation.app}")
            else:
                raise TypeError(f"Unknown app installation diff: {app_diff!r}")

    else:
        raise TypeError(f"Unknown repo diff: {diff!r}")


def print_diff(diff: Diff) -> None:
    """Print every item of the diff that changes something."""
    for team_diff in diff.team_diffs:
        if not is_noop(team_diff):
            print_team_diff(team_diff)
    for repo_diff in diff.repo_diffs:
        if not is_noop(repo_diff):
            print_repo_diff(repo_diff)
