"""Tests for printing diffs."""

import pytest

from teamsync.diff import (
    AppInstallation,
    AppInstallationAdd,
    BranchProtectionDiff,
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
    PermissionDelete,
    PermissionUpdate,
    RepoPermissionAssignmentDiff,
    TeamCollaborator,
    UpdateRepoDiff,
    UserCollaborator,
)
from teamsync.models import (
    BranchProtectionRule,
    GitHubApp,
    Real,
    RepoPermission,
    RepoSettings,
    TeamPrivacy,
    TeamRole,
)
from teamsync.render import print_diff, print_repo_diff, print_team_diff


class TestPrintTeamDiff:
    """Tests for print_team_diff."""

    def test_create(self, capsys):
        print_team_diff(
            CreateTeamDiff(
                org="rust-lang",
                name="infra",
                description="Managed",
                privacy=TeamPrivacy.CLOSED,
                members=(("mark", TeamRole.MAINTAINER),),
            )
        )
        out = capsys.readouterr().out
        assert "+ team rust-lang/infra" in out
        assert "privacy: closed" in out
        assert "+ mark (maintainer)" in out

    def test_edit(self, capsys):
        print_team_diff(
            EditTeamDiff(
                org="rust-lang",
                name="infra",
                slug="infra",
                name_diff="Infra",
                description_diff=("", "Managed"),
                member_diffs=(
                    ("mark", MemberNoop()),
                    ("jan", MemberCreate(TeamRole.MEMBER)),
                    ("ana", MemberChangeRole(TeamRole.MEMBER, TeamRole.MAINTAINER)),
                    ("bob", MemberDelete()),
                ),
            )
        )
        out = capsys.readouterr().out
        assert "~ team rust-lang/infra" in out
        assert "name → 'Infra'" in out
        assert "description: '' → 'Managed'" in out
        assert "+ jan (member)" in out
        assert "~ ana: member → maintainer" in out
        assert "- bob" in out
        assert "mark" not in out

    def test_delete(self, capsys):
        print_team_diff(DeleteTeamDiff("rust-lang", "old", "old"))
        assert "- team rust-lang/old" in capsys.readouterr().out

    def test_unknown(self):
        with pytest.raises(TypeError):
            print_team_diff("not a diff")


class TestPrintRepoDiff:
    """Tests for print_repo_diff."""

    def test_create(self, capsys):
        print_repo_diff(
            CreateRepoDiff(
                org="rust-lang",
                name="rust",
                settings=RepoSettings(description="The compiler"),
                branch_protections=(("main", BranchProtectionRule(pattern="main")),),
                app_installations=(AppInstallation(GitHubApp.RENOVATE, 10),),
            )
        )
        out = capsys.readouterr().out
        assert "+ repo rust-lang/rust" in out
        assert "description: 'The compiler'" in out
        assert "homepage: none" in out
        assert "+ main" in out
        assert "required approving review count: 0" in out
        assert "+ Renovate" in out

    def test_update(self, capsys):
        old_rule = BranchProtectionRule(pattern="main", required_status_check_contexts=("a",))
        new_rule = BranchProtectionRule(pattern="main", required_status_check_contexts=("a", "b"))
        print_repo_diff(
            UpdateRepoDiff(
                org="rust-lang",
                name="rust",
                repo_node_id=Real("R_1"),
                repo_id=Real(1),
                settings_diff=(RepoSettings(), RepoSettings(archived=True)),
                permission_diffs=(
                    RepoPermissionAssignmentDiff(
                        TeamCollaborator("infra"), PermissionUpdate(RepoPermission.READ, RepoPermission.WRITE)
                    ),
                    RepoPermissionAssignmentDiff(UserCollaborator("mark"), PermissionDelete(RepoPermission.ADMIN)),
                ),
                branch_protection_diffs=(
                    BranchProtectionDiff("main", BranchProtectionUpdate("BPR_1", old_rule, new_rule)),
                ),
                app_installation_diffs=(AppInstallationAdd(AppInstallation(GitHubApp.RENOVATE, 10)),),
            )
        )
        out = capsys.readouterr().out
        assert "~ repo rust-lang/rust" in out
        assert "archived: False → True" in out
        assert "description" not in out
        assert "~ team infra: read → write" in out
        assert "- user mark (admin)" in out
        assert "required status check contexts: [a] → [a, b]" in out
        assert "+ Renovate" in out


class TestPrintDiff:
    """Tests for print_diff."""

    def test_skips_noops(self, capsys):
        noop = EditTeamDiff(org="rust-lang", name="infra", slug="infra")
        print_diff(Diff(team_diffs=(noop, DeleteTeamDiff("rust-lang", "old", "old"))))
        out = capsys.readouterr().out
        assert "infra" not in out
        assert "rust-lang/old" in out
