"""Tests for the caches and snapshots behind the diff."""

import pytest
from conftest import RepoData, TeamData, pr_required

from teamsync.fake import FakeGitHub
from teamsync.models import DesiredState, GitHubApp, OrgAppInstallation, Real, Repo, RepoPermission
from teamsync.sync import SyncCaches, SyncError, SyncGitHub, create_diff


class CountingGitHub(FakeGitHub):
    """Counts read calls by method name."""

    def __init__(self):
        super().__init__()
        self.reads: list[str] = []

    def repo_teams(self, org, repo):
        self.reads.append("repo_teams")
        return super().repo_teams(org, repo)

    def branch_protections(self, org, repo):
        self.reads.append("branch_protections")
        return super().branch_protections(org, repo)

    def org_teams(self, org):
        self.reads.append(f"org_teams {org}")
        return super().org_teams(org)

    def org_app_installations(self, org):
        self.reads.append(f"org_app_installations {org}")
        return super().org_app_installations(org)


class ForgetfulGitHub(FakeGitHub):
    """Silently drops user ids it can't resolve."""

    def usernames(self, ids):
        return {i: self.users[i] for i in ids if i in self.users}


class TestSyncCaches:
    """Tests for SyncCaches.load."""

    def test_usernames_and_owners(self, model):
        mark = model.create_user("mark")
        model.make_owner(mark)
        model.create_team(TeamData("infra").gh_team("infra", [mark]))
        gh = model.gh_model()

        caches = SyncCaches.load(gh, model.desired().teams, ())
        assert dict(caches.usernames) == {mark: "mark"}
        assert caches.owners("rust-lang") == frozenset({mark})
        assert caches.owners("rust-embedded") == frozenset()

    def test_read_only(self, model):
        caches = SyncCaches.load(model.gh_model(), (), ())
        with pytest.raises(TypeError):
            caches.usernames[1] = "mark"

    def test_unresolved_usernames(self, model):
        model.create_team(TeamData("infra").gh_team("infra", [42]))
        with pytest.raises(SyncError, match="42"):
            SyncCaches.load(ForgetfulGitHub(), model.desired().teams, ())

    def test_apps_only_for_repo_orgs(self, model):
        gh = CountingGitHub()
        model.create_team(TeamData("infra").gh_team("infra", [], org="rust-embedded"))
        SyncCaches.load(gh, model.desired().teams, (Repo(org="rust-lang", name="rust"),))
        assert gh.reads == ["org_app_installations rust-lang"]

    def test_known_apps(self):
        gh = FakeGitHub()
        installation_id = gh.install_app("rust-lang", GitHubApp.RENOVATE, repos=["rust"])
        gh.installations["rust-lang"].append(OrgAppInstallation(installation_id=99, app_id=1))
        gh.installation_repos[99] = {"rust"}

        caches = SyncCaches.load(gh, (), (Repo(org="rust-lang", name="rust"),))
        installations = caches.installations("rust-lang")
        assert list(installations) == [installation_id]
        assert installations[installation_id].repositories == frozenset({"rust"})
        assert caches.installations("rust-embedded") == {}


class TestSnapshots:
    """Tests for SyncGitHub snapshots."""

    def test_missing_team(self, model):
        sync = SyncGitHub(model.gh_model(), model.desired())
        assert sync.team_snapshot("rust-lang", "ghost") is None

    def test_team_snapshot(self, model):
        mark = model.create_user("mark")
        model.create_team(TeamData("infra").gh_team("infra", [mark]))
        gh = model.gh_model()
        gh.invite("rust-lang", "infra", "jan")

        snapshot = SyncGitHub(gh, model.desired()).team_snapshot("rust-lang", "infra")
        assert snapshot.team.slug == "infra"
        assert set(snapshot.members) == {mark}
        assert snapshot.invitations == frozenset({"jan"})

    def test_missing_repo(self, model):
        sync = SyncGitHub(model.gh_model(), model.desired())
        assert sync.repo_snapshot(Repo(org="rust-lang", name="ghost")) is None

    def test_archived_repo_is_not_read_further(self):
        gh = CountingGitHub()
        fake = gh.add_repo("rust-lang", "old", archived=True)
        fake.collaborators["mark"] = RepoPermission.ADMIN
        desired = Repo(org="rust-lang", name="old", archived=True)

        snapshot = SyncGitHub(gh, DesiredState(repos=(desired,))).repo_snapshot(desired)
        assert snapshot.repo.node_id == Real(fake.node_id)
        assert snapshot.collaborators == ()
        assert "repo_teams" not in gh.reads
        assert "branch_protections" not in gh.reads

    def test_unarchived_repo_is_read(self):
        gh = CountingGitHub()
        gh.add_repo("rust-lang", "old", archived=True)
        desired = Repo(org="rust-lang", name="old")

        SyncGitHub(gh, DesiredState(repos=(desired,))).repo_snapshot(desired)
        assert "repo_teams" in gh.reads
        assert "branch_protections" in gh.reads


class TestDiffTeamsReads:
    """Which orgs get listed for unmanaged teams."""

    def test_lists_only_eligible_orgs_with_managed_teams(self, model):
        model.create_team(TeamData("a").gh_team("a", []))
        model.create_team(TeamData("b").gh_team("b", [], org="rust-embedded"))
        gh = CountingGitHub()
        gh.add_team("rust-lang", "a")
        gh.add_team("rust-embedded", "b")

        SyncGitHub(gh, model.desired()).diff_teams()
        assert [r for r in gh.reads if r.startswith("org_teams")] == ["org_teams rust-lang"]

    def test_diff_all(self, model):
        model.create_team(TeamData("a").gh_team("a", []))
        model.create_repo(RepoData("repo1"))
        gh = model.gh_model()
        model.get_repo("repo1").description = "new"

        diff = model.sync(gh).diff_all()
        assert len(diff.team_diffs) == 1
        assert len(diff.repo_diffs) == 1
        assert not diff.is_empty()


class TestCreateDiff:
    """Tests for create_diff."""

    def test_diffing_twice_gives_the_same_diff(self, model):
        mark = model.create_user("mark")
        model.create_team(TeamData("admins").gh_team("admins-gh", [mark]))
        model.create_team(TeamData("users").gh_team("users-gh", [mark]))
        model.create_repo(RepoData("repo1").member("mark", RepoPermission.WRITE))
        gh = model.gh_model()
        model.remove_team("users")
        repo = model.get_repo("repo1")
        repo.description = "changed"
        repo.protect(pr_required("main", ["test"]))

        desired = model.desired()
        first = create_diff(gh, desired, model.policy)
        second = create_diff(gh, desired, model.policy)
        assert first == second
        assert not first.is_empty()
        assert gh.calls == []
