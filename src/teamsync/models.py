from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


# =============================================================================
# Platform Identifiers
# =============================================================================


@dataclass(frozen=True)
class Real(Generic[T]):
    """An identifier assigned by the platform."""
    value: T

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class Simulated:
    """Marks an entity that only exists inside a dry run."""

    def __str__(self) -> str:
        return "<simulated>"


SIMULATED = Simulated()

PlatformId = Union[Real[int], Simulated]
NodeId = Union[Real[str], Simulated]


# =============================================================================
# Enums
# =============================================================================


class RepoPermission(Enum):
    """
    Repository roles, ordered from least to most privileged.

    The UI calls them read/write, the REST API still uses pull/push.
    """

    READ = "read"
    TRIAGE = "triage"
    WRITE = "write"
    MAINTAIN = "maintain"
    ADMIN = "admin"

    @staticmethod
    def from_api(value: str) -> RepoPermission:
        aliases = {"pull": "read", "push": "write"}
        value = value.lower()
        return RepoPermission(aliases.get(value, value))

    @property
    def api_value(self) -> str:
        if self is RepoPermission.READ:
            return "pull"
        if self is RepoPermission.WRITE:
            return "push"
        return self.value

    @property
    def rank(self) -> int:
        return list(RepoPermission).index(self)

    def __lt__(self, other: RepoPermission) -> bool:
        if not isinstance(other, RepoPermission):
            return NotImplemented
        return self.rank < other.rank

    def __str__(self) -> str:
        return self.value


class TeamRole(Enum):
    MEMBER = "member"
    MAINTAINER = "maintainer"

    @staticmethod
    def from_api(value: str) -> TeamRole:
        # GraphQL returns MEMBER / MAINTAINER, REST returns lowercase.
        return TeamRole(value.lower())

    def __str__(self) -> str:
        return self.value


class TeamPrivacy(Enum):
    CLOSED = "closed"
    SECRET = "secret"

    def __str__(self) -> str:
        return self.value


class GitHubApp(Enum):
    """Apps that can be enabled on a repository through a bot entry."""

    RENOVATE = 2740

    @property
    def app_id(self) -> int:
        return self.value

    @staticmethod
    def from_app_id(app_id: int) -> GitHubApp | None:
        for app in GitHubApp:
            if app.value == app_id:
                return app
        return None

    def __str__(self) -> str:
        return self.name.capitalize()


class Bot(Enum):
    BORS = "bors"
    HIGHFIVE = "highfive"
    RUSTBOT = "rustbot"
    RUST_TIMER = "rust-timer"
    RFCBOT = "rfcbot"
    CRATERBOT = "craterbot"
    GLACIERBOT = "glacierbot"
    LOG_ANALYZER = "log-analyzer"
    RENOVATE = "renovate"

    @property
    def username(self) -> str | None:
        """GitHub account of the bot, None when the bot is an app."""
        return _BOT_USERNAMES.get(self)

    @property
    def app(self) -> GitHubApp | None:
        if self is Bot.RENOVATE:
            return GitHubApp.RENOVATE
        return None


_BOT_USERNAMES = {
    Bot.BORS: "bors",
    Bot.HIGHFIVE: "rust-highfive",
    Bot.RUSTBOT: "rustbot",
    Bot.RUST_TIMER: "rust-timer",
    Bot.RFCBOT: "rfcbot",
    Bot.CRATERBOT: "craterbot",
    Bot.GLACIERBOT: "rust-lang-glacier-bot",
    Bot.LOG_ANALYZER: "rust-log-analyzer",
}


class MergeBot(Enum):
    HOMU = "homu"

    @property
    def username(self) -> str:
        return "bors"


# =============================================================================
# Desired State
# =============================================================================


@dataclass(frozen=True)
class GitHubTeam:
    """A platform team that a logical team maps to."""
    org: str
    name: str
    members: tuple[int, ...] = ()


@dataclass(frozen=True)
class Team:
    name: str
    github: tuple[GitHubTeam, ...] = ()


@dataclass(frozen=True)
class RepoTeamAccess:
    name: str
    permission: RepoPermission


@dataclass(frozen=True)
class RepoMemberAccess:
    name: str
    permission: RepoPermission


@dataclass(frozen=True)
class PrRequired:
    ci_checks: tuple[str, ...] = ()
    required_approvals: int = 1


@dataclass(frozen=True)
class PrNotRequired:
    pass


BranchProtectionMode = Union[PrRequired, PrNotRequired]


@dataclass(frozen=True)
class BranchProtection:
    pattern: str
    mode: BranchProtectionMode = field(default_factory=PrRequired)
    dismiss_stale_review: bool = False
    allowed_merge_teams: tuple[str, ...] = ()
    merge_bots: tuple[MergeBot, ...] = ()


@dataclass(frozen=True)
class Repo:
    org: str
    name: str
    description: str = ""
    homepage: str | None = None
    archived: bool = False
    auto_merge_enabled: bool = False
    teams: tuple[RepoTeamAccess, ...] = ()
    members: tuple[RepoMemberAccess, ...] = ()
    branch_protections: tuple[BranchProtection, ...] = ()
    bots: tuple[Bot, ...] = ()

    @property
    def full_name(self) -> str:
        return f"{self.org}/{self.name}"


@dataclass(frozen=True)
class DesiredState:
    teams: tuple[Team, ...] = ()
    repos: tuple[Repo, ...] = ()


# =============================================================================
# Actual State
# =============================================================================


@dataclass(frozen=True)
class PlatformTeam:
    id: PlatformId
    name: str
    slug: str
    description: str | None
    privacy: TeamPrivacy
    # GraphQL node id, reported by the REST team endpoints.
    node_id: str | None = None


@dataclass(frozen=True)
class TeamMember:
    username: str
    role: TeamRole


@dataclass(frozen=True)
class PlatformRepo:
    node_id: NodeId
    repo_id: PlatformId
    org: str
    name: str
    description: str = ""
    homepage: str | None = None
    archived: bool = False
    allow_auto_merge: bool | None = None


@dataclass(frozen=True)
class RepoTeam:
    name: str
    permission: RepoPermission


@dataclass(frozen=True)
class RepoUser:
    name: str
    permission: RepoPermission


@dataclass(frozen=True, order=True)
class UserPushAllowance:
    login: str

    def __str__(self) -> str:
        return self.login


@dataclass(frozen=True, order=True)
class TeamPushAllowance:
    org: str
    name: str

    def __str__(self) -> str:
        return f"{self.org}/{self.name}"


PushAllowanceActor = Union[UserPushAllowance, TeamPushAllowance]


def sort_push_allowances(actors) -> tuple[PushAllowanceActor, ...]:
    return tuple(sorted(actors, key=lambda a: (type(a).__name__, str(a))))


@dataclass(frozen=True)
class BranchProtectionRule:
    """A branch protection rule as the platform stores it."""
    pattern: str
    is_admin_enforced: bool = True
    dismisses_stale_reviews: bool = False
    required_approving_review_count: int = 0
    required_status_check_contexts: tuple[str, ...] = ()
    push_allowances: tuple[PushAllowanceActor, ...] = ()
    requires_approving_reviews: bool = True

    def normalized(self) -> BranchProtectionRule:
        """Return a copy whose list fields are in canonical order."""
        return BranchProtectionRule(
            pattern=self.pattern,
            is_admin_enforced=self.is_admin_enforced,
            dismisses_stale_reviews=self.dismisses_stale_reviews,
            required_approving_review_count=self.required_approving_review_count,
            required_status_check_contexts=tuple(sorted(self.required_status_check_contexts)),
            push_allowances=sort_push_allowances(self.push_allowances),
            requires_approving_reviews=self.requires_approving_reviews,
        )


@dataclass(frozen=True)
class OrgAppInstallation:
    installation_id: int
    app_id: int


@dataclass(frozen=True)
class InstallationData:
    app_id: int
    repositories: frozenset[str] = frozenset()


@dataclass(frozen=True)
class RepoSettings:
    description: str = ""
    homepage: str | None = None
    archived: bool = False
    auto_merge_enabled: bool = False


# =============================================================================
# Policy
# =============================================================================


@dataclass(frozen=True)
class SyncPolicy:
    """Fixed rules of the organizations being managed."""
    team_description: str = "Managed by the rust-lang/team repository."
    team_privacy: TeamPrivacy = TeamPrivacy.CLOSED
    # Unmanaged teams are only deleted in these orgs.
    delete_teams_in: frozenset[str] = frozenset({"rust-lang", "rust-lang-nursery"})
    # Teams managed by bots, never deleted.
    bot_teams: frozenset[str] = frozenset({"bors", "highfive", "rfcbot", "bots"})
    # GitHub grants this team access implicitly; it is never removed from a repo.
    protected_team_org: str = "rust-lang"
    protected_team_name: str = "security"

    def is_protected_team(self, org: str, team: str) -> bool:
        return org == self.protected_team_org and team == self.protected_team_name
