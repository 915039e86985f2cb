from __future__ import annotations

import argparse
import sys

from teamsync.apply import apply_diff
from teamsync.client import HttpClient
from teamsync.config import DEFAULT_CONFIG_FILE, load_desired_state
from teamsync.diff import is_noop
from teamsync.output import console, error, print_header, print_separator, set_quiet
from teamsync.read import GitHubApiRead
from teamsync.render import print_diff
from teamsync.sync import create_diff
from teamsync.tokens import GitHubTokens, MissingTokenError
from teamsync.write import GitHubWrite

__version__ = "0.1.0"


def run(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(
        prog="teamsync",
        description="Synchronize GitHub teams and repositories with a declared configuration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
examples:
  teamsync                    # apply teams.yaml
  teamsync -n                 # dry-run (preview)
  teamsync -a                 # show drift without changes
  teamsync -f org.yaml -k     # custom file, continue after failures

tokens:
  GITHUB_TOKEN_<ORG>          # token for one org, e.g. GITHUB_TOKEN_RUST_LANG
  GITHUB_TOKEN                # fallback for every org
""",
    )
    parser.add_argument("-f", "--file", default=DEFAULT_CONFIG_FILE, metavar="FILE",
                        help=f"Desired state file (default: {DEFAULT_CONFIG_FILE})")
    parser.add_argument("-n", "--dry-run", action="store_true", help="Preview without making changes")
    parser.add_argument("-a", "--audit", action="store_true", help="Show drift without making changes")
    parser.add_argument("-k", "--keep-going", action="store_true",
                        help="Continue with the next item when applying one fails")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only print errors")
    args = parser.parse_args(argv)

    if args.audit and args.dry_run:
        error("--audit cannot be used with --dry-run")
        return 2

    set_quiet(args.quiet)

    mode = None
    if args.dry_run:
        mode = "dry-run"
    elif args.audit:
        mode = "audit"
    print_header(__version__, mode)

    try:
        desired, policy = load_desired_state(args.file)
    except (ValueError, FileNotFoundError) as exc:
        error(str(exc))
        return 1

    orgs = {gh.org for team in desired.teams for gh in team.github} | {repo.org for repo in desired.repos}
    console.print(f"  [dim]source[/dim]      {args.file}")
    console.print(f"  [dim]teams[/dim]       {sum(len(team.github) for team in desired.teams)}")
    console.print(f"  [dim]repos[/dim]       {len(desired.repos)}")
    console.print(f"  [dim]orgs[/dim]        {', '.join(sorted(orgs)) or '-'}")
    console.print()

    try:
        tokens = GitHubTokens.from_env()
        tokens.require(orgs)
    except MissingTokenError as exc:
        error(str(exc))
        return 1

    client = HttpClient(tokens)
    try:
        read = GitHubApiRead(client)
        try:
            diff = create_diff(read, desired, policy)
        except RuntimeError as exc:
            error(str(exc))
            return 1

        if diff.is_empty():
            console.print("  [green]✓ no drift detected[/green]")
            console.print()
            return 0

        console.print("  [yellow]⚠ drift detected[/yellow]")
        console.print()
        print_diff(diff)
        console.print()

        # ======================================================================
        # AUDIT MODE
        # ======================================================================
        if args.audit:
            print_separator()
            console.print("  [dim]run without --audit to apply changes[/dim]")
            console.print()
            return 0

        # ======================================================================
        # APPLY MODE
        # ======================================================================
        write = GitHubWrite(client, read, dry_run=args.dry_run)
        try:
            failures = apply_diff(diff, write, keep_going=args.keep_going)
        except RuntimeError as exc:
            error(str(exc))
            return 1
        console.print()

        total = sum(1 for item in [*diff.team_diffs, *diff.repo_diffs] if not is_noop(item))
        applied = total - len(failures)
        parts = []
        if args.dry_run:
            parts.append(f"[blue]{applied} would apply[/blue]")
        elif applied:
            parts.append(f"[green]{applied} applied[/green]")
        if failures:
            parts.append(f"[red]{len(failures)} failed[/red]")
        summary = " · ".join(parts) if parts else "[dim]nothing to do[/dim]"
        print_separator()
        console.print(f"  [bold]done[/bold]  {summary}")
        console.print()

        for failure in failures:
            error(f"{failure.subject}: {failure.error}")
        return 1 if failures else 0
    finally:
        client.close()


def main() -> None:
    try:
        raise SystemExit(run())
    except KeyboardInterrupt:
        raise SystemExit(130) from None


if __name__ == "__main__":
    main()
