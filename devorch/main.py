"""devorch CLI: all commands."""

import functools
import logging
import subprocess
from collections import Counter
from typing import Annotated
from urllib.parse import urlencode

import httpx
import tomlkit
import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from devorch.agent import AgentClient, exchange_code
from devorch.exceptions import DevorchError
from devorch.models import ConfidenceAssessment, CredentialKind, Message, MessageRole
from devorch.orchestrator import ChatState, SessionOrchestrator
from devorch.project import ProjectView
from devorch.providers.base import SourceControlProvider
from devorch.providers.github import GitHubProvider
from devorch.settings import CONFIG_PATH, DevorchSettings, _list_profiles, _load_toml, get_settings
from devorch.store import CredentialStore, SessionHandleStore

app = typer.Typer(help="devorch: drive coding-agent sessions against GitHub issues", no_args_is_help=True)
console = Console()

ProfileOpt = Annotated[
    str | None,
    typer.Option("--profile", "-P", help="Profile name from ~/.config/devorch/config.toml"),
]
RepoArg = Annotated[str, typer.Argument(help="Repository as owner/name")]

GITHUB_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
GITHUB_SCOPES = "repo,user"

_ROLE_STYLE = {
    MessageRole.USER: ("you", "cyan"),
    MessageRole.ASSISTANT: ("agent", "green"),
    MessageRole.SYSTEM: ("system", "dim"),
    MessageRole.ERROR: ("error", "red"),
}


def handle_errors(func):
    """Turn expected failures into a red message and exit code 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (DevorchError, httpx.HTTPError) as exc:
            rprint(f"[red]{exc}[/red]")
            raise typer.Exit(1) from exc

    return wrapper


@app.callback()
def main(verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False) -> None:
    level = "DEBUG" if verbose else DevorchSettings().log_level
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def get_provider(profile: str | None = None) -> SourceControlProvider:
    return GitHubProvider(get_settings(profile=profile))


def _split_repo(full_name: str) -> tuple[str, str]:
    owner, _, name = full_name.partition("/")
    if not owner or not name:
        raise DevorchError(f"Expected owner/name, got '{full_name}'")
    return owner, name


def get_project(full_name: str, profile: str | None = None) -> ProjectView:
    settings = get_settings(profile=profile)
    provider = GitHubProvider(settings)
    repo = provider.get_repo(*_split_repo(full_name))
    return ProjectView(repo, provider, AgentClient(settings), SessionHandleStore(), settings)


# ---------------------------------------------------------------------------
# Chat rendering
# ---------------------------------------------------------------------------


def _render_message(message: Message) -> None:
    label, style = _ROLE_STYLE[message.role]
    suffix = " [dim](sending)[/dim]" if message.pending else ""
    rprint(f"[bold {style}]{label}>[/bold {style}] {escape(message.content)}{suffix}")


def _render_new(orchestrator: SessionOrchestrator, shown: Counter) -> Counter:
    """Print the messages not rendered yet and return the updated tally.

    Reconciliation reorders the log and drops local entries, so messages are
    tallied by (role, content) rather than by position. A pending message that
    gets confirmed is not printed twice.
    """
    seen: Counter = Counter()
    for message in orchestrator.messages:
        key = (message.role, message.content)
        seen[key] += 1
        if seen[key] > shown[key]:
            _render_message(message)
    return seen


def _render_assessment(assessment: ConfidenceAssessment) -> None:
    colour = "green" if assessment.score >= 70 else "yellow" if assessment.score >= 40 else "red"
    rprint(f"[bold]Confidence:[/bold] [{colour}]{assessment.score}/100[/{colour}] {escape(assessment.reasoning)}")
    rprint("[dim]Type /run to let the agent start the fix.[/dim]")


def _wait_for_confidence(orchestrator: SessionOrchestrator) -> None:
    with console.status("Waiting for the agent's confidence assessment..."):
        assessment = orchestrator.poll_confidence()
    if assessment is None:
        rprint("[yellow]No confidence assessment yet.[/yellow] Use /confidence to keep waiting.")
    else:
        _render_assessment(assessment)


def _chat_loop(orchestrator: SessionOrchestrator, wait: bool) -> None:
    """Interactive chat. /run starts execution, /refresh re-fetches, /confidence polls, /quit leaves."""
    try:
        shown = _render_new(orchestrator, Counter())
        if orchestrator.state is ChatState.UNINITIALIZED:
            raise typer.Exit(1)
        if wait and orchestrator.awaiting_assessment:
            _wait_for_confidence(orchestrator)
            shown = _render_new(orchestrator, shown)

        while True:
            text = typer.prompt(f"[{orchestrator.state.value}] you", default="", show_default=False).strip()
            if text in ("/quit", "/exit"):
                break
            if text == "/run":
                orchestrator.start_execution()
            elif text == "/refresh":
                orchestrator.refresh(surface_errors=True)
            elif text == "/confidence":
                _wait_for_confidence(orchestrator)
            elif text:
                orchestrator.send_message(text)
            shown = _render_new(orchestrator, shown)
    except typer.Abort:
        pass
    finally:
        orchestrator.close()

    if orchestrator.pull_request_url:
        rprint(f"Pull request: {orchestrator.pull_request_url}")
    rprint(f"[dim]Session {orchestrator.session_id} ({orchestrator.status or orchestrator.state.value})[/dim]")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("whoami")
@handle_errors
def whoami(profile: ProfileOpt = None) -> None:
    """Check the GitHub token by fetching the authenticated user."""
    user = get_provider(profile).get_user()
    rprint(f"[green]✓[/green] Signed in to GitHub as [bold]{user.login}[/bold]" + (f" ({user.name})" if user.name else ""))


@app.command("repos")
@handle_errors
def list_repos(
    profile: ProfileOpt = None,
    page: Annotated[int, typer.Option("--page", min=1, help="Page number")] = 1,
    per_page: Annotated[int, typer.Option("--per-page", min=1, max=100, help="Repositories per page")] = 30,
) -> None:
    """List my repositories, most recently updated first."""
    repos = get_provider(profile).list_repos(page=page, per_page=per_page)

    table = Table(title=f"Repositories (page {page})")
    table.add_column("Repository", style="cyan")
    table.add_column("★", justify="right")
    table.add_column("Language")
    table.add_column("Updated", style="dim")
    table.add_column("Description")

    for repo in repos:
        updated = repo.updated_at.strftime("%Y-%m-%d") if repo.updated_at else "—"
        table.add_row(repo.full_name, str(repo.stargazers_count), repo.language or "—", updated, repo.description or "")

    rprint(table)


@app.command("issues")
@handle_errors
def list_issues(repo: RepoArg, profile: ProfileOpt = None) -> None:
    """List open issues of a repository."""
    issues = get_provider(profile).list_issues(*_split_repo(repo))
    handles = SessionHandleStore()

    table = Table(title=f"Open issues in {repo}")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Title")
    table.add_column("Author")
    table.add_column("Session", style="dim")
    table.add_column("URL", style="dim")

    for issue in issues:
        author = issue.author.login if issue.author else "—"
        table.add_row(str(issue.number), issue.title, author, handles.get(repo, issue.number) or "", issue.url)

    rprint(table)


@app.command("create-issue")
@handle_errors
def create_issue(
    repo: RepoArg,
    title: Annotated[str, typer.Argument(help="Issue title")],
    body: Annotated[str, typer.Argument(help="Issue body")] = "",
    profile: ProfileOpt = None,
) -> None:
    """Create a new issue."""
    if not title.strip():
        rprint("[red]Issue title cannot be empty.[/red]")
        raise typer.Exit(1)

    owner, name = _split_repo(repo)
    created = get_provider(profile).create_issue(owner, name, title, body)

    rprint(f"[green]✓[/green] [bold]{repo}#{created.number}[/bold] {created.title}")
    rprint(f"  {created.url}")


@app.command("sessions")
@handle_errors
def list_sessions(
    repo: RepoArg,
    profile: ProfileOpt = None,
    limit: Annotated[int, typer.Option("--limit", "-n", min=1, help="How many recent sessions to scan")] = 20,
) -> None:
    """List agent sessions tagged with a repository."""
    project = get_project(repo, profile)
    sessions = project.load_sessions(limit=limit)

    table = Table(title=f"Agent sessions for {repo}")
    table.add_column("Session", style="cyan")
    table.add_column("Status")
    table.add_column("Title")
    table.add_column("Tags", style="dim")
    table.add_column("Pull request", style="dim")

    for session in sessions:
        table.add_row(
            session.session_id,
            session.status or "—",
            session.title or "",
            ", ".join(session.tags),
            session.pull_request_url or "",
        )

    rprint(table)


@app.command("chat")
@handle_errors
def chat(
    repo: RepoArg,
    issue_number: Annotated[int, typer.Argument(help="Issue number")],
    profile: ProfileOpt = None,
    wait: Annotated[
        bool, typer.Option("--wait/--no-wait", help="Wait for the confidence assessment of a new session")
    ] = True,
) -> None:
    """Open the agent chat for an issue, creating its session on first use."""
    project = get_project(repo, profile)
    issue = project.get_issue(issue_number)
    rprint(f"[bold]{repo}#{issue.number}[/bold] {issue.title}")
    _chat_loop(project.open_issue_chat(issue), wait=wait)


@app.command("attach")
@handle_errors
def attach(
    repo: RepoArg,
    session_id: Annotated[str, typer.Argument(help="Agent session id")],
    profile: ProfileOpt = None,
) -> None:
    """Open the chat of an existing agent session."""
    project = get_project(repo, profile)
    _chat_loop(project.open_session(session_id), wait=False)


@app.command("serve")
def serve(
    host: Annotated[str, typer.Option("--host", help="Host to bind to")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", help="Port to serve on")] = 8888,
) -> None:
    """Run the relay that forwards agent calls and OAuth code exchanges."""
    rprint(f"Relay running on http://{host}:{port}")
    uvicorn.run("devorch.relay:app", host=host, port=port, reload=False)


# ---------------------------------------------------------------------------
# Credentials & configuration
# ---------------------------------------------------------------------------


@app.command("set-token")
def set_token(
    kind: Annotated[CredentialKind, typer.Argument(help="Which token to store")],
    value: Annotated[str, typer.Argument(help="Token value")],
    profile: ProfileOpt = None,
) -> None:
    """Store a token in the active profile."""
    store = CredentialStore(profile=profile)
    store.set_token(kind, value)
    rprint(f"[green]✓[/green] Stored {kind.value} token in profile '{store.profile}' ({store.path})")


@app.command("auth-url")
@handle_errors
def auth_url(profile: ProfileOpt = None) -> None:
    """Print the GitHub OAuth authorize URL. Exchange the returned code with exchange-code."""
    settings = get_settings(profile=profile)
    if not settings.github_client_id:
        rprint("[red]No github_client_id configured. Set DEVORCH_GITHUB_CLIENT_ID or add it to your profile.[/red]")
        raise typer.Exit(1)
    typer.echo(f"{GITHUB_AUTHORIZE_URL}?{urlencode({'client_id': settings.github_client_id, 'scope': GITHUB_SCOPES})}")


@app.command("exchange-code")
@handle_errors
def exchange_code_cmd(
    code: Annotated[str, typer.Argument(help="OAuth code from the GitHub redirect")],
    profile: ProfileOpt = None,
) -> None:
    """Exchange an OAuth code through the relay and store the resulting GitHub token."""
    settings = get_settings(profile=profile)
    data = exchange_code(settings, code)
    token = data.get("access_token")
    if not token:
        rprint(f"[red]Token exchange failed: {data.get('error_description') or data.get('error') or data}[/red]")
        raise typer.Exit(1)
    store = CredentialStore(profile=settings.profile)
    store.set_token(CredentialKind.SOURCE_CONTROL, token)
    rprint(f"[green]✓[/green] GitHub token stored in profile '{store.profile}'")


@app.command("set-default")
def set_default(
    profile: Annotated[str, typer.Argument(help="Profile name to set as default")],
) -> None:
    """Set the default profile in ~/.config/devorch/config.toml."""
    if not CONFIG_PATH.exists():
        CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
        doc = tomlkit.document()
        doc.add("default_profile", profile)
        CONFIG_PATH.write_text(tomlkit.dumps(doc))
        _load_toml.cache_clear()
        rprint(f'[green]✓[/green] Default profile set to "{profile}" in {CONFIG_PATH}')
        return

    doc = tomlkit.parse(CONFIG_PATH.read_text())
    profiles = _list_profiles(doc)
    if profile not in profiles:
        rprint(f"[red]Profile '{profile}' not found in {CONFIG_PATH}. Available: {profiles or '(none)'}[/red]")
        raise typer.Exit(1)

    doc["default_profile"] = profile
    CONFIG_PATH.write_text(tomlkit.dumps(doc))
    _load_toml.cache_clear()
    rprint(f'[green]✓[/green] Default profile set to "{profile}" in {CONFIG_PATH}')


@app.command("config-show")
@handle_errors
def config_show(profile: ProfileOpt = None) -> None:
    """Show resolved configuration (masks credentials)."""
    settings = get_settings(profile=profile)

    def mask(val: str | None) -> str:
        if val is None:
            return "[dim](not set)[/dim]"
        if len(val) <= 5:
            return "***"
        return f"...{val[-5:]}"

    def secret(val) -> str:
        return mask(val.get_secret_value() if val else None)

    table = Table(title="devorch configuration")
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row("profile", settings.profile or "[dim](none)[/dim]")
    table.add_row("github_auth", settings.github_auth)
    table.add_row("github_token", secret(settings.github_token))
    table.add_row("github_client_id", settings.github_client_id or "[dim](not set)[/dim]")
    table.add_row("agent_api_key", secret(settings.agent_api_key))
    table.add_row("relay_url", settings.relay_url)
    table.add_row("agent_api_base", settings.agent_api_base)
    table.add_row("reconcile_delay", f"{settings.reconcile_delay:g}s")
    table.add_row(
        "confidence_poll",
        f"{settings.confidence_poll_interval:g}s x{settings.confidence_poll_backoff:g} "
        f"(max {settings.confidence_poll_max_interval:g}s, {settings.confidence_poll_max_attempts} attempts)",
    )

    rprint(table)


@app.command("login")
def login() -> None:
    """Interactive first-time setup wizard."""
    rprint("[bold]devorch setup[/bold]")
    rprint("")

    profile_name = typer.prompt("Profile name (e.g. work, personal)", default="default").strip()
    if not profile_name:
        rprint("[red]Profile name cannot be empty.[/red]")
        raise typer.Exit(1)

    profile_config: dict = {}
    github_token: str | None = None

    auth_method = (
        typer.prompt(
            "Authenticate to GitHub via gh CLI or paste a Personal Access Token? [gh-cli/token]",
            default="token",
        )
        .strip()
        .lower()
    )
    if auth_method == "gh-cli":
        result = subprocess.run(["gh", "auth", "status"], capture_output=True)
        if result.returncode != 0:
            rprint("[red]gh not found or not authenticated. Run: gh auth login[/red]")
            raise typer.Exit(1)
        profile_config["github_auth"] = "gh-cli"
        rprint("[green]✓[/green] gh CLI authenticated.")
    elif auth_method == "token":
        rprint("Create a token at: https://github.com/settings/tokens")
        rprint("Required scopes: repo, read:user")
        github_token = typer.prompt("Paste GitHub token", hide_input=True).strip()
        profile_config["github_auth"] = "token"
    else:
        rprint("[red]Invalid auth method. Choose 'gh-cli' or 'token'.[/red]")
        raise typer.Exit(1)

    agent_key = typer.prompt("Paste agent service API key", hide_input=True).strip()
    relay_url = typer.prompt("Relay URL", default=DevorchSettings.model_fields["relay_url"].default).strip()
    profile_config["relay_url"] = relay_url

    set_as_default = typer.confirm(f"Set '{profile_name}' as default profile?", default=True)

    # Round-trip preserves any existing comments
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    doc = tomlkit.parse(CONFIG_PATH.read_text()) if CONFIG_PATH.exists() else tomlkit.document()
    if profile_name not in doc:
        doc.add(profile_name, tomlkit.table())
    for key, value in profile_config.items():
        doc[profile_name][key] = value
    if set_as_default:
        doc["default_profile"] = profile_name
    CONFIG_PATH.write_text(tomlkit.dumps(doc))
    _load_toml.cache_clear()

    store = CredentialStore(profile=profile_name, path=CONFIG_PATH)
    if github_token:
        store.set_token(CredentialKind.SOURCE_CONTROL, github_token)
    if agent_key:
        store.set_token(CredentialKind.AGENT_SERVICE, agent_key)
    rprint(f"[green]✓[/green] Profile '{profile_name}' written to {CONFIG_PATH}")

    if typer.confirm("Check the GitHub credentials now?", default=True):
        try:
            user = GitHubProvider(get_settings(profile=profile_name)).get_user()
            rprint(f"[green]✓[/green] Connected as {user.login}.")
        except (DevorchError, httpx.HTTPError) as exc:
            rprint(f"[yellow]Warning:[/yellow] Could not fetch GitHub user: {exc}")

    rprint("")
    config_show(profile=profile_name)
