"""Health check — validates configuration and connectivity (``tweetbridge doctor``)."""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any

from rich import box
from rich.table import Table

from tweetbridge.config import BridgeConfig
from tweetbridge.errors import StateError, TransportError
from tweetbridge.mattermost import MattermostClient
from tweetbridge.state import StateStore
from tweetbridge.twitter import TwitterClient
from tweetbridge.ui import console, print_status

# Checks that run without touching the network come first
LOCAL = "local"
REMOTE = "remote"

PASS, FAIL, SKIP = "pass", "fail", "skip"

_STATUS_STYLE = {
    PASS: "[bold green]PASS[/bold green]",
    FAIL: "[bold red]FAIL[/bold red]",
    SKIP: "[dim]SKIP[/dim]",
}


@dataclass
class CheckResult:
    name: str
    scope: str
    status: str
    message: str
    hint: str = ""

    @property
    def passed(self) -> bool:
        return self.status != FAIL


async def collect_results(
    config: BridgeConfig,
    *,
    chat: Any = None,
    timeline: Any = None,
) -> list[CheckResult]:
    """Run every check. Remote checks are skipped while the config is unusable."""
    results = [_check_config(config), _check_state_file(config)]
    if results[0].status == FAIL:
        results += [
            CheckResult("Mattermost", REMOTE, SKIP, "configuration incomplete"),
            CheckResult("Twitter", REMOTE, SKIP, "configuration incomplete"),
        ]
        return results

    chat = chat if chat is not None else MattermostClient(config.url)
    timeline = timeline if timeline is not None else TwitterClient(
        config.consumer_key, config.consumer_secret, config.access_token, config.access_secret,
    )
    try:
        results.append(await _check_mattermost(config, chat))
        results.append(await _check_twitter(timeline))
    finally:
        await chat.aclose()
        await timeline.aclose()
    return results


async def run_doctor(config: BridgeConfig, *, json_output: bool = False) -> bool:
    """Run all health checks and display results. Returns True if none failed."""
    results = await collect_results(config)

    if json_output:
        grouped: dict[str, list[dict[str, Any]]] = {LOCAL: [], REMOTE: []}
        for r in results:
            grouped[r.scope].append(asdict(r))
        console.print(json.dumps(grouped, indent=2))
    else:
        _print_results(config, results)
    return all(r.passed for r in results)


# ── Local checks ────────────────────────────────────────────────────────


def _check_config(config: BridgeConfig) -> CheckResult:
    problems = config.problems()
    if problems:
        return CheckResult(
            "Configuration", LOCAL, FAIL, "; ".join(problems),
            hint="Set the missing values in .env or the --config file",
        )
    auth = "token" if config.token else f"password for {config.user}"
    return CheckResult(
        "Configuration", LOCAL, PASS,
        f"team={config.team} channel={config.channel} auth={auth} every {config.check_interval}s",
    )


def _check_state_file(config: BridgeConfig) -> CheckResult:
    path = config.data_path
    try:
        state = StateStore(path).load()
    except StateError as e:
        return CheckResult(
            "State file", LOCAL, FAIL, str(e),
            hint="Fix or remove the file; a missing file starts in open mode",
        )
    if not path.is_file():
        return CheckResult("State file", LOCAL, PASS, f"{path} (not created yet, open mode)")
    mode = "open mode" if not state.trusted else f"{len(state.trusted)} trust entries"
    return CheckResult("State file", LOCAL, PASS, f"{path}: {mode}, cursor {state.last_post}")


# ── Remote checks ───────────────────────────────────────────────────────


async def _check_mattermost(config: BridgeConfig, chat: Any) -> CheckResult:
    try:
        await chat.ping()
    except TransportError as e:
        return CheckResult(
            "Mattermost", REMOTE, FAIL, f"{config.url} unreachable: {e}",
            hint="Check MATTERMOST_URL",
        )
    try:
        if config.token:
            chat.use_token(config.token)
            me = await chat.get_me()
        else:
            me = await chat.login(config.user, config.password)
    except TransportError as e:
        return CheckResult("Mattermost", REMOTE, FAIL, f"Login failed: {e}", hint="Check the bot credentials")
    return CheckResult("Mattermost", REMOTE, PASS, f"{config.url} as {me.username}")


async def _check_twitter(timeline: Any) -> CheckResult:
    try:
        user = await timeline.verify_credentials()
    except TransportError as e:
        return CheckResult(
            "Twitter", REMOTE, FAIL, f"Credentials rejected: {e}",
            hint="Check the four TWITTER_* keys",
        )
    return CheckResult("Twitter", REMOTE, PASS, f"Home timeline of @{user.screen_name}")


# ── Display ─────────────────────────────────────────────────────────────


def _print_results(config: BridgeConfig, results: list[CheckResult]) -> None:
    console.print()
    console.print(f"[bold cyan]Tweetbridge doctor[/bold cyan] [dim]{config.url or 'no server'}[/dim]")

    table = Table(box=box.SIMPLE, padding=(0, 2))
    table.add_column("Check", style="bold white")
    table.add_column("Status", width=6)
    table.add_column("Details")

    for scope, title in ((LOCAL, "This machine"), (REMOTE, "Remote services")):
        table.add_row(f"[cyan]{title}[/cyan]", "", "")
        for r in results:
            if r.scope != scope:
                continue
            details = r.message
            if r.status == FAIL and r.hint:
                details += f"\n[dim]{r.hint}[/dim]"
            table.add_row(f"  {r.name}", _STATUS_STYLE[r.status], details)
        if scope == LOCAL:
            table.add_section()

    console.print(table)

    failed = [r.name for r in results if r.status == FAIL]
    skipped = sum(1 for r in results if r.status == SKIP)
    if not failed:
        print_status("Ready to bridge.")
    else:
        print_status(f"Not ready: {', '.join(failed)} failed", style="red")
    if skipped:
        print_status(f"{skipped} remote check(s) skipped until the configuration is complete", style="yellow")
    console.print()
