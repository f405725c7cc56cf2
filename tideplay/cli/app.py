"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import os
import sys
import threading
from pathlib import Path

import typer
from rich.console import Console
from rich.live import Live
from rich.logging import RichHandler

from tideplay import __version__
from tideplay.api.auth import TokenManager
from tideplay.api.catalog import CatalogClient
from tideplay.core.fetcher import StreamFetcher
from tideplay.core.output import SoundDeviceOutput
from tideplay.core.player import Player
from tideplay.exceptions import TideplayError
from tideplay.models import events
from tideplay.models.config import PlayerConfig
from tideplay.models.track import Track
from tideplay.storage.config_manager import ConfigManager
from tideplay.storage.token_store import StoredToken, TokenStore

from .formatters import (
    print_config,
    print_queue_table,
    print_validation_table,
    render_status_line,
)

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("tideplay")

app = typer.Typer(
    name="tideplay",
    help=(
        "A streaming terminal music player with gapless navigation and instant"
        " backward seeking. Use 'tideplay <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if override := os.getenv("TIDEPLAY_CONFIG"):
        return Path(override).expanduser()
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "tideplay"


def config_file() -> Path:
    return get_config_dir() / "config.ini"


def token_file() -> Path:
    return get_config_dir() / "token.json"


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
):
    """Tideplay streaming player"""
    if version:
        console.print(f"[bold]tideplay[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "WARNING"
    if verbose == 1:
        log_level = "INFO"
    elif verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("tideplay").setLevel(log_level)

    if show_config:
        path = config_file()
        if not path.is_file():
            console.print(
                "[red]✗ Config file not found.[/] Run [cyan]tideplay init[/cyan]"
                " first."
            )
            raise typer.Exit(code=1)
        print_config(path, ConfigManager(path).as_dict())
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    client_id: str = typer.Option("", "--client-id", help="OAuth application id."),
    client_secret: str = typer.Option(
        "", "--client-secret", help="OAuth application secret."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration."
    ),
):
    """Create the configuration file."""
    path = config_file()
    if (
        path.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {"client_id": client_id, "client_secret": client_secret}
    try:
        PlayerConfig(**settings)
    except ValueError as e:
        console.print(f"[red]✗ Invalid settings: {e}[/red]")
        raise typer.Exit(code=1) from e

    ConfigManager(path).save_new_config(settings)
    console.print(f"\n[bold green]✓ Configuration saved to '{path}'[/bold green]")
    console.print("Next, store a session: [cyan]tideplay login ACCESS_TOKEN[/cyan]")


@app.command()
def login(
    access_token: str = typer.Argument(..., help="OAuth access token."),
    refresh_token: str | None = typer.Argument(None, help="OAuth refresh token."),
    expires_in: float | None = typer.Option(
        None, "--expires-in", help="Seconds until the access token expires."
    ),
):
    """Store an OAuth token pair for streaming."""
    payload = {"access_token": access_token, "refresh_token": refresh_token}
    if expires_in:
        payload["expires_in"] = expires_in
    token = StoredToken.from_token_response(payload)
    asyncio.run(TokenStore(token_file()).save(token))
    console.print(f"[green]✓ Token saved to '{token_file()}'.[/green]")
    if not refresh_token:
        console.print(
            "[yellow]⚠️  No refresh token given; you will need to log in again"
            " when the access token expires.[/yellow]"
        )


@app.command()
def logout():
    """Remove the stored OAuth token."""
    if asyncio.run(TokenStore(token_file()).clear()):
        console.print("[green]✓ Logged out.[/green]")
    else:
        console.print("[yellow]No stored session.[/yellow]")


@app.command()
def validate():
    """Validate the current configuration and stored session."""
    try:
        config = ConfigManager(config_file()).load_config()
    except TideplayError as e:
        console.print(f"[red]✗ Configuration is invalid: {e}[/red]")
        raise typer.Exit(code=1) from e

    token = asyncio.run(TokenStore(token_file()).load())
    if token is None:
        token_status = "[red]✗ Not logged in[/red]"
    elif token.is_expired():
        token_status = "[yellow]Access token expired[/yellow]"
    else:
        token_status = "[green]✓ Logged in[/green]"
    print_validation_table(config, token_status)


COMMANDS = {
    "n": events.Next,
    "p": events.Previous,
    "t": events.Toggle,
}


def parse_command(line: str, seek_step: float) -> events.Event | None:
    """Maps one line typed during playback to a player command."""
    if line.strip() == "" and line != "":
        # A line of only spaces is the space-bar toggle.
        return events.Toggle()
    text = line.strip().lower()
    if text == "q":
        return events.Shutdown()
    if text == "+":
        return events.SeekBy(seek_step)
    if text == "-":
        return events.SeekBy(-seek_step)
    if text.startswith("s "):
        try:
            return events.Seek(float(text[2:]))
        except ValueError:
            return None
    if text in COMMANDS:
        return COMMANDS[text]()
    return None


def _start_command_reader(player: Player, seek_step: float) -> threading.Thread:
    """Reads stdin on a daemon thread so a blocked read never delays exit."""

    def reader() -> None:
        for line in sys.stdin:
            command = parse_command(line.rstrip("\n"), seek_step)
            if command is None:
                continue
            player.post_threadsafe(command)
            if isinstance(command, events.Shutdown):
                return
        player.post_threadsafe(events.Shutdown())

    thread = threading.Thread(target=reader, name="stdin-commands", daemon=True)
    thread.start()
    return thread


async def _load_tracks(
    catalog: CatalogClient,
    track_ids: list[str] | None,
    likes: bool = False,
    playlist: str | None = None,
    search: str | None = None,
    user: str | None = None,
    feed: bool = False,
    following: bool = False,
) -> list[Track]:
    if likes:
        return await catalog.get_liked_tracks()
    if playlist:
        return await catalog.get_playlist_tracks(playlist)
    if search:
        return await catalog.search_tracks(search)
    if user:
        return await catalog.get_user_tracks(user)
    if feed:
        return await catalog.get_activity_feed()
    if following:
        return await catalog.get_followed_tracks()
    return list(await asyncio.gather(*(catalog.get_track(t) for t in track_ids or [])))


@app.command()
def play(
    track_ids: list[str] | None = typer.Argument(  # noqa: B008
        None, help="One or more track ids to queue."
    ),
    likes: bool = typer.Option(False, "--likes", help="Queue your liked tracks."),
    playlist: str | None = typer.Option(
        None, "--playlist", help="Queue the tracks of a playlist."
    ),
    search: str | None = typer.Option(
        None, "--search", help="Queue the results of a track search."
    ),
    user: str | None = typer.Option(
        None, "--user", help="Queue the tracks uploaded by a user."
    ),
    feed: bool = typer.Option(
        False, "--feed", help="Queue recent tracks from your activity feed."
    ),
    following: bool = typer.Option(
        False, "--following", help="Queue tracks from the accounts you follow."
    ),
    start: int = typer.Option(1, "--start", help="1-based queue position to start at."),
    volume: float | None = typer.Option(None, "--volume", help="Volume, 0.0 to 1.0."),
):
    """Stream tracks. Type n, p, t, +, -, 's SECONDS' or q and press Enter."""
    if not (track_ids or likes or playlist or search or user or feed or following):
        console.print(
            "[red]✗ Nothing to play.[/red] Pass track ids, [cyan]--likes[/cyan], "
            "[cyan]--playlist ID[/cyan], [cyan]--search TEXT[/cyan], "
            "[cyan]--user ID[/cyan], [cyan]--feed[/cyan] or [cyan]--following[/cyan]."
        )
        raise typer.Exit(code=1)

    config = ConfigManager(config_file()).load_config({"volume": volume})

    async def _play_async():
        tokens = TokenManager(config, TokenStore(token_file()))
        catalog = CatalogClient(config, tokens)
        fetcher = StreamFetcher(
            tokens,
            max_attempts=config.fetch_max_attempts,
            base_delay=config.fetch_base_delay,
            timeout=config.fetch_timeout,
            max_connections=config.max_connections,
        )
        output = None
        try:
            tracks = await _load_tracks(
                catalog, track_ids, likes, playlist, search, user, feed, following
            )
            if not tracks:
                console.print("[yellow]No playable tracks found.[/yellow]")
                return
            print_queue_table(tracks, start - 1)

            output = SoundDeviceOutput(volume=config.volume)
            player = Player(config, fetcher, output)

            with Live(
                render_status_line(player.state, None),
                console=console,
                refresh_per_second=10,
            ) as live:

                def on_notification(notification: events.Notification) -> None:
                    if isinstance(notification, events.StreamError):
                        live.console.print(
                            f"[yellow]⚠️  Track {notification.track_id}: "
                            f"{notification.kind.value} {notification.message}[/yellow]"
                        )
                    elif isinstance(notification, events.ReauthRequired):
                        live.console.print(
                            "[red]✗ Session expired. Run [cyan]tideplay login[/cyan]"
                            " again.[/red]"
                        )
                        player.shutdown()
                    elif isinstance(notification, events.QueueExhausted):
                        player.shutdown()
                    live.update(
                        render_status_line(
                            player.state,
                            player.current_track,
                            player.cache.total_bytes,
                        )
                    )

                player.subscribe(on_notification)
                player.start_queue(tracks, start - 1)
                _start_command_reader(player, config.seek_step)
                await player.run()
            await player.close()
        finally:
            await catalog.close()
            await fetcher.close()
            await tokens.close()
            if output is not None:
                output.close()

    asyncio.run(_play_async())
