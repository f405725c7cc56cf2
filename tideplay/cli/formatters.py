"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from tideplay.models.config import PlayerConfig
from tideplay.models.state import PlaybackState, PlaybackStatus
from tideplay.models.track import Track
from tideplay.storage.config_manager import SECRET_KEYS
from tideplay.utils.formatting import format_size, format_timestamp, progress_bar

STATUS_ICONS = {
    PlaybackStatus.PLAYING: "▶",
    PlaybackStatus.PAUSED: "⏸",
    PlaybackStatus.STOPPED: "■",
    PlaybackStatus.SEEKING: "⇥",
}


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ReauthRequired": [
            "• Your session can no longer be refreshed.",
            "• Log in again with `tideplay login ACCESS_TOKEN REFRESH_TOKEN`.",
            "• Check `client_id` and `client_secret` with `tideplay --show-config`.",
        ],
        "ConfigurationError": [
            "• Run `tideplay init` to create a configuration file.",
            "• Run `tideplay validate` to check the current settings.",
        ],
        "NetworkError": [
            "• A network connection issue occurred.",
            "• The streaming service might be temporarily unavailable.",
            "• Please try again in a few minutes.",
        ],
        "NotFound": [
            "• The track or playlist no longer exists.",
            "• Check the id you passed on the command line.",
        ],
        "Forbidden": [
            "• This content may not be available in your region.",
            "• The uploader may have disabled streaming.",
        ],
        "AudioOutputError": [
            "• No usable audio device was found.",
            "• Install PortAudio (e.g. `apt install libportaudio2`).",
        ],
        "DecodeError": [
            "• The stream could not be decoded; the file may be corrupt.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration, hiding sensitive data."""
    console = Console()
    content = ""
    for key, value in config_data.items():
        if key in SECRET_KEYS and value:
            value = "********"
        content += f"{key} = {value}\n"

    console.print(
        Panel(
            content.strip(),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_validation_table(config: PlayerConfig, token_status: str):
    """Displays a summary of the current settings."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    table.add_row("Session:", token_status)
    table.add_row(
        "Token Refresh:",
        "✓ Enabled" if config.can_refresh_tokens else "✗ No client credentials",
    )
    table.add_row("Stream Cache:", f"{config.cache_capacity} tracks")
    table.add_row(
        "Fetch Retries:",
        f"{config.fetch_max_attempts} attempts, {config.fetch_base_delay:g}s base delay",
    )
    table.add_row("Volume:", f"{int(config.volume * 100)}%")
    table.add_row("API:", f"[dim]{config.api_base_url}[/dim]")

    console.print(
        Panel(
            table,
            title="[bold green]✓ Validated Settings[/bold green]",
            border_style="green",
        )
    )


def print_queue_table(tracks: list[Track], start_index: int = 0):
    """Lists the tracks about to be played."""
    console = Console()
    table = Table(title="Queue")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Artist", style="cyan")
    table.add_column("Title")
    table.add_column("Length", justify="right", style="green")
    for i, track in enumerate(tracks):
        marker = "▶ " if i == start_index else ""
        table.add_row(
            f"{marker}{i + 1}",
            track.artist,
            track.title,
            format_timestamp(track.duration),
        )
    console.print(table)


def render_status_line(
    state: PlaybackState, track: Track | None, cached_bytes: int = 0
) -> Text:
    """Builds the single status line shown while playing."""
    icon = STATUS_ICONS.get(state.status, "?")
    line = Text()
    line.append(f"{icon} ", style="bold magenta")
    if track is None:
        line.append("Nothing playing", style="dim")
        return line
    line.append(track.display_name, style="bold")
    line.append(
        f"  {format_timestamp(state.position)} "
        f"{progress_bar(state.position, state.duration)} "
        f"{format_timestamp(state.duration)}",
        style="cyan",
    )
    if cached_bytes:
        line.append(f"  [{format_size(cached_bytes)} cached]", style="dim")
    return line
