"""
Helper functions for formatting data into human-readable strings.
"""


def format_size(bytes_size: float) -> str:
    """Formats bytes into a human-readable size string (e.g., '5.3 MB')."""
    if bytes_size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB"]
    i = 0
    while bytes_size >= 1024 and i < len(units) - 1:
        bytes_size /= 1024
        i += 1
    return f"{bytes_size:.1f} {units[i]}"


def format_timestamp(seconds: float) -> str:
    """Formats a playback position as 'm:ss', or 'h:mm:ss' past an hour."""
    s = max(0, int(seconds))
    hours, remainder = divmod(s, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def progress_bar(position: float, duration: float, width: int = 30) -> str:
    """Renders a text progress bar for the status line."""
    if duration <= 0:
        return "─" * width
    filled = min(width, int(width * position / duration))
    return "━" * filled + "─" * (width - filled)
