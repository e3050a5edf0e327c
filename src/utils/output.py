"""Utility functions for formatted CLI output."""

from typing import Any

import click


def print_header(title: str, width: int = 70, color: str = "cyan") -> None:
    """Print a formatted header.

    Args:
        title: Header title
        width: Header width
        color: Header color
    """
    click.echo()
    click.echo(click.style("=" * width, fg=color))
    click.echo(click.style(title, fg=color, bold=True))
    click.echo(click.style("=" * width, fg=color))


def print_section(title: str, color: str = "yellow") -> None:
    """Print a section title."""
    click.echo(click.style(f"\n{title}:", fg=color, bold=True))


def print_key_value(
    key: str, value: Any, key_color: str = "white", value_color: str = "cyan"
) -> None:
    """Print a key-value pair.

    Args:
        key: Key name
        value: Value
        key_color: Key color
        value_color: Value color
    """
    click.echo(
        click.style(f"  {key}: ", fg=key_color) + click.style(str(value), fg=value_color, bold=True)
    )


def format_duration(seconds: float) -> str:
    """Format seconds as HH:MM:SS."""
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def print_summary(stats: dict[str, Any], title: str = "Summary") -> None:
    """Print the job summary of a move.

    Args:
        stats: Summary as returned by ArchiveJob.summary()
        title: Summary title
    """
    print_header(title)

    print_section("Time")
    print_key_value("Start", stats.get("start_time") or "N/A")
    print_key_value("End", stats.get("end_time") or "N/A")
    print_key_value("Duration", format_duration(stats.get("duration_seconds", 0.0)))

    for side in ("source", "target"):
        endpoint = stats.get(side)
        if not endpoint:
            continue
        print_section(side.capitalize())
        print_key_value("Address", endpoint.get("address"))
        print_key_value("Database", endpoint.get("database"))
        print_key_value("Table", f"{endpoint.get('schema')}.{endpoint.get('table')}")
        print_key_value("Charset", endpoint.get("charset"))

    counts = stats.get("counts", {})
    print_section("Rows")
    print_key_value("Selected", f"{counts.get('selected', 0):,}")
    print_key_value("Inserted", f"{counts.get('inserted', 0):,}")
    print_key_value("Deleted", f"{counts.get('deleted', 0):,}")
    if "batches" in stats:
        print_key_value("Batches", stats["batches"])

    click.echo()
