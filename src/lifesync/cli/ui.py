"""Terminal UI components and formatting."""

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.text import Text
from rich import box
from typing import List
from datetime import datetime

from ..core.lifecycle import ACCEPTED_MESSAGE
from ..models.incidents import Incident


console = Console()


def print_error(message: str):
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_success(message: str):
    """Print a success message."""
    console.print(f"[bold green]✓[/bold green] {message}")


def print_info(message: str):
    """Print an info message."""
    console.print(f"[bold blue]ℹ[/bold blue] {message}")


def print_warning(message: str):
    """Print a warning message."""
    console.print(f"[bold yellow]⚠[/bold yellow] {message}")


def format_advisory(text: str) -> Panel:
    return Panel(
        Text(text),
        title="First-Aid Protocol",
        border_style="blue",
        box=box.ROUNDED,
    )


def format_accepted() -> Panel:
    return Panel(
        Text.assemble((ACCEPTED_MESSAGE.upper(), "bold green"), "\n", ("Ambulance dispatched", "green")),
        border_style="green",
        box=box.ROUNDED,
    )


def format_timestamp(value: datetime) -> str:
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def format_incident(incident: Incident) -> Panel:
    """
    Format one incident for display.

    Args:
        incident: Incident to render

    Returns:
        Rich Panel with the incident details
    """
    lines = [
        f"[bold]Incident ID:[/bold] {incident.id}",
        f"[bold]Patient:[/bold] {incident.patient_name} ({incident.blood_type})",
        f"[bold]Status:[/bold] {format_status(incident.status.value)}",
        f"[bold]Location:[/bold] {incident.location.lat:.4f}, {incident.location.lng:.4f}",
        f"[bold]Map:[/bold] {incident.location.map_url}",
        f"[bold]Reported:[/bold] {format_timestamp(incident.created_at)}",
    ]
    if incident.accepted_at:
        lines.append(f"[bold]Accepted:[/bold] {format_timestamp(incident.accepted_at)}")

    return Panel(
        "\n".join(lines),
        title=f"Incident {incident.id[:8]}",
        border_style="red" if incident.actionable else "green",
        box=box.ROUNDED,
    )


def format_status(status: str) -> str:
    """Format status with color."""
    status_colors = {
        "pending": "red",
        "accepted": "green",
    }
    color = status_colors.get(status, "white")
    return f"[{color}]{status}[/{color}]"


def render_feed(incidents: List[Incident]):
    """
    Build the responder view. Pending cases are highlighted and claimable;
    accepted ones stay listed but dimmed.
    """
    if not incidents:
        return Text("No emergencies reported.", style="dim")

    table = Table(title="Emergencies", box=box.ROUNDED)

    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Patient")
    table.add_column("Blood")
    table.add_column("Location")
    table.add_column("Status")
    table.add_column("Reported", style="green")

    for incident in incidents:
        table.add_row(
            incident.id,
            incident.patient_name,
            incident.blood_type,
            f"{incident.location.lat:.4f}, {incident.location.lng:.4f}",
            format_status(incident.status.value),
            format_timestamp(incident.created_at),
            style=None if incident.actionable else "dim",
        )

    pending = [i for i in incidents if i.actionable]
    if not pending:
        return table
    hint = Text(f"Claim a case with: lifesync accept {pending[0].id}", style="bold")
    return Group(table, hint)


def show_progress():
    """
    Create a progress indicator context manager.

    Returns:
        Progress context manager
    """
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    )
