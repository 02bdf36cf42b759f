"""Main CLI entry point with command definitions."""

import click
import asyncio
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from rich.live import Live

from ..config import get_geolocation_config
from ..core.errors import (
    AlreadyAccepted,
    CreationFailed,
    IncidentNotFound,
    LifeSyncError,
    LocationUnavailable,
)
from ..core.incident_store import COLLECTION
from ..core.lifecycle import IncidentLifecycleCoordinator
from ..core.remote_store import RemoteIncidentStore
from ..core.responder_feed import ResponderFeed, build_snapshot
from ..models.incidents import PatientInfo
from ..services.advisory import (
    DEFAULT_CONTEXT,
    AdvisorySurface,
    get_advisory_service,
)
from ..services.geolocation import get_geolocation_acquirer
from .config import Config, ConfigError
from .session import Role, SessionStore
from .ui import (
    console,
    print_error,
    print_success,
    print_info,
    print_warning,
    format_accepted,
    format_advisory,
    format_incident,
    render_feed,
    show_progress,
)


def resolve_store_url(config: Config, url: Optional[str]) -> str:
    return url or config.store_url()


def require_role(session: SessionStore, role: Role) -> bool:
    """Report and return False unless the session holds `role`."""
    if session.role is None:
        print_error("Not logged in.")
        print_info(f"Log in with: lifesync login {role.value}")
        return False
    if session.role != role:
        print_error(f"This command is only available to the {role.value} role.")
        print_info(f"Switch with: lifesync login {role.value}")
        return False
    return True


@click.group()
@click.version_option(package_name="lifesync")
def cli():
    """LifeSync - emergency reporting and response from the terminal."""
    load_dotenv()


@cli.command()
@click.argument("role", type=click.Choice([r.value for r in Role]))
def login(role: str):
    """Select the citizen or responder role."""
    try:
        session = SessionStore(Config())
        session.login(Role(role))
        print_success(f"Logged in as {role}")
    except ConfigError as e:
        print_error(str(e))


@cli.command()
def logout():
    """Clear the selected role."""
    try:
        session = SessionStore(Config())
        previous = session.logout()
        if previous:
            print_success(f"Logged out of {previous.value} role")
        else:
            print_info("Not logged in")
    except ConfigError as e:
        print_error(str(e))


@cli.command()
def whoami():
    """Show the selected role."""
    try:
        session = SessionStore(Config())
        if session.role:
            console.print(session.role.value)
        else:
            print_info("Not logged in")
    except ConfigError as e:
        print_error(str(e))


@cli.command()
@click.option("--name", "patient_name", default="John Doe", help="Patient name")
@click.option("--blood-type", default="O+", help="Patient blood type")
@click.option("--lat", type=float, help="Latitude of the emergency")
@click.option("--lng", type=float, help="Longitude of the emergency")
@click.option("--context", default=DEFAULT_CONTEXT, help="Situation description for first-aid advice")
@click.option("--url", help="Store URL (overrides config)")
@click.option(
    "--wait/--no-wait", default=True, help="Wait until a responder accepts"
)
def sos(
    patient_name: str,
    blood_type: str,
    lat: Optional[float],
    lng: Optional[float],
    context: str,
    url: Optional[str],
    wait: bool,
):
    """Send an SOS from your current position (citizen)."""
    try:
        asyncio.run(
            sos_async(
                PatientInfo(patient_name=patient_name, blood_type=blood_type),
                lat,
                lng,
                context,
                url,
                wait,
            )
        )
    except KeyboardInterrupt:
        console.print()
        print_info("Stopped waiting. Your SOS stays open for responders.")


async def sos_async(
    patient: PatientInfo,
    lat: Optional[float],
    lng: Optional[float],
    context: str,
    url: Optional[str],
    wait: bool,
):
    """Async implementation of sos command."""
    try:
        config = Config()
        session = SessionStore(config)
        if not require_role(session, Role.CITIZEN):
            return

        geolocation = get_geolocation_acquirer(
            lat,
            lng,
            url=config.geolocation_url(),
            timeout=get_geolocation_config()["timeout"],
        )
        surface = AdvisorySurface()
        accepted = asyncio.Event()

        async with RemoteIncidentStore(resolve_store_url(config, url)) as store:
            async with IncidentLifecycleCoordinator(
                store, geolocation, get_advisory_service()
            ) as coordinator:
                try:
                    with show_progress() as progress:
                        progress.add_task("Locating and sending SOS...", total=None)
                        incident_id = await coordinator.trigger_sos(
                            patient, lambda _id: accepted.set(), surface, context
                        )
                except (LocationUnavailable, CreationFailed) as e:
                    print_error(str(e))
                    await show_advisory(coordinator, surface)
                    print_info("Retry with: lifesync sos")
                    return

                print_success(f"SOS sent: {incident_id}")

                if not wait:
                    await show_advisory(coordinator, surface)
                    print_info("Responders have been notified.")
                    return

                await wait_for_acceptance(coordinator, surface, accepted)
                console.print(format_accepted())

    except ConfigError as e:
        print_error(str(e))
    except LifeSyncError as e:
        print_error(str(e))


async def show_advisory(coordinator: IncidentLifecycleCoordinator, surface: AdvisorySurface):
    if coordinator.advisory_task is None:
        return
    with show_progress() as progress:
        progress.add_task("Preparing first-aid advice...", total=None)
        await coordinator.advisory_task
    if surface.text:
        console.print(format_advisory(surface.text))


async def wait_for_acceptance(
    coordinator: IncidentLifecycleCoordinator,
    surface: AdvisorySurface,
    accepted: asyncio.Event,
):
    """
    Wait for a responder, printing the advisory if it arrives first.

    A slow advisory never holds back the acceptance banner; if acceptance
    comes first the advisory is not waited for.
    """
    acceptance = asyncio.create_task(accepted.wait())
    waiting = {acceptance}
    if coordinator.advisory_task is not None:
        waiting.add(coordinator.advisory_task)

    try:
        with show_progress() as progress:
            progress.add_task(coordinator.status_message, total=None)
            while not acceptance.done():
                done, waiting = await asyncio.wait(
                    waiting, return_when=asyncio.FIRST_COMPLETED
                )
                if coordinator.advisory_task in done and surface.text:
                    progress.console.print(format_advisory(surface.text))
    finally:
        acceptance.cancel()


@cli.command()
@click.option("--url", help="Store URL (overrides config)")
@click.option("--watch/--no-watch", default=True, help="Keep the list updated live")
def feed(url: Optional[str], watch: bool):
    """Show all emergencies (responder)."""
    try:
        asyncio.run(feed_async(url, watch))
    except KeyboardInterrupt:
        console.print()
        print_info("Feed closed")


async def feed_async(url: Optional[str], watch: bool):
    """Async implementation of feed command."""
    try:
        config = Config()
        session = SessionStore(config)
        if not require_role(session, Role.RESPONDER):
            return

        async with RemoteIncidentStore(resolve_store_url(config, url)) as store:
            if not watch:
                console.print(render_feed(build_snapshot(await store.get(COLLECTION))))
                return

            responder_feed = ResponderFeed(store)
            try:
                with Live(render_feed([]), console=console, refresh_per_second=4) as live:
                    responder_feed.subscribe_all(
                        lambda incidents: live.update(render_feed(incidents))
                    )
                    await asyncio.Event().wait()
            finally:
                responder_feed.close()

    except ConfigError as e:
        print_error(str(e))
    except LifeSyncError as e:
        print_error(str(e))


@cli.command()
@click.argument("incident_id")
@click.option("--url", help="Store URL (overrides config)")
def accept(incident_id: str, url: Optional[str]):
    """Claim a pending emergency (responder)."""
    asyncio.run(accept_async(incident_id, url))


async def accept_async(incident_id: str, url: Optional[str]):
    """Async implementation of accept command."""
    try:
        config = Config()
        session = SessionStore(config)
        if not require_role(session, Role.RESPONDER):
            return

        async with RemoteIncidentStore(resolve_store_url(config, url)) as store:
            incident = await ResponderFeed(store).accept(incident_id)
            print_success(f"Case {incident_id} accepted")
            console.print(format_incident(incident))

    except AlreadyAccepted as e:
        print_warning(str(e))
    except IncidentNotFound as e:
        print_error(str(e))
    except ConfigError as e:
        print_error(str(e))
    except LifeSyncError as e:
        print_error(str(e))


@cli.command()
@click.option("--host", default="127.0.0.1", help="Interface to bind")
@click.option("--port", default=8000, type=int, help="Port to listen on")
def serve(host: str, port: int):
    """Run the incident store service."""
    uvicorn.run("lifesync.main:app", host=host, port=port)


@cli.group()
def config():
    """Manage CLI configuration."""
    pass


@config.command(name="set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Set a configuration value."""
    try:
        cfg = Config()
        cfg.set(key, value)
        print_success(f"Configuration updated: {key} = {value}")
    except ConfigError as e:
        print_error(str(e))


@config.command(name="get")
@click.argument("key")
def config_get(key: str):
    """Get a configuration value."""
    try:
        cfg = Config()
        value = cfg.get(key)
        if value:
            console.print(f"{key} = {value}")
        else:
            print_info(f"Configuration key '{key}' not set")
    except ConfigError as e:
        print_error(str(e))


@config.command(name="list")
def config_list():
    """List all configuration values."""
    try:
        cfg = Config()
        config_data = cfg.get_all()

        if not config_data:
            print_info("No configuration set")
            return

        console.print("[bold]Configuration:[/bold]")
        for key, value in config_data.items():
            console.print(f"  {key} = {value}")

    except ConfigError as e:
        print_error(str(e))


if __name__ == "__main__":
    cli()
