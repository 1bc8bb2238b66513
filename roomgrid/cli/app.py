"""
Main CLI application using Typer.

Every command acts on behalf of the user named with ``--as``; rooms are kept
as JSON documents under the configured data directory.
"""

import logging
from pathlib import Path
from typing import Annotated, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..adapters.preference_store import YamlPreferenceStore
from ..adapters.room_store import JsonFileRoomStore
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import RoomGridError
from ..domain.models import SlotSpec
from ..domain.requests import SlotRelease, SlotSwap, TimeChange, TimeRequest
from ..domain.room import Room
from ..services.coordination import CoordinationService, SlotView

app = typer.Typer(
    name="roomgrid",
    help="Coordinate a shared weekly time grid between a room owner and its members",
    add_completion=False,
)

console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./roomgrid.yaml"),
]
ActorOption = Annotated[str, typer.Option("--as", help="User id (or configured name) to act as")]

REQUEST_KINDS = ("time_request", "time_change", "slot_release", "slot_swap")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _resolve_path(base: Path, path: Path) -> Path:
    return path if path.is_absolute() else base / path


def _load(config_file: Optional[Path]):
    """Load configuration and build a service over the file stores."""
    config_path = config_file or get_default_config_path()
    config = AppConfig.load_from_yaml(config_path)
    _configure_logging(config.log_level)

    base = config_path.resolve().parent
    service = CoordinationService(
        room_store=JsonFileRoomStore(_resolve_path(base, config.storage.data_dir)),
        preference_store=YamlPreferenceStore(_resolve_path(base, config.storage.preferences_file)),
        config=config,
    )
    return config, service


def _actor(config: AppConfig, identifier: str) -> str:
    user = config.find_user(identifier)
    return user.id if user else identifier


def _fail(error: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {error}")
    raise typer.Exit(1)


def _parse_slot(value: str, date: Optional[str] = None) -> SlotSpec:
    """
    Parse ``DAY@HH:MM-HH:MM`` (for example ``monday@10:00-11:00``).
    """
    day, sep, times = value.partition("@")
    start, dash, end = times.partition("-")
    if not sep or not dash:
        raise typer.BadParameter(f"Expected DAY@HH:MM-HH:MM, got '{value}'")
    return SlotSpec(day=day, start_time=start, end_time=end, date=date)


def _print_slots(views: List[SlotView], title: str = "Time slots") -> None:
    if not views:
        console.print("[yellow]No time slots.[/yellow]")
        return

    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Day", style="bold")
    table.add_column("Date", style="dim")
    table.add_column("Time")
    table.add_column("Member")
    table.add_column("Subject", style="dim")
    table.add_column("Status")
    table.add_column("Id", style="dim")

    status_styles = {"conflict": "bold red", "assigned": "green", "confirmed": "cyan"}
    ordered = sorted(views, key=lambda v: (str(v.slot.date or ""), v.slot.day, v.slot.start_time))
    for view in ordered:
        slot = view.slot
        style = status_styles.get(slot.status.value, "")
        table.add_row(
            slot.day.capitalize(),
            slot.date.isoformat() if slot.date else "",
            f"{slot.start_time}-{slot.end_time}",
            f"[{view.color}]{view.display_name}[/{view.color}]" if view.color else view.display_name,
            slot.subject,
            f"[{style}]{slot.status.value}[/{style}]" if style else slot.status.value,
            slot.id[:8],
        )
    console.print(table)


def _print_room(config: AppConfig, room: Room) -> None:
    console.print(Panel.fit(
        f"[bold]{room.name}[/bold]\n"
        f"{room.description}\n\n"
        f"[bold]Id:[/bold] {room.id}\n"
        f"[bold]Invite code:[/bold] {room.invite_code}\n"
        f"[bold]Owner:[/bold] {config.display_name(room.owner_id)}\n"
        f"[bold]Members:[/bold] {room.member_count}/{room.max_members}\n"
        f"[bold]Hours:[/bold] {room.settings.start_hour}:00 - {room.settings.end_hour}:00",
        title="Room",
    ))


@app.command()
def create_room(
    name: Annotated[str, typer.Argument(help="Room name")],
    actor: ActorOption,
    description: Annotated[str, typer.Option("--description", "-d", help="Room description")] = "",
    max_members: Annotated[Optional[int], typer.Option("--max-members", help="Member capacity")] = None,
    config_file: ConfigOption = None,
):
    """
    Create a room owned by the acting user.
    """
    try:
        config, service = _load(config_file)
        room = service.create_room(_actor(config, actor), name, description=description, max_members=max_members)
        console.print("[green]✓ Room created[/green]")
        _print_room(config, room)
    except (FileNotFoundError, ValueError, RoomGridError) as e:
        _fail(e)


@app.command()
def join(
    invite_code: Annotated[str, typer.Argument(help="Six-character invite code")],
    actor: ActorOption,
    config_file: ConfigOption = None,
):
    """
    Join a room by invite code.
    """
    try:
        config, service = _load(config_file)
        room = service.join_room(invite_code, _actor(config, actor))
        console.print(f"[green]✓ Joined '{room.name}'[/green] ({room.member_count}/{room.max_members} members)")
    except (FileNotFoundError, ValueError, RoomGridError) as e:
        _fail(e)


@app.command()
def rooms(actor: ActorOption, config_file: ConfigOption = None):
    """
    List the rooms the acting user owns or has joined.
    """
    try:
        config, service = _load(config_file)
        listing = service.list_rooms(_actor(config, actor))
        table = Table(title="Rooms", show_header=True, header_style="bold cyan")
        table.add_column("Role", style="bold")
        table.add_column("Name")
        table.add_column("Invite code")
        table.add_column("Members")
        table.add_column("Id", style="dim")
        for role, found in (("owner", listing["owned"]), ("member", listing["joined"])):
            for room in found:
                table.add_row(role, room.name, room.invite_code, f"{room.member_count}/{room.max_members}", room.id)
        console.print(table)
    except (FileNotFoundError, ValueError, RoomGridError) as e:
        _fail(e)


@app.command()
def show(
    room_id: Annotated[str, typer.Argument(help="Room id")],
    actor: ActorOption,
    config_file: ConfigOption = None,
):
    """
    Show a room, its members and its time slots.
    """
    try:
        config, service = _load(config_file)
        room = service.get_room(room_id, _actor(config, actor))
        _print_room(config, room)

        members = Table(title="Members", show_header=True, header_style="bold cyan")
        members.add_column("Member")
        members.add_column("Role")
        members.add_column("Colour")
        for member in room.members:
            members.add_row(config.display_name(member.user_id), member.role.value, f"[{member.color}]{member.color}[/{member.color}]")
        console.print(members)

        _print_slots(service.slot_views(room))

        pending = room.pending_requests()
        if pending:
            console.print(f"\n[bold]{len(pending)} pending request(s)[/bold]")
            for request in pending:
                console.print(
                    f"  {request.id[:8]}  {request.type.value:<16} {config.display_name(request.requester_id)}"
                    f"  {request.payload.time_slot}"
                )
    except (FileNotFoundError, ValueError, RoomGridError) as e:
        _fail(e)


@app.command()
def submit(
    room_id: Annotated[str, typer.Argument(help="Room id")],
    actor: ActorOption,
    slots: Annotated[Optional[List[str]], typer.Argument(help="Slots as DAY@HH:MM-HH:MM")] = None,
    date: Annotated[Optional[str], typer.Option("--date", help="Pin the slots to a date (YYYY-MM-DD)")] = None,
    clear: Annotated[bool, typer.Option("--clear", help="Remove all of your slots in the room")] = False,
    config_file: ConfigOption = None,
):
    """
    Submit your available time slots (accumulative).
    """
    if not slots and not clear:
        console.print("[red]Error: give at least one slot or use --clear.[/red]")
        raise typer.Exit(1)

    try:
        config, service = _load(config_file)
        specs = [] if clear else [_parse_slot(value, date) for value in slots]
        views = service.submit_slots(room_id, _actor(config, actor), specs)
        _print_slots(views)
    except (FileNotFoundError, ValueError, RoomGridError) as e:
        _fail(e)


@app.command()
def remove_slot(
    room_id: Annotated[str, typer.Argument(help="Room id")],
    slot: Annotated[str, typer.Argument(help="Slot as DAY@HH:MM-HH:MM")],
    actor: ActorOption,
    config_file: ConfigOption = None,
):
    """
    Remove one of your own slots.
    """
    try:
        config, service = _load(config_file)
        spec = _parse_slot(slot)
        views = service.remove_slot(room_id, _actor(config, actor), spec.day, spec.start_time, spec.end_time)
        _print_slots(views)
    except (FileNotFoundError, ValueError, RoomGridError) as e:
        _fail(e)


@app.command()
def assign(
    room_id: Annotated[str, typer.Argument(help="Room id")],
    slot: Annotated[str, typer.Argument(help="Slot as DAY@HH:MM-HH:MM")],
    actor: ActorOption,
    to: Annotated[str, typer.Option("--to", help="Member receiving the slot")],
    date: Annotated[Optional[str], typer.Option("--date", help="Pin the slot to a date (YYYY-MM-DD)")] = None,
    config_file: ConfigOption = None,
):
    """
    Assign a slot to a member (owner only).
    """
    try:
        config, service = _load(config_file)
        spec = _parse_slot(slot, date)
        views = service.assign_slot(
            room_id, _actor(config, actor), spec.day, spec.start_time, spec.end_time,
            _actor(config, to), date=date,
        )
        _print_slots(views)
    except (FileNotFoundError, ValueError, RoomGridError) as e:
        _fail(e)


@app.command()
def delete_slot(
    room_id: Annotated[str, typer.Argument(help="Room id")],
    actor: ActorOption,
    slot_id: Annotated[Optional[str], typer.Argument(help="Slot id (see 'show')")] = None,
    all_slots: Annotated[bool, typer.Option("--all", help="Delete every slot in the room")] = False,
    config_file: ConfigOption = None,
):
    """
    Delete a slot by id, or all slots (owner only).
    """
    if not slot_id and not all_slots:
        console.print("[red]Error: give a slot id or use --all.[/red]")
        raise typer.Exit(1)

    try:
        config, service = _load(config_file)
        user_id = _actor(config, actor)
        if all_slots:
            views = service.delete_all_slots(room_id, user_id)
        else:
            room = service.get_room(room_id, user_id)
            matches = [s.id for s in room.time_slots if s.id.startswith(slot_id)]
            full_id = matches[0] if len(matches) == 1 else slot_id
            views = service.delete_slot(room_id, user_id, full_id)
        _print_slots(views)
    except (FileNotFoundError, ValueError, RoomGridError) as e:
        _fail(e)


@app.command()
def request(
    room_id: Annotated[str, typer.Argument(help="Room id")],
    kind: Annotated[str, typer.Argument(help=f"One of: {', '.join(REQUEST_KINDS)}")],
    slot: Annotated[str, typer.Argument(help="Slot as DAY@HH:MM-HH:MM")],
    actor: ActorOption,
    replaces: Annotated[Optional[str], typer.Option("--replaces", help="Slot being changed (time_change)")] = None,
    to: Annotated[Optional[str], typer.Option("--to", help="Member holding the slot (slot_swap)")] = None,
    message: Annotated[str, typer.Option("--message", "-m", help="Note for the recipient")] = "",
    config_file: ConfigOption = None,
):
    """
    File a negotiation request.
    """
    if kind not in REQUEST_KINDS:
        console.print(f"[red]Error: unknown request kind '{kind}'. Use one of: {', '.join(REQUEST_KINDS)}[/red]")
        raise typer.Exit(1)

    try:
        config, service = _load(config_file)
        spec = _parse_slot(slot)
        if kind == "time_request":
            payload = TimeRequest(time_slot=spec)
        elif kind == "slot_release":
            payload = SlotRelease(time_slot=spec)
        elif kind == "time_change":
            if not replaces:
                raise typer.BadParameter("time_change needs --replaces")
            payload = TimeChange(time_slot=spec, target_slot=_parse_slot(replaces))
        else:
            if not to:
                raise typer.BadParameter("slot_swap needs --to")
            payload = SlotSwap(time_slot=spec, target_user_id=_actor(config, to))

        created = service.create_request(room_id, _actor(config, actor), payload, message=message)
        console.print(f"[green]✓ Request {created.id} filed[/green]")
    except (FileNotFoundError, ValueError, RoomGridError) as e:
        _fail(e)


@app.command()
def requests(
    actor: ActorOption,
    sent: Annotated[bool, typer.Option("--sent", help="Show requests you sent instead of received")] = False,
    config_file: ConfigOption = None,
):
    """
    List requests waiting on you (or the ones you sent).
    """
    try:
        config, service = _load(config_file)
        found = service.list_requests(_actor(config, actor), "sent" if sent else "received")
        if not found:
            console.print("[yellow]No requests.[/yellow]")
            return
        table = Table(title="Requests", show_header=True, header_style="bold cyan")
        table.add_column("Id", style="dim")
        table.add_column("Type")
        table.add_column("From")
        table.add_column("Slot")
        table.add_column("Status")
        for item in found:
            table.add_row(
                item.id, item.type.value, config.display_name(item.requester_id),
                str(item.payload.time_slot), item.status.value,
            )
        console.print(table)
    except (FileNotFoundError, ValueError, RoomGridError) as e:
        _fail(e)


@app.command()
def handle(
    request_id: Annotated[str, typer.Argument(help="Request id")],
    decision: Annotated[str, typer.Argument(help="approved or rejected")],
    actor: ActorOption,
    config_file: ConfigOption = None,
):
    """
    Approve or reject a pending request.
    """
    try:
        config, service = _load(config_file)
        handled = service.handle_request(request_id, _actor(config, actor), decision.lower())
        console.print(f"[green]✓ Request {handled.id} {handled.status.value}[/green]")
    except (FileNotFoundError, ValueError, RoomGridError) as e:
        _fail(e)


@app.command()
def cancel(
    request_id: Annotated[str, typer.Argument(help="Request id")],
    actor: ActorOption,
    config_file: ConfigOption = None,
):
    """
    Withdraw one of your pending requests.
    """
    try:
        config, service = _load(config_file)
        service.cancel_request(request_id, _actor(config, actor))
        console.print(f"[green]✓ Request {request_id} cancelled[/green]")
    except (FileNotFoundError, ValueError, RoomGridError) as e:
        _fail(e)


@app.command()
def auto_assign(
    room_id: Annotated[str, typer.Argument(help="Room id")],
    actor: ActorOption,
    config_file: ConfigOption = None,
):
    """
    Approve every pending time request that is still free (owner only).
    """
    try:
        config, service = _load(config_file)
        report = service.auto_assign(room_id, _actor(config, actor))
        console.print(f"[green]✓ {report.assigned_count} request(s) assigned[/green]")
        for conflict in report.conflicts:
            console.print(
                f"  [yellow]⚠ {config.display_name(conflict.requester_id)}: "
                f"{conflict.day} {conflict.start_time}-{conflict.end_time} is taken[/yellow]"
            )
    except (FileNotFoundError, ValueError, RoomGridError) as e:
        _fail(e)


@app.command()
def exchange(
    room_id: Annotated[str, typer.Argument(help="Room id")],
    day: Annotated[str, typer.Argument(help="Target weekday, e.g. wednesday")],
    actor: ActorOption,
    time: Annotated[Optional[str], typer.Option("--time", help="Target start time (HH:MM)")] = None,
    from_day: Annotated[Optional[str], typer.Option("--from-day", help="Only move a block on this weekday")] = None,
    config_file: ConfigOption = None,
):
    """
    Move your assigned block to another day or time.
    """
    try:
        config, service = _load(config_file)
        outcome = service.smart_exchange(room_id, _actor(config, actor), day, target_time=time, source_day=from_day)
        if outcome.needs_approval:
            console.print(f"[yellow]⚠ {outcome.message}[/yellow]")
            console.print(f"  Request id: {outcome.request_id}")
        else:
            console.print(f"[green]✓ {outcome.message}[/green]")
    except (FileNotFoundError, ValueError, RoomGridError) as e:
        _fail(e)


@app.command()
def remove_member(
    room_id: Annotated[str, typer.Argument(help="Room id")],
    member: Annotated[str, typer.Argument(help="Member to remove")],
    actor: ActorOption,
    config_file: ConfigOption = None,
):
    """
    Remove a member with their slots and requests (owner only).
    """
    try:
        config, service = _load(config_file)
        room = service.remove_member(room_id, _actor(config, member), _actor(config, actor))
        console.print(f"[green]✓ Removed {member}[/green] ({room.member_count}/{room.max_members} members)")
    except (FileNotFoundError, ValueError, RoomGridError) as e:
        _fail(e)


@app.command()
def leave(
    room_id: Annotated[str, typer.Argument(help="Room id")],
    actor: ActorOption,
    config_file: ConfigOption = None,
):
    """
    Leave a room you joined.
    """
    try:
        config, service = _load(config_file)
        room = service.leave_room(room_id, _actor(config, actor))
        console.print(f"[green]✓ Left '{room.name}'[/green]")
    except (FileNotFoundError, ValueError, RoomGridError) as e:
        _fail(e)


@app.command()
def users(config_file: ConfigOption = None):
    """
    List all configured users.
    """
    try:
        config_path = config_file or get_default_config_path()
        config = AppConfig.load_from_yaml(config_path)

        if not config.users:
            console.print("[yellow]No users defined in the config file.[/yellow]")
            return

        table = Table(title="Configured users", show_header=True, header_style="bold cyan")
        table.add_column("Id", style="bold yellow")
        table.add_column("Name")
        table.add_column("E-Mail", style="dim")

        for user in config.users:
            table.add_row(user.id, user.name, user.email)

        console.print()
        console.print(table)
        console.print()

    except (FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]roomgrid[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
