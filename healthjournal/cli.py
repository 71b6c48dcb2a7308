"""
Command line interface for the health journal.

Usage examples:
    healthjournal --user ana medications list
    healthjournal --user ana medications rename "Paracetamol 1g" "Paracetamol 650mg"
    healthjournal --user ana pattern set 08:00 "Paracetamol 1g"
    healthjournal --user ana day set 2024-05-01 08:30 --value 6 --medication "Paracetamol 1g"
    healthjournal --user ana export --token
    healthjournal --user ana import backup.json --yes
    healthjournal users add luis s3cret
"""

import argparse
import asyncio
import math
import sys
from collections.abc import Sequence
from pathlib import Path

import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from adapters.storage import open_store
from healthjournal.config import AppConfig, get_config
from healthjournal.domain.errors import HealthJournalError
from healthjournal.domain.models import TIME_SLOTS, TimeSlotEntry
from healthjournal.observability import configure_logging
from healthjournal.services import codec
from healthjournal.services.accounts import AccountService
from healthjournal.services.journal import JournalService, start_session
from healthjournal.services.persistence import PersistencePort

console = Console()
logger = structlog.get_logger(__name__)


def _reading(text: str) -> int | float:
    try:
        return int(text)
    except ValueError:
        pass
    try:
        value = float(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {text!r}") from None
    if not math.isfinite(value):
        raise argparse.ArgumentTypeError(f"reading must be finite: {text!r}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="healthjournal", description=__doc__.splitlines()[1])
    parser.add_argument("--user", help="Journal owner (required except for 'users')")
    parser.add_argument("--password", help="Log in through the backend before loading")
    parser.add_argument("--data-dir", type=Path, help="Override STORAGE_DATA_DIR")
    commands = parser.add_subparsers(dest="command", required=True)

    export = commands.add_parser("export", help="Write a backup file or print a transport token")
    export.add_argument("--token", action="store_true", help="Print a base64 token instead")
    export.add_argument("--output", type=Path, default=Path("."), help="File or directory")

    imp = commands.add_parser("import", help="Replace all data from a backup file or a token")
    source = imp.add_mutually_exclusive_group(required=True)
    source.add_argument("file", nargs="?", type=Path, help="Backup file (JSON)")
    source.add_argument("--token", help="Token produced by 'export --token'")
    imp.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    meds = commands.add_parser("medications", help="Manage the medication catalog")
    meds_commands = meds.add_subparsers(dest="action", required=True)
    meds_commands.add_parser("list")
    add = meds_commands.add_parser("add")
    add.add_argument("name")
    rename = meds_commands.add_parser("rename")
    rename.add_argument("old")
    rename.add_argument("new")
    delete = meds_commands.add_parser("delete")
    delete.add_argument("name")

    pattern = commands.add_parser("pattern", help="Show or edit the standard medication pattern")
    pattern_commands = pattern.add_subparsers(dest="action", required=True)
    pattern_commands.add_parser("show")
    pattern_set = pattern_commands.add_parser("set", help="Set one slot; no names clears it")
    pattern_set.add_argument("slot", help="HH:MM")
    pattern_set.add_argument("medications", nargs="*")

    day = commands.add_parser("day", help="Show, edit or pre-fill one day")
    day_commands = day.add_subparsers(dest="action", required=True)
    for action in ("show", "apply-pattern"):
        day_commands.add_parser(action).add_argument("date", help="YYYY-MM-DD")
    day_set = day_commands.add_parser("set", help="Replace one slot's entry")
    day_set.add_argument("date", help="YYYY-MM-DD")
    day_set.add_argument("slot", help="HH:MM")
    day_set.add_argument("--value", type=_reading)
    day_set.add_argument("--medication", action="append", default=[], dest="medications")
    day_set.add_argument("--comment", default="")

    users = commands.add_parser("users", help="Manage user accounts")
    users_commands = users.add_subparsers(dest="action", required=True)
    users_commands.add_parser("list")
    users_add = users_commands.add_parser("add")
    users_add.add_argument("username")
    users_add.add_argument("new_password", metavar="password")
    users_passwd = users_commands.add_parser("passwd")
    users_passwd.add_argument("username")
    users_passwd.add_argument("new_password", metavar="password")
    users_delete = users_commands.add_parser("delete", help="Delete the account and its data")
    users_delete.add_argument("username")
    users_delete.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    return parser


def _print_medications(service: JournalService) -> None:
    table = Table(title=f"Medications ({len(service.medications)})")
    table.add_column("#", justify="right")
    table.add_column("Name")
    for index, name in enumerate(service.medications, start=1):
        table.add_row(str(index), name)
    console.print(table)


def _print_pattern(service: JournalService) -> None:
    table = Table(title="Standard pattern")
    table.add_column("Time")
    table.add_column("Medications")
    pattern = service.standard_pattern
    for slot in TIME_SLOTS:
        if slot in pattern:
            table.add_row(slot, ", ".join(pattern[slot]))
    console.print(table)


def _print_day(service: JournalService, day: str) -> None:
    record = service.daily_record(day)
    if not record:
        console.print(f"[yellow]No data for {day}[/yellow]")
        return
    table = Table(title=day)
    table.add_column("Time")
    table.add_column("Value", justify="right")
    table.add_column("Medications")
    table.add_column("Comment")
    for slot in TIME_SLOTS:
        entry = record.get(slot)
        if entry is None:
            continue
        value = "" if entry.value is None else f"{entry.value:g}"
        table.add_row(slot, value, ", ".join(entry.medications), entry.comment)
    console.print(table)


async def _open_service(
    args: argparse.Namespace, store: PersistencePort, config: AppConfig
) -> JournalService | None:
    if args.password is not None:
        return await start_session(store, args.user, args.password, config.journal)
    service = JournalService(store, args.user, config.journal)
    await service.load()
    return service


async def run_users(args: argparse.Namespace, config: AppConfig) -> int:
    store = open_store(config)
    accounts = AccountService(store)
    try:
        if args.user is not None and args.password is not None:
            if await store.login(args.user, args.password) is None:
                console.print("[red]Login failed[/red]")
                return 1

        if args.action == "add":
            name = await accounts.add_user(args.username, args.new_password)
            console.print(f"[green]User {name} created[/green]")
        elif args.action == "passwd":
            await accounts.change_password(args.username, args.new_password)
            console.print(f"[green]Password changed for {args.username}[/green]")
        elif args.action == "delete":
            prompt = f"Delete {args.username} and ALL their journal data? [y/N] "
            if not args.yes and console.input(prompt).strip().lower() != "y":
                console.print("Delete cancelled")
                return 1
            await accounts.delete_user(args.username)
            console.print(f"[green]User {args.username} deleted[/green]")

        table = Table(title="Users")
        table.add_column("Username")
        for name in await accounts.list_users():
            table.add_row(name)
        console.print(table)
    finally:
        await accounts.close()

    return 0


async def run(args: argparse.Namespace, config: AppConfig) -> int:
    store = open_store(config)
    service: JournalService | None = None
    try:
        service = await _open_service(args, store, config)
        if service is None:
            console.print("[red]Login failed[/red]")
            return 1

        if args.command == "export":
            if args.token:
                console.print(service.export_token(), soft_wrap=True)
            else:
                path = codec.write_export_file(service.bundle, args.output)
                console.print(f"[green]Backup written to {path}[/green]")

        elif args.command == "import":
            bundle = (
                codec.decode_token(args.token)
                if args.token
                else codec.read_export_file(args.file)
            )
            console.print(
                Panel(
                    f"{len(bundle.health_data)} days, {len(bundle.medications)} medications, "
                    f"{len(bundle.standard_pattern)} pattern slots.\n"
                    "Importing overwrites ALL existing health data, medications and pattern.",
                    title="Import",
                    border_style="yellow",
                )
            )
            if not args.yes and console.input("Continue? [y/N] ").strip().lower() != "y":
                console.print("Import cancelled")
                return 1
            await service.import_bundle(bundle)
            console.print("[green]Data imported[/green]")

        elif args.command == "medications":
            if args.action == "add":
                await service.add_medication(args.name)
            elif args.action == "rename":
                await service.rename_medication(args.old, args.new)
            elif args.action == "delete":
                await service.delete_medication(args.name)
            _print_medications(service)

        elif args.command == "pattern":
            if args.action == "set":
                pattern = service.standard_pattern
                pattern[args.slot] = list(args.medications)
                await service.save_standard_pattern(pattern)
            _print_pattern(service)

        elif args.command == "day":
            if args.action == "apply-pattern":
                await service.apply_standard_pattern(args.date)
            elif args.action == "set":
                entry = TimeSlotEntry(
                    value=args.value, medications=args.medications, comment=args.comment
                )
                await service.update_slot(args.date, args.slot, entry)
            _print_day(service, args.date)
    finally:
        if service is not None:
            await service.close()
        else:
            await store.aclose()

    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command != "users" and args.user is None:
        parser.error(f"--user is required for '{args.command}'")

    config = get_config()
    if args.data_dir is not None:
        config = config.model_copy(
            update={"storage": config.storage.model_copy(update={"data_dir": args.data_dir})}
        )
    configure_logging(config.logging)

    try:
        if args.command == "users":
            return asyncio.run(run_users(args, config))
        return asyncio.run(run(args, config))
    except HealthJournalError as e:
        logger.error("command_failed", command=args.command, error=str(e))
        console.print(f"[red]Error:[/red] {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
