"""
Command-line interface

    unitbus restart nginx.service
    unitbus --user start --mode fail syncthing.service
    unitbus kill --signal HUP nginx.service
    unitbus list --state failed
    unitbus watch --interval 2 --ignore-jobs
"""

import argparse
import asyncio
import json
import operator
import signal
import sys
from typing import List, Optional

from .config import UnitBusSettings, get_settings
from .exceptions import UnitBusError
from .log_config import setup_logging
from .manager import SystemdManager
from .models import JobMode, UnitStatus
from .monitoring import UnitSubscription, ignore_job_fields

# command -> SystemdManager method
JOB_COMMANDS = {
    "start": "start_unit",
    "stop": "stop_unit",
    "reload": "reload_unit",
    "restart": "restart_unit",
    "try-restart": "try_restart_unit",
    "reload-or-restart": "reload_or_restart_unit",
    "reload-or-try-restart": "reload_or_try_restart_unit",
}


def parse_signal(value: str) -> int:
    """Accept a signal number, or a name with or without the SIG prefix"""
    if value.isdigit():
        return int(value)
    name = value.upper()
    if not name.startswith("SIG"):
        name = f"SIG{name}"
    try:
        return int(signal.Signals[name])
    except KeyError:
        raise argparse.ArgumentTypeError(f"Unknown signal: {value}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="unitbus", description="Control and watch systemd units over D-Bus")
    parser.add_argument("--user", action="store_true", help="Talk to the user manager instead of the system one")
    parser.add_argument("--log-level", help="Log level (default: UNITBUS_LOG_LEVEL or INFO)")
    parser.add_argument("--timeout", type=float, help="Seconds to wait for a job result")

    commands = parser.add_subparsers(dest="command", required=True)

    modes = [mode.value for mode in JobMode]
    for command in JOB_COMMANDS:
        job = commands.add_parser(command, help=f"{command} a unit and wait for the job")
        job.add_argument("unit", help="Unit name, e.g. nginx.service")
        job.add_argument("--mode", default=JobMode.REPLACE.value, choices=modes, help="Job mode")

    kill = commands.add_parser("kill", help="Send a signal to a unit's processes")
    kill.add_argument("unit")
    kill.add_argument("--signal", type=parse_signal, default=int(signal.SIGTERM), help="Signal name or number")
    kill.add_argument("--who", default="all", choices=["main", "control", "all"])

    list_ = commands.add_parser("list", help="List loaded units")
    list_.add_argument("--state", help="Only units whose load, active or sub state matches")
    list_.add_argument("--json", action="store_true", help="Print JSON")

    watch = commands.add_parser("watch", help="Print unit changes as they happen")
    watch.add_argument("--interval", type=float, help="Poll interval in seconds")
    watch.add_argument("--ignore-jobs", action="store_true", help="Don't report queued-job churn")
    watch.add_argument("--count", type=int, help="Stop after this many polls")

    return parser


def format_unit(unit: UnitStatus) -> str:
    return f"{unit.name:<50} {unit.load_state:<10} {unit.active_state:<10} {unit.sub_state:<10} {unit.description}"


async def run_job_command(manager: SystemdManager, args: argparse.Namespace) -> int:
    method = getattr(manager, JOB_COMMANDS[args.command])
    result = await method(args.unit, mode=args.mode, timeout=args.timeout)

    if result.succeeded:
        print(f"✅ {args.command} {args.unit}: {result.value}")
        return 0
    print(f"❌ {args.command} {args.unit}: {result.value}")
    return 1


async def run_kill(manager: SystemdManager, args: argparse.Namespace) -> int:
    await manager.kill_unit(args.unit, args.signal, who=args.who)
    print(f"✅ Sent signal {args.signal} to {args.unit}")
    return 0


async def run_list(manager: SystemdManager, args: argparse.Namespace) -> int:
    units = await manager.list_units()
    if args.state:
        units = [u for u in units if args.state in (u.load_state, u.active_state, u.sub_state)]
    units.sort(key=lambda u: u.name)

    if args.json:
        print(json.dumps([u.to_dict() for u in units], indent=2))
        return 0

    print(f"{'UNIT':<50} {'LOAD':<10} {'ACTIVE':<10} {'SUB':<10} DESCRIPTION")
    for unit in units:
        print(format_unit(unit))
    print(f"\n{len(units)} units listed.")
    return 0


async def _print_errors(subscription: UnitSubscription) -> None:
    while True:
        error = await subscription.next_error()
        print(f"⚠️  {error}", file=sys.stderr)


async def run_watch(manager: SystemdManager, args: argparse.Namespace) -> int:
    equal = ignore_job_fields if args.ignore_jobs else operator.eq
    interval = args.interval or manager.settings.poll_interval
    subscription = await manager.subscribe_units_custom(interval, manager.settings.subscription_buffer, equal)
    errors = asyncio.create_task(_print_errors(subscription))

    try:
        polls = 0
        while args.count is None or polls < args.count:
            delta = await subscription.next_update()
            polls += 1
            for name in sorted(delta):
                status = delta[name]
                if status is None:
                    print(f"- {name}")
                else:
                    print(f"* {name}: {status.active_state}/{status.sub_state}")
            sys.stdout.flush()
    finally:
        errors.cancel()
        try:
            await errors
        except asyncio.CancelledError:
            pass
        await subscription.stop()

    return 0


async def run(manager: SystemdManager, args: argparse.Namespace) -> int:
    """Connect and run the selected command"""
    async with manager:
        if args.command in JOB_COMMANDS:
            return await run_job_command(manager, args)
        if args.command == "kill":
            return await run_kill(manager, args)
        if args.command == "list":
            return await run_list(manager, args)
        return await run_watch(manager, args)


def load_settings(args: argparse.Namespace, base: Optional[UnitBusSettings] = None) -> UnitBusSettings:
    """Apply command-line overrides to the environment settings"""
    settings = base or get_settings()
    update = {}
    if args.user:
        update["bus"] = "user"
    if args.log_level:
        update["log_level"] = args.log_level.upper()
    if args.timeout is not None:
        update["job_timeout"] = args.timeout
    return settings.model_copy(update=update)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args)
    setup_logging(settings.log_level, settings.logs_dir)

    try:
        manager = SystemdManager.from_settings(settings)
        return asyncio.run(run(manager, args))
    except UnitBusError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
