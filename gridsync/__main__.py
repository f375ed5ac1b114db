"""CLI entry point for gridsync."""

import argparse
import asyncio
import json
import logging
import random
import sys
import threading
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .events import (
    Event,
    InSync,
    LocalCancel,
    LocalMove,
    LocalPress,
    LocalRelease,
    PreviewUpdate,
    PublishUpdate,
    SendPreview,
)
from .marks import Mark, MarkKind
from .mqtt_client import PreviewChannel
from .replica import Replica
from .snapshot import SnapshotStore
from .sync import LocalHub, LogFollower, UpdateLog

logger = logging.getLogger("gridsync")


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logging.basicConfig(level=level, handlers=[handler])


def mark_glyph(mark: Mark) -> str:
    """Single character used to draw a mark in the terminal."""
    if mark.is_empty:
        return "."
    if mark.kind is MarkKind.BOOL:
        return "#"
    if mark.kind is MarkKind.INTENSITY:
        return str(mark.value * 10 // 256)
    return mark.value.lstrip("#")[:1] or "?"


def format_grid(values: list[Mark], width: int) -> str:
    rows = [values[i:i + width] for i in range(0, len(values), width)]
    return "\n".join("".join(mark_glyph(mark) for mark in row) for row in rows)


def parse_input(line: str) -> Event | str | None:
    """Parse one line of replica input.

    Returns an event, the name of a control command ("show", "stats",
    "quit"), or None for blank lines.

    Raises:
        ValueError: If the line is not a valid command.
    """
    parts = line.split()
    if not parts:
        return None
    command, rest = parts[0].lower(), parts[1:]

    if command in ("show", "stats", "quit"):
        return command
    if command in ("press", "move"):
        if len(rest) not in (2, 3):
            raise ValueError(f"usage: {command} X Y [DEVICE]")
        x, y = int(rest[0]), int(rest[1])
        cls = LocalPress if command == "press" else LocalMove
        return cls(x, y, *rest[2:])
    if command in ("release", "cancel"):
        if len(rest) > 1:
            raise ValueError(f"usage: {command} [DEVICE]")
        cls = LocalRelease if command == "release" else LocalCancel
        return cls(*rest)
    raise ValueError(f"unknown command: {command}")


def build_replica(
    config: Config,
    snapshots: SnapshotStore | None,
    name: str | None = None,
) -> Replica:
    return Replica(
        width=config.grid.width,
        height=config.grid.height,
        kind=config.grid.kind,
        brush=config.make_brush(),
        snapshots=snapshots,
        name=name or config.node.name,
    )


def _start_stdin_reader(loop: asyncio.AbstractEventLoop, queue: asyncio.Queue) -> None:
    """Read stdin on a daemon thread and hand lines to the event loop."""

    def reader() -> None:
        for line in sys.stdin:
            loop.call_soon_threadsafe(queue.put_nowait, line)
        loop.call_soon_threadsafe(queue.put_nowait, "quit")

    threading.Thread(target=reader, name="gridsync-stdin", daemon=True).start()


async def cmd_run(args: argparse.Namespace) -> int:
    """Run a headless replica driven by stdin commands."""
    config = load_config(args.config)
    kind = config.grid.kind

    snapshots = SnapshotStore(config.snapshot.db_path)
    replica = build_replica(config, snapshots)
    log = UpdateLog(config.log.db_path, kind)
    log.connect()

    print(f"Starting gridsync replica: {config.node.name}")
    print(f"Grid: {config.grid.width}x{config.grid.height} ({kind.value})")
    print(f"Log: {log.db_path} (resuming after serial {replica.resume_serial})")

    channel: PreviewChannel | None = None
    if config.mqtt.enabled:
        channel = PreviewChannel(config.mqtt, kind)
        if await channel.connect():
            print(f"Previews: {config.mqtt.broker}:{config.mqtt.port} {config.mqtt.preview_topic}")
        else:
            logger.warning("Preview channel unavailable, continuing without previews")
            channel = None

    def handle_effect(effect) -> None:
        if isinstance(effect, PublishUpdate):
            log.append(effect.update, sender=replica.name)
        elif isinstance(effect, SendPreview):
            if channel is not None:
                channel.send(effect.preview)
        elif isinstance(effect, InSync):
            print(f"\a[in sync at serial {effect.serial}]")

    def dispatch(event: Event) -> None:
        for effect in replica.step(event):
            handle_effect(effect)

    follower = LogFollower(log, replica, handle_effect, batch_size=config.log.batch_size)
    stop_event = asyncio.Event()
    lines: asyncio.Queue = asyncio.Queue()

    async def preview_loop() -> None:
        while not stop_event.is_set():
            preview = await channel.get_preview(timeout=1.0)
            if preview is not None:
                dispatch(PreviewUpdate(preview))

    _start_stdin_reader(asyncio.get_running_loop(), lines)
    tasks = [
        asyncio.create_task(
            follower.follow_loop(config.log.poll_interval_seconds, stop_event=stop_event)
        ),
    ]
    if channel is not None:
        tasks.append(asyncio.create_task(preview_loop()))

    try:
        while not stop_event.is_set():
            line = await lines.get()
            try:
                parsed = parse_input(line)
            except ValueError as e:
                print(f"error: {e}", file=sys.stderr)
                continue
            if parsed is None:
                continue
            if parsed == "quit":
                stop_event.set()
            elif parsed == "show":
                print(format_grid(replica.render(), replica.grid.width))
            elif parsed == "stats":
                print(json.dumps(replica.get_stats(), indent=2))
            else:
                dispatch(parsed)
    except KeyboardInterrupt:
        print("\nShutting down...")
    finally:
        stop_event.set()
        await asyncio.gather(*tasks, return_exceptions=True)
        if channel is not None:
            await channel.disconnect()
        log.close()
        snapshots.close()

    return 0


def cmd_show(args: argparse.Namespace) -> int:
    """Print the persisted snapshot."""
    config = load_config(args.config)
    snapshots = SnapshotStore(config.snapshot.db_path)
    try:
        snapshot = snapshots.load(config.grid.width, config.grid.height, config.grid.kind)
    finally:
        snapshots.close()

    if snapshot is None:
        print("No snapshot stored", file=sys.stderr)
        return 1

    print(f"serial={snapshot.serial} clock={snapshot.clock} saved_at={snapshot.saved_at.isoformat()}")
    print(format_grid([cell.value for cell in snapshot.cells], snapshot.width))
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Report snapshot and log state."""
    config = load_config(args.config)

    snapshots = SnapshotStore(config.snapshot.db_path)
    log = UpdateLog(config.log.db_path, config.grid.kind)
    try:
        status_data = {
            "timestamp": datetime.now().isoformat(),
            "node": {"name": config.node.name},
            "grid": {
                "width": config.grid.width,
                "height": config.grid.height,
                "mark_kind": config.grid.mark_kind,
            },
            "snapshot": snapshots.get_stats(),
            "log": log.get_stats(),
        }
    finally:
        snapshots.close()
        log.close()

    snapshot_serial = status_data["snapshot"].get("serial", 0)
    status_data["behind_by"] = status_data["log"]["max_serial"] - snapshot_serial

    if args.json_status:
        print(json.dumps(status_data, indent=2))
        return 0

    print(f"Node: {config.node.name}")
    print(f"Grid: {config.grid.width}x{config.grid.height} ({config.grid.mark_kind})")
    if status_data["snapshot"]["present"]:
        print(
            f"Snapshot: serial {snapshot_serial}, clock {status_data['snapshot']['clock']}, "
            f"saved {status_data['snapshot']['saved_at']}"
        )
    else:
        print("Snapshot: none")
    print(
        f"Log: {status_data['log']['total_entries']} entries, "
        f"max serial {status_data['log']['max_serial']}"
    )
    print(f"Behind by: {status_data['behind_by']} entries")
    return 0


def run_simulation(
    config: Config,
    replicas: int = 3,
    strokes: int = 200,
    seed: int | None = None,
) -> LocalHub:
    """Drive in-process replicas with random strokes and deliver everything.

    Previews are shuffled and partly lost or duplicated, and log delivery
    is interleaved at random, so the run exercises the convergence paths.
    """
    rng = random.Random(seed)
    hub = LocalHub(
        UpdateLog(":memory:", config.grid.kind),
        preview_loss=0.2,
        preview_duplication=0.2,
        seed=seed,
    )
    names = [f"{config.node.name}-{i}" for i in range(replicas)]
    for name in names:
        hub.attach(build_replica(config, None, name=name))

    width, height = config.grid.width, config.grid.height
    for _ in range(strokes):
        name = rng.choice(names)
        x, y = rng.randrange(width), rng.randrange(height)
        hub.send(name, LocalPress(x, y))
        for _ in range(rng.randrange(6)):
            x = min(max(x + rng.choice((-1, 0, 1)), -1), width)
            y = min(max(y + rng.choice((-1, 0, 1)), -1), height)
            hub.send(name, LocalMove(x, y))
        hub.send(name, LocalCancel() if rng.random() < 0.1 else LocalRelease())

        hub.pump_previews(shuffle=True)
        if rng.random() < 0.5:
            hub.pump(rng.sample(names, rng.randint(1, len(names))))

    hub.pump()
    return hub


def cmd_simulate(args: argparse.Namespace) -> int:
    """Run replicas in-process and check that they converge."""
    config = load_config(args.config)
    hub = run_simulation(config, replicas=args.replicas, strokes=args.strokes, seed=args.seed)

    converged = hub.converged()
    first = next(iter(hub.replicas.values()))
    print(f"Replicas: {len(hub.replicas)}, strokes committed: {hub.published}")
    print(f"Log max serial: {hub.log.max_serial()}")
    print(f"Converged: {'yes' if converged else 'NO'}")
    if args.show:
        print(format_grid(first.grid.values(), first.grid.width))
    return 0 if converged else 1


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="gridsync",
        description="Replicated pixel grid with last-writer-wins cells",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    run_parser = subparsers.add_parser("run", help="Run a replica driven by stdin")
    run_parser.set_defaults(func=cmd_run)

    show_parser = subparsers.add_parser("show", help="Print the persisted grid")
    show_parser.set_defaults(func=cmd_show)

    status_parser = subparsers.add_parser("status", help="Show snapshot and log state")
    status_parser.add_argument(
        "--json",
        dest="json_status",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    simulate_parser = subparsers.add_parser("simulate", help="Check convergence in-process")
    simulate_parser.add_argument("-n", "--replicas", type=int, default=3, help="Number of replicas")
    simulate_parser.add_argument("-s", "--strokes", type=int, default=200, help="Number of strokes")
    simulate_parser.add_argument("--seed", type=int, default=None, help="Random seed")
    simulate_parser.add_argument("--show", action="store_true", help="Print the final grid")
    simulate_parser.set_defaults(func=cmd_simulate)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json)

    if not args.command:
        parser.print_help()
        return 1

    try:
        func = args.func
        if asyncio.iscoroutinefunction(func):
            return asyncio.run(func(args))
        return func(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
