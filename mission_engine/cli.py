"""
Mission engine inspection CLI.

Usage:
    mission-engine pool --reputation 3 --seed 7
    mission-engine generate harbor-credit-union --archetype backup --json
    mission-engine clients --reputation 2
    mission-engine config --write engine.yaml
"""

from __future__ import annotations

import argparse
import json
import logging
import random
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import EngineConfig, load_config, save_config
from .context import MissionContext
from .state.scheduler import ManualClock
from .systems.clients import ClientRoster
from .systems.generator import MissionGenerator, format_size

console = Console()


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------


def cmd_pool(args: argparse.Namespace, config: EngineConfig) -> int:
    ctx = MissionContext(config=config, clock=ManualClock(), rng=random.Random(args.seed))
    ctx.reputation = args.reputation
    ctx.initialize_pool()

    table = Table(title=f"Mission Pool (reputation {args.reputation})")
    table.add_column("Mission", style="cyan")
    table.add_column("Client")
    table.add_column("Difficulty")
    table.add_column("Payout", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Access")

    for entry in ctx.pool.state.missions:
        m = entry.mission
        table.add_row(
            m.title,
            m.client or "",
            m.difficulty.value if m.difficulty else "",
            str(m.base_payout),
            f"{m.time_limit_minutes}m" if m.time_limit_minutes else "-",
            "[green]open[/green]" if entry.is_accessible(args.reputation) else f"[red]rep {entry.min_reputation}[/red]",
        )
    console.print(table)

    stats = ctx.pool.stats(args.reputation)
    console.print(
        f"[dim]{stats['total_missions']} offers, {stats['accessible_count']} accessible, "
        f"{stats['pending_arc_count']} arcs in progress[/dim]"
    )
    return 0


def cmd_generate(args: argparse.Namespace, config: EngineConfig) -> int:
    roster = ClientRoster.load()
    generator = MissionGenerator(roster, config, random.Random(args.seed))
    timed = True if args.timed else None
    mission = generator.generate_mission(args.client, archetype=args.archetype, timed=timed)
    if mission is None:
        console.print(f"[red]Unknown client: {args.client}[/red]")
        return 1

    if args.json:
        print(json.dumps(mission.model_dump(mode="json"), indent=2))
        return 0

    lines = [
        f"[bold]{mission.title}[/bold]",
        f"Payout: {mission.base_payout}  Difficulty: {mission.difficulty.value}",
        f"Data: {format_size(mission.total_data_bytes)}",
        "",
    ]
    lines += [f"  {o.id}: {o.description}" for o in mission.objectives]
    console.print(Panel("\n".join(lines), title=mission.mission_id, border_style="cyan"))
    return 0


def cmd_clients(args: argparse.Namespace, config: EngineConfig) -> int:
    roster = ClientRoster.load()
    table = Table(title="Clients")
    table.add_column("Id", style="dim")
    table.add_column("Name")
    table.add_column("Industry")
    table.add_column("Min Rep", justify="right")

    for client in roster.clients:
        style = None if args.reputation is None or client.min_reputation <= args.reputation else "dim"
        table.add_row(client.id, client.name, client.industry, str(client.min_reputation), style=style)
    console.print(table)
    return 0


def cmd_config(args: argparse.Namespace, config: EngineConfig) -> int:
    if args.write:
        if not save_config(config, args.write):
            console.print(f"[red]Could not write {args.write}[/red]")
            return 1
        console.print(f"[green]Wrote {args.write}[/green]")
        return 0
    print(json.dumps(config.model_dump(mode="json"), indent=2))
    return 0


# -----------------------------------------------------------------------------
# Entry Point
# -----------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mission-engine", description="Mission engine tools")
    parser.add_argument("--config", "-c", type=Path, help="YAML config file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    pool = sub.add_parser("pool", help="Generate and show a mission pool")
    pool.add_argument("--reputation", "-r", type=int, default=1)
    pool.add_argument("--seed", type=int)
    pool.set_defaults(func=cmd_pool)

    generate = sub.add_parser("generate", help="Generate one mission")
    generate.add_argument("client", help="Client id")
    generate.add_argument("--archetype", "-a", choices=["repair", "backup", "transfer"])
    generate.add_argument("--timed", action="store_true", help="Force a time limit")
    generate.add_argument("--seed", type=int)
    generate.add_argument("--json", action="store_true", help="Print the definition as JSON")
    generate.set_defaults(func=cmd_generate)

    clients = sub.add_parser("clients", help="List clients")
    clients.add_argument("--reputation", "-r", type=int)
    clients.set_defaults(func=cmd_clients)

    config = sub.add_parser("config", help="Show or write the effective config")
    config.add_argument("--write", "-w", type=Path, help="Write YAML to this path")
    config.set_defaults(func=cmd_config)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return args.func(args, load_config(args.config))


if __name__ == "__main__":
    sys.exit(main())
