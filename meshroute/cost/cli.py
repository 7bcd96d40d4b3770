"""
Cost CLI - Show this node's cost snapshot and multipliers.
"""

import json
import math

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .collector import get_cost_collector
from .model import (
    CostSnapshot,
    NetworkType,
    ThermalState,
    battery_multiplier,
    cost_breakdown,
    load_multiplier,
    network_multiplier,
    thermal_multiplier,
)

console = Console()


def _impact(multiplier: float) -> str:
    """Colored multiplier text."""
    if math.isinf(multiplier):
        return "[bold red]unavailable[/bold red]"
    if multiplier <= 1.0:
        color = "green"
    elif multiplier <= 2.0:
        color = "yellow"
    else:
        color = "red"
    return f"[{color}]{multiplier:.1f}x cost[/{color}]"


def _rating(total: float) -> str:
    if math.isinf(total):
        return "[bold red]⛔ Unavailable[/bold red]"
    if total <= 1.5:
        return "[green]🟢 Excellent[/green]"
    elif total <= 3.0:
        return "[yellow]🟡 Moderate[/yellow]"
    return "[red]🔴 High[/red]"


def render_snapshot(snapshot: CostSnapshot) -> None:
    """Print the snapshot as rich tables."""
    console.print()
    console.print(Panel(
        f"[bold cyan]{snapshot.node_id}[/bold cyan]",
        title="🔄 Node Cost",
        subtitle="Lower cost = better routing target",
    ))
    console.print()

    table = Table(title="Cost Factors", show_header=True, header_style="bold")
    table.add_column("Factor")
    table.add_column("Value")
    table.add_column("Impact")

    power = "🔌 Charging" if snapshot.is_charging else f"🔋 {snapshot.battery_level}%"
    table.add_row("Power", power, _impact(battery_multiplier(snapshot.battery_level, snapshot.is_charging)))

    load = f"CPU {snapshot.cpu_usage:.0%} / Mem {snapshot.memory_pressure:.0%}"
    table.add_row("Load", load, _impact(load_multiplier(snapshot.cpu_usage, snapshot.memory_pressure)))

    network = snapshot.network_type.value
    if snapshot.network_type.is_cellular:
        network += f" ({snapshot.signal_strength}/4 bars)"
    table.add_row("Network", network, _impact(network_multiplier(snapshot.network_type, snapshot.signal_strength)))

    table.add_row("Thermal", snapshot.thermal_state.value, _impact(thermal_multiplier(snapshot.thermal_state)))

    console.print(table)
    console.print()

    total = snapshot.cost
    total_text = "∞" if math.isinf(total) else f"{total:.2f}"
    console.print(f"[bold]Total cost:[/bold] {total_text}  {_rating(total)}")
    console.print()

    if not snapshot.is_charging and snapshot.battery_level < 50:
        console.print("[yellow]💡 Tip: Plug in to reduce routing cost and preserve battery.[/yellow]")
    if snapshot.network_type.is_cellular or snapshot.network_type is NetworkType.UNKNOWN:
        console.print("[yellow]💡 Tip: Switch to Wi-Fi or Ethernet to reduce network cost.[/yellow]")
    if snapshot.thermal_state not in (ThermalState.NONE, ThermalState.LIGHT):
        console.print("[yellow]💡 Tip: Device is throttling. Let it cool down.[/yellow]")


@click.command("cost")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option("--node-id", help="Node id to report (defaults to hostname)")
def cost(as_json: bool, node_id: str):
    """Show this node's cost factors for routing decisions."""
    collector = get_cost_collector(node_id)
    try:
        snapshot = collector.sample()
    finally:
        collector.close()

    if as_json:
        data = snapshot.to_dict()
        data["multipliers"] = {
            k: (None if math.isinf(v) else v) for k, v in cost_breakdown(snapshot).items()
        }
        click.echo(json.dumps(data, indent=2))
        return

    render_snapshot(snapshot)
