"""
meshroute CLI - Command line interface for cost-aware routing.
"""

import json
import logging
import platform
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import DEFAULT_DATA_DIR, Config, get_config, set_config
from .cost.cli import cost as cost_command
from .directory import InMemoryDirectory
from .router import simhash
from .router.capability import ModelTier
from .router.constraints import RouteConstraints
from .router.semantic import SemanticRouter

console = Console()

TIER_CHOICES = [t.value for t in ModelTier]


def setup_logging(verbose: bool = False):
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[logging.StreamHandler()]
    )


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--data-dir', type=click.Path(), help='Configuration directory')
@click.pass_context
def main(ctx, verbose, data_dir):
    """🌐 meshroute - Cost-aware semantic routing"""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    setup_logging(verbose)
    if data_dir:
        set_config(Config.load(Path(data_dir)))


main.add_command(cost_command)


def _load_directory(path: Optional[str]) -> InMemoryDirectory:
    config = get_config()
    path = path or config.capabilities_file
    if not path:
        raise click.UsageError("No capabilities file given (use --capabilities or set capabilities_file)")
    try:
        return InMemoryDirectory.from_file(path, node_id=config.node_id or platform.node(),
                                           node_name=config.node_name or "")
    except (OSError, json.JSONDecodeError) as e:
        raise click.ClickException(f"Cannot read capabilities from {path}: {e}")


@main.command()
@click.argument('query')
@click.option('--capabilities', '-c', type=click.Path(exists=True, dir_okay=False), help='JSON capability file')
@click.option('--fingerprint', help='Pre-computed query SimHash (hex)')
@click.option('--max-latency', type=float, help='Latency ceiling in ms')
@click.option('--max-hops', type=int, help='Hop ceiling')
@click.option('--max-price', type=float, help='Max $ per 1k tokens')
@click.option('--min-tps', type=float, help='Min tokens per second')
@click.option('--require-rag', is_flag=True, help='Require RAG')
@click.option('--require-tools', is_flag=True, help='Require tool use')
@click.option('--require-vision', is_flag=True, help='Require vision')
@click.option('--tier-min', type=click.Choice(TIER_CHOICES), help='Smallest model tier')
@click.option('--tier-max', type=click.Choice(TIER_CHOICES), help='Largest model tier')
@click.option('--local', 'local_only', is_flag=True, help='Only route to this node')
@click.option('--exclude', multiple=True, help='Node id to exclude (repeatable)')
@click.option('--json', 'as_json', is_flag=True, help='Output as JSON')
@click.option('--detailed', is_flag=True, help='Show the full score breakdown')
def route(
    query: str,
    capabilities: Optional[str],
    fingerprint: Optional[str],
    max_latency: Optional[float],
    max_hops: Optional[int],
    max_price: Optional[float],
    min_tps: Optional[float],
    require_rag: bool,
    require_tools: bool,
    require_vision: bool,
    tier_min: Optional[str],
    tier_max: Optional[str],
    local_only: bool,
    exclude: Tuple[str, ...],
    as_json: bool,
    detailed: bool,
):
    """Route QUERY against a capability file."""
    try:
        constraints = RouteConstraints(
            max_latency_ms=max_latency,
            max_hops=max_hops,
            max_cost_per_1k_tokens=max_price,
            min_tokens_per_second=min_tps,
            require_rag=require_rag,
            require_tools=require_tools,
            require_vision=require_vision,
            model_tier_min=tier_min,
            model_tier_max=tier_max,
            prefer_local=local_only,
            exclude_node_ids=frozenset(exclude),
        )
    except ValidationError as e:
        raise click.BadParameter(str(e))

    try:
        query_fingerprint = simhash.from_hex(fingerprint)
    except ValueError:
        raise click.BadParameter(f"not a hex fingerprint: {fingerprint}", param_hint="--fingerprint")

    directory = _load_directory(capabilities)
    router = SemanticRouter(directory, get_config().router)
    outcome = router.route_with_reason(query, query_fingerprint, constraints)

    if outcome.decision is None:
        reason = outcome.reason.value if outcome.reason else "unknown"
        if as_json:
            click.echo(json.dumps({"decision": None, "reason": reason}, indent=2))
        else:
            console.print(f"[red]✗ No route:[/red] {reason}")
        sys.exit(1)

    decision = outcome.decision
    if as_json:
        click.echo(json.dumps(decision.to_dict(), indent=2))
        return
    if detailed:
        click.echo(decision.to_detailed_string())
        return

    cap = decision.capability
    style = "yellow" if decision.is_fallback else "green"
    if decision.unavailable:
        style = "red"
    console.print()
    console.print(Panel(
        f"[bold]{cap.label or cap.id}[/bold] on [cyan]{cap.node_name or cap.node_id}[/cyan]\n\n"
        f"{decision.explanation}",
        title=f"[{style}]{decision.match_method.value}[/{style}] · {decision.composite:.0%}",
    ))

    if decision.alternatives:
        table = Table(title="Alternatives", show_header=True, header_style="bold")
        table.add_column("Capability")
        table.add_column("Node")
        table.add_column("Score", justify="right")
        for alt, score in decision.alternatives:
            table.add_row(alt.label or alt.id, alt.node_name or alt.node_id, f"{score:.0%}")
        console.print(table)
    console.print()


@main.command()
@click.option('--capabilities', '-c', type=click.Path(exists=True, dir_okay=False), help='JSON capability file')
@click.option('--host', '-h', default=None, help='Host to bind to')
@click.option('--port', '-p', default=None, type=int, help='Port to bind to')
@click.option('--publish-cost/--no-publish-cost', default=True, help='Sample and publish this node\'s cost')
def serve(capabilities: Optional[str], host: Optional[str], port: Optional[int], publish_cost: bool):
    """Start the routing API server."""
    from .api.server import run_server
    from .cost.collector import get_cost_collector
    from .cost.publisher import CostPublisher, HttpCostSink

    config = get_config()
    directory = _load_directory(capabilities) if (capabilities or config.capabilities_file) else \
        InMemoryDirectory(node_id=config.node_id or platform.node(), node_name=config.node_name or "")
    router = SemanticRouter(directory, config.router)

    publisher = None
    http_sink = None
    if publish_cost:
        if config.publisher.sink_url:
            http_sink = HttpCostSink(config.publisher.sink_url)
        publisher = CostPublisher(
            get_cost_collector(config.node_id),
            http_sink or directory,
            collect_interval=config.publisher.collect_interval,
            publish_interval=config.publisher.publish_interval,
        )

    host = host or config.server.host
    port = port or config.server.port
    console.print(f"\n[bold blue]🌐 meshroute[/bold blue] serving on [cyan]http://{host}:{port}[/cyan]")
    console.print(f"   Capabilities: {len(directory.get_all_capabilities())}\n")
    run_server(router, publisher=publisher, host=host, port=port, config=config, sink=http_sink)


@main.command('config')
@click.option('--save', is_flag=True, help=f'Write the effective config (default dir {DEFAULT_DATA_DIR})')
def show_config(save: bool):
    """Show the effective configuration."""
    config = get_config()
    if save:
        config.save()
        console.print(f"[green]✓[/green] Saved to {config.config_path}")
    click.echo(json.dumps(config.to_dict(), indent=2))


if __name__ == '__main__':
    main()
