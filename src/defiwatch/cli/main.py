"""DeFi Watch command line.

``defiwatch audit``   audit a local source file or a verified address
``defiwatch fetch``   download verified source from a block explorer
``defiwatch agents``  list tiers and their agents
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from ..errors import ConfigError, InputError, SourceFetchError, SourceNotVerified
from ..formatters.junit import export_junit_report
from ..formatters.markdown import export_markdown_report
from ..core.config import get_effective_config
from ..core.pipeline import run_audit
from ..core.prompts import PROMPT_VARIANTS
from ..core.registry import AgentRegistry
from ..core.scoring import get_exit_code
from ..core.sink import JsonFileSink, report_filename
from ..core.sources import EtherscanSource

console = Console()

EXIT_INPUT_ERROR = 11


def _resolve_output_dir(project_path: Path, configured: str, override: Optional[str]) -> Path:
    output_dir = Path(override or configured)
    if not output_dir.is_absolute():
        output_dir = project_path / output_dir
    return output_dir


async def run_audit_command(
    source_file: Optional[str],
    address: Optional[str],
    network: str,
    contract_name: Optional[str],
    tier: str,
    variant: str,
    project: str,
    config_file: Optional[str],
    output_format: Optional[str],
    output_dir: Optional[str],
    dry_run: bool,
    ai_provider: Optional[str],
    ai_endpoint: Optional[str],
    quiet: bool,
) -> int:
    """Run one audit from CLI arguments. Returns the exit code."""
    project_path = Path(project).resolve()

    cli_overrides: dict = {}
    if dry_run:
        cli_overrides.setdefault("ai", {})["provider"] = "dry-run"
    elif ai_provider:
        cli_overrides.setdefault("ai", {})["provider"] = ai_provider
    if ai_endpoint:
        provider_name = "dry-run" if dry_run else (ai_provider or "openrouter")
        cli_overrides.setdefault("ai", {}).setdefault(provider_name, {})["endpoint"] = ai_endpoint

    try:
        config = get_effective_config(
            project_path,
            Path(config_file) if config_file else None,
            cli_overrides or None,
        )
    except ConfigError as e:
        console.print(f"  [red]ERROR[/red] {e}")
        return EXIT_INPUT_ERROR

    if address:
        try:
            source = await EtherscanSource(config).fetch_source(address, network)
        except (InputError, ConfigError, SourceNotVerified, SourceFetchError) as e:
            console.print(f"  [red]ERROR[/red] {e}")
            return EXIT_INPUT_ERROR
        source_text = source.text
        name = contract_name or source.name
    elif source_file:
        path = Path(source_file)
        source_text = path.read_text(encoding="utf-8-sig")
        name = contract_name or path.stem
    else:
        console.print("  [red]ERROR[/red] Provide a source file or --address")
        return EXIT_INPUT_ERROR

    output_config = config.get("output", {})
    formats = [output_format] if output_format else list(output_config.get("formats", ["json"]))
    out_dir = _resolve_output_dir(
        project_path, output_config.get("directory", ".defiwatch/reports"), output_dir
    )
    sink = JsonFileSink(out_dir) if "json" in formats else None

    try:
        report = await run_audit(
            source_text,
            name,
            tier,
            prompt_variant=variant,
            config=config,
            sink=sink,
            quiet=quiet,
        )
    except InputError as e:
        console.print(f"  [red]ERROR[/red] {e}")
        return EXIT_INPUT_ERROR

    stem = report_filename(report).removesuffix(".json")
    try:
        if "markdown" in formats:
            md_path = export_markdown_report(report, out_dir / f"{stem}.md", dry_run=dry_run)
            if not quiet:
                console.print(f"  [green]OK[/green] Markdown report: {md_path}")
        if "junit" in formats:
            junit = export_junit_report(report, out_dir / f"{stem}.xml")
            if not quiet:
                console.print(
                    f"  [green]OK[/green] JUnit XML: {junit['path']} "
                    f"({junit['failures']} failure(s))"
                )
    except OSError as e:
        console.print(f"  [yellow]WARN[/yellow] Could not write report: {e}")

    return get_exit_code(report.risk_level)


@click.group()
def cli() -> None:
    """DeFi Watch - multi-model smart contract security audit."""


@cli.command()
@click.argument("source_file", required=False, type=click.Path(exists=True, dir_okay=False))
@click.option("--address", "-a", type=str, help="Audit verified source at this address")
@click.option("--network", "-n", default="mainnet", show_default=True)
@click.option("--name", "contract_name", type=str, help="Contract name override")
@click.option("--tier", "-t", default="free", show_default=True)
@click.option("--variant", type=click.Choice(list(PROMPT_VARIANTS)), default="normal")
@click.option("--project", "-p", type=click.Path(exists=True, file_okay=False), default=".")
@click.option("--config", "config_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--output-format", "-f", type=click.Choice(["markdown", "json", "junit"]))
@click.option("--output-dir", "-o", type=click.Path(file_okay=False))
@click.option("--ci", is_flag=True, help="CI mode: exit non-zero on medium or worse risk")
@click.option("--dry-run", is_flag=True, help="Use canned agent replies (no API calls)")
@click.option("--ai-provider", type=click.Choice(["openrouter", "ollama"]))
@click.option("--ai-endpoint", type=str, help="Endpoint override")
@click.option("--quiet", "-q", is_flag=True)
def audit(
    source_file: str | None,
    address: str | None,
    network: str,
    contract_name: str | None,
    tier: str,
    variant: str,
    project: str,
    config_file: str | None,
    output_format: str | None,
    output_dir: str | None,
    ci: bool,
    dry_run: bool,
    ai_provider: str | None,
    ai_endpoint: str | None,
    quiet: bool,
) -> None:
    """Audit a Solidity source file or a verified contract address."""
    exit_code = asyncio.run(
        run_audit_command(
            source_file=source_file,
            address=address,
            network=network,
            contract_name=contract_name,
            tier=tier,
            variant=variant,
            project=project,
            config_file=config_file,
            output_format=output_format,
            output_dir=output_dir,
            dry_run=dry_run,
            ai_provider=ai_provider,
            ai_endpoint=ai_endpoint,
            quiet=quiet,
        )
    )
    if exit_code == EXIT_INPUT_ERROR or ci:
        sys.exit(exit_code)


@cli.command()
@click.argument("address")
@click.option("--network", "-n", default="mainnet", show_default=True)
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write source to a file")
@click.option("--config", "config_file", type=click.Path(exists=True, dir_okay=False))
def fetch(address: str, network: str, output: str | None, config_file: str | None) -> None:
    """Download verified source code for ADDRESS."""
    try:
        config = get_effective_config(config_file=Path(config_file) if config_file else None)
        source = asyncio.run(EtherscanSource(config).fetch_source(address, network))
    except (InputError, ConfigError, SourceNotVerified, SourceFetchError) as e:
        console.print(f"  [red]ERROR[/red] {e}")
        sys.exit(EXIT_INPUT_ERROR)

    if output:
        Path(output).write_text(source.text, encoding="utf-8")
        console.print(f"  [green]OK[/green] {source.name} -> {output}")
    else:
        click.echo(source.text)


@cli.command()
@click.option("--config", "config_file", type=click.Path(exists=True, dir_okay=False))
def agents(config_file: str | None) -> None:
    """List tiers, their agents and supervisors."""
    try:
        config = get_effective_config(config_file=Path(config_file) if config_file else None)
        registry = AgentRegistry.from_config(config)
    except ConfigError as e:
        console.print(f"  [red]ERROR[/red] {e}")
        sys.exit(EXIT_INPUT_ERROR)

    for name in registry.tier_names:
        tier = registry.tier(name)
        table = Table(title=f"{name} tier ({tier.depth}, {tier.deadline_seconds:g}s deadline)")
        table.add_column("Agent")
        table.add_column("Specialty")
        table.add_column("Model")
        for agent in tier.agents:
            table.add_row(agent.display_name, agent.specialty, agent.model_id)
        table.add_row(
            f"[bold]{tier.supervisor.display_name}[/bold] (supervisor)",
            tier.supervisor.specialty,
            tier.supervisor.model_id,
        )
        console.print(table)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
