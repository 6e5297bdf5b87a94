"""
Agent CLI

Command-line interface for the EAI inventory agent.
"""

import asyncio
import dataclasses
import logging
import sys
from pathlib import Path
from typing import Optional

import click

from .config import DEFAULT_APPDYNAMICS_CONFIG, DEFAULT_CONFIG_FILE, AgentConfig, setup_logging
from .descriptor import parse_descriptor
from .engine import HostDiscovery
from .errors import ConfigurationError, MalformedDocument
from .identifier import extract as extract_identifier
from .platform import detect_platform, get_platform_capabilities
from .publisher import ReportPublisher
from .readiness import MigrationReadiness
from .report import write_report
from .version import __version__

logger = logging.getLogger(__name__)

EXIT_CODES = {
    MigrationReadiness.READY: 0,
    MigrationReadiness.READY_WITH_WARNINGS: 0,
    MigrationReadiness.NOT_READY: 1,
    MigrationReadiness.REQUIRES_MANUAL_INTERVENTION: 2,
}


@click.group()
def cli():
    """EAI Inventory Agent"""
    pass


@cli.command()
@click.option("--appdynamics-config", default=DEFAULT_APPDYNAMICS_CONFIG, help="AppDynamics .NET agent config.xml path")
@click.option("--topology-file", default=None, help="Exported IIS topology (YAML/JSON) to use instead of live IIS")
@click.option("--include-standalone/--exclude-standalone", default=False, help="Correlate standalone applications")
@click.option("--timeout", default=120.0, type=float, help="Hard per-host discovery timeout in seconds")
@click.option("--output-dir", default="reports", help="Report output directory")
@click.option("--format", "output_format", default="json", type=click.Choice(["json", "yaml"]), help="Report format")
@click.option("--server-url", default=None, help="Collector URL (optional)")
@click.option("--api-key", default=None, help="Collector API key (optional)")
@click.option("--config-file", default=DEFAULT_CONFIG_FILE, help="Config file path")
def configure(appdynamics_config: str, topology_file: Optional[str], include_standalone: bool, timeout: float,
              output_dir: str, output_format: str, server_url: Optional[str], api_key: Optional[str], config_file: str):
    """Configure the agent"""
    try:
        config = AgentConfig(
            appdynamics_config_path=appdynamics_config,
            topology_file=topology_file,
            include_standalone=include_standalone,
            timeout=timeout,
            output_directory=output_dir,
            output_format=output_format,
            server_url=server_url,
            api_key=api_key,
        )
    except ConfigurationError as e:
        click.echo(f"Invalid configuration: {e}")
        sys.exit(1)

    config_path = config.save(config_file)
    click.echo(f"Configuration saved to {config_path}")


def _load_config(config_file: str) -> AgentConfig:
    config_path = Path(config_file)
    if not config_path.exists():
        click.echo(f"Config file not found: {config_path}, using defaults")
        return AgentConfig()
    return AgentConfig.load(config_path)


@cli.command()
@click.option("--config-file", default=DEFAULT_CONFIG_FILE, help="Config file path")
@click.option("--appdynamics-config", default=None, help="Override the AppDynamics config.xml path")
@click.option("--topology-file", default=None, help="Override with an exported IIS topology")
@click.option("--output-dir", default=None, help="Override the report output directory")
@click.option("--format", "output_format", default=None, type=click.Choice(["json", "yaml"]), help="Override the report format")
@click.option("--publish/--no-publish", default=True, help="Upload the report when a collector is configured")
def discover(config_file: str, appdynamics_config: Optional[str], topology_file: Optional[str],
             output_dir: Optional[str], output_format: Optional[str], publish: bool):
    """Reconcile AppDynamics declarations with IIS and write a report"""
    try:
        config = _load_config(config_file)
        overrides = {
            "appdynamics_config_path": appdynamics_config,
            "topology_file": topology_file,
            "output_directory": output_dir,
            "output_format": output_format,
        }
        config = dataclasses.replace(config, **{k: v for k, v in overrides.items() if v is not None})
    except ConfigurationError as e:
        click.echo(f"Invalid configuration: {e}")
        sys.exit(1)

    setup_logging(config.log_level, config.log_file)

    async def run():
        report = await HostDiscovery(config).run()
        path = await write_report(report, config.output_directory, config.output_format)
        published = None
        if publish and config.server_url:
            publisher = ReportPublisher(
                config.server_url,
                api_key=config.api_key,
                retry_attempts=config.retry_attempts,
                retry_delay=config.retry_delay,
            )
            published = await publisher.publish(report)
        return report, path, published

    report, path, published = asyncio.run(run())
    verdict = report.result.verdict
    correlation = report.result.correlation

    click.echo(f"Host: {report.metadata.hostname}")
    click.echo(f"Mode: {correlation.mode.value}")
    click.echo(f"Groups: {', '.join(correlation.codes) or 'none'}")
    click.echo(f"Conflicts: {len(correlation.conflicts)}")
    click.echo(f"Status: {verdict.overall_status.value}")
    click.echo(f"Migration readiness: {verdict.migration_readiness.value}")
    for note in verdict.notes:
        click.echo(f"  - {note}")
    click.echo(f"Report saved to {path}")
    if published is True:
        click.echo("✅ Report published")
    elif published is False:
        click.echo("⚠️  Failed to publish report")

    sys.exit(EXIT_CODES[verdict.migration_readiness])


@cli.command("inspect-config")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def inspect_config(path: str):
    """Show what an AppDynamics config.xml declares"""
    try:
        descriptor = parse_descriptor(Path(path).read_bytes())
    except MalformedDocument as e:
        click.echo(f"Malformed configuration: {e}")
        sys.exit(1)

    click.echo(f"Mode: {descriptor.mode.value}")
    if descriptor.controller:
        controller = descriptor.controller
        scheme = "https" if controller.tls_enabled else "http"
        click.echo(f"Controller: {scheme}://{controller.host}:{controller.port} (account: {controller.account_name or '-'})")
    click.echo(f"Applications: {len(descriptor.applications)}")
    for app in descriptor.applications:
        click.echo(f"  {app.controller_application_name}: site={app.site_name} path={app.application_path} tier={app.tier_name}")
    if descriptor.standalone_applications:
        click.echo(f"Standalone applications: {len(descriptor.standalone_applications)}")
        for app in descriptor.standalone_applications:
            click.echo(f"  {app.executable_name}: tier={app.tier_name}")
    for warning in descriptor.warnings:
        click.echo(f"Warning: {warning.message}")


@cli.command()
@click.argument("names", nargs=-1, required=True)
def extract(names):
    """Show the EAI code extracted from each NAME"""
    for name in names:
        match = extract_identifier(name)
        if match.matched:
            click.echo(f"{name}: {match.code} (delimiter '{match.delimiter}', remainder '{match.remainder}')")
        else:
            click.echo(f"{name}: no EAI code")


@cli.command()
def version():
    """Show agent version and system information"""
    platform_info = detect_platform()
    capabilities = get_platform_capabilities()

    click.echo("EAI Inventory Agent")
    click.echo("=" * 50)
    click.echo(f"Package Version: {__version__}")
    click.echo("")
    click.echo("Platform Information:")
    click.echo(f"  Platform: {platform_info.platform}")
    click.echo(f"  Hostname: {platform_info.hostname}")
    click.echo(f"  OS Version: {platform_info.version}")
    click.echo(f"  Python: {sys.version.split()[0]}")
    click.echo("")
    click.echo("Capabilities:")
    for name, available in capabilities.items():
        click.echo(f"  {name}: {'yes' if available else 'no'}")


if __name__ == "__main__":
    cli()
