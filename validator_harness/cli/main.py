"""
CLI entry point for validator-harness: run a local test validator and
deploy programs to it.
"""

import sys
from pathlib import Path

import click
import httpx
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

try:
    from importlib.metadata import version as pkg_version

    _version = pkg_version("validator-harness")
except Exception:
    _version = "0.1.0"

from validator_harness.core.deployer import ConditionalDeployer, DeploymentArtifact
from validator_harness.core.errors import HarnessError, TerminationFatal, WaitTimeoutError
from validator_harness.core.readiness import ReadinessPoller, ServiceEndpoint
from validator_harness.core.service import TestValidatorService
from validator_harness.models.harness_config import (
    DEFAULT_CONFIG_FILE,
    HarnessConfig,
    load_harness_config,
)
from validator_harness.models.network import Network

console = Console()
console_err = Console(stderr=True)

# Exit code when a validator process could not be stopped
EXIT_STUCK_PROCESS = 3


def _config(ctx: click.Context) -> HarnessConfig:
    return ctx.obj["config"]


def _fail(message: str, code: int = 1) -> None:
    console_err.print(f"[red]Error:[/red] {message}")
    sys.exit(code)


# =============================================================================
# Root CLI Group
# =============================================================================


@click.group()
@click.version_option(version=_version, prog_name="validator-harness")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_CONFIG_FILE,
    show_default=True,
    help="Harness YAML config",
)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: Path, debug: bool):
    """
    Run a local solana-test-validator for tests and deploy programs to it.

    \b
        validator-harness start              # Start a validator, Ctrl-C to stop
        validator-harness check              # Is something listening on the RPC port?
        validator-harness diff PROGRAM.so    # Compare local and deployed bytes
        validator-harness deploy PROGRAM.so  # Deploy (optionally --if-changed)
    """
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug

    if debug:
        import logging

        logging.basicConfig(level=logging.DEBUG, format="[%(levelname)s] %(name)s: %(message)s")
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    try:
        ctx.obj["config"] = load_harness_config(config_path)
    except HarnessError as e:
        _fail(str(e))


# =============================================================================
# Validator Commands
# =============================================================================


@cli.command()
@click.option("--label", default=None, help="Test label (names the ledger directory)")
@click.option("--rpc-port", type=int, default=None, help="RPC port (default: 8899)")
@click.option("--faucet-port", type=int, default=None, help="Faucet port (default: 9900)")
@click.option(
    "--ledger",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Existing ledger directory (default: a fresh per-label directory)",
)
@click.option("--binary", default=None, help="Validator binary (default: solana-test-validator)")
@click.option("--wait-tries", type=int, default=None, help="Readiness retries (500ms apart)")
@click.pass_context
def start(
    ctx: click.Context,
    label: str | None,
    rpc_port: int | None,
    faucet_port: int | None,
    ledger: Path | None,
    binary: str | None,
    wait_tries: int | None,
):
    """
    Start a test validator and keep it running until interrupted.
    """
    settings = _config(ctx).validator
    builder = (
        TestValidatorService.builder(label or settings.label)
        .rpc_port(rpc_port or settings.rpc_port)
        .faucet_port(faucet_port or settings.faucet_port)
        .binary(binary or settings.binary)
    )
    ledger_path = ledger or settings.ledger_path
    if ledger_path is not None:
        builder = builder.ledger_path(ledger_path)

    service = builder.build()
    try:
        with service:
            with console.status("Waiting for the validator to accept connections..."):
                service.start(wait_tries if wait_tries is not None else settings.wait_tries)

            table = Table(title="Test Validator", show_header=False)
            table.add_column("Key", style="cyan")
            table.add_column("Value")
            table.add_row("RPC", service.rpc_url)
            table.add_row("Faucet", str(service.faucet_endpoint))
            table.add_row("Ledger", str(service.ledger))
            table.add_row("PID", str(service.process.pid or "reused"))
            console.print(table)

            if not service.is_running():
                console.print("[yellow]A validator was already listening; reusing it.[/yellow]")
                return

            console.print("[grey62]Press Ctrl-C to stop.[/grey62]")
            try:
                while True:
                    try:
                        status = service.process.wait(1.0)
                    except WaitTimeoutError:
                        continue
                    console_err.print(f"[red]Validator exited unexpectedly ({status})[/red]")
                    console_err.print(Panel(service.output() or "(no output)", title="stderr"))
                    sys.exit(1)
            except KeyboardInterrupt:
                console.print("\n[grey62]Stopping validator...[/grey62]")
    except TerminationFatal as e:
        _fail(str(e), EXIT_STUCK_PROCESS)
    except HarnessError as e:
        output = getattr(e, "output", "")
        if output:
            console_err.print(Panel(output, title="validator output"))
        _fail(str(e))

    console.print("[green]Validator stopped.[/green]")


@cli.command()
@click.option("--port", type=int, default=None, help="Port to probe (default: configured RPC port)")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.pass_context
def check(ctx: click.Context, port: int | None, host: str):
    """
    Check whether something accepts connections on the RPC port.
    """
    endpoint = ServiceEndpoint(port or _config(ctx).validator.rpc_port, host=host)
    try:
        ReadinessPoller().probe(endpoint)
    except OSError as e:
        console.print(f"[yellow]Not available[/yellow] at {endpoint}: {e}")
        sys.exit(1)
    console.print(f"[green]Available[/green] at {endpoint}")


# =============================================================================
# Deploy Commands
# =============================================================================


def _build_deployer(
    ctx: click.Context,
    program: Path | None,
    program_keypair: Path | None,
    program_id: str | None,
    payer: Path | None,
    network: str | None,
) -> ConditionalDeployer:
    settings = _config(ctx).deploy
    program = program or settings.program
    program_keypair = program_keypair or settings.program_keypair
    payer = payer or settings.payer or Path.home() / ".config" / "solana" / "id.json"
    payer = payer.expanduser()

    if program is None:
        _fail("No program given (argument or deploy.program in config)")
    if program_keypair is None:
        _fail("No program keypair given (--program-keypair or deploy.program_keypair)")

    artifact = DeploymentArtifact(
        path=program,
        keypair_path=program_keypair,
        program_id=program_id or settings.program_id,
    )
    net = Network.parse(network) if network else settings.resolved_network
    return ConditionalDeployer(artifact, payer, network=net)


def deploy_options(f):
    f = click.option("--network", "-u", default=None, help="Preset name or RPC URL")(f)
    f = click.option(
        "--payer",
        type=click.Path(dir_okay=False, path_type=Path),
        default=None,
        help="Fee payer keypair (default: ~/.config/solana/id.json)",
    )(f)
    f = click.option("--program-id", default=None, help="Program id (skips solana-keygen)")(f)
    f = click.option(
        "--program-keypair",
        "-k",
        type=click.Path(dir_okay=False, path_type=Path),
        default=None,
        help="Program keypair file",
    )(f)
    f = click.argument(
        "program",
        type=click.Path(dir_okay=False, path_type=Path),
        required=False,
    )(f)
    return f


@cli.command()
@deploy_options
@click.pass_context
def diff(ctx, program, program_keypair, program_id, payer, network):
    """
    Report whether the deployed program differs from the local file.
    """
    deployer = _build_deployer(ctx, program, program_keypair, program_id, payer, network)
    try:
        changed = deployer.is_changed()
    except (HarnessError, httpx.HTTPError, OSError) as e:
        _fail(f"Could not compare with deployed program: {e}")

    if changed:
        console.print(f"[yellow]changed[/yellow] {deployer.artifact.path} ({deployer.program_id})")
        sys.exit(1)
    console.print(f"[green]unchanged[/green] {deployer.artifact.path} ({deployer.program_id})")


@cli.command()
@deploy_options
@click.option("--if-changed", is_flag=True, help="Skip when the deployed bytes already match")
@click.pass_context
def deploy(ctx, program, program_keypair, program_id, payer, network, if_changed):
    """
    Deploy a program with `solana program deploy`.
    """
    deployer = _build_deployer(ctx, program, program_keypair, program_id, payer, network)
    try:
        if if_changed:
            deployed = deployer.deploy_if_changed()
        else:
            deployer.deploy()
            deployed = True
    except HarnessError as e:
        _fail(str(e))

    if deployed:
        console.print(f"[green]Deployed[/green] {deployer.artifact.path} to {deployer.network}")
    else:
        console.print(f"[grey62]Unchanged, skipped deploy of {deployer.artifact.path}[/grey62]")


def main():
    cli()


if __name__ == "__main__":
    main()
