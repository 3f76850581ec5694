"""Command-line interface for the brand removal pipeline."""

import logging
import signal
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from .models import PipelineStatus, RemediationStyle

# Load environment variables from .env file
# Searches current directory and parents
load_dotenv()

console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    # SDK request logs are noise at INFO
    for name in ("httpx", "anthropic", "replicate", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)


@click.command()
@click.argument("input_path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option(
    "--output", "-o",
    type=click.Path(path_type=Path),
    default=None,
    help="Output directory for cleaned images. Defaults to './cleaned'"
)
@click.option(
    "--config", "-c",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to configuration file"
)
@click.option(
    "--style",
    type=click.Choice([s.value for s in RemediationStyle]),
    default=None,
    help="Fallback masking style (default from config: blur)"
)
@click.option(
    "--workers", "-w",
    type=int,
    default=None,
    help="Images processed in parallel (default: 1)"
)
@click.option(
    "--pacing",
    type=float,
    default=None,
    help="Seconds to wait between images (default: 2.0)"
)
@click.option(
    "--state-db",
    type=click.Path(path_type=Path),
    default=None,
    help="Idempotency database. Defaults to '<output>/state.db'"
)
@click.option(
    "--verifier",
    type=click.Choice(["claude", "detector"]),
    default="claude",
    help="Verification backend"
)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def main(
    input_path: Path,
    output: Path | None,
    config: Path | None,
    style: str | None,
    workers: int | None,
    pacing: float | None,
    state_db: Path | None,
    verifier: str,
    verbose: bool,
) -> None:
    """Remove third-party brand elements from product photos.

    INPUT_PATH is a directory of images; each file stem is its image id.
    Images already completed in the state database are skipped.
    """
    from .cancellation import CancelToken
    from .config import Config, load_config
    from .exporter import export_result, save_report
    from .idempotency import SqliteIdempotencyStore
    from .imaging import iter_directory
    from .orchestrator import Orchestrator
    from .pipeline import BatchRunner
    from .providers.claude_vision import ClaudeVisionDetector, ClaudeVisionVerifier
    from .providers.detection_verifier import DetectionVerifier
    from .providers.replicate_editor import ReplicateEditor

    _setup_logging(verbose)

    if output is None:
        output = Path("./cleaned")
    output.mkdir(parents=True, exist_ok=True)

    cfg = load_config(config) if config else Config()

    # Apply CLI overrides to config
    if style is not None:
        cfg.remediation_style = RemediationStyle(style)
    if workers is not None:
        cfg.workers = max(1, workers)
    if pacing is not None:
        cfg.pacing_seconds = max(0.0, pacing)

    console.print("[bold blue]Brand Scrub[/bold blue]")
    console.print(f"Input: {input_path}")
    console.print(f"Output: {output}")

    try:
        detector = ClaudeVisionDetector(model=cfg.detection_model, max_dimension=cfg.max_upload_dimension)
        editor = ReplicateEditor(
            model=cfg.editing_model,
            poll_interval=cfg.edit_poll_interval,
            timeout=cfg.edit_timeout,
        )
        if verifier == "claude":
            verification = ClaudeVisionVerifier(
                model=cfg.verification_model,
                max_dimension=cfg.max_upload_dimension,
            )
        else:
            verification = DetectionVerifier(detector, cfg)
    except ValueError as e:
        raise click.ClickException(str(e))

    store = SqliteIdempotencyStore(state_db or output / "state.db")
    cancel = CancelToken()

    def _interrupt(signum, frame):
        console.print("\n[yellow]Stopping after the current image...[/yellow]")
        cancel.cancel()

    previous_handler = signal.signal(signal.SIGINT, _interrupt)

    def _export(result) -> None:
        # Keep the sidecar written by the run that completed the image
        if result.status != PipelineStatus.SKIPPED_ALREADY_DONE:
            export_result(result, output)

    orchestrator = Orchestrator(detector, editor, verification, config=cfg, store=store)
    runner = BatchRunner(
        orchestrator,
        store,
        config=cfg,
        cancel=cancel,
        console=console,
        on_result=_export,
    )

    try:
        report = runner.run(iter_directory(input_path))
    finally:
        store.close()
        signal.signal(signal.SIGINT, previous_handler)

    report_path = output / "report.json"
    save_report(report, report_path)
    console.print(f"[green]✓ Report:[/green] {report_path}")


if __name__ == "__main__":
    main()
