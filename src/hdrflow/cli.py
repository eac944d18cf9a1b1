"""Command line interface for hdrflow."""
import asyncio
import sys
from pathlib import Path
from typing import Optional

import click
from loguru import logger

from .config import DolbyVisionConfig, ProgressConfig, ToolsConfig, WorkflowConfig
from .core.errors import HdrflowError, PipelineError
from .monitoring.progress import format_size
from .pipeline import Pipeline


def _build_config(work_dir: Optional[str], log_level: str,
                  vbv_bufsize: Optional[int], vbv_maxrate: Optional[int],
                  use_mkvmerge: bool = False, progress_bar: bool = True) -> WorkflowConfig:
    data = dict(
        log_level=log_level.upper(),
        dolby_vision=DolbyVisionConfig(vbv_bufsize=vbv_bufsize, vbv_maxrate=vbv_maxrate),
        tools=ToolsConfig(use_mkvmerge=use_mkvmerge),
        progress=ProgressConfig(show_progress_bar=progress_bar)
    )
    if work_dir:
        data["work_dir"] = Path(work_dir)
    config = WorkflowConfig(**data)
    config.setup_logging()
    return config


@click.group()
@click.option('--log-level', default='INFO', show_default=True,
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False))
@click.option('--work-dir', type=click.Path(file_okay=False), default=None,
              help='Parent directory for temporary files')
@click.option('--vbv-bufsize', type=click.IntRange(min=1), default=None,
              help='Dolby Vision VBV buffer size in kbit')
@click.option('--vbv-maxrate', type=click.IntRange(min=1), default=None,
              help='Dolby Vision VBV max rate in kbit/s')
@click.pass_context
def cli(ctx: click.Context, log_level: str, work_dir: Optional[str],
        vbv_bufsize: Optional[int], vbv_maxrate: Optional[int]) -> None:
    """Dynamic range aware analysis and encoding."""
    ctx.ensure_object(dict)
    ctx.obj.update(
        log_level=log_level,
        work_dir=work_dir,
        vbv_bufsize=vbv_bufsize,
        vbv_maxrate=vbv_maxrate
    )


@cli.command()
@click.argument('input_path', type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def analyze(ctx: click.Context, input_path: str) -> None:
    """Print the detected formats, approach and adjustments for INPUT_PATH."""
    try:
        config = _build_config(**ctx.obj)
        analysis = asyncio.run(Pipeline(config).analyze(Path(input_path)))
    except (HdrflowError, ValueError) as e:
        _fail(e)
        return

    metadata = analysis.metadata
    click.echo(f"File:        {Path(input_path).name}")
    click.echo(f"Video:       {metadata.width}x{metadata.height} {metadata.codec} "
               f"{metadata.bit_depth}-bit @ {metadata.frame_rate:.3f} fps")
    click.echo(f"Transfer:    {metadata.color_transfer or 'unknown'}")
    click.echo(f"Primaries:   {metadata.color_primaries or 'unknown'}")
    for signal in analysis.signals.values():
        state = "yes" if signal.detected else "no"
        click.echo(f"  {signal.format.label:<14} {state:<4} confidence {signal.confidence:.2f}")
    adjustments = analysis.adjustments
    click.echo(f"Approach:    {analysis.approach.label}")
    click.echo(f"CRF delta:   {adjustments.crf_adjustment:+g}")
    click.echo(f"Bitrate:     x{adjustments.bitrate_multiplier:g}")
    if analysis.target_bitrate is not None:
        click.echo(f"Target:      {analysis.target_bitrate} kbit/s")
    click.echo(f"Complexity:  {adjustments.encoding_complexity:g}")
    low, high = adjustments.recommended_crf_range
    click.echo(f"CRF range:   {low:g}-{high:g}")
    if adjustments.requires_vbv:
        click.echo(f"VBV:         bufsize {adjustments.vbv_bufsize} maxrate {adjustments.vbv_maxrate}")
    click.echo(f"Content:     {analysis.classification.content_type.value}")
    click.echo(f"Overhead:    x{analysis.processing_overhead:g}")


@cli.command()
@click.argument('input_path', type=click.Path(exists=True, dir_okay=False))
@click.argument('output_path', type=click.Path(dir_okay=False))
@click.option('--use-mkvmerge', is_flag=True, help='Remux Dolby Vision output with mkvmerge')
@click.option('--no-progress', is_flag=True, help='Disable the progress bar')
@click.pass_context
def encode(ctx: click.Context, input_path: str, output_path: str,
           use_mkvmerge: bool, no_progress: bool) -> None:
    """Encode INPUT_PATH to OUTPUT_PATH preserving dynamic range metadata."""
    try:
        config = _build_config(use_mkvmerge=use_mkvmerge, progress_bar=not no_progress, **ctx.obj)
        result = asyncio.run(Pipeline(config).process_file(Path(input_path), Path(output_path)))
    except (HdrflowError, ValueError) as e:
        _fail(e)
        return

    if result.cancelled:
        click.echo("Encode cancelled", err=True)
        sys.exit(130)
    size = result.output_path.stat().st_size if result.output_path.exists() else None
    click.echo(f"Encoded {result.output_path} ({result.approach.label}, {format_size(size)})")


def _fail(error: Exception) -> None:
    if isinstance(error, PipelineError):
        logger.error(f"{error.message}")
        if error.details:
            logger.debug(error.details)
    click.echo(f"Error: {error}", err=True)
    sys.exit(1)


def main() -> None:
    cli(obj={})


if __name__ == '__main__':
    main()
