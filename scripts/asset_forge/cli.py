"""
Command-line interface for asset-forge.
Provides the build, watch and single-asset commands.
"""

import sys
import time
import signal
import logging
from importlib import metadata
from pathlib import Path
from typing import Callable, Optional
import typer
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn

from .config import ForgeConfig, ConfigError, TEXTURE_FORMATS, AUDIO_FORMATS, render_default_config
from .pipeline import AssetPipeline, PipelineError, setup_logging
from .processing.atlas import AtlasOverflow
from .processors import (
    AtlasProcessor, AudioProcessor, ImageProcessor, ModelProcessor, ProcessorError,
    QUALITY_PRESETS, audio_info, estimate_lod_levels, model_info, sprite_ids,
)
from .scheduler import BuildReport, JobStatus
from .transforms import (
    AssetKind, AtlasSettings, BufferCompress, Encode, Normalize, Pipeline,
    Recompress, Resample, Resize, Simplify,
)
from .utils.fs import atomic_write, format_size
from .utils.image import ImageUtils
from .watch import WatchService, WatchStats

# Initialize typer app and rich console
app = typer.Typer(
    name="asset-forge",
    help="Incremental game asset build tool - optimize textures, models and audio, pack atlases",
    add_completion=False,
    rich_markup_mode="rich",
    epilog="""
[bold]Examples:[/bold]
  [cyan]asset-forge init[/cyan]                               Create asset-forge.toml
  [cyan]asset-forge build ./assets --preset mobile[/cyan]     Incremental build
  [cyan]asset-forge watch ./assets[/cyan]                     Rebuild on change
  [cyan]asset-forge atlas ./sprites -o ui.png[/cyan]          Pack a sprite atlas

[bold]Environment Variables:[/bold]
  Use [cyan]asset-forge config --env-vars[/cyan] to see all available variables.
    """
)
console = Console()

DEFAULT_CONFIG_NAME = "asset-forge.toml"


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only show errors")
):
    """Incremental game asset build tool."""
    if verbose:
        setup_logging(logging.DEBUG)
    elif quiet:
        setup_logging(logging.ERROR)
    else:
        setup_logging(logging.WARNING)


@app.command()
def init(
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing configuration file"),
    name: Optional[str] = typer.Option(None, "--name", help="Project name (defaults to the directory name)")
):
    """Create a starter asset-forge.toml in the current directory."""
    config_path = Path(DEFAULT_CONFIG_NAME)

    if config_path.exists() and not force:
        console.print(f"[yellow]![/yellow] Configuration file already exists: {config_path}")
        console.print("  Use [cyan]--force[/cyan] to overwrite.")
        return

    try:
        content = render_default_config(name or Path.cwd().name)
        config_path.write_text(content, encoding="utf-8")
    except (ConfigError, OSError) as e:
        console.print(f"[red]Error creating configuration:[/red] {e}")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] Created configuration file: [cyan]{config_path}[/cyan]")
    console.print("\nNext steps:")
    console.print(f"  1. Edit [cyan]{DEFAULT_CONFIG_NAME}[/cyan] to configure your project")
    console.print("  2. Run [cyan]asset-forge build ./assets[/cyan] to process your assets")


@app.command()
def optimize(
    input_path: Path = typer.Argument(..., help="Image to optimize"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file (defaults to overwriting the input)"),
    format: Optional[str] = typer.Option(None, "--format", "-f", help="Output format: png, jpeg, webp, ktx2"),
    quality: str = typer.Option("high", "--quality", help="Quality preset: fast, balanced, high, ultra"),
    mipmap: bool = typer.Option(False, "--mipmap", help="Generate mipmaps (ktx2 only)"),
    max_size: Optional[int] = typer.Option(None, "--max-size", help="Maximum texture dimension")
):
    """Optimize a single image."""
    _require_file(input_path)

    kind = AssetKind.from_path(input_path)
    if kind is not AssetKind.IMAGE:
        console.print(f"[yellow]![/yellow] Only images can be optimized directly; use [cyan]model[/cyan] or [cyan]audio[/cyan] for {kind.value} files")
        raise typer.Exit(1)

    fmt = (format or _image_format(input_path)).lower()
    if fmt not in TEXTURE_FORMATS:
        console.print(f"[red]Unsupported format:[/red] {fmt} (choose from {', '.join(TEXTURE_FORMATS)})")
        raise typer.Exit(1)
    if quality not in QUALITY_PRESETS:
        console.print(f"[red]Unknown quality preset:[/red] {quality} (choose from {', '.join(QUALITY_PRESETS)})")
        raise typer.Exit(1)
    if mipmap and fmt != "ktx2":
        console.print("[yellow]![/yellow] Mipmaps are only stored in ktx2 output; ignoring --mipmap")

    steps = []
    if max_size:
        steps.append(Resize(max_size))
    steps.append(Recompress(fmt, QUALITY_PRESETS[quality]))
    pipeline = Pipeline(AssetKind.IMAGE, tuple(steps), output_format=fmt)

    if output is None:
        output = input_path if format is None else input_path.with_suffix("." + pipeline.extension)

    console.print(f"[bold blue]→[/bold blue] Optimizing image: {input_path}")
    start = time.time()
    data = input_path.read_bytes()
    result = _run_processor(ImageProcessor(), data, pipeline)
    atomic_write(output, result)

    console.print(f"[green]✓[/green] Optimized: [dim]{format_size(len(data))}[/dim] → [green]{format_size(len(result))}[/green]")
    _print_reduction(len(data), len(result))
    console.print(f"  Processed in [dim]{time.time() - start:.2f}s[/dim]")
    if output != input_path:
        console.print(f"  Output: [cyan]{output}[/cyan]")


@app.command()
def build(
    input_dir: Path = typer.Argument(..., help="Source asset directory"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory"),
    preset: Optional[str] = typer.Option(None, "--preset", "-p", help="Target preset (mobile, desktop, web, ...)"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Configuration file path"),
    force: bool = typer.Option(False, "--force", help="Rebuild everything, ignoring the cache"),
    jobs: Optional[int] = typer.Option(None, "--jobs", "-j", help="Number of parallel jobs (defaults to CPU count)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be built without writing anything")
):
    """Build all assets incrementally."""
    if not input_dir.is_dir():
        console.print(f"[red]Source directory not found:[/red] {input_dir}")
        raise typer.Exit(1)
    if jobs is not None and jobs < 1:
        console.print("[red]--jobs must be at least 1[/red]")
        raise typer.Exit(1)

    config = _load_config(config_file)

    try:
        pipeline = AssetPipeline(
            config,
            preset=preset or config.preset,
            jobs=jobs,
            force=force,
            dry_run=dry_run,
            source_dir=input_dir,
            output_dir=output,
        )
        plan = pipeline.plan()
    except (ConfigError, PipelineError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    verb = "Planning" if dry_run else "Building"
    console.print(f"[bold blue]{verb} {len(plan.jobs)} jobs[/bold blue] from {input_dir} → {pipeline.output_dir}")

    previous = _install_interrupt(pipeline.request_cancel)
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True
        ) as progress:
            task = progress.add_task("Processing assets...", total=None)
            pipeline.scheduler.on_outcome = lambda outcome: progress.update(
                task, description=f"{outcome.status.value}: {outcome.label}"
            )
            report = pipeline.run(plan)
    finally:
        signal.signal(signal.SIGINT, previous)

    _display_build_summary(report)
    raise typer.Exit(report.exit_code)


@app.command()
def atlas(
    input_dir: Path = typer.Argument(..., help="Directory of sprite images"),
    output: Path = typer.Option(Path("atlas.png"), "--output", "-o", help="Atlas image path"),
    json_path: Optional[Path] = typer.Option(None, "--json", help="Metadata path (defaults to the image path with .json)"),
    max_width: int = typer.Option(2048, "--max-width", help="Maximum atlas width"),
    max_height: int = typer.Option(2048, "--max-height", help="Maximum atlas height"),
    padding: int = typer.Option(2, "--padding", help="Padding between sprites in pixels"),
    trim: bool = typer.Option(False, "--trim", help="Trim transparent borders before packing"),
    format: Optional[str] = typer.Option(None, "--format", "-f", help="Atlas image format (defaults to the output extension)")
):
    """Pack a directory of sprites into a texture atlas."""
    if not input_dir.is_dir():
        console.print(f"[red]Input directory not found:[/red] {input_dir}")
        raise typer.Exit(1)

    sources = sorted(
        (p for p in input_dir.iterdir() if p.is_file() and AssetKind.from_path(p) is AssetKind.IMAGE),
        key=lambda p: p.name
    )
    if not sources:
        console.print(f"[yellow]No images found in {input_dir}[/yellow]")
        raise typer.Exit(1)

    fmt = (format or _image_format(output)).lower()
    if fmt not in ("png", "jpeg", "webp"):
        console.print(f"[red]Unsupported atlas format:[/red] {fmt}")
        raise typer.Exit(1)

    pipeline = Pipeline(
        AssetKind.IMAGE,
        (Recompress(fmt),),
        output_format=fmt,
        atlas=AtlasSettings(max_width, max_height, padding, trim),
    )
    json_path = json_path or output.with_suffix(".json")

    console.print(f"[bold blue]→[/bold blue] Packing {len(sources)} sprites from {input_dir}")
    ids = sprite_ids([p.name for p in sources])
    sprites = [(sprite_id, path.read_bytes()) for sprite_id, path in zip(ids, sources)]

    try:
        image, atlas_metadata = AtlasProcessor().build(sprites, pipeline, output.name)
    except AtlasOverflow as e:
        console.print(f"[red]Atlas overflow:[/red] {e}")
        raise typer.Exit(1)
    except ProcessorError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    atomic_write(output, image)
    atomic_write(json_path, AtlasProcessor.encode_metadata(atlas_metadata))

    width, height = atlas_metadata["width"], atlas_metadata["height"]
    used = sum(sprite["width"] * sprite["height"] for sprite in atlas_metadata["sprites"])
    efficiency = used / (width * height) * 100 if width and height else 0.0

    console.print("[green]✓[/green] Atlas generated")
    console.print(f"  Atlas image: [cyan]{output}[/cyan]")
    console.print(f"  Metadata: [cyan]{json_path}[/cyan]")
    console.print(f"  Size: {width}×{height}, {len(atlas_metadata['sprites'])} sprites, {efficiency:.1f}% packed")
    console.print(f"  File size: [green]{format_size(len(image))}[/green]")


@app.command()
def model(
    input_path: Path = typer.Argument(..., help="glTF or GLB model"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file (defaults to <stem>_optimized.glb)"),
    optimize_mesh: bool = typer.Option(True, "--optimize/--no-optimize", help="Repack buffers into a single GLB"),
    compress: bool = typer.Option(False, "--compress", help="Meshopt buffer compression"),
    lod: bool = typer.Option(False, "--lod", help="Generate LOD levels"),
    lod_count: int = typer.Option(3, "--lod-count", help="Number of LOD levels (1-4)"),
    lod_ratio: float = typer.Option(0.5, "--lod-ratio", help="Triangle ratio between LOD levels (0.1-0.9)"),
    info: bool = typer.Option(False, "--info", help="Only show model information")
):
    """Optimize a 3D model or show its statistics."""
    _require_file(input_path)
    data = input_path.read_bytes()

    try:
        stats = model_info(data)
    except ProcessorError as e:
        console.print(f"[red]Error reading model:[/red] {e}")
        raise typer.Exit(1)

    if info:
        _display_model_info(input_path, stats, len(data))
        return

    output = output or input_path.with_name(f"{input_path.stem}_optimized.glb")
    out_format = output.suffix.lower().lstrip(".") or "glb"

    steps = []
    if lod:
        steps.append(Simplify(min(max(lod_ratio, 0.1), 0.9), min(max(lod_count, 1), 4)))
    if compress:
        steps.append(BufferCompress("meshopt"))
    steps.append(Encode(out_format))
    pipeline = Pipeline(AssetKind.MODEL, tuple(steps), output_format=out_format)

    console.print(f"[bold blue]→[/bold blue] Processing model: {input_path}")
    console.print(f"  {stats}")
    if not optimize_mesh:
        console.print("  [dim]Buffer repacking disabled[/dim]")

    start = time.time()
    if optimize_mesh or lod or compress:
        result = _run_processor(ModelProcessor(), data, pipeline)
    else:
        result = data
    atomic_write(output, result)

    console.print("[green]✓[/green] Model processed!")
    console.print(f"  Output: [cyan]{output}[/cyan]")
    console.print(f"  Size: [dim]{format_size(len(data))}[/dim] → [green]{format_size(len(result))}[/green]")
    console.print(f"  Time: {time.time() - start:.2f}s")


@app.command()
def watch(
    input_dir: Path = typer.Argument(..., help="Source asset directory"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Configuration file path"),
    preset: Optional[str] = typer.Option(None, "--preset", "-p", help="Target preset"),
    debounce: int = typer.Option(300, "--debounce", help="Debounce window in milliseconds"),
    jobs: Optional[int] = typer.Option(None, "--jobs", "-j", help="Number of parallel jobs")
):
    """Watch a directory and rebuild changed assets."""
    if not input_dir.is_dir():
        console.print(f"[red]Source directory not found:[/red] {input_dir}")
        raise typer.Exit(1)

    config = _load_config(config_file)

    try:
        service = WatchService(
            config,
            preset=preset or config.preset,
            jobs=jobs,
            debounce=max(debounce, 0) / 1000.0,
            source_dir=input_dir,
            output_dir=output,
        )
        console.print("[bold blue]Running initial build...[/bold blue]")
        report = service.initial_build()
    except (ConfigError, PipelineError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    _display_build_summary(report)
    console.print(f"\n[bold blue]👀 Watching[/bold blue] {input_dir} (Ctrl+C to stop)")

    previous = _install_interrupt(service.request_stop)
    start = time.time()
    try:
        stats = service.run()
    finally:
        signal.signal(signal.SIGINT, previous)

    _display_watch_summary(stats, time.time() - start)


@app.command()
def audio(
    input_path: Path = typer.Argument(..., help="Audio file"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file (defaults to <stem>.<format>)"),
    format: str = typer.Option("ogg", "--format", "-f", help="Output format: ogg, wav"),
    quality: int = typer.Option(5, "--quality", help="Encoder quality (1-10)"),
    sample_rate: Optional[int] = typer.Option(None, "--sample-rate", help="Target sample rate in Hz"),
    normalize: bool = typer.Option(False, "--normalize", help="Normalize peak volume"),
    info: bool = typer.Option(False, "--info", help="Only show audio information")
):
    """Convert or inspect an audio file."""
    _require_file(input_path)
    data = input_path.read_bytes()

    try:
        details = audio_info(data)
    except ProcessorError as e:
        console.print(f"[red]Error reading audio:[/red] {e}")
        raise typer.Exit(1)

    console.print(f"[bold blue]🔊 Audio:[/bold blue] {input_path}")
    console.print(f"  Channels: [cyan]{details['channels']}[/cyan]")
    console.print(f"  Sample rate: [cyan]{details['sample_rate']} Hz[/cyan]")
    console.print(f"  Duration: [cyan]{details['duration']:.2f}s[/cyan]")
    console.print(f"  Format: [cyan]{details['format']}[/cyan]")
    if info:
        return

    fmt = format.lower()
    if fmt not in AUDIO_FORMATS:
        console.print(f"[red]Unsupported format:[/red] {fmt} (choose from {', '.join(AUDIO_FORMATS)})")
        raise typer.Exit(1)
    if not 1 <= quality <= 10:
        console.print("[red]--quality must be between 1 and 10[/red]")
        raise typer.Exit(1)

    steps = []
    if normalize:
        steps.append(Normalize())
    if sample_rate:
        steps.append(Resample(sample_rate))
    steps.append(Encode(fmt, quality))
    pipeline = Pipeline(AssetKind.AUDIO, tuple(steps), output_format=fmt)
    output = output or input_path.with_suffix("." + fmt)

    start = time.time()
    result = _run_processor(AudioProcessor(), data, pipeline)
    atomic_write(output, result)

    console.print("[green]✓[/green] Audio processed!")
    console.print(f"  Output: [cyan]{output}[/cyan]")
    console.print(f"  Size: [dim]{format_size(len(data))}[/dim] → [green]{format_size(len(result))}[/green]")
    console.print(f"  Time: {time.time() - start:.2f}s")


@app.command()
def info(
    input_path: Path = typer.Argument(..., help="Asset file to inspect")
):
    """Show information about an asset file."""
    _require_file(input_path)

    data = input_path.read_bytes()
    kind = AssetKind.from_path(input_path)

    table = Table(title=f"Asset: {input_path.name}", show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Path", str(input_path))
    table.add_row("Size", format_size(len(data)))
    table.add_row("Type", kind.value)

    try:
        if kind is AssetKind.IMAGE:
            image = ImageUtils.load_image(data)
            table.add_row("Dimensions", f"{image.width}×{image.height}")
            table.add_row("Mode", image.mode)
            table.add_row("Uncompressed", format_size(ImageUtils.uncompressed_size(image)))
        elif kind is AssetKind.MODEL:
            stats = model_info(data)
            table.add_row("Meshes", str(stats.meshes))
            table.add_row("Vertices", str(stats.total_vertices))
            table.add_row("Indices", str(stats.total_indices))
            table.add_row("Materials", str(stats.materials))
        elif kind is AssetKind.AUDIO:
            details = audio_info(data)
            table.add_row("Channels", str(details["channels"]))
            table.add_row("Sample rate", f"{details['sample_rate']} Hz")
            table.add_row("Duration", f"{details['duration']:.2f}s")
            table.add_row("Bitrate", f"{details['bitrate_kbps']} kbps")
    except (ValueError, ProcessorError) as e:
        console.print(table)
        console.print(f"[red]Cannot read {kind.value} data:[/red] {e}")
        raise typer.Exit(1)

    console.print(table)


@app.command()
def clean(
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Cache directory to purge"),
    all_outputs: bool = typer.Option(False, "--all", help="Also remove the output directory"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Configuration file path")
):
    """Remove the build cache (and outputs with --all)."""
    config = _load_config(config_file)
    if cache_dir is not None:
        config.cache.directory = str(cache_dir.resolve())

    try:
        pipeline = AssetPipeline(config)
        freed = pipeline.clean(include_output=all_outputs)
    except (ConfigError, OSError) as e:
        console.print(f"[red]Error cleaning:[/red] {e}")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] Removed cache: [cyan]{config.cache_dir}[/cyan]")
    if all_outputs:
        console.print(f"[green]✓[/green] Removed outputs: [cyan]{config.output_dir}[/cyan]")
    console.print(f"  Freed {format_size(freed)}")


@app.command()
def config(
    show: bool = typer.Option(False, "--show", help="Show current configuration"),
    validate_config: bool = typer.Option(False, "--validate", help="Validate configuration file"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Configuration file path"),
    env_vars: bool = typer.Option(False, "--env-vars", help="Show available environment variables")
):
    """Show or validate the effective configuration."""
    if env_vars:
        _display_env_vars()
        return

    if not (show or validate_config):
        console.print("Use --show to display configuration, --validate to check it, or --env-vars to see environment variables.")
        return

    config = _load_config(config_file)

    if show:
        _display_config(config)

    if validate_config:
        errors = config.validate()
        if errors:
            console.print("[red]Configuration validation errors:[/red]")
            for error in errors:
                console.print(f"  • {error}")
            raise typer.Exit(1)
        console.print("[green]✓ Configuration is valid[/green]")


@app.command()
def version():
    """Show asset-forge version information."""
    from . import __version__

    console.print("[bold]asset-forge[/bold]")
    console.print(f"Version: {__version__}")
    console.print("Python: " + sys.version.split()[0])

    table = Table(show_header=False)
    table.add_column("Status", width=3)
    table.add_column("Package", style="cyan")
    table.add_column("Version", style="green")

    for name in ("Pillow", "numpy", "soundfile", "watchdog", "Jinja2", "toml", "typer", "rich"):
        try:
            table.add_row("[green]✓[/green]", name, metadata.version(name))
        except metadata.PackageNotFoundError:
            table.add_row("[red]✗[/red]", name, "Not installed")

    console.print("\n[bold]Dependencies:[/bold]")
    console.print(table)


def _load_config(config_file: Optional[Path]) -> ForgeConfig:
    """Load the explicit or discovered configuration, exiting on errors."""
    if config_file is not None and not config_file.exists():
        console.print(f"[red]Configuration file not found:[/red] {config_file}")
        raise typer.Exit(1)

    try:
        config = ForgeConfig.load(config_file)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)

    if config.config_path is not None:
        console.print(f"[dim]Using configuration: {config.config_path}[/dim]")
    else:
        console.print("[dim]Using default configuration[/dim]")
    return config


def _require_file(path: Path) -> None:
    if not path.is_file():
        console.print(f"[red]Input file does not exist:[/red] {path}")
        raise typer.Exit(1)


def _image_format(path: Path) -> str:
    ext = path.suffix.lower().lstrip(".")
    if ext in ("jpg", "jpeg"):
        return "jpeg"
    return ext if ext in TEXTURE_FORMATS else "png"


def _run_processor(processor, data: bytes, pipeline: Pipeline) -> bytes:
    try:
        return processor.transform(data, pipeline)
    except ProcessorError as e:
        console.print(f"[red]Processing failed:[/red] {e}")
        raise typer.Exit(1)


def _install_interrupt(callback: Callable[[], None]):
    """Route Ctrl+C to callback; returns the previous handler."""
    def handler(signum, frame):
        console.print("\n[yellow]Stopping... (waiting for running jobs)[/yellow]")
        callback()

    return signal.signal(signal.SIGINT, handler)


def _print_reduction(original: int, result: int) -> None:
    if not original:
        return
    reduction = (original - result) / original * 100
    if reduction > 0:
        console.print(f"  [green]{reduction:.1f}%[/green] size reduction ({format_size(original - result)} saved)")
    elif reduction < 0:
        console.print(f"  [yellow]![/yellow] File size increased by {-reduction:.1f}%")


def _display_build_summary(report: BuildReport) -> None:
    """Display build summary and failures."""
    console.print("\n[bold]Build Summary[/bold]")

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    if report.dry_run:
        table.add_row("Would build", str(report.count(JobStatus.WOULD_BUILD)))
    else:
        table.add_row("Built", str(report.count(JobStatus.BUILT)))
    table.add_row("Cached", str(report.count(JobStatus.CACHED)))
    table.add_row("Failed", str(report.count(JobStatus.FAILED)))
    if report.count(JobStatus.CANCELLED):
        table.add_row("Cancelled", str(report.count(JobStatus.CANCELLED)))
    table.add_row("Skipped", str(len(report.skipped)))
    if report.size_reduction is not None:
        table.add_row("Total size", _size_total(report.input_size, report.output_size, report.size_reduction))
    table.add_row("Duration", f"{report.duration:.2f}s")
    console.print(table)

    failures = report.failures
    if failures:
        console.print(f"\n[red]{len(failures)} failed:[/red]")
        for failure in failures:
            console.print(f"  [red]✗[/red] {failure.label}: {failure.message}")


def _size_total(input_size: int, output_size: int, reduction: float) -> str:
    return f"{format_size(input_size)} → {format_size(output_size)} ({reduction:.1f}% reduction)"


def _display_watch_summary(stats: WatchStats, elapsed: float) -> None:
    console.print("\n[bold]Watch Session Summary[/bold]")
    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Duration", f"{elapsed:.1f}s")
    table.add_row("File events", str(stats.events))
    table.add_row("Rebuilds", str(stats.flushes))
    table.add_row("Assets built", str(stats.built))
    table.add_row("Failures", str(stats.failed))
    table.add_row("Outputs removed", str(stats.removed))
    if stats.size_reduction is not None:
        table.add_row("Total size", _size_total(stats.input_size, stats.output_size, stats.size_reduction))
    console.print(table)


def _display_model_info(path: Path, stats, file_size: int) -> None:
    table = Table(title=f"Model: {path.name}", show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Meshes", str(stats.meshes))
    table.add_row("Vertices", str(stats.total_vertices))
    table.add_row("Indices", str(stats.total_indices))
    table.add_row("Triangles", f"~{stats.total_indices // 3}")
    table.add_row("Materials", str(stats.materials))
    table.add_row("Textures", str(stats.textures))
    table.add_row("Animations", str(stats.animations))
    table.add_row("Nodes", str(stats.nodes))
    table.add_row("File size", format_size(file_size))
    console.print(table)

    levels = estimate_lod_levels(stats)
    if len(levels) > 1:
        lod_table = Table(title="Recommended LOD Levels")
        lod_table.add_column("Level", style="cyan")
        lod_table.add_column("Vertex ratio", style="green")
        lod_table.add_column("Distance", style="yellow")
        lod_table.add_column("Triangles", style="dim")
        for level in levels:
            lod_table.add_row(
                f"LOD{level.level}",
                f"{level.vertex_ratio:.0%}",
                f"{level.suggested_distance:.0f}m",
                f"~{level.estimated_triangles}",
            )
        console.print(lod_table)


def _display_config(config: ForgeConfig) -> None:
    """Display configuration in a formatted table."""
    table = Table(title="asset-forge Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Config File", str(config.config_path or "(defaults)"))
    table.add_row("Project", config.project.name)
    table.add_row("Source Directory", str(config.source_dir))
    table.add_row("Output Directory", str(config.output_dir))
    table.add_row("Active Preset", config.preset or "(none)")
    table.add_row("Jobs", str(config.jobs or "auto"))
    table.add_row("Cache Enabled", str(config.cache.enabled))
    table.add_row("Cache Directory", str(config.cache_dir))
    console.print(table)

    presets = Table(title="Presets")
    presets.add_column("Name", style="cyan")
    presets.add_column("Textures", style="green")
    presets.add_column("Audio", style="green")
    presets.add_column("Mipmaps", style="yellow")
    for name in sorted(config.presets):
        preset = config.presets[name]
        presets.add_row(
            name,
            f"{preset.texture_format} q{preset.texture_quality} ≤{preset.texture_max_size}px",
            f"{preset.audio_format} q{preset.audio_quality}",
            str(preset.generate_mipmaps),
        )
    console.print(presets)

    if config.rules:
        rules = Table(title="Rules (last match wins)")
        rules.add_column("Pattern", style="cyan")
        rules.add_column("Settings", style="green")
        for rule in config.rules:
            rules.add_row(rule.pattern, ", ".join(f"{k}={v}" for k, v in rule.overrides.items()))
        console.print(rules)


def _display_env_vars() -> None:
    """Display available environment variables for configuration."""
    table = Table(title="asset-forge Environment Variables")
    table.add_column("Environment Variable", style="cyan")
    table.add_column("Description", style="white")
    table.add_column("Example", style="green")

    env_vars = [
        ("ASSET_FORGE_SOURCE", "Source asset directory", "./assets"),
        ("ASSET_FORGE_OUTPUT", "Output directory", "./build/assets"),
        ("ASSET_FORGE_PRESET", "Active preset", "mobile"),
        ("ASSET_FORGE_JOBS", "Number of parallel jobs", "4"),
        ("ASSET_FORGE_CACHE_DIR", "Cache directory", ".asset-forge-cache"),
        ("ASSET_FORGE_CACHE_ENABLED", "Enable the build cache (true/false)", "true"),
    ]

    for var_name, description, example in env_vars:
        table.add_row(var_name, description, example)

    console.print(table)
    console.print("\n[dim]Set these environment variables to override configuration file settings.[/dim]")
    console.print("[dim]Example: export ASSET_FORGE_PRESET=mobile[/dim]")


if __name__ == "__main__":
    app()
