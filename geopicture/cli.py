"""Main CLI entry point using Typer."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from geopicture.config import SUPPORTED_LANCZOS_RADII, Settings
from geopicture.errors import PictureError

app = typer.Typer(
    name="geopicture",
    help="Decode camera RAW previews, Photoshop files and common rasters; resize and geotag them.",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()


def _setup(verbose: bool = False) -> Settings:
    from dotenv import load_dotenv
    load_dotenv()

    settings = Settings.from_env()
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level, logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    return settings


def _fail(message: str) -> NoReturn:
    console.print(f"[red]{message}[/red]")
    raise typer.Exit(1)


@app.command()
def convert(
    source: Path = typer.Argument(..., help="Picture to decode (CR2, CR3, PSD or any Pillow format)"),
    target: Path = typer.Argument(..., help="Output file; format follows the extension"),
    max_width: int = typer.Option(0, "--max-width", "-w", min=0, help="Downscale to at most this width (0 = keep)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Decode a picture and save it as JPEG, PNG, TIFF or BMP."""
    settings = _setup(verbose)
    from geopicture.loader import load_picture
    from geopicture.readers.standard import save_picture

    if not source.exists():
        _fail(f"File not found: {source}")
    try:
        picture = load_picture(source, max_width, settings=settings)
        save_picture(picture.buffer, target, settings.jpeg_quality)
    except (PictureError, OSError) as exc:
        _fail(f"Error converting {source.name}: {exc}")

    console.print(
        f"[green]OK[/green] {source.name} ({picture.source_format}) -> {target} "
        f"[{picture.width}x{picture.height}, rotate {int(picture.rotation)}]"
    )


@app.command()
def resize(
    source: Path = typer.Argument(..., help="Picture to resize"),
    target: Path = typer.Argument(..., help="Output file; format follows the extension"),
    width: int = typer.Option(..., "--width", min=1, help="Target width in pixels"),
    height: Optional[int] = typer.Option(None, "--height", min=1, help="Target height (default: keep aspect ratio)"),
    radius: Optional[int] = typer.Option(None, "--radius", help="Lanczos support radius, 2 or 3"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Resize a picture to exact dimensions with the Lanczos filter."""
    settings = _setup(verbose)
    from geopicture.loader import load_picture
    from geopicture.processing.lanczos import resize as lanczos_resize
    from geopicture.readers.standard import save_picture

    radius = settings.lanczos_radius if radius is None else radius
    if radius not in SUPPORTED_LANCZOS_RADII:
        _fail(f"--radius must be one of {', '.join(map(str, SUPPORTED_LANCZOS_RADII))}")
    if not source.exists():
        _fail(f"File not found: {source}")

    try:
        picture = load_picture(source, settings=settings)
        if height is None:
            height = max(1, round(picture.height * width / picture.width))
        resized = lanczos_resize(
            picture.buffer, width, height, radius=radius, max_workers=settings.max_workers,
        )
        if resized is None:
            _fail(f"Cannot resize {picture.buffer.pixel_format.name} pixels")
        save_picture(resized, target, settings.jpeg_quality)
    except (PictureError, OSError) as exc:
        _fail(f"Error resizing {source.name}: {exc}")

    console.print(f"[green]OK[/green] {source.name} -> {target} [{width}x{height}]")


@app.command()
def geotag(
    source: Path = typer.Argument(..., help="JPEG file to read or tag"),
    lat: Optional[float] = typer.Option(None, "--lat", min=-90.0, max=90.0, help="Latitude in decimal degrees"),
    lon: Optional[float] = typer.Option(None, "--lon", min=-180.0, max=180.0, help="Longitude in decimal degrees"),
    at: Optional[str] = typer.Option(None, "--at", help="Position as 'lat, lon' in decimal degrees"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the tagged copy here (default: in place)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Print the GPS position of a picture, or write one with --lat/--lon or --at."""
    _setup(verbose)
    from geopicture.metadata.exif import get_geotag, set_geotag
    from geopicture.metadata.gps import GeoLocation

    if not source.exists():
        _fail(f"File not found: {source}")
    if (lat is None) != (lon is None):
        _fail("--lat and --lon must be given together.")
    location: Optional[GeoLocation] = None
    if at is not None:
        if lat is not None:
            _fail("Use either --at or --lat/--lon, not both.")
        try:
            location = GeoLocation.parse(at)
        except ValueError as exc:
            _fail(f"Invalid --at position: {exc}")
    elif lat is not None:
        location = GeoLocation(lat, lon)

    try:
        if location is None:
            found = get_geotag(source)
            if found is None:
                console.print(f"[yellow]{source.name} has no geotag.[/yellow]")
                return
            console.print(f"{source.name}: {found.latitude:.5f}, {found.longitude:.5f}")
            return
        target = output or source
        set_geotag(source, target, location)
    except (PictureError, OSError) as exc:
        _fail(f"Error geotagging {source.name}: {exc}")

    console.print(f"[green]OK[/green] {target} tagged at {location.latitude:.5f}, {location.longitude:.5f}")


@app.command()
def info(
    pictures: list[Path] = typer.Argument(..., help="Picture file(s) to describe"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Show decoded size, orientation, geotag and camera settings."""
    settings = _setup(verbose)
    from geopicture.loader import load_picture
    from geopicture.metadata.exif import get_geotag, metadata_summary

    table = Table(title="Pictures", show_header=True, header_style="bold cyan")
    table.add_column("File", style="bold")
    table.add_column("Format")
    table.add_column("Size", justify="right")
    table.add_column("Rotation", justify="right")
    table.add_column("Geotag")
    table.add_column("Metadata")

    failed = 0
    for path in pictures:
        if not path.exists():
            console.print(f"[yellow]Warning: '{path}' not found, skipping.[/yellow]")
            failed += 1
            continue
        try:
            picture = load_picture(path, settings=settings)
            location = get_geotag(path)
            summary = metadata_summary(path)
        except (PictureError, OSError) as exc:
            console.print(f"[red]Error reading {path.name}: {exc}[/red]")
            failed += 1
            continue
        table.add_row(
            path.name,
            picture.source_format,
            f"{picture.width}x{picture.height}",
            f"{int(picture.rotation)}°",
            f"{location.latitude:.5f}, {location.longitude:.5f}" if location else "-",
            summary or "-",
        )

    console.print(table)
    if failed == len(pictures):
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
