#!/usr/bin/env python3
"""
PBRT Scene Service

This script provides a command-line interface for importing models, converting
them to PBRT, transforming converted scenes and rendering through the cache.
"""

import json
import os
import sys
from pathlib import Path
from typing import Optional

import typer

from pbrtapi.utils.logger import RichLogger
from pbrtapi.utils.timing import timeit
from pbrtapi.processing import ScenePipelineError
from pbrtapi.cli.parameters import (
    Services,
    build_transform,
    convert_models,
    fail,
    print_cache_stats,
    print_models,
    process_config_file,
    setup_logging,
)

logger = RichLogger.get_logger("pbrtapi.main")

app = typer.Typer(help="Command-line interface for the PBRT scene rewrite pipeline and render cache")


def _services(ctx: typer.Context) -> Services:
    return ctx.obj["services"]


@app.command("import-model")
@timeit(log_level="debug")
def import_model(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Model file or extracted model folder"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name for the model"),
    model_type: Optional[str] = typer.Option(None, "--type", "-t", help="Free-form model type"),
):
    """
    Import a model into the uploads folder and write its manifest.
    """
    try:
        manifest = _services(ctx).store.create_model(path, name=name, declared_type=model_type)
    except (ScenePipelineError, OSError, ValueError) as e:
        fail("Import failed", e)
    typer.echo(manifest["uuid"])


@app.command("list")
def list_models(ctx: typer.Context):
    """
    List imported models.
    """
    print_models(_services(ctx).store.list_models())


@app.command("show")
def show_model(ctx: typer.Context, model_id: str = typer.Argument(..., help="Model UUID")):
    """
    Print a model manifest as JSON.
    """
    try:
        manifest = _services(ctx).store.read_manifest(model_id)
    except (OSError, ValueError) as e:
        fail(f"Model {model_id} not found", e)
    typer.echo(json.dumps(manifest, indent=2))


@app.command("delete")
def delete_model(ctx: typer.Context, model_id: str = typer.Argument(..., help="Model UUID")):
    """
    Delete a model folder.
    """
    try:
        deleted = _services(ctx).store.delete_model(model_id)
    except (OSError, ValueError) as e:
        fail(f"Could not delete {model_id}", e)
    if not deleted:
        fail(f"Model {model_id} not found")
    typer.echo(f"Deleted {model_id}")


@app.command("convert")
@timeit(log_level="debug")
def convert(
    ctx: typer.Context,
    model_id: Optional[str] = typer.Argument(None, help="Model UUID"),
    all_models: bool = typer.Option(False, "--all", help="Convert every imported model"),
    force: bool = typer.Option(False, "--force", "-f", help="Convert again even if already converted"),
):
    """
    Convert models to PBRT with assimp and run the rewrite chain.
    """
    services = _services(ctx)
    pipeline = services.pipeline()

    if all_models:
        ids = [m["uuid"] for m in services.store.list_models() if "uuid" in m]
        converted, failed = convert_models(pipeline, ids, force=force)
        typer.echo(f"Converted {len(converted)} of {len(ids)} models")
        if failed:
            raise typer.Exit(code=1)
        return

    if not model_id:
        fail("Give a model UUID or --all")
    try:
        pipeline.convert_model(model_id, force=force)
    except (ScenePipelineError, OSError, ValueError, RuntimeError) as e:
        fail(f"Conversion of {model_id} failed", e)
    typer.echo(str(services.store.converted_scene_path(model_id)))


@app.command("transform")
def transform(
    ctx: typer.Context,
    model_id: str = typer.Argument(..., help="Model UUID"),
    translate: Optional[str] = typer.Option(None, "--translate", help="x,y,z"),
    rotate: Optional[str] = typer.Option(None, "--rotate", help="angle,x,y,z"),
    scale: Optional[str] = typer.Option(None, "--scale", help="x,y,z"),
):
    """
    Inject a Translate/Rotate/Scale block into every scope of the converted scene.

    Scopes preceded by a #[no-more-transformation] comment are left alone.
    """
    scene_transform = build_transform(translate, rotate, scale)
    services = _services(ctx)
    try:
        services.pipeline().transform_model(model_id, scene_transform)
    except (ScenePipelineError, OSError, ValueError) as e:
        fail(f"Transform of {model_id} failed", e)
    typer.echo(str(services.store.transformed_scene_path(model_id)))


@app.command("render")
@timeit(log_level="debug")
def render(
    ctx: typer.Context,
    scene: str = typer.Argument(..., help="PBRT scene file"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Where to write the image"),
    previous: Optional[str] = typer.Option(None, "--previous", help="Fingerprint of the scene this one replaces"),
):
    """
    Render a scene through the content-addressed cache.
    """
    renderer = _services(ctx).renderer()
    try:
        result = renderer.render_file(scene, previous_fingerprint=previous)
    except (ScenePipelineError, OSError, ValueError) as e:
        fail("Render failed", e)

    output_path = Path(output or Path(scene).with_suffix(renderer.cache.extension).name)
    output_path.write_bytes(result.data)
    typer.echo(f"{result.status.upper()} {result.fingerprint} -> {output_path}")


@app.command("sweep")
def sweep(
    ctx: typer.Context,
    max_age_days: Optional[float] = typer.Option(None, "--max-age-days", help="Retention window in days"),
):
    """
    Delete cache entries older than the retention window.
    """
    max_age = max_age_days * 24 * 3600 if max_age_days is not None else None
    removed = _services(ctx).cache.sweep(max_age)
    typer.echo(f"Removed {removed} cache entries")


@app.command("cache-stats")
def cache_stats(ctx: typer.Context):
    """
    Show render cache statistics.
    """
    print_cache_stats(_services(ctx).cache.stats())


@app.command("debug")
def show_info():
    """
    Display the configuration and whether the external tools can be found.
    """
    from pbrtapi.config.config import config_class as config, display_config
    from pbrtapi.config.constants import SYSTEM_INFO
    from pbrtapi.utils.common import check_tool_availability
    from rich.console import Console
    from rich.table import Table

    console = Console()
    system = Table(title="System")
    system.add_column("Property", style="green")
    system.add_column("Value", style="cyan")
    for key, value in SYSTEM_INFO.items():
        system.add_row(key, str(value))
    console.print(system)

    table = Table(title="External Tools")
    table.add_column("Tool", style="green")
    table.add_column("Path", style="cyan")
    table.add_column("Available")
    tools = {"pbrt": config.PBRT_PATH, "assimp": config.ASSIMP_PATH}
    for tool, available in check_tool_availability(tools).items():
        table.add_row(tool, str(tools[tool]), "yes" if available else "no")
    console.print(table)

    display_config()


@app.callback()
def main(
    ctx: typer.Context,
    uploads: Optional[str] = typer.Option(None, "--uploads", "-u", help="Uploads root (models, cache, tmp)"),
    config_file: Optional[str] = typer.Option(None, "--config", "-c", help="Path to custom config.json file", callback=process_config_file),
    debug: bool = typer.Option(False, "--debug", help="Enable debug mode with verbose output"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Set logging level (debug, info, warning, error)"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Save logs to a specific file"),
):
    """
    PBRT Scene Service CLI

    Import, convert, transform and render PBRT scenes.
    """
    setup_logging(debug, log_level, log_file)
    services = Services(uploads)
    ctx.obj = {"services": services}
    ctx.call_on_close(services.close)

    logger.debug("PBRT scene CLI started")
    logger.debug(f"Python executable: {sys.executable}")
    logger.debug(f"Working directory: {os.getcwd()}")


if __name__ == "__main__":
    app()
