import typer

app = typer.Typer(help="caption-worker: subscribe → caption → store → republish")


@app.command()
def run():
    """Run the worker (and the /status API unless STATUS_ENABLED=0)."""
    from caption_worker.app.main import main

    main()


@app.command("check-config")
def check_config():
    """Validate configuration without connecting to anything."""
    from caption_worker.app.config import load_settings
    from caption_worker.app.errors import ConfigError

    settings = load_settings()
    try:
        settings.require_caption_key()
        host, port = settings.redis_host_port()
    except ConfigError as e:
        typer.echo(f"config error: {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"caption_url={settings.WORKER_CAPTION_URL}")
    typer.echo(f"redis={host}:{port} db={settings.WORKER_REDIS_DB}")
    typer.echo(f"channel={settings.WORKER_REDIS_CHANNEL} output={settings.output_channel}")


@app.command()
def caption(photo_url: str):
    """Caption a single photo url once and print the result."""
    from caption_worker.app.config import load_settings
    from caption_worker.app.errors import ApiError, ConfigError, FetchError
    from caption_worker.app.services.caption_api import CaptionService

    settings = load_settings()
    try:
        service = CaptionService(
            settings.WORKER_CAPTION_URL,
            settings.require_caption_key(),
            fetch_timeout=settings.fetch_timeout,
            api_timeout=settings.caption_timeout,
            max_image_bytes=settings.MAX_IMAGE_BYTES,
        )
    except ConfigError as e:
        typer.echo(f"config error: {e}", err=True)
        raise typer.Exit(code=1)
    try:
        typer.echo(service.enrich(photo_url))
    except (FetchError, ApiError) as e:
        typer.echo(f"{e.kind} error: {e}", err=True)
        raise typer.Exit(code=2)
    finally:
        service.close()


if __name__ == "__main__":
    app()
