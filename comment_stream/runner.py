"""
CLI entrypoint for the comment stream.
"""
import asyncio
import sys

import httpx
import typer
from loguru import logger

from comment_stream.shared.config import settings

app = typer.Typer(help="Real-time comment stream CLI")


def base_url() -> str:
    return f"http://127.0.0.1:{settings.PORT}"


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


@app.command()
def server():
    """Start the FastAPI backend server using Uvicorn."""
    import uvicorn
    configure_logging(settings.LOG_LEVEL)
    typer.echo(f"Starting server on port {settings.PORT}...")
    uvicorn.run("comment_stream.server.main:app", host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


@app.command()
def watch(
    duration: float = typer.Option(3600.0, help="How long to stay connected, in seconds"),
    pings: bool = typer.Option(False, "--pings", help="Also print keep-alive pings"),
):
    """Follow the live comment stream in the terminal."""
    from comment_stream.client.sse_client import CommentStreamClient
    from comment_stream.client.viewer import Viewer

    viewer = Viewer(CommentStreamClient("cli_viewer", base_url()), show_pings=pings)
    try:
        asyncio.run(viewer.run(duration))
    except KeyboardInterrupt:
        pass


@app.command()
def post(
    username: str = typer.Option(..., help="Display name (max 50 characters)"),
    message: str = typer.Option(..., help="Comment text (max 500 characters)"),
):
    """Post a comment; every connected viewer receives it."""
    resp = httpx.post(f"{base_url()}/api/comments", json={"username": username, "message": message})
    typer.echo(resp.json())
    if resp.status_code != 201:
        raise typer.Exit(1)


@app.command()
def stats():
    """Query the server for live connection stats."""
    resp = httpx.get(f"{base_url()}/stats")
    typer.echo(resp.json())


if __name__ == "__main__":
    app()
