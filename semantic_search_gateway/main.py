import asyncio
import json
from typing import Optional

import typer
import uvicorn
from asgi_lifespan import LifespanManager
from typing_extensions import Annotated

from semantic_search_gateway.api.diagnostics import probe_services
from semantic_search_gateway.api.main import create_app
from semantic_search_gateway.config import get_settings
from semantic_search_gateway.logging_utils import configure_logging

app = typer.Typer()


@app.command()  # type: ignore
def serve(
    host: Annotated[
        str, typer.Option("--host", help="Host address to bind to.")
    ] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", help="Port to listen on.")] = 3000,
    reload: Annotated[
        bool, typer.Option("--reload", help="Reload on code changes.")
    ] = False,
) -> None:
    """
    Run the gateway with uvicorn.
    """
    settings = get_settings()
    configure_logging(settings)
    print(f"Starting gateway on {host}:{port} ({settings.environment.value})")
    uvicorn.run(
        "semantic_search_gateway.main:create_asgi_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        # ↳ The gateway writes its own access log
        access_log=False,
        log_level=settings.log_level.lower(),
    )


def create_asgi_app():
    """Factory used by uvicorn; reads settings from the environment."""
    settings = get_settings()
    configure_logging(settings)
    return create_app(settings)


async def _check_services(timeout: Optional[float]) -> dict:
    settings = get_settings()
    gateway = create_app(settings)
    # Run the lifespan so clients are closed once the probes finish
    async with LifespanManager(gateway):
        outcomes = await probe_services(
            gateway.state.embedder,
            gateway.state.store,
            timeout or settings.downstream_timeout_seconds,
        )
    return {
        name: {"ok": outcome.ok, "error": outcome.error, **outcome.details}
        for name, outcome in outcomes.items()
    }


@app.command("check-services")  # type: ignore
def check_services(
    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", help="Seconds to wait for each service."),
    ] = None,
) -> None:
    """
    Probe the embedding provider and the vector store.
    """
    print("Checking downstream services...")
    results = asyncio.run(_check_services(timeout))
    print(json.dumps(results, indent=2))
    if not all(result["ok"] for result in results.values()):
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
