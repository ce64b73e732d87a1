"""
Workload AI Gateway - Main Entry Point

CLI for serving the gateway, managing encrypted provider credentials,
and inspecting providers, usage and fallback behaviour.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ai_gateway.config.loader import load_settings
from ai_gateway.config.settings import GatewaySettings
from ai_gateway.llm.credentials import encrypt_value
from ai_gateway.llm.gateway import AIGateway
from ai_gateway.llm.types import FrameType, GenerationMode, GenerationRequest, ProviderType
from ai_gateway.observability.logging_config import configure_logging
from ai_gateway.workload.activities import (
    build_activity_parse_request,
    normalize_parsed_activity,
)

root_env = Path(__file__).parent / ".env"
if root_env.exists():
    load_dotenv(root_env, override=True)
else:
    load_dotenv(override=True)

app = typer.Typer(
    name="ai-gateway",
    help="Workload AI Gateway - multi-provider LLM routing with fallback",
)
console = Console()
logger = logging.getLogger("ai_gateway")


def _get_settings(env: Optional[str], config: Optional[Path]) -> GatewaySettings:
    """Load settings, with a friendly error on failure."""
    try:
        return load_settings(env, config)
    except (FileNotFoundError, ValueError) as e:
        console.print(Panel(
            f"[red]Invalid configuration:[/]\n\n{e}",
            title="⚠ Configuration Error",
            border_style="red",
        ))
        raise typer.Exit(code=1)


def _parse_provider(name: Optional[str]) -> Optional[ProviderType]:
    if name is None:
        return None
    provider = ProviderType.parse(name)
    if provider is None:
        console.print(f"[red]Unknown provider:[/] {name}")
        raise typer.Exit(code=1)
    return provider


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),
    port: int = typer.Option(8000, help="Bind port"),
    env: Optional[str] = typer.Option(None, help="production | development | test"),
    config: Optional[Path] = typer.Option(None, help="YAML settings file"),
):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from ai_gateway.api.server import create_app

    settings = _get_settings(env, config)
    configure_logging(settings.environment.value)
    gateway = AIGateway.from_settings(settings)
    uvicorn.run(create_app(gateway), host=host, port=port, log_config=None)


@app.command()
def encrypt_credential(
    api_key: str = typer.Option(..., prompt=True, hide_input=True, help="Plaintext API key"),
):
    """Encrypt a provider API key with AI_GATEWAY_MASTER_KEY for the config store."""
    try:
        token = encrypt_value(api_key)
    except EnvironmentError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(code=1)
    console.print(token)


@app.command()
def providers(
    env: Optional[str] = typer.Option(None),
    config: Optional[Path] = typer.Option(None),
):
    """List providers and which ones are configured."""
    gateway = AIGateway.from_settings(_get_settings(env, config))
    entries = asyncio.run(gateway.list_providers())

    table = Table(title="AI Providers")
    table.add_column("Provider", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("Configured", style="green")
    table.add_column("Working", style="yellow")

    for entry in entries:
        table.add_row(
            entry["provider"],
            entry["displayName"],
            "yes" if entry["configured"] else "[dim]no[/]",
            "★" if entry["isWorkingProvider"] else "",
        )
    console.print(table)


@app.command()
def diagnostics(
    env: Optional[str] = typer.Option(None),
    config: Optional[Path] = typer.Option(None),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
):
    """Show health, usage and cost per configured provider."""
    gateway = AIGateway.from_settings(_get_settings(env, config))
    report = asyncio.run(gateway.get_diagnostics())

    if as_json:
        console.print_json(json.dumps(report))
        return

    table = Table(title=f"Diagnostics ({report['environment']})")
    table.add_column("Provider", style="cyan")
    table.add_column("Healthy", style="green")
    table.add_column("Req/min", justify="right")
    table.add_column("Cost/hour", justify="right")
    table.add_column("Projected/month", justify="right", style="yellow")

    for entry in report["providers"]:
        rate = entry["usageStatistics"]["rateLimiting"]["currentPeriod"]
        cost = entry["usageStatistics"]["costAnalysis"]
        table.add_row(
            entry["provider"],
            "yes" if entry["healthStatus"]["isHealthy"] else "[red]no[/]",
            str(rate["requestsThisMinute"]),
            f"${rate['costThisHour']:.4f}",
            f"${cost['projectedMonthlyCost']:.2f}",
        )
    console.print(table)
    console.print(
        f"Working provider: [bold]{report['fallbackSystem']['workingProvider']}[/]"
    )


@app.command()
def chat(
    message: str = typer.Argument(..., help="Prompt to send"),
    provider: Optional[str] = typer.Option(None, help="claude | gemini | deepseek | kimi | mock"),
    stream: bool = typer.Option(True, help="Stream the answer"),
    env: Optional[str] = typer.Option(None),
    config: Optional[Path] = typer.Option(None),
):
    """Send a single prompt through the gateway."""
    settings = _get_settings(env, config)
    configure_logging(settings.environment.value, level=logging.WARNING)
    gateway = AIGateway.from_settings(settings)
    request = GenerationRequest(
        prompt=message,
        provider=_parse_provider(provider),
        mode=GenerationMode.STREAM if stream else GenerationMode.SYNC,
    )

    async def _run():
        if not stream:
            result = await gateway.complete(request)
            console.print(Panel(
                result.text,
                title=f"{result.provider_used.value}"
                      f"{' (fallback)' if result.used_fallback else ''}",
            ))
            return

        async for frame in gateway.stream(request):
            if frame.type in (FrameType.CONNECTED, FrameType.FALLBACK):
                label = frame.payload.get("provider")
                suffix = " (fallback)" if frame.type == FrameType.FALLBACK else ""
                console.print(f"[dim]→ {label}{suffix}[/]")
            elif frame.type == FrameType.CONTENT:
                console.print(frame.payload["content"], end="")
            elif frame.type == FrameType.CONTINUATION:
                console.print("\n[yellow]… response truncated[/]")
            elif frame.type == FrameType.ERROR:
                console.print(f"\n[red]Stream error:[/] {frame.payload['message']}")
        console.print()

    asyncio.run(_run())


@app.command()
def parse(
    message: str = typer.Argument(..., help="Staff report, e.g. 'Broken window in classroom 4B'"),
    category: list[str] = typer.Option(
        [], "--category", "-c", help="Category as id:Name (repeatable)"
    ),
    provider: Optional[str] = typer.Option(None, help="claude | gemini | deepseek | kimi | mock"),
    env: Optional[str] = typer.Option(None),
    config: Optional[Path] = typer.Option(None),
):
    """Parse a staff report into a structured activity."""
    categories = []
    for entry in category:
        cat_id, _, name = entry.partition(":")
        categories.append({"id": cat_id.strip(), "name": name.strip() or cat_id.strip()})

    settings = _get_settings(env, config)
    configure_logging(settings.environment.value, level=logging.WARNING)
    gateway = AIGateway.from_settings(settings)
    try:
        request = build_activity_parse_request(message, categories, _parse_provider(provider))
    except ValueError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)

    result = asyncio.run(gateway.complete(request))
    activity = normalize_parsed_activity(result.data, categories, message)

    table = Table(title=f"Parsed activity ({result.provider_used.value})")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for field_name, value in activity.items():
        table.add_row(field_name, value)
    console.print(table)


if __name__ == "__main__":
    app()
