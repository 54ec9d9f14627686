#!/usr/bin/env python3
"""Matilda Dictation command line interface."""

import asyncio
import json as jsonlib
import wave
from pathlib import Path

import aiohttp
import rich_click as click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .core.config import ConfigLoader, get_config
from .recognition.engines.loopback import DEFAULT_FINAL_TEXT, LoopbackEngine
from .recognition.service import RecognitionService
from .recognition.sink import RecordingSink
from .recognition.types import EngineBuildError, SessionFailure, SessionResult
from .recognition.vendors import VENDORS, get_vendor_info, has_credentials, is_vendor_available

click.rich_click.USE_RICH_MARKUP = True

# Dracula theme colors
click.rich_click.STYLE_OPTION = "#ff79c6"
click.rich_click.STYLE_ARGUMENT = "#8be9fd"
click.rich_click.STYLE_COMMAND = "#50fa7b"
click.rich_click.STYLE_USAGE = "#bd93f9"
click.rich_click.STYLE_HELPTEXT = "#b3b8c0"

console = Console()

PCM_CHUNK_MS = 100


def _load_config(config_path: str | None) -> ConfigLoader:
    if config_path:
        return ConfigLoader(config_path)
    return get_config()


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="Matilda Dictation")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help=" ⚙️  Configuration file path")
@click.pass_context
def main(ctx, config_path):
    """🎙️ [bold cyan]Matilda Dictation[/bold cyan] - speech recognition sessions for voice input

    \b
    [bold yellow]🎯 Quick Start:[/bold yellow]
    \b
      [green]matilda-dictation vendors[/green]               [italic]# List recognition vendors[/italic]
      [green]matilda-dictation simulate[/green]              [italic]# Run a mock session end to end[/italic]
      [green]matilda-dictation serve --port 8790[/green]     [italic]# Start the external speech API[/italic]
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@main.command()
@click.option("--host", help=" 🏠 Bind host (default: server.bind_host)")
@click.option("--port", type=int, help=" 🔌 WebSocket port (default: server.port)")
@click.pass_context
def serve(ctx, host, port):
    """🌐 Run the multi-session WebSocket server."""
    from .core import config as config_module
    from .server.main import main as server_main

    if ctx.obj.get("config_path"):
        config_module._config_loader = ConfigLoader(ctx.obj["config_path"])

    config = get_config()
    console.print(
        Panel.fit(
            f"[bold]ws://{host or config.server_bind_host}:{port or config.server_port}[/bold]\n"
            f"vendor: [cyan]{config.vendor}[/cyan]  backup: "
            f"[cyan]{config.backup_vendor if config.backup_enabled else 'off'}[/cyan]",
            title="🎙️ Matilda Dictation",
            border_style="#bd93f9",
        )
    )
    server_main(host, port)


@main.command()
@click.option("--json", "as_json", is_flag=True, help=" 📄 Output JSON")
@click.pass_context
def vendors(ctx, as_json):
    """📋 List recognition vendors and whether they can be used."""
    config = _load_config(ctx.obj.get("config_path"))
    info = get_vendor_info()
    for vendor in info:
        info[vendor]["credentials"] = has_credentials(vendor, config)
        info[vendor]["available"] = is_vendor_available(vendor, config)

    if as_json:
        click.echo(jsonlib.dumps(info, indent=2))
        return

    table = Table(title="Recognition vendors")
    table.add_column("Vendor", style="cyan")
    table.add_column("Kind")
    table.add_column("Key")
    table.add_column("Available")
    table.add_column("Description", style="dim")
    for vendor, details in info.items():
        marker = "[bold]*[/bold] " if vendor == config.vendor else ""
        key = "-" if not details["requires_key"] else ("✓" if details["credentials"] else "missing")
        table.add_row(
            f"{marker}{vendor}",
            details["kind"],
            key,
            "[green]yes[/green]" if details["available"] else "[red]no[/red]",
            details["description"],
        )
    console.print(table)


@main.command()
@click.option("--json", "as_json", is_flag=True, help=" 📄 Output JSON")
@click.pass_context
def status(ctx, as_json):
    """📊 Show configuration and probe a running server."""
    config = _load_config(ctx.obj.get("config_path"))
    health = asyncio.run(_probe_health(config))
    summary = {
        "version": __version__,
        "vendor": config.vendor,
        "vendor_available": config.vendor in VENDORS and is_vendor_available(config.vendor, config),
        "backup": config.backup_vendor if config.backup_enabled else None,
        "failover_mode": config.failover_mode,
        "ai_postprocess": config.ai_postprocess_enabled,
        "external_api_enabled": config.external_api_enabled,
        "server": f"ws://{config.server_host}:{config.server_port}",
        "health": health,
    }

    if as_json:
        click.echo(jsonlib.dumps(summary, indent=2))
        return

    lines = [f"[bold]{key}[/bold]: {value}" for key, value in summary.items() if key != "health"]
    if health is None:
        lines.append("[bold]server[/bold]: [red]not running[/red]")
    else:
        lines.append(
            f"[bold]server[/bold]: [green]{health.get('status')}[/green] "
            f"({health.get('active_sessions', 0)} session(s), recording={health.get('recording')})"
        )
    console.print(Panel("\n".join(lines), title="📊 Matilda Dictation status", border_style="#50fa7b"))


async def _probe_health(config: ConfigLoader) -> dict | None:
    url = f"http://{config.server_host}:{config.server_port + 1}/health"
    try:
        timeout = aiohttp.ClientTimeout(total=2)
        async with aiohttp.ClientSession(timeout=timeout) as session, session.get(url) as response:
            response.raise_for_status()
            return await response.json()
    except (aiohttp.ClientError, asyncio.TimeoutError):
        return None


@main.command()
@click.option("--text", default=DEFAULT_FINAL_TEXT, help=" 💬 Transcript returned by the mock engine")
@click.option("--vendor", help=" 🤖 Use a real vendor instead of the mock engine")
@click.option("--wav", "wav_path", type=click.Path(exists=True, dir_okay=False), help=" 🔊 16-bit PCM WAV to push")
@click.option("--hold-ms", type=int, default=300, help=" ⏱️  Recording time before stop")
@click.option("--json", "as_json", is_flag=True, help=" 📄 Output JSON")
@click.pass_context
def simulate(ctx, text, vendor, wav_path, hold_ms, as_json):
    """🎯 Run one recognition session and print its events."""
    config = _load_config(ctx.obj.get("config_path"))
    try:
        sink = asyncio.run(_simulate(config, text, vendor, wav_path, hold_ms))
    except EngineBuildError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise SystemExit(1) from e

    if as_json:
        events = [{"event": name, "payload": _payload(value)} for name, value in sink.events]
        click.echo(jsonlib.dumps(events, indent=2))
        return

    table = Table(title=f"Session {sink.session_id}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Event", style="cyan")
    table.add_column("Payload")
    for index, (name, value) in enumerate(sink.events, 1):
        payload = _payload(value)
        table.add_row(str(index), name, "" if payload is None else jsonlib.dumps(payload, ensure_ascii=False))
    console.print(table)


async def _simulate(config: ConfigLoader, text: str, vendor: str | None, wav_path: str | None, hold_ms: int):
    service = RecognitionService(config)
    sink = RecordingSink()
    engine = None if vendor else LoopbackEngine(text=text, auto_finish=False)
    session = await service.open_session("cli", sink, vendor=vendor, engine=engine)

    if wav_path:
        for chunk, rate, channels in _read_wav_chunks(Path(wav_path)):
            session.write_audio(chunk, rate, channels)
            await asyncio.sleep(0)
    else:
        await asyncio.sleep(hold_ms / 1000)

    await session.stop()
    await session.wait_closed()
    return sink


def _read_wav_chunks(path: Path):
    with wave.open(str(path), "rb") as wav:
        if wav.getsampwidth() != 2:
            raise click.BadParameter("only 16-bit PCM WAV files are supported", param_hint="--wav")
        rate = wav.getframerate()
        channels = wav.getnchannels()
        frames_per_chunk = max(1, rate * PCM_CHUNK_MS // 1000)
        while True:
            chunk = wav.readframes(frames_per_chunk)
            if not chunk:
                break
            yield chunk, rate, channels


def _payload(value):
    if isinstance(value, (SessionResult, SessionFailure)):
        return value.to_dict()
    return value


if __name__ == "__main__":
    main()
