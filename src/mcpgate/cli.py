"""Command-line interface for mcpgate."""

import argparse
import asyncio
import json
import logging
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from mcpgate.exceptions import ConfigurationError, MCPGateError
from mcpgate.mcp.pool import ConnectionPool
from mcpgate.schemas import CapabilityServerDescriptor

# Load environment variables from .env file
load_dotenv()


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _truncate(text: str, width: int = 60) -> str:
    return text if len(text) <= width else text[: width - 3] + "..."


def cmd_serve(args) -> int:
    """Run the HTTP API under uvicorn."""
    import uvicorn

    from mcpgate.api.app import create_app

    try:
        app = create_app()
    except ConfigurationError as e:
        Console(stderr=True).print(f"[red]Configuration error: {e}[/red]")
        return 1

    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level="debug" if args.debug else "info",
    )
    return 0


async def cmd_probe(args) -> int:
    """Connect to one capability server and print what it offers."""
    console = Console()
    try:
        data = json.loads(Path(args.descriptor).read_text())
        descriptor = CapabilityServerDescriptor.model_validate(data)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        console.print(f"[red]Invalid descriptor {args.descriptor}: {e}[/red]")
        return 1

    async with ConnectionPool(connect_timeout=args.timeout) as pool:
        try:
            await pool.connect(descriptor)
            client = pool.get(descriptor.id)
            tools = await client.list_tools()
            resources = await client.list_resources()
            prompts = await client.list_prompts()
        except MCPGateError as e:
            console.print(f"[red]Error: {e}[/red]")
            return 1

        if args.json:
            print(
                json.dumps(
                    {
                        "server": client.server_info,
                        "tools": [t.to_wire() for t in tools],
                        "resources": [r.to_wire() for r in resources],
                        "prompts": [p.to_wire() for p in prompts],
                    },
                    indent=2,
                    ensure_ascii=False,
                )
            )
            return 0

        info = client.server_info
        console.print(
            f"\n[bold cyan]{descriptor.name}[/bold cyan] "
            f"({info.get('name', 'unknown')} {info.get('version', '')})"
        )

        table = Table(title="Tools")
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Description", style="magenta")
        for tool in tools:
            table.add_row(tool.name, _truncate(tool.description or ""))
        console.print(table)

        table = Table(title="Resources")
        table.add_column("URI", style="cyan", no_wrap=True)
        table.add_column("Name", style="magenta")
        table.add_column("MIME type", style="green")
        for resource in resources:
            table.add_row(resource.uri, resource.name or "", resource.mime_type or "")
        console.print(table)

        table = Table(title="Prompts")
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Arguments", style="yellow")
        table.add_column("Description", style="magenta")
        for prompt in prompts:
            arguments = ", ".join(
                f"{a.name}*" if a.required else a.name for a in prompt.arguments
            )
            table.add_row(prompt.name, arguments, _truncate(prompt.description or ""))
        console.print(table)
    return 0


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="mcpgate - capability server gateway and streaming tool-call bridge",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port")
    serve_parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    probe_parser = subparsers.add_parser(
        "probe", help="Connect to a capability server and list its capabilities"
    )
    probe_parser.add_argument("descriptor", help="Path to a server descriptor JSON file")
    probe_parser.add_argument(
        "--timeout", type=float, default=30.0, help="Connect timeout in seconds"
    )
    probe_parser.add_argument("--json", action="store_true", help="Output as JSON")
    probe_parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    configure_logging(args.debug)

    if args.command == "serve":
        return cmd_serve(args)
    if args.command == "probe":
        return asyncio.run(cmd_probe(args))

    parser.print_help()
    return 1


if __name__ == "__main__":
    exit(main())
