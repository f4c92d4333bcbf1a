#!/usr/bin/env python3
"""
Command-line interface for the layer relay.

Usage:
    uv run python cli.py [command] [options]

Commands:
    serve       Start the relay server
    layers      List the configured layers
    test        Run the test suite

Examples:
    uv run python cli.py serve
    uv run python cli.py layers --file data/layers.json
    uv run python cli.py test -v
"""

import argparse
import subprocess
import sys
from pathlib import Path
from typing import Optional

from shared.config import get_settings
from shared.errors import ConfigError
from shared.layers import LayerRegistry


def list_layers(layers_file: Optional[Path]) -> None:
    """Print the layer table."""
    path = layers_file or get_settings().layers_file
    try:
        registry = LayerRegistry.from_file(path)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(f"{len(registry)} layers in {path}:")
    for layer in registry:
        print(f"  {layer.name}")
        print(f"    table:   {layer.table or '(none, no snapshot)'}")
        print(f"    id:      {layer.id_field or '(GeoJSON id)'}")
        print(f"    update:  {layer.update_event_name}")
        print(f"    delete:  {layer.delete_event_name}")


def run_tests(args: list[str]) -> None:
    """Run the test suite."""
    cmd = ["uv", "run", "pytest"] + args
    subprocess.run(cmd)


def run_server(host: str, port: Optional[int], reload: bool) -> None:
    """Start the relay server."""
    import uvicorn

    settings = get_settings()
    port = port or settings.port
    print(f"Starting relay at http://{host}:{port}{settings.virtual_path}/")
    uvicorn.run("api.main:app", host=host, port=port, reload=reload)


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="SSE Layer Relay CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s serve --port 3003
  %(prog)s layers
  %(prog)s test -v
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Start the relay server")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to (default: PORT)")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    # Layers command
    layers_parser = subparsers.add_parser("layers", help="List the configured layers")
    layers_parser.add_argument("--file", type=Path, default=None, help="Layers file (default: LAYERS_FILE)")

    # Test command
    test_parser = subparsers.add_parser("test", help="Run the test suite")
    test_parser.add_argument(
        "pytest_args",
        nargs="*",
        default=[],
        help="Arguments to pass to pytest",
    )

    args = parser.parse_args()

    try:
        if args.command == "serve":
            run_server(args.host, args.port, args.reload)
        elif args.command == "layers":
            list_layers(args.file)
        elif args.command == "test":
            run_tests(args.pytest_args)
        else:
            parser.print_help()
    except ConfigError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
