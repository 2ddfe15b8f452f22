"""Module entrypoint: `python -m qdash` runs the TUI, `python -m qdash serve` the HTTP API."""

from __future__ import annotations

import argparse
import sys

from .app import main as run_tui
from .config import load_config
from .web import serve


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="qdash", description="Dashboard for cppq task queues.")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("tui", help="Run the terminal dashboard (default)")
    serve_parser = sub.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Interface to bind")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to listen on")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    if args.command == "serve":
        serve(load_config(), host=args.host, port=args.port)
    else:
        run_tui()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
