"""
Main entry point for the DevTools bridge

Parses command-line options, builds the app and runs it under uvicorn on the
WebSocket port.

@.architecture
Incoming: Command line, config/settings.py --- {CLI args, Settings}
Processing: parse_args(), main() --- {2 jobs: config_loading, server_startup}
Outgoing: uvicorn server, Network (HTTP/WebSocket/TCP) --- {FastAPI application instance}
"""

import argparse
from typing import List, Optional

import uvicorn

from app import create_app
from config.settings import get_settings


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="DevTools bridge: relay device bus frames to WebSocket and TCP clients",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Relay only, loopback interfaces
  python main.py

  # Watch a compiled program and redeploy it on change
  python main.py built/prog.devs

  # Accept connections from other machines and trace frames
  python main.py --internet --trace frames.log
        """
    )
    parser.add_argument("program", nargs="?", help="compiled program file to watch and deploy")
    parser.add_argument("--internet", action="store_true", default=None,
                        help="listen on all interfaces instead of 127.0.0.1")
    parser.add_argument("--localhost", action="store_true", default=None,
                        help="fetch the proxy page from a local docs server")
    parser.add_argument("--trace", metavar="PATH", help="write every bus frame to a trace file")
    parser.add_argument("--log-level", help="log level (DEBUG, INFO, WARNING, ...)")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)

    settings = get_settings().with_overrides(
        trace_path=args.trace,
        relay={"internet": args.internet},
        deploy={"program": args.program},
        proxy={"localhost": args.localhost},
        monitoring={"log_level": args.log_level},
    )

    app = create_app(settings)

    uvicorn.run(
        app,
        host=settings.relay.bind_host,
        port=settings.relay.ws_port,
        log_level=settings.monitoring.log_level.lower(),
    )


if __name__ == "__main__":
    main()
