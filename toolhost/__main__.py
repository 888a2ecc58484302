"""
Run the tool host HTTP server.

Usage:
    python -m toolhost --host 127.0.0.1 --port 8000 --servers servers.yaml
"""

import argparse

import uvicorn

from toolhost.api.app import create_app
from toolhost.config.settings import Settings


def main() -> None:
    parser = argparse.ArgumentParser(description="toolhost server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--servers", default=None, help="YAML/JSON file of server definitions to seed")
    parser.add_argument("--memory", action="store_true", help="Use the in-memory store")
    args = parser.parse_args()

    overrides: dict = {}
    if args.servers:
        overrides["servers_file"] = args.servers
    if args.memory:
        overrides["storage"] = {"backend": "memory"}

    app = create_app(Settings(**overrides))
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
