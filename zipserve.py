"""CLI entry point for zipserve — serve the contents of a zip archive over HTTP.

Configuration:
  ZIPSERVE_HOST            Host to bind to (default: localhost)
  ZIPSERVE_PORT            Port to listen on (default: 8080)
  ZIPSERVE_INDEX_FALLBACK  Set to "1" to serve index.html for missing paths
"""

import argparse
import logging
import os
import sys

from zipfs import BackendError, Options
from zipfs_server import make_server
import zipfs_source


def load_filesystem(path: str | None, options: Options):
    """Load the archive at path, or the one embedded in this program when path is None."""
    if path is None:
        return zipfs_source.from_executable(options)
    return zipfs_source.from_path(path, options)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="zipserve — serve the contents of a zip archive over HTTP"
    )
    parser.add_argument(
        "archive", nargs="?",
        help="Zip archive to serve (default: the archive embedded in this program)",
    )
    parser.add_argument("-p", "--port", type=int,
                        default=os.environ.get("ZIPSERVE_PORT", "8080"),
                        help="Port to listen on")
    parser.add_argument("--host", default=os.environ.get("ZIPSERVE_HOST", "localhost"),
                        help="Host to bind to")
    parser.add_argument("--index-fallback", action="store_true",
                        default=os.environ.get("ZIPSERVE_INDEX_FALLBACK", "0") == "1",
                        help="Serve /index.html for paths that don't exist (single-page apps)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every entry and request")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(format="%(asctime)s %(message)s", datefmt="%H:%M:%S",
                        level=logging.DEBUG if args.verbose else logging.INFO)

    if args.archive is not None and not os.path.exists(args.archive):
        print(f"Error: {args.archive} not found", file=sys.stderr)
        sys.exit(1)

    options = Options(serve_index_for_missing=args.index_fallback)
    try:
        fs = load_filesystem(args.archive, options)
    except BackendError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    label = args.archive or "embedded archive"
    server = make_server(fs, args.host, args.port)
    print(f"Serving {label} on http://{args.host}:{args.port}/")
    print("Press Ctrl+C to stop.")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nShutting down.")
    finally:
        server.server_close()


if __name__ == "__main__":
    main()
