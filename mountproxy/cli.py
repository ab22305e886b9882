"""Command line entry point: `mountproxy <url>`."""
from __future__ import annotations

import argparse
import sys
from importlib.metadata import PackageNotFoundError, version
from typing import List, Optional

import uvicorn

from mountproxy.core.config import Settings
from mountproxy.main import create_app
from mountproxy.services.location import LocationStrategy, is_url

DEFAULT_PORT = 8090


def _version() -> str:
    try:
        return version("mountproxy")
    except PackageNotFoundError:
        return "0.0.0"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mountproxy", description="Reverse proxy a site under a local path")
    parser.add_argument("url", nargs="?", help="Upstream URL to forward to, e.g. https://cdn.example.net/npm")
    parser.add_argument("-p", "--port", type=int, default=DEFAULT_PORT, help=f"Port to listen on (default: {DEFAULT_PORT})")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1)")
    parser.add_argument("--base", default="/", help="Local path the upstream is mounted at (default: /)")
    parser.add_argument(
        "--location",
        choices=[s.value for s in LocationStrategy],
        default=LocationStrategy.SAME.value,
        help="How to treat Location headers from upstream (default: same)",
    )
    parser.add_argument(
        "--cors",
        nargs="?",
        const="true",
        default="false",
        metavar="ORIGIN",
        help="Allow cross-origin reads; without ORIGIN the request origin is echoed",
    )
    parser.add_argument("--referer", help="Referer header sent upstream")
    parser.add_argument("--drop-encoding-headers", action="store_true", help="Ask upstream for identity encoding")
    parser.add_argument("--unframe", action="store_true", help="Strip CSP, HSTS, X-Frame-Options and similar headers")
    parser.add_argument("--forwarded-headers", action="store_true", help="Add X-Forwarded-* headers upstream")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {_version()}")
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    return Settings(
        target=args.url,
        base=args.base,
        location=args.location,
        cors=args.cors,
        referer=args.referer,
        drop_encoding_headers=args.drop_encoding_headers,
        strip_restriction_headers=args.unframe,
        forwarded_headers=args.forwarded_headers,
        host=args.host,
        port=args.port,
        log_level=args.log_level,
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.url or not is_url(args.url):
        parser.print_help()
        return 1

    settings = settings_from_args(args)
    app = create_app(settings)
    print(f"Proxy server is listening at http://{settings.host}:{settings.port}{settings.base}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
