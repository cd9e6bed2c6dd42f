#!/usr/bin/env python3
"""CLI for resolving commits to merge/pull requests."""

import argparse
import asyncio
import logging
import sys
from dataclasses import replace

from .engine import Engine
from .providers.base import MergeRequestProvider
from .types import MergeRequestStats
from .render import (
    print_error,
    print_info,
    print_lookup,
    print_providers,
    print_vcs_error,
)


async def run_lookup(remote: str, sha: str, with_stats: bool) -> int:
    """Resolve one commit and print the result; returns the exit code."""
    async with Engine() as engine:
        provider = engine.registry.detect(remote)
        if provider is None:
            print_error(f"No provider recognises remote: {remote}")
            print_providers(engine.provider_status())
            return 1

        engine.orchestrator.on_error(
            lambda error, p: print_vcs_error(error, p.name) if error.should_surface else None
        )
        result = await engine.orchestrator.resolve(remote, sha)
        if with_stats and result.mr:
            stats = await fetch_stats(engine, provider, remote, sha, result.mr.number)
            if stats:
                result = replace(result, mr=result.mr.with_stats(stats))

        print_lookup(result, sha, provider.id)
        return 0 if result.checked else 2


async def fetch_stats(
    engine: Engine, provider: MergeRequestProvider, remote: str, sha: str, number: int
) -> MergeRequestStats | None:
    """Stats for a resolved MR; asks the provider directly when caching is off."""
    if engine.cache.enabled:
        return await engine.orchestrator.fetch_stats(remote, sha)
    info = provider.parse_remote_url(remote)
    if info is None:
        return None
    stats = await provider.fetch_stats(info.project_path, number, info.host)
    return stats.data if stats.success else None


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Find the merge/pull request that introduced a commit",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # lookup command (one-shot)
    lookup_parser = subparsers.add_parser("lookup", help="Resolve a single commit")
    lookup_parser.add_argument("--remote", "-r", type=str, required=True, help="Git remote URL")
    lookup_parser.add_argument("--sha", "-s", type=str, required=True, help="Commit SHA")
    lookup_parser.add_argument("--stats", action="store_true", help="Also fetch change statistics")

    # providers command
    subparsers.add_parser("providers", help="Show configured providers")

    # serve command (local API)
    serve_parser = subparsers.add_parser("serve", help="Start the local lookup API server")
    serve_parser.add_argument("--host", type=str, default=None, help="Host to bind (default: from .env or 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind (default: from .env or 8765)")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "lookup":
        sys.exit(asyncio.run(run_lookup(args.remote, args.sha, args.stats)))
    elif args.command == "providers":
        print_providers(Engine().provider_status())
    elif args.command == "serve":
        from .config import API_HOST, API_PORT
        from .server import run_server

        host = args.host or API_HOST
        port = args.port or API_PORT
        print_info(f"Starting API server at http://{host}:{port}")
        run_server(host, port)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
