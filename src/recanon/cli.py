"""Recanon CLI: offline replay, preflight, remote claim verification, Gateway server."""

import argparse
import asyncio
import json
import sys
from importlib.metadata import version as get_version, PackageNotFoundError
from pathlib import Path

# verify-claim exit codes
EXIT_PASS = 0
EXIT_FAIL = 1
EXIT_ERROR = 2


def main():
    """Main CLI entry point for recanon commands."""
    try:
        recanon_version = get_version("recanon")
    except PackageNotFoundError:
        recanon_version = "dev"

    parser = argparse.ArgumentParser(
        prog="recanon",
        description="Recanon: deterministic render sealing and re-render verification"
    )
    parser.add_argument("--version", action="version", version=f"recanon {recanon_version}")
    # Common arguments
    parent_parser = argparse.ArgumentParser(add_help=False)
    parent_parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress all non-error output."
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # replay command
    replay_parser = subparsers.add_parser(
        "replay",
        help="Recompute an artifact bundle's hashes offline",
        parents=[parent_parser]
    )
    replay_parser.add_argument(
        "bundle_path",
        type=Path,
        help="Path to artifact bundle JSON"
    )
    replay_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full replay report as JSON"
    )

    # preflight command
    preflight_parser = subparsers.add_parser(
        "preflight",
        help="Check a renderer program for disallowed constructs",
        parents=[parent_parser]
    )
    preflight_parser.add_argument(
        "code_path",
        type=Path,
        help="Path to program source file"
    )

    # verify-claim command
    verify_claim_parser = subparsers.add_parser(
        "verify-claim",
        help="Re-render a claim bundle through a Gateway and compare its baseline hashes",
        parents=[parent_parser]
    )
    verify_claim_parser.add_argument(
        "claim_path",
        type=Path,
        help="Path to claim bundle JSON"
    )
    verify_claim_parser.add_argument(
        "--gateway",
        required=True,
        help="Gateway base URL"
    )
    verify_claim_parser.add_argument(
        "--timeout",
        type=float,
        default=60.0,
        help="Request timeout in seconds"
    )
    verify_claim_parser.add_argument(
        "--write-check",
        action="store_true",
        help="Write the updated check block back into the claim file"
    )

    # serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the render/verify Gateway",
        parents=[parent_parser]
    )
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port")
    serve_parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        default="info",
        help="Log level"
    )
    serve_parser.add_argument(
        "--renderer-url",
        default=None,
        help="Renderer base URL (overrides RECANON_RENDERER_URL)"
    )
    serve_parser.add_argument(
        "--rate-limit",
        type=int,
        default=None,
        help="Requests allowed per window per client"
    )
    serve_parser.add_argument(
        "--rate-window",
        type=int,
        default=None,
        help="Rate limit window in seconds"
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "replay":
        from .api import replay_bundle
        from .errors import BundleFormatError

        try:
            report = replay_bundle(Path(args.bundle_path).resolve())
        except FileNotFoundError as e:
            print(f"Error: File not found: {e}", file=sys.stderr)
            sys.exit(1)
        except BundleFormatError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

        if args.json:
            from ._internal.canonical_json import canonical_dumps
            print(canonical_dumps(report.model_dump(mode="json")))
        elif not args.quiet:
            status = "OK" if report.verified else "FAILED"
            print(f"[{status}] Replay of {report.artifact_id}")
            print(f"  Strategy: {report.strategy_name}")
            print(f"  Dataset: {report.dataset_source}")
            print(f"  Seed: {report.seed}  Range: {report.start_date} .. {report.end_date}")
            print(f"  Mode: {report.mode}")
            print(f"  Manifest hash: {report.integrity.computed_manifest_hash}")
            print(f"  Output hash: {report.integrity.computed_output_hash}")
            for mismatch in report.integrity.mismatches:
                print(f"    {mismatch.field}: expected {mismatch.expected}, computed {mismatch.actual}")
        if not report.verified:
            sys.exit(1)

    elif args.command == "preflight":
        from .api import preflight_file

        try:
            result = preflight_file(Path(args.code_path).resolve())
        except FileNotFoundError as e:
            print(f"Error: File not found: {e}", file=sys.stderr)
            sys.exit(1)
        except UnicodeDecodeError as e:
            print(f"Error: Program is not valid UTF-8: {e}", file=sys.stderr)
            sys.exit(1)

        for issue in result.errors:
            print(f"  error [{issue.code}] {issue.message}", file=sys.stderr)
        if not args.quiet:
            for issue in result.warnings:
                print(f"  warning [{issue.code}] {issue.message}")
            status = "OK" if result.valid else "FAILED"
            print(f"[{status}] Preflight complete")
            print(f"  Errors: {len(result.errors)}")
            print(f"  Warnings: {len(result.warnings)}")
        if not result.valid:
            sys.exit(1)

    elif args.command == "verify-claim":
        from .api import load_claim_bundle, verify_claim
        from .client import GatewayClient
        from .errors import RecanonError

        claim_path = Path(args.claim_path).resolve()

        async def _run():
            async with GatewayClient(args.gateway, timeout=args.timeout) as client:
                return await verify_claim(bundle, client)

        try:
            bundle = load_claim_bundle(claim_path)
            report = asyncio.run(_run())
        except FileNotFoundError as e:
            print(f"Error: File not found: {e}", file=sys.stderr)
            sys.exit(EXIT_ERROR)
        except RecanonError as e:
            print(f"Error: verification could not run: {e}", file=sys.stderr)
            sys.exit(EXIT_ERROR)

        if args.write_check:
            from ._internal.io.claim_bundle import encode_claim_bundle
            claim_path.write_bytes(encode_claim_bundle(report.bundle))

        result = report.result
        if not args.quiet:
            print(f"[{'PASS' if report.verified else 'FAIL'}] {report.bundle.claim.title or claim_path.name}")
            print(f"  Mode: {report.mode}")
            print(f"  Match: {result.hash_match_type}")
            for mismatch in result.mismatches:
                print(f"    {mismatch.field}: expected {mismatch.expected}, computed {mismatch.actual}")
        sys.exit(EXIT_PASS if report.verified else EXIT_FAIL)

    elif args.command == "serve":
        import logging

        import uvicorn

        from .gateway.app import create_app
        from .gateway.config import load_gateway_config

        logging.basicConfig(
            level=getattr(logging, args.log_level.upper()),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        overrides = {
            "renderer_url": args.renderer_url,
            "rate_limit": args.rate_limit,
            "rate_window_seconds": args.rate_window,
        }
        try:
            config = load_gateway_config({k: v for k, v in overrides.items() if v is not None})
        except ValueError as e:
            print(f"Error: invalid gateway configuration: {e}", file=sys.stderr)
            sys.exit(1)
        if not config.configured:
            print("Warning: no renderer configured; every operation will fail", file=sys.stderr)
        if not args.quiet:
            print(f"[OK] Gateway listening on {args.host}:{args.port}")
            print(f"  Config: {json.dumps(config.public_view())}")
        uvicorn.run(create_app(config), host=args.host, port=args.port, log_level=args.log_level)

    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
