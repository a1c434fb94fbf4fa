#!/usr/bin/env python3
"""
APIBola CLI - Command Line Interface

Main entry point for the request generator.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from . import __version__, __description__
from . import openapi, rules
from .classifier import expected_codes
from .config import ScanConfig, split_methods
from .errors import ApiBolaError
from .reporter import Reporter, print_error, print_warning, print_info, print_success
from .resolver import compile_pattern
from .scanner import Scanner


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="apibola",
        description=__description__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  apibola generate --api api.json --db ids.cfg --auth eyJ...
  apibola generate --api api.json --db ids.cfg --no-auth --no-replay
  apibola generate --api api.json --db ids.cfg --auth eyJ... --target staging.example.com --ado
  apibola validate --api api.json --db ids.cfg
  apibola serve --listen :8080
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Generate command
    gen_parser = subparsers.add_parser("generate", help="Build, replay and classify requests")

    gen_parser.add_argument(
        "--config", "-c",
        help="JSON file with default settings (flags override it)"
    )

    # Inputs
    input_group = gen_parser.add_argument_group("Inputs")
    input_group.add_argument(
        "--api",
        help="OpenAPI JSON file to parse"
    )
    input_group.add_argument(
        "--db",
        help="Rule database to read identifiers from"
    )

    # Authentication
    auth_group = gen_parser.add_argument_group("Authentication")
    auth_group.add_argument(
        "--auth", "-a",
        help="'Authorization: Bearer' header token value"
    )
    auth_group.add_argument(
        "--no-auth",
        action="store_true",
        default=None,
        help="Strip Authorization: and Cookie: headers"
    )

    # Generation options
    build_group = gen_parser.add_argument_group("Generation Options")
    build_group.add_argument(
        "--target",
        help="Server to force requests to (replaces the API's servers)"
    )
    build_group.add_argument(
        "--ignore-methods",
        help="HTTP methods to not build (e.g. PUT,PATCH)"
    )
    build_group.add_argument(
        "--strict",
        action="store_true",
        default=None,
        help="Fail if a required value can't be filled"
    )
    build_group.add_argument(
        "--all-bodies",
        action="store_true",
        default=None,
        help="Force writing a body for ALL requests"
    )
    build_group.add_argument(
        "--proto",
        help="Protocol for servers without a scheme (default: https)"
    )

    # Replay options
    replay_group = gen_parser.add_argument_group("Replay Options")
    replay_group.add_argument(
        "--no-replay",
        action="store_true",
        default=None,
        help="Do not replay built requests, emit them instead"
    )
    replay_group.add_argument(
        "--threads",
        type=int,
        help="Number of concurrent requests (default: 5)"
    )
    replay_group.add_argument(
        "--delay",
        type=float,
        help="Delay between requests in seconds (default: 0)"
    )
    replay_group.add_argument(
        "--timeout",
        type=int,
        help="Request timeout in seconds (default: 30)"
    )
    replay_group.add_argument(
        "--no-verify-ssl",
        action="store_true",
        default=None,
        help="Disable SSL certificate verification"
    )
    replay_group.add_argument(
        "--proxy",
        help="Proxy URL (e.g., http://127.0.0.1:8080)"
    )

    # Output options
    output_group = gen_parser.add_argument_group("Output Options")
    output_group.add_argument(
        "--output", "-o",
        help="Output file path (default: stdout)"
    )
    output_group.add_argument(
        "--ado",
        action="store_true",
        default=None,
        help="Use Azure DevOps output format for replay results"
    )
    output_group.add_argument(
        "--print-reqs",
        action="store_true",
        default=None,
        help="Log built requests"
    )
    output_group.add_argument(
        "--verbose", "-v", "-D",
        action="store_true",
        default=None,
        help="Verbose logging output"
    )
    output_group.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output"
    )

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the generator as an HTTP service")
    serve_parser.add_argument(
        "--listen", "-l",
        default=":8080",
        help="Address to listen on (default: :8080)"
    )
    serve_parser.add_argument(
        "--cert",
        help="Certificate (if listening HTTPS)"
    )
    serve_parser.add_argument(
        "--key",
        help="Private key (if listening HTTPS)"
    )

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Check an API file and rule database")
    validate_parser.add_argument(
        "--api",
        required=True,
        help="OpenAPI JSON file to check"
    )
    validate_parser.add_argument(
        "--db",
        required=True,
        help="Rule database to check"
    )

    return parser


def build_config(args) -> ScanConfig:
    """Merge an optional config file with command line flags."""
    config = ScanConfig.from_file(args.config) if args.config else ScanConfig()

    overrides = {
        "api_file": args.api,
        "db_file": args.db,
        "auth_token": args.auth,
        "no_auth": args.no_auth,
        "target": args.target,
        "ignore_methods": split_methods(args.ignore_methods) if args.ignore_methods else None,
        "strict": args.strict,
        "all_bodies": args.all_bodies,
        "proto": args.proto,
        "no_replay": args.no_replay,
        "threads": args.threads,
        "delay": args.delay,
        "timeout": args.timeout,
        "verify_ssl": False if args.no_verify_ssl else None,
        "proxy": args.proxy,
        "output_file": args.output,
        "output_format": "ado" if args.ado else None,
        "print_requests": args.print_reqs,
        "verbose": args.verbose,
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(config, name, value)

    config.validate()
    return config


async def run_generate(args) -> int:
    """Run generation, and replay unless disabled."""
    reporter = Reporter(use_color=not args.no_color)

    try:
        config = build_config(args)

        if config.verbose:
            reporter.print_banner()
            reporter.print_config(config)

        scanner = Scanner.load(config, reporter=reporter)
        async with scanner:
            output = await scanner.run()

    except KeyboardInterrupt:
        print_warning("\nRun interrupted by user")
        return 130
    except ApiBolaError as e:
        print_error(f"fatal: {e}")
        return 1

    if config.output_file:
        try:
            reporter.export(output, config.output_file)
        except OSError as e:
            print_error(f"could not write {config.output_file}: {e}")
            return 1
    else:
        sys.stdout.write(output)
        sys.stdout.flush()

    return 0


def run_serve(args) -> int:
    """Run the HTTP service until interrupted."""
    from .server import run_server

    try:
        run_server(args.listen, args.cert, args.key)
    except ApiBolaError as e:
        print_error(f"err: {e}")
        return 1
    return 0


def validate_inputs(args) -> int:
    """Parse both inputs and check every regex and declared response code."""
    for filepath in (args.api, args.db):
        if not Path(filepath).exists():
            print_error(f"File not found: {filepath}")
            return 1

    errors = []
    warnings = []

    try:
        api = openapi.load(args.api)
        store = rules.load(args.db)
    except ApiBolaError as e:
        print_error(str(e))
        return 1

    for name, pattern in store.patterns():
        try:
            compile_pattern(pattern)
        except ApiBolaError as e:
            errors.append(f"{name}: {e}")

    for operation in api.operations():
        try:
            expected_codes(operation)
        except ApiBolaError as e:
            errors.append(str(e))
        for param in operation.required("path") + operation.required("query") + operation.required("header"):
            if param.name not in store:
                warnings.append(f"{operation.method.upper()} {operation.path}: no rule for '{param.name}'")

    if not api.servers:
        warnings.append("API declares no servers, a target will be required")

    if errors:
        for error in errors:
            print_error(error)
        return 1

    for warning in warnings:
        print_warning(warning)

    print_info(f"{len(api.operations())} operations, {len(store)} records")
    print_success("Inputs are valid")
    return 0


def main():
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if args.command == "generate":
        exit_code = asyncio.run(run_generate(args))
    elif args.command == "serve":
        exit_code = run_serve(args)
    elif args.command == "validate":
        exit_code = validate_inputs(args)
    else:
        parser.print_help()
        exit_code = 0

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
