"""
Command-line interface for KQL Console.

Starts the interactive query console, or runs a single query file
non-interactively with the ``run`` subcommand.
"""

import argparse
import sys
from pathlib import Path

from kql_console.config import Config, ConfigError, apply_overrides, load_config
from kql_console.logger import LogConfig, LogFormat, LoggingError, LogLevel, get_logger, setup_logging
from kql_console.models import BackendKind, parse_time_range
from kql_console.runner import build_session, run_console, run_once


_BACKENDS = {
    "workspace": BackendKind.WORKSPACE_QUERY,
    "hunting": BackendKind.THREAT_HUNTING_QUERY,
    "inventory": BackendKind.RESOURCE_INVENTORY_QUERY,
}


def _token_pair(value: str) -> tuple[str, str]:
    """argparse type for NAME=VALUE."""
    name, sep, token_value = value.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {value!r}")
    return name.strip(), token_value


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be positive: {number}")
    return number


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Args:
        argv: Argument list (defaults to sys.argv[1:] if None).
              Accepts explicit argv for testing.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        prog="kql-console",
        description="KQL Console - run library queries against Log Analytics, "
                    "threat hunting and Resource Graph.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  # Interactive console with the default library
  %(prog)s

  # Custom library, 7-day default window, YAML config
  %(prog)s -c config/settings.yaml --library ./queries --duration P7D

  # One workspace query, placeholders supplied up front
  %(prog)s run --backend workspace --workspace-id <id> -q queries/Identity/SigninFailures.kql \\
      --token UserPrincipalName=alice@contoso.com
""",
    )

    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help="Configuration file, JSON or YAML (default: built-in defaults)",
    )
    parser.add_argument(
        "--library",
        type=Path,
        default=None,
        metavar="PATH",
        help="Query library root (default: from config)",
    )
    parser.add_argument(
        "--duration",
        default=None,
        metavar="ISO",
        help="Default workspace query window, e.g. 'PT24H', 'P7D' (default: from config)",
    )
    parser.add_argument(
        "--max-rows",
        type=_positive_int,
        default=None,
        metavar="N",
        help="Row ceiling for resource inventory queries (default: from config)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        metavar="PATH",
        help="Also write JSON logs to this file",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default=None,
        help="Console log format (default: from config)",
    )

    subparsers = parser.add_subparsers(dest="command")
    run_parser = subparsers.add_parser(
        "run",
        help="Run one query file without prompting and export results to CSV",
    )
    run_parser.add_argument(
        "-b", "--backend",
        choices=sorted(_BACKENDS),
        required=True,
        help="Query backend",
    )
    run_parser.add_argument(
        "-q", "--query-file",
        type=Path,
        required=True,
        metavar="PATH",
        help="Path to query file",
    )
    run_parser.add_argument(
        "-w", "--workspace-id",
        default=None,
        metavar="ID",
        help="Workspace identifier (workspace backend only)",
    )
    run_parser.add_argument(
        "-t", "--token",
        type=_token_pair,
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Placeholder value; repeat for each placeholder",
    )
    run_parser.add_argument(
        "-r", "--range",
        dest="time_range",
        default=None,
        metavar="RANGE",
        help="ISO duration or 'start/end' ISO timestamps (workspace and hunting backends)",
    )
    run_parser.add_argument(
        "--rows",
        type=_positive_int,
        default=None,
        metavar="N",
        help="Row limit (inventory backend only)",
    )

    return parser.parse_args(argv)


def validate_paths(args: argparse.Namespace) -> list[str]:
    """
    Validate that required paths exist.

    Returns:
        List of error messages (empty if all paths valid).
    """
    errors = []

    if args.config is not None and not args.config.exists():
        errors.append(f"Config file not found: {args.config}")
    if args.library is not None and not args.library.is_dir():
        errors.append(f"Query library not found: {args.library}")
    if getattr(args, "query_file", None) is not None and not args.query_file.exists():
        errors.append(f"Query file not found: {args.query_file}")

    return errors


def _log_config(args: argparse.Namespace, config: Config) -> LogConfig:
    level = LogLevel.DEBUG if args.verbose else LogLevel[config.logging.level]
    log_format = LogFormat(args.log_format or config.logging.format)
    return LogConfig(
        level=level,
        format=log_format,
        log_file=args.log_file or config.logging.log_file,
    )


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point.

    Args:
        argv: Argument list (defaults to sys.argv[1:] if None).

    Returns:
        Exit code: 0 for success, 1 for error, 130 when interrupted.
    """
    args = parse_args(argv)

    errors = validate_paths(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    try:
        config = apply_overrides(
            load_config(args.config),
            library_root=args.library,
            duration=args.duration,
            max_rows=args.max_rows,
        )
        setup_logging(_log_config(args, config))
    except (ConfigError, LoggingError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    get_logger("cli").debug(
        "Configuration loaded from %s (library=%s)", args.config or "defaults", config.library.root
    )
    session = build_session(config)

    try:
        if args.command == "run":
            summary = run_once(
                session,
                args.query_file,
                _BACKENDS[args.backend],
                tokens=dict(args.token),
                workspace_id=args.workspace_id,
                time_range=parse_time_range(args.time_range) if args.time_range else None,
                row_limit=args.rows,
            )
            return 1 if summary.failed else 0

        run_console(session)
        return 0
    except KeyboardInterrupt:
        print("\nAborted.", file=sys.stderr)
        return 130  # Standard exit code for SIGINT
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1
    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
