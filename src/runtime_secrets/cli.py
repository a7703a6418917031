"""Container startup entry point."""

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import LoaderSettings
from .loader import (
    EXIT_FATAL,
    EXIT_OK,
    check_all_providers_health,
    collect_provider_health,
    load_all_secrets,
)
from .logging import ensure_logging
from .providers.azure import AzureKeyVaultProvider

logger = logging.getLogger(__name__)

EXIT_EXEC_FAILED = 127


def load_command(args: argparse.Namespace) -> int:
    """Load secrets into this process's environment.

    Only useful for validating configuration: the variables disappear when
    the command exits. Use ``exec`` to hand them to a program.

    Returns:
        Exit code of load_all_secrets
    """
    return load_all_secrets()


def health_command(args: argparse.Namespace) -> int:
    """Probe every provider. Always exits 0."""
    if not args.json:
        return check_all_providers_health()

    ensure_logging(LoaderSettings.from_env().log_level)
    results = collect_provider_health()
    print(json.dumps({pid.value: status.value for pid, status in results.items()}, indent=2))
    return EXIT_OK


def exec_command(args: argparse.Namespace) -> int:
    """Load secrets, then replace this process with the given command.

    Returns:
        EXIT_FATAL if loading aborted or no command was given,
        EXIT_EXEC_FAILED if the command cannot be executed; otherwise the
        process is replaced and this function does not return
    """
    command: List[str] = list(args.cmd)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        print("exec: no command given", file=sys.stderr)
        return EXIT_FATAL

    result = load_all_secrets()
    if result != EXIT_OK:
        return result

    sys.stdout.flush()
    sys.stderr.flush()
    try:
        os.execvpe(command[0], command, os.environ)
    except OSError as exc:
        logger.error(
            "Cannot exec %s (%s)",
            command[0],
            type(exc).__name__,
            extra={"event_type": "exec_failed"},
        )
        return EXIT_EXEC_FAILED
    return EXIT_OK


def azure_certificate_command(args: argparse.Namespace) -> int:
    """Write the public certificate of an Azure Key Vault certificate as PEM."""
    settings = LoaderSettings.from_env()
    ensure_logging(settings.log_level)
    if not settings.enabled:
        logger.info("Secret loading disabled (SECRET_LOADER_ENABLED=false)")
        return EXIT_OK
    provider = AzureKeyVaultProvider.from_env()
    return int(provider.load_certificate(args.name, Path(args.output)))


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="runtime-secrets",
        description="Load secrets from Docker, 1Password, Vault, AWS, Azure and GCP into the environment",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Load secrets, then start the application with them
  runtime-secrets exec -- python -m myapp

  # Show which providers are reachable
  runtime-secrets health --json
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
        help="Show version number and exit",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser(
        "load",
        help="Load secrets from all providers in SECRET_LOADER_PRIORITY",
        description="Run every provider in priority order. Exits 2 only when "
        "SECRET_LOADER_FAIL_ON_ERROR=true and a provider fails.",
    )

    health_parser = subparsers.add_parser(
        "health",
        help="Check provider connectivity without loading secrets",
        description="Probe every registered provider. Never fails.",
    )
    health_parser.add_argument(
        "--json",
        action="store_true",
        help="Print per-provider status as JSON on stdout",
    )

    exec_parser = subparsers.add_parser(
        "exec",
        help="Load secrets, then exec a command with them in its environment",
    )
    exec_parser.add_argument(
        "cmd",
        nargs=argparse.REMAINDER,
        help="Command to run, after --",
    )

    cert_parser = subparsers.add_parser(
        "azure-certificate",
        help="Save the public certificate of an Azure Key Vault certificate as PEM",
    )
    cert_parser.add_argument("name", help="Certificate name in the vault")
    cert_parser.add_argument("output", help="Destination file")

    args = parser.parse_args(argv)

    if args.command == "load":
        return load_command(args)
    elif args.command == "health":
        return health_command(args)
    elif args.command == "exec":
        return exec_command(args)
    elif args.command == "azure-certificate":
        return azure_certificate_command(args)
    else:
        parser.print_help()
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
