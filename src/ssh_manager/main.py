from __future__ import annotations

import argparse

from rich.console import Console

from .app import SSHManagerApp
from .environment import EnvironmentReport, verify_environment
from .errors import ErrorLogger, InterruptHandler, SSHManagerError, UserCancelledError
from .prompts import Prompts
from .settings import VERSION, ManagerSettings, SettingsError

console = Console()

EPILOG = """\
With no options, ssh-manager starts the interactive menu.

Environment:
  SSH_MANAGER_SSH_DIR            credential directory (default: ~/.ssh)
  SSH_MANAGER_LOG                error log (default: ~/.ssh-manager/errors.log)
  SSH_MANAGER_CONNECT_TIMEOUT    connection probe timeout in seconds (default: 10)
  SSH_MANAGER_AGENT_EXIT_CODES   ssh-add -l status mapping
                                 (default: running=0,no_keys=1,not_running=2)
"""


def get_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ssh-manager",
        description="Manage SSH keys, agent, host config and passwordless login",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
        allow_abbrev=False,
    )
    parser.add_argument("-h", "--help", action="store_true", help="Show this help and exit")
    parser.add_argument("-v", "--version", action="store_true", help="Show version and exit")
    parser.add_argument(
        "--quick-setup",
        action="store_true",
        help="Run the passwordless login wizard and exit",
    )
    return parser


def show_environment_report(report: EnvironmentReport) -> None:
    """Print failed checks only; a healthy environment stays quiet."""
    for check in report.checks:
        if check.passed:
            continue
        status = "[red]FAIL[/red]" if check.critical else "[yellow]WARN[/yellow]"
        console.print(f"  {status} {check.name}: {check.message}")
        if check.fix_hint:
            console.print(f"       Fix: {check.fix_hint}")


def run(args: list[str]) -> int:
    """Main entry point."""
    parser = get_parser()
    ns, unknown = parser.parse_known_args(args)

    if unknown:
        console.print(f"[red]Unknown option: {unknown[0]}[/red]")
        console.print("Use --help for usage information.")
        return 1

    if ns.help:
        parser.print_help()
        return 0

    if ns.version:
        console.print(f"ssh-manager {VERSION}")
        return 0

    try:
        settings = ManagerSettings.from_env()
    except SettingsError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        return 1

    report = verify_environment()
    show_environment_report(report)
    if not report.all_passed:
        console.print("[red]Required OpenSSH tools are missing.[/red]")
        return 1

    try:
        error_logger = ErrorLogger(settings.log_path)
    except OSError as e:
        console.print(f"[yellow]Error log unavailable ({e}); continuing without it[/yellow]")
        error_logger = None

    app = SSHManagerApp(settings, Prompts(console), error_logger=error_logger)

    try:
        with InterruptHandler():
            if ns.quick_setup:
                return app.run_quick_setup()
            return app.run()
    except UserCancelledError:
        console.print("\n[yellow]Interrupted. Goodbye.[/yellow]")
        return 0
    except SSHManagerError as e:
        console.print(f"[red]{e.format_full()}[/red]")
        if error_logger:
            error_logger.log_error(e)
        return 1
    finally:
        if error_logger:
            error_logger.close()
