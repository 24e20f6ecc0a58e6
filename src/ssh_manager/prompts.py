from __future__ import annotations

import getpass
from collections.abc import Iterable, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, IntPrompt, Prompt
from rich.table import Table

from .errors import SSHManagerError, UserCancelledError
from .types import BackupArchive, HostEntry, KeyPair, SecureString, SecurityFinding

NAV_BAR = "[dim][Enter] continue  [b] back  [m] main menu  [q] quit[/dim]"

MIN_SUGGESTED_PASSPHRASE = 10


def format_bytes(size_bytes: int) -> str:
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.1f} MB"


class Prompts:
    """Console input and output for the interactive session."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()

    @property
    def console(self) -> Console:
        return self._console

    # Input

    def ask_text(
        self,
        prompt: str,
        default: str | None = None,
        required: bool = True,
    ) -> str:
        while True:
            if default is not None:
                value = Prompt.ask(prompt, default=default, console=self._console)
            else:
                value = Prompt.ask(prompt, default="", show_default=False, console=self._console)
            value = value.strip()
            if value or not required:
                return value
            self._console.print("[red]A value is required[/red]")

    def ask_int(self, prompt: str, default: int) -> int:
        while True:
            value = IntPrompt.ask(prompt, default=default, console=self._console)
            if value > 0:
                return value
            self._console.print("[red]Enter a positive number[/red]")

    def get_passphrase(
        self,
        prompt: str,
        confirm: bool = False,
        allow_empty: bool = True,
    ) -> SecureString:
        """Read a passphrase without echo.

        Args:
            prompt: The prompt message to display
            confirm: Whether to require typing it twice
            allow_empty: Whether an empty passphrase is accepted

        Returns:
            SecureString containing the passphrase
        """
        while True:
            value = getpass.getpass(f"{prompt}: ")

            if not value and not allow_empty:
                self._console.print("[red]Passphrase cannot be empty[/red]")
                continue

            if value and len(value) < MIN_SUGGESTED_PASSPHRASE:
                self._console.print(
                    f"[yellow]Warning: passphrases shorter than {MIN_SUGGESTED_PASSPHRASE} "
                    "characters are easy to guess.[/yellow]"
                )

            if confirm:
                confirm_value = getpass.getpass(f"{prompt} (confirm): ")
                if value != confirm_value:
                    self._console.print("[red]Passphrases do not match[/red]")
                    continue

            return SecureString(value)

    def confirm(self, message: str, default: bool = False) -> bool:
        return Confirm.ask(message, default=default, console=self._console)

    def confirm_destructive(self, subject: str, operation: str) -> bool:
        """Ask before a destructive operation. The default answer is no."""
        self._console.print()
        self._console.print(
            Panel(
                f"[bold red]This will {operation}[/bold red] [bold]{subject}[/bold]\n\n"
                "[yellow]This cannot be undone from here.[/yellow]",
                border_style="red",
                title="Confirmation Required",
            )
        )
        return Confirm.ask("Are you sure?", default=False, console=self._console)

    def select_option(self, options: Sequence[str], prompt: str) -> int | None:
        """Pick one of ``options``; returns its index, or None on an empty answer."""
        if not options:
            return None

        for i, option in enumerate(options, 1):
            self._console.print(f"  [cyan][{i}][/cyan] {option}")
        self._console.print()

        while True:
            choice = Prompt.ask(
                f"{prompt} (1-{len(options)}, Enter to cancel)",
                default="",
                show_default=False,
                console=self._console,
            ).strip()
            if not choice:
                return None
            if choice.isdigit() and 1 <= int(choice) <= len(options):
                return int(choice) - 1
            self._console.print("[red]Invalid selection[/red]")

    def select_key(self, keys: Sequence[KeyPair], prompt: str) -> KeyPair | None:
        if not keys:
            self._console.print("[yellow]No SSH keys found[/yellow]")
            return None

        self.show_keys(keys)
        index = self.select_option([key.name for key in keys], prompt)
        return keys[index] if index is not None else None

    def select_host(self, hosts: Sequence[HostEntry], prompt: str) -> HostEntry | None:
        if not hosts:
            self._console.print("[yellow]No hosts configured[/yellow]")
            return None

        index = self.select_option([f"{host.alias} ({host.target})" for host in hosts], prompt)
        return hosts[index] if index is not None else None

    def select_archive(
        self, archives: Sequence[BackupArchive], prompt: str
    ) -> BackupArchive | None:
        if not archives:
            self._console.print("[yellow]No backups found[/yellow]")
            return None

        labels = [
            f"{archive.path.name}  {archive.captured_at:%Y-%m-%d %H:%M:%S}  "
            f"{format_bytes(archive.size_bytes)}"
            for archive in archives
        ]
        index = self.select_option(labels, prompt)
        return archives[index] if index is not None else None

    def menu_choice(self, prompt: str) -> str:
        return Prompt.ask(prompt, default="", show_default=False, console=self._console)

    def navigation(self) -> str:
        """Read the uniform back/home/quit response."""
        self._console.print()
        self._console.print(NAV_BAR)
        return Prompt.ask("", default="", show_default=False, console=self._console)

    # Output

    def show_header(self, version: str) -> None:
        self._console.clear()
        self._console.print(
            Panel(
                f"[bold]SSH Manager[/bold] v{version}\nKeys, agent, hosts and passwordless login",
                border_style="cyan",
            )
        )

    def show_breadcrumb(self, breadcrumb: str) -> None:
        self._console.print(f"[dim]{breadcrumb}[/dim]")
        self._console.print()

    def show_section(self, title: str) -> None:
        self._console.print(f"[bold cyan]{title}[/bold cyan]")
        self._console.print()

    def show_step(self, step_number: int, total_steps: int, description: str) -> None:
        self._console.print()
        self._console.print(
            f"[bold cyan][Step {step_number}/{total_steps}][/bold cyan] {description}"
        )

    def show_success(self, message: str) -> None:
        self._console.print(f"[green]✓[/green] {message}")

    def show_info(self, message: str) -> None:
        self._console.print(f"[blue]ℹ[/blue] {message}")

    def show_warning(self, message: str) -> None:
        self._console.print(f"[yellow]⚠[/yellow] {message}")

    def show_error(self, error: Exception, recovery_hint: str | None = None) -> None:
        self._console.print()
        if isinstance(error, SSHManagerError) and error.is_warning:
            self._console.print(f"[yellow]⚠[/yellow] {error}")
        else:
            self._console.print(f"[bold red]✗[/bold red] {error}")

        hints = [recovery_hint] if recovery_hint else []
        if isinstance(error, SSHManagerError):
            hints += [str(hint) for hint in error.recovery_hints]
        if hints:
            self._console.print()
            self._console.print(Panel("\n".join(hints), title="Recovery", border_style="yellow"))

    def show_keys(self, keys: Iterable[KeyPair]) -> None:
        table = Table(title="SSH Keys")
        table.add_column("#", style="cyan")
        table.add_column("Name")
        table.add_column("Type")
        table.add_column("Passphrase")
        table.add_column("Agent")
        table.add_column("Private Key")

        for i, key in enumerate(keys, 1):
            table.add_row(
                str(i),
                key.name,
                key.description,
                "Yes" if key.has_passphrase else "No",
                "[green]Loaded[/green]" if key.loaded_in_agent else "-",
                "Present" if key.has_private_key else "[yellow]Missing[/yellow]",
            )

        self._console.print(table)

    def show_hosts(self, hosts: Iterable[HostEntry]) -> None:
        table = Table(title="Configured Hosts")
        table.add_column("Alias", style="cyan")
        table.add_column("HostName")
        table.add_column("User")
        table.add_column("Port")
        table.add_column("IdentityFile")

        for host in hosts:
            table.add_row(
                host.alias,
                host.host_name or "-",
                host.user or "-",
                str(host.effective_port),
                host.identity_file or "-",
            )

        self._console.print(table)

    def show_text(self, text: str, title: str) -> None:
        self._console.print(Panel(text.rstrip() or "(empty)", title=title, border_style="blue"))

    def show_findings(self, findings: Sequence[SecurityFinding]) -> None:
        if not findings:
            self.show_success("No security issues found")
            return

        table = Table(title=f"Security Issues ({len(findings)})")
        table.add_column("Path", style="cyan")
        table.add_column("Issue")
        table.add_column("Found", style="red")
        table.add_column("Expected", style="green")

        for finding in findings:
            table.add_row(finding.subject, finding.kind.value, finding.observed, finding.expected)

        self._console.print(table)


class MockPrompts(Prompts):
    """Mock prompts for testing - answers come from pre-configured queues."""

    def __init__(
        self,
        answers: Iterable[str] = (),
        passphrase: str = "",
        confirmations: bool = True,
        nav_inputs: Iterable[str] = (),
        menu_inputs: Iterable[str] = (),
        selection: int = 0,
        selections: Iterable[int] = (),
    ) -> None:
        super().__init__(Console(quiet=True))
        self._answers = list(answers)
        self._passphrase = passphrase
        self._confirmations = confirmations
        self._nav_inputs = list(nav_inputs)
        self._menu_inputs = list(menu_inputs)
        self._selection = selection
        self._selections = list(selections)
        self.asked: list[str] = []
        self.confirmed: list[str] = []

    def ask_text(
        self,
        prompt: str,
        default: str | None = None,
        required: bool = True,
    ) -> str:
        self.asked.append(prompt)
        if self._answers:
            answer = self._answers.pop(0)
            return answer if answer or default is None else default
        if default is not None:
            return default
        raise UserCancelledError(f"No scripted answer for {prompt!r}")

    def ask_int(self, prompt: str, default: int) -> int:
        answer = self.ask_text(prompt, default=str(default))
        return int(answer)

    def get_passphrase(
        self,
        prompt: str,
        confirm: bool = False,
        allow_empty: bool = True,
    ) -> SecureString:
        return SecureString(self._passphrase)

    def confirm(self, message: str, default: bool = False) -> bool:
        self.confirmed.append(message)
        return self._confirmations

    def confirm_destructive(self, subject: str, operation: str) -> bool:
        self.confirmed.append(f"{operation} {subject}")
        return self._confirmations

    def select_option(self, options: Sequence[str], prompt: str) -> int | None:
        index = self._selections.pop(0) if self._selections else self._selection
        if not options or index >= len(options):
            return None
        return index

    def menu_choice(self, prompt: str) -> str:
        if self._menu_inputs:
            return self._menu_inputs.pop(0)
        return "q"

    def navigation(self) -> str:
        if self._nav_inputs:
            return self._nav_inputs.pop(0)
        return "q"

    def show_header(self, version: str) -> None:
        pass
