"""Interactive session: one handler per screen, driven by the navigation engine.

A handler performs its screen's action once and returns the screen that
Enter should lead to. Returning the current screen means Enter retries it.
Destructive handlers only act after an explicit confirmation, so
re-displaying a screen never repeats an effect on its own.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable

from .agent import AgentBridge, AgentController, AgentState, agent_environment
from .backup import BackupManager
from .config_store import ConfigStore, new_host_entry, validate_alias
from .environment import verify_environment
from .errors import (
    ErrorLogger,
    InvalidInputError,
    MissingPrerequisiteError,
    SSHManagerError,
    UserCancelledError,
)
from .keys import KeyInventory, SSHKeygen
from .navigation import (
    MENU_SCREENS,
    MENU_SECTIONS,
    MenuAction,
    NavAction,
    NavigationEngine,
    Screen,
    next_wizard_step,
    parse_menu_choice,
    parse_nav_input,
)
from .prompts import Prompts, format_bytes
from .remote import BatchModeProber, ConnectionProber, RemoteCopier, SSHCopyId
from .security import audit, fix_permissions
from .settings import VERSION, ManagerSettings, ensure_ssh_dir
from .types import DEFAULT_PORT, KeyPair, Result, SSHTarget, StepResult
from .wizard import MANDATORY_STEPS, PasswordlessWizard, ask_target, generate_key_interactive

logger = logging.getLogger("ssh-manager.app")

HELP_TEXT = """\
Navigation (on every screen):
  Enter  continue with the screen's default action
  b      go back one screen
  m      return to the main menu
  q      quit

Passwordless login:
  The setup wizard makes sure a key exists, installs its public key on
  the server, verifies a non-interactive login and can save a Host entry
  so that `ssh <alias>` uses the right key.

Files:
  Keys and config live in {ssh_dir}
  Backups are stored in {backup_dir}
  Errors are logged to {log_path}
"""


class SSHManagerApp:
    def __init__(
        self,
        settings: ManagerSettings,
        prompts: Prompts | None = None,
        *,
        keygen: SSHKeygen | None = None,
        agent: AgentController | None = None,
        copier: RemoteCopier | None = None,
        prober: ConnectionProber | None = None,
        error_logger: ErrorLogger | None = None,
        navigation: NavigationEngine | None = None,
    ) -> None:
        self._settings = settings
        self._prompts = prompts or Prompts()
        self._keygen = keygen or SSHKeygen()
        self._agent = agent or AgentBridge(settings.agent_exit_codes)
        self._copier = copier or SSHCopyId()
        self._prober = prober or BatchModeProber(settings.connect_timeout)
        self._error_logger = error_logger
        self._nav = navigation or NavigationEngine()

        self._inventory = KeyInventory(settings.ssh_dir, self._keygen)
        self._config_store = ConfigStore(
            settings.config_file, settings.config_backup_dir, settings.config_backup_retention
        )
        self._backups = BackupManager(settings.backup_dir, settings.backup_retention)
        self._wizard = PasswordlessWizard(
            self._inventory,
            self._keygen,
            self._agent,
            self._copier,
            self._prober,
            self._config_store,
            self._prompts,
        )

        self._handlers: dict[Screen, Callable[[], Screen]] = {
            Screen.LIST_KEYS: self.list_keys,
            Screen.GENERATE_KEY: self.generate_key,
            Screen.DELETE_KEY: self.delete_key,
            Screen.CHANGE_PASSPHRASE: self.change_passphrase,
            Screen.COPY_KEY: self.copy_key,
            Screen.AGENT_STATUS: self.agent_status,
            Screen.AGENT_ADD_KEY: self.agent_add_key,
            Screen.AGENT_ADD_ALL: self.agent_add_all,
            Screen.AGENT_REMOVE_KEY: self.agent_remove_key,
            Screen.SHOW_CONFIG: self.show_config,
            Screen.ADD_HOST: self.add_host,
            Screen.REMOVE_HOST: self.remove_host,
            Screen.TEST_CONNECTION: self.test_connection,
            Screen.BACKUP: self.backup,
            Screen.RESTORE: self.restore,
            Screen.SECURITY_CHECK: self.security_check,
            Screen.FIX_PERMISSIONS: self.fix_permissions,
            Screen.HELP: self.show_help,
        }

    @property
    def navigation(self) -> NavigationEngine:
        return self._nav

    @property
    def wizard(self) -> PasswordlessWizard:
        return self._wizard

    @property
    def config_store(self) -> ConfigStore:
        return self._config_store

    # Session loop

    def run(self) -> int:
        """Run the interactive session until the user quits."""
        ensure_ssh_dir(self._settings.ssh_dir).unwrap()

        while self._nav.running:
            if self._nav.current == Screen.HOME:
                self._home()
                continue

            proceed_to = self._dispatch(self._nav.current)
            action = self._read_navigation()
            self._nav.apply(action, proceed_to)

        return 0

    def run_quick_setup(self) -> int:
        """Run the wizard once outside the menu loop."""
        ensure_ssh_dir(self._settings.ssh_dir).unwrap()
        self._prompts.show_section("Quick SSH Setup Wizard")

        results = self._wizard.run(self._nav.session)
        failed = [
            screen for screen, result in results.items()
            if result == StepResult.FAILED and screen in MANDATORY_STEPS
        ]
        if failed:
            self._prompts.show_warning(f"Setup stopped at {failed[0].title}")
        else:
            self._prompts.show_success("Passwordless login setup complete")
        return 0

    def _home(self) -> None:
        self._prompts.show_header(VERSION)
        self._prompts.show_breadcrumb("Main Menu")
        for section, entries in MENU_SECTIONS:
            self._prompts.console.print(f"[cyan]{section}:[/cyan]")
            for action, label in entries:
                self._prompts.console.print(f"  {action.value:>2}. {label}")
            self._prompts.console.print()

        raw = self._prompts.menu_choice(f"Enter your choice (1-{len(MenuAction)})")
        try:
            action = parse_menu_choice(raw)
        except InvalidInputError as e:
            self._prompts.show_error(e)
            return

        if action == MenuAction.EXIT:
            self._prompts.console.print("[green]Thank you for using SSH Manager![/green]")
            self._nav.quit()
            return
        self._nav.push(MENU_SCREENS[action])

    def _read_navigation(self) -> NavAction:
        while True:
            try:
                return parse_nav_input(self._prompts.navigation())
            except InvalidInputError as e:
                self._prompts.show_error(e)

    def _dispatch(self, screen: Screen) -> Screen:
        self._prompts.show_header(VERSION)
        self._prompts.show_breadcrumb(self._nav.session.breadcrumb())

        try:
            if screen.is_wizard_step:
                return self._wizard_step(screen)
            return self._handlers[screen]()
        except UserCancelledError:
            raise
        except SSHManagerError as e:
            self._report(e)
            return Screen.HOME

    def _wizard_step(self, screen: Screen) -> Screen:
        result = self._wizard.run_step(screen, self._nav.session)
        if result == StepResult.FAILED and screen in MANDATORY_STEPS:
            self._prompts.show_info("Press Enter to retry this step")
            return screen
        return next_wizard_step(screen) or Screen.HOME

    def _report(self, error: Exception) -> None:
        self._prompts.show_error(error)
        self._nav.log_error(error)
        if self._error_logger and isinstance(error, SSHManagerError):
            if error.is_warning:
                self._error_logger.log_warning(error.message, error.category)
            else:
                self._error_logger.log_error(error)

    def _check(self, result: Result) -> bool:
        if result.is_err():
            self._report(result.unwrap_err())
            return False
        return True

    def _keys(self) -> list[KeyPair]:
        keys = self._inventory.require_keys().unwrap()
        loaded = self._agent.status().loaded_pairs()
        for key in keys:
            key.loaded_in_agent = self._inventory.agent_loaded_status(key, loaded)
        return keys

    # SSH keys

    def list_keys(self) -> Screen:
        self._prompts.show_section("SSH Keys")
        self._prompts.show_keys(self._keys())
        for warning in self._inventory.warnings:
            self._prompts.show_warning(warning)
        return Screen.HOME

    def generate_key(self) -> Screen:
        self._prompts.show_section("Generate New SSH Key")
        result = generate_key_interactive(self._prompts, self._keygen, self._settings.ssh_dir)
        if not self._check(result):
            return Screen.HOME

        private_key = result.unwrap()
        self._prompts.show_success(f"Generated {private_key.name}")

        if self._agent.status().is_running and self._prompts.confirm(
            "Add the new key to the SSH agent?", default=True
        ):
            key = next(
                (k for k in self._inventory.scan() if k.private_key_path == private_key), None
            )
            if key is not None:
                self._add_to_agent(key)

        if self._prompts.confirm("Display the public key?", default=True):
            self._prompts.show_text(private_key.with_suffix(".pub").read_text(), "Public Key")
        return Screen.HOME

    def delete_key(self) -> Screen:
        self._prompts.show_section("Delete SSH Key")
        key = self._prompts.select_key(self._keys(), "Select key to delete")
        if key is None:
            return Screen.HOME

        if not self._prompts.confirm_destructive(key.name, "permanently delete the key pair"):
            self._prompts.show_info("Deletion cancelled")
            return Screen.HOME

        if key.loaded_in_agent and key.has_private_key:
            removed = self._agent.remove(key.private_key_path)
            if removed.is_err():
                self._prompts.show_warning(str(removed.unwrap_err()))

        if not self._check(self._inventory.delete_key(key)):
            return Screen.HOME
        self._prompts.show_success(f"Deleted {key.name}")

        references = self._config_store.remove_identity_references(key.private_key_path)
        if self._check(references) and references.unwrap():
            self._prompts.show_info(
                f"Removed {references.unwrap()} IdentityFile reference(s) from SSH config"
            )
        return Screen.HOME

    def change_passphrase(self) -> Screen:
        self._prompts.show_section("Change Key Passphrase")
        keys = [key for key in self._keys() if key.has_private_key]
        key = self._prompts.select_key(keys, "Select key")
        if key is None:
            return Screen.HOME

        old = self._prompts.get_passphrase("Current passphrase") if key.has_passphrase else None
        new = self._prompts.get_passphrase("New passphrase (empty for none)", confirm=True)
        try:
            result = self._keygen.change_passphrase(key.private_key_path, old, new)
            if not self._check(result):
                return Screen.HOME
            self._prompts.show_success(f"Passphrase updated for {key.name}")

            if key.loaded_in_agent and self._prompts.confirm(
                "Reload the key in the SSH agent?", default=True
            ):
                self._agent.remove(key.private_key_path)
                reloaded = self._agent.add(key.private_key_path, new if new.get() else None)
                if self._check(reloaded):
                    self._prompts.show_success(f"Reloaded {key.name} in agent")
        finally:
            new.clear()
            if old is not None:
                old.clear()
        return Screen.HOME

    def copy_key(self) -> Screen:
        self._prompts.show_section("Copy SSH Key to Server")
        key = self._prompts.select_key(self._keys(), "Select key to copy")
        if key is None:
            return Screen.HOME

        target = ask_target(self._prompts)
        result = self._copier.copy_key(key.public_key_path, target)
        if not self._check(result):
            return Screen.HOME
        self._prompts.show_success(f"Key copied to {target}")

        if self._prompts.confirm("Test the connection now?", default=True):
            probe = self._prober.probe(target, key.private_key_path)
            if probe.success:
                self._prompts.show_success("Passwordless login works")
            else:
                self._prompts.show_warning(f"Connection test failed: {probe.message}")
        return Screen.HOME

    # SSH agent

    def agent_status(self) -> Screen:
        self._prompts.show_section("SSH Agent Status")
        for name, value in agent_environment().items():
            self._prompts.console.print(f"  {name}: {value or '[dim]not set[/dim]'}")
        self._prompts.console.print()

        status = self._agent.status()
        if status.state == AgentState.RUNNING:
            self._prompts.show_success(f"Agent running with {len(status.keys)} key(s)")
            for key in status.keys:
                self._prompts.console.print(
                    f"  {key.algorithm.value.upper()} {key.bits or ''} {key.fingerprint} {key.comment}"
                )
        elif status.state == AgentState.RUNNING_NO_KEYS:
            self._prompts.show_info("Agent running with no keys loaded")
        elif status.state == AgentState.NOT_RUNNING:
            self._prompts.show_warning("SSH agent is not running")
            self._prompts.console.print('  Start it with: eval "$(ssh-agent -s)"')
        else:
            self._prompts.show_warning(f"Could not talk to the SSH agent: {status.detail}")
        return Screen.HOME

    def _require_agent(self) -> None:
        if not self._agent.status().is_running:
            raise MissingPrerequisiteError(
                "SSH agent is not running", hint='Start it with: eval "$(ssh-agent -s)"'
            )

    def _add_to_agent(self, key: KeyPair) -> bool:
        passphrase = None
        if key.has_passphrase:
            passphrase = self._prompts.get_passphrase(f"Passphrase for {key.name}")
        try:
            result = self._agent.add(key.private_key_path, passphrase)
        finally:
            if passphrase is not None:
                passphrase.clear()

        if self._check(result):
            self._prompts.show_success(f"Added {key.name} to agent")
            return True
        return False

    def agent_add_key(self) -> Screen:
        self._prompts.show_section("Add Key to Agent")
        self._require_agent()
        keys = [key for key in self._keys() if key.has_private_key]
        key = self._prompts.select_key(keys, "Select key to add to agent")
        if key is not None:
            self._add_to_agent(key)
        return Screen.HOME

    def agent_add_all(self) -> Screen:
        self._prompts.show_section("Add All Keys to Agent")
        self._require_agent()
        keys = [key for key in self._keys() if key.has_private_key and not key.loaded_in_agent]
        if not keys:
            self._prompts.show_info("All keys are already loaded")
            return Screen.HOME

        added = sum(1 for key in keys if self._add_to_agent(key))
        self._prompts.show_info(f"Added {added} of {len(keys)} key(s)")
        return Screen.HOME

    def agent_remove_key(self) -> Screen:
        self._prompts.show_section("Remove Key from Agent")
        status = self._agent.status()
        if status.state != AgentState.RUNNING:
            raise MissingPrerequisiteError("No keys are loaded in the SSH agent")

        loaded = [
            key for key in self._inventory.scan()
            if key.has_private_key
            and self._inventory.agent_loaded_status(key, status.loaded_pairs())
        ]
        options = [key.name for key in loaded] + ["Remove all keys from agent"]
        index = self._prompts.select_option(options, "Select key to remove")
        if index is None:
            return Screen.HOME

        if index == len(loaded):
            if not self._prompts.confirm_destructive("the SSH agent", "remove every key from"):
                self._prompts.show_info("Nothing removed")
                return Screen.HOME
            if self._check(self._agent.remove_all()):
                self._prompts.show_success("Removed all keys from agent")
            return Screen.HOME

        key = loaded[index]
        if self._check(self._agent.remove(key.private_key_path)):
            self._prompts.show_success(f"Removed {key.name} from agent")
        return Screen.HOME

    # Connections

    def show_config(self) -> Screen:
        self._prompts.show_section("SSH Config")
        if not self._config_store.exists():
            raise MissingPrerequisiteError(
                f"No SSH config at {self._config_store.path}", hint="Add a host to create one"
            )

        entries = self._config_store.entries().unwrap()
        if entries:
            self._prompts.show_hosts(entries)
        self._prompts.show_text(self._config_store.path.read_text(), str(self._config_store.path))
        return Screen.HOME

    def add_host(self) -> Screen:
        self._prompts.show_section("Add SSH Host")
        alias = validate_alias(self._prompts.ask_text("Host alias")).unwrap()
        host_name = self._prompts.ask_text("HostName (IP or domain)")
        user = self._prompts.ask_text("User")
        port = self._prompts.ask_int("Port", default=DEFAULT_PORT)

        identity_file = None
        keys = [key for key in self._inventory.scan() if key.has_private_key]
        if keys and self._prompts.confirm("Use a specific key for this host?", default=True):
            key = self._prompts.select_key(keys, "Select identity file")
            if key is not None:
                identity_file = key.private_key_path

        entry = new_host_entry(alias, host_name, user, port, identity_file)
        if self._check(self._config_store.add_host(entry)):
            self._prompts.show_success(f"Added host {alias}. Connect with: ssh {alias}")
        return Screen.HOME

    def remove_host(self) -> Screen:
        self._prompts.show_section("Remove SSH Host")
        entries = self._config_store.entries().unwrap()
        if not entries:
            raise MissingPrerequisiteError("No hosts configured")

        host = self._prompts.select_host(entries, "Select host to remove")
        if host is None:
            return Screen.HOME

        if not self._prompts.confirm_destructive(host.alias, "remove the SSH config entry for"):
            self._prompts.show_info("Removal cancelled")
            return Screen.HOME

        if self._check(self._config_store.remove_host(host.alias)):
            self._prompts.show_success(f"Removed host {host.alias}")
        return Screen.HOME

    def test_connection(self) -> Screen:
        self._prompts.show_section("Test SSH Connection")
        entries = self._config_store.entries().unwrap_or([])
        options = [entry.alias for entry in entries] + ["Enter a host manually"]
        index = self._prompts.select_option(options, "Select host")
        if index is None:
            return Screen.HOME

        if index < len(entries):
            # The alias resolves through the SSH config, port and key included
            target = SSHTarget(user="", host=entries[index].alias)
        else:
            target = ask_target(self._prompts)

        self._prompts.show_info(
            f"Connecting to {target} (timeout {self._settings.connect_timeout}s)"
        )
        probe = self._prober.probe(target)
        if probe.success:
            self._prompts.show_success(f"Connection to {target} successful")
        else:
            self._prompts.show_warning(f"Connection to {target} failed: {probe.message}")
        return Screen.HOME

    # Maintenance

    def backup(self) -> Screen:
        self._prompts.show_section("Backup SSH Directory")
        result = self._backups.backup(self._settings.ssh_dir)
        if self._check(result):
            archive = result.unwrap()
            self._prompts.show_success(
                f"Created {archive.path.name} ({format_bytes(archive.size_bytes)})"
            )
            self._prompts.show_info(
                f"Keeping the {self._backups.retention} most recent backups in {self._backups.backup_dir}"
            )
        return Screen.HOME

    def restore(self) -> Screen:
        self._prompts.show_section("Restore SSH Directory")
        archives = list(reversed(self._backups.list_archives()))
        if not archives:
            raise MissingPrerequisiteError("No backups found", hint="Create a backup first")

        archive = self._prompts.select_archive(archives, "Select backup to restore")
        if archive is None:
            return Screen.HOME

        if not self._prompts.confirm_destructive(
            str(self._settings.ssh_dir), f"overwrite with {archive.path.name}"
        ):
            self._prompts.show_info("Restore cancelled")
            return Screen.HOME

        result = self._backups.restore(archive, self._settings.ssh_dir)
        if self._check(result):
            self._prompts.show_success(f"Restored from {archive.path.name}")
            self._prompts.show_info(f"Previous state saved as {result.unwrap().path.name}")
        return Screen.HOME

    def security_check(self) -> Screen:
        self._prompts.show_section("SSH Security Check")
        report = audit(self._settings.ssh_dir, self._settings.config_file, self._keygen)
        self._prompts.show_findings(report.findings)
        if not report.passed:
            self._prompts.show_info("Use 'Fix permissions' from the main menu to repair file modes")
        return Screen.HOME

    def fix_permissions(self) -> Screen:
        self._prompts.show_section("Fix SSH Permissions")
        self._prompts.console.print(
            "  directory 700, private keys 600, public keys 644, config 600, known_hosts 644"
        )
        if not self._prompts.confirm("Apply these permissions?", default=True):
            self._prompts.show_info("No permissions changed")
            return Screen.HOME

        result = fix_permissions(self._settings.ssh_dir, self._settings.config_file)
        if self._check(result):
            fixed = result.unwrap()
            for path in fixed:
                self._prompts.console.print(f"  fixed {path}")
            self._prompts.show_success(f"Fixed permissions on {len(fixed)} path(s)")
        return Screen.HOME

    def show_help(self) -> Screen:
        self._prompts.show_section(f"SSH Manager v{VERSION}")
        self._prompts.console.print(
            HELP_TEXT.format(
                ssh_dir=self._settings.ssh_dir,
                backup_dir=self._settings.backup_dir,
                log_path=self._settings.log_path,
            )
        )

        report = verify_environment()
        self._prompts.console.print(f"[cyan]Environment ({report.system}):[/cyan]")
        for check in report.checks:
            if check.passed:
                status = "[green]OK[/green]"
            else:
                status = "[red]FAIL[/red]" if check.critical else "[yellow]WARN[/yellow]"
            self._prompts.console.print(f"  {status} {check.name}: {check.message}")
        self._prompts.console.print()

        if os.environ.get("SSH_AUTH_SOCK") is None:
            self._prompts.show_warning("SSH_AUTH_SOCK is not set; agent features are unavailable")
        return Screen.HOME
