"""Passwordless login setup.

The wizard runs five steps, each reporting ok, failed or skipped:

1. Key availability - use an existing key or generate one; generation
   cannot be skipped when no usable key exists
2. Key selection - pick a key when more than one exists
3. Provisioning - install the public key on the target host
4. Verification - non-interactive login with the selected key
5. Persistence - optionally save a Host entry for the target

Steps 1-4 are mandatory: a failure stops forward progress at that step
so the user can retry it. A failed or declined step 5 leaves the earlier
results in place.
"""

from __future__ import annotations

import getpass
import ipaddress
import logging
from collections.abc import Callable
from pathlib import Path

from .agent import AgentController
from .config_store import ConfigStore, new_host_entry, validate_alias
from .errors import MissingPrerequisiteError, UserCancelledError
from .keys import KEY_PRESETS, KeyGenerator, KeyInventory, KeyPreset, key_filename
from .navigation import WIZARD_STEPS, Screen, WizardSession
from .prompts import Prompts
from .remote import ConnectionProber, RemoteCopier
from .types import DEFAULT_PORT, KeyPair, Result, SSHTarget, StepResult

logger = logging.getLogger("ssh-manager.wizard")

MANDATORY_STEPS = frozenset(WIZARD_STEPS[:4])

KEY_SOURCES = ("Use an existing key", "Generate a new key")


def choose_preset(prompts: Prompts) -> KeyPreset | None:
    index = prompts.select_option(
        [f"{preset.label} ({preset.note})" for preset in KEY_PRESETS], "Select key type"
    )
    return KEY_PRESETS[index] if index is not None else None


def generate_key_interactive(
    prompts: Prompts,
    generator: KeyGenerator,
    ssh_dir: Path,
    preset: KeyPreset | None = None,
) -> Result[Path]:
    """Ask for type, e-mail, name and passphrase, then generate the key pair.

    Returns the private key path.
    """
    preset = preset or choose_preset(prompts)
    if preset is None:
        return Result.err(UserCancelledError("Key generation cancelled"))

    email = prompts.ask_text("Email address (key comment)")
    name = prompts.ask_text("Key name", default="default")
    output_path = ssh_dir / key_filename(preset.algorithm, name)

    if output_path.exists():
        return Result.err(
            MissingPrerequisiteError(
                f"Key {output_path.name} already exists", hint="Choose a different key name"
            )
        )

    passphrase = prompts.get_passphrase("Passphrase (empty for none)", confirm=True)
    try:
        return generator.generate(preset.algorithm, preset.bits, output_path, email, passphrase)
    finally:
        passphrase.clear()


def default_alias(host: str) -> str:
    """First label of a hostname; IP addresses are used whole."""
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return host.split(".")[0]
    return host


def ask_target(prompts: Prompts, default_user: str | None = None) -> SSHTarget:
    host = prompts.ask_text("Server hostname or IP")
    user = prompts.ask_text("Username", default=default_user or getpass.getuser())
    port = prompts.ask_int("Port", default=DEFAULT_PORT)
    return SSHTarget(user=user, host=host, port=port)


class PasswordlessWizard:
    def __init__(
        self,
        inventory: KeyInventory,
        generator: KeyGenerator,
        agent: AgentController,
        copier: RemoteCopier,
        prober: ConnectionProber,
        config_store: ConfigStore,
        prompts: Prompts,
    ) -> None:
        self._inventory = inventory
        self._generator = generator
        self._agent = agent
        self._copier = copier
        self._prober = prober
        self._config_store = config_store
        self._prompts = prompts
        self._steps: dict[Screen, Callable[[WizardSession], StepResult]] = {
            Screen.WIZARD_KEY_AVAILABILITY: self.ensure_key_available,
            Screen.WIZARD_KEY_SELECTION: self.select_key,
            Screen.WIZARD_PROVISION: self.provision,
            Screen.WIZARD_VERIFY: self.verify,
            Screen.WIZARD_PERSIST: self.persist,
        }

    def run_step(self, screen: Screen, session: WizardSession) -> StepResult:
        step = self._steps.get(screen)
        if step is None:
            raise ValueError(f"{screen.value} is not a wizard step")

        number = WIZARD_STEPS.index(screen) + 1
        self._prompts.show_step(number, len(WIZARD_STEPS), screen.title.split(": ")[-1])

        result = step(session)
        session.step_results[screen] = result
        session.last_step_result = result
        logger.info("Wizard %s: %s", screen.value, result.value)
        return result

    def run(self, session: WizardSession | None = None) -> dict[Screen, StepResult]:
        """Run every step in order, stopping at the first failed mandatory step."""
        session = session or WizardSession()
        session.reset_wizard()

        for screen in WIZARD_STEPS:
            session.current = screen
            result = self.run_step(screen, session)
            if result == StepResult.FAILED and screen in MANDATORY_STEPS:
                break

        return dict(session.step_results)

    def _usable_keys(self) -> list[KeyPair]:
        return [key for key in self._inventory.scan() if key.has_private_key]

    def ensure_key_available(self, session: WizardSession) -> StepResult:
        keys = self._usable_keys()
        if keys:
            self._prompts.show_keys(keys)
            choice = self._prompts.select_option(KEY_SOURCES, "Key for this login")
            if choice is None:
                return StepResult.FAILED
            if choice == 0:
                session.generated_key = None
                self._prompts.show_success("Using an existing SSH key")
                return StepResult.OK
        else:
            self._prompts.show_warning(
                "No usable SSH keys found. A key must be generated before continuing."
            )

        result = generate_key_interactive(self._prompts, self._generator, self._inventory.ssh_dir)
        if result.is_err():
            self._prompts.show_error(result.unwrap_err())
            return StepResult.FAILED

        private_key = result.unwrap()
        generated = next(
            (key for key in self._usable_keys() if key.private_key_path == private_key), None
        )
        if generated is None:
            self._prompts.show_error(MissingPrerequisiteError("Generated key was not found"))
            return StepResult.FAILED

        session.generated_key = generated
        self._prompts.show_success(f"Generated {private_key.name}")
        return StepResult.OK

    def select_key(self, session: WizardSession) -> StepResult:
        keys = self._usable_keys()
        if not keys:
            self._prompts.show_error(
                MissingPrerequisiteError("No usable SSH key pairs", hint="Generate a key first")
            )
            return StepResult.FAILED

        if session.generated_key is not None:
            session.selected_key = session.generated_key
        elif len(keys) == 1:
            session.selected_key = keys[0]
        else:
            selected = self._prompts.select_key(keys, "Select key for passwordless login")
            if selected is None:
                return StepResult.FAILED
            session.selected_key = selected

        self._prompts.show_success(f"Using key {session.selected_key.name}")
        return StepResult.OK

    def _ensure_context(self, session: WizardSession) -> bool:
        if session.selected_key is None and self.select_key(session) != StepResult.OK:
            return False
        if session.target is None:
            session.target = ask_target(self._prompts)
        return True

    def provision(self, session: WizardSession) -> StepResult:
        if not self._ensure_context(session):
            return StepResult.FAILED
        assert session.selected_key is not None and session.target is not None
        key, target = session.selected_key, session.target

        if session.provisioned == (key.private_key_path, target):
            if not self._prompts.confirm(
                f"{key.name} is already installed on {target}. Copy it again?", default=False
            ):
                self._prompts.show_info(f"Keeping the key already installed on {target}")
                return StepResult.OK

        self._prompts.show_info(f"Copying {key.public_key_path.name} to {target}")
        result = self._copier.copy_key(key.public_key_path, target)
        if result.is_err():
            self._prompts.show_error(result.unwrap_err())
            return StepResult.FAILED

        session.provisioned = (key.private_key_path, target)
        self._prompts.show_success(f"Key installed on {target} ({result.unwrap()})")
        return StepResult.OK

    def verify(self, session: WizardSession) -> StepResult:
        if not self._ensure_context(session):
            return StepResult.FAILED
        assert session.selected_key is not None and session.target is not None

        probe = self._prober.probe(session.target, session.selected_key.private_key_path)
        if not probe.success:
            self._prompts.show_warning(f"Passwordless login to {session.target} failed: {probe.message}")
            return StepResult.FAILED

        self._prompts.show_success(f"Passwordless login to {session.target} works")

        if session.selected_key.has_passphrase and self._agent.status().is_running:
            if self._prompts.confirm("Add this key to the SSH agent?", default=True):
                passphrase = self._prompts.get_passphrase("Key passphrase")
                added = self._agent.add(session.selected_key.private_key_path, passphrase)
                passphrase.clear()
                if added.is_err():
                    self._prompts.show_warning(str(added.unwrap_err()))

        return StepResult.OK

    def persist(self, session: WizardSession) -> StepResult:
        if session.selected_key is None or session.target is None:
            return StepResult.SKIPPED

        if not self._prompts.confirm(f"Save {session.target} to SSH config?", default=True):
            return StepResult.SKIPPED

        alias = self._prompts.ask_text("Host alias", default=default_alias(session.target.host))
        alias_result = validate_alias(alias)
        if alias_result.is_err():
            self._prompts.show_error(alias_result.unwrap_err())
            return StepResult.FAILED

        entry = new_host_entry(
            alias_result.unwrap(),
            session.target.host,
            session.target.user,
            session.target.port,
            session.selected_key.private_key_path,
        )
        result = self._config_store.add_host(entry)
        if result.is_err():
            self._prompts.show_error(result.unwrap_err())
            return StepResult.FAILED

        self._prompts.show_success(f"Added host {entry.alias}. Connect with: ssh {entry.alias}")
        return StepResult.OK
