"""Stack-based navigation over the interactive screens.

Every screen shares four controls:
- Enter proceeds with the screen's default action
- ``b`` goes back one level (to home when nothing is stacked)
- ``m`` returns to the main menu and clears the stack
- ``q`` quits the session
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from .errors import InvalidInputError
from .types import KeyPair, SSHTarget, StepResult

logger = logging.getLogger("ssh-manager.navigation")


class Screen(Enum):
    HOME = "home"
    LIST_KEYS = "list-keys"
    GENERATE_KEY = "generate-key"
    DELETE_KEY = "delete-key"
    CHANGE_PASSPHRASE = "change-passphrase"
    COPY_KEY = "copy-key"
    WIZARD_KEY_AVAILABILITY = "wizard-step-1"
    WIZARD_KEY_SELECTION = "wizard-step-2"
    WIZARD_PROVISION = "wizard-step-3"
    WIZARD_VERIFY = "wizard-step-4"
    WIZARD_PERSIST = "wizard-step-5"
    AGENT_STATUS = "agent-status"
    AGENT_ADD_KEY = "agent-add-key"
    AGENT_ADD_ALL = "agent-add-all"
    AGENT_REMOVE_KEY = "agent-remove-key"
    SHOW_CONFIG = "show-config"
    ADD_HOST = "add-host"
    REMOVE_HOST = "remove-host"
    TEST_CONNECTION = "test-connection"
    BACKUP = "backup"
    RESTORE = "restore"
    SECURITY_CHECK = "security-check"
    FIX_PERMISSIONS = "fix-permissions"
    HELP = "help"

    @property
    def is_wizard_step(self) -> bool:
        return self in WIZARD_STEPS

    @property
    def title(self) -> str:
        return SCREEN_TITLES.get(self, self.value.replace("-", " ").title())


WIZARD_STEPS: tuple[Screen, ...] = (
    Screen.WIZARD_KEY_AVAILABILITY,
    Screen.WIZARD_KEY_SELECTION,
    Screen.WIZARD_PROVISION,
    Screen.WIZARD_VERIFY,
    Screen.WIZARD_PERSIST,
)

SCREEN_TITLES: dict[Screen, str] = {
    Screen.HOME: "Main Menu",
    Screen.WIZARD_KEY_AVAILABILITY: "Passwordless Setup > Step 1: Key Availability",
    Screen.WIZARD_KEY_SELECTION: "Passwordless Setup > Step 2: Select Key",
    Screen.WIZARD_PROVISION: "Passwordless Setup > Step 3: Copy Key to Server",
    Screen.WIZARD_VERIFY: "Passwordless Setup > Step 4: Verify Connection",
    Screen.WIZARD_PERSIST: "Passwordless Setup > Step 5: Save Host",
    Screen.SHOW_CONFIG: "Connections > SSH Config",
    Screen.SECURITY_CHECK: "Maintenance > Security Check",
}


def next_wizard_step(screen: Screen) -> Screen | None:
    if screen not in WIZARD_STEPS:
        return None
    index = WIZARD_STEPS.index(screen)
    return WIZARD_STEPS[index + 1] if index + 1 < len(WIZARD_STEPS) else None


class NavAction(Enum):
    PROCEED = "proceed"
    BACK = "back"
    HOME = "home"
    QUIT = "quit"


NAV_INPUTS: dict[str, NavAction] = {
    "": NavAction.PROCEED,
    "b": NavAction.BACK,
    "m": NavAction.HOME,
    "q": NavAction.QUIT,
}


def parse_nav_input(raw: str) -> NavAction:
    """Map a navigation-bar response to an action; anything else is rejected."""
    action = NAV_INPUTS.get(raw.strip().lower())
    if action is None:
        raise InvalidInputError(raw, "Enter, 'b', 'm' or 'q'")
    return action


class MenuAction(Enum):
    """Main menu entries, valued by the number the user types."""

    LIST_KEYS = "1"
    GENERATE_KEY = "2"
    DELETE_KEY = "3"
    CHANGE_PASSPHRASE = "4"
    PASSWORDLESS_WIZARD = "5"
    COPY_KEY = "6"
    TEST_PASSWORDLESS = "7"
    AGENT_STATUS = "8"
    AGENT_ADD_KEY = "9"
    AGENT_ADD_ALL = "10"
    AGENT_REMOVE_KEY = "11"
    SHOW_CONFIG = "12"
    ADD_HOST = "13"
    REMOVE_HOST = "14"
    TEST_CONNECTION = "15"
    BACKUP = "16"
    RESTORE = "17"
    SECURITY_CHECK = "18"
    FIX_PERMISSIONS = "19"
    HELP = "20"
    EXIT = "21"


MENU_SCREENS: dict[MenuAction, Screen] = {
    MenuAction.LIST_KEYS: Screen.LIST_KEYS,
    MenuAction.GENERATE_KEY: Screen.GENERATE_KEY,
    MenuAction.DELETE_KEY: Screen.DELETE_KEY,
    MenuAction.CHANGE_PASSPHRASE: Screen.CHANGE_PASSPHRASE,
    MenuAction.PASSWORDLESS_WIZARD: Screen.WIZARD_KEY_AVAILABILITY,
    MenuAction.COPY_KEY: Screen.COPY_KEY,
    MenuAction.TEST_PASSWORDLESS: Screen.WIZARD_VERIFY,
    MenuAction.AGENT_STATUS: Screen.AGENT_STATUS,
    MenuAction.AGENT_ADD_KEY: Screen.AGENT_ADD_KEY,
    MenuAction.AGENT_ADD_ALL: Screen.AGENT_ADD_ALL,
    MenuAction.AGENT_REMOVE_KEY: Screen.AGENT_REMOVE_KEY,
    MenuAction.SHOW_CONFIG: Screen.SHOW_CONFIG,
    MenuAction.ADD_HOST: Screen.ADD_HOST,
    MenuAction.REMOVE_HOST: Screen.REMOVE_HOST,
    MenuAction.TEST_CONNECTION: Screen.TEST_CONNECTION,
    MenuAction.BACKUP: Screen.BACKUP,
    MenuAction.RESTORE: Screen.RESTORE,
    MenuAction.SECURITY_CHECK: Screen.SECURITY_CHECK,
    MenuAction.FIX_PERMISSIONS: Screen.FIX_PERMISSIONS,
    MenuAction.HELP: Screen.HELP,
}

MENU_SECTIONS: tuple[tuple[str, tuple[tuple[MenuAction, str], ...]], ...] = (
    (
        "SSH Keys",
        (
            (MenuAction.LIST_KEYS, "List SSH keys"),
            (MenuAction.GENERATE_KEY, "Generate new SSH key"),
            (MenuAction.DELETE_KEY, "Delete SSH key"),
            (MenuAction.CHANGE_PASSPHRASE, "Change key passphrase"),
        ),
    ),
    (
        "Passwordless Login",
        (
            (MenuAction.PASSWORDLESS_WIZARD, "Setup passwordless login wizard"),
            (MenuAction.COPY_KEY, "Copy key to server"),
            (MenuAction.TEST_PASSWORDLESS, "Test passwordless connection"),
        ),
    ),
    (
        "SSH Agent",
        (
            (MenuAction.AGENT_STATUS, "Show agent status"),
            (MenuAction.AGENT_ADD_KEY, "Add key to agent"),
            (MenuAction.AGENT_ADD_ALL, "Add all keys to agent"),
            (MenuAction.AGENT_REMOVE_KEY, "Remove key from agent"),
        ),
    ),
    (
        "Connections",
        (
            (MenuAction.SHOW_CONFIG, "Show SSH config"),
            (MenuAction.ADD_HOST, "Add SSH host"),
            (MenuAction.REMOVE_HOST, "Remove SSH host"),
            (MenuAction.TEST_CONNECTION, "Test SSH connection"),
        ),
    ),
    (
        "Maintenance",
        (
            (MenuAction.BACKUP, "Backup SSH config"),
            (MenuAction.RESTORE, "Restore SSH config"),
            (MenuAction.SECURITY_CHECK, "Security check"),
            (MenuAction.FIX_PERMISSIONS, "Fix permissions"),
        ),
    ),
    (
        "Help & Info",
        (
            (MenuAction.HELP, "Help"),
            (MenuAction.EXIT, "Exit"),
        ),
    ),
)


def parse_menu_choice(raw: str) -> MenuAction:
    choice = raw.strip().lower()
    if choice == "q":
        return MenuAction.EXIT
    try:
        return MenuAction(choice)
    except ValueError:
        raise InvalidInputError(raw, f"a number between 1 and {len(MenuAction)}") from None


@dataclass
class WizardSession:
    """State of one interactive run.

    Owned by ``NavigationEngine``; nothing about the session lives in
    module globals.
    """

    screen_stack: list[Screen] = field(default_factory=list)
    current: Screen = Screen.HOME
    selected_key: KeyPair | None = None
    target: SSHTarget | None = None
    last_step_result: StepResult | None = None
    generated_key: KeyPair | None = None
    provisioned: tuple[Path, SSHTarget] | None = None
    step_results: dict[Screen, StepResult] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    error_log: list[dict[str, Any]] = field(default_factory=list)

    @property
    def depth(self) -> int:
        return len(self.screen_stack)

    def breadcrumb(self) -> str:
        return " > ".join(screen.title for screen in [*self.screen_stack, self.current])

    def reset_wizard(self) -> None:
        self.selected_key = None
        self.target = None
        self.last_step_result = None
        self.generated_key = None
        self.provisioned = None
        self.step_results.clear()


class NavigationEngine:
    """Applies navigation actions to a ``WizardSession``."""

    def __init__(self, session: WizardSession | None = None) -> None:
        self._session = session or WizardSession()
        self._running = True
        self._listeners: list[Callable[[Screen, Screen], None]] = []

    @property
    def session(self) -> WizardSession:
        return self._session

    @property
    def current(self) -> Screen:
        return self._session.current

    @property
    def stack(self) -> list[Screen]:
        return list(self._session.screen_stack)

    @property
    def running(self) -> bool:
        return self._running

    def on_transition(self, listener: Callable[[Screen, Screen], None]) -> None:
        self._listeners.append(listener)

    def _move(self, screen: Screen) -> None:
        previous = self._session.current
        self._session.current = screen
        logger.debug("Screen %s -> %s", previous.value, screen.value)
        for listener in self._listeners:
            listener(previous, screen)

    def push(self, screen: Screen) -> None:
        """Drill down into ``screen``, remembering the current one."""
        if screen == Screen.HOME:
            self.home()
            return
        if screen == Screen.WIZARD_KEY_AVAILABILITY:
            self._session.reset_wizard()
        self._session.screen_stack.append(self._session.current)
        self._move(screen)

    def replace(self, screen: Screen) -> None:
        """Switch to ``screen`` without growing the stack."""
        self._move(screen)

    def back(self) -> None:
        if self._session.screen_stack:
            self._move(self._session.screen_stack.pop())
        else:
            self._move(Screen.HOME)

    def home(self) -> None:
        self._session.screen_stack.clear()
        self._move(Screen.HOME)

    def quit(self) -> None:
        self._running = False

    def apply(self, action: NavAction, proceed_to: Screen | None = None) -> None:
        """Apply a navigation action.

        ``proceed_to`` is where the current screen's default action leads;
        ``None`` keeps the current screen.
        """
        if action == NavAction.PROCEED:
            if proceed_to is not None and proceed_to != self._session.current:
                self.push(proceed_to)
        elif action == NavAction.BACK:
            self.back()
        elif action == NavAction.HOME:
            self.home()
        elif action == NavAction.QUIT:
            self.quit()

    def record_step(self, screen: Screen, result: StepResult) -> None:
        self._session.step_results[screen] = result
        self._session.last_step_result = result

    def log_error(self, error: Exception, context: str = "") -> None:
        self._session.error_log.append(
            {
                "timestamp": datetime.now(UTC).isoformat(),
                "error": str(error),
                "error_type": type(error).__name__,
                "context": context,
                "screen": self._session.current.value,
            }
        )
