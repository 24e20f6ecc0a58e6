"""SSH key, agent and host configuration manager.

This package manages the SSH credentials and per-host client configuration
of a single user account, and walks the user through setting up
passwordless login to a remote host.
"""

from .agent import AgentBridge, AgentState, AgentStatus, LoadedKey
from .app import SSHManagerApp
from .backup import BackupManager, TarArchiver
from .config_store import ConfigDocument, ConfigStore, add, parse, parse_document, remove, serialize
from .environment import CheckResult, EnvironmentReport, verify_environment
from .errors import (
    ConstraintViolation,
    DelegatedCommandError,
    DuplicateAliasError,
    ErrorCategory,
    ErrorLogger,
    FilesystemError,
    HostNotFoundError,
    InvalidInputError,
    MissingPrerequisiteError,
    RecoveryHint,
    SSHManagerError,
    UserCancelledError,
)
from .keys import KEY_PRESETS, KeyInventory, SSHKeygen, sanitize_key_name
from .main import run
from .navigation import MenuAction, NavAction, NavigationEngine, Screen, WizardSession
from .prompts import MockPrompts, Prompts
from .remote import BatchModeProber, ProbeResult, SSHCopyId
from .security import AuditReport, audit, fix_permissions
from .settings import VERSION, AgentExitCodes, ManagerSettings
from .types import (
    BackupArchive,
    ConfigLine,
    FindingKind,
    HostEntry,
    KeyAlgorithm,
    KeyInfo,
    KeyPair,
    Result,
    SecureString,
    SecurityFinding,
    SSHTarget,
    StepResult,
)
from .wizard import PasswordlessWizard

__version__ = VERSION

__all__ = [
    # Types
    "BackupArchive",
    "ConfigLine",
    "FindingKind",
    "HostEntry",
    "KeyAlgorithm",
    "KeyInfo",
    "KeyPair",
    "Result",
    "SecureString",
    "SecurityFinding",
    "SSHTarget",
    "StepResult",
    # Config store
    "ConfigDocument",
    "ConfigStore",
    "add",
    "parse",
    "parse_document",
    "remove",
    "serialize",
    # Keys and agent
    "KEY_PRESETS",
    "KeyInventory",
    "SSHKeygen",
    "sanitize_key_name",
    "AgentBridge",
    "AgentState",
    "AgentStatus",
    "LoadedKey",
    # Remote
    "BatchModeProber",
    "ProbeResult",
    "SSHCopyId",
    # Maintenance
    "AuditReport",
    "audit",
    "fix_permissions",
    "BackupManager",
    "TarArchiver",
    # Navigation and wizard
    "MenuAction",
    "NavAction",
    "NavigationEngine",
    "Screen",
    "WizardSession",
    "PasswordlessWizard",
    # Prompts
    "MockPrompts",
    "Prompts",
    # Configuration
    "AgentExitCodes",
    "ManagerSettings",
    # Environment
    "CheckResult",
    "EnvironmentReport",
    "verify_environment",
    # Errors
    "ConstraintViolation",
    "DelegatedCommandError",
    "DuplicateAliasError",
    "ErrorCategory",
    "ErrorLogger",
    "FilesystemError",
    "HostNotFoundError",
    "InvalidInputError",
    "MissingPrerequisiteError",
    "RecoveryHint",
    "SSHManagerError",
    "UserCancelledError",
    # Main
    "SSHManagerApp",
    "run",
    "__version__",
]
