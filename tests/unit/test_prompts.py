"""Tests for prompts module."""

from __future__ import annotations

import io
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import patch

import pytest
from rich.console import Console

from ssh_manager.errors import DuplicateAliasError, UserCancelledError
from ssh_manager.prompts import MockPrompts, Prompts, format_bytes
from ssh_manager.types import (
    BackupArchive,
    FindingKind,
    HostEntry,
    KeyAlgorithm,
    KeyPair,
    SecureString,
    SecurityFinding,
)


def recording_prompts() -> Prompts:
    return Prompts(Console(file=io.StringIO(), record=True, width=120))


def key_pair(tmp_path: Path, name: str) -> KeyPair:
    return KeyPair(name, KeyAlgorithm.ED25519, 256, tmp_path / f"{name}.pub", tmp_path / name)


class TestFormatBytes:
    def test_units(self) -> None:
        assert format_bytes(512) == "512 B"
        assert format_bytes(2048) == "2.0 KB"
        assert format_bytes(3 * 1024 * 1024) == "3.0 MB"


class TestMockPrompts:
    """Test MockPrompts class."""

    def test_answers_consumed_in_order(self) -> None:
        mock = MockPrompts(answers=["10.0.0.5", "alice"])

        assert mock.ask_text("Hostname") == "10.0.0.5"
        assert mock.ask_text("Username") == "alice"
        assert mock.asked == ["Hostname", "Username"]

    def test_empty_answer_takes_default(self) -> None:
        mock = MockPrompts(answers=["", ""])

        assert mock.ask_text("Key name", default="default") == "default"
        assert mock.ask_int("Port", default=22) == 22

    def test_exhausted_answers_fall_back_to_default(self) -> None:
        assert MockPrompts().ask_text("Alias", default="prod") == "prod"

    def test_exhausted_answers_without_default_cancels(self) -> None:
        with pytest.raises(UserCancelledError):
            MockPrompts().ask_text("Hostname")

    def test_passphrase(self) -> None:
        result = MockPrompts(passphrase="my-secret").get_passphrase("Passphrase", confirm=True)

        assert isinstance(result, SecureString)
        assert result.get() == "my-secret"

    def test_confirmations_recorded(self) -> None:
        mock = MockPrompts(confirmations=False)

        assert mock.confirm("Save host?") is False
        assert mock.confirm_destructive("id_rsa", "delete") is False
        assert mock.confirmed == ["Save host?", "delete id_rsa"]

    def test_selection(self) -> None:
        assert MockPrompts(selection=1).select_option(["a", "b"], "Pick") == 1
        assert MockPrompts(selection=2).select_option(["a", "b"], "Pick") is None
        assert MockPrompts().select_option([], "Pick") is None

    def test_selection_queue_consumed_first(self) -> None:
        mock = MockPrompts(selections=[1, 0], selection=1)

        assert [mock.select_option(["a", "b"], "Pick") for _ in range(3)] == [1, 0, 1]

    def test_select_key_uses_selection(self, tmp_path: Path) -> None:
        keys = [key_pair(tmp_path, "id_a"), key_pair(tmp_path, "id_b")]
        assert MockPrompts(selection=1).select_key(keys, "Key").name == "id_b"

    def test_navigation_and_menu_queues(self) -> None:
        mock = MockPrompts(nav_inputs=["b"], menu_inputs=["3"])

        assert mock.navigation() == "b"
        assert mock.navigation() == "q"
        assert mock.menu_choice("Choice") == "3"
        assert mock.menu_choice("Choice") == "q"


class TestPromptsInput:
    """Test real prompts with rich and getpass patched."""

    def test_ask_text_repeats_until_value(self) -> None:
        prompts = recording_prompts()
        with patch("ssh_manager.prompts.Prompt.ask", side_effect=["  ", " host "]):
            assert prompts.ask_text("Hostname") == "host"
        assert "A value is required" in prompts.console.export_text()

    def test_ask_text_optional(self) -> None:
        with patch("ssh_manager.prompts.Prompt.ask", return_value=""):
            assert recording_prompts().ask_text("Comment", required=False) == ""

    def test_ask_int_rejects_non_positive(self) -> None:
        with patch("ssh_manager.prompts.IntPrompt.ask", side_effect=[0, 2222]):
            assert recording_prompts().ask_int("Port", default=22) == 2222

    def test_passphrase_confirm_mismatch_retries(self) -> None:
        prompts = recording_prompts()
        with patch(
            "ssh_manager.prompts.getpass.getpass",
            side_effect=["long passphrase 1", "other", "long passphrase 1", "long passphrase 1"],
        ):
            result = prompts.get_passphrase("Passphrase", confirm=True)

        assert result.get() == "long passphrase 1"
        assert "do not match" in prompts.console.export_text()

    def test_short_passphrase_warns(self) -> None:
        prompts = recording_prompts()
        with patch("ssh_manager.prompts.getpass.getpass", return_value="short"):
            assert prompts.get_passphrase("Passphrase").get() == "short"
        assert "easy to guess" in prompts.console.export_text()

    def test_empty_passphrase_rejected_when_not_allowed(self) -> None:
        with patch("ssh_manager.prompts.getpass.getpass", side_effect=["", "a long passphrase"]):
            result = recording_prompts().get_passphrase("Passphrase", allow_empty=False)
        assert result.get() == "a long passphrase"

    def test_select_option(self) -> None:
        with patch("ssh_manager.prompts.Prompt.ask", side_effect=["9", "x", "2"]):
            assert recording_prompts().select_option(["a", "b", "c"], "Pick") == 1

    def test_select_option_cancel(self) -> None:
        with patch("ssh_manager.prompts.Prompt.ask", return_value=""):
            assert recording_prompts().select_option(["a"], "Pick") is None

    def test_confirm_destructive_defaults_to_no(self) -> None:
        prompts = recording_prompts()
        with patch("ssh_manager.prompts.Confirm.ask", return_value=False) as mock_ask:
            assert prompts.confirm_destructive("id_rsa", "delete") is False
        assert mock_ask.call_args.kwargs["default"] is False
        assert "Confirmation Required" in prompts.console.export_text()

    def test_select_archive_without_archives(self) -> None:
        prompts = recording_prompts()
        assert prompts.select_archive([], "Restore") is None
        assert "No backups found" in prompts.console.export_text()


class TestPromptsOutput:
    def test_show_keys_table(self, tmp_path: Path) -> None:
        prompts = recording_prompts()
        key = key_pair(tmp_path, "id_ed25519_work")
        key.loaded_in_agent = True

        prompts.show_keys([key])

        text = prompts.console.export_text()
        assert "id_ed25519_work" in text
        assert "ED25519 256" in text
        assert "Loaded" in text
        assert "Missing" in text

    def test_show_hosts_uses_effective_port(self) -> None:
        prompts = recording_prompts()
        prompts.show_hosts([HostEntry(alias="db", host_name="10.0.0.9", port=None)])

        text = prompts.console.export_text()
        assert "db" in text
        assert "22" in text

    def test_show_error_warning_with_hints(self) -> None:
        prompts = recording_prompts()
        prompts.show_error(DuplicateAliasError("web"))

        text = prompts.console.export_text()
        assert "already exists" in text
        assert "Choose a different alias" in text

    def test_show_findings(self) -> None:
        prompts = recording_prompts()
        prompts.show_findings([SecurityFinding("/k/id_rsa", FindingKind.KEY_MODE, "644", "600")])
        assert "key-mode" in prompts.console.export_text()

        prompts = recording_prompts()
        prompts.show_findings([])
        assert "No security issues found" in prompts.console.export_text()

    def test_show_archive_labels(self, tmp_path: Path) -> None:
        path = tmp_path / "ssh_backup_20240301_123045.tar.gz"
        path.write_bytes(b"x" * 2048)
        archive = BackupArchive(path, datetime(2024, 3, 1, 12, 30, 45, tzinfo=UTC))
        prompts = recording_prompts()

        with patch("ssh_manager.prompts.Prompt.ask", return_value="1"):
            assert prompts.select_archive([archive], "Restore") == archive

        text = prompts.console.export_text()
        assert "2024-03-01 12:30:45" in text
        assert "2.0 KB" in text
