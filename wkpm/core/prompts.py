from __future__ import annotations

"""
Interactive prompt collaborators.

WHY THIS FILE EXISTS:
Providers need to ask the operator questions (is this private repo real? which
token? save it where?) without knowing whether they run in a terminal, a CI job
or a test. Every question goes through a Prompter so callers can swap the
implementation.
"""

import getpass
import sys
from typing import Dict, Optional, TextIO

from wkpm.core.errors import PromptUnavailable


class Prompter:
    """
    Prompt interface. The base class is silent and refuses every question.
    """

    def confirm(self, label: str, default: bool = False) -> bool:
        raise PromptUnavailable(f"Confirmation required: {label}")

    def secret(self, label: str, placeholder: str = "") -> str:
        raise PromptUnavailable(f"Secret input required: {label}")

    def select(self, label: str, options: Dict[str, str], default: Optional[str] = None) -> str:
        raise PromptUnavailable(f"Selection required: {label}")

    def info(self, message: str) -> None:
        return None

    def warning(self, message: str) -> None:
        return None

    def error(self, message: str) -> None:
        return None

    def success(self, message: str) -> None:
        return None

    def progress(self, percent: int) -> None:
        return None


class ConsolePrompter(Prompter):
    def __init__(self, *, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout

    def _write(self, text: str) -> None:
        self.stream.write(text + "\n")
        self.stream.flush()

    def confirm(self, label: str, default: bool = False) -> bool:
        suffix = "[Y/n]" if default else "[y/N]"
        while True:
            try:
                answer = input(f"{label} {suffix} ").strip().lower()
            except EOFError as e:
                raise PromptUnavailable(f"Confirmation required: {label}") from e
            if not answer:
                return bool(default)
            if answer in {"y", "yes"}:
                return True
            if answer in {"n", "no"}:
                return False
            self._write("Please answer yes or no.")

    def secret(self, label: str, placeholder: str = "") -> str:
        hint = f" ({placeholder})" if placeholder else ""
        while True:
            try:
                value = getpass.getpass(f"{label}{hint}: ").strip()
            except EOFError as e:
                raise PromptUnavailable(f"Secret input required: {label}") from e
            if value:
                return value
            self._write("A value is required.")

    def select(self, label: str, options: Dict[str, str], default: Optional[str] = None) -> str:
        if not options:
            raise PromptUnavailable(f"Nothing to select for: {label}")
        keys = list(options.keys())
        self._write(label)
        for i, key in enumerate(keys, start=1):
            marker = " (default)" if key == default else ""
            self._write(f"  {i}) {options[key]}{marker}")
        while True:
            try:
                answer = input("> ").strip()
            except EOFError as e:
                raise PromptUnavailable(f"Selection required: {label}") from e
            if not answer and default in options:
                return str(default)
            if answer.isdigit() and 1 <= int(answer) <= len(keys):
                return keys[int(answer) - 1]
            if answer in options:
                return answer
            self._write("Invalid choice.")

    def info(self, message: str) -> None:
        self._write(message)

    def warning(self, message: str) -> None:
        self._write(f"WARNING: {message}")

    def error(self, message: str) -> None:
        sys.stderr.write(f"Error: {message}\n")
        sys.stderr.flush()

    def success(self, message: str) -> None:
        self._write(message)

    def progress(self, percent: int) -> None:
        self.stream.write(f" {int(percent)}%")
        if int(percent) >= 90:
            self.stream.write("\n")
        self.stream.flush()


class NonInteractivePrompter(ConsolePrompter):
    """
    For --yes / CI runs: confirmations take the default (or yes when
    assume_yes), selections take the default, secrets are unavailable.
    """

    def __init__(self, *, assume_yes: bool = False, stream: Optional[TextIO] = None):
        super().__init__(stream=stream)
        self.assume_yes = bool(assume_yes)

    def confirm(self, label: str, default: bool = False) -> bool:
        return True if self.assume_yes else bool(default)

    def secret(self, label: str, placeholder: str = "") -> str:
        raise PromptUnavailable(f"Secret input required in non-interactive mode: {label}")

    def select(self, label: str, options: Dict[str, str], default: Optional[str] = None) -> str:
        if default is not None and default in options:
            return default
        if options:
            return next(iter(options))
        raise PromptUnavailable(f"Nothing to select for: {label}")
