"""Line oriented console input and output.

The states never call ``print`` or ``input`` directly; they talk to a
:class:`ConsoleView` and a :class:`ConsoleInputHandler`, which read from
and write to injectable streams so whole screens can be driven by
scripted input in tests.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Iterable, Mapping, TextIO, TypeVar, Union

T = TypeVar("T")

SENTINEL_KEY = "Q"


class ConsoleView:
    """Writes informational, error and prompt lines to a text stream."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    def _write(self, text: str) -> None:
        stream = self._stream if self._stream is not None else sys.stdout
        stream.write(text + "\n")
        stream.flush()

    def info(self, text: str) -> None:
        self._write(text)

    def error(self, text: str) -> None:
        self._write(f"! {text}")

    def errors(self, messages: Iterable[str]) -> None:
        for message in messages:
            self.error(message)

    def prompt(self, text: str) -> None:
        self._write(f"> {text}")


@dataclass(frozen=True)
class Valid(Generic[T]):
    """A successfully validated and converted value."""

    value: T


class InputSignal(Enum):
    RETRY = "retry"
    ABORTED = "aborted"


RETRY = InputSignal.RETRY
ABORTED = InputSignal.ABORTED

AttemptResult = Union[Valid[T], InputSignal]


class ConsoleInputHandler:
    """Reads user choices and validated values."""

    def __init__(self, view: ConsoleView, read_line: Callable[[], str] = input) -> None:
        self._view = view
        self._read_line = read_line

    def _read(self) -> str:
        line = self._read_line()
        return line if line is not None else ""

    def ask_option(self, choices: Mapping[str, str], prompt: str = "Please select an option:") -> str:
        """Ask the user to pick one of ``choices``.

        Returns the selected key, which is guaranteed to belong to
        ``choices``.  Keys are single upper case characters and the
        answer is matched case-insensitively.
        """
        self._view.prompt(prompt)
        for choice, description in choices.items():
            self._view.info(f"[{choice.upper()}] - {description}")
        while True:
            answer = self._read().strip().upper()
            if len(answer) == 1 and answer in choices:
                return answer
            self._view.prompt("Please select a valid option")

    def ask_text(self, prompt: str = "Please type your input:") -> str:
        self._view.prompt(prompt)
        return self._read()

    def ask_key(self, prompt: str) -> str:
        """Return the first character of the answer upper-cased, or ``""``."""
        self._view.prompt(prompt)
        answer = self._read().strip()
        return answer[:1].upper()

    def ask_continue(self, action: str) -> bool:
        """Ask whether to keep going; False once the sentinel key is typed."""
        key = self.ask_key(f"Press [Enter] to continue. Type [{SENTINEL_KEY}] to {action}.")
        return key != SENTINEL_KEY

    def try_ask_text(
        self,
        validate: Callable[[str], bool],
        convert: Callable[[str], T],
        prompt: str,
        validation_error: str = "Invalid input.",
        conversion_error: str | None = None,
    ) -> AttemptResult[T]:
        """Make a single attempt at reading a value.

        ``convert`` only runs once ``validate`` accepted the text.  A
        rejected or unconvertible answer prints its message and yields
        ``RETRY``.
        """
        text = self.ask_text(prompt).strip()
        if not validate(text):
            self._view.error(validation_error)
            return RETRY
        try:
            return Valid(convert(text))
        except ValueError:
            self._view.error(conversion_error or validation_error)
            return RETRY

    def ask_until_valid(
        self,
        validate: Callable[[str], bool],
        convert: Callable[[str], T],
        prompt: str,
        validation_error: str = "Invalid input.",
        conversion_error: str | None = None,
        abort_action: str | None = None,
    ) -> AttemptResult[T]:
        """Repeat :meth:`try_ask_text` until a value is produced.

        When ``abort_action`` is given the user is offered the sentinel
        key after every failed attempt and ``ABORTED`` is returned if it
        is typed.  Without it the loop only ends with a valid value.
        """
        while True:
            result = self.try_ask_text(validate, convert, prompt, validation_error, conversion_error)
            if isinstance(result, Valid):
                return result
            if abort_action is not None and not self.ask_continue(abort_action):
                return ABORTED
