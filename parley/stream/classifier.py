"""Delta classifier -- splits streamed text into visible and reasoning channels.

A two-region transducer over consecutive fragments. Text between the
open and close markers (case-insensitive) is reasoning; everything else is
visible. A fragment tail that could be the start of the marker being
searched for is held back until the next fragment resolves it, so a marker
split across any number of fragment boundaries is still detected. The
held-back tail is always shorter than the marker.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum


class Channel(StrEnum):
    VISIBLE = "visible"
    REASONING = "reasoning"


class Region(StrEnum):
    OUTSIDE = "outside"
    INSIDE = "inside"


@dataclass(frozen=True)
class Emission:
    """A run of classified text."""

    channel: Channel
    text: str


@dataclass
class ClassifierState:
    """Cursor carried between fragments."""

    region: Region = Region.OUTSIDE
    pending: str = ""  # possible marker prefix held from the previous fragment

    @property
    def inside(self) -> bool:
        return self.region == Region.INSIDE


class DeltaClassifier:
    """Restartable, chunk-boundary-safe reasoning marker parser."""

    def __init__(self, open_marker: str = "<think>", close_marker: str = "</think>") -> None:
        if not open_marker or not close_marker:
            raise ValueError("markers must be non-empty")
        self._open = open_marker
        self._close = close_marker
        self._open_re = re.compile(re.escape(open_marker), re.IGNORECASE)
        self._close_re = re.compile(re.escape(close_marker), re.IGNORECASE)
        self.state = ClassifierState()

    def reset(self) -> None:
        self.state = ClassifierState()

    def feed(self, fragment: str) -> list[Emission]:
        """Classify one fragment. Returns the runs that are now certain."""
        text = self.state.pending + fragment
        self.state.pending = ""
        emissions: list[Emission] = []

        while text:
            inside = self.state.inside
            marker = self._close if inside else self._open
            pattern = self._close_re if inside else self._open_re
            channel = Channel.REASONING if inside else Channel.VISIBLE

            match = pattern.search(text)
            if match:
                self._emit(emissions, channel, text[: match.start()])
                text = text[match.end():]
                self.state.region = Region.OUTSIDE if inside else Region.INSIDE
                continue

            held = self._partial_suffix(text, marker)
            if held:
                self._emit(emissions, channel, text[:-held])
                self.state.pending = text[-held:]
            else:
                self._emit(emissions, channel, text)
            break

        return emissions

    def finish(self) -> list[Emission]:
        """End of stream: release any held-back text in the active region."""
        pending = self.state.pending
        self.state.pending = ""
        if not pending:
            return []
        channel = Channel.REASONING if self.state.inside else Channel.VISIBLE
        return [Emission(channel, pending)]

    @staticmethod
    def _partial_suffix(text: str, marker: str) -> int:
        """Length of the longest text suffix that is a strict prefix of marker."""
        longest = min(len(marker) - 1, len(text))
        for size in range(longest, 0, -1):
            if text[-size:].lower() == marker[:size].lower():
                return size
        return 0

    @staticmethod
    def _emit(emissions: list[Emission], channel: Channel, text: str) -> None:
        if text:
            emissions.append(Emission(channel, text))
