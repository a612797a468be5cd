"""Play a tone whose pitch follows the autofocus figure of merit."""

from __future__ import annotations

import logging
import math
import subprocess
import time
from typing import Any, Mapping

log = logging.getLogger(__name__)

PLAY_COMMAND = "/usr/bin/play"


class AcousticFocusStage:
    """Maps the ``FocusFoM`` metadata value to an audible frequency, at most once a second."""

    name = "acoustic_focus"

    def __init__(self) -> None:
        self.min_fom = 1
        self.max_fom = 2000
        self.min_freq = 400
        self.max_freq = 2000
        self.duration = 0.1
        self.mapping = "log"
        self._last: float | None = None
        self._players: list[subprocess.Popen] = []

    def read(self, params: Mapping[str, Any]) -> None:
        """Load settings from a parameter mapping, using the stage defaults for missing keys."""
        self.min_fom = int(params.get("minFoM", 1))
        self.max_fom = int(params.get("maxFoM", 3000))
        self.min_freq = int(params.get("minFreq", 300))
        self.max_freq = int(params.get("maxFreq", 3000))
        self.duration = float(params.get("duration", 0.1))
        self.mapping = str(params.get("mapping", "log"))

    def fom_to_frequency(self, fom: int) -> int:
        """Frequency in hertz for a focus figure of merit, clamped to the configured range."""
        value = max(fom, self.min_fom)
        if self.mapping == "log":
            norm = math.log(value) - math.log(self.min_fom)
            denom = math.log(self.max_fom) - math.log(self.min_fom)
        else:
            norm = value - self.min_fom
            denom = self.max_fom - self.min_fom
        freq = self.min_freq + int(norm / denom * (self.max_freq - self.min_freq))
        return min(self.max_freq, max(self.min_freq, freq))

    def process(self, metadata: Mapping[str, Any]) -> bool:
        """Sound a tone for this frame's focus value if a second has passed; never drops the frame."""
        now = time.monotonic()
        if self._last is None:
            self._last = now
        if now - self._last >= 1.0:
            self._last = now
            fom = metadata.get("FocusFoM")
            if fom is not None:
                self._play(self.fom_to_frequency(fom))
        return False

    def _play(self, freq: int) -> None:
        self._players = [p for p in self._players if p.poll() is None]
        command = [PLAY_COMMAND, "-nq", "-t", "alsa", "synth", f"{self.duration:.6f}", "sine", str(freq)]
        try:
            self._players.append(
                subprocess.Popen(
                    command,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
            )
        except OSError as exc:
            log.debug("could not start %s: %s", PLAY_COMMAND, exc)