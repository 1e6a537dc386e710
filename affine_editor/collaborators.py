"""
collaborators.py

Interfaces the editing engine consumes from its host application:

- RepaintScheduler: asks for a screen region to be redrawn. The
  CoalescingRepaintWorker implementation merges bursts of requests into single
  paint passes run on a background thread.
- Interaction: the modal surface used to show messages, ask for confirmation
  and collect small sets of typed values. HeadlessInteraction is the
  non-interactive implementation used when no user is present.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence

from .editor_common import BoundingBox

logger = logging.getLogger(__name__)


# --- Repainting ---

class RepaintScheduler(ABC):

    @abstractmethod
    def request_repaint(self, region: Optional[BoundingBox] = None) -> None:
        """Schedule a repaint of a world region, or of everything if region is None."""
        pass

    @abstractmethod
    def wait_for_repaint_cycle(self, timeout: Optional[float] = None) -> bool:
        """Block until no repaint is pending or running. Returns False on timeout."""
        pass


class CoalescingRepaintWorker(RepaintScheduler):
    """
    Runs a paint callback on a daemon thread.

    Requests set a "paint requested" flag and wake the worker; every request
    that arrives before the worker picks the flag up is merged into the same
    pass, with the union of the requested regions. The thread sleeps while
    nothing is pending. A paint already in progress is never interrupted.
    """

    def __init__(self, paint: Callable[[Optional[BoundingBox]], None], name: str = "repaint-worker"):
        self._paint = paint
        self._condition = threading.Condition()
        self._must_repaint = False
        self._painting = False
        self._quit = False
        self._region: Optional[BoundingBox] = None
        self._full_repaint = False
        self.n_passes = 0
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()
        logger.debug(f"Started {name}")

    def request_repaint(self, region: Optional[BoundingBox] = None) -> None:
        with self._condition:
            if self._quit:
                logger.debug("Repaint requested after quit, ignored.")
                return
            if region is None or not region.is_valid():
                self._full_repaint = True
            else:
                self._region = region.union(self._region)
            self._must_repaint = True
            self._condition.notify_all()

    def _run(self) -> None:
        while True:
            with self._condition:
                while not self._must_repaint and not self._quit:
                    self._condition.wait()
                if self._quit:
                    break
                region = None if self._full_repaint else self._region
                self._must_repaint = False
                self._full_repaint = False
                self._region = None
                self._painting = True
            try:
                self._paint(region)
            except Exception:
                logger.exception("Repaint pass failed.")
            finally:
                with self._condition:
                    self._painting = False
                    self.n_passes += 1
                    self._condition.notify_all()
        logger.debug(f"{self._thread.name} stopped.")

    def wait_for_repaint_cycle(self, timeout: Optional[float] = None) -> bool:
        with self._condition:
            return self._condition.wait_for(
                lambda: self._quit or (not self._must_repaint and not self._painting), timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def quit(self, timeout: Optional[float] = None) -> None:
        """Stop the worker. Pending requests are dropped."""
        with self._condition:
            self._quit = True
            self._condition.notify_all()
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout)


# --- User interaction ---

@dataclass
class ValueField:
    """One typed input of a modal value collector."""
    label: str
    kind: str = "number"   # number, choice or boolean
    default: Any = None
    choices: Sequence[str] = field(default_factory=tuple)

    def __post_init__(self):
        if self.kind not in ("number", "choice", "boolean"):
            raise ValueError(f"Unknown field kind '{self.kind}' for '{self.label}'")
        if self.kind == "choice" and not self.choices:
            raise ValueError(f"Choice field '{self.label}' needs choices")


class Interaction(ABC):

    @abstractmethod
    def is_interactive(self) -> bool:
        pass

    @abstractmethod
    def collect_values(self, title: str, fields: Sequence[ValueField]) -> Optional[List[Any]]:
        """Returns one value per field, in order, or None if the user cancelled."""
        pass

    @abstractmethod
    def confirm(self, title: str, message: str) -> bool:
        pass

    @abstractmethod
    def show_message(self, message: str) -> None:
        pass


class HeadlessInteraction(Interaction):
    """Never asks anything: confirmations are denied and value collection is cancelled."""

    def __init__(self):
        self.messages: List[str] = []

    def is_interactive(self) -> bool:
        return False

    def collect_values(self, title: str, fields: Sequence[ValueField]) -> Optional[List[Any]]:
        logger.info(f"Cannot collect values for '{title}' without a user.")
        return None

    def confirm(self, title: str, message: str) -> bool:
        logger.info(f"Not confirmed (headless): {title}: {message}")
        return False

    def show_message(self, message: str) -> None:
        self.messages.append(message)
        logger.warning(message)
