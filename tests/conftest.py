"""
Shared fixtures for the affine editor tests.

Provides a two-layer document with a linked pair of patches, scripted
stand-ins for the interaction surface and the repaint scheduler, and a
selection bound to the first layer.
"""
import sys
import os
from collections import deque

import pytest

# Ensure the repository root is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from affine_editor import EditorDocument, Selection
from affine_editor.affine_transformations import translation_matrix
from affine_editor.collaborators import Interaction, RepaintScheduler


# ── Collaborator stand-ins ──────────────────────────────────────────────

class ScriptedInteraction(Interaction):
    """Interactive surface answering from queues. Unanswered confirmations are denied."""

    def __init__(self, interactive=True):
        self.interactive = interactive
        self.confirm_answers = deque()
        self.value_answers = deque()
        self.confirm_requests = []
        self.collect_requests = []
        self.messages = []

    def is_interactive(self):
        return self.interactive

    def collect_values(self, title, fields):
        self.collect_requests.append((title, list(fields)))
        return self.value_answers.popleft() if self.value_answers else None

    def confirm(self, title, message):
        self.confirm_requests.append(message)
        return self.confirm_answers.popleft() if self.confirm_answers else False

    def show_message(self, message):
        self.messages.append(message)


class RecordingRepaint(RepaintScheduler):
    """Collects repaint requests instead of painting."""

    def __init__(self):
        self.regions = []

    def request_repaint(self, region=None):
        self.regions.append(region)

    def wait_for_repaint_cycle(self, timeout=None):
        return True


# ── Document fixtures ───────────────────────────────────────────────────

@pytest.fixture
def document():
    """Document with layers L1 and L2"""
    doc = EditorDocument("Test Document")
    doc.add_layer("L1", z=0.0)
    doc.add_layer("L2", z=1.0)
    return doc


@pytest.fixture
def layer1(document):
    return document.get_layer("L1")


@pytest.fixture
def layer2(document):
    return document.get_layer("L2")


@pytest.fixture
def linked_pair(document, layer1):
    """Patches A (10x10 at the origin) and B (20x10 at x=30) on L1, linked"""
    a = document.add_patch(layer1, width=10, height=10, identifier="A")
    b = document.add_patch(layer1, width=20, height=10, transform=translation_matrix(30, 0), identifier="B")
    document.link(a, b)
    return a, b


@pytest.fixture
def patch_c(document, layer2):
    """Unlinked 10x10 patch C on L2 at (100, 100)"""
    return document.add_patch(layer2, width=10, height=10, transform=translation_matrix(100, 100), identifier="C")


# ── Collaborator fixtures ───────────────────────────────────────────────

@pytest.fixture
def interaction():
    return ScriptedInteraction()


@pytest.fixture
def repaint():
    return RecordingRepaint()


@pytest.fixture
def selection(document, layer1, interaction, repaint):
    """Empty selection viewing L1"""
    sel = Selection(document, layer1, repaint=repaint, interaction=interaction)
    yield sel
    sel.dispose()
