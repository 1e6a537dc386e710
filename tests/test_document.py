"""
Tests for EditorDocument: registries, links, layer span, geometry and history.
"""
import logging

import numpy as np
import pytest

from affine_editor import EditorDocument, Patch, Polyline
from affine_editor.affine_transformations import translation_matrix, identity_matrix, rotation_matrix_deg
from affine_editor.editor_common import CheckpointError, DocumentConfigurationError, TransformationError
from affine_editor.history import Step


# ── Registries ──────────────────────────────────────────────────────────

class TestRegistries:

    def test_layers_keep_their_order(self, document):
        assert [l.user_identifier for l in document.list_layers()] == ["L1", "L2"]

    def test_add_existing_layer_updates_it(self, document, layer1):
        again = document.add_layer("L1", z=5.0, thickness=2.0)
        assert again is layer1
        assert layer1.z == 5.0
        assert len(document.list_layers()) == 2

    def test_add_patch_and_lookup(self, document, layer1):
        p = document.add_patch(layer1, width=4, height=2, identifier="p")
        assert isinstance(p, Patch)
        assert document.get_entity("p") is p
        assert document.get_entity(p.internal_id) is p
        assert document.get_layer_of_entity(p) == layer1
        assert p.get_document() is document
        assert p.get_bounding_box().width == 4

    def test_add_polyline(self, document, layer2):
        line = document.add_polyline(layer2, [(0, 0), (5, 0), (5, 5)], closed=True)
        assert isinstance(line, Polyline)
        assert line.get_bounding_box().height == 5
        assert line.user_identifier.startswith("Polyline_")

    def test_duplicate_identifier_is_rejected(self, document, layer1, caplog):
        document.add_patch(layer1, 1, 1, identifier="dup")
        with caplog.at_level(logging.ERROR):
            assert document.add_patch(layer1, 1, 1, identifier="dup") is None
        assert "already used" in caplog.text

    def test_unknown_layer(self, document):
        assert document.add_patch("nowhere", 1, 1) is None

    def test_list_entities_in_layer_order(self, document, layer1, layer2):
        c = document.add_patch(layer2, 1, 1, identifier="c")
        a = document.add_patch(layer1, 1, 1, identifier="a")
        b = document.add_patch(layer1, 1, 1, identifier="b")
        assert document.list_entities() == [a, b, c]
        assert document.sort_key(c) == (1, 0)
        assert document.index_of(b) == 1

    def test_assign_entity_to_layer(self, document, layer1, layer2):
        p = document.add_patch(layer1, 1, 1)
        assert document.assign_entity_to_layer(p, layer2)
        assert p.get_layer() == layer2
        assert document.get_entities_on_layer(layer1) == []

    def test_remove_entity(self, document, linked_pair):
        a, b = linked_pair
        document.add_transform_step([a, b])
        assert document.remove_entity(a)
        assert document.get_entity("A") is None
        assert not b.is_linked()
        assert a.get_document() is None
        assert document.history.get_current().entities == [b]
        assert not document.remove_entity(a)


# ── Links ───────────────────────────────────────────────────────────────

class TestLinks:

    def test_links_are_symmetric(self, linked_pair):
        a, b = linked_pair
        assert a.is_linked() and b.is_linked()
        assert a.get_linked_group() == {a, b}

    def test_linked_group_is_transitive(self, document, linked_pair, patch_c):
        a, b = linked_pair
        document.link(b, patch_c)
        assert a.get_linked_group() == {a, b, patch_c}

    def test_cycles_are_allowed(self, document, linked_pair, patch_c):
        a, b = linked_pair
        document.link(b, patch_c)
        document.link(patch_c, a)
        assert patch_c.get_linked_group() == {a, b, patch_c}

    def test_self_link_raises(self, document, linked_pair):
        with pytest.raises(DocumentConfigurationError):
            document.link(linked_pair[0], linked_pair[0])

    def test_unlink(self, document, linked_pair):
        a, b = linked_pair
        assert document.unlink(a, b)
        assert not document.unlink(a, b)
        assert a.get_linked_group() == {a}

    def test_is_locked_in_group(self, linked_pair):
        a, b = linked_pair
        b.locked = True
        assert not a.is_locked()
        assert a.is_locked_in_group()


# ── Layer span ──────────────────────────────────────────────────────────

class TestLayerSpan:

    def test_entities_painting_at(self, document, layer1, layer2, linked_pair, patch_c):
        a, b = linked_pair
        document.set_paints_at(a, [layer2])
        assert document.entities_painting_at([layer2]) == [patch_c, a]
        assert document.entities_painting_at([layer1, layer2]) == [a, b, patch_c]
        assert document.get_paint_layers(a) == [layer2]

    def test_own_layer_is_not_an_extra_paint_layer(self, document, layer1, linked_pair):
        a, _ = linked_pair
        document.set_paints_at(a, [layer1])
        assert document.get_paint_layers(a) == []

    def test_unknown_paint_layer_raises(self, document, linked_pair):
        with pytest.raises(DocumentConfigurationError):
            document.set_paints_at(linked_pair[0], ["nowhere"])

    def test_cross_layer_links(self, document, layer1, layer2, linked_pair, patch_c):
        a, b = linked_pair
        assert not document.has_cross_layer_links([a, b])
        assert not document.are_there_layer_cross_links([layer1, layer2])
        document.link(a, patch_c)
        assert document.has_cross_layer_links([a])
        assert document.are_there_layer_cross_links([layer2])


# ── Geometry ────────────────────────────────────────────────────────────

class TestGeometry:

    def test_preconcatenate(self, document, linked_pair):
        a, b = linked_pair
        assert document.preconcatenate(translation_matrix(1, 2), [a, b]) == 2
        assert np.array_equal(b.transform, translation_matrix(31, 2))

    def test_malformed_transform_touches_nothing(self, document, linked_pair):
        a, b = linked_pair
        with pytest.raises(TransformationError):
            document.preconcatenate(np.identity(2), [a, b])
        bad = identity_matrix()
        bad[0, 0] = np.inf
        with pytest.raises(TransformationError):
            document.preconcatenate(bad, [a, b])
        assert np.array_equal(a.transform, identity_matrix())

    def test_set_transform_rejects_wrong_shape(self, linked_pair):
        with pytest.raises(TransformationError):
            linked_pair[0].set_transform(np.zeros((2, 3)))

    def test_apply_to_layer(self, document, layer2, patch_c):
        assert document.apply_to_layer(layer2, translation_matrix(-100, 0)) == 1
        assert patch_c.get_bounding_box().min_x == pytest.approx(0)
        assert document.apply_to_layer("nowhere", identity_matrix()) == 0

    def test_bounding_box(self, document, linked_pair):
        box = document.get_bounding_box()
        assert (box.min_x, box.min_y, box.max_x, box.max_y) == (0, 0, 50, 10)


# ── History ─────────────────────────────────────────────────────────────

class FailingStep(Step):

    def is_identical(self, other):
        return False

    def is_empty(self):
        return False

    def remove(self, entity_id):
        return False

    def apply(self):
        raise RuntimeError("cannot restore")


class TestHistory:

    def test_undo_redo_transform_step(self, document, linked_pair):
        a, b = linked_pair
        document.add_transform_step([a, b])
        document.preconcatenate(rotation_matrix_deg(45), [a, b])
        document.add_transform_step([a, b])
        assert document.undo_one_step()
        assert np.array_equal(a.transform, identity_matrix())
        assert document.redo_one_step()
        assert np.allclose(a.transform, rotation_matrix_deg(45))
        assert not document.redo_one_step()

    def test_undo_records_unsaved_state_for_redo(self, document, linked_pair):
        a, b = linked_pair
        document.add_transform_step([a, b])
        document.preconcatenate(translation_matrix(7, 0), [a, b])
        assert document.undo_one_step()
        assert np.array_equal(a.transform, identity_matrix())
        assert document.redo_one_step()
        assert np.array_equal(a.transform, translation_matrix(7, 0))

    def test_nothing_to_undo(self, document):
        assert not document.undo_one_step()
        assert not document.can_undo()

    def test_rollback_restores_before_state(self, document, linked_pair):
        a, b = linked_pair
        before = document.add_transform_step([a, b])
        document.preconcatenate(translation_matrix(7, 0), [a, b])
        document.rollback(before)
        assert np.array_equal(b.transform, translation_matrix(30, 0))
        assert document.history.get_current() is before
        assert not document.can_redo()

    def test_failed_rollback_raises(self, document):
        with pytest.raises(CheckpointError):
            document.rollback(FailingStep())

    def test_add_edit_step_picks_snapshot_kind(self, document, linked_pair):
        from affine_editor.history_steps import TransformSnapshot, PropertySnapshot
        assert isinstance(document.add_edit_step(linked_pair), TransformSnapshot)
        assert isinstance(document.add_edit_step(linked_pair, ["color"]), PropertySnapshot)

    def test_data_edit_undo(self, document, linked_pair):
        a, b = linked_pair
        document.add_data_edit_step([a], ["visible"])
        a.visible = False
        document.add_data_edit_step([a], ["visible"])
        document.undo_one_step()
        assert a.visible


# ── Notifications ───────────────────────────────────────────────────────

class TestNotifications:

    def test_listener_receives_changes(self, document, layer1):
        seen = []
        document.add_listener(lambda kind, entities: seen.append((kind, len(entities))))
        p = document.add_patch(layer1, 1, 1)
        p.set_transform(translation_matrix(1, 1))
        document.remove_entity(p)
        assert seen == [("added", 1), ("transform", 1), ("removed", 1)]

    def test_failing_listener_does_not_stop_others(self, document, layer1):
        seen = []

        def broken(kind, entities):
            raise RuntimeError("listener bug")

        document.add_listener(broken)
        document.add_listener(lambda kind, entities: seen.append(kind))
        document.add_patch(layer1, 1, 1)
        assert seen == ["added"]
