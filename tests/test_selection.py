"""
Tests for Selection: membership, linked closure, checkpointed operations and
property edits.
"""
import logging

import numpy as np
import pytest

from affine_editor import Selection, TransformOp
from affine_editor.affine_transformations import (
    translation_matrix, identity_matrix, extract_rotation_deg
)


# ── Membership ──────────────────────────────────────────────────────────

class TestMembership:

    def test_add_sets_active_and_linked_closure(self, selection, linked_pair):
        a, b = linked_pair
        assert selection.add(a)
        assert selection.get_active() is a
        assert selection.get_selected() == [a]
        assert selection.get_affected() == {a, b}
        assert selection.n_selected == 1
        assert selection.n_linked == 2

    def test_add_duplicate_or_none(self, selection, linked_pair):
        a, _ = linked_pair
        selection.add(a)
        assert not selection.add(a)
        assert not selection.add(None)
        assert selection.n_selected == 1

    def test_box_covers_selected_not_linked(self, selection, linked_pair):
        a, _ = linked_pair
        selection.add(a)
        box = selection.get_box()
        assert (box.min_x, box.max_x) == (0, 10)
        linked = selection.get_linked_box()
        assert linked.max_x == 50

    def test_remove_active_promotes_last_remaining(self, selection, linked_pair, patch_c):
        a, b = linked_pair
        selection.add(a)
        selection.add(patch_c)
        assert selection.get_active() is patch_c
        assert selection.remove(patch_c)
        assert selection.get_active() is a
        assert selection.get_affected() == {a, b}
        assert selection.get_box().max_x == 10

    def test_remove_last_clears_everything(self, selection, linked_pair):
        a, _ = linked_pair
        selection.add(a)
        selection.remove(a)
        assert selection.is_empty()
        assert selection.get_active() is None
        assert selection.get_box() is None
        assert selection.get_affected() == set()

    def test_remove_unselected(self, selection, linked_pair, caplog):
        with caplog.at_level(logging.DEBUG, logger="affine_editor.selection"):
            assert not selection.remove(linked_pair[0])
        assert "is not selected" in caplog.text
        assert not selection.remove(None)

    def test_restore_swaps_with_previous(self, selection, linked_pair, patch_c):
        a, _ = linked_pair
        selection.add(a)
        selection.clear()
        selection.add(patch_c)
        selection.restore()
        assert selection.get_selected() == [a]
        selection.restore()
        assert selection.get_selected() == [patch_c]

    def test_select_all_in_layer(self, selection, linked_pair):
        assert selection.select_all_in_layer() == 2
        assert selection.get_active() is linked_pair[1]
        assert selection.select_all_in_layer() == 0

    def test_select_all_visible_skips_hidden(self, selection, linked_pair):
        a, b = linked_pair
        b.visible = False
        assert selection.select_all_visible() == 1
        assert selection.get_selected() == [a]

    def test_selected_sorted_in_document_order(self, selection, linked_pair, patch_c):
        a, b = linked_pair
        selection.select_all([patch_c, b, a])
        assert selection.get_selected_sorted() == [a, b, patch_c]

    def test_type_filters(self, document, layer1, selection, linked_pair):
        from affine_editor import Patch, Polyline
        line = document.add_polyline(layer1, [(0, 0), (1, 1)])
        selection.add(line)
        assert selection.contains_type(Polyline)
        assert not selection.contains_type(Patch)
        assert selection.get_selected(Patch) == []
        assert selection.contains(line)

    def test_layer_of_view(self, document, linked_pair, patch_c, layer2):
        sel = Selection(document)
        assert sel.get_layer() is None
        sel.add(patch_c)
        assert sel.get_layer() == layer2
        sel.dispose()


class TestDocumentEvents:

    def test_removed_entity_leaves_selection(self, document, selection, linked_pair):
        a, b = linked_pair
        selection.add(a)
        selection.add(b)
        document.remove_entity(b)
        assert selection.get_selected() == [a]
        assert selection.get_active() is a
        assert selection.get_affected() == {a}

    def test_new_link_extends_affected(self, document, selection, linked_pair, patch_c):
        a, b = linked_pair
        selection.add(patch_c)
        document.link(patch_c, a)
        assert selection.get_affected() == {a, b, patch_c}

    def test_lock_through_link(self, selection, linked_pair):
        a, b = linked_pair
        selection.add(a)
        assert not selection.is_locked()
        b.locked = True
        assert selection.is_locked()


# ── Checkpointed transforms ─────────────────────────────────────────────

class TestApply:

    def test_translate_linked_pair_then_undo(self, document, selection, linked_pair):
        a, b = linked_pair
        selection.add(a)
        assert selection.apply(TransformOp.TRANSLATE, (10, 5))
        assert np.array_equal(a.transform, translation_matrix(10, 5))
        assert np.array_equal(b.transform, translation_matrix(40, 5))
        assert document.undo_one_step()
        assert np.array_equal(a.transform, identity_matrix())
        assert np.array_equal(b.transform, translation_matrix(30, 0))

    def test_rotate_swaps_box_extent(self, document, layer2, interaction):
        wide = document.add_patch(layer2, width=40, height=10)
        sel = Selection(document, layer2, interaction=interaction)
        sel.add(wide)
        assert sel.apply(TransformOp.ROTATE, (90,))
        box = wide.get_bounding_box()
        assert box.width == pytest.approx(10)
        assert box.height == pytest.approx(40)
        assert box.center == pytest.approx((20, 5))
        assert extract_rotation_deg(wide.transform) == pytest.approx(90)
        sel.dispose()

    def test_scale_to_zero_is_rejected(self, selection, interaction, linked_pair):
        a, b = linked_pair
        selection.add(a)
        assert not selection.apply(TransformOp.SCALE, (0, 1))
        assert interaction.messages == ["Cannot scale to 0."]
        assert np.array_equal(a.transform, identity_matrix())
        assert np.array_equal(b.transform, translation_matrix(30, 0))

    def test_scale_about_box_center(self, selection, linked_pair):
        a, _ = linked_pair
        selection.add(a)
        assert selection.apply(TransformOp.SCALE, (2, 2))
        box = a.get_bounding_box()
        assert (box.min_x, box.max_x) == pytest.approx((-5, 15))

    def test_empty_selection(self, selection):
        assert not selection.apply(TransformOp.TRANSLATE, (1, 1))

    def test_failure_rolls_back(self, document, selection, linked_pair, monkeypatch):
        a, b = linked_pair
        selection.add(a)

        def translate_then_fail(dx, dy):
            Selection.translate(selection, dx, dy)
            raise RuntimeError("boom")

        monkeypatch.setattr(selection, "translate", translate_then_fail)
        assert not selection.apply(TransformOp.TRANSLATE, (10, 0))
        assert np.array_equal(a.transform, identity_matrix())
        assert np.array_equal(b.transform, translation_matrix(30, 0))
        assert not document.can_redo()

    def test_repaint_is_requested(self, selection, repaint, linked_pair):
        selection.add(linked_pair[0])
        selection.apply(TransformOp.TRANSLATE, (1, 0))
        assert repaint.regions
        # Padded by the configured selection padding
        assert repaint.regions[-1].min_x == pytest.approx(-31)


class TestSpecify:

    def test_specify_applies_translate_rotate_scale(self, selection, interaction, linked_pair):
        a, _ = linked_pair
        selection.add(a)
        # origin x, origin y, rotate, translate x, translate y, scale x, scale y
        interaction.value_answers.append([0, 0, 0, 5, 0, 2, 1])
        assert selection.specify()
        title, fields = interaction.collect_requests[0]
        assert len(fields) == 7
        assert fields[0].default == 5
        box = a.get_bounding_box()
        assert (box.min_x, box.max_x) == pytest.approx((10, 30))

    def test_specify_zero_scale_changes_nothing(self, selection, interaction, linked_pair):
        a, b = linked_pair
        selection.add(a)
        interaction.value_answers.append([0, 0, 0, 5, 0, 0, 1])
        assert not selection.specify()
        assert interaction.messages == ["Cannot scale to 0."]
        assert np.array_equal(a.transform, identity_matrix())
        assert np.array_equal(b.transform, translation_matrix(30, 0))

    def test_specify_cancelled(self, selection, linked_pair):
        a, _ = linked_pair
        selection.add(a)
        assert not selection.specify()
        assert np.array_equal(a.transform, identity_matrix())

    def test_specify_is_one_undo_step(self, document, selection, interaction, linked_pair):
        a, _ = linked_pair
        selection.add(a)
        interaction.value_answers.append([0, 0, 90, 5, 5, 1, 1])
        selection.specify()
        document.undo_one_step()
        assert np.allclose(a.transform, identity_matrix())


# ── Property edits ──────────────────────────────────────────────────────

class TestProperties:

    def test_set_color_is_undoable(self, document, selection, linked_pair):
        a, _ = linked_pair
        selection.add(a)
        assert selection.set_color((255, 0, 0)) == [a]
        assert a.color == (255, 0, 0)
        document.undo_one_step()
        assert a.color == (255, 255, 0)

    def test_invalid_color(self, selection, linked_pair):
        selection.add(linked_pair[0])
        assert selection.set_color((300, 0, 0)) == []
        assert selection.set_color((1, 2)) == []

    def test_set_alpha(self, selection, linked_pair):
        a, _ = linked_pair
        selection.add(a)
        assert selection.set_alpha(2.0) == []
        assert selection.set_alpha(0.5) == [a]
        assert selection.set_alpha(0.5) == []

    def test_set_visible_and_locked_notify(self, selection, linked_pair):
        a, _ = linked_pair
        seen = []
        selection.add_listener(lambda kind, entities: seen.append(kind))
        selection.add(a)
        selection.set_visible(False)
        selection.set_locked(True)
        assert not a.visible and a.locked
        assert seen == ["selection", "visible", "locked"]

    def test_property_edit_on_empty_selection(self, selection):
        assert selection.set_visible(False) == []
