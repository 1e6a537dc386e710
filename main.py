"""
main.py

Demonstrates the affine editing engine: building a document, transforming a
selection with checkpoints, editing with the TransformEditor through pointer
events, and propagating the accumulated transform to another layer.
"""

import logging

from affine_editor import (
    EditorDocument, Selection, TransformEditor, TransformOp, Handle, Modifier,
    CoalescingRepaintWorker, configure_logging
)
from affine_editor.affine_transformations import translation_matrix, extract_rotation_deg

configure_logging(logging.DEBUG)

logger = logging.getLogger(__name__)


def run_demo_1():
    """Selection-level operations with undo/redo."""
    logger.info("--- Starting Demo 1 ---")
    doc = EditorDocument("Demo Document 1")

    # --- Layers ---
    layer_sections = doc.add_layer("Sections", z=0.0)
    layer_overlay = doc.add_layer("Overlay", z=1.0)
    if not layer_sections or not layer_overlay:
        logger.error("Failed to create layers. Aborting demo.")
        return

    # --- Entities ---
    patch_a = doc.add_patch(layer_sections, width=100, height=50,
                            transform=translation_matrix(10, 10), identifier="patch_a")
    patch_b = doc.add_patch(layer_sections, width=40, height=40,
                            transform=translation_matrix(200, 10), identifier="patch_b")
    outline = doc.add_polyline(layer_overlay, [(0, 0), (100, 0), (100, 50)], closed=True,
                               identifier="outline")
    if not patch_a or not patch_b or not outline:
        logger.error("Failed to add entities. Aborting demo.")
        return

    # Linked entities always move together
    doc.link(patch_a, patch_b)

    selection = Selection(doc, layer_sections)
    selection.add(patch_a)
    logger.info(f"Selected {selection.n_selected}, affected {selection.n_linked}")

    selection.apply(TransformOp.TRANSLATE, (10, 5))
    logger.info(f"patch_b moved to {patch_b.get_bounding_box()}")

    selection.apply(TransformOp.ROTATE, (90,))
    logger.info(f"patch_a rotation is now {extract_rotation_deg(patch_a.transform):.1f} degrees")

    doc.undo_one_step()
    doc.undo_one_step()
    logger.info(f"After undo patch_a box is {patch_a.get_bounding_box()}")
    doc.redo_one_step()

    selection.set_color((255, 0, 0))
    selection.set_alpha(0.5)
    doc.undo_one_step()
    logger.info(f"Alpha after undo: {patch_a.alpha}")

    logger.info("--- Demo 1 Finished ---")


def run_demo_2():
    """Pointer driven editing, control points and propagation to another layer."""
    logger.info("--- Starting Demo 2 ---")
    doc = EditorDocument("Demo Document 2")
    layer_source = doc.add_layer("Source")
    layer_target = doc.add_layer("Target", z=1.0)
    box = doc.add_patch(layer_source, width=100, height=100, identifier="box")
    doc.add_patch(layer_target, width=100, height=100, identifier="box_copy")

    def paint(region):
        logger.debug(f"Painting region {region}")

    repaint = CoalescingRepaintWorker(paint)
    try:
        selection = Selection(doc, layer_source, repaint=repaint)
        selection.add(box)
        editor = TransformEditor(selection)

        # Drag the whole box by (20, 10)
        editor.mouse_pressed(50, 50)
        editor.mouse_dragged(60, 55, 50, 50)
        editor.mouse_released(50, 50, 60, 55, 70, 60)
        logger.info(f"Box after drag: {editor.box}")

        # Stretch the east edge by 50
        x, y = editor.handle_position(Handle.E)
        editor.mouse_pressed(x, y)
        editor.mouse_released(x, y, x, y, x + 50, y)
        logger.info(f"Box after stretch: {editor.box}")

        # Snap-rotate with the rotation handle
        hx, hy = editor.handle_position(Handle.ROTATION)
        px, py = editor.pivot
        editor.mouse_pressed(hx, hy)
        editor.mouse_released(hx, hy, hx, hy, px, py + 50, Modifier.CONTROL)
        logger.info(f"Rotation: {extract_rotation_deg(box.transform):.1f} degrees")

        # One control point drives a translation model
        editor.add_control_point(px, py)
        editor.mouse_pressed(px, py)
        editor.mouse_released(px, py, px, py, px + 5, py + 5)

        editor.apply_and_propagate([layer_target])
        editor.apply()
        repaint.wait_for_repaint_cycle(1.0)
        logger.info(f"Repaint passes: {repaint.n_passes}")
    finally:
        repaint.quit(1.0)

    logger.info("--- Demo 2 Finished ---")


if __name__ == "__main__":
    run_demo_1()
    run_demo_2()
