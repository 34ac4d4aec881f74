"""Index reconciliation of anchors under buffer edits."""

import pytest

from g2a.core.errors import EditBlockedError, ValidationError
from g2a.core.models import Anchor
from g2a.core.reconciler import EditDescriptor, apply_to_buffer, reconcile, refresh_text


def _anchor(anchor_id, start, end, location="content"):
    return Anchor(
        id=anchor_id,
        session_id="S1",
        test_case_id="1",
        box_type="when",
        box_number=1,
        location=location,
        text="x" * (end - start),
        start_index=start,
        end_index=end,
    )


def _ranges(anchors):
    return [(a.id, a.start_index, a.end_index) for a in anchors]


def test_insertion_before_anchor_shifts_both_bounds():
    edit = EditDescriptor(edit_start=5, inserted_length=3, inserted_text="abc")
    result = reconcile([_anchor("A", 10, 20)], edit)
    assert _ranges(result) == [("A", 13, 23)]


def test_edit_after_anchor_leaves_it_alone():
    edit = EditDescriptor(edit_start=20, deleted_length=2)
    result = reconcile([_anchor("A", 10, 20)], edit)
    assert _ranges(result) == [("A", 10, 20)]


def test_edit_inside_anchor_without_session_is_blocked():
    edit = EditDescriptor(edit_start=15, inserted_length=2, inserted_text="zz")
    with pytest.raises(EditBlockedError) as excinfo:
        reconcile([_anchor("A", 10, 20)], edit)
    assert excinfo.value.anchor_id == "A"


def test_edit_inside_editing_anchor_extends_end_only():
    edit = EditDescriptor(edit_start=15, inserted_length=4, inserted_text="more")
    result = reconcile([_anchor("A", 10, 20), _anchor("B", 30, 35)], edit, editing_anchor_id="A")
    assert _ranges(result) == [("A", 10, 24), ("B", 34, 39)]


def test_typing_at_tail_of_editing_anchor_grows_it():
    edit = EditDescriptor(edit_start=20, inserted_length=1, inserted_text="!")
    result = reconcile([_anchor("A", 10, 20)], edit, editing_anchor_id="A")
    assert _ranges(result) == [("A", 10, 21)]


def test_typing_at_tail_shifts_adjacent_anchor():
    edit = EditDescriptor(edit_start=20, inserted_length=1, inserted_text="!")
    result = reconcile([_anchor("A", 10, 20), _anchor("B", 20, 25)], edit, editing_anchor_id="A")
    assert _ranges(result) == [("A", 10, 21), ("B", 21, 26)]


def test_newline_right_before_anchor_is_always_allowed():
    edit = EditDescriptor(edit_start=10, inserted_length=1, inserted_text="\n")
    result = reconcile([_anchor("A", 10, 20)], edit)
    assert _ranges(result) == [("A", 11, 21)]


def test_other_insertion_at_anchor_start_is_blocked():
    edit = EditDescriptor(edit_start=10, inserted_length=1, inserted_text="x")
    with pytest.raises(EditBlockedError):
        reconcile([_anchor("A", 10, 20)], edit)


def test_deletion_reaching_into_anchor_is_blocked():
    edit = EditDescriptor(edit_start=8, deleted_length=4)
    with pytest.raises(EditBlockedError):
        reconcile([_anchor("A", 10, 20)], edit)


def test_deletion_ending_at_anchor_start_shifts_back():
    edit = EditDescriptor(edit_start=4, deleted_length=6)
    result = reconcile([_anchor("A", 10, 20)], edit)
    assert _ranges(result) == [("A", 4, 14)]


def test_emptying_the_editing_anchor_is_refused():
    edit = EditDescriptor(edit_start=10, deleted_length=10)
    with pytest.raises(EditBlockedError):
        reconcile([_anchor("A", 10, 20)], edit, editing_anchor_id="A")


def test_reconcile_does_not_mutate_inputs():
    original = [_anchor("A", 10, 20)]
    reconcile(original, EditDescriptor(edit_start=0, inserted_length=2, inserted_text="ab"))
    assert _ranges(original) == [("A", 10, 20)]


def test_descriptor_derived_from_buffers():
    edit = EditDescriptor.from_buffers("Given the user logs in", "Given the admin user logs in")
    assert edit.edit_start == 10
    assert edit.deleted_length == 0
    assert edit.inserted_text == "admin "
    assert edit.delta == 6


def test_descriptor_rejects_mismatched_text():
    with pytest.raises(ValidationError):
        EditDescriptor(edit_start=0, inserted_length=3, inserted_text="ab")


def test_apply_to_buffer_and_refresh_text():
    buffer = "cy.visit('/')\ncy.get('#save').click()"
    anchor = Anchor(
        id="A",
        session_id="S1",
        test_case_id="1",
        box_type="when",
        box_number=1,
        location="content",
        text="cy.get('#save')",
        start_index=14,
        end_index=29,
    )
    edit = EditDescriptor(edit_start=23, deleted_length=4, inserted_length=6, inserted_text="submit")
    new_buffer = apply_to_buffer(buffer, edit)
    updated = refresh_text(reconcile([anchor], edit, editing_anchor_id="A"), new_buffer)
    assert new_buffer == "cy.visit('/')\ncy.get('#submit').click()"
    assert updated[0].text == "cy.get('#submit')"
    assert len(updated[0].text) == updated[0].end_index - updated[0].start_index
