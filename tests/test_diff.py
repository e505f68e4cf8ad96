"""Tests for the diff engine."""

import pytest

from storage_check.diff import DiffKind, diff_layouts
from storage_check.layout import StorageLayout

from .helpers import layout, var


def kinds(diffs):
    return [d.kind for d in diffs]


class TestIdentity:
    def test_layout_against_itself(self, base_layout):
        assert diff_layouts(base_layout, base_layout) == []

    def test_empty_layouts(self):
        assert diff_layouts(StorageLayout(), StorageLayout()) == []

    def test_recompiled_layout_with_new_type_labels(self):
        base = layout(var("owner", "t_address", 20, 0, 0, type_label="address"))
        head = layout(var("owner", "t_address", 20, 0, 0, type_label="address payable"))
        assert diff_layouts(base, head) == []


class TestTypeChanged:
    def test_concrete_balance_narrowed(self):
        base = layout(var("balance", "uint256", 32, 0, 0))
        head = layout(var("balance", "uint128", 16, 0, 0))

        diffs = diff_layouts(base, head)

        assert kinds(diffs) == [DiffKind.TYPE_CHANGED]
        assert diffs[0].base_variable.type_signature == "uint256"
        assert diffs[0].head_variable.type_signature == "uint128"

    def test_type_change_is_not_also_a_slot_change(self):
        base = layout(var("a", "t_address", 20, 0, 0))
        head = layout(var("a", "t_uint256", 32, 0, 0))
        assert kinds(diff_layouts(base, head)) == [DiffKind.TYPE_CHANGED]

    def test_type_and_slot_change_reports_type(self):
        base = layout(var("a", "t_address", 20, 0, 0))
        head = layout(var("a", "t_uint256", 32, 4, 0))
        assert kinds(diff_layouts(base, head)) == [DiffKind.TYPE_CHANGED]

    def test_detected_in_both_directions(self):
        base = layout(var("a", "t_uint256", 32, 0, 0))
        head = layout(var("a", "t_int256", 32, 0, 0))
        assert kinds(diff_layouts(base, head)) == [DiffKind.TYPE_CHANGED]
        assert kinds(diff_layouts(head, base)) == [DiffKind.TYPE_CHANGED]


class TestSlotChanged:
    def test_moved_variable(self):
        base = layout(var("a", slot=0), var("b", slot=1))
        head = layout(var("b", slot=0), var("a", slot=1))

        diffs = diff_layouts(base, head)

        assert kinds(diffs) == [DiffKind.SLOT_CHANGED, DiffKind.SLOT_CHANGED]
        assert [d.variable_name for d in diffs] == ["b", "a"]

    def test_reverse_swaps_slots(self):
        base = layout(var("a", "t_bool", 1, 0, 0))
        head = layout(var("a", "t_bool", 1, 2, 5))

        forward, = diff_layouts(base, head)
        backward, = diff_layouts(head, base)

        assert forward.kind is backward.kind is DiffKind.SLOT_CHANGED
        assert forward.base_variable.position == backward.head_variable.position == (0, 0)
        assert forward.head_variable.position == backward.base_variable.position == (2, 5)

    def test_offset_only_change(self):
        base = layout(var("flag", "t_bool", 1, 0, 20))
        head = layout(var("flag", "t_bool", 1, 0, 0))
        assert kinds(diff_layouts(base, head)) == [DiffKind.SLOT_CHANGED]


class TestRenames:
    def test_concrete_owner_renamed_to_admin(self):
        base = layout(var("owner", "address", 20, 0, 0))
        head = layout(var("admin", "address", 20, 0, 0))

        diffs = diff_layouts(base, head)

        assert kinds(diffs) == [DiffKind.VARIABLE_RENAMED]
        assert diffs[0].previous_name == "owner"
        assert diffs[0].variable_name == "admin"

    def test_single_rename_in_larger_layout(self, base_layout):
        renamed = [
            var("shares", v.type_signature, v.byte_size, v.slot, v.offset) if v.name == "totalShares" else v
            for v in base_layout
        ]
        diffs = diff_layouts(base_layout, StorageLayout(renamed))

        assert kinds(diffs) == [DiffKind.VARIABLE_RENAMED]
        assert (diffs[0].previous_name, diffs[0].variable_name) == ("totalShares", "shares")

    def test_same_position_different_type_is_add_and_remove(self):
        base = layout(var("owner", "t_address", 20, 0, 0))
        head = layout(var("admin", "t_uint160", 20, 0, 0))
        assert kinds(diff_layouts(base, head)) == [DiffKind.VARIABLE_ADDED, DiffKind.VARIABLE_REMOVED]

    def test_base_variable_matched_by_name_is_not_a_rename_candidate(self):
        base = layout(var("a", slot=0))
        head = layout(var("a", slot=1), var("b", slot=0))

        diffs = diff_layouts(base, head)

        assert kinds(diffs) == [DiffKind.SLOT_CHANGED, DiffKind.VARIABLE_ADDED]

    def test_tie_break_picks_lowest_base_index(self):
        base = layout(var("first", "t_empty", 0, 3, 0), var("second", "t_empty", 0, 3, 0))
        head = layout(var("renamed", "t_empty", 0, 3, 0))

        diffs = diff_layouts(base, head)

        assert kinds(diffs) == [DiffKind.VARIABLE_RENAMED, DiffKind.VARIABLE_REMOVED]
        assert diffs[0].previous_name == "first"
        assert diffs[1].variable_name == "second"


class TestAdditionsAndRemovals:
    def test_pure_append(self, base_layout):
        head = StorageLayout(list(base_layout) + [var("fee", "t_uint16", 2, 4, 0)])

        diffs = diff_layouts(base_layout, head)

        assert kinds(diffs) == [DiffKind.VARIABLE_ADDED]
        assert diffs[0].is_append
        assert diffs[0].base_variable is None

    def test_packed_into_free_bytes_of_last_slot_is_append(self):
        base = layout(var("owner", "t_address", 20, 0, 0))
        head = layout(var("owner", "t_address", 20, 0, 0), var("paused", "t_bool", 1, 0, 20))
        assert diff_layouts(base, head)[0].is_append

    def test_insertion_shifts_later_variables(self):
        base = layout(var("a", slot=0), var("b", slot=1))
        head = layout(var("a", slot=0), var("x", slot=1), var("b", slot=2))

        diffs = diff_layouts(base, head)

        assert kinds(diffs) == [DiffKind.VARIABLE_ADDED, DiffKind.SLOT_CHANGED]
        assert not diffs[0].is_append

    def test_removal_is_listed_after_head_diffs_in_base_order(self):
        base = layout(var("a", slot=0), var("b", slot=1), var("c", slot=2))
        head = layout(var("c", slot=2), var("d", slot=3))

        diffs = diff_layouts(base, head)

        assert kinds(diffs) == [DiffKind.VARIABLE_ADDED, DiffKind.VARIABLE_REMOVED, DiffKind.VARIABLE_REMOVED]
        assert [d.variable_name for d in diffs] == ["d", "a", "b"]
        assert diffs[1].head_variable is None
        assert not diffs[1].in_head

    @pytest.mark.parametrize("side", ["base", "head"])
    def test_against_empty_layout(self, base_layout, side):
        if side == "base":
            diffs = diff_layouts(StorageLayout(), base_layout)
            assert set(kinds(diffs)) == {DiffKind.VARIABLE_ADDED}
        else:
            diffs = diff_layouts(base_layout, StorageLayout())
            assert set(kinds(diffs)) == {DiffKind.VARIABLE_REMOVED}
        assert len(diffs) == len(base_layout)
