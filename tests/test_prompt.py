"""
Tests for operator prompts
==========================
"""

import pytest

from gentoo_installer.errors import UsageError
from gentoo_installer.lib.block import DiskInfo
from gentoo_installer.prompt import confirm, confirm_typed, make_confirm, select_disk

from .conftest import scripted_input

DISKS = [DiskInfo("sda", "40G"), DiskInfo("nvme0n1", "500G")]


class TestConfirm:
    @pytest.mark.parametrize("reply, expected", [("y", True), ("YES", True), ("n", False), ("", False)])
    def test_replies(self, reply, expected):
        assert confirm("Continue?", input_fn=scripted_input([reply])) is expected

    def test_eof_takes_default(self):
        assert confirm("Continue?", default=True, input_fn=scripted_input([])) is True

    def test_typed_confirmation_needs_exact_word(self):
        assert confirm_typed("Are you sure?", input_fn=scripted_input(["yes"]))
        assert not confirm_typed("Are you sure?", input_fn=scripted_input(["y"]))

    def test_assume_yes(self):
        assert make_confirm(scripted_input([]), assume_yes=True)("Anything?")


class TestSelectDisk:
    def test_single_disk_defaults_to_yes(self):
        out = []
        assert select_disk(DISKS[:1], input_fn=scripted_input([""]), out=out.append) == "/dev/sda"
        assert "  [1] /dev/sda - 40G" in out

    def test_single_disk_declined(self):
        with pytest.raises(UsageError):
            select_disk(DISKS[:1], input_fn=scripted_input(["no"]), out=lambda s: None)

    def test_pick_second_disk(self):
        answers = scripted_input(["2", "yes"])

        assert select_disk(DISKS, input_fn=answers, out=lambda s: None) == "/dev/nvme0n1"
        assert "erase /dev/nvme0n1" in answers.prompts[1]

    @pytest.mark.parametrize("choice", ["0", "3", "abc"])
    def test_invalid_selection(self, choice):
        with pytest.raises(UsageError):
            select_disk(DISKS, input_fn=scripted_input([choice]), out=lambda s: None)

    def test_erase_not_confirmed(self):
        with pytest.raises(UsageError):
            select_disk(DISKS, input_fn=scripted_input(["1", "no"]), out=lambda s: None)

    def test_no_disks(self):
        with pytest.raises(UsageError):
            select_disk([], input_fn=scripted_input([]), out=lambda s: None)
