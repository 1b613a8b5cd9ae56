"""
Tests for the completion record
===============================
"""

import pytest

from gentoo_installer.errors import StateStoreError
from gentoo_installer.state_store import StateStore


@pytest.fixture
def store(tmp_path):
    return StateStore.in_dir(str(tmp_path / "state"))


class TestMembership:
    def test_missing_file_means_nothing_completed(self, store):
        assert store.completed() == set()
        assert not store.is_completed("01-partition")

    def test_mark_completed_creates_state_dir(self, store):
        store.mark_completed("01-partition")

        assert store.path.name == ".completed_phases"
        assert store.is_completed("01-partition")

    def test_mark_completed_is_idempotent(self, store):
        store.mark_completed("01-partition")
        store.mark_completed("01-partition")

        assert store.path.read_text().splitlines() == ["01-partition"]

    def test_duplicate_lines_count_once(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("02-bootstrap\n01-partition\n02-bootstrap\n\n")

        assert store.completed() == {"01-partition", "02-bootstrap"}

    def test_append_after_record_missing_final_newline(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("01-partition")

        store.mark_completed("02-bootstrap")

        assert store.completed() == {"01-partition", "02-bootstrap"}
        assert store.path.read_text() == "01-partition\n02-bootstrap\n"

    def test_unreadable_record_raises_state_error(self, store):
        store.path.mkdir(parents=True)

        with pytest.raises(StateStoreError) as exc:
            store.completed()
        assert exc.value.exit_code == 4


class TestReset:
    def test_declined_reset_keeps_record(self, store):
        store.mark_completed("01-partition")

        assert store.reset(lambda question: False) is False
        assert store.is_completed("01-partition")

    def test_confirmed_reset_removes_record(self, store):
        store.mark_completed("01-partition")

        assert store.reset(lambda question: True) is True
        assert not store.path.exists()
        assert store.completed() == set()

    def test_reset_without_record_is_fine(self, store):
        assert store.reset(lambda question: True) is True
