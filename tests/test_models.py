"""Tests for data models."""

import pytest
from pydantic import ValidationError

from diskscope.models import (
    DeleteRequest,
    Identity,
    MetricSample,
    Node,
    NodeKind,
    ScanState,
)


class TestScanState:
    def test_terminal_states(self):
        assert ScanState.COMPLETE.is_terminal
        assert ScanState.ERROR.is_terminal
        assert ScanState.CANCELLED.is_terminal

    def test_non_terminal_states(self):
        assert not ScanState.PENDING.is_terminal
        assert not ScanState.SCANNING.is_terminal


class TestIdentity:
    def test_identities_are_hashable_and_comparable(self):
        a = Identity(device=1, inode=42)
        b = Identity(device=1, inode=42)
        assert a == b
        assert len({a, b}) == 1

    def test_different_device_is_different_identity(self):
        assert Identity(device=1, inode=42) != Identity(device=2, inode=42)


class TestNode:
    def test_counted_size_of_regular_file(self):
        node = Node(path="/r/a", name="a", kind=NodeKind.FILE, self_size=100)
        assert node.counted_size == 100
        assert not node.is_alias

    def test_alias_counts_nothing(self):
        node = Node(path="/r/b", name="b", kind=NodeKind.FILE, self_size=100, alias_of="/r/a")
        assert node.is_alias
        assert node.counted_size == 0

    def test_children_absent_until_materialized(self):
        node = Node(path="/r", name="r", kind=NodeKind.DIRECTORY)
        assert not node.is_materialized
        assert node.sorted_children() == []

    def test_sorted_children_descending_by_size(self):
        parent = Node(path="/r", name="r", kind=NodeKind.DIRECTORY)
        parent.children = {
            "small": Node(path="/r/small", name="small", kind=NodeKind.FILE, cumulative_size=1),
            "big": Node(path="/r/big", name="big", kind=NodeKind.FILE, cumulative_size=100),
            "mid": Node(path="/r/mid", name="mid", kind=NodeKind.FILE, cumulative_size=10),
        }
        assert [c.name for c in parent.sorted_children()] == ["big", "mid", "small"]

    def test_sorted_children_ties_broken_by_name(self):
        parent = Node(path="/r", name="r", kind=NodeKind.DIRECTORY)
        parent.children = {
            "b": Node(path="/r/b", name="b", kind=NodeKind.FILE, cumulative_size=5),
            "a": Node(path="/r/a", name="a", kind=NodeKind.FILE, cumulative_size=5),
        }
        assert [c.name for c in parent.sorted_children()] == ["a", "b"]


class TestMetricSample:
    def test_memory_percent(self):
        sample = MetricSample(memory_used_bytes=25, memory_total_bytes=100)
        assert sample.memory_percent == 25.0

    def test_memory_percent_without_total(self):
        assert MetricSample().memory_percent == 0.0

    def test_samples_are_immutable(self):
        sample = MetricSample(cpu_percent=5.0)
        with pytest.raises(ValidationError):
            sample.cpu_percent = 50.0


class TestDeleteRequest:
    def test_delete_request_is_immutable(self):
        request = DeleteRequest(path="/tmp/x", size_bytes=10)
        with pytest.raises(ValidationError):
            request.path = "/"
