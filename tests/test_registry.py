"""Tests for SubscriptionRegistry."""

import uuid

import pytest

from propsync import (
    ConfigurationError,
    FormatterSelection,
    KeySelection,
    NotFoundError,
    RecordRef,
)


def ref(kind: str) -> RecordRef:
    return RecordRef(kind=kind, id=uuid.uuid4())


@pytest.fixture
def subject():
    return ref("company")


class TestListen:
    def test_listen_twice_keeps_one_row(self, registry, subject):
        reference = ref("contact")

        first = registry.listen(reference, subject, ["name"])
        second = registry.listen(reference, subject, ["name"])

        assert first.id == second.id
        assert len(registry.subscriptions_for(subject)) == 1

    def test_changed_selection_replaces_and_clears_snapshot(self, registry, subject):
        reference = ref("contact")
        sub = registry.listen(reference, subject, ["a"])
        registry.record_snapshot(sub.id, {"a": 1})

        updated = registry.listen(reference, subject, ["a", "b"])

        rows = registry.subscriptions_for(subject)
        assert len(rows) == 1
        assert rows[0].id == sub.id
        assert rows[0].selection == KeySelection(keys=("a", "b"))
        assert rows[0].snapshot is None
        assert rows[0].synced_at is None
        assert updated.snapshot is None

    def test_same_selection_keeps_snapshot(self, registry, subject):
        reference = ref("contact")
        sub = registry.listen(reference, subject, ["a"])
        registry.record_snapshot(sub.id, {"a": 1})

        again = registry.listen(reference, subject, KeySelection(keys=("a",)))

        assert again.snapshot == {"a": 1}

    def test_default_role_is_subject_kind(self, registry, subject):
        sub = registry.listen(ref("contact"), subject, ["a"])
        assert sub.role == "company"

    def test_roles_are_separate_subscriptions(self, registry, subject):
        reference = ref("contact")
        registry.listen(reference, subject, ["a"])
        registry.listen(reference, subject, ["b"], role="billing")

        assert [s.role for s in registry.subscriptions_for(subject)] == ["company", "billing"]

    def test_formatter_selection(self, registry, formatter_registry, subject):
        formatter_registry.register("card", lambda s: {})

        sub = registry.listen(ref("contact"), subject, "card")

        assert sub.selection == FormatterSelection(formatter="card")

    def test_unknown_formatter_is_rejected(self, registry, subject):
        with pytest.raises(ConfigurationError):
            registry.listen(
                ref("contact"), subject, {"kind": "formatter", "formatter": "nope"}
            )
        assert registry.subscriptions_for(subject) == []

    def test_selection_keys_are_deduplicated_in_order(self, registry, subject):
        sub = registry.listen(ref("contact"), subject, ["b", "a", "b"])
        assert sub.selection.keys == ("b", "a")


class TestReads:
    def test_creation_order(self, registry, subject):
        references = [ref("contact") for _ in range(4)]
        for reference in references:
            registry.listen(reference, subject, ["name"])
        registry.listen(ref("contact"), ref("company"), ["name"])

        subs = registry.subscriptions_for(subject)

        assert [s.reference for s in subs] == references
        assert [s.seq for s in subs] == sorted(s.seq for s in subs)

    def test_reading_never_creates(self, registry, subject):
        assert registry.subscriptions_for(subject) == []
        assert registry.listeners_of(ref("contact")) == []
        assert registry.subscriptions_for(subject) == []

    def test_listeners_of_reference(self, registry):
        reference = ref("contact")
        a, b = ref("company"), ref("company")
        registry.listen(reference, a, ["x"])
        registry.listen(reference, b, ["y"])

        assert [s.subject for s in registry.listeners_of(reference)] == [a, b]


class TestRecordSnapshot:
    def test_stores_snapshot_and_timestamp(self, registry, subject):
        sub = registry.listen(ref("contact"), subject, ["a"])

        recorded = registry.record_snapshot(sub.id, {"a": {"nested": [1]}})

        assert recorded.snapshot == {"a": {"nested": [1]}}
        assert recorded.synced_at is not None
        assert registry.get(sub.id).snapshot == {"a": {"nested": [1]}}

    def test_repeating_changes_only_timestamp(self, registry, subject):
        sub = registry.listen(ref("contact"), subject, ["a"])

        first = registry.record_snapshot(sub.id, {"a": 1})
        second = registry.record_snapshot(sub.id, {"a": 1})

        assert first.snapshot == second.snapshot
        assert second.selection == first.selection
        assert second.synced_at >= first.synced_at

    def test_unknown_subscription(self, registry):
        with pytest.raises(NotFoundError):
            registry.record_snapshot(uuid.uuid4(), {})


class TestForget:
    def test_forget_deletes_explicitly(self, registry, subject):
        reference = ref("contact")
        registry.listen(reference, subject, ["a"])

        assert registry.forget(reference, subject) is True
        assert registry.forget(reference, subject) is False
        assert registry.subscriptions_for(subject) == []
