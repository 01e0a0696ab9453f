"""Tests for SyncCoordinator: propagation of subject changes onto references."""

import uuid
from typing import ClassVar

import pytest
from sqlalchemy.exc import OperationalError

from propsync import (
    ChangeNotifier,
    ConfigurationError,
    NotFoundError,
    PersistenceError,
    Record,
    RecordRef,
    Settings,
    SyncFailed,
    SyncState,
    TenantContext,
    init_propsync,
)
from propsync.sync.tasks import InlineTaskRunner, SyncTask


class CrmCompany(Record):
    notify_subscribers: ClassVar[bool] = True

    name: str = ""
    phone: str | None = None


class CrmContact(Record):
    name: str = ""


class CycleLeft(Record):
    notify_subscribers: ClassVar[bool] = True

    name: str = ""


class CycleRight(Record):
    notify_subscribers: ClassVar[bool] = True

    name: str = ""


class ChainMiddle(Record):
    notify_subscribers: ClassVar[bool] = True


class ChainEnd(Record):
    pass


def reload(record):
    return type(record).hydrate(record.id)


class TestPropagation:
    def test_save_of_subject_updates_reference(self, registry):
        company = CrmCompany(name="Acme", phone="555").save()
        contact = CrmContact(name="Ann").save()
        registry.listen(contact, company, ["name", "phone"])

        company.phone = "556"
        company.save()

        assert reload(contact).properties.get("crm_company") == {"name": "Acme", "phone": "556"}

    def test_report_and_recorded_snapshot(self, registry, coordinator):
        company = CrmCompany(name="Acme").save()
        contact = CrmContact().save()
        sub = registry.listen(contact, company, ["name"])

        report = coordinator.on_subject_changed(company)

        assert report.state is SyncState.COMPLETE
        assert [r.state for r in report.results] == [SyncState.APPLIED]
        assert report.results[0].snapshot == {"name": "Acme"}
        assert registry.get(sub.id).snapshot == {"name": "Acme"}
        assert registry.get(sub.id).synced_at is not None

    def test_merge_leaves_other_keys_alone(self, registry, coordinator):
        company = CrmCompany(name="Acme", phone="555").save()
        contact = CrmContact()
        contact.properties.merge({"note": "vip", "crm_company": {"a": 1, "phone": "000"}})
        contact.save()
        registry.listen(contact, company, ["phone"])

        coordinator.on_subject_changed(company)

        props = reload(contact).properties
        assert props.get("note") == "vip"
        assert props.get("crm_company") == {"a": 1, "phone": "555"}

    def test_custom_role(self, registry, coordinator):
        company = CrmCompany(name="Acme").save()
        contact = CrmContact().save()
        registry.listen(contact, company, ["name"], role="employer")

        coordinator.on_subject_changed(company)

        assert reload(contact).properties.get("employer") == {"name": "Acme"}

    def test_formatter_selection(self, registry, coordinator, formatter_registry):
        formatter_registry.register(
            "company_card", lambda c: {"label": f"{c.name} ({c.phone})", "secret": "x"}
        )
        company = CrmCompany(name="Acme", phone="555").save()
        contact = CrmContact().save()
        registry.listen(contact, company, {"kind": "formatter", "formatter": "company_card", "except_keys": ["secret"]})

        coordinator.on_subject_changed(company)

        assert reload(contact).properties.get("crm_company") == {"label": "Acme (555)"}

    def test_types_without_subscribers_do_not_propagate(self, registry, coordinator):
        other = CrmContact(name="source").save()
        target = CrmContact().save()
        registry.listen(target, other, ["name"])

        other.name = "changed"
        other.save()

        assert coordinator.handle_saved(other) is None
        assert reload(target).properties.get("crm_contact") is None


class TestOrdering:
    def test_references_synced_in_subscription_order(self, store, registry, coordinator):
        company = CrmCompany(name="Acme").save()
        second = CrmContact(name="r2").save()  # created first, subscribed last
        first = CrmContact(name="r1").save()
        sub1 = registry.listen(first, company, ["name"])
        sub2 = registry.listen(second, company, ["name"])
        saved = []
        store.notifier.register("update", (CrmContact,), lambda r: saved.append(r.id))

        report = coordinator.on_subject_changed(company)

        assert saved == [first.id, second.id]
        assert [r.subscription_id for r in report.results] == [sub1.id, sub2.id]


class TestIsolation:
    def test_missing_reference_does_not_stop_others(self, store, registry, coordinator):
        company = CrmCompany(name="Acme").save()
        kept = CrmContact().save()
        gone = CrmContact().save()
        sub1 = registry.listen(kept, company, ["name"])
        sub2 = registry.listen(gone, company, ["name"])
        store.delete(gone)

        report = coordinator.on_subject_changed(company)

        assert [r.state for r in report.results] == [SyncState.APPLIED, SyncState.FAILED]
        assert isinstance(report.results[1].error, NotFoundError)
        assert reload(kept).properties.get("crm_company") == {"name": "Acme"}
        assert registry.get(sub1.id).snapshot == {"name": "Acme"}
        assert registry.get(sub2.id).snapshot is None

    def test_failed_save_leaves_reference_untouched(self, store, registry, coordinator, monkeypatch):
        company = CrmCompany(name="Acme").save()
        first = CrmContact().save()
        broken = CrmContact()
        broken.properties.merge({"crm_company": {"name": "old"}})
        broken.save()
        registry.listen(broken, company, ["name"])
        registry.listen(first, company, ["name"])

        real_save = store.save

        def failing_save(record):
            if record.id == broken.id:
                raise PersistenceError("constraint violated")
            return real_save(record)

        monkeypatch.setattr(store, "save", failing_save)
        report = coordinator.on_subject_changed(company)

        assert [r.state for r in report.results] == [SyncState.FAILED, SyncState.APPLIED]
        assert reload(broken).properties.get("crm_company") == {"name": "old"}
        assert reload(first).properties.get("crm_company") == {"name": "Acme"}

    def test_raising_formatter_does_not_stop_others(self, registry, coordinator, formatter_registry):
        @formatter_registry.register("company_initials")
        def company_initials(company):
            return {"initials": company.phone[0]}  # phone is None here

        company = CrmCompany(name="Acme").save()
        first = CrmContact().save()
        second = CrmContact().save()
        registry.listen(first, company, "company_initials")
        sub2 = registry.listen(second, company, ["name"])

        report = coordinator.on_subject_changed(company)

        assert [r.state for r in report.results] == [SyncState.FAILED, SyncState.APPLIED]
        assert isinstance(report.results[0].error, ConfigurationError)
        assert reload(first).properties.get("crm_company") is None
        assert reload(second).properties.get("crm_company") == {"name": "Acme"}
        assert registry.get(sub2.id).snapshot == {"name": "Acme"}

    def test_store_errors_are_reported_as_persistence_failures(self, registry, coordinator, monkeypatch):
        company = CrmCompany(name="Acme").save()
        first = CrmContact().save()
        second = CrmContact().save()
        sub1 = registry.listen(first, company, ["name"])
        registry.listen(second, company, ["name"])
        real_record = registry.record_snapshot

        def flaky(subscription_id, snapshot):
            if subscription_id == sub1.id:
                raise OperationalError("UPDATE subscriptions", {}, Exception("database is locked"))
            return real_record(subscription_id, snapshot)

        monkeypatch.setattr(registry, "record_snapshot", flaky)
        report = coordinator.on_subject_changed(company)

        assert [r.state for r in report.results] == [SyncState.FAILED, SyncState.APPLIED]
        assert isinstance(report.results[0].error, PersistenceError)
        assert reload(second).properties.get("crm_company") == {"name": "Acme"}

    def test_unexpected_errors_are_captured(self, store, registry, coordinator, monkeypatch):
        company = CrmCompany(name="Acme").save()
        first = CrmContact().save()
        second = CrmContact().save()
        registry.listen(first, company, ["name"])
        registry.listen(second, company, ["name"])
        real_save = store.save

        def exploding_save(record):
            if record.id == first.id:
                raise RuntimeError("handler blew up")
            return real_save(record)

        monkeypatch.setattr(store, "save", exploding_save)
        report = coordinator.on_subject_changed(company)

        assert [r.state for r in report.results] == [SyncState.FAILED, SyncState.APPLIED]
        assert isinstance(report.results[0].error, RuntimeError)


class TestTenants:
    def _pair(self, tenants, registry):
        with tenants.scope("acme"):
            company = CrmCompany(name="Acme").save()
        with tenants.scope("globex"):
            contact = CrmContact().save()
        sub = registry.listen(contact, company, ["name"])
        return company, contact, sub

    def test_cross_tenant_skipped_by_default(self, tenants, registry, coordinator):
        company, contact, sub = self._pair(tenants, registry)

        with tenants.scope("acme"):
            report = coordinator.on_subject_changed(company)

        assert [r.state for r in report.results] == [SyncState.SKIPPED]
        assert reload(contact).properties.get("crm_company") is None
        assert registry.get(sub.id).snapshot is None

    def test_cross_tenant_allowed_enters_reference_tenant(self, tenants, registry, coordinator):
        company, contact, _ = self._pair(tenants, registry)
        seen = []
        coordinator.store.notifier.register(
            "update", (CrmContact,), lambda r: seen.append(tenants.current)
        )

        with tenants.scope("acme"):
            report = coordinator.on_subject_changed(company, allow_cross_tenant=lambda s: True)
            assert tenants.current == "acme"

        assert [r.state for r in report.results] == [SyncState.APPLIED]
        assert seen == ["globex"]
        assert reload(contact).properties.get("crm_company") == {"name": "Acme"}

    def test_same_tenant_syncs(self, tenants, registry, coordinator):
        with tenants.scope("acme"):
            company = CrmCompany(name="Acme").save()
            contact = CrmContact().save()
            registry.listen(contact, company, ["name"])
            company.name = "Acme Inc"
            company.save()

        assert reload(contact).properties.get("crm_company") == {"name": "Acme Inc"}


class TestChains:
    def test_cycle_terminates(self, registry):
        left = CycleLeft(name="L").save()
        right = CycleRight(name="R").save()
        registry.listen(right, left, ["name"])
        registry.listen(left, right, ["name"])

        left.name = "L2"
        left.save()

        assert reload(right).properties.get("cycle_left") == {"name": "L2"}
        assert reload(left).properties.get("cycle_right") == {"name": "R"}

    def test_chain_propagates_through_props(self, registry):
        company = CrmCompany(name="Acme").save()
        middle = ChainMiddle().save()
        end = ChainEnd().save()
        registry.listen(middle, company, ["name"])
        registry.listen(end, middle, ["crm_company"])

        company.name = "Acme 2"
        company.save()

        assert reload(end).properties.get("chain_middle") == {"crm_company": {"name": "Acme 2"}}


class TestQueued:
    @pytest.fixture
    def queued(self, engine):
        runner = InlineTaskRunner()
        tenants = TenantContext()
        wiring = init_propsync(
            engine,
            Settings(sync_mode="queued"),
            notifier=ChangeNotifier(),
            tenants=tenants,
            runner=runner,
            configure_logs=False,
        )
        return wiring, runner, tenants

    def test_save_enqueues_identity_and_tenant(self, queued):
        wiring, runner, tenants = queued
        with tenants.scope("acme"):
            company = CrmCompany(name="Acme").save()
            contact = CrmContact().save()
            wiring.registry.listen(contact, company, ["name"])
            company.name = "Acme 2"
            company.save()

        assert runner.delivered[-1] == SyncTask(subject=company.ref, tenant="acme")
        assert reload(contact).properties.get("crm_company") == {"name": "Acme 2"}

    def test_queued_cycle_terminates(self, queued):
        wiring, runner, _ = queued
        left = CycleLeft(name="L").save()
        right = CycleRight(name="R").save()
        wiring.registry.listen(right, left, ["name"])
        wiring.registry.listen(left, right, ["name"])
        runner.delivered.clear()

        left.save()

        assert [t.subject for t in runner.delivered] == [left.ref, right.ref]

    def test_run_task_raises_for_persistence_failures(self, queued, monkeypatch):
        wiring, _, _ = queued
        company = CrmCompany(name="Acme").save()
        contact = CrmContact().save()
        wiring.registry.listen(contact, company, ["name"])

        def refuse(record):
            raise PersistenceError("read-only")

        monkeypatch.setattr(wiring.store, "save", refuse)

        with pytest.raises(SyncFailed) as excinfo:
            wiring.coordinator.run_task(SyncTask(subject=company.ref))
        assert excinfo.value.report.failed[0].reference == contact.ref

    def test_run_task_for_deleted_subject(self, queued):
        wiring, _, _ = queued
        task = SyncTask(subject=RecordRef(kind=CrmCompany.__kind__, id=uuid.uuid4()))

        assert wiring.coordinator.run_task(task) is None
