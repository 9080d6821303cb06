# Overview: Pytest coverage for offline sync export, reconciliation and write-back.

"""
Offline sync reconciler tests.

Offline sites and the authoritative store run on separate databases. Here
both roles share the test database, so reconcile tests post hand-built
payloads (as the authoritative side would receive them) while write-back
tests finalize local offline weighings and feed them hand-built reports.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from weighbridge.errors import NotFound, NumberingUnavailable, ReconcileConflict, ValidationError
from weighbridge.extensions import db
from weighbridge.models import DocketSequence, SyncBatch, SyncBatchItem, WeighingSession
from weighbridge.services import docket_service, sync_service, weighing_service
from weighbridge.services.audit_service import list_audit_events

from conftest import configure_axles


def _entry(world, local_id="SITE7-00042", weighed_at="2026-03-01T08:15:00Z", decks=((1, 5800), (2, 10500)), **extra):
    entry = {
        "local_transaction_id": local_id,
        "job_id": world["job"].id,
        "vehicle_id": world["vehicle"].id,
        "driver_id": world["driver"].id,
        "customer_id": world["customer"].id,
        "product_id": world["product"].id,
        "weighbridge_id": world["weighbridge"].id,
        "weighed_at": weighed_at,
        "provisional_docket_number": f"LOCAL-SITE7-{local_id[-5:].zfill(6)}",
        "decks": [{"deck_number": n, "weight": w} for n, w in decks],
    }
    entry.update(extra)
    return entry


def _batch(world, *entries, reference="batch-1"):
    return {
        "site_id": world["site"].id,
        "batch_reference": reference,
        "entries": list(entries),
    }


def _docket_count(tenant_id):
    return (
        db.session.query(WeighingSession)
        .filter(WeighingSession.tenant_id == tenant_id, WeighingSession.docket_number.isnot(None))
        .count()
    )


# =============================================================================
# PAYLOAD VALIDATION
# =============================================================================


class TestParseSyncBatch:

    def test_parses_entries(self, world):
        site_id, reference, entries = sync_service.parse_sync_batch(_batch(world, _entry(world)))

        assert site_id == world["site"].id
        assert reference == "batch-1"
        assert entries[0].local_transaction_id == "SITE7-00042"
        assert [d.weight for d in entries[0].decks] == [Decimal("5800.00"), Decimal("10500.00")]

    @pytest.mark.parametrize("mutate", [
        lambda e: e.pop("local_transaction_id"),
        lambda e: e.update(local_transaction_id="   "),
        lambda e: e.update(weighed_at="yesterday"),
        lambda e: e.update(vehicle_id="abc"),
        lambda e: e.update(manual_override="yes"),
        lambda e: e.update(decks=[{"deck_number": 1, "weight": -5}]),
        lambda e: e.update(decks=[{"deck_number": 1, "weight": 5}, {"deck_number": 1, "weight": 6}]),
    ])
    def test_malformed_entry_rejects_whole_batch(self, world, db_session, mutate):
        good = _entry(world, local_id="SITE7-00001")
        bad = _entry(world, local_id="SITE7-00002")
        mutate(bad)

        with pytest.raises(ValidationError):
            sync_service.reconcile(world["tenant"].id, _batch(world, good, bad))

        assert db_session.query(SyncBatch).count() == 0
        assert _docket_count(world["tenant"].id) == 0

    def test_mixed_offset_and_naive_timestamps_sort_on_utc(self, world):
        # 09:30 at +10:00 is 23:30 UTC the day before
        aware = _entry(world, local_id="SITE7-00001",
                       weighed_at=datetime(2026, 3, 2, 9, 30, tzinfo=timezone(timedelta(hours=10))))
        naive = _entry(world, local_id="SITE7-00002", weighed_at=datetime(2026, 3, 2, 0, 15))

        _, _, entries = sync_service.parse_sync_batch(_batch(world, naive, aware))
        ordered = sorted(entries, key=lambda e: (e.weighed_at, e.local_transaction_id))

        assert [e.local_transaction_id for e in ordered] == ["SITE7-00001", "SITE7-00002"]
        assert entries[1].weighed_at == datetime(2026, 3, 1, 23, 30)
        assert entries[1].weighed_at.tzinfo is None

    def test_reconcile_accepts_mixed_timestamps(self, world):
        aware = _entry(world, local_id="SITE7-00001",
                       weighed_at=datetime(2026, 3, 2, 9, 30, tzinfo=timezone(timedelta(hours=10))))
        naive = _entry(world, local_id="SITE7-00002", weighed_at=datetime(2026, 3, 2, 0, 15))

        report = sync_service.reconcile(world["tenant"].id, _batch(world, naive, aware))

        assert [r.local_transaction_id for r in report.results] == ["SITE7-00001", "SITE7-00002"]
        assert all(r.outcome == sync_service.APPLIED for r in report.results)

    def test_entries_must_be_list(self, world):
        with pytest.raises(ValidationError):
            sync_service.parse_sync_batch({"site_id": world["site"].id, "entries": {}})


# =============================================================================
# RECONCILE (AUTHORITATIVE SIDE)
# =============================================================================


class TestReconcile:

    def test_applies_with_authoritative_docket(self, configured_vehicle, world, db_session):
        tenant_id = world["tenant"].id

        report = sync_service.reconcile(tenant_id, _batch(world, _entry(world)))

        result = report.for_local_id("SITE7-00042")
        assert result.outcome == sync_service.APPLIED
        assert result.docket_number == f"D-{tenant_id:03d}-000001"
        assert report.status == "COMPLETED"

        ws = db_session.get(WeighingSession, result.session_id)
        assert ws.status == "FINALIZED"
        assert ws.site_id == world["site"].id
        assert ws.sync_status == "SYNCED"
        assert ws.is_offline_origin is True
        assert ws.provisional_docket_number == "LOCAL-SITE7-000042"
        assert ws.gross_weight == Decimal("16300.00")
        assert ws.is_overloaded is True
        assert ws.overload_record.overload_amount == Decimal("500.00")

    def test_same_local_id_twice_is_already_applied(self, configured_vehicle, world, db_session):
        tenant_id = world["tenant"].id
        payload = _batch(world, _entry(world))
        before = _docket_count(tenant_id)

        first = sync_service.reconcile(tenant_id, payload)
        second = sync_service.reconcile(tenant_id, payload)

        assert first.results[0].outcome == sync_service.APPLIED
        assert second.results[0].outcome == sync_service.ALREADY_APPLIED
        assert second.results[0].docket_number == first.results[0].docket_number
        assert second.results[0].session_id == first.results[0].session_id
        assert _docket_count(tenant_id) == before + 1
        assert db_session.query(DocketSequence).filter_by(series="DOCKET").one().next_number == 2

    def test_entries_replay_in_weighing_time_order(self, world):
        later = _entry(world, local_id="SITE7-00002", weighed_at="2026-03-01T10:00:00Z")
        earlier = _entry(world, local_id="SITE7-00001", weighed_at="2026-03-01T09:00:00Z")

        report = sync_service.reconcile(world["tenant"].id, _batch(world, later, earlier))

        assert [r.local_transaction_id for r in report.results] == ["SITE7-00001", "SITE7-00002"]
        assert report.results[0].docket_number.endswith("-000001")
        assert report.results[1].docket_number.endswith("-000002")

    def test_deactivated_driver_is_conflict(self, world, db_session):
        entry = _entry(world, local_id="SITE7-00003")
        world["driver"].is_active = False
        db_session.commit()

        report = sync_service.reconcile(world["tenant"].id, _batch(world, entry))

        result = report.results[0]
        assert result.outcome == sync_service.CONFLICT
        assert any("deactivated" in reason for reason in result.reasons)
        assert result.docket_number is None
        assert report.status == "PARTIAL"
        assert _docket_count(world["tenant"].id) == 0

    def test_conflict_does_not_block_other_entries(self, world, other_world):
        foreign = _entry(world, local_id="SITE7-00010", vehicle_id=other_world["vehicle"].id)
        fine = _entry(world, local_id="SITE7-00011", weighed_at="2026-03-01T09:00:00Z")

        report = sync_service.reconcile(world["tenant"].id, _batch(world, foreign, fine))

        outcomes = {r.local_transaction_id: r.outcome for r in report.results}
        assert outcomes == {"SITE7-00010": "CONFLICT", "SITE7-00011": "APPLIED"}
        conflict = report.for_local_id("SITE7-00010")
        assert f"vehicle {other_world['vehicle'].id} not found" in conflict.reasons

    @pytest.mark.parametrize("kind", ["job", "vehicle", "driver", "customer", "product"])
    @pytest.mark.parametrize("problem", ["missing", "deactivated"])
    def test_bad_reference_is_conflict(self, world, db_session, kind, problem):
        tenant_id = world["tenant"].id
        before = _docket_count(tenant_id)
        if problem == "missing":
            entry = _entry(world, **{f"{kind}_id": 999999})
        else:
            entry = _entry(world)
            if kind == "job":
                world["job"].status = "CANCELLED"
            else:
                world[kind].is_active = False
            db_session.commit()

        report = sync_service.reconcile(tenant_id, _batch(world, entry))

        result = report.results[0]
        assert result.outcome == sync_service.CONFLICT
        assert result.reasons
        assert result.docket_number is None
        assert _docket_count(tenant_id) == before

    def test_inactive_job_is_conflict(self, world, db_session):
        world["job"].status = "CANCELLED"
        db_session.commit()

        report = sync_service.reconcile(world["tenant"].id, _batch(world, _entry(world)))

        assert report.results[0].outcome == sync_service.CONFLICT

    def test_entry_without_decks_needs_manual_override(self, world):
        bare = _entry(world, local_id="SITE7-00020", decks=())
        manual = _entry(world, local_id="SITE7-00021", decks=(), manual_override=True)

        report = sync_service.reconcile(world["tenant"].id, _batch(world, bare, manual))

        assert report.for_local_id("SITE7-00020").outcome == sync_service.CONFLICT
        assert report.for_local_id("SITE7-00020").reasons == ("no deck weights recorded",)
        assert report.for_local_id("SITE7-00021").outcome == sync_service.APPLIED

    def test_numbering_failure_is_failed_and_retryable(self, world, monkeypatch):
        tenant_id = world["tenant"].id
        payload = _batch(world, _entry(world))

        def _unavailable(tenant_id):
            raise NumberingUnavailable("authority unreachable")

        with monkeypatch.context() as m:
            m.setattr(docket_service, "issue_docket_number", _unavailable)
            report = sync_service.reconcile(tenant_id, payload)

        assert report.results[0].outcome == sync_service.FAILED
        assert report.results[0].reasons == ("authority unreachable",)
        assert _docket_count(tenant_id) == 0

        retry = sync_service.reconcile(tenant_id, payload)
        assert retry.results[0].outcome == sync_service.APPLIED

    def test_re_evaluates_against_authoritative_profile(self, world):
        # Offline site thought the truck was legal; the central profile says otherwise
        configure_axles(world["vehicle"].id, ((1, "Steer", 5000), (2, "Drive", 10000)))
        entry = _entry(world, decks=((1, 5800), (2, 9000)))

        report = sync_service.reconcile(world["tenant"].id, _batch(world, entry))

        ws = db.session.get(WeighingSession, report.results[0].session_id)
        assert ws.is_overloaded is True
        assert ws.overload_record.overload_amount == Decimal("800.00")

    def test_unknown_site(self, world, other_world):
        payload = _batch(world, _entry(world))
        payload["site_id"] = other_world["site"].id

        with pytest.raises(NotFound):
            sync_service.reconcile(world["tenant"].id, payload)

    def test_batch_and_items_are_persisted(self, world, db_session):
        conflicting = _entry(world, local_id="SITE7-00031", job_id=999999)
        applied = _entry(world, local_id="SITE7-00030")

        report = sync_service.reconcile(world["tenant"].id, _batch(world, conflicting, applied))

        batch = sync_service.get_sync_batch(report.batch_id, world["tenant"].id)
        assert batch.status == "PARTIAL"
        assert batch.entry_count == 2
        assert batch.applied_count == 1
        assert batch.conflict_count == 1
        assert batch.completed_at is not None

        items = db_session.query(SyncBatchItem).filter_by(batch_id=batch.id).order_by(SyncBatchItem.position).all()
        assert [(i.local_transaction_id, i.outcome) for i in items] == [
            ("SITE7-00030", "APPLIED"),
            ("SITE7-00031", "CONFLICT"),
        ]
        assert items[1].reasons == ["job 999999 not found"]

        assert [b.id for b in sync_service.list_sync_batches(world["tenant"].id)] == [batch.id]

        events = list_audit_events(world["tenant"].id, "sync_batch", batch.id)
        assert events[0].event_type == "SYNC_BATCH_RECONCILED"
        assert events[0].payload["CONFLICT"] == 1

    def test_batch_is_tenant_scoped(self, world, other_world):
        report = sync_service.reconcile(world["tenant"].id, _batch(world))

        with pytest.raises(NotFound):
            sync_service.get_sync_batch(report.batch_id, other_world["tenant"].id)


# =============================================================================
# OFFLINE SIDE: EXPORT AND WRITE-BACK
# =============================================================================


def _offline_weighing(world, weights=(5000,)):
    ws = weighing_service.open_session(
        world["tenant"].id, world["job"].id, weighbridge_id=world["weighbridge"].id
    )
    for deck_number, weight in enumerate(weights, start=1):
        weighing_service.record_deck(ws.id, deck_number, weight)
    ws, _ = weighing_service.finalize_session(ws.id)
    return ws


class TestOfflineExport:

    def test_exports_finalized_pending_weighings(self, world, offline_mode):
        done = _offline_weighing(world, (5000, 9000))
        weighing_service.open_session(
            world["tenant"].id, world["job"].id, weighbridge_id=world["weighbridge"].id
        )

        payload = sync_service.build_sync_batch(world["tenant"].id, world["site"].id, "nightly")

        assert payload["site_id"] == world["site"].id
        assert payload["batch_reference"] == "nightly"
        assert len(payload["entries"]) == 1
        exported = payload["entries"][0]
        assert exported["local_transaction_id"] == done.local_transaction_id
        assert exported["provisional_docket_number"] == "LOCAL-SITE7-000001"
        assert exported["decks"] == [
            {"deck_number": 1, "weight": 5000.0},
            {"deck_number": 2, "weight": 9000.0},
        ]

        # The export is a valid sync batch
        site_id, _, entries = sync_service.parse_sync_batch(payload)
        assert entries[0].local_transaction_id == done.local_transaction_id

    def test_online_weighings_are_not_exported(self, world):
        _offline_weighing(world)

        payload = sync_service.build_sync_batch(world["tenant"].id, world["site"].id)

        assert payload["entries"] == []


class TestApplyReconcileReport:

    def test_write_back_swaps_in_authoritative_dockets(self, world, offline_mode, db_session):
        applied = _offline_weighing(world)
        conflicted = _offline_weighing(world)
        failed = _offline_weighing(world)
        tenant_id = world["tenant"].id

        report = {
            "site_id": world["site"].id,
            "results": [
                {"local_transaction_id": applied.local_transaction_id, "outcome": "APPLIED",
                 "docket_number": f"D-{tenant_id:03d}-000077", "reasons": []},
                {"local_transaction_id": conflicted.local_transaction_id, "outcome": "CONFLICT",
                 "docket_number": None, "reasons": ["vehicle 9 is deactivated"]},
                {"local_transaction_id": failed.local_transaction_id, "outcome": "FAILED",
                 "docket_number": None, "reasons": ["authority unreachable"]},
                {"local_transaction_id": "SITE7-99999", "outcome": "APPLIED",
                 "docket_number": "D-001-000078", "reasons": []},
            ],
        }

        summary = sync_service.apply_reconcile_report(tenant_id, report)

        assert summary == {
            "synced": 1, "conflicted": 1, "pending": 1, "unknown": ["SITE7-99999"], "mismatched": [],
        }

        db_session.expire_all()
        applied = db_session.get(WeighingSession, applied.id)
        assert applied.docket_number == f"D-{tenant_id:03d}-000077"
        assert applied.provisional_docket_number == "LOCAL-SITE7-000001"
        assert applied.sync_status == "SYNCED"
        assert applied.synced_at is not None

        conflicted = db_session.get(WeighingSession, conflicted.id)
        assert conflicted.sync_status == "CONFLICT"
        assert conflicted.sync_message == "vehicle 9 is deactivated"
        assert docket_service.is_provisional(conflicted.docket_number)

        failed = db_session.get(WeighingSession, failed.id)
        assert failed.sync_status == "PENDING"

        # Synced weighings drop out of the next export; the rest are re-sent
        exported = sync_service.build_sync_batch(tenant_id, world["site"].id)["entries"]
        assert {e["local_transaction_id"] for e in exported} == {
            conflicted.local_transaction_id,
            failed.local_transaction_id,
        }

    def test_accepts_report_object(self, world, offline_mode, db_session):
        ws = _offline_weighing(world)
        report = sync_service.ReconcileReport(
            site_id=world["site"].id,
            results=[
                sync_service.ReconcileEntryResult(
                    ws.local_transaction_id, sync_service.ALREADY_APPLIED, docket_number="D-001-000005"
                )
            ],
        )

        summary = sync_service.apply_reconcile_report(world["tenant"].id, report)

        assert summary["synced"] == 1
        db_session.expire_all()
        assert db_session.get(WeighingSession, ws.id).docket_number == "D-001-000005"

    def test_authoritative_docket_is_never_overwritten(self, world, offline_mode, db_session):
        ws = _offline_weighing(world)
        tenant_id = world["tenant"].id
        first = f"D-{tenant_id:03d}-000010"

        def _ack(docket_number):
            return sync_service.apply_reconcile_report(tenant_id, {
                "site_id": world["site"].id,
                "results": [{"local_transaction_id": ws.local_transaction_id, "outcome": "APPLIED",
                             "docket_number": docket_number}],
            })

        assert _ack(first)["synced"] == 1
        summary = _ack(f"D-{tenant_id:03d}-999999")

        assert summary["synced"] == 0
        assert summary["mismatched"] == [ws.local_transaction_id]
        db_session.expire_all()
        assert db_session.get(WeighingSession, ws.id).docket_number == first

        # Repeating the same acknowledgement is harmless
        assert _ack(first)["synced"] == 1

    def test_reconciled_weighing_keeps_its_docket(self, world, db_session):
        tenant_id = world["tenant"].id
        report = sync_service.reconcile(tenant_id, _batch(world, _entry(world)))
        issued = report.results[0].docket_number

        summary = sync_service.apply_reconcile_report(tenant_id, {
            "site_id": world["site"].id,
            "results": [{"local_transaction_id": "SITE7-00042", "outcome": "APPLIED",
                         "docket_number": f"D-{tenant_id:03d}-999999"}],
        })

        assert summary["mismatched"] == ["SITE7-00042"]
        db_session.expire_all()
        assert db_session.get(WeighingSession, report.results[0].session_id).docket_number == issued

    def test_docket_already_in_use_raises_conflict(self, world, offline_mode, db_session):
        first = _offline_weighing(world)
        second = _offline_weighing(world)
        tenant_id = world["tenant"].id
        docket = f"D-{tenant_id:03d}-000050"

        sync_service.apply_reconcile_report(tenant_id, {
            "site_id": world["site"].id,
            "results": [{"local_transaction_id": first.local_transaction_id, "outcome": "APPLIED",
                         "docket_number": docket}],
        })

        with pytest.raises(ReconcileConflict) as exc_info:
            sync_service.apply_reconcile_report(tenant_id, {
                "site_id": world["site"].id,
                "results": [{"local_transaction_id": second.local_transaction_id, "outcome": "APPLIED",
                             "docket_number": docket}],
            })

        assert exc_info.value.http_status == 409
        db_session.expire_all()
        second = db_session.get(WeighingSession, second.id)
        assert second.docket_number == "LOCAL-SITE7-000002"
        assert second.sync_status == "PENDING"
        assert db_session.get(WeighingSession, first.id).docket_number == docket

    def test_collision_within_one_report_writes_nothing(self, world, offline_mode, db_session):
        first = _offline_weighing(world)
        second = _offline_weighing(world)
        tenant_id = world["tenant"].id
        docket = f"D-{tenant_id:03d}-000060"

        with pytest.raises(ReconcileConflict):
            sync_service.apply_reconcile_report(tenant_id, {
                "site_id": world["site"].id,
                "results": [
                    {"local_transaction_id": first.local_transaction_id, "outcome": "APPLIED",
                     "docket_number": docket},
                    {"local_transaction_id": second.local_transaction_id, "outcome": "APPLIED",
                     "docket_number": docket},
                ],
            })

        db_session.expire_all()
        for ws_id in (first.id, second.id):
            ws = db_session.get(WeighingSession, ws_id)
            assert docket_service.is_provisional(ws.docket_number)
            assert ws.sync_status == "PENDING"

    @pytest.mark.parametrize("report", [
        {"site_id": 1, "results": [{"local_transaction_id": "X-1", "outcome": "APPLIED"}]},
        {"site_id": 1, "results": [{"local_transaction_id": "X-1", "outcome": "APPLIED", "docket_number": "  "}]},
        {"site_id": 1, "results": [{"local_transaction_id": "X-1", "outcome": "ALREADY_APPLIED",
                                    "docket_number": "LOCAL-SITE7-000001"}]},
    ])
    def test_applied_needs_authoritative_docket(self, world, report):
        with pytest.raises(ValidationError):
            sync_service.apply_reconcile_report(world["tenant"].id, report)

    @pytest.mark.parametrize("report", [
        None,
        {"site_id": 1},
        {"site_id": 1, "results": [{"local_transaction_id": "X-1", "outcome": "MAYBE"}]},
        {"site_id": 1, "results": ["X-1"]},
    ])
    def test_malformed_report(self, world, report):
        with pytest.raises(ValidationError):
            sync_service.apply_reconcile_report(world["tenant"].id, report)
