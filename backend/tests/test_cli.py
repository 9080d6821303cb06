# Overview: Pytest coverage for the flask CLI command groups.

import json

import pytest

from weighbridge.models import Role, Tenant, User, VehicleAxleConfig, WeighingSession
from weighbridge.services import weighing_service


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


def _offline_weighing(world):
    ws = weighing_service.open_session(
        world["tenant"].id, world["job"].id, weighbridge_id=world["weighbridge"].id
    )
    weighing_service.record_deck(ws.id, 1, 5000)
    ws, _ = weighing_service.finalize_session(ws.id)
    return ws


class TestSystemInit:

    def test_bootstraps_empty_database(self, runner, db_session):
        result = runner.invoke(args=["system", "init", "--tenant", "Depot", "--site-prefix", "DEP1"])

        assert result.exit_code == 0, result.output
        tenant = db_session.query(Tenant).one()
        assert tenant.name == "Depot"
        assert db_session.query(Role).filter_by(tenant_id=tenant.id).count() == 4
        assert {u.username for u in db_session.query(User)} == {"admin", "supervisor", "operator", "sync_agent"}

    def test_second_run_is_idempotent(self, runner, db_session):
        runner.invoke(args=["system", "init"])
        result = runner.invoke(args=["system", "init"])

        assert result.exit_code == 0, result.output
        assert "already exists" in result.output
        assert db_session.query(Tenant).count() == 1
        assert db_session.query(User).count() == 4


class TestAxleCommands:

    def test_set_then_show(self, runner, world, db_session):
        vehicle_id = world["vehicle"].id

        result = runner.invoke(args=[
            "axles", "set", str(vehicle_id), "--axle", "1:Steer:6000", "--axle", "2:Drive:10000",
        ])
        assert result.exit_code == 0, result.output
        assert db_session.query(VehicleAxleConfig).filter_by(vehicle_id=vehicle_id).count() == 2

        shown = runner.invoke(args=["axles", "show", str(vehicle_id)])
        assert shown.exit_code == 0
        assert "2/2 axles configured" in shown.output
        assert "Drive" in shown.output

    def test_show_incomplete_profile_warns(self, runner, world):
        result = runner.invoke(args=["axles", "show", str(world["vehicle"].id)])

        assert result.exit_code == 0
        assert "incomplete" in result.output

    def test_bad_axle_option(self, runner, world):
        result = runner.invoke(args=["axles", "set", str(world["vehicle"].id), "--axle", "1-Steer-6000"])

        assert result.exit_code != 0
        assert "NUMBER:TYPE:MAX_WEIGHT" in result.output

    def test_conflicting_profile_rejected(self, runner, world, db_session):
        result = runner.invoke(args=[
            "axles", "set", str(world["vehicle"].id), "--axle", "1:Steer:6000", "--axle", "1:Drive:10000",
        ])

        assert result.exit_code == 1
        assert "FAIL" in result.output
        assert db_session.query(VehicleAxleConfig).count() == 0

    def test_unknown_vehicle(self, runner, world):
        result = runner.invoke(args=["axles", "show", "99999"])

        assert result.exit_code == 1
        assert "not found" in result.output


class TestSyncCommands:

    def test_export_writes_batch_file(self, runner, world, offline_mode, tmp_path):
        ws = _offline_weighing(world)
        out = tmp_path / "batch.json"

        result = runner.invoke(args=[
            "sync", "export",
            "--tenant-id", str(world["tenant"].id),
            "--site-id", str(world["site"].id),
            "--batch-reference", "nightly",
            "--out", str(out),
        ])

        assert result.exit_code == 0, result.output
        payload = json.loads(out.read_text())
        assert payload["batch_reference"] == "nightly"
        assert [e["local_transaction_id"] for e in payload["entries"]] == [ws.local_transaction_id]

    def test_reconcile_reports_outcomes(self, runner, world, tmp_path):
        batch = {
            "site_id": world["site"].id,
            "batch_reference": "cli",
            "entries": [{
                "local_transaction_id": "SITE7-00007",
                "job_id": world["job"].id,
                "vehicle_id": world["vehicle"].id,
                "driver_id": world["driver"].id,
                "customer_id": world["customer"].id,
                "product_id": world["product"].id,
                "weighbridge_id": world["weighbridge"].id,
                "weighed_at": "2026-03-01T08:15:00Z",
                "decks": [{"deck_number": 1, "weight": 5000}],
            }],
        }
        batch_file = tmp_path / "batch.json"
        batch_file.write_text(json.dumps(batch))
        report_file = tmp_path / "report.json"

        result = runner.invoke(args=[
            "sync", "reconcile", str(batch_file),
            "--tenant-id", str(world["tenant"].id),
            "--out", str(report_file),
        ])

        assert result.exit_code == 0, result.output
        docket = f"D-{world['tenant'].id:03d}-000001"
        assert "APPLIED" in result.output
        assert docket in result.output
        assert "COMPLETED" in result.output
        report = json.loads(report_file.read_text())
        assert report["results"][0]["docket_number"] == docket

    def test_reconcile_rejects_invalid_json(self, runner, world, tmp_path):
        batch_file = tmp_path / "batch.json"
        batch_file.write_text("{not json")

        result = runner.invoke(args=["sync", "reconcile", str(batch_file), "--tenant-id", str(world["tenant"].id)])

        assert result.exit_code == 1
        assert "not valid JSON" in result.output

    def test_ack_applies_report(self, runner, world, offline_mode, tmp_path, db_session):
        ws = _offline_weighing(world)
        docket = f"D-{world['tenant'].id:03d}-000042"
        report_file = tmp_path / "report.json"
        report_file.write_text(json.dumps({
            "site_id": world["site"].id,
            "results": [
                {"local_transaction_id": ws.local_transaction_id, "outcome": "APPLIED",
                 "docket_number": docket, "reasons": []},
                {"local_transaction_id": "SITE7-99999", "outcome": "APPLIED",
                 "docket_number": f"D-{world['tenant'].id:03d}-000043", "reasons": []},
            ],
        }))

        result = runner.invoke(args=["sync", "ack", str(report_file), "--tenant-id", str(world["tenant"].id)])

        assert result.exit_code == 0, result.output
        assert "1 synced" in result.output
        assert "SITE7-99999" in result.output
        db_session.expire_all()
        refreshed = db_session.get(WeighingSession, ws.id)
        assert refreshed.docket_number == docket
        assert refreshed.sync_status == "SYNCED"
