"""Tests for WorkflowService — proves the facade orchestrates correctly."""

import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from achievements.directory.registry import AcademicDirectory, UserDirectory
from achievements.errors import ErrorKind
from achievements.history.reconstructor import HistoryMode
from achievements.models.directory import Actor, Role, UserAccount
from achievements.models.submission import Attachment, ContentDraft, AchievementCategory, SubmissionStatus
from achievements.persistence.content_store import ContentStore
from achievements.persistence.event_log import EventLog
from achievements.policy.resolver import PolicyResolver
from achievements.service import WorkflowService

from conftest import ADMIN, ANA, BUDI, DEWI, EKO, TickingClock, competition, publication


def _draft(service: WorkflowService, actor: Actor = ANA, owner_id: str = "STU-1", content=None) -> str:
    result = service.create_draft(actor, owner_id, content or competition())
    assert result.success, result.errors
    return result.data["record_id"]


def _submitted(service: WorkflowService) -> str:
    record_id = _draft(service)
    assert service.submit(record_id, ANA).success
    return record_id


class TestCreateDraft:
    def test_student_creates_own_draft(self, service: WorkflowService) -> None:
        result = service.create_draft(ANA, "STU-1", competition("international", 1))
        assert result.success
        assert result.data["status"] == "draft"
        assert result.data["points"] == 100
        assert result.data["sync_degraded"] is False

    def test_student_cannot_create_for_another(self, service: WorkflowService) -> None:
        result = service.create_draft(BUDI, "STU-1", publication())
        assert not result.success
        assert result.error_kind == ErrorKind.NOT_AUTHORIZED
        assert result.errors == ["Not authorized"]

    def test_advisor_cannot_create(self, service: WorkflowService) -> None:
        result = service.create_draft(DEWI, "STU-1", publication())
        assert result.error_kind == ErrorKind.NOT_AUTHORIZED

    def test_admin_creates_for_student(self, service: WorkflowService) -> None:
        assert service.create_draft(ADMIN, "STU-2", publication()).success

    def test_admin_unknown_student(self, service: WorkflowService) -> None:
        result = service.create_draft(ADMIN, "STU-404", publication())
        assert result.error_kind == ErrorKind.NOT_FOUND

    def test_blank_title_rejected(self, service: WorkflowService) -> None:
        result = service.create_draft(ANA, "STU-1", ContentDraft(AchievementCategory.OTHER, "  "))
        assert result.error_kind == ErrorKind.INVALID_INPUT


class TestDirectoryIdentity:
    def test_claimed_admin_role_ignored(self, service: WorkflowService) -> None:
        impostor = Actor("u-ana", Role.ADMIN)
        result = service.create_draft(impostor, "STU-2", publication())
        assert result.error_kind == ErrorKind.NOT_AUTHORIZED
        assert service.statistics(impostor).error_kind == ErrorKind.NOT_AUTHORIZED
        assert service.list_submissions(impostor).error_kind == ErrorKind.NOT_AUTHORIZED

    def test_deactivated_admin_denied(self, service: WorkflowService, users: UserDirectory) -> None:
        users.register_user(UserAccount("u-admin", "admin", "Admin", Role.ADMIN, is_active=False))
        result = service.create_draft(ADMIN, "STU-1", publication())
        assert result.error_kind == ErrorKind.NOT_AUTHORIZED
        assert service.student_report("STU-1", ADMIN).error_kind == ErrorKind.NOT_AUTHORIZED

    def test_unregistered_user_denied(self, service: WorkflowService) -> None:
        result = service.create_draft(Actor("u-nobody", Role.ADMIN), "STU-1", publication())
        assert result.error_kind == ErrorKind.NOT_AUTHORIZED


class TestDraftEditing:
    def test_update_draft_rescored(self, service: WorkflowService) -> None:
        record_id = _draft(service, content=competition("international", 1))
        result = service.update_draft(record_id, ANA, competition("regional", 1))
        assert result.success
        assert result.data["points"] == 10

    def test_update_after_submit_fails(self, service: WorkflowService) -> None:
        record_id = _submitted(service)
        result = service.update_draft(record_id, ANA, publication())
        assert result.error_kind == ErrorKind.NOT_DRAFT

    def test_update_by_non_owner_fails(self, service: WorkflowService) -> None:
        record_id = _draft(service)
        result = service.update_draft(record_id, BUDI, publication())
        assert result.error_kind == ErrorKind.NOT_AUTHORIZED

    def test_update_attachments(self, service: WorkflowService) -> None:
        record_id = _draft(service)
        attachments = [Attachment("cert.pdf", "https://files.example/cert.pdf", "application/pdf")]
        result = service.update_attachments(record_id, ANA, attachments)
        assert result.success
        detail = service.get_submission(record_id, ANA)
        assert detail.data["content"]["attachments"][0]["file_name"] == "cert.pdf"

    def test_update_attachments_after_submit_fails(self, service: WorkflowService) -> None:
        record_id = _submitted(service)
        result = service.update_attachments(record_id, ANA, [])
        assert result.error_kind == ErrorKind.NOT_DRAFT

    def test_unknown_record(self, service: WorkflowService) -> None:
        result = service.update_draft("ACH-404", ANA, publication())
        assert result.error_kind == ErrorKind.NOT_FOUND


class TestTransitions:
    def test_submit_from_draft(self, service: WorkflowService) -> None:
        record_id = _draft(service)
        result = service.submit(record_id, ANA)
        assert result.success
        assert result.data["status"] == "submitted"
        assert result.data["previous_status"] == "draft"
        assert result.data["submitted_at"] is not None

    def test_submit_twice_fails(self, service: WorkflowService) -> None:
        record_id = _submitted(service)
        result = service.submit(record_id, ANA)
        assert result.error_kind == ErrorKind.INVALID_TRANSITION

    def test_submit_by_non_owner_fails(self, service: WorkflowService) -> None:
        record_id = _draft(service)
        assert service.submit(record_id, BUDI).error_kind == ErrorKind.NOT_AUTHORIZED

    def test_verify_by_advisor(self, service: WorkflowService) -> None:
        record_id = _submitted(service)
        result = service.verify(record_id, DEWI)
        assert result.success
        assert result.data["decided_by"] == "u-dewi"

    def test_verify_by_other_advisor_fails(self, service: WorkflowService) -> None:
        record_id = _submitted(service)
        assert service.verify(record_id, EKO).error_kind == ErrorKind.NOT_AUTHORIZED

    def test_verify_draft_fails(self, service: WorkflowService) -> None:
        record_id = _draft(service)
        assert service.verify(record_id, DEWI).error_kind == ErrorKind.INVALID_TRANSITION

    def test_student_cannot_verify_own(self, service: WorkflowService) -> None:
        record_id = _submitted(service)
        assert service.verify(record_id, ANA).error_kind == ErrorKind.NOT_AUTHORIZED

    @pytest.mark.parametrize("note", ["", "   "])
    def test_reject_without_note(self, service: WorkflowService, note: str) -> None:
        record_id = _submitted(service)
        result = service.reject(record_id, DEWI, note)
        assert result.error_kind == ErrorKind.MISSING_NOTE
        detail = service.get_submission(record_id, ADMIN)
        assert detail.data["record"]["status"] == "submitted"

    def test_blank_note_reported_before_status(self, service: WorkflowService) -> None:
        record_id = _submitted(service)
        assert service.verify(record_id, DEWI).success

        assert service.reject(record_id, DEWI, "").error_kind == ErrorKind.MISSING_NOTE
        assert service.reject(record_id, DEWI, "late").error_kind == ErrorKind.INVALID_TRANSITION

    def test_reject_by_other_advisor_fails(self, service: WorkflowService) -> None:
        record_id = _submitted(service)
        result = service.reject(record_id, EKO, "no")
        assert result.error_kind == ErrorKind.NOT_AUTHORIZED

    def test_delete_draft(self, service: WorkflowService) -> None:
        record_id = _draft(service)
        result = service.delete_draft(record_id, ANA)
        assert result.success
        assert result.data["status"] == "deleted"

    def test_delete_submitted_is_not_draft(self, service: WorkflowService) -> None:
        record_id = _submitted(service)
        result = service.delete_draft(record_id, ANA)
        assert result.error_kind == ErrorKind.NOT_DRAFT

    def test_admin_may_do_everything(self, service: WorkflowService) -> None:
        record_id = _draft(service)
        assert service.submit(record_id, ADMIN).success
        assert service.reject(record_id, ADMIN, "redo").success
        assert service.submit(record_id, ADMIN).success
        assert service.verify(record_id, ADMIN).success


class TestEndToEnd:
    def test_reject_resubmit_verify(self, service: WorkflowService) -> None:
        record_id = _draft(service)

        first = service.submit(record_id, ANA)
        rejected = service.reject(record_id, DEWI, "incomplete")
        assert rejected.success
        assert rejected.data["rejection_note"] == "incomplete"

        second = service.submit(record_id, ANA)
        assert second.success
        assert second.data["previous_status"] == "rejected"
        assert second.data["rejection_note"] is None
        assert second.data["submitted_at"] > first.data["submitted_at"]

        verified = service.verify(record_id, DEWI)
        assert verified.success
        assert verified.data["decided_at"] > rejected.data["decided_at"]
        assert verified.data["rejection_note"] is None

        detail = service.get_submission(record_id, ANA)
        assert detail.data["record"]["status"] == "verified"
        assert detail.data["content"]["status"] == "verified"

    def test_snapshot_history_forgets_rejection(self, service: WorkflowService) -> None:
        record_id = _submitted(service)
        service.reject(record_id, DEWI, "incomplete")
        service.submit(record_id, ANA)
        service.verify(record_id, DEWI)

        history = service.get_history(record_id, DEWI)
        assert history.success
        assert [e["kind"] for e in history.data["events"]] == [
            "draft-created", "submitted", "verified",
        ]


class TestHistory:
    def test_draft_history(self, service: WorkflowService) -> None:
        record_id = _draft(service)
        history = service.get_history(record_id, ADMIN)
        assert [e["kind"] for e in history.data["events"]] == ["draft-created"]

    def test_student_may_not_read_history(self, service: WorkflowService) -> None:
        record_id = _draft(service)
        assert service.get_history(record_id, ANA).error_kind == ErrorKind.NOT_AUTHORIZED

    def test_unknown_record(self, service: WorkflowService) -> None:
        assert service.get_history("ACH-404", ADMIN).error_kind == ErrorKind.NOT_FOUND

    def test_log_mode_requires_log(self, service: WorkflowService) -> None:
        record_id = _draft(service)
        result = service.get_history(record_id, ADMIN, mode=HistoryMode.LOG)
        assert result.error_kind == ErrorKind.INVALID_INPUT

    def test_log_mode_keeps_rejection(
        self, resolver: PolicyResolver, users: UserDirectory, academics: AcademicDirectory,
    ) -> None:
        svc = WorkflowService(resolver, users, academics, event_log=EventLog(), clock=TickingClock())
        record_id = _submitted(svc)
        svc.reject(record_id, DEWI, "incomplete")
        svc.submit(record_id, ANA)
        svc.verify(record_id, DEWI)

        history = svc.get_history(record_id, DEWI, mode=HistoryMode.LOG)
        kinds = [e["kind"] for e in history.data["events"]]
        assert kinds == ["draft-created", "submitted", "rejected", "submitted", "verified"]
        assert history.data["events"][2]["rejection_note"] == "incomplete"
        assert history.data["mode"] == "log"


class TestListing:
    @pytest.fixture
    def populated(self, service: WorkflowService) -> WorkflowService:
        for i in range(3):
            _draft(service, ANA, "STU-1", publication(f"Ana paper {i}"))
        _draft(service, BUDI, "STU-2", publication("Budi paper"))
        deleted = _draft(service, ANA, "STU-1", publication("Scrapped"))
        service.delete_draft(deleted, ANA)
        return service

    def test_student_sees_own(self, populated: WorkflowService) -> None:
        result = populated.list_submissions(ANA)
        assert result.data["total"] == 3
        assert all(item["owner_id"] == "STU-1" for item in result.data["items"])

    def test_advisor_sees_advisees(self, populated: WorkflowService) -> None:
        result = populated.list_submissions(EKO)
        assert [item["title"] for item in result.data["items"]] == ["Budi paper"]

    def test_admin_sees_all_but_deleted(self, populated: WorkflowService) -> None:
        result = populated.list_submissions(ADMIN)
        assert result.data["total"] == 4
        assert "Scrapped" not in {item["title"] for item in result.data["items"]}

    def test_newest_first_with_pages(self, populated: WorkflowService) -> None:
        page1 = populated.list_submissions(ADMIN, page=1, limit=3)
        page2 = populated.list_submissions(ADMIN, page=2, limit=3)
        assert page1.data["total_pages"] == 2
        assert page1.data["items"][0]["title"] == "Budi paper"
        assert len(page2.data["items"]) == 1

    def test_limit_clamped(self, populated: WorkflowService) -> None:
        assert populated.list_submissions(ADMIN, limit=10_000).data["limit"] == 100

    def test_status_filter(self, populated: WorkflowService) -> None:
        items = populated.list_submissions(ANA).data["items"]
        populated.submit(items[0]["record_id"], ANA)
        result = populated.list_submissions(ANA, status=SubmissionStatus.SUBMITTED)
        assert [i["record_id"] for i in result.data["items"]] == [items[0]["record_id"]]

    def test_student_without_profile(self, populated: WorkflowService, users: UserDirectory) -> None:
        users.register_user(UserAccount("u-ghost", "ghost", "Ghost", Role.STUDENT))
        result = populated.list_submissions(Actor("u-ghost", Role.STUDENT))
        assert result.error_kind == ErrorKind.NOT_FOUND


class TestSubmissionDetail:
    def test_owner_and_advisor_can_view(self, service: WorkflowService) -> None:
        record_id = _draft(service)
        assert service.get_submission(record_id, ANA).success
        assert service.get_submission(record_id, DEWI).success

    def test_others_cannot_view(self, service: WorkflowService) -> None:
        record_id = _draft(service)
        assert service.get_submission(record_id, BUDI).error_kind == ErrorKind.NOT_AUTHORIZED
        assert service.get_submission(record_id, EKO).error_kind == ErrorKind.NOT_AUTHORIZED


class TestReports:
    def test_statistics_admin_only(self, service: WorkflowService) -> None:
        record_id = _submitted(service)
        service.verify(record_id, DEWI)
        _draft(service, BUDI, "STU-2", publication())

        stats = service.statistics(ADMIN)
        assert stats.data["total"] == 2
        assert stats.data["verified"] == 1
        assert stats.data["draft"] == 1
        assert stats.data["total_points"] == 140
        assert service.statistics(DEWI).error_kind == ErrorKind.NOT_AUTHORIZED

    def test_student_report(self, service: WorkflowService) -> None:
        record_id = _submitted(service)
        service.verify(record_id, DEWI)
        _draft(service, content=publication())

        report = service.student_report("STU-1", ANA)
        assert report.success
        assert report.data["total"] == 2
        assert report.data["verified_points"] == 100
        assert report.data["completion_rate"] == pytest.approx(50.0)

    def test_student_report_scope(self, service: WorkflowService) -> None:
        assert service.student_report("STU-2", ANA).error_kind == ErrorKind.NOT_AUTHORIZED
        assert service.student_report("STU-2", EKO).success
        assert service.student_report("STU-404", ADMIN).error_kind == ErrorKind.NOT_FOUND


class TestConcurrency:
    def test_simultaneous_submits_one_wins(self, service: WorkflowService) -> None:
        record_id = _draft(service)
        barrier = threading.Barrier(2)

        def _submit():
            barrier.wait()
            return service.submit(record_id, ANA)

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(lambda _: _submit(), range(2)))

        assert sum(r.success for r in results) == 1
        loser = next(r for r in results if not r.success)
        assert loser.error_kind == ErrorKind.INVALID_TRANSITION

    def test_verify_and_reject_race(self, service: WorkflowService) -> None:
        record_id = _submitted(service)
        barrier = threading.Barrier(2)

        def _decide(verify: bool):
            barrier.wait()
            if verify:
                return service.verify(record_id, DEWI)
            return service.reject(record_id, DEWI, "no")

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(_decide, [True, False]))

        assert sum(r.success for r in results) == 1
        final = service.get_submission(record_id, ADMIN).data["record"]["status"]
        assert final in ("verified", "rejected")


class BrokenMirror(ContentStore):
    broken = False

    def set_status(self, content_id, status, now) -> None:
        if self.broken:
            raise OSError("simulated disk failure")
        super().set_status(content_id, status, now)


class TestSyncDegraded:
    @pytest.fixture
    def mirror(self) -> BrokenMirror:
        return BrokenMirror()

    @pytest.fixture
    def degraded_service(
        self, resolver: PolicyResolver, users: UserDirectory,
        academics: AcademicDirectory, mirror: BrokenMirror,
    ) -> WorkflowService:
        return WorkflowService(resolver, users, academics, contents=mirror, clock=TickingClock())

    def test_success_with_warning(self, degraded_service: WorkflowService, mirror: BrokenMirror) -> None:
        record_id = _draft(degraded_service)
        mirror.broken = True
        result = degraded_service.submit(record_id, ANA)
        assert result.success
        assert result.data["sync_degraded"] is True
        assert "simulated disk failure" in result.data["warning"]
        assert degraded_service.status()["sync"]["pending"] == [record_id]

    def test_retry_then_reconcile(self, degraded_service: WorkflowService, mirror: BrokenMirror) -> None:
        record_id = _draft(degraded_service)
        mirror.broken = True
        degraded_service.submit(record_id, ANA)

        still = degraded_service.retry_pending_sync()
        assert still.data["remaining"] == [record_id]

        mirror.broken = False
        fixed = degraded_service.retry_pending_sync()
        assert fixed.data["repaired"] == [record_id]

        listed = degraded_service.list_submissions(ANA, status=SubmissionStatus.SUBMITTED)
        assert listed.data["total"] == 1
        assert degraded_service.reconcile().data["repaired"] == []


class TestPersistenceFailure:
    def test_record_commit_failure_reported(self, service: WorkflowService) -> None:
        record_id = _draft(service)

        def _boom(record, expected_status):
            raise OSError("simulated disk failure")

        service._records.commit = _boom  # type: ignore[method-assign]
        result = service.submit(record_id, ANA)
        assert not result.success
        assert result.error_kind == ErrorKind.PERSISTENCE_FAILURE
        assert "Persistence failure" in result.errors[0]


class TestDataDir:
    def test_state_survives_restart(
        self, tmp_path: Path, resolver: PolicyResolver,
        users: UserDirectory, academics: AcademicDirectory,
    ) -> None:
        svc = WorkflowService.with_data_dir(resolver, users, academics, tmp_path, clock=TickingClock())
        record_id = _submitted(svc)
        svc.reject(record_id, DEWI, "incomplete")

        reopened = WorkflowService.with_data_dir(resolver, users, academics, tmp_path)
        detail = reopened.get_submission(record_id, DEWI)
        assert detail.data["record"]["rejection_note"] == "incomplete"
        log_history = reopened.get_history(record_id, DEWI, mode=HistoryMode.LOG)
        assert [e["kind"] for e in log_history.data["events"]] == [
            "draft-created", "submitted", "rejected",
        ]

        # New ids continue after the persisted ones
        assert _draft(reopened) == "ACH-00000002"

    def test_failed_insert_then_restart_keeps_ids_unique(
        self, tmp_path: Path, resolver: PolicyResolver,
        users: UserDirectory, academics: AcademicDirectory,
    ) -> None:
        svc = WorkflowService.with_data_dir(resolver, users, academics, tmp_path, clock=TickingClock())
        first = _draft(svc)

        def _boom(record):
            raise OSError("simulated disk failure")

        svc._records.insert = _boom  # type: ignore[method-assign]
        failed = svc.create_draft(ANA, "STU-1", publication())
        assert failed.error_kind == ErrorKind.PERSISTENCE_FAILURE
        del svc._records.insert

        second = _draft(svc)
        assert [first, second] == ["ACH-00000001", "ACH-00000002"]

        reopened = WorkflowService.with_data_dir(resolver, users, academics, tmp_path)
        result = reopened.create_draft(ANA, "STU-1", publication())
        assert result.success, result.errors
        assert result.data["record_id"] == "ACH-00000003"


class TestStatus:
    def test_status_summary(self, service: WorkflowService) -> None:
        _draft(service)
        _submitted(service)
        status = service.status()
        assert status["policy_version"] == "1.0.0"
        assert status["records"]["total"] == 2
        assert status["records"]["by_status"] == {"draft": 1, "submitted": 1}
        assert status["contents"]["provisional"] == 0
        assert status["history_log"]["enabled"] is False
        assert status["sync"]["reconciler_running"] is False

    def test_reconciler_toggle(self, service: WorkflowService) -> None:
        service.start_reconciler(interval_seconds=60)
        try:
            assert service.status()["sync"]["reconciler_running"]
        finally:
            service.stop_reconciler()
        assert not service.status()["sync"]["reconciler_running"]
