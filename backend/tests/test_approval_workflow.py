"""
Tests for the price-override approval workflow.

- approve: stage move + note + proposal email, exactly once per opportunity
- reject: note + rejection notice to the reviewer, owner CC'd only when known
- replayed / concurrent clicks get ALREADY_DECIDED with no side effects
- unknown ids still update GHL
"""
import asyncio

import pytest
from unittest.mock import patch

from models import ApprovalOutcome
from services import opportunity_store
from services.approval_workflow import MISSING_PDF_OR_CONTACT, ApprovalWorkflow
from services.ghl_errors import CRMError, ErrorKind
from services.intake_orchestrator import sanitize_opportunity_data
from conftest import override_products, sample_submission

STAGE_ID = "stage-proposal-sent"
REVIEWER_CONTACT = "reviewer-contact"
PDF_URL = "https://files.example.com/proposal.pdf"


def workflow(ghl):
    return ApprovalWorkflow(ghl, stage_id=STAGE_ID, reviewer_contact_id=REVIEWER_CONTACT, reviewer_name="Jim")


async def seed_pending(fake_db, pdf_url=PDF_URL, contact_id="contact-1"):
    data = sanitize_opportunity_data(sample_submission(products=override_products()))
    record = opportunity_store.build_mirror_record(data, contact_id, "opp-1", "loc-1")
    record["proposal"]["pdf_url"] = pdf_url
    await fake_db.opportunities.insert_one(record)


class TestApprove:
    @pytest.mark.asyncio
    async def test_approve_sends_proposal(self, fake_db, fake_ghl):
        with patch("services.opportunity_store.database.get_db", return_value=fake_db):
            await seed_pending(fake_db)
            result = await workflow(fake_ghl).approve("opp-1")

        assert result.outcome == ApprovalOutcome.APPROVED
        assert result.current_status == "approved"
        assert result.proposal.ok is True
        fake_ghl.update_opportunity.assert_awaited_once_with("opp-1", {"pipelineStageId": STAGE_ID})
        assert "approved by Jim" in fake_ghl.add_opportunity_note.await_args.args[1]

        payload = fake_ghl.send_message.await_args.args[0]
        assert payload["contactId"] == "contact-1"
        assert payload["cc"] == ["owner@nuesynergy.com"]

        stored = fake_db.opportunities.docs[0]
        assert stored["approval"]["status"] == "approved"
        assert stored["proposal"]["email_status"] == "sent"
        assert stored["proposal"]["attempt_count"] == 1

        entry = fake_db.audit_logs.docs[-1]
        assert entry["action"] == "UPDATE"
        assert entry["details"]["approval"] == "approved"
        assert entry["actor"]["role"] == "Approver"

    @pytest.mark.asyncio
    async def test_approve_without_pdf_marks_failed(self, fake_db, fake_ghl):
        with patch("services.opportunity_store.database.get_db", return_value=fake_db):
            await seed_pending(fake_db, pdf_url=None)
            result = await workflow(fake_ghl).approve("opp-1")

        assert result.outcome == ApprovalOutcome.APPROVED
        assert result.proposal is None
        fake_ghl.send_message.assert_not_awaited()
        stored = fake_db.opportunities.docs[0]
        assert stored["approval"]["status"] == "approved"
        assert stored["proposal"]["email_status"] == "failed"
        assert stored["proposal"]["last_error"] == MISSING_PDF_OR_CONTACT

    @pytest.mark.asyncio
    async def test_second_approve_is_already_decided(self, fake_db, fake_ghl):
        with patch("services.opportunity_store.database.get_db", return_value=fake_db):
            await seed_pending(fake_db)
            wf = workflow(fake_ghl)
            await wf.approve("opp-1")
            second = await wf.approve("opp-1")

        assert second.outcome == ApprovalOutcome.ALREADY_DECIDED
        assert second.current_status == "approved"
        assert fake_ghl.send_message.await_count == 1
        assert fake_ghl.update_opportunity.await_count == 1
        assert fake_ghl.add_opportunity_note.await_count == 1
        assert fake_db.opportunities.docs[0]["proposal"]["attempt_count"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_approvals_send_once(self, fake_db, fake_ghl):
        with patch("services.opportunity_store.database.get_db", return_value=fake_db):
            await seed_pending(fake_db)
            wf = workflow(fake_ghl)
            results = await asyncio.gather(*(wf.approve("opp-1") for _ in range(5)))

        outcomes = [r.outcome for r in results]
        assert outcomes.count(ApprovalOutcome.APPROVED) == 1
        assert outcomes.count(ApprovalOutcome.ALREADY_DECIDED) == 4
        assert fake_ghl.send_message.await_count == 1

    @pytest.mark.asyncio
    async def test_unknown_id_still_updates_ghl(self, fake_db, fake_ghl):
        with patch("services.opportunity_store.database.get_db", return_value=fake_db):
            result = await workflow(fake_ghl).approve("opp-unknown")

        assert result.outcome == ApprovalOutcome.NOT_FOUND
        assert result.record is None
        fake_ghl.update_opportunity.assert_awaited_once()
        fake_ghl.add_opportunity_note.assert_awaited_once()
        fake_ghl.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_upstream_failure_is_audited_and_approval_stands(self, fake_db, fake_ghl):
        fake_ghl.update_opportunity.side_effect = CRMError(ErrorKind.NOT_FOUND, "gone", retryable=False, status_code=404)
        with patch("services.opportunity_store.database.get_db", return_value=fake_db):
            await seed_pending(fake_db)
            result = await workflow(fake_ghl).approve("opp-1")

        assert result.outcome == ApprovalOutcome.APPROVED
        assert result.proposal.ok is True
        warnings = [e for e in fake_db.audit_logs.docs if e["status"] == "WARNING"]
        assert len(warnings) == 1
        assert warnings[0]["details"]["step"] == "move_to_proposal_sent"


class TestReject:
    @pytest.mark.asyncio
    async def test_reject_notifies_reviewer_with_owner_cc(self, fake_db, fake_ghl):
        with patch("services.opportunity_store.database.get_db", return_value=fake_db):
            await seed_pending(fake_db)
            result = await workflow(fake_ghl).reject("opp-1")

        assert result.outcome == ApprovalOutcome.REJECTED
        assert fake_db.opportunities.docs[0]["approval"]["status"] == "rejected"
        assert "rejected by Jim" in fake_ghl.add_opportunity_note.await_args.args[1]
        fake_ghl.update_opportunity.assert_not_awaited()

        payload = fake_ghl.send_message.await_args.args[0]
        assert payload["contactId"] == REVIEWER_CONTACT
        assert payload["cc"] == ["owner@nuesynergy.com"]
        assert "Acme Corp" in payload["subject"]
        assert fake_db.audit_logs.docs[-1]["details"]["notice_sent"] is True

    @pytest.mark.asyncio
    async def test_reject_without_owner_sends_no_notice(self, fake_db, fake_ghl):
        fake_ghl.get_users.side_effect = RuntimeError("users endpoint down")
        with patch("services.opportunity_store.database.get_db", return_value=fake_db):
            await seed_pending(fake_db)
            result = await workflow(fake_ghl).reject("opp-1")

        assert result.outcome == ApprovalOutcome.REJECTED
        fake_ghl.send_message.assert_not_awaited()
        assert fake_db.audit_logs.docs[-1]["details"]["notice_sent"] is False

    @pytest.mark.asyncio
    async def test_reject_after_approve_is_already_decided(self, fake_db, fake_ghl):
        with patch("services.opportunity_store.database.get_db", return_value=fake_db):
            await seed_pending(fake_db)
            wf = workflow(fake_ghl)
            await wf.approve("opp-1")
            fake_ghl.add_opportunity_note.reset_mock()
            result = await wf.reject("opp-1")

        assert result.outcome == ApprovalOutcome.ALREADY_DECIDED
        assert result.current_status == "approved"
        fake_ghl.add_opportunity_note.assert_not_awaited()
        assert fake_db.opportunities.docs[0]["approval"]["status"] == "approved"

    @pytest.mark.asyncio
    async def test_reject_unknown_id_still_notes_ghl(self, fake_db, fake_ghl):
        with patch("services.opportunity_store.database.get_db", return_value=fake_db):
            result = await workflow(fake_ghl).reject("opp-unknown")

        assert result.outcome == ApprovalOutcome.NOT_FOUND
        fake_ghl.add_opportunity_note.assert_awaited_once()
        # No record means no assigned owner to notify
        fake_ghl.send_message.assert_not_awaited()
