"""
Unit tests for the partner lifecycle.

Tests focus on:
- Registration as pending
- Allowed and rejected status transitions
- Approval issuing the first referral code
- Commission rate changes limited to the allowed set
"""
import pytest
from decimal import Decimal

from backend.core.exceptions import (
    DuplicateCodeError,
    NotFoundError,
    PartnerExistsError,
    PartnerStateError,
    ValidationError,
)
from backend.models.partner import Partner, PartnerCode, PartnerStatus
from backend.services.partner_service import PartnerService
from backend.services.referral_code_service import PartnerInfo, ReferralCodeService


@pytest.fixture
def pending_partner(db, make_partner):
    return make_partner(status=PartnerStatus.PENDING.value, code=None)


class TestRegisterPartner:
    """Tests for PartnerService.register_partner"""

    @pytest.mark.asyncio
    async def test_registers_pending_partner(self, db, make_user):
        user = make_user()

        partner = await PartnerService.register_partner(
            db, " Creator@Example.com ", "Creator Studio", user_id=user.id, website="https://creator.example"
        )

        assert partner.status == PartnerStatus.PENDING.value
        assert partner.email == "creator@example.com"
        assert partner.display_name == "Creator Studio"
        assert partner.user_id == user.id
        assert Decimal(partner.commission_rate) == Decimal("0.6")
        assert partner.total_referrals == 0

    @pytest.mark.asyncio
    async def test_duplicate_email(self, db, make_partner):
        make_partner(email="creator@example.com")

        with pytest.raises(PartnerExistsError):
            await PartnerService.register_partner(db, "creator@example.com", "Again")

    @pytest.mark.asyncio
    async def test_user_with_partner_account(self, db, make_user, make_partner):
        user = make_user()
        make_partner(user_id=user.id)

        with pytest.raises(PartnerExistsError):
            await PartnerService.register_partner(db, "new@example.com", "New", user_id=user.id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email,name", [("not-an-email", "Name"), ("ok@example.com", "  ")])
    async def test_invalid_input(self, db, email, name):
        with pytest.raises(ValidationError):
            await PartnerService.register_partner(db, email, name)


class TestApprovePartner:
    """Tests for PartnerService.approve_partner"""

    @pytest.mark.asyncio
    async def test_approval_activates_and_issues_code(self, db, pending_partner):
        partner, code = await PartnerService.approve_partner(db, pending_partner.id)

        assert partner.status == PartnerStatus.ACTIVE.value
        assert partner.approved_at is not None
        assert code.code == "ACMEMEDI"
        assert code.partner_id == partner.id
        assert isinstance(await ReferralCodeService.validate(db, code.code), PartnerInfo)

    @pytest.mark.asyncio
    async def test_approval_with_rate_and_custom_code(self, db, pending_partner):
        partner, code = await PartnerService.approve_partner(
            db, pending_partner.id, commission_rate="0.7", code="vip2024"
        )

        assert Decimal(partner.commission_rate) == Decimal("0.7")
        assert code.code == "VIP2024"

    @pytest.mark.asyncio
    async def test_rate_outside_allowed_set(self, db, pending_partner):
        with pytest.raises(ValidationError):
            await PartnerService.approve_partner(db, pending_partner.id, commission_rate="0.9")

        db.refresh(pending_partner)
        assert pending_partner.status == PartnerStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_taken_code_rolls_back_approval(self, db, make_partner, pending_partner):
        make_partner(email="other@example.com", code="TAKEN")

        with pytest.raises(DuplicateCodeError):
            await PartnerService.approve_partner(db, pending_partner.id, code="TAKEN")

        db.expire_all()
        assert pending_partner.status == PartnerStatus.PENDING.value
        assert db.query(PartnerCode).filter(PartnerCode.partner_id == pending_partner.id).count() == 0

    @pytest.mark.asyncio
    async def test_active_partner_cannot_be_approved_again(self, db, make_partner):
        partner = make_partner()

        with pytest.raises(PartnerStateError):
            await PartnerService.approve_partner(db, partner.id)

    @pytest.mark.asyncio
    async def test_unknown_partner(self, db):
        with pytest.raises(NotFoundError):
            await PartnerService.approve_partner(db, "missing-partner")


class TestStatusTransitions:
    """Tests for reject / suspend / reactivate / terminate"""

    @pytest.mark.asyncio
    async def test_reject_pending(self, db, pending_partner):
        partner = await PartnerService.reject_partner(db, pending_partner.id, "Not a fit")

        assert partner.status == PartnerStatus.REJECTED.value
        assert partner.status_reason == "Not a fit"

    @pytest.mark.asyncio
    async def test_suspend_and_reactivate(self, db, make_partner):
        partner = make_partner()

        suspended = await PartnerService.suspend_partner(db, partner.id, "Spam reports")
        assert suspended.status == PartnerStatus.SUSPENDED.value
        assert (await ReferralCodeService.validate(db, "ACME")).reason.value == "partner_inactive"

        reactivated = await PartnerService.reactivate_partner(db, partner.id)
        assert reactivated.status == PartnerStatus.ACTIVE.value
        assert reactivated.status_reason is None
        assert isinstance(await ReferralCodeService.validate(db, "ACME"), PartnerInfo)

    @pytest.mark.asyncio
    async def test_terminate_from_any_open_state(self, db, make_partner):
        active = make_partner()
        suspended = make_partner(email="s@example.com", code="SUSP", status=PartnerStatus.SUSPENDED.value)

        assert (await PartnerService.terminate_partner(db, active.id)).status == "terminated"
        assert (await PartnerService.terminate_partner(db, suspended.id)).status == "terminated"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,action", [
        (PartnerStatus.PENDING.value, "suspend_partner"),
        (PartnerStatus.ACTIVE.value, "reject_partner"),
        (PartnerStatus.ACTIVE.value, "reactivate_partner"),
        (PartnerStatus.REJECTED.value, "reactivate_partner"),
        (PartnerStatus.TERMINATED.value, "reactivate_partner"),
        (PartnerStatus.TERMINATED.value, "suspend_partner"),
    ])
    async def test_invalid_transitions(self, db, make_partner, status, action):
        partner = make_partner(status=status)

        with pytest.raises(PartnerStateError):
            await getattr(PartnerService, action)(db, partner.id)

        db.refresh(partner)
        assert partner.status == status

    @pytest.mark.asyncio
    async def test_partners_are_never_deleted(self, db, make_partner):
        partner = make_partner()

        await PartnerService.terminate_partner(db, partner.id, "Fraud")

        assert db.query(Partner).filter(Partner.id == partner.id).count() == 1


class TestCommissionRate:
    """Tests for PartnerService.set_commission_rate"""

    @pytest.mark.asyncio
    async def test_change_rate(self, db, make_partner):
        partner = make_partner(commission_rate="0.6")

        updated = await PartnerService.set_commission_rate(db, partner.id, 0.5)

        assert Decimal(updated.commission_rate) == Decimal("0.5")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rate", ["0.65", "1", "abc", "-0.5"])
    async def test_rate_not_allowed(self, db, make_partner, rate):
        partner = make_partner()

        with pytest.raises(ValidationError):
            await PartnerService.set_commission_rate(db, partner.id, rate)

    @pytest.mark.asyncio
    async def test_terminated_partner(self, db, make_partner):
        partner = make_partner(status=PartnerStatus.TERMINATED.value)

        with pytest.raises(PartnerStateError):
            await PartnerService.set_commission_rate(db, partner.id, "0.5")


class TestDashboard:
    """Tests for PartnerService.get_dashboard"""

    @pytest.mark.asyncio
    async def test_dashboard_sections(self, db, make_partner):
        partner = make_partner()

        dashboard = await PartnerService.get_dashboard(db, partner)

        assert dashboard["partner"]["id"] == partner.id
        assert dashboard["partner"]["commission_rate"] == 0.6
        assert dashboard["stats"]["total_referrals"] == 0
        assert dashboard["stats"]["conversion_rate"] == 0
        assert dashboard["stats"]["pending_payout"] == 0
        assert [c["code"] for c in dashboard["codes"]] == ["ACME"]
        assert dashboard["customers"]["total_customers"] == 0
        assert dashboard["commissions"]["total_entries"] == 0
