"""
Unit tests for signup-time referral attribution.

Tests focus on:
- Happy path: record, referral event and code use
- Duplicate signup retries
- Invalid codes and inactive partners reported as results
- Retry of ambiguous failures and partial success
"""
import pytest
from unittest.mock import AsyncMock, patch

from sqlalchemy.exc import SQLAlchemyError

from backend.core.config import settings
from backend.core.exceptions import ValidationError
from backend.models.partner import PartnerCode, PartnerStatus, Referral, ReferralCustomer
from backend.services.referral_attribution_service import (
    AttributionStatus,
    ReferralAttributionService,
)
from backend.services.referral_code_service import ReferralCodeService
from backend.services.referral_customer_service import (
    CustomerProfile,
    CustomerRecordResult,
    CustomerRecordStatus,
    ReferralCustomerService,
)


@pytest.fixture
def profile():
    return CustomerProfile(email="jane@example.com", display_name="Jane Doe")


def _code(db, code="ACME"):
    return db.query(PartnerCode).filter(PartnerCode.code == code).first()


class TestAttribute:
    """Tests for ReferralAttributionService.attribute"""

    @pytest.mark.asyncio
    async def test_happy_path(self, db, make_partner, profile):
        partner = make_partner(code="ACME")

        result = await ReferralAttributionService.attribute(
            db, "acme", "cust-1", profile,
            utm={"utm_source": "newsletter"}, currency="eur",
        )

        assert result.status == AttributionStatus.CREATED
        assert result.success is True
        assert result.partial is False
        assert result.partner_id == partner.id
        assert result.attempts == 1

        db.expire_all()
        referral = db.query(Referral).filter(Referral.id == result.referral_id).one()
        assert referral.partner_id == partner.id
        assert referral.partner_code == "ACME"
        assert referral.customer_uid == "cust-1"
        assert referral.source == "link"
        assert referral.currency == "eur"
        assert referral.utm == {"utm_source": "newsletter"}

        record = db.query(ReferralCustomer).filter(ReferralCustomer.id == result.customer_record_id).one()
        assert record.referral_id == referral.id
        assert record.extra_data["code"] == "ACME"

        code = _code(db)
        assert code.uses == 1
        assert code.last_used_at is not None
        assert partner.total_referrals == 1

    @pytest.mark.asyncio
    async def test_default_currency(self, db, make_partner, profile):
        make_partner(code="ACME")

        result = await ReferralAttributionService.attribute(db, "ACME", "cust-1", profile)

        referral = db.query(Referral).filter(Referral.id == result.referral_id).one()
        assert referral.currency == settings.DEFAULT_CURRENCY

    @pytest.mark.asyncio
    async def test_duplicate_signup_retry(self, db, make_partner, profile):
        """A retried signup reports the existing attribution and changes nothing"""
        partner = make_partner(code="ACME")

        first = await ReferralAttributionService.attribute(db, "ACME", "cust-1", profile)
        second = await ReferralAttributionService.attribute(db, "ACME", "cust-1", profile)

        assert first.status == AttributionStatus.CREATED
        assert second.status == AttributionStatus.ALREADY_EXISTS
        assert second.success is True
        assert second.customer_record_id == first.customer_record_id
        assert second.referral_id == first.referral_id

        db.expire_all()
        assert _code(db).uses == 1
        assert partner.total_referrals == 1
        assert db.query(Referral).count() == 1
        assert db.query(ReferralCustomer).count() == 1

    @pytest.mark.asyncio
    async def test_no_code(self, db, profile):
        result = await ReferralAttributionService.attribute(db, None, "cust-1", profile)

        assert result.status == AttributionStatus.NO_CODE
        assert result.success is False

    @pytest.mark.asyncio
    async def test_unknown_code(self, db, profile):
        result = await ReferralAttributionService.attribute(db, "NOPE", "cust-1", profile)

        assert result.status == AttributionStatus.INVALID_CODE
        assert result.reason == "not_found"
        assert db.query(ReferralCustomer).count() == 0

    @pytest.mark.asyncio
    async def test_inactive_code(self, db, make_partner, profile):
        partner = make_partner(code="ACME")
        code = _code(db)
        code.active = False
        db.commit()

        result = await ReferralAttributionService.attribute(db, "ACME", "cust-1", profile)

        assert result.status == AttributionStatus.INVALID_CODE
        assert result.reason == "inactive"
        db.refresh(partner)
        assert partner.total_referrals == 0
        assert db.query(Referral).count() == 0

    @pytest.mark.asyncio
    async def test_suspended_partner(self, db, make_partner, profile):
        make_partner(code="ACME", status=PartnerStatus.SUSPENDED.value)

        result = await ReferralAttributionService.attribute(db, "ACME", "cust-1", profile)

        assert result.status == AttributionStatus.INVALID_CODE
        assert result.reason == "partner_inactive"

    @pytest.mark.asyncio
    async def test_code_exhausted_by_attribution(self, db, make_partner):
        """A single-use code stops attributing after its first signup"""
        make_partner(code="ACME", max_uses=1)

        first = await ReferralAttributionService.attribute(
            db, "ACME", "cust-1", CustomerProfile(email="one@example.com")
        )
        second = await ReferralAttributionService.attribute(
            db, "ACME", "cust-2", CustomerProfile(email="two@example.com")
        )

        assert first.status == AttributionStatus.CREATED
        assert second.status == AttributionStatus.INVALID_CODE
        assert second.reason == "exhausted"

    @pytest.mark.asyncio
    async def test_retry_after_code_ran_out_is_already_exists(self, db, make_partner, profile):
        """A single-use code spent by this customer still answers their retried signup"""
        make_partner(code="ACME", max_uses=1)

        first = await ReferralAttributionService.attribute(db, "ACME", "cust-1", profile)
        second = await ReferralAttributionService.attribute(db, "ACME", "cust-1", profile)

        assert first.status == AttributionStatus.CREATED
        assert second.status == AttributionStatus.ALREADY_EXISTS
        assert second.success is True
        assert second.customer_record_id == first.customer_record_id
        assert second.referral_id == first.referral_id

        db.expire_all()
        assert _code(db).uses == 1
        assert db.query(ReferralCustomer).count() == 1

    @pytest.mark.asyncio
    async def test_retry_after_code_deactivated_is_already_exists(self, db, make_partner, profile):
        make_partner(code="ACME")
        first = await ReferralAttributionService.attribute(db, "ACME", "cust-1", profile)
        code = _code(db)
        code.active = False
        db.commit()

        retried = await ReferralAttributionService.attribute(db, "ACME", "cust-1", profile)
        newcomer = await ReferralAttributionService.attribute(
            db, "ACME", "cust-2", CustomerProfile(email="two@example.com")
        )

        assert retried.status == AttributionStatus.ALREADY_EXISTS
        assert retried.customer_record_id == first.customer_record_id
        assert newcomer.status == AttributionStatus.INVALID_CODE
        assert newcomer.reason == "inactive"

    @pytest.mark.asyncio
    async def test_concurrent_signups_do_not_overrun_code_cap(self, db, make_partner):
        """Two signups validated before either is recorded count one use against a cap of one"""
        make_partner(code="ACME", max_uses=1)
        seen_by_first = await ReferralCodeService.validate(db, "ACME")
        seen_by_second = await ReferralCodeService.validate(db, "ACME")

        with patch.object(
            ReferralCodeService, "validate", AsyncMock(side_effect=[seen_by_first, seen_by_second])
        ):
            first = await ReferralAttributionService.attribute(
                db, "ACME", "cust-1", CustomerProfile(email="one@example.com")
            )
            second = await ReferralAttributionService.attribute(
                db, "ACME", "cust-2", CustomerProfile(email="two@example.com")
            )

        assert first.status == AttributionStatus.CREATED
        assert second.status == AttributionStatus.CREATED

        db.expire_all()
        assert _code(db).uses == 1
        assert db.query(Referral).count() == 2

    @pytest.mark.asyncio
    async def test_unknown_source_raises(self, db, make_partner, profile):
        make_partner(code="ACME")

        with pytest.raises(ValidationError):
            await ReferralAttributionService.attribute(db, "ACME", "cust-1", profile, source="billboard")

    @pytest.mark.asyncio
    async def test_missing_email_raises(self, db, make_partner):
        make_partner(code="ACME")

        with pytest.raises(ValidationError):
            await ReferralAttributionService.attribute(db, "ACME", "cust-1", CustomerProfile(email=""))

    @pytest.mark.asyncio
    async def test_retries_ambiguous_failure(self, db, make_partner, profile):
        make_partner(code="ACME")
        real_create = ReferralCustomerService.create_customer_record
        calls = []

        async def flaky_create(*args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                return CustomerRecordResult(
                    CustomerRecordStatus.ERROR, message="Database timeout or conflict", retryable=True
                )
            return await real_create(*args, **kwargs)

        with patch.object(ReferralCustomerService, "create_customer_record", side_effect=flaky_create):
            result = await ReferralAttributionService.attribute(db, "ACME", "cust-1", profile)

        assert result.status == AttributionStatus.CREATED
        assert result.attempts == 2
        assert db.query(ReferralCustomer).count() == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, db, make_partner, profile):
        make_partner(code="ACME")
        failure = CustomerRecordResult(CustomerRecordStatus.ERROR, message="timeout", retryable=True)

        with patch.object(ReferralCustomerService, "create_customer_record", return_value=failure) as mock_create:
            result = await ReferralAttributionService.attribute(db, "ACME", "cust-1", profile)

        assert result.status == AttributionStatus.ERROR
        assert result.success is False
        assert result.attempts == settings.ATTRIBUTION_MAX_RETRIES
        assert mock_create.await_count == settings.ATTRIBUTION_MAX_RETRIES

    @pytest.mark.asyncio
    async def test_non_retryable_failure_is_not_retried(self, db, make_partner, profile):
        make_partner(code="ACME")
        failure = CustomerRecordResult(CustomerRecordStatus.ERROR, message="boom", retryable=False)

        with patch.object(ReferralCustomerService, "create_customer_record", return_value=failure) as mock_create:
            result = await ReferralAttributionService.attribute(db, "ACME", "cust-1", profile)

        assert result.status == AttributionStatus.ERROR
        assert mock_create.await_count == 1

    @pytest.mark.asyncio
    async def test_referral_write_failure_keeps_customer_record(self, db, make_partner, profile):
        """The customer record stays when the referral event cannot be written"""
        partner = make_partner(code="ACME")

        with patch.object(
            ReferralAttributionService, "_record_referral", side_effect=SQLAlchemyError("write failed")
        ):
            result = await ReferralAttributionService.attribute(db, "ACME", "cust-1", profile)

        assert result.status == AttributionStatus.CREATED
        assert result.success is True
        assert result.partial is True
        assert result.warnings == ["referral_record_failed"]
        assert result.referral_id is None
        assert result.to_dict()["partial"] is True

        db.expire_all()
        assert db.query(ReferralCustomer).count() == 1
        assert db.query(Referral).count() == 0
        assert partner.total_referrals == 1
        assert _code(db).uses == 0
