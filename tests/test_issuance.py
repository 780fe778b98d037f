"""
Tests for batch creation and re-issue: minting, quota accounting,
archive delivery and all-or-nothing rollback.
"""

import zipfile
from datetime import timedelta
from io import BytesIO

import pytest
from sqlalchemy import func, select

from authartic.core.errors import (
    CapacityExceeded,
    Conflict,
    Forbidden,
    InternalError,
    NotFound,
    ValidationFailed,
)
from authartic.integrations.mail_client import NotificationError
from authartic.models.certificate import (
    CERTIFICATE_ACTIVE,
    CERTIFICATE_REVOKED,
    Certificate,
    CertificateInfo,
    CertificateOwner,
)
from authartic.services import issuance
from authartic.services.issuance import create_certificate_info, reissue_batch, reissue_certificate

from conftest import FIXED_NOW, FakeMailer, batch_input, fetch_status, fixed_clock, seed_consumer, seed_vendor


async def _certificates(db, batch_id):
    res = await db.execute(
        select(Certificate)
        .where(Certificate.certificate_info_id == batch_id)
        .order_by(Certificate.id)
        .execution_options(populate_existing=True)
    )
    return list(res.scalars().all())


async def _active_owner_ids(db, certificate_id):
    res = await db.execute(
        select(CertificateOwner.user_id).where(
            CertificateOwner.certificate_id == certificate_id,
            CertificateOwner.is_owner.is_(True),
            CertificateOwner.is_deleted.is_(False),
        )
    )
    return list(res.scalars().all())


async def _count(db, model):
    res = await db.execute(select(func.count()).select_from(model))
    return int(res.scalar_one())


class TestCreateBatch:
    async def test_issues_certificates_and_consumes_quota(self, db, mailer, seeded):
        result = await create_certificate_info(
            db,
            vendor=seeded.vendor,
            data=batch_input(seeded.image_id, number=3),
            mailer=mailer,
            clock=fixed_clock,
        )

        assert result.remaining_certificates == 2
        assert result.message == f"Certificates created and sent to {seeded.email}"
        assert result.batch.issued == 3
        assert result.batch.saved_draft is False

        status = await fetch_status(db, seeded.status_id)
        assert status.remaining_certificates == 2
        assert status.total_certificates_issued == 3

        certs = await _certificates(db, result.batch.id)
        assert len(certs) == 3
        for cert in certs:
            assert cert.status == CERTIFICATE_ACTIVE
            assert cert.is_deleted is False
            assert cert.qr_code == f"https://claims.test/certificate/claim-certificate/{cert.id}/scan"
            assert await _active_owner_ids(db, cert.id) == [seeded.vendor_id]

        assert [c.claim_url for c in result.certificates] == [c.qr_code for c in certs]

        assert len(mailer.archives) == 1
        email, archive = mailer.archives[0]
        assert email == seeded.email
        names = zipfile.ZipFile(BytesIO(archive)).namelist()
        assert names == ["certificate1.pdf", "certificate2.pdf", "certificate3.pdf"]

    async def test_serial_numbers_follow_position_and_clock(self, db, mailer, seeded):
        result = await create_certificate_info(
            db,
            vendor=seeded.vendor,
            data=batch_input(seeded.image_id, number=2),
            mailer=mailer,
            clock=fixed_clock,
        )

        ms = int(FIXED_NOW.timestamp() * 1000)
        assert [c.serial_number for c in result.certificates] == [f"SN-1-{ms}", f"SN-2-{ms}"]

    async def test_serials_stay_unique_across_batches_issued_in_the_same_millisecond(self, db, mailer, seeded):
        first = await create_certificate_info(
            db, vendor=seeded.vendor, data=batch_input(seeded.image_id, number=2), mailer=mailer, clock=fixed_clock
        )
        second = await create_certificate_info(
            db, vendor=seeded.vendor, data=batch_input(seeded.image_id, number=2), mailer=mailer, clock=fixed_clock
        )

        serials = [c.serial_number for c in first.certificates + second.certificates]
        assert len(set(serials)) == 4

        ms = int(FIXED_NOW.timestamp() * 1000)
        assert second.certificates[0].serial_number == f"SN-1-{ms + 1}"

    async def test_over_capacity_creates_nothing(self, db, mailer):
        seeded = await seed_vendor(db, remaining=2)

        with pytest.raises(CapacityExceeded) as exc:
            await create_certificate_info(
                db,
                vendor=seeded.vendor,
                data=batch_input(seeded.image_id, number=3),
                mailer=mailer,
                clock=fixed_clock,
            )

        assert str(exc.value) == "You have only 2 certificates available."
        assert exc.value.remaining == 2
        assert (await fetch_status(db, seeded.status_id)).remaining_certificates == 2
        assert await _count(db, CertificateInfo) == 0
        assert await _count(db, Certificate) == 0
        assert mailer.archives == []

    async def test_delivery_failure_rolls_back_everything(self, db, seeded):
        mailer = FakeMailer(fail=True)

        with pytest.raises(NotificationError):
            await create_certificate_info(
                db,
                vendor=seeded.vendor,
                data=batch_input(seeded.image_id, number=3),
                mailer=mailer,
                clock=fixed_clock,
            )

        status = await fetch_status(db, seeded.status_id)
        assert status.remaining_certificates == 5
        assert status.total_certificates_issued == 0
        assert await _count(db, CertificateInfo) == 0
        assert await _count(db, Certificate) == 0
        assert await _count(db, CertificateOwner) == 0

    async def test_unexpected_error_is_wrapped_and_rolled_back(self, db, mailer, seeded, monkeypatch):
        boom = RuntimeError("renderer crashed")

        async def broken_archive(items, style):
            raise boom

        monkeypatch.setattr(issuance, "build_batch_archive", broken_archive)

        with pytest.raises(InternalError, match="Certificate creation failed") as exc:
            await create_certificate_info(
                db,
                vendor=seeded.vendor,
                data=batch_input(seeded.image_id, number=3),
                mailer=mailer,
                clock=fixed_clock,
            )

        assert exc.value.__cause__ is boom
        assert exc.value.status_code == 500

        status = await fetch_status(db, seeded.status_id)
        assert status.remaining_certificates == 5
        assert status.total_certificates_issued == 0
        assert await _count(db, CertificateInfo) == 0
        assert await _count(db, Certificate) == 0
        assert await _count(db, CertificateOwner) == 0
        assert mailer.archives == []

    async def test_unexpected_error_during_reissue_leaves_batch_untouched(self, db, mailer, seeded, monkeypatch):
        created = await create_certificate_info(
            db, vendor=seeded.vendor, data=batch_input(seeded.image_id, number=1), mailer=mailer, clock=fixed_clock
        )
        batch_id = created.batch.id

        async def broken_owner(db, *, certificate_id, user_id):
            raise RuntimeError("owner write failed")

        monkeypatch.setattr(issuance, "set_active_owner", broken_owner)

        with pytest.raises(InternalError) as exc:
            await reissue_batch(
                db, vendor=seeded.vendor, batch_id=batch_id, count=2, mailer=mailer, clock=fixed_clock
            )

        assert isinstance(exc.value.__cause__, RuntimeError)
        assert len(await _certificates(db, batch_id)) == 1
        batch = await db.get(CertificateInfo, batch_id, populate_existing=True)
        assert batch.issued == 1
        assert (await fetch_status(db, seeded.status_id)).remaining_certificates == 4

    async def test_draft_mints_nothing(self, db, mailer, seeded):
        result = await create_certificate_info(
            db,
            vendor=seeded.vendor,
            data=batch_input(seeded.image_id, number=3, saved_draft=True),
            mailer=mailer,
            clock=fixed_clock,
        )

        assert result.message == "Certificate saved as draft"
        assert result.certificates == []
        assert result.batch.saved_draft is True
        assert result.batch.issued == 0
        assert result.batch.issued_date is None
        assert (await fetch_status(db, seeded.status_id)).remaining_certificates == 5
        assert await _certificates(db, result.batch.id) == []
        assert mailer.archives == []

    async def test_draft_is_allowed_with_empty_balance(self, db, mailer):
        seeded = await seed_vendor(db, remaining=0)

        result = await create_certificate_info(
            db,
            vendor=seeded.vendor,
            data=batch_input(seeded.image_id, number=0),
            mailer=mailer,
            clock=fixed_clock,
        )

        assert result.message == "Certificate saved as draft"
        assert result.remaining_certificates == 0

    async def test_unknown_product_image(self, db, mailer, seeded):
        with pytest.raises(NotFound, match="Product image"):
            await create_certificate_info(
                db,
                vendor=seeded.vendor,
                data=batch_input(987654, number=1),
                mailer=mailer,
                clock=fixed_clock,
            )

        assert await _count(db, CertificateInfo) == 0


class TestEligibility:
    async def test_expired_flag_is_forbidden(self, db, mailer):
        seeded = await seed_vendor(db, is_expired=True)

        with pytest.raises(Forbidden, match="expired"):
            await create_certificate_info(
                db, vendor=seeded.vendor, data=batch_input(seeded.image_id), mailer=mailer, clock=fixed_clock
            )

    async def test_lapsed_term_is_forbidden_before_the_sweep(self, db, mailer):
        seeded = await seed_vendor(db, expiry=FIXED_NOW - timedelta(minutes=1))

        with pytest.raises(Forbidden, match="expired"):
            await create_certificate_info(
                db, vendor=seeded.vendor, data=batch_input(seeded.image_id), mailer=mailer, clock=fixed_clock
            )

        assert (await fetch_status(db, seeded.status_id)).remaining_certificates == 5

    async def test_unverified_vendor_is_forbidden(self, db, mailer):
        seeded = await seed_vendor(db, verified=False)

        with pytest.raises(Forbidden, match="not verified"):
            await create_certificate_info(
                db, vendor=seeded.vendor, data=batch_input(seeded.image_id), mailer=mailer, clock=fixed_clock
            )

    async def test_vendor_without_subscription_is_forbidden(self, db, mailer):
        seeded = await seed_vendor(db, remaining=None)

        with pytest.raises(Forbidden, match="subscription"):
            await create_certificate_info(
                db, vendor=seeded.vendor, data=batch_input(seeded.image_id), mailer=mailer, clock=fixed_clock
            )

    async def test_consumer_cannot_issue(self, db, mailer, seeded):
        consumer = await seed_consumer(db)

        with pytest.raises(Forbidden, match="Only VENDOR"):
            await create_certificate_info(
                db, vendor=consumer, data=batch_input(seeded.image_id), mailer=mailer, clock=fixed_clock
            )


class TestReissueBatch:
    async def test_reissue_continues_positions(self, db, mailer, seeded):
        created = await create_certificate_info(
            db, vendor=seeded.vendor, data=batch_input(seeded.image_id, number=2), mailer=mailer, clock=fixed_clock
        )

        result = await reissue_batch(
            db,
            vendor=seeded.vendor,
            batch_id=created.batch.id,
            count=2,
            mailer=mailer,
            clock=fixed_clock,
        )

        ms = int(FIXED_NOW.timestamp() * 1000)
        assert [c.serial_number for c in result.certificates] == [f"SN-3-{ms}", f"SN-4-{ms}"]
        assert result.batch.issued == 4
        assert result.remaining_certificates == 1
        assert len(await _certificates(db, created.batch.id)) == 4

        status = await fetch_status(db, seeded.status_id)
        assert status.total_certificates_issued == 4
        assert len(mailer.archives) == 2

    async def test_reissue_from_draft_marks_it_issued(self, db, mailer, seeded):
        draft = await create_certificate_info(
            db,
            vendor=seeded.vendor,
            data=batch_input(seeded.image_id, number=0, saved_draft=True),
            mailer=mailer,
            clock=fixed_clock,
        )

        result = await reissue_batch(
            db, vendor=seeded.vendor, batch_id=draft.batch.id, count=1, mailer=mailer, clock=fixed_clock
        )

        assert result.batch.saved_draft is False
        assert result.batch.issued == 1

    async def test_reissue_of_another_vendors_batch_is_not_found(self, db, mailer, seeded):
        created = await create_certificate_info(
            db, vendor=seeded.vendor, data=batch_input(seeded.image_id, number=1), mailer=mailer, clock=fixed_clock
        )
        other = await seed_vendor(db, remaining=5)

        with pytest.raises(NotFound, match=f"Certificate with ID {created.batch.id} not found"):
            await reissue_batch(
                db, vendor=other.vendor, batch_id=created.batch.id, count=1, mailer=mailer, clock=fixed_clock
            )

        assert (await fetch_status(db, other.status_id)).remaining_certificates == 5

    async def test_reissue_requires_positive_count(self, db, mailer, seeded):
        with pytest.raises(ValidationFailed):
            await reissue_batch(db, vendor=seeded.vendor, batch_id=1, count=0, mailer=mailer, clock=fixed_clock)


class TestReissueCertificate:
    async def test_revokes_and_replaces_one_certificate(self, db, mailer, seeded):
        created = await create_certificate_info(
            db, vendor=seeded.vendor, data=batch_input(seeded.image_id, number=2), mailer=mailer, clock=fixed_clock
        )
        old_id = created.certificates[0].certificate_id

        result = await reissue_certificate(
            db,
            vendor=seeded.vendor,
            batch_id=created.batch.id,
            certificate_id=old_id,
            mailer=mailer,
            clock=fixed_clock,
        )

        assert result.message == f"Certificate reissued and sent to {seeded.email}"
        assert len(result.certificates) == 1
        new_id = result.certificates[0].certificate_id
        assert new_id != old_id

        old = await db.get(Certificate, old_id, populate_existing=True)
        assert old.status == CERTIFICATE_REVOKED
        assert old.is_deleted is True

        new = await db.get(Certificate, new_id)
        assert new.status == CERTIFICATE_ACTIVE
        assert await _active_owner_ids(db, new_id) == [seeded.vendor_id]

        status = await fetch_status(db, seeded.status_id)
        assert status.remaining_certificates == 2
        assert status.total_certificates_issued == 3
        assert result.batch.issued == 3

    async def test_second_reissue_of_the_same_certificate_conflicts(self, db, mailer, seeded):
        created = await create_certificate_info(
            db, vendor=seeded.vendor, data=batch_input(seeded.image_id, number=1), mailer=mailer, clock=fixed_clock
        )
        old_id = created.certificates[0].certificate_id
        await reissue_certificate(
            db, vendor=seeded.vendor, batch_id=created.batch.id, certificate_id=old_id, mailer=mailer, clock=fixed_clock
        )

        with pytest.raises(Conflict, match=f"Already re-issued certificate for this certificate with ID {old_id}"):
            await reissue_certificate(
                db,
                vendor=seeded.vendor,
                batch_id=created.batch.id,
                certificate_id=old_id,
                mailer=mailer,
                clock=fixed_clock,
            )

        status = await fetch_status(db, seeded.status_id)
        assert status.remaining_certificates == 3
        assert len(mailer.archives) == 2

    async def test_reissue_with_empty_balance_leaves_certificate_active(self, db, mailer):
        seeded = await seed_vendor(db, remaining=1)
        created = await create_certificate_info(
            db, vendor=seeded.vendor, data=batch_input(seeded.image_id, number=1), mailer=mailer, clock=fixed_clock
        )
        old_id = created.certificates[0].certificate_id

        with pytest.raises(CapacityExceeded):
            await reissue_certificate(
                db,
                vendor=seeded.vendor,
                batch_id=created.batch.id,
                certificate_id=old_id,
                mailer=mailer,
                clock=fixed_clock,
            )

        old = await db.get(Certificate, old_id, populate_existing=True)
        assert old.status == CERTIFICATE_ACTIVE
        assert old.is_deleted is False

    async def test_unknown_certificate_is_not_found(self, db, mailer, seeded):
        created = await create_certificate_info(
            db, vendor=seeded.vendor, data=batch_input(seeded.image_id, number=1), mailer=mailer, clock=fixed_clock
        )

        with pytest.raises(NotFound):
            await reissue_certificate(
                db,
                vendor=seeded.vendor,
                batch_id=created.batch.id,
                certificate_id=55555,
                mailer=mailer,
                clock=fixed_clock,
            )

        assert (await fetch_status(db, seeded.status_id)).remaining_certificates == 4
