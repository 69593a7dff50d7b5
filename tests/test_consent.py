"""Tests for consent resolution and ConsentService.

Coverage:
  - latest_action_at / resolve_current (ties go to the later record)
  - current_by_purpose grouping
  - compliance_score rounding
  - ConsentService capture, ownership checks and status history
  - Insertion-order tie-break and two-session write conflicts
  - Guardian consent (relationship check, admin bypass)
  - minor_dependents validation
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consenthub.compliance.consent import (
    GUARDIAN_CONSENT_TYPE,
    ConsentSource,
    ConsentStatus,
    apply_status,
    compliance_score,
    current_by_purpose,
    latest_action_at,
    resolve_current,
)
from consenthub.core.errors import (
    ConcurrentModificationError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from consenthub.core.policy import Actor
from consenthub.models.consent import Consent, next_insert_seq
from consenthub.models.user import MinorRelationship, User
from consenthub.services.consent import ConsentInput, ConsentService

T0 = datetime(2024, 1, 1, tzinfo=UTC)


def _record(name: str, *, granted: datetime | None = None, revoked: datetime | None = None,
            updated: datetime | None = None, party: str = "p1", purpose: str = "email") -> SimpleNamespace:
    return SimpleNamespace(
        name=name,
        party_id=party,
        purpose=purpose,
        granted_at=granted,
        revoked_at=revoked,
        updated_at=updated,
    )


def _actor(user: User) -> Actor:
    return Actor(id=user.id, role=user.role)


class TestResolution:
    def test_latest_action_is_max_of_timestamps(self) -> None:
        record = _record("a", granted=T0, revoked=T0 + timedelta(days=1), updated=T0 + timedelta(days=2))
        assert latest_action_at(record) == T0 + timedelta(days=2)

    def test_record_without_actions_has_no_latest(self) -> None:
        assert latest_action_at(_record("a")) is None

    def test_most_recent_action_wins(self) -> None:
        older = _record("older", granted=T0)
        newer = _record("newer", revoked=T0 + timedelta(hours=1))
        assert resolve_current([newer, older]).name == "newer"

    def test_ties_go_to_the_later_inserted_record(self) -> None:
        first = _record("first", granted=T0)
        second = _record("second", updated=T0)
        assert resolve_current([first, second]).name == "second"

    def test_dated_record_beats_undated(self) -> None:
        undated = _record("undated")
        dated = _record("dated", granted=T0)
        assert resolve_current([dated, undated]).name == "dated"
        assert resolve_current([undated, dated]).name == "dated"

    def test_empty_input(self) -> None:
        assert resolve_current([]) is None

    def test_current_by_purpose_groups_party_and_purpose(self) -> None:
        records = [
            _record("p1-email-old", granted=T0),
            _record("p1-email-new", revoked=T0 + timedelta(days=1)),
            _record("p1-sms", granted=T0, purpose="sms"),
            _record("p2-email", granted=T0, party="p2"),
        ]
        resolved = current_by_purpose(records)
        assert {k: v.name for k, v in resolved.items()} == {
            ("p1", "email"): "p1-email-new",
            ("p1", "sms"): "p1-sms",
            ("p2", "email"): "p2-email",
        }


class TestComplianceScore:
    @pytest.mark.parametrize(
        ("granted", "total", "expected"),
        [
            (0, 0, 0),
            (1, 1, 100),
            (1, 2, 50),
            (1, 3, 33),
            (2, 3, 67),
            (1, 8, 13),  # 12.5 rounds half up
        ],
    )
    def test_percentage_rounded_half_up(self, granted: int, total: int, expected: int) -> None:
        assert compliance_score(granted, total) == expected


class TestApplyStatus:
    def test_stamps_matching_timestamp_and_returns_previous(self) -> None:
        record = SimpleNamespace(
            status=ConsentStatus.GRANTED, granted_at=T0, revoked_at=None, denied_at=None, updated_at=None
        )
        later = T0 + timedelta(days=3)
        previous = apply_status(record, ConsentStatus.REVOKED, later)
        assert previous == ConsentStatus.GRANTED
        assert record.revoked_at == later
        assert record.granted_at == T0

    def test_parse_rejects_unknown_status(self) -> None:
        with pytest.raises(ValidationError):
            ConsentStatus.parse("maybe")


class TestConsentService:
    async def test_customer_records_own_consent(self, db: AsyncSession, users: dict[str, User]) -> None:
        customer = users["customer"]
        consent = await ConsentService(db).create_consent(
            _actor(customer), str(customer.id), ConsentInput(purpose="marketing_email")
        )
        assert consent.status == ConsentStatus.GRANTED
        assert consent.granted_at is not None
        assert consent.record_source == ConsentSource.SELF_SERVICE
        assert consent.version_accepted == "1.0"

    async def test_csr_capture_is_marked_as_csr(self, db: AsyncSession, users: dict[str, User]) -> None:
        consent = await ConsentService(db).create_consent(
            _actor(users["csr"]), str(users["customer"].id), ConsentInput(purpose="sms", status="denied")
        )
        assert consent.record_source == ConsentSource.CSR
        assert consent.denied_at is not None

    async def test_customer_cannot_record_for_someone_else(
        self, db: AsyncSession, users: dict[str, User]
    ) -> None:
        with pytest.raises(ForbiddenError):
            await ConsentService(db).create_consent(
                _actor(users["customer"]), str(users["guardian"].id), ConsentInput(purpose="email")
            )

    async def test_valid_to_before_valid_from_is_rejected(
        self, db: AsyncSession, users: dict[str, User]
    ) -> None:
        customer = users["customer"]
        with pytest.raises(ValidationError):
            await ConsentService(db).create_consent(
                _actor(customer),
                str(customer.id),
                ConsentInput(purpose="email", valid_from=T0, valid_to=T0 - timedelta(days=1)),
            )

    async def test_revocation_supersedes_grant_in_effective_view(
        self, db: AsyncSession, users: dict[str, User]
    ) -> None:
        customer = users["customer"]
        svc = ConsentService(db)
        consent = await svc.create_consent(_actor(customer), str(customer.id), ConsentInput(purpose="email"))
        await svc.create_consent(_actor(customer), str(customer.id), ConsentInput(purpose="sms"))
        await svc.update_status(_actor(customer), consent.id, "revoked")

        effective = {c.purpose: c.status for c in await svc.effective_consents(str(customer.id))}
        assert effective == {"email": ConsentStatus.REVOKED, "sms": ConsentStatus.GRANTED}

    async def test_newer_record_supersedes_older_for_same_purpose(
        self, db: AsyncSession, users: dict[str, User]
    ) -> None:
        customer = users["customer"]
        svc = ConsentService(db)
        await svc.create_consent(_actor(customer), str(customer.id), ConsentInput(purpose="email"))
        newer = await svc.create_consent(
            _actor(customer), str(customer.id), ConsentInput(purpose="email", status="denied")
        )
        effective = await svc.effective_consents(str(customer.id))
        assert [c.id for c in effective] == [newer.id]

    async def test_list_is_newest_action_first(self, db: AsyncSession, users: dict[str, User]) -> None:
        customer = users["customer"]
        svc = ConsentService(db)
        first = await svc.create_consent(_actor(customer), str(customer.id), ConsentInput(purpose="email"))
        second = await svc.create_consent(_actor(customer), str(customer.id), ConsentInput(purpose="sms"))
        await svc.update_status(_actor(customer), first.id, "revoked")

        listed = await svc.list_consents(party_id=str(customer.id))
        assert [c.id for c in listed] == [first.id, second.id]

    async def test_update_status_history(self, db: AsyncSession, users: dict[str, User]) -> None:
        customer = users["customer"]
        svc = ConsentService(db)
        consent = await svc.create_consent(_actor(customer), str(customer.id), ConsentInput(purpose="email"))
        await svc.update_status(_actor(customer), consent.id, "revoked")
        await svc.update_status(_actor(users["csr"]), consent.id, "granted")

        history = await svc.history(consent.id)
        assert [e.action for e in history] == [
            "consent.created",
            "consent.status_changed",
            "consent.status_changed",
        ]
        assert [(e.extra or {}).get("to") for e in history] == ["granted", "revoked", "granted"]
        assert history[-1].actor_id == str(users["csr"].id)

    async def test_customer_cannot_see_foreign_record(self, db: AsyncSession, users: dict[str, User]) -> None:
        svc = ConsentService(db)
        consent = await svc.create_consent(
            _actor(users["csr"]), str(users["guardian"].id), ConsentInput(purpose="email")
        )
        with pytest.raises(NotFoundError):
            await svc.update_status(_actor(users["customer"]), consent.id, "revoked")

    async def test_stale_expected_version_conflicts(self, db: AsyncSession, users: dict[str, User]) -> None:
        customer = users["customer"]
        svc = ConsentService(db)
        consent = await svc.create_consent(_actor(customer), str(customer.id), ConsentInput(purpose="email"))
        stale = consent.version
        await svc.update_status(_actor(customer), consent.id, "revoked", expected_version=stale)

        with pytest.raises(ConcurrentModificationError):
            await svc.update_status(_actor(customer), consent.id, "granted", expected_version=stale)

    async def test_unknown_consent(self, db: AsyncSession, users: dict[str, User]) -> None:
        with pytest.raises(NotFoundError):
            await ConsentService(db).update_status(_actor(users["admin"]), uuid.uuid4(), "revoked")


class TestInsertionOrder:
    def test_insert_seq_is_strictly_increasing_on_a_stalled_clock(self) -> None:
        with patch("consenthub.models.consent.time.time_ns", return_value=1):
            first = next_insert_seq()
            second = next_insert_seq()
        assert second > first

    async def test_identical_timestamps_resolve_by_insert_seq(
        self, db: AsyncSession, users: dict[str, User]
    ) -> None:
        customer = users["customer"]
        party = str(customer.id)

        def _row(status: str, seq: int) -> Consent:
            return Consent(
                party_id=party,
                purpose="email",
                status=status,
                granted_at=T0 if status == ConsentStatus.GRANTED else None,
                revoked_at=T0 if status == ConsentStatus.REVOKED else None,
                created_at=T0,
                updated_at=T0,
                insert_seq=seq,
            )

        # Inserted first but stamped later
        later = _row(ConsentStatus.REVOKED, 2)
        db.add(later)
        await db.flush()
        db.add(_row(ConsentStatus.GRANTED, 1))
        await db.commit()

        svc = ConsentService(db)
        effective = await svc.effective_consents(party)
        assert [c.id for c in effective] == [later.id]
        assert effective[0].status == ConsentStatus.REVOKED


class TestConcurrentWriters:
    async def test_second_writer_on_a_stale_row_conflicts(
        self, session_factory: async_sessionmaker[AsyncSession], users: dict[str, User]
    ) -> None:
        customer, csr = _actor(users["customer"]), _actor(users["csr"])
        async with session_factory() as setup:
            consent = await ConsentService(setup).create_consent(
                customer, str(customer.id), ConsentInput(purpose="email")
            )
            await setup.commit()

        async with session_factory() as first, session_factory() as second:
            await ConsentService(first).get_consent(consent.id)
            await ConsentService(second).get_consent(consent.id)

            await ConsentService(first).update_status(customer, consent.id, "revoked")
            await first.commit()

            with pytest.raises(ConcurrentModificationError, match="modified concurrently"):
                await ConsentService(second).update_status(csr, consent.id, "granted")
            await second.rollback()

        async with session_factory() as check:
            stored = await ConsentService(check).get_consent(consent.id)
            assert stored.status == ConsentStatus.REVOKED
            assert stored.version == 2


class TestGuardianConsent:
    async def test_guardian_records_consent_for_minor(self, db: AsyncSession, users: dict[str, User]) -> None:
        guardian = users["guardian"]
        created = await ConsentService(db).create_guardian_consents(
            _actor(guardian),
            guardian.id,
            "minor_001",
            [ConsentInput(purpose="educational_content"), ConsentInput(purpose="marketing", status="denied")],
        )

        assert len(created) == 2
        for consent in created:
            assert consent.party_id == "minor_001"
            assert consent.guardian_id == guardian.id
            assert consent.consent_type == GUARDIAN_CONSENT_TYPE
            assert consent.record_source == ConsentSource.GUARDIAN
            assert consent.details["minorName"] == "Mia Minor"
            assert consent.details["relationship"] == "child"

    async def test_unrelated_minor_is_forbidden(self, db: AsyncSession, users: dict[str, User]) -> None:
        guardian = users["guardian"]
        with pytest.raises(ForbiddenError, match="no established relationship"):
            await ConsentService(db).create_guardian_consents(
                _actor(guardian), guardian.id, "minor_999", [ConsentInput(purpose="marketing")]
            )

    async def test_customer_cannot_act_as_another_guardian(
        self, db: AsyncSession, users: dict[str, User]
    ) -> None:
        with pytest.raises(ForbiddenError):
            await ConsentService(db).create_guardian_consents(
                _actor(users["customer"]),
                users["guardian"].id,
                "minor_001",
                [ConsentInput(purpose="marketing")],
            )

    async def test_admin_bypasses_relationship_check(self, db: AsyncSession, users: dict[str, User]) -> None:
        created = await ConsentService(db).create_guardian_consents(
            _actor(users["admin"]),
            users["guardian"].id,
            "minor_999",
            [ConsentInput(purpose="marketing")],
        )
        assert created[0].party_id == "minor_999"
        assert created[0].details["minorName"] is None

    async def test_guardian_may_change_minor_consent(self, db: AsyncSession, users: dict[str, User]) -> None:
        guardian = users["guardian"]
        svc = ConsentService(db)
        [consent] = await svc.create_guardian_consents(
            _actor(guardian), guardian.id, "minor_001", [ConsentInput(purpose="marketing")]
        )
        updated = await svc.update_status(_actor(guardian), consent.id, "revoked")
        assert updated.status == ConsentStatus.REVOKED


class TestMinorDependents:
    def test_relationship_is_normalised(self) -> None:
        guardian = User(
            email="g@example.com",
            name="G",
            minor_dependents=[{"id": 7, "name": "Sam", "relationship": MinorRelationship.WARD}],
        )
        assert guardian.minor_dependents == [{"id": "7", "name": "Sam", "relationship": "ward"}]
        assert guardian.find_minor("7") is not None

    def test_relationship_defaults_to_child(self) -> None:
        guardian = User(email="g@example.com", name="G", minor_dependents=[{"id": "m1", "name": "Sam"}])
        assert guardian.minor_dependents[0]["relationship"] == "child"

    def test_unknown_relationship_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="Invalid minor relationship"):
            User(
                email="g@example.com",
                name="G",
                minor_dependents=[{"id": "m1", "name": "Sam", "relationship": "neighbour"}],
            )

    def test_entry_without_id_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="needs an id"):
            User(email="g@example.com", name="G", minor_dependents=[{"name": "Sam"}])
