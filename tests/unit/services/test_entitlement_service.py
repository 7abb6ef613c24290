"""Unit tests for the entitlement projection."""

from datetime import datetime, timezone

from bananatalk.repositories.usage_counter_repository import CounterState
from bananatalk.services.entitlement_service import EntitlementService
from bananatalk.services.quota_gate import QuotaGate
from bananatalk.tiers import CATALOG_VERSION, UNLIMITED, ActionClass


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestEntitlementProjection:
    """Tests for EntitlementService.project."""

    async def test_reflects_live_usage(self, quota_gate, make_subject):
        """Three admitted messages show up as usage 3 of cap 10."""
        subject = make_subject("visitor")
        now = utc(2024, 1, 1, 9)
        for _ in range(3):
            await quota_gate.check(subject, ActionClass.MESSAGES, now)

        limits = await EntitlementService(quota_gate).project(subject, now)

        assert limits.usage["messages"] == 3
        assert limits.caps["messages"] == 10
        assert limits.remaining["messages"] == 7
        assert limits.reset_at == utc(2024, 1, 2)
        assert limits.hourly_reset_at == utc(2024, 1, 1, 10)
        assert limits.catalog_version == CATALOG_VERSION

    async def test_projection_never_consumes(self, quota_gate, counter_store, make_subject):
        subject = make_subject("visitor")
        service = EntitlementService(quota_gate)

        for _ in range(5):
            await service.project(subject, utc(2024, 1, 1))

        assert counter_store.rows == {}

    async def test_previous_window_reads_as_zero(self, quota_gate, counter_store, make_subject):
        subject = make_subject("regular")
        counter_store.rows[(subject.user_id, "messages")] = CounterState(40, utc(2024, 1, 1))

        limits = await EntitlementService(quota_gate).project(subject, utc(2024, 1, 2, 8))

        assert limits.usage["messages"] == 0
        assert limits.remaining["messages"] == 100

    async def test_vip_unlimited_has_null_remaining(self, quota_gate, make_subject):
        subject = make_subject("vip", vip_expires_at=utc(2024, 6, 1))

        limits = await EntitlementService(quota_gate).project(subject, utc(2024, 5, 1))

        assert limits.is_vip is True
        assert limits.vip_expires_at == utc(2024, 6, 1)
        assert limits.upgrade_available is False
        assert limits.caps["messages"] == UNLIMITED
        assert limits.remaining["messages"] is None
        assert limits.caps["aiConversation"] == 200
        assert limits.remaining["aiConversation"] == 200

    async def test_lapsed_vip_projects_regular(self, quota_gate, make_subject):
        subject = make_subject("vip", vip_expires_at=utc(2024, 4, 1))

        limits = await EntitlementService(quota_gate).project(subject, utc(2024, 5, 1))

        assert limits.tier == "regular"
        assert limits.is_vip is False
        assert limits.vip_expires_at is None
        assert limits.entitlements["maxVideoUploadMB"] == 50

    async def test_windows_are_listed_per_class(self, quota_gate, make_subject):
        limits = await EntitlementService(quota_gate).project(make_subject(), utc(2024, 1, 1))

        assert limits.windows["messages"] == "daily"
        assert limits.windows["tts"] == "hourly"
        assert limits.windows["vocabulary"] == "lifetime"

    async def test_reset_at_uses_gate_timezone(self, counter_store, clock, make_subject):
        gate = QuotaGate(counter_store, clock, tz_name="Asia/Seoul")

        limits = await EntitlementService(gate).project(make_subject(), utc(2024, 1, 1, 16))

        assert limits.reset_at == utc(2024, 1, 2, 15)

    async def test_serializes_with_camel_case_keys(self, quota_gate, make_subject):
        limits = await EntitlementService(quota_gate).project(make_subject(), utc(2024, 1, 1))

        data = limits.model_dump(by_alias=True, mode="json")

        assert {"isVip", "upgradeAvailable", "resetAt", "hourlyResetAt", "catalogVersion"} <= set(data)
        assert "voiceMessages" in data["caps"]
