"""
Tests for the counselor directory.

Test Coverage:
1. Eligibility filter (approval, online, availability, capacity, region)
2. Broadcast ordering (home region, rating, load)
3. Registration: apply, reapply, approve, reject
4. Presence: set_online
5. Capacity fields are never written by directory operations
"""
import pytest

from counsel_engine.models.db_models import CounselorDB, ApplicationStatus
from counsel_engine.services.counsel import CounselorDirectory


# =============================================================================
# TEST: ELIGIBILITY
# =============================================================================

class TestEligibility:
    """Who a request in a region is broadcast to."""

    def test_approved_online_counselor_in_region_is_eligible(self, db, make_counselor):
        cid = make_counselor(home_region="CES")

        eligible = CounselorDirectory(db).find_eligible("CES")

        assert [c.id for c in eligible] == [cid]

    @pytest.mark.parametrize("overrides", [
        {"is_online": False},
        {"is_available": False},
        {"application_status": ApplicationStatus.PENDING},
        {"application_status": ApplicationStatus.REJECTED},
        {"active_requests": 5, "max_active_requests": 5},
        {"active_requests": 0, "max_active_requests": 0},
        {"home_region": "JGL"},
    ])
    def test_ineligible_counselors_are_filtered(self, db, make_counselor, overrides):
        make_counselor(**overrides)

        assert CounselorDirectory(db).find_eligible("CES") == []

    def test_unset_availability_counts_as_available(self, db, make_counselor, reload):
        cid = make_counselor(is_available=None)

        assert reload(CounselorDB, cid).is_available is None
        assert [c.id for c in CounselorDirectory(db).find_eligible("CES")] == [cid]

    def test_served_region_outside_home_is_eligible(self, db, make_counselor):
        cid = make_counselor(home_region="EES", serving_regions=["EES", "CES"])

        assert [c.id for c in CounselorDirectory(db).find_eligible("CES")] == [cid]
        assert [c.id for c in CounselorDirectory(db).find_eligible("EES")] == [cid]
        assert CounselorDirectory(db).find_eligible("WES") == []

    def test_ordering_home_region_then_rating_then_load(self, db, make_counselor):
        away_star = make_counselor(counselor_id="away-star", home_region="EES", serving_regions=["CES"], rating=5.0)
        home_low = make_counselor(counselor_id="home-low", rating=3.0)
        home_busy = make_counselor(counselor_id="home-busy", rating=4.5, active_requests=2)
        home_idle = make_counselor(counselor_id="home-idle", rating=4.5, active_requests=0)

        ordered = [c.id for c in CounselorDirectory(db).find_eligible("CES")]

        assert ordered == [home_idle, home_busy, home_low, away_star]


# =============================================================================
# TEST: REGISTRATION
# =============================================================================

class TestRegistration:
    """Applications and admin review."""

    def _apply(self, directory, user_id="applicant-1", **overrides):
        kwargs = dict(
            user_id=user_id,
            name="Akol Deng",
            email="akol@example.org",
            phone="+211900000001",
            national_id_number="SS-123",
            home_region="CES",
        )
        kwargs.update(overrides)
        return directory.apply(**kwargs)

    def test_apply_creates_pending_offline_record(self, db):
        directory = CounselorDirectory(db)

        success, _ = self._apply(directory)

        assert success is True
        counselor = directory.get("applicant-1")
        assert counselor.application_status == ApplicationStatus.PENDING
        assert counselor.is_online is False
        assert counselor.is_available is False
        assert counselor.serving_regions == ["CES"]
        assert counselor.active_requests == 0
        assert counselor.max_active_requests == 5
        assert directory.application_status("applicant-1") == {
            "exists": True, "status": "pending", "rejection_reason": None,
        }

    def test_unknown_region_rejected(self, db):
        success, message = self._apply(CounselorDirectory(db), home_region="XXX")

        assert success is False
        assert "XXX" in message
        assert db.query(CounselorDB).count() == 0

    def test_pending_application_cannot_be_resubmitted(self, db):
        directory = CounselorDirectory(db)
        self._apply(directory)

        success, message = self._apply(directory)

        assert success is False
        assert "pending" in message

    def test_rejected_applicant_may_reapply(self, db):
        directory = CounselorDirectory(db)
        self._apply(directory)
        assert directory.reject("applicant-1", rejected_by="admin-1", reason="Blurry ID") is True
        assert directory.application_status("applicant-1")["rejection_reason"] == "Blurry ID"

        success, _ = self._apply(directory)

        assert success is True
        assert directory.get("applicant-1").application_status == ApplicationStatus.PENDING
        assert directory.get("applicant-1").rejection_reason is None

    def test_approve(self, db):
        directory = CounselorDirectory(db)
        self._apply(directory)

        assert directory.approve("applicant-1", approved_by="admin-1") is True

        counselor = directory.get("applicant-1")
        assert counselor.application_status == ApplicationStatus.APPROVED
        assert counselor.is_verified is True
        assert counselor.approved_by == "admin-1"
        assert directory.is_approved("applicant-1") is True

        success, message = self._apply(directory)
        assert success is False
        assert "approved" in message

    def test_approve_unknown_counselor(self, db):
        assert CounselorDirectory(db).approve("ghost", approved_by="admin-1") is False

    def test_pending_applications_oldest_first(self, db):
        directory = CounselorDirectory(db)
        self._apply(directory, user_id="first")
        self._apply(directory, user_id="second")

        assert [c.id for c in directory.pending_applications()] == ["first", "second"]


# =============================================================================
# TEST: PRESENCE
# =============================================================================

class TestPresence:

    def test_set_online_flips_online_and_available(self, db, make_counselor):
        cid = make_counselor(is_online=False, is_available=False)
        directory = CounselorDirectory(db)

        assert directory.set_online(cid, True) is True

        counselor = directory.get(cid)
        assert counselor.is_online is True
        assert counselor.is_available is True
        assert [c.id for c in directory.online_counselors()] == [cid]

        assert directory.set_online(cid, False) is True
        assert directory.find_eligible("CES") == []

    def test_set_online_adds_new_home_region_to_coverage(self, db, make_counselor):
        cid = make_counselor(home_region="CES")
        directory = CounselorDirectory(db)

        directory.set_online(cid, True, home_region="LKS")

        counselor = directory.get(cid)
        assert counselor.home_region == "LKS"
        assert set(counselor.serving_regions) == {"CES", "LKS"}

    def test_unknown_user_cannot_go_online(self, db):
        assert CounselorDirectory(db).set_online("nobody", True) is False

    def test_presence_never_touches_capacity(self, db, make_counselor):
        cid = make_counselor(active_requests=3)
        directory = CounselorDirectory(db)

        directory.set_online(cid, False)
        directory.set_online(cid, True)

        assert directory.get(cid).active_requests == 3

    def test_stats(self, db, make_counselor):
        make_counselor(home_region="CES")
        make_counselor(home_region="CES", is_online=False)
        make_counselor(home_region="JGL")

        stats = CounselorDirectory(db).stats()

        assert stats == {"total": 3, "online": 2, "by_region": {"CES": 2, "JGL": 1}}
