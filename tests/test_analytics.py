"""
Tests for ChangeAnalyticsService.

Populations are built with the `make_change` fixture so every change sits
directly in the status under test; the clock is pinned to NOW
(18 Oct 2026, 12:00 UTC).
"""
import random
from datetime import date, datetime, timedelta, timezone

import pytest

from model import ChangeRequestStatus, ChangeType, Priority, RiskLevel
from service import ChangeAnalyticsService, ValidationError, parse_affected_systems


S = ChangeRequestStatus


@pytest.fixture
def svc():
    return ChangeAnalyticsService()


def _at(year, month, day=15):
    return datetime(year, month, day, 10, 0, tzinfo=timezone.utc)


# ═════════════════════════════════════════════════════════════════════════
# SUCCESS RATE
# ═════════════════════════════════════════════════════════════════════════

class TestSuccessRate:
    def test_shares_sum_to_one_hundred(self, svc, make_change):
        population = (
            [make_change(S.COMPLETED) for _ in range(7)]
            + [make_change(S.FAILED) for _ in range(2)]
            + [make_change(S.ROLLED_BACK)]
            + [make_change(S.EXECUTING), make_change(S.DRAFT)]
        )
        result = svc.success_rate(population)
        assert result["total_changes"] == 10
        assert result["success_percentage"] == pytest.approx(70.0)
        assert result["failure_percentage"] == pytest.approx(20.0)
        assert result["rollback_percentage"] == pytest.approx(10.0)

    def test_empty_population(self, svc):
        result = svc.success_rate([])
        assert result["total_changes"] == 0
        assert result["success_percentage"] == 0.0
        assert result["failure_percentage"] == 0.0
        assert result["rollback_percentage"] == 0.0
        assert set(result["by_type"]) == {"standard", "normal", "emergency"}

    def test_breakdown_by_type(self, svc, make_change):
        population = [
            make_change(S.COMPLETED, ChangeType.STANDARD),
            make_change(S.COMPLETED, ChangeType.EMERGENCY),
            make_change(S.ROLLED_BACK, ChangeType.EMERGENCY),
        ]
        by_type = svc.success_rate(population)["by_type"]
        assert by_type["standard"]["success_percentage"] == 100.0
        assert by_type["emergency"] == {
            "total": 2, "successful": 1, "failed": 1, "success_percentage": 50.0,
        }
        assert by_type["normal"]["total"] == 0

    def test_created_date_range_filter(self, svc, make_change, now):
        old = make_change(S.FAILED, created=now - timedelta(days=400))
        recent = make_change(S.COMPLETED, created=now - timedelta(days=3))
        result = svc.success_rate([old, recent], start=(now - timedelta(days=30)).date())
        assert result["total_changes"] == 1
        assert result["success_percentage"] == 100.0


# ═════════════════════════════════════════════════════════════════════════
# MONTHLY TRENDS
# ═════════════════════════════════════════════════════════════════════════

class TestMonthlyTrends:
    def test_twelve_month_window_oldest_first(self, svc, now):
        rows = svc.monthly_trends([], 12, now)
        assert len(rows) == 12
        assert rows[0]["month_name"] == "Nov 2025"
        assert rows[-1]["month_name"] == "Oct 2026"
        assert all(r["total_changes"] == 0 and r["success_rate"] == 0.0 for r in rows)

    def test_bucketed_by_decision_month(self, svc, make_change, now):
        # created in August, decided in October
        late = make_change(S.COMPLETED, created=_at(2026, 8), decided=_at(2026, 10, 2))
        rows = {r["month_name"]: r for r in svc.monthly_trends([late], 12, now)}
        assert rows["Aug 2026"]["total_changes"] == 0
        assert rows["Oct 2026"]["completed"] == 1

    def test_counts_and_rates(self, svc, make_change, now):
        population = [
            make_change(S.COMPLETED, decided=_at(2026, 9)),
            make_change(S.COMPLETED, decided=_at(2026, 9)),
            make_change(S.FAILED, decided=_at(2026, 9)),
            make_change(S.ROLLED_BACK, decided=_at(2026, 9)),
            make_change(S.EXECUTING),
        ]
        september = svc.monthly_trends(population, 12, now)[-2]
        assert september["month_name"] == "Sep 2026"
        assert (september["completed"], september["failed"], september["rolled_back"]) == (2, 1, 1)
        assert september["total_changes"] == 4
        assert september["success_rate"] == pytest.approx(50.0)

    def test_average_completion_hours(self, svc, make_change, now):
        cr = make_change(S.COMPLETED, decided=_at(2026, 10, 3))
        cr.actual_start_date = cr.completed_date - timedelta(hours=3)
        october = svc.monthly_trends([cr], 12, now)[-1]
        assert october["average_completion_time_hours"] == pytest.approx(3.0)

    def test_outside_window_is_ignored(self, svc, make_change, now):
        ancient = make_change(S.COMPLETED, decided=_at(2025, 10))
        assert sum(r["total_changes"] for r in svc.monthly_trends([ancient], 12, now)) == 0

    def test_order_independent(self, svc, make_change, now):
        population = [
            make_change(S.COMPLETED, decided=_at(2026, m)) for m in range(1, 11)
        ] + [make_change(S.FAILED, decided=_at(2026, m)) for m in (2, 5, 5)]
        shuffled = list(population)
        random.Random(7).shuffle(shuffled)
        assert svc.monthly_trends(population, 12, now) == svc.monthly_trends(shuffled, 12, now)

    def test_window_crosses_year_boundary(self, svc):
        rows = svc.monthly_trends([], 3, datetime(2026, 2, 1, tzinfo=timezone.utc))
        assert [r["month_name"] for r in rows] == ["Dec 2025", "Jan 2026", "Feb 2026"]

    @pytest.mark.parametrize("months_back", [0, -1])
    def test_months_back_must_be_positive(self, svc, now, months_back):
        with pytest.raises(ValidationError) as exc:
            svc.monthly_trends([], months_back, now)
        assert "months_back" in exc.value.errors


# ═════════════════════════════════════════════════════════════════════════
# AFFECTED SYSTEMS
# ═════════════════════════════════════════════════════════════════════════

class TestParseAffectedSystems:
    def test_separators(self):
        assert parse_affected_systems("CRM, ERP;Billing|Warehouse\nLDAP") == {
            "crm": "CRM", "erp": "ERP", "billing": "Billing",
            "warehouse": "Warehouse", "ldap": "LDAP",
        }

    def test_case_insensitive_duplicates_collapse(self):
        assert parse_affected_systems("crm, CRM, Crm") == {"crm": "CRM"}

    def test_whitespace_is_normalised(self):
        assert parse_affected_systems("  Data   Warehouse ,, ") == {"data warehouse": "Data Warehouse"}

    @pytest.mark.parametrize("text", [None, "", " ; , "])
    def test_empty(self, text):
        assert parse_affected_systems(text) == {}


class TestTopAffectedSystems:
    @pytest.fixture
    def population(self, make_change):
        return [
            make_change(S.COMPLETED, systems="CRM, ERP"),
            make_change(S.FAILED, systems="crm; Billing"),
            make_change(S.DRAFT, systems="ERP"),
            make_change(S.ROLLED_BACK, systems="Billing|CRM"),
            make_change(S.COMPLETED, systems="Warehouse"),
        ]

    def test_ranked_with_alphabetical_ties(self, svc, population):
        rows = svc.top_affected_systems(population, top_count=3)
        assert [(r["system_name"], r["change_count"]) for r in rows] == [
            ("CRM", 3), ("Billing", 2), ("ERP", 2),
        ]
        assert rows[0]["success_rate"] == pytest.approx(33.33, abs=0.01)
        assert rows[1]["success_rate"] == 0.0
        assert rows[2]["success_rate"] == 100.0

    def test_ties_ignore_case_of_display_name(self, svc, make_change):
        rows = svc.top_affected_systems([make_change(systems="Nginx"), make_change(systems="apache")])
        assert [r["system_name"] for r in rows] == ["apache", "Nginx"]

    def test_outcome_counts(self, svc, population):
        crm = svc.top_affected_systems(population)[0]
        assert crm["successful_changes"] == 1
        assert crm["failed_changes"] == 2

    def test_last_change_date(self, svc, make_change, now):
        older = make_change(systems="CRM", created=now - timedelta(days=10))
        newer = make_change(systems="CRM", created=now - timedelta(days=2))
        (row,) = svc.top_affected_systems([newer, older])
        assert row["last_change_date"] == now - timedelta(days=2)

    def test_order_independent(self, svc, population):
        assert svc.top_affected_systems(population) == svc.top_affected_systems(list(reversed(population)))

    def test_top_count_must_be_positive(self, svc):
        with pytest.raises(ValidationError):
            svc.top_affected_systems([], top_count=0)


# ═════════════════════════════════════════════════════════════════════════
# METRICS
# ═════════════════════════════════════════════════════════════════════════

class TestMetrics:
    def test_rates_and_averages(self, svc, make_change, now):
        submitted = now - timedelta(days=5)
        c1 = make_change(S.COMPLETED, ChangeType.STANDARD,
                         submitted_date=submitted, approved_date=submitted + timedelta(hours=2))
        c1.actual_start_date = c1.completed_date - timedelta(hours=2)
        c2 = make_change(S.COMPLETED, ChangeType.NORMAL,
                         submitted_date=submitted, approved_date=submitted + timedelta(hours=4))
        c2.actual_start_date = c2.completed_date - timedelta(hours=4)
        c3 = make_change(S.FAILED, ChangeType.EMERGENCY, approved_date=submitted)
        c4 = make_change(S.DENIED, ChangeType.NORMAL)
        c5 = make_change(S.PENDING, ChangeType.STANDARD, priority=Priority.CRITICAL,
                         risk_level=RiskLevel.HIGH)

        m = svc.metrics([c1, c2, c3, c4, c5])
        assert m["total_changes"] == 5
        assert m["completed_changes"] == 2
        assert m["failed_changes"] == 1
        assert m["pending_approval_changes"] == 1
        assert m["success_rate"] == pytest.approx(66.67, abs=0.01)
        assert m["approval_rate"] == pytest.approx(75.0)
        assert m["average_approval_time_hours"] == pytest.approx(3.0)
        assert m["average_completion_time_hours"] == pytest.approx(3.0)
        assert m["by_type"] == {"standard": 2, "normal": 2, "emergency": 1}
        assert m["by_priority"]["critical"] == 1
        assert m["by_risk"]["high"] == 1

    def test_empty(self, svc):
        m = svc.metrics([])
        assert m["total_changes"] == 0
        assert m["success_rate"] == 0.0
        assert m["approval_rate"] == 0.0
        assert m["average_completion_time_hours"] == 0.0

    def test_date_range_is_inclusive(self, svc, make_change):
        inside = make_change(created=datetime(2026, 9, 30, 23, 0, tzinfo=timezone.utc))
        outside = make_change(created=datetime(2026, 10, 1, 0, 30, tzinfo=timezone.utc))
        m = svc.metrics([inside, outside], start=date(2026, 9, 1), end=date(2026, 9, 30))
        assert m["total_changes"] == 1
