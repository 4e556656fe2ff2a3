"""Tests for the IncidentManager — audited mutations, tag diffs and paged listing."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

import oopsreview.engine.incident_manager as im_mod
from oopsreview.engine.incident_manager import DuplicateTagError, IncidentManager, IncidentPage
from oopsreview.models.enums import IncidentStatus, Severity
from oopsreview.models.timeline_event import TimelineEvent

BASE_TIME = datetime(2026, 3, 1, 9, 0, 0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def manager(db_session_factory, clock):
    return IncidentManager(db_session_factory=db_session_factory, clock=clock)


async def _open_incident(manager, title="Checkout latency", severity="High", status="Open",
                         occurred_at=None, **kwargs):
    return await manager.create_incident(
        title=title,
        description="p99 above 2s",
        severity=severity,
        status=status,
        occurred_at=occurred_at or BASE_TIME,
        **kwargs,
    )


def _fields(incident, **changes):
    """Current editable fields of an incident, with overrides."""
    fields = {
        "title": incident["title"],
        "description": incident["description"],
        "status": incident["status"],
        "severity": incident["severity"],
        "root_cause": incident["root_cause"],
        "impact": incident["impact"],
    }
    fields.update(changes)
    return fields


async def _timeline(manager, incident_id):
    incident = await manager.get_incident(incident_id)
    return [e["description"] for e in incident["timeline"]]


async def _event_count(db_session_factory):
    async with db_session_factory() as session:
        return (await session.execute(select(func.count(TimelineEvent.id)))).scalar()


def _make_failing_manager(error):
    """IncidentManager whose session raises ``error`` on every query."""
    mock_session = MagicMock()
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=False)

    begin_ctx = MagicMock()
    begin_ctx.__aenter__ = AsyncMock(return_value=begin_ctx)
    begin_ctx.__aexit__ = AsyncMock(return_value=False)
    mock_session.begin = MagicMock(return_value=begin_ctx)
    mock_session.execute = AsyncMock(side_effect=error)

    return IncidentManager(db_session_factory=MagicMock(return_value=mock_session))


# ---------------------------------------------------------------------------
# create_incident
# ---------------------------------------------------------------------------

class TestCreateIncident:
    @pytest.mark.asyncio
    async def test_creates_with_opening_event(self, manager):
        incident = await _open_incident(manager, actor_name="Jordan Reyes")
        assert incident["id"] >= 1
        assert incident["status"] == "Open"
        assert incident["resolved_at"] is None
        assert [e["description"] for e in incident["timeline"]] == ["Incident created"]
        assert incident["timeline"][0]["author"] == "Jordan Reyes"

    @pytest.mark.asyncio
    async def test_settled_initial_status_is_stamped(self, manager, clock, responder):
        incident = await _open_incident(manager, status="Closed", actor_user_id=responder.id)
        assert incident["resolved_at"] == clock.now.isoformat()
        assert incident["resolved_by_user_id"] == responder.id
        assert incident["resolved_by"] == "Jordan Reyes"

    @pytest.mark.asyncio
    async def test_accepts_enum_members(self, manager):
        incident = await _open_incident(manager, severity=Severity.CRITICAL,
                                        status=IncidentStatus.INVESTIGATING)
        assert incident["severity"] == "Critical"
        assert incident["status"] == "Investigating"

    @pytest.mark.asyncio
    async def test_initial_tags_skip_unknown_ids(self, manager, seeded_tags):
        incident = await _open_incident(manager, tag_ids=[seeded_tags["network"], 999])
        assert [t["name"] for t in incident["tags"]] == ["network"]


# ---------------------------------------------------------------------------
# update_incident_info
# ---------------------------------------------------------------------------

class TestUpdateIncidentInfo:
    @pytest.mark.asyncio
    async def test_missing_incident_returns_false_and_writes_nothing(self, manager, db_session_factory):
        found = await manager.update_incident_info(
            404, "t", "d", "Open", "Low", None, None, actor_user_id=1,
        )
        assert found is False
        assert await _event_count(db_session_factory) == 0

    @pytest.mark.asyncio
    async def test_identical_update_writes_no_events(self, manager):
        incident = await _open_incident(manager)
        assert await manager.update_incident_info(incident["id"], **_fields(incident)) is True
        assert await _timeline(manager, incident["id"]) == ["Incident created"]

    @pytest.mark.asyncio
    async def test_one_event_per_changed_field(self, manager, clock):
        incident = await _open_incident(manager)
        clock.tick()

        found = await manager.update_incident_info(
            incident["id"],
            **_fields(incident, title="Checkout outage", severity="Critical", impact="EU customers"),
            actor_user_id=3,
            actor_name="Sam Patel",
        )

        assert found is True
        updated = await manager.get_incident(incident["id"])
        new_events = updated["timeline"][1:]
        assert [e["description"] for e in new_events] == [
            "Title: Checkout latency → Checkout outage",
            "Severity: High → Critical",
            "Impact updated",
        ]
        assert {e["occurred_at"] for e in new_events} == {clock.now.isoformat()}
        assert {e["author"] for e in new_events} == {"Sam Patel"}
        assert updated["title"] == "Checkout outage"
        assert updated["severity"] == "Critical"
        assert updated["impact"] == "EU customers"

    @pytest.mark.asyncio
    async def test_every_tracked_field_is_audited(self, manager):
        incident = await _open_incident(manager)
        await manager.update_incident_info(
            incident["id"],
            title="New title",
            description="New description",
            status="Investigating",
            severity="Low",
            root_cause="Expired certificate",
            impact="Partial",
        )
        assert await _timeline(manager, incident["id"]) == [
            "Incident created",
            "Title: Checkout latency → New title",
            "Description updated",
            "Status: Open → Investigating",
            "Severity: High → Low",
            "Root Cause updated",
            "Impact updated",
        ]

    @pytest.mark.asyncio
    async def test_clearing_an_optional_field_is_a_change(self, manager):
        incident = await _open_incident(manager, root_cause="Bad deploy")
        await manager.update_incident_info(incident["id"], **_fields(incident, root_cause=None))
        assert await _timeline(manager, incident["id"]) == ["Incident created", "Root Cause updated"]

    @pytest.mark.asyncio
    async def test_author_falls_back_to_user_id_then_none(self, manager):
        incident = await _open_incident(manager)
        await manager.update_incident_info(incident["id"], **_fields(incident, title="A"),
                                           actor_user_id=7)
        await manager.update_incident_info(incident["id"], **_fields(incident, title="B"))
        authors = [e["author"] for e in (await manager.get_incident(incident["id"]))["timeline"][1:]]
        assert authors == ["User 7", None]

    @pytest.mark.asyncio
    async def test_resolving_stamps_time_and_resolver(self, manager, clock, responder):
        incident = await _open_incident(manager)
        clock.tick(30)
        await manager.update_incident_info(incident["id"], **_fields(incident, status="Resolved"),
                                           actor_user_id=responder.id)
        resolved = await manager.get_incident(incident["id"])
        assert resolved["resolved_at"] == clock.now.isoformat()
        assert resolved["resolved_by_user_id"] == responder.id
        assert resolved["timeline"][-1]["description"] == "Status: Open → Resolved"

    @pytest.mark.asyncio
    async def test_moving_between_settled_statuses_keeps_first_resolution(self, manager, clock):
        incident = await _open_incident(manager)
        clock.tick()
        await manager.update_incident_info(incident["id"], **_fields(incident, status="Resolved"))
        first_resolution = clock.now.isoformat()

        clock.tick(60)
        await manager.update_incident_info(incident["id"], **_fields(incident, status="Closed"))
        clock.tick(60)
        await manager.update_incident_info(incident["id"], **_fields(incident, status="Resolved"))

        final = await manager.get_incident(incident["id"])
        assert final["resolved_at"] == first_resolution
        assert final["timeline"][-2]["description"] == "Status: Resolved → Closed"

    @pytest.mark.asyncio
    async def test_reopening_clears_resolution(self, manager, responder):
        incident = await _open_incident(manager, status="Resolved", actor_user_id=responder.id)
        await manager.update_incident_info(incident["id"], **_fields(incident, status="Investigating"))
        reopened = await manager.get_incident(incident["id"])
        assert reopened["resolved_at"] is None
        assert reopened["resolved_by_user_id"] is None

    @pytest.mark.asyncio
    async def test_failure_mid_write_leaves_incident_unchanged(self, manager, monkeypatch):
        incident = await _open_incident(manager)

        def _explode(**kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(im_mod, "TimelineEvent", _explode)
        with pytest.raises(RuntimeError):
            await manager.update_incident_info(incident["id"], **_fields(incident, title="Lost"))
        monkeypatch.undo()

        unchanged = await manager.get_incident(incident["id"])
        assert unchanged["title"] == "Checkout latency"
        assert [e["description"] for e in unchanged["timeline"]] == ["Incident created"]

    @pytest.mark.asyncio
    async def test_storage_fault_propagates(self):
        manager = _make_failing_manager(OperationalError("SELECT", {}, Exception("database is locked")))
        with pytest.raises(OperationalError):
            await manager.update_incident_info(1, "t", "d", "Open", "Low", None, None)


# ---------------------------------------------------------------------------
# update_incident_tags
# ---------------------------------------------------------------------------

class TestUpdateIncidentTags:
    @pytest.mark.asyncio
    async def test_missing_incident_returns_false(self, manager, seeded_tags, db_session_factory):
        assert await manager.update_incident_tags(404, [seeded_tags["network"]]) is False
        assert await _event_count(db_session_factory) == 0

    @pytest.mark.asyncio
    async def test_adding_tags_logs_one_event(self, manager, seeded_tags):
        incident = await _open_incident(manager)
        await manager.update_incident_tags(
            incident["id"], [seeded_tags["network"], seeded_tags["database"]], actor_name="Sam",
        )
        updated = await manager.get_incident(incident["id"])
        assert [t["name"] for t in updated["tags"]] == ["database", "network"]
        assert updated["timeline"][-1]["description"] == "Tags added: network, database"
        assert updated["timeline"][-1]["author"] == "Sam"

    @pytest.mark.asyncio
    async def test_replacing_tags_logs_added_and_removed_together(self, manager, seeded_tags):
        incident = await _open_incident(manager, tag_ids=[seeded_tags["database"]])
        await manager.update_incident_tags(incident["id"], [seeded_tags["payments"]])
        assert (await _timeline(manager, incident["id"]))[-1] == (
            "Tags added: payments; Tags removed: database"
        )

    @pytest.mark.asyncio
    async def test_removing_all_tags(self, manager, seeded_tags):
        incident = await _open_incident(manager, tag_ids=[seeded_tags["network"]])
        await manager.update_incident_tags(incident["id"], [])
        updated = await manager.get_incident(incident["id"])
        assert updated["tags"] == []
        assert updated["timeline"][-1]["description"] == "Tags removed: network"

    @pytest.mark.asyncio
    async def test_same_set_in_any_order_writes_nothing(self, manager, seeded_tags):
        ids = [seeded_tags["network"], seeded_tags["database"]]
        incident = await _open_incident(manager, tag_ids=ids)
        assert await manager.update_incident_tags(incident["id"], list(reversed(ids)) + ids) is True
        assert await _timeline(manager, incident["id"]) == ["Incident created"]

    @pytest.mark.asyncio
    async def test_unknown_tag_ids_are_ignored(self, manager, seeded_tags):
        incident = await _open_incident(manager)
        await manager.update_incident_tags(incident["id"], [999, seeded_tags["payments"]])
        updated = await manager.get_incident(incident["id"])
        assert [t["name"] for t in updated["tags"]] == ["payments"]
        assert updated["timeline"][-1]["description"] == "Tags added: payments"

    @pytest.mark.asyncio
    async def test_only_unknown_ids_is_a_no_op(self, manager):
        incident = await _open_incident(manager)
        assert await manager.update_incident_tags(incident["id"], [998, 999]) is True
        assert await _timeline(manager, incident["id"]) == ["Incident created"]


# ---------------------------------------------------------------------------
# get_incidents_paged
# ---------------------------------------------------------------------------

class TestGetIncidentsPaged:
    @pytest.mark.asyncio
    async def test_thirty_incidents_make_three_pages(self, manager):
        for i in range(30):
            await _open_incident(manager, title=f"Incident {i}",
                                 occurred_at=BASE_TIME + timedelta(hours=i))

        pages = [await manager.get_incidents_paged(page=p, page_size=10) for p in (1, 2, 3, 4)]

        assert all(p.total_count == 30 and p.total_pages == 3 for p in pages)
        assert [len(p.items) for p in pages] == [10, 10, 10, 0]
        seen = [item["id"] for p in pages for item in p.items]
        assert len(set(seen)) == 30
        # Same rank everywhere, so newest first
        assert pages[0].items[0]["title"] == "Incident 29"
        assert pages[2].items[-1]["title"] == "Incident 0"

    @pytest.mark.asyncio
    async def test_orders_by_severity_then_status_then_recency(self, manager):
        await _open_incident(manager, title="low-open", severity="Low")
        await _open_incident(manager, title="crit-investigating", severity="Critical", status="Investigating")
        await _open_incident(manager, title="crit-open-old", severity="Critical")
        await _open_incident(manager, title="crit-open-new", severity="Critical",
                             occurred_at=BASE_TIME + timedelta(days=1))
        await _open_incident(manager, title="medium-closed", severity="Medium", status="Closed")
        await _open_incident(manager, title="high-open", severity="High")

        page = await manager.get_incidents_paged(page=1, page_size=50)

        assert [i["title"] for i in page.items] == [
            "crit-open-new",
            "crit-open-old",
            "crit-investigating",
            "high-open",
            "medium-closed",
            "low-open",
        ]

    @pytest.mark.asyncio
    async def test_resolved_hidden_by_default_but_closed_shown(self, manager):
        await _open_incident(manager, title="open")
        await _open_incident(manager, title="resolved", status="Resolved")
        await _open_incident(manager, title="closed", status="Closed")

        default = await manager.get_incidents_paged()
        assert {i["title"] for i in default.items} == {"open", "closed"}
        assert default.total_count == 2

        everything = await manager.get_incidents_paged(show_resolved=True)
        assert everything.total_count == 3

    @pytest.mark.asyncio
    async def test_status_filter_overrides_hide_resolved(self, manager):
        await _open_incident(manager, title="open")
        await _open_incident(manager, title="resolved", status="Resolved")
        page = await manager.get_incidents_paged(status_filter="Resolved", show_resolved=False)
        assert [i["title"] for i in page.items] == ["resolved"]

    @pytest.mark.asyncio
    async def test_severity_filter(self, manager):
        await _open_incident(manager, title="a", severity="Low")
        await _open_incident(manager, title="b", severity="Critical")
        page = await manager.get_incidents_paged(severity_filter=Severity.LOW)
        assert [i["title"] for i in page.items] == ["a"]

    @pytest.mark.asyncio
    async def test_tag_filter_matches_any_tag(self, manager, seeded_tags):
        await _open_incident(manager, title="db", tag_ids=[seeded_tags["database"]])
        await _open_incident(manager, title="net", tag_ids=[seeded_tags["network"]])
        await _open_incident(manager, title="both",
                             tag_ids=[seeded_tags["database"], seeded_tags["network"]])
        await _open_incident(manager, title="untagged")

        page = await manager.get_incidents_paged(
            tag_ids=[seeded_tags["database"], seeded_tags["network"]]
        )
        assert sorted(i["title"] for i in page.items) == ["both", "db", "net"]
        assert page.total_count == 3

    @pytest.mark.asyncio
    async def test_count_reflects_filters_not_page(self, manager):
        for i in range(5):
            await _open_incident(manager, title=f"high {i}", severity="High")
        await _open_incident(manager, title="low", severity="Low")

        page = await manager.get_incidents_paged(page=2, page_size=2, severity_filter="High")
        assert page.total_count == 5
        assert page.total_pages == 3
        assert len(page.items) == 2

    @pytest.mark.asyncio
    async def test_empty_result(self, manager):
        page = await manager.get_incidents_paged()
        assert page == IncidentPage(items=[], total_count=0, page=1, page_size=20, total_pages=0)

    @pytest.mark.asyncio
    async def test_page_and_size_are_clamped(self, manager):
        await _open_incident(manager)
        page = await manager.get_incidents_paged(page=0, page_size=-5)
        assert page.page == 1
        assert page.page_size == 1
        assert len(page.items) == 1

    @pytest.mark.asyncio
    async def test_storage_fault_propagates(self):
        manager = _make_failing_manager(OperationalError("SELECT", {}, Exception("no such table")))
        with pytest.raises(OperationalError):
            await manager.get_incidents_paged()


# ---------------------------------------------------------------------------
# Timeline, tags, action items and templates
# ---------------------------------------------------------------------------

class TestTimelineAndCatalog:
    @pytest.mark.asyncio
    async def test_manual_timeline_event(self, manager):
        incident = await _open_incident(manager)
        event = await manager.add_timeline_event(
            incident["id"], "Rolled back release 42",
            occurred_at=BASE_TIME + timedelta(minutes=5), author="Sam",
        )
        assert event["description"] == "Rolled back release 42"
        assert await _timeline(manager, incident["id"]) == ["Incident created", "Rolled back release 42"]

    @pytest.mark.asyncio
    async def test_manual_event_for_missing_incident(self, manager):
        assert await manager.add_timeline_event(404, "nothing") is None

    @pytest.mark.asyncio
    async def test_timeline_is_chronological(self, manager):
        incident = await _open_incident(manager)
        await manager.add_timeline_event(incident["id"], "late", occurred_at=BASE_TIME + timedelta(hours=2))
        await manager.add_timeline_event(incident["id"], "early", occurred_at=BASE_TIME - timedelta(hours=1))
        assert await _timeline(manager, incident["id"]) == ["early", "Incident created", "late"]

    @pytest.mark.asyncio
    async def test_offset_timestamps_are_stored_as_utc(self, manager):
        incident = await _open_incident(manager)
        plus_five = timezone(timedelta(hours=5))
        event = await manager.add_timeline_event(
            incident["id"], "early", occurred_at=datetime(2026, 3, 1, 12, 0, tzinfo=plus_five),
        )
        assert event["occurred_at"] == "2026-03-01T07:00:00"

        loaded = await manager.get_incident(incident["id"])
        assert [(e["description"], e["occurred_at"]) for e in loaded["timeline"]] == [
            ("early", "2026-03-01T07:00:00"),
            ("Incident created", "2026-03-01T09:00:00"),
        ]

    @pytest.mark.asyncio
    async def test_aware_clock_and_dates_are_normalized(self, db_session_factory):
        aware = IncidentManager(
            db_session_factory=db_session_factory,
            clock=lambda: BASE_TIME.replace(tzinfo=timezone.utc),
        )
        incident = await aware.create_incident(
            title="Cert expiry", description="TLS handshake failures", severity="Critical",
            occurred_at=datetime(2026, 3, 1, 1, 30, tzinfo=timezone(timedelta(hours=-3))),
        )
        assert incident["occurred_at"] == "2026-03-01T04:30:00"
        assert incident["created_at"] == "2026-03-01T09:00:00"
        assert incident["timeline"][0]["occurred_at"] == "2026-03-01T09:00:00"

        item = await aware.add_action_item(
            incident["id"], "Automate renewal",
            due_date=datetime(2026, 3, 8, 0, 0, tzinfo=timezone(timedelta(hours=2))),
        )
        assert item["due_date"] == "2026-03-07T22:00:00"

    @pytest.mark.asyncio
    async def test_tags_sorted_and_unique(self, manager):
        await manager.create_tag("security", "#ff0000")
        await manager.create_tag("api")
        assert [t["name"] for t in await manager.get_all_tags()] == ["api", "security"]
        with pytest.raises(DuplicateTagError):
            await manager.create_tag("api")

    @pytest.mark.asyncio
    async def test_action_item_lifecycle(self, manager, clock):
        incident = await _open_incident(manager)
        item = await manager.add_action_item(incident["id"], "Add alerting", priority="High",
                                             assigned_to="sre-team")
        assert item["status"] == "Open"
        assert item["completed_at"] is None

        clock.tick(90)
        done = await manager.update_action_item_status(item["id"], "Completed")
        assert done["completed_at"] == clock.now.isoformat()

        reopened = await manager.update_action_item_status(item["id"], "In Progress")
        assert reopened["completed_at"] is None

        listed = await manager.list_action_items(incident_id=incident["id"])
        assert [a["title"] for a in listed] == ["Add alerting"]
        assert (await manager.get_incident(incident["id"]))["action_items"][0]["status"] == "In Progress"

    @pytest.mark.asyncio
    async def test_action_item_for_missing_incident(self, manager):
        assert await manager.add_action_item(404, "orphan") is None
        assert await manager.update_action_item_status(404, "Completed") is None

    @pytest.mark.asyncio
    async def test_action_items_soonest_due_first(self, manager):
        await manager.add_action_item(None, "someday")
        await manager.add_action_item(None, "later", due_date=BASE_TIME + timedelta(days=9))
        await manager.add_action_item(None, "soon", due_date=BASE_TIME + timedelta(days=1))
        assert [a["title"] for a in await manager.list_action_items()] == ["soon", "later", "someday"]
        assert await manager.list_action_items(status="Completed") == []

    @pytest.mark.asyncio
    async def test_templates_filtered_by_type(self, manager):
        await manager.create_template("Postmortem", "## Summary", "Incident")
        await manager.create_template("Follow-up", "- [ ] owner", "ActionItem")
        assert [t["name"] for t in await manager.list_templates()] == ["Follow-up", "Postmortem"]
        assert [t["name"] for t in await manager.list_templates("ActionItem")] == ["Follow-up"]


# ---------------------------------------------------------------------------
# Audit trail end to end
# ---------------------------------------------------------------------------

class TestAuditTrail:
    @pytest.mark.asyncio
    async def test_two_field_change_makes_two_identically_timed_events(self, manager, clock):
        incident = await _open_incident(manager, title="A", severity="Low")
        clock.tick()
        await manager.update_incident_info(incident["id"], **_fields(incident, title="B", severity="High"))

        events = (await manager.get_incident(incident["id"]))["timeline"][1:]
        assert [e["description"] for e in events] == ["Title: A → B", "Severity: Low → High"]
        assert events[0]["occurred_at"] == events[1]["occurred_at"]

    @pytest.mark.asyncio
    async def test_resolve_then_reopen(self, manager, responder):
        incident = await _open_incident(manager)
        await manager.update_incident_info(incident["id"], **_fields(incident, status="Resolved"),
                                           actor_user_id=responder.id)
        resolved = await manager.get_incident(incident["id"])
        assert resolved["resolved_at"] is not None
        assert resolved["resolved_by_user_id"] == responder.id

        await manager.update_incident_info(incident["id"], **_fields(incident, status="Open"),
                                           actor_user_id=responder.id)
        reopened = await manager.get_incident(incident["id"])
        assert reopened["resolved_at"] is None
        assert reopened["resolved_by_user_id"] is None

    @pytest.mark.asyncio
    async def test_add_two_remove_one_is_one_event(self, manager, seeded_tags):
        incident = await _open_incident(manager, tag_ids=[seeded_tags["database"]])
        await manager.update_incident_tags(
            incident["id"], [seeded_tags["network"], seeded_tags["payments"]],
        )
        events = (await manager.get_incident(incident["id"]))["timeline"][1:]
        assert len(events) == 1
        assert "Tags added: network, payments" in events[0]["description"]
        assert "Tags removed: database" in events[0]["description"]

    @pytest.mark.asyncio
    async def test_severity_rank_beats_insertion_order(self, manager):
        for severity in ("Low", "Critical", "High"):
            await _open_incident(manager, title=severity, severity=severity)
        page = await manager.get_incidents_paged()
        assert [i["severity"] for i in page.items] == ["Critical", "High", "Low"]
