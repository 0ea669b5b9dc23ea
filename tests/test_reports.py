from datetime import date

import pytest
from pydantic import ValidationError

from agency_portal.core.exceptions import NotFound, ValidationIncomplete
from agency_portal.models import ReportSectionType, ReportStatus, Role, RoadmapTimeframe
from agency_portal.schemas.report import (
    ReportCreate,
    ReportSectionCreate,
    ReportSectionUpdate,
    ReportUpdate,
    RoadmapItemCreate,
)
from agency_portal.services.report_service import ReportService
from agency_portal.services.roadmap_service import RoadmapService


async def _report(db, tenant_id: str, title: str, **fields):
    return await ReportService.create_report(db, tenant_id, ReportCreate(title=title, **fields), "boss")


# ── Schemas ──────────────────────────────────────────────────────────────────

def test_report_period_must_not_run_backwards():
    with pytest.raises(ValidationError):
        ReportCreate(title="May", period_start=date(2024, 5, 31), period_end=date(2024, 5, 1))
    with pytest.raises(ValidationError):
        ReportCreate(title="   ")


def test_roadmap_item_strips_blank_description():
    item = RoadmapItemCreate(title=" Launch ", description="  ", timeframe="blocker")

    assert item.title == "Launch"
    assert item.description is None
    assert item.timeframe == RoadmapTimeframe.blocker


# ── Reports ──────────────────────────────────────────────────────────────────

async def test_client_view_sees_published_visible_reports_only(db, seed):
    tenant = await seed.tenant("Acme")
    draft = await _report(db, tenant.id, "Draft")
    hidden = await _report(db, tenant.id, "Internal", status=ReportStatus.published, client_visible=False)
    shown = await _report(db, tenant.id, "May", status=ReportStatus.published)

    everything = await ReportService.list_reports(db, tenant.id)
    client_side = await ReportService.list_reports(db, tenant.id, client_view=True)

    assert [r.id for r in everything] == [shown.id, hidden.id, draft.id]
    assert [r.id for r in client_side] == [shown.id]
    for report in (draft, hidden):
        with pytest.raises(NotFound):
            await ReportService.get_report(db, tenant.id, report.id, client_view=True)
    assert (await ReportService.get_report(db, tenant.id, draft.id)).title == "Draft"


async def test_reports_are_tenant_scoped(db, seed):
    acme = await seed.tenant("Acme")
    other = await seed.tenant("Other")
    report = await _report(db, acme.id, "May", status=ReportStatus.published)

    assert await ReportService.list_reports(db, other.id) == []
    with pytest.raises(NotFound):
        await ReportService.get_report(db, other.id, report.id)
    with pytest.raises(NotFound):
        await ReportService.publish_report(db, other.id, report.id)


async def test_published_at_is_set_once(db, seed):
    tenant = await seed.tenant("Acme")
    report = await _report(db, tenant.id, "May")
    assert report.published_at is None

    published = await ReportService.publish_report(db, tenant.id, report.id)
    first_published_at = published.published_at
    assert published.status == ReportStatus.published.value
    assert first_published_at is not None

    reverted = await ReportService.update_report(
        db, tenant.id, report.id, ReportUpdate(status=ReportStatus.draft)
    )
    assert reverted.status == ReportStatus.draft.value
    assert reverted.published_at == first_published_at

    again = await ReportService.update_report(
        db, tenant.id, report.id, ReportUpdate(status=ReportStatus.published)
    )
    assert again.published_at == first_published_at


async def test_update_rejects_period_ending_before_stored_start(db, seed):
    tenant = await seed.tenant("Acme")
    report = await _report(db, tenant.id, "May", period_start=date(2024, 5, 1))

    with pytest.raises(ValidationIncomplete) as excinfo:
        await ReportService.update_report(
            db, tenant.id, report.id, ReportUpdate(period_end=date(2024, 4, 30))
        )

    assert excinfo.value.missing == ["period_end"]


async def test_sections_append_reorder_and_remove(db, seed):
    tenant = await seed.tenant("Acme")
    report = await _report(db, tenant.id, "May")

    await ReportService.add_section(
        db, tenant.id, report.id, ReportSectionCreate(section_type="summary", content="Strong month")
    )
    report = await ReportService.add_section(
        db, tenant.id, report.id, ReportSectionCreate(section_type="next_steps", content="Scale ads")
    )
    summary, next_steps = report.sections
    assert (summary.order_index, next_steps.order_index) == (0, 1)
    assert summary.section_type == ReportSectionType.summary.value

    report = await ReportService.update_section(
        db, tenant.id, report.id, summary.id, ReportSectionUpdate(order_index=5, title="Summary")
    )
    assert [s.section_type for s in report.sections] == ["next_steps", "summary"]
    assert report.sections[1].title == "Summary"

    report = await ReportService.delete_section(db, tenant.id, report.id, next_steps.id)
    assert [s.id for s in report.sections] == [summary.id]

    with pytest.raises(NotFound):
        await ReportService.delete_section(db, tenant.id, report.id, next_steps.id)


async def test_delete_report(db, seed):
    tenant = await seed.tenant("Acme")
    report = await _report(db, tenant.id, "May")

    await ReportService.delete_report(db, tenant.id, report.id)

    assert await ReportService.list_reports(db, tenant.id) == []


# ── Roadmap ──────────────────────────────────────────────────────────────────

async def test_roadmap_orders_by_timeframe_then_position(db, seed):
    tenant = await seed.tenant("Acme")
    for title, timeframe in [
        ("Unblock pixel access", "blocker"),
        ("Launch campaign", "this_week"),
        ("Draft creative", "next_week"),
        ("Review budget", "this_week"),
    ]:
        await RoadmapService.create_item(
            db, tenant.id, RoadmapItemCreate(title=title, timeframe=timeframe), "boss"
        )

    items = await RoadmapService.list_items(db, tenant.id)

    assert [(i.title, i.order_index) for i in items] == [
        ("Launch campaign", 0),
        ("Review budget", 1),
        ("Draft creative", 0),
        ("Unblock pixel access", 0),
    ]


async def test_roadmap_delete_is_tenant_scoped(db, seed):
    acme = await seed.tenant("Acme")
    other = await seed.tenant("Other")
    item = await RoadmapService.create_item(
        db, acme.id, RoadmapItemCreate(title="Launch", timeframe="this_week"), "boss"
    )

    with pytest.raises(NotFound):
        await RoadmapService.delete_item(db, other.id, item.id)

    await RoadmapService.delete_item(db, acme.id, item.id)
    assert await RoadmapService.list_items(db, acme.id) == []


# ── HTTP ─────────────────────────────────────────────────────────────────────

async def test_report_endpoints_by_role(client, seed, auth):
    tenant = await seed.tenant("Acme", members={"boss": Role.owner, "guest": Role.member})
    base = f"/workspaces/{tenant.id}/reports"

    created = await client.post(base, json={"title": "May report"}, headers=auth("boss"))
    assert created.status_code == 201
    report = created.json()
    assert report["status"] == "draft"
    assert report["created_by"] == "boss"

    section = await client.post(
        f"{base}/{report['id']}/sections",
        json={"section_type": "insights", "content": "CPL dropped 12%"},
        headers=auth("boss"),
    )
    assert section.status_code == 201

    refused = await client.post(base, json={"title": "Mine"}, headers=auth("guest"))
    assert refused.status_code == 303
    assert refused.headers["location"] == f"/workspaces/{tenant.id}/dashboard"

    assert (await client.get(base, headers=auth("guest"))).json() == []
    assert (await client.get(f"{base}/{report['id']}", headers=auth("guest"))).status_code == 404

    published = await client.post(f"{base}/{report['id']}/publish", headers=auth("boss"))
    assert published.json()["published_at"] is not None

    listing = await client.get(base, headers=auth("guest"))
    assert [r["title"] for r in listing.json()] == ["May report"]
    assert [s["content"] for s in listing.json()[0]["sections"]] == ["CPL dropped 12%"]

    deleted = await client.delete(f"{base}/{report['id']}", headers=auth("boss"))
    assert deleted.status_code == 204
    assert (await client.get(base, headers=auth("boss"))).json() == []


async def test_roadmap_endpoints_by_role(client, seed, auth):
    tenant = await seed.tenant("Acme", members={"boss": Role.owner, "guest": Role.member})
    base = f"/workspaces/{tenant.id}/roadmap"

    created = await client.post(
        base, json={"title": "Launch campaign", "timeframe": "this_week"}, headers=auth("boss")
    )
    assert created.status_code == 201
    assert created.json()["order_index"] == 0

    refused = await client.post(base, json={"title": "Mine", "timeframe": "blocker"}, headers=auth("guest"))
    assert refused.status_code == 303

    bad = await client.post(base, json={"title": "Later", "timeframe": "someday"}, headers=auth("boss"))
    assert bad.status_code == 422

    listing = await client.get(base, headers=auth("guest"))
    assert [i["title"] for i in listing.json()] == ["Launch campaign"]

    assert (await client.delete(f"{base}/{created.json()['id']}", headers=auth("guest"))).status_code == 303
    assert (await client.delete(f"{base}/{created.json()['id']}", headers=auth("boss"))).status_code == 204


async def test_dashboard_includes_enabled_roadmap_and_reports(client, seed, auth):
    tenant = await seed.tenant("Acme", members={"boss": Role.owner, "guest": Role.member})
    base = f"/workspaces/{tenant.id}"
    await client.post(
        f"{base}/roadmap", json={"title": "Launch campaign", "timeframe": "this_week"}, headers=auth("boss")
    )
    await client.post(f"{base}/reports", json={"title": "Draft notes"}, headers=auth("boss"))
    await client.post(
        f"{base}/reports", json={"title": "May report", "status": "published"}, headers=auth("boss")
    )

    before = await client.get(f"{base}/dashboard", headers=auth("guest"))
    assert before.json()["roadmap"] == []
    assert before.json()["reports"] == []

    configured = await client.put(
        f"{base}/portal-config",
        json={"dashboard_layout": {"sections": ["roadmap", "reports"]}},
        headers=auth("boss"),
    )
    assert configured.status_code == 200

    guest = (await client.get(f"{base}/dashboard", headers=auth("guest"))).json()
    owner = (await client.get(f"{base}/dashboard", headers=auth("boss"))).json()

    assert [i["title"] for i in guest["roadmap"]] == ["Launch campaign"]
    assert [r["title"] for r in guest["reports"]] == ["May report"]
    assert [r["title"] for r in owner["reports"]] == ["May report", "Draft notes"]
