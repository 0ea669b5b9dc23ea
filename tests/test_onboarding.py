from types import SimpleNamespace

import pytest

from agency_portal.core.exceptions import InvalidTransition, ValidationIncomplete
from agency_portal.models import FlowStatus, NodeType, PaymentStatus, ProgressStatus, Role
from agency_portal.schemas.onboarding import EdgeCreate, NodeCreate, NodeUpdate
from agency_portal.services import onboarding_rules as rules
from agency_portal.services.onboarding_service import OnboardingService
from agency_portal.services.onboarding_templates import (
    build_template_nodes,
    default_contract_html,
    list_templates,
)

CONTRACT_HTML = "<p>Acme will deliver three landing pages in Q3.</p>"

TERMS_CONFIG = {
    "terms_url": "https://acme.test/terms",
    "privacy_url": "https://acme.test/privacy",
    "checkbox_text": "I agree",
    "terms_version": "2024-05",
    "privacy_version": "2024-02",
}

INVOICE_CONFIG = {"payment_url": "https://pay.test/inv_1", "amount_label": "$2,500"}


def _node(node_id: str, order_index: int, required: bool = True):
    return SimpleNamespace(id=node_id, order_index=order_index, required=required)


async def _publish(db, tenant_id: str, steps: list[NodeCreate]):
    flow = await OnboardingService.create_flow(db, tenant_id)
    for step in steps:
        flow = await OnboardingService.add_node(db, tenant_id, flow.id, step)
    return await OnboardingService.publish_flow(db, tenant_id, flow.id)


def _generic(title: str, required: bool = True) -> NodeCreate:
    return NodeCreate(
        type=NodeType.generic,
        title=title,
        required=required,
        config={"html_content": f"<p>{title}</p>"},
    )


# ── Rules ────────────────────────────────────────────────────────────────────

def test_flow_state_skips_optional_steps():
    nodes = [_node("a", 0), _node("b", 1, required=False), _node("c", 2)]

    assert rules.flow_state(nodes, set()) == (rules.STATE_NOT_STARTED, "a")
    assert rules.flow_state(nodes, {"a"}) == (rules.STATE_IN_PROGRESS, "c")
    assert rules.flow_state(nodes, {"a", "c"}) == (rules.STATE_COMPLETE, None)


def test_flow_state_counts_optional_completion_as_started():
    nodes = [_node("a", 0), _node("b", 1, required=False)]

    assert rules.flow_state(nodes, {"b"}) == (rules.STATE_IN_PROGRESS, "a")


def test_setup_missing_per_type():
    assert rules.setup_missing("welcome", "", {}) == ["title", "html_content"]
    assert rules.setup_missing("terms", "Terms", {"terms_url": "x"}) == ["privacy_url", "checkbox_text"]
    assert rules.setup_missing("invoice", "Pay", {"amount_label": "$1"}) == ["payment_url"]
    assert rules.setup_missing("generic", "Intro", {}) == []


def test_default_contract_counts_as_not_set_up():
    assert rules.setup_missing("contract", "Agreement", {"html_content": default_contract_html("Acme")}) == [
        "html_content"
    ]
    assert rules.setup_missing("contract", "Agreement", {"html_content": CONTRACT_HTML}) == []


def test_invoice_accepts_legacy_payment_link_key():
    config = rules.parse_node_config("invoice", {"stripe_url": "https://pay.test/x", "amount_label": "$1"})

    assert config.payment_url == "https://pay.test/x"


def test_templates_are_data():
    by_name = {t["name"]: t["node_types"] for t in list_templates()}

    assert by_name["full"] == ["welcome", "scope", "terms", "contract", "invoice"]
    assert by_name["simple"] == ["welcome", "terms", "contract"]
    assert by_name["empty"] == []
    assert build_template_nodes("nope") is None


# ── Authoring ────────────────────────────────────────────────────────────────

async def test_full_template_links_nodes_linearly(db, seed):
    tenant = await seed.tenant("Acme")

    flow = await OnboardingService.create_flow(db, tenant.id, template="full", org_name="Acme")

    assert [n.type for n in flow.nodes] == ["welcome", "scope", "terms", "contract", "invoice"]
    pairs = {(e.source_node_id, e.target_node_id) for e in flow.edges}
    assert pairs == {(a.id, b.id) for a, b in zip(flow.nodes, flow.nodes[1:])}


async def test_new_draft_replaces_existing_draft(db, seed):
    tenant = await seed.tenant("Acme")
    first = await OnboardingService.create_flow(db, tenant.id, template="simple")

    second = await OnboardingService.create_flow(db, tenant.id, template="empty")

    flows = await OnboardingService.list_flows(db, tenant.id)
    assert [f.id for f in flows] == [second.id]
    assert first.id != second.id


async def test_unknown_template_is_rejected(db, seed):
    tenant = await seed.tenant("Acme")

    with pytest.raises(ValidationIncomplete):
        await OnboardingService.create_flow(db, tenant.id, template="deluxe")


async def test_publish_requires_nodes_and_setup(db, seed):
    tenant = await seed.tenant("Acme")
    empty = await OnboardingService.create_flow(db, tenant.id)
    with pytest.raises(ValidationIncomplete) as excinfo:
        await OnboardingService.publish_flow(db, tenant.id, empty.id)
    assert excinfo.value.missing == ["nodes"]

    flow = await OnboardingService.create_flow(db, tenant.id, template="simple", org_name="Acme")
    with pytest.raises(ValidationIncomplete) as excinfo:
        await OnboardingService.publish_flow(db, tenant.id, flow.id)
    assert "Agreement: html_content" in excinfo.value.missing
    assert "Terms & Privacy: terms_url" in excinfo.value.missing


async def test_publish_archives_previous_and_bumps_version(db, seed):
    tenant = await seed.tenant("Acme")
    first = await _publish(db, tenant.id, [_generic("Intro")])
    second = await _publish(db, tenant.id, [_generic("Intro v2")])

    assert (first.version, second.version) == (1, 2)
    refreshed = await OnboardingService.get_flow(db, tenant.id, first.id, refresh=True)
    assert refreshed.status == FlowStatus.archived.value
    assert (await OnboardingService.get_active_flow(db, tenant.id)).id == second.id

    with pytest.raises(InvalidTransition):
        await OnboardingService.add_node(db, tenant.id, second.id, _generic("Late"))


async def test_node_editing_on_draft(db, seed):
    tenant = await seed.tenant("Acme")
    flow = await OnboardingService.create_flow(db, tenant.id, template="simple")
    welcome, terms, contract = flow.nodes

    flow = await OnboardingService.update_node(
        db, tenant.id, flow.id, welcome.id, NodeUpdate(config={"html_content": "<h1>Hi</h1>"})
    )
    assert rules.setup_missing("welcome", "Welcome", flow.nodes[0].config) == []

    flow = await OnboardingService.reorder_nodes(db, tenant.id, flow.id, [contract.id, welcome.id, terms.id])
    assert [n.id for n in flow.nodes] == [contract.id, welcome.id, terms.id]

    flow = await OnboardingService.delete_node(db, tenant.id, flow.id, terms.id)
    assert [n.id for n in flow.nodes] == [contract.id, welcome.id]
    assert all(terms.id not in (e.source_node_id, e.target_node_id) for e in flow.edges)

    with pytest.raises(ValidationIncomplete):
        await OnboardingService.reorder_nodes(db, tenant.id, flow.id, [welcome.id])


async def test_malformed_config_is_rejected(db, seed):
    tenant = await seed.tenant("Acme")
    flow = await OnboardingService.create_flow(db, tenant.id)

    with pytest.raises(ValidationIncomplete) as excinfo:
        await OnboardingService.add_node(
            db, tenant.id, flow.id, NodeCreate(type=NodeType.welcome, title="Hi", config={"html_content": 5})
        )

    assert excinfo.value.missing == ["html_content"]


async def test_edges_must_join_two_distinct_flow_nodes(db, seed):
    tenant = await seed.tenant("Acme")
    flow = await OnboardingService.create_flow(db, tenant.id, template="simple")
    first, second, _ = flow.nodes

    with pytest.raises(ValidationIncomplete):
        await OnboardingService.add_edge(
            db, tenant.id, flow.id,
            EdgeCreate(source_node_id=first.id, target_node_id=first.id),
        )

    flow = await OnboardingService.add_edge(
        db, tenant.id, flow.id,
        EdgeCreate(source_node_id=second.id, target_node_id=first.id, condition={"on": "back"}),
    )
    added = next(e for e in flow.edges if e.source_node_id == second.id and e.target_node_id == first.id)

    flow = await OnboardingService.delete_edge(db, tenant.id, flow.id, added.id)
    assert added.id not in {e.id for e in flow.edges}


# ── Gate ─────────────────────────────────────────────────────────────────────

async def test_gate_follows_required_steps(db, seed):
    tenant = await seed.tenant("Acme", onboarding_enabled=True)
    flow = await _publish(db, tenant.id, [_generic("A"), _generic("B", required=False), _generic("C")])
    a, b, c = flow.nodes

    gate = await OnboardingService.evaluate_gate(db, tenant.id, "guest", Role.member)
    assert (gate.state, gate.next_node_id, gate.blocked) == ("not_started", a.id, True)

    await OnboardingService.complete_node(db, tenant.id, "guest", a.id)
    gate = await OnboardingService.evaluate_gate(db, tenant.id, "guest", Role.member)
    assert (gate.state, gate.next_node_id, gate.blocked) == ("in_progress", c.id, True)

    await OnboardingService.complete_node(db, tenant.id, "guest", c.id)
    gate = await OnboardingService.evaluate_gate(db, tenant.id, "guest", Role.member)
    assert (gate.state, gate.next_node_id, gate.blocked) == ("complete", None, False)


@pytest.mark.parametrize("role", [Role.owner, Role.admin])
async def test_gate_never_blocks_agency_roles(db, seed, role):
    tenant = await seed.tenant("Acme", onboarding_enabled=True)
    await _publish(db, tenant.id, [_generic("A")])

    gate = await OnboardingService.evaluate_gate(db, tenant.id, "staff", role)

    assert gate.active
    assert not gate.blocked


async def test_gate_inactive_without_enablement_or_published_flow(db, seed):
    disabled = await seed.tenant("Disabled")
    enabled_no_flow = await seed.tenant("NoFlow", onboarding_enabled=True)
    await _publish(db, disabled.id, [_generic("A")])

    for tenant in (disabled, enabled_no_flow):
        gate = await OnboardingService.evaluate_gate(db, tenant.id, "guest", Role.member)
        assert (gate.active, gate.state, gate.blocked) == (False, "complete", False)


# ── Typed step completion ────────────────────────────────────────────────────

async def test_terms_need_both_acceptances(db, seed):
    tenant = await seed.tenant("Acme", onboarding_enabled=True)
    flow = await _publish(db, tenant.id, [NodeCreate(type=NodeType.terms, title="Terms", config=TERMS_CONFIG)])
    node = flow.nodes[0]

    progress = await OnboardingService.accept_terms(db, tenant.id, "guest", node.id, True, False)
    assert progress.status == ProgressStatus.pending.value
    with pytest.raises(ValidationIncomplete) as excinfo:
        await OnboardingService.complete_node(db, tenant.id, "guest", node.id)
    assert excinfo.value.missing == ["privacy_accepted_at"]

    progress = await OnboardingService.accept_terms(db, tenant.id, "guest", node.id, False, True)
    assert progress.status == ProgressStatus.completed.value
    assert progress.completed_at is not None


async def test_contract_signature_is_immutable_and_completes_step(db, seed):
    tenant = await seed.tenant("Acme", onboarding_enabled=True)
    flow = await _publish(
        db,
        tenant.id,
        [
            NodeCreate(type=NodeType.terms, title="Terms", config=TERMS_CONFIG),
            NodeCreate(type=NodeType.contract, title="Agreement", config={"html_content": CONTRACT_HTML}),
        ],
    )
    contract = flow.nodes[1]

    with pytest.raises(ValidationIncomplete) as excinfo:
        await OnboardingService.complete_node(db, tenant.id, "guest", contract.id)
    assert excinfo.value.missing == ["signature"]

    signature = await OnboardingService.sign_contract(
        db, tenant.id, "guest", contract.id, "Jane Client", "https://files.test/sig.png", ip="10.0.0.1"
    )
    assert signature.contract_sha256 == rules.contract_digest(CONTRACT_HTML)
    assert (signature.terms_version, signature.privacy_version) == ("2024-05", "2024-02")

    again = await OnboardingService.sign_contract(
        db, tenant.id, "guest", contract.id, "Someone Else", "https://files.test/other.png"
    )
    assert again.id == signature.id
    assert again.signed_name == "Jane Client"

    assert contract.id in await OnboardingService.completed_node_ids(db, tenant.id, "guest")


async def test_invoice_completes_only_on_recorded_payment(db, seed):
    tenant = await seed.tenant("Acme", onboarding_enabled=True)
    flow = await _publish(db, tenant.id, [NodeCreate(type=NodeType.invoice, title="Invoice", config=INVOICE_CONFIG)])
    invoice = flow.nodes[0]

    progress = await OnboardingService.affirm_payment(db, tenant.id, "guest", invoice.id)
    assert progress.status == ProgressStatus.pending.value
    assert "payment_affirmed_at" in progress.details

    with pytest.raises(ValidationIncomplete) as excinfo:
        await OnboardingService.complete_node(db, tenant.id, "guest", invoice.id)
    assert excinfo.value.missing == ["payment_status"]

    await OnboardingService.record_payment_status(db, tenant.id, invoice.id, PaymentStatus.paid)
    progress = await OnboardingService.complete_node(db, tenant.id, "guest", invoice.id)
    assert progress.status == ProgressStatus.completed.value


async def test_payment_status_applies_to_invoices_only(db, seed):
    tenant = await seed.tenant("Acme", onboarding_enabled=True)
    flow = await _publish(db, tenant.id, [_generic("Intro")])

    with pytest.raises(InvalidTransition):
        await OnboardingService.record_payment_status(db, tenant.id, flow.nodes[0].id, PaymentStatus.paid)


async def test_member_status_lists_every_member(db, seed):
    tenant = await seed.tenant(
        "Acme",
        onboarding_enabled=True,
        members={"boss": Role.owner, "ann": Role.member, "bob": Role.member},
    )
    flow = await _publish(db, tenant.id, [_generic("A")])
    await OnboardingService.complete_node(db, tenant.id, "ann", flow.nodes[0].id)

    _, statuses = await OnboardingService.member_status(db, tenant.id)

    by_user = {s["user_id"]: s["state"] for s in statuses}
    assert by_user == {"ann": "complete", "bob": "not_started"}


# ── HTTP ─────────────────────────────────────────────────────────────────────

async def test_gated_member_is_sent_to_onboarding(client, seed, auth, session_factory):
    tenant = await seed.tenant(
        "Acme", onboarding_enabled=True, members={"boss": Role.owner, "guest": Role.member}
    )
    async with session_factory() as session:
        flow = await _publish(session, tenant.id, [_generic("Welcome aboard")])
        await session.commit()

    blocked = await client.get(f"/workspaces/{tenant.id}/dashboard", headers=auth("guest"))
    assert blocked.status_code == 303
    assert blocked.headers["location"] == f"/workspaces/{tenant.id}/onboarding"

    assert (await client.get(f"/workspaces/{tenant.id}/dashboard", headers=auth("boss"))).status_code == 200

    state = await client.get(f"/workspaces/{tenant.id}/onboarding", headers=auth("guest"))
    assert state.json()["next_node_id"] == flow.nodes[0].id

    done = await client.post(
        f"/workspaces/{tenant.id}/onboarding/nodes/{flow.nodes[0].id}/complete", headers=auth("guest")
    )
    assert done.json()["status"] == "completed"
    assert (await client.get(f"/workspaces/{tenant.id}/dashboard", headers=auth("guest"))).status_code == 200


async def test_gate_covers_every_workspace_page(client, seed, auth, session_factory):
    tenant = await seed.tenant(
        "Acme", onboarding_enabled=True, members={"boss": Role.owner, "guest": Role.member}
    )
    async with session_factory() as session:
        await _publish(session, tenant.id, [_generic("Welcome aboard")])
        await session.commit()
    base = f"/workspaces/{tenant.id}"
    headers = auth("guest")

    gated = [
        await client.get(f"{base}/dashboard", headers=headers),
        await client.get(f"{base}/deliverables", headers=headers),
        await client.post(f"{base}/messages", json={"body": "Hello?"}, headers=headers),
        await client.get(f"{base}/messages", headers=headers),
        await client.get(f"{base}/metrics/latest", headers=headers),
        await client.get(f"{base}/portal-config", headers=headers),
        await client.get(f"{base}/reports", headers=headers),
        await client.get(f"{base}/roadmap", headers=headers),
    ]
    for response in gated:
        assert response.status_code == 303
        assert response.headers["location"] == f"{base}/onboarding"

    assert (await client.get(f"{base}/context", headers=headers)).status_code == 200
    assert (await client.get(f"{base}/onboarding", headers=headers)).status_code == 200
    assert (await client.get(f"{base}/messages/unread", headers=auth("boss"))).json() == 0


async def test_authoring_endpoints(client, seed, auth):
    tenant = await seed.tenant("Acme", members={"boss": Role.owner, "guest": Role.member})
    base = f"/workspaces/{tenant.id}/onboarding"

    created = await client.post(f"{base}/flows", json={"template": "full"}, headers=auth("boss"))
    assert created.status_code == 201
    flow = created.json()
    assert len(flow["nodes"]) == 5
    assert all(node["setup_missing"] for node in flow["nodes"])

    rejected = await client.post(f"{base}/flows/{flow['id']}/publish", headers=auth("boss"))
    assert rejected.status_code == 422
    assert rejected.json()["missing"]

    templates = await client.get(f"{base}/templates", headers=auth("guest"))
    assert templates.status_code == 303
