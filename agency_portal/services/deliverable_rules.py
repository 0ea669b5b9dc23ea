"""
services/deliverable_rules.py
-----------------------------
Pure deliverable lifecycle rules: the transition table, completion and
review predicates, progress arithmetic and the client visibility projection.
Nothing here touches the database.
"""

from typing import Iterable, Optional

from agency_portal.models.deliverable import DeliverableStatus as S

TERMINAL_STATES = frozenset({S.complete})

VALID_TRANSITIONS: dict[S, frozenset[S]] = {
    S.draft: frozenset({S.planned, S.in_progress, S.blocked}),
    S.planned: frozenset({S.in_progress, S.blocked}),
    S.in_progress: frozenset({S.in_review, S.blocked, S.planned}),
    S.in_review: frozenset({S.approved, S.revisions_requested, S.complete, S.blocked}),
    S.approved: frozenset({S.complete, S.in_review, S.blocked}),
    S.revisions_requested: frozenset({S.in_progress, S.blocked}),
    S.blocked: frozenset({S.planned, S.in_progress}),
    S.complete: frozenset(),
}

STATUS_LABELS = {
    S.draft: "Draft",
    S.planned: "Planned",
    S.in_progress: "In Progress",
    S.in_review: "In Review",
    S.approved: "Approved",
    S.revisions_requested: "Revisions Requested",
    S.complete: "Complete",
    S.blocked: "Blocked",
}


def allowed_transitions(current: str) -> list[S]:
    return sorted(VALID_TRANSITIONS[S(current)], key=lambda s: list(S).index(s))


def can_transition(current: str, target: str) -> bool:
    return S(target) in VALID_TRANSITIONS[S(current)]


def transition_error(current: str, target: str) -> str:
    current, target = S(current), S(target)
    if current in TERMINAL_STATES:
        return f"{STATUS_LABELS[current]} deliverables cannot change status"
    allowed = ", ".join(STATUS_LABELS[s] for s in allowed_transitions(current))
    return (
        f"Cannot move from {STATUS_LABELS[current]} to {STATUS_LABELS[target]}. "
        f"Allowed: {allowed}"
    )


def compute_progress(done_flags: Iterable[bool]) -> int:
    flags = list(done_flags)
    if not flags:
        return 0
    return round(sum(1 for f in flags if f) / len(flags) * 100)


def missing_required_proofs(required_types: Iterable[str], assets) -> list[str]:
    """Required proof types with no matching required-proof asset, in configured order."""
    attached = {a.proof_type for a in assets if a.is_required_proof and a.proof_type}
    missing = []
    for proof_type in required_types or []:
        if proof_type not in attached and proof_type not in missing:
            missing.append(proof_type)
    return missing


def completion_missing(deliverable, threshold: int) -> list[str]:
    """
    What still blocks a move into complete. Proof types are listed by name;
    an under-threshold checklist is reported as "checklist". Empty means
    the predicate passes.
    """
    missing = missing_required_proofs(deliverable.required_proof_types, deliverable.assets)
    items = deliverable.checklist_items
    if items and compute_progress(i.is_done for i in items) < threshold:
        missing.append("checklist")
    return missing


def review_missing(deliverable, threshold: int) -> list[str]:
    missing = []
    if deliverable.progress < threshold:
        missing.append("progress")
    if not any(a.is_required_proof for a in deliverable.assets):
        missing.append("required_proof")
    return missing


def is_client_visible(client_visible: Optional[bool], status: Optional[str] = None) -> bool:
    """Unset counts as visible. Drafts are never shown to clients."""
    if client_visible is False:
        return False
    return status != S.draft.value
