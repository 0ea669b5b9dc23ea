"""
services/onboarding_rules.py
----------------------------
Pure onboarding logic: typed node config variants, authoring-time setup
validation, and the gate arithmetic (next required step, flow state).

Node config is stored as a JSON blob. It is validated into one of a closed
set of pydantic models, selected by the node's `type`, wherever it is read.
"""

import hashlib
from typing import Annotated, Iterable, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter

from agency_portal.models.onboarding import NodeType


# ── Config variants ───────────────────────────────────────────────────────────

class _NodeConfigBase(BaseModel):
    model_config = ConfigDict(extra="ignore")


class WelcomeConfig(_NodeConfigBase):
    type: Literal["welcome"] = "welcome"
    html_content: str = ""


class ScopeConfig(_NodeConfigBase):
    type: Literal["scope"] = "scope"
    html_content: str = ""


class TermsConfig(_NodeConfigBase):
    type: Literal["terms"] = "terms"
    terms_url: str = ""
    privacy_url: str = ""
    checkbox_text: str = ""
    terms_version: Optional[str] = None
    privacy_version: Optional[str] = None


class ContractConfig(_NodeConfigBase):
    type: Literal["contract"] = "contract"
    html_content: str = ""


class InvoiceConfig(_NodeConfigBase):
    type: Literal["invoice"] = "invoice"
    payment_url: str = Field(default="", validation_alias=AliasChoices("payment_url", "stripe_url"))
    amount_label: str = ""


class GenericConfig(_NodeConfigBase):
    type: Literal["generic"] = "generic"
    html_content: str = ""


NodeConfig = Annotated[
    Union[WelcomeConfig, ScopeConfig, TermsConfig, ContractConfig, InvoiceConfig, GenericConfig],
    Field(discriminator="type"),
]

_node_config_adapter = TypeAdapter(NodeConfig)


def parse_node_config(node_type: str, raw: Optional[dict]) -> NodeConfig:
    """Raises pydantic.ValidationError on a malformed payload."""
    payload = dict(raw or {})
    payload["type"] = NodeType(node_type).value
    return _node_config_adapter.validate_python(payload)


def dump_node_config(config: NodeConfig) -> dict:
    return config.model_dump(exclude={"type"})


# ── Setup validation ──────────────────────────────────────────────────────────

DEFAULT_CONTRACT_MARKERS = (
    "Service Provider",
    "This Service Agreement",
    "as outlined in the Scope of Services document",
    "Payment terms and amounts will be as specified",
)


def is_default_contract(html: str) -> bool:
    return all(marker in html for marker in DEFAULT_CONTRACT_MARKERS)


def _blank(value: Optional[str]) -> bool:
    return not value or not value.strip()


def setup_missing(node_type: str, title: Optional[str], raw_config: Optional[dict]) -> list[str]:
    """Fields an author still has to fill in before the node can be published."""
    missing = []
    if _blank(title):
        missing.append("title")

    config = parse_node_config(node_type, raw_config)
    if isinstance(config, (WelcomeConfig, ScopeConfig)):
        if _blank(config.html_content):
            missing.append("html_content")
    elif isinstance(config, TermsConfig):
        for field in ("terms_url", "privacy_url", "checkbox_text"):
            if _blank(getattr(config, field)):
                missing.append(field)
    elif isinstance(config, ContractConfig):
        if _blank(config.html_content) or is_default_contract(config.html_content):
            missing.append("html_content")
    elif isinstance(config, InvoiceConfig):
        if _blank(config.payment_url):
            missing.append("payment_url")
        if _blank(config.amount_label):
            missing.append("amount_label")
    return missing


def contract_digest(html: str) -> str:
    return hashlib.sha256(html.encode("utf-8")).hexdigest()


# ── Gate arithmetic ───────────────────────────────────────────────────────────

STATE_NOT_STARTED = "not_started"
STATE_IN_PROGRESS = "in_progress"
STATE_COMPLETE = "complete"


def next_required_node(nodes: Iterable, completed_node_ids: set[str]):
    """First node in order that is required and not completed, or None."""
    for node in sorted(nodes, key=lambda n: n.order_index):
        if node.required and node.id not in completed_node_ids:
            return node
    return None


def flow_state(nodes: Iterable, completed_node_ids: set[str]) -> tuple[str, Optional[str]]:
    """Returns (state, next_node_id)."""
    nodes = list(nodes)
    pending = next_required_node(nodes, completed_node_ids)
    if pending is None:
        return STATE_COMPLETE, None
    if any(n.id in completed_node_ids for n in nodes):
        return STATE_IN_PROGRESS, pending.id
    return STATE_NOT_STARTED, pending.id
