"""
services/onboarding_templates.py
--------------------------------
Starting points for new onboarding flows.

Templates are plain data: adding one means adding an entry to TEMPLATES,
the engine never branches on a template name. Nodes created from a
template are linked linearly by edges in list order.
"""

from datetime import date
from typing import Optional

DEFAULT_CONTRACT_HTML = """\
<div class="contract">
  <h1>SERVICE AGREEMENT</h1>
  <p><strong>Effective Date:</strong> {effective_date}</p>
  <h2>1. Parties</h2>
  <p>This Service Agreement ("Agreement") is entered into between <strong>{org}</strong>
  ("Service Provider") and <strong>{client}</strong> ("Client").</p>
  <h2>2. Services</h2>
  <p>Service Provider agrees to provide the services as outlined in the Scope of Services document.</p>
  <h2>3. Compensation</h2>
  <p>Payment terms and amounts will be as specified in the accompanying invoice.</p>
  <h2>4. Term</h2>
  <p>This Agreement begins on the Effective Date and continues until the Services are complete
  or either party terminates with written notice.</p>
</div>
"""


def default_contract_html(org_name: Optional[str] = None, client_name: Optional[str] = None) -> str:
    return DEFAULT_CONTRACT_HTML.format(
        effective_date=date.today().strftime("%B %d, %Y"),
        org=org_name or "Service Provider",
        client=client_name or "[Client Name]",
    )


_WELCOME = {"type": "welcome", "title": "Welcome", "config": {"html_content": ""}}
_SCOPE = {"type": "scope", "title": "Scope of Services", "config": {"html_content": ""}}
_TERMS = {
    "type": "terms",
    "title": "Terms & Privacy",
    "config": {"terms_url": "", "privacy_url": "", "checkbox_text": ""},
}
_CONTRACT = {"type": "contract", "title": "Agreement", "config": {"html_content": None}}
_INVOICE = {"type": "invoice", "title": "Invoice", "config": {"payment_url": "", "amount_label": ""}}

TEMPLATES: dict[str, dict] = {
    "full": {
        "label": "Full onboarding",
        "nodes": [_WELCOME, _SCOPE, _TERMS, _CONTRACT, _INVOICE],
    },
    "simple": {
        "label": "Simplified onboarding",
        "nodes": [_WELCOME, _TERMS, _CONTRACT],
    },
    "empty": {
        "label": "Start from scratch",
        "nodes": [],
    },
}


def list_templates() -> list[dict]:
    return [
        {"name": name, "label": t["label"], "node_types": [n["type"] for n in t["nodes"]]}
        for name, t in TEMPLATES.items()
    ]


def build_template_nodes(template_name: str, org_name: Optional[str] = None) -> Optional[list[dict]]:
    """
    Node specs for a template, or None when the name is unknown. A contract
    node with no content gets the default agreement text, which still
    counts as not set up until the author edits it.
    """
    template = TEMPLATES.get(template_name)
    if template is None:
        return None
    nodes = []
    for index, spec in enumerate(template["nodes"]):
        config = dict(spec["config"])
        if spec["type"] == "contract" and not config.get("html_content"):
            config["html_content"] = default_contract_html(org_name)
        nodes.append(
            {
                "type": spec["type"],
                "title": spec["title"],
                "required": True,
                "config": config,
                "order_index": index,
            }
        )
    return nodes
