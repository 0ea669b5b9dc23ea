"""
models/__init__.py
------------------
Re-export all models so create_tables.py (and Alembic's env.py) can import
Base and discover all tables via a single import:

    from agency_portal.models import Base
"""

from agency_portal.db.base import Base
from agency_portal.models.tenant import (
    AgencyClient,
    Membership,
    PortalConfig,
    Role,
    Tenant,
    TenantKind,
    UserProfile,
)
from agency_portal.models.deliverable import (
    ChecklistItem,
    Deliverable,
    DeliverableActivity,
    DeliverableAsset,
    DeliverableComment,
    DeliverableStatus,
    DeliverableUpdate,
    ProofType,
)
from agency_portal.models.onboarding import (
    ContractSignature,
    FlowStatus,
    NodeType,
    OnboardingEdge,
    OnboardingFlow,
    OnboardingNode,
    OnboardingProgress,
    PaymentStatus,
    ProgressStatus,
)
from agency_portal.models.message import (
    Conversation,
    ConversationRead,
    Message,
    MessageReadReceipt,
)
from agency_portal.models.metric import MetricSnapshot
from agency_portal.models.report import Report, ReportSection, ReportSectionType, ReportStatus
from agency_portal.models.roadmap import RoadmapItem, RoadmapTimeframe

__all__ = [
    "Base",
    "Tenant", "TenantKind", "Membership", "Role", "AgencyClient",
    "UserProfile", "PortalConfig",
    "Deliverable", "DeliverableStatus", "ChecklistItem", "DeliverableAsset",
    "DeliverableComment", "DeliverableUpdate", "DeliverableActivity", "ProofType",
    "OnboardingFlow", "OnboardingNode", "OnboardingEdge", "OnboardingProgress",
    "ContractSignature", "FlowStatus", "NodeType", "ProgressStatus", "PaymentStatus",
    "Conversation", "Message", "MessageReadReceipt", "ConversationRead",
    "MetricSnapshot",
    "Report", "ReportSection", "ReportSectionType", "ReportStatus",
    "RoadmapItem", "RoadmapTimeframe",
]
