"""Default pipeline stage definitions per pipeline type."""

from __future__ import annotations

from stage_engine.db.enums import PipelineType

# Default stage colors (matching typical CRM conventions)
DEFAULT_COLORS = {
    "new": "#94A3B8",  # Slate
    "contacted": "#3B82F6",  # Blue
    "qualified": "#F59E0B",  # Amber
    "proposal": "#8B5CF6",  # Violet
    "negotiation": "#F97316",  # Orange
    "won": "#10B981",  # Green (success)
    "lost": "#6B7280",  # Gray
    "pending": "#94A3B8",  # Slate
    "interested": "#06B6D4",  # Cyan
    "nda_signed": "#6366F1",  # Indigo
    "rejected": "#EF4444",  # Red
    "draft": "#94A3B8",  # Slate
    "sent": "#3B82F6",  # Blue
    "accepted": "#22C55E",  # Green
    "due_diligence": "#A855F7",  # Purple
    "signing": "#0D9488",  # Teal
    "closed": "#16A34A",  # Green
}

DEFAULT_PROBABILITY = {
    "new": 10,
    "contacted": 30,
    "qualified": 60,
    "proposal": 70,
    "negotiation": 80,
    "won": 100,
    "lost": 0,
    "pending": 5,
    "interested": 40,
    "nda_signed": 60,
    "rejected": 0,
    "draft": 10,
    "sent": 50,
    "accepted": 100,
    "due_diligence": 50,
    "signing": 90,
    "closed": 100,
}

# (label, required) per stage slug
DEFAULT_CHECKLISTS: dict[str, list[tuple[str, bool]]] = {
    "new": [("Validate contact", True), ("Identify company", True)],
    "contacted": [("First call made", True), ("Schedule follow-up", True)],
    "qualified": [
        ("Confirm budget", True),
        ("Identify decision maker", True),
        ("Prepare proposal", True),
    ],
    "won": [("Close deal", True), ("Schedule kick-off", True)],
    "lost": [("Record reason", True), ("Schedule re-contact", False)],
    "interested": [("Send NDA", True)],
    "due_diligence": [("Data room opened", True), ("Q&A closed", False)],
}

DEFAULT_REQUIRED_FIELDS: dict[str, list[str]] = {
    "contacted": ["email"],
    "proposal": ["amount"],
    "sent": ["amount"],
}

DEFAULT_STAGE_ORDER: dict[PipelineType, list[str]] = {
    PipelineType.LEAD: ["new", "contacted", "qualified", "won", "lost"],
    PipelineType.DEAL: ["new", "qualified", "proposal", "negotiation", "won", "lost"],
    PipelineType.TARGET_COMPANY: ["pending", "contacted", "interested", "nda_signed", "rejected"],
    PipelineType.PROPOSAL: ["draft", "sent", "negotiation", "accepted", "rejected"],
    PipelineType.TRANSACTION: ["new", "due_diligence", "negotiation", "signing", "closed", "lost"],
}

# Canonical subsets for bulk visibility presets (lowercased stage names)
VISIBILITY_PRESETS: dict[PipelineType, list[str]] = {
    PipelineType.DEAL: ["new", "qualified", "proposal", "won"],
    PipelineType.LEAD: ["new", "contacted", "qualified"],
}


def _label(slug: str) -> str:
    return slug.replace("_", " ").title().replace("Nda", "NDA")


def get_default_stage_defs(pipeline_type: PipelineType | str) -> list[dict[str, object]]:
    """Generate default stage definitions (name, color, probability, checklist...)."""
    pipeline_type = PipelineType(pipeline_type)
    stages: list[dict[str, object]] = []
    for order, slug in enumerate(DEFAULT_STAGE_ORDER[pipeline_type]):
        stages.append(
            {
                "name": _label(slug),
                "color": DEFAULT_COLORS.get(slug, "#6B7280"),
                "order_index": order,
                "probability": DEFAULT_PROBABILITY.get(slug),
                "required_fields": list(DEFAULT_REQUIRED_FIELDS.get(slug, [])),
                "checklist": [
                    {"label": label, "required": required}
                    for label, required in DEFAULT_CHECKLISTS.get(slug, [])
                ],
            }
        )
    return stages
