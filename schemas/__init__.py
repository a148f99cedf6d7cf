from schemas.underwriting import (
    ApprovalEntry,
    ApprovalInput,
    DecisionCreate,
    DecisionStats,
    DecisionStatus,
    DecisionUpdate,
    LegacyApproval,
)

__all__ = [
    "ApprovalEntry",
    "ApprovalInput",
    "DecisionCreate",
    "DecisionStats",
    "DecisionStatus",
    "DecisionUpdate",
    "LegacyApproval",
]
