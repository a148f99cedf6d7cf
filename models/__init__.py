from models.underwriting import UnderwritingDecision

__all__ = [
    "UnderwritingDecision",
]
