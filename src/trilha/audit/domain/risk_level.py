from enum import Enum


class RiskLevel(str, Enum):
    """Coarse sensitivity band of an audited operation. Persisted values."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    @classmethod
    def highest(cls, *levels: "RiskLevel") -> "RiskLevel":
        return max(levels, key=lambda level: level.rank)


_RANKS = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}
