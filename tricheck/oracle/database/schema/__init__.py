from .base import Base, metadata
from .settlement import SettlementJobRow, SettlementSnapshotRow, SettlementStepRow

__all__ = [
    "Base",
    "metadata",
    "SettlementJobRow",
    "SettlementStepRow",
    "SettlementSnapshotRow",
]
