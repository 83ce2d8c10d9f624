from settlement_node.db.tables.claims import ClaimEventRow
from settlement_node.db.tables.scores import ScoreEntryRow
from settlement_node.db.tables.settlement import DistributionRow, PrizePayoutRow, SettlementAttemptRow

__all__ = [
    "ClaimEventRow",
    "ScoreEntryRow",
    "DistributionRow", "SettlementAttemptRow", "PrizePayoutRow",
]
