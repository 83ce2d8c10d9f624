from .ledger import IdempotentLedger, LedgerResult
from .repositories import (
    DBClaimRepository, DBDistributionRepository, DBPrizePayoutRepository,
    DBScoreRepository, DBSettlementAttemptRepository,
)
from .session import engine, create_session, database_url
