from settlement_node.schemas.payloads import (
    ChatClaimRequest,
    FamilyInfo,
    MiningClaimRequest,
    ReviewRequest,
    SettleRequest,
    StartEntryRequest,
    SubmitScoreRequest,
)

__all__ = [
    "MiningClaimRequest",
    "ChatClaimRequest",
    "StartEntryRequest",
    "SubmitScoreRequest",
    "ReviewRequest",
    "SettleRequest",
    "FamilyInfo",
]
