from __future__ import annotations

from dataclasses import dataclass
import os


def _csv(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class RuntimeSettings:
    rpc_urls: tuple[str, ...]
    rpc_timeout_seconds: float
    rpc_max_attempts: int
    receipt_timeout_seconds: float
    chain_id: int
    cron_secret: str
    webhook_signing_key: str
    payout_private_key: str
    min_gas_balance_wei: int
    settlement_interval_seconds: int
    settlement_lease_seconds: int
    profile_api_url: str
    profile_api_key: str
    families_path: str | None

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            rpc_urls=_csv(os.getenv("RPC_URLS", "https://mainnet.base.org")),
            rpc_timeout_seconds=float(os.getenv("RPC_TIMEOUT_SECONDS", "10")),
            rpc_max_attempts=int(os.getenv("RPC_MAX_ATTEMPTS", "3")),
            receipt_timeout_seconds=float(os.getenv("RECEIPT_TIMEOUT_SECONDS", "120")),
            chain_id=int(os.getenv("CHAIN_ID", "8453")),
            cron_secret=os.getenv("CRON_SECRET", ""),
            webhook_signing_key=os.getenv("WEBHOOK_SIGNING_KEY", ""),
            payout_private_key=os.getenv("PAYOUT_PRIVATE_KEY", ""),
            min_gas_balance_wei=int(os.getenv("MIN_GAS_BALANCE_WEI", str(10**14))),
            settlement_interval_seconds=int(os.getenv("SETTLEMENT_INTERVAL_SECONDS", "900")),
            settlement_lease_seconds=int(os.getenv("SETTLEMENT_LEASE_SECONDS", "600")),
            profile_api_url=os.getenv(
                "PROFILE_API_URL",
                "https://api.neynar.com/v2/farcaster/user/bulk-by-address",
            ),
            profile_api_key=os.getenv("PROFILE_API_KEY", ""),
            families_path=os.getenv("LEADERBOARD_FAMILIES_PATH") or None,
        )


@dataclass(frozen=True)
class ContractAddresses:
    """Collaborator contracts. Stored lower-cased; compare lower-cased."""

    donut_multicall: str
    sprinkles_miner: str
    chat: str
    leaderboard_pool: str
    donut_token: str
    sprinkles_token: str
    usdc_token: str
    fee_referrer: str

    @classmethod
    def from_env(cls) -> "ContractAddresses":
        def _addr(name: str, default: str) -> str:
            return os.getenv(name, default).strip().lower()

        return cls(
            donut_multicall=_addr("DONUT_MULTICALL_ADDRESS", "0x3ec144554b484C6798A683E34c8e8E222293f323"),
            sprinkles_miner=_addr("SPRINKLES_MINER_ADDRESS", "0x924b2d4a89b84a37510950031dcdb6552dc97bcc"),
            chat=_addr("CHAT_CONTRACT_ADDRESS", "0x543832Fe5EFB216a79f64BE52A24547D6d875685"),
            leaderboard_pool=_addr("LEADERBOARD_CONTRACT_ADDRESS", "0x4681A6DeEe2D74f5DE48CEcd2A572979EA641586"),
            donut_token=_addr("DONUT_TOKEN_ADDRESS", "0xAE4a37d554C6D6F3E398546d8566B25052e0169C"),
            sprinkles_token=_addr("SPRINKLES_TOKEN_ADDRESS", "0xa890060BE1788a676dBC3894160f5dc5DeD2C98D"),
            usdc_token=_addr("USDC_TOKEN_ADDRESS", "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"),
            fee_referrer=_addr("FEE_REFERRER_ADDRESS", "0x30cb501B97c6b87B7b240755C730A9795dBB84f5"),
        )
