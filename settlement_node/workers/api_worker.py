from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Annotated, Any, Generator

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool
from web3 import Web3

from settlement_node.chain.reader import ChainReader
from settlement_node.chain.writer import ChainWriter
from settlement_node.config.families import ContractPool, FamilyRegistry, load_families
from settlement_node.config.runtime import ContractAddresses, RuntimeSettings
from settlement_node.db import (
    DBClaimRepository,
    DBDistributionRepository,
    DBPrizePayoutRepository,
    DBScoreRepository,
    DBSettlementAttemptRepository,
    create_session,
)
from settlement_node.errors import InvalidSubmission, TransientInfraFailure, UnknownFamily
from settlement_node.middleware.auth import configure_auth
from settlement_node.schemas import (
    ChatClaimRequest,
    FamilyInfo,
    MiningClaimRequest,
    ReviewRequest,
    SettleRequest,
    StartEntryRequest,
    SubmitScoreRequest,
)
from settlement_node.services.call_verifier import CallVerifier
from settlement_node.services.claims import ClaimService
from settlement_node.services.epoch_clock import EpochClock
from settlement_node.services.prizes import prize_structure
from settlement_node.services.profiles import ProfileLookup
from settlement_node.services.scores import ScoreService
from settlement_node.services.settlement import SettlementDispatcher
from settlement_node.services.standings import Standings
from settlement_node.services.webhooks import SIGNATURE_HEADER, process_webhook, verify_signature
from settlement_node.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

app = FastAPI(title="Settlement Node API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SETTINGS = RuntimeSettings.from_env()
ADDRESSES = ContractAddresses.from_env()
FAMILIES = load_families(SETTINGS.families_path, ADDRESSES)

configure_auth(app, SETTINGS.cron_secret)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

@app.exception_handler(TransientInfraFailure)
async def _transient_failure(request: Request, exc: TransientInfraFailure) -> JSONResponse:
    logger.error("Transient failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"accepted": False, "reason": "temporarily_unavailable"})


@app.exception_handler(UnknownFamily)
async def _unknown_family(request: Request, exc: UnknownFamily) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidSubmission)
async def _invalid_submission(request: Request, exc: InvalidSubmission) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"accepted": False, "reason": exc.reason})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_db_session() -> Generator[Session, Any, None]:
    with create_session() as session:
        yield session


def get_families() -> FamilyRegistry:
    return FAMILIES


@lru_cache(maxsize=1)
def get_chain_reader() -> ChainReader:
    return ChainReader.from_urls(
        SETTINGS.rpc_urls,
        timeout_seconds=SETTINGS.rpc_timeout_seconds,
        max_attempts=SETTINGS.rpc_max_attempts,
    )


def get_chain_writer(
    reader: Annotated[ChainReader, Depends(get_chain_reader)],
) -> ChainWriter | None:
    if not SETTINGS.payout_private_key:
        return None
    return ChainWriter(
        reader.primary,
        SETTINGS.payout_private_key,
        SETTINGS.chain_id,
        receipt_timeout=SETTINGS.receipt_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_profile_lookup() -> ProfileLookup:
    return ProfileLookup(SETTINGS.profile_api_url, SETTINGS.profile_api_key)


def get_distribution_repository(
    session_db: Annotated[Session, Depends(get_db_session)]
) -> DBDistributionRepository:
    return DBDistributionRepository(session_db)


def get_claim_service(
    session_db: Annotated[Session, Depends(get_db_session)],
    reader: Annotated[ChainReader, Depends(get_chain_reader)],
    families: Annotated[FamilyRegistry, Depends(get_families)],
) -> ClaimService:
    return ClaimService(
        verifier=CallVerifier(reader),
        repository=DBClaimRepository(session_db),
        chain=reader,
        addresses=ADDRESSES,
        families=families,
    )


def get_score_service(
    session_db: Annotated[Session, Depends(get_db_session)],
    families: Annotated[FamilyRegistry, Depends(get_families)],
) -> ScoreService:
    return ScoreService(DBScoreRepository(session_db), families, claims=DBClaimRepository(session_db))


def get_settlement_dispatcher(
    session_db: Annotated[Session, Depends(get_db_session)],
    reader: Annotated[ChainReader, Depends(get_chain_reader)],
    writer: Annotated[ChainWriter | None, Depends(get_chain_writer)],
    families: Annotated[FamilyRegistry, Depends(get_families)],
) -> SettlementDispatcher:
    return SettlementDispatcher(
        families=families,
        standings=Standings(DBScoreRepository(session_db), DBClaimRepository(session_db)),
        distributions=DBDistributionRepository(session_db),
        attempts=DBSettlementAttemptRepository(session_db),
        payouts=DBPrizePayoutRepository(session_db),
        chain=reader,
        writer=writer,
        min_gas_balance_wei=SETTINGS.min_gas_balance_wei,
        lease_seconds=SETTINGS.settlement_lease_seconds,
    )


# ---------------------------------------------------------------------------
# Node
# ---------------------------------------------------------------------------

@app.get("/healthz")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/info")
def get_node_info(
    families: Annotated[FamilyRegistry, Depends(get_families)],
) -> dict[str, Any]:
    infos = []
    for family in families:
        clock = EpochClock(family)
        current = clock.current()
        infos.append(
            FamilyInfo(
                name=family.name,
                scoring=family.scoring,
                current_epoch=current,
                epoch_ends_at=clock.end(current).isoformat(),
                percent_table=family.percent_table,
                pool_kind=family.pool.kind,
            ).model_dump(by_alias=True)
        )
    return {"chainId": SETTINGS.chain_id, "families": infos}


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------

@app.post("/claims/mining")
def claim_mining(
    body: MiningClaimRequest,
    claims: Annotated[ClaimService, Depends(get_claim_service)],
) -> dict[str, Any]:
    outcome = claims.record_mining(
        body.tx_hash,
        body.address,
        body.mine_type,
        amount=body.amount,
        image_url=body.image_url,
    )
    return outcome.to_payload()


@app.post("/claims/chat")
def claim_chat(
    body: ChatClaimRequest,
    claims: Annotated[ClaimService, Depends(get_claim_service)],
) -> dict[str, Any]:
    return claims.record_chat(body.tx_hash, body.address).to_payload()


@app.get("/chat/leaderboard")
def get_chat_leaderboard(
    claims: Annotated[ClaimService, Depends(get_claim_service)],
    epoch: Annotated[int | None, Query(ge=1)] = None,
    limit: Annotated[int, Query(ge=1, le=50)] = 10,
) -> dict[str, Any]:
    standings, stats = claims.chat_leaderboard(limit=limit, epoch=epoch)
    return {
        "epoch": epoch,
        "leaderboard": [standing.to_payload() for standing in standings],
        "stats": stats.to_payload(),
    }


@app.post("/webhooks/mining")
async def mining_webhook(
    request: Request,
    claims: Annotated[ClaimService, Depends(get_claim_service)],
) -> dict[str, Any]:
    body = await request.body()
    if not verify_signature(body, request.headers.get(SIGNATURE_HEADER), SETTINGS.webhook_signing_key):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")
    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body is not JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body must be an object")

    results = await run_in_threadpool(process_webhook, claims, payload)
    return {"processed": len(results), "results": results}


# ---------------------------------------------------------------------------
# Games
# ---------------------------------------------------------------------------

@app.post("/games/{family}/entries")
def start_entry(
    family: str,
    body: StartEntryRequest,
    scores: Annotated[ScoreService, Depends(get_score_service)],
) -> dict[str, Any]:
    entry = scores.start_entry(family, body.player_key, body.entry_id)
    return {"entryId": entry.entry_id, "week": entry.week}


@app.post("/games/{family}/scores")
def submit_score(
    family: str,
    body: SubmitScoreRequest,
    scores: Annotated[ScoreService, Depends(get_score_service)],
) -> dict[str, Any]:
    result = scores.submit(family, body.entry_id, body.player_key, body.score, body.metrics)
    return {
        "accepted": result["accepted"],
        "score": result["score"],
        "rank": result["rank"],
        "bestScore": result["best_score"],
        "isPersonalBest": result["is_personal_best"],
        "week": result["week"],
        "flagged": result["flagged"],
    }


def _prize_info(family) -> dict[str, Any]:
    pool = family.pool
    if isinstance(pool, ContractPool):
        return {
            "kind": "contract",
            "assets": [asset.name for asset in pool.assets],
            "places": [
                {"rank": rank, "percent": percent}
                for rank, percent in enumerate(family.percent_table, start=1)
            ],
        }
    return {
        "kind": "fixed",
        "asset": pool.asset.name,
        "total": pool.amount,
        "places": prize_structure(pool.amount, family.percent_table),
    }


@app.get("/leaderboards/{family}")
def get_leaderboard(
    family: str,
    scores: Annotated[ScoreService, Depends(get_score_service)],
    families: Annotated[FamilyRegistry, Depends(get_families)],
    profiles: Annotated[ProfileLookup, Depends(get_profile_lookup)],
    epoch: Annotated[int | None, Query(ge=1)] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    with_profiles: Annotated[bool, Query(alias="profiles")] = False,
) -> dict[str, Any]:
    week, ranked, stats = scores.leaderboard(family, epoch=epoch, limit=limit)
    fam = families.get(family)
    clock = EpochClock(fam)

    entries = [entry.to_payload() for entry in ranked]
    if with_profiles and entries:
        found = profiles.lookup([e["playerKey"] for e in entries if Web3.is_address(e["playerKey"])])
        for entry in entries:
            entry["profile"] = found.get(entry["playerKey"].lower())

    return {
        "family": fam.name,
        "epoch": week,
        "epochEndsAt": clock.end(week).isoformat(),
        "entries": entries,
        "stats": stats.to_payload(),
        "prizes": _prize_info(fam),
    }


@app.get("/distributions/{family}")
def list_distributions(
    family: str,
    families: Annotated[FamilyRegistry, Depends(get_families)],
    distributions: Annotated[DBDistributionRepository, Depends(get_distribution_repository)],
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> dict[str, Any]:
    fam = families.get(family)
    return {
        "family": fam.name,
        "distributions": [d.to_payload() for d in distributions.fetch_family(fam.name, limit=limit)],
    }


@app.get("/distributions/{family}/{epoch}")
def get_distribution(
    family: str,
    epoch: int,
    families: Annotated[FamilyRegistry, Depends(get_families)],
    distributions: Annotated[DBDistributionRepository, Depends(get_distribution_repository)],
) -> dict[str, Any]:
    fam = families.get(family)
    distribution = distributions.get(fam.name, epoch)
    if distribution is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No distribution for {fam.name} epoch {epoch}",
        )
    return distribution.to_payload()


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

@app.post("/admin/scores/{entry_id}/review")
def review_score(
    entry_id: str,
    body: ReviewRequest,
    scores: Annotated[ScoreService, Depends(get_score_service)],
) -> dict[str, Any]:
    entry = scores.review(entry_id, body.approved)
    return {"entryId": entry.entry_id, "reviewStatus": entry.review_status.value}


@app.api_route("/cron/settle/{family}", methods=["GET", "POST"])
def settle(
    family: str,
    dispatcher: Annotated[SettlementDispatcher, Depends(get_settlement_dispatcher)],
    body: SettleRequest | None = None,
    dry_run: Annotated[bool, Query(alias="dryRun")] = False,
    epoch: Annotated[int | None, Query(ge=1)] = None,
) -> dict[str, Any]:
    if body is not None:
        dry_run = body.dry_run or dry_run
        epoch = body.epoch or epoch
    result = dispatcher.dispatch(family, epoch=epoch, dry_run=dry_run)
    logger.info("Settlement %s epoch %d: %s", result.family, result.epoch, result.status)
    return result.to_payload()


def main() -> None:
    setup_logging()
    logger.info("settlement api worker bootstrap")
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
