"""HTTP surface of the settlement API with services replaced by fakes."""
from __future__ import annotations

import hashlib
import hmac
import json
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

import settlement_node.workers.api_worker as api
from settlement_node.config.families import ARCADE_ANCHOR
from settlement_node.entities.claim import ClaimOutcome
from settlement_node.entities.distribution import Distribution, DistributionStatus, SettlementResult, SettlementStatus
from settlement_node.errors import TransientInfraFailure
from settlement_node.services.ranking import ChatStanding, ChatStats
from settlement_node.services.scores import ScoreService

TX = "0x" + "ab" * 32
ALICE = "0x00000000000000000000000000000000000000a1"
ADMIN = {"Authorization": "Bearer test-cron-secret"}


class InMemoryScores:
    def __init__(self):
        self.entries = {}

    def create(self, entry):
        if entry.entry_id in self.entries:
            return False, self.entries[entry.entry_id]
        self.entries[entry.entry_id] = entry
        return True, entry

    def get(self, entry_id):
        return self.entries.get(entry_id)

    def submit_score(self, entry_id, player_key, score, metrics, verdict):
        entry = self.entries[entry_id]
        if entry.score:
            return False
        entry.score = score
        entry.flagged = verdict.flagged
        return True

    def set_review(self, entry_id, status):
        entry = self.entries.get(entry_id)
        if entry is not None:
            entry.review_status = status
        return entry

    def fetch_week(self, family, week):
        return [e for e in self.entries.values() if e.family == family and e.week == week and e.score > 0]


class TestApiWorker(unittest.TestCase):
    def setUp(self):
        self.claims = MagicMock()
        self.dispatcher = MagicMock()
        self.distributions = MagicMock()
        self.profiles = MagicMock()
        self.profiles.lookup.return_value = {ALICE: {"fid": 7, "username": "alice", "displayName": "A", "pfpUrl": None}}
        self.scores = ScoreService(
            InMemoryScores(), api.FAMILIES, now=lambda: ARCADE_ANCHOR + timedelta(days=8)
        )

        api.app.dependency_overrides[api.get_claim_service] = lambda: self.claims
        api.app.dependency_overrides[api.get_settlement_dispatcher] = lambda: self.dispatcher
        api.app.dependency_overrides[api.get_distribution_repository] = lambda: self.distributions
        api.app.dependency_overrides[api.get_profile_lookup] = lambda: self.profiles
        api.app.dependency_overrides[api.get_score_service] = lambda: self.scores
        self.client = TestClient(api.app)

    def tearDown(self):
        api.app.dependency_overrides.clear()

    # --- public --------------------------------------------------------

    def test_healthz(self):
        self.assertEqual(self.client.get("/healthz").json(), {"status": "ok"})

    def test_info_lists_families(self):
        body = self.client.get("/info").json()
        names = [f["name"] for f in body["families"]]
        self.assertIn("glaze", names)
        self.assertIn("currentEpoch", body["families"][0])

    def test_mining_claim(self):
        self.claims.record_mining.return_value = ClaimOutcome(accepted=True, points=2.0, epoch=3)
        response = self.client.post(
            "/claims/mining",
            json={"txHash": TX, "address": ALICE, "mineType": "donut", "imageUrl": "https://img/x.png"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"accepted": True, "pointsAdded": 2.0, "epoch": 3})
        self.claims.record_mining.assert_called_once_with(
            TX, ALICE, "donut", amount=None, image_url="https://img/x.png"
        )

    def test_malformed_claim_rejected_before_chain(self):
        response = self.client.post("/claims/mining", json={"txHash": "0x123", "address": ALICE})
        self.assertEqual(response.status_code, 422)
        self.claims.record_mining.assert_not_called()

    def test_rpc_outage_maps_to_500(self):
        self.claims.record_chat.side_effect = TransientInfraFailure("all RPC providers failed")
        response = self.client.post("/claims/chat", json={"txHash": TX, "address": ALICE})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"accepted": False, "reason": "temporarily_unavailable"})

    def test_webhook_requires_signature(self):
        body = json.dumps({"event": {"activity": [{"hash": TX}]}}).encode()
        self.assertEqual(self.client.post("/webhooks/mining", content=body).status_code, 401)

        self.claims.record_observed.return_value = ClaimOutcome(accepted=True, points=1.0, epoch=2)
        signature = hmac.new(api.SETTINGS.webhook_signing_key.encode(), body, hashlib.sha256).hexdigest()
        response = self.client.post("/webhooks/mining", content=body, headers={"x-alchemy-signature": signature})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["processed"], 1)
        self.claims.record_observed.assert_called_once_with(TX)

    def test_game_round_trip_and_leaderboard(self):
        started = self.client.post("/games/flappy/entries", json={"playerKey": ALICE}).json()
        self.assertEqual(started["week"], 2)

        submitted = self.client.post(
            "/games/flappy/scores",
            json={"entryId": started["entryId"], "playerKey": ALICE, "score": 42},
        )
        self.assertEqual(submitted.status_code, 200)
        self.assertEqual(submitted.json()["rank"], 1)
        self.assertTrue(submitted.json()["isPersonalBest"])

        replay = self.client.post(
            "/games/flappy/scores",
            json={"entryId": started["entryId"], "playerKey": ALICE, "score": 99},
        )
        self.assertEqual(replay.status_code, 400)
        self.assertEqual(replay.json()["reason"], "score_already_submitted")

        board = self.client.get("/leaderboards/flappy", params={"profiles": "true"}).json()
        self.assertEqual(board["epoch"], 2)
        self.assertEqual(board["entries"][0]["bestScore"], 42)
        self.assertEqual(board["entries"][0]["profile"]["username"], "alice")
        self.assertEqual(board["stats"]["gamesPlayed"], 1)
        self.assertEqual(board["prizes"]["kind"], "fixed")
        self.assertEqual(len(board["prizes"]["places"]), 10)

    def test_unknown_family_is_404(self):
        self.assertEqual(self.client.get("/leaderboards/tetris").status_code, 404)

    def test_distribution_lookup(self):
        self.distributions.get.return_value = None
        self.assertEqual(self.client.get("/distributions/flappy/1").status_code, 404)

        self.distributions.get.return_value = Distribution(
            family="flappy", epoch=1, status=DistributionStatus.ROLLED_OVER
        )
        body = self.client.get("/distributions/flappy/1").json()
        self.assertEqual(body["status"], "ROLLED_OVER")

    def test_recent_distributions(self):
        self.distributions.fetch_family.return_value = [
            Distribution(family="flappy", epoch=2, status=DistributionStatus.DISTRIBUTED, winners=[ALICE]),
        ]
        body = self.client.get("/distributions/flappy", params={"limit": 5}).json()
        self.assertEqual(body["family"], "flappy")
        self.assertEqual([d["winners"] for d in body["distributions"]], [[ALICE]])
        self.distributions.fetch_family.assert_called_once_with("flappy", limit=5)

    def test_chat_leaderboard(self):
        last = datetime(2025, 12, 20, tzinfo=timezone.utc)
        self.claims.chat_leaderboard.return_value = (
            [ChatStanding(rank=1, address=ALICE, total_points=4.0, total_messages=2, last_message_at=last)],
            ChatStats(total_users=3, total_messages=5, total_points=9.0),
        )
        response = self.client.get("/chat/leaderboard", params={"limit": 1})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertIsNone(body["epoch"])
        self.assertEqual(body["leaderboard"][0]["address"], ALICE)
        self.assertEqual(body["leaderboard"][0]["totalMessages"], 2)
        self.assertEqual(body["stats"], {"totalUsers": 3, "totalMessages": 5, "totalPoints": 9.0})
        self.claims.chat_leaderboard.assert_called_once_with(limit=1, epoch=None)
        self.assertEqual(self.client.get("/chat/leaderboard", params={"limit": 51}).status_code, 422)

    # --- admin ---------------------------------------------------------

    def test_settle_requires_token(self):
        self.assertEqual(self.client.get("/cron/settle/flappy").status_code, 401)
        self.assertEqual(
            self.client.get("/cron/settle/flappy", headers={"Authorization": "Bearer wrong"}).status_code, 401
        )
        self.dispatcher.dispatch.assert_not_called()

    def test_settle_dry_run(self):
        self.dispatcher.dispatch.return_value = SettlementResult(
            status=SettlementStatus.DRY_RUN, family="flappy", epoch=1,
            winners=[ALICE], amounts=[{"USDC": 5.0}],
        )
        response = self.client.get("/cron/settle/flappy", params={"dryRun": "true"}, headers=ADMIN)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {"distributed": False, "status": "dry_run", "family": "flappy", "epoch": 1,
             "winners": [ALICE], "amounts": [{"USDC": 5.0}]},
        )
        self.dispatcher.dispatch.assert_called_once_with("flappy", epoch=None, dry_run=True)

    def test_settle_body_and_api_key_header(self):
        self.dispatcher.dispatch.return_value = SettlementResult(
            status=SettlementStatus.ALREADY_DISTRIBUTED, family="flappy", epoch=3, tx_hashes=[TX],
        )
        response = self.client.post(
            "/cron/settle/flappy", json={"epoch": 3}, headers={"X-API-Key": "test-cron-secret"}
        )
        self.assertEqual(response.json()["txHash"], TX)
        self.dispatcher.dispatch.assert_called_once_with("flappy", epoch=3, dry_run=False)

    def test_review_requires_token(self):
        entry = self.scores.start_entry("flappy", ALICE)
        self.assertEqual(
            self.client.post(f"/admin/scores/{entry.entry_id}/review", json={"approved": True}).status_code, 401
        )
        response = self.client.post(
            f"/admin/scores/{entry.entry_id}/review", json={"approved": False}, headers=ADMIN
        )
        self.assertEqual(response.json(), {"entryId": entry.entry_id, "reviewStatus": "REJECTED"})


if __name__ == "__main__":
    unittest.main()
