from __future__ import annotations

import logging
import time
from typing import Any, Callable

import requests

logger = logging.getLogger(__name__)


class ProfileLookup:
    """Address -> social profile, batched and cached. Purely decorative.

    Failures degrade to None for the affected addresses; ranking and
    settlement never wait on this.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        ttl_seconds: int = 3600,
        timeout: float = 5.0,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout
        self.max_entries = max_entries
        self._clock = clock
        self._cache: dict[str, tuple[float, dict[str, Any] | None]] = {}

    def _cached(self, address: str, now: float) -> tuple[bool, dict[str, Any] | None]:
        hit = self._cache.get(address)
        if hit is None or now - hit[0] > self.ttl_seconds:
            return False, None
        return True, hit[1]

    def _evict(self, now: float) -> None:
        self._cache = {
            address: hit for address, hit in self._cache.items() if now - hit[0] <= self.ttl_seconds
        }
        overflow = len(self._cache) - self.max_entries
        if overflow > 0:
            # oldest first
            for address, _ in sorted(self._cache.items(), key=lambda item: item[1][0])[:overflow]:
                del self._cache[address]

    @staticmethod
    def _to_profile(user: dict[str, Any]) -> dict[str, Any]:
        return {
            "fid": user.get("fid"),
            "username": user.get("username"),
            "displayName": user.get("display_name"),
            "pfpUrl": user.get("pfp_url"),
        }

    def _fetch(self, addresses: list[str]) -> dict[str, dict[str, Any] | None]:
        response = requests.get(
            self.api_url,
            params={"addresses": ",".join(addresses)},
            headers={"accept": "application/json", "api_key": self.api_key},
            timeout=self.timeout,
        )
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"expected an object keyed by address, got {type(payload).__name__}")
        data = {str(key).lower(): value for key, value in payload.items()}

        profiles: dict[str, dict[str, Any] | None] = {}
        for address in addresses:
            users = data.get(address)
            if isinstance(users, list) and users and isinstance(users[0], dict):
                profiles[address] = self._to_profile(users[0])
            else:
                profiles[address] = None
        return profiles

    def lookup(self, addresses: list[str]) -> dict[str, dict[str, Any] | None]:
        now = self._clock()
        self._evict(now)
        results: dict[str, dict[str, Any] | None] = {}
        missing: list[str] = []
        for address in {a.lower() for a in addresses if a and a.startswith("0x")}:
            hit, profile = self._cached(address, now)
            if hit:
                results[address] = profile
            else:
                missing.append(address)

        if not missing or not self.api_key:
            results.update({address: None for address in missing})
            return results

        try:
            fetched = self._fetch(sorted(missing))
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Profile lookup for %d addresses failed: %s", len(missing), exc)
            results.update({address: None for address in missing})
            return results

        for address, profile in fetched.items():
            self._cache[address] = (now, profile)
            results[address] = profile
        self._evict(now)
        return results
