"""
Stats / gamification notifier.

Each persisted log entry bumps the user's aggregate counters (log count,
rating total, strength histogram, countries smoked) and may unlock bands.
Band rules are data (humidor/data/band_rules.json): a stats field, an
operator (">=" or "==") and a value.

notify() never raises; failures are logged and reported as None. Updates for
one user are serialized, so concurrent notifications never overwrite each
other's read-modify-write of the aggregate.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Literal, Optional

from pydantic import ValidationError

from ..config import Config
from ..models import LogEntry, UserStats
from ..models.cigar import Document
from .errors import RemoteStoreError
from .remote_store import RemoteStoreProtocol

logger = logging.getLogger(__name__)


class BandRule(Document):
    """One unlockable band and the stats condition that earns it."""
    id: str
    name: str
    description: str = ""
    field: str
    operator: Literal[">=", "=="]
    value: int


def load_band_rules(path: Optional[str] = None) -> list[BandRule]:
    """Load band rules; an unreadable file disables awards."""
    path = Path(path or Config.band_rules_path())
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return [BandRule.model_validate(item) for item in data]
    except FileNotFoundError:
        logger.warning(f"Band rules not found at {path}; band awards disabled")
    except (OSError, json.JSONDecodeError, TypeError, ValidationError) as e:
        logger.warning(f"Band rules unreadable ({e}); band awards disabled")
    return []


def _strength_bucket(strength: str) -> str:
    s = strength.strip().lower()
    if s.startswith("mild") or s == "light":
        return "mild"
    if s.startswith("full"):
        return "full"
    return "medium"


def stats_fields(stats: UserStats) -> dict[str, float]:
    """Flatten stats into the field names band rules refer to."""
    buckets = {"mild": 0, "medium": 0, "full": 0}
    for strength, count in stats.body_counts.items():
        buckets[_strength_bucket(strength)] += count
    return {
        "logCount": stats.log_count,
        "totalRating": stats.total_rating,
        "averageRating": stats.average_rating,
        "countryCount": len(stats.countries),
        "bandsEarned": stats.bands_earned,
        "mildCount": buckets["mild"],
        "mediumCount": buckets["medium"],
        "fullCount": buckets["full"],
    }


def rule_met(rule: BandRule, fields: dict[str, float]) -> bool:
    actual = fields.get(rule.field)
    if actual is None:
        return False
    if rule.operator == ">=":
        return actual >= rule.value
    return actual == rule.value


def apply_entry(stats: UserStats, entry: LogEntry) -> UserStats:
    """Return a copy of ``stats`` with one more log entry counted."""
    updated = stats.model_copy(deep=True)
    updated.log_count += 1
    updated.total_rating += entry.overall_rating or 0

    strength = entry.identification.strength.strip()
    if strength:
        updated.body_counts[strength] = updated.body_counts.get(strength, 0) + 1

    country = entry.identification.origin_country.strip()
    if country and country not in updated.countries:
        updated.countries.append(country)
    return updated


class StatsNotifier:
    """Updates per-user aggregates in the remote store after a save."""

    def __init__(
        self,
        store: RemoteStoreProtocol,
        rules: Optional[list[BandRule]] = None,
        award_bands: bool = True,
    ):
        self.store = store
        self.rules = rules if rules is not None else load_band_rules()
        self.award_bands = award_bands
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    async def _new_bands(self, user_id: str, stats: UserStats) -> list[BandRule]:
        if not self.award_bands or not self.rules:
            return []
        earned = set(await self.store.list_bands(user_id))
        fields = stats_fields(stats)
        return [r for r in self.rules if r.id not in earned and rule_met(r, fields)]

    async def notify(self, user_id: str, entry: LogEntry) -> Optional[list[BandRule]]:
        """
        Count a saved entry and award any newly met bands.

        Returns:
            Bands awarded by this entry ([] if none), or None on failure.
        """
        try:
            async with self._lock(user_id):
                stats = await self.store.get_stats(user_id) or UserStats()
                stats = apply_entry(stats, entry)

                awarded = await self._new_bands(user_id, stats)
                if awarded:
                    await self.store.award_bands(user_id, [b.id for b in awarded])
                    stats.bands_earned += len(awarded)
                    logger.info(f"User {user_id} earned bands: {', '.join(b.name for b in awarded)}")

                await self.store.put_stats(user_id, stats)
            return awarded
        except (RemoteStoreError, ValidationError) as e:
            logger.warning(f"Stats update failed for {user_id} (entry {entry.id}): {e}")
            return None
