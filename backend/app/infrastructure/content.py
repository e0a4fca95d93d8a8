"""
Codelab Grader - Content Collaborator Adapters
Test battery lookup by challenge and content version
"""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Tuple
from uuid import UUID

import structlog

from app.core.exceptions import BatteryNotFound
from app.domain.grading.entities import TestBattery
from app.infrastructure.cache import CacheManager

logger = structlog.get_logger(__name__)

PUBLISHED = "published"


class BatteryProvider(ABC):
    """Read side of the content store."""

    @abstractmethod
    async def get_battery(
        self,
        challenge_id: UUID,
        content_version: Optional[str] = None,
    ) -> TestBattery:
        """
        Resolve the test battery of a challenge.

        Args:
            challenge_id: Challenge identifier
            content_version: Pinned version; None means currently published

        Raises:
            BatteryNotFound: If the challenge or version is unknown
        """


class InMemoryBatteryProvider(BatteryProvider):
    """Batteries registered in process memory."""

    def __init__(self):
        self._batteries: Dict[Tuple[UUID, str], TestBattery] = {}
        self._published: Dict[UUID, str] = {}

    def register(self, battery: TestBattery, publish: bool = True) -> TestBattery:
        """Store a battery; the latest published registration wins."""
        self._batteries[(battery.challenge_id, battery.content_version)] = battery
        if publish:
            self._published[battery.challenge_id] = battery.content_version
        return battery

    def published_version(self, challenge_id: UUID) -> Optional[str]:
        return self._published.get(challenge_id)

    async def get_battery(
        self,
        challenge_id: UUID,
        content_version: Optional[str] = None,
    ) -> TestBattery:
        version = content_version or self._published.get(challenge_id)
        battery = self._batteries.get((challenge_id, version)) if version else None
        if battery is None:
            raise BatteryNotFound(
                f"No test battery for challenge {challenge_id} "
                f"(version {content_version or PUBLISHED})"
            )
        return battery


class FileBatteryProvider(BatteryProvider):
    """
    Batteries exported by the content store as JSON documents::

        {root}/{challenge_id}/{content_version}.json
        {root}/{challenge_id}/PUBLISHED   (name of the published version)
    """

    PUBLISHED_MARKER = "PUBLISHED"

    def __init__(self, root: str | Path):
        self._root = Path(root)

    def _read(self, challenge_id: UUID, content_version: Optional[str]) -> TestBattery:
        challenge_dir = self._root / str(challenge_id)
        try:
            if content_version is None:
                marker = challenge_dir / self.PUBLISHED_MARKER
                content_version = marker.read_text(encoding="utf-8").strip()
            # Versions are file names; refuse anything that walks out of the directory
            if not content_version or Path(content_version).name != content_version:
                raise FileNotFoundError(content_version)
            document = json.loads(
                (challenge_dir / f"{content_version}.json").read_text(encoding="utf-8")
            )
        except FileNotFoundError as e:
            raise BatteryNotFound(
                f"No test battery for challenge {challenge_id} "
                f"(version {content_version or PUBLISHED})"
            ) from e

        document.setdefault("challenge_id", str(challenge_id))
        document.setdefault("content_version", content_version)
        return TestBattery.from_dict(document)

    async def get_battery(
        self,
        challenge_id: UUID,
        content_version: Optional[str] = None,
    ) -> TestBattery:
        return await asyncio.to_thread(self._read, challenge_id, content_version)


class CachedBatteryProvider(BatteryProvider):
    """
    Read-through Redis cache in front of another provider.

    Pinned versions are immutable and cached under their version; the
    published alias is cached too, with the same TTL, so a publish becomes
    visible after at most ``ttl`` seconds.
    """

    KEY_PREFIX = "grading:battery"

    def __init__(
        self,
        cache: CacheManager,
        delegate: BatteryProvider,
        ttl: int = 3600,
    ):
        self._cache = cache
        self._delegate = delegate
        self._ttl = ttl

    @classmethod
    def cache_key(cls, challenge_id: UUID, content_version: Optional[str]) -> str:
        return f"{cls.KEY_PREFIX}:{challenge_id}:{content_version or PUBLISHED}"

    async def get_battery(
        self,
        challenge_id: UUID,
        content_version: Optional[str] = None,
    ) -> TestBattery:
        key = self.cache_key(challenge_id, content_version)
        cached = await self._cache.get_json(key)
        if cached is not None:
            try:
                return TestBattery.from_dict(cached)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Discarding invalid cached battery", key=key, error=str(e))

        battery = await self._delegate.get_battery(challenge_id, content_version)
        await self._cache.set_json(key, battery.to_dict(), self._ttl)
        logger.debug(
            "Battery cached",
            challenge_id=str(challenge_id),
            content_version=battery.content_version,
        )
        return battery

    async def invalidate(self, challenge_id: UUID, content_version: Optional[str] = None) -> None:
        await self._cache.delete(self.cache_key(challenge_id, content_version))
