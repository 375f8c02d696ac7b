"""Access state machine: key binding, expiry, quota admission and key issuance.

Every chat handler goes through one of the public coroutines here; none of
them re-implements the expiry or quota checks. Mutations for one user are
serialized in-process through ``KeyedLock`` while the stores' conditional
updates keep them correct across processes sharing one database.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from ..config import Settings
from ..errors import DuplicateKey, StoreUnavailable
from ..logging_config import key_fingerprint, logger
from ..models.schemas import (
    AccessDecision,
    AccessResult,
    ClaimDecision,
    ClaimOutcome,
    ClaimResult,
    IssuedKey,
    IssueResult,
    RevokeResult,
)
from ..utils.clock import utcnow
from ..utils.locks import KeyedLock
from .key_issuer import compute_expiry, generate_key_value, is_valid_duration
from .key_store import KeyStore
from .quota_policy import WindowKind, evaluate
from .user_store import UserStore


class AccessController:
    def __init__(
        self,
        keys: KeyStore,
        users: UserStore,
        *,
        limit: int,
        window_kind: WindowKind = WindowKind.CALENDAR_DAY,
        window: timedelta = timedelta(hours=1),
        admin_ids: Iterable[int] = (),
        token_bytes: int = 16,
        create_attempts: int = 5,
        usage_retries: int = 3,
        clock: Callable[[], datetime] = utcnow,
        key_generator: Callable[[int], str] = generate_key_value,
    ) -> None:
        self.keys = keys
        self.users = users
        self.limit = limit
        self.window_kind = window_kind
        self.window = window
        self.admin_ids = frozenset(admin_ids)
        self._token_bytes = token_bytes
        self._create_attempts = create_attempts
        self._usage_retries = usage_retries
        self._clock = clock
        self._key_generator = key_generator
        self._locks = KeyedLock()

    @classmethod
    def from_settings(cls, keys: KeyStore, users: UserStore, settings: Settings) -> "AccessController":
        return cls(
            keys,
            users,
            limit=settings.quota_limit,
            window_kind=WindowKind(settings.quota_window),
            window=timedelta(seconds=settings.quota_window_seconds),
            admin_ids=settings.admin_ids,
            token_bytes=settings.key_token_bytes,
            create_attempts=settings.key_create_attempts,
        )

    def is_admin(self, user_id: int) -> bool:
        return user_id in self.admin_ids

    async def preferred_language(self, user_id: int) -> Optional[str]:
        user = await self.users.get_or_create(user_id)
        return user.language

    async def set_language(self, user_id: int, language: str) -> None:
        await self.users.get_or_create(user_id)
        await self.users.set_language(user_id, language)
        logger.info("user.language_set", user_id=user_id, language=language)

    # ------------------------------------------------------------------
    # Access checks
    # ------------------------------------------------------------------
    async def inspect_binding(self, user_id: int, now: Optional[datetime] = None) -> AccessDecision:
        """Resolve the bound key without consuming quota."""
        now = now or self._clock()
        try:
            async with self._locks.hold(user_id):
                return await self._inspect(user_id, now)
        except StoreUnavailable:
            return AccessDecision(result=AccessResult.UNAVAILABLE)

    async def subscription_status(self, user_id: int, now: Optional[datetime] = None) -> AccessDecision:
        return await self.inspect_binding(user_id, now)

    async def check_access(self, user_id: int, now: Optional[datetime] = None) -> AccessDecision:
        """Decide whether ``user_id`` may invoke the feature right now and record the use."""
        now = now or self._clock()
        try:
            async with self._locks.hold(user_id):
                decision = await self._inspect(user_id, now)
                if decision.result != AccessResult.ACTIVE:
                    return decision
                return await self._admit(decision, now)
        except StoreUnavailable:
            return AccessDecision(result=AccessResult.UNAVAILABLE)

    async def _inspect(self, user_id: int, now: datetime) -> AccessDecision:
        user = await self.users.get_or_create(user_id)
        if user.bound_key_id is None:
            return AccessDecision(result=AccessResult.NO_KEY, user=user)

        key = await self.keys.find_by_id(user.bound_key_id)
        # expiry is reported even when the key was already switched off
        if key is not None and key.is_expired(now):
            await self.keys.deactivate(key.id)
            await self.users.unbind_key(user_id, key_id=key.id)
            logger.info("access.key_expired", user_id=user_id, key_id=key.id)
            return AccessDecision(
                result=AccessResult.KEY_EXPIRED,
                user=user.model_copy(update={"bound_key_id": None}),
                key=key.model_copy(update={"active": False}),
            )

        if key is None or not key.active or key.owner_user_id != user_id:
            await self.users.unbind_key(user_id, key_id=user.bound_key_id)
            logger.info("access.key_inactive", user_id=user_id, key_id=user.bound_key_id)
            return AccessDecision(result=AccessResult.KEY_INACTIVE, user=user.model_copy(update={"bound_key_id": None}))

        return AccessDecision(result=AccessResult.ACTIVE, user=user, key=key)

    async def _admit(self, decision: AccessDecision, now: datetime) -> AccessDecision:
        user = decision.user
        for _ in range(self._usage_retries):
            quota = evaluate(now, user.usage_window_start, user.usage_count, self.limit, self.window_kind, self.window)
            if not quota.admit:
                logger.info("access.quota_exceeded", user_id=user.id, count=user.usage_count, limit=self.limit)
                return AccessDecision(result=AccessResult.QUOTA_EXCEEDED, user=user, key=decision.key, usage_count=user.usage_count)
            stored = await self.users.record_usage(
                user.id,
                quota.window_start,
                quota.count,
                expected=(user.usage_window_start, user.usage_count),
            )
            if stored:
                updated = user.model_copy(update={"usage_window_start": quota.window_start, "usage_count": quota.count})
                return AccessDecision(result=AccessResult.ADMITTED, user=updated, key=decision.key, usage_count=quota.count)
            # another process moved the counters; evaluate again on fresh state
            user = await self.users.get_or_create(user.id)
        logger.warning("access.usage_contention", user_id=user.id, retries=self._usage_retries)
        return AccessDecision(result=AccessResult.UNAVAILABLE, user=user)

    # ------------------------------------------------------------------
    # Key claims
    # ------------------------------------------------------------------
    async def claim_key(self, user_id: int, submitted: str, now: Optional[datetime] = None) -> ClaimDecision:
        value = (submitted or "").strip()
        if not value:
            return ClaimDecision(result=ClaimResult.INVALID_KEY)
        now = now or self._clock()
        # claim + bind must finish together even if the caller goes away
        return await asyncio.shield(self._locked_claim(user_id, value, now))

    async def _locked_claim(self, user_id: int, value: str, now: datetime) -> ClaimDecision:
        try:
            async with self._locks.hold(user_id):
                return await self._claim(user_id, value, now)
        except StoreUnavailable:
            return ClaimDecision(result=ClaimResult.UNAVAILABLE)

    async def _claim(self, user_id: int, value: str, now: datetime) -> ClaimDecision:
        fingerprint = key_fingerprint(value)
        key = await self.keys.find_by_value(value)
        if key is None or not key.active:
            logger.info("claim.invalid", user_id=user_id, key_fingerprint=fingerprint)
            return ClaimDecision(result=ClaimResult.INVALID_KEY)

        if key.owner_user_id is not None and key.owner_user_id != user_id:
            # someone else's key is left alone, expired or not
            logger.info("claim.rejected", user_id=user_id, key_id=key.id, outcome=ClaimOutcome.ALREADY_CLAIMED.value)
            return ClaimDecision(result=ClaimResult.INVALID_KEY)

        current = await self._inspect(user_id, now)
        if current.result == AccessResult.ACTIVE:
            if current.key.id == key.id:
                return ClaimDecision(result=ClaimResult.CLAIMED, key_id=key.id)
            logger.info("claim.already_bound", user_id=user_id, bound_key_id=current.key.id)
            return ClaimDecision(result=ClaimResult.ALREADY_BOUND, key_id=current.key.id)

        if key.is_expired(now):
            await self.keys.deactivate(key.id)
            logger.info("claim.dead_on_arrival", user_id=user_id, key_id=key.id)
            return ClaimDecision(result=ClaimResult.INVALID_KEY)

        outcome = await self.keys.claim(key.id, user_id)
        if outcome != ClaimOutcome.CLAIMED:
            logger.info("claim.rejected", user_id=user_id, key_id=key.id, outcome=outcome.value)
            return ClaimDecision(result=ClaimResult.INVALID_KEY)

        await self.users.bind_key(user_id, key.id)
        logger.info("claim.success", user_id=user_id, key_id=key.id)
        return ClaimDecision(result=ClaimResult.CLAIMED, key_id=key.id)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------
    async def issue_key(self, admin_id: int, duration: Optional[str], now: Optional[datetime] = None) -> IssuedKey:
        if not self.is_admin(admin_id):
            logger.warning("key.issue_forbidden", user_id=admin_id)
            return IssuedKey(result=IssueResult.FORBIDDEN)
        if not is_valid_duration(duration):
            return IssuedKey(result=IssueResult.INVALID_DURATION)

        now = now or self._clock()
        expires_at = compute_expiry(duration, now)
        for attempt in range(1, self._create_attempts + 1):
            value = self._key_generator(self._token_bytes)
            try:
                key = await self.keys.create(value, expires_at, admin_id)
            except DuplicateKey:
                logger.warning("key.issue_collision", attempt=attempt)
                continue
            except StoreUnavailable:
                return IssuedKey(result=IssueResult.UNAVAILABLE)
            logger.info(
                "key.issued",
                key_id=key.id,
                admin_id=admin_id,
                duration=duration,
                expires_at=expires_at.isoformat() if expires_at else None,
                key_fingerprint=key_fingerprint(value),
            )
            return IssuedKey(result=IssueResult.ISSUED, value=value, expires_at=expires_at, key_id=key.id)

        logger.error("key.issue_exhausted", attempts=self._create_attempts)
        return IssuedKey(result=IssueResult.UNAVAILABLE)

    async def revoke_key(self, admin_id: int, value: Optional[str]) -> RevokeResult:
        if not self.is_admin(admin_id):
            logger.warning("key.revoke_forbidden", user_id=admin_id)
            return RevokeResult.FORBIDDEN
        value = (value or "").strip()
        if not value:
            return RevokeResult.NOT_FOUND
        try:
            key = await self.keys.find_by_value(value)
            if key is None:
                return RevokeResult.NOT_FOUND
            await self.keys.deactivate(key.id)
            if key.owner_user_id is not None:
                await self.users.unbind_key(key.owner_user_id, key_id=key.id)
        except StoreUnavailable:
            return RevokeResult.UNAVAILABLE
        logger.info("key.revoked", key_id=key.id, admin_id=admin_id, owner=key.owner_user_id)
        return RevokeResult.REVOKED
