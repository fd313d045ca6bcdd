"""
Synchronization orchestrator.

Pulls metrics through the platform adapters and writes date-keyed snapshots.
A failure for one item or one user is recorded in the returned result and
never aborts the rest of the run.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import timedelta
from typing import Dict, List, Mapping, Optional, Sequence

from app.clients.platform import (
    ConfigurationError,
    ContentDescriptor,
    ContentMetrics,
    PlatformAdapter,
    PlatformAPIError,
    ReconnectRequiredError,
    ResponseShapeError,
)
from app.core.config import SyncSettings
from app.models.platform import ACCOUNT_METRICS, MetricSnapshot, Platform, PlatformToken
from app.schemas.sync import AccountSweepResult, ItemError, SyncResult, UserSyncError
from app.services.content_catalog import ContentCatalog
from app.services.credential_vault import CredentialVault
from app.services.credentials import CredentialService
from app.services.snapshot_store import SnapshotStore, snapshot_date

logger = logging.getLogger(__name__)

_FETCH_ERRORS = (PlatformAPIError, ResponseShapeError, ReconnectRequiredError)


def _describe(exc: Exception) -> str:
    if isinstance(exc, PlatformAPIError) and exc.status_code is not None:
        return f"{exc} (status {exc.status_code})"
    return str(exc) or exc.__class__.__name__


class SyncOrchestrator:
    """Coordinate per-user, per-platform and per-account metric syncs."""

    def __init__(
        self,
        *,
        adapters: Mapping[Platform, PlatformAdapter],
        vault: CredentialVault,
        credentials: CredentialService,
        catalog: ContentCatalog,
        snapshots: SnapshotStore,
        settings: SyncSettings,
    ) -> None:
        self._adapters = adapters
        self._vault = vault
        self._credentials = credentials
        self._catalog = catalog
        self._snapshots = snapshots
        self._settings = settings

    def adapter(self, platform: Platform) -> PlatformAdapter:
        try:
            return self._adapters[platform]
        except KeyError as exc:
            raise ConfigurationError(f"No adapter configured for {platform.value}") from exc

    async def sync_user(self, user_id: str, platform: Platform) -> SyncResult:
        """Refresh snapshots for the content linked to one user.

        Uses the user's credentials when available and falls back to the
        keyless path for platforms that offer one.
        """
        adapter = self.adapter(platform)
        token: Optional[PlatformToken] = None
        unavailable: Optional[str] = None
        try:
            token = await self._credentials.get_fresh_token(user_id, platform)
        except ReconnectRequiredError as exc:
            unavailable = str(exc)
        except PlatformAPIError as exc:
            logger.warning(
                "Token refresh failed",
                extra={
                    "user_id": user_id,
                    "platform": platform.value,
                    "status_code": exc.status_code,
                    "body": exc.body,
                },
            )
            unavailable = "Could not refresh the stored access token. Please reconnect your account."

        if token is None and not adapter.supports_keyless:
            return SyncResult(
                platform=platform,
                details=unavailable or f"No {platform.value} account connected.",
            )

        content_ids = self._catalog.content_ids_for_user(user_id, platform)
        as_of = snapshot_date()
        if not content_ids:
            return SyncResult(
                platform=platform, snapshot_date=as_of, details="No content to sync."
            )
        result = SyncResult(platform=platform, snapshot_date=as_of)
        return await self._sync_items(platform, content_ids, token=token, result=result)

    async def sync_all_for_platform(self, platform: Platform) -> SyncResult:
        """Refresh every known item of the platform through the keyless path."""
        adapter = self.adapter(platform)
        if not adapter.supports_keyless:
            raise ConfigurationError(
                f"{platform.value} has no keyless access configured; sync per account instead."
            )
        content_ids = self._catalog.content_ids_for_platform(platform)
        as_of = snapshot_date()
        if not content_ids:
            return SyncResult(
                platform=platform, snapshot_date=as_of, details="No content to sync."
            )
        result = SyncResult(platform=platform, snapshot_date=as_of)
        return await self._sync_items(platform, content_ids, token=None, result=result)

    async def sync_account(self, user_id: str, platform: Platform) -> SyncResult:
        """Account insights, content discovery, then a snapshot refresh."""
        adapter = self.adapter(platform)
        try:
            token = await self._credentials.get_fresh_token(user_id, platform)
        except ReconnectRequiredError as exc:
            return SyncResult(platform=platform, details=str(exc))
        except PlatformAPIError as exc:
            logger.warning(
                "Token refresh failed",
                extra={"user_id": user_id, "platform": platform.value, "status_code": exc.status_code},
            )
            return SyncResult(
                platform=platform,
                details="Could not refresh the stored access token. Please reconnect your account.",
            )
        if token is None or not token.account_id:
            return SyncResult(
                platform=platform, details=f"No {platform.value} account connected."
            )

        account_id = token.account_id
        as_of = snapshot_date()
        result = SyncResult(platform=platform, snapshot_date=as_of)

        try:
            insights = await adapter.fetch_account_insights(
                account_id,
                ACCOUNT_METRICS,
                timedelta(days=self._settings.insights_window_days),
                token,
                as_of,
            )
            result.synced_insight_count = await asyncio.to_thread(
                self._snapshots.upsert_insights, user_id, account_id, insights
            )
        except (*_FETCH_ERRORS, sqlite3.Error) as exc:
            logger.warning(
                "Account insight sync failed",
                extra={"user_id": user_id, "account_id": account_id, "error": _describe(exc)},
            )
            result.errors.append(ItemError(item_id=account_id, message=_describe(exc)))

        await self._discover_content(user_id, platform, adapter, account_id, token, result)

        content_ids = self._catalog.content_ids_for_user(user_id, platform)
        if not content_ids:
            result.details = "No content to sync."
            return result
        return await self._sync_items(platform, content_ids, token=token, result=result)

    async def sync_all_accounts(self, platform: Platform) -> AccountSweepResult:
        """Run ``sync_account`` for every connected user with bounded concurrency."""
        user_ids = self._vault.list_connected_user_ids(platform)
        sweep = AccountSweepResult(platform=platform, total_users=len(user_ids))
        semaphore = asyncio.Semaphore(self._settings.max_concurrency)

        async def _one(user_id: str) -> None:
            async with semaphore:
                try:
                    result = await self.sync_account(user_id, platform)
                except Exception as exc:
                    # Isolation boundary: one user's failure must not stop the sweep.
                    logger.exception(
                        "Account sync failed", extra={"user_id": user_id, "platform": platform.value}
                    )
                    sweep.failed_syncs += 1
                    sweep.errors.append(UserSyncError(user_id=user_id, error=_describe(exc)))
                    return
            sweep.total_synced_posts += result.synced_item_count
            sweep.total_synced_insights += result.synced_insight_count
            if result.success and result.snapshot_date is not None:
                sweep.successful_syncs += 1
                return
            sweep.failed_syncs += 1
            message = result.details or "; ".join(
                f"{error.item_id}: {error.message}" for error in result.errors[:3]
            )
            sweep.errors.append(UserSyncError(user_id=user_id, error=message))

        await asyncio.gather(*(_one(user_id) for user_id in user_ids))
        logger.info(
            "Account sweep finished",
            extra={
                "platform": platform.value,
                "total_users": sweep.total_users,
                "failed": sweep.failed_syncs,
            },
        )
        return sweep

    async def _discover_content(
        self,
        user_id: str,
        platform: Platform,
        adapter: PlatformAdapter,
        account_id: str,
        token: PlatformToken,
        result: SyncResult,
    ) -> None:
        """Create records and user links for content not yet linked to the user."""
        known = set(self._catalog.content_ids_for_user(user_id, platform))
        cursor: Optional[str] = None
        for _ in range(self._settings.max_content_pages):
            try:
                page = await adapter.fetch_content_list(account_id, cursor=cursor, token=token)
            except _FETCH_ERRORS as exc:
                logger.warning(
                    "Content discovery failed",
                    extra={"user_id": user_id, "account_id": account_id, "error": _describe(exc)},
                )
                result.errors.append(ItemError(item_id=account_id, message=_describe(exc)))
                return
            for descriptor in page.items:
                if descriptor.content_id in known:
                    continue
                if await self._register(user_id, platform, descriptor, result):
                    known.add(descriptor.content_id)
                    result.discovered_item_count += 1
            cursor = page.next_cursor
            if not cursor:
                return

    async def _register(
        self,
        user_id: str,
        platform: Platform,
        descriptor: ContentDescriptor,
        result: SyncResult,
    ) -> bool:
        try:
            await asyncio.to_thread(self._catalog.upsert_item, platform, descriptor)
        except sqlite3.Error as exc:
            result.errors.append(
                ItemError(item_id=descriptor.content_id, message=f"Failed to create content record: {exc}")
            )
            return False
        try:
            # An existing link is reported as False and treated as success.
            await asyncio.to_thread(self._catalog.link_user, user_id, descriptor.content_id)
        except sqlite3.Error as exc:
            result.errors.append(
                ItemError(item_id=descriptor.content_id, message=f"Failed to link content: {exc}")
            )
            return False
        return True

    async def _sync_items(
        self,
        platform: Platform,
        content_ids: Sequence[str],
        *,
        token: Optional[PlatformToken],
        result: SyncResult,
    ) -> SyncResult:
        """Fetch metrics for the ids and write one snapshot per item."""
        adapter = self.adapter(platform)
        captured_at = result.snapshot_date or snapshot_date()
        result.snapshot_date = captured_at
        ids = list(dict.fromkeys(content_ids))

        try:
            batch = await adapter.fetch_content_metrics(ids, token=token)
        except _FETCH_ERRORS as exc:
            logger.warning(
                "Metric fetch failed",
                extra={"platform": platform.value, "items": len(ids), "error": _describe(exc)},
            )
            for content_id in ids:
                result.errors.append(ItemError(item_id=content_id, message=_describe(exc)))
            return result
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.exception(
                "Unexpected metric fetch failure",
                extra={"platform": platform.value, "items": len(ids)},
            )
            for content_id in ids:
                result.errors.append(
                    ItemError(item_id=content_id, message=f"Metric fetch failed: {exc}")
                )
            return result

        for content_id, message in batch.errors.items():
            result.errors.append(ItemError(item_id=content_id, message=message))

        semaphore = asyncio.Semaphore(self._settings.max_concurrency)

        async def _persist(content_id: str, metrics: ContentMetrics) -> Optional[ItemError]:
            snapshot = MetricSnapshot(
                content_id=content_id,
                platform=platform,
                captured_at=captured_at,
                **metrics.model_dump(),
            )
            async with semaphore:
                try:
                    await asyncio.to_thread(self._snapshots.upsert_snapshot, snapshot)
                except sqlite3.Error as exc:
                    logger.warning(
                        "Snapshot write failed",
                        extra={"content_id": content_id, "error": str(exc)},
                    )
                    return ItemError(item_id=content_id, message=f"Failed to store snapshot: {exc}")
            return None

        written: Dict[str, ContentMetrics] = {
            content_id: metrics for content_id, metrics in batch.metrics.items() if content_id in ids
        }
        outcomes: List[Optional[ItemError]] = await asyncio.gather(
            *(_persist(content_id, metrics) for content_id, metrics in written.items())
        )
        failures = [outcome for outcome in outcomes if outcome is not None]
        result.errors.extend(failures)
        result.synced_item_count += len(written) - len(failures)
        result.skipped_item_count += sum(
            1 for content_id in ids if content_id not in batch.metrics and content_id not in batch.errors
        )

        logger.info(
            "Snapshot sync finished",
            extra={
                "platform": platform.value,
                "snapshot_date": captured_at.isoformat(),
                "synced": result.synced_item_count,
                "skipped": result.skipped_item_count,
                "failed": len(result.errors),
            },
        )
        return result


__all__ = ["SyncOrchestrator"]
