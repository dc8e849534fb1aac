"""
Catalog Resolver

Turns include/ignore filters plus live discovery into the ordered list of
work items a backup run transfers. Every ignore entry is validated against
the resolved universe before a single work item is handed out, so a typo in
an ignore list fails the run instead of silently backing up too much.
"""

import logging
from typing import List, Optional

from ..exceptions import ConfigValidationError, TransferError, BackupRecoveryError, format_names
from ..models.entities import CollectionKind, WorkItem, split_qualified_name
from ..models.parameters import FilterSpec
from .base import StorageService

logger = logging.getLogger(__name__)


def _ordered_difference(names: List[str], excluded: List[str]) -> List[str]:
    excluded_set = set(excluded)
    return [name for name in names if name not in excluded_set]


def resolve_accounts(available: List[str], include: List[str], ignore: List[str]) -> List[str]:
    """
    Accounts to act on.

    Args:
        available: Accounts discovered on the storage service
        include: Accounts to restrict to (empty means all available)
        ignore: Accounts to skip; each must be in ``available``

    Returns:
        Candidates minus ignored accounts, in candidate order

    Raises:
        ConfigValidationError: If an ignored account is not available
    """
    unknown = _ordered_difference(ignore, available)
    if unknown:
        raise ConfigValidationError(
            f"Ignored accounts {format_names(unknown)} are not in set {format_names(available)}",
            invalid_names=unknown,
            valid_names=available
        )
    candidates = list(include) if include else list(available)
    return _ordered_difference(candidates, ignore)


def validate_ignored_collections(
    available: List[str],
    ignore: List[str],
    kind: CollectionKind = CollectionKind.TABLE
) -> None:
    """
    Check that every qualified ignore entry names an available account.

    Raises:
        ConfigValidationError: If an entry is not ``account/collection`` or
            its account is not available
    """
    unknown = []
    for qualified in ignore:
        account, _ = split_qualified_name(qualified)
        if account not in available:
            unknown.append(qualified)
    if unknown:
        raise ConfigValidationError(
            f"Ignored {kind.value}s {format_names(unknown)} are not in any account of set "
            f"{format_names(available)}",
            invalid_names=unknown,
            valid_names=available
        )


def _names_for_account(account: str, qualified: List[str]) -> List[str]:
    prefix = f"{account}/"
    return [name[len(prefix):] for name in qualified if name.startswith(prefix)]


def filter_collections(
    account: str,
    discovered: List[str],
    include: List[str],
    ignore: List[str],
    kind: CollectionKind = CollectionKind.TABLE
) -> List[str]:
    """
    Collections of one account to act on.

    ``include`` and ``ignore`` hold ``account/collection`` names; only those
    prefixed with ``account/`` apply. A non-empty include for the account
    replaces discovery as the universe.

    Raises:
        ConfigValidationError: If an ignored collection is outside the universe
    """
    included = _names_for_account(account, include)
    ignored = _names_for_account(account, ignore)
    universe = included if included else list(discovered)

    unknown = _ordered_difference(ignored, universe)
    if unknown:
        raise ConfigValidationError(
            f"Ignored {kind.value}s {format_names(unknown)} are not in set "
            f"{format_names(universe)} for account {account}",
            invalid_names=unknown,
            valid_names=universe
        )
    return _ordered_difference(universe, ignored)


class CatalogResolver:
    """
    Resolves filters against a storage service.

    Example:
        ```python
        resolver = CatalogResolver(storage)
        items = await resolver.resolve_work_items(
            FilterSpec(ignore=NameFilter(tables=["abc/qed"]))
        )
        ```
    """

    def __init__(self, storage: StorageService):
        self._storage = storage

    async def discover_collections(self, account: str, kind: CollectionKind) -> List[str]:
        """Every collection name of ``kind`` in ``account``, following continuation tokens."""
        names: List[str] = []
        token: Optional[str] = None
        try:
            while True:
                listing = await self._storage.list_collections(account, kind, token)
                names.extend(listing.names)
                token = listing.continuation_token
                if not token:
                    break
        except BackupRecoveryError:
            raise
        except Exception as e:
            raise TransferError(
                f"Failed to list {kind.value}s of account {account}: {e}",
                context={"account": account}
            ) from e
        logger.debug(f"Discovered {len(names)} {kind.value}s in {account}")
        return names

    async def resolve_collections(
        self,
        account: str,
        kind: CollectionKind,
        include: List[str],
        ignore: List[str]
    ) -> List[str]:
        """Collections of ``kind`` in ``account`` after filtering."""
        if _names_for_account(account, include):
            discovered: List[str] = []
        else:
            discovered = await self.discover_collections(account, kind)
        return filter_collections(account, discovered, include, ignore, kind)

    async def available_accounts(self) -> List[str]:
        """Every account the storage service can reach."""
        try:
            available = await self._storage.list_accounts()
        except BackupRecoveryError:
            raise
        except Exception as e:
            raise TransferError(f"Failed to list accounts: {e}") from e
        logger.info(f"Full list of available accounts: {format_names(available)}")
        return available

    async def resolve_accounts(self, filters: FilterSpec) -> List[str]:
        """Accounts to act on after filtering."""
        available = await self.available_accounts()
        return resolve_accounts(available, filters.include.accounts, filters.ignore.accounts)

    async def resolve_work_items(self, filters: FilterSpec) -> List[WorkItem]:
        """
        Ordered work items for a backup run.

        Accounts in resolved order; within each account its tables, then its
        containers.

        Raises:
            ConfigValidationError: If any ignore entry is outside its universe
            TransferError: If discovery fails
        """
        logger.info(f"Ignoring accounts: {format_names(filters.ignore.accounts)}")
        logger.info(f"Ignoring tables: {format_names(filters.ignore.tables)}")
        logger.info(f"Ignoring containers: {format_names(filters.ignore.containers)}")

        available = await self.available_accounts()
        accounts = resolve_accounts(available, filters.include.accounts, filters.ignore.accounts)
        for kind in (CollectionKind.TABLE, CollectionKind.CONTAINER):
            validate_ignored_collections(available, filters.ignore.collections(kind), kind)

        items: List[WorkItem] = []
        for account in accounts:
            for kind in (CollectionKind.TABLE, CollectionKind.CONTAINER):
                names = await self.resolve_collections(
                    account,
                    kind,
                    filters.include.collections(kind),
                    filters.ignore.collections(kind)
                )
                items.extend(WorkItem(account=account, kind=kind, name=name) for name in names)

        logger.info(f"Resolved {len(items)} collections across {len(accounts)} accounts")
        return items
