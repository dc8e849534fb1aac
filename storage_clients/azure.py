"""
Azure Storage Adapter

Tables and blob containers of Azure storage accounts, authenticated with
per-collection SAS tokens signed from the accounts' shared keys.

Containers go through the azure-storage-blob SDK. Tables are spoken to over
the Table service REST API with an azure-core ``PipelineClient``; its
``x-ms-continuation-NextPartitionKey`` / ``NextRowKey`` headers are the
two-part continuation cursor the pagination loop follows.

Both SDK paths are blocking and run on a dedicated thread pool via
``loop.run_in_executor``.
"""

import asyncio
import base64
import functools
import hashlib
import hmac
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from azure.core import PipelineClient
from azure.core.exceptions import ResourceExistsError
from azure.core.rest import HttpRequest
from azure.storage.blob import (
    AccountSasPermissions,
    BlobServiceClient,
    BlobType,
    ContainerClient,
    ContainerSasPermissions,
    ContentSettings,
    ResourceTypes,
    generate_account_sas,
    generate_container_sas
)

from backup_recovery.core.base import CollectionClient, CredentialIssuer, StorageService
from backup_recovery.exceptions import ConfigValidationError
from backup_recovery.models.entities import (
    AccessLevel,
    CollectionKind,
    CollectionListing,
    ContinuationCursor,
    Page,
    ScopedCredential
)

logger = logging.getLogger(__name__)

TABLE_API_VERSION = "2019-02-02"
TABLE_ACCEPT = "application/json;odata=minimalmetadata"

# Service-maintained properties rejected or ignored on insert
_READ_ONLY_PROPERTIES = ("Timestamp", "Timestamp@odata.type")


def _expiry_string(expires_at: datetime) -> str:
    return expires_at.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _sign(account_key: str, string_to_sign: str) -> str:
    digest = hmac.new(base64.b64decode(account_key), string_to_sign.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def generate_table_sas(account: str, account_key: str, table: str, permission: str, expires_at: datetime) -> str:
    """Service SAS for one table."""
    expiry = _expiry_string(expires_at)
    string_to_sign = "\n".join([
        permission,
        "",
        expiry,
        f"/table/{account}/{table.lower()}",
        "",
        "",
        "https",
        TABLE_API_VERSION,
        "",
        "",
        "",
        ""
    ])
    return urlencode({
        "sv": TABLE_API_VERSION,
        "tn": table,
        "sp": permission,
        "se": expiry,
        "spr": "https",
        "sig": _sign(account_key, string_to_sign)
    })


def generate_table_account_sas(
    account: str,
    account_key: str,
    permission: str,
    resource_types: str,
    expires_at: datetime
) -> str:
    """Account SAS for the Table service; needed for table-level operations such as create."""
    expiry = _expiry_string(expires_at)
    string_to_sign = "\n".join([
        account,
        permission,
        "t",
        resource_types,
        "",
        expiry,
        "",
        "https",
        TABLE_API_VERSION,
        ""
    ])
    return urlencode({
        "sv": TABLE_API_VERSION,
        "ss": "t",
        "srt": resource_types,
        "sp": permission,
        "se": expiry,
        "spr": "https",
        "sig": _sign(account_key, string_to_sign)
    })


class AccountKeyCredentialIssuer(CredentialIssuer):
    """
    Signs SAS tokens from shared account keys.

    Read-only credentials are service SAS tokens restricted to exactly one
    table or container. Read-write credentials are account SAS tokens for
    the one service involved, because creating a table or container cannot
    be authorized by a service SAS.

    Example:
        ```python
        issuer = AccountKeyCredentialIssuer({"abc": "<base64 key>"}, lifetime_seconds=3600)
        credential = await issuer.issue_credential("abc", "def", AccessLevel.READ_ONLY)
        ```
    """

    def __init__(self, account_keys: Dict[str, str], lifetime_seconds: int = 3600):
        self._account_keys = dict(account_keys)
        self.lifetime = timedelta(seconds=lifetime_seconds)

    @property
    def accounts(self) -> List[str]:
        """Accounts a key is configured for."""
        return list(self._account_keys)

    def account_key(self, account: str) -> str:
        if account not in self._account_keys:
            raise ConfigValidationError(
                f"No key configured for account {account}",
                invalid_names=[account],
                valid_names=sorted(self._account_keys)
            )
        return self._account_keys[account]

    async def issue_credential(
        self,
        account: str,
        collection: str,
        level: AccessLevel,
        kind: CollectionKind = CollectionKind.TABLE
    ) -> ScopedCredential:
        key = self.account_key(account)
        expires_at = datetime.now(timezone.utc) + self.lifetime

        if kind == CollectionKind.TABLE:
            if level == AccessLevel.READ_ONLY:
                token = generate_table_sas(account, key, collection, "r", expires_at)
            else:
                token = generate_table_account_sas(account, key, "rwlacu", "co", expires_at)
        elif level == AccessLevel.READ_ONLY:
            token = generate_container_sas(
                account,
                collection,
                account_key=key,
                permission=ContainerSasPermissions(read=True, list=True),
                expiry=expires_at
            )
        else:
            token = generate_account_sas(
                account,
                key,
                resource_types=ResourceTypes(container=True, object=True),
                permission=AccountSasPermissions(read=True, write=True, list=True, add=True, create=True),
                expiry=expires_at
            )

        logger.debug(f"Issued {level.value} SAS for {kind.value} {account}/{collection}")
        return ScopedCredential(
            token=token,
            expires_at=expires_at,
            level=level,
            account=account,
            collection=collection
        )


class AzureTableClient(CollectionClient):
    """One table over the Table service REST API."""

    def __init__(self, service: "AzureStorageService", account: str, name: str, token_provider):
        self._service = service
        self.account = account
        self.name = name
        self._token_provider = token_provider
        self._http = service.table_pipeline(account)
        self._base_url = service.table_url(account)

    def _send(self, method: str, path: str, token: str, params: Optional[Dict[str, Any]] = None,
              json_body: Optional[Dict[str, Any]] = None):
        url = f"{self._base_url}/{path}?{token}"
        if params:
            url = f"{url}&{urlencode(params)}"
        headers = {
            "Accept": TABLE_ACCEPT,
            "x-ms-version": TABLE_API_VERSION,
            "DataServiceVersion": "3.0"
        }
        if json_body is not None:
            headers["Prefer"] = "return-no-content"
            request = HttpRequest(method, url, headers=headers, json=json_body)
        else:
            request = HttpRequest(method, url, headers=headers)
        return self._http.send_request(request)

    async def query_page(self, cursor: Optional[ContinuationCursor], page_size: int) -> Page:
        token = await self._token_provider.get_token()
        params: Dict[str, Any] = {"$top": page_size}
        if cursor is not None and cursor.has_more:
            params["NextPartitionKey"] = cursor.first
            params["NextRowKey"] = cursor.second

        response = await self._service.run(self._send, "GET", f"{self.name}()", token, params)
        response.raise_for_status()
        return Page(
            items=response.json().get("value", []),
            cursor=ContinuationCursor(
                first=response.headers.get("x-ms-continuation-NextPartitionKey"),
                second=response.headers.get("x-ms-continuation-NextRowKey")
            )
        )

    async def get_blob(self, name: str) -> Dict[str, Any]:
        raise TypeError(f"{self.account}/{self.name} is a table")

    async def create(self) -> bool:
        token = await self._token_provider.get_token()
        response = await self._service.run(self._send, "POST", "Tables", token, None, {"TableName": self.name})
        if response.status_code == 409:
            return False
        response.raise_for_status()
        return True

    async def insert_item(self, row: Dict[str, Any]) -> None:
        token = await self._token_provider.get_token()
        body = {
            key: value for key, value in row.items()
            if not key.startswith("odata.") and key not in _READ_ONLY_PROPERTIES
        }
        response = await self._service.run(self._send, "POST", self.name, token, None, body)
        response.raise_for_status()

    async def put_blob(self, name: str, info: Dict[str, Any]) -> Optional[str]:
        raise TypeError(f"{self.account}/{self.name} is a table")


class AzureContainerClient(CollectionClient):
    """One blob container through azure-storage-blob."""

    def __init__(self, service: "AzureStorageService", account: str, name: str, token_provider):
        self._service = service
        self.account = account
        self.name = name
        self._token_provider = token_provider

    async def _client(self) -> ContainerClient:
        token = await self._token_provider.get_token()
        return ContainerClient(
            account_url=self._service.blob_url(self.account),
            container_name=self.name,
            credential=token
        )

    async def query_page(self, cursor: Optional[ContinuationCursor], page_size: int) -> Page:
        container = await self._client()

        def _list():
            pages = container.list_blobs(results_per_page=page_size).by_page(
                continuation_token=cursor.first if cursor is not None else None
            )
            names = [blob.name for blob in next(pages, [])]
            return names, pages.continuation_token

        names, marker = await self._service.run(_list)
        return Page(items=[{"name": name} for name in names], cursor=ContinuationCursor.single(marker))

    async def get_blob(self, name: str) -> Dict[str, Any]:
        container = await self._client()

        def _download():
            downloader = container.get_blob_client(name).download_blob()
            return downloader.readall(), downloader.properties

        content, properties = await self._service.run(_download)
        md5 = properties.content_settings.content_md5
        return {
            "content": content,
            "contentMD5": base64.b64encode(bytes(md5)).decode("utf-8") if md5 else None,
            "contentType": properties.content_settings.content_type,
            "metadata": dict(properties.metadata or {}),
            "type": BlobType(properties.blob_type).value
        }

    async def create(self) -> bool:
        container = await self._client()
        try:
            await self._service.run(container.create_container)
        except ResourceExistsError:
            return False
        return True

    async def insert_item(self, row: Dict[str, Any]) -> None:
        raise TypeError(f"{self.account}/{self.name} is a container")

    async def put_blob(self, name: str, info: Dict[str, Any]) -> Optional[str]:
        container = await self._client()
        content_settings = ContentSettings(content_type=info["contentType"]) if info.get("contentType") else None
        response = await self._service.run(
            container.get_blob_client(name).upload_blob,
            info.get("content") or b"",
            blob_type=BlobType(info.get("type") or BlobType.BLOCKBLOB),
            metadata=info.get("metadata") or None,
            content_settings=content_settings,
            overwrite=False
        )
        md5 = response.get("content_md5")
        return base64.b64encode(bytes(md5)).decode("utf-8") if md5 else None


class AzureStorageService(StorageService):
    """
    Storage accounts reachable with configured shared keys.

    Example:
        ```python
        issuer = AccountKeyCredentialIssuer(settings.azure.accounts)
        storage = AzureStorageService(issuer, endpoint_suffix="core.windows.net")
        accounts = await storage.list_accounts()
        ```
    """

    def __init__(
        self,
        issuer: AccountKeyCredentialIssuer,
        accounts: Optional[List[str]] = None,
        endpoint_suffix: str = "core.windows.net",
        max_workers: int = 16
    ):
        self._issuer = issuer
        self._accounts = list(accounts) if accounts is not None else issuer.accounts
        self.endpoint_suffix = endpoint_suffix
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="azure")
        self._pipelines: Dict[str, PipelineClient] = {}

    @classmethod
    def from_settings(cls, azure_settings) -> "AzureStorageService":
        """Build service and issuer from ``config.settings.AzureSettings``."""
        issuer = AccountKeyCredentialIssuer(azure_settings.accounts, azure_settings.sas_lifetime_seconds)
        return cls(issuer, endpoint_suffix=azure_settings.endpoint_suffix, max_workers=azure_settings.max_workers)

    @property
    def issuer(self) -> AccountKeyCredentialIssuer:
        return self._issuer

    async def run(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args, **kwargs))

    def table_pipeline(self, account: str) -> PipelineClient:
        if account not in self._pipelines:
            self._pipelines[account] = PipelineClient(base_url=self.table_url(account))
        return self._pipelines[account]

    def table_url(self, account: str) -> str:
        return f"https://{account}.table.{self.endpoint_suffix}"

    def blob_url(self, account: str) -> str:
        return f"https://{account}.blob.{self.endpoint_suffix}"

    async def list_accounts(self) -> List[str]:
        return list(self._accounts)

    async def list_collections(
        self,
        account: str,
        kind: CollectionKind,
        continuation_token: Optional[str] = None
    ) -> CollectionListing:
        key = self._issuer.account_key(account)
        if kind == CollectionKind.TABLE:
            return await self._list_tables(account, key, continuation_token)

        service = BlobServiceClient(self.blob_url(account), credential={"account_name": account, "account_key": key})

        def _list():
            pages = service.list_containers(results_per_page=1000).by_page(continuation_token=continuation_token)
            names = [container.name for container in next(pages, [])]
            return names, pages.continuation_token

        names, marker = await self.run(_list)
        return CollectionListing(names=names, continuation_token=marker or None)

    async def _list_tables(self, account: str, key: str, continuation_token: Optional[str]) -> CollectionListing:
        token = generate_table_account_sas(
            account, key, "rl", "sc", datetime.now(timezone.utc) + timedelta(minutes=15)
        )
        params = {"NextTableName": continuation_token} if continuation_token else {}
        url = f"{self.table_url(account)}/Tables?{token}"
        if params:
            url = f"{url}&{urlencode(params)}"
        request = HttpRequest("GET", url, headers={
            "Accept": TABLE_ACCEPT,
            "x-ms-version": TABLE_API_VERSION,
            "DataServiceVersion": "3.0"
        })
        response = await self.run(self.table_pipeline(account).send_request, request)
        response.raise_for_status()
        return CollectionListing(
            names=[entry["TableName"] for entry in response.json().get("value", [])],
            continuation_token=response.headers.get("x-ms-continuation-NextTableName")
        )

    def collection(self, account: str, kind: CollectionKind, name: str, token_provider) -> CollectionClient:
        if CollectionKind(kind) == CollectionKind.TABLE:
            return AzureTableClient(self, account, name, token_provider)
        return AzureContainerClient(self, account, name, token_provider)

    def close(self) -> None:
        """Shut down the worker threads."""
        self._executor.shutdown(wait=True)
