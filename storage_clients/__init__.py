"""
Storage Clients

Implementations of the collaborator interfaces in ``backup_recovery.core.base``:
- Azure storage accounts (Tables and Blob containers) with SAS credentials
- S3 snapshot store with multipart uploads
- In-memory storage, credentials and object store for tests and dry runs
"""

from .memory import (
    InMemoryCredentialIssuer,
    InMemoryStorageService,
    InMemoryObjectStore
)
from .s3 import S3ObjectStore, create_s3_client
from .azure import AccountKeyCredentialIssuer, AzureStorageService

__all__ = [
    'InMemoryCredentialIssuer',
    'InMemoryStorageService',
    'InMemoryObjectStore',
    'S3ObjectStore',
    'create_s3_client',
    'AccountKeyCredentialIssuer',
    'AzureStorageService'
]
