from whitelist_import.upload.client_base import BaseSessionClient
from whitelist_import.upload.factory import SessionClientFactory
from whitelist_import.upload.partitioner import BatchLimits, BatchPartitioner
from whitelist_import.upload.uploader import BatchUploader, build_uploader

__all__ = [
    "BaseSessionClient",
    "BatchLimits",
    "BatchPartitioner",
    "BatchUploader",
    "SessionClientFactory",
    "build_uploader",
]
