"""Chunked transfer engine."""

from cloudstore.transfer.download import ChunkedDownloader
from cloudstore.transfer.upload import ChunkedUploader, MultipartSession, UploadState

__all__ = ["ChunkedDownloader", "ChunkedUploader", "MultipartSession", "UploadState"]
