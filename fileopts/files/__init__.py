"""
FileOpts Files — staging, filesystem, metadata, validation and the upload
resolver.

Uploads are staged to a temp file, then committed by UploadResolver to
``{files_root}/{upload_location}/{filename}`` under the field's mode.
"""

from fileopts.files.filesystem import LocalFileSystem
from fileopts.files.metadata import MemoryMetadataStore, SqlMetadataStore
from fileopts.files.models import FileRecord, ResolutionOutcome, ResourceAction, UploadRequest
from fileopts.files.resolver import UploadResolver
from fileopts.files.staging import StagedPayload, stage_bytes, stage_stream
from fileopts.files.validation import UploadValidator, UploadValidators

__all__ = [
    "FileRecord",
    "ResolutionOutcome",
    "ResourceAction",
    "UploadRequest",
    "LocalFileSystem",
    "MemoryMetadataStore",
    "SqlMetadataStore",
    "UploadResolver",
    "StagedPayload",
    "stage_bytes",
    "stage_stream",
    "UploadValidator",
    "UploadValidators",
]
