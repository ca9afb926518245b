"""Work out where on the remote a local file should go, and whether it needs uploading."""

import logging
from pathlib import Path
from typing import Union

from .exceptions import PathNotFoundError, RemoteError, SystemicError
from .remote import DeletedMetadata, FileMetadata, FolderMetadata, RemoteStorage
from .results import NewFile, PathNormalizationResult, Replace, ResolutionError, SkipMatching

logger = logging.getLogger(__name__)


def resolve_path(
    client: RemoteStorage, dest_path: str, source_filename: str, source_size: int
) -> PathNormalizationResult:
    """Ask the remote about a proposed destination path.

    Whether to resume can't be decided here: the metadata doesn't say which
    bytes an interrupted upload left behind. Resumption is handled inside one
    upload's retry loop instead.

    A file of the same size counts as already uploaded. Comparing hashes would
    be better, but hashing every large local export up front is too costly.
    """
    try:
        meta = client.get_metadata(dest_path)
    except PathNotFoundError:
        return NewFile(dest_path)
    except SystemicError as e:
        return ResolutionError(f"Error looking up destination: {e}", systemic=True)
    except RemoteError as e:
        return ResolutionError(f"Error looking up destination: {e}")

    if isinstance(meta, FileMetadata):
        if meta.size == source_size:
            return SkipMatching()
        return Replace(dest_path)
    if isinstance(meta, FolderMetadata):
        # The destination is a folder, so the file goes inside it under its own name.
        return resolve_path(client, f"{dest_path.rstrip('/')}/{source_filename}", source_filename, source_size)
    if isinstance(meta, DeletedMetadata):
        return ResolutionError("unexpected deleted metadata received")
    return ResolutionError(f"unexpected metadata received: {meta!r}")


def get_destination_path(
    client: RemoteStorage,
    given_path: str,
    source_path: Union[str, Path],
    source_size: int,
) -> PathNormalizationResult:
    """Figure out if the destination is a folder or not and adjust the path accordingly."""
    filename = Path(source_path).name
    if not filename:
        return ResolutionError(f"invalid source path {str(source_path)!r} has no filename")

    dest_path = given_path
    # The root has no metadata to look up, so go straight to the file inside it.
    if dest_path == "/":
        dest_path += filename

    return resolve_path(client, dest_path, filename, source_size)
