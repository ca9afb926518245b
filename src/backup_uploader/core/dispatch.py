"""Run an action's uploads against the configured sources."""

import logging
from typing import Optional

from .block_uploader import ParallelBlockUploader
from .dropbox import DropboxClient
from .exceptions import BackupUploaderError, ConfigurationError
from .exports import list_files
from .gdrive import GoogleDriveClient, GoogleDriveUploader
from .models import Action, Settings
from .orchestrator import DropboxUploader
from .results import BatchResult

logger = logging.getLogger(__name__)


def build_dropbox_uploader(settings: Settings, progress_callback=None) -> DropboxUploader:
    client = DropboxClient(settings.dropbox.access_token, timeout=settings.dropbox.timeout)
    block_uploader = ParallelBlockUploader(
        client,
        parallelism=settings.upload.parallelism,
        block_size=settings.upload.block_size,
        blocks_per_request=settings.upload.blocks_per_request,
        block_retries=settings.upload.block_retries,
        progress_callback=progress_callback,
    )
    return DropboxUploader(client, settings.dropbox.dest_path, block_uploader=block_uploader)


def build_gdrive_uploader(settings: Settings) -> GoogleDriveUploader:
    if not settings.gdrive.dir_id:
        raise ConfigurationError("No Google Drive folder ID (gdrive.dir_id) configured")
    client = GoogleDriveClient(settings.gdrive.access_token, timeout=settings.gdrive.timeout)
    return GoogleDriveUploader(client, settings.gdrive.dir_id)


def dropbox_up(
    source_name: str, settings: Settings, uploader: Optional[DropboxUploader] = None
) -> BatchResult:
    """Upload the latest export of a source to Dropbox."""
    logger.info(f"Starting Dropbox upload of exports for source: {source_name}")
    files = list_files(settings.startup.export_path, source_name)
    if not files:
        return BatchResult()
    uploader = uploader or build_dropbox_uploader(settings)
    result = uploader.upload_batch(files)
    logger.info(
        f"Dropbox upload for {source_name} finished: {len(result.succeeded)} uploaded, "
        f"{len(result.failed)} failed, {len(result.not_attempted)} not attempted"
    )
    return result


def gdrive_up(
    source_name: str, settings: Settings, uploader: Optional[GoogleDriveUploader] = None
) -> bool:
    """
    Upload the latest export of a source to Google Drive.

    Returns:
        Whether uploading was found to be possible. The uploads themselves may or
        may not have succeeded, but if this is False no more should be attempted.
    """
    logger.info(f"Starting Google Drive upload of exports for source: {source_name}")
    files = list_files(settings.startup.export_path, source_name)
    if not files:
        return True
    uploader = uploader or build_gdrive_uploader(settings)
    return uploader.upload_files(files)


def dispatch(settings: Settings, action: Action) -> None:
    """Carry out one action."""
    try:
        sources = settings.selected_sources(action.source)
    except ConfigurationError as e:
        logger.error(str(e))
        return

    sources_list = ",".join(sources)

    if action.upload_dropbox:
        logger.info(f"Running dropbox upload for sources: {sources_list}")
        try:
            uploader = build_dropbox_uploader(settings)
        except BackupUploaderError as e:
            logger.error(f"Can't upload to Dropbox: {e}")
        else:
            for source in sources:
                result = dropbox_up(source, settings, uploader)
                if result.aborted:
                    logger.error("Dropbox is unusable, skipping remaining sources")
                    break

    if action.upload_gdrive:
        logger.info(f"Running Google Drive upload for sources: {sources_list}")
        try:
            gdrive_uploader = build_gdrive_uploader(settings)
        except BackupUploaderError as e:
            logger.error(f"Can't upload to Google Drive: {e}")
        else:
            for source in sources:
                if not gdrive_up(source, settings, gdrive_uploader):
                    logger.error("Google Drive uploads not possible, stopping")
                    break

    logger.info("Completed all actions.")
