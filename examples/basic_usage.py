#!/usr/bin/env python3
"""
Basic usage of Backup Uploader as a library.

Uploads the latest export of one source to Dropbox, printing progress, then
sends the same files to Google Drive if a folder is configured.

Requires BACKUP_UPLOADER_DROPBOX_TOKEN (and optionally BACKUP_UPLOADER_GDRIVE_TOKEN
plus BACKUP_UPLOADER_GDRIVE_DIR_ID) in the environment.
"""

import logging
import os
import sys

from backup_uploader import AuthenticationError, DropboxClient, DropboxUploader
from backup_uploader.core.block_uploader import ParallelBlockUploader, human_number
from backup_uploader.core.exports import list_files
from backup_uploader.core.gdrive import GoogleDriveClient, GoogleDriveUploader


def show_progress(uploaded, total, rate):
    print(f"   {uploaded * 100 // max(total, 1)}% ({human_number(int(rate))}B/s)")


def main():
    logging.basicConfig(level=logging.WARNING)
    export_path = sys.argv[1] if len(sys.argv) > 1 else "/tmp/backup-uploader/exports"
    source = sys.argv[2] if len(sys.argv) > 2 else "web"

    files = list_files(export_path, source)
    if not files:
        print(f"No exports of {source} in {export_path}")
        return

    try:
        client = DropboxClient(os.environ.get("BACKUP_UPLOADER_DROPBOX_TOKEN", ""))
    except AuthenticationError as e:
        print(f"❌ {e}")
        return

    uploader = DropboxUploader(
        client,
        "/Backup/redundant",
        block_uploader=ParallelBlockUploader(client, progress_callback=show_progress),
    )
    result = uploader.upload_batch(files)
    print(f"Dropbox: {len(result.succeeded)} uploaded, {len(result.failed)} failed")
    if result.aborted:
        print("Dropbox is unusable; fix the account and run again.")

    dir_id = os.environ.get("BACKUP_UPLOADER_GDRIVE_DIR_ID")
    if dir_id:
        drive = GoogleDriveClient(os.environ.get("BACKUP_UPLOADER_GDRIVE_TOKEN", ""))
        if not GoogleDriveUploader(drive, dir_id).upload_files(files):
            print("Google Drive uploads not possible.")


if __name__ == "__main__":
    main()
