"""
Filing of processed HMLR messages into Processed / Failed mail folders.

Folders are looked up by display name and created on first use. Filing
is best-effort: a message left in the inbox is harmless (it is already
marked read), so folder and move failures are logged and swallowed here.
"""

import logging

from landreg.services.mailbox import GraphMailbox, MailboxError

logger = logging.getLogger(__name__)


class MailFolderService:
    def __init__(
        self,
        mailbox: GraphMailbox,
        processed_folder: str = "Processed",
        failed_folder: str = "Failed",
    ):
        self.mailbox = mailbox
        self.processed_folder = processed_folder
        self.failed_folder = failed_folder
        self._folder_ids: dict[str, str] = {}

    async def get_or_create_folder(self, display_name: str) -> str:
        """
        Return the folder id for display_name, creating the folder if needed.

        If the create call fails (typically because another worker created
        the folder in between), the lookup is repeated once before giving up.

        Raises:
            MailboxError: if the folder can neither be found nor created
        """
        cached = self._folder_ids.get(display_name)
        if cached:
            return cached

        folder_id = await self.mailbox.find_folder(display_name)
        if folder_id is None:
            logger.info(f"Creating mail folder: {display_name}")
            try:
                folder_id = await self.mailbox.create_folder(display_name)
            except MailboxError as e:
                folder_id = await self.mailbox.find_folder(display_name)
                if folder_id is None:
                    raise
                logger.info(f"Folder {display_name} appeared concurrently ({e.message})")

        self._folder_ids[display_name] = folder_id
        return folder_id

    async def move_pair(self, excel_message_id: str, archive_message_id: str, success: bool) -> int:
        """
        Move both messages of a pair to Processed (success) or Failed.

        Returns:
            Number of messages moved (0-2).
        """
        folder_name = self.processed_folder if success else self.failed_folder
        try:
            folder_id = await self.get_or_create_folder(folder_name)
        except MailboxError as e:
            logger.error(f"Cannot resolve mail folder {folder_name}: {e.message}")
            return 0

        moved = 0
        for message_id in (excel_message_id, archive_message_id):
            try:
                await self.mailbox.move_message(message_id, folder_id)
                moved += 1
                logger.info(f"Moved message {message_id} to {folder_name}")
            except MailboxError as e:
                logger.error(f"Failed to move message {message_id} to {folder_name}: {e.message}")
        return moved
