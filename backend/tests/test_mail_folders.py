"""
Processed / Failed folder filing tests.
"""

import pytest
from unittest.mock import AsyncMock

from landreg.services.mail_folders import MailFolderService
from landreg.services.mailbox import MailboxError


@pytest.mark.asyncio
async def test_success_moves_both_messages_to_processed(mailbox):
    folders = MailFolderService(mailbox, "Processed", "Failed")

    moved = await folders.move_pair("x1", "z1", success=True)

    assert moved == 2
    assert mailbox.moves == [("x1", "folder-processed"), ("z1", "folder-processed")]


@pytest.mark.asyncio
async def test_failure_moves_to_failed_folder(mailbox):
    folders = MailFolderService(mailbox, "Processed", "Failed")

    await folders.move_pair("x1", "z1", success=False)

    assert {folder for _, folder in mailbox.moves} == {"folder-failed"}


@pytest.mark.asyncio
async def test_existing_folder_is_reused_and_cached(mailbox):
    mailbox.folders["Processed"] = "existing-id"
    mailbox.find_folder = AsyncMock(return_value="existing-id")
    folders = MailFolderService(mailbox)

    await folders.move_pair("x1", "z1", success=True)
    await folders.move_pair("x2", "z2", success=True)

    mailbox.find_folder.assert_awaited_once_with("Processed")
    assert all(folder == "existing-id" for _, folder in mailbox.moves)


@pytest.mark.asyncio
async def test_create_race_falls_back_to_lookup(mailbox):
    mailbox.find_folder = AsyncMock(side_effect=[None, "created-elsewhere"])
    mailbox.create_folder = AsyncMock(side_effect=MailboxError("ErrorFolderExists"))
    folders = MailFolderService(mailbox)

    assert await folders.get_or_create_folder("Processed") == "created-elsewhere"


@pytest.mark.asyncio
async def test_unresolvable_folder_moves_nothing(mailbox):
    mailbox.find_folder = AsyncMock(return_value=None)
    mailbox.create_folder = AsyncMock(side_effect=MailboxError("Access denied"))
    folders = MailFolderService(mailbox)

    assert await folders.move_pair("x1", "z1", success=True) == 0
    assert mailbox.moves == []


@pytest.mark.asyncio
async def test_one_failed_move_does_not_stop_the_other(mailbox):
    original = mailbox.move_message

    async def flaky_move(message_id, folder_id):
        if message_id == "x1":
            raise MailboxError("ErrorItemNotFound")
        await original(message_id, folder_id)

    mailbox.move_message = flaky_move
    folders = MailFolderService(mailbox)

    assert await folders.move_pair("x1", "z1", success=True) == 1
    assert mailbox.moves == [("z1", "folder-processed")]
