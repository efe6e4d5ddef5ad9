"""
Microsoft Graph mailbox client for the shared HMLR inbox.

Public API:
  GraphMailbox.list_unread(senders)            -> list[MailboxMessage]
  GraphMailbox.mark_read(message_id)
  GraphMailbox.find_folder(display_name)       -> str | None
  GraphMailbox.create_folder(display_name)     -> str
  GraphMailbox.move_message(message_id, folder_id)
  GraphMailbox.send_mail(to, subject, html)    -> str | None
"""

import base64
import logging
from typing import Optional

import httpx

from landreg.models.mailbox import MailboxMessage
from landreg.services.inbound_email_adapter import normalize_graph_message
from landreg.services.oauth_session import AuthenticationError, OAuthSession

logger = logging.getLogger(__name__)

GRAPH_SCOPE = "https://graph.microsoft.com/.default"

# Graph caps a page of messages with expanded attachments.
UNREAD_PAGE_SIZE = 50


class MailboxError(Exception):
    def __init__(self, message: str, error_code: str = "mailbox_error"):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


def _odata_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class GraphMailbox:
    def __init__(
        self,
        http: httpx.AsyncClient,
        session: OAuthSession,
        mailbox_address: str,
        base_url: str = "https://graph.microsoft.com/v1.0",
    ):
        self._http = http
        self._session = session
        self.mailbox_address = mailbox_address
        self.base_url = base_url.rstrip("/")

    @property
    def _user_url(self) -> str:
        return f"{self.base_url}/users/{self.mailbox_address}"

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            token = await self._session.access_token()
        except AuthenticationError as e:
            raise MailboxError(f"Graph token unavailable: {e.message}", "auth_failed")
        headers = {"Authorization": f"Bearer {token}", **kwargs.pop("headers", {})}
        try:
            response = await self._http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise MailboxError(f"Graph {method} {url} failed: {e}", "network_error")

        if response.status_code == 401:
            self._session.invalidate()
        if response.status_code >= 400:
            raise MailboxError(
                f"Graph {method} {url} failed: HTTP {response.status_code} {response.text[:300]}",
                "http_error",
            )
        return response

    async def list_unread(self, senders: list[str]) -> list[MailboxMessage]:
        """
        Unread messages from any of the senders, with attachments expanded.
        Follows @odata.nextLink. No $orderby: Graph rejects one whose
        property is not also the first $filter clause.
        """
        sender_filter = " or ".join(
            f"from/emailAddress/address eq {_odata_quote(s)}" for s in senders
        )
        params: Optional[dict] = {
            "$filter": f"isRead eq false and ({sender_filter})",
            "$select": "id,subject,from,receivedDateTime,hasAttachments",
            "$expand": "attachments",
            "$top": str(UNREAD_PAGE_SIZE),
        }
        url: Optional[str] = f"{self._user_url}/messages"
        messages: list[MailboxMessage] = []

        while url:
            response = await self._request("GET", url, params=params)
            payload = response.json()
            for raw in payload.get("value") or []:
                messages.append(normalize_graph_message(raw))
            url = payload.get("@odata.nextLink")
            params = None

        logger.info(f"Found {len(messages)} unread HMLR message(s)")
        return messages

    async def mark_read(self, message_id: str) -> None:
        await self._request(
            "PATCH", f"{self._user_url}/messages/{message_id}", json={"isRead": True}
        )

    async def find_folder(self, display_name: str) -> Optional[str]:
        response = await self._request(
            "GET",
            f"{self._user_url}/mailFolders",
            params={"$filter": f"displayName eq {_odata_quote(display_name)}"},
        )
        folders = response.json().get("value") or []
        return folders[0]["id"] if folders else None

    async def create_folder(self, display_name: str) -> str:
        response = await self._request(
            "POST", f"{self._user_url}/mailFolders", json={"displayName": display_name}
        )
        folder_id = response.json().get("id")
        if not folder_id:
            raise MailboxError(f"Graph returned no id for new folder {display_name!r}")
        return folder_id

    async def move_message(self, message_id: str, folder_id: str) -> None:
        await self._request(
            "POST",
            f"{self._user_url}/messages/{message_id}/move",
            json={"destinationId": folder_id},
        )

    async def send_mail(
        self,
        to: list[str],
        subject: str,
        html: str,
        attachments: Optional[list[tuple[str, bytes, str]]] = None,
        cc: Optional[list[str]] = None,
    ) -> Optional[str]:
        """Send from the shared mailbox. attachments are (filename, bytes, content_type)."""
        message = {
            "subject": subject,
            "body": {"contentType": "HTML", "content": html},
            "toRecipients": [{"emailAddress": {"address": a}} for a in to],
            "ccRecipients": [{"emailAddress": {"address": a}} for a in cc or []],
            "attachments": [
                {
                    "@odata.type": "#microsoft.graph.fileAttachment",
                    "name": name,
                    "contentType": content_type,
                    "contentBytes": base64.b64encode(content).decode(),
                }
                for name, content, content_type in attachments or []
            ],
        }
        response = await self._request(
            "POST",
            f"{self._user_url}/sendMail",
            json={"message": message, "saveToSentItems": True},
        )
        # sendMail answers 202 with no body; the request id is the only handle.
        return response.headers.get("request-id")
