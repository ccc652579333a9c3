"""Gmail implementation of the EmailService contract."""

from __future__ import annotations

import datetime as dt
import logging
import os
from typing import Any, Dict, List, Optional

from google.auth.transport.requests import Request as GReq
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from ..domain.query import EmailQuery, GmailQueryBuilder, GmailSearchOptions, QueryBuilder
from .base import AttachmentData, MessageDetails, MessagePart, MessagePartBody, MessageRef

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/gmail.modify"]
USER_ID = "me"
PAGE_SIZE = 500


def build_gmail_service(  # pragma: no cover - requires live Google OAuth
    credentials_path: str = "credentials.json", token_path: str = "token.json"
):
    creds = None
    if os.path.exists(token_path):
        creds = Credentials.from_authorized_user_file(token_path, SCOPES)
    if not creds or not creds.valid:
        if creds and creds.expired and creds.refresh_token:
            creds.refresh(GReq())
        else:
            flow = InstalledAppFlow.from_client_secrets_file(credentials_path, SCOPES)
            creds = flow.run_local_server(
                host="localhost",
                port=8080,
                access_type="offline",
                prompt="consent",
                include_granted_scopes="true",
            )
        with open(token_path, "w") as token:
            token.write(creds.to_json())
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


def parse_headers(headers: Optional[List[Dict[str, Any]]]) -> Dict[str, str]:
    h: Dict[str, str] = {}
    for it in headers or []:
        name = it.get("name") or ""
        if name:
            h[name] = it.get("value") or ""
    return h


def map_message_part(payload: Optional[Dict[str, Any]]) -> Optional[MessagePart]:
    if not payload:
        return None
    body = payload.get("body")
    part = MessagePart(
        part_id=payload.get("partId") or "",
        mime_type=(payload.get("mimeType") or "").lower(),
        filename=payload.get("filename") or "",
        headers=parse_headers(payload.get("headers")),
    )
    if body is not None:
        part.body = MessagePartBody(
            attachment_id=body.get("attachmentId") or "",
            size=int(body.get("size") or 0),
            data=body.get("data") or "",
        )
    for child in payload.get("parts") or []:
        mapped = map_message_part(child)
        if mapped is not None:
            part.parts.append(mapped)
    return part


def map_message_details(msg: Dict[str, Any]) -> MessageDetails:
    payload = msg.get("payload") or {}
    internal_ms = int(msg.get("internalDate") or 0)
    internal_date = (
        dt.datetime.fromtimestamp(internal_ms / 1000, tz=dt.timezone.utc) if internal_ms else None
    )
    return MessageDetails(
        id=msg.get("id") or "",
        thread_id=msg.get("threadId") or "",
        snippet=msg.get("snippet") or "",
        internal_date=internal_date,
        headers=parse_headers(payload.get("headers")),
        payload=map_message_part(payload),
    )


class GmailEmailService:
    """Wraps a ``googleapiclient`` Gmail v1 resource."""

    def __init__(
        self,
        svc,
        options: Optional[GmailSearchOptions] = None,
        builder: Optional[QueryBuilder] = None,
    ):
        self.svc = svc
        self.options = options or GmailSearchOptions()
        self.builder: QueryBuilder = builder or GmailQueryBuilder(self.options)

    def list_messages(self, query: EmailQuery) -> List[MessageRef]:
        q = self.builder.build(query)
        logger.debug("Gmail query: %s", q)
        refs: List[MessageRef] = []
        page_token = None
        while True:
            kwargs: Dict[str, Any] = {
                "userId": USER_ID,
                "q": q,
                "maxResults": PAGE_SIZE,
                "includeSpamTrash": self.options.include_spam_trash,
            }
            if self.options.label_id:
                kwargs["labelIds"] = [self.options.label_id]
            if page_token:
                kwargs["pageToken"] = page_token
            res = self.svc.users().messages().list(**kwargs).execute()
            for m in res.get("messages") or []:
                refs.append(MessageRef(id=m["id"], thread_id=m.get("threadId") or ""))
            page_token = res.get("nextPageToken")
            if not page_token:
                break
        return refs

    def get_message_details(self, message_id: str) -> MessageDetails:
        msg = (
            self.svc.users()
            .messages()
            .get(userId=USER_ID, id=message_id, format="full")
            .execute()
        )
        return map_message_details(msg)

    def get_attachment(self, message_id: str, attachment_id: str) -> AttachmentData:
        res = (
            self.svc.users()
            .messages()
            .attachments()
            .get(userId=USER_ID, messageId=message_id, id=attachment_id)
            .execute()
        )
        return AttachmentData(
            attachment_id=res.get("attachmentId") or attachment_id,
            size=int(res.get("size") or 0),
            data=res.get("data") or "",
        )

    def mark_as_read(self, message_id: str) -> None:
        (
            self.svc.users()
            .messages()
            .modify(userId=USER_ID, id=message_id, body={"removeLabelIds": ["UNREAD"]})
            .execute()
        )
