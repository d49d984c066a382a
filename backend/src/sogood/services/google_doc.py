"""Google Docs export of conversation transcripts."""

import asyncio
import logging
from typing import Literal
from urllib.parse import quote

import google.auth.exceptions
import google.auth.transport.requests
import httpx
from google.oauth2 import service_account
from pydantic import BaseModel

from sogood.config import Settings
from sogood.errors import ExportError, InvalidPayloadError

logger = logging.getLogger(__name__)

GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/documents",
    "https://www.googleapis.com/auth/drive",
]
TOKEN_URI = "https://oauth2.googleapis.com/token"
DOCS_API = "https://docs.googleapis.com/v1/documents"
DRIVE_API = "https://www.googleapis.com/drive/v3/files"
DEFAULT_TITLE = "SoGood Export"


class ShareConfig(BaseModel):
    """Who gets access to exported documents."""

    type: Literal["anyone", "user", "none"] = "anyone"
    role: Literal["reader", "writer", "commenter"] = "writer"
    email: str | None = None


def share_config_from_settings(settings: Settings) -> ShareConfig:
    """Lenient parsing: unknown values fall back to anyone/writer."""
    share_type = settings.google_doc_share_type.lower()
    share_role = settings.google_doc_share_role.lower()
    return ShareConfig(
        type=share_type if share_type in ("user", "none") else "anyone",
        role=share_role if share_role in ("reader", "commenter") else "writer",
        email=settings.google_doc_share_email or None,
    )


class GoogleDocExporter:
    """Creates a Google Doc from a transcript and shares it."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self._transport = transport

    def _credentials(self) -> service_account.Credentials:
        email = self.settings.google_service_account_email
        private_key = self.settings.google_service_account_private_key
        if not email or not private_key:
            raise ExportError(
                "Missing GOOGLE_SERVICE_ACCOUNT_EMAIL/GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY",
                code="google_config_missing",
                status_code=400,
            )
        info = {
            "client_email": email,
            # Keys pasted into env files usually carry literal \n sequences
            "private_key": private_key.replace("\\n", "\n"),
            "token_uri": TOKEN_URI,
        }
        try:
            return service_account.Credentials.from_service_account_info(info, scopes=GOOGLE_SCOPES)
        except ValueError as e:
            raise ExportError(f"Token request failed: {e}", code="google_auth_failed") from e

    async def get_access_token(self) -> str:
        """Exchange the service account key for an OAuth access token."""
        credentials = self._credentials()

        def _refresh() -> str:
            credentials.refresh(google.auth.transport.requests.Request())
            return credentials.token

        try:
            token = await asyncio.to_thread(_refresh)
        except google.auth.exceptions.GoogleAuthError as e:
            logger.error(f"Google token request failed: {e}")
            raise ExportError(f"Token request failed: {e}", code="google_auth_failed") from e
        if not token:
            raise ExportError("No access_token returned by Google", code="google_auth_failed")
        return token

    async def export(self, title: str | None, content: str | None) -> str:
        """
        Create a document containing the content.

        Args:
            title: Document title (blank -> default title)
            content: Text to insert

        Returns:
            Shareable edit URL of the document

        """
        title = (title or "").strip() or DEFAULT_TITLE
        content = (content or "").strip()
        if not content:
            raise InvalidPayloadError("Missing export content")

        share = share_config_from_settings(self.settings)
        if share.type == "user" and not share.email:
            raise ExportError(
                "GOOGLE_DOC_SHARE_EMAIL is required when GOOGLE_DOC_SHARE_TYPE=user",
                code="google_config_missing",
                status_code=400,
            )

        token = await self.get_access_token()
        headers = {"Authorization": f"Bearer {token}"}

        async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
            response = await client.post(DOCS_API, headers=headers, json={"title": title})
            if response.is_error:
                raise ExportError(
                    f"Create doc failed ({response.status_code}): {response.text[:500]}",
                    code="google_docs_failed",
                )
            try:
                created = response.json()
            except ValueError as e:
                raise ExportError(
                    f"Create doc returned malformed JSON: {response.text[:500]}",
                    code="google_docs_failed",
                ) from e
            doc_id = created.get("documentId") if isinstance(created, dict) else None
            if not doc_id or not isinstance(doc_id, str):
                raise ExportError("Google returned no documentId", code="google_docs_failed")

            response = await client.post(
                f"{DOCS_API}/{quote(doc_id, safe='')}:batchUpdate",
                headers=headers,
                json={"requests": [{"insertText": {"location": {"index": 1}, "text": content}}]},
            )
            if response.is_error:
                raise ExportError(
                    f"Insert text failed ({response.status_code}): {response.text[:500]}",
                    code="google_docs_failed",
                )

            if share.type != "none":
                permission = {"type": share.type, "role": share.role}
                if share.type == "user":
                    permission["emailAddress"] = share.email
                response = await client.post(
                    f"{DRIVE_API}/{quote(doc_id, safe='')}/permissions",
                    headers=headers,
                    params={"sendNotificationEmail": "false"},
                    json=permission,
                )
                if response.is_error:
                    raise ExportError(
                        f"Share failed ({response.status_code}): {response.text[:500]}",
                        code="google_share_failed",
                    )

        logger.info(f"Exported document {doc_id}")
        return f"https://docs.google.com/document/d/{doc_id}/edit"
