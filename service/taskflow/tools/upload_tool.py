from __future__ import annotations

import base64
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..config import Settings
from ..errors import SchemaError, TransportError
from ..integrations.script_client import ScriptClient, _truthy

logger = logging.getLogger("taskflow.upload")


def _guess_mime_from_name(name: str) -> str:
    mt, _ = mimetypes.guess_type(name or "")
    return mt or ""


@dataclass(frozen=True)
class Attachment:
    file_name: str
    mime_type: str
    data: bytes

    @property
    def extension(self) -> str:
        name = self.file_name or ""
        return name.rsplit(".", 1)[-1].lower() if "." in name else ""

    @classmethod
    def from_bytes(cls, file_name: str, data: bytes, mime_type: Optional[str] = None) -> "Attachment":
        mt = (mime_type or "").strip() or _guess_mime_from_name(file_name) or "application/octet-stream"
        return cls(file_name=file_name or "attachment", mime_type=mt, data=data or b"")

    @classmethod
    def from_path(cls, path: str) -> "Attachment":
        p = Path(path).expanduser()
        return cls.from_bytes(p.name, p.read_bytes())


def to_data_url(att: Attachment) -> str:
    """Same shape a browser FileReader.readAsDataURL produces."""
    b64 = base64.b64encode(att.data).decode("ascii")
    return f"data:{att.mime_type};base64,{b64}"


class AttachmentUploader:
    """
    Ships one attachment to the script's uploadFile action (Drive folder behind it).
    upload() never raises: failures log a warning and return "".
    """

    def __init__(self, settings: Settings, client: ScriptClient):
        self.settings = settings
        self.client = client

    def upload(self, att: Attachment) -> str:
        fields = {
            "base64Data": to_data_url(att),
            "fileName": att.file_name,
            "mimeType": att.mime_type,
            "folderId": self.settings.upload_folder_id,
        }
        try:
            data = self.client.upload_file(fields)
        except (TransportError, SchemaError) as e:
            logger.warning("upload failed (transport) file=%s: %s", att.file_name, e)
            return ""

        url = str(data.get("fileUrl") or "").strip()
        if not _truthy(data.get("success")) or not url:
            logger.warning("upload failed file=%s: %s", att.file_name, data.get("error") or "no fileUrl in response")
            return ""

        logger.info("uploaded file=%s bytes=%d", att.file_name, len(att.data))
        return url
