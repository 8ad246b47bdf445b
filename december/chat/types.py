from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

Role = Literal["user", "assistant"]
AttachmentType = Literal["image", "document"]
ChatEventType = Literal["user", "assistant", "done"]


def now_iso() -> str:
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def new_message_id(role: str) -> str:
    return f"{role}-{uuid.uuid4().hex}"


@dataclass(frozen=True)
class Attachment:
    type: AttachmentType
    data: str
    name: str
    mime_type: str
    size: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "data": self.data,
            "name": self.name,
            "mimeType": self.mime_type,
            "size": int(self.size),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Attachment:
        kind = str(d.get("type") or "").strip().lower()
        if kind not in ("image", "document"):
            raise ValueError(f"unsupported attachment type: {kind or '<empty>'}")
        return cls(
            type=kind,  # type: ignore[arg-type]
            data=str(d.get("data") or ""),
            name=str(d.get("name") or ""),
            mime_type=str(d.get("mimeType") or d.get("mime_type") or ""),
            size=int(d.get("size") or 0),
        )


@dataclass(frozen=True)
class Message:
    id: str
    role: Role
    content: str
    timestamp: str
    attachments: tuple[Attachment, ...] | None = None

    @classmethod
    def new(
        cls,
        role: Role,
        content: str,
        attachments: list[Attachment] | tuple[Attachment, ...] | None = None,
        id: str | None = None,
    ) -> Message:
        return cls(
            id=id or new_message_id(role),
            role=role,
            content=content,
            timestamp=now_iso(),
            attachments=tuple(attachments) if attachments else None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.attachments:
            out["attachments"] = [a.to_dict() for a in self.attachments]
        return out


@dataclass
class ChatSession:
    id: str
    environment_id: str
    messages: list[Message] = field(default_factory=list)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "environmentId": self.environment_id,
            "messages": [m.to_dict() for m in self.messages],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class ChatEvent:
    type: ChatEventType
    data: Message

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data.to_dict()}


@dataclass(frozen=True)
class ChatExchange:
    user_message: Message
    assistant_message: Message

    def to_dict(self) -> dict[str, Any]:
        return {
            "userMessage": self.user_message.to_dict(),
            "assistantMessage": self.assistant_message.to_dict(),
        }
