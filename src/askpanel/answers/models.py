"""Answer and submission data models."""

import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class Source(BaseModel):
    """A cited source. Position in AnswerSet.sources is its citation index."""
    title: str = ""
    url: str = ""
    date: str = ""


class AnswerSet(BaseModel):
    """Aggregated answers from the providers that responded."""
    results: dict[str, str] = Field(default_factory=dict)
    conclusion: str = ""
    sources: list[Source] = Field(default_factory=list)

    @property
    def providers(self) -> list[str]:
        return list(self.results)


@dataclass
class Attachment:
    """A file staged for submission."""
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @classmethod
    def from_path(cls, path: str | Path) -> "Attachment":
        """Read a file from disk, guessing its content type."""
        path = Path(path)
        content_type, _ = mimetypes.guess_type(path.name)
        return cls(
            filename=path.name,
            content=path.read_bytes(),
            content_type=content_type or "application/octet-stream",
        )

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class PendingSubmission:
    """What will be sent with the next request."""
    text: str = ""
    attachment: Optional[Attachment] = None

    @property
    def is_empty(self) -> bool:
        return not self.text.strip() and self.attachment is None
