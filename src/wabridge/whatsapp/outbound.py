"""Outbound message content: a closed set of variants, one per kind.

Each variant knows how to build its transport payload, so adding a media
kind means adding a class here and an entry in MEDIA_BUILDERS.
"""

from dataclasses import dataclass
from typing import Any, Callable, Literal, Union

MediaType = Literal["image", "document", "audio", "video"]


class InvalidMediaTypeError(ValueError):
    """Raised when a media type is not one of image/document/audio/video."""

    pass


@dataclass(frozen=True)
class TextContent:
    text: str

    kind = "text"

    def to_transport(self) -> dict[str, Any]:
        return {"text": self.text}


@dataclass(frozen=True)
class ImageContent:
    url: str
    caption: str | None = None

    kind = "image"

    def to_transport(self) -> dict[str, Any]:
        return {"image": {"url": self.url}, "caption": self.caption}


@dataclass(frozen=True)
class DocumentContent:
    url: str
    caption: str | None = None

    kind = "document"

    def to_transport(self) -> dict[str, Any]:
        return {"document": {"url": self.url}, "caption": self.caption}


@dataclass(frozen=True)
class AudioContent:
    """Audio carries no caption on the wire; one passed in is dropped."""

    url: str

    kind = "audio"

    def to_transport(self) -> dict[str, Any]:
        return {"audio": {"url": self.url}}


@dataclass(frozen=True)
class VideoContent:
    url: str
    caption: str | None = None

    kind = "video"

    def to_transport(self) -> dict[str, Any]:
        return {"video": {"url": self.url}, "caption": self.caption}


OutboundContent = Union[TextContent, ImageContent, DocumentContent, AudioContent, VideoContent]

MEDIA_BUILDERS: dict[str, Callable[[str, str | None], OutboundContent]] = {
    "image": lambda url, caption: ImageContent(url=url, caption=caption),
    "document": lambda url, caption: DocumentContent(url=url, caption=caption),
    "audio": lambda url, caption: AudioContent(url=url),
    "video": lambda url, caption: VideoContent(url=url, caption=caption),
}


def build_media_content(media_type: str, url: str, caption: str | None = None) -> OutboundContent:
    """Build the content variant for a media send.

    Raises:
        InvalidMediaTypeError: If media_type is not a known kind.
    """
    builder = MEDIA_BUILDERS.get(media_type)
    if builder is None:
        raise InvalidMediaTypeError(f"invalid media type: {media_type!r}")
    return builder(url, caption)
