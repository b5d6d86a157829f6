"""Video source descriptor stored on a stream session."""

from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter


class LocalFileSource(BaseModel):
    """An uploaded file, addressed relative to the videos directory."""

    kind: Literal["local_file"] = "local_file"
    path: str


class HostedVideoSource(BaseModel):
    """A direct media URL read as-is by the encoder."""

    kind: Literal["hosted_video"] = "hosted_video"
    url: str


class WebVideoSource(BaseModel):
    """A video page URL that must be resolved to a media URL before encoding."""

    kind: Literal["web_video"] = "web_video"
    url: str


VideoSource = Annotated[
    LocalFileSource | HostedVideoSource | WebVideoSource,
    Field(discriminator="kind"),
]

video_source_adapter: TypeAdapter[LocalFileSource | HostedVideoSource | WebVideoSource] = TypeAdapter(
    VideoSource
)


def source_value(source: LocalFileSource | HostedVideoSource | WebVideoSource) -> str:
    """Return the path or URL carried by a source."""
    if isinstance(source, LocalFileSource):
        return source.path
    return source.url


__all__ = [
    "HostedVideoSource",
    "LocalFileSource",
    "VideoSource",
    "WebVideoSource",
    "source_value",
    "video_source_adapter",
]
