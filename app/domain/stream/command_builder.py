"""Translate a (video source, RTMP destination) pair into the FFmpeg command line.

Encoding parameters are fixed policy so every concurrent stream costs the same.
"""

from pathlib import PurePosixPath
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from app.schemas import HostedVideoSource, LocalFileSource, VideoSourceKind, WebVideoSource, source_value
from app.services.execution import Mount
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

RTMP_SCHEMES = ("rtmp", "rtmps")
HOSTED_SCHEMES = ("http", "https")

# Fixed encode policy
VIDEO_CODEC = "libx264"
VIDEO_PRESET = "veryfast"
VIDEO_MAXRATE = "3000k"
VIDEO_BUFSIZE = "6000k"
PIXEL_FORMAT = "yuv420p"
GOP_SIZE = 50
AUDIO_CODEC = "aac"
AUDIO_BITRATE = "160k"
AUDIO_CHANNELS = 2
AUDIO_SAMPLE_RATE = 44100
OUTPUT_FORMAT = "flv"

Source = LocalFileSource | HostedVideoSource | WebVideoSource


class CommandSpec(BaseModel):
    """Exact argv of one unit plus the mounts it needs."""

    argv: list[str]
    mounts: list[Mount] = Field(default_factory=list)


def _validation_error(message: str) -> AppError:
    return AppError(
        errcode=AppErrorCode.E_VALIDATION,
        errmesg=message,
        status_code=HttpStatusCode.UNPROCESSABLE_ENTITY,
    )


def _validate_rtmp_url(rtmp_url: str) -> None:
    if not rtmp_url or not rtmp_url.strip():
        raise _validation_error("RTMP URL is required")
    parsed = urlparse(rtmp_url.strip())
    if parsed.scheme.lower() not in RTMP_SCHEMES:
        raise _validation_error("RTMP URL must start with rtmp:// or rtmps://")
    if not parsed.hostname:
        raise _validation_error("RTMP URL must include a host")


def _validate_local_path(path: str) -> None:
    relative = PurePosixPath(path.strip())
    if relative.is_absolute() or ".." in relative.parts:
        raise _validation_error("Video path must be a file name inside the videos directory")


def validate_request(source: Source, rtmp_url: str) -> None:
    """Reject a request before any quota is reserved or unit launched.

    Raises:
        AppError: E_VALIDATION for a malformed destination or source
    """
    _validate_rtmp_url(rtmp_url)

    value = source_value(source)
    if not value or not value.strip():
        raise _validation_error("Video source is required")

    if source.kind == VideoSourceKind.LOCAL_FILE:
        _validate_local_path(value)
    elif source.kind == VideoSourceKind.HOSTED_VIDEO:
        parsed = urlparse(value.strip())
        if parsed.scheme.lower() not in HOSTED_SCHEMES or not parsed.hostname:
            raise _validation_error("Hosted video URL must be an http(s) URL")
    elif source.kind != VideoSourceKind.WEB_VIDEO:
        raise _validation_error(f"Unsupported video source kind: {source.kind}")


def build_command(
    source: Source,
    rtmp_url: str,
    *,
    media_url: str | None = None,
    videos_dir: str = "/tmp/streamax/videos",
    videos_mount: str = "/videos",
    ffmpeg_bin: str = "ffmpeg",
) -> CommandSpec:
    """Build the looping transcode-to-RTMP command for a validated request.

    Args:
        source: Video source descriptor
        rtmp_url: Destination RTMP URL
        media_url: Direct media URL resolved from a web video source
        videos_dir: Host directory holding uploaded files
        videos_mount: Path the videos directory is mounted at inside the unit
        ffmpeg_bin: Encoder executable

    Returns:
        CommandSpec with argv and mounts

    Raises:
        AppError: E_VALIDATION if the request is invalid or a web video was not resolved
    """
    validate_request(source, rtmp_url)

    mounts: list[Mount] = []
    if source.kind == VideoSourceKind.LOCAL_FILE:
        input_url = f"{videos_mount.rstrip('/')}/{source_value(source).strip()}"
        mounts.append(Mount(source=videos_dir, target=videos_mount, read_only=True))
    elif source.kind == VideoSourceKind.HOSTED_VIDEO:
        input_url = source_value(source).strip()
    else:
        if not media_url:
            raise _validation_error("Web video source must be resolved before building the command")
        input_url = media_url

    argv = [
        ffmpeg_bin,
        "-hide_banner",
        "-loglevel", "warning",
        "-re",
        "-stream_loop", "-1",
        "-i", input_url,
        "-c:v", VIDEO_CODEC,
        "-preset", VIDEO_PRESET,
        "-maxrate", VIDEO_MAXRATE,
        "-bufsize", VIDEO_BUFSIZE,
        "-pix_fmt", PIXEL_FORMAT,
        "-g", str(GOP_SIZE),
        "-c:a", AUDIO_CODEC,
        "-b:a", AUDIO_BITRATE,
        "-ac", str(AUDIO_CHANNELS),
        "-ar", str(AUDIO_SAMPLE_RATE),
        "-f", OUTPUT_FORMAT,
        rtmp_url.strip(),
    ]
    return CommandSpec(argv=argv, mounts=mounts)
