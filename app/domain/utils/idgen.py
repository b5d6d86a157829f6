from ulid import ULID


def new_ulid(prefix: str | None = None) -> str:
    value = str(ULID()).lower()
    return f"{prefix}{value}" if prefix else value


def new_stream_session_id() -> str:
    return new_ulid("ss_")


def new_upload_suffix() -> str:
    """Eight random lowercase characters taken from the ULID's random part."""
    return new_ulid()[-8:]
