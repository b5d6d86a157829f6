from ._store import BeanieSessionStore, SessionStore
from .command_builder import CommandSpec, build_command, validate_request
from .quota_ledger import MongoQuotaLedger, QuotaLedger
from .source_resolver import WebVideoResolver
from .stream_domain import StreamService, build_stream_service
from .stream_models import (
    QuotaInfo,
    StreamSessionCreateParams,
    StreamSessionResponse,
    StreamStatusResponse,
    SweepReport,
)
from .stream_state_machine import StreamStateMachine

__all__ = [
    "BeanieSessionStore",
    "CommandSpec",
    "MongoQuotaLedger",
    "QuotaInfo",
    "QuotaLedger",
    "SessionStore",
    "StreamService",
    "StreamSessionCreateParams",
    "StreamSessionResponse",
    "StreamStateMachine",
    "StreamStatusResponse",
    "SweepReport",
    "WebVideoResolver",
    "build_stream_service",
    "build_command",
    "validate_request",
]
