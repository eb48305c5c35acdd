"""
Transfer Module - Resumable Upload/Download

Handles the TCP wire protocol, both exchanges and the resume loop.
"""

from .errors import (
    TransferError, TransportError, FrameError, TransportTimeout,
    ProtocolError, RetriesExhausted
)
from .protocol import (
    CHUNK_SIZE, Opcode, OutcomeKind, RejectReason, TransferOutcome,
    TransferProgress, TransferConnection, open_connection
)
from .uploader import FileUploader, UploadReceiver, UploadSession
from .downloader import FileDownloader, DownloadSender, DownloadSession
from .resume import ResumeController, RetryPolicy
from .server import TransferServer

__all__ = [
    'TransferError',
    'TransportError',
    'FrameError',
    'TransportTimeout',
    'ProtocolError',
    'RetriesExhausted',
    'CHUNK_SIZE',
    'Opcode',
    'OutcomeKind',
    'RejectReason',
    'TransferOutcome',
    'TransferProgress',
    'TransferConnection',
    'open_connection',
    'FileUploader',
    'UploadReceiver',
    'UploadSession',
    'FileDownloader',
    'DownloadSender',
    'DownloadSession',
    'ResumeController',
    'RetryPolicy',
    'TransferServer',
]
