"""
Resume Controller

Keeps a transfer going across connection failures.

Design Decision: Retry Strategy
===============================

Options Considered:
1. Fixed number of retries with exponential backoff
   - Bounded, predictable
   - Gives up on links that drop for minutes at a time

2. Retry immediately, forever
   - Finishes on any link that eventually comes back
   - Spins against a server that is gone for good

Decision: Pluggable policy, unbounded and immediate by default
- RetryPolicy() retries forever with no delay
- max_attempts / delay / backoff_multiplier bound it when needed
- The controller only loops; the exchanges decide what an attempt is

Each attempt recomputes its resume point from ground truth (the server's
reported length for uploads, the local file length for downloads), so
the controller never carries an offset forward itself.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .downloader import DownloadSession, FileDownloader
from .errors import RetriesExhausted
from .protocol import Address, OutcomeKind, ProgressCallback, TransferOutcome
from .uploader import FileUploader, UploadSession

logger = logging.getLogger(__name__)

DEFAULT_MAX_DELAY = 60.0  # seconds

# Called with the failed outcome and the number of attempts made so far
RetryCallback = Callable[[TransferOutcome, int], None]


@dataclass(frozen=True)
class RetryPolicy:
    """When and how fast to reconnect after a failed attempt."""
    max_attempts: Optional[int] = None  # None = never give up
    delay: float = 0.0
    backoff_multiplier: float = 1.0
    max_delay: float = DEFAULT_MAX_DELAY

    def should_retry(self, attempts: int) -> bool:
        return self.max_attempts is None or attempts < self.max_attempts

    def delay_for(self, attempts: int) -> float:
        """Seconds to wait after `attempts` failed attempts."""
        if self.delay <= 0:
            return 0.0
        if self.backoff_multiplier <= 1:
            return min(self.delay * self.backoff_multiplier ** (attempts - 1), self.max_delay)

        # Grow step by step and stop at the cap; a float power of a large
        # attempt count overflows
        delay = self.delay
        for _ in range(attempts - 1):
            if delay >= self.max_delay:
                break
            delay *= self.backoff_multiplier
        return min(delay, self.max_delay)

    @classmethod
    def from_config(cls, config) -> 'RetryPolicy':
        return cls(
            max_attempts=config.max_attempts,
            delay=config.retry_delay,
            backoff_multiplier=config.backoff_multiplier,
            max_delay=config.max_retry_delay,
        )


class ResumeController:
    """
    Runs transfer attempts until one is terminal.

    COMPLETED and REJECTED end the loop and are returned. RETRY reconnects,
    unless the policy says to stop, in which case RetriesExhausted is
    raised with the last outcome.
    """

    def __init__(self, uploader: FileUploader, downloader: FileDownloader,
                 policy: RetryPolicy = None,
                 retry_callback: RetryCallback = None):
        self.uploader = uploader
        self.downloader = downloader
        self.policy = policy or RetryPolicy()
        self.retry_callback = retry_callback

    async def run(self, attempt: Callable[[], Awaitable[TransferOutcome]],
                  description: str) -> TransferOutcome:
        """Drive `attempt` until it returns a terminal outcome."""
        attempts = 0

        while True:
            attempts += 1
            outcome = await attempt()

            if outcome.kind is OutcomeKind.COMPLETED:
                logger.info(f"{description} completed after {attempts} attempt(s)")
                return outcome

            if outcome.kind is OutcomeKind.REJECTED:
                logger.info(f"{description} rejected: {outcome.reason.value}")
                return outcome

            if self.retry_callback:
                self.retry_callback(outcome, attempts)

            if not self.policy.should_retry(attempts):
                logger.error(f"{description} failed, giving up after {attempts} attempts")
                raise RetriesExhausted(outcome, attempts)

            delay = self.policy.delay_for(attempts)
            logger.info(
                f"Restarting {description} from byte {outcome.offset:,} "
                f"(attempt {attempts + 1})"
                + (f" in {delay:.1f}s" if delay else "")
            )
            if delay:
                await asyncio.sleep(delay)

    async def upload(self, address: Address, session: UploadSession,
                     progress_callback: ProgressCallback = None) -> TransferOutcome:
        logger.info(f"Uploading file {session.filename} ...")
        return await self.run(
            lambda: self.uploader.attempt(address, session, progress_callback),
            f"Upload of {session.filename}"
        )

    async def download(self, address: Address, session: DownloadSession,
                       progress_callback: ProgressCallback = None) -> TransferOutcome:
        logger.info(f"Downloading file {session.filename} ...")
        return await self.run(
            lambda: self.downloader.attempt(address, session, progress_callback),
            f"Download of {session.filename}"
        )
