"""
Pytest configuration and shared fixtures for the matrix router channel tests.

Provides a scripted in-memory link (FakeRouter / FakeLink) that stands in for
the pyserial-asyncio transport, so the connection state machine, the command
queue and the cross-thread client can be driven deterministically.
"""

import asyncio
import sys
import threading
from collections import deque
from pathlib import Path
from typing import Iterable, List, Optional

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from lib.channel_config import ChannelConfig
from device.serial_link import LinkWriteError


# =============================================================================
# Fake link
# =============================================================================


class FakeRouter:
    """
    Scripted router shared by every link it creates.

    Each reply item is consumed by one write:
      - bytes            -> delivered as one chunk
      - list/tuple       -> delivered as several chunks
      - None             -> no reply (the exchange times out)
    When the script is exhausted ``default_reply`` is used.

    With ``deferred_open`` the open is reported on a later loop iteration,
    the way pyserial-asyncio delivers connection_made, leaving the link in
    Connecting for one turn of the loop.
    """

    def __init__(self, replies: Iterable = (), *, fail_open: bool = False,
                 reply_delay: float = 0.0, default_reply: Optional[bytes] = b"DONE\r",
                 deferred_open: bool = False):
        self.replies = deque(replies)
        self.fail_open = fail_open
        self.reply_delay = reply_delay
        self.default_reply = default_reply
        self.deferred_open = deferred_open

        self.lock = threading.Lock()
        self.opened: List[ChannelConfig] = []
        self.writes: List[bytes] = []
        self.writes_by_link: List[tuple] = []
        self.closes = 0
        self.links: List["FakeLink"] = []
        self.overlap = False
        self._awaiting = False

    def factory(self, config, listener):
        link = FakeLink(self, config, listener)
        self.links.append(link)
        return link

    @property
    def ports_held(self) -> int:
        """Links whose port was acquired and not yet closed."""
        return sum(1 for link in self.links if link.held)

    @property
    def current(self) -> "FakeLink":
        return self.links[-1]

    def take_reply(self, data: bytes):
        with self.lock:
            if self._awaiting:
                self.overlap = True
            self.writes.append(data)
            self.writes_by_link.append((len(self.links) - 1, data))
            reply = self.replies.popleft() if self.replies else self.default_reply
            self._awaiting = reply is not None
            return reply

    def replied(self):
        with self.lock:
            self._awaiting = False


class FakeLink:
    def __init__(self, router: FakeRouter, config, listener):
        self.router = router
        self.config = config
        self.listener = listener
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.held = False
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        self.loop = asyncio.get_running_loop()
        self.router.opened.append(self.config)
        if self.router.fail_open:
            raise OSError(f"could not open port {self.config.serial_port}")
        self.held = True
        if self.router.deferred_open:
            self.loop.call_soon(self._report_open)
        else:
            self._report_open()

    def write(self, data: bytes) -> None:
        if not self._open:
            raise LinkWriteError("port is not open")
        reply = self.router.take_reply(data)
        if reply is not None:
            self.loop.call_later(self.router.reply_delay, self._deliver, reply)

    def close(self) -> None:
        if not self.held:
            return
        self.held = False
        self._open = False
        self.router.closes += 1
        self.loop.call_soon(self.listener.on_close)

    # ---- test helpers (call from the link's loop) ----
    def inject(self, data: bytes) -> None:
        self.listener.on_data(data)

    def drop(self, reason: str = "device unplugged") -> None:
        """Unsolicited error-induced close."""
        self.held = False
        self._open = False
        self.listener.on_error(reason)
        self.listener.on_close()

    def remote_close(self) -> None:
        """Graceful close reported by the transport."""
        self.held = False
        self._open = False
        self.listener.on_close()

    def _report_open(self) -> None:
        if not self.held:
            return
        self._open = True
        self.listener.on_open()

    def _deliver(self, reply) -> None:
        self.router.replied()
        if not self._open:
            return
        chunks = reply if isinstance(reply, (list, tuple)) else [reply]
        for chunk in chunks:
            self.listener.on_data(chunk)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def base_config() -> ChannelConfig:
    """Fast-timing configuration on a fake port (width 2 framing)."""
    return ChannelConfig(
        serial_port="/dev/ttyFAKE0",
        baud_rate=9600,
        command_timeout_ms=100,
        max_retries=2,
        simulate=False,
        max_inputs=16,
        max_outputs=16,
    )


@pytest.fixture
def fast_timing() -> dict:
    """Channel timing overrides so tests do not wait on production delays."""
    return {
        "gap_s": 0.005,
        "simulated_delay_s": 0.01,
        "reconnect_delay_s": 0.05,
    }


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    """Poll ``predicate`` on the running loop until it is truthy."""
    loop = asyncio.get_running_loop()
    end = loop.time() + timeout
    while not predicate():
        if loop.time() > end:
            raise AssertionError("condition not met within timeout")
        await asyncio.sleep(interval)
