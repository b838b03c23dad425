import pytest
import asyncio
import os
import sys
import time
from pathlib import Path

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from tx_racer.endpoints import EndpointConfig
from tx_racer.results import ResultAggregator
from tx_racer.transaction import SignedTransaction, TransactionBuildError

# Environment variables for testing
os.environ.setdefault("TX_RACER_LOG_LEVEL", "DEBUG")


class FakeTransport:
    """In-memory transport with scripted per-endpoint behaviour."""

    def __init__(self):
        self.submit_plan = {}        # name -> (delay, signature or exception)
        self.notify_plan = {}        # name -> (delay, SignatureNotification)
        self.subscribe_errors = {}   # name -> exception
        self.subscribe_delay = {}    # name -> delay
        self.lookup_plan = []        # consumed in order; None when empty
        self.submitted = []
        self.subscribed = []
        self.unsubscribed = []
        self.lookups = []
        self.callbacks = {}
        self._timers = {}

    async def submit(self, endpoint, raw):
        delay, result = self.submit_plan.get(endpoint.name, (0, "rpc_sig"))
        if delay:
            await asyncio.sleep(delay)
        self.submitted.append(endpoint.name)
        if isinstance(result, Exception):
            raise result
        return result

    async def subscribe(self, endpoint, signature, callback):
        delay = self.subscribe_delay.get(endpoint.name)
        if delay:
            await asyncio.sleep(delay)
        if endpoint.name in self.subscribe_errors:
            raise self.subscribe_errors[endpoint.name]

        handle = f"{endpoint.name}#sub"
        self.callbacks[endpoint.name] = callback
        self.subscribed.append(handle)
        plan = self.notify_plan.get(endpoint.name)
        if plan is not None:
            notify_delay, notification = plan
            self._timers[handle] = asyncio.get_running_loop().call_later(notify_delay, callback, notification)
        return handle

    async def unsubscribe(self, handle):
        self.unsubscribed.append(handle)
        timer = self._timers.pop(handle, None)
        if timer is not None:
            timer.cancel()

    async def lookup(self, endpoint, signature):
        self.lookups.append(endpoint.name)
        if not self.lookup_plan:
            return None
        result = self.lookup_plan.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class ScriptedBuilder:
    """Async transaction factory; raises TransactionBuildError on the listed calls."""

    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.calls = 0
        self.built_at = []

    async def build(self):
        self.calls += 1
        if self.calls in self.fail_on:
            raise TransactionBuildError(f"Failed to create transaction: blockhash unavailable ({self.calls})")
        now = time.time()
        self.built_at.append(now)
        return SignedTransaction(raw=f"tx-{self.calls}".encode(), signature=f"Sig{self.calls}xxxxxxxx", created_at=now)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def aggregator():
    return ResultAggregator(index=1)


@pytest.fixture
def rpc_endpoints():
    return [
        EndpointConfig(name="A", url="https://a.rpc.example"),
        EndpointConfig(name="B", url="https://b.rpc.example"),
    ]


@pytest.fixture
def ws_endpoints():
    return [
        EndpointConfig(name="C", url="wss://c.ws.example"),
        EndpointConfig(name="D", url="wss://d.ws.example"),
    ]


@pytest.fixture
def builder_factory():
    return ScriptedBuilder
