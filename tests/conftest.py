"""Pytest fixtures for steam_depot tests."""
import hashlib
import queue
import threading

import pytest

from steam_depot import constants
from steam_depot.cdn import ContentClient
from steam_depot.exceptions import TransportError
from steam_depot.messages import DisconnectedEvent, LoggedOnEvent
from steam_depot.models import DepotChunk, DepotFile, DepotManifest, EResult
from steam_depot.storage import SessionStore
from steam_depot.transport import PlatformConnection, Transport
from steam_depot.utils import rolling_checksum

STEAM_ID = 76561197960287930


class FakeTransport(Transport):
    """
    In-memory transport.

    ``logon_results`` is consumed one entry per logon: an EResult answers
    with a LoggedOnEvent, None sends no answer, "disconnect" drops the
    connection instead of answering.
    """

    def __init__(self):
        self.connected = False
        self.connect_results = []
        self.connect_calls = 0
        self.logon_results = []
        self.logons = []
        self.sent = []
        self.requests = []
        self.responses = {}
        self.on_send = None
        self.on_log_on = None
        self.threads = set()
        self._events = queue.Queue()

    @property
    def is_connected(self):
        return self.connected

    def connect(self):
        self.threads.add(threading.current_thread().name)
        self.connect_calls += 1
        result = self.connect_results.pop(0) if self.connect_results else True
        self.connected = result
        return result

    def disconnect(self):
        self.connected = False
        self.emit(DisconnectedEvent(user_initiated=True))

    def send_log_on(self, details):
        self.threads.add(threading.current_thread().name)
        self.logons.append(details)
        if self.on_log_on:
            self.on_log_on(details)
        result = self.logon_results.pop(0) if self.logon_results else EResult.OK
        if result == "disconnect":
            self.connected = False
            self.emit(DisconnectedEvent())
        elif result is not None:
            self.emit(LoggedOnEvent(result=result, steam_id=STEAM_ID if result == EResult.OK else None))

    def send(self, message):
        self.sent.append(message)
        if self.on_send:
            for event in self.on_send(message) or []:
                self.emit(event)

    def request(self, message):
        self.threads.add(threading.current_thread().name)
        self.requests.append(message)
        response = self.responses.get(type(message))
        if callable(response):
            response = response(message)
        if isinstance(response, Exception):
            raise response
        if response is None:
            raise TransportError(f"No response configured for {type(message).__name__}")
        return response

    def emit(self, event):
        self._events.put(event)

    def poll(self, timeout):
        events = []
        try:
            events.append(self._events.get(timeout=timeout))
        except queue.Empty:
            return events
        while True:
            try:
                events.append(self._events.get_nowait())
            except queue.Empty:
                return events


class DepotBuilder:
    """Builds manifests whose chunks carry real checksums."""

    def __init__(self, depot_id=413153, manifest_id=5550001):
        self.depot_id = depot_id
        self.manifest_id = manifest_id
        self.files = []
        self.chunk_data = {}

    def add_file(self, path, data, chunk_size=1024):
        chunks = []
        for offset in range(0, len(data), chunk_size):
            piece = data[offset:offset + chunk_size]
            chunk_id = hashlib.sha1(f"{path}:{offset}".encode() + piece).hexdigest()
            self.chunk_data[chunk_id] = piece
            chunks.append(DepotChunk(chunk_id=chunk_id, offset=offset, uncompressed_length=len(piece),
                                     checksum=rolling_checksum(piece), compressed_length=len(piece)))
        depot_file = DepotFile(path=path, total_size=len(data), chunks=tuple(chunks))
        self.files.append(depot_file)
        return depot_file

    def add_directory(self, path):
        directory = DepotFile(path=path, total_size=0, flags=constants.DEPOT_FLAG_DIRECTORY)
        self.files.append(directory)
        return directory

    def manifest(self, manifest_id=None):
        return DepotManifest(depot_id=self.depot_id, manifest_id=manifest_id or self.manifest_id,
                             files=tuple(self.files))


class FakeContentClient(ContentClient):
    """
    Serves chunks from memory.

    ``plans`` maps a chunk id to per-attempt behaviours: "error" raises a
    TransportError, "corrupt" returns wrong bytes, "short" returns one byte
    less. Attempts beyond the plan succeed.
    """

    def __init__(self, builder):
        self.builder = builder
        self.downloaded = []
        self.manifest_requests = 0
        self.plans = {}
        self._lock = threading.Lock()

    @property
    def manifest(self):
        return self.builder.manifest()

    def download_manifest(self, depot_id, manifest_id, selection, depot_key):
        self.manifest_requests += 1
        return self.manifest

    def download_chunk(self, depot_id, chunk, selection, depot_key):
        with self._lock:
            self.downloaded.append(chunk.chunk_id)
            plan = self.plans.get(chunk.chunk_id)
            behaviour = plan.pop(0) if plan else None

        data = self.builder.chunk_data[chunk.chunk_id]
        if behaviour == "error":
            raise TransportError("connection reset")
        if behaviour == "corrupt":
            return bytes([data[0] ^ 0xFF]) + data[1:]
        if behaviour == "short":
            return data[:-1]
        return data


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def connection(transport):
    """Connection running the fake transport on a fast pump."""
    conn = PlatformConnection(transport, poll_interval=0.01)
    yield conn
    conn.stop()


@pytest.fixture
def session_store(tmp_path):
    return SessionStore(tmp_path / "session")


@pytest.fixture
def sleeps():
    """Records requested sleeps instead of sleeping."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    return sleeps.append


@pytest.fixture
def builder():
    return DepotBuilder()


@pytest.fixture
def content_client(builder):
    return FakeContentClient(builder)


@pytest.fixture
def make_token():
    """Builds an unsigned JWT with the given claims."""
    import base64
    import json

    def _make(claims):
        def encode(part):
            return base64.urlsafe_b64encode(json.dumps(part).encode()).decode().rstrip("=")
        return f"{encode({'alg': 'none'})}.{encode(claims)}.sig"

    return _make
