"""Shared fixtures: in-memory sessions, a loopback TLS hub, throwaway certificates."""

import asyncio
import datetime
import ipaddress
import ssl

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from mhu_client.errors import HubConnectionError
from mhu_client.types import HubAddress


class FakeSession:
    """Scripted stand-in for :class:`mhu_client.session.Session`.

    ``reads`` holds bytes (returned in order) or exceptions (raised).
    Once the script runs out, the session reports a clean close unless
    ``hold_open`` is set, in which case it blocks until closed.
    """

    def __init__(
        self,
        reads=(),
        *,
        connect_error=None,
        write_error=None,
        hold_open=False,
    ):
        self.reads = list(reads)
        self.connect_error = connect_error
        self.write_error = write_error
        self.hold_open = hold_open
        self.writes = []
        self.events = []
        self.connected = False
        self.closed = False
        self._closed_event = asyncio.Event()

    @property
    def is_connected(self):
        return self.connected and not self.closed

    async def connect(self):
        self.events.append("connect")
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def read(self, size=1024):
        if self.reads:
            item = self.reads.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item
        if self.hold_open:
            await self._closed_event.wait()
        return b""

    async def write(self, data):
        self.events.append("write")
        if self.write_error is not None:
            raise self.write_error
        if not self.is_connected:
            raise HubConnectionError("Session is not connected")
        self.writes.append(data)

    async def close(self):
        self.events.append("close")
        self.closed = True
        self._closed_event.set()


class FakeSessionFactory:
    """Hands out scripted sessions, then ``default()`` sessions."""

    def __init__(self, *sessions, default=None):
        self.sessions = list(sessions)
        self.default = default or (lambda: FakeSession(hold_open=True))
        self.created = []

    def __call__(self):
        session = self.sessions.pop(0) if self.sessions else self.default()
        self.created.append(session)
        return session


class LoopbackHub:
    """Minimal TLS server: greets each connection, records what it receives."""

    def __init__(self, cert_pair, greeting=b"", close_after_greeting=False):
        self.cert_pair = cert_pair
        self.greeting = greeting
        self.close_after_greeting = close_after_greeting
        self.received = bytearray()
        self.connections = 0
        self.server = None

    async def __aenter__(self):
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ctx.load_cert_chain(*self.cert_pair)
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0, ssl=ctx)
        return self

    async def __aexit__(self, *exc):
        self.server.close()
        await self.server.wait_closed()

    @property
    def address(self):
        host, port = self.server.sockets[0].getsockname()[:2]
        return HubAddress(host, port)

    async def _handle(self, reader, writer):
        self.connections += 1
        if self.greeting:
            writer.write(self.greeting)
            await writer.drain()
        if self.close_after_greeting:
            writer.close()
            return
        try:
            while data := await reader.read(1024):
                self.received.extend(data)
        except (ConnectionError, ssl.SSLError):
            pass
        finally:
            writer.close()


@pytest.fixture
def fake_factory():
    return FakeSessionFactory


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def eventually():
    """Poll *predicate* until it holds or *timeout* expires."""

    async def wait(predicate, timeout=2.0):
        deadline = asyncio.get_running_loop().time() + timeout
        while not predicate():
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return wait


def _write_certificate(directory, *, days_valid=30, expired=False):
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    now = datetime.datetime.now(datetime.timezone.utc)
    if expired:
        not_before = now - datetime.timedelta(days=10)
        not_after = now - datetime.timedelta(days=1)
    else:
        not_before = now - datetime.timedelta(minutes=5)
        not_after = now + datetime.timedelta(days=days_valid)

    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(
            x509.SubjectAlternativeName(
                [
                    x509.DNSName("localhost"),
                    x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
                ]
            ),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )

    cert_path = directory / "client.pem"
    key_path = directory / "client.key"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return str(cert_path), str(key_path)


@pytest.fixture
def cert_pair(tmp_path):
    """(certfile, keyfile) for a valid self-signed localhost certificate."""
    return _write_certificate(tmp_path)


@pytest.fixture
def expired_cert_pair(tmp_path):
    return _write_certificate(tmp_path, expired=True)


@pytest.fixture
def loopback_hub():
    return LoopbackHub
