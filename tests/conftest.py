"""
pytest configuration and fixtures.
"""

import dataclasses
import http.client as http_client
import ipaddress
import socket
import ssl
from datetime import datetime, timedelta, timezone
from typing import Dict, Generator, Optional

import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from frontdoor import FrontDoorConfig, LifecycleController, create_servers


def generate_self_signed(cert_file: Path, key_file: Path, common_name: str = "localhost") -> None:
    """Write a self-signed RSA certificate for localhost / 127.0.0.1."""
    from cryptography import x509
    from cryptography.hazmat.primitives import hashes, serialization
    from cryptography.hazmat.primitives.asymmetric import rsa
    from cryptography.x509 import NameOID, SubjectAlternativeName, DNSName, IPAddress

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    san = SubjectAlternativeName([DNSName("localhost"), IPAddress(ipaddress.ip_address("127.0.0.1"))])
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])

    not_before = datetime.now(timezone.utc) - timedelta(minutes=5)
    not_after = not_before + timedelta(days=30)

    cert = (x509.CertificateBuilder()
            .subject_name(name).issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before).not_valid_after(not_after)
            .add_extension(san, critical=False)
            .sign(key, hashes.SHA256()))

    key_file.write_bytes(key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    cert_file.write_bytes(cert.public_bytes(serialization.Encoding.PEM))


@pytest.fixture(scope="session")
def make_certificate():
    """generate_self_signed, for tests that rewrite a certificate."""
    return generate_self_signed


@pytest.fixture(scope="session")
def tls_files(tmp_path_factory) -> Dict[str, str]:
    """One self-signed certificate/key pair for the whole test session."""
    directory = tmp_path_factory.mktemp("tls")
    cert_file = directory / "fullchain.pem"
    key_file = directory / "privkey.pem"
    generate_self_signed(cert_file, key_file)
    return {"certfile": str(cert_file), "keyfile": str(key_file)}


@pytest.fixture
def doc_root(tmp_path: Path) -> Path:
    """
    A small document root:

        index.html
        hello.txt                         "Hello, World!"
        data.bin                          256 bytes, 0x00-0xff
        sub/index.html
        empty/                            no index
        .well-known/acme-challenge/token123   "abc"
    """
    root = tmp_path / "public"
    root.mkdir()
    (root / "index.html").write_text("<h1>home</h1>")
    (root / "hello.txt").write_text("Hello, World!")
    (root / "data.bin").write_bytes(bytes(range(256)))
    (root / "sub").mkdir()
    (root / "sub" / "index.html").write_text("<h1>sub</h1>")
    (root / "empty").mkdir()
    challenge = root / ".well-known" / "acme-challenge"
    challenge.mkdir(parents=True)
    (challenge / "token123").write_bytes(b"abc")
    return root


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /docs/index.html?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: example.com:8000\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: text/html\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def config(doc_root: Path, tls_files: Dict[str, str]) -> FrontDoorConfig:
    """Test configuration: loopback, OS-assigned ports, short timeouts."""
    return FrontDoorConfig(
        host="127.0.0.1",
        http_port=0,
        https_port=0,
        doc_root=str(doc_root),
        certfile=tls_files["certfile"],
        keyfile=tls_files["keyfile"],
        read_timeout=2.0,
        idle_timeout=5.0,
        shutdown_timeout=5.0,
        min_workers=2,
        max_workers=8,
        log_level="WARNING",
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class RunningFrontDoor:
    """Both listeners bound on loopback and served by a LifecycleController."""

    def __init__(self, config: FrontDoorConfig):
        self.http_server, self.https_server = create_servers(config)
        self.http_port = self.http_server.bind()[1]
        self.https_port = self.https_server.bind()[1]
        self.controller = LifecycleController([self.http_server, self.https_server])

    def start(self) -> "RunningFrontDoor":
        self.controller.start()
        return self

    @staticmethod
    def client_context() -> ssl.SSLContext:
        return client_context()

    def stop(self, timeout: float = 10.0) -> Optional[BaseException]:
        self.controller.signal.cancel("test finished")
        return self.controller.wait(timeout)

    def http(self, method: str, target: str, headers: Optional[Dict[str, str]] = None) -> http_client.HTTPResponse:
        conn = http_client.HTTPConnection("127.0.0.1", self.http_port, timeout=5)
        conn.request(method, target, headers=headers or {})
        response = conn.getresponse()
        response.body = response.read()
        conn.close()
        return response

    def https(self, method: str, target: str, headers: Optional[Dict[str, str]] = None) -> http_client.HTTPResponse:
        conn = http_client.HTTPSConnection(
            "127.0.0.1", self.https_port, timeout=5, context=client_context(),
        )
        conn.request(method, target, headers=headers or {})
        response = conn.getresponse()
        response.body = response.read()
        conn.close()
        return response


def client_context() -> ssl.SSLContext:
    """A client context that trusts the self-signed test certificate."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


@pytest.fixture
def frontdoor(config: FrontDoorConfig) -> Generator[RunningFrontDoor, None, None]:
    """A running front door; stopped (and checked to stop cleanly) afterwards."""
    running = RunningFrontDoor(config).start()
    yield running
    assert running.stop() is None


@pytest.fixture
def start_frontdoor(config: FrontDoorConfig):
    """Start front doors with config overrides; all are stopped afterwards."""
    started = []

    def start(**changes) -> RunningFrontDoor:
        running = RunningFrontDoor(dataclasses.replace(config, **changes)).start()
        started.append(running)
        return running

    yield start

    for running in started:
        running.stop()
