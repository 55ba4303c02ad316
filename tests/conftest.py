"""
Pytest configuration and shared fixtures for the access gate tests.
"""

import base64
import os
import sys
import threading
from unittest.mock import MagicMock

import pytest

# Set test environment before importing the package
os.environ["FLASK_ENV"] = "testing"
os.environ["FLASK_SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ALLOWED_ADDRESSES_FILE"] = ""
os.environ["ALLOWED_ADDRESSES"] = ""
os.environ["CHALLENGE_STORE"] = "memory"

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from coincurve import PrivateKey  # noqa: E402

from dogeauth.allowlist import AllowListGate  # noqa: E402
from dogeauth.audit_logger import AuditLogger  # noqa: E402
from dogeauth.challenges import ChallengeIssuer  # noqa: E402
from dogeauth.crypto import DOGECOIN, SignatureVerifier, message_digest, pubkey_to_address  # noqa: E402
from dogeauth.engine import AuthenticationEngine  # noqa: E402
from dogeauth.storage import InMemoryChallengeStore  # noqa: E402

START_TIME = 1_700_000_000.0


def sign_message(private_key, message, network=DOGECOIN, compressed=True):
    """Sign ``message`` the way a wallet does and return the base64 signature."""
    digest = message_digest(message, network)
    recoverable = private_key.sign_recoverable(digest, hasher=None)  # r | s | recid
    header = 27 + recoverable[64] + (4 if compressed else 0)
    return base64.b64encode(bytes([header]) + recoverable[:64]).decode()


def address_of(private_key, network=DOGECOIN, compressed=True):
    return pubkey_to_address(private_key.public_key.format(compressed=compressed), network)


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start=START_TIME):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            return self.now

    def advance(self, seconds):
        with self._lock:
            self.now += seconds


class ActionRecorder:
    """Grant action double that remembers every address it was called with."""

    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, address):
        with self._lock:
            self.calls.append(address)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sign():
    """Wallet-style message signing helper."""
    return sign_message


@pytest.fixture
def derive_address():
    return address_of


@pytest.fixture
def private_key():
    """Deterministic signing key for the allow-listed wallet."""
    return PrivateKey(bytes.fromhex("11" * 32))


@pytest.fixture
def other_private_key():
    """Deterministic signing key for a wallet that is not allow-listed."""
    return PrivateKey(bytes.fromhex("22" * 32))


@pytest.fixture
def address(private_key):
    return address_of(private_key)


@pytest.fixture
def other_address(other_private_key):
    return address_of(other_private_key)


@pytest.fixture
def audit_logger():
    return MagicMock(spec=AuditLogger)


@pytest.fixture
def store(clock):
    return InMemoryChallengeStore(clock=clock)


@pytest.fixture
def issuer(store, clock):
    return ChallengeIssuer(store, ttl_seconds=300, sweep_interval=60, clock=clock)


@pytest.fixture
def verifier():
    return SignatureVerifier(DOGECOIN)


@pytest.fixture
def gate(address, audit_logger):
    return AllowListGate(addresses=[address], audit_logger=audit_logger)


@pytest.fixture
def recorder():
    return ActionRecorder()


@pytest.fixture
def engine(store, issuer, verifier, gate, recorder, audit_logger):
    engine = AuthenticationEngine(
        store=store,
        issuer=issuer,
        verifier=verifier,
        gate=gate,
        on_granted=recorder,
        audit_logger=audit_logger,
    )
    yield engine
    engine.shutdown()


@pytest.fixture
def app(address, recorder, clock):
    """Create a test Flask application with the default wallet allow-listed."""
    from dogeauth.factory import create_app

    flask_app = create_app(
        {
            "TESTING": True,
            "FLASK_SECRET_KEY": "test-secret-key",
            "ALLOWED_ADDRESSES": address,
            "RATE_LIMIT_ENABLED": False,
            "FORCE_HTTPS": False,
        },
        on_granted=recorder,
        clock=clock,
    )

    with flask_app.app_context():
        yield flask_app

    flask_app.extensions["dogeauth"].shutdown()


@pytest.fixture
def client(app):
    """Create a test client for the Flask application."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application."""
    return app.test_cli_runner()


# Pytest configuration hooks
def pytest_configure(config):
    """Configure pytest with custom settings."""
    config.addinivalue_line("markers", "slow: tests that take a long time to run")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers automatically."""
    for item in items:
        # Add 'unit' marker to tests in unit/ directory
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        # Add 'integration' marker to tests in integration/ directory
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
