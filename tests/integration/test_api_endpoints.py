"""
Integration tests for API endpoints.
"""

import json

import pytest

from dogeauth.errors import AllowListUnavailable
from dogeauth.factory import create_app

START = 1_700_000_000


def fetch_challenge(client):
    response = client.get("/generate-challenge")
    assert response.status_code == 200
    return response.get_json()


def post_answer(client, address, message, signature):
    return client.post(
        "/verify-signature",
        data=json.dumps({"address": address, "message": message, "signature": signature}),
        content_type="application/json",
    )


class TestHealthEndpoint:
    """Test health check endpoints."""

    def test_health_endpoint_returns_ok(self, client):
        """Test that health endpoint returns 200 OK."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert "timestamp" in data

    def test_health_endpoint_includes_version(self, client):
        data = client.get("/health").get_json()

        assert data["version"] == "1.0.0"
        assert data["service"] == "dogeauth"

    def test_health_components(self, client):
        components = client.get("/health").get_json()["components"]

        assert components["challenge_store"]["status"] == "connected"
        assert components["challenge_store"]["backend"] == "InMemoryChallengeStore"
        assert components["allow_list"]["addresses"] == 1
        assert components["network"] == "dogecoin"

    def test_liveness_and_readiness(self, client):
        assert client.get("/health/live").get_json() == {"status": "alive"}
        assert client.get("/health/ready").status_code == 200


class TestMetricsEndpoint:
    """Test metrics endpoints."""

    def test_metrics_endpoint_returns_json(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.content_type == "application/json"
        data = response.get_json()
        assert data["metrics"]["allowed_addresses"] == 1

    def test_challenge_counter_increments(self, client):
        before = client.get("/metrics").get_json()["metrics"]["challenges_issued"]
        fetch_challenge(client)
        after = client.get("/metrics").get_json()["metrics"]["challenges_issued"]

        assert after == before + 1

    def test_prometheus_format(self, client):
        fetch_challenge(client)
        post_answer(client, "", "", "")

        response = client.get("/metrics/prometheus")

        assert response.status_code == 200
        body = response.get_data(as_text=True)
        assert "challenges_issued_total" in body
        assert 'auth_decisions_total{outcome="denied",reason="missing_fields"}' in body
        assert "allowed_addresses 1.0" in body


class TestGenerateChallenge:
    """Test challenge issuing over HTTP."""

    def test_response_shape(self, client):
        data = fetch_challenge(client)

        assert set(data) == {"challenge", "message", "expires_at"}
        assert len(data["challenge"]) == 64
        assert data["message"].startswith(f"{START}000-")
        assert data["expires_at"] == START + 300

    def test_each_call_is_unique(self, client):
        first = fetch_challenge(client)
        second = fetch_challenge(client)

        assert first["challenge"] != second["challenge"]
        assert first["message"] != second["message"]


class TestVerifySignature:
    """Test the decision endpoint and its status codes."""

    def test_granted(self, client, private_key, address, sign, recorder, app):
        challenge = fetch_challenge(client)

        response = post_answer(client, address, challenge["message"], sign(private_key, challenge["message"]))

        assert response.status_code == 200
        assert response.get_json() == {"status": "granted", "address": address, "action": "access_granted"}
        assert app.extensions["dogeauth"].drain(timeout=5)
        assert recorder.calls == [address]

    def test_replay_rejected(self, client, private_key, address, sign):
        challenge = fetch_challenge(client)
        signature = sign(private_key, challenge["message"])

        assert post_answer(client, address, challenge["message"], signature).status_code == 200
        response = post_answer(client, address, challenge["message"], signature)

        assert response.status_code == 400
        assert response.get_json()["error"] == "challenge_not_found"

    def test_missing_fields(self, client):
        response = client.post("/verify-signature", json={"address": "Dabc"})

        assert response.status_code == 400
        assert response.get_json() == {
            "status": "denied",
            "error": "missing_fields",
            "message": "Missing required fields",
        }

    def test_non_json_body(self, client):
        response = client.post("/verify-signature", data="address=Dabc", content_type="text/plain")

        assert response.status_code == 400
        assert response.get_json()["error"] == "missing_fields"

    @pytest.mark.parametrize("body", ["[1, 2]", '"str"', "7", "null"])
    def test_json_body_that_is_not_an_object(self, client, body):
        """Valid JSON of the wrong shape is a denial, not a server error."""
        response = client.post("/verify-signature", data=body, content_type="application/json")

        assert response.status_code == 400
        assert response.get_json()["error"] == "missing_fields"

    def test_malformed_signature(self, client, address):
        challenge = fetch_challenge(client)

        response = post_answer(client, address, challenge["message"], "AAAA")

        assert response.status_code == 400
        assert response.get_json()["error"] == "malformed_signature"

    def test_invalid_signature(self, client, other_private_key, address, sign):
        challenge = fetch_challenge(client)

        response = post_answer(client, address, challenge["message"], sign(other_private_key, challenge["message"]))

        assert response.status_code == 401
        assert response.get_json()["error"] == "invalid_signature"

    def test_address_not_allowed(self, client, other_private_key, other_address, sign, recorder):
        challenge = fetch_challenge(client)

        response = post_answer(
            client, other_address, challenge["message"], sign(other_private_key, challenge["message"])
        )

        assert response.status_code == 403
        assert response.get_json()["error"] == "address_not_allowed"
        assert recorder.calls == []

    def test_expired_challenge(self, client, clock, private_key, address, sign):
        challenge = fetch_challenge(client)
        clock.advance(301)

        response = post_answer(client, address, challenge["message"], sign(private_key, challenge["message"]))

        assert response.status_code == 400
        assert response.get_json()["error"] == "challenge_expired"

    def test_unknown_challenge(self, client, private_key, address, sign):
        message = f"{START}000-" + "ab" * 16

        response = post_answer(client, address, message, sign(private_key, message))

        assert response.status_code == 400
        assert response.get_json()["error"] == "challenge_not_found"


class TestAllowListFailures:
    """Test that a broken allow-list is a server error, not a denial."""

    @pytest.fixture
    def allow_list_file(self, tmp_path, address):
        path = tmp_path / "allowed_addresses.json"
        path.write_text(json.dumps({"allowed_addresses": [address]}), encoding="utf-8")
        return path

    @pytest.fixture
    def file_app(self, allow_list_file, clock):
        flask_app = create_app(
            {
                "ALLOWED_ADDRESSES": "",
                "ALLOWED_ADDRESSES_FILE": str(allow_list_file),
                "ALLOW_LIST_REFRESH_SECONDS": 0,
                "RATE_LIMIT_ENABLED": False,
            },
            on_granted=lambda address: None,
            clock=clock,
        )
        yield flask_app
        flask_app.extensions["dogeauth"].shutdown()

    def test_file_allow_list_grants(self, file_app, private_key, address, sign):
        client = file_app.test_client()
        challenge = fetch_challenge(client)

        response = post_answer(client, address, challenge["message"], sign(private_key, challenge["message"]))

        assert response.status_code == 200

    def test_missing_file_returns_503(self, file_app, allow_list_file, private_key, address, sign):
        client = file_app.test_client()
        challenge = fetch_challenge(client)
        allow_list_file.unlink()

        response = post_answer(client, address, challenge["message"], sign(private_key, challenge["message"]))

        assert response.status_code == 503
        data = response.get_json()
        assert data["ok"] is False
        assert data["error"] == "allow_list_unavailable"
        assert data["message"] == "Authentication service temporarily unavailable"

    def test_missing_file_at_startup_raises(self, tmp_path):
        with pytest.raises(AllowListUnavailable):
            create_app({"ALLOWED_ADDRESSES": "", "ALLOWED_ADDRESSES_FILE": str(tmp_path / "absent.json")})


class TestHttpBehaviour:
    """Test error handlers, headers and rate limiting."""

    def test_unknown_route_is_json_404(self, client):
        response = client.get("/does-not-exist")

        assert response.status_code == 404
        assert response.get_json()["error"] == "not_found"

    def test_wrong_method_is_json_405(self, client):
        response = client.get("/verify-signature")

        assert response.status_code == 405
        assert response.get_json()["error"] == "method_not_allowed"

    def test_cors_and_security_headers(self, client):
        response = client.get("/generate-challenge")

        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "Content-Security-Policy" in response.headers

    def test_challenge_endpoint_is_rate_limited(self, address, clock):
        limited_app = create_app(
            {"ALLOWED_ADDRESSES": address, "RATE_LIMIT_ENABLED": True},
            on_granted=lambda a: None,
            clock=clock,
        )
        client = limited_app.test_client()

        statuses = [client.get("/generate-challenge").status_code for _ in range(31)]

        assert statuses[:30] == [200] * 30
        assert statuses[30] == 429
        assert client.get("/generate-challenge").get_json()["error"] == "rate_limit_exceeded"
        limited_app.extensions["dogeauth"].shutdown()


    def test_limiter_follows_latest_app(self, address, clock):
        """The shared limiter takes its settings from the most recently created app."""
        from dogeauth.security import limiter

        first = create_app({"ALLOWED_ADDRESSES": address, "RATE_LIMIT_ENABLED": True}, clock=clock)
        assert limiter.enabled is True

        second = create_app({"ALLOWED_ADDRESSES": address, "RATE_LIMIT_ENABLED": False}, clock=clock)
        assert limiter.enabled is False

        statuses = {first.test_client().get("/generate-challenge").status_code for _ in range(31)}
        assert statuses == {200}

        first.extensions["dogeauth"].shutdown()
        second.extensions["dogeauth"].shutdown()


class TestCliCommands:
    """Test operator commands."""

    def test_sweep_challenges(self, runner, client, clock):
        fetch_challenge(client)
        clock.advance(301)

        result = runner.invoke(args=["sweep-challenges"])

        assert result.exit_code == 0
        assert "Swept 1 expired challenges" in result.output

    def test_reload_allow_list(self, runner):
        result = runner.invoke(args=["reload-allow-list"])

        assert result.exit_code == 0
        assert "Allow-list holds 1 addresses" in result.output
