"""
Unit tests for the data model.
"""

import pytest

from dogeauth.models import Challenge, ChallengeState, Decision, DenialReason, VerificationRequest


class TestChallenge:
    def test_expiry_is_strictly_after_deadline(self):
        challenge = Challenge(id="c", message="m", issued_at=100.0, expires_at=400.0)

        assert challenge.is_expired(400.0) is False
        assert challenge.is_expired(400.001) is True

    def test_dict_round_trip_keeps_state(self):
        challenge = Challenge(id="c", message="m", issued_at=1.0, expires_at=2.0).with_state(ChallengeState.CONSUMED)

        assert Challenge.from_dict(challenge.to_dict()) == challenge


class TestVerificationRequest:
    """Test parsing of client answers."""

    def test_from_json_strips_values(self):
        request = VerificationRequest.from_json({"address": " Dabc ", "message": "m\n", "signature": " sig"})

        assert request == VerificationRequest("Dabc", "m", "sig")
        assert request.missing_fields() is False

    @pytest.mark.parametrize(
        "body",
        [None, {}, {"address": "D", "message": "m"}, {"address": "D", "message": "m", "signature": "   "}],
    )
    def test_missing_fields(self, body):
        assert VerificationRequest.from_json(body).missing_fields() is True

    @pytest.mark.parametrize("body", [[1, 2], "str", 7, True])
    def test_non_object_body_counts_as_missing(self, body):
        assert VerificationRequest.from_json(body).missing_fields() is True

    def test_non_string_values_count_as_missing(self):
        request = VerificationRequest.from_json({"address": 42, "message": ["m"], "signature": {"s": 1}})
        assert request.missing_fields() is True


class TestDecision:
    """Test the response shape of decisions."""

    def test_granted_to_dict(self):
        assert Decision.granted("Dabc").to_dict() == {
            "status": "granted",
            "address": "Dabc",
            "action": "access_granted",
        }

    def test_denied_to_dict(self):
        body = Decision.denied(DenialReason.INVALID_SIGNATURE).to_dict()

        assert body == {"status": "denied", "error": "invalid_signature", "message": "Invalid signature"}

    def test_every_reason_has_a_message(self):
        for reason in DenialReason:
            assert Decision.denied(reason).to_dict()["message"] != "Access denied"
