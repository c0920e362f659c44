"""
Tests for pacefund/schemas/webhook_payloads.py — payload validation and classification.
"""
import pytest
from pydantic import ValidationError

from pacefund.schemas.webhook_payloads import StravaWebhookPayload, WebhookVariant, classify


def _payload(**overrides) -> StravaWebhookPayload:
    data = {
        "object_type": "activity",
        "object_id": 555,
        "aspect_type": "create",
        "owner_id": 42,
        "event_time": 1700000000,
    }
    data.update(overrides)
    return StravaWebhookPayload.model_validate(data)


class TestClassify:
    @pytest.mark.parametrize("aspect,variant", [
        ("create", WebhookVariant.ACTIVITY_CREATE),
        ("update", WebhookVariant.ACTIVITY_UPDATE),
        ("delete", WebhookVariant.ACTIVITY_DELETE),
        ("archive", WebhookVariant.UNHANDLED),
    ])
    def test_activity_aspects(self, aspect, variant):
        assert classify(_payload(aspect_type=aspect)) is variant

    def test_athlete_deauthorization(self):
        payload = _payload(object_type="athlete", aspect_type="update", updates={"authorized": "false"})
        assert classify(payload) is WebhookVariant.ATHLETE_DEAUTHORIZE

    def test_athlete_update_still_authorized(self):
        payload = _payload(object_type="athlete", aspect_type="update", updates={"authorized": "true"})
        assert classify(payload) is WebhookVariant.UNHANDLED

    def test_athlete_create_unhandled(self):
        assert classify(_payload(object_type="athlete")) is WebhookVariant.UNHANDLED


class TestValidation:
    def test_missing_owner_rejected(self):
        with pytest.raises(ValidationError):
            StravaWebhookPayload.model_validate({"object_type": "activity", "object_id": 1})

    def test_non_numeric_id_rejected(self):
        with pytest.raises(ValidationError):
            _payload(object_id="abc")

    def test_updates_default_empty(self):
        assert _payload().updates == {}
