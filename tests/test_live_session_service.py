"""Tests for 100ms token signing"""

import pytest
from jose import jwt

from services.live_session_service import HmsService, LiveSessionAPIError, ALGORITHM

ACCESS_KEY = "hms-access-key"
APP_SECRET = "hms-app-secret"


@pytest.fixture
def hms():
    return HmsService(access_key=ACCESS_KEY, app_secret=APP_SECRET, base_url="https://api.100ms.test/v2")


class TestTokens:

    def test_app_token_claims(self, hms):
        token = hms.generate_app_token("room-1", "user-1", "host")

        claims = jwt.decode(token, APP_SECRET, algorithms=[ALGORITHM])
        assert claims["access_key"] == ACCESS_KEY
        assert claims["type"] == "app"
        assert claims["version"] == 2
        assert claims["room_id"] == "room-1"
        assert claims["user_id"] == "user-1"
        assert claims["role"] == "host"
        assert claims["exp"] > claims["iat"]

    def test_management_token_claims(self, hms):
        claims = jwt.decode(hms.generate_management_token(), APP_SECRET, algorithms=[ALGORITHM])

        assert claims["type"] == "management"
        assert "room_id" not in claims

    def test_tokens_are_unique(self, hms):
        first = jwt.get_unverified_claims(hms.generate_management_token())
        second = jwt.get_unverified_claims(hms.generate_management_token())

        assert first["jti"] != second["jti"]

    def test_missing_credentials(self):
        service = HmsService(access_key="", app_secret="")

        with pytest.raises(LiveSessionAPIError):
            service.generate_app_token("room-1", "user-1", "guest")

    @pytest.mark.asyncio
    async def test_create_room_without_credentials(self):
        service = HmsService(access_key="", app_secret="")

        with pytest.raises(LiveSessionAPIError):
            await service.create_room()
