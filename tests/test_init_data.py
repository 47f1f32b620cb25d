"""Tests for initData parsing, start_param resolution and signature checks."""

import json
from datetime import datetime, timezone
from urllib.parse import urlencode

import pytest

from app.services.init_data import (
    InitDataError,
    extract_attribution,
    parse_init_data,
    resolve_start_param,
    sign_init_data,
    verify_init_data,
)

BOT_TOKEN = "123456:TEST-TOKEN"
USER = {"id": 42, "first_name": "Anna", "username": "anna", "language_code": "en", "is_premium": True}


def raw_init_data(**fields) -> str:
    return urlencode(fields)


class TestParseInitData:
    def test_decodes_user_json(self):
        fields = parse_init_data(raw_init_data(user=json.dumps(USER), auth_date="1700000000"))

        assert fields["user"]["id"] == 42
        assert fields["auth_date"] == "1700000000"

    def test_empty(self):
        assert parse_init_data("") == {}
        assert parse_init_data(None) == {}

    def test_bad_user_json_kept_raw(self):
        fields = parse_init_data("user=not-json")
        assert fields["user"] == "not-json"


class TestResolveStartParam:
    def test_unsafe_wins(self):
        value = resolve_start_param(
            {"start_param": "unsafe"},
            {"start_param": "raw"},
            "https://app.test/?tgWebAppStartParam=url",
        )
        assert value == "unsafe"

    def test_raw_fields_second(self):
        value = resolve_start_param({}, {"start_param": "raw"}, "https://app.test/?startapp=url")
        assert value == "raw"

    def test_launch_url_query(self):
        assert resolve_start_param({}, {}, "https://app.test/?tgWebAppStartParam=q") == "q"

    def test_launch_url_fragment(self):
        url = "https://app.test/#tgWebAppData=abc&tgWebAppStartParam=frag"
        assert resolve_start_param(None, None, url) == "frag"

    def test_startapp_last(self):
        assert resolve_start_param({}, {}, "https://t.me/bot/app?startapp=ads42") == "ads42"

    def test_nothing_found(self):
        assert resolve_start_param({"start_param": ""}, {}, None) is None


class TestExtractAttribution:
    def test_no_telegram_context(self):
        assert extract_attribution(None, "") is None

    def test_from_unsafe(self):
        now = datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)
        record = extract_attribution(
            {"user": USER, "start_param": "camp1"},
            "query_id=AAE&hash=x",
            platform="android",
            version="7.10",
            now=now,
        )

        assert record.telegram_id == 42
        assert record.start_param == "camp1"
        assert record.user_data.first_name == "Anna"
        assert record.user_data.is_premium is True
        assert record.user_data.last_name is None
        assert record.init_data == "query_id=AAE&hash=x"
        assert record.timestamp == "2026-01-15T10:00:00Z"
        assert record.platform == "android"
        assert record.version == "7.10"

    def test_from_raw_only(self):
        raw = raw_init_data(user=json.dumps(USER), start_param="camp9", auth_date="1")
        record = extract_attribution(None, raw)

        assert record.telegram_id == 42
        assert record.start_param == "camp9"
        assert record.platform == "unknown"

    def test_missing_user_id_still_builds_record(self):
        record = extract_attribution({"start_param": "camp1"}, "")

        assert record is not None
        assert record.telegram_id is None
        assert record.start_param == "camp1"
        assert record.user_data.is_premium is False


class TestVerifyInitData:
    def _signed(self, **fields) -> str:
        return urlencode({**fields, "hash": sign_init_data(fields, BOT_TOKEN)})

    def test_valid_signature(self):
        raw = self._signed(user=json.dumps(USER), auth_date="1700000000", query_id="AAE")

        fields = verify_init_data(raw, BOT_TOKEN)

        assert fields["user"]["id"] == 42
        assert fields["query_id"] == "AAE"

    def test_tampered_data(self):
        raw = self._signed(user=json.dumps(USER), auth_date="1700000000")
        tampered = raw.replace("anna", "mallory")

        with pytest.raises(InitDataError):
            verify_init_data(tampered, BOT_TOKEN)

    def test_wrong_token(self):
        raw = self._signed(user=json.dumps(USER), auth_date="1700000000")

        with pytest.raises(InitDataError):
            verify_init_data(raw, "999:OTHER")

    def test_missing_hash(self):
        with pytest.raises(InitDataError):
            verify_init_data("auth_date=1", BOT_TOKEN)

    def test_empty(self):
        with pytest.raises(InitDataError):
            verify_init_data("", BOT_TOKEN)

    def test_expired(self):
        raw = self._signed(auth_date="1000")

        with pytest.raises(InitDataError):
            verify_init_data(raw, BOT_TOKEN, max_age_seconds=50, now=1100)

    def test_fresh_enough(self):
        raw = self._signed(auth_date="1000")

        fields = verify_init_data(raw, BOT_TOKEN, max_age_seconds=500, now=1100)

        assert fields["auth_date"] == "1000"
