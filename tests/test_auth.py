import time

import jwt
import pytest

from qrtrack.auth import create_share_token, verify_share_token
from qrtrack.config import SECRET_KEY
from qrtrack.errors import ConflictError, InvalidCredentialsError, RateLimited, ValidationError
from qrtrack.ratelimit import LoginThrottle
from qrtrack.user_auth import bearer_token, create_access_token, verify_access_token
from qrtrack.users import MemoryUserStore, create_user, login, register

from conftest import EMAIL, PASSWORD


@pytest.fixture
def store():
    return MemoryUserStore()


class TestGateway:
    def test_login_token_carries_registered_user_id(self, store):
        register_token = register(store, EMAIL, PASSWORD)
        user_id = verify_access_token(register_token)["sub"]
        login_token = login(store, EMAIL, PASSWORD)
        payload = verify_access_token(login_token)
        assert payload["sub"] == user_id
        assert 3599 <= payload["exp"] - payload["iat"] <= 3600

    def test_wrong_password(self, store):
        register(store, EMAIL, PASSWORD)
        with pytest.raises(InvalidCredentialsError):
            login(store, EMAIL, "not-the-password")

    def test_unknown_email(self, store):
        with pytest.raises(InvalidCredentialsError):
            login(store, "nobody@qrtrack.io", PASSWORD)

    def test_email_is_unique_case_insensitively(self, store):
        create_user(store, EMAIL, PASSWORD)
        with pytest.raises(ConflictError):
            create_user(store, EMAIL.upper(), "another-password")

    def test_password_is_stored_as_salted_bcrypt_hash(self, store):
        user = create_user(store, EMAIL, PASSWORD)
        row = store.get_by_id(user["id"])
        assert PASSWORD not in row["password_hash"]
        assert row["password_hash"].startswith("$2b$10$")
        assert "password_hash" not in user

    def test_blank_password_rejected(self, store):
        with pytest.raises(ValidationError):
            create_user(store, EMAIL, "")


class TestTokens:
    def test_expired_token_is_rejected(self):
        token = create_access_token({"id": "u1"}, max_age=-1)
        assert verify_access_token(token) is None

    def test_token_signed_with_other_key_is_rejected(self):
        token = jwt.encode({"sub": "u1", "type": "access", "exp": int(time.time()) + 60}, "x" * 40, algorithm="HS256")
        assert verify_access_token(token) is None

    def test_wrong_token_type_is_rejected(self):
        token = jwt.encode({"sub": "u1", "type": "refresh", "exp": int(time.time()) + 60}, SECRET_KEY, algorithm="HS256")
        assert verify_access_token(token) is None

    @pytest.mark.parametrize(
        "header,expected",
        [("Bearer abc", "abc"), ("bearer  abc ", "abc"), ("Basic abc", None), (None, None), ("Bearer ", None)],
    )
    def test_bearer_token_parsing(self, header, expected):
        assert bearer_token(header) == expected


class TestShareLinks:
    def test_round_trip(self):
        assert verify_share_token(create_share_token("abc")) == "abc"

    def test_tampered_link(self):
        token = create_share_token("abc")
        assert verify_share_token(token[:-2] + "xx") is None

    def test_expired_link(self):
        token = create_share_token("abc")
        time.sleep(1.1)
        assert verify_share_token(token, max_age=0) is None


class FakeRedis:
    def __init__(self):
        self.values = {}

    def get(self, key):
        return self.values.get(key)

    def incr(self, key):
        self.values[key] = int(self.values.get(key, 0)) + 1
        return self.values[key]

    def expire(self, key, seconds):
        return True

    def ttl(self, key):
        return 600

    def delete(self, key):
        self.values.pop(key, None)


class TestLoginThrottle:
    def test_disabled_without_redis(self):
        throttle = LoginThrottle.from_url(None)
        assert not throttle.enabled
        assert throttle.record_failure(EMAIL, "1.2.3.4") == 0
        throttle.check(EMAIL, "1.2.3.4")

    def test_locks_after_max_failures_and_clears(self):
        throttle = LoginThrottle(FakeRedis(), max_failures=3)
        for _ in range(3):
            throttle.check(EMAIL, "1.2.3.4")
            throttle.record_failure(EMAIL, "1.2.3.4")
        with pytest.raises(RateLimited):
            throttle.check(EMAIL, "1.2.3.4")
        throttle.check(EMAIL, "5.6.7.8")
        throttle.clear(EMAIL, "1.2.3.4")
        throttle.check(EMAIL, "1.2.3.4")
