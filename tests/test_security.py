from rollcall.auth.security import create_access_token, decode_access_token, hash_password, verify_password

from tests.fakes import make_settings


def test_password_hash_roundtrip() -> None:
    hashed = hash_password("correct horse")

    assert hashed != "correct horse"
    assert verify_password("correct horse", hashed) is True
    assert verify_password("wrong horse", hashed) is False


def test_verify_password_with_corrupted_hash() -> None:
    assert verify_password("anything", "not-a-bcrypt-hash") is False
    assert verify_password("anything", "h\u00e4sh") is False
    assert verify_password("anything", None) is False


def test_long_passwords_hash_and_verify() -> None:
    password = "\u00e9" * 60

    hashed = hash_password(password)

    assert verify_password(password, hashed) is True
    assert verify_password("x" * 100, hashed) is False


def test_access_token_carries_subject() -> None:
    settings = make_settings()
    token, expires_at = create_access_token(settings, subject={"sub": "123", "email": "a@b.co"})

    claims = decode_access_token(settings, token)

    assert claims is not None
    assert claims["sub"] == "123"
    assert claims["email"] == "a@b.co"
    assert expires_at.tzinfo is not None


def test_expired_or_foreign_tokens_are_rejected() -> None:
    settings = make_settings()
    expired, _ = create_access_token(settings, subject={"sub": "123"}, expires_minutes=-1)
    assert decode_access_token(settings, expired) is None

    other = make_settings(local_jwt_secret_key="another-secret")
    token, _ = create_access_token(other, subject={"sub": "123"})
    assert decode_access_token(settings, token) is None
