from itsdangerous import URLSafeTimedSerializer

from csrf import generate_csrf_token, validate_csrf_token


def test_token_round_trip() -> None:
    token = generate_csrf_token()
    assert validate_csrf_token(token)


def test_token_is_bound_to_user() -> None:
    token = generate_csrf_token(user_id=1)
    assert not validate_csrf_token(token, user_id=2)


def test_tampered_or_missing_token_is_rejected() -> None:
    token = generate_csrf_token()
    assert not validate_csrf_token(token[:-2] + "xx")
    assert not validate_csrf_token("")


def test_expired_token_is_rejected() -> None:
    token = generate_csrf_token()
    assert not validate_csrf_token(token, max_age_seconds=-1)
    assert validate_csrf_token(token, max_age_seconds=60)


def test_token_signed_with_other_secret_is_rejected() -> None:
    forged = URLSafeTimedSerializer("not-the-secret", salt="csrf-token").dumps({"u": 1})
    assert not validate_csrf_token(forged)
