from kilofly.core.security import generate_access_token, token_prefix, verify_access_token


def test_generated_token_round_trips_prefix_and_hash():
    parts = generate_access_token()
    assert parts.plain.startswith("kf_")
    assert token_prefix(parts.plain) == parts.prefix
    assert verify_access_token(parts.plain, parts.hashed)
    assert not verify_access_token(parts.plain + "x", parts.hashed)


def test_prefix_containing_underscore():
    assert token_prefix("kf_ab_cd_ef_ab_cd_efrest") == "ab_cd_ef"


def test_malformed_tokens_have_no_prefix():
    assert token_prefix("hk_abcdefgh_xyz") is None
    assert token_prefix("kf_short") is None
    assert token_prefix("kf_abcdefghXrest") is None
