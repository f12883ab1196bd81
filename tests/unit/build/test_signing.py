"""
Unit tests for signing identity selection.
"""

import pytest

from xrdeploy.build.signing import (
    DEBUG_KEY_ALIAS,
    RELEASE_FIELDS,
    SigningError,
    SigningResolver,
)


@pytest.fixture
def signing_properties(keystore):
    return {
        "signing.store_file": str(keystore),
        "signing.store_password": "store-secret",
        "signing.key_alias": "upload",
        "signing.key_password": "key-secret",
    }


class TestDebugIdentity:
    def test_debug_uses_debug_keystore(self, tmp_path):
        debug_keystore = tmp_path / "debug.keystore"
        identity = SigningResolver(debug_keystore=debug_keystore).resolve("debug", {})
        assert identity.is_debug
        assert identity.store_file == debug_keystore
        assert identity.key_alias == DEBUG_KEY_ALIAS

    def test_debug_ignores_release_properties(self, tmp_path, signing_properties):
        identity = SigningResolver(debug_keystore=tmp_path / "d").resolve("debug", signing_properties)
        assert identity.key_alias == DEBUG_KEY_ALIAS


class TestReleaseIdentity:
    def test_complete_properties(self, keystore, signing_properties):
        identity = SigningResolver().resolve("release", signing_properties)
        assert not identity.is_debug
        assert identity.store_file == keystore
        assert identity.key_alias == "upload"
        assert identity.secrets == ["store-secret", "key-secret"]

    @pytest.mark.parametrize("missing", [name for name, _ in RELEASE_FIELDS])
    def test_each_missing_field_is_named(self, signing_properties, missing):
        del signing_properties[missing]
        with pytest.raises(SigningError) as exc_info:
            SigningResolver().resolve("release", signing_properties)
        assert exc_info.value.missing == [missing]
        assert missing in str(exc_info.value)

    def test_all_fields_missing(self):
        with pytest.raises(SigningError) as exc_info:
            SigningResolver().resolve("release", {})
        assert len(exc_info.value.missing) == len(RELEASE_FIELDS)

    def test_never_falls_back_to_debug(self, tmp_path):
        debug_keystore = tmp_path / "debug.keystore"
        debug_keystore.write_text("debug")
        resolver = SigningResolver(debug_keystore=debug_keystore)
        with pytest.raises(SigningError):
            resolver.resolve("release", {})

    def test_empty_value_counts_as_missing(self, signing_properties):
        signing_properties["signing.key_password"] = "   "
        with pytest.raises(SigningError) as exc_info:
            SigningResolver().resolve("release", signing_properties)
        assert exc_info.value.missing == ["signing.key_password"]

    def test_keystore_must_exist(self, tmp_path, signing_properties):
        signing_properties["signing.store_file"] = str(tmp_path / "missing.jks")
        with pytest.raises(SigningError, match="keystore not found"):
            SigningResolver().resolve("release", signing_properties)

    def test_secrets_not_in_repr_or_error(self, signing_properties):
        identity = SigningResolver().resolve("release", signing_properties)
        assert "store-secret" not in repr(identity)
        assert "key-secret" not in repr(identity)

        del signing_properties["signing.key_alias"]
        with pytest.raises(SigningError) as exc_info:
            SigningResolver().resolve("release", signing_properties)
        assert "store-secret" not in str(exc_info.value)


def test_unknown_variant():
    with pytest.raises(SigningError, match="staging"):
        SigningResolver().resolve("staging", {})
