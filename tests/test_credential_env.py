from __future__ import annotations

import pytest

from shared.credential_env import (
    CredentialEnvironment,
    CredentialFieldMapping,
    ResolvedCredential,
    remap_credential_fields,
)
from shared.errors import CredentialError


class TestLoad:
    def test_groups_variables_by_name(self, credential_env) -> None:
        credentials = credential_env.load()

        assert list(credentials) == ["API"]
        assert credentials["API"] == ResolvedCredential(
            name="API",
            type="httpBasicAuth",
            data={"username": "alice", "password": "s3cret"},
        )

    def test_multi_word_properties_are_lowercased(self) -> None:
        env = CredentialEnvironment(
            {
                "N8N_CREDENTIAL_SLACK_TYPE": "slackApi",
                "N8N_CREDENTIAL_SLACK_ACCESS_TOKEN": "xoxb",
                "N8N_CREDENTIAL_SLACK_NAME": "ignored",
            }
        )

        assert env.get("SLACK").data == {"access_token": "xoxb"}

    def test_credential_without_type_is_skipped(self) -> None:
        env = CredentialEnvironment({"N8N_CREDENTIAL_BROKEN_USERNAME": "x"})

        assert env.load() == {}
        assert not env.has("BROKEN")

    def test_custom_prefix(self) -> None:
        env = CredentialEnvironment({"MY_CRED_DB_TYPE": "postgres", "MY_CRED_DB_HOST": "localhost"}, prefix="MY_CRED_")

        assert [c.name for c in env.list()] == ["DB"]
        assert env.list(prefix="N8N_CREDENTIAL_") == []

    def test_variables_without_property_are_ignored(self) -> None:
        env = CredentialEnvironment({"N8N_CREDENTIAL_LONELY": "x", "N8N_CREDENTIAL__TYPE": "y"})
        assert env.load() == {}

    def test_get_missing_raises(self, credential_env) -> None:
        with pytest.raises(CredentialError) as excinfo:
            credential_env.get("NOPE")
        assert 'Credential "NOPE" not found in environment variables' in excinfo.value.message
        assert "N8N_CREDENTIAL_" in excinfo.value.message

    def test_reads_dotenv_file_under_process_environment(self, tmp_path, monkeypatch) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text(
            "N8N_CREDENTIAL_FILE_TYPE=httpHeaderAuth\n"
            "N8N_CREDENTIAL_FILE_HEADER_NAME=X-Token\n"
            "N8N_CREDENTIAL_FILE_HEADER_VALUE=from-file\n",
            encoding="utf-8",
        )
        monkeypatch.setenv("N8N_CREDENTIAL_FILE_HEADER_VALUE", "from-process")

        env = CredentialEnvironment(env_path=str(env_file))

        assert env.get("FILE").data == {"header_name": "X-Token", "header_value": "from-process"}

    def test_missing_dotenv_file_is_fine(self, tmp_path) -> None:
        env = CredentialEnvironment(env_path=str(tmp_path / "absent.env"))
        assert isinstance(env.environ, dict)


class TestResolve:
    def test_inline_data_with_substitution(self, credential_env) -> None:
        resolved = credential_env.resolve("slack", "slackApi", {"accessToken": "${SLACK_TOKEN}", "team": "eng"})

        assert resolved.type == "slackApi"
        assert resolved.data == {"accessToken": "xoxb-123", "team": "eng"}

    def test_unset_placeholder_becomes_empty(self, credential_env) -> None:
        resolved = credential_env.resolve("x", "apiKey", {"key": "${NOT_SET}"})
        assert resolved.data == {"key": ""}

    def test_placeholder_must_be_whole_value(self, credential_env) -> None:
        resolved = credential_env.resolve("x", "apiKey", {"key": "prefix-${SLACK_TOKEN}"})
        assert resolved.data == {"key": "prefix-${SLACK_TOKEN}"}

    def test_no_data_looks_up_environment(self, credential_env) -> None:
        resolved = credential_env.resolve("API")
        assert resolved.type == "httpBasicAuth"
        assert resolved.data["username"] == "alice"

    def test_explicit_type_wins_over_environment_type(self, credential_env) -> None:
        assert credential_env.resolve("API", "customAuth").type == "customAuth"

    def test_env_reference_copies_named_credential(self, credential_env) -> None:
        resolved = credential_env.resolve("backend", "env", {"name": "API"})

        assert resolved.name == "backend"
        assert resolved.type == "httpBasicAuth"
        assert resolved.data == {"username": "alice", "password": "s3cret"}

    def test_env_reference_without_target(self, credential_env) -> None:
        with pytest.raises(CredentialError, match="needs data.name"):
            credential_env.resolve("backend", "env", {})

    def test_inline_data_without_type(self, credential_env) -> None:
        with pytest.raises(CredentialError, match="inline data but no type"):
            credential_env.resolve("x", None, {"a": "b"})

    def test_env_prefix_override(self) -> None:
        env = CredentialEnvironment({"ALT_API_TYPE": "httpBasicAuth", "ALT_API_USERNAME": "bob"})
        assert env.resolve("API", env_prefix="ALT_").data == {"username": "bob"}

    def test_resolve_does_not_mutate_environment_credential(self, credential_env) -> None:
        resolved = credential_env.resolve("API")
        resolved.data["username"] = "changed"
        assert credential_env.get("API").data["username"] == "alice"


class TestRemap:
    def test_basic_auth_username(self) -> None:
        assert remap_credential_fields("httpBasicAuth", {"username": "a", "password": "b"}) == {
            "user": "a",
            "password": "b",
        }

    def test_header_auth(self) -> None:
        remapped = remap_credential_fields("httpHeaderAuth", {"header_name": "X-Key", "header_value": "v"})
        assert remapped == {"name": "X-Key", "value": "v"}

    def test_oauth2_fields(self) -> None:
        remapped = remap_credential_fields(
            "oAuth2Api",
            {"client_id": "id", "client_secret": "secret", "scope": "read"},
        )
        assert remapped == {"clientId": "id", "clientSecret": "secret", "scope": "read"}

    def test_existing_target_is_not_overwritten(self) -> None:
        remapped = remap_credential_fields("httpBasicAuth", {"username": "a", "user": "explicit"})
        assert remapped == {"username": "a", "user": "explicit"}

    def test_unknown_type_is_unchanged(self) -> None:
        data = {"username": "a"}
        remapped = remap_credential_fields("slackApi", data)
        assert remapped == data
        assert remapped is not data

    @pytest.mark.parametrize(
        ("engine_version", "expected"),
        [
            (None, {"token": "t"}),
            ("1.45.2", {"token": "t"}),
            ("1.0.0", {"token": "t"}),
            ("0.236.0", {"bearer_token": "t"}),
        ],
    )
    def test_version_gated_mapping(self, engine_version, expected) -> None:
        assert remap_credential_fields("httpBearerAuth", {"bearer_token": "t"}, engine_version) == expected

    def test_custom_mapping_table(self) -> None:
        mappings = (CredentialFieldMapping("apiKey", {"key": "apiKey"}, min_engine_version="2.0"),)
        assert remap_credential_fields("apiKey", {"key": "k"}, "2.1", mappings) == {"apiKey": "k"}
        assert remap_credential_fields("apiKey", {"key": "k"}, "1.9", mappings) == {"key": "k"}


def test_from_config(make_config) -> None:
    config = make_config(credential_prefix="CUSTOM_")
    env = CredentialEnvironment.from_config(config)
    assert env.prefix == "CUSTOM_"
