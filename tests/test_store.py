"""Tests for the on-disk configuration store."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
import yaml

from flint.config import (
    AuthCollection,
    BackendConfig,
    Environment,
    GlobalPreferences,
    MessagingAuthMethod,
    MessagingConfig,
    OutputFormat,
    Session,
)
from flint.errors import (
    ConfigParseError,
    EnvironmentNotFoundError,
    InvalidEnvironmentError,
    NoActiveEnvironmentError,
)
from flint.store import ConfigStore, default_config_dir


def make_environment(name: str = "prod") -> Environment:
    return Environment(
        name=name,
        backend=BackendConfig(url="https://api.example.io"),
        messaging=MessagingConfig(servers=["nats://nats.example.io:4222"]),
    )


@pytest.fixture
def store(tmp_path: Path) -> ConfigStore:
    return ConfigStore(tmp_path)


class TestPreferences:
    """Tests for preference persistence."""

    def test_defaults_created_on_first_load(self, store: ConfigStore) -> None:
        """Test that a missing document is created with defaults."""
        prefs = store.load_preferences()
        assert prefs == GlobalPreferences()
        assert store.preferences_path.is_file()
        data = yaml.safe_load(store.preferences_path.read_text())
        assert data["output_format"] == "json"
        assert data["pagination_size"] == 30

    def test_round_trip(self, store: ConfigStore) -> None:
        """Test that saved preferences load back unchanged."""
        prefs = GlobalPreferences(
            active_environment="prod", output_format=OutputFormat.TABLE, pagination_size=100, debug=True
        )
        store.save_preferences(prefs)
        assert store.load_preferences() == prefs

    def test_partial_document_gets_defaults(self, store: ConfigStore) -> None:
        """Test that missing keys fall back to defaults."""
        store.preferences_path.write_text("output_format: yaml\n")
        prefs = store.load_preferences()
        assert prefs.output_format is OutputFormat.YAML
        assert prefs.pagination_size == 30

    def test_malformed_document(self, store: ConfigStore) -> None:
        """Test that broken YAML is a parse error."""
        store.preferences_path.write_text("output_format: [unclosed\n")
        with pytest.raises(ConfigParseError):
            store.load_preferences()

    def test_invalid_value(self, store: ConfigStore) -> None:
        """Test that an unknown output format is a parse error."""
        store.preferences_path.write_text("output_format: xml\n")
        with pytest.raises(ConfigParseError):
            store.load_preferences()

    def test_default_config_dir_override(self, tmp_path: Path) -> None:
        """Test that FLINT_CONFIG_DIR relocates the store."""
        assert default_config_dir({"FLINT_CONFIG_DIR": str(tmp_path)}) == tmp_path
        assert default_config_dir({}).name == "flint"


class TestEnvironments:
    """Tests for environment persistence."""

    def test_round_trip(self, store: ConfigStore) -> None:
        """Test that every field survives save and load."""
        env = make_environment()
        env.backend.auth_collection = AuthCollection.EDGES
        env.backend.organization_id = "org123"
        env.backend.collections = ["edges", "things"]
        env.backend.session = Session(
            token="tok",
            expires=datetime(2026, 5, 1, 8, 30, tzinfo=timezone.utc),
            record={"id": "e1", "email": "edge@example.io"},
        )
        env.messaging.set_user_pass("operator", "secret")
        env.messaging.tls_verify = False

        store.save_environment(env)
        assert store.load_environment("prod") == env

    def test_round_trip_normalized_values(self, store: ConfigStore) -> None:
        """Test that an empty organization and a naive expiry load back equal."""
        env = Environment(
            name="edge",
            backend=BackendConfig(
                url="https://api.example.io",
                organization_id="",
                session=Session(token="tok", expires=datetime(2030, 1, 1)),
            ),
        )
        assert env.backend.organization_id is None
        assert env.backend.session.expires == datetime(2030, 1, 1, tzinfo=timezone.utc)

        store.save_environment(env)
        assert store.load_environment("edge") == env

    def test_layout(self, store: ConfigStore, tmp_path: Path) -> None:
        """Test the directory layout and document sections."""
        store.save_environment(make_environment())
        path = tmp_path / "environments" / "prod" / "environment.yaml"
        data = yaml.safe_load(path.read_text())
        assert data["name"] == "prod"
        assert data["pocketbase"]["url"] == "https://api.example.io"
        assert data["nats"]["auth_method"] == "creds"

    def test_load_missing(self, store: ConfigStore) -> None:
        """Test loading an environment that does not exist."""
        with pytest.raises(EnvironmentNotFoundError):
            store.load_environment("nope")

    def test_load_invalid_name(self, store: ConfigStore) -> None:
        """Test that path-like names are never looked up."""
        with pytest.raises(EnvironmentNotFoundError):
            store.load_environment("../prod")

    def test_load_malformed(self, store: ConfigStore) -> None:
        """Test that a document without a backend section is a parse error."""
        path = store.environment_path("broken")
        path.parent.mkdir(parents=True)
        path.write_text("name: broken\nnats: {}\n")
        with pytest.raises(ConfigParseError):
            store.load_environment("broken")

    def test_load_bad_enum(self, store: ConfigStore) -> None:
        """Test that an unknown auth collection is a parse error."""
        path = store.environment_path("bad")
        path.parent.mkdir(parents=True)
        path.write_text("name: bad\npocketbase:\n  url: http://x\n  auth_collection: admins\n")
        with pytest.raises(ConfigParseError):
            store.load_environment("bad")

    def test_directory_name_wins(self, store: ConfigStore) -> None:
        """Test that the directory name overrides the stored name."""
        store.save_environment(make_environment("staging"))
        path = store.environment_path("staging")
        path.write_text(path.read_text().replace("name: staging", "name: other", 1))
        assert store.load_environment("staging").name == "staging"

    def test_save_invalid_name(self, store: ConfigStore) -> None:
        """Test that invalid names are rejected on save."""
        for name in ("", "has space", "a/b", "x" * 51):
            with pytest.raises(InvalidEnvironmentError):
                store.save_environment(make_environment(name))

    def test_list(self, store: ConfigStore) -> None:
        """Test that listing is sorted and skips stray directories."""
        for name in ("prod", "dev", "staging"):
            store.save_environment(make_environment(name))
        (store.environments_dir / "empty").mkdir()
        (store.environments_dir / "file.txt").write_text("x")
        assert store.list_environments() == ["dev", "prod", "staging"]

    def test_list_empty(self, store: ConfigStore) -> None:
        """Test listing without an environments directory."""
        assert store.list_environments() == []

    def test_delete_removes_auxiliary_files(self, store: ConfigStore) -> None:
        """Test that deletion removes the whole environment directory."""
        store.save_environment(make_environment())
        (store.environment_dir("prod") / "user.creds").write_text("creds")
        store.delete_environment("prod")
        assert not store.environment_dir("prod").exists()
        assert not store.environment_exists("prod")

    def test_delete_missing(self, store: ConfigStore) -> None:
        """Test that deleting a missing environment lists the others."""
        store.save_environment(make_environment("dev"))
        with pytest.raises(EnvironmentNotFoundError) as exc_info:
            store.delete_environment("prod")
        assert exc_info.value.available == ["dev"]


class TestActiveEnvironment:
    """Tests for the active environment pointer."""

    def test_none_selected(self, store: ConfigStore) -> None:
        """Test the error when nothing is selected."""
        with pytest.raises(NoActiveEnvironmentError):
            store.get_active_environment()

    def test_no_active_is_not_found(self) -> None:
        """Test that a missing selection is a kind of not-found error."""
        assert issubclass(NoActiveEnvironmentError, EnvironmentNotFoundError)

    def test_select(self, store: ConfigStore) -> None:
        """Test selecting and loading the active environment."""
        store.save_environment(make_environment())
        prefs = store.set_active_environment("prod")
        assert prefs.active_environment == "prod"
        assert store.load_preferences().active_environment == "prod"
        assert store.get_active_environment().name == "prod"

    def test_select_missing(self, store: ConfigStore) -> None:
        """Test that selecting a missing environment changes nothing."""
        with pytest.raises(EnvironmentNotFoundError):
            store.set_active_environment("prod")
        assert store.load_preferences().active_environment == ""

    def test_dangling_pointer(self, store: ConfigStore) -> None:
        """Test that the store leaves the pointer alone on delete."""
        store.save_environment(make_environment())
        store.set_active_environment("prod")
        store.delete_environment("prod")
        assert store.load_preferences().active_environment == "prod"
        with pytest.raises(EnvironmentNotFoundError):
            store.get_active_environment()

    def test_clear(self, store: ConfigStore) -> None:
        """Test clearing the selection."""
        store.save_environment(make_environment())
        store.set_active_environment("prod")
        store.clear_active_environment()
        with pytest.raises(NoActiveEnvironmentError):
            store.get_active_environment()

    def test_explicit_preferences(self, store: ConfigStore) -> None:
        """Test that passed preferences are consulted instead of the document."""
        store.save_environment(make_environment("dev"))
        prefs = GlobalPreferences(active_environment="dev")
        assert store.get_active_environment(prefs).name == "dev"


class TestMessagingConfig:
    """Tests for switching messaging auth methods."""

    def test_switch_clears_other_secrets(self) -> None:
        """Test that only the secret of the selected method is kept."""
        cfg = MessagingConfig(servers=["nats://x"])
        cfg.set_user_pass("u", "p")
        cfg.set_token("eyJ.token")
        assert cfg.auth_method is MessagingAuthMethod.TOKEN
        assert (cfg.username, cfg.password, cfg.token) == ("", "", "eyJ.token")
        cfg.set_creds_file("./user.creds")
        assert cfg.token == ""
        assert cfg.creds_file == "./user.creds"
