"""
Tests for StackManager — spec ownership, secrets, and render reports.
"""

import json

import pytest

from stackplane.core.models.artifacts import COMPOSE_FILE, RENDER_REPORT_FILE
from stackplane.core.models.catalog import create_default_spec
from stackplane.core.models.spec import SpecError
from stackplane.core.persistence.state_file import dump_spec
from stackplane.core.services import stack_manager


class TestSpec:
    def test_ensure_spec_writes_default(self, manager):
        spec = manager.ensure_spec()
        assert manager.spec_path.is_file()
        assert "chat" in spec.channels

    def test_ensure_spec_keeps_existing(self, manager):
        manager.ensure_spec()
        manager.set_access_scope("host")
        assert manager.ensure_spec().access_scope == "host"

    def test_get_spec_creates_when_missing(self, manager):
        assert manager.get_spec().access_scope == "lan"
        assert manager.spec_path.is_file()

    def test_get_spec_returns_copy(self, manager):
        spec = manager.get_spec()
        spec.channels["chat"].enabled = False
        assert manager.get_spec().channels["chat"].enabled is True

    def test_external_edit_picked_up(self, manager):
        manager.ensure_spec()
        text = manager.spec_path.read_text().replace("accessScope: lan", "accessScope: public")
        manager.spec_path.write_text(text)
        assert manager.get_spec().access_scope == "public"

    def test_corrupt_spec_raises(self, manager):
        manager.spec_path.write_text("channels: [\n")
        with pytest.raises(SpecError) as exc:
            manager.get_spec()
        assert exc.value.code == "invalid_stack_spec"

    def test_invalid_document_raises(self, manager):
        manager.spec_path.write_text("channels: [oops]\n")
        with pytest.raises(SpecError) as exc:
            manager.get_spec()
        assert exc.value.code == "invalid_stack_spec"

    def test_spec_removed_after_read(self, manager, monkeypatch):
        text = dump_spec(create_default_spec())
        monkeypatch.setattr(stack_manager, "read_text", lambda _path: text)
        assert not manager.spec_path.exists()
        assert manager.get_spec().access_scope == "lan"

    def test_set_spec_validates_first(self, manager):
        manager.ensure_spec()
        before = manager.spec_path.read_text()
        with pytest.raises(SpecError):
            manager.set_spec({"accessScope": "everywhere"})
        assert manager.spec_path.read_text() == before

    def test_set_spec_writes_report_not_artifacts(self, manager, state_root):
        manager.set_spec({"accessScope": "host"})
        report = json.loads((state_root / RENDER_REPORT_FILE).read_text())
        assert COMPOSE_FILE in report["changed_artifacts"]
        assert report["apply_safe"] is True
        assert not (state_root / COMPOSE_FILE).exists()


class TestMutators:
    def test_set_access_scope(self, manager):
        assert manager.set_access_scope("public").access_scope == "public"

    def test_invalid_access_scope(self, manager):
        with pytest.raises(SpecError) as exc:
            manager.set_access_scope("internet")
        assert exc.value.code == "invalid_access_scope"

    def test_channel_exposure(self, manager):
        spec = manager.set_channel_exposure("chat", "host")
        assert spec.channel_exposure("chat") == "host"

    def test_invalid_exposure(self, manager):
        with pytest.raises(SpecError) as exc:
            manager.set_channel_exposure("chat", "galaxy")
        assert exc.value.code == "invalid_exposure"

    def test_unknown_channel(self, manager):
        with pytest.raises(SpecError) as exc:
            manager.set_channel_enabled("nope", True)
        assert exc.value.code == "unknown_channel"

    def test_disable_channel(self, manager):
        assert manager.set_channel_enabled("voice", False).channels["voice"].enabled is False

    def test_unknown_service(self, manager):
        with pytest.raises(SpecError) as exc:
            manager.set_service_enabled("n8n", True)
        assert exc.value.code == "unknown_service"

    def test_entity_config_sanitized(self, manager):
        spec = manager.set_entity_config("channel", "chat", {"CHAT_INBOUND_TOKEN": "${CHAT_TOKEN}\n"})
        assert spec.channels["chat"].config["CHAT_INBOUND_TOKEN"] == "${CHAT_TOKEN}"

    def test_entity_config_bad_kind(self, manager):
        with pytest.raises(SpecError) as exc:
            manager.set_entity_config("widget", "chat", {})
        assert exc.value.code == "unknown_entity_kind"


class TestAddChannelInstance:
    def test_multi_instance_suffix(self, manager):
        first, _ = manager.add_channel_instance("slack")
        second, spec = manager.add_channel_instance("slack")
        assert (first, second) == ("slack", "slack-2")
        assert spec.channels["slack-2"].shared_secret_env == "CHANNEL_SLACK_2_SECRET"

    def test_free_host_port(self, manager):
        manager.add_channel_instance("slack")
        _, spec = manager.add_channel_instance("slack")
        assert spec.channels["slack"].host_port is None
        assert spec.channels["slack-2"].host_port == 8186

    def test_explicit_name_and_exposure(self, manager):
        name, spec = manager.add_channel_instance("webhook", "hooks", exposure="public")
        assert name == "hooks"
        assert spec.channel_exposure("hooks") == "public"
        assert spec.channels["hooks"].template == "webhook"

    def test_single_instance_template(self, manager):
        with pytest.raises(SpecError) as exc:
            manager.add_channel_instance("chat", "chat-2")
        assert exc.value.code == "channel_instance_exists"

    def test_name_taken(self, manager):
        manager.add_channel_instance("webhook", "hooks")
        with pytest.raises(SpecError) as exc:
            manager.add_channel_instance("webhook", "hooks")
        assert exc.value.code == "channel_instance_exists"

    def test_unknown_template(self, manager):
        with pytest.raises(SpecError) as exc:
            manager.add_channel_instance("carrier-pigeon")
        assert exc.value.code == "unknown_channel"

    def test_invalid_exposure(self, manager):
        with pytest.raises(SpecError) as exc:
            manager.add_channel_instance("slack", exposure="orbit")
        assert exc.value.code == "invalid_exposure"


class TestSecrets:
    def test_upsert_normalises_name(self, manager):
        assert manager.upsert_secret(" chat_token ", "abc") == "CHAT_TOKEN"
        assert manager.get_secrets()["CHAT_TOKEN"] == "abc"

    def test_invalid_name(self, manager):
        with pytest.raises(SpecError) as exc:
            manager.upsert_secret("1-bad", "x")
        assert exc.value.code == "invalid_secret_name"

    def test_delete_unused(self, manager):
        manager.upsert_secret("SPARE", "x")
        assert manager.delete_secret("spare") is True
        assert "SPARE" not in manager.get_secrets()

    def test_delete_missing(self, manager):
        assert manager.delete_secret("NEVER_SET") is False

    def test_core_secret_in_use(self, ready_manager):
        with pytest.raises(SpecError) as exc:
            ready_manager.delete_secret("ADMIN_TOKEN")
        assert exc.value.code == "secret_in_use"
        assert "core:admin" in exc.value.detail

    def test_referenced_secret_in_use(self, manager):
        manager.upsert_secret("CHAT_TOKEN", "t")
        manager.set_entity_config("channel", "chat", {"CHAT_INBOUND_TOKEN": "${CHAT_TOKEN}"})
        with pytest.raises(SpecError) as exc:
            manager.delete_secret("CHAT_TOKEN")
        assert exc.value.code == "secret_in_use"

        manager.set_channel_enabled("chat", False)
        assert manager.delete_secret("CHAT_TOKEN") is True

    def test_validate_referenced_secrets(self, manager):
        manager.set_entity_config("channel", "chat", {"CHAT_INBOUND_TOKEN": "${CHAT_TOKEN}"})
        assert manager.validate_referenced_secrets() == [
            "missing_secret_reference_chat_CHAT_INBOUND_TOKEN_CHAT_TOKEN",
        ]
        manager.upsert_secret("CHAT_TOKEN", "t")
        assert manager.validate_referenced_secrets() == []

    def test_list_secret_state_never_shows_values(self, ready_manager):
        state = ready_manager.list_secret_state()
        admin = next(e for e in state if e["name"] == "ADMIN_TOKEN")
        assert admin == {"name": "ADMIN_TOKEN", "configured": True, "used_by": ["core:admin"]}
        assert "admin-token" not in json.dumps(state)

    def test_unresolved_reference_makes_render_unsafe(self, manager):
        manager.set_entity_config("channel", "chat", {"CHAT_INBOUND_TOKEN": "${CHAT_TOKEN}"})
        report = manager.render_artifacts()
        assert report.apply_safe is False


class TestRenderPreview:
    def test_preview_writes_nothing(self, manager, state_root):
        manager.ensure_spec()
        artifacts, report = manager.render_preview()
        assert COMPOSE_FILE in report.changed_artifacts
        assert not (state_root / COMPOSE_FILE).exists()
        assert "channel-chat" in artifacts.env_files

    def test_preview_of_candidate_spec(self, manager):
        spec = manager.get_spec()
        spec.channels["chat"].enabled = False
        artifacts, _report = manager.render_preview(spec)
        assert "channel-chat" not in artifacts.env_files
