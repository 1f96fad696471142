# backend/tests/unit/test_config_service.py
import copy
import json

import pytest

from chatflow.exceptions import ConfigurationError
from chatflow.services.config_service import ConfigService

from conftest import TEST_BOT_CONFIG


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "bot.config.json"
    path.write_text(json.dumps(TEST_BOT_CONFIG), encoding="utf-8")
    return path


def test_default_configuration_without_path():
    service = ConfigService()

    assert service.get_config().entry_flow_id == "main_menu"
    assert service.list_backups() == []


def test_missing_file_falls_back_to_default(tmp_path):
    service = ConfigService(str(tmp_path / "absent.json"))

    assert service.get_config().bot_name == "Assistente BLACKCORE"


def test_loads_configuration_from_file(config_file):
    service = ConfigService(str(config_file))

    assert service.get_config().entry_flow_id == "main"
    assert set(service.get_config().flows) == {"main", "signup", "assistant"}


def test_unreadable_file_raises(tmp_path):
    path = tmp_path / "bot.config.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        ConfigService(str(path))


def test_save_backs_up_and_notifies(config_file):
    service = ConfigService(str(config_file))
    received = []
    service.subscribe(received.append)
    raw = copy.deepcopy(TEST_BOT_CONFIG)
    raw["botName"] = "Novo Nome"

    saved = service.save(raw)

    assert saved.bot_name == "Novo Nome"
    assert received == [saved]
    assert json.loads(config_file.read_text(encoding="utf-8"))["botName"] == "Novo Nome"
    backups = service.list_backups()
    assert len(backups) == 1
    assert backups[0]["filename"].startswith("bot.config.backup.")


def test_rejected_save_keeps_active_configuration(config_file):
    service = ConfigService(str(config_file))
    before = config_file.read_text(encoding="utf-8")
    raw = copy.deepcopy(TEST_BOT_CONFIG)
    raw["mode"] = "inexistente"

    with pytest.raises(ConfigurationError):
        service.save(raw)

    assert service.get_config().mode == "atendimento"
    assert config_file.read_text(encoding="utf-8") == before
    assert service.list_backups() == []


def test_failing_listener_does_not_break_save(config_file):
    service = ConfigService(str(config_file))

    def broken_listener(config):
        raise RuntimeError("listener down")

    service.subscribe(broken_listener)

    assert service.update_mode("triagem").mode == "triagem"


def test_update_mode(config_file):
    service = ConfigService(str(config_file))

    updated = service.update_mode("triagem")

    assert updated.entry_flow_id == "assistant"
    assert ConfigService(str(config_file)).get_config().mode == "triagem"
    with pytest.raises(ConfigurationError):
        service.update_mode("vendas")


def test_restore_backup(config_file):
    service = ConfigService(str(config_file))
    service.update_mode("triagem")
    service.update_mode("atendimento")

    backups = service.list_backups()
    assert len(backups) == 2
    # Newest first: the backup taken before switching back holds "triagem".
    restored = service.restore_backup(backups[0]["filename"])

    assert restored.mode == "triagem"
    assert len(service.list_backups()) == 3


def test_restore_missing_backup_raises(config_file):
    service = ConfigService(str(config_file))

    with pytest.raises(ConfigurationError):
        service.restore_backup("bot.config.backup.0.json")
