"""
Configuration Tests

Tests covering:
- Defaults and validation
- PUSHFILE_* environment overrides
- JSON config files and precedence between file and environment
- Building components from a Config
"""

import json
from pathlib import Path

import pytest

from pushfile.config import EXAMPLE_CONFIG, Config, load_config
from pushfile.transfer import BusyPolicy, Receiver, Sender

ENV_VARS = [
    'PUSHFILE_HOST', 'PUSHFILE_PORT', 'PUSHFILE_BUFFER_SIZE', 'PUSHFILE_CHECKSUM',
    'PUSHFILE_DIGEST_FIELD', 'PUSHFILE_BUSY_POLICY', 'PUSHFILE_DESTINATION',
    'PUSHFILE_ACCEPT_TIMEOUT', 'PUSHFILE_IO_TIMEOUT', 'PUSHFILE_LOG_LEVEL',
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


class TestDefaults:

    def test_defaults(self):
        config = Config()
        assert config.host == '127.0.0.1'
        assert config.port == 8080
        assert config.buffer_size == 8192
        assert config.checksum is False
        assert config.digest_field is True
        assert config.busy_policy == 'block'
        assert config.accept_timeout is None
        assert config.io_timeout is None

    def test_defaults_are_valid(self):
        assert Config().validate()

    @pytest.mark.parametrize('field, value', [
        ('buffer_size', 0),
        ('buffer_size', -1),
        ('port', 70000),
        ('max_name_length', 0),
        ('busy_policy', 'sometimes'),
        ('accept_timeout', 0),
        ('io_timeout', -2.0),
    ])
    def test_invalid_values(self, field, value):
        config = Config()
        setattr(config, field, value)
        with pytest.raises(ValueError):
            config.validate()


class TestEnvironment:

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv('PUSHFILE_HOST', '0.0.0.0')
        monkeypatch.setenv('PUSHFILE_PORT', '9100')
        monkeypatch.setenv('PUSHFILE_BUFFER_SIZE', '4096')
        monkeypatch.setenv('PUSHFILE_CHECKSUM', 'yes')
        monkeypatch.setenv('PUSHFILE_BUSY_POLICY', 'REJECT')
        monkeypatch.setenv('PUSHFILE_DESTINATION', '/srv/incoming')
        monkeypatch.setenv('PUSHFILE_IO_TIMEOUT', '2.5')

        config = Config.from_env()
        assert config.host == '0.0.0.0'
        assert config.port == 9100
        assert config.buffer_size == 4096
        assert config.checksum is True
        assert config.busy_policy == 'reject'
        assert config.destination == Path('/srv/incoming')
        assert config.io_timeout == 2.5

    @pytest.mark.parametrize('raw', ['none', 'off', ''])
    def test_timeout_can_be_disabled(self, monkeypatch, raw):
        monkeypatch.setenv('PUSHFILE_ACCEPT_TIMEOUT', raw)
        assert Config.from_env().accept_timeout is None

    def test_false_flag(self, monkeypatch):
        monkeypatch.setenv('PUSHFILE_DIGEST_FIELD', 'false')
        assert Config.from_env().digest_field is False


class TestConfigFile:

    def test_missing_file_gives_defaults(self, tmp_path):
        assert Config.from_file(tmp_path / 'absent.json') == Config()

    def test_save_and_load(self, tmp_path):
        path = tmp_path / 'config.json'
        config = Config(port=9000, buffer_size=1024, destination=Path('inbox'), io_timeout=5.0)
        config.save(path)

        loaded = Config.from_file(path)
        assert loaded == config
        assert json.loads(path.read_text())['destination'] == 'inbox'

    def test_example_config_parses(self, tmp_path):
        path = tmp_path / 'example.json'
        path.write_text(EXAMPLE_CONFIG)
        config = Config.from_file(path).validate()
        assert config.destination == Path('./received')
        assert config.io_timeout == 30.0

    def test_environment_beats_file(self, tmp_path, monkeypatch):
        path = tmp_path / 'config.json'
        Config(port=9000, buffer_size=1024).save(path)
        monkeypatch.setenv('PUSHFILE_PORT', '9200')

        config = load_config(path)
        assert config.port == 9200
        assert config.buffer_size == 1024

    def test_load_without_file(self):
        assert load_config(None) == Config()


class TestComponentsFromConfig:

    def test_sender(self):
        config = Config(buffer_size=2048, digest_field=False, io_timeout=3.0,
                        busy_policy='reject')
        sender = Sender.from_config(config)
        assert sender.buffer_size == 2048
        assert sender.digest_field is False
        assert sender.io_timeout == 3.0
        assert sender._flight.policy is BusyPolicy.REJECT

    def test_receiver(self):
        config = Config(buffer_size=512, accept_timeout=10.0, max_name_length=255)
        receiver = Receiver.from_config(config)
        assert receiver.buffer_size == 512
        assert receiver.accept_timeout == 10.0
        assert receiver.max_name_length == 255


class TestConfigFileTypes:
    """Wrongly typed JSON values fail validation instead of crashing."""

    @pytest.mark.parametrize('data', [
        {'port': '9000'},
        {'buffer_size': '8192'},
        {'buffer_size': True},
        {'max_name_length': '255'},
        {'accept_timeout': '5'},
        {'io_timeout': [1]},
        {'checksum': 'yes'},
        {'host': 42},
        {'busy_policy': 7},
    ])
    def test_rejected_with_value_error(self, tmp_path, data):
        path = tmp_path / 'config.json'
        path.write_text(json.dumps(data))

        config = Config.from_file(path)
        with pytest.raises(ValueError):
            config.validate()

    def test_integer_timeout_accepted(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text(json.dumps({'accept_timeout': 5, 'io_timeout': 0.5}))
        config = Config.from_file(path).validate()
        assert config.accept_timeout == 5
        assert config.io_timeout == 0.5
