"""
Tests for configuration loading, logging setup and the CLI.
"""

import json
import logging
import signal
from logging.handlers import RotatingFileHandler
from unittest.mock import patch

import pytest

from common.config import load_config
from common.exceptions import ConfigurationError
from common.logger import setup_logging, InvocationLogger
from store.memory import InMemoryDocumentStore
from triggers import main as cli


def write_config(tmp_path, data):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps(data))
    return str(path)


class TestLoadConfig:
    """Test cases for configuration loading"""

    def test_defaults(self):
        config = load_config()
        assert config['store']['backend'] == 'memory'
        assert config['store']['max_attempts'] == 5
        assert config['triggers']['workers'] >= 1

    def test_file_merged_over_defaults(self, tmp_path):
        path = write_config(tmp_path, {'store': {'max_attempts': 9}, 'triggers': {'workers': 2}})

        config = load_config(path)

        assert config['store']['max_attempts'] == 9
        assert config['store']['backend'] == 'memory'
        assert config['triggers']['workers'] == 2
        assert 'logging' in config

    def test_defaults_not_shared_between_loads(self):
        load_config()['store']['max_attempts'] = 99
        assert load_config()['store']['max_attempts'] == 5

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(str(tmp_path / 'nope.json'))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text('{not json')
        with pytest.raises(ConfigurationError):
            load_config(str(path))

    @pytest.mark.parametrize('override', [
        {'store': {'backend': 'postgres'}},
        {'store': {'max_attempts': 0}},
        {'triggers': {'workers': 0}},
        {'triggers': {'redelivery_attempts': -1}},
    ])
    def test_invalid_values(self, tmp_path, override):
        with pytest.raises(ConfigurationError):
            load_config(write_config(tmp_path, override))


class TestLogging:
    """Test cases for logging setup"""

    def test_file_handler_created(self, tmp_path):
        log_file = tmp_path / 'logs' / 'triggers.log'
        setup_logging({'level': 'DEBUG', 'format': '%(message)s', 'file': str(log_file)})

        root = logging.getLogger()
        try:
            assert root.level == logging.DEBUG
            assert any(isinstance(h, RotatingFileHandler) for h in root.handlers)
            assert log_file.parent.exists()
        finally:
            for handler in root.handlers[:]:
                handler.close()
                root.removeHandler(handler)

    def test_console_only_without_file(self):
        setup_logging({'level': 'INFO', 'format': '%(message)s', 'file': None})

        root = logging.getLogger()
        try:
            assert not any(isinstance(h, RotatingFileHandler) for h in root.handlers)
            assert len(root.handlers) == 1
            assert logging.getLogger('google').level == logging.WARNING
        finally:
            for handler in root.handlers[:]:
                root.removeHandler(handler)

    def test_invocation_logger_prefixes_id(self, caplog):
        log = InvocationLogger('abc123', 'triggers.test')
        with caplog.at_level(logging.INFO, logger='triggers.test'):
            log.info("course updated")
        assert "[abc123] course updated" in caplog.text


class TestCli:
    """Test cases for the command line entry point"""

    @pytest.fixture(autouse=True)
    def restore_logging(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        for handler in root.handlers[:]:
            if handler not in handlers:
                root.removeHandler(handler)
        for handler in handlers:
            if handler not in root.handlers:
                root.addHandler(handler)
        root.setLevel(level)

    def test_audit_exit_code_reflects_drift(self, tmp_path, capsys):
        store = InMemoryDocumentStore()
        store.set(store.document('courses', 'C1'), {'students': 0, 'enrolledStudents': []})
        store.set(store.document('courses', 'C2'), {'students': 3, 'enrolledStudents': ['s1']})
        path = write_config(tmp_path, {'logging': {'file': None}})

        with patch.object(cli, 'build_store', return_value=store):
            with pytest.raises(SystemExit) as exc_info:
                cli.main(['--config', path, 'audit', 'C1'])
            assert exc_info.value.code == 0

            with pytest.raises(SystemExit) as exc_info:
                cli.main(['--config', path, 'audit', 'C2', 'ghost'])
            assert exc_info.value.code == 1

        output = capsys.readouterr().out
        assert '"drift": 2' in output
        assert 'Course not found: ghost' in output

    def test_invalid_config_exits(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(['--config', str(tmp_path / 'nope.json'), 'serve'])
        assert exc_info.value.code == 2

    def test_build_store_memory(self):
        config = load_config()
        assert isinstance(cli.build_store(config), InMemoryDocumentStore)

    def test_trigger_node_start_and_stop(self):
        store = InMemoryDocumentStore(retry_backoff_ms=0)
        store.set(store.document('courses', 'C1'), {'students': 0, 'enrolledStudents': []})
        node = cli.TriggerNode(load_config(), store=store)

        node.start()
        store.add('enrollments', {'studentId': 's1', 'courseId': 'C1'})
        assert node.dispatcher.drain(timeout=5)
        node.stop()

        assert store.get(store.document('courses', 'C1')).get('students') == 1

    def test_signal_then_stop_detaches_dispatcher(self):
        """A shutdown signal followed by stop() leaves no watch attached"""
        store = InMemoryDocumentStore(retry_backoff_ms=0)
        store.set(store.document('courses', 'C1'), {'students': 0, 'enrolledStudents': []})
        node = cli.TriggerNode(load_config(), store=store)

        node.start()
        node._signal_handler(signal.SIGTERM, None)
        node.wait()
        node.stop()

        store.add('enrollments', {'studentId': 's1', 'courseId': 'C1'})

        assert store.get(store.document('courses', 'C1')).get('students') == 0
        with pytest.raises(RuntimeError):
            node.dispatcher.executor.submit(print)

    def test_stop_is_idempotent(self):
        store = InMemoryDocumentStore(retry_backoff_ms=0)
        node = cli.TriggerNode(load_config(), store=store)
        node.start()

        with patch.object(node.dispatcher, 'stop', wraps=node.dispatcher.stop) as dispatcher_stop:
            node.stop()
            node.stop()

        dispatcher_stop.assert_called_once_with(wait=True)
