"""Tests for run option resolution."""
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from iot_config_handler.errors import OperationAborted, OptionError
from iot_config_handler.options import (
    CliFlags,
    DefaultsPrompter,
    Prompter,
    parse_listener_indexes,
    resolve_base_options,
    resolve_generation_options,
    validate_ipv4,
)
from iot_config_handler.template_loader import NodesetSettings, discover_templates

from .conftest import CPU_TEMPLATE, NODESET_TEMPLATE


def scripted_prompter(confirms=(), answers=()):
    """Prompter mock answering from fixed lists."""
    prompter = MagicMock(spec=Prompter)
    prompter.confirm.side_effect = list(confirms)
    prompter.ask.side_effect = list(answers)
    return prompter


@pytest.fixture
def mixed_folder(tmp_path, write_file):
    """Folder with one native template and one nodeset."""
    folder = tmp_path / "mixed"
    folder.mkdir()
    write_file("01_cpu.xml", CPU_TEMPLATE, folder)
    write_file("02_line.xml", NODESET_TEMPLATE, folder)
    return folder


class TestHelpers:
    """Test option parsing helpers."""

    def test_validate_ipv4(self):
        assert validate_ipv4("192.168.0.1") == "192.168.0.1"

    @pytest.mark.parametrize("value", ["192.168.0", "host.local", "256.1.1.1", ""])
    def test_validate_ipv4_rejects(self, value):
        with pytest.raises(OptionError, match="Invalid IP address"):
            validate_ipv4(value)

    @pytest.mark.parametrize("answer,expected", [
        ("", []),
        ("1,3", [0, 2]),
        (" 2 , 2 ", [1]),
        ("0,4,x,3", [2]),
        ("1,²", [0]),
        ("٣", [2]),
    ])
    def test_parse_listener_indexes(self, answer, expected):
        assert parse_listener_indexes(answer, 3) == expected


class TestResolveBaseOptions:
    """Test flag and settings merging."""

    def test_defaults_from_settings(self, test_settings, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)

        options = resolve_base_options(CliFlags(), test_settings)

        assert options.folder == Path.cwd()
        assert options.token_folder == options.folder
        assert options.config_path == Path.cwd() / "telegraf.conf"
        assert options.opc_server.ip == "192.168.0.10"
        assert options.opc_server.username == "opc"
        assert options.target.host == "10.0.0.5"
        assert options.target.port == 2222
        assert options.target.username == "root"
        assert options.target.password == "iot-secret"
        assert options.target.key_file is None
        assert options.target.remote_path == "/etc/telegraf/telegraf.conf"

    def test_flags_override_settings(self, test_settings, tmp_path):
        flags = CliFlags(
            folder=tmp_path,
            ip="10.1.1.1",
            username="user",
            password="pw",
            iot_host="10.2.2.2",
            iot_password="other",
            token_folder=tmp_path / "tokens",
            send=True
        )

        options = resolve_base_options(flags, test_settings)

        assert options.folder == tmp_path
        assert options.token_folder == tmp_path / "tokens"
        assert options.opc_server.ip == "10.1.1.1"
        assert options.opc_server.password == "pw"
        assert options.target.address == "10.2.2.2:22"
        assert options.target.password == "other"
        assert options.send is True

    @pytest.mark.parametrize("iot_host", ["10.0.0.1:ssh", "10.0.0.1:70000", ":22", "a:b:c"])
    def test_invalid_iot_host(self, test_settings, iot_host):
        with pytest.raises(OptionError, match="Invalid IOT host"):
            resolve_base_options(CliFlags(iot_host=iot_host), test_settings)

    def test_invalid_ip(self, test_settings):
        with pytest.raises(OptionError):
            resolve_base_options(CliFlags(ip="not-an-ip"), test_settings)


class TestResolveGenerationOptions:
    """Test interactive resolution of generation options."""

    def test_assume_yes_uses_defaults(self, test_settings, template_folder):
        flags = CliFlags(folder=template_folder, assume_yes=True)
        options = resolve_base_options(flags, test_settings)
        files = discover_templates(template_folder)

        resolved = resolve_generation_options(options, files, flags, test_settings, DefaultsPrompter())

        assert resolved.template_files == tuple(files)
        assert dict(resolved.nodeset_settings) == {}
        assert resolved.influx_token == "secret-token"

    def test_declining_files_aborts(self, test_settings, template_folder):
        flags = CliFlags(folder=template_folder)
        options = resolve_base_options(flags, test_settings)
        prompter = scripted_prompter(confirms=[False])

        with pytest.raises(OperationAborted):
            resolve_generation_options(options, discover_templates(template_folder), flags,
                                       test_settings, prompter)

    def test_nodeset_questions(self, test_settings, mixed_folder, write_file):
        write_file("token.txt", "tok", mixed_folder)
        flags = CliFlags(folder=mixed_folder)
        options = resolve_base_options(flags, test_settings)
        prompter = scripted_prompter(confirms=[True], answers=["2", "3", "500"])

        resolved = resolve_generation_options(options, discover_templates(mixed_folder), flags,
                                              test_settings, prompter)

        assert dict(resolved.nodeset_settings) == {
            "02_line.xml": NodesetSettings(namespace="3", interval="500ms", listener=True)
        }
        assert prompter.ask.call_count == 3

    def test_listener_index_of_native_template_is_ignored(self, test_settings, mixed_folder, write_file):
        write_file("token.txt", "tok", mixed_folder)
        flags = CliFlags(folder=mixed_folder)
        options = resolve_base_options(flags, test_settings)
        prompter = scripted_prompter(confirms=[True], answers=["1", "", ""])

        resolved = resolve_generation_options(options, discover_templates(mixed_folder), flags,
                                              test_settings, prompter)

        assert resolved.nodeset_settings["02_line.xml"].listener is False
        assert resolved.nodeset_settings["02_line.xml"].namespace == "2"
        assert resolved.nodeset_settings["02_line.xml"].interval == "1000ms"

    def test_listener_flag(self, test_settings, mixed_folder):
        flags = CliFlags(folder=mixed_folder, assume_yes=True, influx_token="tok",
                         listeners=("02_line.xml",))
        options = resolve_base_options(flags, test_settings)

        resolved = resolve_generation_options(options, discover_templates(mixed_folder), flags,
                                              test_settings, DefaultsPrompter())

        assert resolved.nodeset_settings["02_line.xml"] == NodesetSettings(listener=True)
        assert resolved.influx_token == "tok"

    def test_listener_flag_must_name_a_nodeset(self, test_settings, mixed_folder):
        flags = CliFlags(folder=mixed_folder, assume_yes=True, influx_token="tok",
                         listeners=("01_cpu.xml",))
        options = resolve_base_options(flags, test_settings)

        with pytest.raises(OptionError, match="not OPC UA nodeset"):
            resolve_generation_options(options, discover_templates(mixed_folder), flags,
                                       test_settings, DefaultsPrompter())

    @pytest.mark.parametrize("answers,message", [
        (["", "two", ""], "must be a number"),
        (["", "2", "soon"], "not a valid duration"),
        (["", "²", ""], "must be a number"),
        (["", "2", "²"], "not a valid duration"),
    ])
    def test_invalid_nodeset_answers(self, test_settings, mixed_folder, answers, message):
        flags = CliFlags(folder=mixed_folder, influx_token="tok")
        options = resolve_base_options(flags, test_settings)
        prompter = scripted_prompter(confirms=[True], answers=answers)

        with pytest.raises(OptionError, match=message):
            resolve_generation_options(options, discover_templates(mixed_folder), flags,
                                       test_settings, prompter)


class TestTokenResolution:
    """Test where the InfluxDB token comes from."""

    def _resolve(self, settings, folder, prompter, **flag_values):
        flags = CliFlags(folder=folder, **flag_values)
        options = resolve_base_options(flags, settings)
        return resolve_generation_options(options, discover_templates(folder), flags, settings, prompter)

    def test_flag_wins_over_token_file(self, test_settings, template_folder):
        resolved = self._resolve(test_settings, template_folder, DefaultsPrompter(),
                                 assume_yes=True, influx_token="from-flag")

        assert resolved.influx_token == "from-flag"

    def test_token_folder(self, test_settings, tmp_path, write_file):
        folder = tmp_path / "templates"
        write_file("01_cpu.xml", CPU_TEMPLATE, folder)
        write_file("token.txt", "  elsewhere \n", tmp_path / "secrets")

        resolved = self._resolve(test_settings, folder, DefaultsPrompter(),
                                 assume_yes=True, token_folder=tmp_path / "secrets")

        assert resolved.influx_token == "elsewhere"

    def test_settings_token(self, test_settings, tmp_path, write_file):
        write_file("01_cpu.xml", CPU_TEMPLATE)
        settings = test_settings.model_copy(update={"influx_token": "from-env"})

        resolved = self._resolve(settings, tmp_path, DefaultsPrompter(), assume_yes=True)

        assert resolved.influx_token == "from-env"

    def test_prompt_when_missing(self, test_settings, tmp_path, write_file):
        write_file("01_cpu.xml", CPU_TEMPLATE)
        prompter = scripted_prompter(confirms=[True], answers=["typed-token"])

        resolved = self._resolve(test_settings, tmp_path, prompter)

        assert resolved.influx_token == "typed-token"
        assert prompter.ask.call_args.kwargs["hide_input"] is True

    def test_empty_prompt_answer(self, test_settings, tmp_path, write_file):
        write_file("01_cpu.xml", CPU_TEMPLATE)
        prompter = scripted_prompter(confirms=[True], answers=["  "])

        with pytest.raises(OptionError, match="token is required"):
            self._resolve(test_settings, tmp_path, prompter)

    def test_missing_token_with_assume_yes(self, test_settings, tmp_path, write_file):
        write_file("01_cpu.xml", CPU_TEMPLATE)

        with pytest.raises(OptionError, match="INFLUX_TOKEN"):
            self._resolve(test_settings, tmp_path, DefaultsPrompter(), assume_yes=True)
