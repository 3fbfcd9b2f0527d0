"""Shared test fixtures for the config handler tests."""
import textwrap

import pytest

from iot_config_handler.config import Settings
from iot_config_handler.renderer import AgentSettings
from iot_config_handler.ssh_connection import DeviceTarget
from iot_config_handler.template_loader import OpcServer


CPU_TEMPLATE = """\
<template version="1">
  <plugin_name>cpu</plugin_name>
  <interval>10s</interval>
  <fields>
    <field key="percpu" type="bool">true</field>
    <field key="totalcpu" type="bool">true</field>
  </fields>
</template>
"""

MEM_TEMPLATE = """\
<template version="1">
  <plugin_name>mem</plugin_name>
</template>
"""

DISK_TEMPLATE = """\
<template version="1">
  <plugin_name>disk</plugin_name>
  <tags>
    <tag key="site">plant-1</tag>
  </tags>
  <fields>
    <field key="mount_points" type="list">
      <item>/</item>
      <item>/data</item>
    </field>
  </fields>
</template>
"""

NODESET_TEMPLATE = """\
<?xml version="1.0" encoding="utf-8"?>
<UANodeSet xmlns="http://opcfoundation.org/UA/2011/03/UANodeSet.xsd"
           xmlns:si="http://www.siemens.com/OPCUA/2017/SimaticNodeSetExtensions">
  <UAObject NodeId="ns=2;i=1" BrowseName="2:Line1">
    <DisplayName>Line1</DisplayName>
  </UAObject>
  <UAVariable NodeId="ns=2;i=5" BrowseName="2:Temperature" DataType="Float">
    <DisplayName>Temperature</DisplayName>
  </UAVariable>
  <UAVariable NodeId="ns=2;i=6" BrowseName="2:Pressure" DataType="Float">
    <DisplayName>Pressure</DisplayName>
    <Extensions>
      <Extension>
        <si:VariableMapping>"DB1"."Pressure"</si:VariableMapping>
      </Extension>
    </Extensions>
  </UAVariable>
  <UAVariable NodeId="ns=1;i=7" BrowseName="1:ServerStatus"/>
</UANodeSet>
"""


@pytest.fixture
def write_file(tmp_path):
    """Write a file below tmp_path and return its path."""
    def _write(name, content, folder=None):
        target = (folder or tmp_path) / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(textwrap.dedent(content), encoding="utf-8")
        return target
    return _write


@pytest.fixture
def template_folder(tmp_path, write_file):
    """Folder with the cpu and mem templates plus a token file."""
    folder = tmp_path / "templates"
    folder.mkdir()
    write_file("01_cpu.xml", CPU_TEMPLATE, folder)
    write_file("02_mem.xml", MEM_TEMPLATE, folder)
    write_file("token.txt", "secret-token\n", folder)
    return folder


@pytest.fixture
def test_settings():
    """Settings isolated from any .env file."""
    return Settings(
        _env_file=None,
        default_ip="192.168.0.10",
        default_username="opc",
        default_password="opc-secret",
        default_iot_ip="10.0.0.5:2222",
        default_iot_password="iot-secret",
        influx_token="",
        ssh_key_file="",
        restart_wait_seconds=0,
        log_level="WARNING",
    )


@pytest.fixture
def agent():
    return AgentSettings(token="secret-token")


@pytest.fixture
def opc_server():
    return OpcServer(ip="192.168.0.10", username="opc", password="opc-secret")


@pytest.fixture
def device_target():
    return DeviceTarget(host="10.0.0.5", port=2222, username="root", password="iot-secret")
