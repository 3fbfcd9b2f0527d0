"""
Template Loader for Telegraf Input Stanzas
==========================================

This module discovers XML template files in a folder and parses them into
immutable Template records, one per file. Two XML dialects are accepted:

- Native templates (``<template version="1">``) describing one Telegraf
  input plugin with its interval, tags, fields and nested tables.
- OPC UA ``UANodeSet`` exports, converted into an ``inputs.opcua`` (polling)
  or ``inputs.opcua_listener`` (subscription) stanza reading every variable
  of the configured source namespace.

The schema is treated as a versioned contract: unknown elements, attributes
or types are rejected with InvalidTemplate instead of being ignored.
"""

import logging
import math
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .errors import InvalidTemplate, NoTemplatesFound

# Configure logging
logger = logging.getLogger(__name__)

SUPPORTED_SCHEMA_VERSIONS = ("1",)
TEMPLATE_SUFFIX = ".xml"

BARE_KEY_PATTERN = re.compile(r'^[A-Za-z0-9_-]+$')
DURATION_PATTERN = re.compile(r'^([0-9]+(\.[0-9]+)?(ns|us|µs|ms|s|m|h))+$')
BROWSE_NAME_PREFIX = re.compile(r'^\d+:')

SCALAR_TYPES = ("string", "int", "float", "bool")
FIELD_TYPES = SCALAR_TYPES + ("list",)


@dataclass(frozen=True)
class InlineTable:
    """A TOML inline table, e.g. one OPC UA node entry."""
    entries: Tuple[Tuple[str, Any], ...]


@dataclass(frozen=True)
class TemplateTable:
    """A nested array-of-tables entry, rendered as [[inputs.<plugin>.<name>]]."""
    name: str
    fields: Tuple[Tuple[str, Any], ...] = ()


@dataclass(frozen=True)
class Template:
    """One monitored input, parsed from a single template file."""
    source: str
    plugin_name: str
    interval: Optional[str] = None
    tags: Tuple[Tuple[str, str], ...] = ()
    fields: Tuple[Tuple[str, Any], ...] = ()
    tables: Tuple[TemplateTable, ...] = ()

    def field_map(self) -> Dict[str, Any]:
        return dict(self.fields)


@dataclass(frozen=True)
class NodesetSettings:
    """Per-file settings for OPC UA nodeset templates."""
    namespace: str = "2"
    interval: str = "1000ms"
    listener: bool = False


@dataclass(frozen=True)
class OpcServer:
    """OPC UA server the generated opcua inputs connect to."""
    ip: str
    username: str
    password: str
    port: int = 4840

    @property
    def endpoint(self) -> str:
        return f"opc.tcp://{self.ip}:{self.port}"


def _local_name(tag: str) -> str:
    """Strip the XML namespace from an element tag."""
    return tag.rsplit('}', 1)[-1]


def _text(element: ET.Element) -> str:
    return (element.text or "").strip()


def is_valid_key(key: str) -> bool:
    return bool(BARE_KEY_PATTERN.match(key))


def is_valid_duration(value: str) -> bool:
    return bool(DURATION_PATTERN.match(value))


def discover_templates(folder: Union[str, Path]) -> List[Path]:
    """
    Return the XML template files directly inside folder, sorted by filename.

    Raises NoTemplatesFound when the folder is missing or holds no templates.
    """
    folder_path = Path(folder)
    if not folder_path.is_dir():
        raise NoTemplatesFound(folder_path, "folder does not exist")

    files = sorted(
        (path for path in folder_path.iterdir()
         if path.is_file() and path.suffix.lower() == TEMPLATE_SUFFIX),
        key=lambda path: path.name
    )
    if not files:
        raise NoTemplatesFound(folder_path)

    logger.debug(f"Discovered {len(files)} template(s) in {folder_path}")
    return files


def _parse_xml(path: Path) -> ET.Element:
    try:
        return ET.parse(str(path)).getroot()
    except ET.ParseError as e:
        raise InvalidTemplate(path, f"malformed XML: {e}")
    except OSError as e:
        raise InvalidTemplate(path, f"cannot read file: {e}")


def is_nodeset(path: Union[str, Path]) -> bool:
    """Check whether a template file is an OPC UA nodeset export."""
    return _local_name(_parse_xml(Path(path)).tag) == "UANodeSet"


class NativeTemplateParser:
    """Strict parser for the native template schema."""

    ROOT_ATTRIBUTES = {"version"}
    ROOT_CHILDREN = {"plugin_name", "interval", "tags", "fields", "table"}
    SINGLE_CHILDREN = {"plugin_name", "interval", "tags", "fields"}

    def __init__(self, path: Path):
        self.path = path

    def _fail(self, reason: str) -> InvalidTemplate:
        return InvalidTemplate(self.path, reason)

    def _check_attributes(self, element: ET.Element, allowed: set):
        unknown = sorted(set(element.attrib) - allowed)
        if unknown:
            raise self._fail(f"unknown attribute(s) {unknown} on <{element.tag}>")

    def _check_no_children(self, element: ET.Element):
        if len(element):
            raise self._fail(f"<{element.tag}> must not contain child elements")

    def _check_key(self, key: Optional[str], what: str) -> str:
        if not key:
            raise self._fail(f"{what} is missing its key")
        if not is_valid_key(key):
            raise self._fail(f"{what} key '{key}' must contain only letters, digits, '_' or '-'")
        return key

    def _convert_scalar(self, raw: str, value_type: str, key: str) -> Any:
        if value_type == "string":
            return raw
        if value_type == "int":
            try:
                return int(raw)
            except ValueError:
                raise self._fail(f"field '{key}' is not an integer: '{raw}'")
        if value_type == "float":
            try:
                value = float(raw)
            except ValueError:
                raise self._fail(f"field '{key}' is not a number: '{raw}'")
            if math.isnan(value) or math.isinf(value):
                raise self._fail(f"field '{key}' must be a finite number")
            return value
        if value_type == "bool":
            lowered = raw.lower()
            if lowered not in ("true", "false"):
                raise self._fail(f"field '{key}' must be 'true' or 'false', got '{raw}'")
            return lowered == "true"
        raise self._fail(f"field '{key}' has unsupported type '{value_type}'")

    def _parse_inline_table(self, item: ET.Element, key: str) -> InlineTable:
        entries = []
        seen = set()
        for entry in item:
            if entry.tag != "entry":
                raise self._fail(f"list item of '{key}' contains unknown element <{entry.tag}>")
            self._check_attributes(entry, {"key", "type"})
            self._check_no_children(entry)
            entry_key = self._check_key(entry.get("key"), f"entry of '{key}'")
            if entry_key in seen:
                raise self._fail(f"duplicate entry '{entry_key}' in list '{key}'")
            seen.add(entry_key)
            entry_type = entry.get("type", "string")
            if entry_type not in SCALAR_TYPES:
                raise self._fail(f"entry '{entry_key}' of '{key}' has unsupported type '{entry_type}'")
            entries.append((entry_key, self._convert_scalar(_text(entry), entry_type, entry_key)))
        return InlineTable(entries=tuple(entries))

    def _parse_list(self, element: ET.Element, key: str) -> Tuple[Any, ...]:
        items = []
        for item in element:
            if item.tag != "item":
                raise self._fail(f"list '{key}' contains unknown element <{item.tag}>")
            self._check_attributes(item, {"type"})
            if len(item):
                if "type" in item.attrib:
                    raise self._fail(f"table item of list '{key}' must not declare a type")
                if _text(item):
                    raise self._fail(f"table item of list '{key}' must not contain text")
                items.append(self._parse_inline_table(item, key))
            else:
                item_type = item.get("type", "string")
                if item_type not in SCALAR_TYPES:
                    raise self._fail(f"item of list '{key}' has unsupported type '{item_type}'")
                items.append(self._convert_scalar(_text(item), item_type, key))

        if len({isinstance(item, InlineTable) for item in items}) > 1:
            raise self._fail(f"list '{key}' mixes table items and plain values")
        return tuple(items)

    def _parse_field(self, element: ET.Element) -> Tuple[str, Any]:
        if element.tag != "field":
            raise self._fail(f"unknown element <{element.tag}>, expected <field>")
        self._check_attributes(element, {"key", "type"})
        key = self._check_key(element.get("key"), "field")
        value_type = element.get("type", "string")
        if value_type not in FIELD_TYPES:
            raise self._fail(f"field '{key}' has unsupported type '{value_type}'")

        if value_type == "list":
            if _text(element):
                raise self._fail(f"list field '{key}' must contain <item> elements, not text")
            return key, self._parse_list(element, key)

        self._check_no_children(element)
        return key, self._convert_scalar(_text(element), value_type, key)

    def _parse_fields(self, container: ET.Element, reserved: set) -> Tuple[Tuple[str, Any], ...]:
        fields = []
        seen = set(reserved)
        for child in container:
            key, value = self._parse_field(child)
            if key in seen:
                raise self._fail(f"duplicate key '{key}'")
            seen.add(key)
            fields.append((key, value))
        return tuple(fields)

    def _parse_tags(self, container: ET.Element) -> Tuple[Tuple[str, str], ...]:
        self._check_attributes(container, set())
        tags = []
        seen = set()
        for child in container:
            if child.tag != "tag":
                raise self._fail(f"unknown element <{child.tag}> in <tags>")
            self._check_attributes(child, {"key"})
            self._check_no_children(child)
            key = self._check_key(child.get("key"), "tag")
            if key in seen:
                raise self._fail(f"duplicate tag '{key}'")
            seen.add(key)
            tags.append((key, _text(child)))
        return tuple(tags)

    def parse(self, root: ET.Element) -> Template:
        if root.tag != "template":
            raise self._fail(f"unexpected root element <{root.tag}>, expected <template> or <UANodeSet>")
        self._check_attributes(root, self.ROOT_ATTRIBUTES)

        version = root.get("version")
        if version is None:
            raise self._fail("missing schema version attribute")
        if version not in SUPPORTED_SCHEMA_VERSIONS:
            raise self._fail(f"unsupported schema version '{version}'")

        counts: Dict[str, int] = {}
        for child in root:
            if child.tag not in self.ROOT_CHILDREN:
                raise self._fail(f"unknown element <{child.tag}>")
            counts[child.tag] = counts.get(child.tag, 0) + 1
            if child.tag in self.SINGLE_CHILDREN and counts[child.tag] > 1:
                raise self._fail(f"element <{child.tag}> may appear only once")

        plugin_name = ""
        interval = None
        tags: Tuple[Tuple[str, str], ...] = ()
        fields: Tuple[Tuple[str, Any], ...] = ()
        tables = []

        plugin_element = root.find("plugin_name")
        if plugin_element is not None:
            self._check_attributes(plugin_element, set())
            self._check_no_children(plugin_element)
            plugin_name = _text(plugin_element)
            if plugin_name and not is_valid_key(plugin_name):
                raise self._fail(f"plugin_name '{plugin_name}' must contain only letters, digits, '_' or '-'")

        interval_element = root.find("interval")
        if interval_element is not None:
            self._check_attributes(interval_element, set())
            self._check_no_children(interval_element)
            interval = _text(interval_element)
            if not is_valid_duration(interval):
                raise self._fail(f"interval '{interval}' is not a valid duration (e.g. 10s, 500ms, 1m)")

        tags_element = root.find("tags")
        if tags_element is not None:
            tags = self._parse_tags(tags_element)

        table_elements = root.findall("table")
        reserved = set()
        if interval is not None:
            reserved.add("interval")
        if tags:
            reserved.add("tags")
        for table_element in table_elements:
            self._check_attributes(table_element, {"name"})
            name = self._check_key(table_element.get("name"), "table")
            if (name == "interval" and interval is not None) or (name == "tags" and tags):
                raise self._fail(f"table name '{name}' collides with the <{name}> element")
            reserved.add(name)
            tables.append(TemplateTable(name=name, fields=self._parse_fields(table_element, set())))

        fields_element = root.find("fields")
        if fields_element is not None:
            self._check_attributes(fields_element, set())
            fields = self._parse_fields(fields_element, reserved)

        return Template(
            source=self.path.name,
            plugin_name=plugin_name,
            interval=interval,
            tags=tags,
            fields=fields,
            tables=tuple(tables)
        )


class NodesetTemplateBuilder:
    """Builds an opcua / opcua_listener stanza from an OPC UA nodeset export."""

    def __init__(self, path: Path, server: OpcServer, settings: NodesetSettings,
                 namespace_index: int = 2):
        self.path = path
        self.server = server
        self.settings = settings
        self.node_prefix = f"ns={namespace_index};i="
        self.root_object_id = f"ns={namespace_index};i=1"

    def _group_name(self, root: ET.Element) -> str:
        display_name = ""
        for element in root.iter():
            if _local_name(element.tag) != "UAObject" or element.get("NodeId") != self.root_object_id:
                continue
            for child in element.iter():
                if _local_name(child.tag) == "DisplayName" and _text(child):
                    display_name = _text(child)
                    logger.info(f"BrowseName for {self.root_object_id} in {self.path.name}: {display_name}")
                    break
        return display_name or self.path.stem

    def _variable_name(self, variable: ET.Element, node_id: str) -> str:
        for child in variable.iter():
            if _local_name(child.tag) == "VariableMapping" and _text(child):
                return _text(child).replace('"', '')

        browse_name = variable.get("BrowseName", "")
        if browse_name:
            return BROWSE_NAME_PREFIX.sub('', browse_name, count=1)

        for child in variable.iter():
            if _local_name(child.tag) == "BrowseName" and _text(child):
                return _text(child)

        raise InvalidTemplate(self.path, f"variable {node_id} has no BrowseName")

    def _nodes(self, root: ET.Element) -> Tuple[InlineTable, ...]:
        nodes = []
        for element in root.iter():
            if _local_name(element.tag) != "UAVariable":
                continue
            node_id = element.get("NodeId", "")
            if not node_id.startswith(self.node_prefix):
                continue
            identifier = node_id[len(self.node_prefix):]
            if not identifier:
                raise InvalidTemplate(self.path, f"variable NodeId '{node_id}' has no identifier")
            name = self._variable_name(element, node_id)
            nodes.append(InlineTable(entries=(("name", name), ("identifier", identifier))))
        return tuple(nodes)

    def build(self, root: ET.Element) -> Template:
        if not is_valid_duration(self.settings.interval):
            raise InvalidTemplate(self.path, f"interval '{self.settings.interval}' is not a valid duration")

        nodes = self._nodes(root)
        if not nodes:
            raise InvalidTemplate(self.path, f"nodeset has no variables with NodeId prefix '{self.node_prefix}'")

        group_name = self._group_name(root)
        server = self.server

        if self.settings.listener:
            plugin_name = "opcua_listener"
            fields = (
                ("name", plugin_name),
                ("endpoint", server.endpoint),
                ("connect_fail_behavior", "ignore"),
                ("connect_timeout", "30s"),
                ("request_timeout", "10s"),
                ("session_timeout", "20m"),
            )
            group = (
                ("name", group_name),
                ("sampling_interval", self.settings.interval),
                ("namespace", self.settings.namespace),
                ("identifier_type", "i"),
                ("nodes", nodes),
            )
            interval = None
        else:
            plugin_name = "opcua"
            fields = (
                ("name", plugin_name),
                ("endpoint", server.endpoint),
                ("connect_timeout", "30s"),
                ("request_timeout", "10s"),
            )
            group = (
                ("name", group_name),
                ("namespace", self.settings.namespace),
                ("identifier_type", "i"),
                ("nodes", nodes),
            )
            interval = self.settings.interval

        fields += (
            ("security_policy", "Basic256Sha256"),
            ("security_mode", "SignAndEncrypt"),
            ("certificate", ""),
            ("private_key", ""),
            ("auth_method", "UserName"),
            ("username", server.username),
            ("password", server.password),
            ("timestamp", "source"),
            ("client_trace", False),
        )

        logger.debug(f"Built {plugin_name} stanza from {self.path.name} with {len(nodes)} node(s)")
        return Template(
            source=self.path.name,
            plugin_name=plugin_name,
            interval=interval,
            fields=fields,
            tables=(TemplateTable(name="group", fields=group),)
        )


def load_template(path: Union[str, Path],
                  server: Optional[OpcServer] = None,
                  nodeset_settings: Optional[NodesetSettings] = None,
                  namespace_index: int = 2) -> Template:
    """Parse a single template file into a Template record."""
    path = Path(path)
    root = _parse_xml(path)

    if _local_name(root.tag) == "UANodeSet":
        if server is None:
            raise InvalidTemplate(path, "OPC UA server settings are required for nodeset templates")
        builder = NodesetTemplateBuilder(path, server, nodeset_settings or NodesetSettings(), namespace_index)
        return builder.build(root)

    return NativeTemplateParser(path).parse(root)


def load_templates(paths: List[Path],
                   server: Optional[OpcServer] = None,
                   nodeset_settings: Optional[Mapping[str, NodesetSettings]] = None,
                   namespace_index: int = 2) -> List[Template]:
    """
    Parse every template file.

    Args:
        paths: Template files, usually from discover_templates()
        server: OPC UA server used by nodeset templates
        nodeset_settings: Per-file nodeset settings keyed by filename
        namespace_index: Source namespace index of the nodeset variables
    """
    nodeset_settings = nodeset_settings or {}
    templates = []
    for path in paths:
        template = load_template(
            path,
            server=server,
            nodeset_settings=nodeset_settings.get(Path(path).name),
            namespace_index=namespace_index
        )
        templates.append(template)
    return templates
