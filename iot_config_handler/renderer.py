"""
Telegraf Configuration Renderer
===============================

This module turns a set of Template records into the text of a Telegraf
configuration file. Each template becomes one ``[[inputs.<plugin_name>]]``
stanza; stanzas are ordered by template source filename so repeated runs
over the same templates produce byte-identical, diff-friendly output.

The fixed part of the file (global tags, agent section and the InfluxDB v2
output) lives in the ``telegraf.conf.j2`` Jinja2 template shipped with the
package. Stanza bodies are serialized here in Telegraf's TOML syntax.

Rendering is pure: nothing is written to disk.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Tuple

from jinja2 import Environment, PackageLoader, StrictUndefined

from .errors import InvalidTemplate, NoTemplatesFound
from .template_loader import InlineTable, Template, is_valid_duration, is_valid_key

# Configure logging
logger = logging.getLogger(__name__)

INDENT = "  "

_ESCAPES = {
    '\\': '\\\\',
    '"': '\\"',
    '\b': '\\b',
    '\t': '\\t',
    '\n': '\\n',
    '\f': '\\f',
    '\r': '\\r',
}


@dataclass(frozen=True)
class AgentSettings:
    """Agent and output values of the generated configuration."""
    token: str
    influx_url: str = "http://127.0.0.1:8086"
    organization: str = "org"
    bucket: str = "line"
    interval: str = "1000ms"
    logfile: str = "/var/log/telegraf/telegraf.log"

    @classmethod
    def from_settings(cls, settings, token: str) -> "AgentSettings":
        return cls(
            token=token,
            influx_url=settings.influx_url,
            organization=settings.influx_org,
            bucket=settings.influx_bucket,
            interval=settings.agent_interval,
            logfile=settings.remote_log_file
        )


@dataclass(frozen=True)
class Stanza:
    """One rendered plugin block."""
    source: str
    plugin_name: str
    text: str


@dataclass(frozen=True)
class RenderedConfig:
    """Ordered stanzas plus the complete configuration file text."""
    stanzas: Tuple[Stanza, ...]
    text: str

    @property
    def sources(self) -> List[str]:
        return [stanza.source for stanza in self.stanzas]


def quote_string(value: str) -> str:
    """Quote a string as a TOML basic string."""
    out = []
    for char in value:
        if char in _ESCAPES:
            out.append(_ESCAPES[char])
        elif ord(char) < 0x20 or ord(char) == 0x7f:
            out.append(f"\\u{ord(char):04x}")
        else:
            out.append(char)
    return '"' + ''.join(out) + '"'


def format_value(value: Any) -> str:
    """Format a scalar, list or inline table as a TOML value."""
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, str):
        return quote_string(value)
    if isinstance(value, InlineTable):
        entries = ", ".join(f"{key}={format_value(item)}" for key, item in value.entries)
        return "{" + entries + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(format_value(item) for item in value) + "]"
    raise TypeError(f"Unsupported value type: {type(value).__name__}")


def _format_assignment(key: str, value: Any, indent: str) -> List[str]:
    if isinstance(value, (list, tuple)) and value and all(isinstance(item, InlineTable) for item in value):
        lines = [f"{indent}{key} = ["]
        rows = [f"{indent}{INDENT}{format_value(item)}" for item in value]
        lines.append(",\n".join(rows))
        lines.append(f"{indent}]")
        return lines
    return [f"{indent}{key} = {format_value(value)}"]


def validate_template(template: Template):
    """Check a template can be rendered; raises InvalidTemplate otherwise."""
    if not template.plugin_name or not template.plugin_name.strip():
        raise InvalidTemplate(template.source, "plugin_name is required")
    if not is_valid_key(template.plugin_name):
        raise InvalidTemplate(template.source, f"plugin_name '{template.plugin_name}' is not a valid key")
    if template.interval is not None and not is_valid_duration(template.interval):
        raise InvalidTemplate(template.source, f"interval '{template.interval}' is not a valid duration")

    keys = [key for key, _ in template.fields] + [key for key, _ in template.tags]
    keys += [table.name for table in template.tables]
    for table in template.tables:
        keys += [key for key, _ in table.fields]
    for key in keys:
        if not is_valid_key(key):
            raise InvalidTemplate(template.source, f"key '{key}' is not a valid key")

    # Plain keys and table names share the stanza's key space
    names = [key for key, _ in template.fields]
    if template.interval is not None:
        names.append("interval")
    if template.tags:
        names.append("tags")
    names += sorted({table.name for table in template.tables})
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise InvalidTemplate(template.source, f"duplicate key(s) {duplicates} in [[inputs.{template.plugin_name}]]")


def render_stanza(template: Template) -> str:
    """Render one template as a Telegraf input stanza."""
    validate_template(template)

    prefix = f"inputs.{template.plugin_name}"
    lines = [f"[[{prefix}]]"]

    if template.interval is not None:
        lines.append(f"{INDENT}interval = {format_value(template.interval)}")

    for key, value in template.fields:
        lines.extend(_format_assignment(key, value, INDENT))

    if template.tags:
        lines.append(f"{INDENT}[{prefix}.tags]")
        for key, value in template.tags:
            lines.append(f"{INDENT * 2}{key} = {quote_string(value)}")

    for table in template.tables:
        lines.append(f"{INDENT}[[{prefix}.{table.name}]]")
        for key, value in table.fields:
            lines.extend(_format_assignment(key, value, INDENT * 2))

    return "\n".join(lines)


class ConfigRenderer:
    """Renders the complete telegraf.conf text."""

    def __init__(self):
        self.jinja_env = Environment(
            loader=PackageLoader("iot_config_handler", "templates"),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False
        )
        self.jinja_env.filters["toml"] = format_value

    def render(self, templates: Iterable[Template], agent: AgentSettings,
               origin: str = "template set") -> RenderedConfig:
        """
        Render templates into a configuration.

        Args:
            templates: Parsed templates, in any order
            agent: Agent and InfluxDB output values
            origin: Where the templates came from, used in error messages
        """
        ordered = sorted(templates, key=lambda template: (template.source, template.plugin_name))
        if not ordered:
            raise NoTemplatesFound(origin, "no templates to render")

        stanzas = tuple(
            Stanza(source=template.source, plugin_name=template.plugin_name, text=render_stanza(template))
            for template in ordered
        )

        text = self.jinja_env.get_template("telegraf.conf.j2").render(
            agent=agent,
            inputs="\n\n".join(stanza.text for stanza in stanzas)
        )

        logger.info(f"Rendered {len(stanzas)} stanza(s): {', '.join(s.source for s in stanzas)}")
        return RenderedConfig(stanzas=stanzas, text=text)


def render_config(templates: Iterable[Template], agent: AgentSettings,
                  origin: str = "template set") -> RenderedConfig:
    """Render templates with a default ConfigRenderer."""
    return ConfigRenderer().render(templates, agent, origin)
