"""
Config templates — known-good bases for every managed file.

Each template starts with the managed marker so later runs can tell our
output from a distribution default. Placeholders are ``{name}``;
``${path.config}`` and other runtime references are passed through.
"""

from __future__ import annotations

from hostconverge.core.services.config_writer import MANAGED_MARKER

# ── Server role ─────────────────────────────────────────────────


ELASTICSEARCH_YML = f"""\
{MANAGED_MARKER}
cluster.name: {{cluster_name}}
node.name: {{node_name}}
network.host: {{es_network_host}}
http.port: {{es_port}}
discovery.type: single-node

# Standard Debian/Ubuntu paths (also enforced by the systemd override)
path.data: /var/lib/elasticsearch
path.logs: /var/log/elasticsearch

# Lab setup: transport security off
xpack.security.enabled: {{security_enabled}}
"""

KIBANA_YML = f"""\
{MANAGED_MARKER}
server.port: {{kibana_port}}
server.host: "{{kibana_server_host}}"
elasticsearch.hosts: ["http://localhost:{{es_port}}"]
"""


# ── Client role ─────────────────────────────────────────────────


FILEBEAT_BASE_YML = f"""\
{MANAGED_MARKER}

filebeat.inputs: []

filebeat.config.modules:
  path: ${{path.config}}/modules.d/*.yml
  reload.enabled: false

# System module (auth/syslog)
filebeat.modules:
  - module: system
    syslog:
      enabled: true
    auth:
      enabled: true

processors:
  - add_host_metadata: ~
  - add_cloud_metadata: ~
  - add_docker_metadata: ~
  - add_kubernetes_metadata: ~

setup.ilm.enabled: false
setup.template.enabled: false

"""

FILEBEAT_OUTPUT_LOGSTASH = """\
output.logstash:
  hosts: ["{elk_host}:{logstash_port}"]
"""

FILEBEAT_OUTPUT_ELASTICSEARCH = """\
output.elasticsearch:
  hosts: ["http://{elk_host}:{es_port}"]
"""

FILEBEAT_OUTPUTS = {
    "logstash": FILEBEAT_OUTPUT_LOGSTASH,
    "elasticsearch": FILEBEAT_OUTPUT_ELASTICSEARCH,
}

# Same effect as ``filebeat modules enable system``.
FILEBEAT_SYSTEM_MODULE_YML = f"""\
{MANAGED_MARKER}
- module: system
  syslog:
    enabled: true
  auth:
    enabled: true
"""


def filebeat_yml(output_mode: str) -> str:
    """Filebeat config with exactly one output block for ``output_mode``.

    Raises:
        KeyError: Unknown output mode.
    """
    return FILEBEAT_BASE_YML + FILEBEAT_OUTPUTS[output_mode]
