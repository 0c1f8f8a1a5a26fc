"""
Role catalog — turns RoleSettings into a RoleSpec.

    server  → elasticsearch, logstash, kibana
    client  → filebeat shipping to the server (logstash or elasticsearch)

Both roles share the Elastic APT repository definition.
"""

from __future__ import annotations

import logging

from hostconverge.core.config.loader import ConfigError, RoleSettings
from hostconverge.core.data import templates
from hostconverge.core.models.role import (
    ConfigFileSpec,
    DirectorySpec,
    HealthCheck,
    RepoDefinition,
    RoleSpec,
    ServiceSpec,
)

logger = logging.getLogger(__name__)

ROLES = ("server", "client")

ELASTIC_KEY_URL = "https://artifacts.elastic.co/GPG-KEY-elasticsearch"
ELASTIC_KEYRING = "/usr/share/keyrings/elastic-keyring.gpg"
ELASTIC_LIST = "/etc/apt/sources.list.d/elastic.list"
# Older installers wrote a malformed list here; APT refuses duplicates.
LEGACY_ELASTIC_LIST = "/etc/apt/sources.list.d/elastic-8.x.list"

ES_CONFIG = "/etc/elasticsearch/elasticsearch.yml"
KIBANA_CONFIG = "/etc/kibana/kibana.yml"
FILEBEAT_CONFIG = "/etc/filebeat/filebeat.yml"
FILEBEAT_SYSTEM_MODULE = "/etc/filebeat/modules.d/system.yml"

# Left behind by a failed first start; ES refuses to start on a half-made keystore.
ES_AUTOCONFIG_PATHS = (
    "/etc/elasticsearch/elasticsearch.keystore",
    "/etc/elasticsearch/certs",
)

ES_PATH_ENV = {
    "ES_PATH_CONF": "/etc/elasticsearch",
    "ES_PATH_DATA": "/var/lib/elasticsearch",
    "ES_PATH_LOGS": "/var/log/elasticsearch",
}


def elastic_repository(major: str) -> RepoDefinition:
    return RepoDefinition(
        key_url=ELASTIC_KEY_URL,
        keyring_path=ELASTIC_KEYRING,
        repo_list_path=ELASTIC_LIST,
        base_url=f"https://artifacts.elastic.co/packages/{major}/apt",
        channel="stable",
        components=("main",),
        obsolete_paths=frozenset({LEGACY_ELASTIC_LIST}),
    )


def build_role_spec(settings: RoleSettings, role: str | None = None) -> RoleSpec:
    """Build the desired state for ``role`` (default: ``settings.role``).

    Raises:
        ConfigError: Unknown role, or settings the role cannot work without.
    """
    role = role or settings.role
    if role == "server":
        spec = server_role(settings)
    elif role == "client":
        spec = client_role(settings)
    elif role is None:
        raise ConfigError("No role given; use --role or set 'role' in the settings file")
    else:
        raise ConfigError(f"Unknown role '{role}' (expected one of: {', '.join(ROLES)})")

    logger.debug(
        "Role %s: %d packages, %d configs, %d services",
        spec.role_name, len(spec.packages), len(spec.config_files), len(spec.services),
    )
    return spec


# ── Server ──────────────────────────────────────────────────────


def server_role(settings: RoleSettings) -> RoleSpec:
    purge = ES_AUTOCONFIG_PATHS if settings.reset_autoconfig else ()
    es_dirs = tuple(
        DirectorySpec(path=path, mode=0o750, owner="elasticsearch", group="elasticsearch")
        for path in ("/var/lib/elasticsearch", "/var/log/elasticsearch", "/etc/elasticsearch")
    )

    configs = (
        ConfigFileSpec(
            target_path=ES_CONFIG,
            template_body=templates.ELASTICSEARCH_YML,
            variables={
                "cluster_name": settings.cluster_name,
                "node_name": settings.node_name,
                "es_network_host": settings.es_network_host,
                "es_port": settings.es_port,
                "security_enabled": False,
            },
            backup_on_first_write=True,
        ),
        ConfigFileSpec(
            target_path=KIBANA_CONFIG,
            template_body=templates.KIBANA_YML,
            variables={
                "kibana_port": settings.kibana_port,
                "kibana_server_host": settings.kibana_server_host,
                "es_port": settings.es_port,
            },
            backup_on_first_write=True,
        ),
    )

    services = (
        ServiceSpec(
            unit_name="elasticsearch",
            override_env=dict(ES_PATH_ENV),
            restart_on=(ES_CONFIG, *purge),
            health_checks=(
                HealthCheck(kind="http", url=f"http://127.0.0.1:{settings.es_port}"),
            ),
        ),
        ServiceSpec(unit_name="logstash"),
        ServiceSpec(
            unit_name="kibana",
            restart_on=(KIBANA_CONFIG,),
            health_checks=(HealthCheck(kind="port", port=settings.kibana_port),),
        ),
    )

    return RoleSpec(
        role_name="server",
        repo_definition=elastic_repository(settings.elastic_major),
        packages=("elasticsearch", "logstash", "kibana", *settings.extra_packages),
        directories=es_dirs,
        purge_paths=purge,
        stop_before_purge=("elasticsearch",) if purge else (),
        config_files=configs,
        services=services,
    )


# ── Client ──────────────────────────────────────────────────────


def client_role(settings: RoleSettings) -> RoleSpec:
    if not settings.elk_host:
        raise ConfigError("elk_host is required for the client role (set ELK_HOST or --elk-host)")

    configs = (
        ConfigFileSpec(
            target_path=FILEBEAT_CONFIG,
            template_body=templates.filebeat_yml(settings.output_mode),
            variables={
                "elk_host": settings.elk_host,
                "logstash_port": settings.logstash_port,
                "es_port": settings.es_port,
            },
            backup_on_first_write=True,
        ),
        ConfigFileSpec(
            target_path=FILEBEAT_SYSTEM_MODULE,
            template_body=templates.FILEBEAT_SYSTEM_MODULE_YML,
        ),
    )

    services = (
        ServiceSpec(
            unit_name="filebeat",
            restart_on=(FILEBEAT_CONFIG, FILEBEAT_SYSTEM_MODULE),
        ),
    )

    return RoleSpec(
        role_name="client",
        repo_definition=elastic_repository(settings.elastic_major),
        packages=("filebeat", *settings.extra_packages),
        config_files=configs,
        services=services,
    )
