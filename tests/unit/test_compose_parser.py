import os

import pytest
import yaml

from redeploy.errors import ConfigurationError
from redeploy.PARSERS.compose_parser import ComposeParser


def test_parse(tmp_path):
    compose_content = {
        'version': '3.8',
        'services': {
            'web': {
                'image': 'nginx:latest',
                'ports': ['80:80'],
                'environment': {
                    'DEBUG': 'true'
                },
                'restart': 'always'
            },
            'db': {
                'image': 'postgres:13',
                'volumes': ['db_data:/var/lib/postgresql/data']
            }
        },
        'volumes': {
            'db_data': {}
        }
    }

    compose_file = tmp_path / "services.yaml"
    with open(compose_file, 'w') as f:
        yaml.dump(compose_content, f, sort_keys=False)

    parser = ComposeParser.for_file(str(compose_file))
    config = parser.parse(str(compose_file))

    assert [s.name for s in config.services] == ['web', 'db']
    web = config.get_service('web')
    db = config.get_service('db')
    assert web.image == 'nginx:latest'
    assert web.ports[0].published == 80
    assert web.ports[0].target == 80
    assert web.ports[0].protocol == 'tcp'
    assert web.environment['DEBUG'] == 'true'
    assert web.restart == 'always'

    assert 'db_data' in config.volumes
    assert db.volumes[0].type == 'volume'
    assert db.volumes[0].source == 'db_data'
    assert db.volumes[0].target == '/var/lib/postgresql/data'


def test_services_keep_declaration_order():
    config = ComposeParser(context={}).parse_from_string("""
services:
  zeta:
    image: acme/z
  alpha:
    image: acme/a
""")
    assert [s.name for s in config.services] == ['zeta', 'alpha']


def test_missing_image_is_rejected():
    with pytest.raises(ConfigurationError, match="image is required"):
        ComposeParser(context={}).parse_from_string("""
services:
  web:
    command: run
""")


def test_empty_image_is_rejected():
    with pytest.raises(ConfigurationError, match="web: image is required"):
        ComposeParser(context={}).parse_from_string("services:\n  web:\n    image: ''\n")


def test_empty_image_tag_is_rejected():
    with pytest.raises(ConfigurationError, match="empty tag"):
        ComposeParser(context={}).parse_from_string("services:\n  web:\n    image: 'acme/app:'\n")


def test_invalid_yaml_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        ComposeParser(context={}).parse_from_string("services: [unclosed")


def test_missing_file_is_a_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError, match="cannot read"):
        ComposeParser(context={}).parse(str(tmp_path / "missing.yaml"))


def test_environment_list_keeps_unset_keys_distinct():
    config = ComposeParser(context={}).parse_from_string("""
services:
  web:
    image: acme/app
    environment:
      - EMPTY=
      - UNSET
      - FULL=a=b
""")
    env = config.services[0].environment
    assert env == {'EMPTY': '', 'UNSET': None, 'FULL': 'a=b'}


def test_environment_mapping_with_null_and_booleans():
    config = ComposeParser(context={}).parse_from_string("""
services:
  web:
    image: acme/app
    environment:
      UNSET:
      FLAG: yes
      PORT: 8080
""")
    env = config.services[0].environment
    assert env == {'UNSET': None, 'FLAG': 'true', 'PORT': '8080'}


def test_port_syntaxes():
    config = ComposeParser(context={}).parse_from_string("""
services:
  web:
    image: acme/app
    ports:
      - "3000"
      - "8080:80"
      - "127.0.0.1:5353:53/udp"
      - "9000-9001:7000-7001"
      - target: 443
        published: 8443
        protocol: tcp
""")
    ports = [(p.published, p.target, p.protocol) for p in config.services[0].ports]
    assert ports == [
        (None, 3000, 'tcp'),
        (8080, 80, 'tcp'),
        (5353, 53, 'udp'),
        (9000, 7000, 'tcp'),
        (9001, 7001, 'tcp'),
        (8443, 443, 'tcp'),
    ]


def test_mismatched_port_range_is_rejected():
    with pytest.raises(ConfigurationError, match="port ranges"):
        ComposeParser(context={}).parse_from_string("""
services:
  web:
    image: acme/app
    ports: ["9000-9002:7000-7001"]
""")


def test_volume_syntaxes(tmp_path):
    parser = ComposeParser(context={}, working_dir=str(tmp_path))
    config = parser.parse_from_string("""
services:
  web:
    image: acme/app
    volumes:
      - ./data:/data:ro
      - /var/run/docker.sock:/var/run/docker.sock:rw,rshared
      - cache:/cache:nocopy
      - /anonymous
      - type: tmpfs
        target: /scratch
        tmpfs:
          size: 64m
      - type: bind
        source: /etc/app
        target: /etc/app
        read_only: true
        bind:
          propagation: rslave
""")
    data, sock, cache, anon, scratch, etc = config.services[0].volumes

    assert data.type == 'bind'
    assert data.source == os.path.join(str(tmp_path), 'data')
    assert data.read_only is True
    assert data.bind is None

    assert sock.read_only is False
    assert sock.bind.propagation == 'rshared'

    assert cache.type == 'volume'
    assert cache.volume.nocopy is True

    assert anon.source is None
    assert anon.target == '/anonymous'

    assert scratch.type == 'tmpfs'
    assert scratch.tmpfs.size == 64 * 1024 * 1024

    assert etc.read_only is True
    assert etc.bind.propagation == 'rslave'
    assert etc.volume is None


def test_healthcheck_and_deploy():
    config = ComposeParser(context={}).parse_from_string("""
services:
  web:
    image: acme/app
    restart: "no"
    stop_grace_period: 1m30s
    healthcheck:
      test: curl -f http://localhost
      interval: 30s
      retries: 3
    deploy:
      restart_policy:
        condition: on-failure
        max_attempts: 5
      resources:
        limits:
          memory: 512M
        reservations:
          memory: 128m
""")
    web = config.services[0]
    assert web.restart == 'no'
    assert web.stop_grace_period == 90.0
    assert web.healthcheck.test == ['CMD-SHELL', 'curl -f http://localhost']
    assert web.healthcheck.interval == 30.0
    assert web.healthcheck.timeout is None
    assert web.healthcheck.retries == 3
    assert web.deploy.restart_policy.condition == 'on-failure'
    assert web.deploy.restart_policy.max_attempts == 5
    assert web.deploy.resources.limits.memory == 512 * 1024 * 1024
    assert web.deploy.resources.reservations.memory == 128 * 1024 * 1024


def test_unquoted_restart_no():
    config = ComposeParser(context={}).parse_from_string(
        "services:\n  web:\n    image: acme/app\n    restart: no\n"
    )
    assert config.services[0].restart == 'no'


def test_healthcheck_none_test_disables():
    config = ComposeParser(context={}).parse_from_string("""
services:
  web:
    image: acme/app
    healthcheck:
      test: ["NONE"]
""")
    assert config.services[0].healthcheck.disable is True


def test_networks_ulimits_and_command():
    config = ComposeParser(context={}).parse_from_string("""
services:
  web:
    image: acme/app
    command: python -m app --port "80 80"
    networks:
      front:
        aliases: [www]
        ipv4_address: 172.16.238.10
      back:
    ulimits:
      nproc: 65535
      nofile:
        soft: 20000
        hard: 40000
    extra_hosts:
      somehost: 162.242.195.82
""")
    web = config.services[0]
    assert web.command == ['python', '-m', 'app', '--port', '80 80']
    assert list(web.networks) == ['front', 'back']
    assert web.networks['front'].aliases == ['www']
    assert web.networks['back'] is None
    assert web.ulimits['nproc'].soft == web.ulimits['nproc'].hard == 65535
    assert web.ulimits['nofile'].hard == 40000
    assert web.extra_hosts == ['somehost:162.242.195.82']


def test_interpolation_uses_dotenv_beside_file(tmp_path, monkeypatch):
    monkeypatch.delenv('APP_TAG', raising=False)
    monkeypatch.setenv('APP_NAME', 'from-env')
    (tmp_path / '.env').write_text("APP_TAG=v2\nAPP_NAME=from-dotenv\n")
    compose_file = tmp_path / 'services.yaml'
    compose_file.write_text("""
services:
  web:
    image: acme/app:${APP_TAG}
    environment:
      NAME: ${APP_NAME}
      PRICE: $$5
""")

    config = ComposeParser.for_file(str(compose_file)).parse(str(compose_file))

    web = config.services[0]
    assert web.image == 'acme/app:v2'
    # the process environment wins over .env
    assert web.environment['NAME'] == 'from-env'
    assert web.environment['PRICE'] == '$5'


def test_required_variable_missing():
    with pytest.raises(ConfigurationError, match="APP_TAG"):
        ComposeParser(context={}).parse_from_string(
            "services:\n  web:\n    image: acme/app:${APP_TAG:?set a tag}\n"
        )


@pytest.mark.parametrize("content", [
    "services:\n  - web\n",
    "services: nope\n",
    "services:\n  web:\n    image: acme/app\n    healthcheck: nope\n",
    "services:\n  web:\n    image: acme/app\n    deploy: nope\n",
    "services:\n  web:\n    image: acme/app\n    deploy:\n      resources: 512m\n",
    "services:\n  web:\n    image: acme/app\n    logging: json-file\n",
    "services:\n  web:\n    image: acme/app\n    ulimits: 1024\n",
    "services:\n  web:\n    image: acme/app\n    networks: front\n",
    "services:\n  web:\n    image: acme/app\n    environment: A=1\n",
    "services:\n  web:\n    image: acme/app\n    ports: '80'\n",
    "services:\n  web:\n    image: acme/app\n    volumes:\n      - type: bind\n        source: /srv\n        target: /srv\n        bind: shared\n",
    "networks: front\n",
])
def test_malformed_declarations_are_configuration_errors(content):
    with pytest.raises(ConfigurationError):
        ComposeParser(context={}).parse_from_string(content)


def test_comments_are_not_interpolated():
    config = ComposeParser(context={}).parse_from_string(
        "# image: acme/app:${APP_TAG:?set a tag}\n"
        "services:\n  web:\n    image: acme/app\n"
    )
    assert config.services[0].image == 'acme/app'


def test_interpolated_scalars_are_converted():
    config = ComposeParser(context={'TTY': 'false', 'PORT': '8080', 'RETRIES': '3'}).parse_from_string("""
services:
  web:
    image: acme/app
    tty: ${TTY}
    ports:
      - "${PORT}:80"
    healthcheck:
      test: ["CMD", "true"]
      retries: ${RETRIES}
""")
    web = config.services[0]
    assert web.tty is False
    assert web.ports[0].published == 8080
    assert web.healthcheck.retries == 3
