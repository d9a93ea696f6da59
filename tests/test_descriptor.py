"""
Service descriptor builder tests
"""
import pytest

from mole.core.exceptions import ConfigError
from mole.core.settings import Settings
from mole.domain.tunnel import RestartPolicy, ServiceDescriptorBuilder, TunnelEndpoint


@pytest.fixture
def builder(settings):
    return ServiceDescriptorBuilder(settings)


def test_build_is_pure(builder, endpoint):
    assert builder.build(endpoint) == builder.build(endpoint)


def test_command_line(builder, endpoint):
    descriptor = builder.build(endpoint)

    assert list(descriptor.program_arguments) == [
        "caffeinate", "-s",
        "autossh", "-M", "0", "-N", "-p", "22",
        "-o", "ServerAliveInterval=30",
        "-o", "ServerAliveCountMax=3",
        "-o", "ExitOnForwardFailure=yes",
        "-o", "StrictHostKeyChecking=accept-new",
        "-o", "BatchMode=yes",
        "-R", "127.0.0.1:2222:localhost:22",
        "ubuntu@gw.example",
    ]


def test_forward_always_binds_loopback(builder):
    endpoint = TunnelEndpoint(remote_host="gw", remote_user="u", remote_bind_port=4000, local_target_port=2200)

    args = builder.build(endpoint).program_arguments

    assert args[args.index("-R") + 1] == "127.0.0.1:4000:localhost:2200"


def test_identity_file(builder, endpoint):
    endpoint.identity_file = "~/.ssh/gateway_ed25519"

    args = builder.build(endpoint).program_arguments

    assert args[args.index("-i") + 1] == "~/.ssh/gateway_ed25519"


def test_linux_sleep_wrapper(tmp_path, endpoint):
    settings = Settings(platform="linux", log_dir=tmp_path)

    args = ServiceDescriptorBuilder(settings).build(endpoint).program_arguments

    assert args[0] == "systemd-inhibit"
    assert args.index("autossh") == 3


def test_environment_tags_the_tree(builder, endpoint):
    descriptor = builder.build(endpoint)

    assert descriptor.env == {"MOLE_TUNNEL": "laptop", "AUTOSSH_GATETIME": "0"}


def test_descriptor_metadata(builder, endpoint, settings):
    descriptor = builder.build(endpoint)

    assert descriptor.label == "com.mole.tunnel.laptop"
    assert descriptor.require_network
    assert descriptor.run_at_load
    assert descriptor.restart_policy == RestartPolicy.ALWAYS
    assert descriptor.stdout_path == settings.log_dir / "laptop.log"
    assert descriptor.stderr_path == settings.log_dir / "laptop.err"


@pytest.mark.parametrize("throttle, interval, retries, expected", [
    (30, 30, 3, 90),
    (120, 30, 3, 120),
    (10, 5, 1, 10),
])
def test_throttle_never_below_keepalive_detection(builder, throttle, interval, retries, expected):
    endpoint = TunnelEndpoint(
        remote_host="gw", remote_user="u",
        throttle_interval=throttle, keepalive_interval=interval, keepalive_retries=retries,
    )

    assert builder.build(endpoint).throttle_interval == expected


@pytest.mark.parametrize("field, value", [
    ("remote_bind_port", 0),
    ("remote_bind_port", 70000),
    ("remote_user", "a@b"),
    ("remote_host", "gw example"),
    ("name", "../x"),
    ("keepalive_retries", 0),
])
def test_invalid_endpoint_rejected(builder, field, value):
    endpoint = TunnelEndpoint(remote_host="gw", remote_user="u")
    setattr(endpoint, field, value)

    with pytest.raises(ConfigError):
        builder.build(endpoint)


def test_command_line_property_quotes(builder, endpoint):
    descriptor = builder.build(endpoint)

    assert descriptor.command_line.startswith("caffeinate -s autossh -M 0 -N")
