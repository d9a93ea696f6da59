"""
Tests for the infrastructure adapters: commands, processes, packages,
firewall, endpoint state and the gateway SSH client
"""
import os
import subprocess
import sys

import paramiko
import pytest

from mole.core.exceptions import ExternalActionFailedError
from mole.core.interfaces import CommandResult
from mole.infrastructure.platform import PsutilProcessTable
from mole.infrastructure.ssh import ParamikoConnectionFactory
from mole.infrastructure.ssh.client import GatewayClient
from mole.infrastructure.state import FileEndpointStore
from mole.infrastructure.system import SubprocessRunner
from mole.infrastructure.system.firewall import Firewall, FirewalldFirewall, UfwFirewall
from mole.infrastructure.system.packages import PackageManager

from .conftest import FakeRunner


class TestSubprocessRunner:
    def test_captures_output(self):
        result = SubprocessRunner().run([sys.executable, "-c", "print('hello')"])

        assert result.ok
        assert result.stdout == "hello\n"

    def test_input(self):
        code = "import sys; sys.stdout.write(sys.stdin.read().upper())"

        assert SubprocessRunner().run([sys.executable, "-c", code], input="abc").stdout == "ABC"

    def test_failure_raises_with_stderr(self):
        code = "import sys; sys.stderr.write('boom'); sys.exit(3)"

        with pytest.raises(ExternalActionFailedError, match="boom") as exc_info:
            SubprocessRunner().run([sys.executable, "-c", code])

        assert exc_info.value.returncode == 3

    def test_failure_without_check(self):
        result = SubprocessRunner().run([sys.executable, "-c", "import sys; sys.exit(3)"], check=False)

        assert result.returncode == 3

    def test_missing_program(self):
        runner = SubprocessRunner()

        with pytest.raises(ExternalActionFailedError, match="Command not found"):
            runner.run(["mole-no-such-program"])
        assert runner.run(["mole-no-such-program"], check=False).returncode == 127


@pytest.fixture
def tagged_process():
    tag = f"mole-test-{os.getpid()}"
    env = dict(os.environ, MOLE_TUNNEL=tag)
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"], env=env)
    yield tag, proc
    if proc.poll() is None:
        proc.kill()
    proc.wait()


class TestPsutilProcessTable:
    def test_scan_by_tag(self, tagged_process):
        tag, proc = tagged_process

        found = PsutilProcessTable().scan(tag)

        assert [p.pid for p in found] == [proc.pid]
        assert found[0].cmdline[0] == sys.executable

    def test_other_tags_ignored(self, tagged_process):
        assert PsutilProcessTable().scan("mole-test-other") == []

    def test_terminate(self, tagged_process):
        tag, proc = tagged_process
        table = PsutilProcessTable()

        assert table.terminate([proc.pid], grace=5.0) == []
        assert table.scan(tag) == []

    def test_terminate_gone_pid(self, tagged_process):
        _, proc = tagged_process
        proc.kill()
        proc.wait()

        assert PsutilProcessTable().terminate([proc.pid]) == []


class TestPackageManager:
    def test_detect_order(self):
        assert PackageManager.detect(FakeRunner(available=("yum", "apt"))).name == "apt"

    def test_apt_install(self):
        runner = FakeRunner(available=("apt",))

        PackageManager("apt", runner).install(["autossh", "mosh"])

        assert runner.commands == [["apt-get", "update"], ["apt-get", "install", "-y", "autossh", "mosh"]]
        assert runner.sudo_commands == runner.commands

    def test_brew_upgrades_when_install_fails(self):
        runner = FakeRunner(available=("brew", "autossh"))
        runner.responses["brew install"] = CommandResult(["brew"], 1, stderr="already installed")

        PackageManager("brew", runner).install(["autossh"])

        assert runner.ran("brew", "upgrade", "autossh")
        assert runner.sudo_commands == []

    def test_uninstall_failure_is_reported(self):
        runner = FakeRunner(available=("dnf",))
        runner.responses["dnf remove"] = CommandResult(["dnf"], 1, stderr="no match")

        assert PackageManager("dnf", runner).uninstall(["mosh"]) is False

    def test_unsupported(self):
        with pytest.raises(ValueError):
            PackageManager("pacman", FakeRunner())


class TestFirewall:
    def test_detect(self):
        assert isinstance(Firewall.detect(FakeRunner(available=("ufw", "firewall-cmd"))), UfwFirewall)
        assert isinstance(Firewall.detect(FakeRunner(available=("firewall-cmd",))), FirewalldFirewall)
        assert Firewall.detect(FakeRunner()) is None

    def test_base_is_abstract(self):
        with pytest.raises(TypeError):
            Firewall(FakeRunner())

    def test_ufw_rules(self):
        runner = FakeRunner()
        firewall = UfwFirewall(runner)

        firewall.allow(60000, 61000, "udp", "Mosh UDP ports")
        firewall.remove(2222, 2222, "tcp")

        assert runner.commands == [
            ["ufw", "allow", "60000:61000/udp", "comment", "Mosh UDP ports"],
            ["ufw", "delete", "allow", "2222/tcp"],
        ]

    def test_firewalld_rules(self):
        runner = FakeRunner()
        firewall = FirewalldFirewall(runner)

        firewall.allow(60000, 61000, "udp")
        firewall.reload()

        assert runner.commands == [
            ["firewall-cmd", "--permanent", "--add-port=60000-61000/udp"],
            ["firewall-cmd", "--reload"],
        ]

    def test_missing_rule_is_not_fatal(self):
        runner = FakeRunner()
        runner.responses["ufw delete"] = CommandResult(["ufw"], 1, stderr="Could not delete non-existent rule")

        assert UfwFirewall(runner).remove(2222, 2222, "tcp") is False


class TestFileEndpointStore:
    def test_round_trip(self, tmp_path):
        store = FileEndpointStore(tmp_path / "state")

        store.save("laptop", {"state": "connected"})

        assert store.load("laptop") == {"state": "connected"}
        assert store.list() == ["laptop"]
        assert store.exists("laptop")
        assert [p.name for p in (tmp_path / "state").iterdir()] == ["laptop.json"]

    def test_delete(self, tmp_path):
        store = FileEndpointStore(tmp_path)
        store.save("laptop", {})

        store.delete("laptop")
        store.delete("laptop")

        assert store.load("laptop") is None
        assert store.list() == []

    def test_corrupt_file_is_ignored(self, tmp_path):
        (tmp_path / "laptop.json").write_text("{not json")

        assert FileEndpointStore(tmp_path).load("laptop") is None

    def test_missing_dir(self, tmp_path):
        assert FileEndpointStore(tmp_path / "absent").list() == []


class TestGatewayClient:
    def test_connection_refused(self):
        factory = ParamikoConnectionFactory()

        with pytest.raises(ExternalActionFailedError, match="Cannot SSH to u@127.0.0.1:1"):
            factory.create({"host": "127.0.0.1", "user": "u", "port": 1, "timeout": 2})

    def test_loads_issued_key(self, credentials):
        credential = credentials.issue("m4")
        client = GatewayClient("127.0.0.1", "u")

        key = client._load_private_key(str(credential.private_key_path))

        assert isinstance(key, paramiko.Ed25519Key)

    def test_unreadable_key(self, tmp_path):
        path = tmp_path / "not_a_key"
        path.write_text("garbage\n")

        with pytest.raises(ExternalActionFailedError, match="Failed to load private key"):
            GatewayClient("127.0.0.1", "u")._load_private_key(str(path))
