from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Tuple, Dict, Any
from pathlib import Path

import paramiko

from ...core.constants import DEFAULT_SSH_PORT, DEFAULT_SSH_TIMEOUT
from ...core.exceptions import ExternalActionFailedError
from ...core.interfaces import ConnectionFactory


@dataclass
class GatewayConfig:
    host: str
    user: str
    port: int = DEFAULT_SSH_PORT
    key_path: Optional[str] = None
    timeout: float = DEFAULT_SSH_TIMEOUT


class GatewayClient:
    """
    Paramiko SSHClient wrapper for the gateway host:
    - key authentication only (agent, default keys or an explicit key file)
    - unknown host keys are accepted and remembered, like accept-new
    - exec helper and context manager
    """
    def __init__(
        self,
        host: str,
        user: str,
        port: int = DEFAULT_SSH_PORT,
        key_path: Optional[str] = None,
        timeout: float = DEFAULT_SSH_TIMEOUT,
    ) -> None:
        self.config = GatewayConfig(host=host, user=user, port=port, key_path=key_path, timeout=timeout)

        self.client = paramiko.SSHClient()
        self.client.load_system_host_keys()
        self.client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    # --------------------
    # Connection management
    # --------------------
    def connect(self) -> None:
        cfg = self.config
        kwargs: Dict[str, Any] = dict(
            hostname=cfg.host,
            port=cfg.port,
            username=cfg.user,
            timeout=cfg.timeout,
            banner_timeout=cfg.timeout,
            auth_timeout=cfg.timeout,
        )
        if cfg.key_path:
            kwargs["pkey"] = self._load_private_key(cfg.key_path)
            kwargs["allow_agent"] = False
            kwargs["look_for_keys"] = False
        self.client.connect(**kwargs)

    def _load_private_key(self, path: str) -> paramiko.PKey:
        """Try Ed25519, then ECDSA, then RSA"""
        p = Path(path).expanduser()

        for key_class in (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey):
            try:
                return key_class.from_private_key_file(str(p))
            except (paramiko.SSHException, ValueError):
                continue
        raise ExternalActionFailedError(f"Failed to load private key at {p}")

    # --------------------
    # Helpers
    # --------------------
    def exec_with_code(self, cmd: str) -> Tuple[str, str, int]:
        """Run a command, return (stdout, stderr, exit_code)"""
        stdin, stdout, stderr = self.client.exec_command(cmd, timeout=self.config.timeout)
        out = stdout.read().decode()
        err = stderr.read().decode()
        exit_code = stdout.channel.recv_exit_status()
        return out, err, exit_code

    def close(self) -> None:
        self.client.close()

    # --------------------
    # Context manager
    # --------------------
    def __enter__(self) -> GatewayClient:
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()


class ParamikoConnectionFactory(ConnectionFactory):
    """GatewayClient connection factory"""

    def create(self, params: Dict[str, Any]) -> GatewayClient:
        """
        Create and connect a gateway client.

        Raises:
            ExternalActionFailedError: If the connection fails
        """
        client = GatewayClient(
            host=params["host"],
            user=params["user"],
            port=params.get("port", DEFAULT_SSH_PORT),
            key_path=params.get("key"),
            timeout=params.get("timeout", DEFAULT_SSH_TIMEOUT),
        )
        try:
            client.connect()
            return client
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise ExternalActionFailedError(
                f"Cannot SSH to {params['user']}@{params['host']}:{params.get('port', DEFAULT_SSH_PORT)}: {e}. "
                "Make sure key-based SSH access to the gateway is configured first"
            ) from e


def verify_access(factory: ConnectionFactory, params: Dict[str, Any]) -> None:
    """
    Check non-interactive SSH access by running a trivial command.

    Raises:
        ExternalActionFailedError: If the connection or the command fails
    """
    with factory.create(params) as client:
        out, err, code = client.exec_with_code("echo 'SSH OK'")
        if code != 0 or "SSH OK" not in out:
            raise ExternalActionFailedError(
                f"SSH to {params['user']}@{params['host']} connected but the test command failed: "
                f"{err.strip() or code}"
            )
