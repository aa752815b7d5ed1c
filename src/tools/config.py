"""
Gateway configuration.

Values are merged in increasing priority: built-in defaults, an optional JSON
config file, then environment variables. The result is validated before use;
any problem raises ConfigError.
"""

import ipaddress
import json
import os
import stat
from dataclasses import dataclass, fields
from typing import Dict, List, Optional

import psutil

from tools.errors import ConfigError
from tools.logger import log_warning

DEFAULT_CONFIG = {
    "host": "127.0.0.1",
    "port": 8765,
    "shell": os.environ.get("SHELL") or "/bin/zsh",
    "token_file": "~/.terminal-gateway-token",
    "allow_pty_fallback": False,
    "log_dir": "~/.terminal-gateway",
}

ENV_OVERRIDES = {
    "GATEWAY_HOST": "host",
    "GATEWAY_PORT": "port",
    "GATEWAY_SHELL": "shell",
    "GATEWAY_TOKEN_FILE": "token_file",
    "ALLOW_NON_PTY_FALLBACK": "allow_pty_fallback",
}

LOOPBACK_HOSTS = {"127.0.0.1", "localhost", "::1"}
WILDCARD_HOSTS = {"0.0.0.0", "::"}
OVERLAY_NETWORK = ipaddress.ip_network("100.64.0.0/10")
OVERLAY_INTERFACE_PREFIXES = ("tailscale", "utun")


@dataclass
class GatewayConfig:
    host: str
    port: int
    shell: str
    token_file: str
    allow_pty_fallback: bool = False
    log_dir: str = DEFAULT_CONFIG["log_dir"]


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def get_overlay_addresses() -> List[str]:
    """
    List addresses that belong to the private overlay network.

    An address qualifies if it sits on a tailscale-style interface or inside
    the CGNAT range used by the overlay (100.64.0.0/10).
    """
    addresses = []
    try:
        interfaces = psutil.net_if_addrs()
    except (OSError, RuntimeError) as e:
        log_warning(f"Could not enumerate network interfaces: {e}")
        return addresses

    for ifname, snics in interfaces.items():
        for snic in snics:
            address = snic.address.split("%")[0]
            try:
                ip = ipaddress.ip_address(address)
            except ValueError:
                continue
            if ifname.lower().startswith(OVERLAY_INTERFACE_PREFIXES) or (
                ip.version == 4 and ip in OVERLAY_NETWORK
            ):
                addresses.append(address)
    return addresses


def validate_listen_host(host: str, overlay_addresses: Optional[List[str]] = None) -> None:
    """
    Accept loopback, overlay addresses, or a wildcard bind (with a warning).

    Raises:
        ConfigError: for any other address.
    """
    if host in LOOPBACK_HOSTS:
        return

    if overlay_addresses is None:
        overlay_addresses = get_overlay_addresses()

    if host in overlay_addresses:
        return

    if host in WILDCARD_HOSTS:
        log_warning(
            f"Listening on all interfaces ({host}). "
            "Ensure the overlay network ACL is properly configured."
        )
        return

    detected = ", ".join(overlay_addresses) if overlay_addresses else "none detected"
    raise ConfigError(
        f"Invalid listen host: {host}\n"
        "Host must be:\n"
        "  - 127.0.0.1 (localhost)\n"
        "  - an overlay network interface IP (100.x.x.x)\n"
        "  - 0.0.0.0 (all interfaces, not recommended)\n"
        f"Available overlay IPs: {detected}"
    )


def validate_config(config: GatewayConfig, overlay_addresses: Optional[List[str]] = None) -> None:
    if isinstance(config.port, bool) or not isinstance(config.port, int) or not 1 <= config.port <= 65535:
        raise ConfigError(f"Invalid port: {config.port}. Must be between 1 and 65535.")

    for name in ("host", "shell", "token_file"):
        value = getattr(config, name)
        if not isinstance(value, str) or not value.strip():
            raise ConfigError(f"Invalid {name}: must be a non-empty string.")

    validate_listen_host(config.host, overlay_addresses)


def _read_config_file(config_path: str) -> Dict:
    try:
        mode = stat.S_IMODE(os.stat(config_path).st_mode)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {config_path}")

    if mode & 0o077:
        raise ConfigError(
            f"Insecure config file permissions: {mode:o} (expected 600)\n"
            f"Please fix with: chmod 600 {config_path}"
        )

    try:
        with open(config_path, "r", encoding="utf-8") as config_file:
            user_config = json.load(config_file)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to parse {config_path}: {e}") from e

    if not isinstance(user_config, dict):
        raise ConfigError(f"Config file {config_path} must contain a JSON object")

    # Accept the camelCase key used by older config files
    if "tokenFile" in user_config and "token_file" not in user_config:
        user_config["token_file"] = user_config.pop("tokenFile")

    known = {f.name for f in fields(GatewayConfig)}
    unknown = sorted(set(user_config) - known)
    if unknown:
        log_warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
    return {key: value for key, value in user_config.items() if key in known}


def load_config(
    config_path: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
    overlay_addresses: Optional[List[str]] = None,
) -> GatewayConfig:
    """
    Build and validate the gateway configuration.

    Args:
        config_path: Optional JSON config file. Falls back to $GATEWAY_CONFIG.
        environ: Environment mapping, defaults to os.environ.
        overlay_addresses: Overlay IPs to accept as listen hosts. Discovered
            from the host interfaces when omitted.
    """
    environ = os.environ if environ is None else environ
    values = dict(DEFAULT_CONFIG)

    config_path = config_path or environ.get("GATEWAY_CONFIG")
    if config_path:
        values.update(_read_config_file(os.path.expanduser(config_path)))

    for env_name, key in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw.strip() == "":
            continue
        if key == "port":
            try:
                values[key] = int(raw, 10)
            except ValueError:
                raise ConfigError(f"Invalid port: {raw}. Must be between 1 and 65535.")
        elif key == "allow_pty_fallback":
            values[key] = _parse_bool(raw)
        else:
            values[key] = raw

    values["allow_pty_fallback"] = _parse_bool(values["allow_pty_fallback"])
    values["token_file"] = os.path.expanduser(values["token_file"])
    values["log_dir"] = os.path.expanduser(values["log_dir"])

    config = GatewayConfig(**values)
    validate_config(config, overlay_addresses)
    return config
