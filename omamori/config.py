"""Application configuration and the blocked/custom site list."""

from __future__ import annotations

import ipaddress
import json
import os
import subprocess
import sys
from dataclasses import dataclass
from typing import Callable, Optional

from omamori.radix import RadixTree

APP_NAME = "omamori"
DEFAULT_UPSTREAM1 = "1.1.1.1"
DEFAULT_UPSTREAM2 = "208.67.220.220"
DEFAULT_PORT = 53


class ConfigError(Exception):
    """Raised when configuration cannot be loaded, validated or created."""


@dataclass
class SiteData:
    domain: str
    ip: str = ""


@dataclass
class Config:
    upstream1: str
    upstream2: str
    cert_path: str
    key_path: str
    udp_server_port: int
    map_file: str
    config_file: str
    config_dir: str

    def to_json(self) -> str:
        """Serialise the persisted fields as indented JSON."""
        document = {
            "upstream2": self.upstream2,
            "upstream1": self.upstream1,
            "cert_path": self.cert_path,
            "key_path": self.key_path,
            "port": self.udp_server_port,
            "map_file": self.map_file,
        }
        return json.dumps(document, indent=4, ensure_ascii=False)


def _user_config_dir() -> str:
    if os.name == "nt":
        appdata = os.environ.get("APPDATA")
        if not appdata:
            raise ConfigError("%AppData% is not defined")
        return appdata
    home = os.environ.get("HOME")
    if sys.platform == "darwin":
        if not home:
            raise ConfigError("$HOME is not defined")
        return os.path.join(home, "Library", "Application Support")
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        if not os.path.isabs(xdg):
            raise ConfigError("path in $XDG_CONFIG_HOME is relative")
        return xdg
    if not home:
        raise ConfigError("neither $XDG_CONFIG_HOME nor $HOME are defined")
    return os.path.join(home, ".config")


def default_config(root_dir: Optional[str] = None) -> Config:
    """Build the default configuration rooted at the user's config directory."""
    root = str(root_dir) if root_dir is not None else _user_config_dir()
    config_dir = os.path.join(root, APP_NAME)
    return Config(
        upstream1=DEFAULT_UPSTREAM1,
        upstream2=DEFAULT_UPSTREAM2,
        cert_path=os.path.join(config_dir, "cert", "server.crt"),
        key_path=os.path.join(config_dir, "cert", "server.key"),
        udp_server_port=DEFAULT_PORT,
        map_file=os.path.join(config_dir, "map.txt"),
        config_file=os.path.join(config_dir, "config.json"),
        config_dir=config_dir,
    )


def reverse_domain(domain: str) -> str:
    """Reverse the order of a domain's labels."""
    return ".".join(reversed(domain.split(".")))


def is_valid_ip(ip: str) -> bool:
    if "%" in ip:
        return False
    try:
        ipaddress.ip_address(ip)
    except ValueError:
        return False
    return True


def parse_hosts(text: str) -> list[SiteData]:
    """Parse hosts-file lines of the form ``ip domain [comment]``."""
    sites: list[SiteData] = []
    for line in text.split("\n"):
        entry = line.strip()
        if not entry or entry.startswith("#"):
            continue
        ip, sep, rest = entry.partition(" ")
        if not sep:
            continue
        domain = rest.lstrip(" ").split(" ", 1)[0].strip()
        if domain:
            sites.append(SiteData(domain=domain, ip=ip.strip()))
    return sites


def load_blocked_sites(
    config: Config, download: Optional[Callable[[], bytes]] = None
) -> RadixTree:
    """Read the site map file into a tree keyed by reversed domain.

    When the file is missing, ``download`` supplies its contents.
    """
    path = config.map_file
    if not os.path.exists(path):
        if download is None:
            raise ConfigError(f"site map file {path!r} does not exist")
        content = download()
        with open(path, "wb") as handle:
            handle.write(content)

    with open(path, encoding="utf-8", errors="replace") as handle:
        text = handle.read()

    tree = RadixTree()
    for site in parse_hosts(text):
        tree.insert(reverse_domain(site.domain), site.ip)
    return tree


def _write_entries(handle, entries) -> None:
    for ip, domain in entries:
        handle.write(f"{ip} {domain}\n")


def update_site_list(config: Config, blocked: RadixTree, operation: str, site: SiteData) -> None:
    """Add a site to, or delete one from, the tree and the site map file."""
    path = config.map_file
    if not os.path.isfile(path):
        raise FileNotFoundError(path)

    if operation == "add":
        blocked.insert(reverse_domain(site.domain), site.ip)
        with open(path, "a", encoding="utf-8") as handle:
            _write_entries(handle, [(site.ip, site.domain)])
    elif operation == "delete":
        blocked.delete(reverse_domain(site.domain))
        with open(path, "w", encoding="utf-8") as handle:
            _write_entries(
                handle,
                ((ip, reverse_domain(key)) for key, ip in blocked.items().items()),
            )


def list_site_map(blocked: RadixTree) -> list[SiteData]:
    return [SiteData(domain=reverse_domain(key), ip=ip) for key, ip in blocked.items().items()]


def _typed(document: dict, key: str, kind: type, default):
    value = document.get(key)
    if value is None:
        return default
    if kind is int and (isinstance(value, bool) or not isinstance(value, int)):
        raise ConfigError(f"field {key!r} must be an integer")
    if kind is str and not isinstance(value, str):
        raise ConfigError(f"field {key!r} must be a string")
    return value


def load_config(config: Config) -> None:
    """Merge valid values from the config file into ``config``."""
    with open(config.config_file, encoding="utf-8") as handle:
        raw = handle.read()
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"invalid config file: {exc}") from exc
    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise ConfigError("config file must hold a JSON object")

    upstream1 = _typed(document, "upstream1", str, "")
    upstream2 = _typed(document, "upstream2", str, "")
    port = _typed(document, "port", int, 0)
    map_file = _typed(document, "map_file", str, "")
    key_path = _typed(document, "key_path", str, "")
    cert_path = _typed(document, "cert_path", str, "")

    if is_valid_ip(upstream2) and is_valid_ip(upstream1):
        config.upstream1 = upstream1
        config.upstream2 = upstream2
    if 0 < port < 65535:
        config.udp_server_port = port
    if os.path.exists(map_file):
        config.map_file = map_file
    if os.path.exists(key_path):
        config.key_path = key_path
    if os.path.exists(cert_path):
        config.cert_path = cert_path


def save_config(config: Config) -> None:
    """Write the config file, readable and writable by the owner only."""
    data = config.to_json().encode("utf-8")
    fd = os.open(config.config_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as handle:
        handle.write(data)


def _openssl_certificate(key_path: str, cert_path: str) -> None:
    command = [
        "openssl", "req", "-newkey", "rsa:2048", "-nodes",
        "-keyout", key_path,
        "-x509", "-days", "365",
        "-out", cert_path,
        "-subj", "/O=Omamori/CN=localhost",
    ]
    try:
        subprocess.run(command, stdout=subprocess.DEVNULL, check=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise ConfigError(f"OpenSSL failed: {exc}") from exc


def ensure_default_config(
    config: Config, make_certificate: Optional[Callable[[str, str], None]] = None
) -> Config:
    """Load an existing config file, or create the directory, certificate and file."""
    if os.path.exists(config.config_file):
        try:
            load_config(config)
        except (OSError, ConfigError):
            pass
        return config

    os.makedirs(os.path.join(config.config_dir, "cert"), mode=0o700, exist_ok=True)
    (make_certificate or _openssl_certificate)(config.key_path, config.cert_path)
    save_config(config)
    return config


def update_config(config: Config, new_config: Config) -> None:
    """Apply validated upstreams and map file from ``new_config`` and save."""
    if not (is_valid_ip(new_config.upstream2) and is_valid_ip(new_config.upstream1)):
        raise ConfigError("upstream2 or upstream1 are not valid")
    if not os.path.exists(new_config.map_file):
        raise FileNotFoundError(new_config.map_file)
    config.upstream2 = new_config.upstream2
    config.upstream1 = new_config.upstream1
    config.map_file = new_config.map_file
    save_config(config)