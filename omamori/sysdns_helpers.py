"""Platform helpers for pointing the system resolver at the local DNS server."""

from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Optional

from omamori.events import EventBus

RESOLVED_CONF = "/etc/systemd/resolved.conf"
RESOLV_CONF = "/etc/resolv.conf"
BACKUP_SUFFIX = ".omamori.bak"
LOCAL_DNS_IP = "127.0.0.1"

_ANDROID_INDICATORS = ("/system/build.prop", "/data/data", "/android_root")
_ROOT_INDICATORS = (
    "/system/bin/su",
    "/system/xbin/su",
    "/sbin/su",
    "/system/su",
    "/vendor/bin/su",
)


@dataclass
class DNSBackup:
    """The DNS settings of one interface or service before they were changed."""

    interface_name: str
    dns_servers: list[str] = field(default_factory=list)
    is_dhcp: bool = False


@dataclass
class DNSState:
    """Shared state of the system DNS configuration."""

    local_ip: str = LOCAL_DNS_IP
    port: int = 53
    is_configured: bool = False
    original_settings: dict[str, DNSBackup] = field(default_factory=dict)
    events: Optional[EventBus] = None

    def log(self, message: str) -> None:
        if self.events is not None:
            self.events.log(message)


# -- process helpers --


def _output(*args: str) -> str:
    """Run a command and return its standard output, raising on failure."""
    result = subprocess.run(list(args), capture_output=True, check=True)
    return result.stdout.decode("utf-8", errors="replace")


def _combined(*args: str) -> str:
    """Run a command, capturing stdout and stderr together, raising on failure."""
    result = subprocess.run(
        list(args), stdout=subprocess.PIPE, stderr=subprocess.STDOUT, check=True
    )
    return result.stdout.decode("utf-8", errors="replace")


def _succeeds(*args: str) -> bool:
    try:
        subprocess.run(
            list(args), stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=True
        )
    except (OSError, subprocess.CalledProcessError):
        return False
    return True


def run_command(state: DNSState, name: str, *args: str) -> str:
    """Log and run a command; return its combined output or raise on failure."""
    state.log(f"Running command: {name} {' '.join(args)}")
    return _combined(name, *args)


def command_exists(name: str) -> bool:
    return shutil.which(name) is not None


def backup_file(src: str, dest: str) -> None:
    """Copy ``src`` to ``dest``."""
    with open(src, "rb") as handle:
        data = handle.read()
    _write_file(dest, data)


def restore_file(src: str, dest: str, restart_cmd: str = "") -> None:
    """Copy the backup ``src`` over ``dest``, remove it and run ``restart_cmd``."""
    with open(src, "rb") as handle:
        data = handle.read()
    _write_file(dest, data)
    try:
        os.remove(src)
    except OSError:
        pass
    parts = restart_cmd.split()
    if parts:
        _succeeds(*parts)


def _write_file(path: str, data: bytes) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    with os.fdopen(fd, "wb") as handle:
        handle.write(data)


# -- output parsers --


def parse_windows_interfaces(output: str) -> list[str]:
    """Interface names from ``netsh interface show interface`` lines marked connected."""
    interfaces = []
    for line in output.split("\n"):
        line = line.strip()
        if "Connected" in line:
            parts = line.split()
            if len(parts) >= 4:
                interfaces.append(parts[-1])
    return interfaces


def parse_windows_dns_backup(interface_name: str, output: str) -> DNSBackup:
    """Read the output of ``netsh interface ip show dns`` into a backup."""
    backup = DNSBackup(interface_name)
    capturing = False
    for raw in output.split("\n"):
        line = raw.strip()
        if not line:
            capturing = False
            continue
        if "DNS servers configured through DHCP:" in line:
            backup.is_dhcp = True
            parts = line.split(":")
            if len(parts) > 1:
                dns = parts[1].strip()
                if dns and dns != "None":
                    backup.dns_servers.append(dns)
            break
        if "Statically Configured DNS Servers:" in line:
            capturing = True
            parts = line.split(":")
            if len(parts) > 1:
                dns = parts[1].strip()
                if dns:
                    backup.dns_servers.append(dns)
            continue
        if capturing and "." in line:
            backup.dns_servers.append(line)
    return backup


def parse_darwin_services(output: str) -> list[str]:
    """Enabled service names from ``networksetup -listallnetworkservices``."""
    services = []
    for line in output.split("\n")[1:]:
        line = line.strip()
        if not line or line.startswith("*"):
            continue
        services.append(line)
    return services


def parse_darwin_dns_backup(service_name: str, output: str) -> DNSBackup:
    """Read the output of ``networksetup -getdnsservers`` into a backup."""
    marker = "There aren't any DNS Servers set"
    backup = DNSBackup(service_name)
    text = output.strip()
    if marker in text:
        backup.is_dhcp = True
        return backup
    for line in text.split("\n"):
        line = line.strip()
        if line and marker not in line:
            backup.dns_servers.append(line)
    return backup


def darwin_service_active(output: str) -> bool:
    """Whether ``networksetup -getinfo`` output shows a configured service."""
    return (
        "IP address:" in output
        or "DHCP Configuration" in output
        or "Manual Configuration" in output
    )


def parse_linux_interfaces(output: str) -> list[str]:
    """Non-loopback interface names from ``ip -o link show up``."""
    interfaces = []
    for line in output.split("\n"):
        if ": " not in line:
            continue
        parts = line.split()
        if len(parts) >= 2:
            iface = parts[1].removesuffix(":")
            if iface != "lo":
                interfaces.append(iface)
    return interfaces


def parse_android_default_interface(output: str) -> str:
    """The device name of the default route in ``ip route show default`` output."""
    for line in output.split("\n"):
        if "dev " not in line:
            continue
        parts = line.split()
        for word, following in zip(parts, parts[1:]):
            if word == "dev":
                return following
    raise LookupError("no active interface found")


def iptables_rules(action: str, local_ip: str, port: int) -> list[str]:
    """The NAT rules redirecting DNS traffic; ``action`` is ``-A`` or ``-D``."""
    return [
        f"iptables -t nat {action} OUTPUT -p {proto} --dport 53 -j DNAT "
        f"--to-destination {local_ip}:{port}"
        for proto in ("udp", "tcp")
    ]


# -- Windows --


def get_active_windows_interfaces() -> list[str]:
    return parse_windows_interfaces(_output("netsh", "interface", "show", "interface"))


def backup_windows_dns_settings(state: DNSState, interface_name: str) -> None:
    output = _output("netsh", "interface", "ip", "show", "dns", interface_name)
    state.original_settings[interface_name] = parse_windows_dns_backup(interface_name, output)


# -- Linux --


def configure_systemd_resolved(state: DNSState, conf_path: str = RESOLVED_CONF) -> None:
    backup_file(conf_path, conf_path + BACKUP_SUFFIX)
    _write_file(conf_path, f"[Resolve]\nDNS={state.local_ip}\n".encode("utf-8"))
    try:
        run_command(state, "systemctl", "restart", "systemd-resolved")
    except (OSError, subprocess.CalledProcessError) as exc:
        raise RuntimeError(f"failed to restart systemd-resolved: {exc}") from exc
    state.is_configured = True
    state.log("🔧 System DNS configured to use Omamori (systemd-resolved)")


def configure_resolv_conf(state: DNSState, conf_path: str = RESOLV_CONF) -> None:
    backup_file(conf_path, conf_path + BACKUP_SUFFIX)
    _write_file(conf_path, f"nameserver {state.local_ip}\n".encode("utf-8"))
    state.is_configured = True
    state.log("🔧 System DNS configured to use Omamori (resolv.conf)")


def restore_systemd_resolved(state: DNSState, conf_path: str = RESOLVED_CONF) -> None:
    try:
        interfaces = get_active_linux_interfaces()
    except (OSError, subprocess.CalledProcessError):
        interfaces = []
    for iface in interfaces:
        for args in (("dns", iface, ""), ("domain", iface, ""), ("default-route", iface, "no")):
            try:
                run_command(state, "resolvectl", *args)
            except (OSError, subprocess.CalledProcessError):
                pass
    restore_file(conf_path + BACKUP_SUFFIX, conf_path, "systemctl restart systemd-resolved")
    state.is_configured = False
    state.log("✅ Original DNS settings restored (systemd-resolved)")


def restore_resolv_conf(state: DNSState, conf_path: str = RESOLV_CONF) -> None:
    restore_file(conf_path + BACKUP_SUFFIX, conf_path, "")
    state.is_configured = False
    state.log("✅ Original DNS settings restored (resolv.conf)")


def get_active_linux_interfaces() -> list[str]:
    return parse_linux_interfaces(_output("ip", "-o", "link", "show", "up"))


# -- macOS --


def _darwin_service_is_active(service_name: str) -> bool:
    try:
        output = _output("networksetup", "-getinfo", service_name)
    except (OSError, subprocess.CalledProcessError):
        return False
    return darwin_service_active(output)


def get_active_darwin_services() -> list[str]:
    output = _output("networksetup", "-listallnetworkservices")
    return [name for name in parse_darwin_services(output) if _darwin_service_is_active(name)]


def backup_darwin_dns_settings(state: DNSState, service_name: str) -> None:
    output = _output("networksetup", "-getdnsservers", service_name)
    state.original_settings[service_name] = parse_darwin_dns_backup(service_name, output)


def set_darwin_dns(service_name: str, dns_ip: str) -> None:
    _output("networksetup", "-setdnsservers", service_name, dns_ip)


def restore_darwin_dns_service(service_name: str, backup: DNSBackup) -> None:
    servers = backup.dns_servers or ["empty"]
    _output("networksetup", "-setdnsservers", service_name, *servers)


# -- Android --


def is_android_environment() -> bool:
    if any(os.path.exists(path) for path in _ANDROID_INDICATORS):
        return True
    return command_exists("getprop")


def is_device_rooted() -> bool:
    if any(os.path.exists(path) for path in _ROOT_INDICATORS):
        return True
    return _succeeds("su", "-c", "id")


def check_android_privileges() -> None:
    if not is_device_rooted():
        raise PermissionError("requires root access or manual configuration")
    if not _succeeds("su", "-c", "id"):
        raise PermissionError("root access denied - please grant superuser permissions")


def set_android_property(prop: str, value: str) -> None:
    _combined("su", "-c", f"setprop {prop} {value}")


def get_android_property(prop: str) -> str:
    return _output("su", "-c", f"getprop {prop}").strip()


def backup_android_dns_settings(state: DNSState) -> None:
    for prop, name in (("net.dns1", "android_dns1"), ("net.dns2", "android_dns2")):
        try:
            value = get_android_property(prop)
        except (OSError, subprocess.CalledProcessError):
            continue
        if value:
            state.original_settings[name] = DNSBackup(name, [value], False)


def get_active_android_interface() -> str:
    return parse_android_default_interface(_output("su", "-c", "ip route show default"))


def restart_android_network(iface: str) -> None:
    _combined("su", "-c", f"ip link set {iface} down && ip link set {iface} up")


def configure_android_iptables(state: DNSState) -> None:
    for rule in iptables_rules("-A", state.local_ip, state.port):
        try:
            _combined("su", "-c", rule)
        except (OSError, subprocess.CalledProcessError) as exc:
            raise RuntimeError(f"failed to apply iptables rule: {rule}, error: {exc}") from exc


def clear_android_iptables(state: DNSState) -> None:
    for rule in iptables_rules("-D", state.local_ip, state.port):
        _succeeds("su", "-c", rule)


def configure_rooted_android_dns(state: DNSState) -> None:
    state.log("🔧 Configuring DNS on rooted Android device...")
    backup_android_dns_settings(state)
    try:
        iface = get_active_android_interface()
    except (OSError, subprocess.CalledProcessError, LookupError) as exc:
        raise RuntimeError(f"failed to get active interface: {exc}") from exc

    try:
        set_android_property("net.dns1", state.local_ip)
        set_android_property("net.dns2", state.local_ip)
    except (OSError, subprocess.CalledProcessError):
        pass
    else:
        try:
            restart_android_network(iface)
        except (OSError, subprocess.CalledProcessError):
            state.log("⚠️ Network restart failed, DNS may not be fully applied")
        state.is_configured = True
        state.log("🔧 System DNS configured to use Omamori (setprop)")
        return

    try:
        configure_android_iptables(state)
    except RuntimeError as exc:
        raise RuntimeError(f"failed to configure iptables DNS redirection: {exc}") from exc
    state.is_configured = True
    state.log("🔧 System DNS configured to use Omamori (iptables)")


def restore_rooted_android_dns(state: DNSState) -> None:
    state.log("🔄 Restoring original DNS settings...")
    for name, prop in (("android_dns1", "net.dns1"), ("android_dns2", "net.dns2")):
        backup = state.original_settings.get(name)
        if backup is not None and backup.dns_servers:
            try:
                set_android_property(prop, backup.dns_servers[0])
            except (OSError, subprocess.CalledProcessError):
                pass
    clear_android_iptables(state)
    state.is_configured = False
    state.log("✅ Original DNS settings restored (Android)")