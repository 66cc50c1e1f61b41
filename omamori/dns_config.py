"""Point the operating system's resolver at the local DNS server and back."""

from __future__ import annotations

import os
import subprocess
import sys
from typing import Callable, Optional

from omamori import sysdns_helpers as helpers
from omamori.sysdns_helpers import DNSState

_FAILURES = (OSError, subprocess.CalledProcessError)


class SystemDNSError(RuntimeError):
    """Raised when the system DNS settings cannot be checked, changed or restored."""


def current_platform() -> str:
    """Name of the running platform: windows, darwin, android, linux or other."""
    if hasattr(sys, "getandroidapilevel") or sys.platform == "android":
        return "android"
    if sys.platform == "win32":
        return "windows"
    if sys.platform == "darwin":
        return "darwin"
    if sys.platform.startswith("linux"):
        return "linux"
    return sys.platform


class SystemDNSManager:
    """Switches the system resolver to the local server and restores it."""

    def __init__(self, state: Optional[DNSState] = None, platform: Optional[str] = None) -> None:
        self.state = state if state is not None else DNSState()
        self.platform = platform or current_platform()

    def _unsupported(self) -> SystemDNSError:
        return SystemDNSError(f"unsupported platform: {self.platform}")

    def _run(self, handler: Callable[[], None]) -> None:
        try:
            handler()
        except SystemDNSError:
            raise
        except (*_FAILURES, RuntimeError, LookupError) as exc:
            raise SystemDNSError(str(exc)) from exc

    # -- privileges --

    def check_privileges(self) -> None:
        """Raise SystemDNSError unless DNS settings may be modified."""
        if self.platform == "linux":
            if os.geteuid() != 0:
                raise SystemDNSError("requires root privileges - please run with sudo")
        elif self.platform == "darwin":
            try:
                subprocess.run(
                    ["networksetup", "-listallnetworkservices"],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    check=True,
                )
            except _FAILURES as exc:
                raise SystemDNSError("requires admin privileges - please run with sudo") from exc
        elif self.platform == "windows":
            try:
                helpers.run_command(self.state, "netsh", "interface", "show", "interface")
            except _FAILURES as exc:
                raise SystemDNSError(
                    "requires admin privileges - please run as Administrator"
                ) from exc
        elif self.platform == "android":
            try:
                helpers.check_android_privileges()
            except PermissionError as exc:
                raise SystemDNSError(str(exc)) from exc
        else:
            raise self._unsupported()

    # -- configure --

    def configure(self) -> None:
        """Point the system resolver at the local DNS server."""
        if self.state.is_configured:
            raise SystemDNSError("DNS already configured")
        handler = {
            "windows": self._configure_windows,
            "linux": self._configure_linux,
            "darwin": self._configure_darwin,
            "android": self._configure_android,
        }.get(self.platform)
        if handler is None:
            raise self._unsupported()
        self._run(handler)

    def _configure_windows(self) -> None:
        state = self.state
        try:
            interfaces = helpers.get_active_windows_interfaces()
        except _FAILURES as exc:
            raise SystemDNSError(f"failed to get active interfaces: {exc}") from exc

        for iface in interfaces:
            try:
                helpers.backup_windows_dns_settings(state, iface)
            except _FAILURES as exc:
                raise SystemDNSError(f"failed to backup DNS settings for {iface}: {exc}") from exc

        for iface in interfaces:
            try:
                helpers.run_command(
                    state, "netsh", "interface", "ip", "set", "dns", iface, "static", state.local_ip
                )
            except _FAILURES as exc:
                raise SystemDNSError(f"failed to set DNS for {iface}: {exc}") from exc
            try:
                helpers.run_command(
                    state, "netsh", "interface", "ipv6", "set", "dns", iface, "static", "::1"
                )
            except _FAILURES as exc:
                raise SystemDNSError(f"failed to set IPv6 DNS for {iface}: {exc}") from exc

        state.is_configured = True
        state.log("🔧 System DNS configured to use Omamori (Windows)")

    def _configure_linux(self) -> None:
        if helpers.command_exists("resolvectl"):
            helpers.configure_systemd_resolved(self.state)
        else:
            helpers.configure_resolv_conf(self.state)

    def _configure_darwin(self) -> None:
        state = self.state
        try:
            services = helpers.get_active_darwin_services()
        except _FAILURES as exc:
            raise SystemDNSError(f"failed to get network services: {exc}") from exc

        for service in services:
            try:
                helpers.backup_darwin_dns_settings(state, service)
            except _FAILURES as exc:
                raise SystemDNSError(
                    f"failed to backup DNS settings for {service}: {exc}"
                ) from exc

        for service in services:
            try:
                helpers.set_darwin_dns(service, state.local_ip)
            except _FAILURES as exc:
                raise SystemDNSError(f"failed to set DNS for {service}: {exc}") from exc

        state.is_configured = True
        state.log("🔧 System DNS configured to use Omamori (macOS)")

    def _configure_android(self) -> None:
        state = self.state
        if helpers.is_device_rooted():
            helpers.configure_rooted_android_dns(state)
            return
        state.log("⚠️ Non-rooted Android device detected")
        state.log("📱 Please configure DNS manually in Wi-Fi settings")
        state.log(f"Set DNS to: {state.local_ip}")
        raise SystemDNSError("manual configuration required for non-rooted devices")

    # -- restore --

    def restore(self) -> None:
        """Restore the DNS settings saved by configure; do nothing if unchanged."""
        if not self.state.is_configured:
            return
        handler = {
            "windows": self._restore_windows,
            "linux": self._restore_linux,
            "darwin": self._restore_darwin,
            "android": self._restore_android,
        }.get(self.platform)
        if handler is None:
            raise self._unsupported()
        self._run(handler)

    def _restore_windows(self) -> None:
        state = self.state
        state.log("🔄 Restoring original DNS settings...")

        for name, backup in state.original_settings.items():
            if backup.is_dhcp:
                helpers.run_command(state, "netsh", "interface", "ip", "set", "dns", name, "dhcp")
                helpers.run_command(state, "netsh", "interface", "ipv6", "set", "dns", name, "dhcp")
            elif backup.dns_servers:
                first, *others = backup.dns_servers
                helpers.run_command(
                    state, "netsh", "interface", "ip", "set", "dns", name, "static", first
                )
                for server in others:
                    helpers.run_command(
                        state, "netsh", "interface", "ip", "add", "dns", name, server
                    )
            else:
                helpers.run_command(state, "netsh", "interface", "ip", "set", "dns", name, "dhcp")

        state.original_settings = {}
        state.is_configured = False
        state.log("✅ Original DNS settings restored (Windows)")

    def _restore_linux(self) -> None:
        self.state.log("🔄 Restoring original DNS settings...")
        if helpers.command_exists("resolvectl"):
            helpers.restore_systemd_resolved(self.state)
        else:
            helpers.restore_resolv_conf(self.state)

    def _restore_darwin(self) -> None:
        state = self.state
        state.log("🔄 Restoring original DNS settings...")
        for name, backup in state.original_settings.items():
            try:
                helpers.restore_darwin_dns_service(name, backup)
            except _FAILURES as exc:
                raise SystemDNSError(f"failed to restore DNS for {name}: {exc}") from exc
        state.original_settings = {}
        state.is_configured = False
        state.log("✅ Original DNS settings restored (macOS)")

    def _restore_android(self) -> None:
        if helpers.is_device_rooted():
            helpers.restore_rooted_android_dns(self.state)
            return
        self.state.log("🔄 Please manually restore DNS settings in Wi-Fi configuration")