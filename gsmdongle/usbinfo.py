"""List USB modem ports bound to a driver and query their identity."""

from __future__ import annotations

import os
import re
import sys
from dataclasses import dataclass
from typing import Optional

from .tty import close_tty, open_tty, write_all

SYS_DRIVER = "/sys/bus/usb/drivers"
PORT_NUMBER = "port_number"
_RESULT_MAX = 4096
_INTERFACE_RE = re.compile(r"\s*([+-]?\d+)-([^:]{1,39}):\s*([+-]?\d+)\.\s*([+-]?\d+)")


@dataclass
class DevDescr:
    """One USB interface with its tty port."""

    busnum: int
    devpath: str
    configuration: int
    interfaceno: int
    port: str = ""


def read_result(fd: int) -> Optional[str]:
    """Read a modem reply up to its final OK; None on ERROR or end of input."""
    buf = b""
    while True:
        room = _RESULT_MAX - len(buf)
        if room <= 0:
            return None
        try:
            chunk = os.read(fd, room)
        except OSError:
            return None
        if not chunk:
            return None
        buf += chunk
        pos = buf.find(b"\r\nOK\r\n")
        if pos >= 0:
            return buf[:pos].decode("latin-1")
        if b"\r\nERROR\r\n" in buf:
            return None


def count_lines(lines: str) -> int:
    """Number of CRLF-separated segments in ``lines``."""
    return lines.count("\r\n") + 1


def read_results(fd: int) -> Optional[list[str]]:
    """Read a reply and return its non-empty CRLF-terminated lines."""
    text = read_result(fd)
    if text is None:
        return None
    return [line for line in text.split("\r\n")[:-1] if line]


def get_info_item(lines: list[str], name: str) -> Optional[str]:
    """Value of the first line starting with ``name``, leading spaces removed."""
    for line in lines:
        if line.startswith(name):
            return line[len(name):].lstrip(" ")
    return None


def get_info(port: str, lock_dir: Optional[str] = None):
    """Query (manufacturer, model, IMEI, IMSI) from a modem port.

    Items that could not be obtained are None.
    """
    manu = model = imei = imsi = None
    try:
        fd = open_tty(port, lock_dir)
    except OSError:
        return manu, model, imei, imsi
    try:
        write_all(fd, b"ATI\r")
        lines = read_results(fd)
        if lines is not None:
            manu = get_info_item(lines, "Manufacturer:")
            model = get_info_item(lines, "Model:")
            imei = get_info_item(lines, "IMEI:")
        write_all(fd, b"AT+CIMI\r")
        lines = read_results(fd)
        if lines:
            first = 1 if lines[0].startswith("AT+CIMI\r") else 0
            if first < len(lines):
                imsi = lines[first]
    finally:
        close_tty(port, fd, lock_dir)
    return manu, model, imei, imsi


def parse_interface_name(name: str):
    """Split ``bus-path:config.interface`` into its four fields, or None."""
    match = _INTERFACE_RE.match(name)
    if match is None:
        return None
    bus, devpath, config, interface = match.groups()
    return int(bus), devpath, int(config), int(interface)


def discovery_port(name: str) -> Optional[str]:
    """Device path of the first tty under ``name`` that has a port number."""
    try:
        entries = sorted(os.listdir(name))
    except OSError:
        return None
    for entry in entries:
        if os.path.exists(os.path.join(name, entry, PORT_NUMBER)):
            return f"/dev/{entry}"
    return None


def discovery_driver(driver: str, sys_driver: str = SYS_DRIVER) -> list[DevDescr]:
    """Interfaces bound to ``driver`` that expose a tty port."""
    base = os.path.join(sys_driver, driver)
    try:
        entries = sorted(os.listdir(base))
    except OSError:
        return []
    devices = []
    for entry in entries:
        fields = parse_interface_name(entry)
        if fields is None:
            continue
        path = os.path.realpath(os.path.join(base, entry))
        port = discovery_port(path)
        if port is not None:
            devices.append(DevDescr(*fields, port=port))
    return devices


def _show(value: Optional[str]) -> str:
    return "(null)" if value is None else value


def _report(devices: list[DevDescr]) -> None:
    for dev in devices:
        if dev.interfaceno == 0:
            print(f"Bus: {dev.busnum} Dev: {dev.devpath} Conf: {dev.configuration}")
            info = get_info(dev.port)
            if any(item is not None for item in info):
                manu, model, imei, imsi = map(_show, info)
                print(f"Manufacturer: {manu}  Model: {model} IMEI: {imei} IMSI: {imsi}")
        print(f"\tInterface: {dev.interfaceno} Port: {dev.port}")


def main(argv=None) -> int:
    """Report modems bound to the option driver and any drivers given."""
    drivers = sys.argv[1:] if argv is None else list(argv)
    for driver in ["option", *drivers]:
        _report(discovery_driver(driver))
    return 0