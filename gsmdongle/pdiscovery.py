"""Finding a modem's data and voice ports in sysfs by its IMEI and IMSI."""

from __future__ import annotations

import logging
import os
import re
import select
import termios
import threading
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterator, NamedTuple, Optional

from .ringbuffer import RingBuffer
from .tty import lock_path, lock_try, write_all

log = logging.getLogger(__name__)

SYS_BUS_USB_DEVICES = "/sys/bus/usb/devices"
DISCOVERY_TIMEOUT = 0.5
DEFAULT_DISCOVERY_INTERVAL = 3600
IMEI_SIZE = 15
IMSI_SIZE = 15
_RESPONSE_BUFFER = 1024
_IMEI_MARK = "\r\nIMEI:"
_HEX_RE = re.compile(r"\s*(?:0[xX])?([0-9a-fA-F]+)")


class InterfaceType(IntEnum):
    """Index of a port in a discovery result."""

    DATA = 0
    VOICE = 1


INTERFACE_TYPE_NUMBERS = len(InterfaceType)

# (vendor id, product id) -> USB interface numbers of the (data, voice) ports
DEVICE_IDS = {
    (0x12D1, 0x1001): (2, 1),  # E1550 and generic
    (0x12D1, 0x140C): (3, 2),  # E17xx
    (0x12D1, 0x14AC): (4, 3),  # E153Du-1
    (0x12D1, 0x1436): (4, 3),  # E1750
    (0x12D1, 0x1506): (1, 2),  # E171 firmware 21.x
    (0x2C7C, 0x0125): (1, 4),  # EC25-A LTE modem
}

# indexed by [want_imei][want_imsi]
_COMMANDS = {
    (False, False): b"ATI; +CIMI\r",
    (False, True): b"AT+CIMI\r",
    (True, False): b"ATI\r",
    (True, True): b"ATI; +CIMI\r",
}


def _empty_ports() -> list[Optional[str]]:
    return [None] * INTERFACE_TYPE_NUMBERS


@dataclass
class DiscoveryResult:
    """Identity and ports of one modem."""

    imei: Optional[str] = None
    imsi: Optional[str] = None
    ports: list[Optional[str]] = field(default_factory=_empty_ports)

    @property
    def data_port(self) -> Optional[str]:
        return self.ports[InterfaceType.DATA]

    @property
    def voice_port(self) -> Optional[str]:
        return self.ports[InterfaceType.VOICE]

    def copy(self) -> "DiscoveryResult":
        return DiscoveryResult(self.imei, self.imsi, list(self.ports))


class _Request(NamedTuple):
    name: str
    imei: Optional[str]
    imsi: Optional[str]


@dataclass
class _CacheEntry:
    result: DiscoveryResult
    failed: bool
    valid_till: float


def _ports_match(first, second) -> bool:
    return all(a is not None and b is not None and a == b for a, b in zip(first, second))


class DiscoveryCache:
    """Identities read from ports, kept for ``interval`` seconds."""

    def __init__(self, interval: float = DEFAULT_DISCOVERY_INTERVAL) -> None:
        self.interval = interval
        self._items: list[_CacheEntry] = []
        self._lock = threading.RLock()

    def search(self, ports) -> Optional[_CacheEntry]:
        """Entry whose ports all equal ``ports``; expired entries are dropped."""
        now = time.monotonic()
        with self._lock:
            index = 0
            while index < len(self._items):
                item = self._items[index]
                if now < item.valid_till:
                    if _ports_match(item.result.ports, ports):
                        return item
                    index += 1
                else:
                    del self._items[index]
        return None

    def lookup(self, want_imei: bool, want_imsi: bool,
               result: DiscoveryResult) -> Optional[bool]:
        """Fill ``result`` from the cache.

        Returns None when the cache cannot answer, else whether the cached
        query had failed.
        """
        item = self.search(result.ports)
        if item is None:
            return None
        result.imei = item.result.imei
        result.imsi = item.result.imsi
        found = item.failed or (
            (want_imei or item.result.imei is not None)
            and (want_imsi or item.result.imsi is not None)
        )
        return item.failed if found else None

    def update(self, result: DiscoveryResult, failed: bool) -> None:
        """Store the identity read for the ports of ``result``."""
        with self._lock:
            valid_till = time.monotonic() + self.interval
            item = self.search(result.ports)
            if item is None:
                self._items.append(_CacheEntry(result.copy(), bool(failed), valid_till))
            else:
                item.result.imei = result.imei
                item.result.imsi = result.imsi
                item.failed = bool(failed)
                item.valid_till = valid_till

    def __iter__(self) -> Iterator[DiscoveryResult]:
        with self._lock:
            snapshot = [item.result.copy() for item in self._items]
        return iter(snapshot)


def handle_ati(text: str) -> Optional[str]:
    """IMEI from an ATI reply: ``\\r\\nIMEI: <15 digits>\\r\\n``."""
    pos = text.find(_IMEI_MARK)
    if pos < 0:
        return None
    start = pos + len(_IMEI_MARK)
    while start < len(text) and text[start] == " ":
        start += 1
    end = start
    while end < len(text) and "0" <= text[end] <= "9":
        end += 1
    if end - start == IMEI_SIZE and text[end:end + 2] == "\r\n":
        return text[start:end]
    return None


def handle_cimi(text: str) -> Optional[str]:
    """IMSI from an AT+CIMI reply: ``\\r\\n<15 digits>\\r\\n``."""
    begin, cr1, lf1, digits, cr2 = range(5)
    state = begin
    start = 0
    for pos, char in enumerate(text):
        is_digit = "0" <= char <= "9"
        if state == begin:
            if char == "\r":
                state = cr1
        elif state == cr1:
            state = lf1 if char == "\n" else begin
        elif state == lf1:
            if is_digit:
                state = digits
                start = pos
            elif char == "\r":
                state = cr1
            else:
                state = begin
        elif state == digits:
            if is_digit:
                continue
            if char == "\r":
                state = cr2 if pos - start == IMSI_SIZE else cr1
            else:
                state = begin
        else:
            if char == "\n":
                return text[start:pos - 1]
            state = begin
    return None


def _read_hex(path: str) -> Optional[int]:
    try:
        with open(path, encoding="ascii", errors="replace") as handle:
            content = handle.read(64)
    except OSError:
        return None
    match = _HEX_RE.match(content)
    return int(match.group(1), 16) if match else None


def lookup_device_ids(path: str) -> Optional[tuple[int, int]]:
    """Interface numbers (data, voice) of a known modem in sysfs dir ``path``."""
    vendor = _read_hex(os.path.join(path, "idVendor"))
    if vendor is None:
        return None
    product = _read_hex(os.path.join(path, "idProduct"))
    if product is None:
        return None
    log.debug("found %s is idVendor %04x idProduct %04x", path, vendor, product)
    return DEVICE_IDS.get((vendor, product))


def _listdir(path: str) -> list[str]:
    try:
        return sorted(os.listdir(path))
    except OSError:
        return []


def _port_name(interface_dir: str) -> Optional[str]:
    for entry in _listdir(interface_dir):
        sub = os.path.join(interface_dir, entry)
        if os.path.isdir(sub) and os.path.isfile(os.path.join(sub, "port_number")):
            return f"/dev/{entry}"
    return None


def _fill_interfaces(devname: str, path: str, interfaces, ports: list) -> int:
    found = 0
    for entry in _listdir(path):
        if ":" not in entry:
            continue
        interface_dir = os.path.join(path, entry)
        if not os.path.isdir(interface_dir):
            continue
        number = _read_hex(os.path.join(interface_dir, "bInterfaceNumber"))
        if number is None:
            continue
        port = _port_name(interface_dir)
        if port is None:
            continue
        log.debug("[%s discovery] found InterfaceNumber %02x port %s", devname, number, port)
        for index, wanted in enumerate(interfaces):
            if wanted != number:
                continue
            if ports[index] is None:
                ports[index] = port
                found += 1
                if found == INTERFACE_TYPE_NUMBERS:
                    break
            else:
                log.debug("[%s discovery] port %s for bInterfaceNumber %02x already "
                          "exists new is %s", devname, ports[index], number, port)
    return found


def _open_port(port: str) -> int:
    fd = os.open(port, os.O_RDWR | os.O_NOCTTY)
    try:
        attrs = termios.tcgetattr(fd)
    except termios.error:
        os.close(fd)
        raise OSError(f"{port} is not a terminal")
    speed = termios.B115200
    attrs[0] = 0
    attrs[1] = 0
    attrs[2] = speed | termios.CS8 | termios.CREAD | getattr(termios, "CRTSCTS", 0)
    attrs[3] = 0
    attrs[4] = speed
    attrs[5] = speed
    attrs[6][termios.VMIN] = 1
    attrs[6][termios.VTIME] = 0
    try:
        termios.tcsetattr(fd, termios.TCSAFLUSH, attrs)
    except termios.error:
        pass
    return fd


def _drain(fd: int) -> None:
    while True:
        ready, _, _ = select.select([fd], [], [], 0)
        if not ready:
            return
        try:
            if not os.read(fd, _RESPONSE_BUFFER):
                return
        except OSError:
            return


def _handle_response(req: _Request, data: bytes, res: DiscoveryResult) -> bool:
    if not data:
        return False
    # the last byte may be an incomplete tail and is left out
    text = data[:-1].decode("latin-1")
    log.debug("[%s discovery] < %s", req.name, text)
    done = "OK" in text or "ERROR" in text
    if req.imei is not None and res.imei is None:
        res.imei = handle_ati(text)
    if req.imsi is not None and res.imsi is None:
        res.imsi = handle_cimi(text)
    return done


def _do_cmd(req: _Request, fd: int, port: str, cmd: bytes, res: DiscoveryResult) -> bool:
    log.debug("[%s discovery] use %s for IMEI/IMSI discovery", req.name, port)
    _drain(fd)
    if write_all(fd, cmd) != len(cmd):
        log.error("[%s discovery] write to %s failed", req.name, port)
        return True
    rb = RingBuffer(_RESPONSE_BUFFER)
    deadline = time.monotonic() + DISCOVERY_TIMEOUT
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        ready, _, _ = select.select([fd], [], [], remaining)
        if not ready:
            break
        room = rb.free()
        try:
            chunk = os.read(fd, room) if room else b""
        except OSError as exc:
            log.error("[%s discovery] read from %s failed: %s", req.name, port, exc)
            return True
        if not chunk:
            log.error("[%s discovery] read from %s failed", req.name, port)
            return True
        rb.write(chunk)
        if _handle_response(req, rb.read_all(), res):
            return False
    log.error("[%s discovery] failed to get valid response from %s in %d msec",
              req.name, port, int(DISCOVERY_TIMEOUT * 1000))
    return True


class PortDiscovery:
    """Scans sysfs for known modems and identifies them over their data port."""

    def __init__(self, sys_root: str = SYS_BUS_USB_DEVICES,
                 discovery_interval: float = DEFAULT_DISCOVERY_INTERVAL,
                 lock_dir: Optional[str] = None) -> None:
        self.sys_root = sys_root
        self.lock_dir = lock_dir
        self.cache = DiscoveryCache(discovery_interval)
        self._lock = threading.RLock()

    def lookup(self, devname: str, imei: Optional[str] = None,
               imsi: Optional[str] = None) -> Optional[tuple[str, str]]:
        """(data port, voice port) of the modem with this IMEI and IMSI, or None."""
        req = _Request(devname, imei or None, imsi or None)
        with self._lock:
            res = self._request_do(req)
        if res is None:
            return None
        return res.data_port, res.voice_port

    def list(self) -> list[DiscoveryResult]:
        """Scan all modems and return every identity known to the cache."""
        with self._lock:
            self._request_do(_Request("list", "ANY", "ANY"))
        return [*self.cache]

    def _request_do(self, req: _Request) -> Optional[DiscoveryResult]:
        for entry in _listdir(self.sys_root):
            if entry.startswith("usb"):
                continue
            log.debug("[%s discovery] checking %s/%s", req.name, self.sys_root, entry)
            res = DiscoveryResult()
            if self._check_device(os.path.join(self.sys_root, entry), req, res):
                return res
        return None

    def _check_device(self, path: str, req: _Request, res: DiscoveryResult) -> bool:
        interfaces = lookup_device_ids(path)
        if interfaces is None:
            return False
        log.debug("[%s discovery] ports <-> interfaces map voice=%02x data=%02x",
                  req.name, interfaces[InterfaceType.VOICE], interfaces[InterfaceType.DATA])
        _fill_interfaces(req.name, path, interfaces, res.ports)
        if res.data_port is None or res.voice_port is None:
            return False
        return self._check_req(req, res)

    def _check_req(self, req: _Request, res: DiscoveryResult) -> bool:
        if self._read_info(req, res):
            return False
        match = (req.imei is None or res.imei == req.imei) and (
            req.imsi is None or res.imsi == req.imsi
        )
        log.debug("[%s discovery] %smatched IMEI=%s/%s IMSI=%s/%s", req.name,
                  "" if match else "un", req.imei or "", res.imei or "",
                  req.imsi or "", res.imsi or "")
        return match

    def _read_info(self, req: _Request, res: DiscoveryResult) -> bool:
        dport = res.data_port
        pid = lock_try(dport, self.lock_dir)
        if pid:
            log.debug("[%s discovery] %s already used by process %d, skipped",
                      req.name, dport, pid)
            return True
        try:
            return self._get_info_cached(dport, req, res)
        finally:
            try:
                os.unlink(lock_path(dport, self.lock_dir))
            except OSError:
                pass

    def _get_info_cached(self, port: str, req: _Request, res: DiscoveryResult) -> bool:
        failed = self.cache.lookup(req.imei is not None, req.imsi is not None, res)
        if failed is None:
            failed = self._get_info(port, req, res)
            self.cache.update(res, failed)
        else:
            log.debug("[%s discovery] %s use cached IMEI %s IMSI %s failed %d",
                      req.name, port, res.imei or "", res.imsi or "", failed)
        return failed

    def _get_info(self, port: str, req: _Request, res: DiscoveryResult) -> bool:
        try:
            fd = _open_port(port)
        except OSError as exc:
            log.debug("[%s discovery] cannot open %s: %s", req.name, port, exc)
            return True
        want_imei = req.imei is not None and res.imei is None
        want_imsi = req.imsi is not None and res.imsi is None
        try:
            return _do_cmd(req, fd, port, _COMMANDS[want_imei, want_imsi], res)
        finally:
            os.close(fd)