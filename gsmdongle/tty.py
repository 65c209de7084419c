"""Serial port opening, UUCP-style lock files and reliable writes."""

from __future__ import annotations

import errno
import os
import sys
import termios
from typing import Optional

_DEFAULT_LOCK_DIR = "/var/spool/lock" if sys.platform.startswith("freebsd") else "/var/lock"
_WRITE_RETRIES = 10


def lock_path(devname: str, lock_dir: Optional[str] = None) -> str:
    """Path of the lock file guarding ``devname`` (symlinks are followed)."""
    resolved = os.path.realpath(devname)
    basename = os.path.basename(resolved) or resolved
    return os.path.join(lock_dir or _DEFAULT_LOCK_DIR, f"LCK..{basename}")


def _leading_int(text: str) -> int:
    text = text.strip()
    digits = ""
    for index, char in enumerate(text):
        if char.isdigit() or (index == 0 and char in "+-"):
            digits += char
        else:
            break
    try:
        return int(digits)
    except ValueError:
        return 0


def _process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except (OSError, OverflowError, ValueError):
        return False
    return True


def _lock_create(path: str) -> None:
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o444)
    except OSError:
        return
    try:
        os.write(fd, str(os.getpid()).encode())
    except OSError:
        pass
    finally:
        os.close(fd)


def lock_try(devname: str, lock_dir: Optional[str] = None) -> int:
    """Take the lock for ``devname``.

    Returns the pid of a live owner, or 0 after the lock was taken.
    """
    path = lock_path(devname, lock_dir)
    pid = 0
    try:
        with open(path, "rb") as handle:
            content = handle.read(20)
    except OSError:
        content = b""
    if content:
        candidate = _leading_int(content.decode("ascii", errors="replace"))
        if _process_alive(candidate):
            pid = candidate
    if pid == 0:
        try:
            os.unlink(path)
        except OSError:
            pass
        _lock_create(path)
    return pid


def open_tty(dev: str, lock_dir: Optional[str] = None) -> int:
    """Open ``dev`` as a raw 115200 8N1 port and lock it; return the descriptor."""
    fd = os.open(dev, os.O_RDWR | os.O_NOCTTY)
    try:
        attrs = termios.tcgetattr(fd)
    except termios.error:
        os.close(fd)
        raise
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
    pid = lock_try(dev, lock_dir)
    if pid != 0:
        os.close(fd)
        raise OSError(errno.EBUSY, f"device locked by process {pid}", dev)
    return fd


def close_tty(dev: str, fd: int, lock_dir: Optional[str] = None) -> None:
    """Close the port and remove its lock file."""
    os.close(fd)
    try:
        os.unlink(lock_path(dev, lock_dir))
    except OSError:
        pass


def write_all(fd: int, data: bytes) -> int:
    """Write ``data`` fully, retrying on interruptions; return bytes written."""
    view = memoryview(bytes(data))
    total = 0
    retries = _WRITE_RETRIES
    while view:
        try:
            written = os.write(fd, view)
        except (InterruptedError, BlockingIOError):
            retries -= 1
            if retries:
                continue
            break
        except OSError:
            break
        if written <= 0:
            break
        retries = _WRITE_RETRIES
        view = view[written:]
        total += written
    return total