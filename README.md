# gsmdongle

Building blocks for working with USB GSM modems ("dongles") through their
AT command serial ports. The package uses only the standard library.

- `gsmdongle.ringbuffer`: `RingBuffer` is a fixed-size circular byte buffer.
  It reads across the wrap-around point. `memmem` finds one byte string in
  another.
- `gsmdongle.mixbuffer`: `MixBuffer` mixes several native-endian signed
  16-bit audio streams (`MixStream`) into one buffer and clips on overflow.
  The same clipping add is available as `saturated_sum`.
- `gsmdongle.tty`: opens a serial port as raw 115200 8N1 (`open_tty`) and
  guards it with a UUCP-style `LCK..<name>` lock file (`lock_path`,
  `lock_try`, `close_tty`). `write_all` keeps writing until all the data is
  out.
- `gsmdongle.smsdb`: `SmsDb` is a SQLite store. It reassembles incoming
  multipart SMS texts and hands out message reference numbers.
- `gsmdongle.smsdb_outgoing`: `OutgoingStore` keeps track of sent multipart
  messages, their delivery reports and their expiry.
- `gsmdongle.pdiscovery`: `PortDiscovery` finds the data and voice ports of
  known modems under `/sys/bus/usb/devices`. It identifies each modem by its
  IMEI and IMSI.
- `gsmdongle.usbinfo`: lists tty ports bound to a USB driver and queries
  modems for their identity. It backs the `gsmdongle-discovery` command.

## Installation

```
pip install gsmdongle
```

To run the tests:

```
pip install "gsmdongle[test]"
pytest
```

## Command line

```
gsmdongle-discovery
gsmdongle-discovery qcserial
```

The command lists every interface bound to the `option` USB driver, and to
any further drivers named on the command line. Each entry shows its tty port.
For interface 0 of each device it prints the bus, device path and
configuration. It then sends `ATI` and `AT+CIMI` to that port and prints the
manufacturer, model, IMEI and IMSI it gets back. This needs read/write access
to the tty and the right to create lock files in `/var/lock`
(`/var/spool/lock` on FreeBSD).

## Library use

### Ring buffer

```python
from gsmdongle.ringbuffer import RingBuffer

rb = RingBuffer(16)
rb.write(b"AT\r\nOK\r\n")        # returns the number of bytes that fitted
line = rb.read_until(b"\r\n")     # b"AT", or None if no separator yet
rb.consume(len(line) + 2)         # drop the line and its separator
```

`read_all` and `read_n` return data without consuming it. `write_with(data,
method)` merges incoming bytes with those already stored.

### Mixing audio

```python
from gsmdongle.mixbuffer import MixBuffer, MixStream

mb = MixBuffer(320)
a, b = MixStream(), MixStream()
mb.attach(a)
mb.attach(b)
mb.write(a, samples_a)
mb.write(b, samples_b)            # added onto what a wrote, clipped
frame = mb.read_n(160)
mb.consume(160)
```

### Reassembling multipart messages

```python
from gsmdongle.smsdb import SmsDb

with SmsDb("sms", csms_ttl=600) as db:          # file sms.sqlite3
    db.put("imsi-1", "+000", ref=12, parts=2, order=1, msg="Hello, ")  # (1, None)
    db.put("imsi-1", "+000", ref=12, parts=2, order=2, msg="world")    # (2, "Hello, world")
    db.get_refid("imsi-1", "+000")                                       # 0, then 1, ... 255, 0
```

The path `":memory:"` keeps the database in memory. Keys longer than 256
bytes raise `ValueError`.

### Tracking sent messages

```python
from gsmdongle.smsdb_outgoing import OutgoingStore

store = OutgoingStore(db)
uid = store.add("imsi-1", "+000", cnt=2, ttl=3600, srr=True, payload=b"ticket")
store.part_put(uid, refid=5)
store.part_put(uid, refid=6)
store.part_status("imsi-1", "+000", mr=5, st=0)  # None while parts are pending
store.part_status("imsi-1", "+000", mr=6, st=0)  # ([0, 0], b"ticket")
```

If no status report was requested, `part_put` returns `(destination,
payload)` once every part has been sent. `clear` removes a message and
returns the same pair. `purge_one` removes one expired message. Payloads are
cut to 4096 bytes.

### Finding a modem's ports

```python
from gsmdongle.pdiscovery import PortDiscovery

discovery = PortDiscovery(discovery_interval=3600)
ports = discovery.lookup("dongle0", imei="000000000000000")
if ports:
    data_port, voice_port = ports
for result in discovery.list():
    print(result.imei, result.imsi, result.data_port, result.voice_port)
```

Identities read from a port are cached for `discovery_interval` seconds.
Ports that are locked by another live process are skipped.

## What the package does not do

It does not encode or decode SMS PDUs. It stores message texts and payloads
you hand it, but it does not turn them into AT+CMGS data or parse AT+CMGR
output. It also does not handle calls, hold an AT command queue, or run a
modem session: it supplies the buffers, storage, locking and discovery such
a program would be built on.