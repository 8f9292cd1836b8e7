"""Byte-stream links and the reader/writer threads that drive them.

A Link is any full-duplex byte stream with read/write/close. LinkIO owns
one connected Link: a background reader thread parses frames out of it and
a writer thread drains an outbound packet queue into it. The first I/O or
framing error closes the link and is reported exactly once.
"""
from __future__ import annotations

import queue
import socket
import threading
from typing import Callable, Optional, Protocol, runtime_checkable

import serial

from .config import JOIN_TIMEOUT, MAX_PAYLOAD_SIZE, OUTBOUND_QUEUE_SIZE, READ_CHUNK_SIZE
from .errors import LinkError
from .protocol import Packet, encode_packet, read_frame


@runtime_checkable
class Link(Protocol):
    name: str

    def read(self, size: int) -> bytes: ...

    def write(self, data: bytes) -> None: ...

    def close(self) -> None: ...


class SocketLink:
    """Link over a connected stream socket (TCP or RFCOMM)."""

    def __init__(self, sock: socket.socket, name: Optional[str] = None):
        self._sock = sock
        self._lock = threading.Lock()
        self._closed = False
        if name is None:
            try:
                name = str(sock.getpeername())
            except OSError:
                name = 'socket'
        self.name = name

    def read(self, size: int) -> bytes:
        return self._sock.recv(min(size, READ_CHUNK_SIZE))

    def write(self, data: bytes) -> None:
        self._sock.sendall(data)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        # shutdown() wakes threads blocked in recv/sendall, close() alone does not
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._sock.close()


class SerialLink:
    """Link over a pyserial port, e.g. an RFCOMM tty or a serial_for_url URL."""

    def __init__(self, ser: serial.SerialBase, name: Optional[str] = None):
        # Blocking reads: an empty read must mean the port went away
        ser.timeout = None
        self._ser = ser
        self.name = name or ser.port or 'serial'

    def read(self, size: int) -> bytes:
        waiting = self._ser.in_waiting
        return self._ser.read(max(1, min(size, waiting, READ_CHUNK_SIZE)))

    def write(self, data: bytes) -> None:
        self._ser.write(data)
        self._ser.flush()

    def close(self) -> None:
        if not self._ser.is_open:
            return
        cancel_read = getattr(self._ser, 'cancel_read', None)
        if cancel_read is not None:
            cancel_read()
        self._ser.close()


class LinkIO:
    """Reader and writer threads for one connected link."""

    def __init__(self, link: Link,
                 on_packet: Callable[[Packet], None],
                 on_lost: Callable[[BaseException], None],
                 *, max_payload_size: int = MAX_PAYLOAD_SIZE,
                 outbound_capacity: int = OUTBOUND_QUEUE_SIZE,
                 join_timeout: float = JOIN_TIMEOUT):
        """Initialize link I/O.

        Args:
            link: Connected link, owned by this object from now on
            on_packet: Called from the reader thread for every parsed packet
            on_lost: Called once with the cause when the link fails
            max_payload_size: Largest frame LENGTH accepted from the peer
            outbound_capacity: Packets queued before send() blocks
            join_timeout: Seconds to wait for each thread on close
        """
        self.link = link
        self._on_packet = on_packet
        self._on_lost = on_lost
        self._max_payload_size = max_payload_size
        self._join_timeout = join_timeout
        self._outbound: "queue.Queue[bytes]" = queue.Queue(maxsize=outbound_capacity)
        self._stop_event = threading.Event()
        self._state_lock = threading.Lock()
        self._reader = threading.Thread(target=self._reader_loop, name=f"LinkRX-{link.name}", daemon=True)
        self._writer = threading.Thread(target=self._writer_loop, name=f"LinkTX-{link.name}", daemon=True)
        self.packets_read = 0
        self.packets_written = 0
        self.bytes_written = 0

    @property
    def name(self) -> str:
        return self.link.name

    @property
    def is_open(self) -> bool:
        return not self._stop_event.is_set()

    def start(self) -> None:
        self._reader.start()
        self._writer.start()

    def send(self, packet: Packet) -> bool:
        """Queue a packet for the writer thread.

        Blocks while the outbound queue is full.

        Returns:
            True if queued, False if the link is closed

        Raises:
            PayloadTooLargeError: If the payload cannot be framed
        """
        frame = encode_packet(packet)
        while not self._stop_event.is_set():
            try:
                self._outbound.put(frame, timeout=0.1)
                return True
            except queue.Full:
                continue
        return False

    def close(self) -> None:
        """Close the link without reporting it as lost."""
        self._shutdown(None)

    def _shutdown(self, cause: Optional[BaseException]) -> None:
        with self._state_lock:
            first = not self._stop_event.is_set()
            self._stop_event.set()
        if first:
            self.link.close()
            if cause is not None:
                print(f"Warning: link {self.name} lost: {cause}")
                self._on_lost(cause)
        # Workers never join each other; close() from outside does the joining
        if threading.current_thread() in (self._reader, self._writer):
            return
        for thread in (self._reader, self._writer):
            if thread.is_alive():
                thread.join(timeout=self._join_timeout)

    def _reader_loop(self) -> None:
        """Parse frames until the link fails or is closed."""
        while not self._stop_event.is_set():
            try:
                packet = read_frame(self.link, self._max_payload_size)
            except (LinkError, OSError) as exc:
                self._shutdown(exc)
                return
            self.packets_read += 1
            self._on_packet(packet)

    def _writer_loop(self) -> None:
        """Write queued frames in submission order."""
        while not self._stop_event.is_set():
            try:
                frame = self._outbound.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self.link.write(frame)
            except (LinkError, OSError) as exc:
                self._shutdown(exc)
                return
            self.packets_written += 1
            self.bytes_written += len(frame)

    def __repr__(self) -> str:
        return f"LinkIO({self.name!r}, open={self.is_open})"
