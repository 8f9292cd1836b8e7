"""Transports that produce connected links.

SocketTransport covers TCP and, on Linux, Bluetooth RFCOMM sockets.
SerialTransport covers serial ports, including an RFCOMM tty bound with
``rfcomm listen`` and any pyserial URL (``socket://``, ``loop://``, ...).
Peer addresses are opaque strings handed through to the platform.
"""
from __future__ import annotations

import argparse
import socket
import threading
from typing import Iterator, Optional, Protocol, Tuple

import serial
import serial.tools.list_ports

from .config import BAUD_RATE, CONNECT_TIMEOUT, DEFAULT_RFCOMM_CHANNEL, DEFAULT_TCP_PORT
from .errors import LinkClosedError, UnreachableError
from .link import Link, SerialLink, SocketLink


class Listener(Protocol):
    def accept(self) -> Link: ...

    def close(self) -> None: ...

    def __iter__(self) -> Iterator[Link]: ...


class Transport(Protocol):
    def listen(self) -> Listener: ...

    def connect(self, peer: str) -> Link: ...


def find_port() -> Optional[str]:
    """Auto-detect available serial port.

    Returns:
        Port name or None if not found
    """
    ports = serial.tools.list_ports.comports()
    for port in ports:
        # Prefer Bluetooth and USB serial devices
        if 'rfcomm' in port.device or 'USB' in port.description or 'ACM' in port.device:
            return port.device
    # Return first available port if no matching device found
    if ports:
        return ports[0].device
    return None


class SocketListener:
    """Accepts inbound stream connections one at a time."""

    def __init__(self, server: socket.socket):
        self._server = server
        self._closed = threading.Event()

    @property
    def address(self):
        return self._server.getsockname()

    def accept(self) -> Link:
        """Block until a peer connects.

        Raises:
            LinkClosedError: If the listener was closed while waiting
        """
        try:
            conn, addr = self._server.accept()
        except OSError as exc:
            if self._closed.is_set():
                raise LinkClosedError("Listener closed") from exc
            raise
        return SocketLink(conn, _format_address(addr))

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            self._server.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._server.close()

    def __iter__(self) -> Iterator[Link]:
        while not self._closed.is_set():
            try:
                yield self.accept()
            except LinkClosedError:
                return


class SocketTransport:
    """TCP or RFCOMM stream sockets."""

    def __init__(self, *, family: str = 'tcp', host: str = '0.0.0.0',
                 port: Optional[int] = None, timeout: float = CONNECT_TIMEOUT):
        """Initialize socket transport.

        Args:
            family: 'tcp' or 'rfcomm'
            host: Local address to listen on (bdaddr for rfcomm)
            port: TCP port or RFCOMM channel, default depends on family
            timeout: Connect timeout in seconds
        """
        if family not in ('tcp', 'rfcomm'):
            raise ValueError(f"Unsupported socket family: {family}")
        if family == 'rfcomm' and not hasattr(socket, 'AF_BLUETOOTH'):
            raise RuntimeError("RFCOMM sockets are not available on this platform")
        self.family = family
        self.host = host
        self.port = port if port is not None else (
            DEFAULT_TCP_PORT if family == 'tcp' else DEFAULT_RFCOMM_CHANNEL
        )
        self.timeout = timeout

    def _new_socket(self) -> socket.socket:
        if self.family == 'rfcomm':
            return socket.socket(socket.AF_BLUETOOTH, socket.SOCK_STREAM, socket.BTPROTO_RFCOMM)
        return socket.socket(socket.AF_INET, socket.SOCK_STREAM)

    def listen(self) -> SocketListener:
        server = self._new_socket()
        try:
            if self.family == 'tcp':
                server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                server.bind((self.host, self.port))
            else:
                server.bind((self.host if self.host != '0.0.0.0' else '00:00:00:00:00:00', self.port))
            server.listen(1)
        except OSError:
            server.close()
            raise
        return SocketListener(server)

    def connect(self, peer: str) -> Link:
        """Connect to a peer.

        Args:
            peer: 'host:port' or 'host' for tcp, bdaddr or 'bdaddr@channel' for rfcomm

        Raises:
            UnreachableError: If the connection cannot be established
        """
        address = self.parse_peer(peer)
        sock = self._new_socket()
        sock.settimeout(self.timeout)
        try:
            sock.connect(address)
        except OSError as exc:
            sock.close()
            raise UnreachableError(f"Cannot connect to {peer}: {exc}") from exc
        sock.settimeout(None)
        return SocketLink(sock, peer)

    def parse_peer(self, peer: str) -> Tuple[str, int]:
        if self.family == 'rfcomm':
            addr, _, channel = peer.partition('@')
            if not channel:
                return addr, self.port
            try:
                return addr, int(channel)
            except ValueError:
                raise UnreachableError(f"Invalid peer address: {peer}") from None
        host, sep, port = peer.rpartition(':')
        if not sep:
            return peer, self.port
        try:
            return host, int(port)
        except ValueError:
            raise UnreachableError(f"Invalid peer address: {peer}") from None


class SerialListener:
    """Yields the configured port once, as soon as it can be opened."""

    def __init__(self, port: str, baud_rate: int):
        self.port = port
        self.baud_rate = baud_rate
        self._closed = threading.Event()
        self._served = False

    def accept(self) -> Link:
        if self._closed.is_set() or self._served:
            raise LinkClosedError("Listener closed")
        try:
            ser = serial.serial_for_url(self.port, baudrate=self.baud_rate, timeout=None)
        except serial.SerialException as exc:
            raise UnreachableError(f"Cannot open {self.port}: {exc}") from exc
        self._served = True
        return SerialLink(ser, self.port)

    def close(self) -> None:
        self._closed.set()

    def __iter__(self) -> Iterator[Link]:
        while not self._closed.is_set() and not self._served:
            try:
                yield self.accept()
            except LinkClosedError:
                return


class SerialTransport:
    """Serial ports and pyserial URLs."""

    def __init__(self, port: Optional[str] = None, baud_rate: int = BAUD_RATE):
        self.port = port
        self.baud_rate = baud_rate

    def listen(self) -> SerialListener:
        port = self.port or find_port()
        if port is None:
            raise UnreachableError("No serial port found")
        return SerialListener(port, self.baud_rate)

    def connect(self, peer: str) -> Link:
        try:
            ser = serial.serial_for_url(peer, baudrate=self.baud_rate, timeout=None)
        except (serial.SerialException, ValueError) as exc:
            raise UnreachableError(f"Cannot open {peer}: {exc}") from exc
        return SerialLink(ser, peer)


def _format_address(addr) -> str:
    if isinstance(addr, tuple):
        return ':'.join(str(part) for part in addr)
    return str(addr)


def add_transport_arguments(parser: argparse.ArgumentParser) -> None:
    """Register the transport options shared by both command line tools."""
    parser.add_argument('--transport', choices=['tcp', 'rfcomm', 'serial'], default='tcp',
                        help='Link type (default: tcp)')
    parser.add_argument('--host', type=str, default='0.0.0.0',
                        help='Local address to listen on (default: 0.0.0.0)')
    parser.add_argument('--listen-port', type=int,
                        help=f'TCP port or RFCOMM channel (default: {DEFAULT_TCP_PORT} / {DEFAULT_RFCOMM_CHANNEL})')
    parser.add_argument('--port', type=str,
                        help='Serial port or pyserial URL (auto-detect if not specified)')
    parser.add_argument('--baud-rate', type=int, default=BAUD_RATE,
                        help=f'Serial baud rate (default: {BAUD_RATE})')


def transport_from_args(args: argparse.Namespace) -> Transport:
    if args.transport == 'serial':
        return SerialTransport(port=args.port, baud_rate=args.baud_rate)
    return SocketTransport(family=args.transport, host=args.host, port=args.listen_port)
