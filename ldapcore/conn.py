"""A multiplexed LDAP connection: message IDs, request dispatch and timeouts."""

from __future__ import annotations

import itertools
import logging
import queue
import socket
import ssl
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from urllib.parse import SplitResult, urlsplit

from .ber import Packet, read_packet
from .errors import ERROR_NETWORK, LDAPError, new_error

DEFAULT_LDAP_PORT = 389
DEFAULT_LDAPS_PORT = 636
DEFAULT_LDAPI_PATH = "/var/run/slapd/ldapi"
# Seconds allowed for establishing a connection in dial_url.
DEFAULT_TIMEOUT = 60.0

logger = logging.getLogger("ldapcore")

_CLOSED = object()


class Debugger:
    """Switchable debug output written to the ``ldapcore`` logger."""

    def __init__(self, enabled: bool = False) -> None:
        self.enabled = bool(enabled)

    def __bool__(self) -> bool:
        return self.enabled

    def enable(self, flag: bool) -> None:
        """Turn debug output on or off."""
        self.enabled = bool(flag)

    def printf(self, fmt: str, *args: Any) -> None:
        """Log a %-style formatted message when enabled."""
        if self.enabled:
            logger.debug(fmt, *args)

    def print_packet(self, packet: Packet) -> None:
        """Log a dump of a packet when enabled."""
        if self.enabled:
            logger.debug("%s", packet)


@dataclass
class PacketResponse:
    """A packet read from the server, or the error met while waiting for one."""

    packet: Packet | None = None
    error: BaseException | None = None

    def read_packet(self) -> Packet:
        """Return the packet, or raise the error that took its place."""
        if self.error is not None:
            raise self.error
        if self.packet is None:
            raise new_error(ERROR_NETWORK, "ldap: could not retrieve response")
        return self.packet


class MessageContext:
    """The client side of one outstanding request: its ID and its responses."""

    def __init__(self, message_id: int) -> None:
        self.id = message_id
        self.done = threading.Event()
        self._responses: queue.Queue[Any] = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._timer: threading.Timer | None = None

    def receive(self, timeout: float | None = None) -> PacketResponse | None:
        """Wait for the next response; None means no more will come.

        Raises TimeoutError if ``timeout`` seconds pass without one.
        """
        try:
            item = self._responses.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError(f"no response for message {self.id}") from None
        if item is _CLOSED:
            self._responses.put(_CLOSED)
            return None
        return item

    def _deliver(self, response: PacketResponse) -> None:
        with self._lock:
            if self._closed or self.done.is_set():
                return
            self._responses.put(response)

    def _close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._responses.put(_CLOSED)

    def _cancel_timer(self) -> None:
        timer = self._timer
        if timer is not None:
            timer.cancel()


class _TransportReader:
    """A buffered ``read(n)`` view of a transport's ``recv``."""

    def __init__(self, transport: Any) -> None:
        self._transport = transport
        self._buffer = bytearray()

    def read(self, size: int) -> bytes:
        if not self._buffer:
            chunk = self._transport.recv(max(size, 4096))
            if not chunk:
                return b""
            self._buffer += chunk
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data


class Connection:
    """An LDAP connection over a transport offering ``recv``, ``sendall`` and ``close``."""

    def __init__(self, transport: Any, is_tls: bool = False) -> None:
        self.is_tls = is_tls
        self.debug = Debugger()
        self._transport = transport
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._contexts: dict[int, MessageContext] = {}
        self._ids = itertools.count(1)
        self._outstanding = 0
        self._starting_tls = False
        self._closing = False
        self._closed = threading.Event()
        self._close_error: BaseException | None = None
        self._timeout = 0.0
        self._reader: threading.Thread | None = None

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def start(self) -> None:
        """Start the thread that reads responses from the server."""
        self._reader = threading.Thread(target=self._read_loop, name="ldap-reader", daemon=True)
        self._reader.start()

    def is_closing(self) -> bool:
        """Tell whether the connection is closing or closed."""
        return self._closing

    def close(self) -> None:
        """Close the connection, ending every outstanding request."""
        with self._lock:
            first = not self._closing
            self._closing = True
            contexts = list(self._contexts.values())
            if first:
                self._contexts.clear()
        if not first:
            self._closed.wait()
            return

        error = self._close_error
        for context in contexts:
            if error is not None:
                context._deliver(PacketResponse(error=error))
            self.debug.printf("Closing channel for MessageID %s", context.id)
            context._cancel_timer()
            context._close()

        self.debug.printf("Closing network connection")
        if isinstance(self._transport, socket.socket):
            try:
                self._transport.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        try:
            self._transport.close()
        except Exception as exc:  # noqa: BLE001 - closing must always finish
            logger.warning("%s", exc)
        self._closed.set()

    def set_timeout(self, timeout: float | timedelta) -> None:
        """Set how long after sending a request it times out; zero disables."""
        if isinstance(timeout, timedelta):
            timeout = timeout.total_seconds()
        self._timeout = float(timeout)

    def next_message_id(self) -> int:
        """Return the next free message ID, or 0 once the connection is closed."""
        with self._lock:
            if self._closed.is_set():
                return 0
            return next(self._ids)

    def send_message(self, packet: Packet) -> MessageContext:
        """Send an LDAP message and return the context its responses arrive on."""
        return self._send(packet, start_tls=False)

    def finish_message(self, context: MessageContext) -> None:
        """Declare that no more responses to a request are wanted."""
        context.done.set()
        context._cancel_timer()
        if self._closing:
            return
        with self._lock:
            self._outstanding -= 1
            self._starting_tls = False
            if self._contexts.get(context.id) is context:
                del self._contexts[context.id]
        self.debug.printf("Finished message %s", context.id)
        context._close()

    def _send(self, packet: Packet, start_tls: bool) -> MessageContext:
        if self._closing:
            raise new_error(ERROR_NETWORK, "ldap: connection closed")
        message_id = packet.children[0].value
        context = MessageContext(message_id)
        with self._lock:
            if self._closing:
                raise new_error(ERROR_NETWORK, "ldap: connection closed")
            if self._starting_tls:
                raise new_error(ERROR_NETWORK, "ldap: connection is in startls phase")
            if start_tls:
                if self._outstanding:
                    raise new_error(
                        ERROR_NETWORK, "ldap: cannot StartTLS with outstanding requests"
                    )
                self._starting_tls = True
            self._outstanding += 1
            self._contexts[message_id] = context

        self.debug.printf("Sending message %s", message_id)
        try:
            with self._write_lock:
                self._transport.sendall(packet.to_bytes())
        except Exception as exc:  # noqa: BLE001 - reported through the context
            self.debug.printf("Error Sending Message: %s", exc)
            with self._lock:
                if self._contexts.get(message_id) is context:
                    del self._contexts[message_id]
            context._deliver(PacketResponse(error=ConnectionError(f"unable to send request: {exc}")))
            context._close()
            return context

        if self._timeout > 0:
            timer = threading.Timer(self._timeout, self._on_timeout, args=(context,))
            timer.daemon = True
            context._timer = timer
            timer.start()
        return context

    def _on_timeout(self, context: MessageContext) -> None:
        with self._lock:
            if self._contexts.get(context.id) is not context:
                return
            del self._contexts[context.id]
        self.debug.printf("Receiving message timeout for %s", context.id)
        context._deliver(
            PacketResponse(error=new_error(ERROR_NETWORK, "ldap: connection timed out"))
        )
        context._close()

    def _read_loop(self) -> None:
        stream = _TransportReader(self._transport)
        clean_stop = False
        try:
            while not clean_stop:
                try:
                    packet = read_packet(stream)
                except Exception as exc:  # noqa: BLE001 - any read failure ends the connection
                    if not self._closing:
                        self._close_error = ConnectionError(
                            f"unable to read LDAP response packet: {exc}"
                        )
                        self.debug.printf("reader error: %s", exc)
                    return
                if not packet.children:
                    self.debug.printf("Received bad ldap packet")
                    continue
                message_id = packet.children[0].value
                with self._lock:
                    if self._starting_tls:
                        clean_stop = True
                    context = self._contexts.get(message_id)
                if self._closing:
                    return
                self.debug.printf("Receiving message %s", message_id)
                if context is not None:
                    context._deliver(PacketResponse(packet=packet))
                else:
                    logger.warning(
                        "Received unexpected message %s, %s", message_id, self._closing
                    )
                    self.debug.print_packet(packet)
            self.debug.printf("reader clean stopping (without closing the connection)")
        finally:
            if not clean_stop:
                self.close()


def _connect_tcp(host: str, port: int, timeout: float) -> socket.socket:
    sock = socket.create_connection((host, port), timeout=timeout)
    sock.settimeout(None)
    return sock


def _dial(url: SplitResult, timeout: float, ssl_context: ssl.SSLContext | None) -> socket.socket:
    if url.scheme == "ldapi":
        path = url.path if url.path not in ("", "/") else DEFAULT_LDAPI_PATH
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.settimeout(timeout)
            sock.connect(path)
            sock.settimeout(None)
        except OSError:
            sock.close()
            raise
        return sock

    try:
        host, port = url.hostname or "", url.port
    except ValueError:
        host, port = url.netloc, None

    if url.scheme == "ldap":
        return _connect_tcp(host, port or DEFAULT_LDAP_PORT, timeout)
    if url.scheme == "ldaps":
        raw = _connect_tcp(host, port or DEFAULT_LDAPS_PORT, timeout)
        context = ssl_context or ssl.create_default_context()
        try:
            return context.wrap_socket(raw, server_hostname=host or None)
        except (OSError, ValueError):
            raw.close()
            raise
    raise ValueError(f"Unknown scheme '{url.scheme}'")


def dial_url(
    addr: str,
    timeout: float | None = None,
    ssl_context: ssl.SSLContext | None = None,
) -> Connection:
    """Connect to an ``ldap://``, ``ldaps://`` or ``ldapi://`` URL and start the connection."""
    connect_timeout = DEFAULT_TIMEOUT if timeout is None else timeout
    try:
        url = urlsplit(addr)
        sock = _dial(url, connect_timeout, ssl_context)
    except LDAPError:
        raise
    except (OSError, ValueError) as exc:
        raise new_error(ERROR_NETWORK, exc) from exc
    conn = Connection(sock, is_tls=url.scheme == "ldaps")
    conn.start()
    return conn