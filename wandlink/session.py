"""Connection-scoped session: role, link and permit behind one inbox.

Everything that changes session state runs on the session thread. Link
threads, connect/accept threads, the capture callback and the decode worker
only post messages into the inbox, and every message that belongs to a
connection carries that connection's generation so late arrivals from a
torn-down link are ignored.

State machine::

    Idle       --start_as_controller-->  Connecting(peer, CONTROLLER)
    Idle       --listen_as_camera----->  Listening
    Listening  --inbound link-------->  Connecting(remote, CAMERA) --> Connected
    Connecting --link up------------->  Connected(role, peer, permit)
    Connecting --connect failed------>  Idle
    Connected  --disconnect---------->  Idle
    Connected  --link lost----------->  Idle (--> Listening if camera and auto_relisten_on_loss)
"""
from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from .camera_role import CameraRole, ImageSource
from .controller_role import BitmapDecoder, ControllerRole, DecodeCompleted, ImageSink
from .errors import LinkClosedError, LinkError, PermitViolationError
from .link import Link, LinkIO
from .protocol import CameraParameters, Packet, PacketType, get_frame_type_name
from .settings import DEFAULT_SESSION_SETTINGS, SessionSettings
from .timer import Timer
from .transport import Listener, Transport


class Role(Enum):
    UNASSIGNED = 'unassigned'
    CAMERA = 'camera'
    CONTROLLER = 'controller'


# ---------------------------------------------------------------------------
# Session states
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class IdleState:
    role: Role = Role.UNASSIGNED


@dataclass(frozen=True)
class ListeningState:
    role: Role = Role.UNASSIGNED


@dataclass(frozen=True)
class ConnectingState:
    peer: str
    role: Role


@dataclass(frozen=True)
class ConnectedState:
    role: Role
    peer_name: str
    permit: bool = False
    """Camera only: True while one IMAGE may be sent."""


SessionState = Union[IdleState, ListeningState, ConnectingState, ConnectedState]


# ---------------------------------------------------------------------------
# Events delivered to the host
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Listening:
    pass


@dataclass(frozen=True)
class Connecting:
    peer: str


@dataclass(frozen=True)
class Connected:
    peer_name: str
    role: Role


@dataclass(frozen=True)
class Disconnected:
    pass


@dataclass(frozen=True)
class LinkLost:
    cause: BaseException


@dataclass(frozen=True)
class Toast:
    text: str


@dataclass(frozen=True)
class SessionWarning:
    text: str


SessionEvent = Union[Listening, Connecting, Connected, Disconnected, LinkLost, Toast, SessionWarning]


# ---------------------------------------------------------------------------
# Inbox messages
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class _StartController:
    peer: str


@dataclass(frozen=True)
class _Listen:
    pass


@dataclass(frozen=True)
class _Disconnect:
    pass


@dataclass(frozen=True)
class _SendCommand:
    payload: bytes


@dataclass(frozen=True)
class _Stop:
    pass


@dataclass(frozen=True)
class _LinkUp:
    generation: int
    link: Link


@dataclass(frozen=True)
class _ConnectFailed:
    generation: int
    error: BaseException


@dataclass(frozen=True)
class _ListenFailed:
    generation: int
    error: BaseException


@dataclass(frozen=True)
class _PacketReceived:
    generation: int
    packet: Packet


@dataclass(frozen=True)
class _LinkLost:
    generation: int
    cause: BaseException


@dataclass(frozen=True)
class _FrameReady:
    pass


_FRAME_READY = _FrameReady()


class Session:
    """Role-aware, half-duplex session over one link at a time."""

    def __init__(self, transport: Transport, *,
                 source: Optional[ImageSource] = None,
                 sink: Optional[ImageSink] = None,
                 decoder: Optional[BitmapDecoder] = None,
                 settings: SessionSettings = DEFAULT_SESSION_SETTINGS,
                 on_event: Optional[Callable[[SessionEvent], None]] = None,
                 on_command: Optional[Callable[[bytes], None]] = None,
                 timer: Optional[Timer] = None):
        """Initialize session.

        Args:
            transport: Produces inbound and outbound links
            source: Encoded frame producer, required to act as camera
            sink: Display target, required to act as controller
            decoder: JPEG to bitmap decoder, required with a sink
            settings: Flow control and link tuning
            on_event: Receives SessionEvent objects on the session thread
            on_command: Receives CONTROLLER_CMD payloads while acting as camera
            timer: Scheduler for the display pump
        """
        self._transport = transport
        self._sink = sink
        if sink is not None and decoder is None:
            raise ValueError("An image sink needs a decoder")
        self._decoder = decoder
        self.settings = settings
        self._on_event = on_event
        self._timer = timer or Timer()
        self._inbox: "queue.Queue[Any]" = queue.Queue()
        self._state: SessionState = IdleState()
        self._generation = 0
        self._link_io: Optional[LinkIO] = None
        self._listener: Optional[Listener] = None
        self._controller: Optional[ControllerRole] = None
        self._camera: Optional[CameraRole] = None
        if source is not None:
            self._camera = CameraRole(
                source, self._frame_ready,
                max_payload_size=settings.max_payload_bytes,
                on_command=on_command,
            )
        self._thread = threading.Thread(target=self._run, name="Session", daemon=True)
        self._handlers: Dict[type, Callable[[Any], None]] = {
            _StartController: self._handle_start_controller,
            _Listen: self._handle_listen,
            _Disconnect: self._handle_disconnect,
            _SendCommand: self._handle_send_command,
            _LinkUp: self._handle_link_up,
            _ConnectFailed: self._handle_connect_failed,
            _ListenFailed: self._handle_listen_failed,
            _PacketReceived: self._handle_packet,
            _LinkLost: self._handle_link_lost,
            _FrameReady: self._handle_frame_ready,
            DecodeCompleted: self._handle_decode_completed,
        }

    # ------------------------------------------------------------------
    # Public API (any thread)
    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def role(self) -> Role:
        return self._state.role

    @property
    def camera(self) -> Optional[CameraRole]:
        return self._camera

    @property
    def controller(self) -> Optional[ControllerRole]:
        return self._controller

    @property
    def link_io(self) -> Optional[LinkIO]:
        return self._link_io

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> None:
        self._thread.start()

    def close(self, timeout: float = 5.0) -> None:
        """Tear down any connection and stop the session thread."""
        if self._thread.is_alive():
            self._post(_Stop())
            self._thread.join(timeout=timeout)

    def start_as_controller(self, peer: str) -> None:
        """Become controller and dial *peer*."""
        self._post(_StartController(peer))

    def listen_as_camera(self) -> None:
        """Become camera once the next inbound link is accepted."""
        self._post(_Listen())

    def disconnect(self) -> None:
        self._post(_Disconnect())

    def send_command(self, payload: bytes) -> None:
        """Send an opaque CONTROLLER_CMD to the camera."""
        self._post(_SendCommand(bytes(payload)))

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # ------------------------------------------------------------------
    # Session thread
    # ------------------------------------------------------------------
    def _post(self, message: Any) -> None:
        self._inbox.put(message)

    def _frame_ready(self) -> None:
        self._post(_FRAME_READY)

    def _notify(self, event: SessionEvent) -> None:
        if self._on_event is not None:
            self._on_event(event)

    def _run(self) -> None:
        while True:
            message = self._inbox.get()
            if isinstance(message, _Stop):
                self._teardown_link()
                self._close_listener()
                self._generation += 1
                self._state = IdleState()
                return
            try:
                self._handlers[type(message)](message)
            except Exception as exc:
                # Host callbacks run on this thread
                print(f"Warning: session handler for {type(message).__name__} failed: {exc!r}")

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _handle_start_controller(self, message: _StartController) -> None:
        if isinstance(self._state, (ConnectingState, ConnectedState)):
            return
        if self._sink is None:
            self._notify(SessionWarning("Cannot act as controller without an image sink"))
            return
        self._close_listener()
        self._generation += 1
        generation = self._generation
        self._state = ConnectingState(message.peer, Role.CONTROLLER)
        self._notify(Connecting(message.peer))
        threading.Thread(
            target=self._connect_worker, args=(message.peer, generation),
            name="SessionConnect", daemon=True,
        ).start()

    def _connect_worker(self, peer: str, generation: int) -> None:
        try:
            link = self._transport.connect(peer)
        except (LinkError, OSError) as exc:
            self._post(_ConnectFailed(generation, exc))
            return
        self._post(_LinkUp(generation, link))

    def _handle_listen(self, message: _Listen) -> None:
        if not isinstance(self._state, IdleState):
            return
        if self._camera is None:
            self._notify(SessionWarning("Cannot act as camera without an image source"))
            return
        self._enter_listening()

    def _enter_listening(self) -> None:
        self._generation += 1
        generation = self._generation
        try:
            listener = self._transport.listen()
        except (LinkError, OSError) as exc:
            self._state = IdleState()
            self._notify(Toast(f"Cannot listen for connections: {exc}"))
            return
        self._listener = listener
        self._state = ListeningState()
        self._notify(Listening())
        threading.Thread(
            target=self._accept_worker, args=(listener, generation),
            name="SessionAccept", daemon=True,
        ).start()

    def _accept_worker(self, listener: Listener, generation: int) -> None:
        try:
            link = listener.accept()
        except LinkClosedError:
            return
        except (LinkError, OSError) as exc:
            self._post(_ListenFailed(generation, exc))
            return
        self._post(_LinkUp(generation, link))

    def _close_listener(self) -> None:
        if self._listener is not None:
            self._listener.close()
            self._listener = None

    def _handle_link_up(self, message: _LinkUp) -> None:
        link = message.link
        state = self._state
        if not self._is_current(message.generation):
            link.close()
            return
        if isinstance(state, ListeningState):
            self._close_listener()
            role = Role.CAMERA
            self._state = ConnectingState(link.name, role)
            self._notify(Connecting(link.name))
        elif isinstance(state, ConnectingState):
            role = state.role
        else:
            link.close()
            return

        generation = self._generation
        link_io = LinkIO(
            link,
            on_packet=lambda packet: self._post(_PacketReceived(generation, packet)),
            on_lost=lambda cause: self._post(_LinkLost(generation, cause)),
            max_payload_size=self.settings.max_payload_bytes,
            outbound_capacity=self.settings.outbound_capacity,
            join_timeout=self.settings.join_timeout,
        )
        self._link_io = link_io
        self._state = ConnectedState(role, link.name, permit=role is Role.CAMERA)
        link_io.start()

        if role is Role.CAMERA:
            self._camera.attach(link_io.send)
            self._camera.send_parameters()
        else:
            controller = ControllerRole(
                self._sink, self._decoder, self._post,
                queue_capacity=self.settings.queue_capacity,
                render_interval=self.settings.render_interval,
                timer=self._timer,
                join_timeout=self.settings.join_timeout,
            )
            self._controller = controller
            controller.attach(link_io.send)
        self._notify(Connected(link.name, role))
        self._notify(Toast(f"Connected to {link.name}"))

    def _handle_connect_failed(self, message: _ConnectFailed) -> None:
        if not self._is_current(message.generation) or not isinstance(self._state, ConnectingState):
            return
        self._generation += 1
        self._state = IdleState()
        self._notify(Toast(f"Unable to connect device: {message.error}"))
        self._notify(Disconnected())

    def _handle_listen_failed(self, message: _ListenFailed) -> None:
        if not self._is_current(message.generation) or not isinstance(self._state, ListeningState):
            return
        self._close_listener()
        self._generation += 1
        self._state = IdleState()
        self._notify(Toast(f"Listening failed: {message.error}"))
        self._notify(Disconnected())

    def _handle_packet(self, message: _PacketReceived) -> None:
        state = self._state
        if not self._is_current(message.generation) or not isinstance(state, ConnectedState):
            return
        packet = message.packet
        if state.role is Role.CAMERA:
            self._camera_packet(state, packet)
        else:
            self._controller_packet(packet)

    def _camera_packet(self, state: ConnectedState, packet: Packet) -> None:
        if packet.type == PacketType.IMAGE_RECEIVED:
            self._state = replace(state, permit=True)
            self._try_send_frame()
        elif packet.type == PacketType.CONTROLLER_CMD:
            self._camera.handle_command(packet.payload)
        else:
            self._notify(SessionWarning(f"Unexpected {get_frame_type_name(packet.type)} packet for camera, dropped"))

    def _controller_packet(self, packet: Packet) -> None:
        controller = self._controller
        if packet.type == PacketType.CAMERA_PARAMETERS:
            try:
                parameters = CameraParameters.unpack(packet.payload)
            except ValueError as exc:
                self._notify(SessionWarning(f"Invalid camera parameters: {exc}"))
                return
            controller.on_parameters(parameters)
        elif packet.type == PacketType.IMAGE:
            try:
                controller.on_image(packet.payload)
            except PermitViolationError as exc:
                self._notify(SessionWarning(str(exc)))
        else:
            self._notify(SessionWarning(f"Unexpected {get_frame_type_name(packet.type)} packet for controller, dropped"))

    def _handle_frame_ready(self, message: _FrameReady) -> None:
        self._try_send_frame()

    def _try_send_frame(self) -> None:
        state = self._state
        if not isinstance(state, ConnectedState) or state.role is not Role.CAMERA or not state.permit:
            return
        if self._camera.send_frame():
            self._state = replace(state, permit=False)

    def _handle_decode_completed(self, message: DecodeCompleted) -> None:
        if message.role is not self._controller or not isinstance(self._state, ConnectedState):
            return
        message.role.acknowledge()

    def _handle_send_command(self, message: _SendCommand) -> None:
        state = self._state
        if not isinstance(state, ConnectedState) or state.role is not Role.CONTROLLER:
            self._notify(SessionWarning("Commands can only be sent while connected as controller"))
            return
        self._link_io.send(Packet(PacketType.CONTROLLER_CMD, message.payload))

    def _handle_link_lost(self, message: _LinkLost) -> None:
        state = self._state
        if not self._is_current(message.generation) or not isinstance(state, ConnectedState):
            return
        self._teardown_link()
        self._generation += 1
        self._state = IdleState()
        self._notify(LinkLost(message.cause))
        self._notify(Toast("Device connection was lost"))
        if self.settings.auto_relisten_on_loss and state.role is Role.CAMERA:
            self._enter_listening()

    def _handle_disconnect(self, message: _Disconnect) -> None:
        if isinstance(self._state, IdleState):
            return
        self._teardown_link()
        self._close_listener()
        self._generation += 1
        self._state = IdleState()
        self._notify(Disconnected())

    def _teardown_link(self) -> None:
        if self._controller is not None:
            self._controller.detach()
            self._controller = None
        if self._camera is not None:
            self._camera.detach()
        if self._link_io is not None:
            self._link_io.close()
            self._link_io = None
