"""Controller application.

Dials a camera, shows its frames in a letterboxed window and sends
orientation commands back with the arrow or w/a/s/d keys.
"""
import argparse
import time

from wandlink.config import (
    CMD_PAN_LEFT, CMD_PAN_RIGHT, CMD_TILT_DOWN, CMD_TILT_UP, PREVIEW_HEIGHT, PREVIEW_WIDTH,
)
from wandlink.session import (
    Connected, Connecting, ConnectedState, Disconnected, IdleState, LinkLost, Session,
    SessionWarning, Toast,
)
from wandlink.settings import DEFAULT_SESSION_SETTINGS, SessionSettings
from wandlink.transport import add_transport_arguments, transport_from_args

from .display import WindowSink
from .jpeg_decoder import JPEGDecoder

# cv2.waitKeyEx arrow codes differ between the GTK and Win32 backends
KEY_COMMANDS = {
    ord('w'): CMD_TILT_UP,
    ord('s'): CMD_TILT_DOWN,
    ord('a'): CMD_PAN_LEFT,
    ord('d'): CMD_PAN_RIGHT,
    65362: CMD_TILT_UP,
    65364: CMD_TILT_DOWN,
    65361: CMD_PAN_LEFT,
    65363: CMD_PAN_RIGHT,
    2490368: CMD_TILT_UP,
    2621440: CMD_TILT_DOWN,
    2424832: CMD_PAN_LEFT,
    2555904: CMD_PAN_RIGHT,
}


def key_command(key: int):
    """Map a waitKeyEx code to a CONTROLLER_CMD payload, or None."""
    if key == -1:
        return None
    return KEY_COMMANDS.get(key) or KEY_COMMANDS.get(key & 0xFF)


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='Wand controller: display frames from a camera')
    parser.add_argument('peer', type=str,
                        help="Camera address: 'host:port' (tcp), bdaddr (rfcomm) or port/URL (serial)")
    add_transport_arguments(parser)
    parser.add_argument('--preview-width', type=int, default=PREVIEW_WIDTH,
                        help=f'Display area width (default: {PREVIEW_WIDTH})')
    parser.add_argument('--preview-height', type=int, default=PREVIEW_HEIGHT,
                        help=f'Display area height (default: {PREVIEW_HEIGHT})')
    parser.add_argument('--render-interval-ms', type=int, default=DEFAULT_SESSION_SETTINGS.render_interval_ms,
                        help='Display pump period (default: %(default)s)')
    parser.add_argument('--queue-capacity', type=int, default=DEFAULT_SESSION_SETTINGS.queue_capacity,
                        help='Decoded frames buffered for display (default: %(default)s)')
    return parser.parse_args()


def print_event(event) -> None:
    if isinstance(event, Connecting):
        print(f"Connecting to {event.peer}...")
    elif isinstance(event, Connected):
        print(f"Connected to {event.peer_name} as {event.role.value}")
    elif isinstance(event, LinkLost):
        print(f"Connection lost: {event.cause}")
    elif isinstance(event, Disconnected):
        print("Disconnected")
    elif isinstance(event, Toast):
        print(event.text)
    elif isinstance(event, SessionWarning):
        print(f"Warning: {event.text}")


def main():
    """Main application loop."""
    args = parse_args()

    print("=" * 60)
    print("Wand Controller")
    print("=" * 60)
    print(f"Transport: {args.transport.upper()}")
    print(f"Peer: {args.peer}")
    print(f"Preview: {args.preview_width}x{args.preview_height}")

    settings = SessionSettings(
        render_interval_ms=args.render_interval_ms,
        queue_capacity=args.queue_capacity,
        auto_relisten_on_loss=False,
    )
    sink = WindowSink(args.preview_width, args.preview_height)
    session = Session(transport_from_args(args), sink=sink, decoder=JPEGDecoder(),
                      settings=settings, on_event=print_event)

    print("=" * 60)
    print("Press 'q' in display window or Ctrl+C to quit, arrows or w/a/s/d to steer")
    print("=" * 60)

    start_time = time.time()
    was_connected = False
    stats = None
    try:
        session.start()
        session.start_as_controller(args.peer)
        while True:
            key = sink.show(1)
            if key != -1 and (key & 0xFF) == ord('q'):
                print("\nQuit requested by user")
                break
            command = key_command(key)
            if command is not None:
                session.send_command(command)

            state = session.state
            if isinstance(state, ConnectedState):
                was_connected = True
                stats = session.controller or stats
            elif isinstance(state, IdleState) and (was_connected or time.time() - start_time > 1.0):
                # Connection failed or was lost
                break
            time.sleep(0.005)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
    finally:
        print("\nCleaning up...")
        session.close()
        sink.close()

        total_time = time.time() - start_time
        print("\n" + "=" * 60)
        print("Session Statistics")
        print("=" * 60)
        if stats is not None:
            avg_fps = stats.frames_rendered / total_time if total_time > 0 else 0
            print(f"Images received: {stats.images_accepted}")
            print(f"Decode failures: {stats.decode_failures}")
            print(f"Frames dropped (queue full): {stats.frames.dropped}")
            print(f"Frames displayed: {stats.frames_rendered}")
            print(f"Average FPS: {avg_fps:.2f}")
        print(f"Total time: {total_time:.2f} seconds")
        print("=" * 60)


if __name__ == '__main__':
    main()
