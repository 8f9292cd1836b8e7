"""Camera application.

Opens the local camera, waits for a controller to connect and streams JPEG
frames to it, one frame per acknowledgement.
"""
import argparse
import time

import cv2

from wandlink.config import (
    DEFAULT_HEIGHT, DEFAULT_JPEG_QUALITY, DEFAULT_WIDTH, WINDOW_TITLE_CAMERA,
)
from wandlink.session import (
    Connected, Connecting, Disconnected, LinkLost, Listening, Session, SessionWarning, Toast,
)
from wandlink.settings import DEFAULT_SESSION_SETTINGS, SessionSettings
from wandlink.transport import add_transport_arguments, transport_from_args

from .camera_capture import CameraSource


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='Wand camera: stream frames to a controller')
    add_transport_arguments(parser)
    parser.add_argument('--camera', type=int, default=0, help='Camera index (default: 0)')
    parser.add_argument('--width', type=int, default=DEFAULT_WIDTH, help=f'Image width (default: {DEFAULT_WIDTH})')
    parser.add_argument('--height', type=int, default=DEFAULT_HEIGHT, help=f'Image height (default: {DEFAULT_HEIGHT})')
    parser.add_argument('--jpeg-quality', type=int, default=DEFAULT_JPEG_QUALITY,
                        help=f'JPEG quality 1-100 (default: {DEFAULT_JPEG_QUALITY})')
    parser.add_argument('--fps', type=float, default=15.0, help='Capture rate limit (default: 15.0)')
    parser.add_argument('--max-payload-mb', type=int,
                        default=DEFAULT_SESSION_SETTINGS.max_payload_bytes // 2**20,
                        help='Largest frame in MiB (default: %(default)s)')
    parser.add_argument('--no-relisten', action='store_true',
                        help='Stay idle after a lost connection instead of listening again')
    parser.add_argument('--preview', action='store_true', help='Show preview window')
    return parser.parse_args()


def print_event(event) -> None:
    if isinstance(event, Listening):
        print("Waiting for a controller to connect...")
    elif isinstance(event, Connecting):
        print(f"Connecting: {event.peer}")
    elif isinstance(event, Connected):
        print(f"Connected to {event.peer_name} as {event.role.value}")
    elif isinstance(event, LinkLost):
        print(f"Connection lost: {event.cause}")
    elif isinstance(event, Disconnected):
        print("Disconnected")
    elif isinstance(event, Toast):
        pass
    elif isinstance(event, SessionWarning):
        print(f"Warning: {event.text}")


def print_command(payload: bytes) -> None:
    print(f"Controller command: {payload!r}")


def main():
    """Main application loop."""
    args = parse_args()

    print("=" * 60)
    print("Wand Camera")
    print("=" * 60)
    print(f"Transport: {args.transport.upper()}")
    print(f"Resolution: {args.width}x{args.height}")
    print(f"JPEG Quality: {args.jpeg_quality}")

    settings = SessionSettings(
        max_payload_bytes=args.max_payload_mb * 2**20,
        auto_relisten_on_loss=not args.no_relisten,
    )
    source = CameraSource(camera_index=args.camera, width=args.width, height=args.height,
                          quality=args.jpeg_quality, fps=args.fps,
                          max_size=settings.max_payload_bytes)
    if not source.open():
        print("Failed to open camera")
        return

    session = Session(transport_from_args(args), source=source, settings=settings,
                      on_event=print_event, on_command=print_command)

    print("=" * 60)
    print("Press 'q' in preview window or Ctrl+C to quit")
    print("=" * 60)

    start_time = time.time()
    try:
        session.start()
        source.start()
        session.listen_as_camera()
        while session.is_running:
            if args.preview:
                frame = source.preview()
                if frame is not None:
                    cv2.imshow(WINDOW_TITLE_CAMERA, frame)
                if cv2.waitKey(30) & 0xFF == ord('q'):
                    print("\nQuit requested by user")
                    break
            else:
                time.sleep(0.2)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
    finally:
        print("\nCleaning up...")
        session.close()
        source.close()
        if args.preview:
            cv2.destroyAllWindows()

        camera = session.camera
        total_time = time.time() - start_time
        avg_fps = camera.frames_sent / total_time if total_time > 0 else 0
        print("\n" + "=" * 60)
        print("Session Statistics")
        print("=" * 60)
        print(f"Frames captured: {source.frames_captured}")
        print(f"Frames sent: {camera.frames_sent}")
        print(f"Frames dropped (stale): {camera.frames_dropped}")
        print(f"Capture errors: {source.errors}")
        print(f"Total time: {total_time:.2f} seconds")
        print(f"Average FPS: {avg_fps:.2f}")
        print("=" * 60)


if __name__ == '__main__':
    main()
