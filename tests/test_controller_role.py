import queue
import threading
import unittest

from wandlink.controller_role import ControllerRole, DecodeCompleted, compute_geometry
from wandlink.errors import DecodeError, PermitViolationError
from wandlink.protocol import CameraParameters, Packet, PacketType

WAIT = 5.0


class FakeSink:
    def __init__(self, width: int = 1000, height: int = 500) -> None:
        self.size = (width, height)
        self.geometry = None
        self.rendered = []

    def preview_size(self):
        return self.size

    def set_geometry(self, width: int, height: int) -> None:
        self.geometry = (width, height)

    def render(self, bitmap, offset_x: int, offset_y: int) -> None:
        self.rendered.append((bitmap, offset_x, offset_y))


class FakeDecoder:
    """Returns the payload as the bitmap, optionally waiting for a gate."""

    def __init__(self) -> None:
        self.gate = threading.Event()
        self.gate.set()
        self.sizes = []

    def decode(self, data: bytes, size=None):
        self.gate.wait(WAIT)
        self.sizes.append(size)
        if data == b"bad":
            raise DecodeError("not a jpeg")
        return data


class FakeHandle:
    pass


class ManualTimer:
    """Timer whose ticks are driven by the test."""

    def __init__(self) -> None:
        self.tasks = {}

    def every(self, interval, task, name="Timer"):
        handle = FakeHandle()
        self.tasks[handle] = task
        return handle

    def cancel(self, handle) -> None:
        self.tasks.pop(handle, None)

    def tick(self) -> None:
        for task in list(self.tasks.values()):
            task()


class GeometryTest(unittest.TestCase):
    def test_same_aspect_fills_preview(self) -> None:
        geometry = compute_geometry(960, 720, CameraParameters(640, 480))
        self.assertEqual((geometry.width, geometry.height, geometry.offset_x, geometry.offset_y), (960, 720, 0, 0))

    def test_wide_preview_is_pillarboxed(self) -> None:
        geometry = compute_geometry(1000, 500, CameraParameters(640, 480))
        self.assertEqual(geometry.size, (666, 500))
        self.assertEqual((geometry.offset_x, geometry.offset_y), (167, 0))

    def test_tall_preview_is_letterboxed(self) -> None:
        geometry = compute_geometry(720, 960, CameraParameters(640, 480))
        self.assertEqual(geometry.size, (720, 540))
        self.assertEqual((geometry.offset_x, geometry.offset_y), (0, 210))


class ControllerRoleTest(unittest.TestCase):
    def setUp(self) -> None:
        self.sink = FakeSink()
        self.decoder = FakeDecoder()
        self.timer = ManualTimer()
        self.completed: "queue.Queue[DecodeCompleted]" = queue.Queue()
        self.sent = []
        self.role = ControllerRole(self.sink, self.decoder, self.completed.put,
                                   queue_capacity=2, timer=self.timer)
        self.role.attach(self._emit)

    def tearDown(self) -> None:
        self.decoder.gate.set()
        self.role.detach()

    def _emit(self, packet: Packet) -> bool:
        self.sent.append(packet)
        return True

    def _complete(self, count: int):
        results = [self.completed.get(timeout=WAIT) for _ in range(count)]
        for result in results:
            self.assertIs(result.role, self.role)
            self.role.acknowledge()
        return results

    def test_image_before_parameters_is_rejected(self) -> None:
        with self.assertRaises(PermitViolationError):
            self.role.on_image(b"jpeg")
        self.assertEqual(self.role.images_rejected, 1)
        self.assertEqual(self.sent, [])

    def test_parameters_set_sink_geometry(self) -> None:
        self.role.on_parameters(CameraParameters(640, 480))
        self.assertEqual(self.sink.geometry, (666, 500))

    def test_decoded_frame_is_rendered_at_offset(self) -> None:
        self.role.on_parameters(CameraParameters(640, 480))
        self.role.on_image(b"frame")
        self._complete(1)
        self.assertEqual(self.decoder.sizes, [(666, 500)])
        self.assertEqual(self.sent, [Packet(PacketType.IMAGE_RECEIVED)])
        self.timer.tick()
        self.assertEqual(self.sink.rendered, [(b"frame", 167, 0)])
        # Empty queue: the pump renders nothing
        self.timer.tick()
        self.assertEqual(len(self.sink.rendered), 1)

    def test_acknowledge_waits_for_decode(self) -> None:
        self.role.on_parameters(CameraParameters(640, 480))
        self.decoder.gate.clear()
        self.role.on_image(b"slow")
        with self.assertRaises(queue.Empty):
            self.completed.get(timeout=0.2)
        self.assertEqual(self.role.in_flight, 1)
        self.decoder.gate.set()
        self._complete(1)
        self.assertEqual(self.role.in_flight, 0)

    def test_overflow_drops_oldest_but_acks_all(self) -> None:
        self.role.on_parameters(CameraParameters(640, 480))
        for data in (b"f1", b"f2", b"f3"):
            self.role.on_image(data)
        self._complete(3)
        self.assertEqual(self.role.acks_sent, 3)
        self.assertEqual(self.role.frames.dropped, 1)
        self.timer.tick()
        self.timer.tick()
        self.timer.tick()
        self.assertEqual([bitmap for bitmap, _, _ in self.sink.rendered], [b"f2", b"f3"])

    def test_decode_failure_still_acknowledged(self) -> None:
        self.role.on_parameters(CameraParameters(640, 480))
        self.role.on_image(b"bad")
        result, = self._complete(1)
        self.assertFalse(result.ok)
        self.assertEqual(self.role.decode_failures, 1)
        self.assertEqual(self.sent, [Packet(PacketType.IMAGE_RECEIVED)])
        self.assertEqual(len(self.role.frames), 0)

    def test_unexpected_decoder_error_still_acknowledged(self) -> None:
        self.role.on_parameters(CameraParameters(640, 480))
        self.decoder.decode = self._raise_runtime_error
        self.role.on_image(b"jpeg")
        result, = self._complete(1)
        self.assertFalse(result.ok)
        self.assertEqual(self.sent, [Packet(PacketType.IMAGE_RECEIVED)])

        # The worker survives and keeps decoding
        self.decoder.decode = FakeDecoder().decode
        self.role.on_image(b"next")
        result, = self._complete(1)
        self.assertTrue(result.ok)
        self.assertEqual(self.role.decode_failures, 1)

    @staticmethod
    def _raise_runtime_error(data, size=None):
        raise RuntimeError("decoder crashed")

    def test_detach_stops_pump_and_acks(self) -> None:
        self.role.detach()
        self.assertEqual(self.timer.tasks, {})
        self.assertFalse(self.role.acknowledge())


if __name__ == "__main__":
    unittest.main()
