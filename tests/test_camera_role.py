import unittest

from wandlink.camera_role import CameraRole
from wandlink.protocol import CameraParameters, Packet, PacketType


class FakeSource:
    def __init__(self, width: int = 640, height: int = 480) -> None:
        self.parameters = CameraParameters(width, height)
        self.callbacks = []

    def on_frame(self, callback) -> None:
        self.callbacks.append(callback)

    def get_parameters(self) -> CameraParameters:
        return self.parameters

    def publish(self, data: bytes) -> None:
        for callback in self.callbacks:
            callback(data)


class CameraRoleTest(unittest.TestCase):
    def setUp(self) -> None:
        self.source = FakeSource()
        self.notifications = 0
        self.sent = []
        self.commands = []
        self.role = CameraRole(self.source, self._notify, max_payload_size=1024,
                               on_command=self.commands.append)

    def _notify(self) -> None:
        self.notifications += 1

    def _emit(self, packet: Packet) -> bool:
        self.sent.append(packet)
        return True

    def test_parameters_sent_first(self) -> None:
        self.role.attach(self._emit)
        self.assertTrue(self.role.send_parameters())
        self.assertEqual(self.sent, [Packet(PacketType.CAMERA_PARAMETERS, CameraParameters(640, 480).pack())])

    def test_no_frame_before_parameters(self) -> None:
        self.role.attach(self._emit)
        self.source.publish(b"jpeg")
        self.assertFalse(self.role.send_frame())
        self.assertEqual(self.sent, [])

    def test_sends_freshest_frame_only(self) -> None:
        self.role.attach(self._emit)
        self.role.send_parameters()
        for data in (b"one", b"two", b"three"):
            self.source.publish(data)
        self.assertEqual(self.notifications, 3)
        self.assertTrue(self.role.send_frame())
        self.assertEqual(self.sent[-1], Packet(PacketType.IMAGE, b"three"))
        self.assertEqual(self.role.frames_dropped, 2)
        # Nothing new captured since the last send
        self.assertFalse(self.role.send_frame())

    def test_attach_discards_stale_frame(self) -> None:
        self.source.publish(b"before connect")
        self.role.attach(self._emit)
        self.role.send_parameters()
        self.assertFalse(self.role.send_frame())

    def test_oversized_frame_is_skipped(self) -> None:
        self.role.attach(self._emit)
        self.role.send_parameters()
        self.source.publish(b"x" * 2048)
        self.assertFalse(self.role.send_frame())
        self.assertEqual(self.role.oversized_frames, 1)
        self.assertEqual(len(self.sent), 1)

    def test_detached_role_does_not_emit(self) -> None:
        self.role.attach(self._emit)
        self.role.send_parameters()
        self.role.detach()
        self.source.publish(b"late")
        self.assertFalse(self.role.send_frame())
        self.assertFalse(self.role.send_parameters())

    def test_commands_forwarded(self) -> None:
        self.role.handle_command(b"U")
        self.assertEqual(self.commands, [b"U"])


if __name__ == "__main__":
    unittest.main()
