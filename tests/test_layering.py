import os
import subprocess
import sys
import unittest

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class CoreLayeringTest(unittest.TestCase):
    def test_core_does_not_import_host_packages(self) -> None:
        code = (
            "import sys, wandlink.session\n"
            "print(sorted(name for name in sys.modules if name.startswith(('wand_camera', 'wand_controller'))))"
        )
        result = subprocess.run([sys.executable, "-c", code], cwd=ROOT,
                                capture_output=True, text=True, timeout=60)
        self.assertEqual(result.returncode, 0, result.stderr)
        self.assertEqual(result.stdout.strip(), "[]")


if __name__ == "__main__":
    unittest.main()
