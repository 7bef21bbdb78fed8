"""
Tests for bos_update.cli — hook command line.
"""

import io
import json
import os
import sys
import tempfile
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import unittest
from bos_update import cli


class TestCli(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.root = self.tmp / "root"
        source = self.tmp / "check.sh"
        source.write_text("#!/bin/sh\n")
        self.config = self.tmp / "package.json"
        self.config.write_text(json.dumps({
            "artifact": {"source": "check.sh"},
            "scheduler": {"restart_command": ["true"]},
        }))

    def tearDown(self):
        self._tmp.cleanup()

    def run_cli(self, *args):
        out = io.StringIO()
        with redirect_stdout(out):
            code = cli.main(["--config", str(self.config), "--root", str(self.root), *args])
        return code, out.getvalue()

    def test_install_and_status(self):
        code, _ = self.run_cli("install")
        self.assertEqual(code, 0)
        code, out = self.run_cli("status")
        self.assertEqual(code, 0)
        status = json.loads(out)
        self.assertTrue(status["artifact_installed"])
        self.assertEqual(len(status["entries"]), 1)

    def test_postrm_in_install_root_does_not_restart(self):
        self.run_cli("install")
        with mock.patch("bos_update.installer.subprocess.run") as run:
            code, _ = self.run_cli("postrm")
        self.assertEqual(code, 0)
        run.assert_not_called()
        crontab = self.root / "etc" / "crontabs" / "root"
        self.assertEqual(crontab.read_text(), "")

    def test_postrm_live_restarts(self):
        crontab = self.tmp / "crontabs" / "root"
        self.config.write_text(json.dumps({
            "artifact": {"source": "check.sh", "destination": str(self.tmp / "sbin" / "check.sh")},
            "crontab": {"path": str(crontab)},
            "scheduler": {"restart_command": ["true"]},
        }))
        with mock.patch.dict("os.environ"):
            os.environ.pop("IPKG_INSTROOT", None)
            self.assertEqual(cli.main(["--config", str(self.config), "install"]), 0)
            with mock.patch("bos_update.installer.subprocess.run") as run:
                run.return_value = mock.Mock(returncode=0, stderr="")
                code = cli.main(["--config", str(self.config), "postrm"])
        self.assertEqual(code, 0)
        run.assert_called_once()
        self.assertEqual(run.call_args[0][0], ["true"])
        self.assertEqual(crontab.read_text(), "")

    def test_section_type_error_exit_code(self):
        self.config.write_text(json.dumps({"scheduler": {"timeout": "abc"}}))
        code, _ = self.run_cli("postrm")
        self.assertEqual(code, 2)

    def test_install_failure_exit_code(self):
        (self.tmp / "check.sh").unlink()
        code, _ = self.run_cli("install")
        self.assertEqual(code, 1)

    def test_invalid_descriptor_exit_code(self):
        self.config.write_text(json.dumps({"schedule": {"minute": "99"}}))
        code, _ = self.run_cli("install")
        self.assertEqual(code, 2)

    def test_control(self):
        code, out = self.run_cli("control")
        self.assertEqual(code, 0)
        self.assertTrue(out.startswith("Package: bos_update\n"))

    def test_root_from_environment(self):
        with mock.patch.dict("os.environ", {"IPKG_INSTROOT": str(self.root)}):
            args = cli.parse_arguments(["preinst"])
        self.assertEqual(args.root, self.root)


if __name__ == "__main__":
    unittest.main()
