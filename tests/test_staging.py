import os
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from ussr import staging


class CloneFileTests(unittest.TestCase):
    def test_clone_creates_parent_directories(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            source = tmp / "source.bin"
            source.write_bytes(b"\x00\x01payload")

            dest = staging.clone_file(source, tmp / "a" / "b" / "copy.bin")
            self.assertEqual(dest, tmp / "a" / "b" / "copy.bin")
            self.assertEqual(dest.read_bytes(), b"\x00\x01payload")

    def test_missing_source_is_logged_not_raised(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            with self.assertLogs("ussr.staging", level="ERROR") as logs:
                dest = staging.clone_file(tmp / "missing", tmp / "copy")
            self.assertEqual(dest, tmp / "copy")
            self.assertFalse(dest.exists())
            self.assertIn("missing", logs.output[0])


class BackupOnlyOnceTests(unittest.TestCase):
    def test_second_call_does_not_copy_again(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            source = tmp / "globalgamemanagers"
            source.write_bytes(b"original")

            backup = staging.backup_only_once(source)
            self.assertEqual(backup, tmp / "globalgamemanagers.bak")
            first_stat = backup.stat()

            source.write_bytes(b"patched")
            again = staging.backup_only_once(source)

            self.assertEqual(again, backup)
            self.assertEqual(backup.read_bytes(), b"original")
            self.assertEqual(backup.stat().st_mtime_ns, first_stat.st_mtime_ns)
            self.assertEqual(sorted(os.listdir(tmp)), ["globalgamemanagers", "globalgamemanagers.bak"])

    def test_backup_keeps_full_name(self) -> None:
        self.assertEqual(
            staging.backup_path_for(Path("Build/game.data.br")), Path("Build/game.data.br.bak")
        )


class CleanUpTests(unittest.TestCase):
    def test_removes_files_and_directory_trees(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            temp_file = tmp / "game.temp"
            temp_file.write_bytes(b"x")
            tree = tmp / "unpacked"
            (tree / "nested").mkdir(parents=True)
            (tree / "nested" / "file").write_bytes(b"y")
            keep = tmp / "keep"
            keep.write_bytes(b"z")

            staging.clean_up([temp_file, tree, tmp / "never-created"])
            self.assertEqual(os.listdir(tmp), ["keep"])

    def test_empty_list_is_a_no_op(self) -> None:
        staging.clean_up([])


class StagingAreaTests(unittest.TestCase):
    def test_cleans_tracked_paths_on_success(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            with staging.StagingArea() as area:
                area.track(tmp / "a.temp").write_bytes(b"a")
                area.track(tmp / "dir").mkdir()
            self.assertEqual(os.listdir(tmp), [])

    def test_cleans_tracked_paths_on_failure_and_reraises(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            with self.assertRaises(ValueError):
                with staging.StagingArea() as area:
                    area.track(tmp / "a.temp").write_bytes(b"a")
                    raise ValueError("boom")
            self.assertEqual(os.listdir(tmp), [])

    def test_protected_paths_survive(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            with staging.StagingArea() as area:
                area.track(tmp / "out.bak").write_bytes(b"backup")
                area.protect(tmp / "out.bak")
                area.track(tmp / "out.temp").write_bytes(b"temp")
            self.assertEqual(os.listdir(tmp), ["out.bak"])

    def test_close_runs_once(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            area = staging.StagingArea()
            area.track(tmp / "late")
            area.close()
            (tmp / "late").write_bytes(b"created after cleanup")
            area.close()
            self.assertTrue((tmp / "late").exists())


if __name__ == "__main__":
    unittest.main()
