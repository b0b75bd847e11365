import io
import os
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from ussr import compression
from ussr.detect import CompressionKind
from ussr.errors import CompressionError, NotFound

SAMPLE = b"UnityWebData1.0\x00" + bytes(range(256)) * 64


class FilterContractTests(unittest.TestCase):
    filters = (compression.BROTLI, compression.GZIP)

    def test_bytes_round_trip(self) -> None:
        for codec in self.filters:
            with self.subTest(codec=codec.name):
                packed = codec.compress_bytes(SAMPLE)
                self.assertLess(len(packed), len(SAMPLE))
                self.assertEqual(codec.decompress_bytes(packed), SAMPLE)

    def test_stream_output_is_readable_by_bytes_api(self) -> None:
        for codec in self.filters:
            with self.subTest(codec=codec.name):
                target = io.BytesIO()
                codec.compress_stream(io.BytesIO(SAMPLE), target)
                self.assertEqual(codec.decompress_bytes(target.getvalue()), SAMPLE)

                restored = io.BytesIO()
                written = codec.decompress_stream(io.BytesIO(target.getvalue()), restored)
                self.assertEqual(written, len(SAMPLE))
                self.assertEqual(restored.getvalue(), SAMPLE)

    def test_file_round_trip(self) -> None:
        for codec in self.filters:
            with self.subTest(codec=codec.name), tempfile.TemporaryDirectory() as tmpdir:
                tmp = Path(tmpdir)
                original = tmp / "game.data"
                original.write_bytes(SAMPLE)

                packed = codec.compress_file(original, tmp / "out" / "game.data.packed")
                self.assertTrue(packed.exists())
                restored = codec.decompress_file(packed, tmp / "restored.data")
                self.assertEqual(restored, tmp / "restored.data")
                self.assertEqual(restored.read_bytes(), SAMPLE)

    def test_corrupt_input_raises_compression_error(self) -> None:
        for codec in self.filters:
            with self.subTest(codec=codec.name):
                with self.assertRaises(CompressionError):
                    codec.decompress_bytes(b"\x1f\x8b this is not compressed at all" * 4)

    def test_truncated_stream_raises_compression_error(self) -> None:
        for codec in self.filters:
            with self.subTest(codec=codec.name):
                packed = codec.compress_bytes(SAMPLE)
                truncated = packed[: len(packed) // 2]
                with self.assertRaises(CompressionError):
                    codec.decompress_bytes(truncated)
                with self.assertRaises(CompressionError):
                    codec.decompress_stream(io.BytesIO(truncated), io.BytesIO())

    def test_failed_file_decompression_leaves_no_output(self) -> None:
        for codec in self.filters:
            with self.subTest(codec=codec.name), tempfile.TemporaryDirectory() as tmpdir:
                tmp = Path(tmpdir)
                broken = tmp / "broken.data.br"
                broken.write_bytes(codec.compress_bytes(SAMPLE)[:20])

                with self.assertRaises(CompressionError):
                    codec.decompress_file(broken, tmp / "broken.data")
                self.assertEqual(os.listdir(tmp), ["broken.data.br"])

    def test_missing_source_raises_not_found(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(NotFound):
                compression.GZIP.decompress_file(Path(tmpdir) / "missing.gz", Path(tmpdir) / "out")


class FilterLookupTests(unittest.TestCase):
    def test_filter_for_each_kind(self) -> None:
        self.assertIs(compression.filter_for(CompressionKind.BROTLI), compression.BROTLI)
        self.assertIs(compression.filter_for(CompressionKind.GZIP), compression.GZIP)

    def test_filter_for_unknown_kind(self) -> None:
        with self.assertRaises(CompressionError):
            compression.filter_for(None)

    def test_gzip_output_uses_gzip_magic(self) -> None:
        self.assertTrue(compression.GZIP.compress_bytes(b"data").startswith(b"\x1f\x8b"))


if __name__ == "__main__":
    unittest.main()
