import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from fake_editor import FakeEditor, default_records
from ussr import mutations
from ussr.errors import MutationUnsupported


class FindUnityLogoTests(unittest.TestCase):
    def test_single_name_match_wins(self) -> None:
        self.assertEqual(mutations.find_unity_logo(["Studio", "Unity Logo", "Publisher"]), 1)

    def test_chooser_used_when_nothing_matches(self) -> None:
        seen = []

        def chooser(labels):
            seen.append(list(labels))
            return 0

        self.assertEqual(mutations.find_unity_logo(["logo 0:12", "logo 0:13"], chooser), 0)
        self.assertEqual(seen, [["logo 0:12", "logo 0:13"]])

    def test_chooser_used_when_several_match(self) -> None:
        self.assertEqual(
            mutations.find_unity_logo(["Unity Logo", "unity_dark"], lambda labels: 1), 1
        )

    def test_no_match_and_no_chooser_fails(self) -> None:
        with self.assertRaises(MutationUnsupported):
            mutations.find_unity_logo(["Studio", "Publisher"])

    def test_out_of_range_choice_fails(self) -> None:
        with self.assertRaises(MutationUnsupported):
            mutations.find_unity_logo(["Studio", "Publisher"], lambda labels: 5)
        with self.assertRaises(MutationUnsupported):
            mutations.find_unity_logo(["Studio", "Publisher"], lambda labels: -1)


class RemoveSplashScreenTests(unittest.TestCase):
    def test_flips_flags_and_removes_unity_logo(self) -> None:
        editor = FakeEditor()
        tokens = mutations.remove_splash_screen(editor, handle=None)

        self.assertEqual(len(tokens), 2)
        self.assertEqual([record for record, _fields in tokens], ["PlayerSettings", "BuildSettings"])
        self.assertTrue(editor.records["BuildSettings"]["hasPROVersion"])
        self.assertFalse(editor.records["PlayerSettings"]["m_ShowUnitySplashLogo"])
        self.assertEqual(
            editor.records["PlayerSettings"]["m_SplashScreenLogos.Array"], ["Studio Logo"]
        )
        self.assertEqual(editor.removed, [("m_SplashScreenLogos.Array", 1)])
        self.assertIn(("hasPROVersion", True), editor.writes)
        self.assertIn(("m_ShowUnitySplashLogo", False), editor.writes)

    def test_already_removed_is_no_change(self) -> None:
        records = default_records()
        records["BuildSettings"]["hasPROVersion"] = True
        records["PlayerSettings"]["m_ShowUnitySplashLogo"] = False
        editor = FakeEditor(records)

        with self.assertLogs("ussr.mutations", level="WARNING"):
            tokens = mutations.remove_splash_screen(editor, handle=None)

        self.assertEqual(tokens, [])
        self.assertEqual(editor.writes, [])
        self.assertEqual(editor.commits, [])

    def test_empty_logo_array_still_flips_flags(self) -> None:
        records = default_records()
        records["PlayerSettings"]["m_SplashScreenLogos.Array"] = []
        editor = FakeEditor(records)

        tokens = mutations.remove_splash_screen(editor, handle=None)
        self.assertEqual(len(tokens), 2)
        self.assertEqual(editor.removed, [])
        self.assertTrue(editor.records["BuildSettings"]["hasPROVersion"])

    def test_ambiguous_logos_use_chooser(self) -> None:
        records = default_records()
        records["PlayerSettings"]["m_SplashScreenLogos.Array"] = ["logo 0:1", "logo 0:2"]
        editor = FakeEditor(records)

        mutations.remove_splash_screen(editor, handle=None, chooser=lambda labels: 0)
        self.assertEqual(editor.records["PlayerSettings"]["m_SplashScreenLogos.Array"], ["logo 0:2"])

    def test_ambiguous_logos_without_chooser_fail_before_writing(self) -> None:
        records = default_records()
        records["PlayerSettings"]["m_SplashScreenLogos.Array"] = ["logo 0:1", "logo 0:2"]
        editor = FakeEditor(records)

        with self.assertRaises(MutationUnsupported):
            mutations.remove_splash_screen(editor, handle=None)
        self.assertEqual(editor.writes, [])
        self.assertEqual(editor.commits, [])

    def test_missing_player_settings(self) -> None:
        records = default_records()
        del records["PlayerSettings"]
        with self.assertRaises(MutationUnsupported):
            mutations.remove_splash_screen(FakeEditor(records), handle=None)

    def test_unreadable_fields_propagate(self) -> None:
        with self.assertRaises(MutationUnsupported):
            mutations.remove_splash_screen(FakeEditor(fail_on="get_base_fields"), handle=None)


class RemoveWatermarkTests(unittest.TestCase):
    def test_sets_watermark_flags(self) -> None:
        editor = FakeEditor()
        tokens = mutations.remove_watermark(editor, handle=None)

        self.assertEqual([record for record, _fields in tokens], ["BuildSettings"])
        self.assertTrue(editor.records["BuildSettings"]["isNoWatermarkBuild"])
        self.assertFalse(editor.records["BuildSettings"]["isTrial"])

    def test_already_removed_is_no_change(self) -> None:
        records = default_records()
        records["BuildSettings"]["isNoWatermarkBuild"] = True
        records["BuildSettings"]["isTrial"] = False
        editor = FakeEditor(records)

        self.assertEqual(mutations.remove_watermark(editor, handle=None), [])
        self.assertEqual(editor.writes, [])

    def test_missing_build_settings(self) -> None:
        with self.assertRaises(MutationUnsupported):
            mutations.remove_watermark(FakeEditor({}), handle=None)


class MenuTests(unittest.TestCase):
    def test_menu_order(self) -> None:
        self.assertEqual(list(mutations.MUTATIONS), ["Remove Unity Splash Screen", "Remove Watermark"])


if __name__ == "__main__":
    unittest.main()
