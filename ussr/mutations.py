"""The two edits offered by the tool: splash screen and watermark removal.

Each mutation receives a :class:`~ussr.editor.RecordEditor` and an opened
handle and returns the list of commit tokens to persist.  An empty list means
there was nothing to change.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from .editor import RecordEditor
from .errors import MutationUnsupported

logger = logging.getLogger(__name__)

BUILD_SETTINGS = "BuildSettings"
PLAYER_SETTINGS = "PlayerSettings"

HAS_PRO_VERSION = "hasPROVersion"
SHOW_UNITY_SPLASH_LOGO = "m_ShowUnitySplashLogo"
SPLASH_SCREEN_LOGOS = "m_SplashScreenLogos.Array"
NO_WATERMARK_BUILD = "isNoWatermarkBuild"
IS_TRIAL = "isTrial"

UNITY_LOGO_KEYWORD = "unity"

# Receives the labels of the splash logos and returns the index to remove.
LogoChooser = Callable[[Sequence[str]], int]
Mutation = Callable[..., List[Any]]


def _single_record(editor: RecordEditor, handle: Any, type_name: str) -> Any:
    records = editor.find_records(handle, type_name)
    if not records:
        raise MutationUnsupported(f"no {type_name} record found")
    return records[0]


def find_unity_logo(labels: Sequence[str], chooser: Optional[LogoChooser] = None) -> int:
    """Return the index of the Unity logo among ``labels``.

    A single label mentioning Unity wins.  Anything else (no match, several
    matches) is left to ``chooser``; without one the lookup fails.
    """

    matches = [index for index, label in enumerate(labels) if UNITY_LOGO_KEYWORD in label.lower()]
    if len(matches) == 1:
        return matches[0]

    if chooser is None:
        raise MutationUnsupported(
            f"unable to tell which of {len(labels)} splash screen logo(s) is the Unity logo"
        )

    index = chooser(labels)
    if not isinstance(index, int) or not 0 <= index < len(labels):
        raise MutationUnsupported(f"there's no splash screen at index {index}")
    return index


def remove_splash_screen(
    editor: RecordEditor,
    handle: Any,
    chooser: Optional[LogoChooser] = None,
) -> List[Any]:
    """Disable the "Made with Unity" splash screen."""

    logger.info("Start removing Unity splash screen...")

    build_settings = _single_record(editor, handle, BUILD_SETTINGS)
    player_settings = _single_record(editor, handle, PLAYER_SETTINGS)
    build_fields = editor.get_base_fields(handle, build_settings)
    player_fields = editor.get_base_fields(handle, player_settings)

    has_pro_version = editor.read_bool(build_fields, HAS_PRO_VERSION)
    show_unity_logo = editor.read_bool(player_fields, SHOW_UNITY_SPLASH_LOGO)

    if has_pro_version and not show_unity_logo:
        logger.warning("Unity splash screen already removed!")
        return []

    labels = editor.enumerate_array(player_fields, SPLASH_SCREEN_LOGOS)
    logger.info("There's %d splash screen detected.", len(labels))
    for index, label in enumerate(labels):
        logger.info("%d => %s", index, label)

    if labels:
        logo_index = find_unity_logo(labels, chooser)
        editor.remove_array_element(player_fields, SPLASH_SCREEN_LOGOS, logo_index)
        logger.info("Splash screen removed at index %d.", logo_index)

    logger.info("Set %s = True | %s = False", HAS_PRO_VERSION, SHOW_UNITY_SPLASH_LOGO)
    editor.write_bool(build_fields, HAS_PRO_VERSION, True)
    editor.write_bool(player_fields, SHOW_UNITY_SPLASH_LOGO, False)

    return [
        editor.commit(handle, player_settings, player_fields),
        editor.commit(handle, build_settings, build_fields),
    ]


def remove_watermark(editor: RecordEditor, handle: Any, chooser: Optional[LogoChooser] = None) -> List[Any]:
    """Clear the trial / watermark flags of BuildSettings."""

    logger.info("Removing watermark...")

    build_settings = _single_record(editor, handle, BUILD_SETTINGS)
    build_fields = editor.get_base_fields(handle, build_settings)

    no_watermark = editor.read_bool(build_fields, NO_WATERMARK_BUILD)
    is_trial = editor.read_bool(build_fields, IS_TRIAL)
    if no_watermark and not is_trial:
        logger.warning("Watermark have been removed!")
        return []

    logger.info("Set %s = True | %s = False", NO_WATERMARK_BUILD, IS_TRIAL)
    editor.write_bool(build_fields, NO_WATERMARK_BUILD, True)
    editor.write_bool(build_fields, IS_TRIAL, False)
    return [editor.commit(handle, build_settings, build_fields)]


MUTATIONS: Dict[str, Mutation] = {
    "Remove Unity Splash Screen": remove_splash_screen,
    "Remove Watermark": remove_watermark,
}
