"""Boundary to the record editor that understands Unity serialized objects.

The pipeline never parses serialized files itself.  It talks to an object
implementing :class:`RecordEditor`, which is expected to open an asset or
bundle file, hand out the field tree of a record, flip boolean fields, drop
elements from array fields and finally write every committed change back.

:class:`UnityPyRecordEditor` implements the protocol on top of the optional
``UnityPy`` package.  Another implementation can be selected with the
``USSR_RECORD_EDITOR`` environment variable (``"package.module:factory"``).
"""

from __future__ import annotations

import importlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from .detect import FileKind
from .errors import MutationUnsupported, USSRError

logger = logging.getLogger(__name__)

RECORD_EDITOR_ENV = "USSR_RECORD_EDITOR"

# Unity's own splash logo is a sprite of this name in unity_builtin_extra.
# That file is not part of the build output, so the reference usually
# cannot be followed; such logos are labelled as the Unity logo.
UNITY_LOGO_LABEL = "Unity Logo"
EMPTY_LOGO_LABEL = "(no sprite)"

BUNDLE_PACKER = "lz4"


class RecordEditor(Protocol):
    def open(self, path: Path, kind: FileKind) -> Any:
        ...

    def find_records(self, handle: Any, type_name: str) -> List[Any]:
        ...

    def get_base_fields(self, handle: Any, record: Any) -> Any:
        ...

    def read_bool(self, fields: Any, name: str) -> bool:
        ...

    def write_bool(self, fields: Any, name: str, value: bool) -> None:
        ...

    def enumerate_array(self, fields: Any, name: str) -> List[str]:
        ...

    def remove_array_element(self, fields: Any, name: str, index: int) -> None:
        ...

    def commit(self, handle: Any, record: Any, fields: Any) -> Any:
        ...

    def write_changes(self, handle: Any, tokens: Sequence[Any], output_path: Path) -> None:
        ...

    def close(self, handle: Any) -> None:
        ...


@dataclass
class UnityPyHandle:
    path: Path
    kind: FileKind
    env: Any


def _split_field_path(name: str) -> List[str]:
    # AssetsTools style paths address the array node explicitly
    # ("m_SplashScreenLogos.Array"); UnityPy exposes the list directly.
    return [part for part in name.split(".") if part and part != "Array"]


def _default_loader(path: str) -> Any:
    try:
        import UnityPy
    except ImportError as exc:
        raise USSRError(
            "UnityPy is not installed; install the 'unity' extra or set "
            f"{RECORD_EDITOR_ENV} to another record editor"
        ) from exc
    return UnityPy.load(path)


class UnityPyRecordEditor:
    """Record editor backed by ``UnityPy`` type trees (plain dictionaries)."""

    def __init__(self, loader: Callable[[str], Any] | None = None) -> None:
        self._loader = loader or _default_loader

    # ------------------------------------------------------------ loading --
    def open(self, path: Path, kind: FileKind) -> UnityPyHandle:
        path = Path(path)
        logger.info("Loading %s file: %s...", kind.value, path)
        try:
            env = self._loader(str(path))
        except USSRError:
            raise
        except Exception as exc:
            raise MutationUnsupported(f"unable to load {kind.value} file: {exc}", path=path) from exc
        return UnityPyHandle(path=path, kind=kind, env=env)

    def close(self, handle: UnityPyHandle) -> None:
        handle.env = None

    # ------------------------------------------------------------ records --
    def find_records(self, handle: UnityPyHandle, type_name: str) -> List[Any]:
        return [obj for obj in handle.env.objects if obj.type.name == type_name]

    def get_base_fields(self, handle: UnityPyHandle, record: Any) -> "RecordFields":
        try:
            return RecordFields(_read_tree(record), record=record)
        except Exception as exc:
            raise MutationUnsupported(
                f"unable to read {record.type.name} fields; the Unity version may not be supported yet: {exc}",
                path=handle.path,
            ) from exc

    def commit(self, handle: UnityPyHandle, record: Any, fields: Dict[str, Any]) -> Any:
        writer = getattr(record, "patch", None) or record.save_typetree
        writer(dict(fields))
        return record

    def write_changes(self, handle: UnityPyHandle, tokens: Sequence[Any], output_path: Path) -> None:
        logger.info("Writing changes to %s...", output_path)
        if handle.kind is FileKind.BUNDLE:
            data = handle.env.file.save(packer=BUNDLE_PACKER)
        else:
            data = handle.env.file.save()
        Path(output_path).write_bytes(data)

    # ------------------------------------------------------------- fields --
    def _resolve(self, fields: Dict[str, Any], name: str) -> tuple[Any, str]:
        parts = _split_field_path(name)
        if not parts:
            raise MutationUnsupported(f"empty field path: {name!r}")
        node: Any = fields
        for part in parts[:-1]:
            try:
                node = node[part]
            except (KeyError, TypeError) as exc:
                raise MutationUnsupported(f"missing field {name}") from exc
        if not isinstance(node, dict) or parts[-1] not in node:
            raise MutationUnsupported(f"missing field {name}")
        return node, parts[-1]

    def read_bool(self, fields: Dict[str, Any], name: str) -> bool:
        node, key = self._resolve(fields, name)
        return bool(node[key])

    def write_bool(self, fields: Dict[str, Any], name: str, value: bool) -> None:
        node, key = self._resolve(fields, name)
        node[key] = bool(value)

    def _array(self, fields: Dict[str, Any], name: str) -> List[Any]:
        node, key = self._resolve(fields, name)
        array = node[key]
        if not isinstance(array, list):
            raise MutationUnsupported(f"field {name} is not an array")
        return array

    def enumerate_array(self, fields: Dict[str, Any], name: str) -> List[str]:
        record = getattr(fields, "record", None)
        return [self._label(record, element) for element in self._array(fields, name)]

    def remove_array_element(self, fields: Dict[str, Any], name: str, index: int) -> None:
        array = self._array(fields, name)
        if not 0 <= index < len(array):
            raise MutationUnsupported(f"no element at index {index} in {name}")
        del array[index]

    def _label(self, record: Any, element: Any) -> str:
        if not isinstance(element, dict):
            return str(element)
        logo = element.get("logo")
        if not isinstance(logo, dict):
            return str(element.get("m_Name", element))

        file_id = logo.get("m_FileID", 0)
        path_id = logo.get("m_PathID", 0)
        if not path_id:
            return EMPTY_LOGO_LABEL
        try:
            sprite = _follow_pointer(getattr(record, "assets_file", None), file_id, path_id)
            name = _read_tree(sprite).get("m_Name")
        except (AttributeError, IndexError, KeyError, TypeError, ValueError) as exc:
            logger.debug("Splash logo %d:%d cannot be loaded: %s", file_id, path_id, exc)
            return f"{UNITY_LOGO_LABEL} (unloadable sprite {file_id}:{path_id})"
        return name or f"sprite {file_id}:{path_id}"


class RecordFields(dict):
    """Field tree of one record; remembers the record it was read from."""

    def __init__(self, tree: Dict[str, Any], *, record: Any) -> None:
        super().__init__(tree)
        self.record = record


def _read_tree(obj: Any) -> Dict[str, Any]:
    reader = getattr(obj, "parse_as_dict", None) or obj.read_typetree
    return reader()


def _follow_pointer(assets_file: Any, file_id: int, path_id: int) -> Any:
    """Return the object reader a ``PPtr`` in ``assets_file`` points at.

    ``file_id`` 0 is the file itself; any other value is a 1-based index
    into its external references, looked up among the files loaded next to
    it.  Raises ``KeyError`` when the referenced file was not loaded.
    """

    if file_id:
        external = assets_file.externals[file_id - 1]
        name = getattr(external, "name", "") or os.path.basename(external.path)
        assets_file = _find_loaded_file(assets_file, name)
    return assets_file.objects[path_id]


def _find_loaded_file(assets_file: Any, name: str) -> Any:
    for owner in (getattr(assets_file, "parent", None), getattr(assets_file, "environment", None)):
        files = getattr(owner, "files", None) or {}
        for key in (name, name.lower()):
            if key in files:
                return files[key]
    raise KeyError(f"external file {name} is not loaded")


def load_editor(reference: Optional[str] = None) -> RecordEditor:
    """Instantiate the record editor named by ``reference`` or the environment."""

    reference = reference or os.environ.get(RECORD_EDITOR_ENV, "")
    if not reference:
        return UnityPyRecordEditor()

    module_name, _, attribute = reference.partition(":")
    if not module_name or not attribute:
        raise USSRError(f"{RECORD_EDITOR_ENV} must look like 'package.module:factory', got {reference!r}")
    try:
        factory = getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as exc:
        raise USSRError(f"unable to load record editor {reference!r}: {exc}") from exc
    return factory()
