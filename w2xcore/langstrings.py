"""Translated user-interface strings chosen by language id."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from os import PathLike, fspath
from typing import Any, Union

PathArg = Union[str, "PathLike[str]"]

_BOM = b"\xef\xbb\xbf"
_NUMBER = re.compile(r"\s*([+-]?)(\d*)")
_HEX_NUMBER = re.compile(r"\s*([+-]?)(?:0[xX])?([0-9a-fA-F]*)")


def make_lang_id(primary: int, sub: int) -> int:
    """Combine a primary and a sub language id into one language id."""
    return ((sub & 0x3F) << 10) | (primary & 0x3FF)


def primary_lang_id(lang_id: int) -> int:
    """Return the primary language part of a language id."""
    return lang_id & 0x3FF


def sub_lang_id(lang_id: int) -> int:
    """Return the sub language part of a language id."""
    return (lang_id & 0xFFFF) >> 10


def parse_number(text: str) -> int:
    """Parse a decimal or ``0x``-prefixed hexadecimal prefix of ``text``; 0 if none."""
    if len(text) >= 3 and text.startswith("0x"):
        match = _HEX_NUMBER.match(text)
        base = 16
    else:
        match = _NUMBER.match(text)
        base = 10
    sign, digits = match.groups()
    if not digits:
        return 0
    value = int(digits, base)
    return -value if sign == "-" else value


@dataclass(frozen=True)
class LangSetting:
    """One entry of the language list."""

    name: str = ""
    lang_id: int = 0
    sub_lang_id: int = 0
    file_name: str = ""


def _first_wins(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in pairs:
        result.setdefault(key, value)
    return result


class LangStringList:
    """Language list plus the strings of the current and the default language."""

    def __init__(self, user_lang_id: int = 0) -> None:
        self._base_dir = ""
        self._langs: list[LangSetting] = []
        self._lang = LangSetting()
        self._lang_id = user_lang_id
        self._strings: dict[str, str] = {}
        self._default_strings: dict[str, str] = {}

    @property
    def lang(self) -> LangSetting:
        """The language currently in use."""
        return self._lang

    @property
    def lang_id(self) -> int:
        """The language id currently in use."""
        return self._lang_id

    @property
    def lang_list(self) -> list[LangSetting]:
        """The languages read from the list file, in file order."""
        return list(self._langs)

    @property
    def base_dir(self) -> str:
        """Directory prefix prepended to language file names."""
        return self._base_dir

    def set_base_dir(self, path: PathArg) -> None:
        """Set the directory holding the language files."""
        base = fspath(path)
        if base and not base.endswith(("\\", "/")):
            base += "/"
        self._base_dir = base

    def read_lang_list(self, path: PathArg) -> None:
        """Read the tab-separated language list and load the strings it names.

        Raises OSError if the file cannot be read and ValueError if it names
        no language.
        """
        with open(path, encoding="utf-8-sig", errors="replace") as stream:
            lines = [line.rstrip("\r\n") for line in stream]

        langs = []
        for line in lines:
            if line.startswith(";"):
                continue
            fields = [part for part in line.split("\t") if part]
            if len(fields) != 4:
                continue
            name, primary, sub, file_name = fields
            langs.append(
                LangSetting(
                    name=name,
                    lang_id=parse_number(primary) & 0xFFFF,
                    sub_lang_id=parse_number(sub) & 0xFFFF,
                    file_name=file_name,
                )
            )

        self._langs = langs
        if not langs:
            raise ValueError(f"no language entries in {fspath(path)!r}")

        if self._lang_id != 0:
            self.set_lang_id(self._lang_id)

        self._default_strings = self._read_lang_file(langs[0])

    def find_lang(self, lang_id: int) -> LangSetting:
        """Pick the best listed language for ``lang_id``.

        An exact match wins, then the last entry with the same primary
        language, then the first entry of the list.
        """
        primary = primary_lang_id(lang_id)
        sub = sub_lang_id(lang_id)

        found = None
        for lang in self._langs:
            if lang.lang_id == primary:
                found = lang
                if lang.sub_lang_id == sub:
                    break
        if found is not None:
            return found
        if self._langs:
            return self._langs[0]
        return LangSetting()

    def set_lang_id(self, lang_id: int) -> None:
        """Switch to the listed language that best matches ``lang_id``."""
        self._lang = self.find_lang(lang_id)
        self._lang_id = lang_id
        self._strings = self._read_lang_file(self._lang)

    def set_lang(self, lang: LangSetting) -> None:
        """Switch to ``lang``."""
        self._lang = lang
        self._lang_id = make_lang_id(lang.lang_id, lang.sub_lang_id)
        self._strings = self._read_lang_file(lang)

    def get_string(self, key: str) -> str:
        """Return the string for ``key``, falling back to the default language, then ``""``."""
        if key in self._strings:
            return self._strings[key]
        return self._default_strings.get(key, "")

    def _read_lang_file(self, lang: LangSetting) -> dict[str, str]:
        if not lang.file_name:
            return {}
        try:
            with open(self._base_dir + lang.file_name, "rb") as stream:
                raw = stream.read()
        except OSError:
            return {}

        if len(raw) >= 3 and raw.startswith(_BOM):
            raw = raw[3:]
        try:
            doc = json.loads(raw.decode("utf-8", errors="replace"), object_pairs_hook=_first_wins)
        except ValueError:
            return {}
        if not isinstance(doc, dict):
            return {}
        return {key: value for key, value in doc.items() if isinstance(value, str) and value}