"""Settings shared by the decoder, the label assigner and the listing."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Union


HEX_FORMATS = ("$", "h", "0x")


def hex_string(value: int, digits: int) -> str:
    """Return ``value`` as zero padded upper case hex without decoration."""

    return f"{value:0{digits}X}"


def parse_address(value: Union[int, str]) -> int:
    """Parse an address or count written as ``32768``, ``0x8000``, ``$8000``
    or ``8000h``."""

    if isinstance(value, bool):
        raise ValueError(f"invalid number: {value!r}")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.startswith("$"):
        return int(text[1:], 16)
    if text.lower().endswith("h") and not text.lower().startswith("0x"):
        return int(text[:-1], 16)
    return int(text, 0)


@dataclass(frozen=True)
class LabelPrefixes:
    """Prefixes used when synthesising label names."""

    sub: str = "SUB_"
    lbl: str = "LBL_"
    rst: str = "RST_"
    data: str = "DATA_"
    # Used for data accesses into code, e.g. ``SUB_C000.CODE_C00B``.
    code: str = "CODE_"
    local: str = "L"
    loop: str = "LOOP"

    @classmethod
    def from_json(cls, entry: Mapping[str, Any]) -> "LabelPrefixes":
        known = {item.name for item in fields(cls)}
        values = {key: str(value) for key, value in entry.items() if key in known}
        return cls(**values)


@dataclass(frozen=True)
class DisassemblerSettings:
    """Explicit configuration for one disassembler instance.

    ``hex_format`` selects how numbers are printed in the listing and in
    diagnostics: ``"$"`` gives ``$8000``, ``"h"`` gives ``8000h`` and
    ``"0x"`` gives ``0x8000``.  ``zx_next`` enables the big endian
    ``PUSH nn`` of the ZX Spectrum Next.
    """

    prefixes: LabelPrefixes = field(default_factory=LabelPrefixes)
    hex_format: str = "$"
    lower_case: bool = False
    zx_next: bool = False

    def __post_init__(self) -> None:
        if self.hex_format not in HEX_FORMATS:
            raise ValueError(
                f"unsupported hex format {self.hex_format!r}, expected one of {HEX_FORMATS}"
            )

    def format_hex(self, value: int, digits: int) -> str:
        text = hex_string(value, digits)
        if self.hex_format == "h":
            return text + "h"
        if self.hex_format == "0x":
            return "0x" + text
        return "$" + text

    @classmethod
    def from_json(cls, entry: Mapping[str, Any]) -> "DisassemblerSettings":
        prefixes = entry.get("prefixes")
        return cls(
            prefixes=LabelPrefixes.from_json(prefixes) if isinstance(prefixes, Mapping) else LabelPrefixes(),
            hex_format=str(entry.get("hex_format", "$")),
            lower_case=bool(entry.get("lower_case", False)),
            zx_next=bool(entry.get("zx_next", False)),
        )


DEFAULT_SETTINGS = DisassemblerSettings()
