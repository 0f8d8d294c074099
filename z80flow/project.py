"""JSON project files describing what to disassemble."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .config import DisassemblerSettings, parse_address
from .naming import sanitize_label


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemoryImage:
    origin: int
    path: Path

    def load(self) -> bytes:
        if not self.path.exists():
            raise ValueError(f"missing memory image: {self.path}")
        return self.path.read_bytes()


@dataclass
class ProjectConfig:
    """Memory images, entry points, labels and skips for one program.

    The loader is lenient with individual labels and skips: entries that
    cannot be parsed are logged and ignored.  Structural problems such as a
    missing image path raise :class:`ValueError`.
    """

    images: List[MemoryImage] = field(default_factory=list)
    entry_points: List[int] = field(default_factory=list)
    labels: Dict[int, str] = field(default_factory=dict)
    skips: Dict[int, int] = field(default_factory=dict)
    settings: DisassemblerSettings = field(default_factory=DisassemblerSettings)

    @classmethod
    def load(cls, path: Path) -> "ProjectConfig":
        path = Path(path)
        try:
            data = json.loads(path.read_text("utf-8"))
        except FileNotFoundError as exc:
            raise ValueError(f"missing project file: {path}") from exc
        except json.JSONDecodeError as exc:
            raise ValueError(f"malformed project file {path}: {exc}") from exc
        if not isinstance(data, Mapping):
            raise ValueError(f"project file {path} must contain a JSON object")
        return cls.from_json(data, path.parent)

    @classmethod
    def from_json(cls, data: Mapping[str, Any], base_dir: Optional[Path] = None) -> "ProjectConfig":
        base_dir = Path(base_dir) if base_dir is not None else Path(".")
        config = cls()

        for entry in data.get("images", []):
            if not isinstance(entry, Mapping) or "path" not in entry:
                raise ValueError(f"image entry needs a path: {entry!r}")
            image_path = Path(str(entry["path"]))
            if not image_path.is_absolute():
                image_path = base_dir / image_path
            config.images.append(MemoryImage(parse_address(entry.get("origin", 0)), image_path))

        for value in data.get("entry_points", []):
            config.entry_points.append(parse_address(value))

        labels = data.get("labels", {})
        if isinstance(labels, Mapping):
            for key, name in labels.items():
                try:
                    address = parse_address(key)
                except ValueError:
                    logger.warning("ignoring label with invalid address %r", key)
                    continue
                config.labels[address] = sanitize_label(str(name))

        skips = data.get("skips", {})
        if isinstance(skips, Mapping):
            for key, count in skips.items():
                try:
                    config.skips[parse_address(key)] = parse_address(count)
                except ValueError:
                    logger.warning("ignoring skip entry %r=%r", key, count)

        settings = data.get("settings")
        if isinstance(settings, Mapping):
            config.settings = DisassemblerSettings.from_json(settings)
        return config
