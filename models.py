from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class DeviceState(Enum):
    ONLINE = "device"
    UNAUTHORIZED = "unauthorized"
    OFFLINE = "offline"

    @classmethod
    def from_keyword(cls, word: str) -> "DeviceState":
        return cls(word.strip().lower())


@dataclass(frozen=True)
class DeviceRecord:
    name: str
    state: DeviceState


@dataclass(frozen=True)
class PatchEntry:
    name: str
    description: str

    def to_dict(self) -> dict:
        return {"name": self.name, "description": self.description}


@dataclass(frozen=True)
class ToolchainPaths:
    cli_archive: Path
    integrations_bundle: Path
    patch_bundle: Path

    def all_present(self) -> bool:
        return all(p.is_file() for p in (self.cli_archive, self.integrations_bundle, self.patch_bundle))

    def to_dict(self) -> dict:
        return {
            "cli": str(self.cli_archive),
            "integrations": str(self.integrations_bundle),
            "patches": str(self.patch_bundle),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ToolchainPaths":
        return cls(Path(d["cli"]), Path(d["integrations"]), Path(d["patches"]))
