# Display-name resolution for abbreviated process names.
#
# lsof reports at most 15 characters of a command name, so long application
# names arrive truncated. The lookup table lives in display_names.yaml and
# can be extended through the display_names_path setting.

from pathlib import Path
from typing import Mapping

import yaml

from .config import Settings
from .processes import basename

DEFAULT_TABLE_PATH = Path(__file__).with_name("display_names.yaml")
SHORT_NAME_LIMIT = 15


def load_table(path: str | Path) -> dict[str, str]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Display-name table must be a mapping: {path}")

    return {str(k): str(v) for k, v in data.items()}


class DisplayNameResolver:
    def __init__(self, table: Mapping[str, str] | None = None):
        self.table = dict(table or {})

    @classmethod
    def from_settings(cls, settings: Settings) -> "DisplayNameResolver":
        table = load_table(DEFAULT_TABLE_PATH)
        if settings.display_names_path:
            table.update(load_table(Path(settings.display_names_path).expanduser()))
        return cls(table)

    def resolve(self, command_name: str, executable_path: str | None = None,
                full_command: str | None = None) -> str:
        name = full_command or basename(executable_path) or command_name
        if len(name) <= SHORT_NAME_LIMIT and "/" not in name:
            return self.table.get(name, name)
        return name
