"""
Text scrapers for the external tools' output.

The patcher and adb give no machine-readable output, so every integration
with them goes through one of these parsers. A parser takes the captured
text and returns records; lines it does not recognise are dropped without
complaint. Swap the pattern (or the whole parser) when a tool changes its
output format.
"""
import re
from typing import List, Optional, Pattern

from models import DeviceRecord, DeviceState, PatchEntry


class OutputParser:
    pattern: Pattern = None

    def __init__(self, pattern: Optional[Pattern] = None):
        if pattern is not None:
            self.pattern = pattern

    def parse_line(self, line: str):
        raise NotImplementedError

    def parse(self, text: str) -> list:
        records = []
        for line in (text or "").splitlines():
            rec = self.parse_line(line)
            if rec is not None:
                records.append(rec)
        return records


class DeviceListParser(OutputParser):
    # "emulator-5554    device"
    pattern = re.compile(r'^(?P<serial>\S+)\s+(?P<state>device|unauthorized|offline)$', re.IGNORECASE)

    def parse_line(self, line: str) -> Optional[DeviceRecord]:
        m = self.pattern.match(line.strip())
        if not m:
            return None
        return DeviceRecord(m.group("serial"), DeviceState.from_keyword(m.group("state")))


class PatchCatalogParser(OutputParser):
    # "INFO: ad-removal: Removes all ads."
    pattern = re.compile(
        r'^\s*(?P<marker>\w+):\s*(?P<name>[\w-]+):\s*(?P<desc>(?:[^\W_]|[ .,()\'"])+)$'
    )

    def parse_line(self, line: str) -> Optional[PatchEntry]:
        m = self.pattern.match(line.rstrip("\r\n"))
        if not m:
            return None
        name = m.group("name").strip()
        desc = m.group("desc").strip()
        if not name or not desc:
            return None
        return PatchEntry(name, desc)


DEVICE_PARSER = DeviceListParser()
CATALOG_PARSER = PatchCatalogParser()

def parse_devices(text: str) -> List[DeviceRecord]:
    return DEVICE_PARSER.parse(text)

def parse_catalog(text: str) -> List[PatchEntry]:
    return CATALOG_PARSER.parse(text)
