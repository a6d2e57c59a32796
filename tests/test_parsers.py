import re

from models import DeviceRecord, DeviceState, PatchEntry
from parsers import parse_devices, parse_catalog, DeviceListParser, PatchCatalogParser


def test_device_lines_are_parsed_in_order():
    text = "emulator-5554    device\nXYZ123 unauthorized\ngarbage line"
    assert parse_devices(text) == [
        DeviceRecord("emulator-5554", DeviceState.ONLINE),
        DeviceRecord("XYZ123", DeviceState.UNAUTHORIZED),
    ]


def test_device_banner_and_noise_are_ignored():
    text = (
        "* daemon not running; starting now at tcp:5037\n"
        "* daemon started successfully\n"
        "List of devices attached\n"
        "R58M123ABC\tdevice\r\n"
        "0123456789ABCDEF\toffline\n"
        "\n"
        "SERIAL recovery\n"
        "SERIAL device product:x model:y\n"
    )
    assert parse_devices(text) == [
        DeviceRecord("R58M123ABC", DeviceState.ONLINE),
        DeviceRecord("0123456789ABCDEF", DeviceState.OFFLINE),
    ]


def test_device_state_keyword_is_case_insensitive():
    assert parse_devices("abc DEVICE\ndef Unauthorized") == [
        DeviceRecord("abc", DeviceState.ONLINE),
        DeviceRecord("def", DeviceState.UNAUTHORIZED),
    ]


def test_duplicate_devices_are_kept():
    assert len(parse_devices("abc device\nabc device")) == 2


def test_catalog_lines():
    text = (
        "INFORMATION: ad-removal: Removes all ads.\n"
        "noise\n"
        "INFORMATION: gms-core: Adds GMS core support (v2)."
    )
    assert parse_catalog(text) == [
        PatchEntry("ad-removal", "Removes all ads."),
        PatchEntry("gms-core", "Adds GMS core support (v2)."),
    ]


def test_catalog_skips_unsupported_descriptions_and_empty_fields():
    text = (
        "INFO: bad-chars: Uses a semicolon; here\n"
        "INFO: empty-desc:   \n"
        "INFO: : missing name\n"
        "INFO: quoted: Hides the \"Shorts\" button, 'always'.\n"
        "WARNING: Dec 01, 2023 something\n"
    )
    assert parse_catalog(text) == [PatchEntry("quoted", "Hides the \"Shorts\" button, 'always'.")]


def test_catalog_keeps_duplicate_names():
    text = "INFO: a: One.\nINFO: a: Two."
    assert [e.name for e in parse_catalog(text)] == ["a", "a"]


def test_catalog_trims_description():
    assert parse_catalog("INFO: theme:   Dark theme.   \r") == [PatchEntry("theme", "Dark theme.")]


def test_parser_pattern_can_be_swapped():
    parser = DeviceListParser(re.compile(r'^(?P<serial>\S+)\s+(?P<state>device)\s+.*$'))
    assert parser.parse("abc device usb:1-1 model:Pixel") == [DeviceRecord("abc", DeviceState.ONLINE)]

    catalog = PatchCatalogParser(re.compile(r'^(?P<name>[\w-]+)\s+-\s+(?P<desc>.+)$'))
    assert catalog.parse("theme - Dark theme") == [PatchEntry("theme", "Dark theme")]
