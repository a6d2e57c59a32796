import time
from pathlib import Path
from multiprocessing import Queue
from typing import List, Tuple, Optional, Set

from models import DeviceRecord, DeviceState
from parsers import DEVICE_PARSER, OutputParser
from utils import _run_capture, _which, _data_root, _os_name, DEVICE_POLL_INTERVAL, WaitTimeout, CommandTimeout

# one "adb devices" call may take at most this many poll intervals
POLL_TIMEOUT_FACTOR = 5

_STATE_TIPS = {
    DeviceState.UNAUTHORIZED: "디바이스에서 USB 디버깅을 승인해 주세요.",
    DeviceState.OFFLINE: "USB 케이블/드라이버 점검 후 재연결해 주세요.",
}

def find_adb(root: Optional[Path] = None) -> Optional[str]:
    root = root or _data_root()
    name = "adb.exe" if _os_name() == "windows" else "adb"
    if root.exists():
        for p in root.rglob(name):
            if p.is_file():
                return str(p)
    return _which("adb")

def adb_exec(bridge_path: str, args: List[str], timeout: Optional[float] = None) -> Tuple[int, str, str]:
    return _run_capture([str(bridge_path)] + args, timeout=timeout)

def list_devices(bridge_path: str, timeout: Optional[float] = None, parser: OutputParser = DEVICE_PARSER) -> List[DeviceRecord]:
    _, out, err = adb_exec(bridge_path, ["devices"], timeout=timeout)
    raw = (out or "") + (("\n"+err) if err else "")
    return parser.parse(raw)

def wait_for_authorized_device(bridge_path: str, out_q: Optional[Queue] = None,
                               interval: float = DEVICE_POLL_INTERVAL,
                               timeout: Optional[float] = None,
                               cancel_evt=None) -> Optional[str]:
    """
    Poll ``adb devices`` until a device in the ``device`` state shows up and
    return its serial. Unauthorized and offline devices are reported once but
    never accepted.

    Returns None when ``cancel_evt`` is set. Raises WaitTimeout once
    ``timeout`` seconds have passed without a usable device. With neither
    given the loop only ends when a device appears. Each poll is itself
    bounded, so a hung adb cannot outlive the deadline or the cancel.
    """
    deadline = (time.monotonic() + timeout) if timeout is not None else None
    hinted: Set[Tuple[str, DeviceState]] = set()
    polls = 0
    if out_q: out_q.put({"type":"log","text":"[ADB] 기기 연결 대기 중..."})
    while True:
        if cancel_evt is not None and cancel_evt.is_set():
            if out_q: out_q.put({"type":"log","text":"[ADB] 기기 대기 취소됨"})
            return None
        poll_timeout = interval * POLL_TIMEOUT_FACTOR
        if deadline is not None:
            poll_timeout = max(0.1, min(poll_timeout, deadline - time.monotonic()))
        polls += 1
        try:
            devs = list_devices(bridge_path, timeout=poll_timeout)
        except CommandTimeout:
            if out_q: out_q.put({"type":"log","text":f"[ADB] adb devices 응답 없음 ({poll_timeout:.1f}s)"})
            devs = []
        online = [d for d in devs if d.state is DeviceState.ONLINE]
        if online:
            serial = online[0].name
            if out_q: out_q.put({"type":"log","text":f"[ADB] 기기 감지: {serial} (poll={polls})"})
            return serial
        for d in devs:
            key = (d.name, d.state)
            if key in hinted:
                continue
            hinted.add(key)
            if out_q: out_q.put({"type":"log","text":f"[ADB] {d.name} state={d.state.value}  {_STATE_TIPS.get(d.state, '')}".rstrip()})
        if deadline is not None and time.monotonic() >= deadline:
            raise WaitTimeout(f"{timeout}초 안에 승인된 기기를 찾지 못했습니다.")
        if cancel_evt is not None:
            cancel_evt.wait(interval)
        else:
            time.sleep(interval)

def adb_start_server(bridge_path: str) -> bool:
    code, _, _ = adb_exec(bridge_path, ["start-server"])
    return code == 0

def adb_kill_server(bridge_path: str):
    if bridge_path and Path(bridge_path).exists():
        adb_exec(bridge_path, ["kill-server"])
