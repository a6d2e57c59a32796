from pathlib import Path
from multiprocessing import Queue
from datetime import datetime

from models import ToolchainPaths
from utils import _ensure_dir, _output_root, RELEASE_TAG, SetupError
from adb import find_adb, adb_start_server, adb_kill_server, wait_for_authorized_device
from patcher import list_patches, apply_patches, stream_status
from toolchain import find_java, ensure_java, ensure_toolchain, ensure_platform_tools, resolve_toolchain_paths

def _work_dir(msg: dict) -> Path:
    base = Path(msg.get("tmp_base") or (_output_root() / "work"))
    tmp_path = base / datetime.now().strftime("tmp-%Y%m%d-%H%M%S")
    _ensure_dir(tmp_path)
    return tmp_path

def _require_adb(msg: dict) -> str:
    path = (msg.get("adb") or "").strip() or find_adb()
    if not path or not Path(path).exists():
        raise SetupError("adb를 찾을 수 없습니다. 먼저 ADB를 설치해 주세요.")
    return path

def handle_env_check(msg: dict, out_q: Queue, cancel_evt=None):
    java, java_out = find_java()
    paths = resolve_toolchain_paths()
    adb_path = find_adb()
    out_q.put({
        "type":"env",
        "java_ok":java is not None, "java_path":java or "", "java_out":java_out,
        "toolchain_ok":paths.all_present(),
        "adb_path":adb_path or "",
    })
    if paths.all_present():
        out_q.put({"type":"setup_ok","java":java or "", **paths.to_dict()})

def handle_setup(msg: dict, out_q: Queue, cancel_evt=None):
    java = ensure_java(out_q)
    paths = ensure_toolchain(out_q, tag=msg.get("tag") or RELEASE_TAG)
    out_q.put({"type":"log","text":"[OK] 환경 준비 완료"})
    out_q.put({"type":"setup_ok","java":java, **paths.to_dict()})

def handle_install_adb(msg: dict, out_q: Queue, cancel_evt=None):
    path = ensure_platform_tools(out_q)
    adb_start_server(path)
    out_q.put({"type":"adb_path_set","ok":True,"path":path})

def handle_list_patches(msg: dict, out_q: Queue, cancel_evt=None):
    toolchain = ToolchainPaths.from_dict(msg)
    entries = list_patches(msg["java"], Path(msg["apk"]), _work_dir(msg), toolchain, timeout=msg.get("timeout"))
    out_q.put({"type":"log","text":f"[OK] 패치 {len(entries)}개 발견"})
    out_q.put({"type":"patches","entries":[e.to_dict() for e in entries]})

def handle_wait_device(msg: dict, out_q: Queue, cancel_evt=None):
    adb_path = _require_adb(msg)
    adb_start_server(adb_path)
    serial = wait_for_authorized_device(adb_path, out_q, timeout=msg.get("timeout"), cancel_evt=cancel_evt)
    if serial is None:
        out_q.put({"type":"adb_wait_cancelled"})
    else:
        out_q.put({"type":"adb_device","serial":serial})

def handle_build(msg: dict, out_q: Queue, cancel_evt=None):
    toolchain = ToolchainPaths.from_dict(msg)
    out_apk = Path(msg["out_apk"])
    _ensure_dir(out_apk.parent)
    keystore = (msg.get("keystore") or "").strip()
    out_q.put({"type":"build_begin"})
    handle = apply_patches(
        msg["java"], Path(msg["apk"]), out_apk, _work_dir(msg), toolchain,
        msg.get("excluded") or [],
        deploy_on=msg.get("deploy_on") or None,
        keystore=Path(keystore) if keystore else None,
    )
    code = stream_status(handle, out_q)
    out_q.put({"type":"build_end","code":code,"apk":str(out_apk)})

def handle_adb_kill(msg: dict, out_q: Queue, cancel_evt=None):
    adb_kill_server(msg.get("adb") or find_adb())
