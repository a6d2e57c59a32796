import queue
import threading
from pathlib import Path

import worker
import worker_handlers
from models import PatchEntry
from patcher import ProcessHandle
from worker import worker_loop
from conftest import drain

TOOLCHAIN = {"cli": "/d/cli.jar", "integrations": "/d/int.apk", "patches": "/d/patches.jar"}


def run(*msgs, cancel_evt=None):
    in_q, out_q = queue.Queue(), queue.Queue()
    for m in msgs:
        in_q.put(m)
    in_q.put(None)
    worker_loop(in_q, out_q, cancel_evt)
    return drain(out_q)


def test_unknown_command_fails_and_finishes():
    events = run({"cmd": "nope"})
    assert events[0]["type"] == "fail"
    assert "unknown command: nope" in events[0]["error"]
    assert events[-1] == {"type": "done", "cmd": "nope"}


def test_handler_exception_becomes_fail_event(monkeypatch):
    def boom(msg, out_q, cancel_evt=None):
        raise RuntimeError("kaboom")

    monkeypatch.setitem(worker.HANDLERS, "setup", boom)
    events = run({"cmd": "setup"}, {"cmd": "nope"})
    fails = [e for e in events if e["type"] == "fail"]
    assert "kaboom" in fails[0]["error"]
    assert [e["cmd"] for e in events if e["type"] == "done"] == ["setup", "nope"]


def test_list_patches_handler(monkeypatch, tmp_path):
    seen = {}

    def fake_list(java, apk, temp_dir, toolchain, timeout=None):
        seen.update(java=java, apk=apk, toolchain=toolchain)
        return [PatchEntry("ad-removal", "Removes all ads.")]

    monkeypatch.setattr(worker_handlers, "list_patches", fake_list)
    events = run({"cmd": "list_patches", "java": "java", "apk": "in.apk", "tmp_base": str(tmp_path), **TOOLCHAIN})
    patches = [e for e in events if e["type"] == "patches"]
    assert patches == [{"type": "patches", "entries": [{"name": "ad-removal", "description": "Removes all ads."}]}]
    assert seen["toolchain"].patch_bundle == Path("/d/patches.jar")


def test_wait_device_handler_reports_serial(monkeypatch, tmp_path):
    adb_exe = tmp_path / "adb"
    adb_exe.write_text("")
    monkeypatch.setattr(worker_handlers, "adb_start_server", lambda path: True)
    monkeypatch.setattr(worker_handlers, "wait_for_authorized_device",
                        lambda path, out_q, timeout=None, cancel_evt=None:
                        None if cancel_evt.is_set() else "SER1")
    cancel = threading.Event()
    msg = {"cmd": "wait_device", "adb": str(adb_exe)}
    assert {"type": "adb_device", "serial": "SER1"} in run(msg, cancel_evt=cancel)


def test_cancel_pressed_while_busy_survives_until_wait_device(monkeypatch, tmp_path):
    adb_exe = tmp_path / "adb"
    adb_exe.write_text("")
    monkeypatch.setattr(worker_handlers, "adb_start_server", lambda path: True)
    monkeypatch.setattr(worker_handlers, "wait_for_authorized_device",
                        lambda path, out_q, timeout=None, cancel_evt=None:
                        None if cancel_evt.is_set() else "SER1")
    cancel = threading.Event()

    def busy(msg, out_q, cancel_evt=None):
        cancel_evt.set()

    monkeypatch.setitem(worker.HANDLERS, "busy", busy)
    events = run({"cmd": "busy"}, {"cmd": "wait_device", "adb": str(adb_exe)}, cancel_evt=cancel)
    assert {"type": "adb_wait_cancelled"} in events
    assert not any(e.get("type") == "adb_device" for e in events)
    assert cancel.is_set()


def test_wait_device_without_adb_fails(monkeypatch):
    monkeypatch.setattr(worker_handlers, "find_adb", lambda: None)
    events = run({"cmd": "wait_device"})
    assert events[0]["type"] == "fail"


def test_build_handler_reports_exit_code_without_judging_it(monkeypatch, tmp_path):
    seen = {}

    def fake_apply(java, apk, out_apk, temp_dir, toolchain, excluded, deploy_on=None, keystore=None):
        seen.update(excluded=excluded, deploy_on=deploy_on, keystore=keystore)
        return ProcessHandle(["patcher"])

    monkeypatch.setattr(worker_handlers, "apply_patches", fake_apply)
    monkeypatch.setattr(worker_handlers, "stream_status", lambda handle, out_q: 1)
    events = run({
        "cmd": "build", "java": "java", "apk": "in.apk", "out_apk": str(tmp_path / "out" / "x.apk"),
        "excluded": ["a", "b"], "deploy_on": "SER1", "keystore": "", "tmp_base": str(tmp_path / "w"),
        **TOOLCHAIN,
    })
    assert seen == {"excluded": ["a", "b"], "deploy_on": "SER1", "keystore": None}
    assert {"type": "build_end", "code": 1, "apk": str(tmp_path / "out" / "x.apk")} in events
    assert not [e for e in events if e["type"] == "fail"]
