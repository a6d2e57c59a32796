import os
import queue
import threading

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
QtWidgets = pytest.importorskip("PySide6.QtWidgets")
from PySide6.QtCore import Qt

import gui
from conftest import drain

ENTRIES = [
    {"name": "ad-removal", "description": "Removes all ads."},
    {"name": "sponsorblock", "description": "Skips sponsor segments."},
]


@pytest.fixture(scope="module")
def qapp():
    return QtWidgets.QApplication.instance() or QtWidgets.QApplication([])


@pytest.fixture
def app(qapp, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    cancel = threading.Event()
    w = gui.App(queue.Queue(), queue.Queue(), cancel)
    w._drain_timer.stop()
    yield w
    w.deleteLater()


def ready_for_build(w, tmp_path):
    apk = tmp_path / "base.apk"
    apk.write_bytes(b"PK")
    w.java_path = "java"
    w.toolchain = {"cli": "cli.jar", "integrations": "int.apk", "patches": "patches.jar"}
    w.adb_path = "adb"
    w.apk_edit.setText(str(apk))


def test_deploy_build_clears_stale_cancel_before_waiting(app, tmp_path):
    ready_for_build(app, tmp_path)
    app._cancel_evt.set()
    app.deploy_check.setChecked(True)
    app.on_build()
    assert not app._cancel_evt.is_set()
    assert drain(app._qin) == [{"cmd": "wait_device", "adb": "adb"}]
    assert app._pending_build["cmd"] == "build"
    assert app.btn_cancel_wait.isEnabled()


def test_build_without_deploy_leaves_cancel_alone(app, tmp_path):
    ready_for_build(app, tmp_path)
    app._cancel_evt.set()
    app.on_build()
    assert app._cancel_evt.is_set()
    sent = drain(app._qin)
    assert [m["cmd"] for m in sent] == ["build"]
    assert sent[0]["out_apk"].endswith("base-revanced.apk")


def test_cancel_button_sets_event(app):
    app.on_cancel_wait()
    assert app._cancel_evt.is_set()


def test_patch_list_round_trips_exclusions(qapp):
    view = QtWidgets.QListWidget()
    gui._fill_patch_list(view, ENTRIES, {"sponsorblock"})
    assert view.count() == 2
    assert gui._unchecked_names(view) == ["sponsorblock"]
    view.item(0).setCheckState(Qt.Unchecked)
    assert gui._unchecked_names(view) == ["ad-removal", "sponsorblock"]


def test_picker_filter_limits_select_all_to_visible_rows(qapp):
    dlg = gui.PatchPickerDialog(ENTRIES, set())
    dlg.search.setText("sponsor")
    assert [dlg.view.item(i).isHidden() for i in range(2)] == [True, False]
    dlg._set_all(Qt.Unchecked)
    assert dlg.get_excluded() == ["sponsorblock"]


def test_patches_event_fills_main_list(app):
    app._qout.put({"type": "patches", "entries": ENTRIES})
    app._drain_queues()
    assert app.list_widget.count() == 2
    assert app._excluded() == []
