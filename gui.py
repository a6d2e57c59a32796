import queue
from pathlib import Path
from typing import List, Dict, Optional
from multiprocessing import Queue

from PySide6.QtWidgets import (
    QWidget, QFileDialog, QVBoxLayout, QHBoxLayout, QGridLayout, QLabel,
    QLineEdit, QPushButton, QTextEdit, QCheckBox, QProgressBar, QMessageBox,
    QListWidget, QListWidgetItem, QDialog, QDialogButtonBox
)
from PySide6.QtCore import Qt, QTimer
from PySide6.QtGui import QTextCursor

from utils import _ensure_dir, _output_root, _validate_input_file

APK_EXTS = (".apk",)
KEYSTORE_EXTS = (".keystore", ".jks")


def _fill_patch_list(widget: QListWidget, entries: List[Dict], excluded):
    widget.clear()
    for e in entries:
        name = e.get("name","")
        item = QListWidgetItem(f"{name}  -  {e.get('description','')}")
        item.setData(Qt.UserRole, name)
        item.setCheckState(Qt.Unchecked if name in excluded else Qt.Checked)
        widget.addItem(item)

def _unchecked_names(widget: QListWidget) -> List[str]:
    names = []
    for i in range(widget.count()):
        item = widget.item(i)
        if item.checkState() != Qt.Checked:
            names.append(item.data(Qt.UserRole))
    return names


class PatchPickerDialog(QDialog):
    """Larger, searchable view of the patch list. Unchecked rows are excluded."""

    def __init__(self, entries: List[Dict], excluded: set, parent=None):
        super().__init__(parent)
        self.setWindowTitle("패치 선택")
        self.resize(900, 650)
        self.entries = entries
        self.excluded = set(excluded)

        self.search = QLineEdit(); self.search.setPlaceholderText("이름/설명 검색…")
        self.view = QListWidget(); self.view.setWordWrap(True)
        btn_all = QPushButton("전체 선택")
        btn_none = QPushButton("전체 해제")
        btns = QDialogButtonBox(QDialogButtonBox.Ok | QDialogButtonBox.Cancel, parent=self)

        bar = QHBoxLayout(); bar.addWidget(self.search, 1); bar.addWidget(btn_all); bar.addWidget(btn_none)
        lay = QVBoxLayout(self); lay.addLayout(bar); lay.addWidget(self.view, 1); lay.addWidget(btns)

        _fill_patch_list(self.view, self.entries, self.excluded)
        self.search.textChanged.connect(self._apply_filter)
        self.view.itemChanged.connect(self._on_item_changed)
        btn_all.clicked.connect(lambda: self._set_all(Qt.Checked))
        btn_none.clicked.connect(lambda: self._set_all(Qt.Unchecked))
        btns.accepted.connect(self.accept)
        btns.rejected.connect(self.reject)

    def _on_item_changed(self, item: QListWidgetItem):
        name = item.data(Qt.UserRole)
        if item.checkState() == Qt.Checked:
            self.excluded.discard(name)
        else:
            self.excluded.add(name)

    def _apply_filter(self, text: str):
        q = text.strip().lower()
        for i in range(self.view.count()):
            item = self.view.item(i)
            item.setHidden(bool(q) and q not in item.text().lower())

    def _set_all(self, state):
        for i in range(self.view.count()):
            item = self.view.item(i)
            if not item.isHidden():
                item.setCheckState(state)

    def get_excluded(self) -> List[str]:
        return [e["name"] for e in self.entries if e.get("name") in self.excluded]

class App(QWidget):
    def __init__(self, q_in: Queue, q_out: Queue, cancel_evt=None):
        super().__init__()
        self.setWindowTitle("ReVanced Setup")
        self.resize(900, 860)

        self.out_dir = _output_root()
        _ensure_dir(self.out_dir)

        self.java_path: Optional[str] = None
        self.toolchain: Optional[Dict[str, str]] = None
        self.adb_path: Optional[str] = None
        self.entries: List[Dict] = []
        self._pending_build: Optional[dict] = None

        self._qin = q_in
        self._qout = q_out
        self._cancel_evt = cancel_evt

        self._build_ui()

        self._drain_timer = QTimer(self); self._drain_timer.setInterval(50)
        self._drain_timer.timeout.connect(self._drain_queues)
        self._drain_timer.start()

        QTimer.singleShot(0, self.on_env_check)

    def _button(self, text: str, slot) -> QPushButton:
        b = QPushButton(text)
        b.clicked.connect(slot)
        return b

    def _build_ui(self):
        # left column shows state or input, right column the action for it
        self.java_status = QLabel("Java: 미확인")
        self.toolchain_status = QLabel("구성요소: 미확인")
        self.adb_status = QLabel("ADB: 미확인")
        self.apk_edit = QLineEdit(); self.apk_edit.setPlaceholderText("원본 APK")
        self.keystore_edit = QLineEdit(); self.keystore_edit.setPlaceholderText("키스토어 (선택)")
        self.list_widget = QListWidget(); self.list_widget.setWordWrap(True)
        self.deploy_check = QCheckBox("패치 후 연결된 기기에 설치 (ADB)")
        self.btn_build = self._button("패치 실행", self.on_build)
        self.btn_cancel_wait = self._button("기기 대기 취소", self.on_cancel_wait)
        self.btn_cancel_wait.setEnabled(False)
        self.progress = QProgressBar(); self.progress.setRange(0, 1); self.progress.setValue(0)
        self.log = QTextEdit(); self.log.setReadOnly(True)

        grid = QGridLayout()
        grid.addWidget(self.java_status, 0, 0)
        grid.addWidget(self._button("환경 점검", self.on_env_check), 0, 1)
        grid.addWidget(self.toolchain_status, 1, 0)
        grid.addWidget(self._button("Java/구성요소 준비", self.on_setup), 1, 1)
        grid.addWidget(self.adb_status, 2, 0)
        grid.addWidget(self._button("ADB 설치", self.on_adb_install), 2, 1)
        grid.addWidget(self.apk_edit, 3, 0)
        grid.addWidget(self._button("APK 선택", self.pick_apk), 3, 1)
        grid.addWidget(self.keystore_edit, 4, 0)
        grid.addWidget(self._button("키스토어 선택", self.pick_keystore), 4, 1)
        grid.setColumnStretch(0, 1)

        patches = QHBoxLayout()
        patches.addWidget(self._button("패치 목록 불러오기", self.on_list_patches))
        patches.addWidget(self._button("새 창에서 패치 선택하기", self.open_patch_picker))
        patches.addStretch(1)

        run = QHBoxLayout()
        run.addWidget(self.deploy_check); run.addStretch(1)
        run.addWidget(self.btn_build); run.addWidget(self.btn_cancel_wait)

        root = QVBoxLayout(self)
        root.addLayout(grid)
        root.addWidget(QLabel("패치 (체크 해제 = 제외)"))
        root.addLayout(patches)
        root.addWidget(self.list_widget, 2)
        root.addLayout(run)
        root.addWidget(self.progress)
        root.addWidget(self.log, 3)

    def closeEvent(self, e):
        if self._cancel_evt is not None:
            self._cancel_evt.set()
        self._qin.put({"cmd":"adb_kill","adb":self.adb_path or ""})
        self._qin.put(None)
        return super().closeEvent(e)

    def _pb_busy(self):
        self.progress.setRange(0, 0)

    def _pb_idle(self):
        self.progress.setRange(0, 1)
        self.progress.setValue(0)

    def _pb_set(self, pct: int):
        self.progress.setRange(0, 100)
        self.progress.setValue(max(0, min(100, int(pct))))

    def _drain_queues(self):
        drained = False
        while True:
            try:
                m = self._qout.get_nowait()
            except queue.Empty:
                break

            drained = True
            t = m.get("type")

            if t == "log":
                self.log.append(m.get("text",""))
            elif t == "fail":
                self._pending_build = None
                self.btn_cancel_wait.setEnabled(False)
                QMessageBox.warning(self, "실패", m.get("error","오류"))
                self._pb_idle()
            elif t == "done":
                if not self._pending_build:
                    self._pb_idle()
            elif t == "progress":
                if m.get("phase") == "download":
                    self._pb_set(int(m.get("value", 0)))
            elif t == "env":
                jline = (m.get("java_out","").splitlines()[0] if m.get("java_out") else "")
                self.java_status.setText(f"Java: {'OK' if m.get('java_ok') else '없음'} ({jline})")
                self.toolchain_status.setText(f"구성요소: {'OK' if m.get('toolchain_ok') else '다운로드 필요'}")
                self.adb_path = m.get("adb_path") or None
                self.adb_status.setText(f"ADB: {self.adb_path or '없음'}")
            elif t == "setup_ok":
                self.java_path = m.get("java") or self.java_path
                self.toolchain = {k: m[k] for k in ("cli", "integrations", "patches")}
                self.toolchain_status.setText("구성요소: OK")
                if self.java_path:
                    self.java_status.setText(f"Java: OK ({self.java_path})")
            elif t == "adb_path_set":
                self.adb_path = m.get("path") or None
                self.adb_status.setText(f"ADB: {self.adb_path or '없음'}")
            elif t == "patches":
                self.entries = m.get("entries",[])
                _fill_patch_list(self.list_widget, self.entries, ())
            elif t == "adb_device":
                self.btn_cancel_wait.setEnabled(False)
                pending, self._pending_build = self._pending_build, None
                if pending:
                    pending["deploy_on"] = m.get("serial")
                    self._qin.put(pending)
            elif t == "adb_wait_cancelled":
                self.btn_cancel_wait.setEnabled(False)
                self._pending_build = None
                self.log.append("[ADB] 설치 대상 기기 선택이 취소되었습니다.")
                self._pb_idle()
            elif t == "build_begin":
                self._pb_busy()
            elif t == "build_end":
                self.log.append(f"[DONE] 패치 종료 code={m.get('code')} → {m.get('apk')}")
                self._pb_idle()

        if drained:
            self.log.moveCursor(QTextCursor.End)
            self.log.ensureCursorVisible()

    def _prompt_file(self, title: str, filt: str, exts) -> Optional[str]:
        while True:
            path, _ = QFileDialog.getOpenFileName(self, title, "", filt)
            if not path:
                return None
            err = _validate_input_file(path, exts)
            if not err:
                return path
            QMessageBox.warning(self, "입력 오류", err)

    def _excluded(self) -> List[str]:
        return _unchecked_names(self.list_widget)

    def on_env_check(self):
        self._pb_busy()
        self._qin.put({"cmd":"env_check"})

    def on_setup(self):
        self._pb_busy()
        self._qin.put({"cmd":"setup"})

    def on_adb_install(self):
        self._pb_busy()
        self.log.append("[RUN] ADB 설치 시작")
        self._qin.put({"cmd":"install_adb"})

    def pick_apk(self):
        path = self._prompt_file("APK 선택", "APK (*.apk)", APK_EXTS)
        if path:
            self.apk_edit.setText(path)

    def pick_keystore(self):
        path = self._prompt_file("Keystore 선택", "Keystore (*.keystore *.jks)", KEYSTORE_EXTS)
        if path:
            self.keystore_edit.setText(path)

    def _check_ready(self) -> bool:
        if not self.java_path or not self.toolchain:
            QMessageBox.information(self, "안내", "먼저 Java/구성요소 준비를 실행하세요.")
            return False
        err = _validate_input_file(self.apk_edit.text(), APK_EXTS)
        if err:
            QMessageBox.warning(self, "입력 오류", err)
            self.pick_apk()
            return False
        return True

    def on_list_patches(self):
        if not self._check_ready():
            return
        self._pb_busy()
        self._qin.put({"cmd":"list_patches","java":self.java_path,"apk":self.apk_edit.text().strip(), **self.toolchain})

    def open_patch_picker(self):
        if not self.entries:
            QMessageBox.information(self, "안내", "먼저 ‘패치 목록 불러오기’를 실행해 주세요.")
            return
        dlg = PatchPickerDialog(self.entries, set(self._excluded()), self)
        if dlg.exec() == QDialog.Accepted:
            _fill_patch_list(self.list_widget, self.entries, set(dlg.get_excluded()))

    def on_build(self):
        if not self._check_ready():
            return
        keystore = self.keystore_edit.text().strip()
        if keystore:
            err = _validate_input_file(keystore, KEYSTORE_EXTS)
            if err:
                QMessageBox.warning(self, "입력 오류", err)
                self.pick_keystore()
                return
        in_apk = Path(self.apk_edit.text().strip())
        out_apk = self.out_dir / (in_apk.stem + "-revanced.apk")
        msg = {
            "cmd":"build",
            "java":self.java_path, "apk":str(in_apk), "out_apk":str(out_apk),
            "excluded":self._excluded(), "keystore":keystore,
            **self.toolchain,
        }
        self._pb_busy()
        if self.deploy_check.isChecked():
            self._pending_build = msg
            if self._cancel_evt is not None:
                self._cancel_evt.clear()
            self.btn_cancel_wait.setEnabled(True)
            self.log.append("[ADB] 기기를 연결하고 USB 디버깅을 허용해 주세요.")
            self._qin.put({"cmd":"wait_device","adb":self.adb_path or ""})
        else:
            self._qin.put(msg)

    def on_cancel_wait(self):
        if self._cancel_evt is not None:
            self._cancel_evt.set()
