import subprocess
from pathlib import Path
from multiprocessing import Queue
from typing import List, Optional, Iterable, Iterator

from models import PatchEntry, ToolchainPaths
from parsers import CATALOG_PARSER, OutputParser
from utils import _safe_decode, _format_cmdline, _ensure_dir, CommandTimeout, _WIN_NO_WINDOW

DISCOVERY_OUT_NAME = "discovery-out.apk"


class ProcessHandle:
    """
    One patcher run. Built with its argv fixed, started later exactly once.

    stderr is always merged into stdout so a single pipe carries everything
    the tool prints.
    """

    def __init__(self, cmd: List[str], cwd: Optional[Path] = None, env=None):
        self.cmd = list(cmd)
        self.cwd = cwd
        self.env = env
        self.proc: Optional[subprocess.Popen] = None

    @property
    def started(self) -> bool:
        return self.proc is not None

    @property
    def returncode(self) -> Optional[int]:
        return self.proc.returncode if self.proc else None

    def start(self) -> "ProcessHandle":
        if self.proc is not None:
            raise RuntimeError("process already started")
        self.proc = subprocess.Popen(
            self.cmd, cwd=self.cwd, env=self.env,
            stdin=subprocess.DEVNULL, stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
            bufsize=0, creationflags=_WIN_NO_WINDOW,
        )
        return self

    def _require_started(self):
        if self.proc is None:
            raise RuntimeError("process not started")

    def iter_lines(self) -> Iterator[str]:
        self._require_started()
        for raw in iter(self.proc.stdout.readline, b''):
            yield _safe_decode(raw).rstrip("\r\n")

    def capture(self, timeout: Optional[float] = None) -> str:
        self._require_started()
        try:
            out_b, _ = self.proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            self.proc.kill()
            out_b, _ = self.proc.communicate()
            raise CommandTimeout(self.cmd, timeout, _safe_decode(out_b or b""))
        return _safe_decode(out_b or b"")

    def wait(self) -> int:
        self._require_started()
        return self.proc.wait()


def build_invocation(java_path: str, base_apk: Path, out_apk: Path, temp_dir: Path,
                     toolchain: ToolchainPaths, extra_args: Iterable[str] = ()) -> ProcessHandle:
    cmd = [
        str(java_path), "--show-version",
        "-jar", str(toolchain.cli_archive),
        "--apk", str(base_apk),
        "--out", str(out_apk),
        "--bundles", str(toolchain.patch_bundle),
        "--merge", str(toolchain.integrations_bundle),
        "--temp-dir", str(temp_dir),
        "--clean",
    ]
    cmd.extend(str(a) for a in extra_args)
    return ProcessHandle(cmd)

def apply_args(excluded: Iterable[str], deploy_on: Optional[str] = None, keystore: Optional[Path] = None) -> List[str]:
    args: List[str] = []
    for name in excluded:
        args += ["-e", name]
    if deploy_on:
        args += ["--deploy-on", deploy_on]
    if keystore:
        args += ["--keystore", str(keystore)]
    return args

def list_patches(java_path: str, base_apk: Path, temp_dir: Path, toolchain: ToolchainPaths,
                 timeout: Optional[float] = None, parser: OutputParser = CATALOG_PARSER) -> List[PatchEntry]:
    _ensure_dir(temp_dir)
    handle = build_invocation(java_path, base_apk, temp_dir / DISCOVERY_OUT_NAME, temp_dir, toolchain, ["--list"])
    text = handle.start().capture(timeout=timeout)
    return parser.parse(text)

def apply_patches(java_path: str, base_apk: Path, out_apk: Path, temp_dir: Path, toolchain: ToolchainPaths,
                  excluded: Iterable[str], deploy_on: Optional[str] = None,
                  keystore: Optional[Path] = None) -> ProcessHandle:
    _ensure_dir(temp_dir)
    handle = build_invocation(java_path, base_apk, out_apk, temp_dir, toolchain,
                              apply_args(excluded, deploy_on, keystore))
    return handle.start()

def stream_status(handle: ProcessHandle, out_q: Queue) -> int:
    out_q.put({"type":"log","text":"[CMD] " + _format_cmdline(handle.cmd)})
    for line in handle.iter_lines():
        out_q.put({"type":"log","text":line})
    code = handle.wait()
    out_q.put({"type":"log","text":f"[PATCH] 종료 code={code}"})
    out_q.put({"type":"patch_exit","code":code})
    return code
