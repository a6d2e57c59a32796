import os, shutil, subprocess, platform, time, stat, tarfile, zipfile
from pathlib import Path
from typing import List, Tuple, Optional, Iterable
from multiprocessing import Queue

import requests

CLI_REPO = "revanced/revanced-cli"
INTEGRATIONS_REPO = "revanced/revanced-integrations"
PATCHES_REPO = "revanced/revanced-patches"
RELEASE_TAG = "latest"

CLI_ASSET_RE = r"^revanced-cli-.*-all\.jar$"
INTEGRATIONS_ASSET_RE = r"^(?:app-release-unsigned|revanced-integrations.*)\.apk$"
PATCHES_ASSET_RE = r"^revanced-patches-.*\.jar$"

CLI_FILE_NAME = "revanced-cli.jar"
INTEGRATIONS_FILE_NAME = "revanced-integrations.apk"
PATCHES_FILE_NAME = "revanced-patches.jar"

ADOPTIUM_ASSETS_URL = "https://api.adoptium.net/v3/assets/latest/17/hotspot"
PLATFORM_TOOLS_WIN_ZIP = "https://dl.google.com/android/repository/platform-tools-latest-windows.zip"
PLATFORM_TOOLS_MAC_ZIP = "https://dl.google.com/android/repository/platform-tools-latest-darwin.zip"
PLATFORM_TOOLS_LINUX_ZIP = "https://dl.google.com/android/repository/platform-tools-latest-linux.zip"

DEVICE_POLL_INTERVAL = 2.0

_WIN_NO_WINDOW = 0
if platform.system().lower() == "windows":
    try:
        _WIN_NO_WINDOW = subprocess.CREATE_NO_WINDOW
    except Exception:
        _WIN_NO_WINDOW = 0


class SetupError(RuntimeError):
    pass

class CommandTimeout(SetupError):
    def __init__(self, cmd, timeout, output: str = ""):
        super().__init__(f"command timed out after {timeout}s: {cmd[0] if cmd else cmd}")
        self.cmd = cmd
        self.timeout = timeout
        self.output = output

class WaitTimeout(SetupError):
    pass


def _safe_decode(b: bytes, encodings=("utf-8", "cp949", "euc-kr")) -> str:
    for enc in encodings:
        try:
            return b.decode(enc)
        except UnicodeDecodeError:
            continue
    return b.decode("utf-8", errors="replace")

def _which(binname: str) -> Optional[str]:
    return shutil.which(binname)

def _os_name():
    return platform.system().lower()

def _arch_name() -> str:
    m = platform.machine().lower()
    if m in ("x86_64", "amd64", "x64"):
        return "x64"
    if m in ("aarch64", "arm64", "armv8l"):
        return "aarch64"
    raise SetupError(f"지원하지 않는 아키텍처: {m or 'unknown'}")

def _data_root() -> Path:
    return Path.cwd() / "tools"

def _output_root() -> Path:
    return Path.cwd() / "output"

def _ensure_dir(p: Path):
    p.mkdir(parents=True, exist_ok=True)

def _run_capture(cmd, cwd=None, env=None, timeout: Optional[float] = None) -> Tuple[int, str, str]:
    p = subprocess.Popen(cmd, cwd=cwd, env=env, stdout=subprocess.PIPE, stderr=subprocess.PIPE, creationflags=_WIN_NO_WINDOW)
    try:
        out_b, err_b = p.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        p.kill()
        out_b, err_b = p.communicate()
        raise CommandTimeout(cmd, timeout, _safe_decode(out_b or b"") + _safe_decode(err_b or b""))
    return p.returncode, _safe_decode(out_b), _safe_decode(err_b)

def _validate_input_file(path: str, extensions: Iterable[str]) -> Optional[str]:
    """Return a message describing what is wrong with ``path``, or None if it is usable."""
    p = (path or "").strip().strip('"')
    if not p:
        return "파일 경로가 비어 있습니다."
    exts = tuple(e.lower() for e in extensions)
    if not p.lower().endswith(exts):
        return f"지원하지 않는 파일 형식입니다. ({', '.join(exts)})"
    if not Path(p).is_file():
        return f"파일을 찾을 수 없습니다: {p}"
    return None

def _download_file(url: str, dest_path: Path, out_q: Queue, target_key: str, retries: int=3):
    _ensure_dir(dest_path.parent)
    part = dest_path.with_name(dest_path.name + ".part")
    last_err = None
    for attempt in range(1, retries+1):
        try:
            with requests.get(url, stream=True, timeout=(5, 60)) as r:
                r.raise_for_status()
                total = int(r.headers.get('Content-Length', 0))
                done = 0
                with open(part, 'wb') as f:
                    for chunk in r.iter_content(1024*64):
                        if not chunk:
                            continue
                        f.write(chunk); done += len(chunk)
                        if total:
                            pct = int(done * 100 / total)
                            out_q.put({"type":"progress","phase":"download","target":target_key,"value":pct,"done":done,"total":total})
            os.replace(part, dest_path)
            out_q.put({"type":"log","text":f"[OK] {dest_path.name} → {dest_path}"})
            return dest_path
        except (requests.RequestException, OSError) as e:
            last_err = e
            out_q.put({"type":"log","text":f"[DL RETRY {attempt}/{retries}] {e}"})
            time.sleep(1.0 * attempt)
    part.unlink(missing_ok=True)
    raise SetupError(f"다운로드 실패: {url}\n{last_err}")

def _check_member_path(dest_dir: Path, name: str) -> Path:
    out_path = (dest_dir / name).resolve()
    if out_path != dest_dir and dest_dir not in out_path.parents:
        raise SetupError(f"Archive entry escapes target dir: {name}")
    return out_path

def _safe_extractall(zf: zipfile.ZipFile, dest_dir: Path):
    dest_dir = dest_dir.resolve()
    for member in zf.infolist():
        out_path = _check_member_path(dest_dir, member.filename)
        if member.is_dir():
            out_path.mkdir(parents=True, exist_ok=True)
        else:
            out_path.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(member, 'r') as src, open(out_path, 'wb') as dst:
                shutil.copyfileobj(src, dst)

def _safe_extract_tar(tf: tarfile.TarFile, dest_dir: Path):
    dest_dir = dest_dir.resolve()
    members = []
    for member in tf.getmembers():
        _check_member_path(dest_dir, member.name)
        if member.issym() or member.islnk():
            _check_member_path(dest_dir, str(Path(member.name).parent / member.linkname))
        members.append(member)
    tf.extractall(dest_dir, members=members)

def _download_and_extract(url: str, dest_dir: Path, out_q: Queue, target_key: str) -> Path:
    _ensure_dir(dest_dir)
    is_zip = url.lower().split("?")[0].endswith(".zip")
    tmp_archive = dest_dir / ("tmp_download.zip" if is_zip else "tmp_download.tar.gz")
    _download_file(url, tmp_archive, out_q, target_key=target_key)
    try:
        if is_zip:
            with zipfile.ZipFile(tmp_archive, 'r') as z:
                _safe_extractall(z, dest_dir)
        else:
            with tarfile.open(tmp_archive, 'r:*') as t:
                _safe_extract_tar(t, dest_dir)
        out_q.put({"type":"log","text":f"[OK] 압축 해제 → {dest_dir}"})
        return dest_dir
    finally:
        tmp_archive.unlink(missing_ok=True)

def _make_executable(p: Path):
    try:
        mode = os.stat(p).st_mode
        os.chmod(p, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    except OSError:
        pass

def _format_cmdline(cmd: List[str]) -> str:
    return " ".join(f"\"{c}\"" if " " in c else c for c in cmd)
