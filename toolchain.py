import re
from pathlib import Path
from multiprocessing import Queue
from typing import List, Tuple, Optional

import requests

from adb import find_adb
from models import ToolchainPaths
from utils import (
    _run_capture, _which, _os_name, _arch_name, _data_root, _ensure_dir, _make_executable,
    _download_file, _download_and_extract, SetupError,
    CLI_REPO, INTEGRATIONS_REPO, PATCHES_REPO, RELEASE_TAG,
    CLI_ASSET_RE, INTEGRATIONS_ASSET_RE, PATCHES_ASSET_RE,
    CLI_FILE_NAME, INTEGRATIONS_FILE_NAME, PATCHES_FILE_NAME,
    ADOPTIUM_ASSETS_URL, PLATFORM_TOOLS_WIN_ZIP, PLATFORM_TOOLS_MAC_ZIP, PLATFORM_TOOLS_LINUX_ZIP,
)

JAVA_MIN, JAVA_MAX = 17, 25

# --- Java -------------------------------------------------------------------

def _is_graalvm_runtime(info_text: str, java_path: Optional[str] = None) -> bool:
    t = (info_text or "").lower()
    if "graalvm" in t or "mandrel" in t:
        return True
    if java_path:
        p = str(java_path).lower()
        if "graalvm" in p or "mandrel" in p:
            return True
    return False

def _java_major(text: str) -> Optional[int]:
    m = re.search(r'\bversion "([^"]+)"', text or "")
    if not m:
        return None
    parts = m.group(1).split(".")
    head = parts[1] if parts[0] == "1" and len(parts) > 1 else parts[0]
    mm = re.match(r"\d+", head)
    return int(mm.group(0)) if mm else None

def _check_java(java_path: str) -> Tuple[bool, str, Optional[int]]:
    try:
        code, out, err = _run_capture([str(java_path), "-version"], timeout=30)
    except OSError as e:
        return False, str(e), None
    text = (err or out or "").strip()
    if _is_graalvm_runtime(text, java_path):
        return False, text + "\n[GraalVM/ Mandrel 감지됨 → 오류 가능성 있음]", None
    major = _java_major(text)
    ok = major is not None and JAVA_MIN <= major < JAVA_MAX
    return ok, text, major if ok else None

def _local_jre_dir(root: Path) -> Path:
    return root / "jre"

def _find_local_java(root: Path) -> Optional[Path]:
    base = _local_jre_dir(root)
    if not base.exists():
        return None
    name = "java.exe" if _os_name() == "windows" else "java"
    for p in sorted(base.glob(f"**/bin/{name}")):
        if p.is_file():
            return p
    return None

def find_java(root: Optional[Path] = None) -> Tuple[Optional[str], str]:
    root = root or _data_root()
    candidates = []
    sys_java = _which("java")
    if sys_java:
        candidates.append(sys_java)
    local = _find_local_java(root)
    if local:
        candidates.append(str(local))
    info = "java 미발견"
    for c in candidates:
        ok, text, _ = _check_java(c)
        if ok:
            return c, text
        info = text
    return None, info

def _adoptium_os() -> str:
    return {"windows": "windows", "darwin": "mac", "linux": "linux"}.get(_os_name(), "")

def _find_temurin_archive_url(out_q: Queue) -> Optional[str]:
    os_key = _adoptium_os()
    if not os_key:
        raise SetupError(f"지원하지 않는 OS: {_os_name()}")
    arch = _arch_name()
    want = ".zip" if os_key == "windows" else ".tar.gz"
    tries = [
        {"architecture": arch, "image_type": "jre", "os": os_key, "vendor": "eclipse"},
        {"architecture": arch, "image_type": "jdk", "os": os_key, "vendor": "eclipse"},
    ]
    for params in tries:
        try:
            r = requests.get(ADOPTIUM_ASSETS_URL, params=params, timeout=30)
            r.raise_for_status()
            assets = r.json()
        except (requests.RequestException, ValueError) as e:
            out_q.put({"type":"log","text":f"[Adoptium] {e}"})
            continue
        for a in assets:
            b = a.get("binary") or {}
            for bin_ in ([b] if b else []) + list(a.get("binaries", [])):
                link = (bin_.get("package") or {}).get("link") or ""
                if link.lower().endswith(want):
                    return link
    return None

def ensure_java(out_q: Queue, root: Optional[Path] = None) -> str:
    root = root or _data_root()
    java, info = find_java(root)
    if java:
        out_q.put({"type":"log","text":f"[JAVA] 사용: {java}"})
        return java
    out_q.put({"type":"log","text":f"[JAVA] 사용 가능한 Java 없음 → Temurin {JAVA_MIN} 다운로드"})
    url = _find_temurin_archive_url(out_q)
    if not url:
        raise SetupError("Temurin 아카이브 URL을 찾지 못했습니다.")
    _download_and_extract(url, _local_jre_dir(root), out_q, target_key="java")
    local = _find_local_java(root)
    if local and _os_name() != "windows":
        _make_executable(local)
    java, info = find_java(root)
    if not java:
        raise SetupError(f"Java 설치 후에도 실행 가능한 Java가 없습니다.\n{info}")
    out_q.put({"type":"log","text":f"[JAVA] 설치 완료: {java}"})
    return java

# --- releases -----------------------------------------------------------------

def _release_api_url(repo: str, tag: str = RELEASE_TAG) -> str:
    if not tag or tag == "latest":
        return f"https://api.github.com/repos/{repo}/releases/latest"
    return f"https://api.github.com/repos/{repo}/releases/tags/{tag}"

def _get_release(repo: str, tag: str = RELEASE_TAG):
    r = requests.get(_release_api_url(repo, tag), timeout=30)
    r.raise_for_status()
    data = r.json()
    return data.get('tag_name') or '', data.get('assets') or []

def _asset_download_url(asset: dict) -> str:
    for k in ("browser_download_url", "url"):
        v = asset.get(k)
        if v and isinstance(v, str) and v.startswith(("http://", "https://")):
            return v
    return ""

def _pick_asset(assets: List[dict], pattern: str) -> Tuple[Optional[str], Optional[str]]:
    rx = re.compile(pattern, re.IGNORECASE)
    for a in assets:
        name = str(a.get("name", ""))
        if not rx.search(name):
            continue
        url = _asset_download_url(a)
        if url:
            return url, name
    return None, None

def resolve_toolchain_paths(root: Optional[Path] = None) -> ToolchainPaths:
    root = root or _data_root()
    return ToolchainPaths(root / CLI_FILE_NAME, root / INTEGRATIONS_FILE_NAME, root / PATCHES_FILE_NAME)

def ensure_toolchain(out_q: Queue, root: Optional[Path] = None, tag: str = RELEASE_TAG) -> ToolchainPaths:
    paths = resolve_toolchain_paths(root)
    _ensure_dir(paths.cli_archive.parent)
    parts = (
        ("cli", paths.cli_archive, CLI_REPO, CLI_ASSET_RE),
        ("integrations", paths.integrations_bundle, INTEGRATIONS_REPO, INTEGRATIONS_ASSET_RE),
        ("patches", paths.patch_bundle, PATCHES_REPO, PATCHES_ASSET_RE),
    )
    for key, dest, repo, pattern in parts:
        if dest.is_file():
            out_q.put({"type":"log","text":f"[SKIP] 이미 존재: {dest}"})
            continue
        tag_name, assets = _get_release(repo, tag)
        url, name = _pick_asset(assets, pattern)
        if not url:
            raise SetupError(f"{repo} {tag_name or tag} 릴리스에서 일치하는 파일이 없습니다. ({pattern})")
        out_q.put({"type":"log","text":f"[DL] {repo} {tag_name}: {name}"})
        _download_file(url, dest, out_q, target_key=key)
    return paths

# --- platform-tools -------------------------------------------------------------

def ensure_platform_tools(out_q: Queue, root: Optional[Path] = None) -> str:
    root = root or _data_root()
    existing = find_adb(root)
    if existing:
        out_q.put({"type":"log","text":f"[SKIP] ADB 이미 존재: {existing}"})
        return existing
    os_name = _os_name()
    if os_name == "windows":
        base, url, adb_exe = root / "platform-tools-win", PLATFORM_TOOLS_WIN_ZIP, "platform-tools/adb.exe"
    elif os_name == "darwin":
        base, url, adb_exe = root / "platform-tools-mac", PLATFORM_TOOLS_MAC_ZIP, "platform-tools/adb"
    elif os_name == "linux":
        base, url, adb_exe = root / "platform-tools-linux", PLATFORM_TOOLS_LINUX_ZIP, "platform-tools/adb"
    else:
        raise SetupError(f"지원하지 않는 OS: {os_name}")
    extract_root = _download_and_extract(url, base, out_q, target_key="adb-zip")
    p_adb = extract_root / adb_exe
    if not p_adb.is_file():
        raise SetupError(f"압축 해제 후 adb를 찾지 못했습니다: {p_adb}")
    if os_name != "windows":
        _make_executable(p_adb)
    out_q.put({"type":"log","text":f"[SET] ADB 경로 설정: {p_adb}"})
    return str(p_adb)
