from __future__ import annotations

import time
import zipfile
from pathlib import Path
from typing import Iterable, Optional


def create_debug_bundle(
    *,
    debug_dir: str,
    log_file: str,
    out_dir: str = "data",
    label: str = "",
    extra_paths: Optional[Iterable[str]] = None,
    exclude_paths: Iterable[str] = (),
) -> Path:
    """
    Zip the page captures under `debug_dir` plus the log file for sharing.

    Session cookies and pending magic links are credentials: pass their paths in
    `exclude_paths` and they are skipped even if they sit inside `debug_dir`.
    """
    out_root = Path(out_dir)
    out_root.mkdir(parents=True, exist_ok=True)

    stamp = time.strftime("%Y%m%d_%H%M%S")
    tag = (label or "").strip().lower()
    tag_part = f"_{tag}" if tag else ""
    out_path = out_root / f"debug_bundle{tag_part}_{stamp}.zip"

    excluded = {Path(p).resolve() for p in exclude_paths if p}
    dbg = Path(debug_dir)
    log = Path(log_file)

    def _add_file(z: zipfile.ZipFile, file_path: Path, arcname: str) -> None:
        try:
            if file_path.resolve() in excluded:
                return
            if file_path.exists() and file_path.is_file():
                z.write(file_path, arcname=arcname)
        except Exception:
            # best-effort; a capture disappearing mid-bundle is not worth failing over
            return

    with zipfile.ZipFile(out_path, "w", compression=zipfile.ZIP_DEFLATED) as z:
        _add_file(z, log, arcname=log.name)

        if dbg.exists() and dbg.is_dir():
            for p in sorted(dbg.rglob("*")):
                if not p.is_file():
                    continue
                rel = p.relative_to(dbg)
                _add_file(z, p, arcname=str(Path("debug") / rel))

        for raw in extra_paths or ():
            p = Path(raw)
            if p.is_file():
                _add_file(z, p, arcname=str(Path("extra") / p.name))

    return out_path
