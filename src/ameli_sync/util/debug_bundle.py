from __future__ import annotations

import logging
import re
import time
import zipfile
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)

_UNSAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9_-]+")


def save_debug_html(html: str, *, debug_dir: Optional[str], name_prefix: str) -> Optional[Path]:
    """
    Save a fetched portal page so markup changes can be diagnosed offline.

    Returns the written path, or None when debugging is disabled or the write failed.
    """
    if not debug_dir:
        return None
    safe = _UNSAFE_NAME_RE.sub("_", name_prefix).strip("_")[:60] or "page"
    try:
        out_dir = Path(debug_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        out = out_dir / f"{safe}.html"
        out.write_text(html, encoding="utf-8")
        return out
    except OSError:
        logger.debug("Failed to save debug html (name=%s).", name_prefix, exc_info=True)
        return None


def create_debug_bundle(*, debug_dir: str, log_file: str, out_dir: str = "data") -> Path:
    """
    Zip the saved portal pages together with the run log.

    Never includes `.env`, config files or the bill database.
    """
    out_root = Path(out_dir)
    out_root.mkdir(parents=True, exist_ok=True)

    stamp = time.strftime("%Y%m%d_%H%M%S")
    out_path = out_root / f"debug_bundle_ameli_{stamp}.zip"

    dbg = Path(debug_dir)
    log = Path(log_file)

    with zipfile.ZipFile(out_path, "w", compression=zipfile.ZIP_DEFLATED) as z:
        if log.is_file():
            z.write(log, arcname=log.name)
        if dbg.is_dir():
            for p in sorted(dbg.rglob("*.html")):
                z.write(p, arcname=str(Path("debug") / p.relative_to(dbg)))

    return out_path
