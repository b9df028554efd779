"""Download and unpack the BestChange ``info.zip`` snapshot.

Only the three tables the pipeline joins are extracted.
"""

from __future__ import annotations

import logging
import os
import zipfile
from dataclasses import dataclass
from pathlib import Path
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from ..errors import DecodeError, TransportError


logger = logging.getLogger(__name__)

USER_AGENT = "stock-observer/1.0"

CURRENCIES_FILE = "bm_cy.dat"
EXCHANGERS_FILE = "bm_exch.dat"
RATES_FILE = "bm_rates.dat"

CHUNK_SIZE = 1024 * 512


@dataclass(frozen=True)
class SnapshotFiles:
    currencies: Path
    exchangers: Path
    rates: Path


def download_archive(url: str, dest_dir: Path, timeout: float = 60.0) -> Path:
    """Stream ``url`` into ``dest_dir`` and return the local path.

    Writes to a ``.part`` file first so a failed transfer never leaves a
    truncated archive behind.
    """
    file_name = os.path.basename(urlparse(url).path) or "info.zip"
    dest_path = Path(dest_dir) / file_name
    tmp_path = dest_path.with_name(file_name + ".part")
    dest_path.parent.mkdir(parents=True, exist_ok=True)
    bytes_written = 0
    req = Request(url, headers={"User-Agent": USER_AGENT})
    try:
        with urlopen(req, timeout=timeout) as resp, open(tmp_path, "wb") as f:
            while True:
                chunk = resp.read(CHUNK_SIZE)
                if not chunk:
                    break
                f.write(chunk)
                bytes_written += len(chunk)
        os.replace(tmp_path, dest_path)
    except HTTPError as e:
        raise TransportError(f"could not download {url}: status {e.code}") from e
    except (URLError, OSError) as e:
        # URLError and socket timeouts are both OSError subclasses
        raise TransportError(f"could not download {url}: {e}") from e
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    logger.debug("downloaded %s (%d bytes)", url, bytes_written)
    return dest_path


def unpack_archive(zip_path: Path, out_dir: Path) -> SnapshotFiles:
    members = (CURRENCIES_FILE, EXCHANGERS_FILE, RATES_FILE)
    out_dir = Path(out_dir)
    try:
        with zipfile.ZipFile(zip_path, "r") as zf:
            names = set(zf.namelist())
            missing = [m for m in members if m not in names]
            if missing:
                raise DecodeError(f"{zip_path} is missing {', '.join(missing)}")
            for member in members:
                zf.extract(member, out_dir)
    except (zipfile.BadZipFile, OSError) as e:
        raise DecodeError(f"could not unpack {zip_path}: {e}") from e
    return SnapshotFiles(
        currencies=out_dir / CURRENCIES_FILE,
        exchangers=out_dir / EXCHANGERS_FILE,
        rates=out_dir / RATES_FILE,
    )
