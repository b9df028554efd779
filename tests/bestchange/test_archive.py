from __future__ import annotations

import zipfile

import pytest

from stock_observer.bestchange.archive import download_archive, unpack_archive
from stock_observer.errors import DecodeError


def _zip(path, members):
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return path


def test_download_archive(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    payload = b"x" * (1024 * 1024 + 17)
    (src / "info.zip").write_bytes(payload)
    out = tmp_path / "out"
    path = download_archive((src / "info.zip").as_uri(), out)
    assert path == out / "info.zip"
    assert path.read_bytes() == payload
    assert not (out / "info.zip.part").exists()


def test_unpack_archive(tmp_path):
    z = _zip(tmp_path / "info.zip", {"bm_cy.dat": "1;0;USD", "bm_exch.dat": "10;FastEx", "bm_rates.dat": "", "bm_other.dat": "x"})
    files = unpack_archive(z, tmp_path / "tables")
    assert files.currencies.read_text() == "1;0;USD"
    assert files.exchangers.name == "bm_exch.dat"
    assert files.rates.exists()
    assert not (tmp_path / "tables" / "bm_other.dat").exists()


def test_unpack_missing_member(tmp_path):
    z = _zip(tmp_path / "info.zip", {"bm_cy.dat": "1;0;USD"})
    with pytest.raises(DecodeError, match="bm_exch.dat"):
        unpack_archive(z, tmp_path / "tables")


def test_unpack_not_a_zip(tmp_path):
    z = tmp_path / "info.zip"
    z.write_bytes(b"not a zip")
    with pytest.raises(DecodeError):
        unpack_archive(z, tmp_path / "tables")
