from unittest.mock import MagicMock

import pytest
import requests

from ogimg import cli
from ogimg.errors import FetchError, FontError
from ogimg.services import font_assets
from ogimg.services.font_assets import font_source_url, provision_fonts

from conftest import make_font

BASE = "https://fonts.example/ofl"


def _response(body):
    resp = MagicMock()
    resp.headers = {}
    resp.iter_content.return_value = iter([body])
    resp.raise_for_status.return_value = None
    return resp


def _session(body):
    session = MagicMock()
    session.get.return_value = _response(body)
    return session


def test_missing_emoji_face_is_downloaded(tmp_path):
    font_bytes = make_font(tmp_path / "src.ttf", [0x1F642]).read_bytes()
    fonts_dir = tmp_path / "fonts"
    session = _session(font_bytes)

    written = provision_fonts(fonts_dir, ["NotoEmoji-Regular.ttf"], session=session, base_url=BASE)

    assert written == [fonts_dir / "NotoEmoji-Regular.ttf"]
    assert written[0].read_bytes() == font_bytes
    assert session.get.call_args.args[0] == f"{BASE}/notoemoji/NotoEmoji%5Bwght%5D.ttf"
    assert not list(fonts_dir.glob("*.part"))


def test_present_faces_are_not_downloaded(tmp_path):
    make_font(tmp_path / "Lato-Regular.ttf", [ord("A")])
    session = _session(b"unused")

    assert provision_fonts(tmp_path, ["Lato-Regular.ttf"], session=session, base_url=BASE) == []
    session.get.assert_not_called()


def test_non_font_download_is_not_stored(tmp_path):
    session = _session(b"<html>not found</html>")
    with pytest.raises(FontError):
        provision_fonts(tmp_path, ["NotoEmoji-Regular.ttf"], session=session, base_url=BASE)
    assert not (tmp_path / "NotoEmoji-Regular.ttf").exists()
    assert not list(tmp_path.glob("*.part"))


def test_download_failure_is_fetch_error(tmp_path):
    session = MagicMock()
    session.get.side_effect = requests.ConnectionError("offline")
    with pytest.raises(FetchError):
        provision_fonts(tmp_path, ["NotoEmoji-Regular.ttf"], session=session, base_url=BASE)


def test_unknown_face_has_no_source():
    with pytest.raises(FontError):
        font_source_url("Custom.ttf", BASE)


def test_fonts_command_reports_written_files(tmp_path, monkeypatch, capsys):
    target = tmp_path / "NotoEmoji-Regular.ttf"
    seen = {}

    def fake_provision(fonts_dir):
        seen["dir"] = fonts_dir
        return [target]

    monkeypatch.setattr(cli, "provision_fonts", fake_provision)
    assert cli.fonts_main(["--fonts-dir", str(tmp_path)]) == 0
    assert seen["dir"] == tmp_path
    assert str(target) in capsys.readouterr().out


def test_fonts_command_reports_failure(tmp_path, monkeypatch, capsys):
    def failing(fonts_dir):
        raise FetchError("offline", resource=font_assets.font_source_url("NotoEmoji-Regular.ttf", BASE))

    monkeypatch.setattr(cli, "provision_fonts", failing)
    assert cli.fonts_main(["--fonts-dir", str(tmp_path)]) == 1
    assert "offline" in capsys.readouterr().err
