import json
import os
from unittest import mock

import pytest

import main


CATALOG = [
    {"id": "PROD-00001", "name": "Organic Apples"},
    {"id": "PROD-00007", "name": "Greek Yogurt"},
]


@pytest.fixture
def workspace(tmp_path):
    catalog = tmp_path / "catalog.json"
    catalog.write_text(json.dumps(CATALOG), encoding="utf-8")
    with mock.patch.dict(os.environ, {}, clear=True):
        yield tmp_path, catalog


def _run(workspace, *args):
    tmp_path, _ = workspace
    return main.run(["--env-file", str(tmp_path / "absent.env"), *args])


def test_text_resolution_prints_json(workspace, capsys):
    _, catalog = workspace

    code = _run(workspace, "--catalog", str(catalog), "--text", "PROD-00007 Greek Yogurt")

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["result"]["kind"] == "exact"
    assert payload["result"]["entry"]["id"] == "PROD-00007"


def test_qr_payload_resolution(workspace, capsys):
    _, catalog = workspace

    code = _run(workspace, "--catalog", str(catalog), "--qr", "https://example.com/p/PROD-00001")

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["source"] == "structured"
    assert payload["result"]["entry"]["id"] == "PROD-00001"


def test_blank_qr_payload_is_rejected(workspace, capsys):
    _, catalog = workspace

    assert _run(workspace, "--catalog", str(catalog), "--qr", "   ") == 2
    assert capsys.readouterr().out == ""


def test_catalog_wrapped_in_products_key(workspace, capsys):
    tmp_path, _ = workspace
    wrapped = tmp_path / "wrapped.json"
    wrapped.write_text(json.dumps({"products": CATALOG}), encoding="utf-8")

    assert _run(workspace, "--catalog", str(wrapped), "--text", "Greek Yogurt pot") == 0
    assert json.loads(capsys.readouterr().out)["result"]["kind"] == "fuzzy"


def test_unreadable_catalog(workspace):
    tmp_path, _ = workspace
    broken = tmp_path / "broken.json"
    broken.write_text("{pas du json", encoding="utf-8")

    assert _run(workspace, "--catalog", str(broken), "--text", "Greek Yogurt") == 1
    assert _run(workspace, "--catalog", str(tmp_path / "absent.json"), "--text", "Greek Yogurt") == 1


def test_catalog_must_be_a_list(workspace):
    tmp_path, _ = workspace
    scalar = tmp_path / "scalar.json"
    scalar.write_text('{"id": "PROD-00001"}', encoding="utf-8")

    assert _run(workspace, "--catalog", str(scalar), "--text", "Greek Yogurt") == 1


def test_invalid_settings_exit_code(workspace):
    _, catalog = workspace

    with mock.patch.dict(os.environ, {"LABEL_MAX_ATTEMPTS": "zero"}):
        assert _run(workspace, "--catalog", str(catalog), "--text", "Greek Yogurt") == 1


def test_unreadable_image(workspace):
    tmp_path, catalog = workspace
    not_an_image = tmp_path / "label.png"
    not_an_image.write_bytes(b"pas une image")

    with mock.patch.object(main, "build_text_recognizer", return_value=None):
        assert _run(workspace, "--catalog", str(catalog), "--image", str(not_an_image)) == 2


def test_input_mode_is_required(workspace):
    with pytest.raises(SystemExit):
        _run(workspace, "--strict")
