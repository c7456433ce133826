import json

from face_attendance.recognise import main
from face_attendance.storage import InMemoryStore

from conftest import RED, solid_png


def test_cli_prints_one_json_line_per_image(tmp_path, capsys):
    db = tmp_path / "attendance.npz"
    InMemoryStore().save(db)
    config = tmp_path / "config.json"
    config.write_text(
        json.dumps({"detector_model": str(tmp_path / "none.onnx"), "activity_log": None}),
        encoding="utf-8",
    )
    photo = tmp_path / "a.png"
    photo.write_bytes(solid_png(RED))

    rc = main(["--db", str(db), "--config", str(config), str(photo), str(tmp_path / "missing.png")])

    lines = [json.loads(l) for l in capsys.readouterr().out.splitlines() if l.startswith("{")]
    assert rc == 1
    assert [l["error"] for l in lines] == ["ModelNotLoaded", "FileNotFoundError"]
    assert lines[0]["image"] == str(photo)
