import json

from swing_scoring.main import main


def test_cli_scores_frames(tmp_path, capsys, swing_frames):
    """Test the CLI prints a completed outcome for a frame list."""
    path = tmp_path / "frames.json"
    path.write_text(json.dumps(swing_frames))

    exit_code = main([str(path), "--video-id", "cli-1", "--bats", "R"])

    assert exit_code == 0
    data = json.loads(capsys.readouterr().out)
    assert data["status"] == "completed"
    assert data["analysis"]["videoId"] == "cli-1"
    assert data["analysis"]["athlete"]["bats"] == "R"


def test_cli_reports_failure(tmp_path, capsys, swing_factory):
    """Test the CLI exits 1 with a failed outcome for unusable data."""
    path = tmp_path / "frames.json"
    path.write_text(json.dumps({"frames": swing_factory(confidence=0.0), "athlete": {"bats": "L"}}))

    exit_code = main([str(path)])

    assert exit_code == 1
    data = json.loads(capsys.readouterr().out)
    assert data["status"] == "failed"
    assert data["errorKind"] == "insufficient_data"


def test_cli_rejects_unreadable_file(tmp_path):
    """Test a missing input file exits with a usage error."""
    assert main([str(tmp_path / "missing.json")]) == 2
