import json

import game_smoke


def test_smoke_plays_a_full_game(capsys):
    assert game_smoke.main(["--bars", "300", "--seed", "7", "--log-level", "WARNING"]) == 0
    out = capsys.readouterr().out
    summary = json.loads(out.split("events:")[0])
    assert summary["status"] == "COMPLETED"
    assert summary["decision_count"] == summary["total_frames"]
    assert "DECISION_SCORED" in out


def test_smoke_async_scoring(capsys):
    assert game_smoke.main(["--bars", "300", "--seed", "11", "--async-scoring", "--log-level", "WARNING"]) == 0
    summary = json.loads(capsys.readouterr().out.split("events:")[0])
    assert summary["status"] == "COMPLETED"
