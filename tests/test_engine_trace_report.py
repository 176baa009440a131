from pathlib import Path

from tools.engine_trace_report import _group_rows, _parse_engine_trace_rows, _summarize


def test_parse_engine_trace_rows_filters_and_parses(tmp_path: Path):
    p = tmp_path / "gateway.log"
    p.write_text(
        "\n".join(
            [
                'INFO captionsync.engine.session: engine_trace {"component":"stream","event":"start","seq":1,"applied":true}',
                "INFO uvicorn: started",
                'INFO engine_trace {"component":"stream","event":"chunk","seq":2,"applied":false}',
                "INFO engine_trace {broken",
            ]
        ),
        encoding="utf-8",
    )
    rows = _parse_engine_trace_rows(p)
    assert [r["event"] for r in rows] == ["start", "chunk"]


def test_summarize_groups_by_component():
    rows = [
        {"component": "dispatch", "event": "enqueue", "seq": 1, "segment_id": "a"},
        {"component": "dispatch", "event": "request", "seq": 2, "segment_id": "a", "provider": "ollama"},
        {"component": "stream", "event": "chunk", "seq": 3, "applied": False},
    ]
    out = _summarize(_group_rows(rows))
    assert "components=2" in out
    assert "[dispatch] rows=2 stale=0 enqueue=1 request=1" in out
    assert "[stream] rows=1 stale=1 chunk=1" in out
    assert '"provider":"ollama"' in out
