from captionsync.streaming.text_pool import (
    FinalizedLog,
    join_segments,
    normalize_text,
    trim_prefix_overlap,
)


def test_normalize_text_collapses_whitespace():
    assert normalize_text("  hello \n\t world  ") == "hello world"
    assert normalize_text(None) == ""
    assert normalize_text("") == ""


def test_join_segments_spaces_latin_and_glues_cjk():
    assert join_segments(["hello", "world"]) == "hello world"
    assert join_segments(["第一句。", "第二句。"]) == "第一句。第二句。"
    assert join_segments(["ok.", "", "  ", "next"]) == "ok. next"


def test_trim_prefix_overlap_strips_log_tail_from_window():
    trimmed, overlap = trim_prefix_overlap("we met on monday", "on monday we agreed")
    assert overlap == len("on monday")
    assert trimmed == "we agreed"


def test_trim_prefix_overlap_respects_min_overlap():
    trimmed, overlap = trim_prefix_overlap("abc x", "xyz", min_overlap=2)
    assert overlap == 0
    assert trimmed == "xyz"


def test_trim_prefix_overlap_only_searches_tail_window():
    ref = "repeated phrase" + " filler" * 20
    candidate = "repeated phrase and more"
    trimmed, overlap = trim_prefix_overlap(ref, candidate, window_chars=16)
    assert overlap == 0
    assert trimmed == candidate


def test_finalized_log_upsert_is_idempotent():
    log = FinalizedLog()
    first = log.upsert("seg_a", 10.0, "hello")
    again = log.upsert("seg_a", 10.0, "hello")
    assert first.inserted and first.changed
    assert not again.inserted and not again.changed
    assert len(log) == 1
    assert log.text == "hello"


def test_finalized_log_updates_in_place_and_rebuilds_in_order():
    log = FinalizedLog()
    log.upsert("b", 20.0, "second")
    log.upsert("a", 10.0, "first")
    assert log.text == "first second"

    change = log.upsert("a", 10.0, "first fixed")
    assert change.changed and not change.inserted
    assert log.text == "first fixed second"
    assert [e.segment_id for e in log.entries()] == ["a", "b"]


def test_finalized_log_flags_late_inserts():
    log = FinalizedLog()
    assert log.upsert("c", 30.0, "three").late is False
    late = log.upsert("b", 20.0, "two")
    assert late.inserted and late.late
    assert log.upsert("d", 40.0, "four").late is False
    assert log.snapshot()["late_ids"] == ["b"]


def test_finalized_log_ties_break_on_segment_id():
    log = FinalizedLog()
    log.upsert("y", 5.0, "why")
    log.upsert("x", 5.0, "ex")
    assert log.text == "ex why"


def test_finalized_log_clear():
    log = FinalizedLog()
    log.upsert("a", 1.0, "x")
    log.clear()
    assert len(log) == 0
    assert log.text == ""
    assert log.upsert("b", 0.0, "y").late is False
