"""Tests for the query engine."""

import threading
from datetime import timedelta

import pytest

from cam.errors import EmbeddingError, QueryError
from cam.memory.query import QueryCache, QueryEngine
from cam.memory.vector_store import insight_tags
from cam.models.hyperedge import Hyperedge, RelationshipType
from cam.models.insight import Domain, LifecycleStage, OscillationContext
from cam.models.query import (
    CAMQueryResult,
    DomainIntersectionQuery,
    HybridQuery,
    OscillationPatternQuery,
    QueryFilters,
    SemanticQuery,
    StructuralQuery,
    TemporalQuery,
    TemporalSort,
    TimeRange,
)

from conftest import T0, axis_vector, similar_vector

QUERY_TEXT = "how do caches work"


@pytest.fixture
def engine(store, index, embedder, test_settings, clock):
    embedder.register(QUERY_TEXT, axis_vector())
    qe = QueryEngine(store, index, embedder, test_settings, clock)
    yield qe
    qe.close()


@pytest.fixture
def add(store, index, make_insight):
    counter = iter(range(1000))

    def _add(content=None, similarity=0.0, index_stage=None, **overrides):
        n = next(counter)
        insight = store.insert_insight(make_insight(content or f"insight {n}", **overrides))
        tags = insight_tags(insight)
        if index_stage is not None:
            tags["lifecycle_stage"] = index_stage.value
        index.upsert(insight.id, similar_vector(similarity), tags)
        return insight

    return _add


def _link(store, a, b, rel=RelationshipType.REINFORCEMENT, strength=0.6):
    return store.insert_hyperedge(Hyperedge(insight_ids=[a.id, b.id], relationship_type=rel, strength=strength))


# ── Semantic ────────────────────────────────────────────────────────


def test_semantic_respects_min_score(engine, add):
    """Only the 0.9 neighbour clears the default 0.7 floor."""
    high = add("high", similarity=0.9)
    mid = add("mid", similarity=0.6)
    add("low", similarity=0.3)

    result = engine.execute(SemanticQuery(query_text=QUERY_TEXT))
    assert result.insight_ids == [high.id]
    assert result.scores[high.id] == pytest.approx(0.9, abs=1e-3)

    relaxed = engine.execute(SemanticQuery(query_text=QUERY_TEXT, min_score=0.5))
    assert relaxed.insight_ids == [high.id, mid.id]


def test_semantic_excludes_deprecated_even_with_stale_tags(engine, add):
    live = add("live", similarity=0.8)
    stale = add(
        "stale", similarity=0.95, confidence=0.1,
        lifecycle_stage=LifecycleStage.DEPRECATED, index_stage=LifecycleStage.EMERGING,
    )

    result = engine.execute(SemanticQuery(query_text=QUERY_TEXT))
    assert result.insight_ids == [live.id]

    everything = engine.execute(SemanticQuery(query_text=QUERY_TEXT, include_deprecated=True))
    assert everything.insight_ids == [stale.id, live.id]


def test_semantic_domain_and_confidence_filters(engine, add):
    add("cd", similarity=0.9, confidence=0.6)
    ed = add("ed", similarity=0.85, confidence=0.6, primary_domain=Domain.EXPERIENTIAL)
    add("ed-weak", similarity=0.8, confidence=0.3, primary_domain=Domain.EXPERIENTIAL)

    result = engine.execute(SemanticQuery(
        query_text=QUERY_TEXT, domains=[Domain.EXPERIENTIAL], min_confidence=0.5,
    ))
    assert result.insight_ids == [ed.id]


def test_orphaned_vectors_are_dropped(engine, add, index):
    kept = add("kept", similarity=0.9)
    index.upsert("orphan", similar_vector(0.95), {"lifecycle_stage": "Emerging"})
    assert engine.execute(SemanticQuery(query_text=QUERY_TEXT)).insight_ids == [kept.id]


# ── Structural ──────────────────────────────────────────────────────


def test_structural_bfs_respects_depth(engine, add, store):
    a, b, c, d = (add(name) for name in "abcd")
    _link(store, a, b)
    _link(store, b, c, RelationshipType.CAUSATION)
    _link(store, c, d)
    # cycle back to the start
    _link(store, c, a, RelationshipType.ANALOGY)

    one_hop = engine.execute(StructuralQuery(start_insight_id=a.id, max_depth=1))
    assert set(one_hop.insight_ids) == {b.id, c.id}

    two_hops = engine.execute(StructuralQuery(start_insight_id=a.id, max_depth=2))
    assert set(two_hops.insight_ids) == {b.id, c.id, d.id}
    assert a.id not in two_hops.insight_ids
    assert len(two_hops.insight_ids) == len(set(two_hops.insight_ids))


def test_structural_relationship_filter(engine, add, store):
    a, b, c = (add(name) for name in "abc")
    _link(store, a, b, RelationshipType.REINFORCEMENT)
    _link(store, b, c, RelationshipType.CAUSATION)

    result = engine.execute(StructuralQuery(
        start_insight_id=a.id,
        relationship_types=[RelationshipType.REINFORCEMENT],
        max_depth=3,
    ))
    assert result.insight_ids == [b.id]


def test_structural_stops_at_limit(engine, add, store):
    hub = add("hub")
    for n in range(5):
        _link(store, hub, add(f"spoke {n}"))
    result = engine.execute(StructuralQuery(start_insight_id=hub.id, limit=3))
    assert len(result.insights) == 3


def test_structural_skips_deprecated(engine, add, store):
    a = add("a")
    dead = add("dead", confidence=0.1, lifecycle_stage=LifecycleStage.DEPRECATED)
    c = add("c")
    _link(store, a, dead)
    _link(store, dead, c)

    result = engine.execute(StructuralQuery(start_insight_id=a.id, max_depth=2))
    # traversal passes through the deprecated insight without returning it
    assert result.insight_ids == [c.id]


def test_structural_unknown_start(engine):
    with pytest.raises(QueryError):
        engine.execute(StructuralQuery(start_insight_id="ghost"))

    result = engine.query(StructuralQuery(start_insight_id="ghost"))
    assert result.insights == []
    assert result.metadata.error


# ── Domain / temporal / oscillation ─────────────────────────────────


def test_domain_intersection(engine, add):
    cultural = add("c", confidence=0.6, secondary_domains=[Domain.CULTURAL])
    add("weak", confidence=0.2, primary_domain=Domain.CULTURAL)
    add("other", confidence=0.9, primary_domain=Domain.SCIENTIFIC)

    result = engine.execute(DomainIntersectionQuery(domains=[Domain.CULTURAL], min_confidence=0.5))
    assert result.insight_ids == [cultural.id]


def test_temporal_sorts(engine, add):
    a = add("a", confidence=0.6, observation_count=3, created_at=T0 - timedelta(days=1))
    b = add("b", confidence=0.9, observation_count=9, created_at=T0 - timedelta(days=5))
    c = add("c", confidence=0.35, observation_count=1, created_at=T0 - timedelta(hours=2))
    add("old", created_at=T0 - timedelta(days=60))
    window = TimeRange(preset="last_week")

    recent = engine.execute(TemporalQuery(time_range=window))
    assert recent.insight_ids == [c.id, a.id, b.id]

    observed = engine.execute(TemporalQuery(time_range=window, sort_by=TemporalSort.MOST_OBSERVED))
    assert observed.insight_ids == [b.id, a.id, c.id]

    # growth per day: c 0.6, a 0.3, b 0.12
    growth = engine.execute(TemporalQuery(time_range=window, sort_by=TemporalSort.HIGHEST_CONFIDENCE_GROWTH))
    assert growth.insight_ids == [c.id, a.id, b.id]


def test_temporal_custom_window(engine, add):
    add("a", created_at=T0 - timedelta(days=1))
    b = add("b", created_at=T0 - timedelta(days=20))
    result = engine.execute(TemporalQuery(time_range=TimeRange(
        preset="custom", start=T0 - timedelta(days=30), end=T0 - timedelta(days=10),
    )))
    assert result.insight_ids == [b.id]


def test_oscillation_pattern(engine, add):
    match = add("m", oscillation_context=OscillationContext(boundary="CD-ED", frequency=1.0, amplitude=0.3))
    add("n", oscillation_context=OscillationContext(boundary="CD-ED", frequency=1.0, amplitude=0.9))
    result = engine.execute(OscillationPatternQuery(boundary="CD-ED", amplitude_range=(0.0, 0.5)))
    assert result.insight_ids == [match.id]


# ── Hybrid ──────────────────────────────────────────────────────────


def test_hybrid_deduplicates(engine, add, store):
    """An insight found by two strategies is returned once."""
    start = add("start")
    shared = add("shared", similarity=0.9)
    _link(store, start, shared)

    result = engine.execute(HybridQuery(
        semantic=SemanticQuery(query_text=QUERY_TEXT),
        structural=StructuralQuery(start_insight_id=start.id),
    ))
    assert result.insight_ids == [shared.id]
    assert result.scores[shared.id] == pytest.approx(0.9, abs=1e-3)


def test_hybrid_applies_shared_filters(engine, add):
    strong = add("strong", similarity=0.9, confidence=0.7, primary_domain=Domain.SCIENTIFIC)
    add("weak", similarity=0.85, confidence=0.35, primary_domain=Domain.SCIENTIFIC)
    add("elsewhere", similarity=0.8, confidence=0.9)

    result = engine.execute(HybridQuery(
        semantic=SemanticQuery(query_text=QUERY_TEXT),
        domain_intersection=DomainIntersectionQuery(domains=[Domain.SCIENTIFIC]),
        filters=QueryFilters(min_confidence=0.5, domains=[Domain.SCIENTIFIC]),
    ))
    assert result.insight_ids == [strong.id]


# ── Result shape, cache, timeout ────────────────────────────────────


def test_results_carry_hyperedges_and_metadata(engine, add, store):
    a = add("a", similarity=0.9, confidence=0.4)
    b = add("b", similarity=0.8, confidence=0.6)
    c = add("c")
    edge = _link(store, a, c)

    result = engine.execute(SemanticQuery(query_text=QUERY_TEXT, limit=1))
    assert result.insight_ids == [a.id]
    assert [h.id for h in result.hyperedges] == [edge.id]
    assert result.metadata.mode == "semantic"
    assert result.metadata.total_results == 2
    assert result.metadata.returned_results == 1
    assert result.metadata.confidence_range == (0.4, 0.4)
    assert b.id not in result.insight_ids


def test_repeated_query_is_cached(engine, add):
    add("a", similarity=0.9)
    q = SemanticQuery(query_text=QUERY_TEXT)

    first = engine.execute(q)
    second = engine.execute(q)
    assert first.metadata.cached is False
    assert second.metadata.cached is True
    assert second.insight_ids == first.insight_ids

    engine.invalidate_cache()
    assert engine.execute(q).metadata.cached is False


def test_query_timeout_returns_empty(engine, add, embedder):
    add("a", similarity=0.9)
    release = threading.Event()

    def stuck_embed(text):
        release.wait(5)
        raise EmbeddingError("gave up")

    embedder.embed = stuck_embed
    try:
        result = engine.query(SemanticQuery(query_text=QUERY_TEXT), timeout=0.05)
    finally:
        release.set()

    assert isinstance(result, CAMQueryResult)
    assert result.insights == []
    assert result.metadata.timed_out is True


def test_query_swallows_errors(engine, embedder):
    embedder.fail = True
    result = engine.query(SemanticQuery(query_text=QUERY_TEXT))
    assert result.insights == []
    assert "embedder offline" in result.metadata.error


def test_query_cache_ttl_and_eviction():
    now = [0.0]
    cache = QueryCache(max_entries=2, ttl_seconds=10, clock=lambda: now[0])
    result = CAMQueryResult()

    cache.put("a", result)
    cache.put("b", result)
    cache.put("c", result)
    assert cache.get("a") is None
    assert cache.get("c") is result

    now[0] = 11.0
    assert cache.get("c") is None
    assert cache.stats()["entries"] == 1


# ── Deprecated exclusion across modes ───────────────────────────────


def _deprecated(add, content="dead", **overrides):
    return add(content, confidence=0.9, lifecycle_stage=LifecycleStage.DEPRECATED, **overrides)


def test_temporal_excludes_deprecated(engine, add):
    live = add("live", created_at=T0 - timedelta(days=1))
    dead = _deprecated(add, created_at=T0 - timedelta(days=2))
    window = TimeRange(preset="last_week")

    assert engine.execute(TemporalQuery(time_range=window)).insight_ids == [live.id]
    everything = engine.execute(TemporalQuery(time_range=window, include_deprecated=True))
    assert everything.insight_ids == [live.id, dead.id]


def test_oscillation_excludes_deprecated(engine, add):
    context = OscillationContext(boundary="CD-ED", frequency=1.0, amplitude=0.3)
    live = add("live", oscillation_context=context)
    _deprecated(add, oscillation_context=context)

    result = engine.execute(OscillationPatternQuery(boundary="CD-ED"))
    assert result.insight_ids == [live.id]


def test_domain_intersection_excludes_deprecated(engine, add):
    live = add("live", confidence=0.6)
    dead = _deprecated(add)

    assert engine.execute(DomainIntersectionQuery(domains=[Domain.COMPUTATIONAL])).insight_ids == [live.id]
    everything = engine.execute(
        DomainIntersectionQuery(domains=[Domain.COMPUTATIONAL], include_deprecated=True)
    )
    assert everything.insight_ids == [dead.id, live.id]


def test_hybrid_excludes_deprecated_by_default(engine, add):
    """The shared filter drops deprecated hits even when a sub-query allows them."""
    live = add("live", confidence=0.6)
    dead = _deprecated(add)
    sub = DomainIntersectionQuery(domains=[Domain.COMPUTATIONAL], include_deprecated=True)

    assert engine.execute(HybridQuery(domain_intersection=sub)).insight_ids == [live.id]
    everything = engine.execute(HybridQuery(
        domain_intersection=sub, filters=QueryFilters(exclude_deprecated=False),
    ))
    assert everything.insight_ids == [dead.id, live.id]


def test_hybrid_honours_sub_query_limits(engine, add):
    top = add("top", similarity=0.95)
    add("second", similarity=0.9)
    add("third", similarity=0.86)

    result = engine.execute(HybridQuery(
        semantic=SemanticQuery(query_text=QUERY_TEXT, limit=1),
        limit=10,
    ))
    assert result.insight_ids == [top.id]
    assert list(result.scores) == [top.id]
