from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st

from campus_connect.modules.matching.match_scorer import normalize_terms, rank_jobs, score

_terms = st.lists(st.text(min_size=0, max_size=12), max_size=8)


def test_score_examples():
    assert score(["Python", "SQL"], [], ["python", "ml"]) == 50
    assert score([], ["Machine Learning"], ["machine learning"]) == 100
    assert score(["Go"], ["Rust"], ["python"]) == 0
    # 1 of 3 tags -> 33.33 -> 33; 2 of 3 -> 66.67 -> 67
    assert score(["a"], [], ["a", "b", "c"]) == 33
    assert score(["a", "b"], [], ["a", "b", "c"]) == 67


def test_half_rounds_up():
    tags = [f"t{i}" for i in range(8)]
    # 3/8 = 37.5 -> 38
    assert score(["t0", "t1", "t2"], [], tags) == 38


def test_empty_or_malformed_tags_score_zero():
    assert score(["python"], ["ml"], []) == 0
    assert score(["python"], ["ml"], None) == 0
    assert score(["python"], ["ml"], "python") == 0
    assert score(["python"], ["ml"], ["   ", ""]) == 0


def test_malformed_skills_count_as_empty():
    assert score(None, None, ["python"]) == 0
    assert score("python", {"x": 1}, ["python"]) == 0
    assert score([1, None, "python"], [], ["python"]) == 100


def test_terms_are_trimmed_and_case_insensitive():
    assert normalize_terms([" Python ", "PYTHON", "", "  "]) == {"python"}
    assert score(["  PyThOn"], [], ["python  "]) == 100


@given(_terms, _terms, _terms)
def test_score_is_bounded(skills, interests, tags):
    s = score(skills, interests, tags)
    assert 0 <= s <= 100


@given(_terms, _terms, _terms)
def test_score_ignores_order_and_duplicates(skills, interests, tags):
    base = score(skills, interests, tags)
    assert score(list(reversed(skills)), interests * 2, list(reversed(tags)) + tags) == base


@given(_terms, _terms, _terms)
def test_score_is_symmetric_in_skills_and_interests(skills, interests, tags):
    assert score(skills, interests, tags) == score(interests, skills, tags)


@given(_terms)
def test_full_coverage_scores_hundred(tags):
    if normalize_terms(tags):
        assert score(tags, [], tags) == 100
    else:
        assert score(tags, [], tags) == 0


def test_rank_jobs_best_match_first_then_newest():
    profile = {"skills": ["python"], "interests": ["design"]}
    jobs = [
        {"jobId": "old-match", "tags": ["python"], "createdAt": "2024-01-01T00:00:00Z"},
        {"jobId": "no-match", "tags": ["finance"], "createdAt": "2024-03-01T00:00:00Z"},
        {"jobId": "new-match", "tags": ["python"], "createdAt": "2024-02-01T00:00:00Z"},
        {"jobId": "half", "tags": ["python", "rust"], "createdAt": "2024-04-01T00:00:00Z"},
    ]
    ranked = rank_jobs(profile, jobs)
    assert [j["jobId"] for j in ranked] == ["new-match", "old-match", "half", "no-match"]
    assert [j["matchScore"] for j in ranked] == [100, 100, 50, 0]
    # Inputs are not mutated.
    assert "matchScore" not in jobs[0]
