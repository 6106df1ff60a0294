"""
Shared fixtures: a two-segment competition with three contestants and three judges.

prelim: beauty (50), talent (50), interview (30, prejudged)
final:  qa (70), carry (30, carry-forward from prelim)
"""
import copy

import pytest

from tabulation.models import CompetitionSnapshot
from tabulation.scores import ScoreAggregate
from tabulation.store import ScoreStore

COMPETITION = {
    "competitionSettings": {
        "name": "Miss Test 2026",
        "separateRankingByGender": False,
        "segments": [
            {
                "id": "prelim",
                "name": "Preliminary",
                "advancingCandidates": 2,
                "criteria": [
                    {"id": "beauty", "name": "Beauty", "maxScore": 50},
                    {"id": "talent", "name": "Talent", "maxScore": 50},
                    {"id": "interview", "name": "Interview", "maxScore": 30, "isPrejudged": True},
                ],
            },
            {
                "id": "final",
                "name": "Final",
                "criteria": [
                    {"id": "qa", "name": "Q&A", "maxScore": 70},
                    {
                        "id": "carry",
                        "name": "Preliminary carry-over",
                        "maxScore": 30,
                        "isCarryForward": True,
                        "sourceSegments": ["prelim"],
                        "scalingFactor": 0.3,
                        "calculationMethod": "percentage",
                    },
                ],
            },
        ],
    },
    "contestants": [
        {"id": "c1", "name": "Ana", "gender": "Female", "currentSegmentId": "prelim", "displayOrder": 1},
        {"id": "c2", "name": "Bea", "gender": "Female", "currentSegmentId": "prelim", "displayOrder": 2},
        {"id": "c3", "name": "Carl", "gender": "Male", "currentSegmentId": "prelim", "displayOrder": 3},
    ],
    "judges": [
        {"id": "j1", "name": "Judge One"},
        {"id": "j2", "name": "Judge Two"},
        {"id": "j3", "name": "Judge Three"},
    ],
}


def fill(aggregate, segment_id, scores):
    """scores: contestant -> judge -> criterion -> value"""
    for contestant_id, judges in scores.items():
        for judge_id, criteria in judges.items():
            for criterion_id, value in criteria.items():
                assert aggregate.set_score(segment_id, contestant_id, judge_id, criterion_id, value)
    return aggregate


@pytest.fixture
def competition():
    return copy.deepcopy(COMPETITION)


@pytest.fixture
def snapshot(competition):
    return CompetitionSnapshot.from_dict(competition)


@pytest.fixture
def settings(snapshot):
    return snapshot.settings


@pytest.fixture
def contestants(snapshot):
    return snapshot.contestants


@pytest.fixture
def judges(snapshot):
    return snapshot.judges


@pytest.fixture
def aggregate():
    return ScoreAggregate()


@pytest.fixture
def store(tmp_path):
    store = ScoreStore(str(tmp_path / "judging.sqlite"))
    store.init_db()
    return store
