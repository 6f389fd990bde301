"""任务类型识别与启发式进度"""

import pytest

from dyna_agent.models import Observation, TaskType
from dyna_agent.strategies import (
    get_strategy,
    heuristic_progress,
    identify_task_type,
    progress_indicators,
)


def make_observation(url: str, text: str = "") -> Observation:
    return Observation(url=url, title="", timestamp=0, screenshot=b"", page_text=text)


@pytest.mark.parametrize("description, expected", [
    ("Search for flights from NYC to London", TaskType.SEARCH_FLIGHTS),
    ("Book travel to Paris next week", TaskType.SEARCH_FLIGHTS),
    ("Play some relaxing music on YouTube", TaskType.PLAY_MUSIC),
    ("Find the song Bohemian Rhapsody", TaskType.PLAY_MUSIC),
    ("Apply for a software engineer job", TaskType.APPLY_JOB),
    ("Open the careers page of Acme", TaskType.APPLY_JOB),
    ("What is the weather in Berlin", TaskType.GENERAL_TASK),
    ("", TaskType.GENERAL_TASK),
])
def test_identify_task_type(description, expected):
    assert identify_task_type(description) == expected


def test_identify_task_type_is_case_insensitive():
    assert identify_task_type("FLIGHT to Tokyo") == TaskType.SEARCH_FLIGHTS


def test_flight_rule_wins_over_music():
    assert identify_task_type("play a movie on my flight") == TaskType.SEARCH_FLIGHTS


def test_general_task_has_empty_strategy():
    strategy = get_strategy(TaskType.GENERAL_TASK)
    assert strategy.steps == []
    assert strategy.websites == []


def test_flight_indicators():
    observation = make_observation(
        "https://www.kayak.com/flights",
        "From NYC To London ... 120 flights found",
    )
    indicators = progress_indicators(TaskType.SEARCH_FLIGHTS, observation)
    assert indicators == [
        "on flight booking site",
        "flight search form visible",
        "search results displayed",
    ]
    assert heuristic_progress(TaskType.SEARCH_FLIGHTS, indicators) == 60


def test_music_indicators():
    observation = make_observation("https://www.youtube.com/watch?v=1", "Pause (k)")
    indicators = progress_indicators(TaskType.PLAY_MUSIC, observation)
    assert indicators == ["on youtube", "media player visible"]
    assert heuristic_progress(TaskType.PLAY_MUSIC, indicators) == 50


def test_general_task_has_no_indicators():
    observation = make_observation("https://example.com", "apply submit playing")
    assert progress_indicators(TaskType.GENERAL_TASK, observation) == []
    assert heuristic_progress(TaskType.GENERAL_TASK, []) == 0


def test_heuristic_progress_is_capped():
    assert heuristic_progress(TaskType.GENERAL_TASK, ["x"] * 12) == 100
