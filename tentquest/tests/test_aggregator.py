from tentquest.features.quests.aggregator import (
    build_completed_quests_map,
    compute_tent_status,
    educational_tent_unlocked,
    is_tent_locked,
    quests_with_status,
)
from tentquest.models.clock import utc_now
from tentquest.models.quest import (
    ParticipationEntry,
    ParticipationStatus,
    Quest,
    Tent,
    UserTaskParticipation,
)


def _tent(tent_id, event_id, tent_type, quests):
    return Tent(id=tent_id, event_id=event_id, tent_name=event_id, title=event_id,
                tent_type=tent_type, quests=quests)


def _quests(tent_id, *task_ids, **extra):
    return [
        Quest(id=tent_id * 100 + i, tent_id=tent_id, task_id=task_id, title=task_id, order=i, **extra)
        for i, task_id in enumerate(task_ids, start=1)
    ]


SOCIAL = _tent(1, "evt-social", "Social", _quests(1, "s1", "s2", "s3"))
EDUCATIONAL = _tent(2, "evt-edu", "Educational", _quests(2, "e1", "e2"))
ALL_TENTS = [SOCIAL, EDUCATIONAL]


def test_completed_map_counts_only_valid_entries():
    now = utc_now()
    record = UserTaskParticipation(user_id="u1", event_id="evt-social", participations=[
        ParticipationEntry("s1", ParticipationStatus.VALID, now),
        ParticipationEntry("s2", ParticipationStatus.PENDING, now),
        ParticipationEntry("s3", ParticipationStatus.REJECTED, now),
    ])

    assert build_completed_quests_map([record]) == {"evt-social": {"s1"}}


def test_social_always_open_educational_gated_on_first_two():
    assert not is_tent_locked(SOCIAL, {}, ALL_TENTS)
    assert is_tent_locked(EDUCATIONAL, {}, ALL_TENTS)
    assert is_tent_locked(EDUCATIONAL, {"evt-social": {"s1", "s3"}}, ALL_TENTS)
    assert not is_tent_locked(EDUCATIONAL, {"evt-social": {"s1", "s2"}}, ALL_TENTS)


def test_educational_gate_ignores_completions_in_other_tents():
    assert not educational_tent_unlocked({"evt-edu": {"s1", "s2"}}, ALL_TENTS)


def test_educational_locked_without_social_tent():
    assert is_tent_locked(EDUCATIONAL, {"evt-social": {"s1", "s2"}}, [EDUCATIONAL])


def test_unknown_tent_type_is_locked():
    other = _tent(3, "evt-x", "Gaming", _quests(3, "g1"))
    assert is_tent_locked(other, {}, [SOCIAL, other])


def test_compute_tent_status():
    status = compute_tent_status(SOCIAL, {"evt-social": {"s1", "s2", "s3"}}, ALL_TENTS)
    assert status == {
        "quest_count": 3,
        "completed_quest_count": 3,
        "is_completed": True,
        "is_locked": False,
    }

    empty = _tent(4, "evt-empty", "Social", [])
    assert compute_tent_status(empty, {}, [empty])["is_completed"] is False


def test_quests_with_status_quiz_parent_completed_through_sub_questions():
    parent = Quest(id=201, tent_id=2, task_id="quiz", title="Quiz", order=1, task_type="QUIZ_PLAY")
    sub_questions = [
        Quest(id=202 + i, tent_id=2, task_id=f"q{i}", title=f"Q{i}", order=i,
              task_type="QUIZ_PLAY", parent_id="quiz")
        for i in range(2)
    ]
    follow_up = Quest(id=210, tent_id=2, task_id="after", title="After", order=2, custom_prerequisites=[201])
    tent = _tent(2, "evt-edu", "Educational", [follow_up, parent, *sub_questions])
    quest_tasks = {q.id: q.task_id for q in tent.quests}

    partial = quests_with_status(tent, {"evt-edu": {"q0"}}, quest_tasks)
    assert [q["task_id"] for q in partial] == ["quiz", "after"]
    assert partial[0]["is_completed"] is False
    assert partial[0]["quest_type"] == "QUIZ"

    done = quests_with_status(tent, {"evt-edu": {"q0", "q1"}}, quest_tasks)
    assert done[0]["is_completed"] is True
    # the lock only looks at the parent's own task
    assert done[1]["is_locked"] is True

    unlocked = quests_with_status(tent, {"evt-edu": {"quiz"}}, quest_tasks)
    assert unlocked[1]["is_locked"] is False
