from vrstore.quorumset import QuorumSet


def test_quorum_reached_after_enough_replicas():
    qs = QuorumSet(2)
    assert qs.num_required == 2
    assert qs.add_and_check_for_quorum(5, 0, "a") is None
    quorum = qs.add_and_check_for_quorum(5, 1, "b")
    assert quorum == {0: "a", 1: "b"}


def test_duplicate_replaces_and_does_not_count_twice():
    qs = QuorumSet(2)
    qs.add(1, 3, "old")
    assert qs.add_and_check_for_quorum(1, 3, "new") is None
    assert qs.get_messages(1) == {3: "new"}


def test_keys_are_independent():
    qs = QuorumSet(2)
    qs.add("x", 0, 1)
    qs.add("y", 1, 2)
    assert qs.check_for_quorum("x") is None
    assert qs.check_for_quorum("y") is None
    assert qs.check_for_quorum() is None


def test_check_for_any_quorum_returns_lowest_key():
    qs = QuorumSet(1)
    qs.add(9, 0, "nine")
    qs.add(2, 1, "two")
    assert qs.check_for_quorum() == {1: "two"}


def test_clear_one_key_and_all():
    qs = QuorumSet(1)
    qs.add(1, 0, "a")
    qs.add(2, 0, "b")
    qs.clear(1)
    assert qs.check_for_quorum(1) is None
    assert qs.check_for_quorum(2) == {0: "b"}
    qs.clear()
    assert qs.check_for_quorum() is None
    assert qs.get_messages(2) == {}


def test_messages_ordered_by_replica():
    qs = QuorumSet(3)
    qs.add(0, 2, "c")
    qs.add(0, 0, "a")
    quorum = qs.add_and_check_for_quorum(0, 1, "b")
    assert list(quorum) == [0, 1, 2]


def test_returned_mapping_is_a_copy():
    qs = QuorumSet(1)
    quorum = qs.add_and_check_for_quorum(0, 0, "a")
    quorum[5] = "z"
    assert qs.get_messages(0) == {0: "a"}