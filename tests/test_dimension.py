import threading

import pytest

from warehouse.dimension import Dimension, DimensionRow, SurrogateKeyCounter
from warehouse.errors import KeyCollision


def _history():
    return Dimension("item", [
        DimensionRow(1, "A", {"addr": "1 Main St"}),
        DimensionRow(2, "B", {"addr": "9 Elm St"}),
        DimensionRow(3, "A", {"addr": "2 Oak St"}),
    ])


def test_current_is_highest_surrogate_key():
    dim = _history()

    assert dim.current("A").surrogate_key == 3
    assert [r.surrogate_key for r in dim.versions("A")] == [1, 3]
    assert dim.current("Z") is None
    assert dim.versions("Z") == []
    assert sorted(r.surrogate_key for r in dim.current_rows()) == [2, 3]


def test_lookup_by_surrogate_key_and_scan_order():
    dim = _history()

    assert dim.get(2).business_key == "B"
    assert dim.get(99) is None
    assert [r.surrogate_key for r in dim] == [1, 2, 3]
    assert dim.max_surrogate_key == 3
    assert "A" in dim and "Z" not in dim


def test_empty_dimension():
    dim = Dimension("item")

    assert len(dim) == 0
    assert dim.max_surrogate_key == 0
    assert SurrogateKeyCounter.after(dim).peek() == 1


@pytest.mark.parametrize("keys", [[1, 1], [2, 1]])
def test_duplicate_or_unordered_keys_are_a_collision(keys):
    with pytest.raises(KeyCollision):
        Dimension("item", [DimensionRow(k, f"bk{k}", {}) for k in keys])


def test_rows_are_immutable():
    row = DimensionRow(1, "A", {"name": "Widget"})

    with pytest.raises(TypeError):
        row.attributes["name"] = "Gadget"
    with pytest.raises(AttributeError):
        row.surrogate_key = 5

    replaced = row.with_attributes({"name": "Gadget"}, batch_id=2)
    assert replaced.surrogate_key == 1
    assert replaced.update_batch == 2
    assert row.get("name") == "Widget"


def test_counter_hands_out_unique_keys_across_threads():
    counter = SurrogateKeyCounter(10)
    taken = []
    lock = threading.Lock()

    def grab():
        for _ in range(200):
            key = counter.next()
            with lock:
                taken.append(key)

    threads = [threading.Thread(target=grab) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(taken) == list(range(10, 810))


def test_to_frame_scans_in_key_order():
    frame = _history().to_frame()

    assert list(frame["surrogate_key"]) == [1, 2, 3]
    assert list(frame["addr"]) == ["1 Main St", "9 Elm St", "2 Oak St"]
