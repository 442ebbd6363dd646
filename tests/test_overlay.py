from __future__ import annotations

from bs4 import BeautifulSoup, NavigableString

from spanmark.offsets import container_text
from spanmark.overlay import OverlayRenderer, rendered_record_ids
from spanmark.store import AnnotationStore

TEXT = "0123456789ABCDEFGHIJ"


def _container(html: str = TEXT) -> BeautifulSoup:
    return BeautifulSoup(f'<div class="content-display">{html}</div>', "html.parser")


def _setup(html: str = TEXT) -> tuple[AnnotationStore, OverlayRenderer, BeautifulSoup]:
    store = AnnotationStore()
    return store, OverlayRenderer(store), _container(html)


def test_repaint_paints_every_ranged_record() -> None:
    store, renderer, container = _setup()
    first = store.insert("doc", "main", "cot", {"range_start": 0, "range_end": 4})
    second = store.insert("doc", "main", "action", {"range_start": 10, "range_end": 12})
    store.insert("doc", "main", "cot", {"selected_text": "no range"})

    painted = renderer.repaint(container, "doc", "main")

    assert painted == 2
    assert rendered_record_ids(container) == {first.id, second.id}
    assert container_text(container) == TEXT
    overlay = renderer.overlays_for(second.id)[0]
    assert overlay.get_text() == "AB"
    assert overlay["title"] == "Click to remove Action highlight"


def test_repaint_is_idempotent() -> None:
    store, renderer, container = _setup()
    store.insert("doc", "main", "cot", {"range_start": 2, "range_end": 14})
    store.insert("doc", "main", "action", {"range_start": 5, "range_end": 8})

    renderer.repaint(container, "doc", "main")
    once = (container_text(container), rendered_record_ids(container), str(container))
    renderer.repaint(container, "doc", "main")
    twice = (container_text(container), rendered_record_ids(container), str(container))

    assert once == twice
    assert len(container.find_all("span")) == 2


def test_overlapping_records_survive_removal_of_one() -> None:
    store, renderer, container = _setup()
    a = store.insert("doc", "main", "A", {"range_start": 0, "range_end": 10})
    b = store.insert("doc", "main", "B", {"range_start": 5, "range_end": 15})
    renderer.repaint(container, "doc", "main")

    assert renderer.remove_overlay("doc", "main", a.id) is True

    assert store.find("doc", "main", a.id) is None
    assert rendered_record_ids(container) == {b.id}
    assert container_text(container) == TEXT
    covered = "".join(tag.get_text() for tag in container.find_all(attrs={"data-record-id": b.id}))
    assert covered == TEXT[5:15]


def test_remove_overlay_unwraps_all_parts_of_a_multi_leaf_record() -> None:
    store, renderer, container = _setup("<b>Hello</b> world")
    record = store.insert("doc", "main", "cot", {"range_start": 2, "range_end": 9})
    renderer.repaint(container, "doc", "main")
    assert len(renderer.overlays_for(record.id)) == 2

    renderer.remove_overlay("doc", "main", record.id)

    assert rendered_record_ids(container) == set()
    assert container.find_all("span") == []
    assert container_text(container) == "Hello world"
    assert store.list("doc", "main") == []


def test_remove_overlay_without_record_still_unwraps() -> None:
    store, renderer, container = _setup()
    record = store.insert("doc", "main", "cot", {"range_start": 1, "range_end": 3})
    renderer.repaint(container, "doc", "main")
    store.remove("doc", "main", "cot", record.id)

    assert renderer.remove_overlay("doc", "main", record.id) is False
    assert rendered_record_ids(container) == set()


def test_clear_leaves_plain_text() -> None:
    store, renderer, container = _setup()
    store.insert("doc", "main", "cot", {"range_start": 3, "range_end": 7})
    renderer.repaint(container, "doc", "main")

    assert renderer.clear(container) == 1
    assert str(container) == f'<div class="content-display">{TEXT}</div>'


def test_unwrap_merges_only_neighbouring_strings() -> None:
    store, renderer, container = _setup("<p>0123456789</p><p>far</p>")
    far = container.find_all("p")[1]
    far.append(NavigableString(" away"))
    record = store.insert("doc", "main", "cot", {"range_start": 3, "range_end": 6})
    renderer.paint(container, record)
    near = container.find("p")
    assert len(near.contents) == 3

    assert renderer.unwrap(record.id) == 1

    assert [str(part) for part in near.contents] == ["0123456789"]
    assert [str(part) for part in far.contents] == ["far", " away"]
