import random

import pytest

from AnnotationModel import (AnnotationStore, BoxShape, ImageRecord, InvalidShapeError, PolygonShape,
                             ShapeNotFoundError, UnknownImageError, walk_shapes)
from CategoryRegistry import Category, UnknownCategoryError
from ShapeGeometry import Rect


def _store(*file_names):
    store = AnnotationStore()
    store.set_images([ImageRecord(name, "imgs", 200, 100, 3) for name in file_names or ("a.jpg", "b.jpg")])
    return store


def _box(category, x=0.1, parts=()):
    return BoxShape(category, Rect(x, 0.1, x + 0.2, 0.3), parts=list(parts))


def _assert_counts_consistent(store):
    assert store.category_counts() == store.recount()


def test_add_shape_counts_nested_parts():
    store = _store()
    car = store.add_category("Car")
    wheel = store.add_category("Wheel")
    store.add_shape(0, _box(car, parts=[_box(wheel), _box(wheel, 0.5)]))

    assert store.shape_count("Car") == 1
    assert store.shape_count("Wheel") == 2
    assert store.images[0].has_annotations
    assert not store.images[1].has_annotations
    _assert_counts_consistent(store)


def test_image_lookup_by_index_and_name():
    store = _store()
    assert store.image(1) is store.image("b.jpg")
    with pytest.raises(UnknownImageError):
        store.image("missing.jpg")
    with pytest.raises(UnknownImageError):
        store.image(5)


def test_invalid_shapes_are_rejected_without_mutation():
    store = _store()
    car = store.add_category("Car")
    with pytest.raises(InvalidShapeError):
        store.add_shape(0, BoxShape(car, Rect(0.1, 0.1, 1.5, 0.3)))
    with pytest.raises(InvalidShapeError):
        store.add_shape(0, PolygonShape(car, [0.1, 0.2, 0.3]))
    with pytest.raises(UnknownCategoryError):
        store.add_shape(0, _box(Category("Ghost")))
    assert store.images[0].shapes == []
    assert store.shape_count("Car") == 0


def test_same_shape_cannot_be_added_twice():
    store = _store()
    shape = _box(store.add_category("Car"))
    store.add_shape(0, shape)
    with pytest.raises(InvalidShapeError):
        store.add_shape(1, shape)


def test_remove_nested_shape():
    store = _store()
    car = store.add_category("Car")
    wheel = store.add_category("Wheel")
    bolt = store.add_category("Bolt")
    front = _box(wheel, parts=[_box(bolt)])
    shape = _box(car, parts=[front, _box(wheel, 0.5)])
    store.add_shape(0, shape)

    store.remove_shape(0, front)

    assert shape.parts and front not in shape.parts
    assert store.shape_count("Wheel") == 1
    assert store.shape_count("Bolt") == 0
    _assert_counts_consistent(store)
    with pytest.raises(ShapeNotFoundError):
        store.remove_shape(0, front)


def test_recategorize_is_not_recursive():
    store = _store()
    car = store.add_category("Car")
    truck = store.add_category("Truck")
    wheel = store.add_category("Wheel")
    shape = _box(car, parts=[_box(wheel)])
    store.add_shape(0, shape)

    store.recategorize_shape(shape, "Truck")

    assert shape.category is truck
    assert shape.parts[0].category is wheel
    assert store.category_counts() == {"Car": 0, "Truck": 1, "Wheel": 1}


def test_remove_category_cascades():
    store = _store()
    car = store.add_category("Car")
    dummy = store.add_category("Dummy")
    store.add_shape(0, _box(dummy))
    store.add_shape(1, _box(dummy))
    holder = _box(car, parts=[_box(dummy)])
    store.add_shape(1, holder)

    removed = store.remove_category("Dummy")

    assert removed == 3
    assert "Dummy" not in store.category_counts()
    assert "Dummy" not in store.registry
    assert holder.parts == []
    assert store.images[0].shapes == []
    _assert_counts_consistent(store)


def test_rename_propagates_to_shapes():
    store = _store()
    car = store.add_category("Car")
    shape = _box(car)
    store.add_shape(0, shape)
    store.rename_category("Car", "Automobile")
    assert shape.category.name == "Automobile"
    assert store.shape_count("Automobile") == 1


def test_move_shape():
    store = _store()
    car = store.add_category("Car")
    wheel = store.add_category("Wheel")
    body = _box(car)
    loose = _box(wheel, parts=[_box(wheel)])
    store.add_shape(0, body)
    store.add_shape(0, loose)

    store.move_shape(0, loose, body)
    assert store.images[0].shapes == [body]
    assert body.parts == [loose]

    with pytest.raises(InvalidShapeError):
        store.move_shape(0, body, loose.parts[0])
    store.move_shape(0, loose)
    assert store.images[0].shapes == [body, loose]
    _assert_counts_consistent(store)


def test_replace_all_for_image_adjusts_counts():
    store = _store()
    car = store.add_category("Car")
    store.add_shape(0, _box(car))
    store.add_shape(0, _box(car))
    store.replace_all_for_image(0, [_box(car, parts=[_box(car)])])
    assert store.shape_count("Car") == 2
    _assert_counts_consistent(store)


def test_merge_import_skips_unknown_images_and_reuses_categories():
    store = _store()
    car = store.add_category("Car", (1, 2, 3, 255))
    imported_car = Category("Car", (200, 200, 200, 255))
    tree = Category("Tree")
    records = [
        ImageRecord("a.jpg", shapes=[_box(imported_car), _box(tree)]),
        ImageRecord("zzz.jpg", shapes=[_box(tree)]),
    ]

    errors = store.merge_import(records, [imported_car, tree])

    assert len(errors) == 1
    assert errors[0].source_name == "zzz.jpg"
    assert "does not belong" in errors[0].message
    assert store.images[0].shapes[0].category is car
    assert car.color == (1, 2, 3, 255)
    assert store.category_counts() == {"Car": 1, "Tree": 1}
    _assert_counts_consistent(store)


def test_merge_import_reports_invalid_shapes():
    store = _store()
    car = Category("Car")
    bad = BoxShape(car, Rect(0.5, 0.5, 0.4, 0.6))
    errors = store.merge_import([ImageRecord("a.jpg", shapes=[bad, _box(car)])], [car])
    assert len(errors) == 1
    assert len(store.images[0].shapes) == 1
    _assert_counts_consistent(store)


def test_merge_import_applies_worker_counts_minus_skipped():
    store = _store()
    car = Category("Car")
    wheel = Category("Wheel")
    bad = BoxShape(car, Rect(0.5, 0.5, 0.4, 0.6), parts=[_box(wheel)])
    records = [
        ImageRecord("a.jpg", shapes=[bad, _box(car, parts=[_box(wheel)])]),
        ImageRecord("zzz.jpg", shapes=[_box(wheel)]),
    ]

    errors = store.merge_import(records, [car, wheel], {"Car": 2, "Wheel": 3})

    assert len(errors) == 2
    assert store.category_counts() == {"Car": 1, "Wheel": 1}
    _assert_counts_consistent(store)


def test_count_invariant_under_random_edits():
    rng = random.Random(7)
    store = _store("a.jpg", "b.jpg", "c.jpg")
    categories = [store.add_category(name) for name in ("A", "B", "C", "D")]
    for _ in range(300):
        image = rng.choice(store.images)
        existing = list(walk_shapes(image.shapes))
        action = rng.random()
        if action < 0.45 or not existing:
            container = rng.choice(existing) if existing and rng.random() < 0.5 else None
            parts = [_box(rng.choice(categories)) for _ in range(rng.randint(0, 2))]
            store.add_shape(image, _box(rng.choice(categories), parts=parts), container)
        elif action < 0.7:
            store.remove_shape(image, rng.choice(existing))
        elif action < 0.95:
            store.recategorize_shape(rng.choice(existing), rng.choice(categories))
        else:
            victim = rng.choice(categories)
            store.remove_category(victim.name)
            categories.remove(victim)
            categories.append(store.add_category(victim.name + "x"))
        _assert_counts_consistent(store)


def test_observers_are_notified():
    store = _store()
    events = []
    store.subscribe(events.append)
    car = store.add_category("Car")
    shape = _box(car)
    store.add_shape(0, shape)
    store.remove_shape(0, shape)
    store.unsubscribe(events.append)
    store.add_shape(0, _box(car))

    assert [e.kind for e in events] == ["category_added", "shape_added", "shape_removed"]
    assert events[1].image_name == "a.jpg"
    assert events[1].shape is shape


def test_clear_annotations():
    store = _store()
    car = store.add_category("Car")
    store.add_shape(0, _box(car))
    store.clear_annotations()
    assert store.annotated_images() == []
    assert store.category_counts() == {"Car": 0}
    assert store.categories == [car]
