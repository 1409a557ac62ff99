import pytest

from AnnotationModel import AnnotationStore, BoxShape, ImageRecord, InvalidShapeError
from EditorSession import EditorSession
from ObjectTree import RejectReason
from ShapeGeometry import Rect


def _box(category, parts=()):
    return BoxShape(category, Rect(0.25, 0.25, 0.5, 0.5), parts=list(parts))


def _session():
    store = AnnotationStore()
    store.set_images([ImageRecord("a.jpg", "imgs", 200, 100, 3), ImageRecord("b.jpg", "imgs", 200, 100, 3)])
    session = EditorSession(store)
    session.show_image(0)
    return session


def _model_matches_tree(session):
    """Rebuilding from the model must give the tree the session currently shows."""
    current = session.tree.structure()
    session.refresh()
    return session.tree.structure() == current


def test_navigation():
    session = _session()
    assert session.current_image.file_name == "a.jpg"
    assert session.has_next and not session.has_previous
    assert session.next_image().file_name == "b.jpg"
    assert session.next_image().file_name == "b.jpg"
    assert session.previous_image().file_name == "a.jpg"
    with pytest.raises(IndexError):
        session.show_image(2)


def test_draw_shape_updates_model_tree_and_selection():
    session = _session()
    car = session.store.add_category("Car")
    wheel = session.store.add_category("Wheel")
    shape = _box(car, parts=[_box(wheel)])

    node = session.draw_shape(shape)

    assert session.current_image.shapes == [shape]
    assert session.store.category_counts() == {"Car": 1, "Wheel": 1}
    assert node.label == "Car 1"
    assert session.tree.find_node(shape.parts[0]).parent.parent is node
    assert session.selected_shape is shape


def test_draw_invalid_shape_changes_nothing():
    session = _session()
    car = session.store.add_category("Car")
    with pytest.raises(InvalidShapeError):
        session.draw_shape(BoxShape(car, Rect(0.2, 0.2, 1.2, 0.5)))
    assert session.current_image.shapes == []
    assert session.tree.root.children == []


def test_draw_part_into_container():
    session = _session()
    car = session.store.add_category("Car")
    wheel = session.store.add_category("Wheel")
    car_node = session.draw_shape(_box(car))
    wheel_node = session.draw_shape(_box(wheel), car_node)
    assert car_node.shape.parts == [wheel_node.shape]
    assert _model_matches_tree(session)


def test_switching_images_reconstructs_the_same_tree():
    session = _session()
    car = session.store.add_category("Car")
    person = session.store.add_category("Person")
    c1 = session.draw_shape(_box(car))
    p1 = session.draw_shape(_box(person))
    c2 = session.draw_shape(_box(car))
    c3 = session.draw_shape(_box(car))

    assert session.reparent(p1, c1).accepted
    session.change_category(c2, person)
    session.delete_node(c3)
    before = session.tree.structure()

    session.next_image()
    assert session.tree.structure() == ()
    session.previous_image()

    assert session.tree.structure() == before
    assert session.store.category_counts() == session.store.recount()


def test_reparent_moves_model_shape_and_selects():
    session = _session()
    car = session.store.add_category("Car")
    person = session.store.add_category("Person")
    c1 = session.draw_shape(_box(car))
    p1 = session.draw_shape(_box(person))

    result = session.reparent(p1, c1)

    assert result.accepted
    assert session.current_image.shapes == [c1.shape]
    assert c1.shape.parts == [p1.shape]
    assert session.selected_shape is p1.shape

    back = session.reparent(p1, None)
    assert back.accepted
    assert session.current_image.shapes == [c1.shape, p1.shape]
    assert c1.shape.parts == []
    assert _model_matches_tree(session)


def test_rejected_reparent_leaves_model_alone():
    session = _session()
    car = session.store.add_category("Car")
    c1 = session.draw_shape(_box(car))
    result = session.reparent(c1, session.tree.root.children[0])
    assert not result.accepted
    assert result.reason is RejectReason.TARGET_IS_CATEGORY
    assert session.current_image.shapes == [c1.shape]


def test_reparent_category_group():
    session = _session()
    car = session.store.add_category("Car")
    wheel = session.store.add_category("Wheel")
    c1 = session.draw_shape(_box(car))
    w1 = session.draw_shape(_box(wheel))
    w2 = session.draw_shape(_box(wheel))
    wheels = session.tree.root.children[1]

    result = session.reparent(wheels, c1)

    assert result.accepted
    assert c1.shape.parts == [w1.shape, w2.shape]
    assert session.current_image.shapes == [c1.shape]
    assert session.highlighted_shapes == [w1.shape, w2.shape]
    assert _model_matches_tree(session)


def test_delete_node_counts_parts():
    session = _session()
    car = session.store.add_category("Car")
    wheel = session.store.add_category("Wheel")
    c1 = session.draw_shape(_box(car, parts=[_box(wheel), _box(wheel)]))
    session.draw_shape(_box(car))

    assert session.delete_node(c1) == 3
    assert session.store.category_counts() == {"Car": 1, "Wheel": 0}
    assert session.selected_shape is not c1.shape
    assert [n.label for n in session.tree.root.children[0].children] == ["Car 1"]


def test_delete_category_node():
    session = _session()
    car = session.store.add_category("Car")
    person = session.store.add_category("Person")
    session.draw_shape(_box(car))
    session.draw_shape(_box(car))
    kept = session.draw_shape(_box(person))

    assert session.delete_node(session.tree.root.children[0]) == 2
    assert session.current_image.shapes == [kept.shape]
    assert [n.category.name for n in session.tree.root.children] == ["Person"]


def test_delete_detached_node_fails():
    session = _session()
    car = session.store.add_category("Car")
    node = session.draw_shape(_box(car))
    session.delete_node(node)
    with pytest.raises(ValueError):
        session.delete_node(node)


def test_change_category_regroups_node():
    session = _session()
    car = session.store.add_category("Car")
    truck = session.store.add_category("Truck")
    c1 = session.draw_shape(_box(car))
    c2 = session.draw_shape(_box(car))

    session.change_category(c1, "Truck")

    assert c1.shape.category is truck
    assert [n.category.name for n in session.tree.root.children] == ["Car", "Truck"]
    assert c2.label == "Car 1"
    assert session.store.category_counts() == {"Car": 1, "Truck": 1}
    assert _model_matches_tree(session)


def test_remove_category_refreshes_tree():
    session = _session()
    car = session.store.add_category("Car")
    dummy = session.store.add_category("Dummy")
    session.draw_shape(_box(dummy))
    session.draw_shape(_box(car, parts=[_box(dummy)]))
    session.show_image(1)
    session.draw_shape(_box(dummy))
    session.show_image(0)

    assert session.remove_category("Dummy") == 3
    assert [n.category.name for n in session.tree.root.children] == ["Car"]
    assert "Dummy" not in session.store.category_counts()


def test_selection_and_visibility():
    session = _session()
    car = session.store.add_category("Car")
    c1 = session.draw_shape(_box(car))
    c2 = session.draw_shape(_box(car))

    session.select_node(session.tree.root.children[0])
    assert session.selected_shape is None
    assert session.highlighted_shapes == [c1.shape, c2.shape]
    session.select_node(c2)
    assert session.selected_shape is c2.shape and session.highlighted_shapes == []
    session.clear_selection()
    assert session.selected_shape is None

    session.hide_all()
    assert session.tree.visible_shapes() == []
    session.set_toggle(c1, True)
    assert session.tree.visible_shapes() == [c1.shape]
    session.show_all()
    assert session.tree.visible_shapes() == [c1.shape, c2.shape]

    with pytest.raises(ValueError):
        session.select(_box(car))


def test_merged_category_group_is_selected():
    session = _session()
    car = session.store.add_category("Car")
    wheel = session.store.add_category("Wheel")
    w1 = session.draw_shape(_box(wheel))
    c1 = session.draw_shape(_box(car))
    w2 = session.draw_shape(_box(wheel), c1)
    loose = session.tree.root.children[0]

    result = session.reparent(loose, c1)

    assert result.accepted
    assert result.selected is w2.parent
    assert session.highlighted_shapes == [w2.shape, w1.shape]
    assert c1.shape.parts == [w2.shape, w1.shape]
    assert session.current_image.shapes == [c1.shape]
    assert _model_matches_tree(session)
