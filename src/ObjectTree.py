"""
Hierarchical view of the shapes of the currently displayed image:

    root
     +- CategoryNode "Car"
     |   +- ShapeNode "Car 1"
     |   |   +- CategoryNode "Wheel"      (parts of Car 1, grouped by category)
     |   |       +- ShapeNode "Wheel 1"
     |   +- ShapeNode "Car 2"
     +- CategoryNode "Person"
         +- ShapeNode "Person 1"

ShapeNode.sequence_id is always the node's 1-based position under its
CategoryNode. A CategoryNode is toggled on iff any of its shapes is.
"""
from enum import Enum
from typing import Callable, Iterator, List, NamedTuple, Optional


class TreeRoot:
    """Invisible root; its children are the top-level CategoryNodes."""

    def __init__(self):
        self.parent = None
        self.children: List["CategoryNode"] = []


class CategoryNode:
    def __init__(self, category):
        self.category = category
        self.parent = None
        self.children: List["ShapeNode"] = []

    @property
    def toggled_on(self):
        return any(child.toggled_on for child in self.children)

    def __repr__(self):
        return f"CategoryNode({self.category.name!r}, {len(self.children)} shape(s))"


class ShapeNode:
    def __init__(self, shape):
        self.shape = shape
        self.sequence_id = 1
        self.toggled_on = True
        self.parent: Optional[CategoryNode] = None
        self.children: List[CategoryNode] = []

    @property
    def category(self):
        return self.shape.category

    @property
    def label(self):
        return f"{self.shape.category.name} {self.sequence_id}"

    def __repr__(self):
        return f"ShapeNode({self.label!r})"


class TreeEvent(NamedTuple):
    kind: str
    node: object = None


class RejectReason(Enum):
    NOT_ATTACHED = "dragged or target node is not part of the tree"
    TARGET_IS_CATEGORY = "cannot drop onto a category node"
    TARGET_IS_SELF = "cannot drop a node onto itself"
    TARGET_IS_DESCENDANT = "cannot drop a node onto one of its descendants"
    NO_OP = "node is already located there"


class ReparentResult(NamedTuple):
    accepted: bool
    reason: Optional[RejectReason] = None
    #ShapeNodes whose container changed
    moved: tuple = ()
    #ShapeNode the moved shapes now belong to, None for the top level
    new_container: Optional[ShapeNode] = None
    selected: object = None


def _renumber(category_node):
    for index, child in enumerate(category_node.children, start=1):
        child.sequence_id = index


def _find_category_child(container, category):
    for child in container.children:
        if child.category is category:
            return child
    return None


def container_of(node):
    """ShapeNode or TreeRoot that holds node's category group."""
    if isinstance(node, ShapeNode):
        return node.parent.parent if node.parent is not None else None
    return node.parent


class ObjectTree:
    def __init__(self):
        self.root = TreeRoot()
        self._observers: List[Callable[[TreeEvent], None]] = []

    def subscribe(self, callback: Callable[[TreeEvent], None]):
        self._observers.append(callback)

    def unsubscribe(self, callback):
        if callback in self._observers:
            self._observers.remove(callback)

    def _notify(self, kind, node=None):
        event = TreeEvent(kind, node)
        for callback in list(self._observers):
            callback(event)

    # --- building ---

    def rebuild_for_image(self, image) -> TreeRoot:
        """Discards the current tree and builds one from image.shapes (None gives an empty tree)."""
        self.root = TreeRoot()
        if image is not None:
            self._build_children(self.root, image.shapes)
        self._notify("rebuilt", self.root)
        return self.root

    def _build_children(self, container, shapes):
        for shape in shapes:
            node = ShapeNode(shape)
            self._attach(container, node)
            self._build_children(node, shape.parts)

    def _attach(self, container, node: ShapeNode):
        category_node = _find_category_child(container, node.shape.category)
        if category_node is None:
            category_node = CategoryNode(node.shape.category)
            category_node.parent = container
            container.children.append(category_node)
        category_node.children.append(node)
        node.parent = category_node
        node.sequence_id = len(category_node.children)
        return category_node

    def _detach(self, node: ShapeNode):
        category_node = node.parent
        category_node.children.remove(node)
        node.parent = None
        _renumber(category_node)
        if not category_node.children:
            category_node.parent.children.remove(category_node)
            category_node.parent = None

    def insert_shape(self, shape, container: Optional[ShapeNode] = None) -> ShapeNode:
        """Adds a node for shape under its category, below container or at the top level."""
        node = ShapeNode(shape)
        self._attach(container if container is not None else self.root, node)
        self._notify("inserted", node)
        return node

    def remove_node(self, node):
        """Detaches a ShapeNode (renumbering its siblings and dropping an emptied
        CategoryNode) or a whole CategoryNode."""
        if not self.contains(node):
            raise ValueError(f"{node!r} is not part of the tree.")
        if isinstance(node, ShapeNode):
            self._detach(node)
        else:
            node.parent.children.remove(node)
            node.parent = None
        self._notify("removed", node)

    def move_to_category(self, node: ShapeNode) -> ShapeNode:
        """Regroups node after its shape's category changed; it joins the end of
        the matching sibling group."""
        container = container_of(node)
        self._detach(node)
        self._attach(container, node)
        self._notify("reparented", node)
        return node

    # --- drag and drop ---

    def check_drop(self, dragged, target) -> Optional[RejectReason]:
        """Returns why dropping dragged onto target (None = empty space) is illegal, or None."""
        if target is self.root:
            target = None
        if not isinstance(dragged, (ShapeNode, CategoryNode)) or not self.contains(dragged):
            return RejectReason.NOT_ATTACHED
        if target is not None and not self.contains(target):
            return RejectReason.NOT_ATTACHED
        if isinstance(target, CategoryNode):
            return RejectReason.TARGET_IS_CATEGORY
        if target is dragged:
            return RejectReason.TARGET_IS_SELF
        if target is not None and self._is_ancestor(dragged, target):
            return RejectReason.TARGET_IS_DESCENDANT
        destination = target if target is not None else self.root
        if container_of(dragged) is destination:
            return RejectReason.NO_OP
        return None

    def reparent(self, dragged, target) -> ReparentResult:
        if target is self.root:
            target = None
        reason = self.check_drop(dragged, target)
        if reason is not None:
            return ReparentResult(False, reason)

        destination = target if target is not None else self.root
        if isinstance(dragged, ShapeNode):
            self._detach(dragged)
            self._attach(destination, dragged)
            moved = (dragged,)
            selected = dragged
        else:
            dragged.parent.children.remove(dragged)
            dragged.parent = None
            existing = _find_category_child(destination, dragged.category)
            moved = tuple(dragged.children)
            if existing is None:
                dragged.parent = destination
                destination.children.append(dragged)
                selected = dragged
            else:
                #merge into the category group already present at the destination
                for child in moved:
                    existing.children.append(child)
                    child.parent = existing
                dragged.children = []
                _renumber(existing)
                selected = existing
        self._notify("reparented", dragged)
        return ReparentResult(True, None, moved, target, selected)

    # --- visibility ---

    def set_toggle(self, node, on: bool):
        """Sets visibility of node and everything below it. Category states are derived."""
        if isinstance(node, ShapeNode):
            self._toggle_shape(node, on)
        else:
            for child in node.children:
                self._toggle_shape(child, on)
        self._notify("toggled", node)

    def _toggle_shape(self, node: ShapeNode, on: bool):
        node.toggled_on = on
        for category_node in node.children:
            for child in category_node.children:
                self._toggle_shape(child, on)

    def set_all_toggled(self, on: bool):
        for category_node in self.root.children:
            for child in category_node.children:
                self._toggle_shape(child, on)
        self._notify("toggled", self.root)

    # --- queries ---

    def contains(self, node) -> bool:
        while node is not None:
            if node is self.root:
                return True
            node = node.parent
        return False

    @staticmethod
    def _is_ancestor(ancestor, node) -> bool:
        node = node.parent
        while node is not None:
            if node is ancestor:
                return True
            node = node.parent
        return False

    def shape_nodes(self, container=None) -> Iterator[ShapeNode]:
        """Depth-first iteration over all ShapeNodes below container (default: root)."""
        container = container if container is not None else self.root
        for category_node in container.children:
            for child in category_node.children:
                yield child
                yield from self.shape_nodes(child)

    def find_node(self, shape) -> Optional[ShapeNode]:
        for node in self.shape_nodes():
            if node.shape is shape:
                return node
        return None

    def visible_shapes(self) -> list:
        return [node.shape for node in self.shape_nodes() if node.toggled_on]

    def container_shapes(self, container=None) -> list:
        """Shapes directly below container in tree order (category groups concatenated)."""
        container = container if container is not None else self.root
        return [child.shape for category_node in container.children for child in category_node.children]

    def structure(self, container=None):
        """Comparable snapshot: category groupings, shape identities and sequence ids."""
        container = container if container is not None else self.root
        return tuple(
            (category_node.category.name,
             tuple((child.sequence_id, id(child.shape), self.structure(child)) for child in category_node.children))
            for category_node in container.children
        )
