"""
Editor state for one user session: which image is displayed, which shape is
selected, and the object tree of the displayed image.

Every edit changes the AnnotationStore and the ObjectTree inside one store
transaction, then copies the tree's ordering back into the model so that
rebuilding the tree from the model gives the same tree again.
"""
from typing import Optional

from AnnotationModel import AnnotationStore, validate_shape, walk_shapes
from ObjectTree import CategoryNode, ObjectTree, ReparentResult, ShapeNode, container_of


class EditorSession:
    def __init__(self, store: AnnotationStore, tree: ObjectTree = None):
        self.store = store
        self.tree = tree if tree is not None else ObjectTree()
        self.index = 0
        self.selected_shape = None
        #shapes highlighted because their category node is selected
        self.highlighted_shapes = []

    # --- navigation ---

    @property
    def current_image(self):
        if not self.store.images:
            return None
        return self.store.images[self.index]

    @property
    def has_next(self):
        return self.index < len(self.store.images) - 1

    @property
    def has_previous(self):
        return self.index > 0

    def show_image(self, index: int):
        """Displays image number index and rebuilds the tree for it."""
        if not 0 <= index < len(self.store.images):
            raise IndexError(f"No image at index {index}.")
        with self.store.transaction():
            self.index = index
            self.clear_selection()
            self.tree.rebuild_for_image(self.current_image)
        return self.current_image

    def next_image(self):
        if self.has_next:
            return self.show_image(self.index + 1)
        return self.current_image

    def previous_image(self):
        if self.has_previous:
            return self.show_image(self.index - 1)
        return self.current_image

    # --- selection ---

    def select(self, shape):
        if shape is not None and self.tree.find_node(shape) is None:
            raise ValueError("Only shapes of the displayed image can be selected.")
        self.selected_shape = shape
        self.highlighted_shapes = []

    def select_node(self, node):
        """Tree selection: a ShapeNode selects its shape, a CategoryNode highlights its shapes."""
        if isinstance(node, ShapeNode):
            self.select(node.shape)
        elif isinstance(node, CategoryNode):
            self.selected_shape = None
            self.highlighted_shapes = [child.shape for child in node.children]
        else:
            self.clear_selection()

    def clear_selection(self):
        self.selected_shape = None
        self.highlighted_shapes = []

    # --- edits ---

    def _require_image(self):
        image = self.current_image
        if image is None:
            raise RuntimeError("No image is displayed.")
        return image

    def _sync_order(self, container_node):
        """Writes the tree order of one container back into the model."""
        image = self.current_image
        container_shape = container_node.shape if isinstance(container_node, ShapeNode) else None
        self.store.reorder_container(image, container_shape, self.tree.container_shapes(container_node))

    def draw_shape(self, shape, container: Optional[ShapeNode] = None) -> ShapeNode:
        """Commits a finished drawing: model, tree node and selection in one step."""
        image = self._require_image()
        validate_shape(shape)
        with self.store.transaction():
            self.store.add_shape(image, shape, container.shape if container is not None else None)
            node = self._insert_subtree(container, shape)
            self._sync_order(container if container is not None else self.tree.root)
            self.select(shape)
        return node

    def _insert_subtree(self, container_node, shape):
        node = self.tree.insert_shape(shape, container_node)
        for part in shape.parts:
            self._insert_subtree(node, part)
        if shape.parts:
            self._sync_order(node)
        return node

    def delete_node(self, node) -> int:
        """Deletes a ShapeNode (with its parts) or every shape of a CategoryNode.
        Returns the number of shape records removed from the model."""
        image = self._require_image()
        if not self.tree.contains(node) or node is self.tree.root:
            raise ValueError(f"{node!r} is not part of the displayed tree.")
        if isinstance(node, ShapeNode):
            doomed = [node.shape]
        else:
            doomed = [child.shape for child in node.children]
        container = container_of(node)
        with self.store.transaction():
            removed = sum(1 for _ in walk_shapes(doomed))
            for shape in doomed:
                self.store.remove_shape(image, shape)
            self.tree.remove_node(node)
            self._sync_order(container)
            if self.selected_shape is not None and self.tree.find_node(self.selected_shape) is None:
                self.clear_selection()
            self.highlighted_shapes = [s for s in self.highlighted_shapes if self.tree.find_node(s) is not None]
        return removed

    def reparent(self, dragged, target) -> ReparentResult:
        """Drag-and-drop: nests dragged below target (None = top level)."""
        image = self._require_image()
        with self.store.transaction():
            old_container = container_of(dragged) if isinstance(dragged, (ShapeNode, CategoryNode)) else None
            result = self.tree.reparent(dragged, target)
            if not result.accepted:
                return result
            target = result.new_container
            new_container_shape = target.shape if target is not None else None
            for node in result.moved:
                self.store.move_shape(image, node.shape, new_container_shape)
            self._sync_order(old_container)
            self._sync_order(target if target is not None else self.tree.root)
            self.select_node(result.selected)
        return result

    def change_category(self, node: ShapeNode, category):
        """Assigns a new category to the node's shape and regroups the node."""
        self._require_image()
        with self.store.transaction():
            self.store.recategorize_shape(node.shape, category)
            container = container_of(node)
            self.tree.move_to_category(node)
            self._sync_order(container)
        return node

    def rename_category(self, old, new):
        self.store.rename_category(old, new)

    def remove_category(self, name) -> int:
        """Removes the category from the whole project and refreshes the displayed tree."""
        with self.store.transaction():
            removed = self.store.remove_category(name)
            self.clear_selection()
            self.tree.rebuild_for_image(self.current_image)
        return removed

    def refresh(self):
        """Rebuilds the tree after the model changed from outside (e.g. an import)."""
        with self.store.transaction():
            self.tree.rebuild_for_image(self.current_image)
            if self.selected_shape is not None and self.tree.find_node(self.selected_shape) is None:
                self.clear_selection()

    # --- visibility ---

    def set_toggle(self, node, on: bool):
        self.tree.set_toggle(node, on)

    def show_all(self):
        self.tree.set_all_toggled(True)

    def hide_all(self):
        self.tree.set_all_toggled(False)
