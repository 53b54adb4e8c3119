from registry.models import GitStatus, GroupNode, LeafNode
from registry.status import StatusPrefix, tag
from registry.tree import TreeStore


def leaf(path, **kw):
    return LeafNode(path=path, **kw)


def sample_tree():
    return TreeStore([
        leaf("/a/one"),
        GroupNode(name="tools", path="/w/tools", kind="physical",
                  children=[leaf("/w/tools/x"), leaf("/w/tools/y")]),
        leaf("/a/two"),
    ])


def test_flatten_lists_every_leaf_once():
    tree = sample_tree()
    assert [l.path for l in tree.flatten()] == ["/a/one", "/w/tools/x", "/w/tools/y", "/a/two"]


def test_duplicate_paths_are_dropped_on_load():
    tree = TreeStore([leaf("/a/one"), GroupNode(name="g", path="/a/g", kind="physical",
                                                 children=[leaf("/a/one/")])])
    assert [l.path for l in tree.flatten()] == ["/a/one"]
    assert len(tree) == 1


def test_find_by_path_is_canonical():
    tree = sample_tree()
    assert tree.find_by_path("/w/tools/y/").path == "/w/tools/y"
    assert tree.find_by_path("/nope") is None
    index, group, found = tree.locate("/w/tools/x")
    assert (index, group.name, found.name) == (1, "tools", "x")


def test_update_leaves_keeps_group_shape():
    tree = sample_tree()
    tree.update_leaves(lambda l: l.with_status(GitStatus(branch="dev")))
    assert {l.branch for l in tree.flatten()} == {"dev"}
    assert isinstance(tree.nodes[1], GroupNode)
    assert len(tree.nodes[1].children) == 2


def test_remove_by_paths_drops_emptied_groups():
    tree = sample_tree()
    removed = tree.remove_by_paths(["/w/tools/x", "/w/tools/y/"])
    assert [l.path for l in removed] == ["/w/tools/x", "/w/tools/y"]
    assert not any(isinstance(n, GroupNode) for n in tree.nodes)
    assert [l.path for l in tree.flatten()] == ["/a/one", "/a/two"]


def test_upsert_leaf_is_a_noop_for_known_paths():
    tree = sample_tree()
    assert not tree.upsert_leaf(leaf("/w/tools/x"))
    assert tree.upsert_leaf(leaf("/a/three"), index=0)
    assert tree.nodes[0].path == "/a/three"
    assert tree.upsert_leaf(leaf("/w/tools/z"), index=1, group_id=tree.nodes[2].id)
    assert [c.name for c in tree.nodes[2].children] == ["x", "z", "y"]


def test_preview_then_restore_is_exact():
    tree = sample_tree()
    before = [n.model_dump() for n in tree.nodes]
    snapshot = tree.capture(["/a/one", "/w/tools/x"])
    assert [(s.leaf.path, s.top_index) for s in snapshot.leaves] == [("/a/one", 0), ("/w/tools/x", 1)]
    moved = tree.find_by_path("/a/one").moved_to("/b/one")
    tree.preview_replace(snapshot, "/a/one", moved.renamed(tag(StatusPrefix.MOVING, "one")))
    tree.preview_detach(snapshot, ["/w/tools/x"])
    assert tree.find_by_path("/b/one").name == "Moving: one"
    assert tree.find_by_path("/a/one") is None
    assert tree.find_by_path("/w/tools/x") is None
    tree.restore(snapshot)
    assert [n.model_dump() for n in tree.nodes] == before


def test_restore_recreates_a_group_the_preview_emptied():
    tree = TreeStore([leaf("/a/one"), GroupNode(name="g", path="/w/g", kind="physical",
                                                children=[leaf("/w/g/x")])])
    before = [n.model_dump() for n in tree.nodes]
    snapshot = tree.capture(["/w/g/x"])
    tree.preview_detach(snapshot, ["/w/g/x"])
    assert len(tree) == 1
    tree.restore(snapshot)
    assert [n.model_dump() for n in tree.nodes] == before


def test_restore_keeps_status_received_meanwhile():
    tree = sample_tree()
    snapshot = tree.capture(["/a/one"])
    tree.preview_replace(snapshot, "/a/one", tree.find_by_path("/a/one").renamed("Moving: one"))
    tree.update_leaf("/a/one", lambda l: l.with_status(GitStatus(branch="feature", dirty_count=4)))
    tree.restore(snapshot)
    restored = tree.find_by_path("/a/one")
    assert restored.name == "one"
    assert (restored.branch, restored.dirty_count) == ("feature", 4)


def test_restore_leaves_sibling_previews_alone():
    tree = sample_tree()
    first = tree.capture([])
    tree.preview_insert(first, leaf("/w/tools/x-1", name="Copying: x-1"), after="/w/tools/x")
    second = tree.capture(["/w/tools/y"])
    tree.preview_replace(second, "/w/tools/y", leaf("/b/y", name="Moving: y"))
    assert [c.path for c in tree.nodes[1].children] == ["/w/tools/x", "/w/tools/x-1", "/b/y"]
    assert first.preview_paths == {"/w/tools/x-1"}

    tree.restore(first)
    assert [c.name for c in tree.nodes[1].children] == ["x", "Moving: y"]
    tree.restore(second)
    assert [c.name for c in tree.nodes[1].children] == ["x", "y"]


def test_restore_keeps_a_sibling_removal():
    tree = sample_tree()
    snapshot = tree.capture(["/w/tools/x"])
    tree.preview_replace(snapshot, "/w/tools/x", leaf("/b/x", name="Moving: x"))
    tree.remove_by_paths(["/w/tools/y"])
    tree.restore(snapshot)
    assert [c.path for c in tree.nodes[1].children] == ["/w/tools/x"]
    assert tree.find_by_path("/w/tools/y") is None


def test_preview_insert_positions():
    tree = sample_tree()
    before = [n.model_dump() for n in tree.nodes]
    snapshot = tree.capture([])
    tree.preview_insert(snapshot, leaf("/a/one-1"), after="/a/one")
    tree.preview_insert(snapshot, leaf("/w/tools/z"), group_id=tree.nodes[2].id)
    tree.preview_insert(snapshot, leaf("/a/zero"), index=0)
    assert [n.path for n in tree.nodes] == ["/a/zero", "/a/one", "/a/one-1", "/w/tools", "/a/two"]
    assert [c.name for c in tree.nodes[3].children] == ["x", "y", "z"]
    tree.restore(snapshot)
    assert [n.model_dump() for n in tree.nodes] == before


def test_copy_is_independent():
    tree = sample_tree()
    clone = tree.copy()
    clone.remove_by_paths(["/a/one"])
    assert tree.find_by_path("/a/one") is not None
    assert clone.revision > tree.revision


def test_ordered_by_name():
    tree = TreeStore([leaf("/p/beta"), leaf("/p/Alpha"), leaf("/p/gamma")])
    assert [n.name for n in tree.ordered()] == ["beta", "Alpha", "gamma"]
    assert [n.name for n in tree.ordered(sort_by_name=True)] == ["Alpha", "beta", "gamma"]
