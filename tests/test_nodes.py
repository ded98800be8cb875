"""Tests for the tree node model and fragment normalization."""

import pytest

from moduletree import InstallerOptions
from moduletree import InvalidFragmentError
from moduletree.nodes import Alias
from moduletree.nodes import Directory
from moduletree.nodes import Factory
from moduletree.nodes import Node
from moduletree.nodes import Stub
from moduletree.nodes import merge_fragment
from moduletree.nodes import normalize_fragment


def factory(require, exports, module):
    pass


class TestNormalizeFragment:
    """Fragment values map onto a closed set of content types."""

    def test_mapping_is_directory(self):
        assert isinstance(normalize_fragment({"a": factory}), Directory)

    def test_string_is_alias(self):
        contents = normalize_fragment("./target")
        assert isinstance(contents, Alias)
        assert contents.target == "./target"

    def test_callable_is_factory_without_deps(self):
        contents = normalize_fragment(factory)
        assert isinstance(contents, Factory)
        assert contents.func is factory
        assert contents.deps == ()

    def test_callable_deps_attribute(self):
        def with_deps(require, exports, module):
            pass

        with_deps.deps = ["./a", "b"]

        contents = normalize_fragment(with_deps)
        assert contents.deps == ("./a", "b")
        assert contents.pending == ["./a", "b"]

    def test_list_with_factory(self):
        contents = normalize_fragment(["./a", "./b", factory])
        assert isinstance(contents, Factory)
        assert contents.func is factory
        assert contents.deps == ("./a", "./b")

    def test_list_with_records_is_stub(self):
        contents = normalize_fragment(["./dep", {"a": 1}, {"b": 2}])
        assert isinstance(contents, Stub)
        assert contents.record == {"a": 1, "b": 2}
        assert contents.deps == ("./dep",)

    def test_list_of_strings_gets_default_factory(self):
        contents = normalize_fragment(["./a"])
        assert isinstance(contents, Factory)
        assert callable(contents.func)
        assert contents.deps == ("./a",)

    def test_two_factories_rejected(self):
        with pytest.raises(InvalidFragmentError, match="2 factories"):
            normalize_fragment([factory, factory])

    def test_unsupported_values_rejected(self):
        with pytest.raises(InvalidFragmentError):
            normalize_fragment(42)
        with pytest.raises(InvalidFragmentError):
            normalize_fragment(["./a", 3.5])

    def test_none_is_nothing(self):
        assert normalize_fragment(None) is None

    def test_invalid_fragment_is_type_error(self):
        with pytest.raises(TypeError):
            normalize_fragment(object())


class TestNode:
    """Identity, parent links, and options inheritance."""

    def test_identity(self):
        root = Node()
        merge_fragment(root, {"a": {"b.js": factory}})

        a = root.child("a")
        b = a.child("b.js")

        assert root.identity == ""
        assert a.identity == "/a"
        assert b.identity == "/a/b.js"
        assert b.parent is a
        assert b.root() is root

    def test_anonymous_node_is_anchored_but_unlisted(self):
        root = Node()
        merge_fragment(root, {"dir": {}})
        directory = root.child("dir")

        anonymous = Node(directory)

        assert anonymous.parent is directory
        assert anonymous.identity is None
        assert anonymous.enclosing_directory() is directory
        assert list(directory.children()) == []

    def test_enclosing_directory(self):
        root = Node()
        merge_fragment(root, {"a": {"b.js": factory}})
        b = root.child("a").child("b.js")

        assert b.enclosing_directory() is root.child("a")
        assert root.enclosing_directory() is root

    def test_effective_options_inherited(self):
        default = InstallerOptions()
        custom = InstallerOptions(extensions=(".py",))
        root = Node()
        merge_fragment(root, {"a": {"b": {"c.py": factory}}}, custom)
        c = root.child("a").child("b").child("c.py")

        assert c.effective_options(default) is custom
        assert root.effective_options(default) is default

    def test_directory_gets_ready_cache(self):
        root = Node()
        merge_fragment(root, {"a": {}, "b.js": factory})

        assert root.child("a").ready_cache == {}
        assert root.child("b.js").ready_cache is None


class TestMergeFragment:
    """Installing into an existing tree merges rather than replaces."""

    def test_merge_preserves_existing_children(self):
        root = Node()
        merge_fragment(root, {"lib": {"a.js": factory}})
        a = root.child("lib").child("a.js")

        merge_fragment(root, {"lib": {"b.js": factory}})

        lib = root.child("lib")
        assert lib.child("a.js") is a
        assert lib.child("b.js") is not None

    def test_first_definition_wins(self):
        def other(require, exports, module):
            pass

        root = Node()
        merge_fragment(root, {"a.js": factory})
        merge_fragment(root, {"a.js": other})

        assert root.child("a.js").contents.func is factory

    def test_directory_not_replaced_by_unit(self):
        root = Node()
        merge_fragment(root, {"a": {"x.js": factory}})
        merge_fragment(root, {"a": factory})

        assert root.child("a").is_directory

    def test_stub_upgraded_by_factory(self):
        root = Node()
        merge_fragment(root, {"lazy.js": [{"stub": True}]})
        node = root.child("lazy.js")
        assert isinstance(node.contents, Stub)

        merge_fragment(root, {"lazy.js": factory})

        assert root.child("lazy.js") is node
        assert isinstance(node.contents, Factory)

    def test_stub_records_merge(self):
        root = Node()
        merge_fragment(root, {"lazy.js": [{"a": 1}]})
        merge_fragment(root, {"lazy.js": [{"b": 2}]})

        assert root.child("lazy.js").contents.record == {"a": 1, "b": 2}

    def test_absent_placeholder_filled(self):
        root = Node()
        merge_fragment(root, {"a.js": None})
        node = root.child("a.js")
        assert node.contents is None

        merge_fragment(root, {"a.js": factory})

        assert isinstance(node.contents, Factory)
