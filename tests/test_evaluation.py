"""Tests for module evaluation and the bound require function."""

import pytest

from moduletree import MISSING
from moduletree import ModuleNotFoundError
from moduletree import make_installer

from conftest import exporting


class TestMemoization:
    """A unit's factory runs at most once."""

    def test_factory_runs_once(self, install):
        calls = []

        def counted(require, exports, module):
            calls.append(module.id)
            exports["n"] = len(calls)

        require = install({"a.js": counted})

        first = require("./a")
        assert require("./a.js") is first
        assert require("/a") is first
        assert calls == ["/a.js"]

    @pytest.mark.parametrize("value", [None, False, 0, "", [], {}])
    def test_falsy_exports_are_memoized(self, install, value):
        calls = []

        def factory(require, exports, module):
            calls.append(1)
            module.exports = value

        require = install({"v.js": factory})

        assert require("./v") == value
        assert require("./v") == value
        assert len(calls) == 1

    def test_any_value_for_exports(self, install):
        obj = object()

        def fun():
            pass

        def set_exports(value):
            def factory(require, exports, module):
                module.exports = value

            return factory

        require = install({"object": set_exports(obj), "function": set_exports(fun), "none": set_exports(None)})

        assert require("./object") is obj
        assert require("./function") is fun
        assert require("./none") is None

    def test_end_to_end_late_dependency(self, install):
        """a installed before b still sees b's fully evaluated exports."""

        def factory_a(require, exports, module):
            exports["b"] = require("./b")

        install({"a.js": ["./b", factory_a]})
        require = install({"b.js": exporting(ready=True)})

        assert require("./a") == {"b": {"ready": True}}


class TestCircularEvaluation:
    """Circular requires observe partially populated exports."""

    def test_cycle_sees_partial_exports(self, install):
        seen = {}

        def a(require, exports, module):
            exports["before"] = True
            seen["b"] = require("./b")
            exports["after"] = True

        def b(require, exports, module):
            seen["a_during_b"] = dict(require("./a"))
            exports["b"] = True

        require = install({"a.js": a, "b.js": b})
        result = require("./a")

        assert seen["a_during_b"] == {"before": True}
        assert seen["b"] == {"b": True}
        assert result == {"before": True, "after": True}


class TestModuleRecord:
    """Module bookkeeping: ids, parents, children."""

    def test_children_are_distinct(self, installer, install):
        def main(require, exports, module):
            require("./util")
            require("./util.js")
            require("./other")

        require = install({"main.js": main, "util.js": exporting(), "other.js": exporting()})
        require("./main")

        module = installer.resolver.resolve(installer.root, "./main").module
        assert [child.id for child in module.children] == ["/util.js", "/other.js"]
        assert module.children[0].parent is module
        assert module.loaded is True

    def test_manifest_tracked_as_child(self, installer, install):
        def main(require, exports, module):
            require("pkg")

        require = install(
            {
                "main.js": main,
                "node_modules": {"pkg": {"package.json": [{"main": "lib.js"}], "lib.js": exporting()}},
            }
        )
        require("./main")

        module = installer.resolver.resolve(installer.root, "./main").module
        assert set(module.child_ids) == {"/node_modules/pkg/package.json", "/node_modules/pkg/lib.js"}

    def test_unevaluated_module_reports_not_evaluated(self, installer, install):
        install({"a.js": exporting()})
        node = installer.resolver.resolve(installer.root, "./a")

        assert node.module is None
        installer.evaluator.module_for(node)
        assert node.module.evaluated is False
        assert node.module.exports is None


class TestEvaluateEdgeCases:
    """What evaluate() returns for non-units."""

    def test_directories_and_absent_nodes_are_missing(self, installer, install):
        install({"dir": {"x.js": exporting()}})
        directory = installer.root.child("dir")

        assert installer.evaluator.evaluate(None) is MISSING
        assert installer.evaluator.evaluate(directory) is MISSING

    def test_stub_evaluates_to_record_until_replaced(self, install):
        require = install({"lazy.js": [{"placeholder": True}]})

        assert require("./lazy") == {"placeholder": True}

        install({"lazy.js": exporting(real=True)})

        assert require("./lazy") == {"real": True}

    def test_factory_error_propagates(self, install):
        def broken(require, exports, module):
            raise ValueError("boom")

        require = install({"broken.js": broken})

        with pytest.raises(ValueError, match="boom"):
            require("./broken")


class TestHooks:
    """on_evaluate and fallback hooks."""

    def test_on_evaluate_substitutes_host_implementation(self):
        calls = []

        def factory(require, exports, module):
            calls.append("factory")

        def on_evaluate(module):
            if module.id == "/host.js":
                module.exports = "from host"
                return True
            return False

        require = make_installer(on_evaluate=on_evaluate)({"host.js": factory, "plain.js": exporting(plain=True)})

        assert require("./host") == "from host"
        assert require("./plain") == {"plain": True}
        assert calls == []

    def test_fallback_supplies_value(self):
        calls = []

        def fallback(identifier, requester, error):
            calls.append((identifier, requester, type(error)))
            return {"fallback": identifier}

        require = make_installer(fallback=fallback)({})

        assert require("missing") == {"fallback": "missing"}
        assert calls == [("missing", "", ModuleNotFoundError)]

    def test_fallback_resolve_for_require_resolve(self):
        class Fallback:
            def __call__(self, identifier, requester, error):
                raise error

            def resolve(self, identifier, requester, error):
                return "/substitute/" + identifier

        require = make_installer(fallback=Fallback())({})

        assert require.resolve("missing") == "/substitute/missing"
        with pytest.raises(ModuleNotFoundError):
            require("missing")

    def test_resolve_without_fallback_raises(self, install):
        require = install({})

        with pytest.raises(ModuleNotFoundError) as exc_info:
            require.resolve("./nothing")

        assert exc_info.value.identifier == "./nothing"
        assert "Cannot find module './nothing'" in str(exc_info.value)

    def test_not_found_is_lookup_error(self, install):
        with pytest.raises(LookupError):
            install({})("./nothing")


class TestRequireHandle:
    """Properties of the bound require function."""

    def test_ready_predicate(self, install):
        require = install({"a.js": ["./b", exporting()]})

        assert require.ready("./a") is False

        install({"b.js": exporting()})

        assert require.ready("./a") is True
        assert require.ready("./missing") is False

    def test_extensions_are_read_only(self, install):
        require = install({})

        with pytest.raises(AttributeError):
            require.extensions = (".py",)

    def test_fetch_writes_through_to_installer(self, installer):
        def fetch(missing):
            return None

        installer.require.fetch = fetch

        assert installer.fetch is fetch
        assert installer.require.fetch is fetch
