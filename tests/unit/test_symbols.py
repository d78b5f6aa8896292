"""
Unit tests for the symbol index and the cross-file rewriter.
"""

from unittest.mock import MagicMock

import pytest

from reprogrammer.config.models import SymbolEntry
from reprogrammer.errors import GenerationServiceError
from reprogrammer.languages.generic.plugin import GenericPlugin
from reprogrammer.languages.java.plugin import JavaPlugin
from reprogrammer.languages.python.plugin import PythonPlugin
from reprogrammer.symbols.index import SymbolIndex, SymbolIndexer
from reprogrammer.symbols.rewriter import CrossFileRewriter


def entry(original, new, namespace="", source=None, output=None):
    return SymbolEntry(
        original_name=original,
        new_name=new,
        namespace=namespace,
        source_file_path=source or f"{original}.src",
        output_path=output or f"{new}.out",
    )


# =============================================================================
# SymbolIndex
# =============================================================================


def test_index_is_append_only_until_frozen():
    index = SymbolIndex()
    index.add(entry("OldName", "NewName"))
    index.freeze()

    with pytest.raises(RuntimeError):
        index.add(entry("Other", "Other"))
    assert len(index) == 1


def test_first_declaration_wins():
    index = SymbolIndex()
    first = index.add(entry("Shared", "SharedA", source="a/Shared.src"))
    index.add(entry("Shared", "SharedB", source="b/Shared.src"))

    assert index.get("Shared") is first
    assert index.by_source("b/Shared.src").new_name == "SharedB"
    assert len(index) == 2


def test_resolve_by_original_or_new_name():
    index = SymbolIndex()
    index.add(entry("OldName", "NewName"))

    assert index.resolve("OldName").new_name == "NewName"
    assert index.resolve("NewName").original_name == "OldName"
    assert index.resolve("Missing") is None
    assert "OldName" in index
    assert index.renames() == {"OldName": "NewName"}


def test_same_name_in_two_files_is_ambiguous():
    index = SymbolIndex()
    first = index.add(entry("Utils", "Utils", namespace="a", source="a/Utils.src"))
    second = index.add(entry("Utils", "Utils", namespace="b", source="b/Utils.src"))

    assert index.resolve("Utils") is None
    assert index.resolve_qualified("a.Utils") is first
    assert index.resolve_qualified("b.Utils") is second


def test_indexer_uses_primary_type_and_falls_back_to_file_stem():
    indexer = SymbolIndexer(PythonPlugin(), package_name="app")

    index = indexer.build(
        {
            "shop/item.java": "class Item:\n    pass\n",
            "shop/helpers.java": "def helper():\n    return 1\n",
        }
    )

    item = index.by_source("shop/item.java")
    assert (item.original_name, item.namespace, item.output_path) == ("Item", "app.shop.item", "app/shop/item.py")
    helpers = index.by_source("shop/helpers.java")
    assert helpers.original_name == "Helpers"
    assert index.frozen


def test_indexer_resolves_name_collisions():
    index = SymbolIndexer(PythonPlugin()).build(
        [("pkg/a.java", "class Foo:\n    pass\n"), ("pkg/b.java", "class Foo:\n    pass\n")]
    )

    assert index.by_source("pkg/a.java").new_name == "Foo"
    second = index.by_source("pkg/b.java")
    assert second.new_name == "Foo_1"
    assert second.output_path == "pkg/foo_1.py"


def test_indexer_asks_for_names_and_survives_service_errors():
    session = MagicMock()
    session.suggest_name.side_effect = ["Inventory", GenerationServiceError("down")]
    indexer = SymbolIndexer(PythonPlugin(), session, generate_names=True)

    index = indexer.build({"a.java": "class Stock:\n    pass\n", "b.java": "class Order:\n    pass\n"})

    assert index.by_source("a.java").new_name == "Inventory"
    assert index.by_source("b.java").new_name == "Order"
    assert session.suggest_name.call_count == 2


ITEM_DAO = """from model.item import Item


class ItemDAO:
    def find(self):
        return Item()
"""


def test_new_name_never_takes_another_original_name():
    session = MagicMock()
    session.suggest_name.return_value = "Item"
    files = {"dao/item_dao.java": ITEM_DAO, "model/item.java": "class Item:\n    pass\n"}

    index = SymbolIndexer(PythonPlugin(), session, generate_names=True).build(files)
    report = CrossFileRewriter(index, PythonPlugin()).rewrite(files)

    assert index.by_source("dao/item_dao.java").new_name == "Item_1"
    assert index.by_source("model/item.java").new_name == "Item"
    for path, content in report.files.items():
        assert PythonPlugin().primary_type_name(content) == index.by_source(path).new_name
    assert "return Item()" in report.files["dao/item_dao.java"]
    assert report.converged


def test_equal_names_in_different_packages_are_kept():
    files = {
        "a/Utils.java": "package a;\n\npublic class Utils {}\n",
        "b/Utils.java": "package b;\n\npublic class Utils {}\n",
        "c/Main.java": (
            "package c;\n\nimport b.Utils;\n\n"
            "public class Main {\n    Utils helper = new Utils();\n}\n"
        ),
    }

    index = SymbolIndexer(JavaPlugin()).build(files)
    report = CrossFileRewriter(index, JavaPlugin()).rewrite(files)

    assert index.by_source("a/Utils.java").new_name == "Utils"
    assert index.by_source("b/Utils.java").new_name == "Utils"
    assert index.by_source("b/Utils.java").output_path == "b/Utils.java"
    assert report.files == files
    assert report.modified == set()


# =============================================================================
# Rewriting
# =============================================================================


PYTHON_CALLER = """from models.old_name import OldName


def build():
    return OldName()
"""


def python_index():
    index = SymbolIndex()
    index.add(
        entry(
            "OldName",
            "NewName",
            namespace="models.new_name",
            source="models/OldName.java",
            output="models/new_name.py",
        )
    )
    index.freeze()
    return index


def test_python_rewrite_pass_and_idempotence():
    rewriter = CrossFileRewriter(python_index(), PythonPlugin())

    files, changed = rewriter.rewrite_pass({"app/Main.java": PYTHON_CALLER})

    assert files["app/Main.java"] == (
        "from models.new_name import NewName\n\n\ndef build():\n    return NewName()\n"
    )
    assert changed == {"app/Main.java"}

    again, changed = rewriter.rewrite_pass(files)
    assert again == files
    assert changed == set()


def test_python_rewrite_keeps_unrelated_imports():
    rewriter = CrossFileRewriter(python_index(), PythonPlugin())
    code = "from models.old_name import OldName, helper as h\nimport os\n"

    result = rewriter.rewrite_file("app/Main.java", code)

    assert result == (
        "from models.old_name import helper as h\n"
        "from models.new_name import NewName\n"
        "import os\n"
    )


def test_python_rewrite_keeps_statements_sharing_the_line():
    rewriter = CrossFileRewriter(python_index(), PythonPlugin())
    code = (
        "import os; from models.old_name import OldName\n"
        "if flag: from models.old_name import OldName, helper\n"
    )

    result = rewriter.rewrite_file("app/Main.java", code)

    assert result == (
        "import os; from models.new_name import NewName\n"
        "if flag: from models.old_name import helper; from models.new_name import NewName\n"
    )
    assert PythonPlugin().parse(result).success


def test_identifier_rewrite_is_whole_word():
    rewriter = CrossFileRewriter(python_index(), PythonPlugin())

    result = rewriter.rewrite_file("x.java", "a = OldName\nb = OldNameFactory\nc = my_OldName\n")

    assert result == "a = NewName\nb = OldNameFactory\nc = my_OldName\n"


def test_rewrite_converges_and_reports():
    rewriter = CrossFileRewriter(python_index(), PythonPlugin())

    report = rewriter.rewrite({"app/Main.java": PYTHON_CALLER, "other.java": "x = 1\n"})

    assert report.converged
    assert report.iterations == 2
    assert report.modified == {"app/Main.java"}
    assert report.files["other.java"] == "x = 1\n"


def test_rename_cycle_hits_iteration_cap():
    index = SymbolIndex()
    index.add(entry("Alpha", "Beta"))
    index.add(entry("Beta", "Alpha"))
    rewriter = CrossFileRewriter(index, GenericPlugin(), max_iterations=4)

    report = rewriter.rewrite({"usage.txt": "Alpha uses Beta\n"})

    assert not report.converged
    assert report.iterations == 4
    # Simultaneous substitution: each pass swaps the names exactly once
    assert report.files["usage.txt"] == "Alpha uses Beta\n"


JAVA_CALLER = """package com.shop.service;

import com.shop.model.OldName;
import java.util.List;

public class User {
    public void run(List<OldName> all) {
        OldName x = OldName.create();
    }
}
"""


def test_java_rewrite_pass_and_idempotence():
    index = SymbolIndex()
    index.add(
        entry(
            "OldName",
            "NewName",
            namespace="com.shop.model",
            source="com/shop/model/OldName.py",
            output="com/shop/model/NewName.java",
        )
    )
    index.add(
        entry(
            "User",
            "User",
            namespace="com.shop.service",
            source="com/shop/service/user.py",
            output="com/shop/service/User.java",
        )
    )
    rewriter = CrossFileRewriter(index, JavaPlugin())

    files, changed = rewriter.rewrite_pass({"com/shop/service/user.py": JAVA_CALLER})

    assert files["com/shop/service/user.py"] == JAVA_CALLER.replace("OldName", "NewName")
    assert changed == {"com/shop/service/user.py"}
    assert rewriter.rewrite_pass(files) == (files, set())


def test_java_qualified_imports_keep_their_package():
    index = SymbolIndex()
    index.add(entry("Utils", "Utils", namespace="a", source="a/Utils.py", output="a/Utils.java"))
    index.add(entry("Utils", "Helpers", namespace="b", source="b/Utils.py", output="b/Helpers.java"))
    rewriter = CrossFileRewriter(index, JavaPlugin())
    code = "import a.Utils;\nimport b.Utils;\n\nclass Main {}\n"

    result = rewriter.rewrite_file("c/Main.py", code)

    assert result == "import a.Utils;\nimport b.Helpers;\n\nclass Main {}\n"
    assert rewriter.rewrite_file("c/Main.py", result) == result


def test_java_package_declaration_follows_namespace():
    index = SymbolIndex()
    index.add(entry("Item", "Item", namespace="com.shop.model", source="model/item.py", output="x.java"))
    rewriter = CrossFileRewriter(index, JavaPlugin())

    moved = rewriter.rewrite_file("model/item.py", "package wrong.place;\n\nclass Item {}\n")
    added = rewriter.rewrite_file("model/item.py", "class Item {}\n")

    assert moved == "package com.shop.model;\n\nclass Item {}\n"
    assert added == "package com.shop.model;\n\nclass Item {}\n"


def test_generic_plugin_rewrites_structural_lines():
    index = SymbolIndex()
    index.add(entry("OldName", "NewName", namespace="App.Models", source="Models/OldName.java"))
    rewriter = CrossFileRewriter(index, GenericPlugin("csharp", ".cs"))
    code = "using OldName;\nnamespace Legacy {\n    var x = new OldName();\n}\n"

    result = rewriter.rewrite_file("Models/OldName.java", code)

    assert result == "using NewName;\nnamespace App.Models {\n    var x = new NewName();\n}\n"
