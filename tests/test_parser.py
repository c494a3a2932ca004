"""Tests for the parser adapter."""

import threading

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from codestruct.core.exceptions import ParseError, UnsupportedLanguageError
from codestruct.services.detectors.base import iter_functions
from codestruct.services.parser import ParserAdapter, SourceNode, get_parser_adapter
from codestruct.services.source import SourceFile, detect_language


class TestLanguageDetection:
    """Extension and filename based language tags."""

    @pytest.mark.parametrize("path,language", [
        ("app/main.py", "python"),
        ("web/index.js", "javascript"),
        ("web/Button.jsx", "javascript"),
        ("src/server.ts", "typescript"),
        ("src/App.tsx", "tsx"),
        ("config/settings.yaml", "config"),
        (".env", "config"),
        (".env.production", "config"),
        ("certs/server.pem", "config"),
        ("README.md", None),
        ("cmd/main.go", None),
    ])
    def test_detect_language(self, path, language):
        assert detect_language(path) == language

    def test_source_file_supported_flag(self):
        assert SourceFile.from_text("a.py", "x = 1\n").supported
        assert not SourceFile.from_text("notes.txt", "hello").supported
        assert SourceFile.from_text("notes.txt", "x = 1", language_hint="python").supported


class TestSourceNode:

    def test_defaults(self):
        node = SourceNode("identifier", 1, 0, 1, 5)
        assert node.children == []
        assert node.field_name is None
        assert SourceNode("identifier", 1, 0, 1, 5).children is not node.children

    def test_children_by_field(self):
        name = SourceNode("identifier", 1, 4, 1, 9, field_name="name", text="greet")
        params = SourceNode("parameters", 1, 9, 1, 11, field_name="parameters")
        function = SourceNode("function_definition", 1, 0, 2, 8, children=[name, params])

        assert function.child_by_field("name") is name
        assert function.children_by_field("parameters") == [params]
        assert function.child_by_field("body") is None

    def test_parsed_nodes_carry_field_names(self):
        ast = ParserAdapter().parse("def greet(who):\n    return who\n", "python")
        function = ast.root.named_children[0]
        assert function.child_by_field("name").text == "greet"
        assert function.child_by_field("body").kind == "block"


class TestParserAdapter:
    """Normalized trees from tree-sitter and the config adapter."""

    def setup_method(self):
        self.parser = ParserAdapter()

    def test_python_module(self):
        code = '''
def greet(name):
    return "hello " + name


class Greeter:
    def greet(self, name, punctuation="!"):
        return name + punctuation
'''
        ast = self.parser.parse(code, "python", "greet.py")

        assert ast.root.kind == "module"
        assert not ast.has_errors
        functions = iter_functions(ast)
        assert [f.name for f in functions] == ["greet", "greet"]
        assert functions[0].class_name is None
        assert functions[1].class_name == "Greeter"
        assert functions[1].parameters == ["name", "punctuation"]
        assert functions[0].start_line == 2

    def test_spans_are_one_based(self):
        ast = self.parser.parse("x = 1\ny = 2\n", "python")
        statements = ast.root.named_children
        assert [s.start_line for s in statements] == [1, 2]
        assert statements[0].start_column == 0

    def test_javascript_arrow_function_takes_binding_name(self):
        ast = self.parser.parse("const add = (a, b) => a + b;\n", "javascript", "math.js")
        functions = iter_functions(ast)
        assert len(functions) == 1
        assert functions[0].name == "add"
        assert functions[0].parameters == ["a", "b"]

    def test_typescript_parameters(self):
        code = "function format(value: number, unit?: string): string { return `${value}${unit}`; }\n"
        ast = self.parser.parse(code, "typescript", "format.ts")
        functions = iter_functions(ast)
        assert functions[0].name == "format"
        assert functions[0].parameters == ["value", "unit"]

    def test_javascript_class_methods(self):
        code = '''
class Cart {
  add(item) { this.items.push(item); }
  total() { return this.items.length; }
}
'''
        ast = self.parser.parse(code, "javascript", "cart.js")
        functions = iter_functions(ast)
        assert [(f.class_name, f.name) for f in functions] == [("Cart", "add"), ("Cart", "total")]

    def test_partial_parse_keeps_valid_subtrees(self):
        code = "def ok():\n    return 1\n\nvalue = (1, 2\n"
        ast = self.parser.parse(code, "python", "broken.py")

        assert ast.has_errors
        assert "ok" in [f.name for f in iter_functions(ast)]

    def test_walk_skips_error_subtrees(self):
        code = "def ok():\n    return 1\n\nvalue = (1, 2\n"
        ast = self.parser.parse(code, "python", "broken.py")

        pruned = list(ast.walk())
        everything = list(ast.walk(skip_errors=False))
        assert all(not node.is_error for node in pruned)
        assert any(node.is_error for node in everything)

    def test_parse_strict_rejects_errors(self):
        with pytest.raises(ParseError):
            self.parser.parse_strict("def broken(:\n    pass\n", "python", "broken.py")

    def test_parse_strict_accepts_clean_code(self):
        ast = self.parser.parse_strict("def fine():\n    pass\n", "python")
        assert not ast.has_errors

    def test_unsupported_language_hint(self):
        with pytest.raises(UnsupportedLanguageError):
            self.parser.parse("IDENTIFICATION DIVISION.", "cobol", "legacy.cbl")

    def test_unsupported_extension(self):
        with pytest.raises(UnsupportedLanguageError):
            self.parser.parse("package main\n", path="main.go")

    def test_config_adapter(self):
        text = '# database\ndatabase:\n  password: "admin123"\n\n[server]\nport = 8080\n'
        ast = self.parser.parse(text, path="config/settings.yaml")

        assert ast.language == "config"
        kinds = [child.kind for child in ast.root.children]
        assert kinds == ["comment", "pair", "pair", "section", "pair"]
        password = ast.root.children[2]
        assert password.name == "password"
        assert password.start_line == 3
        assert password.text == '"admin123"'

    def test_node_budget_truncates(self):
        code = "\n".join(f"value_{i} = {i} + {i}" for i in range(200))
        ast = ParserAdapter(max_nodes=50).parse(code, "python")

        assert ast.truncated
        assert ast.has_errors
        assert ast.node_count == 50

    def test_adapter_is_thread_local(self):
        main_adapter = get_parser_adapter()
        assert get_parser_adapter() is main_adapter

        seen = []
        thread = threading.Thread(target=lambda: seen.append(get_parser_adapter()))
        thread.start()
        thread.join()
        assert seen[0] is not main_adapter


class TestParserDeterminism:
    """Identical input always yields an identical tree."""

    @given(st.text(max_size=300))
    @settings(max_examples=50, deadline=None)
    def test_python_parse_is_deterministic(self, text):
        parser = ParserAdapter()
        first = parser.parse(text, "python")
        second = ParserAdapter().parse(text, "python")
        assert first.root.shape() == second.root.shape()
        assert first.has_errors == second.has_errors

    @given(st.sampled_from([
        "function f(a) { return a * 2; }",
        "const x = [1, 2, 3].map(n => n + 1);",
        "class A { constructor() { this.v = 1; } }",
        "if (a) { b(); } else { c(); }",
    ]))
    @settings(max_examples=10, deadline=None)
    def test_javascript_parse_is_deterministic(self, code):
        first = ParserAdapter().parse(code, "javascript")
        second = ParserAdapter().parse(code, "javascript")
        assert first.root.shape() == second.root.shape()

    def test_trailing_whitespace_keeps_node_kinds(self):
        code = "def f(a):\n    return a + 1\n"
        padded = "def f(a):   \n    return a + 1   \n"
        parser = ParserAdapter()
        kinds = [entry[0] for entry in parser.parse(code, "python").root.shape()]
        padded_kinds = [entry[0] for entry in parser.parse(padded, "python").root.shape()]
        assert kinds == padded_kinds
