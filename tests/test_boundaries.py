import pytest

from cppseek.chunking import BoundaryScanner, BoundaryType, Importance, SemanticBoundary
from cppseek.chunking.boundaries import CommentDetector, ScanWindow, find_block_end

NAMESPACE_SOURCE = """namespace engine {

/**
 * Adds two values.
 * @param a first
 */
int add(int a, int b) {
    if (a > b) {
        return a + b;
    }
    return b + a;
}

void declare(int x);

}
"""

CLASS_SOURCE = """template <typename T>
class Buffer : public Base<T> {
public:
    explicit Buffer(int size);
    T* data() const { return data_; }
private:
    T* data_;
};
"""


def _by_type(boundaries, kind):
    return [boundary for boundary in boundaries if boundary.type is kind]


def test_todo_line_comment_is_single_medium_comment(scanner):
    boundaries = scanner.scan("// TODO: fix")
    assert len(boundaries) == 1
    boundary = boundaries[0]
    assert boundary.type is BoundaryType.COMMENT
    assert boundary.importance is Importance.MEDIUM
    assert (boundary.start_char, boundary.end_char) == (0, len("// TODO: fix"))
    assert boundary.start_line == boundary.end_line == 1


def test_detects_namespace_function_and_doc_comment(scanner):
    boundaries = scanner.scan(NAMESPACE_SOURCE)

    namespace = _by_type(boundaries, BoundaryType.NAMESPACE)
    assert len(namespace) == 1
    assert namespace[0].context == "engine"
    assert namespace[0].importance is Importance.HIGH
    assert (namespace[0].start_line, namespace[0].end_line) == (1, 16)

    functions = {b.context: b for b in _by_type(boundaries, BoundaryType.FUNCTION)}
    assert set(functions) == {"add", "declare"}
    definition = functions["add"]
    assert definition.importance is Importance.CRITICAL
    assert (definition.start_line, definition.end_line) == (7, 12)
    assert NAMESPACE_SOURCE[definition.start_char : definition.end_char].endswith("return b + a;\n}")
    declaration = functions["declare"]
    assert declaration.importance is Importance.HIGH
    assert NAMESPACE_SOURCE[declaration.start_char : declaration.end_char] == "void declare(int x);"

    comments = _by_type(boundaries, BoundaryType.COMMENT)
    assert len(comments) == 1
    assert comments[0].importance is Importance.HIGH
    assert (comments[0].start_line, comments[0].end_line) == (3, 6)


def test_detects_templated_class_and_members(scanner):
    boundaries = scanner.scan(CLASS_SOURCE)

    classes = _by_type(boundaries, BoundaryType.CLASS)
    assert len(classes) == 1
    assert classes[0].context == "Buffer"
    assert classes[0].importance is Importance.CRITICAL
    assert (classes[0].start_line, classes[0].end_line) == (1, 8)

    functions = {b.context: b.importance for b in _by_type(boundaries, BoundaryType.FUNCTION)}
    assert functions == {"Buffer": Importance.HIGH, "data": Importance.CRITICAL}


def test_control_flow_is_not_reported_as_function(scanner):
    source = (
        "void run() {\n"
        "    for (int i = 0; i < n; ++i) {\n"
        "        step();\n"
        "    }\n"
        "    else if (ready) {\n"
        "    }\n"
        "    while (running) {\n"
        "    }\n"
        "    return compute(value);\n"
        "}\n"
    )
    functions = _by_type(scanner.scan(source), BoundaryType.FUNCTION)
    assert [boundary.context for boundary in functions] == ["run"]


def test_return_type_on_its_own_line(scanner):
    source = "static int\ncompute(int value)\n{\n    return value * 2;\n}\n"
    functions = _by_type(scanner.scan(source), BoundaryType.FUNCTION)
    assert len(functions) == 1
    function = functions[0]
    assert function.context == "compute"
    assert function.importance is Importance.CRITICAL
    assert (function.start_line, function.end_line) == (1, 5)
    assert function.start_char == 0


def test_access_specifier_line_is_not_part_of_signature(scanner):
    source = "class Queue {\npublic:\n    int size() const;\n};\n"
    functions = _by_type(scanner.scan(source), BoundaryType.FUNCTION)
    assert [(b.context, b.start_line) for b in functions] == [("size", 3)]


def test_comment_importance_rules(scanner):
    source = (
        "/* plain block */\n"
        "/** documented */\n"
        "/* see @return value */\n"
        "// FIXME later\n"
        "// just a remark\n"
        'const char* s = "/* not a comment */";\n'
    )
    comments = _by_type(scanner.scan(source), BoundaryType.COMMENT)
    assert [(c.start_line, c.importance) for c in comments] == [
        (1, Importance.MEDIUM),
        (2, Importance.HIGH),
        (3, Importance.HIGH),
        (4, Importance.MEDIUM),
    ]


def test_nested_block_comment_closes_at_first_terminator(scanner):
    source = "/* outer /* inner */ tail */"
    comments = _by_type(scanner.scan(source), BoundaryType.COMMENT)
    assert len(comments) == 1
    assert comments[0].end_char == source.index("*/") + 2


def test_unterminated_constructs_end_at_window_end(scanner):
    dangling_comment = "int x;\n/* dangling\nint y;"
    comment = _by_type(scanner.scan(dangling_comment), BoundaryType.COMMENT)[0]
    assert comment.end_char == len(dangling_comment)

    open_function = "void f() {\n  int x = 1;\n  int y = 2;\n"
    window_end = len("void f() {\n  int x = 1;\n")
    function = _by_type(scanner.scan(open_function, end=window_end), BoundaryType.FUNCTION)[0]
    assert function.end_char == window_end
    assert function.importance is Importance.CRITICAL


def test_preprocessor_directives(scanner):
    source = (
        "#include <vector>\n"
        "#define MAX(a, b) \\\n"
        "  ((a) > (b) ? (a) : (b))\n"
        "#ifdef DEBUG\n"
        "#endif\n"
    )
    directives = _by_type(scanner.scan(source), BoundaryType.PREPROCESSOR)
    assert [(d.context, d.importance) for d in directives] == [
        ("#include", Importance.HIGH),
        ("#define", Importance.HIGH),
        ("#ifdef", Importance.MEDIUM),
        ("#endif", Importance.MEDIUM),
    ]
    define = directives[1]
    assert (define.start_line, define.end_line) == (2, 3)


def test_window_scan_reports_absolute_positions(scanner):
    prefix = "int a;\n" * 5
    source = prefix + "void f();\n"
    boundaries = scanner.scan(source, start=len(prefix))
    assert len(boundaries) == 1
    assert boundaries[0].start_char == len(prefix)
    assert boundaries[0].start_line == 6


def test_results_are_ordered_by_position(scanner):
    boundaries = scanner.scan(NAMESPACE_SOURCE + CLASS_SOURCE)
    starts = [boundary.start_char for boundary in boundaries]
    assert starts == sorted(starts)


def test_repeated_scans_hit_the_cache(scanner):
    first = scanner.scan(NAMESPACE_SOURCE, source_file="engine.cpp", start=10, end=200)
    second = scanner.scan(NAMESPACE_SOURCE, source_file="engine.cpp", start=10, end=200)
    assert first == second
    info = scanner.cache_info()
    assert info.hits == 1
    assert info.size == 1


def test_cache_is_keyed_by_window_content(scanner):
    scanner.scan("void a();\n", source_file="a.cpp")
    changed = scanner.scan("void b();\n", source_file="a.cpp")
    assert [boundary.context for boundary in changed] == ["b"]


def test_anonymous_scans_bypass_the_cache(scanner):
    scanner.scan(NAMESPACE_SOURCE)
    assert scanner.cache_info().size == 0


def test_cache_is_bounded():
    scanner = BoundaryScanner(cache_size=2)
    for name in ("a", "b", "c"):
        scanner.scan(f"void {name}();\n", source_file=f"{name}.cpp")
    assert scanner.cache_info().size == 2


def test_custom_detector_set():
    scanner = BoundaryScanner(detectors=[CommentDetector()])
    boundaries = scanner.scan(NAMESPACE_SOURCE)
    assert {boundary.type for boundary in boundaries} == {BoundaryType.COMMENT}


def test_empty_window_has_no_boundaries(scanner):
    assert scanner.scan("") == []
    assert scanner.scan("void f();", start=5, end=5) == []


def test_block_end_ignores_braces_in_literals_and_comments():
    source = 'void f() { puts("}"); /* } */ char c = \'}\'; }'
    assert find_block_end(source, 0) == len(source)


def test_scan_window_line_numbers():
    window = ScanWindow("a\nb\nc", offset=100, first_line=10)
    assert window.line_at(0) == 10
    assert window.line_at(2) == 11
    assert window.line_at(4) == 12


def test_boundary_rejects_inverted_span():
    with pytest.raises(ValueError):
        SemanticBoundary(
            type=BoundaryType.COMMENT,
            start_line=1,
            end_line=1,
            start_char=10,
            end_char=5,
            importance=Importance.LOW,
        )
