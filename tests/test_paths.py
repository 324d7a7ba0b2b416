import pytest

from coreason_forge.exceptions import IoError
from coreason_forge.paths import is_normalized, normalize_path, parent_directories


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("src/App.jsx", "src/App.jsx"),
        ("/src/App.jsx", "src/App.jsx"),
        ("./src//components/./Nav.jsx", "src/components/Nav.jsx"),
        ("src\\styles\\index.css", "src/styles/index.css"),
        ("  package.json ", "package.json"),
    ],
)
def test_normalize_path_accepts(raw: str, expected: str) -> None:
    assert normalize_path(raw) == expected


@pytest.mark.parametrize(
    "raw",
    ["", "   ", "/", "../etc/passwd", "src/../../secret", "src/..", "C:/Windows/win.ini", "a\x00b", "."],
)
def test_normalize_path_rejects(raw: str) -> None:
    with pytest.raises(IoError):
        normalize_path(raw)


def test_normalize_path_error_carries_path() -> None:
    with pytest.raises(IoError) as exc:
        normalize_path("../outside.js")
    assert exc.value.path == "../outside.js"
    assert "traversal" in exc.value.cause


def test_parent_directories() -> None:
    assert parent_directories("src/components/ui/Button.jsx") == ["src", "src/components", "src/components/ui"]
    assert parent_directories("index.html") == []


def test_is_normalized() -> None:
    assert is_normalized("src/App.jsx")
    assert not is_normalized("/src/App.jsx")
    assert not is_normalized("../App.jsx")
