import json

from coreason_forge.paths import is_normalized
from coreason_forge.scaffold import default_project_files


def test_scaffold_is_a_vite_project() -> None:
    files = default_project_files()
    assert {"package.json", "index.html", "vite.config.js", "src/main.jsx", "src/App.jsx"} <= set(files)
    package = json.loads(files["package.json"])
    assert "vite" in package["devDependencies"]
    assert package["scripts"]["dev"].startswith("vite")
    assert all(is_normalized(path) for path in files)


def test_scaffold_uses_configured_port() -> None:
    files = default_project_files(dev_server_port=3000)
    assert "3000" in files["vite.config.js"]
