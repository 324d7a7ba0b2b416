# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_forge

"""Starter project written into a fresh sandbox when no project files are supplied."""

import json

_PACKAGE_JSON = {
    "name": "sandbox-app",
    "version": "1.0.0",
    "type": "module",
    "scripts": {"dev": "vite --host", "build": "vite build", "preview": "vite preview"},
    "dependencies": {"react": "^18.2.0", "react-dom": "^18.2.0"},
    "devDependencies": {
        "@vitejs/plugin-react": "^4.0.0",
        "vite": "^4.3.9",
        "tailwindcss": "^3.3.0",
        "postcss": "^8.4.31",
        "autoprefixer": "^10.4.16",
    },
}

_VITE_CONFIG = """import {{ defineConfig }} from 'vite'
import react from '@vitejs/plugin-react'

export default defineConfig({{
  plugins: [react()],
  server: {{
    host: '0.0.0.0',
    port: {port},
    strictPort: true,
    hmr: false,
    allowedHosts: ['.e2b.app', 'localhost', '127.0.0.1'],
  }},
}})
"""

_INDEX_HTML = """<!doctype html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <title>Sandbox App</title>
  </head>
  <body>
    <div id="root"></div>
    <script type="module" src="/src/main.jsx"></script>
  </body>
</html>
"""

_MAIN_JSX = """import React from 'react'
import ReactDOM from 'react-dom/client'
import App from './App.jsx'
import './index.css'

ReactDOM.createRoot(document.getElementById('root')).render(
  <React.StrictMode>
    <App />
  </React.StrictMode>,
)
"""

_APP_JSX = """function App() {
  return (
    <div className="min-h-screen bg-gray-900 text-white flex items-center justify-center p-4">
      <div className="text-center">
        <h1 className="text-4xl font-bold mb-4">Sandbox Ready</h1>
        <p className="text-lg text-gray-400">Describe what you want to build.</p>
      </div>
    </div>
  )
}

export default App
"""

_INDEX_CSS = """@tailwind base;
@tailwind components;
@tailwind utilities;
"""

_TAILWIND_CONFIG = """/** @type {import('tailwindcss').Config} */
export default {
  content: ['./index.html', './src/**/*.{js,ts,jsx,tsx}'],
  theme: { extend: {} },
  plugins: [],
}
"""

_POSTCSS_CONFIG = """export default {
  plugins: {
    tailwindcss: {},
    autoprefixer: {},
  },
}
"""


def default_project_files(dev_server_port: int = 5173) -> dict[str, str]:
    """Return the Vite + React + Tailwind starter keyed by project-relative path."""
    return {
        "package.json": json.dumps(_PACKAGE_JSON, indent=2) + "\n",
        "vite.config.js": _VITE_CONFIG.format(port=dev_server_port),
        "index.html": _INDEX_HTML,
        "tailwind.config.js": _TAILWIND_CONFIG,
        "postcss.config.js": _POSTCSS_CONFIG,
        "src/main.jsx": _MAIN_JSX,
        "src/App.jsx": _APP_JSX,
        "src/index.css": _INDEX_CSS,
    }
