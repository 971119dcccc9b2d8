import pathlib
import sys

BACKEND_ROOT = pathlib.Path(__file__).resolve().parents[2]
sys.path.insert(0, str(BACKEND_ROOT))

project = 'Geo Content API'
author = 'Geo Content API contributors'
release = '0.1.0'

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.autosummary',
    'sphinx.ext.napoleon',
    'sphinx.ext.viewcode',
    'sphinx_autodoc_typehints',
    'myst_parser',
]

exclude_patterns = ['_build', '.venv', '.pytest_cache', '.ruff_cache', '.mypy_cache']

autosummary_generate = True
autosummary_imported_members = False

# Google style only; query and db modules document Args/Returns/Raises.
napoleon_google_docstring = True
napoleon_numpy_docstring = False
napoleon_include_private_with_doc = False
napoleon_use_ivar = True

autodoc_default_options = {
    'members': True,
    'show-inheritance': True,
    'member-order': 'bysource',
}
autodoc_typehints = 'description'

autodoc_mock_imports = ['psycopg2']

source_suffix = {
    '.rst': 'restructuredtext',
    '.md': 'markdown',
}

html_theme = 'sphinx_rtd_theme'
html_theme_options = {
    'navigation_depth': 3,
    'prev_next_buttons_location': 'bottom',
}
