"""Configuration file for the Sphinx documentation builder.

For the full list of built-in configuration values, see the
documentation:

https://www.sphinx-doc.org/en/master/usage/configuration.html
"""

import os
import sys

# Make the cubedgrid package importable without installing it.
sys.path.insert(0, os.path.abspath("../../src"))

# Set project information.
project = "cubedgrid"
copyright = "2024, cubedgrid Developers"
author = "cubedgrid Developers"

# Set general configuration options.
extensions = ["sphinx.ext.napoleon", "sphinx.ext.autodoc", "sphinx.ext.viewcode", "myst_parser"]

templates_path = ["_templates"]
exclude_patterns = []

nitpicky = True

# Set options for HTML output.
html_theme = "sphinx_rtd_theme"
html_static_path = ["_static"]

# Set options for autodoc. mpi4py is optional at runtime, so it is
# mocked when building the documentation.
# https://www.sphinx-doc.org/en/master/usage/extensions/autodoc.html

autodoc_default_options = {
    "members": True,
    "member-order": "bysource",
    "special-members": "__init__",
    "undoc-members": True,
    "show-inheritance": True,
}
autodoc_mock_imports = ["mpi4py"]

# Set options for napoleon.
# https://www.sphinx-doc.org/en/master/usage/extensions/napoleon.html

napoleon_google_docstring = False

# Set options for myst_parser.
# https://myst-parser.readthedocs.io/en/latest/index.html

source_suffix = {".rst": "restructuredtext", ".txt": "markdown", ".md": "markdown"}
