import os
import sys

sys.path.insert(0, os.path.abspath("../src"))
import ec_heatflux

project = "ec-heatflux"
copyright = "2025, Lawrence Hipps, Martin Schroeder, Paul Inkenbrandt"
author = "Lawrence Hipps, Martin Schroeder, Paul Inkenbrandt"
release = ec_heatflux.__version__

# -- General configuration ---------------------------------------------------

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.autosummary",
    "numpydoc",
    "sphinx.ext.viewcode",
    "sphinx.ext.intersphinx",
    "sphinx.ext.mathjax",
]
autosummary_generate = True
numpydoc_show_class_members = False
exclude_patterns = ["_build"]

intersphinx_mapping = {
    "python": ("https://docs.python.org/3", None),
    "numpy": ("https://numpy.org/doc/stable", None),
    "pandas": ("https://pandas.pydata.org/docs", None),
}

# -- Options for HTML output -------------------------------------------------

html_theme = "sphinx_rtd_theme"
