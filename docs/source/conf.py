# docs/source/conf.py -------------------------------------------
import pathlib, sys

# 1. Absolute path to the repository root (three levels up from this file)
PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[2]
sys.path.insert(0, PROJECT_ROOT.as_posix())      # must happen first
# ---------------------------------------------------------------

from pariter._version import __version__

# -- Project information -----------------------------------------------------
# https://www.sphinx-doc.org/en/master/usage/configuration.html#project-information

project = 'pariter'
copyright = '2025, pariter'
release = __version__

# -- General configuration ---------------------------------------------------

extensions = ['sphinx.ext.autodoc',
              'sphinx.ext.napoleon',
              'sphinx.ext.viewcode',
              'sphinx.ext.doctest',
              'sphinx.ext.intersphinx']

autodoc_default_options = {
    'members': True,
    'undoc-members': False,
    'show-inheritance': True,
}

intersphinx_mapping = {
    'python': ('https://docs.python.org/3', None),
    'pandas': ('https://pandas.pydata.org/docs/', None),
}

# Napoleon (docstring style)
napoleon_google_docstring = True
napoleon_numpy_docstring = False

# Theme
html_theme = 'furo'
templates_path = ['_templates']
exclude_patterns = []
html_static_path = ['_static']
