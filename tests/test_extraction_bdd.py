"""BDD tests for extraction."""
from __future__ import annotations

from pytest_bdd import scenarios

# Import all step definitions
from steps.extraction_steps import *

# Load scenarios from feature file
scenarios('extraction.feature')
