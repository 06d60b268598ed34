"""
Executable BDD scenarios for flow editing.

These scenarios are defined in features/flow_editing.feature.
The step definitions are in tests/bdd/steps/flow_editing_steps.py.

Running:
    pytest tests/test_flow_editing_bdd.py -v
"""

from pytest_bdd import scenarios

from bdd.steps.flow_editing_steps import *  # noqa: F401,F403

# Feature file path (relative to this test file)
FEATURE_FILE = "../features/flow_editing.feature"

scenarios(FEATURE_FILE)
