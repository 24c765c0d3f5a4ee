import os
import sys
from unittest import mock

import pytest


# Flags given through VCM_* variables of the calling shell must not leak
# into the parsers under test.
@pytest.fixture(autouse=True)
def clean_cli_environment():
    environ = {key: value for key, value in os.environ.items()
               if not key.startswith('VCM_')}
    with mock.patch.dict(os.environ, environ, clear=True):
        yield


@pytest.fixture(autouse=True)
def restore_excepthook():
    excepthook = sys.excepthook
    yield
    sys.excepthook = excepthook
