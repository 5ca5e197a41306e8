import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest


@pytest.fixture(autouse=True)
def _work_in_tmp(tmp_path, monkeypatch):
    # Report and log files are written relative to the working directory.
    monkeypatch.chdir(tmp_path)
    yield


@pytest.fixture
def sample_doc():
    return {
        "kind": "doc",
        "children": [
            {
                "kind": "customTable",
                "attrs": {
                    "tableId": "sample-table",
                    "headers": ["Old Header 1", {"text": "Rich Header 2"}],
                    "rows": [
                        ["Simple cell", {"content": "Rich cell content"}],
                        ["Another row", "More data"],
                    ],
                },
            }
        ],
    }


@pytest.fixture
def expected_sample_doc():
    return {
        "kind": "doc",
        "children": [
            {
                "kind": "basicTable",
                "attrs": {
                    "tableData": {
                        "headers": ["Old Header 1", "Rich Header 2"],
                        "rows": [["Simple cell", "Rich cell content"], ["Another row", "More data"]],
                        "id": "sample-table",
                    }
                },
            }
        ],
    }
