"""Tests for the analysis request schema."""

import pytest
from pydantic import ValidationError

from archmap.schema import AnalysisRequest

REQUEST = {
    "projectId": "proj-9",
    "repos": [
        {
            "id": "r1",
            "owner": "acme",
            "name": "web",
            "defaultBranch": "develop",
            "files": [{"path": "app/page.tsx", "sha": "abc"}],
            "contents": {"app/page.tsx": "fetch('/api/a')"},
        },
        {"id": "r2", "owner": "acme", "name": "api"},
    ],
    "contents": {"README.md": "hi"},
}


class TestAnalysisRequest:
    """Tests for AnalysisRequest validation and conversion."""

    def test_to_context(self):
        context = AnalysisRequest.model_validate(REQUEST).to_context()
        assert context.project_id == "proj-9"
        web, api = context.repos
        assert web.default_branch == "develop"
        assert web.project_id == "proj-9"
        assert web.files[0].sha == "abc"
        assert context.read(web, "app/page.tsx") == "fetch('/api/a')"
        assert context.read(api, "README.md") == "hi"
        assert "r2" not in context.repo_contents

    def test_missing_project_id(self):
        with pytest.raises(ValidationError):
            AnalysisRequest.model_validate({"repos": []})

    def test_empty_file_path(self):
        bad = {"projectId": "p", "repos": [{"id": "r", "owner": "o", "name": "n", "files": [{"path": ""}]}]}
        with pytest.raises(ValidationError):
            AnalysisRequest.model_validate(bad)
