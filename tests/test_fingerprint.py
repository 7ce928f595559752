"""Tests for the source fingerprint."""

from archmap.context import AnalysisContext, RepoContext, RepoFile
from archmap.fingerprint import compute_fingerprint


def _context(*repos):
    return AnalysisContext(project_id="p", repos=list(repos))


def _repo(repo_id, files):
    return RepoContext(id=repo_id, owner="acme", name=repo_id, files=[RepoFile(path=p, sha=s) for p, s in files])


class TestFingerprint:
    """Tests for compute_fingerprint."""

    def test_order_independent(self):
        a = _repo("a", [("package.json", "1"), ("app/page.tsx", "2")])
        b = _repo("b", [("vercel.json", "3")])
        reordered = _repo("a", [("app/page.tsx", "2"), ("package.json", "1")])
        assert compute_fingerprint(_context(a, b)) == compute_fingerprint(_context(b, reordered))

    def test_only_key_files_count(self):
        base = _repo("a", [("package.json", "1")])
        with_readme = _repo("a", [("package.json", "1"), ("README.md", "9")])
        assert compute_fingerprint(_context(base)) == compute_fingerprint(_context(with_readme))

    def test_sha_change_is_detected(self):
        before = _repo("a", [("supabase/migrations/001.sql", "1")])
        after = _repo("a", [("supabase/migrations/001.sql", "2")])
        assert compute_fingerprint(_context(before)) != compute_fingerprint(_context(after))
        assert len(compute_fingerprint(_context(before))) == 32
