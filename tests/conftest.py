"""Pytest configuration and fixtures for archmap tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator, Optional, Sequence

import pytest

from archmap.config_manager import AnalyzerOptions
from archmap.context import AnalysisContext, RepoContext, RepoFile
from archmap.passes import AnalysisPass
from archmap.pipeline import AnalysisResult, ArchitecturePipeline


def _repo(repo_id: str, files: Dict[str, str], project_id: str) -> RepoContext:
    return RepoContext(
        id=repo_id,
        owner="acme",
        name=repo_id,
        files=[RepoFile(path=path, sha=f"sha-{len(text)}") for path, text in files.items()],
        project_id=project_id,
    )


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_project_path() -> Path:
    """Get path to the sample Next.js + Supabase project."""
    return Path(__file__).parent / "fixtures" / "sample_project"


@pytest.fixture
def make_context() -> Callable[..., AnalysisContext]:
    """Build an in-memory context for one repo from ``{path: content}``."""

    def build(files: Dict[str, str], repo_id: str = "web", project_id: str = "proj-1") -> AnalysisContext:
        return AnalysisContext(
            project_id=project_id,
            repos=[_repo(repo_id, files, project_id)],
            repo_contents={repo_id: dict(files)},
        )

    return build


@pytest.fixture
def make_multi_context() -> Callable[..., AnalysisContext]:
    """Build a context with several repos from ``{repo_id: {path: content}}``."""

    def build(repos: Dict[str, Dict[str, str]], project_id: str = "proj-1") -> AnalysisContext:
        return AnalysisContext(
            project_id=project_id,
            repos=[_repo(repo_id, files, project_id) for repo_id, files in repos.items()],
            repo_contents={repo_id: dict(files) for repo_id, files in repos.items()},
        )

    return build


@pytest.fixture
def options() -> AnalyzerOptions:
    """Sequential options so tests do not depend on thread scheduling."""
    return AnalyzerOptions(max_workers=1)


@pytest.fixture
def run_passes(options: AnalyzerOptions) -> Callable[..., AnalysisResult]:
    """Run a chosen list of passes through the pipeline."""

    def run(
        context: AnalysisContext,
        passes: Sequence[AnalysisPass],
        opts: Optional[AnalyzerOptions] = None,
    ) -> AnalysisResult:
        return ArchitecturePipeline(opts or options, passes=passes).run(context, generated_at="2024-01-01T00:00:00")

    return run


@pytest.fixture
def projects_app() -> Dict[str, str]:
    """A minimal app: one page calling GET /api/projects, one handler exporting GET and POST."""
    return {
        "package.json": '{"dependencies": {"next": "14.1.0", "@supabase/supabase-js": "^2.39.0"}}',
        "app/projects/page.tsx": (
            "export default function Projects() {\n"
            "  const load = () => fetch('/api/projects')\n"
            "  return null\n"
            "}\n"
        ),
        "app/api/projects/route.ts": (
            "export async function GET() {\n"
            "  const { data } = await supabase.from('projects').select('*')\n"
            "  return Response.json(data)\n"
            "}\n"
            "\n"
            "export async function POST(req: Request) {\n"
            "  const { data } = await supabase.from('projects').insert(await req.json())\n"
            "  return Response.json(data)\n"
            "}\n"
        ),
    }


@pytest.fixture
def migration_sql() -> str:
    return """-- schema
create table public.profiles (
  id uuid primary key references auth.users(id) on delete cascade,
  username text not null,
  role text default 'member'
);

CREATE TABLE public.tasks (
  id uuid primary key default gen_random_uuid(),
  title text not null,
  assignee_id uuid references public.profiles(id),
  project_id uuid references public.projects(id),
  created_at timestamptz default now()
);

ALTER TABLE public.tasks ENABLE ROW LEVEL SECURITY;

CREATE POLICY "own_tasks" ON public.tasks FOR SELECT USING (auth.uid() = assignee_id);

create table _prisma_migrations (id text);

create table auth.sessions (id uuid);

create or replace function public.handle_new_user()
returns trigger
language plpgsql
security definer
as $$
begin
  insert into public.profiles (id, username) values (new.id, new.id::text);
  return new;
end;
$$;
"""
