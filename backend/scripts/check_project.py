#!/usr/bin/env python3
"""
Quick script to inspect movie projects and their scenes.

Usage:
    python scripts/check_project.py <project_id>    # Show project and scene table
    python scripts/check_project.py --generating    # List projects the orchestrator is driving
    python scripts/check_project.py --recent 5      # Show 5 most recently updated projects
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to Python path so we can import backend modules
script_dir = Path(__file__).parent
backend_dir = script_dir.parent
sys.path.insert(0, str(backend_dir))

from config import settings
from database import get_db_context, init_db
from models import MovieProject, MovieScene, ProjectStatus, SceneStatus


def describe_scene(scene: MovieScene) -> str:
    """Tell an operator whether a failed scene will be retried."""
    if scene.status != SceneStatus.FAILED.value:
        return ""
    if scene.retry_count < settings.MOVIE_MAX_SCENE_RETRIES:
        return f"will retry ({scene.retry_count}/{settings.MOVIE_MAX_SCENE_RETRIES})"
    return "retries exhausted"


def check_project(project_id: str) -> bool:
    """Print a project and its scene table."""
    with get_db_context() as db:
        project = db.get(MovieProject, project_id)
        if project is None:
            print(f"❌ Project not found: {project_id}")
            return False

        print(f"✅ Project: {project.id}")
        print(f"   Title: {project.title or '-'}")
        print(f"   Status: {project.status}")
        print(f"   Model: {project.model}  Style: {project.style or '-'}  Voice: {project.voice_id or '-'}")
        print(f"   Scene: {project.current_scene}/{project.total_scenes}  Completed: {project.completed_scenes}")
        print(f"   Spent credits: {project.spent_credits}")
        if project.final_video_url:
            print(f"   Final video: {project.final_video_url}")
        if project.error_message:
            print(f"   Error: {project.error_message}")

        print()
        print(f"   {'#':>3}  {'status':<11} {'cost':>4} {'retries':>7}  note")
        for scene in project.scenes:
            note = describe_scene(scene)
            if scene.error_message:
                note = f"{note} {scene.error_message}".strip()
            cost = scene.credit_cost if scene.credit_cost is not None else "-"
            print(f"   {scene.scene_number:>3}  {scene.status:<11} {cost:>4} {scene.retry_count:>7}  {note}")
        return True


def list_generating():
    """List projects currently driven by the orchestrator."""
    with get_db_context() as db:
        projects = (
            db.query(MovieProject)
            .filter(MovieProject.status == ProjectStatus.GENERATING.value)
            .order_by(MovieProject.updated_at.asc())
            .all()
        )
        print(f"\n📊 Generating projects: {len(projects)}\n")
        for project in projects:
            print(f"  {project.id}  scene {project.current_scene}/{project.total_scenes}  updated {project.updated_at}")


def show_recent(count: int = 10):
    """Show most recently updated projects."""
    with get_db_context() as db:
        projects = (
            db.query(MovieProject)
            .order_by(MovieProject.updated_at.desc())
            .limit(count)
            .all()
        )
        print(f"\n📊 Most recent {len(projects)} projects:\n")
        for project in projects:
            print(f"  {project.id}")
            print(f"    Status: {project.status}")
            print(f"    Progress: {project.completed_scenes}/{project.total_scenes}")
            print(f"    Updated: {project.updated_at}")
            print()


def main():
    parser = argparse.ArgumentParser(description="Inspect movie projects")
    parser.add_argument("project_id", nargs="?", help="Project ID to check")
    parser.add_argument("--generating", action="store_true", help="List generating projects")
    parser.add_argument("--recent", type=int, metavar="N", help="Show N most recent projects")

    args = parser.parse_args()

    init_db()

    if args.generating:
        list_generating()
    elif args.recent:
        show_recent(args.recent)
    elif args.project_id:
        check_project(args.project_id)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
