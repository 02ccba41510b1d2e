#!/usr/bin/env python3
"""
Seed script: creates a demo Task Master checkout on disk and registers it
through the running API, then imports and merges it once.

    uvicorn tasksync.main:app &
    python scripts/seed_data.py /tmp/tasksync-demo
"""

import json
import sys
from pathlib import Path

import requests

API_URL = "http://localhost:8000/api/v1"
API_KEY = "dev-api-key-change-in-production"
USER_ID = "demo"
HEADERS = {"X-API-Key": API_KEY, "X-User-Id": USER_ID, "Content-Type": "application/json"}

LOCAL_TASKS = {
    "master": {
        "tasks": [
            {
                "id": 1,
                "title": "Set up project skeleton",
                "description": "Repository layout, CI and linters",
                "status": "done",
                "priority": "high",
                "dependencies": [],
                "subtasks": [],
                "updatedAt": "2026-10-01T09:00:00Z",
            },
            {
                "id": 2,
                "title": "Design database schema",
                "description": "Tables for projects and tasks",
                "status": "in-progress",
                "priority": "medium",
                "dependencies": [1],
                "subtasks": [
                    {"id": 1, "title": "Draft ER diagram", "status": "done", "dependencies": []}
                ],
                "updatedAt": "2026-10-02T12:00:00Z",
            },
        ]
    }
}

# What a teammate's checkout looks like: task 2 moved on, task 3 is new
REMOTE_TASKS = {
    "master": {
        "tasks": [
            LOCAL_TASKS["master"]["tasks"][0],
            {**LOCAL_TASKS["master"]["tasks"][1], "status": "review", "updatedAt": "2026-10-05T08:00:00Z"},
            {
                "id": 3,
                "title": "Write API endpoints",
                "description": "CRUD for projects",
                "status": "pending",
                "priority": "medium",
                "dependencies": [2],
                "subtasks": [],
                "updatedAt": "2026-10-05T08:30:00Z",
            },
        ]
    }
}


def write_checkout(root: Path) -> Path:
    """Create <root>/.taskmaster/tasks/tasks.json."""
    tasks_file = root / ".taskmaster" / "tasks" / "tasks.json"
    tasks_file.parent.mkdir(parents=True, exist_ok=True)
    tasks_file.write_text(json.dumps(LOCAL_TASKS, indent=2) + "\n", encoding="utf-8")
    return tasks_file


def create_project(root: Path) -> int:
    """Register a project via API."""
    payload = {"name": root.name, "tag": "master", "localPath": str(root)}
    response = requests.post(f"{API_URL}/projects", headers=HEADERS, json=payload)
    if response.status_code == 201:
        project = response.json()
        print(f"  ✓ Project '{project['name']}' (id={project['id']})")
        return project["id"]
    print(f"  ✗ Failed to create project: {response.text}")
    sys.exit(1)


def import_project(project_id: int) -> None:
    response = requests.post(f"{API_URL}/projects/{project_id}/sync", headers=HEADERS)
    if response.ok:
        result = response.json()
        print(f"  ✓ Imported {result['tasksImported']} tasks from {result['source']}")
    else:
        print(f"  ✗ Import failed: {response.text}")


def merge_remote(project_id: int, dry_run: bool) -> None:
    payload = {
        "projectId": project_id,
        "remoteTasks": REMOTE_TASKS,
        "options": {"dryRun": dry_run, "conflictPolicy": "newer-wins"},
    }
    response = requests.post(f"{API_URL}/sync/merge", headers=HEADERS, json=payload)
    if response.ok:
        result = response.json()
        print(f"  ✓ {result['message']}")
        if result.get("backupPath"):
            print(f"    backup: {result['backupPath']}")
    else:
        print(f"  ✗ Merge failed: {response.text}")


def main():
    root = Path(sys.argv[1] if len(sys.argv) > 1 else "./tasksync-demo").resolve()

    print("=" * 60)
    print("Seeding Task Sync Engine with a demo project")
    print("=" * 60)

    print(f"\n📁 Writing checkout to {root}...")
    tasks_file = write_checkout(root)
    print(f"  ✓ {tasks_file}")

    print("\n🔗 Registering project...")
    project_id = create_project(root)

    print("\n📥 Importing tasks...")
    import_project(project_id)

    print("\n🔀 Merging teammate's changes...")
    merge_remote(project_id, dry_run=True)
    merge_remote(project_id, dry_run=False)

    print("\n" + "=" * 60)
    print("✅ Done!")
    print("=" * 60)


if __name__ == "__main__":
    main()
