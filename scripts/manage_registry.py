#!/usr/bin/env python3
"""
Registry management utility for Agent Mux.
Inspects and maintains the on-disk project registry without touching tmux.

Usage:
    python manage_registry.py analyze            # Show projects, agents and current project
    python manage_registry.py backup <project>   # Copy a project's registry to a timestamped sibling
    python manage_registry.py clear-current      # Clear the current-project pointer

The storage root follows AGENT_MUX_PROJECT_ROOT / AGENT_MUX_FALLBACK_DIR.
"""

import os
import shutil
import sys
from datetime import datetime

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from agent_mux import InvalidName, MuxConfig, Registry, validate_name


def open_registry() -> Registry:
    config = MuxConfig.from_env()
    return Registry(project_root=config.project_root, fallback_dir=config.fallback_dir)


def analyze_registry(registry: Registry) -> bool:
    """Analyze and display current registry state."""
    print("\n📊 Agent Mux registry:")
    print("=" * 50)
    print(f"📁 Storage root: {registry.root}")
    if registry.using_fallback:
        print(f"⚠️  Primary root not writable, using fallback")
    print(f"📌 Current project: {registry.get_current_project() or '(none)'}")

    projects = registry.list_project_names()
    print(f"\n📋 Projects ({len(projects)} total):")
    for project in projects:
        meta = registry.load_project_meta(project) or {}
        agents = registry.load_agents(project).get('agents', [])
        print(f"  - {project}: {len(agents)} agents (cwd={meta.get('cwd') or '-'})")
        for agent in agents:
            print(f"      • {agent.get('name')} [{agent.get('type')}] window={agent.get('windowId')}")

    if registry.get_current_project() and registry.get_current_project() not in projects:
        print(f"\n⚠️  Current project has no registry directory")
    return True


def backup_project(registry: Registry, project: str) -> bool:
    """Create a timestamped copy of a project's registry directory."""
    try:
        project = validate_name('project', project)
    except InvalidName as e:
        print(f"❌ {e}")
        return False

    source = registry.get_project_dir(project)
    if not os.path.isdir(source):
        print(f"❌ Project registry not found: {source}")
        return False

    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    backup_path = os.path.join(os.path.dirname(registry.root), 'backups', f"{project}.backup_{timestamp}")
    shutil.copytree(source, backup_path)
    print(f"✅ Backup created: {backup_path}")
    return True


def clear_current(registry: Registry) -> bool:
    current = registry.get_current_project()
    registry.clear_current_project()
    print(f"✅ Current project cleared (was: {current or '(none)'})")
    return True


def main(argv=None):
    """Main CLI interface."""
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print("Usage: python manage_registry.py [analyze|backup <project>|clear-current]")
        return 1

    command = argv[0].lower()
    registry = open_registry()

    if command == 'analyze':
        success = analyze_registry(registry)
    elif command == 'backup':
        if len(argv) < 2:
            print("Usage: python manage_registry.py backup <project>")
            return 1
        success = backup_project(registry, argv[1])
    elif command == 'clear-current':
        success = clear_current(registry)
    else:
        print(f"Unknown command: {command}")
        print("Available commands: analyze, backup, clear-current")
        success = False

    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
