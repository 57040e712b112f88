"""Working-copy path helpers: project slugs and containment checks."""

import os
import re

from config.defaults import DEFAULTS


def slugify(text):
    """Convert text to a filesystem-safe slug (letters, digits, '.', '_', '-')."""
    text = text.strip()
    text = re.sub(r"[^\w.\s-]", "", text)
    text = re.sub(r"\s+", "-", text)
    text = re.sub(r"\.{2,}", ".", text)
    return text.strip(".-_")


def _check_containment(path, root):
    """Verify the resolved path stays within root."""
    resolved = os.path.realpath(path)
    if not resolved.startswith(os.path.realpath(root) + os.sep):
        raise ValueError(f"Project path escapes projects root: {path}")
    return resolved


def get_project_path(projects_root, project_name=None):
    """Return the working-copy path for *project_name* under *projects_root*.

    Raises:
        ValueError: If the name has no usable characters or escapes the root.
    """
    if project_name is None or not str(project_name).strip():
        name = DEFAULTS["default_project"]
    else:
        name = slugify(str(project_name))
        if not name:
            raise ValueError(f"Invalid project name: {project_name!r}")
    return _check_containment(os.path.join(projects_root, name), projects_root)


def list_projects(projects_root):
    """Describe every entry under *projects_root*. Missing root -> empty list."""
    try:
        names = sorted(os.listdir(projects_root))
    except FileNotFoundError:
        return []

    projects = []
    for name in names:
        path = os.path.join(projects_root, name)
        try:
            stats = os.stat(path)
        except OSError:
            continue
        projects.append({
            "name": name,
            "path": path,
            "last_modified": stats.st_mtime,
            "is_directory": os.path.isdir(path),
        })
    return projects
