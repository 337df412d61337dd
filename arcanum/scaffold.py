"""Bundled protocol templates for ``arcanum init``."""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

import yaml

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"
DEFAULT_TEMPLATE = "task_loop"


@dataclass
class TemplateInfo:
    name: str
    description: str
    path: Path


def list_templates() -> List[TemplateInfo]:
    """Templates shipped with the package, sorted by name."""
    templates = []
    for path in sorted(TEMPLATES_DIR.iterdir()):
        index = path / "index.yaml"
        if not index.is_file():
            continue
        with open(index, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        templates.append(TemplateInfo(path.name, data.get("description", ""), path))
    return templates


def get_template(name: str) -> Optional[TemplateInfo]:
    for template in list_templates():
        if template.name == name:
            return template
    return None


def copy_template(
    name: str, protocol_dir: Union[str, Path], force: bool = False
) -> List[Path]:
    """
    Copy a template into ``protocol_dir``.

    Returns:
        The files written, relative to ``protocol_dir``

    Raises:
        KeyError: If the template does not exist
        FileExistsError: If a protocol already exists and ``force`` is False
    """
    template = get_template(name)
    if template is None:
        available = ", ".join(t.name for t in list_templates())
        raise KeyError(f"Unknown template '{name}'. Available: {available}")

    protocol_dir = Path(protocol_dir)
    if (protocol_dir / "index.yaml").exists() and not force:
        raise FileExistsError(f"Protocol already exists at {protocol_dir}")

    shutil.copytree(
        template.path,
        protocol_dir,
        dirs_exist_ok=True,
        ignore=shutil.ignore_patterns("__pycache__", "*.pyc"),
    )
    written = sorted(
        p.relative_to(protocol_dir)
        for p in protocol_dir.rglob("*")
        if p.is_file() and "__pycache__" not in p.parts
    )
    logger.info(f"Copied template '{name}' to {protocol_dir}")
    return written
