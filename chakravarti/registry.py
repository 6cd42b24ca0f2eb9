"""
SpecRegistry - Load and validate Specs from storage.

The registry provides:
- Loading Specs from YAML or JSON files in a specs directory
- Caching loaded specs
- Validation of Spec structure
- Content-addressable lookup via SHA256 hash

Example spec file (.specs/add_login.yaml):

    id: add_login
    goal: Add a login page
    constraints:
      - Do not touch the public API
    acceptance:
      - Login form renders
      - Invalid credentials show an error
    verify:
      image: python:3.12
      commands:
        - pytest -q
"""

import hashlib
import json
from pathlib import Path
from typing import Any, Optional

import yaml

from chakravarti.errors import InvalidSpecError, SpecNotFoundError
from chakravarti.schemas import Spec

SPEC_EXTENSIONS = (".yaml", ".yml", ".json")


def _load_file(path: Path) -> dict[str, Any]:
    """
    Load a spec file (YAML or JSON).

    Raises:
        InvalidSpecError: If the format is unsupported or parsing fails
    """
    suffix = path.suffix.lower()
    try:
        with open(path) as f:
            if suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            elif suffix == ".json":
                data = json.load(f)
            else:
                raise InvalidSpecError(f"Unsupported spec format: {suffix}")
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise InvalidSpecError(f"Failed to parse {path}: {e}")

    if not isinstance(data, dict):
        raise InvalidSpecError(f"Spec file {path} must contain a mapping")
    return data


def load_spec(path: Path | str) -> Spec:
    """
    Load and validate a single spec file.

    Raises:
        SpecNotFoundError: If the file does not exist
        InvalidSpecError: If the file cannot be parsed or fails validation
    """
    path = Path(path)
    if not path.exists():
        raise SpecNotFoundError(f"Spec file not found: {path}")

    data = _load_file(path)
    try:
        spec = Spec.from_dict(data, source_path=str(path))
    except (KeyError, TypeError) as e:
        raise InvalidSpecError(f"Invalid spec in {path}: missing or malformed field {e}")
    spec.validate()
    return spec


class SpecRegistry:
    """
    Registry for loading and caching Specs.

    Loads spec files from a directory tree; the file name (without extension)
    must match the spec id.

    Example directory structure:
        .specs/
            add_login.yaml
            billing/
                fix_rounding.json
    """

    def __init__(self, specs_dir: Path | str):
        """
        Initialize the registry.

        Args:
            specs_dir: Path to directory containing spec files
        """
        self._specs_dir = Path(specs_dir)
        self._cache: dict[str, Spec] = {}
        self._hash_index: dict[str, str] = {}  # sha256 -> spec_id

    @property
    def specs_dir(self) -> Path:
        """Get the specs directory path."""
        return self._specs_dir

    def load(self, spec_id: str) -> Spec:
        """
        Load a Spec by ID.

        Searches for {spec_id}.yaml, .yml or .json in the specs directory
        tree; YAML is preferred over JSON when both exist. Results are cached.

        Raises:
            SpecNotFoundError: If no file exists for spec_id
            InvalidSpecError: If the spec is invalid or its id does not match
        """
        if spec_id in self._cache:
            return self._cache[spec_id]

        path = self._find_spec(spec_id)
        if path is None:
            raise SpecNotFoundError(f"Spec not found: {spec_id}")

        spec = load_spec(path)
        if spec.id != spec_id:
            raise InvalidSpecError(
                f"Spec ID mismatch: file is '{spec_id}' but id is '{spec.id}'"
            )

        self._cache[spec_id] = spec
        self._hash_index[self.compute_hash(spec)] = spec_id
        return spec

    def load_by_hash(self, sha256: str) -> Optional[Spec]:
        """Return a cached Spec by its content hash, or None."""
        spec_id = self._hash_index.get(sha256)
        if spec_id is None:
            return None
        return self._cache.get(spec_id)

    def list_specs(self) -> list[str]:
        """
        List all available spec IDs.

        Returns:
            Sorted list of spec IDs found in the specs directory
        """
        if not self._specs_dir.exists():
            return []

        spec_ids = set()
        for ext in SPEC_EXTENSIONS:
            for f in self._specs_dir.glob(f"**/*{ext}"):
                spec_ids.add(f.stem)
        return sorted(spec_ids)

    def _find_spec(self, spec_id: str) -> Optional[Path]:
        for ext in SPEC_EXTENSIONS:
            filename = f"{spec_id}{ext}"

            root_path = self._specs_dir / filename
            if root_path.exists():
                return root_path

            matches = sorted(self._specs_dir.glob(f"**/{filename}"))
            if matches:
                return matches[0]

        return None

    @staticmethod
    def compute_hash(spec: Spec) -> str:
        """
        Compute SHA256 hash of a Spec for content addressing.

        Uses canonical JSON serialization (sorted keys, compact encoding).
        """
        canonical = json.dumps(spec.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()

    def clear_cache(self) -> None:
        """Clear the spec cache."""
        self._cache.clear()
        self._hash_index.clear()

    def preload_all(self) -> int:
        """
        Preload all specs into cache.

        Returns:
            Number of specs loaded

        Raises:
            InvalidSpecError: If any spec is invalid
        """
        count = 0
        for spec_id in self.list_specs():
            self.load(spec_id)
            count += 1
        return count
