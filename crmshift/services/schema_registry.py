"""Schema registry for the CRM's built-in default properties."""

import json
import logging
from typing import Any, Dict, List, Optional
from pathlib import Path

from ..models.schema import PropertyDefinition

logger = logging.getLogger(__name__)

DEFAULTS_DIR = Path(__file__).resolve().parent.parent / "data" / "defaults"

DEFAULT_GROUP_NAMES = {
    "contacts": "contactinformation",
    "companies": "companyinformation",
    "deals": "dealinformation",
    "tickets": "ticketinformation",
}


class SchemaRegistry:
    """
    Registry of built-in default properties per object type.

    Supports:
    - Loading default lists from JSON files
    - Registering default lists programmatically
    - Looking up the default property group for an object type
    """

    def __init__(self, defaults_dir: Optional[str] = None, load_bundled: bool = True):
        """
        Initialize the schema registry.

        Args:
            defaults_dir: Extra directory of default-list JSON files, loaded
                after (and overriding) the bundled lists
            load_bundled: Load the lists shipped with the package
        """
        self.defaults: Dict[str, List[PropertyDefinition]] = {}
        self.group_names: Dict[str, str] = dict(DEFAULT_GROUP_NAMES)

        if load_bundled:
            self.load_defaults_from_directory(str(DEFAULTS_DIR))
        if defaults_dir:
            self.load_defaults_from_directory(defaults_dir)

    def load_defaults_from_directory(self, directory: str) -> int:
        """
        Load all default-list files from a directory.

        Each file holds ``{"objectType", "groupName", "properties": [...]}``.

        Args:
            directory: Path to directory containing JSON files

        Returns:
            Number of files loaded
        """
        loaded = 0
        path = Path(directory)

        if not path.exists():
            logger.warning(f"Defaults directory does not exist: {directory}")
            return 0

        for file_path in sorted(path.glob("*.json")):
            try:
                with open(file_path, "r") as f:
                    data = json.load(f)
                object_type = data.get("objectType") or file_path.stem
                self.register_defaults(object_type, data.get("properties", []), data.get("groupName"))
                loaded += 1
                logger.debug(f"Loaded {len(data.get('properties', []))} default properties for {object_type} from {file_path}")
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load defaults from {file_path}: {e}")

        return loaded

    def register_defaults(
        self,
        object_type: str,
        properties: List[Dict[str, Any]],
        group_name: Optional[str] = None
    ) -> None:
        """Register the default property list for an object type, replacing any previous one."""
        seen = set()
        definitions = []
        for item in properties:
            definition = PropertyDefinition.from_dict(object_type, item, built_in=True)
            if not definition.internal_name or definition.internal_name in seen:
                continue
            seen.add(definition.internal_name)
            definitions.append(definition)

        self.defaults[object_type] = definitions
        if group_name:
            self.group_names[object_type] = group_name

    def get_defaults(self, object_type: str) -> List[PropertyDefinition]:
        """Default properties for an object type (empty for unknown types)."""
        return list(self.defaults.get(object_type, []))

    def default_group_name(self, object_type: str) -> str:
        """Property group used when creating a property of this type."""
        if object_type in self.group_names:
            return self.group_names[object_type]
        singular = object_type[:-1] if object_type.endswith("s") else object_type
        return f"{singular.replace('_', '')}information"
