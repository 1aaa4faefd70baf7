"""
Character loading for JSON-defined agent personalities.

A character file describes who the agent is and how it talks:
- name / username used for mentions and message attribution
- system prompt passed to every model call
- bio, topics and adjectives sampled by the CHARACTER provider
- style directions (all / chat / post)
- message and post examples
- optional prompt template overrides and plain-text knowledge

Character file structure:
```json
{
  "name": "Ben",
  "username": "ben",
  "system": "A friendly, helpful tech support chatbot.",
  "bio": ["Only offers help when asked."],
  "topics": ["bitcoin", "javascript"],
  "adjectives": ["helpful"],
  "style": {"all": ["Keep it short"], "chat": [], "post": []},
  "messageExamples": [[{"name": "{{name1}}", "content": {"text": "hi"}}]],
  "postExamples": [],
  "templates": {"should_respond": "..."},
  "knowledge": ["UTXO means unspent transaction output."]
}
```

Usage:
    character = load_character("characters/ben.json")
    context = build_agent_context(character)
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .schemas import Character


class CharacterLoader:
    """Load and validate characters from JSON files.

    Directory structure:
    - Default: current working directory
    - Override via constructor: CharacterLoader(Path("/custom/characters"))
    - Character files: {character_name}.json

    Raises ValueError if the file lacks a name, so a broken file fails at
    startup rather than mid-conversation.
    """

    def __init__(self, characters_dir: Optional[Path] = None):
        self.characters_dir = characters_dir or Path.cwd()

    def load(self, name_or_path: Union[str, Path]) -> Character:
        """Load a character by name (``{name}.json`` in the directory) or explicit path.

        Raises:
            FileNotFoundError: If the character file doesn't exist
            ValueError: If required fields are missing
            json.JSONDecodeError: If the file contains invalid JSON
        """
        path = Path(name_or_path)
        if not path.suffix:
            path = self.characters_dir / f"{name_or_path}.json"
        elif not path.is_absolute() and not path.exists():
            path = self.characters_dir / path

        if not path.exists():
            raise FileNotFoundError(f"Character '{name_or_path}' not found at {path}")

        data = json.loads(path.read_text())
        return self.parse(data)

    def parse(self, data: Dict[str, Any]) -> Character:
        self._validate_character(data)
        return Character.model_validate(data)

    def _validate_character(self, data: Dict[str, Any]) -> None:
        if not isinstance(data, dict):
            raise ValueError("Character file must contain a JSON object")
        if not str(data.get("name") or "").strip():
            raise ValueError("Character missing required field: name")


def load_character(path: Union[str, Path]) -> Character:
    """Load a single character JSON file."""
    return CharacterLoader().load(path)
