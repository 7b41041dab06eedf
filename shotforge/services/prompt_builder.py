"""Prompt and reference enrichment for storyboard shots.

Pure functions of (item, locations, characters): no I/O, no state. The batch
orchestrator calls them once per item to build its ImageTaskDescriptor.

Prompt Assembly Order (each part only when its source field is non-empty):
    1. Shot ai_prompt, falling back to the shot description
    2. "Location: <description>" for the matched location
    3. "Characters: <name>: <bio>; ..." for the matched characters
    4. "Camera: <camera_angle>"
    5. "Movement: <movement>"

Matching Rules:
    - Location: case-insensitive substring match in either direction between
      the shot's location field and the library name; first match wins
    - Characters: the shot's name list is split on "," "，" "、"; each name is
      matched case-insensitively as a substring of a library name; first
      match per name wins; a character matched twice is used once
"""

import re
from collections.abc import Sequence

from shotforge.schemas.generation import ReferenceImage
from shotforge.schemas.storyboard import Character, Location, StoryboardItem

_NAME_SEPARATORS = re.compile(r"[,，、]")


def split_character_names(names: str) -> list[str]:
    """Split a free-text character list into trimmed, non-empty names.

    Example:
        >>> split_character_names("Aki， Mira、 Old Tom,")
        ['Aki', 'Mira', 'Old Tom']
    """
    return [name.strip() for name in _NAME_SEPARATORS.split(names) if name.strip()]


def match_location(item: StoryboardItem, locations: Sequence[Location]) -> Location | None:
    """Return the first location matching the shot's location field."""
    if not item.location:
        return None
    wanted = item.location.lower()
    for location in locations:
        name = location.name.lower()
        if not name:
            continue
        if wanted in name or name in wanted:
            return location
    return None


def match_characters(item: StoryboardItem, characters: Sequence[Character]) -> list[Character]:
    """Return the first library match for each name, in name-list order.

    Names without a match are skipped. Two names resolving to the same
    character yield it twice.
    """
    matched: list[Character] = []
    for name in split_character_names(item.characters):
        wanted = name.lower()
        character = next((c for c in characters if wanted in c.name.lower()), None)
        if character is not None:
            matched.append(character)
    return matched


def build_enhanced_prompt(
    item: StoryboardItem,
    locations: Sequence[Location] = (),
    characters: Sequence[Character] = (),
) -> str:
    """Build the generation prompt for one shot.

    Args:
        item: Storyboard shot
        locations: Location library
        characters: Character library

    Returns:
        Newline-joined prompt parts

    Example:
        >>> build_enhanced_prompt(
        ...     StoryboardItem(id="s1", ai_prompt="A girl at the pier", camera_angle="wide"),
        ... )
        'A girl at the pier\\nCamera: wide'
    """
    parts: list[str] = []

    if item.ai_prompt:
        parts.append(item.ai_prompt)
    elif item.description:
        parts.append(item.description)

    location = match_location(item, locations)
    if location is not None and location.description:
        parts.append(f"Location: {location.description}")

    matched = match_characters(item, characters)
    if matched:
        descriptions = "; ".join(f"{c.name}: {c.bio}" if c.bio else c.name for c in matched)
        parts.append(f"Characters: {descriptions}")

    if item.camera_angle:
        parts.append(f"Camera: {item.camera_angle}")

    if item.movement:
        parts.append(f"Movement: {item.movement}")

    return "\n".join(parts)


def _location_image_url(location: Location) -> str | None:
    if location.forms and location.forms[0].url:
        return location.forms[0].url
    return location.reference_image_url


def _character_image_url(character: Character) -> str | None:
    if character.forms and character.forms[0].front_view_url:
        return character.forms[0].front_view_url
    return character.reference_image_url


def collect_reference_images(
    item: StoryboardItem,
    locations: Sequence[Location] = (),
    characters: Sequence[Character] = (),
) -> list[ReferenceImage]:
    """Collect reference images for one shot.

    At most one image for the matched location and one per matched character.
    Entries without an image URL are skipped.
    """
    references: list[ReferenceImage] = []

    location = match_location(item, locations)
    if location is not None:
        url = _location_image_url(location)
        if url:
            references.append(ReferenceImage(type="location", url=url, label=location.name))

    for character in match_characters(item, characters):
        url = _character_image_url(character)
        if url:
            references.append(ReferenceImage(type="character", url=url, label=character.name))

    return references
